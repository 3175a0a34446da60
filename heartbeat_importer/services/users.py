"""Token to requester resolution."""
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from heartbeat_importer.errors import InvalidTokenError
from heartbeat_importer.models.db.users import User
from heartbeat_importer.utils import get_logger

logger = get_logger(__name__)


def _token_prefix(token: str) -> str:
    return token[:10] + "..." if len(token) > 10 else token


def get_user_by_token(session: Session, token: str) -> str:
    """Return the username owning ``token``; raise ``InvalidTokenError`` otherwise."""
    username = session.scalar(
        select(User.username).where(User.api_key == token, User.is_active == True)  # noqa: E712
    )
    if username is None:
        logger.warning("Authentication failed: invalid or inactive API key", api_key_prefix=_token_prefix(token))
        raise InvalidTokenError()
    return username


__all__ = ["get_user_by_token"]
