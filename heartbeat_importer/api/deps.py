"""
Dependencies for database sessions, credentials and the import service.
"""
from functools import partial
from typing import Generator, Optional
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from heartbeat_importer.database import SessionLocal
from heartbeat_importer.jobs.durable_queue import DurableQueue
from heartbeat_importer.services.import_requests import ImportRequestService
from heartbeat_importer.services.users import get_user_by_token
from heartbeat_importer.utils import get_logger

logger = get_logger(__name__)
# Missing credentials are reported by the service layer, not by the scheme.
security = HTTPBearer(auto_error=False)

def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Ensures proper session lifecycle management with automatic cleanup.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.error("Database session error", error=str(e), exc_info=True)
        db.rollback()
        raise
    finally:
        db.close()

def get_api_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[str]:
    """Bearer token from the Authorization header, or None when absent."""
    if credentials is None or not credentials.credentials:
        return None
    return credentials.credentials

def get_import_queue(request: Request) -> DurableQueue:
    queue = getattr(request.app.state, "import_queue", None)
    if queue is None:
        raise HTTPException(status_code=503, detail="Import queue not available")
    return queue

def get_import_service(
    queue: DurableQueue = Depends(get_import_queue),
    db: Session = Depends(get_db)
) -> ImportRequestService:
    return ImportRequestService(queue, partial(get_user_by_token, db))
