"""
WakaTime API client used by the import executor.

Only the two read endpoints needed for an import are covered:
``/users/current/user_agents`` and ``/users/current/heartbeats?date=``.
There is no retry here; a failed call fails the whole import attempt and the
queue retries the job.
"""
import asyncio
from datetime import date
from typing import Any, Dict, Optional

import aiohttp
from pydantic import ValidationError

from heartbeat_importer.config import RemoteApiConfig
from heartbeat_importer.errors import RemoteApiError
from heartbeat_importer.models.schemas.wakatime import HeartbeatList, UserAgentList
from heartbeat_importer.utils import get_logger

logger = get_logger(__name__)


class WakatimeClient:
    """Async client bound to one remote API key.

    Use as an async context manager; an externally supplied ``session`` is
    left open on exit.
    """

    def __init__(
        self,
        api_token: str,
        config: Optional[RemoteApiConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config or RemoteApiConfig.from_settings()
        self._headers = {
            "Authorization": f"Basic {api_token}",
            "Accept": "application/json",
        }
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "WakatimeClient":
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def _get_json(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        if self._session is None:
            raise RuntimeError("WakatimeClient used outside of its context manager")
        url = f"{self.config.base_url}{path}"
        try:
            async with self._session.get(url, headers=self._headers, params=params) as response:
                if response.status != 200:
                    body = await response.text()
                    logger.error(
                        "WakaTime API request failed",
                        url=url,
                        status_code=response.status,
                        body=body[:200],
                    )
                    raise RemoteApiError(f"WakaTime API returned status {response.status} for {path}", status=response.status)
                return await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise RemoteApiError(f"WakaTime API request timed out: {path}") from e
        except aiohttp.ClientError as e:
            raise RemoteApiError(f"WakaTime API request error: {e}") from e

    async def fetch_user_agents(self) -> UserAgentList:
        data = await self._get_json("/users/current/user_agents")
        try:
            return UserAgentList.model_validate(data)
        except ValidationError as e:
            raise RemoteApiError(f"Unexpected user agent payload: {e.error_count()} error(s)") from e

    async def fetch_heartbeats(self, day: date) -> HeartbeatList:
        data = await self._get_json("/users/current/heartbeats", params={"date": day.isoformat()})
        try:
            return HeartbeatList.model_validate(data)
        except ValidationError as e:
            raise RemoteApiError(f"Unexpected heartbeat payload for {day.isoformat()}: {e.error_count()} error(s)") from e


__all__ = ["WakatimeClient"]
