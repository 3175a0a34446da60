"""Core application configuration.

Queue tuning, remote API location and the import provenance tag live here as
module constants so they can be adjusted without touching service logic.
Values can be overridden through environment variables; components never read
these dicts directly at call time but receive the frozen ``QueueConfig`` /
``RemoteApiConfig`` views at construction.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Final

from heartbeat_importer.utils.backoff import compute_backoff_seconds


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+pysqlite:///./heartbeats.db")

# Literal provenance tag stored with every imported heartbeat.
IMPORT_SOURCE: Final[str] = os.getenv("IMPORT_SOURCE", "wakatime-import")

# --------------------------------- Queue ---------------------------------- #
QUEUE_SETTINGS: dict[str, str | int | float | bool] = {
	# Also used as the pub/sub channel name for wake-up notifications.
	"queue_name": os.getenv("IMPORT_QUEUE_NAME", "_import_requests_queue_channel"),
	"max_retries": int(os.getenv("IMPORT_MAX_RETRIES", "3")),
	"batch_size": int(os.getenv("IMPORT_BATCH_SIZE", "1")),
	# Lease on a claimed row; an expired lease makes the row visible again.
	"visibility_timeout_seconds": float(os.getenv("IMPORT_VISIBILITY_TIMEOUT", "900")),
	# Upper bound on a single wait so delayed retries and expired leases get picked up.
	"poll_timeout_seconds": float(os.getenv("IMPORT_POLL_TIMEOUT", "5")),
	"use_redis": _env_bool("USE_REDIS", False),
	"redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
	"redis_health_check_timeout": 2.0,
}

# --------------------------------- Backoff -------------------------------- #
# Delay before a failed row becomes visible again.
BACKOFF_POLICY: dict[str, int | float] = {
	"base_seconds": 5,
	"factor": 2,          # Exponential factor
	"max_seconds": 300,
	"jitter_pct": 0.10,   # +/-10% jitter
}

# ------------------------------- Remote API ------------------------------- #
REMOTE_API_SETTINGS: dict[str, str | float] = {
	"host": os.getenv("WAKATIME_API_HOST", "api.wakatime.com"),
	"scheme": os.getenv("WAKATIME_API_SCHEME", "https"),
	"base_path": "/api/v1",
	"timeout_seconds": float(os.getenv("WAKATIME_API_TIMEOUT", "30")),
}


@dataclass(frozen=True)
class QueueConfig:
	queue_name: str = "_import_requests_queue_channel"
	max_retries: int = 3
	batch_size: int = 1
	visibility_timeout_seconds: float = 900.0
	poll_timeout_seconds: float = 5.0
	use_redis: bool = False
	redis_url: str = "redis://localhost:6379/0"
	backoff_base_seconds: float = 5.0
	backoff_factor: float = 2.0
	backoff_max_seconds: float = 300.0
	backoff_jitter_pct: float = 0.10

	def retry_delay(self, attempt: int) -> float:
		"""Seconds a row stays invisible after its ``attempt``-th failure."""
		return compute_backoff_seconds(
			attempt,
			base=self.backoff_base_seconds,
			factor=self.backoff_factor,
			max_seconds=self.backoff_max_seconds,
			jitter_pct=self.backoff_jitter_pct,
		)

	@classmethod
	def from_settings(cls, settings: dict | None = None, backoff: dict | None = None) -> "QueueConfig":
		s = QUEUE_SETTINGS if settings is None else settings
		b = BACKOFF_POLICY if backoff is None else backoff
		return cls(
			queue_name=str(s.get("queue_name", cls.queue_name)),
			max_retries=int(s.get("max_retries", cls.max_retries)),  # type: ignore[arg-type]
			batch_size=int(s.get("batch_size", cls.batch_size)),  # type: ignore[arg-type]
			visibility_timeout_seconds=float(s.get("visibility_timeout_seconds", cls.visibility_timeout_seconds)),  # type: ignore[arg-type]
			poll_timeout_seconds=float(s.get("poll_timeout_seconds", cls.poll_timeout_seconds)),  # type: ignore[arg-type]
			use_redis=bool(s.get("use_redis", cls.use_redis)),
			redis_url=str(s.get("redis_url", cls.redis_url)),
			backoff_base_seconds=float(b.get("base_seconds", cls.backoff_base_seconds)),
			backoff_factor=float(b.get("factor", cls.backoff_factor)),
			backoff_max_seconds=float(b.get("max_seconds", cls.backoff_max_seconds)),
			backoff_jitter_pct=float(b.get("jitter_pct", cls.backoff_jitter_pct)),
		)


@dataclass(frozen=True)
class RemoteApiConfig:
	host: str = "api.wakatime.com"
	scheme: str = "https"
	base_path: str = "/api/v1"
	timeout_seconds: float = 30.0

	@property
	def base_url(self) -> str:
		return f"{self.scheme}://{self.host}{self.base_path}"

	@classmethod
	def from_settings(cls, settings: dict | None = None) -> "RemoteApiConfig":
		s = REMOTE_API_SETTINGS if settings is None else settings
		return cls(
			host=str(s.get("host", cls.host)),
			scheme=str(s.get("scheme", cls.scheme)),
			base_path=str(s.get("base_path", cls.base_path)),
			timeout_seconds=float(s.get("timeout_seconds", cls.timeout_seconds)),  # type: ignore[arg-type]
		)


__all__ = [
	"DATABASE_URL",
	"IMPORT_SOURCE",
	"QUEUE_SETTINGS",
	"BACKOFF_POLICY",
	"REMOTE_API_SETTINGS",
	"QueueConfig",
	"RemoteApiConfig",
]
