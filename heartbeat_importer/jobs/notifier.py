"""Wake-up channel for the import queue consumers.

Rows live in the database; this module only tells sleeping consumers that new
work may be available so they do not have to busy-poll.

- ``LocalNotifier``: condition variable, wakes consumers in the same process.
- ``RedisNotifier``: Redis pub/sub on a channel named after the queue, wakes
  consumers in every process. Falls back to the local notifier while Redis is
  unreachable and switches back once a health check succeeds.

A lost notification only delays a consumer until its poll timeout expires.
"""
from __future__ import annotations

import threading
from typing import Optional

import redis

from heartbeat_importer.config import QueueConfig, QUEUE_SETTINGS
from heartbeat_importer.utils import get_logger

logger = get_logger(__name__)


class LocalNotifier:
    def __init__(self) -> None:
        self._cv = threading.Condition()
        self._signalled = False

    def notify(self) -> None:
        with self._cv:
            self._signalled = True
            self._cv.notify_all()

    def wait(self, timeout: Optional[float]) -> bool:
        """Block until notified or ``timeout`` expires. Returns True if notified."""
        with self._cv:
            if not self._signalled:
                self._cv.wait(timeout=timeout)
            notified = self._signalled
            self._signalled = False
            return notified

    def snapshot(self) -> dict:
        return {"backend": "memory", "redis_active": False}


class RedisNotifier:
    def __init__(self, redis_url: str, channel: str, *, health_check_timeout: float | None = None) -> None:
        self._redis_url = redis_url
        self._channel = channel
        self._health_check_timeout = float(
            health_check_timeout if health_check_timeout is not None else QUEUE_SETTINGS.get("redis_health_check_timeout", 2.0)  # type: ignore[arg-type]
        )
        self._fallback = LocalNotifier()
        self._lock = threading.RLock()
        self._redis_client: Optional[redis.Redis] = None
        self._pubsub = None
        self._is_redis_active = False
        self._init_redis_client()

    def _init_redis_client(self) -> None:
        try:
            self._redis_client = redis.from_url(self._redis_url, socket_connect_timeout=self._health_check_timeout)
            self._redis_client.ping()
            self._is_redis_active = True
            logger.info("Connected to Redis for queue notifications", url=self._redis_url, channel=self._channel)
        except (redis.RedisError, ConnectionError) as e:
            self._is_redis_active = False
            self._redis_client = None
            logger.warning("Failed to connect to Redis, using in-process notifications", error=str(e))

    def health_check(self) -> bool:
        with self._lock:
            if self._redis_client is None:
                self._init_redis_client()
                return self._is_redis_active
            try:
                self._redis_client.ping()
                if not self._is_redis_active:
                    logger.info("Redis connection restored")
                self._is_redis_active = True
                return True
            except (redis.RedisError, ConnectionError) as e:
                if self._is_redis_active:
                    logger.warning("Redis connection lost, using in-process notifications", error=str(e))
                self._is_redis_active = False
                self._drop_subscription()
                return False

    def notify(self) -> None:
        # Always wake local consumers; Redis reaches the other processes.
        self._fallback.notify()
        if not self._is_redis_active or self._redis_client is None:
            return
        try:
            self._redis_client.publish(self._channel, "enqueued")
        except redis.RedisError as e:
            logger.error("Redis error during notify", error=str(e))
            self._is_redis_active = False
            self._drop_subscription()

    def _drop_subscription(self) -> None:
        pubsub, self._pubsub = self._pubsub, None
        if pubsub is None:
            return
        try:
            pubsub.close()
        except (redis.RedisError, ConnectionError) as e:
            logger.debug("Error closing Redis subscription", error=str(e))

    def _subscription(self):
        if self._pubsub is None and self._redis_client is not None:
            pubsub = self._redis_client.pubsub(ignore_subscribe_messages=True)
            pubsub.subscribe(self._channel)
            self._pubsub = pubsub
        return self._pubsub

    def wait(self, timeout: Optional[float]) -> bool:
        if not self.health_check():
            return self._fallback.wait(timeout)
        try:
            pubsub = self._subscription()
            if pubsub is None:
                return self._fallback.wait(timeout)
            message = pubsub.get_message(timeout=timeout if timeout is not None else None)
            return message is not None
        except redis.RedisError as e:
            logger.error("Redis error while waiting for notifications", error=str(e))
            self._is_redis_active = False
            self._drop_subscription()
            return self._fallback.wait(timeout)

    def snapshot(self) -> dict:
        return {
            "backend": "redis" if self._is_redis_active else "memory",
            "redis_active": self._is_redis_active,
            "channel": self._channel,
        }


def create_notifier(config: QueueConfig) -> LocalNotifier | RedisNotifier:
    """Pick the notification backend for the given queue configuration."""
    if config.use_redis:
        notifier = RedisNotifier(config.redis_url, config.queue_name)
        if notifier.health_check():
            logger.info("Using Redis pub/sub queue notifications", channel=config.queue_name)
        else:
            logger.warning("Redis notifications enabled but Redis is unreachable; in-process fallback active")
        return notifier
    logger.info("Using in-process queue notifications")
    return LocalNotifier()


__all__ = ["LocalNotifier", "RedisNotifier", "create_notifier"]
