"""
Redis Connection Manager

Owns the single Redis client used by the cache. Tracks connectivity and
keeps reconnecting in the background after the connection drops, doubling
the wait between attempts up to a ceiling.
"""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

from ...core.config import Settings
from ...domain.cache.interfaces import CacheLogger

CONNECTION_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class RedisConnectionManager:
    """
    Connection lifecycle for a Redis-backed cache.

    ``connect`` never raises: an unreachable server leaves the manager
    disconnected with a reconnect loop running. Callers check
    ``is_connected`` before issuing commands and report failures through
    ``mark_disconnected``.
    """

    def __init__(
        self,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        connection_timeout: float = 5.0,
        operation_timeout: float = 5.0,
        reconnect_interval: float = 1.0,
        reconnect_max_interval: float = 30.0,
        logger: Optional[CacheLogger] = None,
        client: Optional[Redis] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._url = url
        self._username = username
        self._password = password
        self._connection_timeout = connection_timeout
        self._operation_timeout = operation_timeout
        self._reconnect_interval = reconnect_interval
        self._reconnect_max_interval = reconnect_max_interval
        self._logger = logger or structlog.get_logger(__name__)
        self._client = client
        self._sleep = sleep
        self._connected = False
        self._closed = False
        self._reconnect_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        logger: Optional[CacheLogger] = None,
        client: Optional[Redis] = None,
    ) -> "RedisConnectionManager":
        return cls(
            url=settings.REDIS_URL,
            username=settings.REDIS_USERNAME,
            password=settings.REDIS_PASSWORD,
            connection_timeout=settings.REDIS_CONNECTION_TIMEOUT,
            operation_timeout=settings.REDIS_OPERATION_TIMEOUT,
            reconnect_interval=settings.REDIS_RECONNECT_INTERVAL,
            reconnect_max_interval=settings.REDIS_RECONNECT_MAX_INTERVAL,
            logger=logger,
            client=client,
        )

    @property
    def client(self) -> Redis:
        """Redis client, created on first use."""
        if self._client is None:
            self._client = Redis.from_url(
                self._url,
                username=self._username,
                password=self._password,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self._connection_timeout,
                socket_timeout=self._operation_timeout,
            )
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._connected and not self._closed

    @property
    def is_reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def connect(self) -> bool:
        """
        Ping the server and record the outcome.

        Returns:
            True when the server answered
        """
        self._closed = False
        try:
            await self.client.ping()
        except CONNECTION_ERRORS as e:
            self._logger.error(
                "Redis connection failed", url=self._safe_url(), error=str(e)
            )
            self.mark_disconnected(e)
            return False

        self._connected = True
        self._logger.info("Redis connected", url=self._safe_url())
        return True

    def mark_disconnected(self, error: Optional[BaseException] = None) -> None:
        """Record a lost connection and schedule reconnection."""
        if self._connected:
            self._logger.warning(
                "Redis connection lost",
                url=self._safe_url(),
                error=str(error) if error else None,
            )
        self._connected = False

        if self._closed or self.is_reconnecting:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._reconnect_task = loop.create_task(self._reconnect_loop())
        self._reconnect_task.add_done_callback(self._reconnect_done)

    def _reconnect_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._logger.error(
                "Redis reconnect loop crashed",
                url=self._safe_url(),
                error=str(error),
                error_type=type(error).__name__,
            )

    async def close(self) -> None:
        """Stop reconnecting and release the client."""
        self._closed = True
        self._connected = False

        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self._client is not None:
            try:
                await self._client.aclose()
            except CONNECTION_ERRORS as e:
                self._logger.warning("Error closing Redis client", error=str(e))
            self._client = None

        self._logger.info("Redis connection closed")

    async def _reconnect_loop(self) -> None:
        delay = self._reconnect_interval
        attempt = 0

        while not self._closed:
            await self._sleep(delay)
            attempt += 1
            self._logger.info(
                "Attempting Redis reconnection", attempt=attempt, url=self._safe_url()
            )

            try:
                await self.client.ping()
            except CONNECTION_ERRORS as e:
                self._logger.warning(
                    "Redis reconnection failed",
                    attempt=attempt,
                    next_retry_seconds=min(delay * 2, self._reconnect_max_interval),
                    error=str(e),
                )
                delay = min(delay * 2, self._reconnect_max_interval)
                continue

            self._connected = True
            self._logger.info("Redis reconnected", attempt=attempt)
            return

    def _safe_url(self) -> str:
        """Connection URL without credentials."""
        scheme, separator, rest = self._url.partition("://")
        if not separator:
            return self._url
        return f"{scheme}://{rest.rpartition('@')[2]}"
