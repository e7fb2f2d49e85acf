"""
Retry policy for rate-limited proxy calls.

Constant-delay retry that only fires on rate limiting (HTTP 429). Every other
failure, and the last failure once attempts are used up, propagates unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx

from playground.config import Configuration
from playground.errors import TransportError

logger = logging.getLogger(__name__)

T = TypeVar("T")

HTTP_TOO_MANY_REQUESTS = 429


def is_rate_limited(error: BaseException) -> bool:
    """True for rate-limit failures, whichever layer reported them."""
    if isinstance(error, TransportError):
        return error.status_code == HTTP_TOO_MANY_REQUESTS
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code == HTTP_TOO_MANY_REQUESTS
    return False


class RetryPolicy:
    """
    Retry an async operation on retryable failures with a constant delay.

    The delay is awaited with ``sleep`` (``asyncio.sleep`` by default), so
    cancelling the awaiting task cancels a pending retry.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        delay_ms: int = 3000,
        is_retryable: Callable[[BaseException], bool] = is_rate_limited,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if delay_ms < 0:
            raise ValueError("delay_ms must not be negative")
        self.max_attempts = max_attempts
        self.delay_ms = delay_ms
        self.is_retryable = is_retryable
        self._sleep = sleep

    @classmethod
    def from_config(cls, configuration: Configuration) -> RetryPolicy:
        retry_config = configuration.get_image_retry_config()
        return cls(max_attempts=retry_config["max_attempts"], delay_ms=retry_config["delay_ms"])

    async def run(self, operation: Callable[[], Awaitable[T]], name: str = "operation") -> T:
        """
        Await ``operation()`` until it succeeds or fails for good.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            name: Label used in log messages

        Returns:
            The first successful result

        Raises:
            Exception: The last failure, unchanged
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as e:
                if not self.is_retryable(e):
                    raise

                if attempt >= self.max_attempts:
                    logger.error(f"{name} still rate limited after {self.max_attempts} attempts: {e}")
                    raise

                logger.warning(
                    f"{name} - 429 Rate Limited. Retry {attempt}/{self.max_attempts} in {self.delay_ms}ms..."
                )
                await self._sleep(self.delay_ms / 1000)
