from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from inventory_app.config import settings
from inventory_app.shopify_api import ShopifyThrottledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_throttled(exc: BaseException) -> bool:
    return isinstance(exc, ShopifyThrottledError)


@dataclass(frozen=True)
class RetryPolicy:
    """Retries an awaitable remote call on rate limiting with exponential backoff."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    is_retryable: Callable[[BaseException], bool] = is_throttled
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must not be negative")

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.INVENTORY_RETRY_MAX_ATTEMPTS,
            base_delay_seconds=settings.INVENTORY_RETRY_BASE_DELAY_SECONDS,
        )

    def backoff_seconds(self, attempt: int, exc: BaseException | None = None) -> float:
        delay = self.base_delay_seconds * (2**attempt)
        retry_after = getattr(exc, "retry_after", None)
        if isinstance(retry_after, (int, float)) and retry_after > delay:
            return float(retry_after)
        return delay

    async def run(self, operation: Callable[[], Awaitable[T]], *, description: str = "remote call") -> T:
        for attempt in range(self.max_attempts):
            try:
                return await operation()
            except Exception as exc:
                if not self.is_retryable(exc):
                    raise
                if attempt + 1 >= self.max_attempts:
                    logger.warning(
                        "inventory.retry.exhausted",
                        extra={"operation": description, "attempts": attempt + 1},
                    )
                    raise
                delay = self.backoff_seconds(attempt, exc)
                logger.info(
                    "inventory.retry.backoff",
                    extra={"operation": description, "attempt": attempt + 1, "delay_seconds": delay},
                )
                await self.sleep(delay)
        raise RuntimeError("Unreachable: retry loop exhausted.")
