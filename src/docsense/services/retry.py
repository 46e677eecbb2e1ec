"""Retry with exponential backoff for calls to external AI providers."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from docsense.metrics.observability import get_logger

T = TypeVar("T")

TRANSIENT_STATUSES = frozenset({429, 500, 503})


class ProviderError(RuntimeError):
    """Failure reported by an external embedding or language-model provider."""

    def __init__(self, message: str, *, status: int | None = None, provider: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.provider = provider

    @property
    def is_transient(self) -> bool:
        return self.status in TRANSIENT_STATUSES


def is_transient_error(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.is_transient


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry: ``base_delay * 2**attempt + uniform(0, jitter)`` between attempts.

    Only errors accepted by ``retryable`` are retried. Everything else, and the
    error from the final attempt, propagates to the caller.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    jitter: float = 1.0
    retryable: Callable[[BaseException], bool] = is_transient_error
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)
    random_fn: Callable[[], float] = field(default=random.random, repr=False)

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2**attempt) + self.random_fn() * self.jitter

    async def run(self, operation: Callable[[], Awaitable[T]], *, name: str = "provider.call") -> T:
        logger = get_logger("retry")
        attempts = max(1, self.max_attempts)
        for attempt in range(attempts):
            try:
                return await operation()
            except Exception as exc:
                if attempt == attempts - 1 or not self.retryable(exc):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "retry.scheduled",
                    operation=name,
                    attempt=attempt + 1,
                    max_attempts=attempts,
                    delay_seconds=round(delay, 3),
                    status=getattr(exc, "status", None),
                    error=str(exc),
                )
                await self.sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover
