"""Retry helper for remote operations that are safe to repeat."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Tuple, Type, TypeVar

from core.errors import NetworkUnavailable, RetryExhausted, format_error

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class LinearBackoff:
    """Wait ``attempt * unit`` seconds after the given failed attempt."""

    unit: float = 1.0

    def delay(self, attempt: int) -> float:
        return max(0.0, attempt * self.unit)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    backoff: Optional[LinearBackoff] = None,
    retry_on: Tuple[Type[BaseException], ...] = (NetworkUnavailable,),
    trail: Optional[List[str]] = None,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or ``max_attempts`` is reached.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates on the spot. Every attempt appends one line to ``trail``. When
    the last attempt fails, :class:`RetryExhausted` is raised with the full
    trail attached.
    """

    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    policy = backoff or LinearBackoff()
    log = trail if trail is not None else []
    last_error: Optional[BaseException] = None
    for attempt in range(1, max_attempts + 1):
        try:
            result = await operation()
        except retry_on as exc:
            last_error = exc
            log.append(f"{label}: attempt {attempt}/{max_attempts} failed: {format_error(exc)}")
            LOGGER.warning("%s attempt %s/%s failed: %s", label, attempt, max_attempts, exc)
            if attempt < max_attempts:
                await sleep(policy.delay(attempt))
            continue
        log.append(f"{label}: attempt {attempt}/{max_attempts} succeeded")
        return result
    raise RetryExhausted(
        f"{label} failed after {max_attempts} attempts: {format_error(last_error)}",
        trail=log,
        last_error=last_error,
    )


__all__ = ["LinearBackoff", "with_retry"]
