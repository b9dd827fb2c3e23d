"""
Bounded polling.

poll_with_budget runs an action at a fixed interval for at most
max_attempts tries. The action reports its outcome as a PollResult, so a
caller can tell "still pending" from "failed for good" without relying
on exceptions. The worst-case wait is interval * max_attempts.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from loguru import logger

T = TypeVar("T")


class PollStatus(str, Enum):
    RESOLVED = "resolved"
    PENDING = "pending"
    FATAL = "fatal"


@dataclass(frozen=True)
class PollResult(Generic[T]):
    status: PollStatus
    value: T | None = None
    reason: str = ""
    attempts: int = 0

    @classmethod
    def resolved(cls, value: T) -> PollResult[T]:
        return cls(status=PollStatus.RESOLVED, value=value)

    @classmethod
    def pending(cls, reason: str = "") -> PollResult[T]:
        return cls(status=PollStatus.PENDING, reason=reason)

    @classmethod
    def fatal(cls, reason: str) -> PollResult[T]:
        return cls(status=PollStatus.FATAL, reason=reason)

    @property
    def is_resolved(self) -> bool:
        return self.status == PollStatus.RESOLVED


async def poll_with_budget(
    action: Callable[[], Awaitable[PollResult[T]]],
    interval: float,
    max_attempts: int,
    description: str = "poll",
) -> PollResult[T]:
    """
    Poll action until it resolves, turns fatal, or the budget runs out.

    Each attempt waits interval seconds first, giving the remote side time
    to make progress before the first look.

    Args:
        action: Coroutine factory returning the outcome of one attempt
        interval: Seconds to wait before each attempt
        max_attempts: Number of attempts before giving up
        description: Label used in log messages

    Returns:
        The RESOLVED or FATAL result, or the last PENDING result once the
        budget is spent. attempts is set to the number of tries made.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

    result: PollResult[T] = PollResult.pending()
    for attempt in range(1, max_attempts + 1):
        await asyncio.sleep(interval)
        result = await action()
        if result.status != PollStatus.PENDING:
            logger.debug(f"{description}: {result.status.value} after {attempt} attempt(s)")
            return dataclasses.replace(result, attempts=attempt)
        logger.debug(
            f"{description}: pending (attempt {attempt}/{max_attempts})"
            + (f" - {result.reason}" if result.reason else "")
        )

    logger.warning(f"{description}: still pending after {max_attempts} attempts")
    return dataclasses.replace(result, attempts=max_attempts)
