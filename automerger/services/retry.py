"""Bounded polling with randomized exponential backoff.

GitHub computes ``mergeable`` and ``mergeable_state`` asynchronously, so a
freshly fetched pull request can report them as unknown. These helpers poll
until the value settles or the attempt budget is spent.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from logging import getLogger
from typing import Generic, TypeVar

logger = getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters for polling loops."""

    attempts: int = 5
    factor: float = 3.0
    min_delay: float = 0.5  # seconds
    max_delay: float = 5.0  # seconds
    randomize: bool = True

    def delay(self, attempt: int) -> float:
        """Return the wait before the attempt following ``attempt`` (0-based).

        Args:
            attempt: Index of the attempt that just failed

        Returns:
            Delay in seconds, capped at ``max_delay``
        """
        jitter = random.uniform(1, 2) if self.randomize else 1
        return min(jitter * self.min_delay * self.factor**attempt, self.max_delay)


@dataclass(frozen=True)
class Resolved(Generic[T]):
    """The polled value settled."""

    value: T
    attempts: int = 1


@dataclass(frozen=True)
class Exhausted(Generic[T]):
    """Every attempt finished without a settled value."""

    last: T | None
    attempts: int
    error: Exception | None = None


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    is_settled: Callable[[T], bool],
    policy: RetryPolicy | None = None,
    description: str = "value",
) -> "Resolved[T] | Exhausted[T]":
    """Call ``fetch`` until ``is_settled`` accepts its result.

    Exceptions raised by ``fetch`` count as unsettled attempts and are kept on
    the ``Exhausted`` result when the budget runs out.

    Args:
        fetch: Coroutine factory producing the value to inspect
        is_settled: Predicate deciding whether the value is final
        policy: Backoff parameters (defaults to ``RetryPolicy()``)
        description: Human readable name used in log messages

    Returns:
        ``Resolved`` with the settled value or ``Exhausted`` with the last observation
    """
    policy = policy or RetryPolicy()
    last: T | None = None
    error: Exception | None = None

    for attempt in range(policy.attempts):
        try:
            last = await fetch()
            error = None
            if is_settled(last):
                return Resolved(value=last, attempts=attempt + 1)
            logger.info(f"GitHub has not settled {description} yet (attempt {attempt + 1}/{policy.attempts})")
        except Exception as e:
            error = e
            logger.warning(f"Error while polling {description} (attempt {attempt + 1}/{policy.attempts}): {e}")

        if attempt + 1 < policy.attempts:
            await asyncio.sleep(policy.delay(attempt))

    logger.warning(f"Gave up waiting for {description} after {policy.attempts} attempts")
    return Exhausted(last=last, attempts=policy.attempts, error=error)
