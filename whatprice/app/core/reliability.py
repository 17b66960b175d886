"""
Reliability Utilities.

Retry for optimistic-concurrency losses in billing writes. Contention on
one vendor is normal traffic, so losers back off with jitter and keep
trying until a deadline rather than giving up after a fixed count.
"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Optional, TypeVar

from whatprice.app.core.exceptions import BillingPersistenceError, LedgerConflictError

logger = logging.getLogger("whatprice.reliability")

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Full-jitter exponential backoff for the given (1-based) attempt."""
    return random.uniform(0, min(max_delay, base_delay * 2 ** (attempt - 1)))


async def retry_on_conflict(
    func: Callable[[], Awaitable[T]],
    attempts: Optional[int] = None,
    operation: str = "billing_write",
    deadline_seconds: float = 5.0,
    base_delay: float = 0.005,
    max_delay: float = 0.1,
) -> T:
    """
    Run an async unit of work, re-running it when it loses a ledger race.

    The unit of work must roll itself back before raising
    LedgerConflictError so a retry starts from fresh state. Retries stop
    at `deadline_seconds` after the first attempt, or after `attempts`
    tries when a cap is given.

    Raises:
        BillingPersistenceError: the deadline (or attempt cap) ran out
    """
    started = time.monotonic()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await func()
        except LedgerConflictError as e:
            elapsed = time.monotonic() - started
            if (attempts is not None and attempt >= attempts) or elapsed >= deadline_seconds:
                break
            delay = min(backoff_delay(attempt, base_delay, max_delay), deadline_seconds - elapsed)
            logger.warning(
                "Ledger conflict, retrying",
                extra={"operation": operation, "attempt": attempt, "delay": delay, "detail": str(e)}
            )
        await asyncio.sleep(delay)

    raise BillingPersistenceError(
        message=f"{operation} lost {attempt} consecutive ledger races",
        details={"operation": operation, "attempts": attempt}
    )
