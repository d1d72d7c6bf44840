"""Timeout management for update cycles.

An update cycle has two limits. The scan deadline is checked cooperatively
by the scanner between pages and caps each page await. The force-end
timeout wraps the whole cycle and cancels it outright, so the lock is
always released well before its TTL expires.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Coroutine, Optional, TypeVar

from core.exceptions import ScanTimeoutError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ScanDeadline:
    """Wall-clock deadline shared by every scan phase of one cycle.

    Also carries a cancellation flag that the scanner observes between
    pages, for callers that want a scan to stop early without waiting for
    the deadline.
    """

    def __init__(
        self,
        timeout_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the deadline.

        Args:
            timeout_seconds: Seconds allowed once started.
            clock: Monotonic clock, replaceable in tests.
        """
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self.timeout_seconds = float(timeout_seconds)
        self._clock = clock
        self._start_time: Optional[float] = None
        self._cancelled = False

    @property
    def is_started(self) -> bool:
        return self._start_time is not None

    def start(self) -> "ScanDeadline":
        """Start the clock. Starting twice keeps the first start time."""
        if self._start_time is None:
            self._start_time = self._clock()
        return self

    def time_elapsed(self) -> float:
        """Elapsed seconds since start, 0.0 if not started."""
        if self._start_time is None:
            return 0.0
        return self._clock() - self._start_time

    def time_remaining(self) -> float:
        """Remaining seconds, the full timeout if not started."""
        return max(0.0, self.timeout_seconds - self.time_elapsed())

    def is_expired(self) -> bool:
        return self.is_started and self.time_remaining() <= 0.0

    def cancel(self) -> None:
        """Ask the scanner to stop at the next page boundary."""
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def reset(self) -> None:
        self._start_time = None
        self._cancelled = False

    def get_status(self) -> dict:
        """Get current deadline status for logging."""
        return {
            "timeout_seconds": self.timeout_seconds,
            "time_elapsed_seconds": round(self.time_elapsed(), 3),
            "time_remaining_seconds": round(self.time_remaining(), 3),
            "is_expired": self.is_expired(),
            "is_cancelled": self._cancelled,
        }


async def run_with_timeout(
    coro: Coroutine[Any, Any, T],
    timeout: float,
    operation: str = "update cycle",
) -> T:
    """Run a coroutine under a hard timeout.

    Args:
        coro: Coroutine to run.
        timeout: Timeout in seconds.
        operation: Name used in the error message.

    Returns:
        Result of the coroutine.

    Raises:
        ScanTimeoutError: If the timeout is exceeded; the coroutine is cancelled.
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(
            f"{operation.capitalize()} force-ended after {timeout}s",
            extra={"timeout_seconds": timeout, "operation": operation}
        )
        raise ScanTimeoutError(timeout, operation=operation)
