"""Tracking of which part of the ledger has been scanned.

The feed is newest-first and can only be read from an id downwards, so a
scan that starts at the live edge and is interrupted before reaching the
previously scanned range leaves a hole. ``reconcile`` folds a freshly
scanned interval into a ``ScanWindow`` and opens or narrows that hole;
the phase helpers turn a window into the resume/stop ids of each scan.
"""

from dataclasses import dataclass
from typing import Optional

from collectors.models import ScanWindow, TxInterval


def _max(a: Optional[int], b: Optional[int]) -> Optional[int]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _min(a: Optional[int], b: Optional[int]) -> Optional[int]:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def reconcile(window: ScanWindow, fresh: TxInterval) -> ScanWindow:
    """Fold a freshly scanned interval into a scan window.

    Args:
        window: Current window of the aggregate.
        fresh: Interval covered by the current scan session so far.

    Returns:
        A new ScanWindow; the input is not modified.
    """
    external = window.external
    internal = window.internal

    # A scan that started above everything known and has not come down to
    # the old newest id yet leaves an unscanned gap between the two.
    if (
        fresh.oldest is not None
        and external.newest is not None
        and fresh.oldest > external.newest
    ):
        internal = TxInterval(oldest=external.newest, newest=fresh.oldest)

    # Scanning down into an open gap narrows it from the top; the gap is
    # closed once its newest id falls to or below its oldest.
    if (
        fresh.oldest is not None
        and fresh.newest is not None
        and internal.oldest is not None
        and internal.newest is not None
        and internal.oldest < internal.newest
        and internal.newest > fresh.oldest
        and fresh.newest >= internal.oldest
    ):
        internal = TxInterval(oldest=internal.oldest, newest=fresh.oldest)

    external = TxInterval(
        oldest=_min(external.oldest, fresh.oldest),
        newest=_max(external.newest, fresh.newest),
    )
    return ScanWindow(external=external, internal=internal)


@dataclass(frozen=True)
class ScanPhase:
    """Bounds of one scan: start below ``resume_after_id``, stop at ``stop_at_id``."""

    name: str
    resume_after_id: Optional[int]
    stop_at_id: Optional[int]


def gap_phase(window: ScanWindow) -> Optional[ScanPhase]:
    """Scan that closes the internal gap, if one is open."""
    if not window.has_gap:
        return None
    return ScanPhase(
        name="gap",
        resume_after_id=window.internal.newest,
        stop_at_id=window.internal.oldest,
    )


def forward_phase(window: ScanWindow) -> ScanPhase:
    """Scan from the live edge down to the newest id already known.

    On a never-scanned window there is no stop id and the scan runs until
    the feed is exhausted or the deadline hits.
    """
    return ScanPhase(
        name="forward",
        resume_after_id=None,
        stop_at_id=window.external.newest,
    )


def backward_phase(window: ScanWindow) -> Optional[ScanPhase]:
    """Scan that continues history below the oldest id already known."""
    if window.external.oldest is None:
        return None
    return ScanPhase(
        name="backward",
        resume_after_id=window.external.oldest,
        stop_at_id=None,
    )
