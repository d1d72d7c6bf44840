"""Paginated scanning of an account's transaction feed."""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

from collectors.base import LedgerFeed
from collectors.classifier import InteractionClassifier
from collectors.models import ScanResult, TxInterval
from core.exceptions import NetworkError
from core.timeout_manager import ScanDeadline


logger = logging.getLogger(__name__)

# Receives the contracts found in one page and the interval scanned so far
BatchCallback = Callable[[set[str], TxInterval], Awaitable[None]]


class LedgerScanner:
    """Walks the feed downwards from a resume point until a stop condition.

    The scan ends when the feed is exhausted, when the oldest id seen
    reaches ``stop_at_id``, when the deadline expires or when the deadline
    is cancelled. Pages are fetched strictly one after the other and every
    page that returned transactions is handed to ``on_batch`` before the
    next request, so an interrupted scan keeps its progress.
    """

    def __init__(self, feed: LedgerFeed, classifier: InteractionClassifier):
        self.feed = feed
        self.classifier = classifier

    async def scan(
        self,
        network: str,
        address: str,
        resume_after_id: Optional[int],
        stop_at_id: Optional[int],
        on_batch: BatchCallback,
        deadline: Optional[ScanDeadline] = None,
        registry_addresses: Optional[Iterable[str]] = None,
    ) -> ScanResult:
        """Scan the feed for contracts the account interacted with.

        Args:
            network: Network name
            address: Account address
            resume_after_id: Start below this id; None starts at the live edge
            stop_at_id: Stop once the oldest id seen is at or below this id
            on_batch: Awaited once per non-empty page
            deadline: Shared wall-clock deadline of the update cycle
            registry_addresses: Known contracts folded into the first batch of
                a first-ever scan (both ids None)

        Returns:
            ScanResult with every address reported and the interval covered

        Raises:
            Whatever ``on_batch`` raises; store failures end the scan.
        """
        result = ScanResult()
        offset = resume_after_id or 0
        newest_seen: Optional[int] = None
        last_seen: Optional[int] = None

        pending_seed: set[str] = set()
        if resume_after_id is None and stop_at_id is None and registry_addresses:
            pending_seed = set(registry_addresses)

        if deadline is not None:
            deadline.start()

        log_extra = {
            "network": network,
            "address": address,
            "resume_after_id": resume_after_id,
            "stop_at_id": stop_at_id,
        }

        while True:
            if deadline is not None and deadline.is_cancelled:
                result.was_cancelled = True
                logger.info("Scan cancelled", extra={**log_extra, "offset": offset})
                break
            if deadline is not None and deadline.is_expired():
                result.has_timed_out = True
                logger.info("Scan deadline reached", extra={**log_extra, "offset": offset})
                break

            try:
                page = await asyncio.wait_for(
                    self.feed.fetch_page(network, address, offset),
                    timeout=deadline.time_remaining() if deadline is not None else None,
                )
            except asyncio.TimeoutError:
                result.has_timed_out = True
                logger.info(
                    "Scan deadline reached while fetching a page",
                    extra={**log_extra, "offset": offset}
                )
                break
            except NetworkError as e:
                result.has_error = True
                logger.warning(
                    f"Feed page failed, ending scan: {e.message}",
                    extra={**log_extra, "offset": offset, "error_type": type(e).__name__}
                )
                break

            if not page:
                break

            result.pages_fetched += 1
            ids = [tx.id for tx in page]
            page_oldest, page_newest = min(ids), max(ids)
            newest_seen = page_newest if newest_seen is None else max(newest_seen, page_newest)
            last_seen = page_oldest if last_seen is None else min(last_seen, page_oldest)

            batch = self.classifier.classify_all(page) | pending_seed
            pending_seed = set()
            result.addresses |= batch
            result.interval = TxInterval(oldest=last_seen, newest=newest_seen)

            logger.debug(
                f"Scanned page of {len(page)} transactions, {len(batch)} contracts",
                extra={
                    **log_extra,
                    "offset": offset,
                    "page_oldest": page_oldest,
                    "page_newest": page_newest,
                    "contracts": len(batch),
                }
            )
            await on_batch(batch, result.interval)

            if stop_at_id is not None and last_seen <= stop_at_id:
                break
            if offset and last_seen >= offset:
                # The feed did not move below the requested offset
                result.has_error = True
                logger.warning(
                    "Feed returned no transactions below the offset, ending scan",
                    extra={**log_extra, "offset": offset, "page_oldest": page_oldest}
                )
                break
            offset = last_seen

        if pending_seed:
            result.addresses |= pending_seed
            await on_batch(pending_seed, TxInterval())

        logger.info(
            f"Scan finished after {result.pages_fetched} page(s)",
            extra={**log_extra, **result.to_dict(), "addresses": len(result.addresses)}
        )
        return result
