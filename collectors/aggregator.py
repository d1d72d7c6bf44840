"""Merging of scan batches into persisted aggregates."""

import asyncio
import logging
from typing import Iterable

from collectors.enrichment import ContractEnricher
from collectors.intervals import reconcile
from collectors.models import ContractAggregate, TxInterval
from core.exceptions import StoreError, StoreWriteError
from core.store import AggregateStore


logger = logging.getLogger(__name__)


class AggregateMerger:
    """Folds one scanner batch into an aggregate and writes it through.

    Merging is idempotent: contracts already in ``interacted_contracts``
    are never enriched again, owned-token entries are only added or
    overwritten, and interval reconciliation is stable under repetition.
    """

    def __init__(
        self,
        enricher: ContractEnricher,
        write_attempts: int = 2,
        write_backoff_seconds: float = 0.5,
    ):
        """Initialize the merger.

        Args:
            enricher: Queries details of newly discovered contracts
            write_attempts: Attempts for persisting one aggregate
            write_backoff_seconds: Delay between persist attempts
        """
        if write_attempts < 1:
            raise ValueError("write_attempts must be at least 1")
        self.enricher = enricher
        self.write_attempts = write_attempts
        self.write_backoff_seconds = write_backoff_seconds

    async def merge_and_persist(
        self,
        key: str,
        current: ContractAggregate,
        new_addresses: Iterable[str],
        new_interval: TxInterval,
        store: AggregateStore,
        network: str,
        owner: str,
    ) -> ContractAggregate:
        """Merge a batch and persist the result.

        Args:
            key: Store key of the aggregate
            current: Aggregate before the batch; not modified
            new_addresses: Contracts found in the batch
            new_interval: Interval scanned so far in this session
            store: Store to write through to
            network: Network of the account, for enrichment
            owner: Account address, for enrichment

        Returns:
            The merged aggregate as persisted

        Raises:
            StoreWriteError: If every persist attempt failed
        """
        updated = current.copy()
        new_addresses = set(new_addresses)
        unseen = new_addresses - updated.interacted_contracts

        if new_addresses:
            updated.interacted_contracts |= new_addresses
        if unseen:
            owned = await self.enricher.enrich(network, owner, unseen)
            updated.owned_tokens.update(owned)

        updated.txs = reconcile(updated.txs, new_interval)
        await self.persist(store, key, updated)

        logger.info(
            f"Merged batch into {key}: {len(unseen)} new contract(s)",
            extra={
                "key": key,
                "batch_size": len(new_addresses),
                "new_contracts": len(unseen),
                "total_contracts": len(updated.interacted_contracts),
                "txs": updated.txs.to_dict(),
            }
        )
        return updated

    async def persist(
        self,
        store: AggregateStore,
        key: str,
        aggregate: ContractAggregate,
    ) -> None:
        """Write an aggregate, retrying failed writes.

        Raises:
            StoreWriteError: If every attempt failed
        """
        last_error: Exception = StoreError("no write attempted")
        for attempt in range(self.write_attempts):
            try:
                await store.save(key, aggregate)
                return
            except StoreError as e:
                last_error = e
                logger.warning(
                    f"Persisting {key} failed (attempt {attempt + 1}/{self.write_attempts})",
                    extra={"key": key, "attempt": attempt + 1, "error": str(e)}
                )
                if attempt < self.write_attempts - 1:
                    await asyncio.sleep(self.write_backoff_seconds)

        raise StoreWriteError(key, self.write_attempts, original_error=last_error)
