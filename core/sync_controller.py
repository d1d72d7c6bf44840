"""Update cycles for interaction aggregates.

A cycle for one key goes Idle -> Locked -> Scanning -> Finalizing -> Idle:

1. Take the key's update lock; on contention, or when the previous update
   started less than the idle interval ago, serve the cached aggregate.
2. Record the start time and persist the aggregate with state Updating.
3. Scan: close the internal gap, then read from the live edge down to the
   newest known id, then (when the previous cycle did not finish) continue
   below the oldest known id. Every batch is merged and written through.
   A gap left open ends the scanning for this cycle.
4. Persist state Full, or Partial if any scan timed out or failed or the
   cycle raised, and release the lock.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from collectors.aggregator import AggregateMerger
from collectors.intervals import ScanPhase, backward_phase, forward_phase, gap_phase
from collectors.models import (
    AggregateState,
    AssetClass,
    ContractAggregate,
    TxInterval,
    aggregate_key,
)
from collectors.registry import KnownRegistry
from collectors.scanner import LedgerScanner
from config.models import SyncConfig
from core.exceptions import LedgerSyncError, ScanTimeoutError, StoreError
from core.logging import LogContext
from core.store import AggregateStore, LockHandle, LockManager
from core.timeout_manager import ScanDeadline, run_with_timeout


logger = logging.getLogger(__name__)


class UpdateStatus(str, Enum):
    """Why an update request ended the way it did."""
    COMPLETED = "completed"
    LOCKED = "locked"
    IDLE = "idle"


@dataclass
class AssetPipeline:
    """Scanner and merger serving one asset class."""

    scanner: LedgerScanner
    merger: AggregateMerger


@dataclass
class UpdateCycle:
    """Mutable state of one running update cycle."""

    key: str
    asset_class: AssetClass
    network: str
    address: str
    lock: LockHandle
    aggregate: ContractAggregate
    was_full: bool
    timed_out: bool = False
    errored: bool = False
    phases: list[dict[str, Any]] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not (self.timed_out or self.errored)


@dataclass
class UpdateOutcome:
    """Result of ``SyncController.update``."""

    key: str
    status: UpdateStatus
    aggregate: ContractAggregate
    phases: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "status": self.status.value,
            "aggregate": self.aggregate.to_dict(),
            "phases": self.phases,
        }


class SyncController:
    """Runs update cycles under per-key locks.

    Readers never take the lock; they see whatever the last write left,
    including intermediate Updating snapshots.
    """

    def __init__(
        self,
        store: AggregateStore,
        locks: LockManager,
        pipelines: dict[AssetClass, AssetPipeline],
        registry: Optional[KnownRegistry] = None,
        config: Optional[SyncConfig] = None,
        clock: Callable[[], float] = time.time,
        deadline_clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the controller.

        Args:
            store: Aggregate store
            locks: Lock manager for per-key update locks
            pipelines: Scanner and merger per asset class
            registry: Known contracts used to seed first scans
            config: Cycle timing (uses defaults if not provided)
            clock: Wall clock in epoch seconds, replaceable in tests
            deadline_clock: Monotonic clock driving the scan deadline
        """
        self.store = store
        self.locks = locks
        self.pipelines = pipelines
        self.registry = registry or KnownRegistry()
        self.config = config or SyncConfig()
        self._clock = clock
        self._deadline_clock = deadline_clock
        self._tasks: set[asyncio.Task] = set()

    def _pipeline(self, asset_class: AssetClass) -> AssetPipeline:
        pipeline = self.pipelines.get(AssetClass(asset_class))
        if pipeline is None:
            raise ValueError(f"No pipeline configured for {asset_class}")
        return pipeline

    async def get(
        self,
        asset_class: AssetClass,
        network: str,
        address: str,
    ) -> ContractAggregate:
        """Plain read; a key never written yields a default aggregate that is not persisted."""
        stored = await self.store.get(aggregate_key(asset_class, network, address))
        return stored if stored is not None else ContractAggregate.default()

    async def begin(
        self,
        asset_class: AssetClass,
        network: str,
        address: str,
        force: bool = False,
    ) -> tuple[Optional[UpdateCycle], UpdateStatus, ContractAggregate]:
        """Try to start a cycle.

        Returns:
            ``(cycle, status, snapshot)``. ``cycle`` is None when the lock is
            held elsewhere or the idle interval has not elapsed, in which
            case ``snapshot`` is the cached aggregate. Otherwise the caller
            owns the lock and must hand the cycle to ``run_cycle``.
        """
        asset_class = AssetClass(asset_class)
        self._pipeline(asset_class)
        key = aggregate_key(asset_class, network, address)

        handle = await self.locks.acquire(key, self.config.lock_ttl_seconds)
        if handle is None:
            logger.info(
                f"Update of {key} already running, serving cached aggregate",
                extra={"key": key, "reason": UpdateStatus.LOCKED.value}
            )
            return None, UpdateStatus.LOCKED, await self.get(asset_class, network, address)

        try:
            now = self._clock()
            last_start = await self.store.get_last_update_start(key)
            if last_start is not None and now < last_start + self.config.idle_update_interval_seconds:
                await self._release(handle)
                logger.info(
                    f"Update of {key} started {now - last_start:.1f}s ago, serving cached aggregate",
                    extra={"key": key, "reason": UpdateStatus.IDLE.value}
                )
                return None, UpdateStatus.IDLE, await self.get(asset_class, network, address)

            stored = await self.store.get(key)
            current = ContractAggregate.default() if force or stored is None else stored
            was_full = current.state == AggregateState.FULL

            current.state = AggregateState.UPDATING
            current.last_update_start_time = now
            await self.store.set_last_update_start(key, now)
            await self._pipeline(asset_class).merger.persist(self.store, key, current)
        except BaseException:
            await self._release(handle)
            raise

        logger.info(
            f"Starting update of {key}",
            extra={"key": key, "force": force, "was_full": was_full}
        )
        cycle = UpdateCycle(
            key=key,
            asset_class=asset_class,
            network=network,
            address=address,
            lock=handle,
            aggregate=current,
            was_full=was_full,
        )
        return cycle, UpdateStatus.COMPLETED, current.copy()

    async def run_cycle(self, cycle: UpdateCycle) -> ContractAggregate:
        """Scan, finalize and release the lock of a started cycle.

        Returns:
            The finalized aggregate (Full or Partial)
        """
        with LogContext(sync_key=cycle.key):
            merger = self._pipeline(cycle.asset_class).merger
            try:
                deadline = ScanDeadline(self.config.scan_timeout_seconds, clock=self._deadline_clock)
                try:
                    await run_with_timeout(
                        self._run_phases(cycle, deadline),
                        self.config.force_end_timeout_seconds,
                        operation=f"update of {cycle.key}",
                    )
                except ScanTimeoutError:
                    cycle.timed_out = True
                except StoreError as e:
                    cycle.errored = True
                    logger.error(
                        f"Store failure during update of {cycle.key}: {e.message}",
                        extra={"key": cycle.key, "error_type": type(e).__name__}
                    )
                except Exception as e:
                    # The lock is only released once Updating has been replaced.
                    cycle.errored = True
                    logger.error(
                        f"Update of {cycle.key} failed: {e}",
                        exc_info=True,
                        extra={"key": cycle.key, "error_type": type(e).__name__}
                    )

                final = cycle.aggregate.copy()
                final.state = AggregateState.FULL if cycle.is_complete else AggregateState.PARTIAL
                try:
                    await merger.persist(self.store, cycle.key, final)
                except StoreError as e:
                    logger.error(
                        f"Could not persist final state of {cycle.key}: {e.message}",
                        extra={"key": cycle.key, "state": final.state.value}
                    )
                cycle.aggregate = final

                logger.info(
                    f"Finished update of {cycle.key} as {final.state.value}",
                    extra={
                        "key": cycle.key,
                        "state": final.state.value,
                        "timed_out": cycle.timed_out,
                        "errored": cycle.errored,
                        "contracts": len(final.interacted_contracts),
                        "phases": cycle.phases,
                    }
                )
                return final
            finally:
                await self._release(cycle.lock)

    async def _run_phases(self, cycle: UpdateCycle, deadline: ScanDeadline) -> None:
        pipeline = self._pipeline(cycle.asset_class)

        async def on_batch(addresses: set[str], interval: TxInterval) -> None:
            cycle.aggregate = await pipeline.merger.merge_and_persist(
                cycle.key,
                cycle.aggregate,
                addresses,
                interval,
                self.store,
                network=cycle.network,
                owner=cycle.address,
            )

        planners = [gap_phase, forward_phase]
        if not cycle.was_full:
            planners.append(backward_phase)

        for planner in planners:
            phase: Optional[ScanPhase] = planner(cycle.aggregate.txs)
            if phase is None:
                continue
            if deadline.is_expired():
                cycle.timed_out = True
                break

            seed = None
            if phase.resume_after_id is None and phase.stop_at_id is None:
                seed = self.registry.addresses(cycle.asset_class.value, cycle.network)

            result = await pipeline.scanner.scan(
                cycle.network,
                cycle.address,
                phase.resume_after_id,
                phase.stop_at_id,
                on_batch,
                deadline=deadline,
                registry_addresses=seed,
            )
            cycle.phases.append({"phase": phase.name, **result.to_dict(), "addresses": len(result.addresses)})
            cycle.timed_out = cycle.timed_out or result.has_timed_out
            cycle.errored = cycle.errored or result.has_error
            if result.has_timed_out or result.was_cancelled:
                cycle.timed_out = True
                break
            if phase.name == "gap" and cycle.aggregate.txs.has_gap:
                # Scanning above an open gap would open a new one over it and
                # lose track of the ids still missing below.
                cycle.errored = True
                break

    async def _release(self, handle: LockHandle) -> None:
        try:
            released = await self.locks.release(handle)
        except StoreError as e:
            logger.error(
                f"Failed to release update lock of {handle.key}: {e.message}",
                extra={"key": handle.key}
            )
            return
        if not released:
            logger.warning(
                f"Update lock of {handle.key} had expired before release",
                extra={"key": handle.key}
            )

    async def update(
        self,
        asset_class: AssetClass,
        network: str,
        address: str,
        force: bool = False,
    ) -> UpdateOutcome:
        """Run a whole update cycle and wait for it.

        Args:
            asset_class: Asset class of the aggregate
            network: Network name
            address: Account address
            force: Discard the stored aggregate and rescan from scratch

        Returns:
            UpdateOutcome with the finalized or cached aggregate
        """
        cycle, status, snapshot = await self.begin(asset_class, network, address, force=force)
        key = aggregate_key(asset_class, network, address)
        if cycle is None:
            return UpdateOutcome(key=key, status=status, aggregate=snapshot)
        aggregate = await self.run_cycle(cycle)
        return UpdateOutcome(
            key=key, status=UpdateStatus.COMPLETED, aggregate=aggregate, phases=cycle.phases
        )

    async def request_update(
        self,
        asset_class: AssetClass,
        network: str,
        address: str,
        force: bool = False,
    ) -> ContractAggregate:
        """Start an update in the background and return immediately.

        Returns:
            The Updating snapshot when a cycle was started, the cached
            aggregate otherwise. Store failures while starting are logged
            and answered with the best aggregate available.
        """
        try:
            cycle, _, snapshot = await self.begin(asset_class, network, address, force=force)
        except LedgerSyncError as e:
            logger.error(
                f"Could not start update: {e.message}",
                extra={"network": network, "address": address, "error_type": type(e).__name__}
            )
            try:
                return await self.get(asset_class, network, address)
            except LedgerSyncError:
                return ContractAggregate.default()

        if cycle is not None:
            task = asyncio.create_task(self.run_cycle(cycle))
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)
        return snapshot

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Background update failed: {error}",
                exc_info=(type(error), error, error.__traceback__)
            )

    @property
    def running_updates(self) -> int:
        return len(self._tasks)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Wait briefly for background cycles, then cancel the rest."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info(
            "Background updates stopped",
            extra={"finished": len(done), "cancelled": len(pending)}
        )
