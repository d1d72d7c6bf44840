"""Wiring of the sync service components from configuration."""

import logging
from dataclasses import dataclass
from typing import Optional

from collectors.aggregator import AggregateMerger
from collectors.base import LedgerFeed
from collectors.classifier import InteractionClassifier
from collectors.enrichment import ContractQueryClient, NftEnricher, TokenEnricher
from collectors.fcd import FcdFeed
from collectors.models import AssetClass
from collectors.registry import KnownRegistry
from collectors.scanner import LedgerScanner
from config.models import Config
from core.exceptions import UnknownNetworkError
from core.store import AggregateStore, LockManager, build_store
from core.sync_controller import AssetPipeline, SyncController


logger = logging.getLogger(__name__)


@dataclass
class SyncServices:
    """Everything a surface (HTTP app or CLI) needs to serve aggregates."""

    config: Config
    store: AggregateStore
    locks: LockManager
    feed: LedgerFeed
    query_client: ContractQueryClient
    registry: KnownRegistry
    controller: SyncController

    def validate_network(self, network: str) -> str:
        """Return the configured network name for a name or chain id.

        Raises:
            UnknownNetworkError: If neither matches a configured network
        """
        name = self.config.resolve_network(network)
        if name is None:
            raise UnknownNetworkError(network, known=sorted(self.config.networks))
        return name

    async def close(self) -> None:
        await self.controller.shutdown()
        await self.feed.close()
        await self.query_client.close()
        await self.store.close()


async def build_services(
    config: Config,
    store: Optional[AggregateStore] = None,
    locks: Optional[LockManager] = None,
    feed: Optional[LedgerFeed] = None,
    query_client: Optional[ContractQueryClient] = None,
    registry: Optional[KnownRegistry] = None,
) -> SyncServices:
    """Build the service graph, using any component passed in as-is.

    Args:
        config: Loaded configuration
        store: Aggregate store (built from ``config.store`` if omitted)
        locks: Lock manager (built with the store if omitted)
        feed: Ledger feed (FCD if omitted)
        query_client: Contract query client (LCD if omitted)
        registry: Known registry (loaded from ``config.registry`` if omitted)

    Returns:
        SyncServices ready to serve requests
    """
    if store is None or locks is None:
        built_store, built_locks = build_store(config.store)
        store = store or built_store
        locks = locks or built_locks

    feed = feed or FcdFeed(config.networks, config.ledger)
    query_client = query_client or ContractQueryClient(config.networks, config.enrichment)
    if registry is None:
        registry = await KnownRegistry.from_config(config.registry)

    enrichers = {
        AssetClass.NFT: NftEnricher(query_client, config.enrichment),
        AssetClass.TOKEN: TokenEnricher(query_client, config.enrichment),
    }
    pipelines = {
        asset_class: AssetPipeline(
            scanner=LedgerScanner(feed, InteractionClassifier(config.classifier[asset_class.value])),
            merger=AggregateMerger(
                enricher,
                write_attempts=config.store.write_attempts,
                write_backoff_seconds=config.store.write_backoff_seconds,
            ),
        )
        for asset_class, enricher in enrichers.items()
    }

    controller = SyncController(
        store=store,
        locks=locks,
        pipelines=pipelines,
        registry=registry,
        config=config.sync,
    )
    logger.info(
        "Sync services initialized",
        extra={
            "networks": sorted(config.networks),
            "store_backend": config.store.backend,
        }
    )
    return SyncServices(
        config=config,
        store=store,
        locks=locks,
        feed=feed,
        query_client=query_client,
        registry=registry,
        controller=controller,
    )
