"""FastAPI routes for querying and updating interaction aggregates.

Implements the web API layer for the ledger sync service.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from collectors.models import AssetClass, ContractAggregate
from core.exceptions import StoreError, UnknownNetworkError
from core.services import SyncServices

logger = logging.getLogger(__name__)

QUERY_ACTIONS = ("plain", "update", "force_update")

# ==================== Routers ====================

nft_router = APIRouter(prefix="/nfts", tags=["NFTs"])
token_router = APIRouter(prefix="/tokens", tags=["Tokens"])


# ==================== Response Models ====================


class TxIntervalResponse(BaseModel):
    """Range of scanned transaction ids."""

    oldest: Optional[int] = None
    newest: Optional[int] = None


class ScanWindowResponse(BaseModel):
    """Scanned coverage of the ledger."""

    external: TxIntervalResponse
    internal: TxIntervalResponse


class AggregateResponse(BaseModel):
    """Interaction aggregate of one account on one network."""

    interacted_contracts: List[str] = Field(
        default_factory=list, description="Contracts the account interacted with"
    )
    owned_tokens: Dict[str, Any] = Field(
        default_factory=dict, description="Holdings per contract"
    )
    state: str = Field(..., description="Full, Partial or Updating")
    txs: ScanWindowResponse
    last_update_start_time: Optional[float] = None

    @classmethod
    def from_aggregate(cls, aggregate: ContractAggregate) -> "AggregateResponse":
        return cls(**aggregate.to_dict())


class RegistryResponse(BaseModel):
    """Known contracts of one asset class on one network."""

    network: str
    contracts: Dict[str, Any]


# ==================== Service State ====================

_services: Optional[SyncServices] = None


def init_services(services: Optional[SyncServices]) -> None:
    """Install (or clear) the services used by the routes."""
    global _services
    _services = services


def get_services() -> SyncServices:
    """Get the sync services instance."""
    if _services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return _services


def _resolve_network(services: SyncServices, network: str) -> str:
    try:
        return services.validate_network(network)
    except UnknownNetworkError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"status": "Network not found", "network": network},
        )


# ==================== Handlers ====================


async def query_aggregate(
    asset_class: AssetClass,
    network: str,
    address: str,
    action: str,
    services: SyncServices,
) -> AggregateResponse:
    """Serve an aggregate, starting a background update when asked to.

    ``plain`` returns the stored aggregate. ``update`` and ``force_update``
    return immediately: with state Updating when a cycle was started, or
    the cached aggregate when one is already running or ran recently.
    """
    network = _resolve_network(services, network)
    if action not in QUERY_ACTIONS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"status": "Action not found", "action": action},
        )

    controller = services.controller
    try:
        if action == "plain":
            aggregate = await controller.get(asset_class, network, address)
        else:
            aggregate = await controller.request_update(
                asset_class, network, address, force=action == "force_update"
            )
    except StoreError as e:
        logger.error(
            f"Store unavailable while serving {address}@{network}: {e.message}",
            extra={"network": network, "address": address, "action": action}
        )
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Aggregate store unavailable",
        )

    logger.info(
        f"Served {asset_class.value} aggregate for {address}@{network}",
        extra={
            "network": network,
            "address": address,
            "action": action,
            "state": aggregate.state.value,
        }
    )
    return AggregateResponse.from_aggregate(aggregate)


def registry_listing(
    asset_class: AssetClass,
    network: str,
    services: SyncServices,
) -> RegistryResponse:
    network = _resolve_network(services, network)
    return RegistryResponse(
        network=network,
        contracts=services.registry.listing(asset_class.value, network),
    )


# ==================== NFT Endpoints ====================


@nft_router.get("/query/{network}/{address}", response_model=AggregateResponse)
async def query_nfts(
    network: str,
    address: str,
    action: str = Query(default="plain", description="plain, update or force_update"),
    services: SyncServices = Depends(get_services),
) -> AggregateResponse:
    """Get the CW721 contracts an account interacted with and the NFTs it owns."""
    return await query_aggregate(AssetClass.NFT, network, address, action, services)


@nft_router.get("/registry/{network}", response_model=RegistryResponse)
async def nft_registry(
    network: str,
    services: SyncServices = Depends(get_services),
) -> RegistryResponse:
    """List the known CW721 contracts of a network."""
    return registry_listing(AssetClass.NFT, network, services)


# ==================== Token Endpoints ====================


@token_router.get("/query/{network}/{address}", response_model=AggregateResponse)
async def query_tokens(
    network: str,
    address: str,
    action: str = Query(default="plain", description="plain, update or force_update"),
    services: SyncServices = Depends(get_services),
) -> AggregateResponse:
    """Get the CW20 contracts an account interacted with and its balances."""
    return await query_aggregate(AssetClass.TOKEN, network, address, action, services)


@token_router.get("/registry/{network}", response_model=RegistryResponse)
async def token_registry(
    network: str,
    services: SyncServices = Depends(get_services),
) -> RegistryResponse:
    """List the known CW20 tokens of a network."""
    return registry_listing(AssetClass.TOKEN, network, services)
