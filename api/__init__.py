"""API module for the ledger sync service."""

from api.routes import (
    nft_router,
    token_router,
    init_services,
    get_services,
    AggregateResponse,
)

__all__ = [
    "nft_router",
    "token_router",
    "init_services",
    "get_services",
    "AggregateResponse",
]
