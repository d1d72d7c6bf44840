"""Base class for ledger feed clients."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import aiohttp

from config.models import LedgerConfig, NetworkConfig
from collectors.models import TransactionRecord
from core.exceptions import FeedTimeoutError, NetworkError, UnknownNetworkError


# Use standard logging to avoid circular imports
# The logging will be configured by core.logging when the app starts
logger = logging.getLogger(__name__)


class LedgerFeed(ABC):
    """Abstract base class for "transactions by account" feeds.

    A feed returns pages of transactions, newest first, below a given
    offset id. Each request is a single attempt with its own network
    timeout; retry and termination policy belong to the scanner.
    """

    name = "ledger-feed"

    def __init__(
        self,
        networks: dict[str, NetworkConfig],
        ledger_config: Optional[LedgerConfig] = None
    ):
        """Initialize the feed.

        Args:
            networks: Network endpoints by name
            ledger_config: Paging and timeout settings (uses defaults if not provided)
        """
        self.networks = networks
        self.ledger_config = ledger_config or LedgerConfig()
        self._session: Optional[aiohttp.ClientSession] = None
        self._request_count = 0

    @property
    def page_limit(self) -> int:
        return self.ledger_config.page_limit

    @property
    def request_count(self) -> int:
        """Number of page requests issued so far."""
        return self._request_count

    def get_network(self, network: str) -> NetworkConfig:
        """Resolve a network name to its endpoints.

        Raises:
            UnknownNetworkError: If the network is not configured
        """
        config = self.networks.get(network)
        if config is None:
            raise UnknownNetworkError(network, known=sorted(self.networks))
        return config

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create an aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(
                total=self.ledger_config.request_timeout_seconds
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "LedgerFeed":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def _get_json(
        self,
        url: str,
        params: dict[str, Any],
    ) -> dict:
        """Issue one GET request and decode the JSON body.

        Args:
            url: Endpoint URL
            params: Query parameters

        Returns:
            The decoded JSON object

        Raises:
            FeedTimeoutError: If the request exceeds its network timeout
            NetworkError: On connection failures, HTTP errors or non-JSON bodies
        """
        session = await self._get_session()
        self._request_count += 1
        log_extra = {"feed": self.name, "url": url, "params": params}

        try:
            async with session.get(url, params=params) as response:
                if response.status >= 400:
                    body = await response.text()
                    logger.warning(
                        f"HTTP {response.status} from {self.name}",
                        extra={**log_extra, "status": response.status, "body": body[:200]}
                    )
                    raise NetworkError(
                        service=self.name,
                        message=f"HTTP {response.status}",
                        status_code=response.status,
                    )
                data = await response.json(content_type=None)
        except asyncio.TimeoutError:
            raise FeedTimeoutError(
                service=self.name,
                timeout_seconds=self.ledger_config.request_timeout_seconds,
            )
        except aiohttp.ClientError as e:
            raise NetworkError(service=self.name, message=str(e), original_error=e)
        except ValueError as e:
            raise NetworkError(service=self.name, message="invalid JSON body", original_error=e)

        if not isinstance(data, dict):
            raise NetworkError(
                service=self.name,
                message=f"expected a JSON object, got {type(data).__name__}",
            )
        return data

    @abstractmethod
    async def fetch_page(
        self,
        network: str,
        address: str,
        offset: int,
    ) -> list[TransactionRecord]:
        """Fetch one page of an account's transactions, newest first.

        Args:
            network: Network name
            address: Account address
            offset: Return transactions with ids below this one (0 = live edge)

        Returns:
            Decoded transactions; an empty list means the feed is exhausted.
            Malformed records are skipped.

        Raises:
            NetworkError: If the page could not be fetched
        """
        pass
