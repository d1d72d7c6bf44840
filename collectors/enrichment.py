"""Contract detail queries used to enrich newly discovered contracts."""

import asyncio
import base64
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Iterable, Optional

import aiohttp

from config.models import EnrichmentConfig, NetworkConfig
from core.exceptions import ContractQueryError, UnknownNetworkError


logger = logging.getLogger(__name__)


def _encode_query(msg: dict) -> str:
    return base64.b64encode(json.dumps(msg, separators=(",", ":")).encode()).decode()


class ContractQueryClient:
    """Smart queries against a network's LCD.

    ``terra_legacy`` LCDs expose ``/terra/wasm/v1beta1/contracts/{addr}/store``
    and answer with ``query_result``; ``cosmwasm`` LCDs expose
    ``/cosmwasm/wasm/v1/contract/{addr}/smart/{msg}`` and answer with ``data``.
    """

    def __init__(
        self,
        networks: dict[str, NetworkConfig],
        config: Optional[EnrichmentConfig] = None
    ):
        self.networks = networks
        self.config = config or EnrichmentConfig()
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create an aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    def _request(self, network: str, contract: str, msg: dict) -> tuple[str, dict, str]:
        config = self.networks.get(network)
        if config is None:
            raise UnknownNetworkError(network, known=sorted(self.networks))
        lcd = str(config.lcd_url).rstrip("/")
        encoded = _encode_query(msg)
        if config.query_api == "cosmwasm":
            return f"{lcd}/cosmwasm/wasm/v1/contract/{contract}/smart/{encoded}", {}, "data"
        return (
            f"{lcd}/terra/wasm/v1beta1/contracts/{contract}/store",
            {"query_msg": encoded},
            "query_result",
        )

    async def query(self, network: str, contract: str, msg: dict) -> Any:
        """Run one smart query.

        Args:
            network: Network name
            contract: Contract address
            msg: Query message, e.g. ``{"token_info": {}}``

        Returns:
            The query result payload

        Raises:
            ContractQueryError: On timeout, HTTP error or unexpected body
        """
        url, params, result_key = self._request(network, contract, msg)
        session = await self._get_session()
        try:
            async with session.get(url, params=params) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise ContractQueryError(
                        contract,
                        f"HTTP {response.status}: {body[:200]}",
                        status_code=response.status,
                    )
                data = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise ContractQueryError(
                contract,
                f"timed out after {self.config.request_timeout_seconds}s",
                original_error=e,
            )
        except aiohttp.ClientError as e:
            raise ContractQueryError(contract, str(e), original_error=e)
        except ValueError as e:
            raise ContractQueryError(contract, "invalid JSON body", original_error=e)

        if not isinstance(data, dict) or result_key not in data:
            raise ContractQueryError(contract, f"response has no '{result_key}' field")
        return data[result_key]


class ContractEnricher(ABC):
    """Fetches owned-asset details for a set of contracts.

    Every remote query goes through one semaphore per ``enrich`` call, so
    at most ``max_concurrent_queries`` requests are in flight per batch.
    """

    def __init__(self, client: ContractQueryClient, config: Optional[EnrichmentConfig] = None):
        self.client = client
        self.config = config or EnrichmentConfig()

    async def enrich(
        self,
        network: str,
        owner: str,
        contracts: Iterable[str],
    ) -> dict[str, Any]:
        """Query details for each contract.

        Args:
            network: Network name
            owner: Account whose holdings are queried
            contracts: Contract addresses to enrich

        Returns:
            ``{contract: detail}`` for every contract whose primary query
            succeeded; failed contracts are logged and left out.
        """
        contracts = sorted(set(contracts))
        if not contracts:
            return {}

        semaphore = asyncio.Semaphore(self.config.max_concurrent_queries)
        details = await asyncio.gather(
            *(self._enrich_one(network, owner, contract, semaphore) for contract in contracts)
        )
        enriched = {
            contract: detail
            for contract, detail in zip(contracts, details)
            if detail is not None
        }
        logger.info(
            f"Enriched {len(enriched)}/{len(contracts)} contracts",
            extra={"network": network, "owner": owner, "enricher": type(self).__name__}
        )
        return enriched

    async def _query(
        self,
        semaphore: asyncio.Semaphore,
        network: str,
        contract: str,
        msg: dict,
    ) -> Any:
        async with semaphore:
            return await self.client.query(network, contract, msg)

    @abstractmethod
    async def _enrich_one(
        self,
        network: str,
        owner: str,
        contract: str,
        semaphore: asyncio.Semaphore,
    ) -> Optional[dict]:
        """Return the detail of one contract, or None if it could not be queried."""
        pass


class NftEnricher(ContractEnricher):
    """Lists the NFTs an account owns in each CW721 contract."""

    async def _owned_token_ids(
        self,
        network: str,
        owner: str,
        contract: str,
        semaphore: asyncio.Semaphore,
    ) -> list[str]:
        token_ids: list[str] = []
        start_after: Optional[str] = None
        while True:
            query: dict[str, Any] = {"owner": owner, "limit": self.config.tokens_page_limit}
            if start_after is not None:
                query["start_after"] = start_after
            result = await self._query(semaphore, network, contract, {"tokens": query})
            page = result.get("tokens") if isinstance(result, dict) else None
            if not isinstance(page, list):
                return token_ids
            new_ids = [token_id for token_id in page if token_id not in token_ids]
            if not new_ids:
                return token_ids
            token_ids.extend(new_ids)
            start_after = new_ids[-1]

    async def _nft_info(
        self,
        network: str,
        contract: str,
        token_id: str,
        semaphore: asyncio.Semaphore,
    ) -> dict:
        try:
            info = await self._query(
                semaphore, network, contract, {"nft_info": {"token_id": token_id}}
            )
        except ContractQueryError as e:
            logger.warning(
                f"nft_info failed for {contract}#{token_id}: {e.message}",
                extra={"network": network, "contract": contract, "token_id": token_id}
            )
            return {}
        return info if isinstance(info, dict) else {}

    async def _enrich_one(
        self,
        network: str,
        owner: str,
        contract: str,
        semaphore: asyncio.Semaphore,
    ) -> Optional[dict]:
        try:
            token_ids = await self._owned_token_ids(network, owner, contract, semaphore)
        except ContractQueryError as e:
            logger.warning(
                f"Could not list tokens of {contract}: {e.message}",
                extra={"network": network, "contract": contract, "owner": owner}
            )
            return None

        infos = await asyncio.gather(
            *(self._nft_info(network, contract, token_id, semaphore) for token_id in token_ids)
        )
        return {
            "contract": contract,
            "tokens": [
                {"token_id": token_id, "nft_info": info}
                for token_id, info in zip(token_ids, infos)
            ],
        }


class TokenEnricher(ContractEnricher):
    """Reads an account's balance and the token metadata of each CW20 contract."""

    async def _enrich_one(
        self,
        network: str,
        owner: str,
        contract: str,
        semaphore: asyncio.Semaphore,
    ) -> Optional[dict]:
        balance, token_info = await asyncio.gather(
            self._query(semaphore, network, contract, {"balance": {"address": owner}}),
            self._query(semaphore, network, contract, {"token_info": {}}),
            return_exceptions=True,
        )
        if isinstance(balance, BaseException):
            if not isinstance(balance, ContractQueryError):
                raise balance
            logger.warning(
                f"Balance query failed for {contract}: {balance.message}",
                extra={"network": network, "contract": contract, "owner": owner}
            )
            return None
        if isinstance(token_info, BaseException):
            if not isinstance(token_info, ContractQueryError):
                raise token_info
            token_info = {}

        return {
            "contract": contract,
            "balance": balance.get("balance") if isinstance(balance, dict) else None,
            "token_info": token_info if isinstance(token_info, dict) else {},
        }
