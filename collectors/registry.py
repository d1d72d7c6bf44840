"""Registry of well-known contracts per asset class and network."""

import json
import logging
from pathlib import Path
from typing import Any, Optional

import aiohttp

from config.models import RegistryConfig
from core.exceptions import ConfigurationError, NetworkError


logger = logging.getLogger(__name__)


class KnownRegistry:
    """Known contracts, shaped ``{namespace: {network: {contract: metadata}}}``.

    Seeds the first scan of an account so that popular contracts are
    queried even when the account's own history does not mention them, and
    backs the registry listing endpoints.
    """

    def __init__(self, entries: Optional[dict[str, dict[str, dict[str, Any]]]] = None):
        self._entries: dict[str, dict[str, dict[str, Any]]] = {}
        for namespace, networks in (entries or {}).items():
            self.update(namespace, networks)

    def update(self, namespace: str, networks: dict[str, dict[str, Any]]) -> None:
        """Replace the known contracts of one namespace."""
        if not isinstance(networks, dict):
            raise ConfigurationError(
                f"Registry for '{namespace}' must map networks to contracts",
                config_key=f"registry.{namespace}",
            )
        self._entries[namespace] = {
            network: dict(contracts or {})
            for network, contracts in networks.items()
        }

    def addresses(self, namespace: str, network: str) -> set[str]:
        """Contract addresses known for a namespace on a network."""
        return set(self._entries.get(namespace, {}).get(network, {}))

    def listing(self, namespace: str, network: str) -> dict[str, Any]:
        """Known contracts with their metadata."""
        return dict(self._entries.get(namespace, {}).get(network, {}))

    @classmethod
    def load_file(cls, path: str) -> dict[str, Any]:
        """Read one registry document from disk.

        Raises:
            ConfigurationError: If the file is missing or is not valid JSON
        """
        registry_path = Path(path)
        if not registry_path.exists():
            raise ConfigurationError(f"Registry file not found: {path}", config_key="registry")
        with open(registry_path, "r") as f:
            try:
                return json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(
                    f"Invalid JSON in registry file {path}: {e.msg}", config_key="registry"
                )

    @classmethod
    async def load_url(cls, url: str, timeout_seconds: float = 10) -> dict[str, Any]:
        """Fetch one registry document over HTTP.

        Raises:
            NetworkError: If the document cannot be fetched or decoded
        """
        timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    if response.status >= 400:
                        raise NetworkError(
                            service="registry",
                            message=f"HTTP {response.status} for {url}",
                            status_code=response.status,
                        )
                    return await response.json(content_type=None)
        except (aiohttp.ClientError, ValueError) as e:
            raise NetworkError(service="registry", message=str(e), original_error=e)

    @classmethod
    async def from_config(cls, config: RegistryConfig) -> "KnownRegistry":
        """Build the registry from every configured source.

        A source that cannot be loaded is logged and left empty; the
        service can run without a registry.
        """
        registry = cls()
        for namespace, source in config.sources().items():
            try:
                if source.startswith(("http://", "https://")):
                    document = await cls.load_url(source)
                else:
                    document = cls.load_file(source)
                registry.update(namespace, document)
            except (ConfigurationError, NetworkError) as e:
                logger.warning(
                    f"Could not load {namespace} registry from {source}: {e.message}",
                    extra={"namespace": namespace, "source": source}
                )
                continue
            logger.info(
                f"Loaded {namespace} registry",
                extra={
                    "namespace": namespace,
                    "networks": sorted(registry._entries.get(namespace, {})),
                }
            )
        return registry
