"""Tests for the known-contract registry."""

import json

import pytest

from collectors.registry import KnownRegistry
from config.models import RegistryConfig
from core.exceptions import ConfigurationError


NFT_DOCUMENT = {
    "mainnet": {
        "terra1knowhere": {"name": "Knowhere", "symbol": "KNOW"},
        "terra1galactic": {"name": "Galactic Punks", "symbol": "GP"},
    },
    "testnet": {},
}


class TestKnownRegistry:
    """Tests for lookups."""

    def test_addresses_and_listing(self):
        registry = KnownRegistry({"nft": NFT_DOCUMENT})

        assert registry.addresses("nft", "mainnet") == {"terra1knowhere", "terra1galactic"}
        assert registry.listing("nft", "mainnet")["terra1galactic"]["symbol"] == "GP"

    def test_unknown_namespace_or_network(self):
        registry = KnownRegistry({"nft": NFT_DOCUMENT})

        assert registry.addresses("token", "mainnet") == set()
        assert registry.addresses("nft", "localterra") == set()
        assert registry.listing("nft", "testnet") == {}

    def test_listing_is_a_copy(self):
        registry = KnownRegistry({"nft": NFT_DOCUMENT})
        registry.listing("nft", "mainnet").clear()
        assert len(registry.listing("nft", "mainnet")) == 2

    def test_invalid_document(self):
        with pytest.raises(ConfigurationError):
            KnownRegistry({"nft": ["terra1a"]})


class TestLoading:
    """Tests for loading registry documents."""

    def test_load_file(self, tmp_path):
        path = tmp_path / "cw721.json"
        path.write_text(json.dumps(NFT_DOCUMENT))

        assert KnownRegistry.load_file(str(path)) == NFT_DOCUMENT

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            KnownRegistry.load_file(str(tmp_path / "nope.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{")
        with pytest.raises(ConfigurationError, match="Invalid JSON"):
            KnownRegistry.load_file(str(path))

    @pytest.mark.asyncio
    async def test_from_config_skips_broken_sources(self, tmp_path):
        """A source that cannot be read leaves its namespace empty."""
        path = tmp_path / "cw721.json"
        path.write_text(json.dumps(NFT_DOCUMENT))
        config = RegistryConfig(nft=str(path), token=str(tmp_path / "missing.json"))

        registry = await KnownRegistry.from_config(config)

        assert len(registry.addresses("nft", "mainnet")) == 2
        assert registry.addresses("token", "mainnet") == set()

    @pytest.mark.asyncio
    async def test_from_empty_config(self):
        registry = await KnownRegistry.from_config(RegistryConfig())
        assert registry.addresses("nft", "mainnet") == set()
