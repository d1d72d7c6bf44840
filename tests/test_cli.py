"""Tests for the command line entry point."""

from unittest.mock import AsyncMock, patch

import pytest

import cli
from config.models import Config
from core.exceptions import StoreWriteError


def _results(state: str) -> dict:
    return {
        "key": "nft:terra1a@mainnet",
        "status": "completed",
        "aggregate": {
            "interacted_contracts": ["terra1nft"],
            "owned_tokens": {},
            "state": state,
            "txs": {
                "external": {"oldest": 1, "newest": 6},
                "internal": {"oldest": None, "newest": None},
            },
            "last_update_start_time": 1.0,
        },
        "phases": [{"phase": "forward", "pages_fetched": 3, "has_error": state == "Partial"}],
    }


class TestParseArgs:
    """Tests for parse_args."""

    def test_defaults(self):
        args = cli.parse_args(["mainnet", "terra1a"])

        assert args.network == "mainnet"
        assert args.address == "terra1a"
        assert args.namespace == "nft"
        assert not args.force
        assert not args.plain
        assert args.config is None

    def test_token_namespace_force(self):
        args = cli.parse_args(["testnet", "terra1a", "--namespace", "token", "--force"])
        assert args.namespace == "token"
        assert args.force

    def test_force_and_plain_exclusive(self):
        with pytest.raises(SystemExit):
            cli.parse_args(["mainnet", "terra1a", "--force", "--plain"])

    def test_unknown_namespace(self):
        with pytest.raises(SystemExit):
            cli.parse_args(["mainnet", "terra1a", "--namespace", "cw1155"])


class TestMain:
    """Tests for main exit codes."""

    @pytest.fixture(autouse=True)
    def quiet_logging(self):
        with patch("cli.configure_logging"):
            yield

    def test_full_result(self, capsys):
        with patch("cli.load_configuration", return_value=Config()), \
             patch("cli.run_update", new=AsyncMock(return_value=_results("Full"))):
            assert cli.main(["mainnet", "terra1a"]) == 0

        assert "State: Full" in capsys.readouterr().out

    def test_partial_result(self):
        with patch("cli.load_configuration", return_value=Config()), \
             patch("cli.run_update", new=AsyncMock(return_value=_results("Partial"))):
            assert cli.main(["mainnet", "terra1a", "--json-output"]) == 2

    def test_missing_config_file(self):
        with patch("cli.load_configuration", side_effect=FileNotFoundError("config.json")):
            assert cli.main(["mainnet", "terra1a", "--config", "config.json"]) == 1

    def test_sync_error(self, capsys):
        error = StoreWriteError("nft:terra1a@mainnet", attempts=2)
        with patch("cli.load_configuration", return_value=Config()), \
             patch("cli.run_update", new=AsyncMock(side_effect=error)):
            assert cli.main(["mainnet", "terra1a"]) == 1

        assert "Failed to persist" in capsys.readouterr().err
