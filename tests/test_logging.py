"""Tests for structured logging with the sync_key correlation id."""

import json
import logging

import pytest

from core.logging import (
    SyncKeyFilter,
    LedgerJsonFormatter,
    LogContext,
    KeyedTextFormatter,
    get_sync_key,
)


def _record(message: str = "merged batch", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="collectors.aggregator",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def json_formatter():
    return LedgerJsonFormatter(
        "%(asctime)s %(name)s %(levelname)s %(message)s", service_name="ledger-sync-test"
    )


class TestLogContext:
    """Tests for LogContext."""

    def test_sets_and_restores(self):
        assert get_sync_key() is None
        with LogContext(sync_key="nft:terra1a@mainnet"):
            assert get_sync_key() == "nft:terra1a@mainnet"
            with LogContext(sync_key="token:terra1a@mainnet"):
                assert get_sync_key() == "token:terra1a@mainnet"
            assert get_sync_key() == "nft:terra1a@mainnet"
        assert get_sync_key() is None


class TestJsonFormatter:
    """Tests for LedgerJsonFormatter."""

    def test_includes_sync_key_from_context(self, json_formatter):
        record = _record(key="nft:terra1a@mainnet", new_contracts=2)
        with LogContext(sync_key="nft:terra1a@mainnet"):
            SyncKeyFilter().filter(record)

        data = json.loads(json_formatter.format(record))

        assert data["sync_key"] == "nft:terra1a@mainnet"
        assert data["message"] == "merged batch"
        assert data["level"] == "INFO"
        assert data["logger"] == "collectors.aggregator"
        assert data["service"] == "ledger-sync-test"
        assert data["new_contracts"] == 2

    def test_omits_sync_key_outside_cycle(self, json_formatter):
        record = _record()
        SyncKeyFilter().filter(record)

        data = json.loads(json_formatter.format(record))

        assert "sync_key" not in data


class TestTextFormatter:
    """Tests for KeyedTextFormatter."""

    def test_prefixes_sync_key(self):
        formatter = KeyedTextFormatter("%(levelname)s %(message)s")
        record = _record()
        with LogContext(sync_key="nft:terra1a@mainnet"):
            SyncKeyFilter().filter(record)

        assert formatter.format(record) == "INFO [nft:terra1a@mainnet] merged batch"
        assert record.msg == "merged batch"
