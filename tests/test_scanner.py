"""Tests for the paginated ledger scanner."""

import pytest

from collectors.classifier import InteractionClassifier
from collectors.models import TxInterval
from collectors.scanner import LedgerScanner
from config.models import Config
from core.timeout_manager import ScanDeadline

from fakes import C1, C2, OWNER, FakeClock, FakeFeed, make_tx, nft_ledger


class BatchRecorder:
    """Collects every on_batch call."""

    def __init__(self):
        self.batches: list[tuple[set[str], TxInterval]] = []

    async def __call__(self, addresses: set[str], interval: TxInterval) -> None:
        self.batches.append((set(addresses), interval))


@pytest.fixture
def classifier():
    return InteractionClassifier(Config().classifier["nft"])


@pytest.fixture
def feed():
    """Three pages of two transactions: (6, 5), (4, 3), (2, 1)."""
    return FakeFeed(nft_ledger(), page_limit=2)


@pytest.fixture
def scanner(feed, classifier):
    return LedgerScanner(feed, classifier)


class TestFullScan:
    """Scans that run until the feed is exhausted or the stop id is reached."""

    @pytest.mark.asyncio
    async def test_scan_whole_history(self, scanner, feed):
        recorder = BatchRecorder()

        result = await scanner.scan("mainnet", OWNER, None, None, recorder)

        assert result.addresses == {C1, C2}
        assert result.interval == TxInterval(oldest=1, newest=6)
        assert result.pages_fetched == 3
        assert result.is_complete
        assert feed.offsets == [0, 5, 3, 1]

    @pytest.mark.asyncio
    async def test_batch_per_non_empty_page(self, scanner):
        """Every page is reported, with the interval covered so far."""
        recorder = BatchRecorder()

        await scanner.scan("mainnet", OWNER, None, None, recorder)

        assert recorder.batches == [
            (set(), TxInterval(oldest=5, newest=6)),
            ({C1}, TxInterval(oldest=3, newest=6)),
            ({C2}, TxInterval(oldest=1, newest=6)),
        ]

    @pytest.mark.asyncio
    async def test_stop_at_id(self, scanner, feed):
        """The scan stops once the oldest id seen reaches the stop id."""
        recorder = BatchRecorder()

        result = await scanner.scan("mainnet", OWNER, None, 3, recorder)

        assert result.addresses == {C1}
        assert result.interval == TxInterval(oldest=3, newest=6)
        assert result.is_complete
        assert feed.offsets == [0, 5]

    @pytest.mark.asyncio
    async def test_resume_after_id(self, scanner, feed):
        recorder = BatchRecorder()

        result = await scanner.scan("mainnet", OWNER, 3, None, recorder)

        assert feed.offsets[0] == 3
        assert result.addresses == {C2}
        assert result.interval == TxInterval(oldest=1, newest=2)

    @pytest.mark.asyncio
    async def test_empty_feed(self, classifier):
        recorder = BatchRecorder()
        scanner = LedgerScanner(FakeFeed([]), classifier)

        result = await scanner.scan("mainnet", OWNER, None, None, recorder)

        assert result.pages_fetched == 0
        assert result.interval.is_empty
        assert result.is_complete
        assert recorder.batches == []


class TestInterruptedScan:
    """Scans ended by the deadline, cancellation or feed errors."""

    @pytest.mark.asyncio
    async def test_deadline_expires_after_first_page(self, scanner, feed):
        """Progress up to the deadline is kept and reported."""
        clock = FakeClock(now=0.0)
        deadline = ScanDeadline(10, clock=clock)
        feed.on_fetch = lambda offset: clock.advance(11)
        recorder = BatchRecorder()

        result = await scanner.scan("mainnet", OWNER, None, None, recorder, deadline=deadline)

        assert result.has_timed_out
        assert result.pages_fetched == 1
        assert result.interval == TxInterval(oldest=5, newest=6)
        assert len(recorder.batches) == 1

    @pytest.mark.asyncio
    async def test_expired_deadline_fetches_nothing(self, scanner, feed):
        clock = FakeClock(now=0.0)
        deadline = ScanDeadline(10, clock=clock).start()
        clock.advance(30)

        result = await scanner.scan("mainnet", OWNER, None, None, BatchRecorder(), deadline=deadline)

        assert result.has_timed_out
        assert feed.offsets == []

    @pytest.mark.asyncio
    async def test_cancellation_between_pages(self, scanner):
        deadline = ScanDeadline(60)
        batches = []

        async def cancel_after_first(addresses, interval):
            batches.append(addresses)
            deadline.cancel()

        result = await scanner.scan(
            "mainnet", OWNER, None, None, cancel_after_first, deadline=deadline
        )

        assert result.was_cancelled
        assert not result.has_timed_out
        assert result.pages_fetched == 1
        assert len(batches) == 1

    @pytest.mark.asyncio
    async def test_network_error_ends_scan(self, scanner, feed):
        """A failed page ends the scan with the progress made so far."""
        feed.fail_offsets = {3}

        result = await scanner.scan("mainnet", OWNER, None, None, BatchRecorder())

        assert result.has_error
        assert result.addresses == {C1}
        assert result.interval == TxInterval(oldest=3, newest=6)

    @pytest.mark.asyncio
    async def test_feed_not_moving_below_offset(self, classifier):
        """A feed that ignores the offset cannot loop the scanner forever."""
        feed = FakeFeed(nft_ledger(), page_limit=2, ignore_offset=True)
        scanner = LedgerScanner(feed, classifier)

        result = await scanner.scan("mainnet", OWNER, None, None, BatchRecorder())

        assert result.has_error
        assert result.pages_fetched == 2
        assert feed.offsets == [0, 5]

    @pytest.mark.asyncio
    async def test_on_batch_errors_propagate(self, scanner):
        async def failing(addresses, interval):
            raise RuntimeError("store down")

        with pytest.raises(RuntimeError, match="store down"):
            await scanner.scan("mainnet", OWNER, None, None, failing)


class TestRegistrySeed:
    """Known contracts folded into a first-ever scan."""

    @pytest.mark.asyncio
    async def test_seed_joins_first_batch(self, scanner):
        recorder = BatchRecorder()

        result = await scanner.scan(
            "mainnet", OWNER, None, None, recorder, registry_addresses={"terra1known"}
        )

        assert recorder.batches[0][0] == {"terra1known"}
        assert recorder.batches[1][0] == {C1}
        assert result.addresses == {C1, C2, "terra1known"}

    @pytest.mark.asyncio
    async def test_seed_reported_when_feed_is_empty(self, classifier):
        recorder = BatchRecorder()
        scanner = LedgerScanner(FakeFeed([]), classifier)

        result = await scanner.scan(
            "mainnet", OWNER, None, None, recorder, registry_addresses={"terra1known"}
        )

        assert recorder.batches == [({"terra1known"}, TxInterval())]
        assert result.addresses == {"terra1known"}

    @pytest.mark.asyncio
    async def test_no_seed_on_bounded_scan(self, scanner):
        recorder = BatchRecorder()

        result = await scanner.scan(
            "mainnet", OWNER, None, 3, recorder, registry_addresses={"terra1known"}
        )

        assert "terra1known" not in result.addresses


class TestFakeLedger:
    """Sanity checks of the scenario ledger itself."""

    def test_ledger_ids(self):
        assert [tx.id for tx in nft_ledger()] == [6, 5, 4, 3, 2, 1]

    def test_make_tx_without_contract(self):
        assert make_tx(9).events == []
