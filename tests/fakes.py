"""Test doubles shared by the scanner, enrichment and controller tests."""

import asyncio
from typing import Any, Callable, Optional

from collectors.base import LedgerFeed
from collectors.models import TransactionRecord, TxEvent, TxMessage
from config.models import LedgerConfig
from core.exceptions import NetworkError


C1 = "terra1contractone"
C2 = "terra1contracttwo"
C3 = "terra1contractthree"
OWNER = "terra1owneraccount"


def contract_event(contract: str, action: str, event_type: str = "wasm") -> TxEvent:
    """Event group as emitted by a contract execution."""
    return TxEvent(
        type=event_type,
        attributes=[("contract_address", contract), ("action", action)],
    )


def make_tx(
    tx_id: int,
    contract: Optional[str] = None,
    action: str = "transfer_nft",
    event_type: str = "wasm",
) -> TransactionRecord:
    """Transaction with one contract event, or none if no contract is given."""
    events = [contract_event(contract, action, event_type)] if contract else []
    return TransactionRecord(id=tx_id, height=tx_id * 10, events=events)


def execute_tx(tx_id: int, contract: str, payload: dict, raw_log: str = "") -> TransactionRecord:
    """Transaction carrying a single contract-execute message and no events."""
    return TransactionRecord(
        id=tx_id,
        height=tx_id * 10,
        raw_log=raw_log,
        messages=[
            TxMessage(
                type="wasm/MsgExecuteContract",
                contract=contract,
                sender=OWNER,
                payload=payload,
            )
        ],
    )


def nft_ledger() -> list[TransactionRecord]:
    """Ids 6..1; C1 minted at id 4, C2 transferred at id 2."""
    return [
        make_tx(6),
        make_tx(5),
        make_tx(4, C1, action="mint"),
        make_tx(3),
        make_tx(2, C2, action="transfer_nft"),
        make_tx(1),
    ]


class FakeFeed(LedgerFeed):
    """In-memory newest-first feed paging by id offset."""

    name = "fake-feed"

    def __init__(
        self,
        transactions: list[TransactionRecord],
        page_limit: int = 2,
        ignore_offset: bool = False,
    ):
        super().__init__(networks={}, ledger_config=LedgerConfig(page_limit=page_limit))
        self.transactions = sorted(transactions, key=lambda tx: tx.id, reverse=True)
        self.ignore_offset = ignore_offset
        self.fail_offsets: set[int] = set()
        self.gate: Optional[asyncio.Event] = None
        self.on_fetch: Optional[Callable[[int], None]] = None
        self.offsets: list[int] = []

    def add(self, *transactions: TransactionRecord) -> None:
        self.transactions = sorted(
            [*self.transactions, *transactions], key=lambda tx: tx.id, reverse=True
        )

    async def fetch_page(
        self,
        network: str,
        address: str,
        offset: int,
    ) -> list[TransactionRecord]:
        self.offsets.append(offset)
        self._request_count += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.on_fetch is not None:
            self.on_fetch(offset)
        if offset in self.fail_offsets:
            raise NetworkError(self.name, f"offset {offset} unavailable", status_code=502)
        below = [
            tx for tx in self.transactions
            if self.ignore_offset or not offset or tx.id < offset
        ]
        return below[:self.page_limit]


class FakeQueryClient:
    """Answers smart queries from a handler and tracks concurrency."""

    def __init__(self, handler: Callable[[str, dict], Any], delay: float = 0.0):
        self.handler = handler
        self.delay = delay
        self.calls: list[tuple[str, dict]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def query(self, network: str, contract: str, msg: dict) -> Any:
        self.calls.append((contract, msg))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
            return self.handler(contract, msg)
        finally:
            self.in_flight -= 1

    async def close(self) -> None:
        pass


class RecordingEnricher:
    """Enricher that records which contracts it was asked about."""

    def __init__(self, failing: Optional[set[str]] = None):
        self.calls: list[set[str]] = []
        self.failing = failing or set()

    async def enrich(self, network: str, owner: str, contracts) -> dict[str, Any]:
        contracts = set(contracts)
        self.calls.append(contracts)
        return {
            contract: {"contract": contract, "tokens": []}
            for contract in contracts
            if contract not in self.failing
        }


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
