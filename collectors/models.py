"""Data models for ledger scanning and interaction aggregates."""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class AssetClass(str, Enum):
    """Kind of contract an aggregate tracks."""
    NFT = "nft"
    TOKEN = "token"


class AggregateState(str, Enum):
    """Synchronization state of a stored aggregate."""
    FULL = "Full"
    PARTIAL = "Partial"
    UPDATING = "Updating"


def aggregate_key(asset_class: AssetClass, network: str, address: str) -> str:
    """Build the store key for an account's aggregate on a network."""
    return f"{AssetClass(asset_class).value}:{address}@{network}"


@dataclass
class TxEvent:
    """A typed event group emitted by a transaction."""

    type: str
    attributes: list[tuple[str, str]] = field(default_factory=list)

    def values(self, key: str) -> list[str]:
        """Return every attribute value stored under ``key``, in order."""
        return [value for attr_key, value in self.attributes if attr_key == key]


@dataclass
class TxMessage:
    """A message carried by a transaction.

    Only contract-execute messages have a ``contract``; the payload is the
    decoded execute message (empty for other message types).
    """

    type: str
    contract: Optional[str] = None
    sender: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_contract_execute(self) -> bool:
        return self.contract is not None


@dataclass
class TransactionRecord:
    """A single transaction from the account feed."""

    id: int
    height: int
    raw_log: str = ""
    events: list[TxEvent] = field(default_factory=list)
    messages: list[TxMessage] = field(default_factory=list)
    txhash: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate transaction data after initialization."""
        if self.id < 0:
            raise ValueError("Transaction id cannot be negative")
        if self.height < 0:
            raise ValueError("Block height cannot be negative")


@dataclass(frozen=True)
class TxInterval:
    """Contiguous range of feed ids, ``None`` meaning not yet known."""

    oldest: Optional[int] = None
    newest: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return self.oldest is None and self.newest is None

    @property
    def is_ordered(self) -> bool:
        if self.oldest is None or self.newest is None:
            return True
        return self.oldest <= self.newest

    def to_dict(self) -> dict:
        return {"oldest": self.oldest, "newest": self.newest}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "TxInterval":
        data = data or {}
        oldest = data.get("oldest")
        newest = data.get("newest")
        return cls(
            oldest=int(oldest) if oldest is not None else None,
            newest=int(newest) if newest is not None else None,
        )


@dataclass(frozen=True)
class ScanWindow:
    """Scanned coverage of the ledger for one aggregate.

    ``external`` is the outer envelope of everything ever scanned.
    ``internal`` is an unscanned gap inside that envelope, opened when a
    forward scan started above the previous newest id and stopped early.
    The gap is only meaningful while ``internal.oldest < internal.newest``.
    """

    external: TxInterval = field(default_factory=TxInterval)
    internal: TxInterval = field(default_factory=TxInterval)

    def __post_init__(self) -> None:
        if not self.external.is_ordered:
            raise ValueError(
                f"External interval is inverted: oldest={self.external.oldest} "
                f"newest={self.external.newest}"
            )

    @property
    def has_gap(self) -> bool:
        """Whether an unscanned internal gap remains."""
        oldest, newest = self.internal.oldest, self.internal.newest
        return oldest is not None and newest is not None and oldest < newest

    def to_dict(self) -> dict:
        return {
            "external": self.external.to_dict(),
            "internal": self.internal.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ScanWindow":
        data = data or {}
        return cls(
            external=TxInterval.from_dict(data.get("external")),
            internal=TxInterval.from_dict(data.get("internal")),
        )


@dataclass
class ContractAggregate:
    """Materialized view of the contracts an account has interacted with."""

    interacted_contracts: set[str] = field(default_factory=set)
    owned_tokens: dict[str, Any] = field(default_factory=dict)
    state: AggregateState = AggregateState.FULL
    txs: ScanWindow = field(default_factory=ScanWindow)
    last_update_start_time: Optional[float] = None

    @classmethod
    def default(cls) -> "ContractAggregate":
        """Aggregate for an account that has never been scanned."""
        return cls()

    def copy(self) -> "ContractAggregate":
        return ContractAggregate(
            interacted_contracts=set(self.interacted_contracts),
            owned_tokens=copy.deepcopy(self.owned_tokens),
            state=self.state,
            txs=self.txs,
            last_update_start_time=self.last_update_start_time,
        )

    def to_dict(self) -> dict:
        """Convert aggregate to dictionary for JSON serialization."""
        return {
            "interacted_contracts": sorted(self.interacted_contracts),
            "owned_tokens": self.owned_tokens,
            "state": self.state.value,
            "txs": self.txs.to_dict(),
            "last_update_start_time": self.last_update_start_time,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ContractAggregate":
        """Rebuild an aggregate from its serialized form.

        Missing fields fall back to the defaults of a fresh aggregate.
        """
        return cls(
            interacted_contracts=set(data.get("interacted_contracts") or []),
            owned_tokens=dict(data.get("owned_tokens") or {}),
            state=AggregateState(data.get("state", AggregateState.FULL.value)),
            txs=ScanWindow.from_dict(data.get("txs")),
            last_update_start_time=data.get("last_update_start_time"),
        )


@dataclass
class ScanResult:
    """Outcome of one scanner session."""

    addresses: set[str] = field(default_factory=set)
    interval: TxInterval = field(default_factory=TxInterval)
    pages_fetched: int = 0
    has_timed_out: bool = False
    has_error: bool = False
    was_cancelled: bool = False

    @property
    def is_complete(self) -> bool:
        """True when the scan ended without timeout, error or cancellation."""
        return not (self.has_timed_out or self.has_error or self.was_cancelled)

    def to_dict(self) -> dict:
        return {
            "addresses": sorted(self.addresses),
            "interval": self.interval.to_dict(),
            "pages_fetched": self.pages_fetched,
            "has_timed_out": self.has_timed_out,
            "has_error": self.has_error,
            "was_cancelled": self.was_cancelled,
        }
