"""Ledger scanning, classification and aggregation package."""

from collectors.models import (
    AggregateState,
    AssetClass,
    ContractAggregate,
    ScanResult,
    ScanWindow,
    TransactionRecord,
    TxEvent,
    TxInterval,
    TxMessage,
    aggregate_key,
)
from collectors.classifier import InteractionClassifier
from collectors.intervals import reconcile

__all__ = [
    "AggregateState",
    "AssetClass",
    "ContractAggregate",
    "ScanResult",
    "ScanWindow",
    "TransactionRecord",
    "TxEvent",
    "TxInterval",
    "TxMessage",
    "aggregate_key",
    "InteractionClassifier",
    "reconcile",
]
