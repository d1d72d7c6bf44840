"""Interaction classifier for ledger transactions."""

from typing import Iterable, Optional

from collectors.models import TransactionRecord
from config.models import ClassifierRules


# Attribute names inside contract-log event groups
ACTION_ATTRIBUTE = "action"
CONTRACT_ADDRESS_ATTRIBUTE = "contract_address"


class InteractionClassifier:
    """Finds the contracts of one asset class that a transaction touched.

    Classification Logic:
    - Event path: every event group whose type is a contract-log type and
      that carries an ``action`` in the configured action set contributes
      all of its ``contract_address`` values. Failed transactions emit no
      contract logs, so this path needs no failure filter.
    - Message path: every contract-execute message whose payload has a
      top-level key in the configured key set contributes its contract,
      unless the transaction's raw log contains the failure marker.
    """

    def __init__(self, rules: ClassifierRules):
        self.rules = rules
        self._event_types = frozenset(rules.event_types)
        self._actions = frozenset(rules.actions)
        self._message_keys = frozenset(rules.message_keys)

    def classify(self, tx: TransactionRecord) -> set[str]:
        """Return the set of contract addresses the transaction interacted with.

        Args:
            tx: The transaction to classify.

        Returns:
            Possibly empty set of contract addresses.
        """
        return self._from_events(tx) | self._from_messages(tx)

    def classify_all(self, txs: Iterable[TransactionRecord]) -> set[str]:
        """Union of ``classify`` over a page of transactions."""
        addresses: set[str] = set()
        for tx in txs:
            addresses |= self.classify(tx)
        return addresses

    def _from_events(self, tx: TransactionRecord) -> set[str]:
        addresses: set[str] = set()
        for event in tx.events:
            if event.type not in self._event_types:
                continue
            if not any(action in self._actions for action in event.values(ACTION_ATTRIBUTE)):
                continue
            addresses.update(
                address for address in event.values(CONTRACT_ADDRESS_ATTRIBUTE) if address
            )
        return addresses

    def _from_messages(self, tx: TransactionRecord) -> set[str]:
        if not self._message_keys or self._is_failed(tx.raw_log):
            return set()
        addresses: set[str] = set()
        for message in tx.messages:
            if not message.is_contract_execute:
                continue
            if any(key in self._message_keys for key in message.payload):
                addresses.add(message.contract)
        return addresses

    def _is_failed(self, raw_log: Optional[str]) -> bool:
        marker = self.rules.failure_marker
        return bool(marker) and marker in (raw_log or "")
