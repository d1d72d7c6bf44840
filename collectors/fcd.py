"""Terra FCD account transaction feed."""

import base64
import binascii
import json
import logging
from typing import Any, Optional

from collectors.base import LedgerFeed
from collectors.models import TransactionRecord, TxEvent, TxMessage
from core.exceptions import MalformedLedgerRecordError, NetworkError


logger = logging.getLogger(__name__)

# Message type tags of contract-execute messages across Terra releases
EXECUTE_MESSAGE_TYPES = frozenset({
    "wasm/MsgExecuteContract",
    "/terra.wasm.v1beta1.MsgExecuteContract",
    "/cosmwasm.wasm.v1.MsgExecuteContract",
})


def _decode_execute_payload(raw: Any) -> dict:
    """Decode an execute message given inline or as base64-encoded JSON."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            decoded = json.loads(base64.b64decode(raw, validate=True))
        except (binascii.Error, ValueError):
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def _decode_message(raw: Any) -> Optional[TxMessage]:
    if not isinstance(raw, dict):
        return None

    # Legacy amino shape: {"type": ..., "value": {...}}
    if "value" in raw and isinstance(raw.get("value"), dict):
        msg_type = raw.get("type", "")
        body = raw["value"]
    else:
        msg_type = raw.get("@type", raw.get("type", ""))
        body = raw

    if msg_type not in EXECUTE_MESSAGE_TYPES:
        return TxMessage(type=msg_type or "unknown")

    contract = body.get("contract")
    if not contract:
        return TxMessage(type=msg_type)

    return TxMessage(
        type=msg_type,
        contract=contract,
        sender=body.get("sender"),
        payload=_decode_execute_payload(body.get("execute_msg", body.get("msg"))),
    )


def _decode_events(logs: Any) -> list[TxEvent]:
    events: list[TxEvent] = []
    for log in logs or []:
        if not isinstance(log, dict):
            continue
        for raw_event in log.get("events") or []:
            if not isinstance(raw_event, dict):
                continue
            attributes = [
                (str(attr.get("key", "")), str(attr.get("value", "")))
                for attr in raw_event.get("attributes") or []
                if isinstance(attr, dict)
            ]
            events.append(TxEvent(type=str(raw_event.get("type", "")), attributes=attributes))
    return events


def decode_transaction(raw: Any) -> TransactionRecord:
    """Decode one FCD transaction into a TransactionRecord.

    Both the legacy ``tx.value.msg`` layout and the protobuf-JSON
    ``tx.body.messages`` layout are understood.

    Args:
        raw: One element of the FCD ``txs`` array.

    Returns:
        The decoded transaction.

    Raises:
        MalformedLedgerRecordError: If the id or height is missing or invalid.
    """
    if not isinstance(raw, dict):
        raise MalformedLedgerRecordError("record is not an object", raw_data=str(raw))

    tx_id = raw.get("id")
    try:
        record_id = int(tx_id)
        height = int(raw.get("height"))
    except (TypeError, ValueError):
        raise MalformedLedgerRecordError(
            "missing or non-integer id/height",
            tx_id=tx_id,
            raw_data=json.dumps(raw, default=str),
        )

    tx = raw.get("tx") or {}
    raw_messages: list[Any] = []
    if isinstance(tx, dict):
        value = tx.get("value")
        body = tx.get("body")
        if isinstance(value, dict):
            raw_messages = value.get("msg") or []
        elif isinstance(body, dict):
            raw_messages = body.get("messages") or []

    messages = [m for m in (_decode_message(raw_msg) for raw_msg in raw_messages) if m]

    try:
        return TransactionRecord(
            id=record_id,
            height=height,
            raw_log=str(raw.get("raw_log") or ""),
            events=_decode_events(raw.get("logs")),
            messages=messages,
            txhash=raw.get("txhash"),
        )
    except ValueError as e:
        raise MalformedLedgerRecordError(str(e), tx_id=tx_id)


def _lowest_raw_id(raw_txs: list[Any]) -> Optional[int]:
    """Lowest id among raw records that carry a usable one, decodable or not."""
    ids = []
    for raw in raw_txs:
        try:
            ids.append(int(raw.get("id")))
        except (AttributeError, TypeError, ValueError):
            continue
    return min(ids) if ids else None


class FcdFeed(LedgerFeed):
    """Reads ``GET {fcd}/v1/txs?offset=&limit=&account=``.

    Paging past the oldest transaction of an account makes the FCD answer
    with HTTP 500 rather than an empty page; below the live edge the
    statuses in ``LedgerConfig.end_of_feed_status_codes`` mean exhaustion.
    """

    name = "fcd"

    def _txs_url(self, network: str) -> str:
        return f"{str(self.get_network(network).fcd_url).rstrip('/')}/v1/txs"

    async def _fetch_raw(self, network: str, address: str, offset: int) -> list[Any]:
        url = self._txs_url(network)
        params = {"offset": offset, "limit": self.page_limit, "account": address}
        try:
            data = await self._get_json(url, params)
        except NetworkError as e:
            if offset and e.status_code in self.ledger_config.end_of_feed_status_codes:
                logger.info(
                    f"HTTP {e.status_code} below offset {offset}, treating as end of feed",
                    extra={"network": network, "offset": offset, "status": e.status_code}
                )
                return []
            raise

        raw_txs = data.get("txs")
        if raw_txs is None:
            return []
        if not isinstance(raw_txs, list):
            raise NetworkError(service=self.name, message="'txs' is not a list")
        return raw_txs

    async def fetch_page(
        self,
        network: str,
        address: str,
        offset: int,
    ) -> list[TransactionRecord]:
        while True:
            raw_txs = await self._fetch_raw(network, address, offset)

            records: list[TransactionRecord] = []
            for raw in raw_txs:
                try:
                    records.append(decode_transaction(raw))
                except MalformedLedgerRecordError as e:
                    logger.warning(
                        f"Skipping malformed transaction from {self.name}: {e.reason}",
                        extra={"network": network, "offset": offset, "tx_id": e.tx_id}
                    )

            logger.debug(
                f"Fetched {len(records)} transactions for {address} on {network}",
                extra={
                    "network": network,
                    "offset": offset,
                    "received": len(raw_txs),
                    "decoded": len(records),
                }
            )
            if records or not raw_txs:
                return records

            # A page made only of malformed records is not the end of the
            # feed: page on below the lowest id it carries.
            lowest = _lowest_raw_id(raw_txs)
            if lowest is None or lowest <= 0 or (offset and lowest >= offset):
                raise NetworkError(
                    service=self.name,
                    message=f"page at offset {offset} has no readable transaction id",
                )
            offset = lowest
