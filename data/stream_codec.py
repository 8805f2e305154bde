"""
Wire codec for the Apibara DNA Starknet stream.

The provider channel carries JSON frames. The client sends one configuration
frame, then receives one frame per message:

    {"data": {"cursor": ..., "end_cursor": ..., "finality": "DATA_STATUS_PENDING",
              "data": [<block>, ...]}}
    {"heartbeat": {}}
    {"invalidate": {"cursor": {"order_key": 123, "unique_key": "0x..."}}}
    {"error": "..."}                       (provider rejected the configuration)

Field names are accepted in snake_case or the camelCase produced by protobuf
JSON encoding. Felts may be hex strings, integers, or the four-limb
{"hi_hi", "hi_lo", "lo_hi", "lo_lo"} form.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from shared.constants import MAX_U64
from shared.conversions import felt_to_hex
from shared.exceptions import StreamProtocolError, StreamSetupError
from shared.types import (
    Block,
    Cursor,
    DataFinality,
    DataMessage,
    Heartbeat,
    HeaderMode,
    Invalidate,
    StreamEvent,
    StreamMessage,
    SubscriptionConfig,
)

_LIMBS = (("hi_hi", "hiHi"), ("hi_lo", "hiLo"), ("lo_hi", "loHi"), ("lo_lo", "loLo"))


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _get(obj: dict[str, Any], name: str, default: Any = None) -> Any:
    """Read a field by its snake_case or camelCase name."""
    if name in obj:
        return obj[name]
    return obj.get(_camel(name), default)


def _object(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise StreamProtocolError(f"Invalid {what}: expected an object, got {value!r}")
    return value


def _list(value: Any, what: str) -> list[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise StreamProtocolError(f"Invalid {what}: expected a list, got {value!r}")
    return value


# ============================================================================
# ENCODING (client -> provider)
# ============================================================================


def encode_subscription(config: SubscriptionConfig) -> dict[str, Any]:
    """Build the configuration frame. Raises StreamSetupError on bad input."""
    if not 0 <= config.starting_block <= MAX_U64:
        raise StreamSetupError(f"Invalid starting block: {config.starting_block}")
    if config.batch_size <= 0:
        raise StreamSetupError(f"Invalid batch size: {config.batch_size}")
    if not config.event_filters:
        raise StreamSetupError("At least one event filter is required")

    events = []
    for event_filter in config.event_filters:
        try:
            events.append({"from_address": felt_to_hex(event_filter.from_address)})
        except ValueError as exc:
            raise StreamSetupError(f"Invalid filter address: {exc}") from exc

    return {
        "batch_size": config.batch_size,
        "starting_cursor": {"order_key": config.starting_block},
        "finality": config.finality.value,
        "filter": {
            "header": {"weak": config.header_mode is HeaderMode.WEAK},
            "events": events,
        },
    }


# ============================================================================
# DECODING (provider -> client)
# ============================================================================


def _felt(value: Any, what: str) -> str:
    try:
        if isinstance(value, dict):
            number = 0
            for snake, camel in _LIMBS:
                limb = int(value.get(snake, value.get(camel, 0)))
                number = (number << 64) | limb
            return felt_to_hex(number)
        return felt_to_hex(value)
    except (TypeError, ValueError) as exc:
        raise StreamProtocolError(f"Invalid felt for {what}: {value!r}") from exc


def _u64(value: Any, what: str) -> int:
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise StreamProtocolError(f"Invalid {what}: {value!r}") from exc
    if not 0 <= number <= MAX_U64:
        raise StreamProtocolError(f"{what} out of range: {value!r}")
    return number


def _timestamp(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, dict):
        return _u64(value.get("seconds", 0), "timestamp")
    if isinstance(value, int) or (isinstance(value, str) and value.strip().isdigit()):
        return _u64(value, "timestamp")
    try:
        text = str(value).strip().replace("Z", "+00:00")
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise StreamProtocolError(f"Invalid timestamp: {value!r}") from exc
    # Provider timestamps are UTC; naive values carry no offset.
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return _u64(int(parsed.timestamp()), "timestamp")


def _cursor(value: Any) -> Cursor | None:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise StreamProtocolError(f"Invalid cursor: {value!r}")
    return Cursor(
        order_key=_u64(_get(value, "order_key", 0), "cursor order_key"),
        unique_key=str(_get(value, "unique_key", "") or ""),
    )


def _event(item: Any) -> StreamEvent | None:
    item = _object(item, "event entry")
    event = item.get("event")
    if event is None:
        return None
    event = _object(event, "event")
    transaction = _object(item.get("transaction") or {}, "transaction")
    meta = _object(transaction.get("meta") or {}, "transaction meta")
    tx_hash = _get(meta, "hash", None) or _get(item, "transaction_hash", None)
    return StreamEvent(
        from_address=_felt(_get(event, "from_address"), "from_address"),
        keys=[_felt(key, "event key") for key in _list(event.get("keys"), "event keys")],
        data=[_felt(word, "event data") for word in _list(event.get("data"), "event data")],
        transaction_hash=_felt(tx_hash, "transaction hash") if tx_hash is not None else "",
    )


def _block(item: Any) -> Block:
    if not isinstance(item, dict):
        raise StreamProtocolError(f"Invalid block: {item!r}")
    header = item.get("header")
    if not header:
        raise StreamProtocolError("Block without header")
    header = _object(header, "block header")
    events = []
    for raw_event in _list(item.get("events"), "block events"):
        event = _event(raw_event)
        if event is not None:
            events.append(event)
    return Block(
        block_number=_u64(_get(header, "block_number"), "block_number"),
        timestamp=_timestamp(header.get("timestamp")),
        events=events,
    )


def _data(body: dict[str, Any]) -> DataMessage:
    try:
        finality = DataFinality.from_str(str(body.get("finality", "")))
    except ValueError as exc:
        raise StreamProtocolError(str(exc)) from exc
    batch = body.get("data", body.get("batch", []))
    if not isinstance(batch, list):
        raise StreamProtocolError("Data batch is not a list")
    return DataMessage(
        finality=finality,
        batch=[_block(item) for item in batch],
        cursor=_cursor(body.get("cursor")),
        end_cursor=_cursor(_get(body, "end_cursor")),
    )


def decode_message(raw: str | bytes | dict[str, Any]) -> StreamMessage:
    """
    Decode one provider frame.

    Raises StreamSetupError for a provider error frame and StreamProtocolError
    for anything that cannot be decoded.
    """
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            frame = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StreamProtocolError(f"Invalid JSON frame: {exc}") from exc
    else:
        frame = raw

    if not isinstance(frame, dict):
        raise StreamProtocolError(f"Unexpected frame: {frame!r}")
    if "error" in frame:
        raise StreamSetupError(f"Stream rejected: {frame['error']}")
    if "heartbeat" in frame:
        return Heartbeat()
    if "invalidate" in frame:
        body = _object(frame["invalidate"] or {}, "invalidate body")
        return Invalidate(cursor=_cursor(body.get("cursor")))
    if "data" in frame:
        body = frame["data"]
        if not isinstance(body, dict):
            raise StreamProtocolError("Data frame body is not an object")
        return _data(body)
    raise StreamProtocolError(f"Unknown frame type: {sorted(frame)}")
