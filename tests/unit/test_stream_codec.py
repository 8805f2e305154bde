"""
Unit tests for data/stream_codec.py.

Tests cover the subscription frame, every message kind, felt and timestamp
variants, camelCase field names and malformed frames.
"""

from __future__ import annotations

import json

import pytest

from conftest import SAMPLE_CONTRACT
from data.stream_codec import decode_message, encode_subscription
from shared.exceptions import StreamProtocolError, StreamSetupError
from shared.types import (
    DataFinality,
    DataMessage,
    EventFilter,
    HeaderMode,
    Heartbeat,
    Invalidate,
    SubscriptionConfig,
)


def _felt(n: int) -> str:
    return f"0x{n:064x}"


def _raw_block(number: int, events: list[dict] | None = None) -> dict:
    return {
        "header": {"block_number": number, "timestamp": 1_700_000_000},
        "events": events or [],
    }


def _raw_event(n: int, tx_hash: str = "0xabc") -> dict:
    return {
        "transaction": {"meta": {"hash": tx_hash}},
        "event": {"from_address": SAMPLE_CONTRACT, "keys": ["0x99"], "data": [hex(n)]},
    }


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


class TestEncodeSubscription:

    def test_default_frame(self):
        config = SubscriptionConfig(
            starting_block=600_000,
            event_filters=(EventFilter(from_address="0x49d3"),),
        )

        frame = encode_subscription(config)

        assert frame == {
            "batch_size": 32,
            "starting_cursor": {"order_key": 600_000},
            "finality": "DATA_STATUS_PENDING",
            "filter": {
                "header": {"weak": True},
                "events": [{"from_address": "0x" + "0" * 60 + "49d3"}],
            },
        }

    def test_full_header_and_accepted(self, subscription):
        config = SubscriptionConfig(
            starting_block=1,
            finality=DataFinality.ACCEPTED,
            header_mode=HeaderMode.FULL,
            event_filters=subscription.event_filters,
            batch_size=8,
        )

        frame = encode_subscription(config)

        assert frame["finality"] == "DATA_STATUS_ACCEPTED"
        assert frame["filter"]["header"] == {"weak": False}
        assert frame["batch_size"] == 8

    def test_frame_is_json_serializable(self, subscription):
        assert json.loads(json.dumps(encode_subscription(subscription)))

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"starting_block": -1},
            {"batch_size": 0},
            {"event_filters": ()},
            {"event_filters": (EventFilter(from_address="not-hex"),)},
        ],
    )
    def test_invalid_configuration(self, subscription, kwargs):
        fields = {
            "starting_block": subscription.starting_block,
            "event_filters": subscription.event_filters,
            **kwargs,
        }

        with pytest.raises(StreamSetupError):
            encode_subscription(SubscriptionConfig(**fields))


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class TestDecodeControlFrames:

    def test_heartbeat(self):
        assert isinstance(decode_message('{"heartbeat": {}}'), Heartbeat)

    def test_invalidate_with_cursor(self):
        message = decode_message(
            {"invalidate": {"cursor": {"orderKey": "123", "uniqueKey": "0xdead"}}}
        )

        assert isinstance(message, Invalidate)
        assert message.cursor.order_key == 123
        assert message.cursor.unique_key == "0xdead"

    def test_invalidate_without_cursor(self):
        message = decode_message({"invalidate": {}})

        assert isinstance(message, Invalidate)
        assert message.cursor is None

    def test_error_frame_is_setup_error(self):
        with pytest.raises(StreamSetupError, match="bad filter"):
            decode_message({"error": "bad filter"})

    @pytest.mark.parametrize("raw", ["{", b"\xc3\x28", "[]", '{"mystery": 1}', '{"data": []}'])
    def test_malformed_frames(self, raw):
        with pytest.raises(StreamProtocolError):
            decode_message(raw)

    @pytest.mark.parametrize("body", ['"oops"', "5", '["cursor"]'])
    def test_invalidate_body_not_an_object(self, body):
        with pytest.raises(StreamProtocolError, match="invalidate body"):
            decode_message('{"invalidate": %s}' % body)


class TestDecodeData:

    def test_data_batch(self):
        raw = {
            "data": {
                "finality": "DATA_STATUS_PENDING",
                "cursor": {"order_key": 9},
                "end_cursor": {"order_key": 11, "unique_key": "0x1"},
                "data": [_raw_block(10, [_raw_event(1), _raw_event(2)]), _raw_block(11)],
            }
        }

        message = decode_message(json.dumps(raw))

        assert isinstance(message, DataMessage)
        assert message.finality is DataFinality.PENDING
        assert [block.block_number for block in message.batch] == [10, 11]
        assert message.cursor.order_key == 9
        assert message.end_cursor.order_key == 11
        first, second = message.batch[0].events
        assert first.from_address == SAMPLE_CONTRACT
        assert first.data == [_felt(1)]
        assert second.data == [_felt(2)]
        assert first.keys == [_felt(0x99)]
        assert first.transaction_hash == _felt(0xABC)
        assert message.batch[1].events == []

    def test_camel_case_fields_and_finality_name(self):
        raw = {
            "data": {
                "finality": "accepted",
                "endCursor": {"orderKey": 5},
                "data": [
                    {
                        "header": {"blockNumber": "5", "timestamp": "2024-01-01T00:00:00Z"},
                        "events": [
                            {
                                "transactionHash": "0x1",
                                "event": {"fromAddress": "0x2", "keys": [], "data": []},
                            }
                        ],
                    }
                ],
            }
        }

        message = decode_message(raw)

        block = message.batch[0]
        assert message.finality is DataFinality.ACCEPTED
        assert message.end_cursor.order_key == 5
        assert block.block_number == 5
        assert block.timestamp == 1_704_067_200
        assert block.events[0].from_address == _felt(2)
        assert block.events[0].transaction_hash == _felt(1)

    def test_limb_encoded_felts(self):
        limbs = {"hi_hi": 0, "hi_lo": 0, "lo_hi": 1, "lo_lo": 2}
        event = {
            "event": {"from_address": limbs, "keys": [], "data": [{"loLo": 7}]},
        }

        message = decode_message({"data": {"finality": "DATA_STATUS_ACCEPTED", "data": [_raw_block(1, [event])]}})

        decoded = message.batch[0].events[0]
        assert decoded.from_address == _felt((1 << 64) | 2)
        assert decoded.data == [_felt(7)]
        assert decoded.transaction_hash == ""

    def test_naive_iso_timestamp_is_utc(self):
        block = _raw_block(3)
        block["header"]["timestamp"] = "2024-01-01T00:00:00"

        message = decode_message({"data": {"finality": "DATA_STATUS_ACCEPTED", "data": [block]}})

        assert message.batch[0].timestamp == 1_704_067_200

    def test_offset_iso_timestamp(self):
        block = _raw_block(3)
        block["header"]["timestamp"] = "2024-01-01T02:00:00+02:00"

        message = decode_message({"data": {"finality": "DATA_STATUS_ACCEPTED", "data": [block]}})

        assert message.batch[0].timestamp == 1_704_067_200

    def test_timestamp_seconds_object(self):
        block = _raw_block(3)
        block["header"]["timestamp"] = {"seconds": "1700000123", "nanos": 0}

        message = decode_message({"data": {"finality": "DATA_STATUS_ACCEPTED", "data": [block]}})

        assert message.batch[0].timestamp == 1_700_000_123

    def test_entries_without_event_are_skipped(self):
        block = _raw_block(4, [{"transaction": {}}, _raw_event(1)])

        message = decode_message({"data": {"finality": "DATA_STATUS_ACCEPTED", "data": [block]}})

        assert len(message.batch[0].events) == 1

    def test_block_without_header(self):
        with pytest.raises(StreamProtocolError, match="header"):
            decode_message({"data": {"finality": "DATA_STATUS_ACCEPTED", "data": [{"events": []}]}})

    def test_unknown_finality(self):
        with pytest.raises(StreamProtocolError):
            decode_message({"data": {"finality": "DATA_STATUS_FINALIZED_ISH", "data": []}})

    @pytest.mark.parametrize(
        "header",
        [{"block_number": -1}, {"block_number": "ten"}, {"block_number": 1, "timestamp": "yesterday"}],
    )
    def test_bad_header_values(self, header):
        with pytest.raises(StreamProtocolError):
            decode_message(
                {"data": {"finality": "DATA_STATUS_ACCEPTED", "data": [{"header": header}]}}
            )

    @pytest.mark.parametrize(
        "block",
        [
            {"header": {"block_number": 1}, "events": [5]},
            {"header": {"block_number": 1}, "events": "none"},
            {"header": "block 1"},
            {"header": ["block_number", 1]},
            {"header": {"block_number": 1}, "events": [{"event": "transfer"}]},
            {"header": {"block_number": 1}, "events": [{"event": {"from_address": "0x1", "keys": 7}}]},
            {"header": {"block_number": 1}, "events": [{"event": {"from_address": "0x1", "data": "0x1"}}]},
            {"header": {"block_number": 1}, "events": [{"transaction": "tx", "event": {"from_address": "0x1"}}]},
            {
                "header": {"block_number": 1},
                "events": [{"transaction": {"meta": 3}, "event": {"from_address": "0x1"}}],
            },
        ],
    )
    def test_malformed_block_shapes(self, block):
        with pytest.raises(StreamProtocolError):
            decode_message({"data": {"finality": "DATA_STATUS_ACCEPTED", "data": [block]}})

    def test_null_keys_and_data_decode_as_empty(self):
        event = {"event": {"from_address": "0x1", "keys": None, "data": None}}

        message = decode_message({"data": {"finality": "DATA_STATUS_ACCEPTED", "data": [_raw_block(1, [event])]}})

        decoded = message.batch[0].events[0]
        assert decoded.keys == []
        assert decoded.data == []

    def test_bad_felt(self):
        event = {"event": {"from_address": "0xnothex", "keys": [], "data": []}}

        with pytest.raises(StreamProtocolError, match="from_address"):
            decode_message({"data": {"finality": "DATA_STATUS_ACCEPTED", "data": [_raw_block(1, [event])]}})
