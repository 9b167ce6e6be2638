"""
Unit tests for core/schema_decoder.py.

Tests cover indexed/data decoding, value formatting per ABI kind, the three
decode error kinds, and SchemaDecoder logging.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from core.interface_schema import AbiType
from core.schema_decoder import DecodeError, decode_log, format_topic, format_value
from shared.types import DecodeErrorKind
from tests.conftest import (
    SAMPLE_HOLDER,
    SAMPLE_MINTER,
    address_topic,
    encode_data,
    event_topic,
    make_mint_log,
    make_raw_log,
    make_rpc_log,
    word_topic,
)

MINT_TOPIC = event_topic("Mint(address,uint256)")
TRANSFER_TOPIC = event_topic("Transfer(address,address,uint256)")
NOTE_TOPIC = event_topic("Note(bool,int256,string,bytes,uint256[],bool,int128)")


@pytest.fixture
def decoder(sample_schema):
    with patch("core.schema_decoder.setup_module_logger") as mock_logger:
        mock_logger.return_value = MagicMock()
        from core.schema_decoder import SchemaDecoder

        yield SchemaDecoder(sample_schema)


# ---------------------------------------------------------------------------
# A. Successful decodes
# ---------------------------------------------------------------------------


class TestDecodeMint:
    def test_mint_fields(self, sample_schema):
        event = decode_log(sample_schema, make_raw_log(make_mint_log(SAMPLE_HOLDER, 1000)))
        assert event.name == "Mint"
        assert event.signature == "Mint(address,uint256)"
        assert event.fields == {"to": SAMPLE_HOLDER, "amount": "1000"}

    def test_amount_is_exact_decimal_string(self, sample_schema):
        for amount in (0, 1, 2**53 + 1, 10**30, 2**256 - 1):
            event = decode_log(sample_schema, make_raw_log(make_mint_log(SAMPLE_HOLDER, amount)))
            assert event.fields["amount"] == str(amount)

    def test_indexed_address_is_lowercase_trailing_20_bytes(self, sample_schema):
        topic = "0x" + "ff" * 12 + "AB" * 20
        rpc_log = make_rpc_log([MINT_TOPIC, topic], encode_data(["uint256"], [5]))
        event = decode_log(sample_schema, make_raw_log(rpc_log))
        assert event.fields["to"] == "0x" + "ab" * 20


class TestDecodeTransfer:
    def test_fields_in_declared_order(self, sample_schema):
        rpc_log = make_rpc_log(
            [TRANSFER_TOPIC, address_topic(SAMPLE_MINTER), address_topic(SAMPLE_HOLDER)],
            encode_data(["uint256"], [42]),
        )
        event = decode_log(sample_schema, make_raw_log(rpc_log))
        assert list(event.fields) == ["from", "to", "value"]
        assert event.fields["from"] == SAMPLE_MINTER
        assert event.fields["value"] == "42"

    def test_non_indexed_address_lowercased(self, sample_schema):
        rpc_log = make_rpc_log(
            [event_topic("Paused(address)")],
            encode_data(["address"], ["0x70997970C51812dc3A010C7d01b50e0d17dc79C8"]),
        )
        event = decode_log(sample_schema, make_raw_log(rpc_log))
        assert event.fields == {"account": SAMPLE_MINTER}


class TestDecodeMixedTypes:
    def test_note_event(self, sample_schema):
        rpc_log = make_rpc_log(
            [NOTE_TOPIC, word_topic(1), word_topic(-7, signed=True)],
            encode_data(
                ["string", "bytes", "uint256[]", "bool", "int128"],
                ["hello", b"\x01\x02", [1, 2**200], True, -5],
            ),
        )
        event = decode_log(sample_schema, make_raw_log(rpc_log))
        assert event.fields == {
            "flag": "0x" + "00" * 31 + "01",
            "delta": "-7",
            "text": "hello",
            "blob": "0x0102",
            "ids": ["1", str(2**200)],
            "active": True,
            "balance": "-5",
        }


# ---------------------------------------------------------------------------
# B. Error kinds
# ---------------------------------------------------------------------------


class TestDecodeErrors:
    def test_unknown_topic0(self, sample_schema):
        rpc_log = make_rpc_log([event_topic("Other(uint256)")], encode_data(["uint256"], [1]))
        with pytest.raises(DecodeError) as exc_info:
            decode_log(sample_schema, make_raw_log(rpc_log))
        assert exc_info.value.kind is DecodeErrorKind.UNKNOWN_EVENT

    def test_no_topics(self, sample_schema):
        with pytest.raises(DecodeError) as exc_info:
            decode_log(sample_schema, make_raw_log(make_rpc_log([])))
        assert exc_info.value.kind is DecodeErrorKind.UNKNOWN_EVENT

    def test_missing_indexed_topic_is_malformed(self, sample_schema):
        rpc_log = make_rpc_log([MINT_TOPIC], encode_data(["uint256"], [1]))
        with pytest.raises(DecodeError) as exc_info:
            decode_log(sample_schema, make_raw_log(rpc_log))
        assert exc_info.value.kind is DecodeErrorKind.MALFORMED_LOG
        assert exc_info.value.event_name == "Mint"

    def test_truncated_data_is_corrupt(self, sample_schema):
        rpc_log = make_rpc_log([MINT_TOPIC, address_topic(SAMPLE_HOLDER)], "0x1234")
        with pytest.raises(DecodeError) as exc_info:
            decode_log(sample_schema, make_raw_log(rpc_log))
        assert exc_info.value.kind is DecodeErrorKind.CORRUPT_PAYLOAD

    def test_empty_data_is_corrupt(self, sample_schema):
        rpc_log = make_rpc_log([MINT_TOPIC, address_topic(SAMPLE_HOLDER)], "0x")
        with pytest.raises(DecodeError) as exc_info:
            decode_log(sample_schema, make_raw_log(rpc_log))
        assert exc_info.value.kind is DecodeErrorKind.CORRUPT_PAYLOAD


# ---------------------------------------------------------------------------
# C. Formatting helpers
# ---------------------------------------------------------------------------


class TestFormatting:
    def test_topic_uint_is_unsigned(self):
        assert format_topic(AbiType.parse("uint256"), b"\xff" * 32) == str(2**256 - 1)

    def test_topic_int_is_twos_complement(self):
        assert format_topic(AbiType.parse("int64"), b"\xff" * 32) == "-1"

    def test_topic_fixed_bytes_is_raw_hex(self):
        assert format_topic(AbiType.parse("bytes32"), b"\x12" * 32) == "0x" + "12" * 32

    def test_value_tuple_recurses(self):
        value = format_value(AbiType.parse("(address,uint8)"), (b"\xaa" * 20, 7))
        assert value == ["0x" + "aa" * 20, "7"]


# ---------------------------------------------------------------------------
# D. SchemaDecoder
# ---------------------------------------------------------------------------


class TestSchemaDecoder:
    def test_decode_delegates(self, decoder):
        event = decoder.decode(make_raw_log(make_mint_log(SAMPLE_HOLDER, 3)))
        assert event.fields["amount"] == "3"

    def test_unknown_logged_at_debug_and_reraised(self, decoder):
        rpc_log = make_rpc_log([event_topic("Other()")])
        with pytest.raises(DecodeError):
            decoder.decode(make_raw_log(rpc_log))
        decoder._logger.debug.assert_called_once()
        decoder._logger.warning.assert_not_called()

    def test_corrupt_logged_at_warning(self, decoder):
        rpc_log = make_rpc_log([MINT_TOPIC, address_topic(SAMPLE_HOLDER)], "0x00")
        with pytest.raises(DecodeError):
            decoder.decode(make_raw_log(rpc_log))
        decoder._logger.warning.assert_called_once()
