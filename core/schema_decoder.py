"""
Schema-driven event decoder.

Resolves a raw log's topic0 against an ``InterfaceSchema`` and decodes the
indexed (topic) and non-indexed (data) arguments by declared type. Every
value goes through one type dispatch so the output is JSON-safe:

    address      -> lowercase 0x hex
    uint / int   -> decimal string (no precision loss)
    bytes        -> 0x hex
    bool, string -> as-is
    arrays/tuple -> lists of the above

Indexed arguments other than addresses and integers are returned as the raw
32-byte topic (dynamic types are stored as their keccak hash on-chain).

Decode errors are local to one log: they are never retried and never reach
the orchestrator.

Usage:
    decoder = SchemaDecoder(schema)
    event = decoder.decode(raw_log)      # raises DecodeError
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from eth_abi.abi import decode as abi_decode

from core.interface_schema import AbiKind, AbiType, EventDefinition, InterfaceSchema
from ingest_logging.logger_manager import setup_module_logger
from shared.constants import ADDRESS_SIZE
from shared.types import DecodedEvent, DecodeErrorKind, RawLogEntry


class DecodeError(Exception):
    """A single log could not be decoded; the log is skipped."""

    def __init__(self, kind: DecodeErrorKind, message: str, event_name: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.event_name = event_name


# ============================================================================
# VALUE FORMATTING
# ============================================================================


def _hex(value: bytes) -> str:
    return "0x" + bytes(value).hex()


def format_topic(abi_type: AbiType, topic: bytes) -> Any:
    """Format one 32-byte topic word for an indexed argument."""
    if abi_type.kind is AbiKind.ADDRESS:
        return _hex(topic[-ADDRESS_SIZE:])
    if abi_type.kind is AbiKind.UINT:
        return str(int.from_bytes(topic, "big", signed=False))
    if abi_type.kind is AbiKind.INT:
        # Values are sign-extended to the full word, so a 256-bit read covers intN.
        return str(int.from_bytes(topic, "big", signed=True))
    return _hex(topic)


def format_value(abi_type: AbiType, value: Any) -> Any:
    """Format a value returned by the ABI codec for a non-indexed argument."""
    kind = abi_type.kind
    if kind is AbiKind.ADDRESS:
        if isinstance(value, (bytes, bytearray)):
            return _hex(value[-ADDRESS_SIZE:])
        return str(value).lower()
    if kind in (AbiKind.UINT, AbiKind.INT):
        return str(int(value))
    if kind is AbiKind.BOOL:
        return bool(value)
    if kind is AbiKind.STRING:
        return str(value)
    if kind in (AbiKind.BYTES, AbiKind.FIXED_BYTES):
        return _hex(value)
    if kind is AbiKind.ARRAY:
        return [format_value(abi_type.element, v) for v in value]
    if kind is AbiKind.TUPLE:
        return [format_value(t, v) for t, v in zip(abi_type.components, value)]
    # AbiKind.OTHER
    if isinstance(value, (bytes, bytearray)):
        return _hex(value)
    if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
        return str(value)
    return value


# ============================================================================
# DECODING
# ============================================================================


def _decode_indexed(event: EventDefinition, raw_log: RawLogEntry) -> dict[str, Any]:
    indexed = event.indexed_arguments
    available = len(raw_log.topics) - 1
    if available < len(indexed):
        raise DecodeError(
            DecodeErrorKind.MALFORMED_LOG,
            f"{event.name} declares {len(indexed)} indexed args but log has {available} topics",
            event.name,
        )
    return {
        arg.name: format_topic(arg.abi_type, raw_log.topics[i + 1])
        for i, arg in enumerate(indexed)
    }


def _decode_data(event: EventDefinition, raw_log: RawLogEntry) -> dict[str, Any]:
    data_args = event.data_arguments
    if not data_args:
        return {}
    try:
        values = abi_decode([a.abi_type.canonical for a in data_args], raw_log.data)
    except Exception as exc:
        raise DecodeError(
            DecodeErrorKind.CORRUPT_PAYLOAD,
            f"Failed to unpack data for {event.name}: {exc}",
            event.name,
        ) from exc
    return {arg.name: format_value(arg.abi_type, v) for arg, v in zip(data_args, values)}


def decode_log(schema: InterfaceSchema, raw_log: RawLogEntry) -> DecodedEvent:
    """
    Decode a raw log against an interface schema.

    Raises:
        DecodeError: UNKNOWN_EVENT, MALFORMED_LOG or CORRUPT_PAYLOAD.
    """
    if not raw_log.topics:
        raise DecodeError(DecodeErrorKind.UNKNOWN_EVENT, "Log has no topics")
    event = schema.lookup(raw_log.topics[0])
    if event is None:
        raise DecodeError(
            DecodeErrorKind.UNKNOWN_EVENT,
            f"No event in {schema.name} for topic0 {_hex(raw_log.topics[0])}",
        )

    indexed_values = _decode_indexed(event, raw_log)
    data_values = _decode_data(event, raw_log)

    # Merge in declared order
    fields: dict[str, Any] = {}
    for arg in event.arguments:
        fields[arg.name] = indexed_values[arg.name] if arg.indexed else data_values[arg.name]
    return DecodedEvent(name=event.name, signature=event.signature, fields=fields)


class SchemaDecoder:
    """Decoder bound to one contract's schema, with logging of skipped logs."""

    def __init__(self, schema: InterfaceSchema) -> None:
        self._schema = schema
        self._logger = setup_module_logger(
            "schema_decoder", "schema_decoder.log", module_folder="Decoder_Logs"
        )

    @property
    def schema(self) -> InterfaceSchema:
        return self._schema

    def decode(self, raw_log: RawLogEntry) -> DecodedEvent:
        try:
            return decode_log(self._schema, raw_log)
        except DecodeError as exc:
            if exc.kind is DecodeErrorKind.UNKNOWN_EVENT:
                self._logger.debug(
                    "Skipping unknown event tx=%s index=%d: %s",
                    raw_log.transaction_hash,
                    raw_log.log_index,
                    exc,
                )
            else:
                self._logger.warning(
                    "Skipping %s log tx=%s index=%d block=%d: %s",
                    exc.kind.value,
                    raw_log.transaction_hash,
                    raw_log.log_index,
                    raw_log.block_number,
                    exc,
                )
            raise
