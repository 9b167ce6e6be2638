"""
Contract interface schema for the event pipeline.

Builds an immutable, read-only view of a contract ABI's events: each event's
canonical signature, topic0 hash, and ordered arguments typed with the
``AbiType`` tagged variant. Built once per contract type and shared by all
decode tasks.

Usage:
    schema = InterfaceSchema.from_abi("Token", get_config().get_abi("Token"))
    event = schema.lookup(raw_log.topics[0])
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from web3 import Web3


class SchemaError(ValueError):
    """Raised when an ABI entry cannot be turned into an event definition."""


class AbiKind(Enum):
    ADDRESS = "address"
    UINT = "uint"
    INT = "int"
    BOOL = "bool"
    BYTES = "bytes"  # dynamic
    FIXED_BYTES = "fixed_bytes"  # bytes1..bytes32
    STRING = "string"
    ARRAY = "array"
    TUPLE = "tuple"
    OTHER = "other"  # fixed-point and anything else the codec accepts


_ARRAY_RE = re.compile(r"^(.*)\[(\d*)\]$")
_SIZED_RE = re.compile(r"^(uint|int|bytes)(\d+)$")


@dataclass(frozen=True)
class AbiType:
    """Tagged variant over ABI types."""

    kind: AbiKind
    canonical: str
    bits: int | None = None  # uint/int width
    size: int | None = None  # bytesN width, or fixed array length
    element: AbiType | None = None  # array element type
    components: tuple[AbiType, ...] = ()  # tuple members

    @classmethod
    def parse(cls, canonical: str) -> AbiType:
        """Parse a canonical type string such as ``uint256``, ``bytes32[]`` or ``(address,uint256)``."""
        canonical = canonical.strip()
        match = _ARRAY_RE.match(canonical)
        if match:
            inner, length = match.groups()
            return cls(
                kind=AbiKind.ARRAY,
                canonical=canonical,
                size=int(length) if length else None,
                element=cls.parse(inner),
            )
        if canonical.startswith("(") and canonical.endswith(")"):
            parts = _split_top_level(canonical[1:-1])
            return cls(
                kind=AbiKind.TUPLE,
                canonical=canonical,
                components=tuple(cls.parse(p) for p in parts),
            )
        if canonical == "address":
            return cls(kind=AbiKind.ADDRESS, canonical=canonical)
        if canonical == "bool":
            return cls(kind=AbiKind.BOOL, canonical=canonical)
        if canonical == "string":
            return cls(kind=AbiKind.STRING, canonical=canonical)
        if canonical == "bytes":
            return cls(kind=AbiKind.BYTES, canonical=canonical)
        if canonical in ("uint", "int"):
            return cls.parse(canonical + "256")
        sized = _SIZED_RE.match(canonical)
        if sized:
            base, width = sized.group(1), int(sized.group(2))
            if base == "uint":
                return cls(kind=AbiKind.UINT, canonical=canonical, bits=width)
            if base == "int":
                return cls(kind=AbiKind.INT, canonical=canonical, bits=width)
            return cls(kind=AbiKind.FIXED_BYTES, canonical=canonical, size=width)
        return cls(kind=AbiKind.OTHER, canonical=canonical)


def _split_top_level(body: str) -> list[str]:
    """Split a tuple body on commas that are not nested inside parentheses."""
    if not body:
        return []
    parts, depth, start = [], 0, 0
    for i, ch in enumerate(body):
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append(body[start:i])
            start = i + 1
    parts.append(body[start:])
    return parts


def canonical_type(abi_input: dict[str, Any]) -> str:
    """Canonical signature type for an ABI input, expanding tuple components."""
    raw = abi_input.get("type", "")
    if raw.startswith("tuple"):
        suffix = raw[len("tuple"):]
        inner = ",".join(canonical_type(c) for c in abi_input.get("components", []))
        return f"({inner}){suffix}"
    base, bracket, rest = raw.partition("[")
    if base in ("uint", "int"):
        base += "256"
    return base + bracket + rest


# ---------------------------------------------------------------------------
# Event definitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EventArgument:
    name: str
    abi_type: AbiType
    indexed: bool


@dataclass(frozen=True)
class EventDefinition:
    name: str
    signature: str
    topic0: bytes
    arguments: tuple[EventArgument, ...]

    @property
    def indexed_arguments(self) -> tuple[EventArgument, ...]:
        return tuple(a for a in self.arguments if a.indexed)

    @property
    def data_arguments(self) -> tuple[EventArgument, ...]:
        return tuple(a for a in self.arguments if not a.indexed)

    @property
    def topic0_hex(self) -> str:
        return Web3.to_hex(self.topic0)

    @classmethod
    def from_abi_entry(cls, entry: dict[str, Any]) -> EventDefinition:
        name = entry.get("name")
        if not name:
            raise SchemaError(f"Event entry without a name: {entry!r}")
        inputs = entry.get("inputs", [])
        types = [canonical_type(i) for i in inputs]
        signature = f"{name}({','.join(types)})"
        arguments = tuple(
            EventArgument(
                name=i.get("name") or f"arg{pos}",
                abi_type=AbiType.parse(t),
                indexed=bool(i.get("indexed", False)),
            )
            for pos, (i, t) in enumerate(zip(inputs, types))
        )
        return cls(
            name=name,
            signature=signature,
            topic0=bytes(Web3.keccak(text=signature)),
            arguments=arguments,
        )


class InterfaceSchema:
    """Immutable set of a contract's events, addressable by topic0 hash."""

    def __init__(self, name: str, events: tuple[EventDefinition, ...]) -> None:
        self._name = name
        self._events = events
        self._by_topic: Mapping[bytes, EventDefinition] = MappingProxyType(
            {e.topic0: e for e in events}
        )

    @classmethod
    def from_abi(cls, name: str, abi: list[dict[str, Any]]) -> InterfaceSchema:
        """Build from an ABI JSON list; anonymous events have no topic0 and are skipped."""
        events = tuple(
            EventDefinition.from_abi_entry(entry)
            for entry in abi
            if entry.get("type") == "event" and not entry.get("anonymous", False)
        )
        return cls(name, events)

    @property
    def name(self) -> str:
        return self._name

    @property
    def events(self) -> tuple[EventDefinition, ...]:
        return self._events

    def lookup(self, topic0: bytes) -> EventDefinition | None:
        return self._by_topic.get(bytes(topic0))

    def event_by_name(self, name: str) -> EventDefinition | None:
        for event in self._events:
            if event.name == name:
                return event
        return None

    def topic_hashes(self) -> tuple[str, ...]:
        return tuple(e.topic0_hex for e in self._events)

    def __len__(self) -> int:
        return len(self._events)

    def __repr__(self) -> str:
        return f"InterfaceSchema({self._name!r}, events={[e.name for e in self._events]})"
