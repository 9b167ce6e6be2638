"""
Shared data types for the contract event pipeline.

Centralized dataclasses and enums used across all modules.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from shared.constants import (
    DEFAULT_RETRY_BASE_DELAY_SECONDS,
    DEFAULT_RETRY_JITTER_SECONDS,
    DEFAULT_RETRY_MAX_ATTEMPTS,
    DEFAULT_RETRY_MAX_DELAY_SECONDS,
    DEFAULT_RETRY_MULTIPLIER,
)

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class OrchestratorState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    FAILED = "failed"
    ABORTED = "aborted"  # retries exhausted, process-fatal
    STOPPED = "stopped"  # graceful shutdown


class DecodeErrorKind(Enum):
    UNKNOWN_EVENT = "unknown_event"  # topic0 not in schema
    MALFORMED_LOG = "malformed_log"  # fewer topics than indexed args
    CORRUPT_PAYLOAD = "corrupt_payload"  # data failed to unpack


class ForwardStatus(Enum):
    DELIVERED = "delivered"
    SKIPPED = "skipped"  # no endpoint for event name
    FAILED = "failed"


class ForwardFailure(Enum):
    CLIENT_ERROR = "client_error"  # 4xx
    SERVER_ERROR = "server_error"  # 5xx / unexpected status
    TIMEOUT = "timeout"
    TRANSPORT = "transport"


# ---------------------------------------------------------------------------
# Hex helpers
# ---------------------------------------------------------------------------


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    raise ValueError(f"Cannot convert {value!r} to int")


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    raise ValueError(f"Cannot convert {value!r} to bytes")


def _to_hex_str(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, str):
        return (value if value.startswith("0x") else "0x" + value).lower()
    raise ValueError(f"Cannot convert {value!r} to hex string")


# ---------------------------------------------------------------------------
# Log / event types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawLogEntry:
    """One log as delivered by the node (consumed once)."""

    address: str  # lowercase 0x hex
    topics: tuple[bytes, ...]  # topics[0] = event signature hash
    data: bytes
    block_number: int
    transaction_hash: str  # lowercase 0x hex
    log_index: int
    removed: bool = False

    @classmethod
    def from_rpc(cls, log: dict[str, Any]) -> RawLogEntry:
        """Build from an ``eth_subscription`` log result. Raises ValueError on bad input."""
        if not isinstance(log, dict):
            raise ValueError(f"Malformed log entry: expected an object, got {type(log).__name__}")
        try:
            topics = tuple(_to_bytes(t) for t in log.get("topics", []))
            if any(len(t) != 32 for t in topics):
                raise ValueError("topic is not 32 bytes")
            return cls(
                address=_to_hex_str(log["address"]),
                topics=topics,
                data=_to_bytes(log.get("data", "0x")),
                block_number=_to_int(log["blockNumber"]),
                transaction_hash=_to_hex_str(log["transactionHash"]),
                log_index=_to_int(log["logIndex"]),
                removed=bool(log.get("removed", False)),
            )
        except (AttributeError, KeyError, TypeError) as exc:
            raise ValueError(f"Malformed log entry: {exc}") from exc


@dataclass(frozen=True)
class DecodedEvent:
    name: str
    signature: str  # e.g. "Mint(address,uint256)"
    fields: dict[str, Any]  # declared argument order


@dataclass(frozen=True)
class NormalizedRecord:
    """Storage-ready event; the unit of idempotent delivery."""

    id: str
    chain_id: int
    contract_address: str
    event_name: str
    caller_address: str
    payload: dict[str, Any]
    block_number: int
    transaction_hash: str
    log_index: int
    created_at: datetime
    updated_at: datetime
    amount: str | None = None
    to_address: str | None = None
    message_id: str | None = None
    source_chain_selector: str | None = None
    destination_chain_selector: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "chain_id": self.chain_id,
            "contract_address": self.contract_address,
            "event_name": self.event_name,
            "caller_address": self.caller_address,
            "payload": dict(self.payload),
            "block_number": self.block_number,
            "transaction_hash": self.transaction_hash,
            "log_index": self.log_index,
            "amount": self.amount,
            "to_address": self.to_address,
            "message_id": self.message_id,
            "source_chain_selector": self.source_chain_selector,
            "destination_chain_selector": self.destination_chain_selector,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class ForwardAck:
    status: ForwardStatus
    record_id: str
    endpoint: str | None = None
    http_status: int | None = None
    failure: ForwardFailure | None = None
    error: str | None = None

    @property
    def delivered(self) -> bool:
        return self.status is ForwardStatus.DELIVERED


# ---------------------------------------------------------------------------
# Subscription / retry types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LogFilter:
    """Server-side filter for ``eth_subscribe("logs", ...)``."""

    address: str
    topics: tuple[str, ...] | None = None  # optional topic0 allow-list

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {"address": self.address}
        if self.topics:
            params["topics"] = [list(self.topics)]
        return params


@dataclass(frozen=True)
class SubscriptionTarget:
    """One (chain, contract) pair the pipeline follows."""

    chain_id: int
    contract_type: str  # key into config/contracts.json, e.g. "Token"
    contract_address: str
    event_topics: tuple[str, ...] | None = None

    @property
    def label(self) -> str:
        return f"{self.contract_type}@{self.chain_id}"

    def log_filter(self) -> LogFilter:
        return LogFilter(address=self.contract_address, topics=self.event_topics)


@dataclass(frozen=True)
class RetryPolicy:
    """Reconnect delay schedule. Defaults give a fixed delay with no jitter."""

    base_delay: float = DEFAULT_RETRY_BASE_DELAY_SECONDS
    multiplier: float = DEFAULT_RETRY_MULTIPLIER
    max_delay: float = DEFAULT_RETRY_MAX_DELAY_SECONDS
    jitter: float = DEFAULT_RETRY_JITTER_SECONDS
    max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS

    def delay_for(self, attempt: int) -> float:
        """Delay before the next connect after the ``attempt``-th consecutive failure."""
        delay = min(self.base_delay * (self.multiplier ** max(attempt - 1, 0)), self.max_delay)
        if self.jitter > 0:
            delay += random.uniform(0, self.jitter)
        return delay

    @classmethod
    def from_config(cls, cfg: dict[str, Any]) -> RetryPolicy:
        return cls(
            base_delay=float(cfg.get("base_delay_seconds", DEFAULT_RETRY_BASE_DELAY_SECONDS)),
            multiplier=float(cfg.get("multiplier", DEFAULT_RETRY_MULTIPLIER)),
            max_delay=float(cfg.get("max_delay_seconds", DEFAULT_RETRY_MAX_DELAY_SECONDS)),
            jitter=float(cfg.get("jitter_max_seconds", DEFAULT_RETRY_JITTER_SECONDS)),
            max_attempts=int(cfg.get("max_attempts", DEFAULT_RETRY_MAX_ATTEMPTS)),
        )


@dataclass
class TransactionInfo:
    """Subset of ``eth_getTransactionByHash`` used for diagnostics and caller lookup."""

    hash: str
    sender: str
    nonce: int
    gas_price: int
    value: int
    input_size: int
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_rpc(cls, tx: dict[str, Any]) -> TransactionInfo:
        input_data = tx.get("input", "0x") or "0x"
        return cls(
            hash=_to_hex_str(tx.get("hash", "0x")),
            sender=_to_hex_str(tx.get("from", "0x")),
            nonce=_to_int(tx.get("nonce", 0)),
            gas_price=_to_int(tx.get("gasPrice", 0) or 0),
            value=_to_int(tx.get("value", 0)),
            input_size=max(len(input_data) - 2, 0) // 2,
            raw=tx,
        )
