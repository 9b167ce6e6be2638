"""
Event normalizer.

Merges a decoded event with its log metadata into the canonical
``NormalizedRecord`` delivered to the sink.

The record id is a pure function of (transaction hash, log index) so a log
redelivered after a reconnect maps to the same id and the sink's upsert
absorbs the duplicate.

Caller (initiator) extraction is a named strategy chosen per event name:

    heuristic            first arg named ``from`` -> zero-word second topic
                         means tx sender -> else second topic's trailing bytes
    topic                trailing 20 bytes of the second topic
    transaction_sender   ``from`` of the emitting transaction
    argument:<name>      a decoded argument by name

Usage:
    normalizer = EventNormalizer(caller_strategies={"Transfer": "argument:from"})
    if normalizer.needs_transaction(raw_log, decoded):
        tx_sender = ...
    record = normalizer.normalize(raw_log, decoded, chain_id, tx_sender)
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Callable

from web3 import Web3

from ingest_logging.logger_manager import setup_module_logger
from shared.constants import ADDRESS_SIZE, DEFAULT_CALLER_STRATEGY, ZERO_ADDRESS, ZERO_WORD
from shared.types import DecodedEvent, NormalizedRecord, RawLogEntry

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")

# record field -> decoded argument names tried in order
OPTIONAL_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "amount": ("amount", "value"),
    "to_address": ("to", "receiver", "recipient"),
    "message_id": ("messageId",),
    "source_chain_selector": ("sourceChainSelector",),
    "destination_chain_selector": ("destinationChainSelector",),
}


def record_id(transaction_hash: str, log_index: int) -> str:
    """Deterministic record id: keccak256("<lowercase tx hash>:<log index>")."""
    return Web3.to_hex(Web3.keccak(text=f"{transaction_hash.lower()}:{int(log_index)}"))


def _is_plausible_address(value: Any) -> bool:
    return isinstance(value, str) and bool(_ADDRESS_RE.match(value)) and value != ZERO_ADDRESS


def _topic_address(raw_log: RawLogEntry) -> str | None:
    if len(raw_log.topics) < 2:
        return None
    return "0x" + raw_log.topics[1][-ADDRESS_SIZE:].hex()


# ============================================================================
# CALLER STRATEGIES
# ============================================================================


class CallerStrategy:
    """Extracts the initiator address for one event type."""

    name = "base"

    def needs_transaction(self, raw_log: RawLogEntry, decoded: DecodedEvent) -> bool:
        return False

    def resolve(
        self, raw_log: RawLogEntry, decoded: DecodedEvent, tx_sender: str | None
    ) -> str | None:
        raise NotImplementedError


class HeuristicCaller(CallerStrategy):
    name = "heuristic"

    def _from_argument(self, decoded: DecodedEvent) -> str | None:
        first = next(iter(decoded.fields.items()), None)
        if first is not None and first[0] == "from" and _is_plausible_address(first[1]):
            return first[1]
        return None

    def needs_transaction(self, raw_log: RawLogEntry, decoded: DecodedEvent) -> bool:
        if self._from_argument(decoded) is not None:
            return False
        return len(raw_log.topics) < 2 or raw_log.topics[1] == ZERO_WORD

    def resolve(
        self, raw_log: RawLogEntry, decoded: DecodedEvent, tx_sender: str | None
    ) -> str | None:
        from_arg = self._from_argument(decoded)
        if from_arg is not None:
            return from_arg
        if len(raw_log.topics) < 2 or raw_log.topics[1] == ZERO_WORD:
            return tx_sender
        return _topic_address(raw_log)


class TopicCaller(CallerStrategy):
    name = "topic"

    def resolve(
        self, raw_log: RawLogEntry, decoded: DecodedEvent, tx_sender: str | None
    ) -> str | None:
        return _topic_address(raw_log)


class TransactionSenderCaller(CallerStrategy):
    name = "transaction_sender"

    def needs_transaction(self, raw_log: RawLogEntry, decoded: DecodedEvent) -> bool:
        return True

    def resolve(
        self, raw_log: RawLogEntry, decoded: DecodedEvent, tx_sender: str | None
    ) -> str | None:
        return tx_sender


class ArgumentCaller(CallerStrategy):
    name = "argument"

    def __init__(self, argument: str) -> None:
        self.argument = argument

    def resolve(
        self, raw_log: RawLogEntry, decoded: DecodedEvent, tx_sender: str | None
    ) -> str | None:
        value = decoded.fields.get(self.argument)
        return value if isinstance(value, str) else None


_STRATEGIES: dict[str, Callable[[], CallerStrategy]] = {
    HeuristicCaller.name: HeuristicCaller,
    TopicCaller.name: TopicCaller,
    TransactionSenderCaller.name: TransactionSenderCaller,
}


def build_caller_strategy(spec: str) -> CallerStrategy:
    """Build a strategy from its config name. Raises ValueError for unknown names."""
    if spec.startswith("argument:"):
        argument = spec.split(":", 1)[1]
        if not argument:
            raise ValueError("argument strategy needs an argument name")
        return ArgumentCaller(argument)
    factory = _STRATEGIES.get(spec)
    if factory is None:
        raise ValueError(f"Unknown caller strategy: {spec!r}")
    return factory()


# ============================================================================
# NORMALIZER
# ============================================================================


class EventNormalizer:
    def __init__(
        self,
        caller_strategies: dict[str, str] | None = None,
        field_mappings: dict[str, dict[str, str]] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        strategies = dict(caller_strategies or {})
        self._default_strategy = build_caller_strategy(
            strategies.pop("default", DEFAULT_CALLER_STRATEGY)
        )
        self._strategies = {name: build_caller_strategy(s) for name, s in strategies.items()}
        self._field_mappings = field_mappings or {}
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._logger = setup_module_logger(
            "normalizer", "normalizer.log", module_folder="Pipeline_Logs"
        )

    def strategy_for(self, event_name: str) -> CallerStrategy:
        return self._strategies.get(event_name, self._default_strategy)

    def needs_transaction(self, raw_log: RawLogEntry, decoded: DecodedEvent) -> bool:
        return self.strategy_for(decoded.name).needs_transaction(raw_log, decoded)

    def _optional_field(self, decoded: DecodedEvent, field_name: str) -> str | None:
        override = self._field_mappings.get(decoded.name, {}).get(field_name)
        candidates = (override,) if override else OPTIONAL_FIELD_ALIASES[field_name]
        for key in candidates:
            if key in decoded.fields and decoded.fields[key] is not None:
                return str(decoded.fields[key])
        return None

    def normalize(
        self,
        raw_log: RawLogEntry,
        decoded: DecodedEvent,
        chain_id: int,
        tx_sender: str | None = None,
    ) -> NormalizedRecord:
        caller = self.strategy_for(decoded.name).resolve(raw_log, decoded, tx_sender)
        if caller is None:
            self._logger.debug(
                "No caller resolved for %s tx=%s index=%d",
                decoded.name,
                raw_log.transaction_hash,
                raw_log.log_index,
            )
        now = self._clock()
        return NormalizedRecord(
            id=record_id(raw_log.transaction_hash, raw_log.log_index),
            chain_id=chain_id,
            contract_address=raw_log.address.lower(),
            event_name=decoded.name,
            caller_address=(caller or "").lower(),
            payload=dict(decoded.fields),
            block_number=raw_log.block_number,
            transaction_hash=raw_log.transaction_hash,
            log_index=raw_log.log_index,
            created_at=now,
            updated_at=now,
            amount=self._optional_field(decoded, "amount"),
            to_address=self._optional_field(decoded, "to_address"),
            message_id=self._optional_field(decoded, "message_id"),
            source_chain_selector=self._optional_field(decoded, "source_chain_selector"),
            destination_chain_selector=self._optional_field(decoded, "destination_chain_selector"),
        )
