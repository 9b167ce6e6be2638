"""
Processing counters for the event pipeline.

One ``PipelineStats`` instance is created by the composition root and passed
to every component that updates it. All updates happen on the single event
loop thread, so plain integers are sufficient.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any


@dataclass
class PipelineStats:
    logs_received: int = 0
    events_decoded: int = 0
    decode_skipped: Counter = field(default_factory=Counter)  # DecodeErrorKind.value -> count
    removed_skipped: int = 0
    records_forwarded: int = 0
    forward_skipped: int = 0
    forward_failures: Counter = field(default_factory=Counter)  # ForwardFailure.value -> count
    processing_errors: int = 0
    connection_failures: int = 0
    subscriptions_opened: int = 0
    _latency_total: float = 0.0
    _latency_count: int = 0

    def record_latency(self, seconds: float) -> None:
        self._latency_total += seconds
        self._latency_count += 1

    @property
    def mean_latency_ms(self) -> float:
        if self._latency_count == 0:
            return 0.0
        return self._latency_total / self._latency_count * 1000

    def snapshot(self) -> dict[str, Any]:
        return {
            "logs_received": self.logs_received,
            "events_decoded": self.events_decoded,
            "decode_skipped": dict(self.decode_skipped),
            "removed_skipped": self.removed_skipped,
            "records_forwarded": self.records_forwarded,
            "forward_skipped": self.forward_skipped,
            "forward_failures": dict(self.forward_failures),
            "processing_errors": self.processing_errors,
            "connection_failures": self.connection_failures,
            "subscriptions_opened": self.subscriptions_opened,
            "mean_latency_ms": round(self.mean_latency_ms, 3),
        }
