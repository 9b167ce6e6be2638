"""
Per-log processing pool: decode -> normalize -> forward.

Every received log runs as its own asyncio task so a slow sink call never
blocks the subscription read loop. The number of tasks in flight is bounded
by a semaphore; ``submit`` waits for a free slot, which is the only
backpressure applied to the stream. Failures inside a task are counted and
logged here and never reach the retry orchestrator.

Usage:
    processor = LogProcessor(decoder, normalizer, forwarder, stats, chain_id=80002)
    await processor.submit(raw_log, transport)
    await processor.drain(timeout=15)
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from config.loader import get_config
from core.schema_decoder import DecodeError, SchemaDecoder
from data.rpc_transport import RpcError
from ingest_logging.logger_manager import (
    deep_dive_enabled,
    log_data_entry,
    log_data_output,
    log_data_processing,
    setup_module_logger,
)
from shared.constants import DEFAULT_DRAIN_TIMEOUT_SECONDS, DEFAULT_MAX_IN_FLIGHT
from shared.types import ForwardStatus, RawLogEntry, TransactionInfo

if TYPE_CHECKING:
    from core.normalizer import EventNormalizer
    from core.stats import PipelineStats
    from data.rpc_transport import RpcTransport
    from execution.forwarder import Forwarder


class LogProcessor:
    """Bounded task pool for one (chain, contract) subscription target."""

    def __init__(
        self,
        decoder: SchemaDecoder,
        normalizer: EventNormalizer,
        forwarder: Forwarder,
        stats: PipelineStats,
        chain_id: int,
    ) -> None:
        self._decoder = decoder
        self._normalizer = normalizer
        self._forwarder = forwarder
        self._stats = stats
        self._chain_id = chain_id

        pipeline_cfg = get_config().get_pipeline_config()
        self._max_in_flight: int = int(pipeline_cfg.get("max_in_flight") or DEFAULT_MAX_IN_FLIGHT)
        self._enrich_transactions: bool = pipeline_cfg.get("enrich_transactions", False)
        self._skip_removed: bool = pipeline_cfg.get("skip_removed_logs", True)

        self._semaphore = asyncio.Semaphore(self._max_in_flight)
        self._tasks: set[asyncio.Task] = set()

        self._logger = setup_module_logger(
            "log_processor", "log_processor.log", module_folder="Pipeline_Logs"
        )

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def max_in_flight(self) -> int:
        return self._max_in_flight

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def submit(self, raw_log: RawLogEntry, transport: RpcTransport | None = None) -> None:
        """Schedule one log. Waits while ``max_in_flight`` tasks are running."""
        self._stats.logs_received += 1
        await self._semaphore.acquire()
        task = asyncio.create_task(
            self._run(raw_log, transport),
            name=f"log_{raw_log.transaction_hash[:10]}_{raw_log.log_index}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    async def drain(self, timeout: float = DEFAULT_DRAIN_TIMEOUT_SECONDS) -> bool:
        """
        Wait for in-flight tasks. Tasks still running after ``timeout`` are
        cancelled. Returns True when everything finished in time.
        """
        if not self._tasks:
            return True
        self._logger.info("Draining %d in-flight log tasks (timeout %.1fs)", len(self._tasks), timeout)
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if not pending:
            return True
        self._logger.warning("Cancelling %d log tasks still running after drain", len(pending))
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        return False

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._semaphore.release()

    async def _run(self, raw_log: RawLogEntry, transport: RpcTransport | None) -> None:
        try:
            await self._process(raw_log, transport)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._stats.processing_errors += 1
            self._logger.error(
                "Processing failed for tx=%s index=%d: %s",
                raw_log.transaction_hash,
                raw_log.log_index,
                exc,
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _process(self, raw_log: RawLogEntry, transport: RpcTransport | None) -> None:
        started = time.monotonic()
        trace = deep_dive_enabled()
        trace_id = f"{raw_log.transaction_hash}:{raw_log.log_index}"

        if trace:
            log_data_entry(
                trace_id,
                "log_processor",
                "raw_log",
                "RawLogEntry",
                {
                    "address": raw_log.address,
                    "topics": ["0x" + t.hex() for t in raw_log.topics],
                    "data_size": len(raw_log.data),
                    "block_number": raw_log.block_number,
                    "removed": raw_log.removed,
                },
            )

        if raw_log.removed and self._skip_removed:
            self._stats.removed_skipped += 1
            self._logger.info(
                "Skipping removed log tx=%s index=%d block=%d",
                raw_log.transaction_hash,
                raw_log.log_index,
                raw_log.block_number,
            )
            return

        try:
            decoded = self._decoder.decode(raw_log)
        except DecodeError as exc:
            self._stats.decode_skipped[exc.kind.value] += 1
            return
        self._stats.events_decoded += 1

        tx_info: TransactionInfo | None = None
        if self._enrich_transactions or self._normalizer.needs_transaction(raw_log, decoded):
            tx_info = await self._fetch_transaction(raw_log, transport)

        record = self._normalizer.normalize(
            raw_log, decoded, self._chain_id, tx_info.sender if tx_info else None
        )

        if trace:
            log_data_processing(
                trace_id,
                "log_processor",
                "normalize",
                "NormalizedRecord",
                {"event": decoded.name, "fields": decoded.fields},
                record.to_dict(),
            )

        ack = await self._forwarder.forward(record)
        if ack.status is ForwardStatus.DELIVERED:
            self._stats.records_forwarded += 1
        elif ack.status is ForwardStatus.SKIPPED:
            self._stats.forward_skipped += 1
        elif ack.failure is not None:
            self._stats.forward_failures[ack.failure.value] += 1

        self._stats.record_latency(time.monotonic() - started)

        if trace:
            log_data_output(
                trace_id,
                "log_processor",
                "forward_ack",
                "ForwardAck",
                {"status": ack.status.value, "endpoint": ack.endpoint, "http_status": ack.http_status},
                next_stage="sink",
            )

    async def _fetch_transaction(
        self, raw_log: RawLogEntry, transport: RpcTransport | None
    ) -> TransactionInfo | None:
        if transport is None or transport.closed:
            self._logger.warning(
                "No live transport to look up tx %s", raw_log.transaction_hash
            )
            return None
        try:
            tx_info = await transport.get_transaction(raw_log.transaction_hash)
        except (RpcError, ValueError) as exc:
            self._logger.warning("Transaction lookup failed for %s: %s", raw_log.transaction_hash, exc)
            return None
        if tx_info is None:
            self._logger.warning("Transaction %s not found", raw_log.transaction_hash)
            return None
        if self._enrich_transactions:
            self._logger.debug(
                "tx=%s from=%s nonce=%d gas_price=%d value=%d input=%d bytes",
                tx_info.hash,
                tx_info.sender,
                tx_info.nonce,
                tx_info.gas_price,
                tx_info.value,
                tx_info.input_size,
            )
        return tx_info
