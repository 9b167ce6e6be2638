"""
Contract Event Pipeline: main entrypoint.

Single-process asyncio runner. For every configured (chain, contract) target
it launches:
    1. RetryOrchestrator: connect, subscribe, drain logs into a LogProcessor
    2. ContractMonitor: periodic view-function poll (optional)

Each log is decoded against the contract's ABI, normalized into a storage
record with a deterministic id, and POSTed to the sink endpoint for its
event name. A target that exhausts its reconnect budget aborts the process
with a non-zero exit status.

Usage:
    python main.py
"""

from __future__ import annotations

import asyncio
import signal
import sys

from dotenv import load_dotenv

from config.loader import get_config
from config.validate import ConfigValidationError, validate_all_configs
from core.contract_monitor import ContractMonitor
from core.interface_schema import InterfaceSchema
from core.log_processor import LogProcessor
from core.normalizer import EventNormalizer
from core.retry_orchestrator import OrchestratorAbortedError, RetryOrchestrator
from core.schema_decoder import SchemaDecoder
from core.stats import PipelineStats
from data.connection_manager import ConnectionManager
from execution.forwarder import Forwarder
from ingest_logging.logger_manager import create_module_log_directories, setup_module_logger
from shared.constants import DEFAULT_DRAIN_TIMEOUT_SECONDS
from shared.types import SubscriptionTarget

# ---------------------------------------------------------------------------
# Module logger (logged to logs/ root, no sub-folder)
# ---------------------------------------------------------------------------
_logger = setup_module_logger("main", "main.log")


# ---------------------------------------------------------------------------
# Startup banner
# ---------------------------------------------------------------------------


def _log_banner(targets: list[SubscriptionTarget], sink_url: str, max_in_flight: int) -> None:
    """Log a concise startup summary."""
    _logger.info("=" * 60)
    _logger.info("Contract event pipeline starting")
    _logger.info("=" * 60)
    for target in targets:
        _logger.info("  target          : %s %s", target.label, target.contract_address)
    _logger.info("  sink            : %s", sink_url or "(not set)")
    _logger.info("  max_in_flight   : %d", max_in_flight)
    _logger.info("=" * 60)


def build_targets() -> list[tuple[SubscriptionTarget, InterfaceSchema, list]]:
    """Resolve configured targets into (target, schema, abi) triples."""
    cfg = get_config()
    contracts_cfg = cfg.get_contracts_config()
    built = []
    for entry in cfg.get_targets():
        chain_id = int(entry["chain_id"])
        contract_type = entry["contract"]
        abi = cfg.get_abi(contracts_cfg[contract_type]["abi"])
        schema = InterfaceSchema.from_abi(contract_type, abi)
        address = cfg.get_contract_address(contract_type, chain_id)
        if not address:
            raise ValueError(f"No {contract_type} address for chain {chain_id}")

        # Optional topic0 allow-list by event name
        event_names = entry.get("events")
        topics = None
        if event_names:
            events = [schema.event_by_name(name) for name in event_names]
            missing = [n for n, e in zip(event_names, events) if e is None]
            if missing:
                raise ValueError(f"{contract_type} ABI has no events named {missing}")
            topics = tuple(e.topic0_hex for e in events)

        target = SubscriptionTarget(
            chain_id=chain_id,
            contract_type=contract_type,
            contract_address=address.lower(),
            event_topics=topics,
        )
        built.append((target, schema, abi))
    return built


# ---------------------------------------------------------------------------
# Task done callback: detect unhandled exceptions
# ---------------------------------------------------------------------------


def _task_done_callback(
    task: asyncio.Task[None],
    shutdown_event: asyncio.Event,
    aborted: list[BaseException],
) -> None:
    """Called when any pipeline task finishes (normally or with error)."""
    try:
        exc = task.exception()
    except asyncio.CancelledError:
        _logger.info("Task %s cancelled", task.get_name())
        return

    if isinstance(exc, OrchestratorAbortedError):
        _logger.critical("Task %s aborted: %s", task.get_name(), exc)
        aborted.append(exc)
        shutdown_event.set()
    elif exc is not None:
        _logger.critical(
            "Task %s failed with unhandled exception: %s",
            task.get_name(),
            exc,
            exc_info=exc,
        )
        aborted.append(exc)
        shutdown_event.set()


# ---------------------------------------------------------------------------
# Main async entry
# ---------------------------------------------------------------------------


async def _run() -> int:
    """Wire all components, run until shutdown, return the exit status."""
    # ------------------------------------------------------------------
    # 1. Load environment and validate configuration
    # ------------------------------------------------------------------
    load_dotenv()
    create_module_log_directories()

    try:
        validate_all_configs()
    except ConfigValidationError as exc:
        _logger.critical("Config validation failed:\n%s", exc)
        return 1

    cfg = get_config()
    pipeline_cfg = cfg.get_pipeline_config()
    monitor_enabled = pipeline_cfg.get("contract_monitor", {}).get("enabled", False)
    drain_timeout = pipeline_cfg.get("drain_timeout_seconds", DEFAULT_DRAIN_TIMEOUT_SECONDS)

    try:
        targets = build_targets()
    except (KeyError, ValueError) as exc:
        _logger.critical("Failed to resolve targets: %s", exc)
        return 1

    _log_banner(
        [t for t, _, _ in targets],
        cfg.get_sink_config().get("base_url", ""),
        pipeline_cfg.get("max_in_flight", 0),
    )

    # ------------------------------------------------------------------
    # 2. Initialize shared instances (dependency order)
    # ------------------------------------------------------------------
    stats = PipelineStats()
    forwarder = Forwarder()
    normalizer = EventNormalizer(
        caller_strategies=pipeline_cfg.get("caller_strategies"),
        field_mappings=pipeline_cfg.get("field_mappings"),
    )
    connection_manager = ConnectionManager()

    orchestrators: list[RetryOrchestrator] = []
    processors: list[LogProcessor] = []
    monitors: list[ContractMonitor] = []
    for target, schema, abi in targets:
        processor = LogProcessor(
            SchemaDecoder(schema), normalizer, forwarder, stats, chain_id=target.chain_id
        )
        processors.append(processor)
        orchestrators.append(
            RetryOrchestrator(target, connection_manager, processor, stats=stats)
        )
        if monitor_enabled:
            monitors.append(ContractMonitor(target, abi))

    # ------------------------------------------------------------------
    # 3. Signal handling for graceful shutdown
    # ------------------------------------------------------------------
    shutdown_event = asyncio.Event()
    aborted: list[BaseException] = []
    loop = asyncio.get_running_loop()

    def _handle_signal(sig: signal.Signals) -> None:
        _logger.info("Received %s, initiating graceful shutdown", sig.name)
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _handle_signal, sig)

    # ------------------------------------------------------------------
    # 4. Launch one orchestrator (and monitor) per target
    # ------------------------------------------------------------------
    tasks: list[asyncio.Task[None]] = []
    for orchestrator in orchestrators:
        tasks.append(
            asyncio.create_task(orchestrator.run(), name=f"orchestrator_{orchestrator.target.label}")
        )
    for monitor, (target, _, _) in zip(monitors, targets):
        tasks.append(asyncio.create_task(monitor.run(), name=f"monitor_{target.label}"))

    for t in tasks:
        t.add_done_callback(
            lambda done_task: _task_done_callback(done_task, shutdown_event, aborted)
        )

    _logger.info("All tasks launched: %s", ", ".join(t.get_name() for t in tasks))

    # ------------------------------------------------------------------
    # 5. Wait for shutdown signal, then cancel tasks and drain
    # ------------------------------------------------------------------
    try:
        await shutdown_event.wait()
    finally:
        _logger.info("Shutting down, cancelling tasks")

        # Signal cooperative stop
        for orchestrator in orchestrators:
            orchestrator.stop()
        for monitor in monitors:
            monitor.stop()

        # Cancel and wait
        for t in tasks:
            if not t.done():
                t.cancel()

        results = await asyncio.gather(*tasks, return_exceptions=True)
        for t, result in zip(tasks, results, strict=False):
            if isinstance(result, Exception) and not isinstance(result, asyncio.CancelledError):
                _logger.error("Task %s exited with error: %s", t.get_name(), result)

        # Let in-flight logs reach the sink before closing the session
        for processor in processors:
            await processor.drain(drain_timeout)
        await forwarder.close()

        _logger.info("Pipeline stats: %s", stats.snapshot())
        _logger.info("Shutdown complete")

    return 1 if aborted else 0


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    """Synchronous entry point."""
    try:
        status = asyncio.run(_run())
    except KeyboardInterrupt:
        _logger.info("Interrupted by user")
        status = 0
    sys.exit(status)


if __name__ == "__main__":
    main()
