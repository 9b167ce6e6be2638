"""
Periodic contract state poller.

Calls the no-argument view functions a contract's ABI exposes (name, symbol,
totalSupply, owner, availableSupply, paused) over HTTP and logs the values.
Runs beside the log subscription as an independent task; a failed call is
logged per function and never stops the loop.

Usage:
    monitor = ContractMonitor(target, abi)
    asyncio.create_task(monitor.run())
"""

from __future__ import annotations

import asyncio
from typing import Any

from web3 import AsyncWeb3, Web3
from web3.providers import AsyncHTTPProvider

from config.loader import get_config
from ingest_logging.logger_manager import setup_module_logger
from shared.constants import DEFAULT_MONITOR_INTERVAL_SECONDS, MONITORED_VIEW_FUNCTIONS
from shared.types import SubscriptionTarget


class ContractMonitor:
    """Async polling loop over a contract's read-only state."""

    def __init__(
        self,
        target: SubscriptionTarget,
        abi: list[dict[str, Any]],
        w3: AsyncWeb3 | None = None,
    ) -> None:
        self._target = target

        cfg = get_config()
        monitor_cfg = cfg.get_pipeline_config().get("contract_monitor", {})
        timing_cfg = cfg.get_timing_config().get("contract_monitor", {})
        self._interval: float = monitor_cfg.get("interval_seconds", DEFAULT_MONITOR_INTERVAL_SECONDS)
        self._call_timeout: float = timing_cfg.get("call_timeout_seconds", 10)

        if w3 is None:
            http_url = cfg.get_chain_config(target.chain_id).get("rpc", {}).get("http_url", "")
            w3 = AsyncWeb3(AsyncHTTPProvider(http_url))
        self._w3 = w3
        self._contract = w3.eth.contract(
            address=Web3.to_checksum_address(target.contract_address), abi=abi
        )
        self._functions: tuple[str, ...] = self.view_functions(abi)

        self._running: bool = False
        self._last_values: dict[str, Any] = {}

        self._logger = setup_module_logger(
            "contract_monitor", "contract_monitor.log", module_folder="Contract_Monitor_Logs"
        )

    @staticmethod
    def view_functions(abi: list[dict[str, Any]]) -> tuple[str, ...]:
        """Monitored functions present in ``abi`` as no-input view/pure functions."""
        available = {
            entry.get("name")
            for entry in abi
            if entry.get("type") == "function"
            and not entry.get("inputs")
            and entry.get("stateMutability") in ("view", "pure")
        }
        return tuple(name for name in MONITORED_VIEW_FUNCTIONS if name in available)

    @property
    def functions(self) -> tuple[str, ...]:
        return self._functions

    @property
    def last_values(self) -> dict[str, Any]:
        return dict(self._last_values)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Polling loop, launched as an asyncio.Task."""
        if not self._functions:
            self._logger.info("No monitored view functions for %s, monitor idle", self._target.label)
            return
        self._running = True
        self._logger.info(
            "Contract monitor started for %s every %.0fs: %s",
            self._target.label,
            self._interval,
            ", ".join(self._functions),
        )
        try:
            while self._running:
                await self.poll_once()
                await asyncio.sleep(self._interval)
        except asyncio.CancelledError:
            self._logger.info("Contract monitor cancelled for %s", self._target.label)
            raise
        finally:
            self._running = False

    def stop(self) -> None:
        """Signal the run loop to stop."""
        self._running = False

    async def poll_once(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for name in self._functions:
            try:
                values[name] = await asyncio.wait_for(
                    getattr(self._contract.functions, name)().call(), self._call_timeout
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.warning("%s.%s() failed: %s", self._target.label, name, exc)

        if values:
            self._logger.info(
                "%s state: %s",
                self._target.label,
                ", ".join(f"{k}={v}" for k, v in values.items()),
            )
        self._last_values.update(values)
        return values
