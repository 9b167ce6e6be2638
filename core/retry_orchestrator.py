"""
Reconnect state machine for one (chain, contract) subscription target.

    IDLE -> CONNECTING -> SUBSCRIBED -> FAILED -> CONNECTING -> ...
                                          +-> ABORTED  (attempts exhausted)
    any state -> STOPPED                  (stop() or cancellation)

Every CONNECTING pass opens a brand-new transport and subscription; a stale
transport is never resubscribed. The consecutive-failure counter resets as
soon as a subscription is established, so a stream that fails after running
for hours starts again from attempt one. The subscription and its transport
are released on every exit from the drain loop.

Usage:
    orchestrator = RetryOrchestrator(target, connection_manager, processor, stats=stats)
    task = asyncio.create_task(orchestrator.run())
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Callable

from config.loader import get_config
from data.connection_manager import ConnectionManagerError
from data.log_subscription import LogSubscription, SubscriptionError, subscribe
from data.rpc_transport import RpcError
from ingest_logging.logger_manager import setup_module_logger
from shared.constants import DEFAULT_REQUEST_TIMEOUT_SECONDS
from shared.types import OrchestratorState, RetryPolicy, SubscriptionTarget

if TYPE_CHECKING:
    from core.log_processor import LogProcessor
    from core.stats import PipelineStats
    from data.connection_manager import ConnectionManager
    from data.rpc_transport import RpcTransport


class OrchestratorAbortedError(Exception):
    """Raised when the retry budget is exhausted. Process-fatal."""

    def __init__(self, label: str, attempts: int, last_error: Exception | None) -> None:
        super().__init__(f"{label}: giving up after {attempts} consecutive failures ({last_error})")
        self.label = label
        self.attempts = attempts
        self.last_error = last_error


class RetryOrchestrator:
    def __init__(
        self,
        target: SubscriptionTarget,
        connection_manager: ConnectionManager,
        processor: LogProcessor,
        retry_policy: RetryPolicy | None = None,
        stats: PipelineStats | None = None,
        subscribe_timeout: float | None = None,
        on_state_change: Callable[[OrchestratorState], None] | None = None,
    ) -> None:
        self._target = target
        self._connection_manager = connection_manager
        self._processor = processor
        self._stats = stats
        self._on_state_change = on_state_change

        ws_cfg = get_config().get_websocket_config()
        self._policy = retry_policy or RetryPolicy.from_config(ws_cfg.get("reconnection", {}))
        self._subscribe_timeout: float = subscribe_timeout or ws_cfg.get("timeouts", {}).get(
            "subscription_response_timeout_seconds", DEFAULT_REQUEST_TIMEOUT_SECONDS
        )

        self._state = OrchestratorState.IDLE
        self._attempts = 0
        self._running = False
        self._subscription: LogSubscription | None = None

        self._logger = setup_module_logger(
            "retry_orchestrator", "retry_orchestrator.log", module_folder="Pipeline_Logs"
        )

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def attempts(self) -> int:
        return self._attempts

    @property
    def target(self) -> SubscriptionTarget:
        return self._target

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """
        Drive the state machine until ``stop()``, cancellation, or abort.

        Raises:
            OrchestratorAbortedError: ``max_attempts`` consecutive failures.
        """
        self._running = True
        self._logger.info(
            "Orchestrator started for %s (%s)", self._target.label, self._target.contract_address
        )
        try:
            while self._running:
                self._set_state(OrchestratorState.CONNECTING)
                error = await self._connect_and_drain()
                if error is None or not self._running:
                    break
                await self._handle_failure(error)
        except asyncio.CancelledError:
            self._set_state(OrchestratorState.STOPPED)
            raise
        finally:
            self._running = False

        if self._state is not OrchestratorState.ABORTED:
            self._set_state(OrchestratorState.STOPPED)

    def stop(self) -> None:
        """Ask the drain loop to exit after the current log, waking it if idle."""
        self._running = False
        if self._subscription is not None:
            self._subscription.interrupt()

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    async def _connect_and_drain(self) -> Exception | None:
        """One CONNECTING/SUBSCRIBED pass. Returns the failure, or None when stopped."""
        transport: RpcTransport | None = None
        subscription: LogSubscription | None = None
        try:
            transport = await self._connection_manager.connect(self._target.chain_id)
            subscription = await subscribe(
                transport, self._target.log_filter(), timeout=self._subscribe_timeout
            )
            self._subscription = subscription
            self._attempts = 0
            if self._stats is not None:
                self._stats.subscriptions_opened += 1
            self._set_state(OrchestratorState.SUBSCRIBED)

            while self._running:
                raw_log = await subscription.receive()
                await self._processor.submit(raw_log, transport)
            return None
        except (ConnectionManagerError, SubscriptionError, RpcError) as exc:
            return exc
        finally:
            self._subscription = None
            await self._release(subscription, transport)

    async def _handle_failure(self, error: Exception) -> None:
        self._attempts += 1
        if self._stats is not None:
            self._stats.connection_failures += 1
        self._set_state(OrchestratorState.FAILED)
        self._logger.warning(
            "%s failed (attempt %d/%d): %s",
            self._target.label,
            self._attempts,
            self._policy.max_attempts,
            error,
        )

        if 0 < self._policy.max_attempts <= self._attempts:
            self._set_state(OrchestratorState.ABORTED)
            self._logger.critical(
                "%s aborted after %d consecutive failures", self._target.label, self._attempts
            )
            raise OrchestratorAbortedError(self._target.label, self._attempts, error)

        delay = self._policy.delay_for(self._attempts)
        self._logger.info("Reconnecting %s in %.1fs", self._target.label, delay)
        await asyncio.sleep(delay)

    async def _release(
        self, subscription: LogSubscription | None, transport: RpcTransport | None
    ) -> None:
        if subscription is not None:
            try:
                await subscription.unsubscribe()
            except Exception as exc:
                self._logger.debug("Unsubscribe failed for %s: %s", self._target.label, exc)
        if transport is not None:
            await transport.close()

    def _set_state(self, state: OrchestratorState) -> None:
        if state is self._state:
            return
        self._logger.info(
            "%s: %s -> %s", self._target.label, self._state.value, state.value
        )
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state)
