"""
Live ``eth_subscribe("logs", filter)`` stream over an ``RpcTransport``.

A subscription yields raw logs one at a time via ``receive()`` and surfaces
transport loss as ``SubscriptionError``. It never reconnects on its own; the
retry orchestrator owns recovery.
"""

from __future__ import annotations

import asyncio
from typing import Any

from data.rpc_transport import RpcError, RpcTransport
from ingest_logging.logger_manager import setup_module_logger
from shared.constants import RPC_SUBSCRIBE, RPC_UNSUBSCRIBE
from shared.types import LogFilter, RawLogEntry


class SubscriptionError(Exception):
    """The log stream failed (subscribe rejected, or the transport was lost)."""


class LogSubscription:
    """Handle for one active log subscription."""

    def __init__(
        self,
        transport: RpcTransport,
        subscription_id: str,
        logs: asyncio.Queue,
        errors: asyncio.Queue,
    ) -> None:
        self._transport = transport
        self._subscription_id = subscription_id
        self._logs = logs
        self._errors = errors
        self._active = True
        self._failure: Exception | None = None
        self._logger = setup_module_logger(
            "log_subscription", "log_subscription.log", module_folder="Connection_Logs"
        )

    @property
    def subscription_id(self) -> str:
        return self._subscription_id

    @property
    def active(self) -> bool:
        return self._active

    @property
    def logs(self) -> asyncio.Queue:
        return self._logs

    @property
    def errors(self) -> asyncio.Queue:
        return self._errors

    async def receive(self) -> RawLogEntry:
        """
        Wait for the next log. Logs already buffered are returned before a
        transport failure is reported; once reported, the failure is sticky.

        Raises:
            SubscriptionError: the subscription is closed or its transport failed.
        """
        while True:
            if not self._active:
                raise SubscriptionError(f"subscription {self._subscription_id} is closed")
            if not self._logs.empty():
                result = self._logs.get_nowait()
            elif self._failure is not None:
                raise SubscriptionError(str(self._failure)) from self._failure
            elif not self._errors.empty():
                self._failure = self._errors.get_nowait()
                continue
            else:
                result = await self._next_result()
                if result is None:
                    continue

            try:
                return RawLogEntry.from_rpc(result)
            except ValueError as exc:
                self._logger.warning(
                    "Unparseable log on subscription %s: %s", self._subscription_id, exc
                )

    def interrupt(self) -> None:
        """Wake a pending ``receive()``; buffered logs are still returned first."""
        if self._active:
            self._errors.put_nowait(
                SubscriptionError(f"subscription {self._subscription_id} interrupted")
            )

    async def unsubscribe(self) -> None:
        """Cancel the subscription. Idempotent; best effort on a dead transport."""
        if not self._active:
            return
        self._active = False
        try:
            if not self._transport.closed:
                await self._transport.request(RPC_UNSUBSCRIBE, [self._subscription_id])
        except RpcError as exc:
            self._logger.debug(
                "%s %s failed: %s", RPC_UNSUBSCRIBE, self._subscription_id, exc
            )
        finally:
            self._transport.unregister_subscription(self._subscription_id)
        self._logger.info("Unsubscribed %s", self._subscription_id)

    async def _next_result(self) -> dict[str, Any] | None:
        """Wait on both channels. Returns a log result, or None after recording a failure."""
        log_task = asyncio.ensure_future(self._logs.get())
        error_task = asyncio.ensure_future(self._errors.get())
        try:
            done, _ = await asyncio.wait(
                {log_task, error_task}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for task in (log_task, error_task):
                if not task.done():
                    task.cancel()

        if error_task in done:
            self._failure = error_task.result()
        if log_task in done:
            return log_task.result()
        return None


async def subscribe(
    transport: RpcTransport, log_filter: LogFilter, timeout: float | None = None
) -> LogSubscription:
    """
    Open a log subscription on ``transport``.

    Raises:
        SubscriptionError: the node rejected the request or returned no id.
    """
    logger = setup_module_logger(
        "log_subscription", "log_subscription.log", module_folder="Connection_Logs"
    )
    try:
        subscription_id = await transport.request(
            RPC_SUBSCRIBE, ["logs", log_filter.to_params()], timeout=timeout
        )
    except RpcError as exc:
        raise SubscriptionError(f"{RPC_SUBSCRIBE} failed: {exc}") from exc

    if not isinstance(subscription_id, str) or not subscription_id:
        raise SubscriptionError(f"{RPC_SUBSCRIBE} returned no subscription id: {subscription_id!r}")

    logs, errors = transport.register_subscription(subscription_id)
    logger.info(
        "Subscribed %s on chain %d for %s", subscription_id, transport.chain_id, log_filter.address
    )
    return LogSubscription(transport, subscription_id, logs, errors)
