"""
JSON-RPC transport over a node websocket.

One ``RpcTransport`` wraps one live websocket connection. A background reader
task correlates responses with pending requests by id and routes
``eth_subscription`` notifications to per-subscription queues. When the
socket drops, pending requests fail and every registered subscription gets a
``ConnectionLostError`` on its error queue.

Transports are never reused after a failure; the connection manager opens a
fresh one for every attempt.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any

from ingest_logging.logger_manager import setup_module_logger
from shared.constants import (
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    RPC_GET_TRANSACTION,
    RPC_SUBSCRIPTION_NOTIFICATION,
)
from shared.types import TransactionInfo


class RpcError(Exception):
    """A JSON-RPC request failed (error response, timeout, or closed transport)."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class ConnectionLostError(RpcError):
    """The websocket closed while requests or subscriptions were open."""


class RpcTransport:
    """Request/response and subscription multiplexer over one websocket."""

    def __init__(
        self,
        websocket: Any,
        chain_id: int,
        url: str,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self._ws = websocket
        self._chain_id = chain_id
        self._url = url
        self._request_timeout = request_timeout

        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future] = {}
        # subscription id -> (log queue, error queue)
        self._subscriptions: dict[str, tuple[asyncio.Queue, asyncio.Queue]] = {}
        # notifications received before their subscriber registered
        self._early: dict[str, list[dict[str, Any]]] = {}

        self._reader: asyncio.Task | None = None
        self._closed = False
        self._close_reason: Exception | None = None

        self._logger = setup_module_logger(
            "rpc_transport", "rpc_transport.log", module_folder="Connection_Logs"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def chain_id(self) -> int:
        return self._chain_id

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Launch the background reader task."""
        if self._reader is None:
            self._reader = asyncio.create_task(
                self._read_loop(), name=f"rpc_reader_{self._chain_id}"
            )

    async def close(self) -> None:
        """Stop the reader and close the socket. Safe to call more than once."""
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        if not self._closed:
            self._fail_all(ConnectionLostError("transport closed"))
        try:
            await self._ws.close()
        except Exception as exc:
            self._logger.debug("Error closing websocket %s: %s", self._url, exc)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request(
        self, method: str, params: list[Any] | None = None, timeout: float | None = None
    ) -> Any:
        """Send one JSON-RPC request and wait for its result."""
        if self._closed:
            raise ConnectionLostError(f"{method}: transport closed ({self._close_reason})")

        req_id = next(self._ids)
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[req_id] = future
        payload = {"jsonrpc": "2.0", "id": req_id, "method": method, "params": params or []}
        try:
            await self._ws.send(json.dumps(payload))
            return await asyncio.wait_for(future, timeout or self._request_timeout)
        except asyncio.TimeoutError as exc:
            raise RpcError(f"{method} timed out after {timeout or self._request_timeout}s") from exc
        except RpcError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise ConnectionLostError(f"{method} failed to send: {exc}") from exc
        finally:
            self._pending.pop(req_id, None)

    async def get_transaction(self, tx_hash: str) -> TransactionInfo | None:
        """Auxiliary lookup used for caller resolution and diagnostics."""
        result = await self.request(RPC_GET_TRANSACTION, [tx_hash])
        if not result:
            return None
        return TransactionInfo.from_rpc(result)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def register_subscription(self, subscription_id: str) -> tuple[asyncio.Queue, asyncio.Queue]:
        """Create the (logs, errors) queues for a subscription id."""
        logs: asyncio.Queue = asyncio.Queue()
        errors: asyncio.Queue = asyncio.Queue()
        self._subscriptions[subscription_id] = (logs, errors)
        for result in self._early.pop(subscription_id, []):
            logs.put_nowait(result)
        if self._closed:
            errors.put_nowait(self._close_reason or ConnectionLostError("transport closed"))
        return logs, errors

    def unregister_subscription(self, subscription_id: str) -> None:
        self._subscriptions.pop(subscription_id, None)
        self._early.pop(subscription_id, None)

    # ------------------------------------------------------------------
    # Reader
    # ------------------------------------------------------------------

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                self._dispatch(raw)
            reason: Exception = ConnectionLostError(f"websocket {self._url} closed by peer")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            reason = ConnectionLostError(f"websocket {self._url} failed: {exc}")
        self._logger.warning("Transport for chain %d lost: %s", self._chain_id, reason)
        self._fail_all(reason)

    def _dispatch(self, raw: Any) -> None:
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as exc:
            self._logger.warning("Invalid JSON from %s: %s", self._url, exc)
            return

        for item in message if isinstance(message, list) else [message]:
            if not isinstance(item, dict):
                continue
            if item.get("method") == RPC_SUBSCRIPTION_NOTIFICATION:
                params = item.get("params", {})
                sub_id = params.get("subscription")
                result = params.get("result")
                if sub_id is None or result is None:
                    continue
                queues = self._subscriptions.get(sub_id)
                if queues is not None:
                    queues[0].put_nowait(result)
                else:
                    self._early.setdefault(sub_id, []).append(result)
            elif "id" in item:
                future = self._pending.get(item["id"])
                if future is None or future.done():
                    continue
                if item.get("error"):
                    error = item["error"]
                    future.set_exception(
                        RpcError(str(error.get("message", error)), error.get("code"))
                    )
                else:
                    future.set_result(item.get("result"))

    def _fail_all(self, reason: Exception) -> None:
        self._closed = True
        self._close_reason = reason
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionLostError(str(reason)))
        for _, errors in self._subscriptions.values():
            errors.put_nowait(reason)
