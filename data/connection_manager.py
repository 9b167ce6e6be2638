"""
Node connection manager for the event pipeline.

Opens a fresh websocket JSON-RPC transport to a chain's node on every call;
connections are never reused across failures. A failed connect is reported
to the caller (the retry orchestrator), never treated as fatal here.

Usage:
    manager = ConnectionManager()
    transport = await manager.connect(80002)
"""

from __future__ import annotations

import asyncio

import websockets

from config.loader import get_config
from data.rpc_transport import RpcError, RpcTransport
from ingest_logging.logger_manager import setup_module_logger
from shared.constants import (
    DEFAULT_CLOSE_TIMEOUT_SECONDS,
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    DEFAULT_MAX_MESSAGE_BYTES,
    DEFAULT_PING_INTERVAL_SECONDS,
    DEFAULT_PING_TIMEOUT_SECONDS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    RPC_CHAIN_ID,
)


class ConnectionManagerError(Exception):
    """Raised when a transport to the node cannot be established."""


def _mask_url(url: str) -> str:
    """Hide API keys embedded in provider URLs."""
    return url[:40] + ("..." if len(url) > 40 else "")


class ConnectionManager:
    """Factory for per-attempt ``RpcTransport`` instances."""

    def __init__(self) -> None:
        self._cfg = get_config()
        ws_cfg = self._cfg.get_websocket_config()
        conn_cfg = ws_cfg.get("connection", {})
        rpc_timing = self._cfg.get_timing_config().get("rpc", {})

        self._connect_timeout: float = conn_cfg.get(
            "connect_timeout_seconds", DEFAULT_CONNECT_TIMEOUT_SECONDS
        )
        self._ping_interval: float = conn_cfg.get(
            "ping_interval_seconds", DEFAULT_PING_INTERVAL_SECONDS
        )
        self._ping_timeout: float = conn_cfg.get("ping_timeout_seconds", DEFAULT_PING_TIMEOUT_SECONDS)
        self._close_timeout: float = conn_cfg.get(
            "close_timeout_seconds", DEFAULT_CLOSE_TIMEOUT_SECONDS
        )
        self._max_size: int = conn_cfg.get("max_message_bytes", DEFAULT_MAX_MESSAGE_BYTES)
        self._verify_chain_id: bool = conn_cfg.get("verify_chain_id", True)
        self._request_timeout: float = rpc_timing.get(
            "request_timeout_seconds", DEFAULT_REQUEST_TIMEOUT_SECONDS
        )

        self._logger = setup_module_logger(
            "connection_manager", "connection_manager.log", module_folder="Connection_Logs"
        )

    def ws_url_for(self, chain_id: int) -> str:
        url = self._cfg.get_chain_config(chain_id).get("rpc", {}).get("ws_url", "")
        if not url:
            raise ConnectionManagerError(f"No websocket URL configured for chain {chain_id}")
        return url

    async def connect(self, chain_id: int) -> RpcTransport:
        """
        Open a new transport for ``chain_id``.

        Raises:
            ConnectionManagerError: socket could not be opened, or the node
                reports a different chain id.
        """
        url = self.ws_url_for(chain_id)
        self._logger.info("Connecting to chain %d at %s", chain_id, _mask_url(url))

        try:
            websocket = await websockets.connect(
                url,
                open_timeout=self._connect_timeout,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_timeout,
                close_timeout=self._close_timeout,
                max_size=self._max_size,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise ConnectionManagerError(
                f"Failed to connect to chain {chain_id} at {_mask_url(url)}: {exc}"
            ) from exc

        transport = RpcTransport(websocket, chain_id, url, request_timeout=self._request_timeout)
        transport.start()

        if self._verify_chain_id:
            try:
                reported = int(await transport.request(RPC_CHAIN_ID), 16)
            except (RpcError, TypeError, ValueError) as exc:
                await transport.close()
                raise ConnectionManagerError(
                    f"{RPC_CHAIN_ID} failed on {_mask_url(url)}: {exc}"
                ) from exc
            except asyncio.CancelledError:
                await transport.close()
                raise
            if reported != chain_id:
                await transport.close()
                raise ConnectionManagerError(
                    f"Node at {_mask_url(url)} reports chain {reported}, expected {chain_id}"
                )

        self._logger.info("Connected to chain %d", chain_id)
        return transport
