"""
Shared pytest configuration and fixtures for the contract event pipeline tests.

Provides a sample ABI and schema, raw-log builders and a mock ConfigLoader
used across the unit test suite.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from eth_abi.abi import encode as abi_encode
from web3 import Web3

from core.interface_schema import InterfaceSchema
from shared.types import RawLogEntry

# ---------------------------------------------------------------------------
# Sample contract data
# ---------------------------------------------------------------------------

SAMPLE_CHAIN_ID = 80002
SAMPLE_CONTRACT = "0x5fbdb2315678afecb367f032d93f642f64180aa3"
SAMPLE_TX_HASH = "0x" + "ab" * 32
SAMPLE_MINTER = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"
SAMPLE_HOLDER = "0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc"
SAMPLE_SENDER = "0xf39fd6e51aad88f6f4ce6ab8827279cfffb92266"

SAMPLE_ABI: list[dict[str, Any]] = [
    {
        "type": "event",
        "name": "Transfer",
        "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "to", "type": "address", "indexed": True},
            {"name": "value", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "Mint",
        "anonymous": False,
        "inputs": [
            {"name": "to", "type": "address", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "Burn",
        "anonymous": False,
        "inputs": [
            {"name": "from", "type": "address", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "Paused",
        "anonymous": False,
        "inputs": [{"name": "account", "type": "address", "indexed": False}],
    },
    {
        "type": "event",
        "name": "Note",
        "anonymous": False,
        "inputs": [
            {"name": "flag", "type": "bool", "indexed": True},
            {"name": "delta", "type": "int", "indexed": True},
            {"name": "text", "type": "string", "indexed": False},
            {"name": "blob", "type": "bytes", "indexed": False},
            {"name": "ids", "type": "uint256[]", "indexed": False},
            {"name": "active", "type": "bool", "indexed": False},
            {"name": "balance", "type": "int128", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "Hidden",
        "anonymous": True,
        "inputs": [{"name": "x", "type": "uint256", "indexed": False}],
    },
    {
        "type": "function",
        "name": "totalSupply",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


# ---------------------------------------------------------------------------
# Log builders
# ---------------------------------------------------------------------------


def event_topic(signature: str) -> str:
    """topic0 hex for an event signature."""
    return Web3.to_hex(Web3.keccak(text=signature))


def address_topic(address: str) -> str:
    """Left-pad a 20-byte address into a 32-byte topic word."""
    return "0x" + "00" * 12 + address[2:].lower()


def word_topic(value: int, signed: bool = False) -> str:
    return "0x" + value.to_bytes(32, "big", signed=signed).hex()


def encode_data(types: list[str], values: list[Any]) -> str:
    return "0x" + abi_encode(types, values).hex()


def make_rpc_log(
    topics: list[str],
    data: str = "0x",
    block_number: int = 1234,
    tx_hash: str = SAMPLE_TX_HASH,
    log_index: int = 0,
    address: str = SAMPLE_CONTRACT,
    removed: bool = False,
) -> dict[str, Any]:
    """Log dict as carried in an ``eth_subscription`` notification."""
    return {
        "address": address,
        "topics": topics,
        "data": data,
        "blockNumber": hex(block_number),
        "transactionHash": tx_hash,
        "transactionIndex": "0x0",
        "blockHash": "0x" + "cd" * 32,
        "logIndex": hex(log_index),
        "removed": removed,
    }


def make_mint_log(
    to: str = SAMPLE_HOLDER, amount: int = 10**18, log_index: int = 0, **kwargs: Any
) -> dict[str, Any]:
    return make_rpc_log(
        [event_topic("Mint(address,uint256)"), address_topic(to)],
        encode_data(["uint256"], [amount]),
        log_index=log_index,
        **kwargs,
    )


def make_raw_log(rpc_log: dict[str, Any]) -> RawLogEntry:
    return RawLogEntry.from_rpc(rpc_log)


# ---------------------------------------------------------------------------
# Standard mock configs (can be overridden per test)
# ---------------------------------------------------------------------------

STANDARD_PIPELINE_CONFIG = {
    "max_in_flight": 4,
    "drain_timeout_seconds": 5,
    "enrich_transactions": False,
    "skip_removed_logs": True,
    "caller_strategies": {"default": "heuristic"},
    "field_mappings": {},
    "contract_monitor": {"enabled": True, "interval_seconds": 60},
}

STANDARD_WEBSOCKET_CONFIG = {
    "connection": {
        "connect_timeout_seconds": 10,
        "ping_interval_seconds": 20,
        "ping_timeout_seconds": 30,
        "close_timeout_seconds": 10,
        "max_message_bytes": 10485760,
        "verify_chain_id": True,
    },
    "timeouts": {"subscription_response_timeout_seconds": 15},
    "reconnection": {
        "max_attempts": 5,
        "base_delay_seconds": 5,
        "multiplier": 1.0,
        "max_delay_seconds": 60,
        "jitter_max_seconds": 0,
    },
}

STANDARD_SINK_CONFIG = {
    "base_url": "http://sink.test",
    "endpoints": {
        "Mint": "/api/events/mint",
        "Burn": "/api/events/burn",
        "Transfer": "/api/events/transfer",
    },
}


@pytest.fixture
def sample_schema() -> InterfaceSchema:
    return InterfaceSchema.from_abi("Token", SAMPLE_ABI)


@pytest.fixture
def mock_config_loader():
    """
    Provide a mock ConfigLoader that returns standard configs.

    Usage in tests:
        def test_something(mock_config_loader):
            mock_config_loader.get_pipeline_config.return_value = {...}
    """
    loader = MagicMock()
    loader.get_pipeline_config.return_value = dict(STANDARD_PIPELINE_CONFIG)
    loader.get_websocket_config.return_value = dict(STANDARD_WEBSOCKET_CONFIG)
    loader.get_sink_config.return_value = dict(STANDARD_SINK_CONFIG)
    loader.get_timing_config.return_value = {
        "forwarder": {"request_timeout_seconds": 2},
        "rpc": {"request_timeout_seconds": 2},
        "contract_monitor": {"call_timeout_seconds": 2},
    }
    loader.get_chain_config.return_value = {
        "chain_id": SAMPLE_CHAIN_ID,
        "rpc": {"ws_url": "wss://node.test/ws", "http_url": "https://node.test"},
    }
    loader.get_app_config.return_value = {"logging": {"log_dir": "logs"}}
    loader.get_abi.return_value = SAMPLE_ABI
    return loader


# ---------------------------------------------------------------------------
# Fake node websocket
# ---------------------------------------------------------------------------


class FakeWebSocket:
    """
    In-memory stand-in for a websockets client connection.

    ``responses`` maps a JSON-RPC method to the result the fake node replies
    with as soon as the request is sent; methods not listed get no reply.
    """

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = dict(responses or {})
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionError("socket closed")
        request = json.loads(message)
        self.sent.append(request)
        if request["method"] in self.responses:
            self.feed({"jsonrpc": "2.0", "id": request["id"], "result": self.responses[request["method"]]})

    def feed(self, message: Any) -> None:
        self._incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def notify(self, subscription_id: str, result: Any) -> None:
        self.feed(
            {
                "jsonrpc": "2.0",
                "method": "eth_subscription",
                "params": {"subscription": subscription_id, "result": result},
            }
        )

    def drop(self) -> None:
        """Simulate the peer closing the connection."""
        self._incoming.put_nowait(None)

    def sent_methods(self) -> list[str]:
        return [r["method"] for r in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._incoming.put_nowait(None)


async def settle(rounds: int = 5) -> None:
    """Let background reader tasks process queued messages."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def patch_transport_logger():
    with patch("data.rpc_transport.setup_module_logger") as mock_logger:
        mock_logger.return_value = MagicMock()
        yield mock_logger
