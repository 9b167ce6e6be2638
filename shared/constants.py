"""
Shared constants for the contract event pipeline.

Sentinels, JSON-RPC method names, and default values used across all modules.
"""

# ---------------------------------------------------------------------------
# EVM sentinels
# ---------------------------------------------------------------------------

ZERO_ADDRESS = "0x" + "00" * 20
ZERO_WORD = b"\x00" * 32  # topic value of a zero address (mint/burn counterparty)
ADDRESS_SIZE = 20

# ---------------------------------------------------------------------------
# JSON-RPC methods
# ---------------------------------------------------------------------------

RPC_SUBSCRIBE = "eth_subscribe"
RPC_UNSUBSCRIBE = "eth_unsubscribe"
RPC_SUBSCRIPTION_NOTIFICATION = "eth_subscription"
RPC_CHAIN_ID = "eth_chainId"
RPC_GET_TRANSACTION = "eth_getTransactionByHash"

# ---------------------------------------------------------------------------
# Websocket defaults (overridden by config/websocket.json)
# ---------------------------------------------------------------------------

DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0
DEFAULT_REQUEST_TIMEOUT_SECONDS = 15.0
DEFAULT_PING_INTERVAL_SECONDS = 20
DEFAULT_PING_TIMEOUT_SECONDS = 30
DEFAULT_CLOSE_TIMEOUT_SECONDS = 10
DEFAULT_MAX_MESSAGE_BYTES = 10 * 1024 * 1024

# ---------------------------------------------------------------------------
# Retry defaults (fixed 5s delay, bounded attempts)
# ---------------------------------------------------------------------------

DEFAULT_RETRY_BASE_DELAY_SECONDS = 5.0
DEFAULT_RETRY_MULTIPLIER = 1.0
DEFAULT_RETRY_MAX_DELAY_SECONDS = 60.0
DEFAULT_RETRY_JITTER_SECONDS = 0.0
DEFAULT_RETRY_MAX_ATTEMPTS = 5

# ---------------------------------------------------------------------------
# Processing defaults
# ---------------------------------------------------------------------------

DEFAULT_MAX_IN_FLIGHT = 64
DEFAULT_FORWARD_TIMEOUT_SECONDS = 10.0
DEFAULT_DRAIN_TIMEOUT_SECONDS = 15.0
DEFAULT_MONITOR_INTERVAL_SECONDS = 60.0
DEFAULT_CALLER_STRATEGY = "heuristic"

# No-argument view functions polled by the contract monitor when present in the ABI
MONITORED_VIEW_FUNCTIONS = (
    "name",
    "symbol",
    "totalSupply",
    "owner",
    "availableSupply",
    "paused",
)
