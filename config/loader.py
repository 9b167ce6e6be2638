"""
Configuration loader for the contract event pipeline.

Provides centralized configuration management with .env overrides.

Usage:
    from config.loader import get_config

    config = get_config()
    chain_config = config.get_chain_config(80002)
    abi = config.get_abi("Token")
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()

# Resolve config directory relative to this file
_CONFIG_DIR = Path(__file__).parent
_PROJECT_ROOT = _CONFIG_DIR.parent


def _load_json(filepath: Path) -> Any:
    """Load a JSON config file. Returns empty dict if file doesn't exist."""
    try:
        with open(filepath, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"[CONFIG_WARN] Config file not found: {filepath}")
        return {}
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] Invalid JSON in {filepath}: {e}")
        return {}


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Get environment variable with type conversion and fallback."""
    value = os.getenv(var_name, None)
    if value is None:
        return default_value
    try:
        if var_type == bool:
            return value.lower() in ("true", "1", "yes")
        return var_type(value)
    except (ValueError, TypeError):
        return default_value


class ConfigLoader:
    """
    Central configuration manager for the event pipeline.

    Loads configuration from JSON files in the config/ directory with .env overrides.
    All accessor methods are cached via @lru_cache.
    """

    _instance: Optional["ConfigLoader"] = None

    def __init__(self, config_dir: Optional[Path] = None):
        self._config_dir = config_dir or _CONFIG_DIR
        self._project_root = _PROJECT_ROOT

    @classmethod
    def get_instance(cls) -> "ConfigLoader":
        """Singleton accessor."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    # ------------------------------------------------------------------
    # Core config file loaders (cached)
    # ------------------------------------------------------------------

    @lru_cache(maxsize=8)
    def get_chain_config(self, chain_id: int) -> Dict[str, Any]:
        """Load chain-specific config (RPC endpoints) with env overrides."""
        chain = dict(_load_json(self._config_dir / "chains" / f"{chain_id}.json"))
        rpc = dict(chain.get("rpc", {}))
        rpc["ws_url"] = get_env_var(
            f"CHAIN_{chain_id}_WS_URL",
            get_env_var("INFURA_WEBSOCKET_URL", rpc.get("ws_url", ""), str),
            str,
        )
        rpc["http_url"] = get_env_var(
            f"CHAIN_{chain_id}_HTTP_URL",
            get_env_var("INFURA_URL", rpc.get("http_url", ""), str),
            str,
        )
        if chain or rpc["ws_url"] or rpc["http_url"]:
            chain["rpc"] = rpc
        return chain

    @lru_cache(maxsize=1)
    def get_app_config(self) -> Dict[str, Any]:
        """Load general application settings (targets, logging)."""
        return _load_json(self._config_dir / "app.json")

    @lru_cache(maxsize=1)
    def get_pipeline_config(self) -> Dict[str, Any]:
        """Load processing settings (concurrency, caller strategies, field mappings)."""
        cfg = dict(_load_json(self._config_dir / "pipeline.json"))
        if cfg:
            cfg["max_in_flight"] = get_env_var(
                "PIPELINE_MAX_IN_FLIGHT", cfg.get("max_in_flight"), int
            )
        return cfg

    @lru_cache(maxsize=1)
    def get_timing_config(self) -> Dict[str, Any]:
        """Load retry intervals and timeouts."""
        return _load_json(self._config_dir / "timing.json")

    @lru_cache(maxsize=1)
    def get_websocket_config(self) -> Dict[str, Any]:
        """Load WebSocket connection settings."""
        return _load_json(self._config_dir / "websocket.json")

    @lru_cache(maxsize=1)
    def get_sink_config(self) -> Dict[str, Any]:
        """Load downstream sink endpoints with SINK_BASE_URL override."""
        cfg = dict(_load_json(self._config_dir / "sink.json"))
        if cfg:
            cfg["base_url"] = get_env_var("SINK_BASE_URL", cfg.get("base_url", ""), str)
        return cfg

    @lru_cache(maxsize=1)
    def get_contracts_config(self) -> Dict[str, Any]:
        """Load contract registry: type -> {abi, addresses{chain_id: address}}."""
        return _load_json(self._config_dir / "contracts.json")

    # ------------------------------------------------------------------
    # ABI / address helpers
    # ------------------------------------------------------------------

    @lru_cache(maxsize=32)
    def get_abi(self, abi_name: str) -> list:
        """Load ABI from config/abis/<abi_name>.json."""
        data = _load_json(self._config_dir / "abis" / f"{abi_name}.json")
        # ABI files are either raw arrays or {"abi": [...]}
        if isinstance(data, list):
            return data
        return data.get("abi", [])

    def get_contract_address(self, contract_type: str, chain_id: int) -> Optional[str]:
        """Resolve a contract address for a network (keys are chain id strings)."""
        entry = self.get_contracts_config().get(contract_type, {})
        return entry.get("addresses", {}).get(str(chain_id))

    def get_targets(self) -> List[Dict[str, Any]]:
        """(chain_id, contract) pairs to follow."""
        return list(self.get_app_config().get("targets", []))

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        """Clear all cached configurations (useful for testing)."""
        for method_name in dir(self):
            method = getattr(self, method_name)
            if hasattr(method, "cache_clear"):
                method.cache_clear()


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------

def get_config() -> ConfigLoader:
    """Get the singleton ConfigLoader instance."""
    return ConfigLoader.get_instance()
