"""
Configuration schema validation for the contract event pipeline.

Validates that all required config files exist and contain required keys.
Run at startup to fail fast on misconfiguration.
"""

from typing import Any

from config.loader import ConfigLoader, get_config


class ConfigValidationError(ValueError):
    """Raised when a required config key is missing or invalid."""

    pass


def _check_keys(config: dict[str, Any], required_keys: list[str]) -> list[str]:
    """Check that all required keys exist in a config dict. Returns list of missing keys."""
    missing = []
    for key in required_keys:
        parts = key.split(".")
        current = config
        for part in parts:
            if not isinstance(current, dict) or part not in current:
                missing.append(key)
                break
            current = current[part]
    return missing


def validate_app_config(config: dict[str, Any]) -> list[str]:
    """Validate app.json has at least one well-formed target."""
    errors = _check_keys(config, ["targets"])
    if not errors:
        targets = config.get("targets", [])
        if not isinstance(targets, list) or len(targets) == 0:
            errors.append("targets: must be a non-empty list")
        else:
            for i, target in enumerate(targets):
                for key in _check_keys(target, ["chain_id", "contract"]):
                    errors.append(f"targets[{i}].{key}")
    return errors


def validate_contracts_config(config: dict[str, Any], targets: list[dict[str, Any]]) -> list[str]:
    """Validate contracts.json covers every target with an ABI name and address."""
    errors = []
    for target in targets:
        contract = target.get("contract", "")
        chain_id = str(target.get("chain_id", ""))
        entry = config.get(contract)
        if not isinstance(entry, dict):
            errors.append(f"{contract}")
            continue
        for key in _check_keys(entry, ["abi", "addresses"]):
            errors.append(f"{contract}.{key}")
        if chain_id not in entry.get("addresses", {}):
            errors.append(f"{contract}.addresses.{chain_id}")
    return errors


def validate_sink_config(config: dict[str, Any]) -> list[str]:
    """Validate sink.json has a base URL and an endpoint table."""
    errors = _check_keys(config, ["base_url", "endpoints"])
    if not errors and not config.get("base_url"):
        errors.append("base_url: must not be empty")
    return errors


def validate_websocket_config(config: dict[str, Any]) -> list[str]:
    """Validate websocket.json has connection and reconnection sections."""
    return _check_keys(
        config,
        [
            "connection.connect_timeout_seconds",
            "timeouts.subscription_response_timeout_seconds",
            "reconnection.max_attempts",
            "reconnection.base_delay_seconds",
        ],
    )


def validate_chain_config(config: dict[str, Any]) -> list[str]:
    """Validate chains/<id>.json has a websocket endpoint."""
    errors = _check_keys(config, ["chain_id", "rpc.ws_url"])
    if not errors and not config["rpc"]["ws_url"]:
        errors.append("rpc.ws_url: must not be empty")
    return errors


def validate_all_configs(loader: ConfigLoader | None = None) -> None:
    """
    Validate all config files. Raises ConfigValidationError with details
    if any required keys are missing.
    """
    loader = loader or get_config()
    all_errors: dict[str, list[str]] = {}

    app_cfg = loader.get_app_config()
    targets = app_cfg.get("targets", []) if isinstance(app_cfg, dict) else []

    validators = {
        "app.json": (loader.get_app_config, validate_app_config),
        "contracts.json": (
            loader.get_contracts_config,
            lambda cfg: validate_contracts_config(cfg, targets),
        ),
        "sink.json": (loader.get_sink_config, validate_sink_config),
        "websocket.json": (loader.get_websocket_config, validate_websocket_config),
    }
    for chain_id in sorted({t.get("chain_id") for t in targets if t.get("chain_id")}):
        validators[f"chains/{chain_id}.json"] = (
            lambda cid=chain_id: loader.get_chain_config(cid),
            validate_chain_config,
        )

    for config_name, (loader_fn, validator_fn) in validators.items():
        config = loader_fn()
        if not config:
            all_errors[config_name] = ["Config file is empty or not found"]
            continue
        errors = validator_fn(config)
        if errors:
            all_errors[config_name] = errors

    if all_errors:
        lines = ["Configuration validation failed:"]
        for config_name, errors in all_errors.items():
            lines.append(f"\n  {config_name}:")
            for error in errors:
                lines.append(f"    - missing: {error}")
        raise ConfigValidationError("\n".join(lines))
