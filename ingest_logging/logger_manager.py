"""
Logging setup for the contract event pipeline.

Each component writes to its own rotating file under ``logs/<folder>/`` and,
optionally, to stderr. Records can be rendered as JSON lines carrying the
pipeline context fields (chain, contract, tx hash, record id) passed via
``extra=``. A separate deep-dive trace follows individual logs through
decode, normalize and forward when ``logging.deep_dive`` is set in app.json.

Usage:
    from ingest_logging.logger_manager import setup_module_logger, create_module_log_directories

    create_module_log_directories()
    logger = setup_module_logger('forwarder', 'forwarder.log', module_folder='Forwarder_Logs')
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from config.loader import get_config
from shared.serialization_utils import dumps

_PROJECT_ROOT = Path(__file__).parent.parent

_logging_config: dict[str, Any] = get_config().get_app_config().get("logging", {})
_LOG_DIR = str(_PROJECT_ROOT / _logging_config.get("log_dir", "logs"))
_LOG_TO_CONSOLE = bool(_logging_config.get("console", True))
_USE_JSON = bool(_logging_config.get("json_format", False))
_DEEP_DIVE_ENABLED = bool(_logging_config.get("deep_dive", False))
_MAX_BYTES = int(_logging_config.get("max_bytes", 10 * 1024 * 1024))
_BACKUP_COUNT = int(_logging_config.get("backup_count", 5))
_DEFAULT_LEVEL = logging.getLevelName(str(_logging_config.get("level", "INFO")).upper())
if not isinstance(_DEFAULT_LEVEL, int):
    _DEFAULT_LEVEL = logging.INFO

_MODULE_FOLDERS: dict[str, str] = _logging_config.get(
    "module_folders",
    {
        "connection": "Connection_Logs",
        "decoder": "Decoder_Logs",
        "pipeline": "Pipeline_Logs",
        "forwarder": "Forwarder_Logs",
        "monitor": "Contract_Monitor_Logs",
        "deep_dive": "Deep_Dive_Logs",
    },
)


# ============================================================================
# FORMATTERS
# ============================================================================


class JSONFormatter(logging.Formatter):
    """One JSON object per line; pipeline context comes from ``extra=``."""

    CONTEXT_KEYS = (
        "trace_id",
        "chain_id",
        "contract_address",
        "event_name",
        "block_number",
        "tx_hash",
        "record_id",
        "state",
        "error",
    )

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(
            {key: getattr(record, key) for key in self.CONTEXT_KEYS if hasattr(record, key)}
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)


# ============================================================================
# LOGGER FACTORY
# ============================================================================

_logger_cache: dict[str, logging.Logger] = {}


def log_path_for(log_file: str, module_folder: str | None = None) -> str:
    if module_folder:
        return os.path.join(_LOG_DIR, module_folder, log_file)
    return os.path.join(_LOG_DIR, log_file)


def create_module_log_directories() -> dict[str, str]:
    """Create ``logs/`` and one subfolder per component. Returns key -> path."""
    os.makedirs(_LOG_DIR, exist_ok=True)
    created = {}
    for key, folder_name in _MODULE_FOLDERS.items():
        folder_path = os.path.join(_LOG_DIR, folder_name)
        os.makedirs(folder_path, exist_ok=True)
        created[key] = folder_path
    return created


def setup_module_logger(
    name: str,
    log_file: str,
    level: int | None = None,
    module_folder: str | None = None,
    use_json_formatter: bool | None = None,
    console: bool | None = None,
) -> logging.Logger:
    """
    Create (or return the cached) logger for one pipeline component.

    Args:
        name: Logger name, unique per component.
        log_file: File name inside ``module_folder``.
        level: Defaults to app.json ``logging.level``.
        module_folder: Subfolder of the log directory, e.g. 'Forwarder_Logs'.
        use_json_formatter: Defaults to app.json ``logging.json_format``.
        console: Also write to stderr; defaults to app.json ``logging.console``.
    """
    cache_key = f"{name}:{module_folder}:{log_file}"
    if cache_key in _logger_cache:
        return _logger_cache[cache_key]

    level = _DEFAULT_LEVEL if level is None else level
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Several instances of a component share one logger name
    if logger.handlers:
        _logger_cache[cache_key] = logger
        return logger

    log_path = log_path_for(log_file, module_folder)
    os.makedirs(os.path.dirname(log_path), exist_ok=True)

    if use_json_formatter is None:
        use_json_formatter = _USE_JSON
    formatter: logging.Formatter = JSONFormatter() if use_json_formatter else HumanReadableFormatter()

    file_handler = RotatingFileHandler(
        log_path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT, encoding="utf-8"
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if _LOG_TO_CONSOLE if console is None else console:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setLevel(level)
        stream_handler.setFormatter(HumanReadableFormatter())
        logger.addHandler(stream_handler)

    logger.propagate = False
    _logger_cache[cache_key] = logger
    return logger


# ============================================================================
# DEEP-DIVE TRACE
# ============================================================================

_deep_dive_logger: logging.Logger | None = None


def get_deep_dive_logger() -> logging.Logger:
    global _deep_dive_logger
    if _deep_dive_logger is None:
        _deep_dive_logger = setup_module_logger(
            "deep_dive",
            "deep_dive_trace.log",
            level=logging.INFO,
            module_folder=_MODULE_FOLDERS.get("deep_dive", "Deep_Dive_Logs"),
            use_json_formatter=False,
            console=False,
        )
    return _deep_dive_logger


def deep_dive_enabled() -> bool:
    return _DEEP_DIVE_ENABLED


def _trace(stage: str, trace_id: str, source_module: str, what: str, data_type: str, **data: Any) -> None:
    # PayloadEncoder: traced payloads carry uint256 values and raw bytes
    get_deep_dive_logger().info(
        dumps(
            {
                "event": stage,
                "trace_id": trace_id,
                "source_module": source_module,
                "what": what,
                "data_type": data_type,
                **data,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )
    )


def log_data_entry(trace_id: str, source_module: str, what: str, data_type: str, data: Any) -> None:
    """A raw log entering the pipeline."""
    _trace("DATA_ENTRY", trace_id, source_module, what, data_type, data=data)


def log_data_processing(
    trace_id: str,
    source_module: str,
    what: str,
    data_type: str,
    input_data: Any,
    output_data: Any,
) -> None:
    """A transformation step (decode or normalize) with its input and output."""
    _trace(
        "DATA_PROCESSING",
        trace_id,
        source_module,
        what,
        data_type,
        input_data=input_data,
        output_data=output_data,
    )


def log_data_output(
    trace_id: str, source_module: str, what: str, data_type: str, data: Any, next_stage: str
) -> None:
    """A result leaving the pipeline (sink acknowledgement)."""
    _trace("DATA_OUTPUT", trace_id, source_module, what, data_type, data=data, next_stage=next_stage)
