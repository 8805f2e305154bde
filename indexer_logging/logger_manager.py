"""
Centralized logging for the Kanshi indexer.

Provides standardized logging with JSON and human-readable formatters,
per-module log files, optional console echo and structured deep-dive
tracing of events as they move from the stream into the hand-off queue.

Usage:
    from indexer_logging.logger_manager import setup_module_logger, create_module_log_directories

    create_module_log_directories()
    logger = setup_module_logger('indexer', 'indexer.log', module_folder='Indexer_Logs')
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

# Resolve project root
_PROJECT_ROOT = Path(__file__).parent.parent

# Load logging config
try:
    from config.loader import get_config

    _logging_config = get_config().get_logging_config()
except ImportError:
    _logging_config = {}

_LOG_DIR = os.getenv(
    "INDEXER_LOG_DIR", str(_PROJECT_ROOT / _logging_config.get("log_dir", "logs"))
)
_LOG_LEVEL = getattr(logging, str(_logging_config.get("level", "INFO")).upper(), logging.INFO)
_CONSOLE_ENABLED = bool(_logging_config.get("console", True))
_MODULE_FOLDERS = _logging_config.get(
    "module_folders",
    {
        "main": "Main_Logs",
        "indexer": "Indexer_Logs",
        "stream": "Stream_Logs",
        "consumer": "Consumer_Logs",
        "storage": "Storage_Logs",
        "supervisor": "Supervisor_Logs",
        "deep_dive": "Deep_Dive_Logs",
    },
)


# ============================================================================
# FORMATTERS
# ============================================================================


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        # Include extra fields if present
        for key in (
            "block_number",
            "from_address",
            "transaction_hash",
            "finality",
            "cursor",
            "state",
            "error",
        ):
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Pretty-printed log formatter for console and human-readable files."""

    FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self) -> None:
        super().__init__(fmt=self.FORMAT, datefmt=self.DATE_FORMAT)


# ============================================================================
# LOGGER FACTORY
# ============================================================================

_logger_cache: dict[str, logging.Logger] = {}


def get_log_dir() -> str:
    return _LOG_DIR


def create_module_log_directories() -> dict[str, str]:
    """
    Create organized log directory structure.

    Returns dict mapping folder key to absolute path.
    """
    created = {}
    os.makedirs(_LOG_DIR, exist_ok=True)
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
    use_json_formatter: bool = False,
    console: bool | None = None,
) -> logging.Logger:
    """
    Create a module-specific logger with file and optional console handlers.

    Args:
        name: Logger name (should be unique per module/component).
        log_file: Log filename (placed inside module_folder if specified).
        level: Logging level (default from config/app.json, INFO otherwise).
        module_folder: Subfolder within logs/ directory (e.g., 'Indexer_Logs').
        use_json_formatter: Use structured JSON format (default False = human-readable).
        console: Echo records to stderr (default from config/app.json).

    Returns:
        Configured logging.Logger instance.
    """
    # Return cached logger if already created
    cache_key = f"{name}:{module_folder}:{log_file}"
    if cache_key in _logger_cache:
        return _logger_cache[cache_key]

    if level is None:
        level = _LOG_LEVEL
    if console is None:
        console = _CONSOLE_ENABLED

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        _logger_cache[cache_key] = logger
        return logger

    # Determine log file path
    if module_folder:
        log_path = os.path.join(_LOG_DIR, module_folder, log_file)
    else:
        log_path = os.path.join(_LOG_DIR, log_file)
    os.makedirs(os.path.dirname(log_path), exist_ok=True)

    # Select formatter
    formatter: logging.Formatter
    if use_json_formatter:
        formatter = JSONFormatter()
    else:
        formatter = HumanReadableFormatter()

    # File handler
    file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(HumanReadableFormatter())
        logger.addHandler(console_handler)

    # Prevent propagation to root logger
    logger.propagate = False

    _logger_cache[cache_key] = logger
    return logger


def setup_deep_dive_logger() -> logging.Logger:
    """Create the centralized deep-dive data tracing logger."""
    return setup_module_logger(
        "deep_dive",
        "deep_dive_trace.log",
        module_folder=_MODULE_FOLDERS.get("deep_dive", "Deep_Dive_Logs"),
        use_json_formatter=True,
        console=False,
    )


_deep_dive_logger: logging.Logger | None = None


def get_deep_dive_logger() -> logging.Logger:
    """Get or create the deep-dive logger (lazy singleton)."""
    global _deep_dive_logger
    if _deep_dive_logger is None:
        _deep_dive_logger = setup_deep_dive_logger()
    return _deep_dive_logger


# ============================================================================
# STRUCTURED LOGGING HELPERS (Deep-dive tracing)
# ============================================================================


def log_data_entry(
    trace_id: str,
    source_module: str,
    what: str,
    data_type: str,
    data: Any,
) -> None:
    """Log data arriving from the stream to the deep-dive trace log."""
    logger = get_deep_dive_logger()
    logger.info(
        json.dumps(
            {
                "event": "DATA_ENTRY",
                "trace_id": trace_id,
                "source_module": source_module,
                "what": what,
                "data_type": data_type,
                "data": data,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            default=str,
        )
    )


def log_data_output(
    trace_id: str,
    source_module: str,
    what: str,
    data_type: str,
    data: Any,
    next_stage: str,
) -> None:
    """Log data leaving a stage (e.g. handed to the consumer) to the deep-dive trace log."""
    logger = get_deep_dive_logger()
    logger.info(
        json.dumps(
            {
                "event": "DATA_OUTPUT",
                "trace_id": trace_id,
                "source_module": source_module,
                "what": what,
                "data_type": data_type,
                "data": data,
                "next_stage": next_stage,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            default=str,
        )
    )
