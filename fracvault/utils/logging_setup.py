"""
Logging setup with categories and action ID support.

Provides:
- 6 log categories: system, ledger, store, reclaim, events, perf
- Automatic module → category routing
- Action ID correlation in all logs
- File logging through a queue listener (non-blocking writes)
- Console output for CLI runs
- JSON or standard text formatting

Categories:
- system: Startup, shutdown, config, CLI
- ledger: RPC and DAS adapters, retries, rate limits
- store: Vault cache scans, refreshes, metadata enrichment
- reclaim: Reclaim policy decisions and transaction orchestration
- events: Program log subscription and event decoding
- perf: Timing, latency, performance diagnostics
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
import json
from queue import Queue
from pathlib import Path
from typing import Optional, Dict, List
from datetime import datetime, timezone

from .trace_context import get_action_id

# =============================================================================
# GLOBAL STATE
# =============================================================================

# Configured category loggers
_category_loggers: Dict[str, logging.Logger] = {}

# Queue listeners for async file logging (one per category)
_queue_listeners: List[logging.handlers.QueueListener] = []

# =============================================================================
# LOG CATEGORIES AND ROUTING
# =============================================================================

CATEGORIES = ["system", "ledger", "store", "reclaim", "events", "perf"]

CATEGORY_SUFFIXES = {
    "system": "sys",
    "ledger": "ldg",
    "store": "sto",
    "reclaim": "rcl",
    "events": "evt",
    "perf": "prf",
}

# Module path → category routing
# More specific paths should come first
MODULE_ROUTING: List[tuple[str, str]] = [
    ("fracvault.infrastructure.adapters", "ledger"),
    ("fracvault.infrastructure.stores", "store"),
    ("fracvault.infrastructure.codecs", "store"),
    ("fracvault.application.event_listener", "events"),
    ("fracvault.domain.events", "events"),
    ("fracvault.application.reclaim_orchestrator", "reclaim"),
    ("fracvault.application.transaction_builder", "reclaim"),
    ("fracvault.domain.reclaim_policy", "reclaim"),
    ("fracvault.application", "system"),
    ("fracvault", "system"),
]


def get_category_for_module(module_name: str) -> str:
    """
    Determine the log category for a given module name.

    Args:
        module_name: Full module path (e.g., "fracvault.infrastructure.stores.vault_store").

    Returns:
        Category name.
    """
    for prefix, category in MODULE_ROUTING:
        if module_name.startswith(prefix):
            return category
    return "system"


def get_current_timestamp() -> str:
    """ISO-8601 UTC timestamp for log lines."""
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# FILTERS
# =============================================================================

class ActionIdFilter(logging.Filter):
    """
    Stamp the current action ID onto each record as ``record.action``.

    Runs on the calling thread, so file lines written later by a queue
    listener keep the ID that was active when the call was made.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "action"):
            record.action = get_action_id()
        return True


def _record_action(record: logging.LogRecord) -> str:
    return getattr(record, "action", None) or get_action_id()


# =============================================================================
# FORMATTERS
# =============================================================================

class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging with action ID support.

    Formats log records as single-line JSON with timestamp, level, category,
    action ID, message, optional extra data and exception text.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": get_current_timestamp(),
            "level": record.levelname,
            "cat": self._get_category(record.name),
            "action": _record_action(record),
            "msg": record.getMessage(),
        }

        if hasattr(record, "data") and record.data:
            log_entry["data"] = record.data

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)

    def _get_category(self, logger_name: str) -> str:
        """Extract category from logger name."""
        if logger_name.startswith("fracvault."):
            parts = logger_name.split(".")
            if len(parts) >= 2 and parts[1] in CATEGORIES:
                return parts[1]
        return "system"


class ConsoleFormatter(logging.Formatter):
    """
    Console formatter with action ID and color support.

    Format: [LEVEL] [action] message
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        action_id = _record_action(record)
        level = record.levelname

        if self.use_colors:
            color = self.COLORS.get(level, "")
            return f"{color}[{level:7}]{self.RESET} [{action_id}] {record.getMessage()}"
        return f"[{level:7}] [{action_id}] {record.getMessage()}"


# =============================================================================
# LOGGER FACTORY
# =============================================================================

def get_logger(module_name: str) -> logging.Logger:
    """
    Get a logger for the given module, routed to the correct category.

    Example:
        from fracvault.utils.logging_setup import get_logger
        logger = get_logger(__name__)
        logger.info("Scanning vaults...")
    """
    category = get_category_for_module(module_name)
    return logging.getLogger(f"fracvault.{category}")


# =============================================================================
# CATEGORY LOGGING SETUP
# =============================================================================

def setup_category_logging(
    env: str,
    log_dir: Optional[str] = "./logs",
    level: str = "INFO",
    console: bool = True,
    json_format: bool = True,
) -> Dict[str, logging.Logger]:
    """
    Set up per-category loggers.

    When ``log_dir`` is set, each category writes JSON lines to
    ``{log_dir}/{date}/reclaim_{env}_{suffix}_{date}.log`` through a
    QueueHandler/QueueListener pair. Console output goes to stderr.

    Args:
        env: Environment name (dev/prod/devnet).
        log_dir: Base directory for log files, or None for console only.
        level: Logging level.
        console: Enable console output.
        json_format: Use JSON for console lines instead of the colored format.

    Returns:
        Dict mapping category name to logger.
    """
    shutdown_logging()

    for category in CATEGORIES:
        logger = logging.getLogger(f"fracvault.{category}")
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)
        for existing in logger.filters[:]:
            if isinstance(existing, ActionIdFilter):
                logger.removeFilter(existing)

    effective_level = getattr(logging, level.upper(), logging.INFO)

    date_str = datetime.now().strftime("%Y-%m-%d")
    log_path: Optional[Path] = None
    if log_dir:
        log_path = Path(log_dir) / date_str
        log_path.mkdir(parents=True, exist_ok=True)

    for category in CATEGORIES:
        logger = logging.getLogger(f"fracvault.{category}")
        logger.setLevel(effective_level)
        logger.propagate = False
        logger.addFilter(ActionIdFilter())

        if log_path is not None:
            suffix = CATEGORY_SUFFIXES[category]
            file_handler = logging.FileHandler(
                filename=str(log_path / f"reclaim_{env}_{suffix}_{date_str}.log"),
                mode="a",
                encoding="utf-8",
            )
            file_handler.setFormatter(JSONFormatter())
            file_handler.setLevel(effective_level)

            log_queue: Queue = Queue(-1)
            logger.addHandler(logging.handlers.QueueHandler(log_queue))
            listener = logging.handlers.QueueListener(
                log_queue, file_handler, respect_handler_level=True
            )
            listener.start()
            _queue_listeners.append(listener)

        if console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())
            console_handler.setLevel(effective_level)
            logger.addHandler(console_handler)

        _category_loggers[category] = logger

    return _category_loggers


def get_category_loggers() -> Dict[str, logging.Logger]:
    """Get all configured category loggers."""
    return _category_loggers


def shutdown_logging() -> None:
    """Stop all queue listeners (call during application shutdown)."""
    for listener in _queue_listeners:
        listener.stop()
    _queue_listeners.clear()
