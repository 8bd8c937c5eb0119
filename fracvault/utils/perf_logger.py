"""
Performance logging utilities.

Provides an async timing context manager for ledger scans, proof fetches
and whole reclaim actions. All timing logs include the current action ID
for correlation.

Usage:
    async with log_timing_async("vault_scan") as ctx:
        accounts = await gateway.get_program_accounts(program_id)
        ctx["accounts"] = len(accounts)

Threshold guidelines:
    - Program account scans: warn=2000ms, error=10000ms
    - Proof fetches: warn=1000ms, error=5000ms
    - Full actions (submit + confirm): warn=15000ms, error=60000ms
"""

from __future__ import annotations

import time
import logging
from contextlib import asynccontextmanager
from typing import Optional, AsyncGenerator

from .trace_context import get_action_id

# Performance logger - uses the 'fracvault.perf' category
_perf_logger: Optional[logging.Logger] = None


def get_perf_logger() -> logging.Logger:
    """Get or create the performance logger."""
    global _perf_logger
    if _perf_logger is None:
        _perf_logger = logging.getLogger("fracvault.perf")
    return _perf_logger


def set_perf_logger(logger: logging.Logger) -> None:
    """Set the performance logger (for testing or custom configuration)."""
    global _perf_logger
    _perf_logger = logger


@asynccontextmanager
async def log_timing_async(
    operation: str,
    warn_threshold_ms: float = 500.0,
    error_threshold_ms: float = 2000.0,
    extra: Optional[dict] = None,
) -> AsyncGenerator[dict, None]:
    """
    Async context manager to log operation timing.

    Logs timing to the perf category with the action ID. Escalates the log
    level based on duration thresholds.

    Args:
        operation: Name of the operation being timed.
        warn_threshold_ms: Duration above which to log as WARNING.
        error_threshold_ms: Duration above which to log as ERROR.
        extra: Additional data to include in the log.

    Yields:
        Dict that can be updated with additional context during execution.
    """
    logger = get_perf_logger()
    context = extra.copy() if extra else {}
    start_time = time.perf_counter()

    try:
        yield context
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        action_id = get_action_id()

        log_data = {
            "action": action_id,
            "operation": operation,
            "duration_ms": round(duration_ms, 2),
            **context,
        }

        if duration_ms >= error_threshold_ms:
            logger.error(f"[{action_id}] SLOW {operation}: {duration_ms:.1f}ms", extra={"data": log_data})
        elif duration_ms >= warn_threshold_ms:
            logger.warning(f"[{action_id}] {operation}: {duration_ms:.1f}ms (slow)", extra={"data": log_data})
        else:
            logger.debug(f"[{action_id}] {operation}: {duration_ms:.1f}ms", extra={"data": log_data})
