"""Utility modules."""

from .logging_setup import (
    setup_category_logging,
    shutdown_logging,
    get_logger,
    get_current_timestamp,
)
from .trace_context import (
    get_action_id,
    set_action_id,
    new_action,
    generate_action_id,
)
from .perf_logger import log_timing_async
from .explorer import (
    cluster_for_endpoint,
    explorer_tx_url,
    explorer_address_url,
    format_signature,
    format_address,
)

__all__ = [
    # Logging setup
    "setup_category_logging",
    "shutdown_logging",
    "get_logger",
    "get_current_timestamp",
    # Trace context
    "get_action_id",
    "set_action_id",
    "new_action",
    "generate_action_id",
    # Performance
    "log_timing_async",
    # Explorer
    "cluster_for_endpoint",
    "explorer_tx_url",
    "explorer_address_url",
    "format_signature",
    "format_address",
]
