"""
Trace context for correlating logs across a single reclaim action.

Provides:
- Unique action IDs (6-char hex) for each orchestrated action or refresh
- Context propagation via contextvars (async-safe)
- Easy access to the current action ID from any module

Usage:
    # In the orchestrator (start of an action)
    with new_action() as action_id:
        await orchestrator.initialize_reclaim(vault_id, asset_id)

    # In any module
    from fracvault.utils.trace_context import get_action_id
    logger.info(f"[{get_action_id()}] Building instruction...")
"""

from __future__ import annotations

import secrets
from contextvars import ContextVar
from contextlib import contextmanager
from typing import Optional, Generator

# Context variable for the current action ID (async-safe)
_action_id: ContextVar[Optional[str]] = ContextVar("action_id", default=None)


def generate_action_id() -> str:
    """
    Generate a new unique action ID.

    Returns:
        6-character hex string (e.g., "a7f3b2").
    """
    return secrets.token_hex(3)


def get_action_id() -> str:
    """
    Get the current action ID.

    Returns:
        Current action ID, or "------" if no action is active.
    """
    action_id = _action_id.get()
    return action_id if action_id else "------"


def set_action_id(action_id: str) -> None:
    """Set the current action ID."""
    _action_id.set(action_id)


@contextmanager
def new_action(action_id: Optional[str] = None) -> Generator[str, None, None]:
    """
    Context manager that scopes log lines to a fresh action ID.

    The previous ID (if any) is restored on exit, so nested actions such as
    the store refresh triggered after a confirmed reclaim keep their own ID
    without clobbering the caller's.

    Yields:
        The new action ID.
    """
    new_id = action_id or generate_action_id()
    token = _action_id.set(new_id)
    try:
        yield new_id
    finally:
        _action_id.reset(token)
