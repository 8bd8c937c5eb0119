"""External system adapters."""

from .retry import RetryPolicy, call_with_retry

__all__ = ["RetryPolicy", "call_with_retry"]
