"""In-memory stores."""

from .inflight import InFlightRegistry
from .vault_store import StoreChange, VaultCacheStore

__all__ = ["InFlightRegistry", "StoreChange", "VaultCacheStore"]
