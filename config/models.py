"""Configuration data models."""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class LedgerConfig:
    """Solana RPC endpoint and vault program."""
    rpc_url: str
    program_id: str
    ws_url: Optional[str] = None
    commitment: str = "confirmed"
    confirm_timeout_sec: float = 60.0


@dataclass
class ProofProviderConfig:
    """DAS endpoint for compressed asset proofs and metadata."""
    url: str
    api_key: Optional[str] = None
    timeout_sec: float = 5.0

    @property
    def endpoint(self) -> str:
        if not self.api_key:
            return self.url
        separator = "&" if "?" in self.url else "?"
        return f"{self.url}{separator}api-key={self.api_key}"


@dataclass
class CacheConfig:
    """Vault cache staleness and metadata batching."""
    lifetime_sec: int = 1800
    metadata_batch_size: int = 10
    metadata_batch_delay_sec: float = 0.1


@dataclass
class RetryConfig:
    """Backoff for rate-limited reads."""
    max_attempts: int = 3
    base_delay_sec: float = 1.0
    max_delay_sec: float = 30.0


@dataclass
class ComputeBudgetConfig:
    """Compute unit limits per instruction and the unit price."""
    initialize_units: int = 400_000
    cancel_units: int = 300_000
    finalize_units: int = 400_000
    unit_price_micro_lamports: int = 1


@dataclass
class ReclaimConfig:
    """Reclaim economics and transaction assembly."""
    stable_mint: str
    treasury: str
    stable_decimals: int = 6
    cancel_fee: int = 100
    escrow_period_sec: int = 7 * 24 * 3600
    instant_threshold_bps: int = 9999
    shared_lookup_table: Optional[str] = None
    max_transaction_size: int = 1232
    proof_timeout_sec: float = 5.0
    compute_budget: ComputeBudgetConfig = field(default_factory=ComputeBudgetConfig)

    @property
    def cancel_fee_raw(self) -> int:
        return self.cancel_fee * 10 ** self.stable_decimals


@dataclass
class EventListenerConfig:
    """Program log subscription."""
    enabled: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    json: bool = False
    log_dir: Optional[str] = "./logs"
    console: bool = True


@dataclass
class AppConfig:
    """Root configuration."""
    env: str
    ledger: LedgerConfig
    proof_provider: ProofProviderConfig
    cache: CacheConfig
    retry: RetryConfig
    reclaim: ReclaimConfig
    event_listener: EventListenerConfig
    logging: LoggingConfig
    raw: Dict[str, Any] = field(default_factory=dict)
