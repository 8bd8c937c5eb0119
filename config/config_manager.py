"""
Configuration manager with environment-based loading.

Supports:
- Base configuration (base.yaml)
- Environment-specific overrides (devnet.yaml, mainnet.yaml)
- Secrets loading (secrets.yaml - gitignored)
- Environment variable overrides for endpoints and API keys
"""

from __future__ import annotations
from pathlib import Path
from typing import Dict, Any, Mapping, Optional
import os
import yaml
import logging

from fracvault.domain.exceptions import ConfigurationError

from .models import (
    AppConfig,
    CacheConfig,
    ComputeBudgetConfig,
    EventListenerConfig,
    LedgerConfig,
    LoggingConfig,
    ProofProviderConfig,
    ReclaimConfig,
    RetryConfig,
)


logger = logging.getLogger(__name__)

# Environment variable → (section, key)
ENV_OVERRIDES = {
    "RECLAIM_RPC_URL": ("ledger", "rpc_url"),
    "RECLAIM_WS_URL": ("ledger", "ws_url"),
    "RECLAIM_PROGRAM_ID": ("ledger", "program_id"),
    "HELIUS_API_KEY": ("proof_provider", "api_key"),
}


class ConfigManager:
    """
    Configuration manager with environment support.

    Loads configuration in this order:
    1. base.yaml (default config)
    2. {env}.yaml (environment-specific, e.g., devnet.yaml)
    3. secrets.yaml (if exists, gitignored)
    4. environment variables listed in ENV_OVERRIDES

    Later sources override earlier ones.
    """

    def __init__(
        self,
        config_dir: str | Path = "config",
        env: str = "devnet",
        environ: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize config manager.

        Args:
            config_dir: Directory containing config files.
            env: Environment name (devnet, mainnet, etc).
            environ: Environment variables (defaults to os.environ).
        """
        self.config_dir = Path(config_dir)
        self.env = env
        self.environ = os.environ if environ is None else environ
        self.config: Dict[str, Any] = {}

    def load(self) -> AppConfig:
        """
        Load configuration from YAML files.

        Raises:
            ConfigurationError: Base config missing or invalid.
        """
        base_path = self.config_dir / "base.yaml"
        if not base_path.exists():
            raise ConfigurationError(f"Base config not found: {base_path}")

        self.config = self._load_yaml(base_path)
        logger.info(f"Loaded base config from {base_path}")

        env_path = self.config_dir / f"{self.env}.yaml"
        if env_path.exists():
            self.config = self._merge_dicts(self.config, self._load_yaml(env_path))
            logger.info(f"Loaded {self.env} config from {env_path}")

        secrets_path = self.config_dir / "secrets.yaml"
        if secrets_path.exists():
            self.config = self._merge_dicts(self.config, self._load_yaml(secrets_path))
            logger.info("Loaded secrets")

        self._apply_env_overrides()
        return self._parse_config()

    def load_dict(self, raw: Dict[str, Any]) -> AppConfig:
        """Parse an in-memory config dict (tests and embedding)."""
        self.config = raw
        self._apply_env_overrides()
        return self._parse_config()

    def _load_yaml(self, path: Path) -> Dict[str, Any]:
        """Load YAML file."""
        try:
            with open(path, "r") as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}")

    def _merge_dicts(self, base: Dict, override: Dict) -> Dict:
        """Deep merge two dicts (override wins)."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_overrides(self) -> None:
        for variable, (section, key) in ENV_OVERRIDES.items():
            value = self.environ.get(variable)
            if value:
                self.config = self._merge_dicts(self.config, {section: {key: value}})
                logger.info(f"Config {section}.{key} overridden by ${variable}")

    def _require(self, section: Dict[str, Any], name: str, key: str) -> Any:
        value = section.get(key)
        if value in (None, ""):
            raise ConfigurationError(f"Missing required config {name}.{key}")
        return value

    def _parse_config(self) -> AppConfig:
        """Parse raw dict into AppConfig."""
        try:
            ledger_raw = self.config.get("ledger", {})
            ledger = LedgerConfig(
                rpc_url=self._require(ledger_raw, "ledger", "rpc_url"),
                program_id=self._require(ledger_raw, "ledger", "program_id"),
                ws_url=ledger_raw.get("ws_url"),
                commitment=ledger_raw.get("commitment", "confirmed"),
                confirm_timeout_sec=float(ledger_raw.get("confirm_timeout_sec", 60.0)),
            )

            proof_raw = self.config.get("proof_provider", {})
            proof_provider = ProofProviderConfig(
                url=proof_raw.get("url") or ledger.rpc_url,
                api_key=proof_raw.get("api_key"),
                timeout_sec=float(proof_raw.get("timeout_sec", 5.0)),
            )

            cache_raw = self.config.get("cache", {})
            cache = CacheConfig(
                lifetime_sec=int(cache_raw.get("lifetime_sec", 1800)),
                metadata_batch_size=int(cache_raw.get("metadata_batch_size", 10)),
                metadata_batch_delay_sec=float(cache_raw.get("metadata_batch_delay_sec", 0.1)),
            )

            retry_raw = self.config.get("retry", {})
            retry = RetryConfig(
                max_attempts=int(retry_raw.get("max_attempts", 3)),
                base_delay_sec=float(retry_raw.get("base_delay_sec", 1.0)),
                max_delay_sec=float(retry_raw.get("max_delay_sec", 30.0)),
            )

            reclaim_raw = self.config.get("reclaim", {})
            budget_raw = reclaim_raw.get("compute_budget", {})
            reclaim = ReclaimConfig(
                stable_mint=self._require(reclaim_raw, "reclaim", "stable_mint"),
                treasury=self._require(reclaim_raw, "reclaim", "treasury"),
                stable_decimals=int(reclaim_raw.get("stable_decimals", 6)),
                cancel_fee=int(reclaim_raw.get("cancel_fee", 100)),
                escrow_period_sec=int(reclaim_raw.get("escrow_period_sec", 7 * 24 * 3600)),
                instant_threshold_bps=int(reclaim_raw.get("instant_threshold_bps", 9999)),
                shared_lookup_table=reclaim_raw.get("shared_lookup_table"),
                max_transaction_size=int(reclaim_raw.get("max_transaction_size", 1232)),
                proof_timeout_sec=float(reclaim_raw.get("proof_timeout_sec", proof_provider.timeout_sec)),
                compute_budget=ComputeBudgetConfig(
                    initialize_units=int(budget_raw.get("initialize_units", 400_000)),
                    cancel_units=int(budget_raw.get("cancel_units", 300_000)),
                    finalize_units=int(budget_raw.get("finalize_units", 400_000)),
                    unit_price_micro_lamports=int(budget_raw.get("unit_price_micro_lamports", 1)),
                ),
            )

            listener_raw = self.config.get("event_listener", {})
            event_listener = EventListenerConfig(enabled=bool(listener_raw.get("enabled", True)))

            logging_raw = self.config.get("logging", {})
            logging_config = LoggingConfig(
                level=logging_raw.get("level", "INFO"),
                json=bool(logging_raw.get("json", False)),
                log_dir=logging_raw.get("log_dir", "./logs"),
                console=bool(logging_raw.get("console", True)),
            )

            return AppConfig(
                env=self.env,
                ledger=ledger,
                proof_provider=proof_provider,
                cache=cache,
                retry=retry,
                reclaim=reclaim,
                event_listener=event_listener,
                logging=logging_config,
                raw=self.config,
            )

        except ConfigurationError:
            raise
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"Failed to parse config: {e}")
