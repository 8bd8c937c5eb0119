"""
Vault cache store.

Holds the authoritative client-side vault collection as an immutable tuple
that is swapped by reference, so readers never observe a half-applied
update. Full scans, targeted refreshes, metadata batches and position scans
are coalesced through an in-flight registry.

Refresh races are resolved per record: every fetch takes a sequence number
when it is issued, and a completing fetch never replaces a record produced
by a later-issued fetch. A slow full scan therefore cannot clobber a
targeted refresh that started after it.

Fetch methods never raise. Failures are logged and recorded in ``error``
while the previous collection stays in place.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from enum import Enum
from types import MappingProxyType
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ...domain.clock import Clock, SystemClock
from ...domain.exceptions import AccountDecodeError
from ...domain.interfaces.ledger_gateway import LedgerGateway
from ...domain.interfaces.proof_provider import ProofProvider
from ...models.vault import UserPositions, Vault, VaultMetadata, VaultStats, VaultStatus, to_tokens
from ...utils.logging_setup import get_logger
from ...utils.perf_logger import log_timing_async
from ..adapters.solana.programs import TOKEN_PROGRAM_ID
from ..codecs.vault_layout import VAULT_ACCOUNT_SIZE, decode_vault
from .inflight import InFlightRegistry

logger = get_logger(__name__)

CACHE_LIFETIME = timedelta(minutes=30)
METADATA_BATCH_SIZE = 10
METADATA_BATCH_DELAY_SEC = 0.1

SCAN_KEY = ("scan",)
METADATA_KEY = ("metadata",)


class StoreChange(Enum):
    """What changed in a store notification."""
    VAULTS = "vaults"
    METADATA = "metadata"
    POSITIONS = "positions"
    LOADING = "loading"
    ERROR = "error"


StoreListener = Callable[[StoreChange], None]


def _newest_first(vaults: Iterable[Vault]) -> Tuple[Vault, ...]:
    return tuple(sorted(vaults, key=lambda v: (-v.creation_timestamp, v.address)))


class VaultCacheStore:
    """
    Client-side cache of all vaults owned by the vault program.

    Observables: ``vaults``, ``is_loading``, ``error``, ``last_fetch_timestamp``,
    ``user_positions`` and ``metadata_cache``. Listeners registered with
    ``add_listener`` are called after each change.
    """

    def __init__(
        self,
        gateway: LedgerGateway,
        proof_provider: ProofProvider,
        program_id: str,
        clock: Optional[Clock] = None,
        cache_lifetime: timedelta = CACHE_LIFETIME,
        metadata_batch_size: int = METADATA_BATCH_SIZE,
        metadata_batch_delay_sec: float = METADATA_BATCH_DELAY_SEC,
    ):
        self._gateway = gateway
        self._proof_provider = proof_provider
        self.program_id = program_id
        self._clock = clock or SystemClock()
        self.cache_lifetime = cache_lifetime
        self.metadata_batch_size = max(1, metadata_batch_size)
        self.metadata_batch_delay_sec = metadata_batch_delay_sec

        self._vaults: Tuple[Vault, ...] = ()
        self._metadata: Mapping[str, VaultMetadata] = MappingProxyType({})
        self._positions: Optional[UserPositions] = None
        self._seq = 0
        self._inflight = InFlightRegistry()
        self._listeners: List[StoreListener] = []

        self.is_loading = False
        self.error: Optional[str] = None
        self.last_fetch_timestamp: float = 0.0

    # -------------------------------------------------------------------------
    # Observables
    # -------------------------------------------------------------------------

    @property
    def vaults(self) -> Tuple[Vault, ...]:
        return self._vaults

    @property
    def metadata_cache(self) -> Mapping[str, VaultMetadata]:
        return self._metadata

    @property
    def user_positions(self) -> Optional[UserPositions]:
        return self._positions

    @property
    def inflight(self) -> InFlightRegistry:
        return self._inflight

    @property
    def is_stale(self) -> bool:
        if self.last_fetch_timestamp <= 0:
            return True
        age = self._clock.timestamp() - self.last_fetch_timestamp
        return age >= self.cache_lifetime.total_seconds()

    def is_cache_valid(self) -> bool:
        """True when the collection is non-empty and younger than the cache lifetime."""
        return bool(self._vaults) and not self.is_stale

    def add_listener(self, listener: StoreListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self, change: StoreChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                logger.exception(f"Store listener failed on {change.value}: {e}")

    def _next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def _set_loading(self, loading: bool) -> None:
        if self.is_loading != loading:
            self.is_loading = loading
            self._notify(StoreChange.LOADING)

    def _set_error(self, message: str) -> None:
        self.error = message
        self._notify(StoreChange.ERROR)

    def _clear_error(self) -> None:
        if self.error is not None:
            self.error = None
            self._notify(StoreChange.ERROR)

    # -------------------------------------------------------------------------
    # Full scan
    # -------------------------------------------------------------------------

    async def fetch_all(self) -> Tuple[Vault, ...]:
        """Scan every vault account and replace the collection."""
        return await self._inflight.run(SCAN_KEY, self._scan)

    async def fetch_if_stale(self) -> Tuple[Vault, ...]:
        """Scan only when the cache is stale; join a scan already in flight."""
        if not self._inflight.is_running(SCAN_KEY) and not self.is_stale:
            logger.debug("Vault cache fresh, skipping scan")
            return self._vaults
        return await self.fetch_all()

    async def _scan(self) -> Tuple[Vault, ...]:
        seq = self._next_seq()
        self._set_loading(True)
        try:
            async with log_timing_async("vault_scan", warn_threshold_ms=2000, error_threshold_ms=10000) as ctx:
                accounts = await self._gateway.get_program_accounts(
                    self.program_id, data_size=VAULT_ACCOUNT_SIZE
                )
                decoded: List[Vault] = []
                for account in accounts:
                    try:
                        decoded.append(decode_vault(account.address, account.data, fetch_seq=seq))
                    except AccountDecodeError as e:
                        logger.warning(f"Skipping malformed vault account: {e}")
                ctx["accounts"] = len(accounts)
                ctx["vaults"] = len(decoded)
        except Exception as e:
            logger.error(f"Vault scan failed, keeping {len(self._vaults)} cached vaults: {e}")
            self._set_error(f"Failed to fetch vaults: {e}")
            self._set_loading(False)
            return self._vaults

        self._vaults = self._merge_scan(decoded, seq)
        self.last_fetch_timestamp = self._clock.timestamp()
        self._clear_error()
        self._set_loading(False)
        logger.info(f"Loaded {len(self._vaults)} vaults")
        self._notify(StoreChange.VAULTS)
        return self._vaults

    def _merge_scan(self, decoded: Sequence[Vault], seq: int) -> Tuple[Vault, ...]:
        current = {vault.address: vault for vault in self._vaults}
        merged: Dict[str, Vault] = {}

        for vault in decoded:
            existing = current.get(vault.address)
            if existing is not None and existing.fetch_seq > seq:
                merged[vault.address] = existing
                continue
            merged[vault.address] = vault.with_metadata(self._metadata_for(vault, existing))

        # Records refreshed after this scan was issued survive even if the scan missed them
        for address, existing in current.items():
            if address not in merged and existing.fetch_seq > seq:
                merged[address] = existing

        return _newest_first(merged.values())

    def _metadata_for(self, vault: Vault, existing: Optional[Vault]) -> Optional[VaultMetadata]:
        cached = self._metadata.get(vault.nft_asset_id)
        if cached is not None:
            return cached
        return existing.metadata if existing is not None else None

    # -------------------------------------------------------------------------
    # Targeted refresh
    # -------------------------------------------------------------------------

    async def fetch_by_id(self, address: str) -> Optional[Vault]:
        """
        Re-read one vault and upsert it.

        Targeted refreshes are never joined: a read already in flight may
        predate the ledger change the caller is reacting to. Each read takes
        its sequence number when issued, so the newest request wins the upsert.

        Returns:
            The refreshed vault, or None when the account is missing or the
            read failed.
        """
        seq = self._next_seq()
        return await self._inflight.run(("vault", address, seq), lambda: self._refresh_one(address, seq))

    async def _refresh_one(self, address: str, seq: int) -> Optional[Vault]:
        try:
            data = await self._gateway.get_account_info(address)
        except Exception as e:
            logger.error(f"Refresh of vault {address} failed: {e}")
            self._set_error(f"Failed to refresh vault {address}: {e}")
            return None

        if data is None:
            logger.info(f"Vault {address} not found on ledger")
            return None

        try:
            vault = decode_vault(address, data, fetch_seq=seq)
        except AccountDecodeError as e:
            logger.warning(f"Refresh of vault {address} returned malformed data: {e}")
            return None

        return self._upsert(vault)

    def _upsert(self, vault: Vault) -> Vault:
        vaults = list(self._vaults)
        for i, existing in enumerate(vaults):
            if existing.address != vault.address:
                continue
            if existing.fetch_seq > vault.fetch_seq:
                logger.debug(f"Discarding stale refresh of {vault.address}")
                return existing
            vault = vault.with_metadata(self._metadata_for(vault, existing))
            vaults[i] = vault
            break
        else:
            vault = vault.with_metadata(self._metadata_for(vault, None))
            vaults.append(vault)
            logger.info(f"Inserted newly observed vault {vault.address}")

        self._vaults = _newest_first(vaults)
        self._notify(StoreChange.VAULTS)
        return vault

    def invalidate(self) -> None:
        """Mark the collection stale so the next fetch_if_stale scans."""
        self.last_fetch_timestamp = 0.0

    # -------------------------------------------------------------------------
    # Metadata enrichment
    # -------------------------------------------------------------------------

    async def fetch_metadata_for(self, addresses: Optional[Iterable[str]] = None) -> Dict[str, VaultMetadata]:
        """
        Fetch display metadata for vaults that lack it.

        Concurrent calls share the running batch operation.

        Args:
            addresses: Vault addresses to enrich, or None for every cached vault.

        Returns:
            Newly fetched metadata keyed by asset id.
        """
        wanted = None if addresses is None else frozenset(addresses)
        return await self._inflight.run(METADATA_KEY, lambda: self._load_metadata(wanted))

    async def _load_metadata(self, wanted: Optional[frozenset]) -> Dict[str, VaultMetadata]:
        asset_ids: List[str] = []
        for vault in self._vaults:
            if wanted is not None and vault.address not in wanted:
                continue
            if vault.metadata is not None or vault.nft_asset_id in self._metadata:
                continue
            if vault.nft_asset_id not in asset_ids:
                asset_ids.append(vault.nft_asset_id)

        if not asset_ids:
            return {}

        found: Dict[str, VaultMetadata] = {}
        async with log_timing_async("metadata_batches", warn_threshold_ms=5000, error_threshold_ms=20000) as ctx:
            for start in range(0, len(asset_ids), self.metadata_batch_size):
                if start > 0:
                    await self._clock.sleep(self.metadata_batch_delay_sec)
                batch = asset_ids[start:start + self.metadata_batch_size]
                results = await asyncio.gather(*(self._fetch_metadata(asset_id) for asset_id in batch))
                for asset_id, metadata in results:
                    if metadata is not None:
                        found[asset_id] = metadata
            ctx["requested"] = len(asset_ids)
            ctx["found"] = len(found)

        if found:
            self._apply_metadata(found)
        return found

    async def _fetch_metadata(self, asset_id: str) -> Tuple[str, Optional[VaultMetadata]]:
        try:
            asset = await self._proof_provider.get_asset(asset_id)
        except Exception as e:
            logger.warning(f"Metadata fetch for asset {asset_id} failed: {e}")
            return asset_id, None
        return asset_id, asset.metadata

    def _apply_metadata(self, found: Mapping[str, VaultMetadata]) -> None:
        cache = dict(self._metadata)
        cache.update(found)
        self._metadata = MappingProxyType(cache)
        self._vaults = tuple(
            vault.with_metadata(found[vault.nft_asset_id])
            if vault.metadata is None and vault.nft_asset_id in found
            else vault
            for vault in self._vaults
        )
        self._notify(StoreChange.METADATA)

    # -------------------------------------------------------------------------
    # User positions
    # -------------------------------------------------------------------------

    async def fetch_user_positions(self, owner: str) -> Optional[UserPositions]:
        """Scan the wallet's token accounts once and keep balances of vault fractions."""
        return await self._inflight.run(("positions", owner), lambda: self._scan_positions(owner))

    async def _scan_positions(self, owner: str) -> Optional[UserPositions]:
        try:
            balances = await self._gateway.get_parsed_token_accounts(owner, TOKEN_PROGRAM_ID)
        except Exception as e:
            logger.error(f"Position scan for {owner} failed: {e}")
            self._set_error(f"Failed to fetch positions: {e}")
            return self._positions

        fraction_mints = {vault.fraction_mint for vault in self._vaults}
        held: Dict[str, int] = {}
        for balance in balances:
            if balance.amount > 0 and balance.mint in fraction_mints:
                held[balance.mint] = held.get(balance.mint, 0) + balance.amount

        self._positions = UserPositions(owner=owner, balances=held)
        logger.info(f"Wallet {owner} holds fractions of {len(held)} vaults")
        self._notify(StoreChange.POSITIONS)
        return self._positions

    def clear_user_positions(self) -> None:
        self._positions = None
        self._notify(StoreChange.POSITIONS)

    # -------------------------------------------------------------------------
    # Selectors
    # -------------------------------------------------------------------------

    def get_vault(self, address: str) -> Optional[Vault]:
        for vault in self._vaults:
            if vault.address == address:
                return vault
        return None

    def get_vaults_by_status(self, status: Optional[VaultStatus] = None) -> List[Vault]:
        if status is None:
            return list(self._vaults)
        return [vault for vault in self._vaults if vault.status is status]

    def get_latest_vaults(self, limit: int = 10) -> List[Vault]:
        return list(self._vaults[:limit])

    def get_user_balance(self, fraction_mint: str) -> int:
        if self._positions is None:
            return 0
        return self._positions.balance_of(fraction_mint)

    def get_stats(self) -> VaultStats:
        vaults = self._vaults
        return VaultStats(
            total_vaults=len(vaults),
            active_vaults=sum(1 for v in vaults if v.status is VaultStatus.ACTIVE),
            total_fractions=sum((to_tokens(v.total_supply) for v in vaults), to_tokens(0)),
            user_vaults=len(self._positions) if self._positions is not None else 0,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Let in-flight work finish, then drop listeners."""
        await self._inflight.wait_idle()
        self._listeners.clear()
