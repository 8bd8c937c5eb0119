"""Tests for the vault cache store."""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest

from fracvault.domain.exceptions import ConnectivityError
from fracvault.infrastructure.stores.vault_store import StoreChange
from fracvault.models.vault import TOKEN_SCALE, VaultStatus


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


class TestFetchAll:
    """Tests for full scans."""

    @pytest.mark.asyncio
    async def test_scan_sorts_newest_first(self, store, add_vault):
        """The collection is ordered by creation timestamp, newest first."""
        old = add_vault(creation_timestamp=1_000)
        new = add_vault(creation_timestamp=3_000)
        middle = add_vault(creation_timestamp=2_000)

        vaults = await store.fetch_all()

        assert [v.address for v in vaults] == [new.address, middle.address, old.address]
        assert store.vaults == vaults
        assert store.error is None
        assert not store.is_loading
        assert store.last_fetch_timestamp > 0

    @pytest.mark.asyncio
    async def test_malformed_accounts_skipped(self, store, ledger, add_vault):
        """Bad discriminators are logged and skipped, not fatal."""
        good = add_vault()
        corrupt = bytearray(ledger.accounts[good.address])
        corrupt[0] ^= 0xFF
        ledger.accounts["BadVau1t111111111111111111111111111111111111"] = bytes(corrupt)

        vaults = await store.fetch_all()

        assert [v.address for v in vaults] == [good.address]

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_collection(self, store, ledger, add_vault):
        """A failed scan records the error and leaves the cache in place."""
        add_vault()
        add_vault()
        before = await store.fetch_all()
        stamp = store.last_fetch_timestamp

        ledger.scan_error = ConnectivityError("getProgramAccounts: connection reset")
        after = await store.fetch_all()

        assert after is before
        assert store.vaults is before
        assert "connection reset" in store.error
        assert store.last_fetch_timestamp == stamp
        assert not store.is_loading

    @pytest.mark.asyncio
    async def test_successful_scan_clears_error(self, store, ledger, add_vault):
        add_vault()
        ledger.scan_error = ConnectivityError("down")
        await store.fetch_all()
        assert store.error

        ledger.scan_error = None
        await store.fetch_all()
        assert store.error is None
        assert len(store.vaults) == 1

    @pytest.mark.asyncio
    async def test_clearing_error_notifies_listeners(self, store, ledger, add_vault):
        """Listeners learn when a recovered scan clears the error, and only once."""
        add_vault()
        ledger.scan_error = ConnectivityError("down")
        await store.fetch_all()
        changes = []
        store.add_listener(changes.append)

        ledger.scan_error = None
        await store.fetch_all()
        assert changes.count(StoreChange.ERROR) == 1
        assert store.error is None

        changes.clear()
        await store.fetch_all()
        assert StoreChange.ERROR not in changes

    @pytest.mark.asyncio
    async def test_loading_flag_during_scan(self, store, ledger, add_vault):
        add_vault()
        ledger.scan_gate = asyncio.Event()

        task = asyncio.create_task(store.fetch_all())
        await settle()
        assert store.is_loading

        ledger.scan_gate.set()
        await task
        assert not store.is_loading

    @pytest.mark.asyncio
    async def test_listeners_notified(self, store, add_vault):
        """Listeners see loading and vault changes; removal stops delivery."""
        add_vault()
        changes = []
        remove = store.add_listener(changes.append)

        await store.fetch_all()
        assert StoreChange.VAULTS in changes
        assert StoreChange.LOADING in changes

        remove()
        changes.clear()
        await store.fetch_all()
        assert changes == []


class TestFetchIfStale:
    """Tests for staleness-gated scans."""

    @pytest.mark.asyncio
    async def test_two_rapid_calls_issue_one_scan(self, store, ledger, add_vault):
        """A second call joins the in-flight scan instead of starting another."""
        add_vault()
        ledger.scan_gate = asyncio.Event()

        first = asyncio.create_task(store.fetch_if_stale())
        second = asyncio.create_task(store.fetch_if_stale())
        await settle()
        ledger.scan_gate.set()
        results = await asyncio.gather(first, second)

        assert ledger.calls["get_program_accounts"] == 1
        assert results[0] == results[1]

    @pytest.mark.asyncio
    async def test_fresh_cache_skips_scan(self, store, ledger, clock, add_vault):
        add_vault()
        await store.fetch_if_stale()
        clock.advance_by(timedelta(minutes=29))
        await store.fetch_if_stale()
        assert ledger.calls["get_program_accounts"] == 1
        assert store.is_cache_valid()

    @pytest.mark.asyncio
    async def test_expired_cache_rescans(self, store, ledger, clock, add_vault):
        add_vault()
        await store.fetch_if_stale()
        clock.advance_by(timedelta(minutes=30))
        assert store.is_stale
        await store.fetch_if_stale()
        assert ledger.calls["get_program_accounts"] == 2

    @pytest.mark.asyncio
    async def test_invalidate_forces_rescan(self, store, ledger, add_vault):
        add_vault()
        await store.fetch_if_stale()
        store.invalidate()
        assert not store.is_cache_valid()
        await store.fetch_if_stale()
        assert ledger.calls["get_program_accounts"] == 2


class TestFetchById:
    """Tests for targeted refreshes."""

    @pytest.mark.asyncio
    async def test_updates_in_place(self, store, ledger, add_vault):
        vault = add_vault()
        await store.fetch_all()
        ledger.put_vault(replace(vault, status=VaultStatus.RECLAIM_INITIATED))

        refreshed = await store.fetch_by_id(vault.address)

        assert refreshed.status is VaultStatus.RECLAIM_INITIATED
        assert store.get_vault(vault.address).status is VaultStatus.RECLAIM_INITIATED
        assert len(store.vaults) == 1

    @pytest.mark.asyncio
    async def test_unseen_vault_inserted_in_order(self, store, add_vault):
        """A vault created after the scan lands in its newest-first slot."""
        newest = add_vault(creation_timestamp=3_000)
        oldest = add_vault(creation_timestamp=1_000)
        await store.fetch_all()
        middle = add_vault(creation_timestamp=2_000)

        inserted = await store.fetch_by_id(middle.address)

        assert inserted.address == middle.address
        assert [v.address for v in store.vaults] == [newest.address, middle.address, oldest.address]

    @pytest.mark.asyncio
    async def test_missing_account_returns_none(self, store):
        assert await store.fetch_by_id("Missing1111111111111111111111111111111111111") is None

    @pytest.mark.asyncio
    async def test_read_failure_returns_none_and_sets_error(self, store, ledger, add_vault):
        vault = add_vault()
        await store.fetch_all()
        ledger.account_error = ConnectivityError("timeout")

        assert await store.fetch_by_id(vault.address) is None
        assert store.get_vault(vault.address) is not None
        assert "timeout" in store.error

    @pytest.mark.asyncio
    async def test_stale_scan_does_not_overwrite_newer_refresh(self, store, ledger, add_vault):
        """A scan issued before a targeted refresh cannot clobber its result."""
        vault = add_vault()
        await store.fetch_all()

        # Scan snapshots the Active account, then stalls
        ledger.scan_gate = asyncio.Event()
        scan = asyncio.create_task(store.fetch_all())
        await settle()

        ledger.put_vault(replace(vault, status=VaultStatus.RECLAIM_INITIATED))
        refreshed = await store.fetch_by_id(vault.address)
        assert refreshed.status is VaultStatus.RECLAIM_INITIATED

        ledger.scan_gate.set()
        await scan

        assert store.get_vault(vault.address).status is VaultStatus.RECLAIM_INITIATED

    @pytest.mark.asyncio
    async def test_refresh_newer_than_scan_survives_when_scan_misses_it(self, store, ledger, add_vault):
        existing = add_vault()
        await store.fetch_all()

        ledger.scan_gate = asyncio.Event()
        scan = asyncio.create_task(store.fetch_all())
        await settle()

        created = add_vault()
        await store.fetch_by_id(created.address)
        ledger.scan_gate.set()
        await scan

        addresses = {v.address for v in store.vaults}
        assert addresses == {existing.address, created.address}

    @pytest.mark.asyncio
    async def test_refresh_after_change_does_not_join_older_read(self, store, ledger, add_vault):
        """A refresh requested after a ledger change reads again instead of reusing a stale read."""
        vault = add_vault()
        await store.fetch_all()

        # First read snapshots the Active account, then stalls
        ledger.account_gate = asyncio.Event()
        earlier = asyncio.create_task(store.fetch_by_id(vault.address))
        await settle()

        ledger.put_vault(replace(vault, status=VaultStatus.RECLAIM_INITIATED))
        later = asyncio.create_task(store.fetch_by_id(vault.address))
        await settle()
        ledger.account_gate.set()
        await earlier
        refreshed = await later

        assert ledger.calls["get_account_info"] == 2
        assert refreshed.status is VaultStatus.RECLAIM_INITIATED
        assert store.get_vault(vault.address).status is VaultStatus.RECLAIM_INITIATED

    @pytest.mark.asyncio
    async def test_older_read_finishing_last_is_discarded(self, store, ledger, add_vault):
        """A read issued before a newer one cannot overwrite it by landing late."""
        vault = add_vault()
        await store.fetch_all()

        gate = asyncio.Event()
        ledger.account_gate = gate
        earlier = asyncio.create_task(store.fetch_by_id(vault.address))
        await settle()

        ledger.account_gate = None
        ledger.put_vault(replace(vault, status=VaultStatus.RECLAIM_INITIATED))
        await store.fetch_by_id(vault.address)
        gate.set()
        result = await earlier

        assert result.status is VaultStatus.RECLAIM_INITIATED
        assert store.get_vault(vault.address).status is VaultStatus.RECLAIM_INITIATED


class TestMetadata:
    """Tests for metadata enrichment."""

    @pytest.mark.asyncio
    async def test_batches_and_annotates(self, store, proofs, clock, add_vault):
        """Twelve vaults are fetched in two batches with pacing in between."""
        vaults = [add_vault() for _ in range(12)]
        await store.fetch_all()
        start = clock.now()

        found = await store.fetch_metadata_for()

        assert len(found) == 12
        assert proofs.calls["get_asset"] == 12
        assert clock.now() - start == timedelta(milliseconds=100)
        for vault in vaults:
            cached = store.get_vault(vault.address)
            assert cached.metadata is not None
            assert cached.display_name == proofs.assets[vault.nft_asset_id].asset.metadata.name
        assert set(store.metadata_cache) == {v.nft_asset_id for v in vaults}

    @pytest.mark.asyncio
    async def test_overlapping_calls_share_one_operation(self, store, proofs, add_vault):
        for _ in range(3):
            add_vault()
        await store.fetch_all()
        proofs.gate = asyncio.Event()

        first = asyncio.create_task(store.fetch_metadata_for())
        second = asyncio.create_task(store.fetch_metadata_for())
        await settle()
        proofs.gate.set()
        await asyncio.gather(first, second)

        assert proofs.calls["get_asset"] == 3
        assert store.inflight.metrics.joined >= 1

    @pytest.mark.asyncio
    async def test_failures_skipped(self, store, proofs, add_vault):
        ok = add_vault()
        broken = add_vault()
        await store.fetch_all()
        proofs.failing_assets.add(broken.nft_asset_id)

        found = await store.fetch_metadata_for()

        assert set(found) == {ok.nft_asset_id}
        assert store.get_vault(broken.address).metadata is None
        assert store.get_vault(broken.address).display_name.startswith("Vault ")

    @pytest.mark.asyncio
    async def test_only_listed_vaults_without_metadata(self, store, proofs, add_vault):
        first = add_vault()
        add_vault()
        await store.fetch_all()

        await store.fetch_metadata_for([first.address])
        assert proofs.calls["get_asset"] == 1

        await store.fetch_metadata_for([first.address])
        assert proofs.calls["get_asset"] == 1

    @pytest.mark.asyncio
    async def test_metadata_survives_rescan(self, store, add_vault):
        vault = add_vault()
        await store.fetch_all()
        await store.fetch_metadata_for()

        await store.fetch_all()

        assert store.get_vault(vault.address).metadata is not None


class TestUserPositions:
    """Tests for wallet position scans."""

    @pytest.mark.asyncio
    async def test_intersects_with_fraction_mints(self, store, ledger, add_vault):
        owner = "Own3r111111111111111111111111111111111111111"
        held = add_vault()
        add_vault()
        ledger.set_balance(owner, held.fraction_mint, 5 * TOKEN_SCALE)
        ledger.set_balance(owner, "UnrelatedMint1111111111111111111111111111111", 7)
        await store.fetch_all()

        positions = await store.fetch_user_positions(owner)

        assert positions.balances == {held.fraction_mint: 5 * TOKEN_SCALE}
        assert store.get_user_balance(held.fraction_mint) == 5 * TOKEN_SCALE
        assert store.get_stats().user_vaults == 1

    @pytest.mark.asyncio
    async def test_overlapping_scans_for_one_owner(self, store, ledger, add_vault):
        owner = "Own3r111111111111111111111111111111111111111"
        add_vault()
        await store.fetch_all()
        ledger.positions_gate = asyncio.Event()

        first = asyncio.create_task(store.fetch_user_positions(owner))
        second = asyncio.create_task(store.fetch_user_positions(owner))
        await settle()
        ledger.positions_gate.set()
        await asyncio.gather(first, second)

        assert ledger.calls["get_parsed_token_accounts"] == 1

    @pytest.mark.asyncio
    async def test_clear(self, store, ledger, add_vault):
        owner = "Own3r111111111111111111111111111111111111111"
        vault = add_vault()
        ledger.set_balance(owner, vault.fraction_mint, 1)
        await store.fetch_all()
        await store.fetch_user_positions(owner)

        store.clear_user_positions()

        assert store.user_positions is None
        assert store.get_user_balance(vault.fraction_mint) == 0


class TestSelectors:
    """Tests for read-only selectors."""

    @pytest.mark.asyncio
    async def test_status_latest_and_stats(self, store, add_vault):
        active = add_vault(creation_timestamp=3_000)
        initiated = add_vault(creation_timestamp=2_000, status=VaultStatus.RECLAIM_INITIATED)
        closed = add_vault(creation_timestamp=1_000, status=VaultStatus.CLOSED)
        await store.fetch_all()

        assert [v.address for v in store.get_vaults_by_status(VaultStatus.RECLAIM_INITIATED)] == [initiated.address]
        assert len(store.get_vaults_by_status()) == 3
        assert [v.address for v in store.get_latest_vaults(2)] == [active.address, initiated.address]
        assert store.get_vault(closed.address).status is VaultStatus.CLOSED

        stats = store.get_stats()
        assert stats.total_vaults == 3
        assert stats.active_vaults == 1
        assert stats.total_fractions == 3_000_000
        assert stats.user_vaults == 0

    @pytest.mark.asyncio
    async def test_close_drops_listeners(self, store):
        store.add_listener(lambda change: None)
        await store.close()
        assert store._listeners == []
