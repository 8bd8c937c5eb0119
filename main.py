"""
Fractional Vault Reclaim Client - Main Entry Point

Usage:
    python main.py vaults                         # List cached vaults
    python main.py positions --wallet <pubkey>    # Fraction balances for a wallet
    python main.py initialize --vault <addr> --keypair ~/.config/solana/id.json
    python main.py listen                         # Follow vault events
"""

from __future__ import annotations
import asyncio
import argparse
import sys
from typing import Optional

from rich.console import Console
from rich.table import Table

from config.config_manager import ConfigManager
from fracvault.application import AppContainer, FinalizeAccounts
from fracvault.domain.exceptions import ReclaimError, Rejected, AmbiguousConfirmation
from fracvault.infrastructure.adapters.solana import KeypairSigner
from fracvault.models.vault import VaultStatus, to_tokens
from fracvault.utils import (
    cluster_for_endpoint,
    explorer_tx_url,
    format_address,
    get_logger,
    setup_category_logging,
    shutdown_logging,
)

console = Console()
logger = get_logger(__name__)

STATUS_CHOICES = {status.label: status for status in VaultStatus}

STATUS_STYLES = {
    VaultStatus.ACTIVE: "green",
    VaultStatus.RECLAIM_INITIATED: "yellow",
    VaultStatus.RECLAIMED_FINALIZED: "cyan",
    VaultStatus.CLOSED: "dim",
}


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Fractional Vault Reclaim Client",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --env devnet vaults --status Active
  python main.py positions --wallet 9xQe...
  python main.py cancel --vault 7sT1... --keypair ~/.config/solana/id.json
        """
    )

    parser.add_argument(
        "--env",
        type=str,
        default="devnet",
        help="Environment config to merge over base.yaml (default: devnet)"
    )
    parser.add_argument(
        "--config-dir",
        type=str,
        default="config",
        help="Directory containing base.yaml and environment files"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override logging.level from config"
    )

    sub = parser.add_subparsers(dest="command", required=True)

    vaults = sub.add_parser("vaults", help="List vaults")
    vaults.add_argument("--status", choices=sorted(STATUS_CHOICES), help="Only vaults in this status")
    vaults.add_argument("--limit", type=int, default=None, help="Newest N vaults only")
    vaults.add_argument("--metadata", action="store_true", help="Fetch asset names (slower)")

    positions = sub.add_parser("positions", help="Fraction balances held by a wallet")
    positions.add_argument("--wallet", required=True, help="Owner public key")

    initialize = sub.add_parser("initialize", help="Start a reclaim")
    initialize.add_argument("--vault", required=True)
    initialize.add_argument("--asset", help="Asset id (defaults to the vault's)")
    initialize.add_argument("--keypair", required=True, help="Path to a keypair JSON file")

    cancel = sub.add_parser("cancel", help="Cancel your pending reclaim")
    cancel.add_argument("--vault", required=True)
    cancel.add_argument("--keypair", required=True)

    finalize = sub.add_parser("finalize", help="Finalize an escrowed reclaim")
    finalize.add_argument("--vault", required=True)
    finalize.add_argument("--keypair", required=True)
    finalize.add_argument("--raydium-pool", required=True)
    finalize.add_argument("--observation-state", required=True)

    sub.add_parser("listen", help="Follow vault events and keep the cache fresh")

    return parser.parse_args(argv)


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------

async def cmd_vaults(container: AppContainer, args: argparse.Namespace) -> int:
    store = container.store
    await store.fetch_if_stale()
    if store.error:
        console.print(f"[red]Failed to load vaults:[/red] {store.error}")
        return 1
    if args.metadata:
        await store.fetch_metadata_for()

    # Selectors are newest-first
    vaults = store.get_vaults_by_status(STATUS_CHOICES[args.status] if args.status else None)
    if args.limit:
        vaults = vaults[:args.limit]

    table = Table(title=f"Vaults ({len(vaults)})")
    table.add_column("Address")
    table.add_column("Name")
    table.add_column("Status")
    table.add_column("Supply", justify="right")
    table.add_column("Escrowed", justify="right")
    table.add_column("Created")
    for vault in vaults:
        style = STATUS_STYLES.get(vault.status, "")
        table.add_row(
            vault.address,
            vault.display_name,
            f"[{style}]{vault.status.label}[/{style}]",
            f"{vault.total_supply_tokens:,}",
            f"{vault.tokens_in_escrow_tokens:,}",
            vault.created_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)

    stats = store.get_stats()
    console.print(f"{stats.active_vaults} active of {stats.total_vaults}, {stats.total_fractions:,} fractions")
    return 0


async def cmd_positions(container: AppContainer, args: argparse.Namespace) -> int:
    store = container.store
    await store.fetch_if_stale()
    await store.fetch_user_positions(args.wallet)
    if store.error:
        console.print(f"[red]Failed to load positions:[/red] {store.error}")
        return 1

    table = Table(title=f"Positions for {format_address(args.wallet)}")
    table.add_column("Vault")
    table.add_column("Status")
    table.add_column("Balance", justify="right")
    table.add_column("Share", justify="right")
    for vault in store.vaults:
        balance = store.get_user_balance(vault.fraction_mint)
        if balance == 0:
            continue
        share = balance * 100 / vault.total_supply if vault.total_supply else 0
        table.add_row(vault.address, vault.status.label, f"{to_tokens(balance):,}", f"{share:.2f}%")
    console.print(table)
    return 0


async def cmd_initialize(container: AppContainer, args: argparse.Namespace) -> int:
    await container.store.fetch_if_stale()
    decision = await container.orchestrator.plan_initialize_reclaim(args.vault)
    console.print(
        f"Holding {decision.share_percent:.2f}% of {format_address(args.vault)}, "
        f"{decision.path.value} reclaim"
    )
    return _report(container, await container.orchestrator.initialize_reclaim(args.vault, args.asset))


async def cmd_cancel(container: AppContainer, args: argparse.Namespace) -> int:
    await container.store.fetch_if_stale()
    return _report(container, await container.orchestrator.cancel_reclaim(args.vault))


async def cmd_finalize(container: AppContainer, args: argparse.Namespace) -> int:
    await container.store.fetch_if_stale()
    extra = FinalizeAccounts(raydium_pool=args.raydium_pool, observation_state=args.observation_state)
    return _report(container, await container.orchestrator.finalize_reclaim(args.vault, extra))


async def cmd_listen(container: AppContainer, args: argparse.Namespace) -> int:
    await container.store.fetch_all()
    if not await container.event_listener.start():
        console.print("[red]Could not subscribe to program logs[/red]")
        return 1
    console.print(f"Following {len(container.store.vaults)} vaults, Ctrl-C to stop")
    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    return 0


def _report(container: AppContainer, signature: str) -> int:
    cluster = cluster_for_endpoint(container.config.ledger.rpc_url)
    console.print(f"[green]Confirmed[/green] {signature}")
    console.print(explorer_tx_url(signature, cluster))
    return 0


COMMANDS = {
    "vaults": cmd_vaults,
    "positions": cmd_positions,
    "initialize": cmd_initialize,
    "cancel": cmd_cancel,
    "finalize": cmd_finalize,
    "listen": cmd_listen,
}


async def main_async(args: argparse.Namespace) -> int:
    """Load config, wire services, run one command, tear down."""
    config = ConfigManager(config_dir=args.config_dir, env=args.env).load()
    setup_category_logging(
        env=config.env,
        log_dir=config.logging.log_dir,
        level=args.log_level or config.logging.level,
        console=config.logging.console,
        json_format=config.logging.json,
    )

    signer = KeypairSigner.from_file(args.keypair) if getattr(args, "keypair", None) else None
    container = AppContainer(config, signer=signer)
    try:
        await container.initialize(start_listener=False)
        logger.info(f"Running '{args.command}' against {config.ledger.rpc_url}")
        return await COMMANDS[args.command](container, args)
    except Rejected as e:
        console.print(f"[red]Rejected:[/red] {e.reason}")
        if e.signature:
            console.print(explorer_tx_url(e.signature, cluster_for_endpoint(config.ledger.rpc_url)))
        return 1
    except AmbiguousConfirmation as e:
        console.print(f"[yellow]Unconfirmed:[/yellow] {e}")
        return 2
    except ReclaimError as e:
        console.print(f"[red]{type(e).__name__}:[/red] {e}")
        return 1
    finally:
        await container.cleanup()
        shutdown_logging()


def main() -> None:
    """Main entry point."""
    args = parse_args()
    try:
        sys.exit(asyncio.run(main_async(args)))
    except KeyboardInterrupt:
        print("Shutdown requested")
        sys.exit(0)
    except ReclaimError as e:
        print(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
