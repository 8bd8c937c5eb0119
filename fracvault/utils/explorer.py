"""Explorer links and short display forms for signatures and addresses."""

from __future__ import annotations

from typing import Optional

CLUSTERS = ("mainnet-beta", "devnet", "testnet")

EXPLORER_BASE = "https://explorer.solana.com"
SOLSCAN_BASE = "https://solscan.io"


def cluster_for_endpoint(rpc_url: str) -> str:
    """Guess the cluster from an RPC endpoint URL (devnet when unclear)."""
    if "mainnet" in rpc_url:
        return "mainnet-beta"
    if "testnet" in rpc_url:
        return "testnet"
    return "devnet"


def _cluster_suffix(cluster: str) -> str:
    return "" if cluster == "mainnet-beta" else f"?cluster={cluster}"


def explorer_tx_url(signature: str, cluster: str = "devnet") -> str:
    return f"{EXPLORER_BASE}/tx/{signature}{_cluster_suffix(cluster)}"


def explorer_address_url(address: str, cluster: str = "devnet") -> str:
    return f"{EXPLORER_BASE}/address/{address}{_cluster_suffix(cluster)}"


def solscan_tx_url(signature: str, cluster: str = "devnet") -> str:
    return f"{SOLSCAN_BASE}/tx/{signature}{_cluster_suffix(cluster)}"


def shorten(value: Optional[str], length: int = 4) -> str:
    """
    Shorten a base58 string to ``head...tail``.

    Values no longer than ``2 * length`` are returned unchanged.
    """
    if not value:
        return ""
    if len(value) <= length * 2:
        return value
    return f"{value[:length]}...{value[-length:]}"


def format_signature(signature: str, length: int = 8) -> str:
    return shorten(signature, length)


def format_address(address: str, length: int = 4) -> str:
    return shorten(address, length)
