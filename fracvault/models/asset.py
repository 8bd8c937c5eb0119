"""Compressed asset records and merkle proofs from the proof provider."""

from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional

from .vault import VaultMetadata


@dataclass(frozen=True)
class AssetProof:
    """Merkle inclusion proof for a compressed asset's leaf."""
    root: bytes
    proof: List[str]
    tree_id: str
    node_index: int = 0
    leaf: str = ""


@dataclass(frozen=True)
class AssetInfo:
    """Ownership and compression data for a compressed asset."""
    asset_id: str
    owner: str
    data_hash: bytes
    creator_hash: bytes
    tree: str
    leaf_id: int
    delegate: Optional[str] = None
    metadata: Optional[VaultMetadata] = None


@dataclass(frozen=True)
class AssetWithProof:
    """Everything an instruction needs to prove the asset's leaf."""
    asset: AssetInfo
    proof: AssetProof

    @property
    def nonce(self) -> int:
        return self.asset.leaf_id

    @property
    def index(self) -> int:
        return self.asset.leaf_id

    @property
    def merkle_tree(self) -> str:
        return self.proof.tree_id or self.asset.tree
