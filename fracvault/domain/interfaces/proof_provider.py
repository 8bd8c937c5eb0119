"""Proof provider interface for compressed asset records and merkle proofs."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from ...models.asset import AssetInfo, AssetProof, AssetWithProof


class ProofProvider(ABC):
    """
    Interface to a compressed-asset indexer (DAS API).

    Methods raise RateLimitedError on HTTP 429, ConnectivityError on
    transport failure and ProofUnavailable when the asset is not indexed.
    """

    @abstractmethod
    async def get_asset(self, asset_id: str) -> AssetInfo:
        """Ownership, compression hashes and display metadata."""
        pass

    @abstractmethod
    async def get_asset_proof(self, asset_id: str) -> AssetProof:
        """Merkle root and proof path for the asset's leaf."""
        pass

    async def get_asset_with_proof(self, asset_id: str) -> AssetWithProof:
        """Fetch the asset record and its proof concurrently."""
        asset, proof = await asyncio.gather(
            self.get_asset(asset_id), self.get_asset_proof(asset_id)
        )
        return AssetWithProof(asset=asset, proof=proof)

    async def close(self) -> None:
        """Release connections."""
        pass
