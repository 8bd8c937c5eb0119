"""
DAS (Digital Asset Standard) proof provider.

Talks JSON-RPC over HTTP to a DAS-capable endpoint (e.g. Helius) for
``getAsset`` and ``getAssetProof``. Responses are validated with pydantic
models before being mapped onto the domain records.
"""

from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError
from solders.pubkey import Pubkey

from ....domain.exceptions import ConnectivityError, ProofUnavailable, RateLimitedError
from ....domain.interfaces.proof_provider import ProofProvider
from ....models.asset import AssetInfo, AssetProof
from ....models.vault import PLACEHOLDER_IMAGE, VaultMetadata
from ....utils.logging_setup import get_logger
from ..retry import RetryPolicy, call_with_retry

logger = get_logger(__name__)

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg")


# =============================================================================
# Response models
# =============================================================================

class DasFile(BaseModel):
    uri: str = ""
    mime: Optional[str] = None


class DasMetadata(BaseModel):
    name: str = ""
    symbol: str = ""
    description: str = ""


class DasContent(BaseModel):
    json_uri: str = Field(default="", description="Off-chain metadata JSON URI")
    files: List[DasFile] = Field(default_factory=list)
    metadata: DasMetadata = Field(default_factory=DasMetadata)
    links: Dict[str, Optional[str]] = Field(default_factory=dict)


class DasCompression(BaseModel):
    compressed: bool = False
    data_hash: str = Field(default="", description="Base58 leaf data hash")
    creator_hash: str = Field(default="", description="Base58 creator hash")
    leaf_id: int = Field(default=0, description="Leaf index; doubles as the nonce")
    tree: str = ""


class DasOwnership(BaseModel):
    owner: str
    delegate: Optional[str] = None


class DasAsset(BaseModel):
    id: str
    content: DasContent = Field(default_factory=DasContent)
    compression: DasCompression = Field(default_factory=DasCompression)
    ownership: DasOwnership


class DasAssetProof(BaseModel):
    root: str
    proof: List[str] = Field(default_factory=list)
    node_index: int = 0
    leaf: str = ""
    tree_id: str


# =============================================================================
# Mapping helpers
# =============================================================================

def decode_hash(value: str) -> bytes:
    """Decode a 32-byte hash given as base58 (DAS default) or 0x-hex."""
    value = value.strip()
    if value.startswith("0x"):
        raw = bytes.fromhex(value[2:])
    else:
        raw = bytes(Pubkey.from_string(value))
    if len(raw) != 32:
        raise ValueError(f"expected 32-byte hash, got {len(raw)}")
    return raw


def extract_image(content: DasContent) -> str:
    """First image file, then links.image, then the JSON URI, then a placeholder."""
    for file in content.files:
        mime = (file.mime or "").lower()
        uri = file.uri.lower()
        if mime.startswith("image/") or uri.endswith(IMAGE_EXTENSIONS):
            return file.uri
    if content.links.get("image"):
        return content.links["image"]
    if content.json_uri:
        return content.json_uri
    return PLACEHOLDER_IMAGE


def to_metadata(asset: DasAsset) -> VaultMetadata:
    meta = asset.content.metadata
    return VaultMetadata(
        name=meta.name or "Unknown NFT",
        symbol=meta.symbol,
        uri=asset.content.json_uri,
        image=extract_image(asset.content),
        description=meta.description,
    )


# =============================================================================
# Provider
# =============================================================================

class DasProofProvider(ProofProvider):
    """
    ProofProvider backed by a DAS JSON-RPC endpoint.

    Transport errors are retried here with backoff; rate limits are raised as
    RateLimitedError for the caller's own backoff policy.
    """

    def __init__(
        self,
        url: str,
        timeout_sec: float = 5.0,
        retry_policy: Optional[RetryPolicy] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.retry_policy = retry_policy or RetryPolicy()
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_sec))
        self._ids = itertools.count(1)

    async def _rpc(self, method: str, params: Dict[str, Any]) -> Any:
        return await call_with_retry(
            f"DAS {method}",
            lambda: self._post(method, params),
            self.retry_policy,
            retry_on=(ConnectivityError,),
        )

    async def _post(self, method: str, params: Dict[str, Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": str(next(self._ids)), "method": method, "params": params}
        try:
            response = await self._client.post(self.url, json=payload)
        except httpx.TimeoutException as e:
            raise ProofUnavailable(f"DAS {method} timed out") from e
        except httpx.HTTPError as e:
            raise ConnectivityError(f"DAS {method}: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError(f"DAS {method}: rate limited")
        if response.status_code >= 400:
            raise ConnectivityError(f"DAS {method}: HTTP {response.status_code}")

        body = response.json()
        if body.get("error"):
            message = body["error"].get("message", str(body["error"]))
            raise ProofUnavailable(f"DAS {method} failed for {params.get('id')}: {message}")
        if body.get("result") is None:
            raise ProofUnavailable(f"DAS {method} returned no result for {params.get('id')}")
        return body["result"]

    async def get_asset(self, asset_id: str) -> AssetInfo:
        result = await self._rpc("getAsset", {"id": asset_id})
        try:
            asset = DasAsset.model_validate(result)
            return AssetInfo(
                asset_id=asset.id,
                owner=asset.ownership.owner,
                delegate=asset.ownership.delegate,
                data_hash=decode_hash(asset.compression.data_hash),
                creator_hash=decode_hash(asset.compression.creator_hash),
                tree=asset.compression.tree,
                leaf_id=asset.compression.leaf_id,
                metadata=to_metadata(asset),
            )
        except (ValidationError, ValueError) as e:
            raise ProofUnavailable(f"Malformed asset record for {asset_id}: {e}") from e

    async def get_asset_proof(self, asset_id: str) -> AssetProof:
        result = await self._rpc("getAssetProof", {"id": asset_id})
        try:
            proof = DasAssetProof.model_validate(result)
            root = decode_hash(proof.root)
        except (ValidationError, ValueError) as e:
            raise ProofUnavailable(f"Malformed proof for {asset_id}: {e}") from e

        if not proof.proof:
            raise ProofUnavailable(f"Empty merkle proof for {asset_id}")
        logger.debug(f"Proof for {asset_id}: {len(proof.proof)} nodes in tree {proof.tree_id}")
        return AssetProof(
            root=root,
            proof=list(proof.proof),
            tree_id=proof.tree_id,
            node_index=proof.node_index,
            leaf=proof.leaf,
        )

    async def close(self) -> None:
        await self._client.aclose()
