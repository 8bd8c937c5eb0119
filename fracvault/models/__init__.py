"""Data models."""

from .vault import (
    Vault,
    VaultStatus,
    VaultMetadata,
    UserPositions,
    VaultStats,
    TOKEN_DECIMALS,
    TOKEN_SCALE,
    DEFAULT_PUBKEY,
    PLACEHOLDER_IMAGE,
    to_tokens,
    to_raw,
)
from .asset import AssetProof, AssetInfo, AssetWithProof
from .ledger import ProgramAccount, TokenBalance, SignatureStatus, LogBatch, AccountMetaSpec

__all__ = [
    "Vault",
    "VaultStatus",
    "VaultMetadata",
    "UserPositions",
    "VaultStats",
    "TOKEN_DECIMALS",
    "TOKEN_SCALE",
    "DEFAULT_PUBKEY",
    "PLACEHOLDER_IMAGE",
    "to_tokens",
    "to_raw",
    "AssetProof",
    "AssetInfo",
    "AssetWithProof",
    "ProgramAccount",
    "TokenBalance",
    "SignatureStatus",
    "LogBatch",
    "AccountMetaSpec",
]
