"""
Fixed-width vault account layout.

One ordered schema drives both decode and encode, so field order and widths
live in exactly one place. Integers are little-endian; pubkeys are raw
32-byte keys rendered as base58 strings.
"""

from __future__ import annotations

import hashlib
import struct
from typing import List, Tuple

from solders.pubkey import Pubkey

from ...domain.exceptions import AccountDecodeError
from ...models.vault import Vault, VaultStatus


def account_discriminator(name: str) -> bytes:
    """Anchor account discriminator: first 8 bytes of sha256("account:<Name>")."""
    return hashlib.sha256(f"account:{name}".encode()).digest()[:8]


VAULT_DISCRIMINATOR = account_discriminator("Vault")

# (field name, struct code). "pubkey" fields are packed as 32s.
VAULT_SCHEMA: List[Tuple[str, str]] = [
    ("nft_mint", "pubkey"),
    ("nft_asset_id", "pubkey"),
    ("fraction_mint", "pubkey"),
    ("total_supply", "Q"),
    ("creator", "pubkey"),
    ("creation_timestamp", "q"),
    ("status", "B"),
    ("reclaim_timestamp", "q"),
    ("twap_price_at_reclaim", "Q"),
    ("total_compensation", "Q"),
    ("remaining_compensation", "Q"),
    ("min_lp_age_seconds", "q"),
    ("min_reclaim_percentage", "B"),
    ("min_liquidity_percent", "B"),
    ("min_volume_percent_30d", "B"),
    ("reclaim_initiator", "pubkey"),
    ("reclaim_initiation_timestamp", "q"),
    ("tokens_in_escrow", "Q"),
    ("bump", "B"),
]

_PUBKEY_FIELDS = frozenset(name for name, code in VAULT_SCHEMA if code == "pubkey")

_STRUCT = struct.Struct(
    "<8s" + "".join("32s" if code == "pubkey" else code for _, code in VAULT_SCHEMA)
)

VAULT_ACCOUNT_SIZE = _STRUCT.size


def decode_vault(address: str, data: bytes, fetch_seq: int = 0) -> Vault:
    """
    Decode raw account bytes into a Vault.

    Raises:
        AccountDecodeError: Wrong length, wrong discriminator, or unknown status.
    """
    if len(data) != VAULT_ACCOUNT_SIZE:
        raise AccountDecodeError(
            f"Vault {address}: expected {VAULT_ACCOUNT_SIZE} bytes, got {len(data)}"
        )

    discriminator, *values = _STRUCT.unpack(data)
    if discriminator != VAULT_DISCRIMINATOR:
        raise AccountDecodeError(f"Vault {address}: discriminator mismatch")

    fields = {}
    for (name, _), value in zip(VAULT_SCHEMA, values):
        fields[name] = str(Pubkey.from_bytes(value)) if name in _PUBKEY_FIELDS else value

    try:
        fields["status"] = VaultStatus(fields["status"])
    except ValueError:
        raise AccountDecodeError(f"Vault {address}: unknown status byte {fields['status']}")

    return Vault(address=address, fetch_seq=fetch_seq, **fields)


def encode_vault(vault: Vault) -> bytes:
    """Pack a Vault back into account bytes (fixtures and simulation)."""
    values = []
    for name, _ in VAULT_SCHEMA:
        value = getattr(vault, name)
        if name in _PUBKEY_FIELDS:
            value = bytes(Pubkey.from_string(value))
        elif name == "status":
            value = int(value)
        values.append(value)
    return _STRUCT.pack(VAULT_DISCRIMINATOR, *values)
