"""Binary codecs for ledger accounts."""

from .vault_layout import (
    VAULT_ACCOUNT_SIZE,
    VAULT_DISCRIMINATOR,
    VAULT_SCHEMA,
    account_discriminator,
    decode_vault,
    encode_vault,
)

__all__ = [
    "VAULT_ACCOUNT_SIZE",
    "VAULT_DISCRIMINATOR",
    "VAULT_SCHEMA",
    "account_discriminator",
    "decode_vault",
    "encode_vault",
]
