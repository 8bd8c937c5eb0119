"""Program-derived address derivations. Pure functions of their inputs."""

from __future__ import annotations

from functools import lru_cache

from solders.pubkey import Pubkey

from .programs import ASSOCIATED_TOKEN_PROGRAM_ID, BUBBLEGUM_PROGRAM_ID, TOKEN_PROGRAM_ID

COMPENSATION_ESCROW_SEED = b"compensation_escrow"


@lru_cache(maxsize=1024)
def find_program_address(seeds: tuple, program_id: str) -> str:
    address, _bump = Pubkey.find_program_address(list(seeds), Pubkey.from_string(program_id))
    return str(address)


def associated_token_address(owner: str, mint: str) -> str:
    """Associated token account of ``owner`` for ``mint`` (off-curve owners allowed)."""
    return find_program_address(
        (
            bytes(Pubkey.from_string(owner)),
            bytes(Pubkey.from_string(TOKEN_PROGRAM_ID)),
            bytes(Pubkey.from_string(mint)),
        ),
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )


def compensation_escrow_authority(vault: str, program_id: str) -> str:
    """Authority PDA owning the vault's fraction escrow and compensation escrow."""
    return find_program_address(
        (COMPENSATION_ESCROW_SEED, bytes(Pubkey.from_string(vault))), program_id
    )


def tree_authority(merkle_tree: str) -> str:
    """Bubblegum tree config PDA for a merkle tree."""
    return find_program_address((bytes(Pubkey.from_string(merkle_tree)),), BUBBLEGUM_PROGRAM_ID)


def token_escrow(vault: str, fraction_mint: str, program_id: str) -> str:
    """Token account holding the initiator's escrowed fractions."""
    return associated_token_address(compensation_escrow_authority(vault, program_id), fraction_mint)


def compensation_escrow(vault: str, stable_mint: str, program_id: str) -> str:
    """Token account holding minority compensation in the stable asset."""
    return associated_token_address(compensation_escrow_authority(vault, program_id), stable_mint)
