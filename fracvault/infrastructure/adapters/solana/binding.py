"""
Vault program binding.

Describes each instruction the client sends (account order, access flags,
argument types) and turns named accounts plus typed args into a solders
Instruction. Data is the Anchor method discriminator,
sha256("global:<method>")[:8], followed by Borsh-encoded args.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from ....domain.exceptions import ConfigurationError

INITIALIZE_RECLAIM = "initialize_reclaim_v1"
CANCEL_RECLAIM = "cancel_reclaim_v1"
FINALIZE_RECLAIM = "finalize_reclaim_v1"


def method_discriminator(method: str) -> bytes:
    return hashlib.sha256(f"global:{method}".encode()).digest()[:8]


@dataclass(frozen=True)
class AccountSpec:
    name: str
    is_signer: bool = False
    is_writable: bool = False
    optional: bool = False


@dataclass(frozen=True)
class InstructionSpec:
    method: str
    accounts: Tuple[AccountSpec, ...]
    args: Tuple[Tuple[str, str], ...]

    @property
    def discriminator(self) -> bytes:
        return method_discriminator(self.method)

    def account_index(self, name: str) -> int:
        for i, spec in enumerate(self.accounts):
            if spec.name == name:
                return i
        raise KeyError(name)


_PROOF_ARGS = (
    ("nft_asset_id", "pubkey"),
    ("root", "bytes32"),
    ("data_hash", "bytes32"),
    ("creator_hash", "bytes32"),
    ("nonce", "u64"),
    ("index", "u32"),
)

INSTRUCTIONS: Dict[str, InstructionSpec] = {
    INITIALIZE_RECLAIM: InstructionSpec(
        method=INITIALIZE_RECLAIM,
        accounts=(
            AccountSpec("user", is_signer=True, is_writable=True),
            AccountSpec("vault", is_writable=True),
            AccountSpec("fraction_mint", is_writable=True),
            AccountSpec("user_fractioned_token_account", is_writable=True),
            AccountSpec("compensation_escrow_authority"),
            AccountSpec("token_escrow", is_writable=True),
            AccountSpec("bubblegum_program"),
            AccountSpec("compression_program"),
            AccountSpec("merkle_tree", is_writable=True),
            AccountSpec("tree_authority"),
            AccountSpec("leaf_delegate", optional=True),
            AccountSpec("log_wrapper"),
            AccountSpec("token_program"),
            AccountSpec("associated_token_program"),
            AccountSpec("system_program"),
        ),
        args=_PROOF_ARGS,
    ),
    CANCEL_RECLAIM: InstructionSpec(
        method=CANCEL_RECLAIM,
        accounts=(
            AccountSpec("user", is_signer=True, is_writable=True),
            AccountSpec("vault", is_writable=True),
            AccountSpec("fraction_mint"),
            AccountSpec("user_fractioned_token_account", is_writable=True),
            AccountSpec("usdc_mint"),
            AccountSpec("user_usdc_account", is_writable=True),
            AccountSpec("treasury"),
            AccountSpec("treasury_usdc_account", is_writable=True),
            AccountSpec("compensation_escrow_authority"),
            AccountSpec("token_escrow", is_writable=True),
            AccountSpec("token_program"),
            AccountSpec("associated_token_program"),
            AccountSpec("system_program"),
        ),
        args=(("nft_asset_id", "pubkey"),),
    ),
    FINALIZE_RECLAIM: InstructionSpec(
        method=FINALIZE_RECLAIM,
        accounts=(
            AccountSpec("user", is_signer=True, is_writable=True),
            AccountSpec("vault", is_writable=True),
            AccountSpec("fraction_mint", is_writable=True),
            AccountSpec("compensation_escrow_authority"),
            AccountSpec("token_escrow", is_writable=True),
            AccountSpec("compensation_escrow", is_writable=True),
            AccountSpec("usdc_mint"),
            AccountSpec("user_usdc_account", is_writable=True),
            AccountSpec("treasury"),
            AccountSpec("treasury_usdc_account", is_writable=True),
            AccountSpec("raydium_pool"),
            AccountSpec("observation_state"),
            AccountSpec("bubblegum_program"),
            AccountSpec("compression_program"),
            AccountSpec("merkle_tree", is_writable=True),
            AccountSpec("tree_authority"),
            AccountSpec("leaf_delegate", optional=True),
            AccountSpec("log_wrapper"),
            AccountSpec("token_program"),
            AccountSpec("associated_token_program"),
            AccountSpec("system_program"),
        ),
        args=_PROOF_ARGS,
    ),
}


def _encode_arg(kind: str, value: Any) -> bytes:
    if kind == "pubkey":
        return bytes(Pubkey.from_string(value) if isinstance(value, str) else value)
    if kind == "bytes32":
        raw = bytes(value)
        if len(raw) != 32:
            raise ValueError(f"Expected 32 bytes, got {len(raw)}")
        return raw
    if kind == "u64":
        return struct.pack("<Q", value)
    if kind == "u32":
        return struct.pack("<I", value)
    if kind == "u8":
        return struct.pack("<B", value)
    raise ValueError(f"Unsupported arg type {kind}")


class ProgramBinding:
    """Builds vault program instructions for one deployed program id."""

    def __init__(self, program_id: str, instructions: Optional[Mapping[str, InstructionSpec]] = None):
        self.program_id = program_id
        self._program_key = Pubkey.from_string(program_id)
        self.instructions = dict(instructions or INSTRUCTIONS)

    def spec(self, method: str) -> InstructionSpec:
        try:
            return self.instructions[method]
        except KeyError:
            raise ConfigurationError(f"Unknown program method {method}")

    def encode_args(self, method: str, args: Mapping[str, Any]) -> bytes:
        spec = self.spec(method)
        missing = [name for name, _ in spec.args if name not in args]
        if missing:
            raise ValueError(f"{method}: missing args {missing}")
        return spec.discriminator + b"".join(_encode_arg(kind, args[name]) for name, kind in spec.args)

    def build(
        self,
        method: str,
        accounts: Mapping[str, Optional[str]],
        args: Mapping[str, Any],
        remaining_accounts: Sequence[str] = (),
    ) -> Instruction:
        """
        Build an instruction.

        Optional accounts left out (or None) are filled with the program id,
        which is how Anchor encodes an absent optional account. Remaining
        accounts are appended read-only and non-signing.
        """
        spec = self.spec(method)
        metas: List[AccountMeta] = []
        for account in spec.accounts:
            address = accounts.get(account.name)
            if address is None:
                if not account.optional:
                    raise ValueError(f"{method}: missing account {account.name}")
                metas.append(AccountMeta(self._program_key, is_signer=False, is_writable=False))
                continue
            metas.append(
                AccountMeta(
                    Pubkey.from_string(address),
                    is_signer=account.is_signer,
                    is_writable=account.is_writable,
                )
            )
        for address in remaining_accounts:
            metas.append(AccountMeta(Pubkey.from_string(address), is_signer=False, is_writable=False))

        return Instruction(self._program_key, self.encode_args(method, args), metas)
