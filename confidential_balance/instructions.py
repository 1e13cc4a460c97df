"""
Instruction builders for the confidential token program.

An instruction is a kind plus a flat data mapping (the ledger wire format)
and the address that must authorise it. Instructions that consume a proof
carry ProofLocation slots; the bundle assembler places each proof as a
sibling instruction and writes the relative offset into the slot.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from confidential_balance import codec
from confidential_balance.group import element_to_hex

CONFIDENTIAL_EXTENSION = "confidential_transfer_account"


@dataclass
class ProofLocation:
    """A proof payload and, once assembled, its absolute position in the bundle."""

    payload: object
    bundle_position: Optional[int] = None

    def instruction(self) -> "Instruction":
        return Instruction(
            kind=self.payload.kind,
            data={"context": self.payload.context(), "proof": self.payload.hex()},
        )


@dataclass
class Instruction:
    kind: str
    data: dict
    authority: Optional[str] = None
    proofs: Dict[str, ProofLocation] = field(default_factory=dict)

    def to_wire(self) -> dict:
        wire = {"kind": self.kind}
        wire.update(self.data)
        return wire


def create_mint(mint: str, authority: str, decimals: int, confidential: bool = True,
                auto_approve: bool = True, confidential_authority: str = None) -> Instruction:
    return Instruction(
        kind="create_mint",
        data={
            "mint": mint,
            "authority": authority,
            "decimals": decimals,
            "confidential": confidential,
            "auto_approve": auto_approve,
            "confidential_authority": confidential_authority or "",
        },
        authority=authority,
    )


def mint_to(mint: str, account: str, amount: int, authority: str) -> Instruction:
    return Instruction(
        kind="mint_to",
        data={"mint": mint, "account": account, "amount": amount},
        authority=authority,
    )


def create_account(account: str, owner: str, mint: str, payer: str, rent: int) -> Instruction:
    return Instruction(
        kind="create_account",
        data={"account": account, "owner": owner, "mint": mint, "payer": payer, "rent": rent},
        authority=payer,
    )


def reallocate(account: str, owner: str, rent: int, extensions: List[str] = None) -> Instruction:
    return Instruction(
        kind="reallocate",
        data={"account": account, "extensions": list(extensions or [CONFIDENTIAL_EXTENSION]), "rent": rent},
        authority=owner,
    )


def configure_account(account: str, mint: str, owner: str, key_material, max_pending_credits: int,
                      proof) -> Instruction:
    """Configure instruction; `proof` is the pubkey validity proof for its sibling slot."""
    decryptable_zero = codec.encrypt(key_material.symmetric_key, 0)
    return Instruction(
        kind="configure_account",
        data={
            "account": account,
            "mint": mint,
            "pubkey": key_material.encryption_keypair.public_hex,
            "decryptable_zero_balance": decryptable_zero.hex(),
            "max_pending_credits": max_pending_credits,
        },
        authority=owner,
        proofs={"proof_offset": ProofLocation(proof)},
    )


def approve_account(account: str, authority: str) -> Instruction:
    return Instruction(kind="approve_account", data={"account": account}, authority=authority)


def deposit(account: str, amount: int, decimals: int, authority: str, source: str = None) -> Instruction:
    return Instruction(
        kind="deposit",
        data={"account": account, "source": source or account, "amount": amount, "decimals": decimals},
        authority=authority,
    )


def apply_pending_balance(account: str, owner: str, expected_snapshot_digest: str,
                          new_decryptable_available: codec.EncryptedBalance) -> Instruction:
    return Instruction(
        kind="apply_pending_balance",
        data={
            "account": account,
            "expected_snapshot_digest": expected_snapshot_digest,
            "new_decryptable_available": new_decryptable_available.hex(),
        },
        authority=owner,
    )


def transfer(account: str, destination: str, owner: str, lo, hi, note: int,
             new_decryptable_available: codec.EncryptedBalance,
             equality_proof, lo_validity_proof, hi_validity_proof, range_proof) -> Instruction:
    """lo and hi are the grouped ciphertexts of amount % 2^16 and amount >> 16."""
    return Instruction(
        kind="transfer",
        data={
            "account": account,
            "destination": destination,
            "lo_commitment": element_to_hex(lo.commitment),
            "lo_source_handle": element_to_hex(lo.source_handle),
            "lo_destination_handle": element_to_hex(lo.destination_handle),
            "hi_commitment": element_to_hex(hi.commitment),
            "hi_source_handle": element_to_hex(hi.source_handle),
            "hi_destination_handle": element_to_hex(hi.destination_handle),
            "note": note,
            "new_decryptable_available": new_decryptable_available.hex(),
        },
        authority=owner,
        proofs={
            "equality_proof_offset": ProofLocation(equality_proof),
            "lo_validity_proof_offset": ProofLocation(lo_validity_proof),
            "hi_validity_proof_offset": ProofLocation(hi_validity_proof),
            "range_proof_offset": ProofLocation(range_proof),
        },
    )
