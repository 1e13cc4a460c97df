"""
Proof builder.

Sigma protocols made non-interactive with a sha3 Fiat-Shamir transcript.
Each proof knows its ledger instruction kind, the public context the ledger
compares against the consuming instruction, and a fixed-size hex encoding:

    pubkey validity                    64 bytes
    grouped ciphertext validity       160 bytes
    ciphertext/commitment equality    192 bytes
    range                             160 bytes per bit per commitment
"""

import logging
from dataclasses import dataclass
from typing import List, Tuple

from confidential_balance import elgamal
from confidential_balance.errors import DecodeError, ProofGenerationError
from confidential_balance.group import (
    ELEMENT_BYTES,
    element_from_hex,
    element_to_hex,
    exp_neg,
    g,
    h,
    hash_to_scalar,
    mod_exp,
    mod_inverse,
    n,
    p,
    random_scalar,
    scalar_from_hex,
    split_hex,
)

logger = logging.getLogger(__name__)

PUBKEY_VALIDITY = "verify_pubkey_validity"
GROUPED_CIPHERTEXT_VALIDITY = "verify_grouped_ciphertext_validity"
CIPHERTEXT_COMMITMENT_EQUALITY = "verify_ciphertext_commitment_equality"
BATCHED_RANGE = "verify_batched_range_proof"

PROOF_KINDS = (PUBKEY_VALIDITY, GROUPED_CIPHERTEXT_VALIDITY, CIPHERTEXT_COMMITMENT_EQUALITY, BATCHED_RANGE)

VALIDITY_PROOF_BYTES = 2 * ELEMENT_BYTES
GROUPED_VALIDITY_PROOF_BYTES = 5 * ELEMENT_BYTES
EQUALITY_PROOF_BYTES = 6 * ELEMENT_BYTES
RANGE_BIT_PROOF_BYTES = 5 * ELEMENT_BYTES

AMOUNT_BIT_LENGTH = 64


def encode(*values: int) -> str:
    return "".join(element_to_hex(v) for v in values)


def check_public_key(public: int):
    if not isinstance(public, int) or public <= 1 or public >= p - 1:
        raise ProofGenerationError("malformed encryption public key")


# ---- Pubkey validity ---------------------------------------------------------

@dataclass(frozen=True)
class ValidityProof:
    """Schnorr proof of knowledge of s with P = h^s, bound to P."""

    pubkey: int
    commitment: int
    response: int

    kind = PUBKEY_VALIDITY

    def context(self) -> dict:
        return {"pubkey": element_to_hex(self.pubkey)}

    def hex(self) -> str:
        return encode(self.commitment, self.response)

    def to_bytes(self) -> bytes:
        return bytes.fromhex(self.hex())

    def verify(self) -> bool:
        challenge = hash_to_scalar("pubkey-validity", element_to_hex(self.pubkey), element_to_hex(self.commitment))
        return mod_exp(h, self.response) == self.commitment * mod_exp(self.pubkey, challenge) % p


def build_validity_proof(keypair) -> ValidityProof:
    check_public_key(keypair.public)
    if mod_exp(h, keypair.secret) != keypair.public:
        raise ProofGenerationError("public key does not match secret")
    nonce = random_scalar()
    commitment = mod_exp(h, nonce)
    challenge = hash_to_scalar("pubkey-validity", keypair.public_hex, element_to_hex(commitment))
    response = (nonce + challenge * keypair.secret) % n
    logger.debug("Built pubkey validity proof for %s", keypair.public_hex[:16])
    return ValidityProof(pubkey=keypair.public, commitment=commitment, response=response)


def validity_proof_from_hex(pubkey_hex: str, blob: str) -> ValidityProof:
    if len(blob) != 2 * VALIDITY_PROOF_BYTES:
        raise DecodeError("pubkey validity proof must be {} bytes".format(VALIDITY_PROOF_BYTES))
    parts = split_hex(blob)
    return ValidityProof(element_from_hex(pubkey_hex), element_from_hex(parts[0]), scalar_from_hex(parts[1]))


# ---- Grouped ciphertext validity ---------------------------------------------

@dataclass(frozen=True)
class GroupedCiphertextValidityProof:
    """Knowledge of (a, r) behind C = g^a h^r, D_src = P_src^r, D_dst = P_dst^r."""

    source_pubkey: int
    destination_pubkey: int
    grouped: elgamal.GroupedCiphertext
    t_commitment: int
    t_source: int
    t_destination: int
    z_amount: int
    z_opening: int

    kind = GROUPED_CIPHERTEXT_VALIDITY

    def context(self) -> dict:
        return {
            "source_pubkey": element_to_hex(self.source_pubkey),
            "destination_pubkey": element_to_hex(self.destination_pubkey),
            "commitment": element_to_hex(self.grouped.commitment),
            "source_handle": element_to_hex(self.grouped.source_handle),
            "destination_handle": element_to_hex(self.grouped.destination_handle),
        }

    def hex(self) -> str:
        return encode(self.t_commitment, self.t_source, self.t_destination, self.z_amount, self.z_opening)

    def challenge(self) -> int:
        ctx = self.context()
        return hash_to_scalar(
            "grouped-ciphertext-validity",
            ctx["source_pubkey"],
            ctx["destination_pubkey"],
            ctx["commitment"],
            ctx["source_handle"],
            ctx["destination_handle"],
            encode(self.t_commitment),
            encode(self.t_source),
            encode(self.t_destination),
        )

    def verify(self) -> bool:
        c = self.challenge()
        grouped = self.grouped
        return (
            mod_exp(g, self.z_amount) * mod_exp(h, self.z_opening) % p
            == self.t_commitment * mod_exp(grouped.commitment, c) % p
            and mod_exp(self.source_pubkey, self.z_opening) == self.t_source * mod_exp(grouped.source_handle, c) % p
            and mod_exp(self.destination_pubkey, self.z_opening)
            == self.t_destination * mod_exp(grouped.destination_handle, c) % p
        )


def build_grouped_ciphertext_validity_proof(source_pubkey, destination_pubkey, grouped, amount, opening):
    check_public_key(source_pubkey)
    check_public_key(destination_pubkey)
    k_amount = random_scalar()
    k_opening = random_scalar()
    unfinished = GroupedCiphertextValidityProof(
        source_pubkey=source_pubkey,
        destination_pubkey=destination_pubkey,
        grouped=grouped,
        t_commitment=mod_exp(g, k_amount) * mod_exp(h, k_opening) % p,
        t_source=mod_exp(source_pubkey, k_opening),
        t_destination=mod_exp(destination_pubkey, k_opening),
        z_amount=0,
        z_opening=0,
    )
    c = unfinished.challenge()
    return GroupedCiphertextValidityProof(
        source_pubkey=source_pubkey,
        destination_pubkey=destination_pubkey,
        grouped=grouped,
        t_commitment=unfinished.t_commitment,
        t_source=unfinished.t_source,
        t_destination=unfinished.t_destination,
        z_amount=(k_amount + c * amount) % n,
        z_opening=(k_opening + c * opening) % n,
    )


# ---- Ciphertext / commitment equality ----------------------------------------

@dataclass(frozen=True)
class EqualityProof:
    """
    The ciphertext (C, D) under P and the commitment C' hide the same amount.

    Witness: e = s^-1 (so P^e == h and D^e == h^r), the amount x and the
    commitment opening t, with C = g^x D^e and C' = g^x h^t.
    """

    pubkey: int
    ciphertext: elgamal.Ciphertext
    commitment: int
    y_pubkey: int
    y_ciphertext: int
    y_commitment: int
    z_exponent: int
    z_amount: int
    z_opening: int

    kind = CIPHERTEXT_COMMITMENT_EQUALITY

    def context(self) -> dict:
        return {
            "pubkey": element_to_hex(self.pubkey),
            "ciphertext": self.ciphertext.hex(),
            "commitment": element_to_hex(self.commitment),
        }

    def hex(self) -> str:
        return encode(
            self.y_pubkey, self.y_ciphertext, self.y_commitment, self.z_exponent, self.z_amount, self.z_opening
        )

    def challenge(self) -> int:
        ctx = self.context()
        return hash_to_scalar(
            "ciphertext-commitment-equality",
            ctx["pubkey"],
            ctx["ciphertext"],
            ctx["commitment"],
            encode(self.y_pubkey),
            encode(self.y_ciphertext),
            encode(self.y_commitment),
        )

    def verify(self) -> bool:
        c = self.challenge()
        ct = self.ciphertext
        return (
            mod_exp(self.pubkey, self.z_exponent) == self.y_pubkey * mod_exp(h, c) % p
            and mod_exp(g, self.z_amount) * mod_exp(ct.handle, self.z_exponent) % p
            == self.y_ciphertext * mod_exp(ct.commitment, c) % p
            and mod_exp(g, self.z_amount) * mod_exp(h, self.z_opening) % p
            == self.y_commitment * mod_exp(self.commitment, c) % p
        )


def build_equality_proof(keypair, ciphertext, amount, opening) -> EqualityProof:
    check_public_key(keypair.public)
    try:
        elgamal.decrypt_with_hint(keypair, ciphertext, amount)
    except DecodeError as e:
        raise ProofGenerationError("ciphertext does not hold the claimed balance") from e
    exponent = keypair.decryption_exponent
    k_exponent = random_scalar()
    k_amount = random_scalar()
    k_opening = random_scalar()
    unfinished = EqualityProof(
        pubkey=keypair.public,
        ciphertext=ciphertext,
        commitment=elgamal.pedersen_commit(amount, opening),
        y_pubkey=mod_exp(keypair.public, k_exponent),
        y_ciphertext=mod_exp(g, k_amount) * mod_exp(ciphertext.handle, k_exponent) % p,
        y_commitment=mod_exp(g, k_amount) * mod_exp(h, k_opening) % p,
        z_exponent=0,
        z_amount=0,
        z_opening=0,
    )
    c = unfinished.challenge()
    return EqualityProof(
        pubkey=unfinished.pubkey,
        ciphertext=ciphertext,
        commitment=unfinished.commitment,
        y_pubkey=unfinished.y_pubkey,
        y_ciphertext=unfinished.y_ciphertext,
        y_commitment=unfinished.y_commitment,
        z_exponent=(k_exponent + c * exponent) % n,
        z_amount=(k_amount + c * amount) % n,
        z_opening=(k_opening + c * opening) % n,
    )


# ---- Range -------------------------------------------------------------------

@dataclass(frozen=True)
class BitProof:
    bit_commitment: int
    c0: int
    c1: int
    z0: int
    z1: int

    def hex(self) -> str:
        return encode(self.bit_commitment, self.c0, self.c1, self.z0, self.z1)


def bit_challenge(commitment_hex: str, index: int, bit_commitment: int, t0: int, t1: int) -> int:
    return hash_to_scalar("range-bit", commitment_hex, str(index), encode(bit_commitment), encode(t0), encode(t1))


def prove_bit(commitment_hex: str, index: int, bit: int, opening: int) -> BitProof:
    bit_commitment = mod_exp(g, bit) * mod_exp(h, opening) % p
    # branch b claims bit_commitment / g^b == h^opening
    targets = (bit_commitment, bit_commitment * mod_inverse(g) % p)
    fake = 1 - bit
    c_fake = random_scalar()
    z_fake = random_scalar()
    nonce = random_scalar()
    t = [0, 0]
    t[bit] = mod_exp(h, nonce)
    t[fake] = mod_exp(h, z_fake) * exp_neg(targets[fake], c_fake) % p
    c = bit_challenge(commitment_hex, index, bit_commitment, t[0], t[1])
    c_real = (c - c_fake) % n
    z_real = (nonce + c_real * opening) % n
    cs = [0, 0]
    zs = [0, 0]
    cs[bit], cs[fake] = c_real, c_fake
    zs[bit], zs[fake] = z_real, z_fake
    return BitProof(bit_commitment, cs[0], cs[1], zs[0], zs[1])


def verify_bit(commitment_hex: str, index: int, proof: BitProof) -> bool:
    targets = (proof.bit_commitment, proof.bit_commitment * mod_inverse(g) % p)
    t0 = mod_exp(h, proof.z0) * exp_neg(targets[0], proof.c0) % p
    t1 = mod_exp(h, proof.z1) * exp_neg(targets[1], proof.c1) % p
    return (proof.c0 + proof.c1) % n == bit_challenge(commitment_hex, index, proof.bit_commitment, t0, t1)


@dataclass(frozen=True)
class RangeProof:
    """Every commitment opens to a value in [0, 2^bit_length)."""

    commitments: Tuple[int, ...]
    bit_lengths: Tuple[int, ...]
    bits: Tuple[Tuple[BitProof, ...], ...]

    kind = BATCHED_RANGE

    def context(self) -> dict:
        return {
            "commitments": [element_to_hex(c) for c in self.commitments],
            "bit_lengths": list(self.bit_lengths),
        }

    def hex(self) -> str:
        return "".join(bit.hex() for proofs in self.bits for bit in proofs)

    def verify(self) -> bool:
        for commitment, bit_length, proofs in zip(self.commitments, self.bit_lengths, self.bits):
            if len(proofs) != bit_length:
                return False
            commitment_hex = element_to_hex(commitment)
            # prod C_i^(2^i), Horner from the top bit
            acc = 1
            for proof in reversed(proofs):
                acc = acc * acc % p * proof.bit_commitment % p
            if acc != commitment:
                return False
            for index, proof in enumerate(proofs):
                if not verify_bit(commitment_hex, index, proof):
                    return False
        return True


def split_opening(opening: int, bit_length: int) -> List[int]:
    openings = [0] + [random_scalar() for _ in range(1, bit_length)]
    openings[0] = (opening - sum(r << i for i, r in enumerate(openings))) % n
    return openings


def build_range_proof(
    openings: List[Tuple[int, int]], bit_length: int = AMOUNT_BIT_LENGTH, bit_lengths: List[int] = None
) -> RangeProof:
    """openings: (amount, opening) per commitment; bit_lengths overrides bit_length per commitment."""
    if bit_lengths is None:
        bit_lengths = [bit_length] * len(openings)
    if len(bit_lengths) != len(openings):
        raise ProofGenerationError("one bit length per commitment")
    commitments = []
    all_bits = []
    for (amount, opening), bit_length in zip(openings, bit_lengths):
        if bit_length <= 0 or bit_length > AMOUNT_BIT_LENGTH:
            raise ProofGenerationError("bit length must be in 1..{}".format(AMOUNT_BIT_LENGTH))
        if amount < 0 or amount >= 1 << bit_length:
            raise ProofGenerationError("amount outside the provable range")
        commitment = elgamal.pedersen_commit(amount, opening)
        commitment_hex = element_to_hex(commitment)
        bit_openings = split_opening(opening, bit_length)
        proofs = tuple(
            prove_bit(commitment_hex, i, (amount >> i) & 1, bit_openings[i]) for i in range(bit_length)
        )
        commitments.append(commitment)
        all_bits.append(proofs)
    logger.debug("Built range proof over %d commitments", len(commitments))
    return RangeProof(tuple(commitments), tuple(bit_lengths), tuple(all_bits))
