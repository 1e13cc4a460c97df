"""
Twisted ElGamal ciphertexts for the ledger's pending and available slots.

commitment = g^a * h^r is a Pedersen commitment, handle = P^r lets the owner
of P = h^s strip h^r. The ledger adds ciphertexts by multiplying components.
Decryption yields g^a. Balances are recovered by checking a candidate the owner
holds (its decryptable balance or a deposit note); transfer credits arrive as
two range-bounded halves that the receiver can always solve for.
"""

from dataclasses import dataclass
from functools import lru_cache

from confidential_balance.errors import DecodeError
from confidential_balance.group import (
    ELEMENT_HEX,
    U64_MAX,
    ZERO_ELEMENT,
    element_from_hex,
    element_to_hex,
    g,
    h,
    mod_exp,
    mod_inverse,
    n,
    p,
    random_scalar,
    sha3_hex,
)

CIPHERTEXT_HEX = 2 * ELEMENT_HEX
NOTE_MODULUS = 2**64

# transfer amounts travel as lo + hi * 2^16, each half range-proven
LO_BITS = 16
HI_BITS = 32
TRANSFER_AMOUNT_BITS = LO_BITS + HI_BITS
SPLIT_FACTOR = 1 << LO_BITS


@dataclass(frozen=True)
class Ciphertext:
    commitment: int
    handle: int

    def hex(self) -> str:
        return element_to_hex(self.commitment) + element_to_hex(self.handle)

    @classmethod
    def from_hex(cls, data: str) -> "Ciphertext":
        if not isinstance(data, str) or len(data) != CIPHERTEXT_HEX:
            raise DecodeError("ciphertext must be {} hex characters".format(CIPHERTEXT_HEX))
        try:
            return cls(element_from_hex(data[:ELEMENT_HEX]), element_from_hex(data[ELEMENT_HEX:]))
        except ValueError as e:
            raise DecodeError(str(e)) from e

    def __add__(self, other: "Ciphertext") -> "Ciphertext":
        return Ciphertext(self.commitment * other.commitment % p, self.handle * other.handle % p)

    def __sub__(self, other: "Ciphertext") -> "Ciphertext":
        return Ciphertext(
            self.commitment * mod_inverse(other.commitment) % p,
            self.handle * mod_inverse(other.handle) % p,
        )


ZERO_CIPHERTEXT = Ciphertext(ZERO_ELEMENT, ZERO_ELEMENT)


def pedersen_commit(amount: int, opening: int) -> int:
    return mod_exp(g, amount) * mod_exp(h, opening) % p


def encrypt(public: int, amount: int, opening: int = None):
    """Returns (ciphertext, opening)."""
    if opening is None:
        opening = random_scalar()
    return Ciphertext(pedersen_commit(amount, opening), mod_exp(public, opening)), opening


def encode_public_amount(amount: int) -> Ciphertext:
    # r = 0; how the ledger credits a public deposit
    return Ciphertext(mod_exp(g, amount), ZERO_ELEMENT)


def decrypt_to_element(keypair, ciphertext: Ciphertext) -> int:
    blinding = mod_exp(ciphertext.handle, keypair.decryption_exponent)
    return ciphertext.commitment * mod_inverse(blinding) % p


def decrypt_with_hint(keypair, ciphertext: Ciphertext, candidate: int) -> int:
    """Return candidate if ciphertext encrypts it under keypair, else DecodeError."""
    if not isinstance(candidate, int) or candidate < 0 or candidate > U64_MAX:
        raise DecodeError("candidate amount out of range")
    if decrypt_to_element(keypair, ciphertext) != mod_exp(g, candidate):
        raise DecodeError("ciphertext does not encrypt the expected amount")
    return candidate


@dataclass(frozen=True)
class GroupedCiphertext:
    """One commitment with decrypt handles for the source and destination keys."""

    commitment: int
    source_handle: int
    destination_handle: int

    def source_ciphertext(self) -> Ciphertext:
        return Ciphertext(self.commitment, self.source_handle)

    def destination_ciphertext(self) -> Ciphertext:
        return Ciphertext(self.commitment, self.destination_handle)


def encrypt_grouped(source_public: int, destination_public: int, amount: int, opening: int = None):
    if opening is None:
        opening = random_scalar()
    grouped = GroupedCiphertext(
        commitment=pedersen_commit(amount, opening),
        source_handle=mod_exp(source_public, opening),
        destination_handle=mod_exp(destination_public, opening),
    )
    return grouped, opening


def note_mask(shared: int) -> int:
    return int(sha3_hex("ZKT:note|" + element_to_hex(shared)), 16) % NOTE_MODULUS


def seal_note(amount: int, opening: int) -> int:
    """Amount masked for the transfer receiver, who recovers h^r from its handle."""
    return (amount + note_mask(mod_exp(h, opening))) % NOTE_MODULUS


def open_note(keypair, handle: int, note: int) -> int:
    shared = mod_exp(handle, keypair.decryption_exponent)
    return (note - note_mask(shared)) % NOTE_MODULUS


def split_amount(amount: int):
    if amount < 0 or amount >= 1 << TRANSFER_AMOUNT_BITS:
        raise ValueError("transfer amount must fit in {} bits".format(TRANSFER_AMOUNT_BITS))
    return amount % SPLIT_FACTOR, amount >> LO_BITS


def join_split(lo: GroupedCiphertext, hi: GroupedCiphertext) -> GroupedCiphertext:
    """Ciphertext of lo + hi * 2^16 under both keys."""
    return GroupedCiphertext(
        commitment=lo.commitment * mod_exp(hi.commitment, SPLIT_FACTOR) % p,
        source_handle=lo.source_handle * mod_exp(hi.source_handle, SPLIT_FACTOR) % p,
        destination_handle=lo.destination_handle * mod_exp(hi.destination_handle, SPLIT_FACTOR) % p,
    )


@lru_cache(maxsize=4)
def baby_steps(size: int) -> dict:
    table = {}
    element = ZERO_ELEMENT
    for j in range(size):
        table.setdefault(element, j)
        element = element * g % p
    return table


def discrete_log(element: int, bits: int) -> int:
    """Find a < 2^bits with g^a == element (baby-step giant-step)."""
    size = 1 << ((bits + 1) // 2)
    table = baby_steps(size)
    giant = mod_exp(g, n - size)
    gamma = element
    for i in range(size):
        j = table.get(gamma)
        if j is not None:
            amount = i * size + j
            if amount < 1 << bits:
                return amount
        gamma = gamma * giant % p
    raise DecodeError("no amount below 2^{} matches the ciphertext".format(bits))


def decrypt_split(keypair, lo: Ciphertext, hi: Ciphertext, hint: int = None) -> int:
    """
    Amount behind a split transfer credit. A hint (the sender's note) is
    accepted only if it matches both halves; otherwise the halves are solved
    directly, which the ledger's range checks keep within reach.
    """
    lo_element = decrypt_to_element(keypair, lo)
    hi_element = decrypt_to_element(keypair, hi)
    if hint is not None and 0 <= hint < 1 << TRANSFER_AMOUNT_BITS:
        hint_lo, hint_hi = split_amount(hint)
        if lo_element == mod_exp(g, hint_lo) and hi_element == mod_exp(g, hint_hi):
            return hint
    return discrete_log(lo_element, LO_BITS) + discrete_log(hi_element, HI_BITS) * SPLIT_FACTOR
