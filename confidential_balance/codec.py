"""
Balance codec: 64-bit amounts under the account's symmetric key.

The decryptable balance is an authenticated ciphertext (XSalsa20-Poly1305,
nacl.secret.SecretBox) of the amount as 8 big-endian bytes. Only the key
holder can read or produce one; decrypting with any other key, or a blob that
was altered, fails authentication and raises DecodeError.

Wire form: 48 bytes, nonce (24) || ciphertext with tag (24).

The ledger adds encrypted credits in the ElGamal slots, so the codec never
needs to be homomorphic without the key. `combine` adds two balances for the
key holder and re-encrypts the sum.
"""

import nacl.exceptions
import nacl.secret
import nacl.utils

from confidential_balance.errors import DecodeError
from confidential_balance.group import U64_MAX

AMOUNT_BYTES = 8
NONCE_BYTES = nacl.secret.SecretBox.NONCE_SIZE
CIPHERTEXT_BYTES = NONCE_BYTES + AMOUNT_BYTES + nacl.secret.SecretBox.MACBYTES
CIPHERTEXT_HEX = 2 * CIPHERTEXT_BYTES


class EncryptedBalance:
    def __init__(self, nonce: bytes, ciphertext: bytes):
        self.nonce = bytes(nonce)
        self.ciphertext = bytes(ciphertext)

    def to_bytes(self) -> bytes:
        return self.nonce + self.ciphertext

    def hex(self) -> str:
        return self.to_bytes().hex()

    @classmethod
    def from_bytes(cls, data: bytes) -> "EncryptedBalance":
        if not isinstance(data, (bytes, bytearray)) or len(data) != CIPHERTEXT_BYTES:
            raise DecodeError("encrypted balance must be {} bytes".format(CIPHERTEXT_BYTES))
        return cls(nonce=data[:NONCE_BYTES], ciphertext=data[NONCE_BYTES:])

    @classmethod
    def from_hex(cls, data: str) -> "EncryptedBalance":
        try:
            raw = bytes.fromhex(data)
        except (TypeError, ValueError) as e:
            raise DecodeError("encrypted balance is not hex") from e
        return cls.from_bytes(raw)

    def __eq__(self, other):
        return isinstance(other, EncryptedBalance) and self.to_bytes() == other.to_bytes()

    def __hash__(self):
        return hash(self.to_bytes())

    def __repr__(self):
        return "EncryptedBalance({})".format(self.hex())


def secret_box(symmetric_key: bytes) -> nacl.secret.SecretBox:
    if not isinstance(symmetric_key, (bytes, bytearray)) or len(symmetric_key) != nacl.secret.SecretBox.KEY_SIZE:
        raise DecodeError("symmetric key must be {} bytes".format(nacl.secret.SecretBox.KEY_SIZE))
    return nacl.secret.SecretBox(bytes(symmetric_key))


def encrypt(symmetric_key: bytes, amount: int, nonce: bytes = None) -> EncryptedBalance:
    if not isinstance(amount, int) or isinstance(amount, bool) or amount < 0 or amount > U64_MAX:
        raise ValueError("amount must be a u64")
    box = secret_box(symmetric_key)
    if nonce is None:
        nonce = nacl.utils.random(NONCE_BYTES)
    sealed = box.encrypt(amount.to_bytes(AMOUNT_BYTES, "big"), nonce)
    return EncryptedBalance(nonce=sealed.nonce, ciphertext=sealed.ciphertext)


def decrypt(symmetric_key: bytes, ciphertext) -> int:
    if isinstance(ciphertext, str):
        ciphertext = EncryptedBalance.from_hex(ciphertext)
    elif isinstance(ciphertext, (bytes, bytearray)):
        ciphertext = EncryptedBalance.from_bytes(ciphertext)
    elif not isinstance(ciphertext, EncryptedBalance):
        raise DecodeError("unsupported ciphertext type {}".format(type(ciphertext).__name__))
    box = secret_box(symmetric_key)
    try:
        plaintext = box.decrypt(ciphertext.ciphertext, ciphertext.nonce)
    except nacl.exceptions.CryptoError as e:
        raise DecodeError("ciphertext was not produced under this key") from e
    if len(plaintext) != AMOUNT_BYTES:
        raise DecodeError("malformed balance plaintext")
    return int.from_bytes(plaintext, "big")


def combine(symmetric_key: bytes, a, b) -> EncryptedBalance:
    """decrypt(k, combine(k, encrypt(k, x), encrypt(k, y))) == x + y."""
    total = decrypt(symmetric_key, a) + decrypt(symmetric_key, b)
    if total > U64_MAX:
        raise DecodeError("combined balance exceeds a u64")
    return encrypt(symmetric_key, total)
