"""
Key material for a confidential account.

Both keys are recomputed from the controller's Ed25519 signature over a
domain-separated message that names the account address. Ed25519 signing is
deterministic, so the same wallet and account always yield the same keys and
the ciphertexts stored on the ledger stay decryptable without a key store.
"""

import hashlib
import logging
from dataclasses import dataclass
from math import gcd

import nacl.exceptions
import nacl.signing

from confidential_balance.errors import KeyDerivationError
from confidential_balance.group import element_to_hex, h, mod_exp, n

logger = logging.getLogger(__name__)

ELGAMAL_SEED_MESSAGE = b"ZKT:ElGamalSecretKey|"
AE_SEED_MESSAGE = b"ZKT:AeKey|"
ELGAMAL_EXPAND_TAG = b"ZKT:expand:elgamal|"
AE_EXPAND_TAG = b"ZKT:expand:ae|"

SYMMETRIC_KEY_BYTES = 32


class Wallet:
    """Ed25519 signer; the address is the hex verify key."""

    def __init__(self, signing_key: nacl.signing.SigningKey):
        self.signing_key = signing_key

    @classmethod
    def generate(cls) -> "Wallet":
        return cls(nacl.signing.SigningKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "Wallet":
        return cls(nacl.signing.SigningKey(seed))

    @property
    def address(self) -> str:
        return self.signing_key.verify_key.encode().hex()

    def sign(self, message: bytes) -> bytes:
        return self.signing_key.sign(message).signature

    def __repr__(self):
        return "Wallet({})".format(self.address)


@dataclass(frozen=True)
class ElGamalKeypair:
    public: int
    secret: int

    @property
    def public_hex(self) -> str:
        return element_to_hex(self.public)

    @property
    def decryption_exponent(self) -> int:
        # P = h^s, so P^(s^-1) == h and handle^(s^-1) recovers h^r
        return pow(self.secret, -1, n)

    @classmethod
    def from_secret(cls, secret: int) -> "ElGamalKeypair":
        return cls(public=mod_exp(h, secret), secret=secret)

    def __repr__(self):
        return "ElGamalKeypair(public={})".format(self.public_hex)


@dataclass(frozen=True)
class KeyMaterial:
    encryption_keypair: ElGamalKeypair
    symmetric_key: bytes

    def __repr__(self):
        return "KeyMaterial(public={})".format(self.encryption_keypair.public_hex)


def seed_signature(signer, message: bytes) -> bytes:
    if signer is None or not callable(getattr(signer, "sign", None)):
        raise KeyDerivationError("controller cannot sign")
    try:
        signature = signer.sign(message)
    except (nacl.exceptions.CryptoError, TypeError, ValueError) as e:
        raise KeyDerivationError("controller failed to sign seed message: {}".format(e)) from e
    # a bare SigningKey returns a SignedMessage (signature + message)
    signature = getattr(signature, "signature", signature)
    if not isinstance(signature, (bytes, bytearray)) or not signature:
        raise KeyDerivationError("controller returned an empty signature")
    return bytes(signature)


def expand_secret_scalar(signature: bytes) -> int:
    counter = 0
    while True:
        digest = hashlib.sha512(ELGAMAL_EXPAND_TAG + signature + counter.to_bytes(4, "big")).digest()
        secret = int.from_bytes(digest, "big") % n
        # must be invertible mod n for decryption
        if secret > 1 and gcd(secret, n) == 1:
            return secret
        counter += 1


def derive_elgamal_keypair(signer, account_address: str) -> ElGamalKeypair:
    signature = seed_signature(signer, ELGAMAL_SEED_MESSAGE + account_address.encode())
    return ElGamalKeypair.from_secret(expand_secret_scalar(signature))


def derive_symmetric_key(signer, account_address: str) -> bytes:
    signature = seed_signature(signer, AE_SEED_MESSAGE + account_address.encode())
    return hashlib.sha3_256(AE_EXPAND_TAG + signature).digest()


def derive_key_material(signer, account_address: str) -> KeyMaterial:
    """Derive the encryption keypair and symmetric key for one account."""
    if not account_address:
        raise KeyDerivationError("account address is required")
    keypair = derive_elgamal_keypair(signer, account_address)
    symmetric_key = derive_symmetric_key(signer, account_address)
    logger.debug("Derived key material for account %s", account_address)
    return KeyMaterial(encryption_keypair=keypair, symmetric_key=symmetric_key)
