
import hashlib
import secrets

# ---- Chain-constant parameters & helpers (mirror contract) ----

p = 2**255 - 19
n = p - 1  # group exponent; every exponent is reduced mod n

ELEMENT_BYTES = 32
ELEMENT_HEX = 2 * ELEMENT_BYTES

U64_MAX = 2**64 - 1


def sha3_hex(s: str) -> str:
    # Matches the ledger's hashlib.sha3 for input containing non-hex characters.
    # Every tag below starts with "ZKT:" so the ledger never takes the fromhex path.
    return hashlib.sha3_256(s.encode()).hexdigest()


def map_to_base(tag: str) -> int:
    return int(sha3_hex("ZKT:gen:" + tag)[:32], 16) % (p - 3) + 2


g = map_to_base("g")
h = map_to_base("h")

ZERO_ELEMENT = 1  # multiplicative identity


def mod_exp(base: int, exponent: int, modulus: int = p) -> int:
    return pow(base % modulus, exponent, modulus)


def mod_inverse(x: int, modulus: int = p) -> int:
    return mod_exp(x % modulus, modulus - 2, modulus)


def exp_neg(base: int, exponent: int) -> int:
    """base^-exponent mod p, using base^n == 1."""
    return mod_exp(base, (n - exponent % n) % n)


def random_scalar() -> int:
    return secrets.randbelow(n - 1) + 1


def element_to_hex(x: int) -> str:
    return format(x, "0{}x".format(ELEMENT_HEX))


def element_from_hex(s: str) -> int:
    """Parse a fixed-width element, rejecting anything outside [1, p-1]."""
    if not isinstance(s, str) or len(s) != ELEMENT_HEX:
        raise ValueError("element must be {} hex characters".format(ELEMENT_HEX))
    x = int(s, 16)
    if x == 0 or x >= p:
        raise ValueError("element out of range")
    return x


def scalar_from_hex(s: str) -> int:
    if not isinstance(s, str) or len(s) != ELEMENT_HEX:
        raise ValueError("scalar must be {} hex characters".format(ELEMENT_HEX))
    x = int(s, 16)
    if x >= n:
        raise ValueError("scalar out of range")
    return x


def split_hex(blob: str, width: int = ELEMENT_HEX) -> list:
    return [blob[i:i + width] for i in range(0, len(blob), width)]


def hash_to_scalar(label: str, *parts: str) -> int:
    """Fiat-Shamir challenge over hex-encoded transcript parts."""
    transcript = "ZKT:v1|" + label
    for part in parts:
        transcript += "|" + part
    return int(sha3_hex(transcript), 16) % n
