import hashlib

import pytest

from confidential_balance import codec
from confidential_balance.errors import DecodeError
from confidential_balance.group import U64_MAX, p

KEY = bytes(range(32))
OTHER_KEY = bytes(range(1, 33))


@pytest.mark.parametrize("amount", [0, 1, 100, 2**32, U64_MAX])
def test_round_trip(amount):
    assert codec.decrypt(KEY, codec.encrypt(KEY, amount)) == amount


def test_ciphertext_is_fixed_width():
    small = codec.encrypt(KEY, 0)
    large = codec.encrypt(KEY, U64_MAX)
    assert len(small.to_bytes()) == codec.CIPHERTEXT_BYTES
    assert len(large.to_bytes()) == codec.CIPHERTEXT_BYTES
    assert len(small.hex()) == 2 * codec.CIPHERTEXT_BYTES


def test_encryption_is_randomised():
    a = codec.encrypt(KEY, 42)
    b = codec.encrypt(KEY, 42)
    assert a != b
    assert codec.decrypt(KEY, a) == codec.decrypt(KEY, b) == 42


def test_combine_adds_amounts():
    combined = codec.combine(KEY, codec.encrypt(KEY, 30), codec.encrypt(KEY, 70))
    assert codec.decrypt(KEY, combined) == 100


def test_combine_up_to_u64_max():
    combined = codec.combine(KEY, codec.encrypt(KEY, U64_MAX - 5), codec.encrypt(KEY, 5))
    assert codec.decrypt(KEY, combined) == U64_MAX


def test_decrypt_accepts_hex_and_bytes():
    ct = codec.encrypt(KEY, 7)
    assert codec.decrypt(KEY, ct.hex()) == 7
    assert codec.decrypt(KEY, ct.to_bytes()) == 7


def test_wrong_key_is_detected():
    ct = codec.encrypt(KEY, 100)
    with pytest.raises(DecodeError):
        codec.decrypt(OTHER_KEY, ct)


@pytest.mark.parametrize("blob", ["00" * 47, "zz" * 48, b"\x00" * 10, "ff" * 48])
def test_malformed_ciphertext(blob):
    with pytest.raises(DecodeError):
        codec.decrypt(KEY, blob)


def test_unsupported_type():
    with pytest.raises(DecodeError):
        codec.decrypt(KEY, 12345)


def test_bad_key_length():
    with pytest.raises(DecodeError):
        codec.encrypt(b"short", 1)


@pytest.mark.parametrize("amount", [-1, U64_MAX + 1, 1.5])
def test_encrypt_rejects_non_u64(amount):
    with pytest.raises(ValueError):
        codec.encrypt(KEY, amount)


def test_combine_overflow():
    with pytest.raises(DecodeError):
        codec.combine(KEY, codec.encrypt(KEY, U64_MAX), codec.encrypt(KEY, 1))


def test_tampered_ciphertext_fails_authentication():
    raw = bytearray(codec.encrypt(KEY, 100).to_bytes())
    raw[-1] ^= 1
    with pytest.raises(DecodeError):
        codec.decrypt(KEY, bytes(raw))


def test_published_zero_balance_does_not_reveal_later_balances():
    # configure publishes encrypt(k, 0); a later balance must stay unreadable
    zero = codec.encrypt(KEY, 0).to_bytes()
    later = codec.encrypt(KEY, 123456789).to_bytes()
    half = codec.CIPHERTEXT_BYTES // 2
    u0, v0 = int.from_bytes(zero[:half], "big"), int.from_bytes(zero[half:], "big")
    u1, v1 = int.from_bytes(later[:half], "big"), int.from_bytes(later[half:], "big")
    x = v0 * pow(u0, -1, p) % p
    assert (v1 - x * u1) % p != 123456789

    with pytest.raises(DecodeError):
        codec.decrypt(hashlib.sha3_256(zero).digest(), later)
