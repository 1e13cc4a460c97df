from dataclasses import replace

import pytest

from confidential_balance import elgamal, proofs
from confidential_balance.errors import ProofGenerationError
from confidential_balance.group import n, random_scalar
from confidential_balance.keys import ElGamalKeypair, expand_secret_scalar


def keypair(seed: bytes) -> ElGamalKeypair:
    return ElGamalKeypair.from_secret(expand_secret_scalar(seed))


ALICE = keypair(b"alice")
BOB = keypair(b"bob")


# ---- pubkey validity ---------------------------------------------------------

def test_validity_proof_verifies():
    proof = proofs.build_validity_proof(ALICE)
    assert proof.verify()
    assert len(proof.to_bytes()) == proofs.VALIDITY_PROOF_BYTES
    assert proof.context() == {"pubkey": ALICE.public_hex}


def test_validity_proof_is_bound_to_its_key():
    proof = proofs.build_validity_proof(ALICE)
    assert not replace(proof, pubkey=BOB.public).verify()


def test_validity_proof_hex_round_trip():
    proof = proofs.build_validity_proof(ALICE)
    parsed = proofs.validity_proof_from_hex(ALICE.public_hex, proof.hex())
    assert parsed == proof
    assert parsed.verify()


def test_validity_proof_rejects_tampered_response():
    proof = proofs.build_validity_proof(ALICE)
    assert not replace(proof, response=(proof.response + 1) % n).verify()


def test_validity_proof_rejects_mismatched_keypair():
    with pytest.raises(ProofGenerationError):
        proofs.build_validity_proof(ElGamalKeypair(public=BOB.public, secret=ALICE.secret))


@pytest.mark.parametrize("public", [0, 1, 2**255 - 20])
def test_validity_proof_rejects_malformed_key(public):
    with pytest.raises(ProofGenerationError):
        proofs.build_validity_proof(ElGamalKeypair(public=public, secret=5))


# ---- grouped ciphertext validity ---------------------------------------------

def test_grouped_validity_proof():
    grouped, opening = elgamal.encrypt_grouped(ALICE.public, BOB.public, 40)
    proof = proofs.build_grouped_ciphertext_validity_proof(ALICE.public, BOB.public, grouped, 40, opening)
    assert proof.verify()
    assert len(bytes.fromhex(proof.hex())) == proofs.GROUPED_VALIDITY_PROOF_BYTES


def test_grouped_validity_proof_detects_swapped_handle():
    grouped, opening = elgamal.encrypt_grouped(ALICE.public, BOB.public, 40)
    proof = proofs.build_grouped_ciphertext_validity_proof(ALICE.public, BOB.public, grouped, 40, opening)
    other, _ = elgamal.encrypt_grouped(ALICE.public, BOB.public, 40)
    forged = replace(proof, grouped=replace(grouped, destination_handle=other.destination_handle))
    assert not forged.verify()


def test_grouped_validity_proof_wrong_witness():
    grouped, opening = elgamal.encrypt_grouped(ALICE.public, BOB.public, 40)
    proof = proofs.build_grouped_ciphertext_validity_proof(ALICE.public, BOB.public, grouped, 41, opening)
    assert not proof.verify()


# ---- equality ----------------------------------------------------------------

def test_equality_proof():
    ciphertext, _ = elgamal.encrypt(ALICE.public, 60)
    proof = proofs.build_equality_proof(ALICE, ciphertext, 60, random_scalar())
    assert proof.verify()
    assert len(bytes.fromhex(proof.hex())) == proofs.EQUALITY_PROOF_BYTES


def test_equality_proof_on_trivial_ciphertext():
    # deposits credit (g^a, 1)
    proof = proofs.build_equality_proof(ALICE, elgamal.encode_public_amount(25), 25, random_scalar())
    assert proof.verify()


def test_equality_proof_requires_matching_balance():
    ciphertext, _ = elgamal.encrypt(ALICE.public, 60)
    with pytest.raises(ProofGenerationError):
        proofs.build_equality_proof(ALICE, ciphertext, 61, random_scalar())


def test_equality_proof_rejects_other_commitment():
    ciphertext, _ = elgamal.encrypt(ALICE.public, 60)
    proof = proofs.build_equality_proof(ALICE, ciphertext, 60, random_scalar())
    forged = replace(proof, commitment=elgamal.pedersen_commit(61, random_scalar()))
    assert not forged.verify()


# ---- range -------------------------------------------------------------------

@pytest.mark.parametrize("amount", [0, 1, 37, 255])
def test_range_proof(amount):
    proof = proofs.build_range_proof([(amount, random_scalar())], bit_length=8)
    assert proof.verify()
    assert len(bytes.fromhex(proof.hex())) == 8 * proofs.RANGE_BIT_PROOF_BYTES


def test_batched_range_proof_context():
    r1, r2 = random_scalar(), random_scalar()
    proof = proofs.build_range_proof([(3, r1), (9, r2)], bit_length=4)
    assert proof.verify()
    assert proof.kind == proofs.BATCHED_RANGE
    assert proof.context()["commitments"] == [
        proofs.encode(elgamal.pedersen_commit(3, r1)),
        proofs.encode(elgamal.pedersen_commit(9, r2)),
    ]
    assert proof.context()["bit_lengths"] == [4, 4]


def test_range_proof_out_of_range():
    with pytest.raises(ProofGenerationError):
        proofs.build_range_proof([(256, random_scalar())], bit_length=8)
    with pytest.raises(ProofGenerationError):
        proofs.build_range_proof([(-1, random_scalar())], bit_length=8)


def test_range_proof_detects_swapped_commitment():
    proof = proofs.build_range_proof([(5, random_scalar())], bit_length=4)
    forged = replace(proof, commitments=(elgamal.pedersen_commit(5, random_scalar()),))
    assert not forged.verify()


def test_range_proof_detects_tampered_bit():
    proof = proofs.build_range_proof([(5, random_scalar())], bit_length=4)
    bits = list(proof.bits[0])
    bits[2] = replace(bits[2], c0=(bits[2].c0 + 1) % n)
    assert not replace(proof, bits=(tuple(bits),)).verify()


def test_range_proof_with_mixed_bit_lengths():
    openings = [(0xFFFF, random_scalar()), (7, random_scalar()), (1000, random_scalar())]
    proof = proofs.build_range_proof(openings, bit_lengths=[16, 32, 64])
    assert proof.verify()
    assert proof.context()["bit_lengths"] == [16, 32, 64]
    assert len(bytes.fromhex(proof.hex())) == 112 * proofs.RANGE_BIT_PROOF_BYTES


def test_range_proof_bit_lengths_must_match_openings():
    with pytest.raises(ProofGenerationError):
        proofs.build_range_proof([(1, random_scalar())], bit_lengths=[8, 8])
    with pytest.raises(ProofGenerationError):
        proofs.build_range_proof([(1, random_scalar())], bit_lengths=[65])
