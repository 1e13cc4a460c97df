import pytest

from confidential_balance import instructions, proofs
from confidential_balance.bundle import BundleAssembler, canonical_json
from confidential_balance.errors import BundleTooLarge
from confidential_balance.keys import Wallet, derive_key_material

OWNER = Wallet.from_seed(b"\x01" * 32)
ACCOUNT = "c" * 64
MINT = "con_zkt_mint"


def configure_ix(address=ACCOUNT):
    keys = derive_key_material(OWNER, address)
    proof = proofs.build_validity_proof(keys.encryption_keypair)
    return instructions.configure_account(address, MINT, OWNER.address, keys, 16, proof)


def test_order_is_preserved_and_proof_follows_consumer():
    bundle = BundleAssembler().add(
        instructions.create_account(ACCOUNT, OWNER.address, MINT, OWNER.address, 100),
        instructions.reallocate(ACCOUNT, OWNER.address, 100),
        configure_ix(),
    ).assemble("checkpoint")
    assert bundle.kinds() == ["create_account", "reallocate", "configure_account", proofs.PUBKEY_VALIDITY]


def test_offset_points_at_sibling_proof():
    configure = configure_ix()
    assembler = BundleAssembler().add(instructions.reallocate(ACCOUNT, OWNER.address, 100), configure)
    wire = assembler.assemble("checkpoint").wire_instructions()
    index = 1
    assert wire[index]["proof_offset"] == 1
    sibling = wire[index + wire[index]["proof_offset"]]
    assert sibling["kind"] == proofs.PUBKEY_VALIDITY
    assert sibling["context"]["pubkey"] == wire[index]["pubkey"]
    assert configure.proofs["proof_offset"].bundle_position == 2


def test_transfer_slots_resolve_to_their_own_proofs():
    ix = instructions.Instruction(
        kind="transfer",
        data={"account": ACCOUNT},
        authority=OWNER.address,
        proofs={
            "equality_proof_offset": instructions.ProofLocation(FakeProof("verify_ciphertext_commitment_equality")),
            "lo_validity_proof_offset": instructions.ProofLocation(FakeProof("verify_grouped_ciphertext_validity")),
            "hi_validity_proof_offset": instructions.ProofLocation(FakeProof("verify_grouped_ciphertext_validity")),
            "range_proof_offset": instructions.ProofLocation(FakeProof("verify_batched_range_proof")),
        },
    )
    wire = BundleAssembler().add(ix).assemble("checkpoint").wire_instructions()
    assert len(wire) == 5
    assert wire[wire[0]["equality_proof_offset"]]["kind"] == "verify_ciphertext_commitment_equality"
    assert wire[wire[0]["lo_validity_proof_offset"]]["kind"] == "verify_grouped_ciphertext_validity"
    assert wire[wire[0]["hi_validity_proof_offset"]]["kind"] == "verify_grouped_ciphertext_validity"
    assert wire[0]["lo_validity_proof_offset"] != wire[0]["hi_validity_proof_offset"]
    assert wire[wire[0]["range_proof_offset"]]["kind"] == "verify_batched_range_proof"


class FakeProof:
    def __init__(self, kind):
        self.kind = kind

    def context(self):
        return {}

    def hex(self):
        return "00"


def test_required_signers_are_collected_once():
    other = Wallet.from_seed(b"\x02" * 32)
    bundle = BundleAssembler().add(
        instructions.approve_account(ACCOUNT, other.address),
        instructions.reallocate(ACCOUNT, OWNER.address, 0),
        instructions.approve_account("d" * 64, other.address),
    ).assemble("checkpoint")
    assert bundle.required_signers == (other.address, OWNER.address)


def test_message_is_canonical():
    bundle = BundleAssembler().add(instructions.approve_account(ACCOUNT, OWNER.address)).assemble("cp")
    assert bundle.message == canonical_json({"checkpoint": "cp", "instructions": bundle.wire_instructions()})
    assert bundle.size == len(bundle.message)


def test_empty_bundle():
    with pytest.raises(ValueError):
        BundleAssembler().assemble("checkpoint")


def test_too_large():
    assembler = BundleAssembler(max_bundle_bytes=1024)
    assembler.add(configure_ix(), configure_ix("e" * 64), configure_ix("f" * 64))
    with pytest.raises(BundleTooLarge):
        assembler.assemble("checkpoint")


def test_unplaced_proof_is_an_error():
    configure = configure_ix()
    assembler = BundleAssembler()
    assembler.entries.append(configure)
    with pytest.raises(ValueError):
        assembler.resolve()
