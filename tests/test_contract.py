from dataclasses import replace

import pytest

from confidential_balance import instructions, proofs
from confidential_balance.account import AccountLifecycle
from confidential_balance.bundle import BundleAssembler
from confidential_balance.errors import (
    AccountAlreadyExists,
    NotConfigurable,
    ProofVerificationFailed,
    SubmissionError,
    TransferRejected,
)
from confidential_balance.group import sha3_hex
from confidential_balance.keys import derive_key_material
from confidential_balance.ledger import (
    ACCOUNT_BASE_SIZE,
    CONFIDENTIAL_ACCOUNT_SIZE,
    ConfirmationHandle,
    ContractingLedger,
    derive_account_address,
)


def assemble(ledger, *ixs):
    return BundleAssembler().add(*ixs).assemble(ledger.latest_checkpoint())


def configure_bundle(ledger, owner, mint, reallocate=True):
    """Create (+ reallocate) + configure + proof for owner's associated account."""
    address = derive_account_address(owner.address, mint)
    keys = derive_key_material(owner, address)
    rent = ledger.rent_exempt_minimum(ACCOUNT_BASE_SIZE)
    ixs = [instructions.create_account(address, owner.address, mint, owner.address, rent)]
    if reallocate:
        extra = ledger.rent_exempt_minimum(CONFIDENTIAL_ACCOUNT_SIZE) - rent
        ixs.append(instructions.reallocate(address, owner.address, extra))
    ixs.append(instructions.configure_account(
        address, mint, owner.address, keys, 8, proofs.build_validity_proof(keys.encryption_keypair)
    ))
    return address, assemble(ledger, *ixs)


def with_field(bundle, index, **changes):
    wire = list(bundle.instructions)
    item = dict(wire[index])
    item.update(changes)
    wire[index] = item
    return replace(bundle, instructions=tuple(wire))


def test_seed_sets_genesis_checkpoint(ledger):
    assert ledger.latest_checkpoint() == sha3_hex("ZKT:checkpoint|genesis")


def test_connect_reuses_deployed_program(ledger, client, config):
    again = ContractingLedger.connect(config, client)
    assert again.latest_checkpoint() == ledger.latest_checkpoint()


def test_rent_exempt_minimum_grows_with_size(ledger):
    assert ledger.rent_exempt_minimum(CONFIDENTIAL_ACCOUNT_SIZE) > ledger.rent_exempt_minimum(ACCOUNT_BASE_SIZE) > 0


def test_associated_address_matches_ledger(contract, alice, mint):
    assert contract.derive_account_address(owner=alice.address, mint=mint) == derive_account_address(alice.address, mint)


def test_configure_bundle_lands(ledger, manager, alice, mint):
    address, bundle = configure_bundle(ledger, alice, mint)
    handle = ledger.submit(bundle, alice)
    assert isinstance(handle, ConfirmationHandle)
    assert handle.height == 2
    state = manager.get_state(address)
    assert state.lifecycle is AccountLifecycle.CONFIGURED
    assert state.space == CONFIDENTIAL_ACCOUNT_SIZE
    assert state.max_pending_credits == 8
    assert state.approved


def test_checkpoint_advances(ledger, alice, mint):
    before = ledger.latest_checkpoint()
    _, bundle = configure_bundle(ledger, alice, mint)
    handle = ledger.submit(bundle, alice)
    assert ledger.latest_checkpoint() == sha3_hex("ZKT:checkpoint|" + before + "|" + handle.signature)


def test_configure_without_reallocation(ledger, alice, mint):
    _, bundle = configure_bundle(ledger, alice, mint, reallocate=False)
    with pytest.raises(NotConfigurable):
        ledger.submit(bundle, alice)


def test_configure_before_create(ledger, alice, mint):
    _, bundle = configure_bundle(ledger, alice, mint)
    wire = list(bundle.instructions)
    # configure + its proof first, then create + reallocate
    reordered = [wire[2], wire[3], wire[0], wire[1]]
    with pytest.raises(NotConfigurable):
        ledger.submit(replace(bundle, instructions=tuple(reordered)), alice)


@pytest.mark.parametrize("offset", [0, -1, 2, 99])
def test_wrong_proof_offset_is_rejected(ledger, manager, alice, mint, offset):
    address, bundle = configure_bundle(ledger, alice, mint)
    assert bundle.instructions[2]["proof_offset"] == 1
    with pytest.raises(ProofVerificationFailed):
        ledger.submit(with_field(bundle, 2, proof_offset=offset), alice)
    assert manager.get_state(address).lifecycle is AccountLifecycle.UNINITIALIZED


def test_tampered_validity_proof(ledger, alice, mint):
    _, bundle = configure_bundle(ledger, alice, mint)
    blob = bundle.instructions[3]["proof"]
    flipped = blob[:-1] + ("0" if blob[-1] != "0" else "1")
    with pytest.raises(TransferRejected):
        ledger.submit(with_field(bundle, 3, proof=flipped), alice)


def test_bundle_is_atomic(ledger, manager, alice, bob, mint):
    address, bundle = configure_bundle(ledger, alice, mint)
    # a trailing instruction that fails rolls back the create and configure
    failing = instructions.approve_account(derive_account_address(bob.address, mint), alice.address)
    wire = bundle.wire_instructions() + [failing.to_wire()]
    with pytest.raises(NotConfigurable):
        ledger.submit(replace(bundle, instructions=tuple(wire)), alice)
    assert manager.get_state(address).lifecycle is AccountLifecycle.UNINITIALIZED


def test_create_twice(ledger, alice, mint):
    _, bundle = configure_bundle(ledger, alice, mint)
    ledger.submit(bundle, alice)
    _, again = configure_bundle(ledger, alice, mint)
    with pytest.raises(AccountAlreadyExists):
        ledger.submit(again, alice)


def test_unknown_checkpoint(ledger, alice, mint):
    _, bundle = configure_bundle(ledger, alice, mint)
    with pytest.raises(SubmissionError) as excinfo:
        ledger.submit(replace(bundle, checkpoint="0" * 64), alice)
    assert excinfo.value.ledger_code == "StaleCheckpoint"


def test_same_signature_is_processed_once(ledger, contract, alice, mint):
    _, bundle = configure_bundle(ledger, alice, mint)
    signature = alice.sign(bundle.message).hex()
    kwargs = dict(instructions=bundle.wire_instructions(), checkpoint=bundle.checkpoint, signature=signature)
    contract.process_bundle(signer=alice.address, **kwargs)
    with pytest.raises(AssertionError, match="AlreadyProcessed"):
        contract.process_bundle(signer=alice.address, **kwargs)
    assert contract.get_transaction(signature=signature)["instructions"] == 4


def test_fee_payer_must_be_the_authority(ledger, alice, bob, mint):
    _, bundle = configure_bundle(ledger, alice, mint)
    with pytest.raises(SubmissionError) as excinfo:
        ledger.submit(bundle, bob, signers=[alice])
    assert excinfo.value.ledger_code == "Unauthorized"


def test_missing_signature(ledger, alice, bob, mint):
    _, bundle = configure_bundle(ledger, alice, mint)
    with pytest.raises(SubmissionError):
        ledger.submit(bundle, bob)


class FlakyContract:
    """Lands the first bundle, then loses the response."""

    def __init__(self, contract):
        self.contract = contract
        self.calls = 0

    def __getattr__(self, name):
        return getattr(self.contract, name)

    def process_bundle(self, **kwargs):
        self.calls += 1
        result = self.contract.process_bundle(**kwargs)
        if self.calls == 1:
            raise ConnectionError("connection reset by peer")
        return result


def test_retry_after_lost_response_reports_landing(ledger, alice, mint):
    flaky = FlakyContract(ledger.contract)
    ledger.contract = flaky
    _, bundle = configure_bundle(ledger, alice, mint)
    handle = ledger.submit(bundle, alice)
    assert flaky.calls == 2
    assert handle.height == 2
    assert handle.signature == alice.sign(bundle.message).hex()


def test_transport_failure_exhausts_retries(ledger, alice, mint):
    class Down:
        def __getattr__(self, name):
            return getattr(ledger_contract, name)

        def process_bundle(self, **kwargs):
            raise TimeoutError("ledger unreachable")

    ledger_contract = ledger.contract
    ledger.contract = Down()
    _, bundle = configure_bundle(ledger, alice, mint)
    with pytest.raises(SubmissionError):
        ledger.submit(bundle, alice)


def test_simulate(ledger, alice, mint):
    _, bundle = configure_bundle(ledger, alice, mint)
    estimate = ledger.simulate(bundle)
    assert estimate.instructions == 4
    assert estimate.bytes == bundle.size
    assert estimate.compute_units > 0
