"""
Confidential account state machine.

    UNINITIALIZED -> CREATED -> CONFIGURED -> ACTIVE

The ledger record is the only state. ConfidentialAccountManager reads it,
checks the preconditions locally so callers get a typed error before paying
for a submission, and builds one atomic bundle per operation. The ledger
program enforces the same rules again; its rejections arrive through the
submission pipeline as the same error classes.

Key material is derived afresh from the owner's wallet on every call.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from confidential_balance import codec, elgamal, instructions, proofs
from confidential_balance.bundle import BundleAssembler
from confidential_balance.config import ClientConfig
from confidential_balance.elgamal import ZERO_CIPHERTEXT, Ciphertext
from confidential_balance.errors import (
    AccountAlreadyExists,
    AccountNotApproved,
    AccountNotFound,
    DecodeError,
    InsufficientPublicBalance,
    NotConfigurable,
    PendingCreditCounterExceeded,
    ProofGenerationError,
)
from confidential_balance.group import U64_MAX, element_from_hex, random_scalar, sha3_hex
from confidential_balance.keys import KeyMaterial, derive_key_material
from confidential_balance.ledger import (
    ACCOUNT_BASE_SIZE,
    CONFIDENTIAL_ACCOUNT_SIZE,
    ConfirmationHandle,
    Ledger,
    derive_account_address,
)

logger = logging.getLogger(__name__)


class AccountLifecycle(Enum):
    UNINITIALIZED = "uninitialized"
    CREATED = "created"
    CONFIGURED = "configured"
    ACTIVE = "active"


def snapshot_digest(pending: Ciphertext, available: Ciphertext, decryptable_available: str, counter: int) -> str:
    """Digest of the balances an apply was computed from."""
    return sha3_hex(
        "ZKT:snapshot|" + pending.hex() + "|" + available.hex() + "|" + decryptable_available + "|" + str(counter)
    )


@dataclass(frozen=True)
class AccountState:
    address: str
    lifecycle: AccountLifecycle
    owner: Optional[str] = None
    mint: Optional[str] = None
    public_balance: int = 0
    space: int = 0
    approved: bool = False
    pubkey: Optional[str] = None
    pending: Ciphertext = ZERO_CIPHERTEXT
    available: Ciphertext = ZERO_CIPHERTEXT
    decryptable_available: Optional[str] = None
    pending_counter: int = 0
    max_pending_credits: int = 0
    pending_notes: Tuple[dict, ...] = field(default_factory=tuple)

    @classmethod
    def from_record(cls, address: str, record: Optional[dict]) -> "AccountState":
        if record is None:
            return cls(address=address, lifecycle=AccountLifecycle.UNINITIALIZED)
        base = dict(
            address=address,
            owner=record["owner"],
            mint=record["mint"],
            public_balance=record["public_balance"],
            space=record["space"],
        )
        extension = record.get("extension")
        if extension is None:
            return cls(lifecycle=AccountLifecycle.CREATED, **base)

        pending = Ciphertext.from_hex(extension["pending"])
        available = Ciphertext.from_hex(extension["available"])
        credited = extension["pending_counter"] > 0 or pending != ZERO_CIPHERTEXT or available != ZERO_CIPHERTEXT
        return cls(
            lifecycle=AccountLifecycle.ACTIVE if credited else AccountLifecycle.CONFIGURED,
            approved=bool(extension["approved"]),
            pubkey=extension["pubkey"],
            pending=pending,
            available=available,
            decryptable_available=extension["decryptable_available"],
            pending_counter=extension["pending_counter"],
            max_pending_credits=extension["max_pending_credits"],
            pending_notes=tuple(extension["pending_notes"]),
            **base,
        )

    @property
    def configured(self) -> bool:
        return self.lifecycle in (AccountLifecycle.CONFIGURED, AccountLifecycle.ACTIVE)

    @property
    def snapshot_digest(self) -> str:
        return snapshot_digest(self.pending, self.available, self.decryptable_available, self.pending_counter)


@dataclass(frozen=True)
class Balances:
    public: int
    pending: int
    available: int


class ConfidentialAccountManager:
    def __init__(self, ledger: Ledger, config: Optional[ClientConfig] = None):
        self.ledger = ledger
        self.config = config or getattr(ledger, "config", None) or ClientConfig()

    # ---- Plumbing -----------------------------------------------------------

    def assembler(self) -> BundleAssembler:
        return BundleAssembler(self.config.max_bundle_bytes)

    def submit(self, assembler: BundleAssembler, fee_payer, signers=()) -> ConfirmationHandle:
        # checkpoint is fetched right before assembly; stale ones are rejected
        bundle = assembler.assemble(self.ledger.latest_checkpoint())
        return self.ledger.submit(bundle, fee_payer, signers)

    def key_material(self, owner, address: str) -> KeyMaterial:
        return derive_key_material(owner, address)

    def get_state(self, address: str) -> AccountState:
        return AccountState.from_record(address, self.ledger.get_account(address))

    def configured_state(self, address: str) -> AccountState:
        state = self.get_state(address)
        if not state.configured:
            raise NotConfigurable("account {} is {}".format(address, state.lifecycle.value))
        return state

    def mint_decimals(self, mint: str) -> int:
        record = self.ledger.get_mint(mint)
        if record is None:
            raise AccountNotFound("mint {}".format(mint))
        return record["decimals"]

    @staticmethod
    def check_amount(amount: int):
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0 or amount > U64_MAX:
            raise ValueError("amount must be a positive u64")

    # ---- Base bookkeeping ---------------------------------------------------

    def create_mint(self, authority, mint: str, decimals: Optional[int] = None, auto_approve: bool = True,
                    confidential_authority: Optional[str] = None) -> ConfirmationHandle:
        if self.ledger.get_mint(mint) is not None:
            raise AccountAlreadyExists("mint {}".format(mint))
        decimals = self.config.decimals if decimals is None else decimals
        ix = instructions.create_mint(
            mint, authority.address, decimals,
            auto_approve=auto_approve, confidential_authority=confidential_authority,
        )
        handle = self.submit(self.assembler().add(ix), authority)
        logger.info("Created mint %s (decimals=%d, auto_approve=%s)", mint, decimals, auto_approve)
        return handle

    def mint_to(self, authority, mint: str, address: str, amount: int) -> ConfirmationHandle:
        self.check_amount(amount)
        if self.ledger.get_account(address) is None:
            raise AccountNotFound("account {}".format(address))
        return self.submit(self.assembler().add(instructions.mint_to(mint, address, amount, authority.address)), authority)

    # ---- Create -------------------------------------------------------------

    def create_account(self, owner, mint: str, payer=None) -> str:
        """Create the owner's associated account with base storage only."""
        payer = payer or owner
        address = derive_account_address(owner.address, mint)
        if self.ledger.get_account(address) is not None:
            raise AccountAlreadyExists(address)
        rent = self.ledger.rent_exempt_minimum(ACCOUNT_BASE_SIZE)
        ix = instructions.create_account(address, owner.address, mint, payer.address, rent)
        self.submit(self.assembler().add(ix), payer)
        logger.info("Created account %s for %s", address, owner.address)
        return address

    def create_confidential_account(self, owner, mint: str, max_pending_credits: Optional[int] = None) -> str:
        """Create, reallocate and configure in one bundle."""
        address = derive_account_address(owner.address, mint)
        if self.ledger.get_account(address) is not None:
            raise AccountAlreadyExists(address)
        keys = self.key_material(owner, address)
        base_rent = self.ledger.rent_exempt_minimum(ACCOUNT_BASE_SIZE)
        extra_rent = self.ledger.rent_exempt_minimum(CONFIDENTIAL_ACCOUNT_SIZE) - base_rent

        assembler = self.assembler().add(
            instructions.create_account(address, owner.address, mint, owner.address, base_rent),
            instructions.reallocate(address, owner.address, extra_rent),
            self.configure_instruction(owner, address, mint, keys, max_pending_credits),
        )
        self.submit(assembler, owner)
        logger.info("Created confidential account %s for %s", address, owner.address)
        return address

    # ---- Configure ----------------------------------------------------------

    def configure_instruction(self, owner, address: str, mint: str, keys: KeyMaterial,
                              max_pending_credits: Optional[int] = None, proof=None) -> instructions.Instruction:
        if proof is None:
            proof = proofs.build_validity_proof(keys.encryption_keypair)
        limit = self.config.max_pending_credits if max_pending_credits is None else max_pending_credits
        return instructions.configure_account(address, mint, owner.address, keys, limit, proof)

    def reallocate(self, owner, address: str) -> ConfirmationHandle:
        state = self.get_state(address)
        if state.lifecycle is AccountLifecycle.UNINITIALIZED:
            raise AccountNotFound(address)
        return self.submit(self.assembler().add(self.reallocate_instruction(owner, state)), owner)

    def reallocate_instruction(self, owner, state: AccountState) -> instructions.Instruction:
        rent = max(self.ledger.rent_exempt_minimum(CONFIDENTIAL_ACCOUNT_SIZE) - self.ledger.rent_exempt_minimum(state.space), 0)
        return instructions.reallocate(state.address, owner.address, rent)

    def configure_account(self, owner, address: str, max_pending_credits: Optional[int] = None,
                          reallocate: bool = True, proof=None) -> ConfirmationHandle:
        """
        Attach the owner's encryption key, an encrypted zero balance and the
        pending credit limit to a created account.

        With reallocate=True a missing confidential extension is allocated in
        the same bundle; otherwise an account without the space is refused.
        """
        state = self.get_state(address)
        if state.lifecycle is not AccountLifecycle.CREATED:
            raise NotConfigurable("account {} is {}".format(address, state.lifecycle.value))
        needs_space = state.space < CONFIDENTIAL_ACCOUNT_SIZE
        if needs_space and not reallocate:
            raise NotConfigurable("account {} lacks space for the confidential extension".format(address))

        keys = self.key_material(owner, address)
        assembler = self.assembler()
        if needs_space:
            assembler.add(self.reallocate_instruction(owner, state))
        assembler.add(self.configure_instruction(owner, address, state.mint, keys, max_pending_credits, proof))
        handle = self.submit(assembler, owner)
        logger.info("Configured account %s", address)
        return handle

    def approve_account(self, authority, address: str) -> ConfirmationHandle:
        self.configured_state(address)
        return self.submit(self.assembler().add(instructions.approve_account(address, authority.address)), authority)

    # ---- Deposit ------------------------------------------------------------

    def deposit(self, owner, address: str, amount: int, source: Optional[str] = None) -> ConfirmationHandle:
        """Move amount from a public balance owned by `owner` into the account's pending slot."""
        self.check_amount(amount)
        state = self.configured_state(address)
        if not state.approved:
            raise AccountNotApproved(address)
        if state.pending_counter + 1 > state.max_pending_credits:
            raise PendingCreditCounterExceeded(
                "account {} holds {} pending credits".format(address, state.pending_counter)
            )
        funding = state if source is None or source == address else self.get_state(source)
        if funding.lifecycle is AccountLifecycle.UNINITIALIZED:
            raise AccountNotFound(funding.address)
        if funding.public_balance < amount:
            raise InsufficientPublicBalance("{} < {}".format(funding.public_balance, amount))

        ix = instructions.deposit(address, amount, self.mint_decimals(state.mint), owner.address, source=funding.address)
        handle = self.submit(self.assembler().add(ix), owner)
        logger.info("Deposited into %s (credit %d/%d)", address, state.pending_counter + 1, state.max_pending_credits)
        return handle

    # ---- Balances -----------------------------------------------------------

    def decrypt_pending(self, state: AccountState, keys: KeyMaterial) -> int:
        total = 0
        for note in state.pending_notes:
            if "amount" in note:
                total += note["amount"]
            else:
                total += self.decrypt_transfer_credit(note, keys)
        return elgamal.decrypt_with_hint(keys.encryption_keypair, state.pending, total)

    def decrypt_transfer_credit(self, note: dict, keys: KeyMaterial) -> int:
        keypair = keys.encryption_keypair
        lo = Ciphertext.from_hex(note["lo"])
        hi = Ciphertext.from_hex(note["hi"])
        hint = elgamal.open_note(keypair, lo.handle, note["note"])
        amount = elgamal.decrypt_split(keypair, lo, hi, hint)
        if amount != hint:
            logger.warning("Transfer note does not match its ciphertext; recovered the amount directly")
        return amount

    def decrypt_available(self, state: AccountState, keys: KeyMaterial) -> int:
        candidate = codec.decrypt(keys.symmetric_key, state.decryptable_available)
        return elgamal.decrypt_with_hint(keys.encryption_keypair, state.available, candidate)

    def decrypt_balances(self, owner, address: str, state: Optional[AccountState] = None) -> Balances:
        state = state or self.configured_state(address)
        keys = self.key_material(owner, address)
        if keys.encryption_keypair.public_hex != state.pubkey:
            raise DecodeError("key material does not belong to account {}".format(address))
        return Balances(
            public=state.public_balance,
            pending=self.decrypt_pending(state, keys),
            available=self.decrypt_available(state, keys),
        )

    # ---- Apply --------------------------------------------------------------

    def apply_pending_balance(self, owner, address: str, state: Optional[AccountState] = None) -> ConfirmationHandle:
        """
        Merge pending into available.

        The new decryptable available balance is computed from the state
        snapshot; if pending or available changes before the bundle lands
        the ledger refuses it with StalePendingBalance. Pass `state` to apply
        a specific snapshot.
        """
        state = state or self.configured_state(address)
        balances = self.decrypt_balances(owner, address, state)
        total = balances.available + balances.pending
        if total > U64_MAX:
            raise DecodeError("applied balance would exceed a u64")
        keys = self.key_material(owner, address)
        ix = instructions.apply_pending_balance(
            address, owner.address, state.snapshot_digest, codec.encrypt(keys.symmetric_key, total)
        )
        handle = self.submit(self.assembler().add(ix), owner)
        logger.info("Applied %d pending credits on %s", state.pending_counter, address)
        return handle

    # ---- Transfer -----------------------------------------------------------

    def confidential_transfer(self, owner, address: str, destination: str, amount: int) -> ConfirmationHandle:
        self.check_amount(amount)
        if amount >= 1 << elgamal.TRANSFER_AMOUNT_BITS:
            raise ProofGenerationError("transfer amount must be below 2^{}".format(elgamal.TRANSFER_AMOUNT_BITS))
        if address == destination:
            raise ValueError("cannot transfer to the same account")
        source = self.configured_state(address)
        target = self.configured_state(destination)
        if not source.approved:
            raise AccountNotApproved(address)
        if not target.approved:
            raise AccountNotApproved(destination)
        if source.mint != target.mint:
            raise ValueError("{} and {} belong to different mints".format(address, destination))
        if target.pending_counter + 1 > target.max_pending_credits:
            raise PendingCreditCounterExceeded(
                "account {} holds {} pending credits".format(destination, target.pending_counter)
            )

        keys = self.key_material(owner, address)
        keypair = keys.encryption_keypair
        if keypair.public_hex != source.pubkey:
            raise ProofGenerationError("key material does not belong to account {}".format(address))
        try:
            available = self.decrypt_available(source, keys)
        except DecodeError as e:
            raise ProofGenerationError("cannot read the available balance of {}".format(address)) from e
        if amount > available:
            raise ProofGenerationError("amount exceeds the available balance")
        remaining = available - amount

        destination_pubkey = element_from_hex(target.pubkey)
        lo_amount, hi_amount = elgamal.split_amount(amount)
        lo, lo_opening = elgamal.encrypt_grouped(keypair.public, destination_pubkey, lo_amount)
        hi, hi_opening = elgamal.encrypt_grouped(keypair.public, destination_pubkey, hi_amount)
        new_available = source.available - elgamal.join_split(lo, hi).source_ciphertext()
        remaining_opening = random_scalar()

        equality = proofs.build_equality_proof(keypair, new_available, remaining, remaining_opening)
        lo_validity = proofs.build_grouped_ciphertext_validity_proof(
            keypair.public, destination_pubkey, lo, lo_amount, lo_opening
        )
        hi_validity = proofs.build_grouped_ciphertext_validity_proof(
            keypair.public, destination_pubkey, hi, hi_amount, hi_opening
        )
        ranges = proofs.build_range_proof(
            [(lo_amount, lo_opening), (hi_amount, hi_opening), (remaining, remaining_opening)],
            bit_lengths=[elgamal.LO_BITS, elgamal.HI_BITS, proofs.AMOUNT_BIT_LENGTH],
        )

        ix = instructions.transfer(
            address, destination, owner.address, lo, hi,
            note=elgamal.seal_note(amount, lo_opening),
            new_decryptable_available=codec.encrypt(keys.symmetric_key, remaining),
            equality_proof=equality,
            lo_validity_proof=lo_validity,
            hi_validity_proof=hi_validity,
            range_proof=ranges,
        )
        handle = self.submit(self.assembler().add(ix), owner)
        logger.info("Confidential transfer %s -> %s confirmed at height %s", address, destination, handle.height)
        return handle
