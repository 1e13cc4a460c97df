"""
Transaction submission pipeline and base token bookkeeping.

ContractingLedger drives the confidential token program deployed on a
contracting client. The contracting runtime authenticates one signer per
call (ctx.caller), so the fee payer must also be the authority of every
instruction in the bundle; other signers only contribute signatures over the
bundle message.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Protocol

from contracting.client import ContractingClient

from confidential_balance.bundle import Bundle
from confidential_balance.config import ClientConfig
from confidential_balance.errors import SubmissionError, from_ledger_message
from confidential_balance.group import sha3_hex

logger = logging.getLogger(__name__)

CONTRACT_PATH = Path(__file__).resolve().parent / "contracts" / "con_confidential_token.py"

# Mirrors of the ledger program's sizing constants
ACCOUNT_BASE_SIZE = 165
CONFIDENTIAL_EXTENSION_SIZE = 299
CONFIDENTIAL_ACCOUNT_SIZE = ACCOUNT_BASE_SIZE + CONFIDENTIAL_EXTENSION_SIZE

COMPUTE_UNITS = {
    "create_mint": 3000,
    "mint_to": 4500,
    "create_account": 6000,
    "reallocate": 3500,
    "configure_account": 6000,
    "approve_account": 2000,
    "deposit": 8000,
    "apply_pending_balance": 9000,
    "transfer": 30000,
    "verify_pubkey_validity": 2600,
    "verify_grouped_ciphertext_validity": 6400,
    "verify_ciphertext_commitment_equality": 6400,
    "verify_batched_range_proof": 210000,
}
DEFAULT_COMPUTE_UNITS = 5000

TRANSPORT_ERRORS = (ConnectionError, TimeoutError)


def derive_account_address(owner: str, mint: str) -> str:
    """Associated confidential-token account of owner for mint."""
    return sha3_hex("ZKT:associated|" + owner + "|" + mint)


@dataclass(frozen=True)
class ConfirmationHandle:
    signature: str
    height: int


@dataclass(frozen=True)
class ResourceEstimate:
    instructions: int
    bytes: int
    compute_units: int


class Ledger(Protocol):
    """What the account manager needs from a ledger client."""

    def latest_checkpoint(self) -> str: ...

    def get_account(self, address: str) -> Optional[dict]: ...

    def get_mint(self, address: str) -> Optional[dict]: ...

    def rent_exempt_minimum(self, size: int) -> int: ...

    def simulate(self, bundle: Bundle) -> ResourceEstimate: ...

    def submit(self, bundle: Bundle, fee_payer, signers: Iterable = ()) -> ConfirmationHandle: ...


class ContractingLedger:
    def __init__(self, client, config: Optional[ClientConfig] = None):
        self.client = client
        self.config = config or ClientConfig()
        self.contract = client.get_contract(self.config.contract_name)
        if self.contract is None:
            raise SubmissionError("contract {} is not deployed".format(self.config.contract_name))

    @classmethod
    def deploy(cls, client, config: Optional[ClientConfig] = None, code: Optional[str] = None) -> "ContractingLedger":
        config = config or ClientConfig()
        if code is None:
            code = CONTRACT_PATH.read_text()
        client.submit(code, name=config.contract_name, owner=None)
        logger.info("Deployed %s", config.contract_name)
        return cls(client, config)

    @classmethod
    def connect(cls, config: Optional[ClientConfig] = None, client=None) -> "ContractingLedger":
        """Attach to the token program, deploying it if the client lacks it."""
        config = config or ClientConfig()
        client = client or ContractingClient(metering=False)
        if client.get_contract(config.contract_name) is None:
            return cls.deploy(client, config)
        return cls(client, config)

    # ---- Queries ------------------------------------------------------------

    def latest_checkpoint(self) -> str:
        return self.contract.get_checkpoint()

    def get_account(self, address: str) -> Optional[dict]:
        return self.contract.get_account(address=address)

    def get_mint(self, address: str) -> Optional[dict]:
        return self.contract.get_mint(address=address)

    def get_transaction(self, signature: str) -> Optional[dict]:
        return self.contract.get_transaction(signature=signature)

    def rent_exempt_minimum(self, size: int) -> int:
        return self.contract.rent_exempt_minimum(size=size)

    # ---- Submission ---------------------------------------------------------

    def simulate(self, bundle: Bundle) -> ResourceEstimate:
        units = sum(COMPUTE_UNITS.get(kind, DEFAULT_COMPUTE_UNITS) for kind in bundle.kinds())
        return ResourceEstimate(instructions=len(bundle.instructions), bytes=bundle.size, compute_units=units)

    def sign(self, bundle: Bundle, fee_payer, signers: Iterable = ()) -> dict:
        wallets = [fee_payer] + [s for s in signers if s.address != fee_payer.address]
        present = {w.address for w in wallets}
        missing = [address for address in bundle.required_signers if address not in present]
        if missing:
            raise SubmissionError("bundle requires signatures from {}".format(", ".join(missing)))
        return {w.address: w.sign(bundle.message).hex() for w in wallets}

    def submit(self, bundle: Bundle, fee_payer, signers: Iterable = ()) -> ConfirmationHandle:
        """
        Sign and submit. Transport failures are retried with the same signed
        bundle; the ledger refuses a signature it has already processed, so a
        retry of a bundle that did land reports that landing.
        """
        signatures = self.sign(bundle, fee_payer, signers)
        tx_id = signatures[fee_payer.address]
        attempt = 0
        while True:
            try:
                result = self.contract.process_bundle(
                    instructions=bundle.wire_instructions(),
                    checkpoint=bundle.checkpoint,
                    signature=tx_id,
                    signer=fee_payer.address,
                )
            except AssertionError as e:
                err = from_ledger_message(e)
                if attempt > 0 and err.ledger_code == "AlreadyProcessed":
                    logger.info("Bundle %s landed on an earlier attempt", tx_id[:16])
                    record = self.get_transaction(tx_id)
                    return ConfirmationHandle(signature=tx_id, height=record["height"])
                logger.warning("Bundle %s rejected: %s", tx_id[:16], e)
                raise err from e
            except TRANSPORT_ERRORS as e:
                if attempt >= self.config.submit_retries:
                    raise SubmissionError("submission failed after {} attempts: {}".format(attempt + 1, e)) from e
                attempt += 1
                logger.warning("Submission of %s failed (%s), retry %d", tx_id[:16], e, attempt)
                continue

            logger.info("Bundle %s confirmed at height %s (%s)", tx_id[:16], result["height"], ", ".join(bundle.kinds()))
            return ConfirmationHandle(signature=result["signature"], height=result["height"])
