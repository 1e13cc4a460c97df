import hashlib
from pathlib import Path

import contracting
import pytest
from contracting.client import ContractingClient
from contracting.compilation import whitelists

from confidential_balance.account import ConfidentialAccountManager
from confidential_balance.config import ClientConfig
from confidential_balance.keys import Wallet
from confidential_balance.ledger import ContractingLedger

SUBMISSION_PATH = (
    Path(contracting.__file__).resolve().parent / "contracts" / "submission.s.py"
)

MINT = "con_zkt_mint"


@pytest.fixture(scope="session", autouse=True)
def enable_sha3_and_whitelist():
    whitelists.ALLOWED_BUILTINS.update({"hashlib", "decimal"})

    if not hasattr(hashlib, "sha3"):
        def _sha3(data):
            if isinstance(data, str):
                data = data.encode("utf-8")
            return hashlib.sha3_256(data).hexdigest()

        setattr(hashlib, "sha3", _sha3)


@pytest.fixture
def client():
    client = ContractingClient(signer="operator", metering=False)
    client.flush()
    client.set_submission_contract(str(SUBMISSION_PATH))
    return client


@pytest.fixture
def config():
    return ClientConfig(submit_retries=1)


@pytest.fixture
def ledger(client, config):
    return ContractingLedger.deploy(client, config)


@pytest.fixture
def contract(ledger):
    return ledger.contract


@pytest.fixture
def manager(ledger, config):
    return ConfidentialAccountManager(ledger, config)


def wallet(name: str) -> Wallet:
    return Wallet.from_seed(hashlib.sha256(name.encode()).digest())


@pytest.fixture
def authority():
    return wallet("mint-authority")


@pytest.fixture
def alice():
    return wallet("alice")


@pytest.fixture
def bob():
    return wallet("bob")


@pytest.fixture
def mint(manager, authority):
    manager.create_mint(authority, MINT, decimals=9)
    return MINT


@pytest.fixture
def funded(manager, authority, mint, alice):
    """Alice's configured confidential account holding 1000 public units."""
    address = manager.create_confidential_account(alice, mint)
    manager.mint_to(authority, mint, address, 1000)
    return address
