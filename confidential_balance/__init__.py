from confidential_balance.account import AccountLifecycle, AccountState, Balances, ConfidentialAccountManager
from confidential_balance.bundle import Bundle, BundleAssembler
from confidential_balance.config import ClientConfig, LogConfig, setup_logging
from confidential_balance.errors import (
    AccountAlreadyExists,
    AccountNotApproved,
    AccountNotFound,
    BundleTooLarge,
    ConfidentialBalanceError,
    DecodeError,
    InsufficientPublicBalance,
    KeyDerivationError,
    NotConfigurable,
    PendingCreditCounterExceeded,
    ProofGenerationError,
    ProofVerificationFailed,
    StalePendingBalance,
    SubmissionError,
    TransferRejected,
)
from confidential_balance.keys import KeyMaterial, Wallet, derive_key_material
from confidential_balance.ledger import (
    ConfirmationHandle,
    ContractingLedger,
    Ledger,
    ResourceEstimate,
    derive_account_address,
)

__version__ = "0.1.0"
