"""
Error taxonomy for the confidential balance client.

Ledger-side rejections arrive as assertion messages of the form
``Code: detail``; ``from_ledger_message`` maps the code onto one of the
classes below.
"""


class ConfidentialBalanceError(Exception):
    """Base class for every error raised by this package."""

    code = "ConfidentialBalanceError"


class KeyDerivationError(ConfidentialBalanceError):
    code = "KeyDerivationError"


class ProofGenerationError(ConfidentialBalanceError):
    code = "ProofGenerationError"


class DecodeError(ConfidentialBalanceError):
    code = "DecodeError"


class AccountAlreadyExists(ConfidentialBalanceError):
    code = "AccountAlreadyExists"


class AccountNotFound(ConfidentialBalanceError):
    code = "AccountNotFound"


class NotConfigurable(ConfidentialBalanceError):
    code = "NotConfigurable"


class AccountNotApproved(ConfidentialBalanceError):
    code = "AccountNotApproved"


class InsufficientPublicBalance(ConfidentialBalanceError):
    code = "InsufficientPublicBalance"


class PendingCreditCounterExceeded(ConfidentialBalanceError):
    """Deposit or incoming transfer refused; apply the pending balance first."""

    code = "PendingCreditCounterExceeded"


class StalePendingBalance(ConfidentialBalanceError):
    """ApplyPendingBalance computed from an outdated snapshot; refresh and retry."""

    code = "StalePendingBalance"


class BundleTooLarge(ConfidentialBalanceError):
    code = "BundleTooLarge"


class SubmissionError(ConfidentialBalanceError):
    """Network or ledger failure outside the confidential-balance rules."""

    code = "SubmissionError"


class TransferRejected(ConfidentialBalanceError):
    """The ledger refused a proof-carrying instruction. Regenerate, never resend."""

    code = "TransferRejected"


class ProofVerificationFailed(TransferRejected):
    code = "ProofVerificationFailed"


LEDGER_CODES = {
    cls.code: cls
    for cls in (
        AccountAlreadyExists,
        AccountNotFound,
        NotConfigurable,
        AccountNotApproved,
        InsufficientPublicBalance,
        PendingCreditCounterExceeded,
        StalePendingBalance,
        TransferRejected,
        ProofVerificationFailed,
    )
}


def from_ledger_message(message: str) -> ConfidentialBalanceError:
    code, _, detail = str(message).partition(":")
    code = code.strip()
    cls = LEDGER_CODES.get(code)
    if cls is None:
        err = SubmissionError(str(message))
    else:
        err = cls(detail.strip() or code)
    err.ledger_code = code
    return err
