"""Error taxonomy for the script custody flow.

Every failure the flow can report is a :class:`CustodyError`.  The
``category`` attribute tells callers how to react: input errors are fixed by
the user, provider and wallet errors are retried by the user, and staleness
errors require refreshing the inventory before any retry.
"""

from __future__ import annotations

INPUT = "input"
PROVIDER = "provider"
WALLET = "wallet"
STALENESS = "staleness"
PRECONDITION = "precondition"


class CustodyError(RuntimeError):
    """Base class for all recoverable custody flow failures."""

    category = PROVIDER
    retryable = True

    @property
    def kind(self) -> str:
        return type(self).__name__


# Input validation -----------------------------------------------------------


class InvalidProgram(CustodyError):
    """Raised when a script program cannot be encoded."""

    category = INPUT
    retryable = False


class MalformedValue(CustodyError):
    """Raised when a datum or redeemer cannot be translated to on-chain data."""

    category = INPUT
    retryable = False


class InvalidDatum(MalformedValue):
    """Raised when the lock datum is empty or malformed."""


class InvalidRedeemer(MalformedValue):
    """Raised when the unlock redeemer is malformed."""


class RedeemerMissing(CustodyError):
    category = INPUT
    retryable = False


class InvalidAmount(CustodyError):
    """Raised when a lock amount is not digits or is under the minimum deposit."""

    category = INPUT
    retryable = False


# Provider -------------------------------------------------------------------


class ProviderUnavailable(CustodyError):
    """Raised when the data provider cannot return the funds at an address."""


class SubmissionFailed(CustodyError):
    """Raised when the provider rejects a signed transaction."""


class InsufficientFunds(CustodyError):
    """Raised when the wallet cannot cover the transaction."""


class ScriptValidationFailed(CustodyError):
    """Raised when the script rejects the spend during evaluation."""


# Wallet ---------------------------------------------------------------------


class WalletNotConnected(CustodyError):
    category = WALLET


class WalletRejected(CustodyError):
    """Raised when the wallet declines to sign."""

    category = WALLET


# Staleness ------------------------------------------------------------------


class StaleFund(CustodyError):
    """Raised when the referenced fund was already spent on-chain.

    Callers should refresh the inventory and pick a fund again rather than
    resubmitting the identical transaction.
    """

    category = STALENESS


# Preconditions --------------------------------------------------------------


class PreconditionError(CustodyError):
    """Raised when an operation is attempted from a state that does not allow it."""

    category = PRECONDITION
    retryable = False


class OperationInProgress(PreconditionError):
    """Raised when a lock or unlock is requested while another is in flight."""

    retryable = True


class UnknownFund(PreconditionError):
    """Raised when a fund reference is not part of the current inventory."""

    retryable = True
