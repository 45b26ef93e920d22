"""Lock funds at, and unlock funds from, Plutus script addresses."""

from .codec import StructuredValue, ValueKind, describe_datum, encode_value
from .controller import CustodyFlowController, FlowPhase, FlowState
from .errors import (
    CustodyError,
    InsufficientFunds,
    InvalidAmount,
    InvalidDatum,
    InvalidProgram,
    InvalidRedeemer,
    MalformedValue,
    OperationInProgress,
    PreconditionError,
    ProviderUnavailable,
    RedeemerMissing,
    ScriptValidationFailed,
    StaleFund,
    SubmissionFailed,
    UnknownFund,
    WalletNotConnected,
    WalletRejected,
)
from .inventory import UTxOInventory
from .model import (
    Asset,
    Fund,
    FundReference,
    FundSet,
    OperationKind,
    OperationStatus,
    PendingOperation,
    ResolvedScript,
    ScriptVersion,
)
from .script_resolver import ScriptAddressResolver, encode_program, load_program
from .tx_builder import LockTransactionBuilder, UnlockTransactionBuilder, parse_lovelace

__all__ = [
    "Asset",
    "CustodyError",
    "CustodyFlowController",
    "FlowPhase",
    "FlowState",
    "Fund",
    "FundReference",
    "FundSet",
    "InsufficientFunds",
    "InvalidAmount",
    "InvalidDatum",
    "InvalidProgram",
    "InvalidRedeemer",
    "LockTransactionBuilder",
    "MalformedValue",
    "OperationInProgress",
    "OperationKind",
    "OperationStatus",
    "PendingOperation",
    "PreconditionError",
    "ProviderUnavailable",
    "RedeemerMissing",
    "ResolvedScript",
    "ScriptAddressResolver",
    "ScriptValidationFailed",
    "ScriptVersion",
    "StaleFund",
    "StructuredValue",
    "SubmissionFailed",
    "UTxOInventory",
    "UnknownFund",
    "UnlockTransactionBuilder",
    "ValueKind",
    "WalletNotConnected",
    "WalletRejected",
    "describe_datum",
    "encode_program",
    "encode_value",
    "load_program",
    "parse_lovelace",
]
