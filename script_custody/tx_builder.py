"""Transaction builders for locking funds at, and unlocking funds from, a script."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict

import requests
from blockfrost import ApiError
from pycardano import (
    Address,
    DatumHash,
    RawCBOR,
    Redeemer,
    Transaction,
    TransactionBuilder,
    TransactionId,
    TransactionInput,
    TransactionOutput,
    UTxO,
    Value,
    VerificationKeyHash,
)
from pycardano.exception import (
    InsufficientUTxOBalanceException,
    PyCardanoException,
    TransactionFailedException,
    UTxOSelectionException,
)

from .codec import StructuredValue
from .config import MIN_DEPOSIT_LOVELACE
from .errors import (
    InsufficientFunds,
    InvalidAmount,
    InvalidDatum,
    InvalidRedeemer,
    MalformedValue,
    PreconditionError,
    RedeemerMissing,
    ScriptValidationFailed,
    StaleFund,
    SubmissionFailed,
    UnknownFund,
    WalletNotConnected,
)
from .model import LOVELACE, Fund, ResolvedScript
from .provider import (
    ProviderHTTPError,
    ProviderTransportError,
    format_provider_hint,
    is_stale_input_error,
)
from .wallet import WalletSession, payment_key_hash

logger = logging.getLogger(__name__)

_DIGITS = re.compile(r"[0-9]+")
POLICY_ID_HEX_LENGTH = 56


def parse_lovelace(amount: str, min_deposit: int = MIN_DEPOSIT_LOVELACE) -> int:
    """Validate a lock amount entered as text and return it in lovelace."""

    if not isinstance(amount, str) or not amount:
        raise InvalidAmount("Enter the amount to lock in lovelace.")
    if not _DIGITS.fullmatch(amount):
        raise InvalidAmount("Must be a Lovelace amount (numbers only).")
    lovelace = int(amount)
    if lovelace < min_deposit:
        raise InvalidAmount(
            f"Amount must be greater than or equal to {min_deposit:,} lovelace."
        )
    return lovelace


def fund_to_utxo(fund: Fund) -> UTxO:
    """Rebuild the pycardano UTxO for a fund snapshot."""

    multi_asset: Dict[bytes, Dict[bytes, int]] = {}
    for asset in fund.assets:
        if asset.unit == LOVELACE:
            continue
        policy = bytes.fromhex(asset.unit[:POLICY_ID_HEX_LENGTH])
        name = bytes.fromhex(asset.unit[POLICY_ID_HEX_LENGTH:])
        tokens = multi_asset.setdefault(policy, {})
        tokens[name] = tokens.get(name, 0) + asset.quantity

    amount: Any = fund.lovelace
    if multi_asset:
        amount = Value.from_primitive([fund.lovelace, multi_asset])

    output = TransactionOutput(
        address=Address.from_primitive(fund.address),
        amount=amount,
        datum_hash=DatumHash(bytes.fromhex(fund.datum_hash))
        if fund.datum_hash and fund.attached_data is None
        else None,
        datum=RawCBOR(fund.attached_data) if fund.attached_data is not None else None,
    )
    tx_input = TransactionInput(
        TransactionId(bytes.fromhex(fund.reference.tx_hash)), fund.reference.output_index
    )
    return UTxO(tx_input, output)


class _ScriptTransactionBuilder:
    """Shared build, sign and submit steps for script transactions."""

    def __init__(self, context: Any, wallet: WalletSession, provider: Any) -> None:
        self.context = context
        self.wallet = wallet
        self.provider = provider

    def _change_address(self) -> Address:
        if not getattr(self.wallet, "connected", False):
            raise WalletNotConnected("Connect your wallet to continue.")
        return Address.from_primitive(self.wallet.get_change_address())

    def _build(self, builder: TransactionBuilder, change_address: Address) -> Transaction:
        try:
            body = builder.build(change_address=change_address)
        except (InsufficientUTxOBalanceException, UTxOSelectionException) as exc:
            logger.warning("Wallet cannot fund the transaction: %s", exc)
            raise InsufficientFunds(
                "The wallet does not hold enough ADA to cover the amount, fees and collateral."
            ) from exc
        except TransactionFailedException as exc:
            if is_stale_input_error(str(exc)):
                raise StaleFund(
                    "The selected UTxO has already been spent. Reload the script UTxOs and retry."
                ) from exc
            raise ScriptValidationFailed(f"The script rejected the transaction: {exc}") from exc
        except (ApiError, requests.RequestException) as exc:
            logger.error("Provider failed while building the transaction: %s", exc)
            raise SubmissionFailed(f"Could not build the transaction: {exc}") from exc
        except PyCardanoException as exc:
            raise SubmissionFailed(f"Could not build the transaction: {exc}") from exc
        return Transaction(body, builder.build_witness_set())

    def _sign_and_submit(self, tx: Transaction, *, spends_fund: bool) -> str:
        # signing happens strictly before submission; a refusal raises WalletRejected
        signed = self.wallet.sign_transaction(tx)
        payload = bytes.fromhex(signed.to_cbor_hex())
        try:
            tx_hash = self.provider.submit_transaction(payload)
        except ProviderHTTPError as exc:
            hint = format_provider_hint(exc)
            if spends_fund and is_stale_input_error(exc.message):
                logger.warning("Submission rejected, fund already spent: %s", exc.message)
                raise StaleFund(hint or "The selected UTxO has already been spent.") from exc
            message = "The signed transaction was rejected by the provider."
            raise SubmissionFailed(f"{message} {hint}" if hint else f"{message} {exc.message}") from exc
        except ProviderTransportError as exc:
            raise SubmissionFailed(
                f"The transaction was signed but could not be submitted: {exc}"
            ) from exc
        logger.info("Broadcasted transaction %s", tx_hash)
        return tx_hash


class LockTransactionBuilder(_ScriptTransactionBuilder):
    """Send lovelace to a script address with an inline datum."""

    def __init__(
        self,
        context: Any,
        wallet: WalletSession,
        provider: Any,
        min_deposit: int = MIN_DEPOSIT_LOVELACE,
    ) -> None:
        super().__init__(context, wallet, provider)
        self.min_deposit = min_deposit

    def lock(self, script: ResolvedScript, amount: str, datum_value: StructuredValue) -> str:
        if not isinstance(script, ResolvedScript):
            raise PreconditionError("Resolve the script program before locking funds.")
        lovelace = parse_lovelace(amount, self.min_deposit)
        if datum_value is None or datum_value.is_empty:
            raise InvalidDatum("Specify a datum before locking.")
        try:
            datum = datum_value.encode()
        except MalformedValue as exc:
            raise InvalidDatum(
                f"Data error. Make sure the datum is valid for the selected type: {exc}"
            ) from exc

        change_address = self._change_address()
        logger.info("Building lock of %d lovelace to %s", lovelace, script.address)
        builder = TransactionBuilder(self.context)
        builder.add_input_address(change_address)
        builder.add_output(
            TransactionOutput(
                address=Address.from_primitive(script.address),
                amount=lovelace,
                datum=datum,
            )
        )
        tx = self._build(builder, change_address)
        return self._sign_and_submit(tx, spends_fund=False)


class UnlockTransactionBuilder(_ScriptTransactionBuilder):
    """Spend one fund at a script address, satisfying the script with a redeemer."""

    def unlock(self, script: ResolvedScript, fund: Fund, redeemer_value: StructuredValue) -> str:
        if redeemer_value is None or redeemer_value.is_empty:
            raise RedeemerMissing("Specify a redeemer before unlocking.")
        try:
            redeemer_data = redeemer_value.encode()
        except MalformedValue as exc:
            raise InvalidRedeemer(
                f"Data error. Make sure the redeemer is valid for the selected type: {exc}"
            ) from exc
        if fund.address != script.address:
            raise UnknownFund(
                f"UTxO {fund.reference} does not belong to the resolved script address."
            )
        if fund.attached_data is None and fund.datum_hash:
            raise PreconditionError(
                f"UTxO {fund.reference} only carries a datum hash; its datum is not available."
            )

        change_address = self._change_address()
        logger.info("Building unlock of %s from %s", fund.reference, script.address)
        builder = TransactionBuilder(self.context)
        builder.add_input_address(change_address)
        builder.add_script_input(
            fund_to_utxo(fund),
            script=script.to_plutus_script(),
            redeemer=Redeemer(redeemer_data),
        )
        builder.required_signers = [
            VerificationKeyHash(bytes.fromhex(payment_key_hash(str(change_address))))
        ]
        tx = self._build(builder, change_address)
        return self._sign_and_submit(tx, spends_fund=True)
