"""Wallet session helpers.

The custody flow never handles keys directly; it talks to a
:class:`WalletSession`.  :class:`KeyFileWallet` is the bundled session backed
by a payment signing key file, with an optional approval callback standing in
for the confirmation dialog of a browser wallet.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional, Protocol

from pycardano import (
    Address,
    Network,
    PaymentSigningKey,
    Transaction,
    VerificationKeyHash,
    VerificationKeyWitness,
)
from pycardano.exception import PyCardanoException

from .errors import WalletNotConnected, WalletRejected

logger = logging.getLogger(__name__)


class WalletSession(Protocol):
    connected: bool

    def get_change_address(self) -> str:
        ...

    def sign_transaction(self, tx: Transaction) -> Transaction:
        ...


def payment_key_hash(address: str) -> str:
    """Return the hex payment key hash of a key-based ``address``."""

    try:
        parsed = Address.from_primitive(address)
    except (PyCardanoException, ValueError, TypeError) as exc:
        raise WalletNotConnected(f"Wallet returned an unreadable address: {address}") from exc
    payment_part = parsed.payment_part
    if not isinstance(payment_part, VerificationKeyHash):
        raise WalletNotConnected("Wallet change address is not controlled by a payment key")
    return payment_part.payload.hex()


class KeyFileWallet:
    """Sign with a local payment key, asking ``approve`` before every signature."""

    def __init__(
        self,
        signing_key: PaymentSigningKey | None,
        network: Network = Network.TESTNET,
        approve: Optional[Callable[[Transaction], bool]] = None,
    ) -> None:
        self._signing_key = signing_key
        self.network = network
        self.approve = approve

    @classmethod
    def from_file(
        cls,
        path: str | Path,
        network: Network = Network.TESTNET,
        approve: Optional[Callable[[Transaction], bool]] = None,
    ) -> "KeyFileWallet":
        path = Path(path).expanduser()
        try:
            signing_key = PaymentSigningKey.load(str(path))
        except (OSError, ValueError) as exc:
            raise WalletNotConnected(f"Could not load signing key from {path}: {exc}") from exc
        logger.debug("Loaded payment signing key from %s", path)
        return cls(signing_key, network=network, approve=approve)

    @property
    def connected(self) -> bool:
        return self._signing_key is not None

    def disconnect(self) -> None:
        self._signing_key = None

    def _key(self) -> PaymentSigningKey:
        if self._signing_key is None:
            raise WalletNotConnected("Connect your wallet to continue.")
        return self._signing_key

    def get_change_address(self) -> str:
        verification_key = self._key().to_verification_key()
        return str(Address(payment_part=verification_key.hash(), network=self.network))

    def sign_transaction(self, tx: Transaction) -> Transaction:
        signing_key = self._key()
        if self.approve is not None and not self.approve(tx):
            logger.info("Signature request declined for transaction %s", tx.id)
            raise WalletRejected("The wallet declined to sign the transaction.")

        signature = signing_key.sign(tx.transaction_body.hash())
        witness = VerificationKeyWitness(signing_key.to_verification_key(), signature)
        witness_set = tx.transaction_witness_set
        witness_set.vkey_witnesses = list(witness_set.vkey_witnesses or []) + [witness]
        return tx
