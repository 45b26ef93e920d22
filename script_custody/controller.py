"""State machine tying script resolution, inventory and transactions together.

The controller owns a single :class:`FlowState` snapshot.  Every transition
replaces the snapshot wholesale, so a reader never observes a half-updated
script/fund pair.  Lock and unlock are mutually exclusive: while one is in
flight a second request is rejected, never queued.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, List, Optional, Tuple

from .codec import StructuredValue
from .errors import (
    INPUT,
    CustodyError,
    InvalidProgram,
    OperationInProgress,
    PreconditionError,
    ProviderUnavailable,
    UnknownFund,
    WalletNotConnected,
)
from .inventory import UTxOInventory
from .model import (
    IDLE,
    FundReference,
    FundSet,
    OperationKind,
    OperationStatus,
    PendingOperation,
    ResolvedScript,
)
from .script_resolver import ScriptAddressResolver
from .wallet import WalletSession, payment_key_hash

logger = logging.getLogger(__name__)

SUCCESS_MESSAGES = {
    OperationKind.LOCK: "Transaction submitted to lock ADAs.",
    OperationKind.UNLOCK: "Transaction submitted to unlock ADAs.",
}


class FlowPhase(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    ADDRESS_RESOLVED = "address_resolved"
    INVENTORY_LOADED = "inventory_loaded"


@dataclass(frozen=True)
class FlowState:
    phase: FlowPhase = FlowPhase.UNINITIALIZED
    script: Optional[ResolvedScript] = None
    funds: Optional[FundSet] = None
    pending: PendingOperation = IDLE
    last_operation: Optional[PendingOperation] = None
    message: Optional[str] = None
    advisory: Optional[str] = None
    generation: int = 0

    @property
    def address(self) -> Optional[str]:
        return self.script.address if self.script else None


class CustodyFlowController:
    """Long-lived controller driving one custody flow."""

    def __init__(
        self,
        resolver: ScriptAddressResolver,
        inventory: UTxOInventory,
        lock_builder: Any,
        unlock_builder: Any,
        wallet: WalletSession,
    ) -> None:
        self.resolver = resolver
        self.inventory = inventory
        self.lock_builder = lock_builder
        self.unlock_builder = unlock_builder
        self.wallet = wallet
        self._state = FlowState()

    @property
    def state(self) -> FlowState:
        return self._state

    def _commit(self, **changes: Any) -> FlowState:
        self._state = replace(self._state, **changes)
        return self._state

    # Script and inventory ---------------------------------------------------

    async def submit_program(self, program: str) -> FlowState:
        """Resolve a new script program and load the funds at its address.

        Whatever was resolved before is discarded first, so no address or fund
        of the previous program survives the change.
        """

        generation = self._state.generation + 1
        self._commit(
            phase=FlowPhase.UNINITIALIZED,
            script=None,
            funds=None,
            message=None,
            advisory=None,
            generation=generation,
        )
        try:
            script = self.resolver.resolve(program)
        except InvalidProgram as exc:
            return self._commit(
                message=f"Could not resolve script address. {exc}",
            )
        self._commit(phase=FlowPhase.ADDRESS_RESOLVED, script=script)
        return await self._refresh(announce=True)

    async def refresh(self) -> FlowState:
        if self._state.script is None:
            return self._commit(message="Paste the script CBOR code first.")
        return await self._refresh(announce=True)

    async def _refresh(self, *, announce: bool, fresh: bool = False) -> FlowState:
        generation = self._state.generation
        address = self._state.script.address
        try:
            fund_set = await self.inventory.refresh(address, fresh=fresh)
        except ProviderUnavailable as exc:
            if self._state.generation != generation:
                return self._state
            return self._commit(advisory=str(exc))

        # check-before-commit: the program may have changed while we waited
        if self._state.generation != generation:
            logger.debug("Discarding UTxOs fetched for superseded address %s", address)
            return self._state
        # a fetch that lost the race to a newer one leaves the newer set in place
        latest = self.inventory.current(address)
        if latest is not None:
            fund_set = latest
        changes: dict[str, Any] = {
            "phase": FlowPhase.INVENTORY_LOADED,
            "funds": fund_set,
            "advisory": None,
        }
        if announce:
            changes["message"] = "Script and UTxOs updated successfully."
        return self._commit(**changes)

    def fund_summaries(self) -> List[Tuple[str, str]]:
        funds = self._state.funds
        if not funds:
            return []
        return [(str(fund.reference), fund.describe()) for fund in funds]

    async def pub_key_hash(self) -> str:
        if not self.wallet.connected:
            raise WalletNotConnected("Connect your wallet to continue.")
        address = await asyncio.to_thread(self.wallet.get_change_address)
        return payment_key_hash(address)

    # Transactions ----------------------------------------------------------

    async def lock(self, amount: str, datum: StructuredValue) -> PendingOperation:
        rejection = self._check_can_start(OperationKind.LOCK)
        if rejection is not None:
            return rejection
        return await self._run(
            OperationKind.LOCK, self.lock_builder.lock, self._state.script, amount, datum
        )

    async def unlock(
        self, reference: FundReference | str, redeemer: StructuredValue
    ) -> PendingOperation:
        rejection = self._check_can_start(OperationKind.UNLOCK)
        if rejection is not None:
            return rejection
        if isinstance(reference, str):
            try:
                reference = FundReference.parse(reference)
            except ValueError as exc:
                return self._reject(OperationKind.UNLOCK, UnknownFund(str(exc)))
        funds = self._state.funds
        fund = funds.get(reference) if funds is not None else None
        if fund is None:
            return self._reject(
                OperationKind.UNLOCK,
                UnknownFund(
                    f"UTxO {reference} is not in the current inventory; reload the script UTxOs."
                ),
            )
        return await self._run(
            OperationKind.UNLOCK, self.unlock_builder.unlock, self._state.script, fund, redeemer
        )

    def _check_can_start(self, kind: OperationKind) -> Optional[PendingOperation]:
        state = self._state
        if state.pending.in_flight:
            return self._reject(
                kind,
                OperationInProgress(
                    f"A {state.pending.kind.value} transaction is still in flight; wait for it to finish."
                ),
            )
        if state.script is None:
            return self._reject(kind, PreconditionError("Paste the script CBOR code first."))
        if not self.wallet.connected:
            return self._reject(kind, WalletNotConnected("Connect your wallet to continue."))
        return None

    def _reject(self, kind: OperationKind, error: CustodyError) -> PendingOperation:
        outcome = _failed(kind, error)
        logger.debug("Rejected %s: %s", kind.value, error)
        self._commit(last_operation=outcome, message=outcome.reason)
        return outcome

    async def _run(
        self, kind: OperationKind, submit: Callable[..., str], *args: Any
    ) -> PendingOperation:
        generation = self._state.generation
        in_flight = PendingOperation(kind=kind, status=OperationStatus.IN_FLIGHT)
        self._commit(pending=in_flight, message=None)
        try:
            tx_hash = await asyncio.to_thread(submit, *args)
        except CustodyError as exc:
            outcome = _failed(kind, exc)
            if exc.category == INPUT:
                logger.info("%s input rejected: %s", kind.value, exc)
            else:
                logger.warning("%s failed (%s): %s", kind.value, exc.kind, exc)
            self._commit(pending=IDLE, last_operation=outcome, message=outcome.reason)
            return outcome
        finally:
            if self._state.pending is in_flight:
                self._commit(pending=IDLE)

        outcome = PendingOperation(kind=kind, status=OperationStatus.SUCCEEDED, tx_hash=tx_hash)
        self._commit(
            last_operation=outcome, message=f"{SUCCESS_MESSAGES[kind]} Tx: {tx_hash}"
        )
        if self._state.generation == generation and self._state.script is not None:
            # a reload started before submission must not stand in for this one
            await self._refresh(announce=False, fresh=True)
        return outcome


def _failed(kind: OperationKind, error: CustodyError) -> PendingOperation:
    return PendingOperation(
        kind=kind,
        status=OperationStatus.FAILED,
        reason=str(error),
        error_kind=error.kind,
        retryable=error.retryable,
    )
