"""Domain models for the script custody flow.

All snapshots are frozen: a resolved script, a fund set, or a pending
operation is replaced wholesale when it changes, never edited in place.
"""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Optional, Tuple

from pycardano import PlutusV1Script, PlutusV2Script, PlutusV3Script

from .codec import describe_datum

LOVELACE = "lovelace"


class ScriptVersion(str, enum.Enum):
    V1 = "V1"
    V2 = "V2"
    V3 = "V3"


@dataclass(frozen=True)
class ResolvedScript:
    """A script program in encoded form together with its on-chain address."""

    encoded_program: bytes
    version: ScriptVersion
    address: str
    script_hash: str

    @property
    def encoded_hex(self) -> str:
        return self.encoded_program.hex()

    def to_plutus_script(self):
        return plutus_script(self.encoded_program, self.version)


def plutus_script(encoded_program: bytes, version: ScriptVersion):
    """Wrap encoded script bytes in the pycardano class for ``version``."""

    script_cls = {
        ScriptVersion.V1: PlutusV1Script,
        ScriptVersion.V2: PlutusV2Script,
        ScriptVersion.V3: PlutusV3Script,
    }[ScriptVersion(version)]
    return script_cls(encoded_program)


@dataclass(frozen=True, order=True)
class FundReference:
    tx_hash: str
    output_index: int

    def __str__(self) -> str:
        return f"{self.tx_hash}#{self.output_index}"

    @classmethod
    def parse(cls, raw: str) -> "FundReference":
        """Parse ``<tx_hash>#<index>`` (``:`` is accepted as separator too)."""

        separator = "#" if "#" in raw else ":"
        tx_hash, _, index = raw.strip().rpartition(separator)
        if not tx_hash or not index.isdigit():
            raise ValueError(f"Invalid fund reference: {raw}")
        return cls(tx_hash=tx_hash.lower(), output_index=int(index))


@dataclass(frozen=True)
class Asset:
    unit: str
    quantity: int


@dataclass(frozen=True)
class Fund:
    """Snapshot of an unspent output at a script address."""

    reference: FundReference
    address: str
    assets: Tuple[Asset, ...]
    attached_data: Optional[bytes] = None
    datum_hash: Optional[str] = None

    @property
    def lovelace(self) -> int:
        return sum(asset.quantity for asset in self.assets if asset.unit == LOVELACE)

    def describe(self) -> str:
        """Return a one-line summary in the form shown to users."""

        if self.attached_data is not None:
            decoded = describe_datum(self.attached_data)
            datum_text = (
                json.dumps(decoded, separators=(",", ":"))
                if decoded is not None
                else self.attached_data.hex()
            )
        elif self.datum_hash:
            datum_text = f"(datum hash {self.datum_hash})"
        else:
            datum_text = "(no datum)"
        tokens = len([asset for asset in self.assets if asset.unit != LOVELACE])
        token_text = f" + {tokens} token(s)" if tokens else ""
        return f"Spend {self.lovelace} lovelace{token_text} {datum_text}"


@dataclass(frozen=True)
class FundSet:
    """Ordered funds at one address, unique by reference."""

    address: str
    funds: Tuple[Fund, ...] = ()

    def __post_init__(self) -> None:
        references = [fund.reference for fund in self.funds]
        if len(set(references)) != len(references):
            raise ValueError(f"Duplicate fund references in set for {self.address}")

    def __len__(self) -> int:
        return len(self.funds)

    def __iter__(self):
        return iter(self.funds)

    def get(self, reference: FundReference) -> Optional[Fund]:
        for fund in self.funds:
            if fund.reference == reference:
                return fund
        return None

    @property
    def references(self) -> Tuple[FundReference, ...]:
        return tuple(fund.reference for fund in self.funds)


class OperationKind(str, enum.Enum):
    LOCK = "lock"
    UNLOCK = "unlock"


class OperationStatus(str, enum.Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class PendingOperation:
    kind: Optional[OperationKind] = None
    status: OperationStatus = OperationStatus.IDLE
    tx_hash: Optional[str] = None
    reason: Optional[str] = None
    error_kind: Optional[str] = None
    retryable: bool = field(default=False, compare=False)

    @property
    def in_flight(self) -> bool:
        return self.status is OperationStatus.IN_FLIGHT

    @property
    def succeeded(self) -> bool:
        return self.status is OperationStatus.SUCCEEDED


IDLE = PendingOperation()
