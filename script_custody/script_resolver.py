"""Derive the encoded form and on-chain address of a script program.

Resolution is a pure function of the program text and the configured
network and script version.  No chain state is consulted, so resolving the
same program twice always yields the same address.
"""

from __future__ import annotations

import binascii
import json
import logging
from pathlib import Path

import cbor2
from pycardano import Address, Network, plutus_script_hash

from .errors import InvalidProgram
from .model import ResolvedScript, ScriptVersion, plutus_script

logger = logging.getLogger(__name__)


class ScriptAddressResolver:
    """Turn user-supplied compiled script hex into a :class:`ResolvedScript`."""

    def __init__(
        self,
        network: Network = Network.TESTNET,
        version: ScriptVersion | str = ScriptVersion.V3,
    ) -> None:
        self.network = network
        self.version = ScriptVersion(version)

    def resolve(self, program: str) -> ResolvedScript:
        encoded = encode_program(program)
        try:
            script_hash = plutus_script_hash(plutus_script(encoded, self.version))
        except (TypeError, ValueError) as exc:  # pragma: no cover - pycardano guards
            raise InvalidProgram(f"Could not hash the script program: {exc}") from exc
        address = Address(payment_part=script_hash, network=self.network)
        resolved = ResolvedScript(
            encoded_program=encoded,
            version=self.version,
            address=str(address),
            script_hash=script_hash.payload.hex(),
        )
        logger.info(
            "Resolved Plutus %s script %s to %s",
            self.version.value,
            resolved.script_hash,
            resolved.address,
        )
        return resolved


def encode_program(program: str) -> bytes:
    """Return the single CBOR-wrapped script bytes for ``program``.

    ``program`` is the hex of a compiled script wrapped in a CBOR bytestring
    once (the blueprint ``compiledCode`` form) or twice (the form some wallets
    and SDKs hand around).  Both normalise to the single-wrapped bytes.
    """

    if not isinstance(program, str):
        raise InvalidProgram("Script program must be provided as hex text")
    text = "".join(program.split())
    if text.lower().startswith("0x"):
        text = text[2:]
    if not text:
        raise InvalidProgram("Paste the script CBOR code first.")
    try:
        raw = binascii.unhexlify(text)
    except (binascii.Error, ValueError) as exc:
        raise InvalidProgram("Script program is not valid hex") from exc

    inner = _unwrap_bytestring(raw)
    if inner is None:
        raise InvalidProgram(
            "Script program is not a CBOR-encoded script; check the CBOR."
        )
    # double-wrapped: keep the inner single-wrapped envelope
    if _unwrap_bytestring(inner) is not None:
        return inner
    return raw


def _unwrap_bytestring(raw: bytes) -> bytes | None:
    """Return the payload if ``raw`` is exactly one CBOR bytestring."""

    try:
        decoded = cbor2.loads(raw)
    except (cbor2.CBORDecodeError, ValueError, TypeError, EOFError):
        return None
    if not isinstance(decoded, bytes) or not decoded:
        return None
    if cbor2.dumps(decoded) != raw:
        return None
    return decoded


def load_program(path: str | Path, validator: str | None = None) -> str:
    """Read a program from a hex text file or a CIP-57 blueprint.

    For blueprints (``plutus.json``), ``validator`` selects a validator by
    index or title; the first validator is used by default.
    """

    path = Path(path)
    try:
        text = path.read_text()
    except OSError as exc:
        raise InvalidProgram(f"Could not read script file {path}: {exc}") from exc

    stripped = text.strip()
    if not stripped.startswith("{"):
        return stripped

    try:
        blueprint = json.loads(stripped)
    except json.JSONDecodeError as exc:
        raise InvalidProgram(f"Script file {path} is not valid JSON: {exc}") from exc

    if "cborHex" in blueprint:
        # text envelope as written by cardano-cli
        return str(blueprint["cborHex"])

    validators = blueprint.get("validators")
    if not isinstance(validators, list) or not validators:
        raise InvalidProgram(f"Blueprint {path} does not list any validators")

    selected = None
    if validator is None:
        selected = validators[0]
    elif validator.isdigit():
        index = int(validator)
        if index >= len(validators):
            raise InvalidProgram(
                f"Blueprint {path} has {len(validators)} validators; index {index} is out of range"
            )
        selected = validators[index]
    else:
        for entry in validators:
            if entry.get("title") == validator:
                selected = entry
                break
        if selected is None:
            titles = ", ".join(str(entry.get("title")) for entry in validators)
            raise InvalidProgram(f"Validator '{validator}' not found; available: {titles}")

    compiled = selected.get("compiledCode")
    if not isinstance(compiled, str) or not compiled:
        raise InvalidProgram(f"Validator {selected.get('title')} has no compiledCode")
    logger.debug("Loaded validator %s from %s", selected.get("title"), path)
    return compiled
