import json
from pathlib import Path

import cbor2
import pytest
from pycardano import Network

from script_custody.errors import InvalidProgram
from script_custody.model import ScriptVersion
from script_custody.script_resolver import ScriptAddressResolver, encode_program, load_program

FLAT_PROGRAM = bytes.fromhex("0101003229800aba2aba1aab9eaab9dab9a4888896600264653001")
SINGLE_WRAPPED = cbor2.dumps(FLAT_PROGRAM).hex()
DOUBLE_WRAPPED = cbor2.dumps(cbor2.dumps(FLAT_PROGRAM)).hex()


def test_resolving_the_same_program_twice_yields_the_same_address() -> None:
    resolver = ScriptAddressResolver()

    first = resolver.resolve(SINGLE_WRAPPED)
    second = ScriptAddressResolver().resolve(SINGLE_WRAPPED)

    assert first == second
    assert first.address.startswith("addr_test1w")
    assert first.version is ScriptVersion.V3
    assert len(first.script_hash) == 56


def test_double_wrapped_program_normalises_to_the_same_script() -> None:
    resolver = ScriptAddressResolver()

    single = resolver.resolve(SINGLE_WRAPPED)
    double = resolver.resolve(DOUBLE_WRAPPED)

    assert double.encoded_program == bytes.fromhex(SINGLE_WRAPPED)
    assert double.address == single.address


def test_whitespace_and_prefix_are_tolerated() -> None:
    spaced = "0x" + " ".join(SINGLE_WRAPPED[i : i + 8] for i in range(0, len(SINGLE_WRAPPED), 8))

    assert encode_program(spaced + "\n") == bytes.fromhex(SINGLE_WRAPPED)


def test_address_depends_on_version_and_network() -> None:
    v3 = ScriptAddressResolver(Network.TESTNET, "V3").resolve(SINGLE_WRAPPED)
    v2 = ScriptAddressResolver(Network.TESTNET, "V2").resolve(SINGLE_WRAPPED)
    mainnet = ScriptAddressResolver(Network.MAINNET, "V3").resolve(SINGLE_WRAPPED)

    assert v3.address != v2.address
    assert mainnet.address.startswith("addr1w")
    assert mainnet.script_hash == v3.script_hash


@pytest.mark.parametrize("program", ["", "   ", "not-hex", "abc", "00", "a0"])
def test_malformed_programs_are_rejected(program: str) -> None:
    with pytest.raises(InvalidProgram):
        ScriptAddressResolver().resolve(program)


def test_trailing_bytes_after_the_envelope_are_rejected() -> None:
    with pytest.raises(InvalidProgram):
        encode_program(SINGLE_WRAPPED + "00")


def test_load_program_from_blueprint_by_title(tmp_path: Path) -> None:
    blueprint = {
        "preamble": {"title": "demo/hello"},
        "validators": [
            {"title": "hello.spend", "compiledCode": SINGLE_WRAPPED},
            {"title": "other.spend", "compiledCode": DOUBLE_WRAPPED},
        ],
    }
    path = tmp_path / "plutus.json"
    path.write_text(json.dumps(blueprint))

    assert load_program(path) == SINGLE_WRAPPED
    assert load_program(path, validator="other.spend") == DOUBLE_WRAPPED
    assert load_program(path, validator="1") == DOUBLE_WRAPPED
    with pytest.raises(InvalidProgram, match="not found"):
        load_program(path, validator="missing")


def test_load_program_reads_hex_and_text_envelopes(tmp_path: Path) -> None:
    hex_path = tmp_path / "script.hex"
    hex_path.write_text(SINGLE_WRAPPED + "\n")
    envelope_path = tmp_path / "script.plutus"
    envelope_path.write_text(
        json.dumps({"type": "PlutusScriptV3", "description": "", "cborHex": DOUBLE_WRAPPED})
    )

    assert load_program(hex_path) == SINGLE_WRAPPED
    assert load_program(envelope_path) == DOUBLE_WRAPPED
