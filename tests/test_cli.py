import json
from pathlib import Path

import cbor2
import pytest
import requests
from pycardano import PaymentSigningKey

from script_custody import cli
from script_custody.model import Asset, Fund, FundReference
from script_custody.script_resolver import ScriptAddressResolver

PROGRAM = cbor2.dumps(bytes.fromhex("0101003229800aba2aba1aab9eaab9dab9a6")).hex()


class StubBlockfrost:
    def __init__(self, config) -> None:
        self.config = config

    def fetch_address_utxos(self, address: str):
        return [
            Fund(
                reference=FundReference(tx_hash="ab" * 32, output_index=2),
                address=address,
                assets=(Asset("lovelace", 4_000_000),),
            )
        ]


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("script_custody.config.DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml")
    monkeypatch.setenv("CUSTODY_BLOCKFROST_PROJECT_ID", "preprodTEST")
    monkeypatch.delenv("CUSTODY_SIGNING_KEY", raising=False)
    monkeypatch.delenv("CUSTODY_NETWORK", raising=False)
    monkeypatch.setattr(cli, "BlockfrostClient", StubBlockfrost)


def test_parser_accepts_lock_arguments() -> None:
    parser = cli.build_parser()

    args = parser.parse_args(
        [
            "--network",
            "preview",
            "lock",
            "--script-cbor",
            PROGRAM,
            "--amount",
            "2000000",
            "--datum",
            '{"constructor": 0, "fields": []}',
            "--datum-kind",
            "constructor",
            "--yes",
        ]
    )

    assert args.command == "lock"
    assert args.network == "preview"
    assert args.datum_kind == "constructor"
    assert args.yes is True


def test_parser_requires_a_program_source() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["address"])


def test_address_command_prints_json(capsys: pytest.CaptureFixture[str]) -> None:
    cli.main(["address", "--script-cbor", PROGRAM, "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["address"] == ScriptAddressResolver().resolve(PROGRAM).address
    assert payload["version"] == "V3"
    assert payload["encoded_program"] == PROGRAM


def test_address_command_reads_blueprints(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    blueprint = tmp_path / "plutus.json"
    blueprint.write_text(json.dumps({"validators": [{"title": "a.spend", "compiledCode": PROGRAM}]}))

    cli.main(["address", "--script-file", str(blueprint), "--mainnet"])

    out = capsys.readouterr().out
    assert "Script address: addr1w" in out


def test_invalid_program_exits_with_error(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["address", "--script-cbor", "nothex"])

    assert excinfo.value.code == 1
    assert capsys.readouterr().err.startswith("error: Script program is not valid hex")


def test_utxos_command_lists_funds(isolated_config, capsys: pytest.CaptureFixture[str]) -> None:
    cli.main(["utxos", "--script-cbor", PROGRAM, "--json"])

    (entry,) = json.loads(capsys.readouterr().out)
    assert entry["reference"] == f"{'ab' * 32}#2"
    assert entry["lovelace"] == 4_000_000
    assert entry["inline_datum"] is None


def test_lock_without_signing_key_fails(isolated_config, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["lock", "--script-cbor", PROGRAM, "--amount", "2000000", "--datum", "hi"])

    assert excinfo.value.code == 1
    assert "signing key is required" in capsys.readouterr().err


def test_unreachable_provider_exits_with_error(
    isolated_config, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    key_path = tmp_path / "payment.skey"
    PaymentSigningKey.generate().save(str(key_path))

    def unreachable(config):
        raise requests.ConnectionError("Name or service not known")

    monkeypatch.setattr(cli, "chain_context_from_config", unreachable)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(
            [
                "lock",
                "--script-cbor",
                PROGRAM,
                "--amount",
                "2000000",
                "--datum",
                "hi",
                "--signing-key",
                str(key_path),
                "--yes",
            ]
        )

    assert excinfo.value.code == 1
    err = capsys.readouterr().err
    assert "error: Could not reach the preprod provider" in err
    assert "Name or service not known" in err
