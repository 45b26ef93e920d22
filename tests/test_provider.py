from __future__ import annotations

import pytest
import requests

from script_custody.config import CustodyConfig
from script_custody.provider import (
    PAGE_SIZE,
    BlockfrostClient,
    ProviderHTTPError,
    ProviderTransportError,
    format_provider_hint,
    is_stale_input_error,
)

ADDRESS = "addr_test1wz0000"


class FakeResponse:
    def __init__(self, status_code: int, payload) -> None:
        self.status_code = status_code
        self.payload = payload
        self.url = "https://provider.test"
        self.reason = "reason"
        self.text = str(payload)

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    def __init__(self, responses) -> None:
        self.responses = list(responses)
        self.calls = []
        self.headers = {}

    def request(self, method, url, timeout=None, **kwargs):
        self.calls.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def utxo_entry(index: int, **extra) -> dict:
    entry = {
        "address": ADDRESS,
        "tx_hash": f"{index:064x}",
        "output_index": 0,
        "amount": [{"unit": "lovelace", "quantity": str(2_000_000 + index)}],
        "inline_datum": None,
        "data_hash": None,
    }
    entry.update(extra)
    return entry


def make_client(responses) -> tuple[BlockfrostClient, FakeSession]:
    client = BlockfrostClient(
        CustodyConfig(project_id="preprodABC", base_url="https://provider.test/api/")
    )
    session = FakeSession(responses)
    client._session = session  # type: ignore[assignment]
    return client, session


def test_session_carries_the_project_id() -> None:
    client = BlockfrostClient(CustodyConfig(project_id="preprodABC"))

    assert client._session.headers["project_id"] == "preprodABC"
    assert client._base_url == "https://cardano-preprod.blockfrost.io/api/v0"


def test_fetch_address_utxos_follows_pages() -> None:
    first_page = [utxo_entry(i) for i in range(PAGE_SIZE)]
    second_page = [
        utxo_entry(
            PAGE_SIZE,
            amount=[
                {"unit": "lovelace", "quantity": "5000000"},
                {"unit": "ab" * 28 + "cafe", "quantity": "3"},
            ],
            inline_datum="d87980",
        )
    ]
    client, session = make_client([FakeResponse(200, first_page), FakeResponse(200, second_page)])

    funds = client.fetch_address_utxos(ADDRESS)

    assert len(funds) == PAGE_SIZE + 1
    assert [call[2]["params"]["page"] for call in session.calls] == [1, 2]
    assert session.calls[0][1] == f"https://provider.test/api/v0/addresses/{ADDRESS}/utxos"
    last = funds[-1]
    assert last.lovelace == 5_000_000
    assert last.attached_data == bytes.fromhex("d87980")
    assert last.describe() == 'Spend 5000000 lovelace + 1 token(s) {"constructor":0,"fields":[]}'


def test_unknown_address_yields_no_funds() -> None:
    client, _ = make_client([FakeResponse(404, {"status_code": 404, "message": "not found"})])

    assert client.fetch_address_utxos(ADDRESS) == []


def test_provider_errors_are_raised_with_their_message() -> None:
    client, _ = make_client(
        [FakeResponse(403, {"status_code": 403, "message": "Invalid project token."})]
    )

    with pytest.raises(ProviderHTTPError) as excinfo:
        client.fetch_address_utxos(ADDRESS)

    assert excinfo.value.status_code == 403
    assert "project id" in format_provider_hint(excinfo.value)


def test_connection_failures_become_transport_errors() -> None:
    client, _ = make_client([requests.ConnectionError("boom")])

    with pytest.raises(ProviderTransportError):
        client.fetch_address_utxos(ADDRESS)


def test_malformed_entries_become_transport_errors() -> None:
    client, _ = make_client([FakeResponse(200, [{"tx_hash": "aa"}])])

    with pytest.raises(ProviderTransportError):
        client.fetch_address_utxos(ADDRESS)


def test_submit_transaction_posts_cbor() -> None:
    client, session = make_client([FakeResponse(200, "ab" * 32)])

    tx_hash = client.submit_transaction(b"\x84\xa0")

    assert tx_hash == "ab" * 32
    method, url, kwargs = session.calls[0]
    assert method == "POST"
    assert url.endswith("/v0/tx/submit")
    assert kwargs["data"] == b"\x84\xa0"
    assert kwargs["headers"]["Content-Type"] == "application/cbor"


def test_rejected_submission_keeps_ledger_message() -> None:
    message = "ConwayMempoolFailure (BadInputsUTxO (fromList [TxIn ...]))"
    client, _ = make_client([FakeResponse(400, {"status_code": 400, "message": message})])

    with pytest.raises(ProviderHTTPError) as excinfo:
        client.submit_transaction(b"\x84")

    assert is_stale_input_error(excinfo.value.message)
    assert "already been spent" in format_provider_hint(excinfo.value)


@pytest.mark.parametrize(
    "message,expected",
    [
        ("ValueNotConservedUTxO", "do not balance"),
        ("FeeTooSmallUTxO", "fee"),
        ("BabbageOutputTooSmallUTxO", "minimum UTxO"),
        ("MissingRequiredSigners", "signature"),
    ],
)
def test_format_provider_hint_recognises_ledger_errors(message: str, expected: str) -> None:
    assert expected in format_provider_hint(ProviderHTTPError(400, message))


def test_format_provider_hint_returns_none_for_unknown_errors() -> None:
    assert format_provider_hint(ProviderHTTPError(500, "boom")) is None
    assert format_provider_hint(None) is None
    assert not is_stale_input_error(None)
