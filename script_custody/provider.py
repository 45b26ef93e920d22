"""HTTP client for the Blockfrost chain data provider.

The client is intentionally thin: it lists the unspent outputs at an address
and submits signed transactions.  Protocol parameters and script cost
evaluation needed while building transactions come from a pycardano chain
context built from the same configuration (see :func:`chain_context_from_config`).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import requests
from pycardano import BlockFrostChainContext
from requests import RequestException, Response

from .config import CustodyConfig
from .model import Asset, Fund, FundReference

logger = logging.getLogger(__name__)

PAGE_SIZE = 100

STALE_INPUT_MARKERS = (
    "BadInputsUTxO",
    "UnknownInputs",
    "unknown UTxO",
    "already spent",
    "All inputs are spent",
)


class ProviderHTTPError(RuntimeError):
    """Raised when the provider answers with an error status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Provider error {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class ProviderTransportError(RuntimeError):
    """Raised when the provider is unreachable or returns malformed data."""


def is_stale_input_error(message: str | None) -> bool:
    """Return ``True`` when a rejection says an input is unknown or already spent."""

    if not message:
        return False
    return any(marker.lower() in message.lower() for marker in STALE_INPUT_MARKERS)


def format_provider_hint(error: ProviderHTTPError | str | None) -> str | None:
    """Return a human-friendly hint for common provider and ledger rejections."""

    if error is None:
        return None
    status = error.status_code if isinstance(error, ProviderHTTPError) else None
    message = error.message if isinstance(error, ProviderHTTPError) else str(error)

    if is_stale_input_error(message):
        return (
            "The selected UTxO has already been spent. Reload the script UTxOs and pick "
            "another one instead of resubmitting the same transaction."
        )
    if status == 403 or "invalid project token" in message.lower():
        return (
            "The provider rejected the project id. Check CUSTODY_BLOCKFROST_PROJECT_ID and "
            "that it belongs to the selected network."
        )
    if status in {402, 429}:
        return "The provider usage limit was reached; wait a moment before retrying."
    if "ValueNotConservedUTxO" in message:
        return (
            "Inputs and outputs do not balance. The wallet UTxOs may have changed; "
            "retry once the wallet has synced."
        )
    if "FeeTooSmallUTxO" in message:
        return "The fee is below the protocol minimum; rebuild the transaction."
    if "OutputTooSmallUTxO" in message or "BabbageOutputTooSmallUTxO" in message:
        return "The locked amount is below the minimum UTxO value; lock more lovelace."
    if "MissingRequiredSigners" in message:
        return "The script requires a signature from a key the wallet did not provide."
    return None


class BlockfrostClient:
    """Read UTxOs and submit transactions through the Blockfrost REST API."""

    def __init__(self, config: CustodyConfig, timeout: float = 30) -> None:
        self.config = config
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"project_id": config.project_id})
        self._base_url = f"{config.api_url}/v0"

    def fetch_address_utxos(self, address: str) -> List[Fund]:
        """Return every unspent output at ``address`` in provider order."""

        funds: List[Fund] = []
        page = 1
        while True:
            try:
                entries = self._request(
                    "GET",
                    f"/addresses/{address}/utxos",
                    params={"page": page, "count": PAGE_SIZE, "order": "asc"},
                )
            except ProviderHTTPError as exc:
                if exc.status_code == 404:
                    # the provider answers 404 for addresses that never received funds
                    logger.debug("No UTxOs recorded for %s", address)
                    break
                raise
            if not isinstance(entries, list):
                raise ProviderTransportError("Provider returned a malformed UTxO page")
            funds.extend(self._parse_utxo(address, entry) for entry in entries)
            if len(entries) < PAGE_SIZE:
                break
            page += 1
        logger.debug("Fetched %d UTxOs for %s", len(funds), address)
        return funds

    def submit_transaction(self, tx_cbor: bytes) -> str:
        """Submit a signed transaction and return its hash."""

        result = self._request(
            "POST",
            "/tx/submit",
            data=tx_cbor,
            headers={"Content-Type": "application/cbor"},
        )
        if not isinstance(result, str):
            raise ProviderTransportError("Provider returned a malformed submission response")
        logger.info("Submitted transaction %s", result)
        return result

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = f"{self._base_url}{path}"
        logger.debug("Provider %s %s params=%s", method, path, kwargs.get("params"))
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except RequestException as exc:
            logger.error(
                "Provider connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise ProviderTransportError(
                "Provider connection failed. Check your network connection and the "
                "CUSTODY_BLOCKFROST_URL setting."
            ) from exc
        self._raise_for_status(response)
        try:
            return response.json()
        except ValueError as exc:
            logger.debug("Provider JSON parse error: %s", response.text, exc_info=True)
            raise ProviderTransportError("Provider returned malformed JSON") from exc

    def _raise_for_status(self, response: Response) -> None:
        if response.ok:
            return
        try:
            body = response.json()
        except ValueError:
            body = response.text
        message = body.get("message") if isinstance(body, dict) else None
        if not message:
            message = str(body) or response.reason
        if response.status_code != 404:
            logger.error("Provider HTTP error %s from %s", response.status_code, response.url)
            logger.error("Provider error body: %s", body)
        raise ProviderHTTPError(response.status_code, str(message))

    @staticmethod
    def _parse_utxo(address: str, entry: Dict[str, Any]) -> Fund:
        try:
            reference = FundReference(
                tx_hash=str(entry["tx_hash"]), output_index=int(entry["output_index"])
            )
            assets = tuple(
                Asset(unit=str(item["unit"]), quantity=int(item["quantity"]))
                for item in entry.get("amount", [])
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderTransportError(f"Provider returned a malformed UTxO: {entry}") from exc
        inline = entry.get("inline_datum")
        return Fund(
            reference=reference,
            address=str(entry.get("address") or address),
            assets=assets,
            attached_data=bytes.fromhex(inline) if inline else None,
            datum_hash=entry.get("data_hash"),
        )


def chain_context_from_config(config: CustodyConfig):
    """Build the pycardano chain context used for protocol parameters and evaluation."""

    return BlockFrostChainContext(
        project_id=config.project_id,
        network=config.address_network,
        base_url=config.api_url,
    )
