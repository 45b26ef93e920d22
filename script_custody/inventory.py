"""Inventory of the funds held at a script address."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Dict, Optional, Protocol, Sequence

from .errors import ProviderUnavailable
from .model import Fund, FundSet
from .provider import ProviderHTTPError, ProviderTransportError, format_provider_hint

logger = logging.getLogger(__name__)


class FundProvider(Protocol):
    def fetch_address_utxos(self, address: str) -> Sequence[Fund]:
        ...


class UTxOInventory:
    """Fetch and hold the latest :class:`FundSet` per address.

    Concurrent refreshes of one address share a single provider call; every
    caller receives the same result.  A failed refresh leaves the previously
    held set untouched and raises :class:`ProviderUnavailable`.
    """

    def __init__(self, provider: FundProvider) -> None:
        self.provider = provider
        self._fund_sets: Dict[str, FundSet] = {}
        self._stored_sequence: Dict[str, int] = {}
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._sequence = itertools.count()

    def current(self, address: str) -> Optional[FundSet]:
        return self._fund_sets.get(address)

    def refreshing(self, address: str) -> bool:
        return address in self._in_flight

    async def refresh(self, address: str, *, fresh: bool = False) -> FundSet:
        """Return the funds at ``address``.

        With ``fresh`` a new provider call is started even when one is in
        flight, so the result reflects chain state observed after the call.
        Later joiners share the newest fetch.
        """

        if not address:
            raise ValueError("refresh() requires a resolved script address")

        task = self._in_flight.get(address)
        if task is None or fresh:
            task = asyncio.ensure_future(self._fetch(address, next(self._sequence)))
            self._in_flight[address] = task
            task.add_done_callback(lambda done: self._forget(address, done))
        else:
            logger.debug("Joining in-flight refresh for %s", address)
        # one impatient caller must not cancel the fetch the others are waiting on
        return await asyncio.shield(task)

    def _forget(self, address: str, task: asyncio.Future) -> None:
        if self._in_flight.get(address) is task:
            del self._in_flight[address]

    async def _fetch(self, address: str, sequence: int) -> FundSet:
        try:
            funds = await asyncio.to_thread(self.provider.fetch_address_utxos, address)
        except (ProviderHTTPError, ProviderTransportError) as exc:
            logger.warning("Refreshing UTxOs for %s failed: %s", address, exc)
            message = "Could not load UTxOs for the script address; showing the last known set."
            hint = format_provider_hint(exc) if isinstance(exc, ProviderHTTPError) else str(exc)
            raise ProviderUnavailable(f"{message} {hint}" if hint else message) from exc

        try:
            fund_set = FundSet(address=address, funds=tuple(funds))
        except ValueError as exc:
            logger.warning("Provider returned an inconsistent UTxO set for %s: %s", address, exc)
            raise ProviderUnavailable(
                "The provider returned duplicate UTxOs; showing the last known set."
            ) from exc

        if sequence < self._stored_sequence.get(address, -1):
            logger.debug("Not storing UTxOs from a fetch superseded for %s", address)
            return fund_set
        self._fund_sets[address] = fund_set
        self._stored_sequence[address] = sequence
        logger.info("Loaded %d UTxOs at %s", len(fund_set), address)
        return fund_set
