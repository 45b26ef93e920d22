from __future__ import annotations

import asyncio
import threading
import time

import pytest

from script_custody.errors import ProviderUnavailable
from script_custody.inventory import UTxOInventory
from script_custody.model import Asset, Fund, FundReference
from script_custody.provider import ProviderHTTPError, ProviderTransportError

ADDRESS = "addr_test1wqscript"


def make_fund(tx_hash: str, index: int = 0, lovelace: int = 2_000_000) -> Fund:
    return Fund(
        reference=FundReference(tx_hash=tx_hash, output_index=index),
        address=ADDRESS,
        assets=(Asset("lovelace", lovelace),),
    )


class StubProvider:
    def __init__(self, *results, delay: float = 0.0) -> None:
        self.results = list(results)
        self.delay = delay
        self.calls = 0
        self._lock = threading.Lock()

    def fetch_address_utxos(self, address: str):
        with self._lock:
            self.calls += 1
            result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if self.delay:
            time.sleep(self.delay)
        if isinstance(result, Exception):
            raise result
        return result


def test_refresh_stores_the_fund_set() -> None:
    funds = [make_fund("aa" * 32), make_fund("bb" * 32, 1)]
    inventory = UTxOInventory(StubProvider(funds))

    fund_set = asyncio.run(inventory.refresh(ADDRESS))

    assert fund_set.address == ADDRESS
    assert fund_set.references == (funds[0].reference, funds[1].reference)
    assert inventory.current(ADDRESS) is fund_set
    assert not inventory.refreshing(ADDRESS)


def test_concurrent_refreshes_share_one_provider_call() -> None:
    provider = StubProvider([make_fund("aa" * 32)], delay=0.05)
    inventory = UTxOInventory(provider)

    async def scenario():
        return await asyncio.gather(
            inventory.refresh(ADDRESS),
            inventory.refresh(ADDRESS),
            inventory.refresh(ADDRESS),
        )

    results = asyncio.run(scenario())

    assert provider.calls == 1
    assert results[0] is results[1] is results[2]


def test_failed_refresh_keeps_the_previous_set() -> None:
    provider = StubProvider(
        [make_fund("aa" * 32)],
        ProviderHTTPError(500, "internal error"),
    )
    inventory = UTxOInventory(provider)
    previous = asyncio.run(inventory.refresh(ADDRESS))

    with pytest.raises(ProviderUnavailable) as excinfo:
        asyncio.run(inventory.refresh(ADDRESS))

    assert "last known set" in str(excinfo.value)
    assert excinfo.value.retryable
    assert inventory.current(ADDRESS) is previous


def test_transport_failure_is_reported_as_provider_unavailable() -> None:
    inventory = UTxOInventory(StubProvider(ProviderTransportError("connection refused")))

    with pytest.raises(ProviderUnavailable, match="connection refused"):
        asyncio.run(inventory.refresh(ADDRESS))
    assert inventory.current(ADDRESS) is None


def test_duplicate_references_are_rejected() -> None:
    duplicate = make_fund("aa" * 32)
    inventory = UTxOInventory(StubProvider([duplicate, duplicate]))

    with pytest.raises(ProviderUnavailable, match="duplicate"):
        asyncio.run(inventory.refresh(ADDRESS))


def test_refresh_requires_an_address() -> None:
    inventory = UTxOInventory(StubProvider([]))

    with pytest.raises(ValueError):
        asyncio.run(inventory.refresh(""))


class SequencedProvider:
    def __init__(self, responses) -> None:
        self.responses = list(responses)
        self.calls = 0
        self._lock = threading.Lock()

    def fetch_address_utxos(self, address: str):
        with self._lock:
            delay, funds = self.responses[self.calls]
            self.calls += 1
        time.sleep(delay)
        return funds


def test_fresh_refresh_starts_a_new_fetch_and_newest_result_wins() -> None:
    before = make_fund("aa" * 32)
    after = make_fund("bb" * 32)
    provider = SequencedProvider([(0.15, [before]), (0.0, [after])])
    inventory = UTxOInventory(provider)

    async def scenario():
        earlier = asyncio.ensure_future(inventory.refresh(ADDRESS))
        await asyncio.sleep(0.02)
        latest = await inventory.refresh(ADDRESS, fresh=True)
        return await earlier, latest

    earlier, latest = asyncio.run(scenario())

    assert provider.calls == 2
    assert earlier.references == (before.reference,)
    assert latest.references == (after.reference,)
    assert inventory.current(ADDRESS) is latest
