import asyncio

from tokenfeed.broadcast import DiffBroadcaster, Snapshot, diff_tokens
from tokenfeed.schemas.token import Asset


class RecordingPublisher:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    async def __call__(self, event: str, data: dict) -> None:
        self.events.append((event, data))


def token(address: str = "A1", **fields) -> Asset:
    defaults = {"name": "Pipe", "ticker": "PIPE", "price_usd": 0.001, "volume": 10.0}
    defaults.update(fields)
    return Asset(address=address, **defaults)


def test_first_sight_is_new_and_stored() -> None:
    publisher = RecordingPublisher()
    broadcaster = DiffBroadcaster(publisher)

    updates = asyncio.run(broadcaster.tick([token()]))

    assert len(updates) == 1
    assert publisher.events[0][0] == "token:update"
    assert publisher.events[0][1]["diff"] == "new"
    assert publisher.events[0][1]["token"]["address"] == "A1"
    assert publisher.events[0][1]["token"]["priceUsd"] == 0.001
    assert "A1" in broadcaster.snapshot


def test_unchanged_asset_emits_nothing() -> None:
    publisher = RecordingPublisher()
    broadcaster = DiffBroadcaster(publisher)
    asyncio.run(broadcaster.tick([token()]))
    publisher.events.clear()

    updates = asyncio.run(broadcaster.tick([token()]))

    assert updates == []
    assert publisher.events == []


def test_price_change_only_reports_price() -> None:
    publisher = RecordingPublisher()
    broadcaster = DiffBroadcaster(publisher)
    asyncio.run(broadcaster.tick([token(price_usd=1.5)]))
    publisher.events.clear()

    asyncio.run(broadcaster.tick([token(price_usd=1.75)]))

    assert publisher.events == [
        (
            "token:update",
            {
                "token": token(price_usd=1.75).model_dump(mode="json", by_alias=True),
                "diff": {"priceUsd": {"from": 1.5, "to": 1.75}},
            },
        )
    ]
    assert broadcaster.snapshot.get("A1").price_usd == 1.75


def test_numeric_strings_do_not_cause_spurious_diffs() -> None:
    previous = token(price_usd="0.0010", volume=10)
    current = token(price_usd=0.001, volume="10.0")

    assert diff_tokens(previous, current) == {}


def test_source_hint_order_is_not_a_change() -> None:
    previous = token(source_hints=["GeckoTerminal", "DexScreener"])
    current = token(source_hints=["DexScreener", "GeckoTerminal"])

    assert diff_tokens(previous, current) == {}


def test_missing_assets_are_not_signalled() -> None:
    publisher = RecordingPublisher()
    snapshot = Snapshot()
    broadcaster = DiffBroadcaster(publisher, snapshot)
    asyncio.run(broadcaster.tick([token("A1"), token("B2")]))
    publisher.events.clear()

    asyncio.run(broadcaster.tick([token("A1")]))

    assert publisher.events == []
    assert "B2" in snapshot
    assert len(snapshot) == 2


def test_each_broadcaster_owns_its_snapshot() -> None:
    first = DiffBroadcaster(RecordingPublisher())
    second = DiffBroadcaster(RecordingPublisher())

    asyncio.run(first.tick([token()]))

    assert len(first.snapshot) == 1
    assert len(second.snapshot) == 0
