import asyncio

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from tokenfeed.api.routes import get_token, list_tokens
from tokenfeed.cache import CacheStore, MemoryBackend
from tokenfeed.config.settings import Settings
from tokenfeed.main import create_app
from tokenfeed.push import PushHub
from tokenfeed.schemas.token import Asset, TokenQuery


class FakeAggregator:
    def __init__(self, tokens: list[Asset] | None = None, fail: bool = False) -> None:
        self.tokens = tokens or []
        self.fail = fail
        self.queries: list[TokenQuery] = []

    async def aggregate(self, query: TokenQuery) -> list[Asset]:
        if self.fail:
            raise RuntimeError("boom")
        self.queries.append(query)
        return list(self.tokens)

    async def get_token(self, address: str) -> Asset | None:
        for token in self.tokens:
            if token.address == address:
                return token
        return None


def build_tokens() -> list[Asset]:
    return [
        Asset(address="c", name="Gamma", volume=300.0, price_usd=3.0),
        Asset(address="a", name="Alpha", volume=500.0, price_usd=1.0),
        Asset(address="b", name="Beta", volume=400.0, price_usd=2.0),
    ]


def build_client(aggregator: FakeAggregator) -> TestClient:
    app = create_app(
        Settings(),
        cache=CacheStore(MemoryBackend()),
        start_poller=False,
    )
    app.state.aggregator = aggregator
    app.state.hub = PushHub(aggregator)
    return TestClient(app, raise_server_exceptions=False)


def test_list_tokens_pages_with_cursor() -> None:
    aggregator = FakeAggregator(build_tokens())

    first = asyncio.run(list_tokens(TokenQuery(limit=2), aggregator=aggregator))
    second = asyncio.run(
        list_tokens(TokenQuery(limit=2, cursor=first.next_cursor), aggregator=aggregator)
    )

    assert [token.address for token in first.data] == ["a", "b"]
    assert first.page_size == 2
    assert first.next_cursor is not None
    assert [token.address for token in second.data] == ["c"]
    assert second.next_cursor is None


def test_get_token_not_found_raises_404() -> None:
    aggregator = FakeAggregator(build_tokens())

    assert asyncio.run(get_token("a", aggregator=aggregator)).name == "Alpha"
    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(get_token("missing", aggregator=aggregator))

    assert excinfo.value.status_code == 404
    assert excinfo.value.detail == "Not found."


def test_http_listing_uses_camel_case() -> None:
    aggregator = FakeAggregator(build_tokens())
    client = build_client(aggregator)

    response = client.get("/tokens", params={"limit": 1, "sort": "price", "q": "  alp  "})

    assert response.status_code == 200
    body = response.json()
    assert body["pageSize"] == 1
    assert body["nextCursor"]
    assert body["data"][0]["address"] == "c"
    assert body["data"][0]["priceUsd"] == 3.0
    assert aggregator.queries[0].q == "alp"


def test_health() -> None:
    client = build_client(FakeAggregator())

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"ok": True}


@pytest.mark.parametrize(
    "params",
    [{"limit": 0}, {"limit": 101}, {"page": 11}, {"sort": "age"}, {"timeframe": "5m"}],
)
def test_invalid_parameters_are_rejected(params) -> None:
    aggregator = FakeAggregator(build_tokens())
    client = build_client(aggregator)

    response = client.get("/tokens", params=params)

    assert response.status_code == 422
    assert aggregator.queries == []


def test_unexpected_failure_returns_generic_500() -> None:
    client = build_client(FakeAggregator(fail=True))

    response = client.get("/tokens")

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


def test_http_unknown_token_is_404() -> None:
    client = build_client(FakeAggregator(build_tokens()))

    assert client.get("/tokens/b").json()["name"] == "Beta"
    assert client.get("/tokens/nope").status_code == 404


def test_websocket_subscribe_sends_initial_slice() -> None:
    client = build_client(FakeAggregator(build_tokens()))

    with client.websocket_connect("/ws") as websocket:
        websocket.send_json({"event": "subscribe", "data": {"sort": "price", "limit": 2}})
        message = websocket.receive_json()

        assert message["event"] == "tokens:init"
        assert [token["address"] for token in message["data"]] == ["c", "b"]

        websocket.send_json({"event": "subscribe", "data": {"limit": 0}})
        error = websocket.receive_json()

        assert error["event"] == "error"


def test_timeframe_fields_keep_lowercase_suffix_on_the_wire() -> None:
    token = Asset(address="a", price_change_1h=1.0, price_change_24h=2.0, price_change_7d=3.0)
    client = build_client(FakeAggregator([token]))

    body = client.get("/tokens/a").json()

    assert body["priceChange1h"] == 1.0
    assert body["priceChange24h"] == 2.0
    assert body["priceChange7d"] == 3.0
    assert "priceChange1H" not in body
    assert Asset.model_validate(body).price_change_7d == 3.0


def test_websocket_non_json_frame_is_answered_with_error() -> None:
    client = build_client(FakeAggregator(build_tokens()))

    with client.websocket_connect("/ws") as websocket:
        websocket.send_text("not json")
        error = websocket.receive_json()

        assert error["event"] == "error"

        websocket.send_json({"event": "subscribe", "data": {"limit": 1}})
        message = websocket.receive_json()

        assert message["event"] == "tokens:init"
        assert [token["address"] for token in message["data"]] == ["a"]
