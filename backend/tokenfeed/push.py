from __future__ import annotations

from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, ValidationError

from tokenfeed.aggregation.aggregator import Aggregator
from tokenfeed.observability.logging import get_logger
from tokenfeed.ranking import sort_tokens
from tokenfeed.schemas.token import Asset, SortKey, Timeframe, TokenQuery

logger = get_logger(__name__)

SUBSCRIBE_EVENT = "subscribe"
INIT_EVENT = "tokens:init"
ERROR_EVENT = "error"


class ClientFilter(BaseModel):
    q: Optional[str] = None
    sort: SortKey = "volume"
    timeframe: Timeframe = "24h"
    limit: int = Field(default=30, ge=1, le=100)


class PushHub:
    """WebSocket fan-out for push clients.

    ``publish`` is the only thing the broadcaster sees. A socket that fails
    to receive is dropped and the rest still get the event.
    """

    def __init__(self, aggregator: Aggregator) -> None:
        self._aggregator = aggregator
        self._clients: dict[WebSocket, ClientFilter] = {}

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def publish(self, event: str, data: Any) -> None:
        message = {"event": event, "data": data}
        for websocket in list(self._clients):
            try:
                await websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                logger.info("push_client_dropped", error=str(exc))
                self._clients.pop(websocket, None)

    async def initial_slice(self, prefs: ClientFilter) -> list[Asset]:
        tokens = await self._aggregator.aggregate(TokenQuery(q=prefs.q))
        return sort_tokens(tokens, prefs.sort, prefs.timeframe)[: prefs.limit]

    async def subscribe(self, websocket: WebSocket, payload: Any) -> None:
        current = self._clients.get(websocket, ClientFilter())
        try:
            prefs = ClientFilter.model_validate({**current.model_dump(), **(payload or {})})
        except (ValidationError, TypeError) as exc:
            await websocket.send_json({"event": ERROR_EVENT, "data": {"message": str(exc)}})
            return
        self._clients[websocket] = prefs
        tokens = await self.initial_slice(prefs)
        await websocket.send_json(
            {
                "event": INIT_EVENT,
                "data": [token.model_dump(mode="json", by_alias=True) for token in tokens],
            }
        )

    async def serve(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self._clients[websocket] = ClientFilter()
        logger.info("push_client_connected", clients=self.client_count)
        try:
            while True:
                try:
                    message = await websocket.receive_json()
                except ValueError as exc:
                    await websocket.send_json(
                        {"event": ERROR_EVENT, "data": {"message": f"invalid JSON: {exc}"}}
                    )
                    continue
                if isinstance(message, dict) and message.get("event") == SUBSCRIBE_EVENT:
                    await self.subscribe(websocket, message.get("data"))
        except WebSocketDisconnect:
            pass
        finally:
            self._clients.pop(websocket, None)
            logger.info("push_client_disconnected", clients=self.client_count)
