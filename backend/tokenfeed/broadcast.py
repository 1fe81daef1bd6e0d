from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from tokenfeed.observability.logging import get_logger
from tokenfeed.schemas.token import Asset

logger = get_logger(__name__)

TOKEN_UPDATE_EVENT = "token:update"

Publisher = Callable[[str, Any], Awaitable[None]]


class FieldChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: Any = Field(default=None, alias="from")
    to: Any = None


class TokenUpdate(BaseModel):
    token: Asset
    diff: Union[Literal["new"], dict[str, FieldChange]]

    def wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def diff_tokens(previous: Asset, current: Asset) -> dict[str, FieldChange]:
    """Field-level changes keyed by wire name; values compared as normalized numbers."""
    before = previous.model_dump(by_alias=True)
    after = current.model_dump(by_alias=True)
    changes: dict[str, FieldChange] = {}
    for name, value in after.items():
        if before.get(name) != value:
            changes[name] = FieldChange(from_=before.get(name), to=value)
    return changes


class Snapshot:
    """Last broadcast state, address -> Asset."""

    def __init__(self) -> None:
        self._tokens: dict[str, Asset] = {}

    def get(self, address: str) -> Asset | None:
        return self._tokens.get(address)

    def put(self, token: Asset) -> None:
        self._tokens[token.address] = token

    def __len__(self) -> int:
        return len(self._tokens)

    def __contains__(self, address: object) -> bool:
        return address in self._tokens


class DiffBroadcaster:
    """Publishes ``token:update`` for new and changed assets.

    Assets that disappear from a later set are ignored; their snapshot entry
    stays as last broadcast.
    """

    def __init__(self, publish: Publisher, snapshot: Snapshot | None = None) -> None:
        self._publish = publish
        self.snapshot = snapshot if snapshot is not None else Snapshot()

    def compute(self, tokens: Iterable[Asset]) -> list[TokenUpdate]:
        updates: list[TokenUpdate] = []
        for token in tokens:
            previous = self.snapshot.get(token.address)
            if previous is None:
                updates.append(TokenUpdate(token=token, diff="new"))
                continue
            changes = diff_tokens(previous, token)
            if changes:
                updates.append(TokenUpdate(token=token, diff=changes))
        return updates

    async def tick(self, tokens: Iterable[Asset]) -> list[TokenUpdate]:
        updates = self.compute(tokens)
        for update in updates:
            await self._publish(TOKEN_UPDATE_EVENT, update.wire())
            self.snapshot.put(update.token)
        if updates:
            logger.info("broadcast_tick", updates=len(updates), tracked=len(self.snapshot))
        return updates
