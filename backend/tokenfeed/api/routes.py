from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, status

from tokenfeed.aggregation.aggregator import Aggregator
from tokenfeed.push import PushHub
from tokenfeed.ranking import paginate
from tokenfeed.schemas.token import Asset, SortKey, Timeframe, TokenPage, TokenQuery

router = APIRouter()


def get_aggregator(request: Request) -> Aggregator:
    return request.app.state.aggregator


def get_token_query(
    q: Optional[str] = Query(default=None),
    page: Optional[int] = Query(default=None, ge=1, le=10),
    limit: int = Query(default=30, ge=1, le=100),
    cursor: Optional[str] = Query(default=None),
    sort: SortKey = Query(default="volume"),
    timeframe: Timeframe = Query(default="24h"),
) -> TokenQuery:
    return TokenQuery(
        q=q.strip() if q and q.strip() else None,
        page=page,
        limit=limit,
        cursor=cursor,
        sort=sort,
        timeframe=timeframe,
    )


@router.get("/health")
def health() -> dict:
    return {"ok": True}


@router.get("/tokens", response_model=TokenPage)
async def list_tokens(
    query: TokenQuery = Depends(get_token_query),
    aggregator: Aggregator = Depends(get_aggregator),
) -> TokenPage:
    tokens = await aggregator.aggregate(query)
    page, next_cursor = paginate(
        tokens, query.sort, query.timeframe, query.limit, query.cursor
    )
    return TokenPage(data=page, next_cursor=next_cursor, page_size=query.limit)


@router.get("/tokens/{address}", response_model=Asset)
async def get_token(
    address: str, aggregator: Aggregator = Depends(get_aggregator)
) -> Asset:
    token = await aggregator.get_token(address.strip())
    if token is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found.")
    return token


@router.websocket("/ws")
async def push_channel(websocket: WebSocket) -> None:
    hub: PushHub = websocket.app.state.hub
    await hub.serve(websocket)
