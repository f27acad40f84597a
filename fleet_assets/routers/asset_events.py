"""资产事件 API 路由 — 每次变更后同步重算资产"""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_assets.database import get_db
from fleet_assets.models.asset import Asset
from fleet_assets.models.user import User
from fleet_assets.schemas.asset import AssetResponse
from fleet_assets.schemas.asset_event import (
    EventCreate, EventUpdate, EventResponse, EventMutationResponse, HistoryItem,
)
from fleet_assets.services import event_service
from fleet_assets.services.event_service import EventError
from fleet_assets.services.recalculation_service import recalculate_or_warn
from fleet_assets.utils.cache import CacheBackend, get_cache
from fleet_assets.utils.deps import get_current_user, load_asset

router = APIRouter(tags=["资产事件"])


async def _load_event(db: AsyncSession, asset: Asset, event_key: str):
    event = await event_service.get_event(db, asset, event_key)
    if event is None:
        raise HTTPException(status_code=404, detail="事件不存在")
    return event


async def _respond(db, asset, event, cache) -> EventMutationResponse:
    _, warnings = await recalculate_or_warn(db, asset.id, cache=cache)
    await db.commit()
    return EventMutationResponse(
        event=EventResponse.model_validate(event) if event is not None else None,
        asset=AssetResponse.model_validate(asset),
        warnings=warnings,
    )


@router.get("/assets/{asset_id}/events", response_model=list[EventResponse])
async def list_events(
    asset_id: str,
    event_type: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    asset = await load_asset(db, user, asset_id)
    return await event_service.all_events(db, asset.id, event_type)


@router.get("/assets/{asset_id}/history", response_model=list[HistoryItem])
async def get_history(
    asset_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """资产履历：全部事件按时间倒序的一行摘要"""
    asset = await load_asset(db, user, asset_id)
    events = await event_service.all_events(db, asset.id)
    return [
        HistoryItem(
            object_key=e.object_key,
            event_type=e.event_type,
            event_date=e.event_date,
            summary=event_service.event_summary(e),
            comments=e.comments,
            future_dated=event_service.is_future_dated(e),
        )
        for e in events
    ]


@router.post("/assets/{asset_id}/events", response_model=EventMutationResponse, status_code=201)
async def create_event(
    asset_id: str,
    body: EventCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    cache: CacheBackend = Depends(get_cache),
):
    asset = await load_asset(db, user, asset_id, manage=True)
    try:
        event = await event_service.create_event(
            db, asset, body.event_type, body.model_dump(exclude={"event_type"}, exclude_unset=True), user.id
        )
    except EventError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return await _respond(db, asset, event, cache)


@router.get("/assets/{asset_id}/events/{event_key}", response_model=EventResponse)
async def get_event(
    asset_id: str,
    event_key: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    asset = await load_asset(db, user, asset_id)
    return await _load_event(db, asset, event_key)


@router.put("/assets/{asset_id}/events/{event_key}", response_model=EventMutationResponse)
async def update_event(
    asset_id: str,
    event_key: str,
    body: EventUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    cache: CacheBackend = Depends(get_cache),
):
    asset = await load_asset(db, user, asset_id, manage=True)
    event = await _load_event(db, asset, event_key)
    try:
        event = await event_service.update_event(db, asset, event, body.model_dump(exclude_unset=True))
    except EventError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return await _respond(db, asset, event, cache)


@router.delete("/assets/{asset_id}/events/{event_key}", response_model=EventMutationResponse)
async def delete_event(
    asset_id: str,
    event_key: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    cache: CacheBackend = Depends(get_cache),
):
    """删除事件并重算（删除最后一条处置事件即撤销处置）"""
    asset = await load_asset(db, user, asset_id, manage=True)
    event = await _load_event(db, asset, event_key)
    await event_service.delete_event(db, event)
    return await _respond(db, asset, None, cache)
