"""资产事件存储 — 按资产、按类别查询最近事件；事件增删改"""

from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_assets.models.asset import Asset
from fleet_assets.models.asset_event import AssetEvent, EVENT_TYPES
from fleet_assets.utils.lookups import (
    DISPOSITION_TYPES,
    MAX_CONDITION_RATING,
    MIN_CONDITION_RATING,
    REPLACEMENT_REASON_TYPES,
    SERVICE_STATUS_DISPOSED,
    SERVICE_STATUS_TYPES,
)
from fleet_assets.utils.security import generate_object_key


class EventError(Exception):
    def __init__(self, detail: str, status_code: int = 400):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class InvalidEventDataError(EventError):
    """事件载荷缺失或越界；重算时该类别视为没有事件"""

    def __init__(self, detail: str, event_type: str | None = None):
        super().__init__(detail, status_code=422)
        self.event_type = event_type


EVENT_LABELS: dict[str, str] = {
    "condition_update": "状况评估",
    "service_status_update": "服务状态变更",
    "location_update": "位置变更",
    "disposition_update": "处置",
    "schedule_replacement_update": "计划更换",
    "schedule_rehabilitation_update": "计划大修",
    "schedule_disposition_update": "计划处置",
    "rehabilitation_update": "大修记录",
}

# 各类事件允许写入的载荷字段
EVENT_PAYLOAD_FIELDS: dict[str, tuple[str, ...]] = {
    "condition_update": ("assessed_rating",),
    "service_status_update": ("service_status_type",),
    "location_update": ("parent_id",),
    "disposition_update": ("disposition_type", "sales_proceeds"),
    "schedule_replacement_update": ("replacement_year", "replacement_reason_type"),
    "schedule_rehabilitation_update": ("rebuild_year",),
    "schedule_disposition_update": ("disposition_year",),
    "rehabilitation_update": ("total_cost", "extended_useful_life_months"),
}

COMMON_FIELDS = ("event_date", "comments")

MIN_PLANNING_YEAR = 1900


# ─────────────────────── 校验 ───────────────────────


def _require_year(value: int | None, label: str, event_type: str) -> None:
    if value is None or value < MIN_PLANNING_YEAR:
        raise InvalidEventDataError(f"{label}无效: {value}", event_type)


def _require_non_negative(value: int | None, label: str, event_type: str) -> None:
    if value is not None and value < 0:
        raise InvalidEventDataError(f"{label}不能为负数", event_type)


def validate_event(event) -> None:
    """校验事件载荷，不合法抛 InvalidEventDataError"""
    event_type = event.event_type
    if event_type not in EVENT_TYPES:
        raise InvalidEventDataError(f"未知的事件类型: {event_type}", event_type)
    if event.event_date is None:
        raise InvalidEventDataError("缺少事件日期", event_type)

    match event_type:
        case "condition_update":
            rating = event.assessed_rating
            if rating is None or not MIN_CONDITION_RATING <= rating <= MAX_CONDITION_RATING:
                raise InvalidEventDataError(
                    f"状况评分必须介于 {MIN_CONDITION_RATING} 与 {MAX_CONDITION_RATING} 之间", event_type
                )
        case "service_status_update":
            status = event.service_status_type
            if status not in SERVICE_STATUS_TYPES or status == SERVICE_STATUS_DISPOSED:
                raise InvalidEventDataError(f"服务状态无效: {status}", event_type)
        case "disposition_update":
            if event.disposition_type not in DISPOSITION_TYPES:
                raise InvalidEventDataError(f"处置类型无效: {event.disposition_type}", event_type)
            _require_non_negative(event.sales_proceeds, "处置收入", event_type)
        case "schedule_replacement_update":
            _require_year(event.replacement_year, "计划更换年份", event_type)
            reason = event.replacement_reason_type
            if reason is not None and reason not in REPLACEMENT_REASON_TYPES:
                raise InvalidEventDataError(f"更换原因无效: {reason}", event_type)
        case "schedule_rehabilitation_update":
            _require_year(event.rebuild_year, "计划大修年份", event_type)
        case "schedule_disposition_update":
            _require_year(event.disposition_year, "计划处置年份", event_type)
        case "rehabilitation_update":
            _require_non_negative(event.total_cost, "大修费用", event_type)
            _require_non_negative(event.extended_useful_life_months, "延寿月数", event_type)


# ─────────────────────── 查询 ───────────────────────


def _ordered(stmt):
    # 最近的事件在前；同日按录入时间
    return stmt.order_by(AssetEvent.event_date.desc(), AssetEvent.created_at.desc())


async def all_events(
    db: AsyncSession, asset_id: str, event_type: str | None = None
) -> list[AssetEvent]:
    """资产的全部事件（最近的在前），可按类别过滤"""
    stmt = select(AssetEvent).where(AssetEvent.asset_id == asset_id)
    if event_type:
        stmt = stmt.where(AssetEvent.event_type == event_type)
    result = await db.execute(_ordered(stmt))
    return list(result.scalars().all())


async def latest_event(
    db: AsyncSession, asset_id: str, event_type: str
) -> AssetEvent | None:
    result = await db.execute(
        _ordered(
            select(AssetEvent).where(
                AssetEvent.asset_id == asset_id,
                AssetEvent.event_type == event_type,
            )
        ).limit(1)
    )
    return result.scalar_one_or_none()


def latest_events_by_type(events: list[AssetEvent]) -> dict[str, AssetEvent]:
    """从已排序（最近在前）的事件列表中取每个类别的最近一条"""
    latest: dict[str, AssetEvent] = {}
    for event in events:
        latest.setdefault(event.event_type, event)
    return latest


async def get_event(db: AsyncSession, asset: Asset, event_key: str) -> AssetEvent | None:
    """按 object_key 查找事件，且必须属于该资产"""
    result = await db.execute(
        select(AssetEvent).where(
            AssetEvent.object_key == event_key,
            AssetEvent.asset_id == asset.id,
        )
    )
    return result.scalar_one_or_none()


# ─────────────────────── 增删改 ───────────────────────


async def _check_location_parent(db: AsyncSession, asset: Asset, parent_id: str | None) -> None:
    if parent_id is None:
        return
    if parent_id == asset.id:
        raise EventError("资产不能以自身为上级位置")
    result = await db.execute(
        select(Asset.id).where(
            Asset.id == parent_id,
            Asset.organization_id == asset.organization_id,
        )
    )
    if result.scalar_one_or_none() is None:
        raise EventError("上级位置资产不存在或不属于同一机构", 404)


def _apply_fields(event: AssetEvent, data: dict) -> None:
    allowed = COMMON_FIELDS + EVENT_PAYLOAD_FIELDS[event.event_type]
    for key in allowed:
        if key in data:
            setattr(event, key, data[key])


async def create_event(
    db: AsyncSession,
    asset: Asset,
    event_type: str,
    data: dict,
    user_id: str | None,
) -> AssetEvent:
    """
    新增事件
    1. 已处置资产只允许查看，不允许新增事件
    2. 校验载荷与位置引用
    """
    if event_type not in EVENT_TYPES:
        raise InvalidEventDataError(f"未知的事件类型: {event_type}", event_type)
    if asset.disposition_date is not None:
        if event_type == "disposition_update":
            raise EventError("该资产已处置")
        raise EventError("已处置的资产不能新增事件")

    event = AssetEvent(
        object_key=generate_object_key(),
        asset_id=asset.id,
        event_type=event_type,
        created_by_id=user_id,
    )
    _apply_fields(event, data)
    validate_event(event)
    if event_type == "location_update":
        await _check_location_parent(db, asset, event.parent_id)

    db.add(event)
    await db.flush()
    await db.refresh(event)
    return event


async def update_event(db: AsyncSession, asset: Asset, event: AssetEvent, data: dict) -> AssetEvent:
    """更新事件（类别不可变）"""
    _apply_fields(event, data)
    validate_event(event)
    if event.event_type == "location_update":
        await _check_location_parent(db, asset, event.parent_id)
    event.updated_at = datetime.utcnow()
    await db.flush()
    await db.refresh(event)
    return event


async def delete_event(db: AsyncSession, event: AssetEvent) -> str:
    """删除事件，返回其类别"""
    event_type = event.event_type
    await db.delete(event)
    await db.flush()
    return event_type


def event_summary(event: AssetEvent) -> str:
    """事件的一行摘要，用于历史列表"""
    match event.event_type:
        case "condition_update":
            return f"状况评分 {event.assessed_rating}"
        case "service_status_update":
            return f"服务状态 {SERVICE_STATUS_TYPES.get(event.service_status_type, event.service_status_type)}"
        case "location_update":
            return "位置变更" if event.parent_id else "移出上级位置"
        case "disposition_update":
            return f"处置：{event.disposition_type}"
        case "schedule_replacement_update":
            return f"计划 {event.replacement_year} 年更换"
        case "schedule_rehabilitation_update":
            return f"计划 {event.rebuild_year} 年大修"
        case "schedule_disposition_update":
            return f"计划 {event.disposition_year} 年处置"
        case "rehabilitation_update":
            return f"完成大修，费用 {event.total_cost or 0}"
    return EVENT_LABELS.get(event.event_type, event.event_type)


def is_future_dated(event: AssetEvent, today: date | None = None) -> bool:
    """事件日期是否晚于今天；履历中单独标出"""
    return event.event_date > (today or date.today())
