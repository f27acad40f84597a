"""资产 Service — 资产增删改、复制、接替关系、组合查询与个人标记，以及役龄 / 状态等派生查询"""

import operator
from datetime import date, datetime

from dateutil.relativedelta import relativedelta
from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fleet_assets.models.asset import Asset, AssetSubtype, AssetType, AssetUserTag
from fleet_assets.models.asset_event import AssetEvent
from fleet_assets.services.policy_service import PolicyNotFoundError, resolve_policy
from fleet_assets.utils.cache import CacheBackend, invalidate_asset
from fleet_assets.utils.fiscal_year import fiscal_year_on_date
from fleet_assets.utils.lookups import (
    SERVICE_STATUS_IN_SERVICE,
    SERVICE_STATUS_UNKNOWN,
    UNKNOWN_CONDITION,
)
from fleet_assets.utils.security import generate_object_key


class AssetError(Exception):
    def __init__(self, detail: str, status_code: int = 400):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


# 用户可维护的字段；修改其中任一字段后需要重算
AUTHORITATIVE_FIELDS = (
    "asset_type_id",
    "asset_subtype_id",
    "asset_tag",
    "external_id",
    "description",
    "manufacturer_model",
    "serial_number",
    "manufacture_year",
    "purchase_cost",
    "purchase_date",
    "purchased_new",
    "in_service_date",
    "warranty_date",
)

# 复制资产时重置为默认值的字段
CLEANSABLE_FIELDS: dict[str, object] = {
    "external_id": None,
    "serial_number": None,
    "parent_id": None,
    "superseded_by_id": None,
    "location_comments": None,
    "reported_condition_type": UNKNOWN_CONDITION,
    "reported_condition_rating": None,
    "reported_condition_date": None,
    "estimated_condition_type": UNKNOWN_CONDITION,
    "estimated_condition_rating": None,
    "service_status_type": SERVICE_STATUS_UNKNOWN,
    "service_status_date": None,
    "policy_replacement_year": None,
    "policy_rehabilitation_year": None,
    "estimated_replacement_year": None,
    "scheduled_replacement_year": None,
    "replacement_reason_type": None,
    "scheduled_rehabilitation_year": None,
    "scheduled_disposition_year": None,
    "last_rehabilitation_date": None,
    "rehabilitation_extension_months": None,
    "in_backlog": False,
    "estimated_replacement_cost": None,
    "scheduled_replacement_cost": None,
    "disposition_date": None,
    "disposition_type": None,
}


# ─────────────────────── 派生查询 ───────────────────────


def _months_between(start: date | None, end: date) -> int:
    if start is None or end <= start:
        return 0
    delta = relativedelta(end, start)
    return delta.years * 12 + delta.months


def months_in_service(asset, on_date: date | None = None) -> int:
    """投入使用至今的整月数"""
    return _months_between(asset.in_service_date or asset.purchase_date, on_date or date.today())


def months_since_rehabilitation(asset, on_date: date | None = None) -> int | None:
    if asset.last_rehabilitation_date is None:
        return None
    return _months_between(asset.last_rehabilitation_date, on_date or date.today())


def age(asset, on_date: date | None = None) -> int:
    """按财年计的车龄（自制造年份起）"""
    return max(fiscal_year_on_date(on_date or date.today()) - asset.manufacture_year, 0)


def years_owned(asset, on_date: date | None = None) -> int:
    on_date = on_date or date.today()
    return max(fiscal_year_on_date(on_date) - fiscal_year_on_date(asset.purchase_date), 0)


def years_in_service(asset, on_date: date | None = None) -> int:
    return months_in_service(asset, on_date) // 12


def is_disposed(asset) -> bool:
    return asset.disposition_date is not None


def is_disposable(asset, as_of: date | None = None) -> bool:
    """未处置且计划处置年份已到（或已进入更换积压）"""
    if is_disposed(asset):
        return False
    current_year = fiscal_year_on_date(as_of or date.today())
    if asset.scheduled_disposition_year is not None:
        return asset.scheduled_disposition_year <= current_year
    return bool(asset.in_backlog)


def scheduled_for_disposition(asset) -> bool:
    return not is_disposed(asset) and asset.scheduled_disposition_year is not None


def scheduled_for_rehabilitation(asset) -> bool:
    return asset.scheduled_rehabilitation_year is not None


def is_in_service(asset) -> bool:
    return asset.service_status_type == SERVICE_STATUS_IN_SERVICE


def asset_name(asset) -> str:
    if asset.description:
        return f"{asset.asset_tag} - {asset.description}"
    return asset.asset_tag


# ─────────────────────── 查询 ───────────────────────


async def get_asset(db: AsyncSession, asset_ref: str) -> Asset | None:
    """按内部 id 或 object_key 查找资产"""
    result = await db.execute(
        select(Asset).where(or_(Asset.id == asset_ref, Asset.object_key == asset_ref))
    )
    return result.scalar_one_or_none()


async def list_assets(
    db: AsyncSession,
    organization_id: str,
    asset_type_id: int | None = None,
    asset_subtype_id: int | None = None,
    in_backlog: bool | None = None,
    include_disposed: bool = False,
    keyword: str | None = None,
) -> list[Asset]:
    stmt = select(Asset).where(Asset.organization_id == organization_id)
    if asset_type_id is not None:
        stmt = stmt.where(Asset.asset_type_id == asset_type_id)
    if asset_subtype_id is not None:
        stmt = stmt.where(Asset.asset_subtype_id == asset_subtype_id)
    if in_backlog is not None:
        stmt = stmt.where(Asset.in_backlog == in_backlog)
    if not include_disposed:
        stmt = stmt.where(Asset.disposition_date.is_(None))
    if keyword:
        like = f"%{keyword}%"
        stmt = stmt.where(or_(Asset.asset_tag.ilike(like), Asset.description.ilike(like)))
    result = await db.execute(stmt.order_by(Asset.asset_tag))
    return list(result.scalars().all())


# 组合查询中按等值过滤的字段
SEARCH_EQUALITY_FIELDS = (
    "asset_type_id",
    "asset_subtype_id",
    "reported_condition_type",
    "estimated_condition_type",
    "service_status_type",
    "in_backlog",
    "purchased_new",
)

# 组合查询中可带比较方式的字段
SEARCH_COMPARATOR_FIELDS = (
    "purchase_cost",
    "manufacture_year",
    "policy_replacement_year",
    "scheduled_replacement_year",
    "purchase_date",
    "in_service_date",
)

COMPARATORS = {"lt": operator.lt, "eq": operator.eq, "gt": operator.gt}


async def search_assets(db: AsyncSession, organization_id: str, criteria: dict) -> list[Asset]:
    """资产组合查询

    criteria 中：
    - 等值字段直接比较；
    - 比较字段的值形如 {"value": ..., "comparator": "lt" | "eq" | "gt"}；
    - manufacturer_model 做模糊匹配；
    - include_disposed 为假时排除已处置资产。
    值为 None 的条件忽略。
    """
    stmt = select(Asset).where(Asset.organization_id == organization_id)
    for field in SEARCH_EQUALITY_FIELDS:
        value = criteria.get(field)
        if value is not None:
            stmt = stmt.where(getattr(Asset, field) == value)
    for field in SEARCH_COMPARATOR_FIELDS:
        condition = criteria.get(field)
        if condition is None:
            continue
        comparator = condition.get("comparator", "eq")
        compare = COMPARATORS.get(comparator)
        if compare is None:
            raise AssetError(f"不支持的比较方式: {comparator}", status_code=422)
        stmt = stmt.where(compare(getattr(Asset, field), condition["value"]))
    model = criteria.get("manufacturer_model")
    if model:
        stmt = stmt.where(Asset.manufacturer_model.ilike(f"%{model}%"))
    if not criteria.get("include_disposed"):
        stmt = stmt.where(Asset.disposition_date.is_(None))
    result = await db.execute(stmt.order_by(Asset.asset_tag))
    return list(result.scalars().all())


async def list_asset_types(db: AsyncSession) -> list[AssetType]:
    result = await db.execute(
        select(AssetType).options(selectinload(AssetType.subtypes)).order_by(AssetType.id)
    )
    return list(result.scalars().all())


async def get_asset_summary(db: AsyncSession, organization_id: str) -> dict:
    """机构资产概览：按类型计数、积压数量、计划更换成本合计"""
    base = Asset.organization_id == organization_id
    operational = Asset.disposition_date.is_(None)

    by_type = await db.execute(
        select(AssetType.name, func.count(Asset.id))
        .join(AssetType, AssetType.id == Asset.asset_type_id)
        .where(base, operational)
        .group_by(AssetType.name)
        .order_by(AssetType.name)
    )
    totals = await db.execute(
        select(
            func.count(Asset.id),
            func.coalesce(func.sum(Asset.purchase_cost), 0),
            func.coalesce(func.sum(Asset.scheduled_replacement_cost), 0),
        ).where(base, operational)
    )
    total_count, total_purchase_cost, total_replacement_cost = totals.one()
    backlog = await db.scalar(
        select(func.count(Asset.id)).where(base, operational, Asset.in_backlog == True)
    )
    disposed = await db.scalar(
        select(func.count(Asset.id)).where(base, Asset.disposition_date.is_not(None))
    )

    return {
        "total_count": total_count,
        "backlog_count": backlog or 0,
        "disposed_count": disposed or 0,
        "total_purchase_cost": int(total_purchase_cost),
        "total_scheduled_replacement_cost": int(total_replacement_cost),
        "by_type": [{"asset_type": name, "count": count} for name, count in by_type.all()],
    }


# ─────────────────────── 校验 ───────────────────────


async def _check_subtype(db: AsyncSession, asset_type_id: int, asset_subtype_id: int) -> None:
    result = await db.execute(select(AssetSubtype).where(AssetSubtype.id == asset_subtype_id))
    subtype = result.scalar_one_or_none()
    if subtype is None:
        raise AssetError(f"资产子类不存在: {asset_subtype_id}", 404)
    if subtype.asset_type_id != asset_type_id:
        raise AssetError("资产子类不属于该资产类型")


async def _check_unique(
    db: AsyncSession,
    organization_id: str,
    asset_tag: str | None,
    serial_number: str | None,
    exclude_id: str | None = None,
) -> None:
    if asset_tag:
        stmt = select(Asset.id).where(
            Asset.organization_id == organization_id, Asset.asset_tag == asset_tag
        )
        if exclude_id:
            stmt = stmt.where(Asset.id != exclude_id)
        if (await db.execute(stmt)).first():
            raise AssetError(f"资产编号已存在: {asset_tag}", 409)
    if serial_number:
        stmt = select(Asset.id).where(
            Asset.organization_id == organization_id, Asset.serial_number == serial_number
        )
        if exclude_id:
            stmt = stmt.where(Asset.id != exclude_id)
        if (await db.execute(stmt)).first():
            raise AssetError(f"序列号已存在: {serial_number}", 409)


# ─────────────────────── 增删改 ───────────────────────


async def create_asset(
    db: AsyncSession,
    organization_id: str,
    data: dict,
    user_id: str | None = None,
) -> Asset:
    """新建资产；投入使用日期缺省为购置日期"""
    await _check_subtype(db, data["asset_type_id"], data["asset_subtype_id"])
    await _check_unique(db, organization_id, data.get("asset_tag"), data.get("serial_number"))

    fields = {k: v for k, v in data.items() if k in AUTHORITATIVE_FIELDS}
    if not fields.get("in_service_date"):
        fields["in_service_date"] = fields["purchase_date"]

    asset = Asset(
        object_key=generate_object_key(),
        organization_id=organization_id,
        created_by_id=user_id,
        updated_by_id=user_id,
        **fields,
    )
    db.add(asset)
    await db.flush()
    await db.refresh(asset)
    return asset


async def update_asset(
    db: AsyncSession,
    asset: Asset,
    data: dict,
    user_id: str | None = None,
    cache: CacheBackend | None = None,
) -> Asset:
    """更新 authoritative 字段；None 值忽略。写入后失效该资产的缓存"""
    fields = {k: v for k, v in data.items() if k in AUTHORITATIVE_FIELDS and v is not None}
    if "asset_type_id" in fields or "asset_subtype_id" in fields:
        await _check_subtype(
            db,
            fields.get("asset_type_id", asset.asset_type_id),
            fields.get("asset_subtype_id", asset.asset_subtype_id),
        )
    await _check_unique(
        db,
        asset.organization_id,
        fields.get("asset_tag"),
        fields.get("serial_number"),
        exclude_id=asset.id,
    )

    for key, value in fields.items():
        setattr(asset, key, value)
    asset.updated_by_id = user_id
    asset.updated_at = datetime.utcnow()
    await db.flush()
    await db.refresh(asset)
    invalidate_asset(cache, asset.object_key)
    return asset


async def delete_asset(db: AsyncSession, asset: Asset) -> None:
    """删除资产；指向它的上级位置 / 接替引用置空"""
    await db.execute(update(Asset).where(Asset.parent_id == asset.id).values(parent_id=None))
    await db.execute(
        update(Asset).where(Asset.superseded_by_id == asset.id).values(superseded_by_id=None)
    )
    await db.execute(
        update(AssetEvent).where(AssetEvent.parent_id == asset.id).values(parent_id=None)
    )
    await db.execute(delete(AssetUserTag).where(AssetUserTag.asset_id == asset.id))
    await db.delete(asset)
    await db.flush()


async def copy_asset(
    db: AsyncSession,
    asset: Asset,
    asset_tag: str,
    user_id: str | None = None,
) -> Asset:
    """复制资产：保留 authoritative 字段，清空派生状态与唯一标识，不复制事件"""
    await _check_unique(db, asset.organization_id, asset_tag, None)

    fields = {key: getattr(asset, key) for key in AUTHORITATIVE_FIELDS}
    fields.update(CLEANSABLE_FIELDS)
    fields["asset_tag"] = asset_tag

    clone = Asset(
        object_key=generate_object_key(),
        organization_id=asset.organization_id,
        created_by_id=user_id,
        updated_by_id=user_id,
        **fields,
    )
    db.add(clone)
    await db.flush()
    await db.refresh(clone)
    return clone


# ─────────────────────── 接替关系 ───────────────────────


async def get_superseded_by(db: AsyncSession, asset: Asset) -> Asset | None:
    if asset.superseded_by_id is None:
        return None
    result = await db.execute(select(Asset).where(Asset.id == asset.superseded_by_id))
    return result.scalar_one_or_none()


async def get_supersedes(db: AsyncSession, asset: Asset) -> list[Asset]:
    """被该资产接替的资产"""
    result = await db.execute(
        select(Asset).where(Asset.superseded_by_id == asset.id).order_by(Asset.asset_tag)
    )
    return list(result.scalars().all())


async def set_superseded_by(
    db: AsyncSession,
    asset: Asset,
    successor_id: str | None,
    user_id: str | None = None,
) -> Asset:
    """
    设置接替资产（None 表示清除）
    - 接替资产须属于同一机构
    - 沿接替链向后查找，回到自身即视为循环
    """
    if successor_id is not None:
        successor = await get_asset(db, successor_id)
        if successor is None or successor.organization_id != asset.organization_id:
            raise AssetError("接替资产不存在或不属于同一机构", 404)
        if successor.id == asset.id:
            raise AssetError("资产不能接替自身")

        seen = {asset.id}
        current = successor
        while current.superseded_by_id is not None:
            if current.superseded_by_id in seen:
                raise AssetError("接替关系不能形成循环")
            seen.add(current.id)
            result = await db.execute(select(Asset).where(Asset.id == current.superseded_by_id))
            current = result.scalar_one_or_none()
            if current is None:
                break
        successor_id = successor.id

    asset.superseded_by_id = successor_id
    asset.updated_by_id = user_id
    asset.updated_at = datetime.utcnow()
    await db.flush()
    await db.refresh(asset)
    return asset


# ─────────────────────── 个人标记 ───────────────────────


async def is_tagged(db: AsyncSession, asset: Asset, user_id: str) -> bool:
    tag = await db.get(AssetUserTag, (asset.id, user_id))
    return tag is not None


async def tag_asset(db: AsyncSession, asset: Asset, user_id: str) -> None:
    """为用户标记资产；已标记时不重复添加"""
    if await is_tagged(db, asset, user_id):
        return
    db.add(AssetUserTag(asset_id=asset.id, user_id=user_id))
    await db.flush()


async def untag_asset(db: AsyncSession, asset: Asset, user_id: str) -> None:
    await db.execute(
        delete(AssetUserTag).where(
            AssetUserTag.asset_id == asset.id, AssetUserTag.user_id == user_id
        )
    )
    await db.flush()


async def list_tagged_assets(db: AsyncSession, organization_id: str, user_id: str) -> list[Asset]:
    """用户在某机构下标记过的资产（含已处置）"""
    result = await db.execute(
        select(Asset)
        .join(AssetUserTag, AssetUserTag.asset_id == Asset.id)
        .where(Asset.organization_id == organization_id, AssetUserTag.user_id == user_id)
        .order_by(Asset.asset_tag)
    )
    return list(result.scalars().all())


# ─────────────────────── 大修费用 ───────────────────────


async def total_rehabilitation_cost(db: AsyncSession, asset: Asset) -> int:
    """已完成大修的费用合计；没有大修记录时为 0"""
    total = await db.scalar(
        select(func.coalesce(func.sum(AssetEvent.total_cost), 0)).where(
            AssetEvent.asset_id == asset.id,
            AssetEvent.event_type == "rehabilitation_update",
        )
    )
    return int(total or 0)


async def estimated_rehabilitation_cost(
    db: AsyncSession, asset: Asset, cache: CacheBackend | None = None
) -> int | None:
    """
    按政策规则估算的大修费用
    - 已处置资产没有估算值
    - 机构没有生效政策或规则时为 None
    """
    if is_disposed(asset):
        return None
    try:
        policy = await resolve_policy(db, asset, cache)
    except PolicyNotFoundError:
        return None
    return policy.rehabilitation_cost
