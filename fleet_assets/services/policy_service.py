"""更换政策 Service — 政策解析（资产 → 机构 → 生效政策 → 子类规则）与维护"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fleet_assets.models.asset import Asset, AssetSubtype
from fleet_assets.models.policy import Policy, PolicyRule
from fleet_assets.utils.cache import CacheBackend, asset_cache_key
from fleet_assets.utils.seed import seed_policy_for_organization

logger = logging.getLogger(__name__)

POLICY_CACHE_ATTRIBUTE = "policy_rule"


def policy_cache_key(asset) -> str:
    """规则缓存键带上子类 id：子类变更后旧键不再命中"""
    return asset_cache_key(asset.object_key, f"{POLICY_CACHE_ATTRIBUTE}:{asset.asset_subtype_id}")


class PolicyError(Exception):
    def __init__(self, detail: str, status_code: int = 400):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class PolicyNotFoundError(PolicyError):
    """机构没有生效政策，该资产的重算整体中止"""

    def __init__(self, detail: str):
        super().__init__(detail, status_code=409)


class PolicyRuleNotFoundError(PolicyNotFoundError):
    """生效政策中没有该资产子类的规则"""


@dataclass(frozen=True)
class ResolvedPolicy:
    """解析后的政策视图：政策级参数 + 子类规则，供计算器只读使用"""

    policy_id: str
    policy_name: str
    policy_year: int
    organization_id: str
    asset_subtype_id: int
    condition_threshold: float
    interest_rate: float
    min_service_life_months: int
    replacement_cost: int
    rehabilitation_service_month: int
    rehabilitation_cost: int
    extended_service_life_months: int
    service_life_calculation_type: str
    condition_estimation_type: str
    cost_calculation_type: str

    @classmethod
    def from_rule(cls, policy: Policy, rule: PolicyRule) -> "ResolvedPolicy":
        return cls(
            policy_id=policy.id,
            policy_name=policy.name,
            policy_year=policy.year,
            organization_id=policy.organization_id,
            asset_subtype_id=rule.asset_subtype_id,
            condition_threshold=float(policy.condition_threshold),
            interest_rate=float(policy.interest_rate),
            min_service_life_months=rule.min_service_life_months,
            replacement_cost=rule.replacement_cost or 0,
            rehabilitation_service_month=rule.rehabilitation_service_month or 0,
            rehabilitation_cost=rule.rehabilitation_cost or 0,
            extended_service_life_months=rule.extended_service_life_months or 0,
            service_life_calculation_type=rule.service_life_calculation_type,
            condition_estimation_type=rule.condition_estimation_type,
            cost_calculation_type=rule.cost_calculation_type,
        )


# ─────────────────────── 查询 ───────────────────────


async def get_active_policy(db: AsyncSession, organization_id: str) -> Policy | None:
    """机构当前生效的政策（含规则）"""
    result = await db.execute(
        select(Policy)
        .options(selectinload(Policy.rules))
        .where(Policy.organization_id == organization_id, Policy.active == True)
        .order_by(Policy.year.desc(), Policy.created_at.desc())
    )
    return result.scalars().first()


async def get_policy(db: AsyncSession, policy_id: str) -> Policy | None:
    result = await db.execute(
        select(Policy).options(selectinload(Policy.rules)).where(Policy.id == policy_id)
    )
    return result.scalar_one_or_none()


async def list_policies(db: AsyncSession, organization_id: str) -> list[Policy]:
    result = await db.execute(
        select(Policy)
        .options(selectinload(Policy.rules))
        .where(Policy.organization_id == organization_id)
        .order_by(Policy.year.desc(), Policy.created_at.desc())
    )
    return list(result.scalars().all())


# ─────────────────────── 政策解析 ───────────────────────


async def resolve_policy(
    db: AsyncSession,
    asset: Asset,
    cache: CacheBackend | None = None,
) -> ResolvedPolicy:
    """
    解析资产适用的政策：
    1. 命中缓存直接返回（键含资产子类）
    2. 机构无生效政策 → PolicyNotFoundError
    3. 政策无该子类规则 → PolicyRuleNotFoundError
    """
    cache_key = policy_cache_key(asset)
    if cache is not None:
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

    policy = await get_active_policy(db, asset.organization_id)
    if policy is None:
        raise PolicyNotFoundError(f"机构 {asset.organization_id} 没有生效的更换政策")

    rule = next((r for r in policy.rules if r.asset_subtype_id == asset.asset_subtype_id), None)
    if rule is None:
        raise PolicyRuleNotFoundError(
            f"政策「{policy.name}」中没有资产子类 {asset.asset_subtype_id} 的规则"
        )

    resolved = ResolvedPolicy.from_rule(policy, rule)
    if cache is not None:
        cache.set(cache_key, resolved)
    return resolved


# ─────────────────────── 维护 ───────────────────────


async def _check_subtype(db: AsyncSession, asset_subtype_id: int) -> None:
    result = await db.execute(select(AssetSubtype).where(AssetSubtype.id == asset_subtype_id))
    if result.scalar_one_or_none() is None:
        raise PolicyError(f"资产子类不存在: {asset_subtype_id}", 404)


async def create_policy(
    db: AsyncSession,
    organization_id: str,
    name: str,
    year: int,
    description: str | None = None,
    condition_threshold: float = 2.5,
    interest_rate: float = 1.1,
    rules: list[dict] | None = None,
    copy_active_rules: bool = True,
    activate: bool = False,
    cache: CacheBackend | None = None,
) -> Policy:
    """
    创建政策。
    - rules 为空且 copy_active_rules=True 时复制当前生效政策的规则
    - activate=True 时立即生效（同机构其它政策失效）
    """
    policy = Policy(
        organization_id=organization_id,
        name=name,
        description=description,
        year=year,
        active=False,
        condition_threshold=condition_threshold,
        interest_rate=interest_rate,
    )
    db.add(policy)
    await db.flush()

    if rules:
        for rule_data in rules:
            await _check_subtype(db, rule_data["asset_subtype_id"])
            db.add(PolicyRule(policy_id=policy.id, **rule_data))
    elif copy_active_rules:
        current = await get_active_policy(db, organization_id)
        if current is not None:
            for r in current.rules:
                db.add(PolicyRule(
                    policy_id=policy.id,
                    asset_subtype_id=r.asset_subtype_id,
                    min_service_life_months=r.min_service_life_months,
                    replacement_cost=r.replacement_cost,
                    rehabilitation_service_month=r.rehabilitation_service_month,
                    rehabilitation_cost=r.rehabilitation_cost,
                    extended_service_life_months=r.extended_service_life_months,
                    service_life_calculation_type=r.service_life_calculation_type,
                    condition_estimation_type=r.condition_estimation_type,
                    cost_calculation_type=r.cost_calculation_type,
                ))
    await db.flush()

    if activate:
        await activate_policy(db, policy, cache)

    return await get_policy(db, policy.id)


async def update_policy(
    db: AsyncSession,
    policy: Policy,
    cache: CacheBackend | None = None,
    **fields,
) -> Policy:
    """更新政策级参数（名称 / 阈值 / 通胀率等），None 值忽略"""
    for key, value in fields.items():
        if value is not None:
            setattr(policy, key, value)
    policy.updated_at = datetime.utcnow()
    await db.flush()
    if cache is not None:
        cache.clear()
    return await get_policy(db, policy.id)


async def upsert_rule(
    db: AsyncSession,
    policy: Policy,
    asset_subtype_id: int,
    fields: dict,
    cache: CacheBackend | None = None,
) -> PolicyRule:
    """新增或更新政策中某个子类的规则"""
    await _check_subtype(db, asset_subtype_id)
    rule = next((r for r in policy.rules if r.asset_subtype_id == asset_subtype_id), None)
    if rule is None:
        if fields.get("min_service_life_months") is None:
            raise PolicyError("新建规则需要 min_service_life_months")
        rule = PolicyRule(asset_subtype_id=asset_subtype_id)
        policy.rules.append(rule)
    for key, value in fields.items():
        if value is not None:
            setattr(rule, key, value)
    policy.updated_at = datetime.utcnow()
    await db.flush()
    await db.refresh(rule)
    if cache is not None:
        cache.clear()
    return rule


async def activate_policy(
    db: AsyncSession,
    policy: Policy,
    cache: CacheBackend | None = None,
) -> Policy:
    """使政策生效；同机构其它政策全部失效，保证只有一套生效政策"""
    await db.execute(
        update(Policy)
        .where(Policy.organization_id == policy.organization_id, Policy.id != policy.id)
        .values(active=False)
    )
    policy.active = True
    policy.updated_at = datetime.utcnow()
    await db.flush()
    if cache is not None:
        cache.clear()
    logger.info(f"[政策] 机构 {policy.organization_id} 启用政策 {policy.name}")
    return policy


async def seed_default_policy(db: AsyncSession, organization_id: str) -> Policy:
    """新建机构时调用，灌入默认政策"""
    return await seed_policy_for_organization(db, organization_id)
