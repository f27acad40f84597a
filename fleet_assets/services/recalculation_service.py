"""状态重算引擎 — 按类别取最近事件，经政策选定的计算器推导资产派生字段

一次重算对应一个资产、一个逻辑事务：
  1. 处置状态最先计算；已处置资产冻结，其余步骤全部跳过
  2. 解析政策（无生效政策 → PolicyNotFoundError，什么都不写）
  3. 各步骤在草稿上依次执行，单步失败只影响本步字段
  4. 变更字段一次性写回，失效该资产的缓存
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_assets.models.asset import Asset
from fleet_assets.models.asset_event import AssetEvent
from fleet_assets.services.calculators import CalculatorKind, resolve_calculator
from fleet_assets.services.event_service import (
    InvalidEventDataError,
    all_events,
    latest_events_by_type,
    validate_event,
)
from fleet_assets.services.policy_service import PolicyNotFoundError, ResolvedPolicy, resolve_policy
from fleet_assets.utils.cache import CacheBackend, invalidate_asset
from fleet_assets.utils.fiscal_year import current_planning_year, start_of_fiscal_year
from fleet_assets.utils.lookups import (
    SERVICE_STATUS_DISPOSED,
    SERVICE_STATUS_UNKNOWN,
    UNKNOWN_CONDITION,
    condition_type_from_rating,
)

logger = logging.getLogger(__name__)


class RecalculationError(Exception):
    def __init__(self, detail: str, status_code: int = 400):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


class OutcomeStatus(str, Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class FieldOutcome:
    """单个步骤的结果"""

    step: str
    status: OutcomeStatus
    fields: dict[str, Any] = field(default_factory=dict)
    message: str | None = None


@dataclass
class RecalculationResult:
    asset_id: str
    object_key: str
    disposed: bool
    outcomes: list[FieldOutcome] = field(default_factory=list)
    changed_fields: dict[str, Any] = field(default_factory=dict)

    @property
    def warnings(self) -> list[str]:
        return [
            f"{o.step}: {o.message}"
            for o in self.outcomes
            if o.status in (OutcomeStatus.FAILED, OutcomeStatus.SKIPPED) and o.message
        ]

    def outcome(self, step: str) -> FieldOutcome | None:
        return next((o for o in self.outcomes if o.step == step), None)


class _Draft:
    """资产草稿：先读本次重算的待写值，再读资产原值"""

    def __init__(self, asset: Asset):
        self._asset = asset
        self.changes: dict[str, Any] = {}

    def __getattr__(self, name: str) -> Any:
        changes = self.__dict__["changes"]
        if name in changes:
            return changes[name]
        return getattr(self.__dict__["_asset"], name)


# ─────────────────────── 处置 ───────────────────────


def _split_invalid(latest: dict[str, AssetEvent]) -> tuple[dict[str, AssetEvent], dict[str, str]]:
    """校验各类别的最近事件；不合法的类别从结果中剔除（视为没有事件），并返回原因"""
    valid: dict[str, AssetEvent] = {}
    invalid: dict[str, str] = {}
    for event_type, event in latest.items():
        try:
            validate_event(event)
        except InvalidEventDataError as e:
            invalid[event_type] = e.detail
        else:
            valid[event_type] = event
    return valid, invalid


def _valid_or_none(latest: dict[str, AssetEvent], event_type: str) -> AssetEvent | None:
    event = latest.get(event_type)
    if event is None:
        return None
    try:
        validate_event(event)
    except InvalidEventDataError:
        return None
    return event


def _restored_service_status(latest: dict[str, AssetEvent]) -> dict:
    event = _valid_or_none(latest, "service_status_update")
    if event is None:
        return {"service_status_type": SERVICE_STATUS_UNKNOWN, "service_status_date": None}
    return {"service_status_type": event.service_status_type, "service_status_date": event.event_date}


def record_disposition(asset, events: list[AssetEvent]) -> tuple[bool, dict]:
    """
    处置状态机 {active, disposed}：
    - 有处置事件 → 复制日期 / 类型，服务状态置为 D（载荷无效的处置事件视为没有）
    - 无处置事件但资产仍标记为已处置（最后一条处置事件被删）→ 清除并恢复最近的服务状态
    返回 (是否已处置, 待写字段)
    """
    latest = latest_events_by_type(events)
    disposition = _valid_or_none(latest, "disposition_update")

    if disposition is not None:
        return True, {
            "disposition_date": disposition.event_date,
            "disposition_type": disposition.disposition_type,
            "service_status_type": SERVICE_STATUS_DISPOSED,
            "service_status_date": disposition.event_date,
        }

    if asset.disposition_date is not None or asset.service_status_type == SERVICE_STATUS_DISPOSED:
        changes = {"disposition_date": None, "disposition_type": None}
        changes.update(_restored_service_status(latest))
        return False, changes

    return False, {}


# ─────────────────────── 各步骤 ───────────────────────


def _service_status_step(draft, latest, policy, as_of) -> dict:
    event = latest.get("service_status_update")
    if event is None:
        return {"service_status_type": SERVICE_STATUS_UNKNOWN, "service_status_date": None}
    return {"service_status_type": event.service_status_type, "service_status_date": event.event_date}


def _reported_condition_step(draft, latest, policy, as_of) -> dict:
    event = latest.get("condition_update")
    if event is None:
        return {
            "reported_condition_type": UNKNOWN_CONDITION,
            "reported_condition_rating": None,
            "reported_condition_date": None,
        }
    return {
        "reported_condition_type": condition_type_from_rating(event.assessed_rating),
        "reported_condition_rating": event.assessed_rating,
        "reported_condition_date": event.event_date,
    }


def _location_step(draft, latest, policy, as_of) -> dict:
    event = latest.get("location_update")
    if event is None:
        return {"parent_id": None, "location_comments": None}
    return {"parent_id": event.parent_id, "location_comments": event.comments}


def _rehabilitation_step(draft, latest, policy, as_of) -> dict:
    event = latest.get("rehabilitation_update")
    if event is None:
        return {"last_rehabilitation_date": None, "rehabilitation_extension_months": None}
    return {
        "last_rehabilitation_date": event.event_date,
        "rehabilitation_extension_months": event.extended_useful_life_months,
        "scheduled_rehabilitation_year": None,
    }


def _schedule_step(draft, latest, policy, as_of) -> dict:
    changes: dict[str, Any] = {}

    disposition = latest.get("schedule_disposition_update")
    changes["scheduled_disposition_year"] = disposition.disposition_year if disposition else None

    rehab = latest.get("schedule_rehabilitation_update")
    last_rehab = draft.last_rehabilitation_date
    if rehab is None or (last_rehab is not None and rehab.event_date <= last_rehab):
        changes["scheduled_rehabilitation_year"] = None
    else:
        changes["scheduled_rehabilitation_year"] = rehab.rebuild_year

    # 没有计划更换事件时保留原值
    replacement = latest.get("schedule_replacement_update")
    if replacement is not None:
        changes["scheduled_replacement_year"] = replacement.replacement_year
        changes["replacement_reason_type"] = replacement.replacement_reason_type
    return changes


def _policy_projection_step(draft, latest, policy: ResolvedPolicy, as_of: date) -> dict:
    calculator = resolve_calculator(CalculatorKind.SERVICE_LIFE, policy.service_life_calculation_type)
    policy_year = calculator.calculate(draft, policy, as_of)
    planning_year = current_planning_year(as_of)

    changes: dict[str, Any] = {
        "expected_useful_life": policy.min_service_life_months,
        "policy_replacement_year": policy_year,
    }
    if policy_year < planning_year:
        changes["in_backlog"] = True
        changes["scheduled_replacement_year"] = planning_year
    else:
        changes["in_backlog"] = False
        replacement = _valid_or_none(latest, "schedule_replacement_update")
        changes["scheduled_replacement_year"] = (
            replacement.replacement_year if replacement is not None else policy_year
        )
    return changes


def _condition_estimate_step(draft, latest, policy: ResolvedPolicy, as_of: date) -> dict:
    estimator = resolve_calculator(
        CalculatorKind.CONDITION_ESTIMATION, policy.condition_estimation_type
    )
    rating = estimator.calculate(draft, policy, as_of)
    return {
        "estimated_replacement_year": estimator.last_servicable_year(draft, policy) + 1,
        "estimated_condition_rating": rating,
        "estimated_condition_type": condition_type_from_rating(rating),
    }


def _rehabilitation_year_step(draft, latest, policy: ResolvedPolicy, as_of: date) -> dict:
    calculator = resolve_calculator(CalculatorKind.REHABILITATION_YEAR)
    return {"policy_rehabilitation_year": calculator.calculate(draft, policy, as_of)}


def _cost_step(draft, latest, policy: ResolvedPolicy, as_of: date) -> dict:
    calculator = resolve_calculator(CalculatorKind.COST, policy.cost_calculation_type)
    policy_year = draft.policy_replacement_year
    scheduled_year = draft.scheduled_replacement_year

    estimate_year = scheduled_year if draft.in_backlog else policy_year
    schedule_year = scheduled_year or policy_year
    if estimate_year is None or schedule_year is None:
        raise ValueError("缺少更换年份，无法计算更换成本")

    return {
        "estimated_replacement_cost": calculator.calculate(
            draft, policy, start_of_fiscal_year(estimate_year)
        ),
        "scheduled_replacement_cost": calculator.calculate(
            draft, policy, start_of_fiscal_year(schedule_year)
        ),
    }


StepFunc = Callable[[_Draft, dict, ResolvedPolicy | None, date], dict]

# 各步骤读取的事件类别；类别的最近事件无效时该步骤记为 skipped
STEP_EVENT_TYPES: dict[str, tuple[str, ...]] = {
    "service_status": ("service_status_update",),
    "reported_condition": ("condition_update",),
    "location": ("location_update",),
    "rehabilitation": ("rehabilitation_update",),
    "schedules": (
        "schedule_disposition_update",
        "schedule_rehabilitation_update",
        "schedule_replacement_update",
    ),
}

# 步骤顺序即执行顺序；后面的步骤读取前面步骤在草稿中的结果
STEPS: list[tuple[str, StepFunc]] = [
    ("service_status", _service_status_step),
    ("reported_condition", _reported_condition_step),
    ("location", _location_step),
    ("rehabilitation", _rehabilitation_step),
    ("schedules", _schedule_step),
    ("policy_projection", _policy_projection_step),
    ("condition_estimate", _condition_estimate_step),
    ("rehabilitation_year", _rehabilitation_year_step),
    ("costs", _cost_step),
]


# ─────────────────────── 引擎 ───────────────────────


def _apply(draft: _Draft, step: str, changes: dict) -> FieldOutcome:
    differing = {k: v for k, v in changes.items() if getattr(draft, k) != v}
    draft.changes.update(changes)
    if differing:
        return FieldOutcome(step, OutcomeStatus.UPDATED, differing)
    return FieldOutcome(step, OutcomeStatus.UNCHANGED)


def _skipped(draft: _Draft, step: str, outcome: FieldOutcome, reasons: list[str]) -> FieldOutcome:
    """类别事件无效：字段已按“没有事件”推导，结果记为 skipped 并告警"""
    message = "；".join(reasons)
    logger.warning(
        f"[状态重算] 资产 {draft.object_key} 步骤 {step} 事件数据无效，按无事件处理: {message}",
        extra={"asset": draft.object_key, "step": step},
    )
    return FieldOutcome(step, OutcomeStatus.SKIPPED, outcome.fields, message=message)


def _run_step(
    draft: _Draft,
    step: str,
    func: StepFunc,
    latest: dict,
    invalid: dict[str, str],
    policy: ResolvedPolicy | None,
    as_of: date,
) -> FieldOutcome:
    try:
        changes = func(draft, latest, policy, as_of)
    except Exception as e:
        logger.warning(
            f"[状态重算] 资产 {draft.object_key} 步骤 {step} 失败: {e}",
            extra={"asset": draft.object_key, "step": step},
        )
        return FieldOutcome(step, OutcomeStatus.FAILED, message=str(e))
    outcome = _apply(draft, step, changes)
    reasons = [invalid[t] for t in STEP_EVENT_TYPES.get(step, ()) if t in invalid]
    if reasons:
        return _skipped(draft, step, outcome, reasons)
    return outcome


async def recalculate(
    db: AsyncSession,
    asset_id: str,
    *,
    as_of: date | None = None,
    cache: CacheBackend | None = None,
) -> RecalculationResult:
    """
    重算资产的全部派生字段。
    - as_of：计算基准日（缺省为今天），决定当前规划年与成本复利年数
    - 无生效政策 / 无子类规则时抛 PolicyNotFoundError，资产保持不变
    """
    result = await db.execute(select(Asset).where(Asset.id == asset_id))
    asset = result.scalar_one_or_none()
    if asset is None:
        raise RecalculationError(f"资产不存在: {asset_id}", 404)

    as_of = as_of or date.today()
    events = await all_events(db, asset.id)
    latest, invalid = _split_invalid(latest_events_by_type(events))
    draft = _Draft(asset)
    outcome = RecalculationResult(asset_id=asset.id, object_key=asset.object_key, disposed=False)

    # 1. 处置
    disposed, changes = record_disposition(asset, events)
    disposition = _apply(draft, "disposition", changes)
    if "disposition_update" in invalid:
        disposition = _skipped(draft, "disposition", disposition, [invalid["disposition_update"]])
    outcome.outcomes.append(disposition)
    outcome.disposed = disposed

    if disposed:
        for step, _ in STEPS:
            outcome.outcomes.append(FieldOutcome(step, OutcomeStatus.SKIPPED, message="资产已处置"))
    else:
        policy = await resolve_policy(db, asset, cache)
        for step, func in STEPS:
            outcome.outcomes.append(_run_step(draft, step, func, latest, invalid, policy, as_of))

    # 写回
    changed = {k: v for k, v in draft.changes.items() if getattr(asset, k) != v}
    if changed:
        for key, value in changed.items():
            setattr(asset, key, value)
        asset.updated_at = datetime.utcnow()
        await db.flush()
        invalidate_asset(cache, asset.object_key)
    outcome.changed_fields = changed

    logger.info(
        f"[状态重算] 资产 {asset.object_key} 完成，变更字段 {len(changed)} 个"
        + ("（已处置）" if disposed else "")
    )
    return outcome


async def recalculate_or_warn(
    db: AsyncSession,
    asset_id: str,
    *,
    as_of: date | None = None,
    cache: CacheBackend | None = None,
) -> tuple[RecalculationResult | None, list[str]]:
    """资产 / 事件变更后调用：无生效政策时不中断请求，以警告返回"""
    try:
        result = await recalculate(db, asset_id, as_of=as_of, cache=cache)
    except PolicyNotFoundError as e:
        logger.warning(
            f"[状态重算] 资产 {asset_id} 未重算: {e.detail}",
            extra={"asset": asset_id, "step": "policy"},
        )
        return None, [e.detail]
    return result, result.warnings
