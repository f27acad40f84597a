"""政策计算器 — 使用寿命 / 状况估算 / 成本 / 大修年份

政策规则以字符串保存计算方式，这里通过封闭的枚举 + 显式注册表解析为计算器实例。
所有计算器签名一致：calculate(asset, policy, on_date)。asset 只需具备读取的属性，
因此引擎传入的草稿对象、测试中的 SimpleNamespace 都可以直接使用。
"""

import math
from abc import ABC, abstractmethod
from datetime import date
from enum import Enum

from dateutil.relativedelta import relativedelta

from fleet_assets.services.policy_service import ResolvedPolicy
from fleet_assets.utils.fiscal_year import fiscal_year_on_date
from fleet_assets.utils.lookups import MAX_CONDITION_RATING, MIN_CONDITION_RATING


class CalculatorKind(str, Enum):
    SERVICE_LIFE = "service_life"
    CONDITION_ESTIMATION = "condition_estimation"
    COST = "cost"
    REHABILITATION_YEAR = "rehabilitation_year"


class ServiceLifeCalculationType(str, Enum):
    AGE_ONLY = "age_only"
    CONDITION_ONLY = "condition_only"
    AGE_AND_CONDITION = "age_and_condition"
    AGE_OR_CONDITION = "age_or_condition"


class ConditionEstimationType(str, Enum):
    STRAIGHT_LINE = "straight_line"
    WEIBULL = "weibull"


class CostCalculationType(str, Enum):
    PURCHASE_PRICE = "purchase_price"
    REPLACEMENT_COST = "replacement_cost"
    REPLACEMENT_COST_PLUS_INTEREST = "replacement_cost_plus_interest"


class CalculatorResolutionError(Exception):
    """政策配置的计算方式无法解析"""

    def __init__(self, kind: CalculatorKind, name: str | None):
        self.kind = kind
        self.name = name
        self.detail = f"未知的{kind.value}计算方式: {name!r}"
        self.status_code = 422
        super().__init__(self.detail)


# ─────────────────────── helpers ───────────────────────


def _in_service_date(asset) -> date:
    in_service = asset.in_service_date or asset.purchase_date
    if in_service is None:
        raise ValueError("资产缺少投入使用日期和购置日期")
    return in_service


def _years_between(start: date, end: date) -> float:
    """两个日期相差的年数（按整月 + 零头天数折算），不足 0 记 0"""
    if end <= start:
        return 0.0
    delta = relativedelta(end, start)
    months = delta.years * 12 + delta.months + delta.days / 30
    return months / 12


def _floor(value: float) -> int:
    # 消除浮点误差，避免 11.999999 被取整为 11
    return math.floor(round(value, 6))


def _clamp_rating(rating: float) -> float:
    return round(min(max(rating, MIN_CONDITION_RATING), MAX_CONDITION_RATING), 2)


def _service_life_years(policy: ResolvedPolicy) -> float:
    if policy.min_service_life_months <= 0:
        raise ValueError("政策规则的最短使用寿命必须大于 0")
    return policy.min_service_life_months / 12


def _condition_anchor(asset) -> tuple[date, float]:
    """状况估算的起点：最近一次上报的评分，没有则视为投入使用时满分"""
    if asset.reported_condition_rating is not None and asset.reported_condition_date is not None:
        return asset.reported_condition_date, float(asset.reported_condition_rating)
    return _in_service_date(asset), MAX_CONDITION_RATING


# ─────────────────────── 抽象基类 ───────────────────────


class Calculator(ABC):
    kind: CalculatorKind

    @abstractmethod
    def calculate(self, asset, policy: ResolvedPolicy, on_date: date | None = None):
        ...


class ServiceLifeCalculator(Calculator):
    """返回政策更换年份（财年）"""

    kind = CalculatorKind.SERVICE_LIFE

    @abstractmethod
    def calculate(self, asset, policy: ResolvedPolicy, on_date: date | None = None) -> int:
        ...


class ConditionEstimator(Calculator):
    """calculate 返回 on_date 时的估算评分；last_servicable_year 返回最后可服役财年"""

    kind = CalculatorKind.CONDITION_ESTIMATION

    @abstractmethod
    def calculate(self, asset, policy: ResolvedPolicy, on_date: date | None = None) -> float:
        ...

    @abstractmethod
    def last_servicable_year(self, asset, policy: ResolvedPolicy) -> int:
        ...


class CostCalculator(Calculator):
    """返回 on_date 时的更换成本"""

    kind = CalculatorKind.COST

    @abstractmethod
    def calculate(self, asset, policy: ResolvedPolicy, on_date: date | None = None) -> int:
        ...


# ─────────────────────── 状况估算 ───────────────────────


class StraightLineConditionEstimator(ConditionEstimator):
    """直线衰减：评分在使用寿命内从 5.0 线性降到政策阈值"""

    def _annual_decay(self, policy: ResolvedPolicy) -> float:
        slope = (MAX_CONDITION_RATING - policy.condition_threshold) / _service_life_years(policy)
        if slope <= 0:
            raise ValueError("政策状况阈值必须小于最高评分")
        return slope

    def calculate(self, asset, policy: ResolvedPolicy, on_date: date | None = None) -> float:
        anchor_date, anchor_rating = _condition_anchor(asset)
        years = _years_between(anchor_date, on_date or date.today())
        return _clamp_rating(anchor_rating - self._annual_decay(policy) * years)

    def last_servicable_year(self, asset, policy: ResolvedPolicy) -> int:
        anchor_date, anchor_rating = _condition_anchor(asset)
        years_left = _floor((anchor_rating - policy.condition_threshold) / self._annual_decay(policy))
        return fiscal_year_on_date(anchor_date) + max(years_left, -1)


class WeibullConditionEstimator(ConditionEstimator):
    """
    Weibull 衰减：rating(t) = 1 + 4·exp(-(t/η)^β)
    β 固定为 2，η 取使评分恰好在使用寿命末达到阈值的值。
    有上报评分时，以该评分对应的等效役龄为起点。
    """

    SHAPE = 2.0

    def _scale(self, policy: ResolvedPolicy) -> float:
        threshold = policy.condition_threshold
        if not MIN_CONDITION_RATING < threshold < MAX_CONDITION_RATING:
            raise ValueError("Weibull 估算要求阈值介于 1 与 5 之间")
        life = _service_life_years(policy)
        return life / (-math.log((threshold - 1) / 4)) ** (1 / self.SHAPE)

    def _effective_age(self, rating: float, scale: float) -> float:
        if rating >= MAX_CONDITION_RATING:
            return 0.0
        if rating <= MIN_CONDITION_RATING:
            return math.inf
        return scale * (-math.log((rating - 1) / 4)) ** (1 / self.SHAPE)

    def calculate(self, asset, policy: ResolvedPolicy, on_date: date | None = None) -> float:
        anchor_date, anchor_rating = _condition_anchor(asset)
        scale = self._scale(policy)
        age = self._effective_age(anchor_rating, scale)
        if math.isinf(age):
            return MIN_CONDITION_RATING
        age += _years_between(anchor_date, on_date or date.today())
        return _clamp_rating(1 + 4 * math.exp(-((age / scale) ** self.SHAPE)))

    def last_servicable_year(self, asset, policy: ResolvedPolicy) -> int:
        anchor_date, anchor_rating = _condition_anchor(asset)
        scale = self._scale(policy)
        age = self._effective_age(anchor_rating, scale)
        if math.isinf(age):
            years_left = -1
        else:
            years_left = _floor(_service_life_years(policy) - age)
        return fiscal_year_on_date(anchor_date) + max(years_left, -1)


# ─────────────────────── 使用寿命 ───────────────────────


class AgeOnlyServiceLifeCalculator(ServiceLifeCalculator):
    """按役龄：投入使用财年 + 使用寿命（大修后追加延寿月数，大修记录未填时取政策值）"""

    def calculate(self, asset, policy: ResolvedPolicy, on_date: date | None = None) -> int:
        months = policy.min_service_life_months
        if asset.last_rehabilitation_date is not None:
            extension = getattr(asset, "rehabilitation_extension_months", None)
            months += policy.extended_service_life_months if extension is None else extension
        return fiscal_year_on_date(_in_service_date(asset)) + months // 12


class ConditionOnlyServiceLifeCalculator(ServiceLifeCalculator):
    """按状况：状况估算的最后可服役年份 + 1"""

    def calculate(self, asset, policy: ResolvedPolicy, on_date: date | None = None) -> int:
        estimator = resolve_calculator(
            CalculatorKind.CONDITION_ESTIMATION, policy.condition_estimation_type
        )
        return estimator.last_servicable_year(asset, policy) + 1


class AgeAndConditionServiceLifeCalculator(ServiceLifeCalculator):
    """役龄与状况都达到才更换 → 取较晚者"""

    def calculate(self, asset, policy: ResolvedPolicy, on_date: date | None = None) -> int:
        return max(
            AgeOnlyServiceLifeCalculator().calculate(asset, policy, on_date),
            ConditionOnlyServiceLifeCalculator().calculate(asset, policy, on_date),
        )


class AgeOrConditionServiceLifeCalculator(ServiceLifeCalculator):
    """役龄或状况任一达到即更换 → 取较早者"""

    def calculate(self, asset, policy: ResolvedPolicy, on_date: date | None = None) -> int:
        return min(
            AgeOnlyServiceLifeCalculator().calculate(asset, policy, on_date),
            ConditionOnlyServiceLifeCalculator().calculate(asset, policy, on_date),
        )


# ─────────────────────── 成本 ───────────────────────


class PurchasePriceCostCalculator(CostCalculator):
    def calculate(self, asset, policy: ResolvedPolicy, on_date: date | None = None) -> int:
        return int(asset.purchase_cost or 0)


class ReplacementCostCalculator(CostCalculator):
    def calculate(self, asset, policy: ResolvedPolicy, on_date: date | None = None) -> int:
        return int(policy.replacement_cost)


class ReplacementCostPlusInterestCalculator(CostCalculator):
    """政策更换成本按年通胀率从政策财年复利到 on_date 所在财年"""

    def calculate(self, asset, policy: ResolvedPolicy, on_date: date | None = None) -> int:
        if on_date is None:
            raise ValueError("复利成本计算需要指定日期")
        years = max(fiscal_year_on_date(on_date) - policy.policy_year, 0)
        rate = 1 + policy.interest_rate / 100
        return int(round(policy.replacement_cost * rate ** years))


# ─────────────────────── 大修年份 ───────────────────────


class RehabilitationYearCalculator(Calculator):
    """政策大修财年；规则无大修或已在该年及之后完成大修时返回 None"""

    kind = CalculatorKind.REHABILITATION_YEAR

    def calculate(self, asset, policy: ResolvedPolicy, on_date: date | None = None) -> int | None:
        if policy.rehabilitation_service_month <= 0:
            return None
        year = fiscal_year_on_date(_in_service_date(asset)) + policy.rehabilitation_service_month // 12
        last_rehab = asset.last_rehabilitation_date
        if last_rehab is not None and fiscal_year_on_date(last_rehab) >= year:
            return None
        return year


# ─────────────────────── 注册表 ───────────────────────

DEFAULT_STRATEGY = "default"

CALCULATOR_REGISTRY: dict[CalculatorKind, dict[str, Calculator]] = {
    CalculatorKind.SERVICE_LIFE: {
        ServiceLifeCalculationType.AGE_ONLY: AgeOnlyServiceLifeCalculator(),
        ServiceLifeCalculationType.CONDITION_ONLY: ConditionOnlyServiceLifeCalculator(),
        ServiceLifeCalculationType.AGE_AND_CONDITION: AgeAndConditionServiceLifeCalculator(),
        ServiceLifeCalculationType.AGE_OR_CONDITION: AgeOrConditionServiceLifeCalculator(),
    },
    CalculatorKind.CONDITION_ESTIMATION: {
        ConditionEstimationType.STRAIGHT_LINE: StraightLineConditionEstimator(),
        ConditionEstimationType.WEIBULL: WeibullConditionEstimator(),
    },
    CalculatorKind.COST: {
        CostCalculationType.PURCHASE_PRICE: PurchasePriceCostCalculator(),
        CostCalculationType.REPLACEMENT_COST: ReplacementCostCalculator(),
        CostCalculationType.REPLACEMENT_COST_PLUS_INTEREST: ReplacementCostPlusInterestCalculator(),
    },
    CalculatorKind.REHABILITATION_YEAR: {
        DEFAULT_STRATEGY: RehabilitationYearCalculator(),
    },
}

_STRATEGY_ENUMS: dict[CalculatorKind, type[Enum]] = {
    CalculatorKind.SERVICE_LIFE: ServiceLifeCalculationType,
    CalculatorKind.CONDITION_ESTIMATION: ConditionEstimationType,
    CalculatorKind.COST: CostCalculationType,
}


def resolve_calculator(kind: CalculatorKind, name: str | None = None) -> Calculator:
    """按计算类别 + 策略名解析计算器实例，未知策略抛 CalculatorResolutionError"""
    if kind is CalculatorKind.REHABILITATION_YEAR:
        return CALCULATOR_REGISTRY[kind][DEFAULT_STRATEGY]
    try:
        strategy = _STRATEGY_ENUMS[kind](name)
    except ValueError:
        raise CalculatorResolutionError(kind, name) from None
    return CALCULATOR_REGISTRY[kind][strategy]


def available_strategies(kind: CalculatorKind) -> list[str]:
    enum_cls = _STRATEGY_ENUMS.get(kind)
    if enum_cls is None:
        return [DEFAULT_STRATEGY]
    return [member.value for member in enum_cls]
