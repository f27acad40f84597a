"""预置数据 - 启动时灌入资产类型目录；新建机构时灌入默认更换政策"""

from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_assets.models.asset import AssetType, AssetSubtype
from fleet_assets.models.policy import Policy, PolicyRule
from fleet_assets.utils.fiscal_year import current_fiscal_year


# 资产类型目录: (类型, 说明, [子类...])
PRESET_ASSET_TYPES: list[tuple[str, str, list[str]]] = [
    ("Revenue Vehicles", "载客营运车辆", ["Bus", "Articulated Bus", "Cutaway", "Van"]),
    ("Support Vehicles", "后勤保障车辆", ["Sedan", "Pickup Truck"]),
    ("Equipment", "设备", ["Fare Box", "Bus Lift"]),
    ("Facilities", "场站设施", ["Maintenance Facility", "Passenger Shelter"]),
]

# 默认政策规则:
# (子类, 最短使用寿命月数, 更换成本, 大修月份, 大修成本, 大修延寿月数,
#  使用寿命计算方式, 状况估算方式, 成本计算方式)
PRESET_POLICY_RULES: list[tuple[str, int, int, int, int, int, str, str, str]] = [
    ("Bus", 144, 550000, 72, 60000, 48, "age_only", "straight_line", "replacement_cost_plus_interest"),
    ("Articulated Bus", 144, 900000, 72, 90000, 48, "age_only", "straight_line", "replacement_cost_plus_interest"),
    ("Cutaway", 84, 120000, 0, 0, 0, "age_only", "straight_line", "replacement_cost_plus_interest"),
    ("Van", 48, 60000, 0, 0, 0, "age_only", "straight_line", "replacement_cost"),
    ("Sedan", 48, 32000, 0, 0, 0, "age_only", "straight_line", "replacement_cost"),
    ("Pickup Truck", 60, 45000, 0, 0, 0, "age_or_condition", "straight_line", "replacement_cost"),
    ("Fare Box", 120, 15000, 0, 0, 0, "age_only", "straight_line", "purchase_price"),
    ("Bus Lift", 240, 80000, 120, 20000, 60, "age_and_condition", "weibull", "replacement_cost"),
    ("Maintenance Facility", 480, 12000000, 240, 2500000, 120, "condition_only", "weibull", "replacement_cost_plus_interest"),
    ("Passenger Shelter", 240, 25000, 0, 0, 0, "age_only", "straight_line", "replacement_cost"),
]


async def seed_asset_types(db: AsyncSession) -> list[AssetSubtype]:
    """灌入资产类型目录（已存在则跳过），返回全部子类"""
    existing = await db.execute(select(AssetType.name))
    existing_names = {row[0] for row in existing.all()}

    for type_name, description, subtype_names in PRESET_ASSET_TYPES:
        if type_name in existing_names:
            continue
        asset_type = AssetType(name=type_name, description=description)
        db.add(asset_type)
        # flush 使 id 写入数据库
        await db.flush()
        for subtype_name in subtype_names:
            db.add(AssetSubtype(asset_type_id=asset_type.id, name=subtype_name))

    await db.flush()
    result = await db.execute(select(AssetSubtype).order_by(AssetSubtype.id))
    return list(result.scalars().all())


async def seed_policy_for_organization(
    db: AsyncSession,
    organization_id: str,
    policy_year: int | None = None,
) -> Policy:
    """为机构创建默认政策（按子类名称匹配预置规则）"""
    result = await db.execute(select(AssetSubtype))
    subtypes = {s.name: s.id for s in result.scalars().all()}

    year = policy_year or current_fiscal_year(date.today())
    policy = Policy(
        organization_id=organization_id,
        name=f"默认更换政策 {year}",
        description="系统预置",
        year=year,
        active=True,
    )
    db.add(policy)
    await db.flush()

    for (
        subtype_name, service_life, replacement_cost, rehab_month, rehab_cost,
        extended_months, service_life_calc, condition_calc, cost_calc,
    ) in PRESET_POLICY_RULES:
        subtype_id = subtypes.get(subtype_name)
        if subtype_id is None:
            continue
        db.add(PolicyRule(
            policy_id=policy.id,
            asset_subtype_id=subtype_id,
            min_service_life_months=service_life,
            replacement_cost=replacement_cost,
            rehabilitation_service_month=rehab_month,
            rehabilitation_cost=rehab_cost,
            extended_service_life_months=extended_months,
            service_life_calculation_type=service_life_calc,
            condition_estimation_type=condition_calc,
            cost_calculation_type=cost_calc,
        ))

    await db.flush()
    return policy
