"""更换政策 Service — 政策解析、缓存、生效切换、规则维护"""

import pytest
from sqlalchemy import select

from fleet_assets.models.policy import Policy
from fleet_assets.services.asset_service import get_asset
from fleet_assets.services.policy_service import (
    PolicyError,
    PolicyNotFoundError,
    PolicyRuleNotFoundError,
    activate_policy,
    create_policy,
    get_active_policy,
    get_policy,
    list_policies,
    policy_cache_key,
    resolve_policy,
    update_policy,
    upsert_rule,
)
from fleet_assets.utils.cache import InMemoryCache

from tests.conftest import TEST_POLICY_YEAR, TestSessionLocal


class TestResolve:

    @pytest.mark.asyncio
    async def test_resolve_rule_for_subtype(self, sample_bus, active_policy):
        async with TestSessionLocal() as db:
            resolved = await resolve_policy(db, await get_asset(db, sample_bus.id))

        assert resolved.policy_id == active_policy.id
        assert resolved.policy_year == TEST_POLICY_YEAR
        assert resolved.asset_subtype_id == sample_bus.asset_subtype_id
        assert resolved.min_service_life_months == 144
        assert resolved.replacement_cost == 550000
        assert resolved.condition_threshold == 2.5
        assert resolved.cost_calculation_type == "replacement_cost_plus_interest"

    @pytest.mark.asyncio
    async def test_resolve_uses_cache(self, sample_bus):
        cache = InMemoryCache()
        async with TestSessionLocal() as db:
            asset = await get_asset(db, sample_bus.id)
            first = await resolve_policy(db, asset, cache)
            assert cache.get(policy_cache_key(asset)) is first
            assert await resolve_policy(db, asset, cache) is first

    @pytest.mark.asyncio
    async def test_no_active_policy(self, sample_bus, active_policy):
        async with TestSessionLocal() as db:
            policy = await get_policy(db, active_policy.id)
            policy.active = False
            await db.flush()
            with pytest.raises(PolicyNotFoundError) as exc:
                await resolve_policy(db, await get_asset(db, sample_bus.id))
        assert exc.value.status_code == 409

    @pytest.mark.asyncio
    async def test_no_rule_for_subtype(self, sample_bus, active_policy):
        async with TestSessionLocal() as db:
            policy = await get_policy(db, active_policy.id)
            policy.rules = [r for r in policy.rules if r.asset_subtype_id != sample_bus.asset_subtype_id]
            await db.flush()
            with pytest.raises(PolicyRuleNotFoundError):
                await resolve_policy(db, await get_asset(db, sample_bus.id))


class TestMaintenance:

    @pytest.mark.asyncio
    async def test_create_copies_active_rules(self, test_org, active_policy):
        async with TestSessionLocal() as db:
            policy = await create_policy(db, test_org.id, "2025 政策", 2025)
            await db.commit()

        assert policy.active is False
        assert policy.rules
        async with TestSessionLocal() as db:
            current = await get_active_policy(db, test_org.id)
            assert len(policy.rules) == len(current.rules)

    @pytest.mark.asyncio
    async def test_create_with_explicit_rules(self, test_org, subtypes):
        async with TestSessionLocal() as db:
            policy = await create_policy(db, test_org.id, "只含公交", 2025, rules=[{
                "asset_subtype_id": subtypes["Bus"].id,
                "min_service_life_months": 120,
                "replacement_cost": 600000,
            }])
        assert [r.min_service_life_months for r in policy.rules] == [120]

    @pytest.mark.asyncio
    async def test_create_rejects_unknown_subtype(self, test_org):
        async with TestSessionLocal() as db:
            with pytest.raises(PolicyError) as exc:
                await create_policy(db, test_org.id, "坏政策", 2025, rules=[{
                    "asset_subtype_id": 9999, "min_service_life_months": 120,
                }])
        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_activate_deactivates_siblings(self, test_org, active_policy, sample_bus):
        cache = InMemoryCache()
        cache.set(policy_cache_key(sample_bus), "stale")

        async with TestSessionLocal() as db:
            policy = await create_policy(db, test_org.id, "2025 政策", 2025)
            await activate_policy(db, policy, cache)
            await db.commit()

        async with TestSessionLocal() as db:
            result = await db.execute(
                select(Policy.id).where(Policy.organization_id == test_org.id, Policy.active == True)
            )
            assert result.scalars().all() == [policy.id]
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_create_and_activate(self, test_org, active_policy):
        async with TestSessionLocal() as db:
            policy = await create_policy(db, test_org.id, "立即生效", 2025, activate=True)
            await db.commit()

        async with TestSessionLocal() as db:
            current = await get_active_policy(db, test_org.id)
            old = await get_policy(db, active_policy.id)
        assert current.id == policy.id
        assert old.active is False

    @pytest.mark.asyncio
    async def test_update_policy_ignores_none(self, active_policy):
        async with TestSessionLocal() as db:
            policy = await get_policy(db, active_policy.id)
            updated = await update_policy(db, policy, interest_rate=2.0, name=None)
        assert updated.interest_rate == 2.0
        assert updated.name == active_policy.name

    @pytest.mark.asyncio
    async def test_upsert_rule(self, active_policy, subtypes):
        bus_id = subtypes["Bus"].id
        async with TestSessionLocal() as db:
            policy = await get_policy(db, active_policy.id)
            rule = await upsert_rule(db, policy, bus_id, {"replacement_cost": 700000, "min_service_life_months": None})
            await db.commit()
        assert rule.replacement_cost == 700000
        assert rule.min_service_life_months == 144

    @pytest.mark.asyncio
    async def test_upsert_new_rule_requires_service_life(self, test_org, subtypes):
        async with TestSessionLocal() as db:
            policy = await create_policy(db, test_org.id, "空政策", 2025, copy_active_rules=False)
            with pytest.raises(PolicyError):
                await upsert_rule(db, policy, subtypes["Bus"].id, {"replacement_cost": 1})

            rule = await upsert_rule(db, policy, subtypes["Bus"].id, {"min_service_life_months": 100})
            assert rule.policy_id == policy.id
            assert rule.service_life_calculation_type == "age_only"

    @pytest.mark.asyncio
    async def test_list_policies(self, test_org, active_policy):
        async with TestSessionLocal() as db:
            await create_policy(db, test_org.id, "2030 政策", 2030)
            policies = await list_policies(db, test_org.id)
        assert [p.year for p in policies] == [2030, TEST_POLICY_YEAR]
