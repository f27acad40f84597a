"""资产 Service — 派生查询、复制、接替关系、删除"""

from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import select, update

from fleet_assets.models.asset import Asset, AssetUserTag
from fleet_assets.models.asset_event import AssetEvent
from fleet_assets.models.policy import Policy
from fleet_assets.services.asset_service import (
    AssetError,
    age,
    asset_name,
    copy_asset,
    create_asset,
    delete_asset,
    estimated_rehabilitation_cost,
    get_asset,
    get_asset_summary,
    get_supersedes,
    is_disposable,
    is_tagged,
    list_assets,
    list_tagged_assets,
    months_in_service,
    months_since_rehabilitation,
    search_assets,
    set_superseded_by,
    tag_asset,
    total_rehabilitation_cost,
    untag_asset,
    update_asset,
    years_in_service,
    years_owned,
)
from fleet_assets.utils.cache import InMemoryCache, asset_cache_key

from tests.conftest import TestSessionLocal, make_asset, make_event


# ═══════════════════════════════════════════
# 纯计算（无需数据库）
# ═══════════════════════════════════════════


class TestDerivedHelpers:

    def _make_asset(self, **overrides):
        defaults = dict(
            asset_tag="BUS-001",
            description="40 尺公交",
            manufacture_year=2015,
            purchase_date=date(2015, 9, 1),
            in_service_date=date(2015, 10, 1),
            last_rehabilitation_date=None,
            disposition_date=None,
            scheduled_disposition_year=None,
            in_backlog=False,
            service_status_type="I",
        )
        defaults.update(overrides)
        return SimpleNamespace(**defaults)

    def test_months_and_years(self):
        asset = self._make_asset()
        on = date(2023, 8, 1)
        assert months_in_service(asset, on) == 94
        assert years_in_service(asset, on) == 7
        assert years_owned(asset, on) == 8
        assert age(asset, on) == 8

    def test_age_uses_fiscal_year(self):
        asset = self._make_asset()
        assert age(asset, date(2023, 6, 30)) == 7

    def test_months_since_rehabilitation(self):
        assert months_since_rehabilitation(self._make_asset()) is None
        asset = self._make_asset(last_rehabilitation_date=date(2022, 2, 1))
        assert months_since_rehabilitation(asset, date(2023, 8, 1)) == 18

    def test_disposable(self):
        on = date(2023, 8, 1)
        assert not is_disposable(self._make_asset(), on)
        assert is_disposable(self._make_asset(in_backlog=True), on)
        assert is_disposable(self._make_asset(scheduled_disposition_year=2023), on)
        assert not is_disposable(self._make_asset(scheduled_disposition_year=2025, in_backlog=True), on)
        assert not is_disposable(
            self._make_asset(in_backlog=True, disposition_date=date(2023, 1, 1)), on
        )

    def test_asset_name(self):
        assert asset_name(self._make_asset()) == "BUS-001 - 40 尺公交"
        assert asset_name(self._make_asset(description=None)) == "BUS-001"


# ═══════════════════════════════════════════
# 增删改
# ═══════════════════════════════════════════


class TestCreateUpdate:

    @pytest.mark.asyncio
    async def test_create_defaults_in_service_date(self, test_org, subtypes, test_user):
        bus = subtypes["Bus"]
        async with TestSessionLocal() as db:
            asset = await create_asset(db, test_org.id, {
                "asset_type_id": bus.asset_type_id,
                "asset_subtype_id": bus.id,
                "asset_tag": "BUS-100",
                "manufacture_year": 2020,
                "purchase_cost": 500000,
                "purchase_date": date(2020, 9, 1),
            }, test_user.id)
            await db.commit()

        assert asset.in_service_date == date(2020, 9, 1)
        assert len(asset.object_key) == 12
        assert asset.reported_condition_type == "Unknown"
        assert asset.service_status_type == "U"

    @pytest.mark.asyncio
    async def test_subtype_must_match_type(self, test_org, subtypes):
        bus, sedan = subtypes["Bus"], subtypes["Sedan"]
        async with TestSessionLocal() as db:
            with pytest.raises(AssetError) as exc:
                await create_asset(db, test_org.id, {
                    "asset_type_id": bus.asset_type_id,
                    "asset_subtype_id": sedan.id,
                    "asset_tag": "X-1",
                    "manufacture_year": 2020,
                    "purchase_date": date(2020, 9, 1),
                })
        assert exc.value.status_code == 400

    @pytest.mark.asyncio
    async def test_duplicate_tag(self, test_org, subtypes, sample_bus):
        bus = subtypes["Bus"]
        async with TestSessionLocal() as db:
            with pytest.raises(AssetError) as exc:
                await create_asset(db, test_org.id, {
                    "asset_type_id": bus.asset_type_id,
                    "asset_subtype_id": bus.id,
                    "asset_tag": "BUS-001",
                    "manufacture_year": 2020,
                    "purchase_date": date(2020, 9, 1),
                })
        assert exc.value.status_code == 409

    @pytest.mark.asyncio
    async def test_update_ignores_derived_fields(self, sample_bus):
        async with TestSessionLocal() as db:
            asset = await get_asset(db, sample_bus.object_key)
            await update_asset(db, asset, {
                "description": "新描述",
                "in_backlog": True,
                "policy_replacement_year": 1999,
                "purchase_cost": None,
            })
            await db.commit()

        assert asset.description == "新描述"
        assert asset.in_backlog is False
        assert asset.policy_replacement_year is None
        assert asset.purchase_cost == 480000

    @pytest.mark.asyncio
    async def test_update_invalidates_asset_cache(self, sample_bus, subtypes):
        cache = InMemoryCache()
        cache.set(asset_cache_key(sample_bus.object_key, "policy_rule:1"), "stale")
        cache.set(asset_cache_key("OTHERASSET00", "policy_rule:1"), "keep")

        async with TestSessionLocal() as db:
            asset = await get_asset(db, sample_bus.id)
            await update_asset(db, asset, {"asset_subtype_id": subtypes["Van"].id}, cache=cache)
            await db.commit()

        assert cache.get(asset_cache_key(sample_bus.object_key, "policy_rule:1")) is None
        assert cache.get(asset_cache_key("OTHERASSET00", "policy_rule:1")) == "keep"

    @pytest.mark.asyncio
    async def test_get_asset_by_id_or_key(self, sample_bus):
        async with TestSessionLocal() as db:
            assert (await get_asset(db, sample_bus.id)).id == sample_bus.id
            assert (await get_asset(db, sample_bus.object_key)).id == sample_bus.id
            assert await get_asset(db, "nope") is None

    @pytest.mark.asyncio
    async def test_list_hides_disposed(self, test_org, sample_bus, new_van):
        async with TestSessionLocal() as db:
            van = await get_asset(db, new_van.id)
            van.disposition_date = date(2023, 5, 1)
            await db.commit()

        async with TestSessionLocal() as db:
            active = await list_assets(db, test_org.id)
            everything = await list_assets(db, test_org.id, include_disposed=True)
            by_keyword = await list_assets(db, test_org.id, keyword="bus")
        assert [a.asset_tag for a in active] == ["BUS-001"]
        assert len(everything) == 2
        assert [a.asset_tag for a in by_keyword] == ["BUS-001"]

    @pytest.mark.asyncio
    async def test_summary(self, test_org, sample_bus, new_van):
        async with TestSessionLocal() as db:
            summary = await get_asset_summary(db, test_org.id)
        assert summary["total_count"] == 2
        assert summary["total_purchase_cost"] == 480000 + 58000
        assert summary["by_type"] == [{"asset_type": "Revenue Vehicles", "count": 2}]


# ═══════════════════════════════════════════
# 复制 / 删除
# ═══════════════════════════════════════════


class TestCopyDelete:

    @pytest.mark.asyncio
    async def test_copy_cleanses_derived_state(self, sample_bus, new_van):
        async with TestSessionLocal() as db:
            source = await get_asset(db, sample_bus.id)
            source.serial_number = "SN-1"
            source.external_id = "EXT-1"
            source.parent_id = new_van.id
            source.in_backlog = True
            source.reported_condition_rating = 2.0
            source.disposition_date = date(2023, 1, 1)
            await db.flush()

            clone = await copy_asset(db, source, "BUS-002")
            await db.commit()

        assert clone.asset_tag == "BUS-002"
        assert clone.object_key != sample_bus.object_key
        assert clone.manufacture_year == sample_bus.manufacture_year
        assert clone.purchase_cost == sample_bus.purchase_cost
        assert clone.serial_number is None
        assert clone.external_id is None
        assert clone.parent_id is None
        assert clone.in_backlog is False
        assert clone.reported_condition_rating is None
        assert clone.disposition_date is None

    @pytest.mark.asyncio
    async def test_copy_does_not_copy_events(self, sample_bus):
        await make_event(sample_bus, "condition_update", date(2021, 1, 1), assessed_rating=3.0)
        async with TestSessionLocal() as db:
            clone = await copy_asset(db, await get_asset(db, sample_bus.id), "BUS-002")
            await db.commit()
            result = await db.execute(select(AssetEvent).where(AssetEvent.asset_id == clone.id))
            assert result.scalars().all() == []

    @pytest.mark.asyncio
    async def test_copy_requires_unique_tag(self, sample_bus):
        async with TestSessionLocal() as db:
            with pytest.raises(AssetError):
                await copy_asset(db, await get_asset(db, sample_bus.id), "BUS-001")

    @pytest.mark.asyncio
    async def test_delete_clears_references(self, test_org, subtypes, sample_bus):
        child = await make_asset(test_org, subtypes["Fare Box"], asset_tag="FB-001", parent_id=sample_bus.id)
        successor_of = await make_asset(
            test_org, subtypes["Bus"], asset_tag="BUS-OLD", superseded_by_id=sample_bus.id
        )
        await make_event(child, "location_update", date(2020, 1, 1), parent_id=sample_bus.id)

        async with TestSessionLocal() as db:
            await delete_asset(db, await get_asset(db, sample_bus.id))
            await db.commit()

        async with TestSessionLocal() as db:
            assert (await get_asset(db, sample_bus.id)) is None
            assert (await get_asset(db, child.id)).parent_id is None
            assert (await get_asset(db, successor_of.id)).superseded_by_id is None
            result = await db.execute(select(AssetEvent).where(AssetEvent.asset_id == child.id))
            assert result.scalar_one().parent_id is None


# ═══════════════════════════════════════════
# 接替关系
# ═══════════════════════════════════════════


class TestSupersession:

    @pytest.mark.asyncio
    async def test_set_and_list(self, sample_bus, new_van):
        async with TestSessionLocal() as db:
            bus = await get_asset(db, sample_bus.id)
            await set_superseded_by(db, bus, new_van.object_key)
            await db.commit()
            assert bus.superseded_by_id == new_van.id

            van = await get_asset(db, new_van.id)
            assert [a.id for a in await get_supersedes(db, van)] == [sample_bus.id]

            await set_superseded_by(db, bus, None)
            assert bus.superseded_by_id is None

    @pytest.mark.asyncio
    async def test_self_and_cycle_rejected(self, test_org, subtypes, sample_bus, new_van):
        third = await make_asset(test_org, subtypes["Bus"], asset_tag="BUS-003")
        async with TestSessionLocal() as db:
            bus = await get_asset(db, sample_bus.id)
            van = await get_asset(db, new_van.id)
            other = await get_asset(db, third.id)

            with pytest.raises(AssetError):
                await set_superseded_by(db, bus, bus.id)

            await set_superseded_by(db, bus, van.id)
            await set_superseded_by(db, van, other.id)
            with pytest.raises(AssetError) as exc:
                await set_superseded_by(db, other, bus.id)
            assert "循环" in exc.value.detail

    @pytest.mark.asyncio
    async def test_successor_must_be_same_organization(self, sample_bus, other_user, subtypes):
        from fleet_assets.models.organization import Organization

        async with TestSessionLocal() as db:
            org = Organization(name="其他机构", owner_id=other_user.id)
            db.add(org)
            await db.commit()
        foreign = await make_asset(org, subtypes["Bus"], asset_tag="BUS-001")

        async with TestSessionLocal() as db:
            with pytest.raises(AssetError) as exc:
                await set_superseded_by(db, await get_asset(db, sample_bus.id), foreign.id)
        assert exc.value.status_code == 404


# ═══════════════════════════════════════════
# 组合查询
# ═══════════════════════════════════════════


@pytest.fixture
def used_bus_fields() -> dict:
    return dict(
        asset_tag="BUS-USED",
        manufacturer_model="Gillig Low Floor",
        manufacture_year=2015,
        purchase_cost=300000,
        purchase_date=date(2015, 3, 1),
        in_service_date=date(2015, 3, 1),
        purchased_new=False,
        reported_condition_type="Good",
    )


class TestSearch:

    async def _search(self, org, **criteria) -> list[str]:
        async with TestSessionLocal() as db:
            assets = await search_assets(db, org.id, criteria)
            return [a.asset_tag for a in assets]

    @pytest.mark.asyncio
    async def test_equality_conditions(self, test_org, subtypes, sample_bus, new_van, used_bus_fields):
        await make_asset(test_org, subtypes["Bus"], **used_bus_fields)
        assert await self._search(test_org, asset_subtype_id=subtypes["Bus"].id) == [
            "BUS-001", "BUS-USED",
        ]
        assert await self._search(
            test_org, asset_subtype_id=subtypes["Bus"].id, purchased_new=False
        ) == ["BUS-USED"]
        assert await self._search(test_org, reported_condition_type="Good") == ["BUS-USED"]
        assert await self._search(test_org) == ["BUS-001", "BUS-USED", "VAN-001"]

    @pytest.mark.asyncio
    async def test_purchase_cost_comparators(self, test_org, subtypes, sample_bus, new_van, used_bus_fields):
        await make_asset(test_org, subtypes["Bus"], **used_bus_fields)
        cost = 300000
        assert await self._search(test_org, purchase_cost={"value": cost, "comparator": "lt"}) == ["VAN-001"]
        assert await self._search(test_org, purchase_cost={"value": cost, "comparator": "eq"}) == ["BUS-USED"]
        assert await self._search(test_org, purchase_cost={"value": cost, "comparator": "gt"}) == ["BUS-001"]

    @pytest.mark.asyncio
    async def test_year_and_date_comparators(self, test_org, subtypes, sample_bus, new_van, used_bus_fields):
        await make_asset(test_org, subtypes["Bus"], **used_bus_fields)
        assert await self._search(
            test_org, manufacture_year={"value": 2010, "comparator": "gt"}
        ) == ["BUS-USED", "VAN-001"]
        assert await self._search(
            test_org, in_service_date={"value": date(2010, 1, 1), "comparator": "lt"}
        ) == ["BUS-001"]
        # 比较方式缺省为等于
        assert await self._search(test_org, purchase_date={"value": date(2022, 9, 1)}) == ["VAN-001"]

    @pytest.mark.asyncio
    async def test_derived_year_comparators(self, test_org, sample_bus, new_van):
        async with TestSessionLocal() as db:
            await db.execute(update(Asset).where(Asset.id == sample_bus.id).values(
                policy_replacement_year=2018, scheduled_replacement_year=2024, in_backlog=True,
            ))
            await db.execute(update(Asset).where(Asset.id == new_van.id).values(
                policy_replacement_year=2026, scheduled_replacement_year=2026,
            ))
            await db.commit()
        assert await self._search(
            test_org, policy_replacement_year={"value": 2024, "comparator": "lt"}
        ) == ["BUS-001"]
        assert await self._search(
            test_org, scheduled_replacement_year={"value": 2026, "comparator": "eq"}
        ) == ["VAN-001"]
        assert await self._search(test_org, in_backlog=True) == ["BUS-001"]

    @pytest.mark.asyncio
    async def test_manufacturer_model_partial_match(self, test_org, subtypes, sample_bus, used_bus_fields):
        await make_asset(test_org, subtypes["Bus"], **used_bus_fields)
        assert await self._search(test_org, manufacturer_model="low floor") == ["BUS-USED"]

    @pytest.mark.asyncio
    async def test_disposed_excluded_by_default(self, test_org, sample_bus, new_van):
        async with TestSessionLocal() as db:
            await db.execute(
                update(Asset).where(Asset.id == new_van.id).values(disposition_date=date(2023, 1, 1))
            )
            await db.commit()
        assert await self._search(test_org) == ["BUS-001"]
        assert await self._search(test_org, include_disposed=True) == ["BUS-001", "VAN-001"]

    @pytest.mark.asyncio
    async def test_unknown_comparator(self, test_org, sample_bus):
        with pytest.raises(AssetError) as exc:
            await self._search(test_org, purchase_cost={"value": 1, "comparator": "ge"})
        assert exc.value.status_code == 422


# ═══════════════════════════════════════════
# 个人标记
# ═══════════════════════════════════════════


class TestTagging:

    @pytest.mark.asyncio
    async def test_tag_is_per_user(self, test_org, test_user, other_user, sample_bus, new_van):
        async with TestSessionLocal() as db:
            asset = await get_asset(db, sample_bus.id)
            await tag_asset(db, asset, test_user.id)
            await db.commit()

            assert await is_tagged(db, asset, test_user.id) is True
            assert await is_tagged(db, asset, other_user.id) is False
            tagged = await list_tagged_assets(db, test_org.id, test_user.id)
            assert [a.asset_tag for a in tagged] == ["BUS-001"]
            assert await list_tagged_assets(db, test_org.id, other_user.id) == []

    @pytest.mark.asyncio
    async def test_tag_twice_keeps_one_tag(self, test_user, sample_bus):
        async with TestSessionLocal() as db:
            asset = await get_asset(db, sample_bus.id)
            await tag_asset(db, asset, test_user.id)
            await tag_asset(db, asset, test_user.id)
            await db.commit()
            result = await db.execute(select(AssetUserTag).where(AssetUserTag.asset_id == asset.id))
            assert len(result.scalars().all()) == 1

    @pytest.mark.asyncio
    async def test_untag(self, test_user, sample_bus):
        async with TestSessionLocal() as db:
            asset = await get_asset(db, sample_bus.id)
            await tag_asset(db, asset, test_user.id)
            await untag_asset(db, asset, test_user.id)
            await db.commit()
            assert await is_tagged(db, asset, test_user.id) is False
            # 未标记时取消标记不报错
            await untag_asset(db, asset, test_user.id)

    @pytest.mark.asyncio
    async def test_delete_asset_removes_tags(self, test_user, sample_bus):
        async with TestSessionLocal() as db:
            asset = await get_asset(db, sample_bus.id)
            await tag_asset(db, asset, test_user.id)
            await db.commit()
            await delete_asset(db, asset)
            await db.commit()
            result = await db.execute(select(AssetUserTag))
            assert result.scalars().all() == []


# ═══════════════════════════════════════════
# 大修费用
# ═══════════════════════════════════════════


class TestRehabilitationCost:

    @pytest.mark.asyncio
    async def test_no_rehabilitation(self, sample_bus):
        async with TestSessionLocal() as db:
            assert await total_rehabilitation_cost(db, await get_asset(db, sample_bus.id)) == 0

    @pytest.mark.asyncio
    async def test_sums_rehabilitation_events(self, sample_bus):
        await make_event(sample_bus, "rehabilitation_update", date(2013, 3, 1), total_cost=55000)
        await make_event(sample_bus, "rehabilitation_update", date(2018, 5, 1), total_cost=20000)
        await make_event(sample_bus, "rehabilitation_update", date(2019, 5, 1))
        await make_event(sample_bus, "condition_update", date(2020, 1, 1), assessed_rating=3.0)
        async with TestSessionLocal() as db:
            assert await total_rehabilitation_cost(db, await get_asset(db, sample_bus.id)) == 75000

    @pytest.mark.asyncio
    async def test_estimated_from_policy_rule(self, sample_bus, new_van):
        """公交车规则大修费用 60000；面包车规则没有大修"""
        async with TestSessionLocal() as db:
            assert await estimated_rehabilitation_cost(db, await get_asset(db, sample_bus.id)) == 60000
            assert await estimated_rehabilitation_cost(db, await get_asset(db, new_van.id)) == 0

    @pytest.mark.asyncio
    async def test_estimated_none_when_disposed(self, test_org, subtypes):
        asset = await make_asset(
            test_org, subtypes["Bus"], asset_tag="BUS-GONE", disposition_date=date(2022, 1, 1)
        )
        async with TestSessionLocal() as db:
            assert await estimated_rehabilitation_cost(db, await get_asset(db, asset.id)) is None

    @pytest.mark.asyncio
    async def test_estimated_none_without_policy(self, sample_bus, active_policy):
        async with TestSessionLocal() as db:
            await db.execute(update(Policy).where(Policy.id == active_policy.id).values(active=False))
            await db.commit()
            assert await estimated_rehabilitation_cost(db, await get_asset(db, sample_bus.id)) is None
