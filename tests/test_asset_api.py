"""资产 API 测试

覆盖端点：
- GET  /asset-types
- GET  /organizations/{org_id}/assets(/summary)
- POST /organizations/{org_id}/assets
- GET / PUT / DELETE /assets/{id}
- POST /assets/{id}/recalculate
- POST /assets/{id}/copy
- GET  /assets/{id}/supersession, PUT /assets/{id}/superseded-by
- POST /organizations/{org_id}/assets/search
- GET  /organizations/{org_id}/assets/tagged, POST / DELETE /assets/{id}/tag
"""

from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy import update

from fleet_assets.models.organization import OrganizationMember
from fleet_assets.models.policy import Policy

from tests.conftest import TestSessionLocal, make_event


def _bus_payload(subtypes, **overrides) -> dict:
    bus = subtypes["Bus"]
    payload = {
        "asset_type_id": bus.asset_type_id,
        "asset_subtype_id": bus.id,
        "asset_tag": "BUS-101",
        "description": "40 尺柴油公交",
        "manufacture_year": 2006,
        "purchase_cost": 480000,
        "purchase_date": "2006-08-01",
    }
    payload.update(overrides)
    return payload


async def _join(org_id: str, user_id: str, role: str) -> None:
    async with TestSessionLocal() as db:
        db.add(OrganizationMember(organization_id=org_id, user_id=user_id, role=role))
        await db.commit()


class TestAssetTypes:

    @pytest.mark.asyncio
    async def test_list_asset_types(self, client: AsyncClient, auth_headers):
        resp = await client.get("/asset-types", headers=auth_headers)
        assert resp.status_code == 200
        types = {t["name"]: t for t in resp.json()}
        assert "Revenue Vehicles" in types
        assert [s["name"] for s in types["Revenue Vehicles"]["subtypes"]] == [
            "Bus", "Articulated Bus", "Cutaway", "Van",
        ]


class TestCreateAsset:

    @pytest.mark.asyncio
    async def test_create_recalculates(self, client: AsyncClient, auth_headers, test_org, subtypes):
        """新建后立即得到政策推导结果"""
        resp = await client.post(
            f"/organizations/{test_org.id}/assets",
            json=_bus_payload(subtypes),
            headers=auth_headers,
        )
        assert resp.status_code == 201
        body = resp.json()
        asset = body["asset"]
        assert body["warnings"] == []
        assert len(asset["object_key"]) == 12
        assert asset["in_service_date"] == "2006-08-01"
        assert asset["policy_replacement_year"] == 2018
        assert asset["expected_useful_life"] == 144
        assert asset["in_backlog"] is True
        assert asset["reported_condition_type"] == "Unknown"
        assert asset["service_status_type"] == "U"

    @pytest.mark.asyncio
    async def test_create_without_active_policy_warns(
        self, client: AsyncClient, auth_headers, test_org, subtypes, active_policy
    ):
        async with TestSessionLocal() as db:
            await db.execute(update(Policy).where(Policy.id == active_policy.id).values(active=False))
            await db.commit()

        resp = await client.post(
            f"/organizations/{test_org.id}/assets",
            json=_bus_payload(subtypes),
            headers=auth_headers,
        )
        assert resp.status_code == 201
        assert len(resp.json()["warnings"]) == 1
        assert resp.json()["asset"]["policy_replacement_year"] is None

    @pytest.mark.asyncio
    async def test_duplicate_tag(self, client: AsyncClient, auth_headers, test_org, subtypes, sample_bus):
        resp = await client.post(
            f"/organizations/{test_org.id}/assets",
            json=_bus_payload(subtypes, asset_tag="BUS-001"),
            headers=auth_headers,
        )
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_invalid_payload(self, client: AsyncClient, auth_headers, test_org, subtypes):
        resp = await client.post(
            f"/organizations/{test_org.id}/assets",
            json=_bus_payload(subtypes, asset_tag="THIS-TAG-IS-TOO-LONG"),
            headers=auth_headers,
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_viewer_cannot_create(
        self, client: AsyncClient, other_headers, other_user, test_org, subtypes
    ):
        await _join(test_org.id, other_user.id, "viewer")
        resp = await client.post(
            f"/organizations/{test_org.id}/assets",
            json=_bus_payload(subtypes),
            headers=other_headers,
        )
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_manager_can_create(
        self, client: AsyncClient, other_headers, other_user, test_org, subtypes
    ):
        await _join(test_org.id, other_user.id, "manager")
        resp = await client.post(
            f"/organizations/{test_org.id}/assets",
            json=_bus_payload(subtypes),
            headers=other_headers,
        )
        assert resp.status_code == 201


class TestReadAssets:

    @pytest.mark.asyncio
    async def test_list_and_filter(self, client: AsyncClient, auth_headers, test_org, sample_bus, new_van, subtypes):
        resp = await client.get(f"/organizations/{test_org.id}/assets", headers=auth_headers)
        assert resp.status_code == 200
        assert [a["asset_tag"] for a in resp.json()] == ["BUS-001", "VAN-001"]

        resp = await client.get(
            f"/organizations/{test_org.id}/assets",
            params={"asset_subtype_id": subtypes["Van"].id},
            headers=auth_headers,
        )
        assert [a["asset_tag"] for a in resp.json()] == ["VAN-001"]

    @pytest.mark.asyncio
    async def test_outsider_forbidden(self, client: AsyncClient, other_headers, test_org, sample_bus):
        resp = await client.get(f"/organizations/{test_org.id}/assets", headers=other_headers)
        assert resp.status_code == 403
        resp = await client.get(f"/assets/{sample_bus.id}", headers=other_headers)
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_detail_by_object_key(self, client: AsyncClient, auth_headers, sample_bus):
        resp = await client.get(f"/assets/{sample_bus.object_key}", headers=auth_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["id"] == sample_bus.id
        assert data["name"] == "BUS-001 - 测试资产"
        assert data["is_disposed"] is False
        assert data["months_since_rehabilitation"] is None

    @pytest.mark.asyncio
    async def test_not_found(self, client: AsyncClient, auth_headers):
        resp = await client.get("/assets/NOSUCHASSET0", headers=auth_headers)
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_summary(self, client: AsyncClient, auth_headers, test_org, sample_bus, new_van):
        await client.post(f"/assets/{sample_bus.id}/recalculate", headers=auth_headers)
        resp = await client.get(f"/organizations/{test_org.id}/assets/summary", headers=auth_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["total_count"] == 2
        assert data["backlog_count"] == 1
        assert data["disposed_count"] == 0


class TestRecalculateEndpoint:

    @pytest.mark.asyncio
    async def test_recalculate_as_of(self, client: AsyncClient, auth_headers, sample_bus):
        resp = await client.post(
            f"/assets/{sample_bus.id}/recalculate",
            params={"as_of": "2023-08-01"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["disposed"] is False
        assert data["asset"]["scheduled_replacement_year"] == 2024
        assert data["asset"]["scheduled_replacement_cost"] == 556050
        assert "in_backlog" in data["changed_fields"]
        steps = {o["step"]: o["status"] for o in data["outcomes"]}
        assert steps["policy_projection"] == "updated"
        assert steps["disposition"] == "unchanged"

        again = await client.post(
            f"/assets/{sample_bus.id}/recalculate",
            params={"as_of": "2023-08-01"},
            headers=auth_headers,
        )
        assert again.json()["changed_fields"] == []

    @pytest.mark.asyncio
    async def test_recalculate_without_policy(self, client: AsyncClient, auth_headers, sample_bus, active_policy):
        async with TestSessionLocal() as db:
            await db.execute(update(Policy).where(Policy.id == active_policy.id).values(active=False))
            await db.commit()

        resp = await client.post(f"/assets/{sample_bus.id}/recalculate", headers=auth_headers)
        assert resp.status_code == 409
        assert resp.json()["code"] == "POLICY_NOT_FOUND"


class TestUpdateDelete:

    @pytest.mark.asyncio
    async def test_update_triggers_recalculation(self, client: AsyncClient, auth_headers, sample_bus):
        """投入使用日期推后 → 政策更换年份随之推后"""
        await client.post(f"/assets/{sample_bus.id}/recalculate", headers=auth_headers)
        resp = await client.put(
            f"/assets/{sample_bus.id}",
            json={"in_service_date": "2020-08-01", "description": "改装"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        asset = resp.json()["asset"]
        assert asset["description"] == "改装"
        assert asset["policy_replacement_year"] == 2032
        assert asset["in_backlog"] is False
        assert asset["scheduled_replacement_year"] == 2032

    @pytest.mark.asyncio
    async def test_update_ignores_derived_fields(self, client: AsyncClient, auth_headers, sample_bus):
        resp = await client.put(
            f"/assets/{sample_bus.id}",
            json={"policy_replacement_year": 1990},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["asset"]["policy_replacement_year"] == 2018

    @pytest.mark.asyncio
    async def test_delete(self, client: AsyncClient, auth_headers, sample_bus):
        resp = await client.delete(f"/assets/{sample_bus.id}", headers=auth_headers)
        assert resp.status_code == 204
        resp = await client.get(f"/assets/{sample_bus.id}", headers=auth_headers)
        assert resp.status_code == 404


class TestCopyAndSupersession:

    @pytest.mark.asyncio
    async def test_copy(self, client: AsyncClient, auth_headers, sample_bus):
        resp = await client.post(
            f"/assets/{sample_bus.id}/copy", json={"asset_tag": "BUS-002"}, headers=auth_headers
        )
        assert resp.status_code == 201
        clone = resp.json()["asset"]
        assert clone["asset_tag"] == "BUS-002"
        assert clone["id"] != sample_bus.id
        # 复制后立即重算
        assert clone["policy_replacement_year"] == 2018

        resp = await client.post(
            f"/assets/{sample_bus.id}/copy", json={"asset_tag": "BUS-002"}, headers=auth_headers
        )
        assert resp.status_code == 409

    @pytest.mark.asyncio
    async def test_supersession(self, client: AsyncClient, auth_headers, sample_bus, new_van):
        resp = await client.put(
            f"/assets/{sample_bus.id}/superseded-by",
            json={"superseded_by_id": new_van.object_key},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["superseded_by_id"] == new_van.id

        resp = await client.get(f"/assets/{new_van.id}/supersession", headers=auth_headers)
        data = resp.json()
        assert data["superseded_by"] is None
        assert [a["id"] for a in data["supersedes"]] == [sample_bus.id]

        resp = await client.put(
            f"/assets/{new_van.id}/superseded-by",
            json={"superseded_by_id": sample_bus.id},
            headers=auth_headers,
        )
        assert resp.status_code == 400

        resp = await client.put(
            f"/assets/{sample_bus.id}/superseded-by",
            json={"superseded_by_id": None},
            headers=auth_headers,
        )
        assert resp.json()["superseded_by_id"] is None


class TestSearchAndTags:

    @pytest.mark.asyncio
    async def test_search(self, client: AsyncClient, auth_headers, test_org, sample_bus, new_van, subtypes):
        url = f"/organizations/{test_org.id}/assets/search"
        resp = await client.post(
            url, json={"purchase_cost": {"value": 100000, "comparator": "gt"}}, headers=auth_headers
        )
        assert resp.status_code == 200
        assert [a["asset_tag"] for a in resp.json()] == ["BUS-001"]

        resp = await client.post(
            url,
            json={
                "asset_type_id": subtypes["Van"].asset_type_id,
                "in_service_date": {"value": "2020-01-01", "comparator": "gt"},
            },
            headers=auth_headers,
        )
        assert [a["asset_tag"] for a in resp.json()] == ["VAN-001"]

    @pytest.mark.asyncio
    async def test_search_rejects_unknown_comparator(self, client: AsyncClient, auth_headers, test_org):
        resp = await client.post(
            f"/organizations/{test_org.id}/assets/search",
            json={"manufacture_year": {"value": 2010, "comparator": "between"}},
            headers=auth_headers,
        )
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_search_outsider_forbidden(self, client: AsyncClient, other_headers, test_org):
        resp = await client.post(f"/organizations/{test_org.id}/assets/search", json={}, headers=other_headers)
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_viewer_can_tag(
        self, client: AsyncClient, auth_headers, other_user, other_headers, test_org, sample_bus
    ):
        await _join(test_org.id, other_user.id, "viewer")
        resp = await client.post(f"/assets/{sample_bus.id}/tag", headers=other_headers)
        assert resp.status_code == 200
        assert resp.json() == {"asset_id": sample_bus.id, "tagged": True}

        resp = await client.get(f"/assets/{sample_bus.id}", headers=other_headers)
        assert resp.json()["tagged"] is True
        # 标记只对本人可见
        resp = await client.get(f"/assets/{sample_bus.id}", headers=auth_headers)
        assert resp.json()["tagged"] is False

        resp = await client.get(f"/organizations/{test_org.id}/assets/tagged", headers=other_headers)
        assert [a["asset_tag"] for a in resp.json()] == ["BUS-001"]

        resp = await client.delete(f"/assets/{sample_bus.id}/tag", headers=other_headers)
        assert resp.json()["tagged"] is False
        resp = await client.get(f"/organizations/{test_org.id}/assets/tagged", headers=other_headers)
        assert resp.json() == []

    @pytest.mark.asyncio
    async def test_outsider_cannot_tag(self, client: AsyncClient, other_headers, sample_bus):
        resp = await client.post(f"/assets/{sample_bus.id}/tag", headers=other_headers)
        assert resp.status_code == 403

    @pytest.mark.asyncio
    async def test_detail_rehabilitation_costs(self, client: AsyncClient, auth_headers, sample_bus):
        await make_event(sample_bus, "rehabilitation_update", date(2013, 3, 1), total_cost=55000)
        resp = await client.get(f"/assets/{sample_bus.id}", headers=auth_headers)
        data = resp.json()
        assert data["rehabilitation_cost"] == 55000
        assert data["estimated_rehabilitation_cost"] == 60000
