"""测试公共 Fixtures —— 内存 SQLite + 独立 TestClient"""

import asyncio
import uuid
from datetime import date

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from fleet_assets.database import Base, get_db, get_session_factory
from fleet_assets.models.user import User
from fleet_assets.models.organization import Organization, OrganizationMember
from fleet_assets.models.asset import Asset, AssetSubtype
from fleet_assets.models.asset_event import AssetEvent
from fleet_assets.models.policy import Policy
from fleet_assets.utils.cache import InMemoryCache, get_cache
from fleet_assets.utils.security import hash_password, create_access_token, generate_object_key
from fleet_assets.utils.seed import seed_asset_types, seed_policy_for_organization

# 默认政策财年固定，成本复利结果与运行日期无关
TEST_POLICY_YEAR = 2023


# ──────────── 事件循环 ────────────

@pytest.fixture(scope="session")
def event_loop():
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


# ──────────── 内存数据库引擎 ────────────

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DB_URL, echo=False)
TestSessionLocal = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """每个测试前建表并灌入资产类型目录，测试后清表"""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with TestSessionLocal() as db:
        await seed_asset_types(db)
        await db.commit()
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def _override_get_db():
    async with TestSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ──────────── FastAPI TestClient ────────────

@pytest.fixture
def test_cache() -> InMemoryCache:
    return InMemoryCache(default_expires_in=60)


@pytest_asyncio.fixture
async def client(test_cache: InMemoryCache):
    from fleet_assets.main import app

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestSessionLocal
    app.dependency_overrides[get_cache] = lambda: test_cache
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ──────────── 测试用户 ────────────

async def _create_user(email: str, nickname: str) -> User:
    async with TestSessionLocal() as db:
        user = User(
            id=str(uuid.uuid4()),
            email=email,
            password_hash=hash_password("password123"),
            nickname=nickname,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user


@pytest_asyncio.fixture
async def test_user() -> User:
    return await _create_user("test@example.com", "测试用户")


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict:
    token = create_access_token(test_user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def other_user() -> User:
    return await _create_user("other@example.com", "其他用户")


@pytest_asyncio.fixture
async def other_headers(other_user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(other_user.id)}"}


# ──────────── 测试机构 + 默认政策 ────────────

@pytest_asyncio.fixture
async def test_org(test_user: User) -> Organization:
    async with TestSessionLocal() as db:
        org = Organization(
            id=str(uuid.uuid4()),
            name="测试公交公司",
            short_name="TST",
            owner_id=test_user.id,
        )
        db.add(org)
        await db.flush()
        db.add(OrganizationMember(organization_id=org.id, user_id=test_user.id, role="admin"))
        await seed_policy_for_organization(db, org.id, policy_year=TEST_POLICY_YEAR)
        await db.commit()
        await db.refresh(org)
        return org


@pytest_asyncio.fixture
async def active_policy(test_org: Organization) -> Policy:
    async with TestSessionLocal() as db:
        result = await db.execute(
            select(Policy).where(Policy.organization_id == test_org.id, Policy.active == True)
        )
        return result.scalar_one()


@pytest_asyncio.fixture
async def subtypes() -> dict[str, AssetSubtype]:
    """子类名称 → AssetSubtype"""
    async with TestSessionLocal() as db:
        result = await db.execute(select(AssetSubtype))
        return {s.name: s for s in result.scalars().all()}


# ──────────── 资产 / 事件工厂 ────────────

async def make_asset(org: Organization, subtype: AssetSubtype, **overrides) -> Asset:
    """直接写库创建资产（不触发重算）"""
    fields = dict(
        id=str(uuid.uuid4()),
        object_key=generate_object_key(),
        organization_id=org.id,
        asset_type_id=subtype.asset_type_id,
        asset_subtype_id=subtype.id,
        asset_tag=f"T{uuid.uuid4().hex[:8].upper()}",
        description="测试资产",
        manufacture_year=2006,
        purchase_cost=480000,
        purchase_date=date(2006, 8, 1),
        in_service_date=date(2006, 8, 1),
    )
    fields.update(overrides)
    async with TestSessionLocal() as db:
        asset = Asset(**fields)
        db.add(asset)
        await db.commit()
        await db.refresh(asset)
        return asset


async def make_event(asset: Asset, event_type: str, event_date: date, **payload) -> AssetEvent:
    """直接写库创建事件（不校验、不重算）"""
    async with TestSessionLocal() as db:
        event = AssetEvent(
            object_key=generate_object_key(),
            asset_id=asset.id,
            event_type=event_type,
            event_date=event_date,
            **payload,
        )
        db.add(event)
        await db.commit()
        await db.refresh(event)
        return event


@pytest_asyncio.fixture
async def sample_bus(test_org: Organization, subtypes) -> Asset:
    """2006-08 投入使用的公交车：政策更换年份 2006 + 144/12 = 2018"""
    return await make_asset(test_org, subtypes["Bus"], asset_tag="BUS-001")


@pytest_asyncio.fixture
async def new_van(test_org: Organization, subtypes) -> Asset:
    """2022-09 投入使用的面包车：政策更换年份 2022 + 48/12 = 2026"""
    return await make_asset(
        test_org,
        subtypes["Van"],
        asset_tag="VAN-001",
        manufacture_year=2022,
        purchase_cost=58000,
        purchase_date=date(2022, 9, 1),
        in_service_date=date(2022, 9, 1),
    )
