"""机构 Service — 机构创建、成员与角色、访问检查"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_assets.models.organization import Organization, OrganizationMember
from fleet_assets.models.user import User
from fleet_assets.services.policy_service import seed_default_policy

MANAGER_ROLES = ("admin", "manager")


class OrganizationError(Exception):
    def __init__(self, detail: str, status_code: int = 400):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


async def create_organization(
    db: AsyncSession,
    owner_id: str,
    name: str,
    short_name: str | None = None,
    organization_type: str = "transit_operator",
    auto_seed: bool = True,
) -> Organization:
    """创建机构，默认自动灌入更换政策"""
    org = Organization(
        name=name,
        short_name=short_name,
        organization_type=organization_type,
        owner_id=owner_id,
    )
    db.add(org)
    await db.flush()

    # owner 也加入成员（admin 角色）
    db.add(OrganizationMember(organization_id=org.id, user_id=owner_id, role="admin"))

    if auto_seed:
        await seed_default_policy(db, org.id)

    await db.flush()
    await db.refresh(org)
    return org


async def get_user_organizations(db: AsyncSession, user_id: str) -> list[Organization]:
    """获取用户参与的机构"""
    result = await db.execute(
        select(Organization)
        .join(OrganizationMember, Organization.id == OrganizationMember.organization_id)
        .where(OrganizationMember.user_id == user_id)
        .order_by(Organization.created_at)
    )
    return list(result.scalars().all())


async def get_organization(db: AsyncSession, organization_id: str) -> Organization | None:
    result = await db.execute(select(Organization).where(Organization.id == organization_id))
    return result.scalar_one_or_none()


async def get_member_role(db: AsyncSession, user_id: str, organization_id: str) -> str | None:
    result = await db.execute(
        select(OrganizationMember.role).where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def user_has_org_access(db: AsyncSession, user_id: str, organization_id: str) -> bool:
    """任意角色的成员均可查看"""
    return await get_member_role(db, user_id, organization_id) is not None


async def can_manage_organization(db: AsyncSession, user_id: str, organization_id: str) -> bool:
    return await get_member_role(db, user_id, organization_id) in MANAGER_ROLES


async def can_manage(db: AsyncSession, user: User, asset) -> bool:
    """用户能否修改该资产：资产所属机构的 admin / manager"""
    return await can_manage_organization(db, user.id, asset.organization_id)


async def list_members(db: AsyncSession, organization_id: str) -> list[OrganizationMember]:
    result = await db.execute(
        select(OrganizationMember).where(OrganizationMember.organization_id == organization_id)
    )
    return list(result.scalars().all())


async def add_member(
    db: AsyncSession,
    organization_id: str,
    email: str,
    role: str = "viewer",
) -> OrganizationMember:
    """按邮箱添加成员；已是成员则更新角色"""
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None:
        raise OrganizationError(f"用户不存在: {email}", 404)

    result = await db.execute(
        select(OrganizationMember).where(
            OrganizationMember.organization_id == organization_id,
            OrganizationMember.user_id == user.id,
        )
    )
    member = result.scalar_one_or_none()
    if member is None:
        member = OrganizationMember(organization_id=organization_id, user_id=user.id, role=role)
        db.add(member)
    else:
        member.role = role
    await db.flush()
    return member
