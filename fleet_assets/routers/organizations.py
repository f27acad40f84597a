"""机构 API 路由"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_assets.database import get_db
from fleet_assets.models.user import User
from fleet_assets.schemas.organization import (
    OrganizationCreate, OrganizationResponse, MemberAdd, MemberResponse,
)
from fleet_assets.services.organization_service import (
    create_organization, get_user_organizations, get_organization,
    list_members, add_member, OrganizationError,
)
from fleet_assets.utils.deps import get_current_user, check_org_view, check_org_manage

router = APIRouter(prefix="/organizations", tags=["机构管理"])


@router.get("", response_model=list[OrganizationResponse], summary="我参与的机构")
async def list_organizations(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await get_user_organizations(db, user.id)


@router.post("", response_model=OrganizationResponse, status_code=201, summary="创建机构")
async def create_organization_endpoint(
    body: OrganizationCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """创建机构，当前用户为 admin，并灌入默认更换政策"""
    org = await create_organization(
        db, user.id, body.name, body.short_name, body.organization_type
    )
    await db.commit()
    return org


@router.get("/{org_id}", response_model=OrganizationResponse)
async def get_organization_endpoint(
    org_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await check_org_view(db, user, org_id)
    org = await get_organization(db, org_id)
    if org is None:
        raise HTTPException(status_code=404, detail="机构不存在")
    return org


@router.get("/{org_id}/members", response_model=list[MemberResponse])
async def list_members_endpoint(
    org_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await check_org_view(db, user, org_id)
    return await list_members(db, org_id)


@router.post("/{org_id}/members", response_model=MemberResponse, status_code=201)
async def add_member_endpoint(
    org_id: str,
    body: MemberAdd,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await check_org_manage(db, user, org_id)
    try:
        member = await add_member(db, org_id, body.email, body.role)
    except OrganizationError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    await db.commit()
    return member
