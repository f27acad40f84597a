"""更换政策 API 路由"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_assets.database import get_db
from fleet_assets.models.user import User
from fleet_assets.schemas.policy import (
    PolicyCreate, PolicyUpdate, PolicyResponse, PolicyRuleFields, PolicyRuleResponse,
)
from fleet_assets.services import policy_service
from fleet_assets.services.policy_service import PolicyError
from fleet_assets.utils.cache import CacheBackend, get_cache
from fleet_assets.utils.deps import get_current_user, check_org_view, check_org_manage

router = APIRouter(tags=["更换政策"])


async def _load_policy(db: AsyncSession, user: User, policy_id: str, manage: bool = True):
    policy = await policy_service.get_policy(db, policy_id)
    if policy is None:
        raise HTTPException(status_code=404, detail="政策不存在")
    if manage:
        await check_org_manage(db, user, policy.organization_id)
    else:
        await check_org_view(db, user, policy.organization_id)
    return policy


@router.get("/organizations/{org_id}/policies", response_model=list[PolicyResponse])
async def list_policies(
    org_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await check_org_view(db, user, org_id)
    return await policy_service.list_policies(db, org_id)


@router.get("/organizations/{org_id}/policies/active", response_model=PolicyResponse)
async def get_active_policy(
    org_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await check_org_view(db, user, org_id)
    policy = await policy_service.get_active_policy(db, org_id)
    if policy is None:
        raise HTTPException(status_code=404, detail="该机构没有生效的政策")
    return policy


@router.post("/organizations/{org_id}/policies", response_model=PolicyResponse, status_code=201)
async def create_policy(
    org_id: str,
    body: PolicyCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    cache: CacheBackend = Depends(get_cache),
):
    """新建政策；未给出规则时复制当前生效政策的规则"""
    await check_org_manage(db, user, org_id)
    try:
        policy = await policy_service.create_policy(
            db, org_id, body.name, body.year,
            description=body.description,
            condition_threshold=body.condition_threshold,
            interest_rate=body.interest_rate,
            rules=[r.model_dump(mode="json") for r in body.rules],
            copy_active_rules=body.copy_active_rules,
            activate=body.activate,
            cache=cache,
        )
    except PolicyError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    await db.commit()
    return policy


@router.get("/policies/{policy_id}", response_model=PolicyResponse)
async def get_policy(
    policy_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await _load_policy(db, user, policy_id, manage=False)


@router.put("/policies/{policy_id}", response_model=PolicyResponse)
async def update_policy(
    policy_id: str,
    body: PolicyUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    cache: CacheBackend = Depends(get_cache),
):
    policy = await _load_policy(db, user, policy_id)
    policy = await policy_service.update_policy(db, policy, cache, **body.model_dump())
    await db.commit()
    return policy


@router.put("/policies/{policy_id}/rules/{subtype_id}", response_model=PolicyRuleResponse)
async def upsert_rule(
    policy_id: str,
    subtype_id: int,
    body: PolicyRuleFields,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    cache: CacheBackend = Depends(get_cache),
):
    """新增或修改某个资产子类的规则"""
    policy = await _load_policy(db, user, policy_id)
    try:
        rule = await policy_service.upsert_rule(
            db, policy, subtype_id, body.model_dump(mode="json", exclude_unset=True), cache
        )
    except PolicyError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    await db.commit()
    return rule


@router.post("/policies/{policy_id}/activate", response_model=PolicyResponse)
async def activate_policy(
    policy_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    cache: CacheBackend = Depends(get_cache),
):
    """使政策生效（同机构其它政策失效）；已有资产需重新计算才会反映新政策"""
    policy = await _load_policy(db, user, policy_id)
    await policy_service.activate_policy(db, policy, cache)
    await db.commit()
    return await policy_service.get_policy(db, policy.id)
