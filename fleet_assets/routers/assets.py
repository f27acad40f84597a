"""资产 API 路由"""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_assets.database import get_db
from fleet_assets.models.asset import Asset
from fleet_assets.models.user import User
from fleet_assets.schemas.asset import (
    AssetCreate, AssetUpdate, AssetResponse, AssetDetail, AssetSummary,
    AssetCopyRequest, SupersededByRequest, SupersessionResponse,
    AssetMutationResponse, AssetTypeResponse, RecalculationResponse,
    FieldOutcomeResponse, AssetSearch, AssetTagResponse,
)
from fleet_assets.services import asset_service
from fleet_assets.services.asset_service import AssetError
from fleet_assets.services.recalculation_service import recalculate, recalculate_or_warn
from fleet_assets.utils.cache import CacheBackend, get_cache, invalidate_asset
from fleet_assets.utils.deps import get_current_user, check_org_view, check_org_manage, load_asset

router = APIRouter(tags=["资产管理"])


async def _to_detail(
    db: AsyncSession, asset: Asset, user: User, cache: CacheBackend | None = None
) -> AssetDetail:
    base = AssetResponse.model_validate(asset).model_dump()
    return AssetDetail(
        **base,
        name=asset_service.asset_name(asset),
        age=asset_service.age(asset),
        months_in_service=asset_service.months_in_service(asset),
        years_in_service=asset_service.years_in_service(asset),
        months_since_rehabilitation=asset_service.months_since_rehabilitation(asset),
        is_disposed=asset_service.is_disposed(asset),
        is_disposable=asset_service.is_disposable(asset),
        is_in_service=asset_service.is_in_service(asset),
        scheduled_for_disposition=asset_service.scheduled_for_disposition(asset),
        scheduled_for_rehabilitation=asset_service.scheduled_for_rehabilitation(asset),
        rehabilitation_cost=await asset_service.total_rehabilitation_cost(db, asset),
        estimated_rehabilitation_cost=await asset_service.estimated_rehabilitation_cost(
            db, asset, cache
        ),
        tagged=await asset_service.is_tagged(db, asset, user.id),
    )


@router.get("/asset-types", response_model=list[AssetTypeResponse], summary="资产类型目录")
async def list_asset_types(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await asset_service.list_asset_types(db)


# ───── 机构下的资产 ─────


@router.get("/organizations/{org_id}/assets", response_model=list[AssetResponse])
async def list_assets(
    org_id: str,
    asset_type_id: int | None = Query(None),
    asset_subtype_id: int | None = Query(None),
    in_backlog: bool | None = Query(None),
    include_disposed: bool = Query(False),
    keyword: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await check_org_view(db, user, org_id)
    return await asset_service.list_assets(
        db, org_id, asset_type_id, asset_subtype_id, in_backlog, include_disposed, keyword
    )


@router.post("/organizations/{org_id}/assets/search", response_model=list[AssetResponse])
async def search_assets(
    org_id: str,
    body: AssetSearch,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """组合查询：等值条件、比较条件（lt / eq / gt）与型号模糊匹配"""
    await check_org_view(db, user, org_id)
    try:
        return await asset_service.search_assets(db, org_id, body.model_dump(exclude_none=True))
    except AssetError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.get("/organizations/{org_id}/assets/tagged", response_model=list[AssetResponse])
async def list_tagged_assets(
    org_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """当前用户标记过的资产"""
    await check_org_view(db, user, org_id)
    return await asset_service.list_tagged_assets(db, org_id, user.id)


@router.get("/organizations/{org_id}/assets/summary", response_model=AssetSummary)
async def get_asset_summary(
    org_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await check_org_view(db, user, org_id)
    return await asset_service.get_asset_summary(db, org_id)


@router.post("/organizations/{org_id}/assets", response_model=AssetMutationResponse, status_code=201)
async def create_asset(
    org_id: str,
    body: AssetCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    cache: CacheBackend = Depends(get_cache),
):
    """新建资产后立即重算派生字段"""
    await check_org_manage(db, user, org_id)
    try:
        asset = await asset_service.create_asset(db, org_id, body.model_dump(), user.id)
    except AssetError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    _, warnings = await recalculate_or_warn(db, asset.id, cache=cache)
    await db.commit()
    return AssetMutationResponse(asset=AssetResponse.model_validate(asset), warnings=warnings)


# ───── 单个资产 ─────


@router.get("/assets/{asset_id}", response_model=AssetDetail)
async def get_asset(
    asset_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    cache: CacheBackend = Depends(get_cache),
):
    asset = await load_asset(db, user, asset_id)
    return await _to_detail(db, asset, user, cache)


@router.put("/assets/{asset_id}", response_model=AssetMutationResponse)
async def update_asset(
    asset_id: str,
    body: AssetUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    cache: CacheBackend = Depends(get_cache),
):
    """修改 authoritative 字段；派生字段随之重算"""
    asset = await load_asset(db, user, asset_id, manage=True)
    try:
        asset = await asset_service.update_asset(
            db, asset, body.model_dump(exclude_unset=True), user.id, cache=cache
        )
    except AssetError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    _, warnings = await recalculate_or_warn(db, asset.id, cache=cache)
    await db.commit()
    return AssetMutationResponse(asset=AssetResponse.model_validate(asset), warnings=warnings)


@router.delete("/assets/{asset_id}", status_code=204)
async def delete_asset(
    asset_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    cache: CacheBackend = Depends(get_cache),
):
    asset = await load_asset(db, user, asset_id, manage=True)
    object_key = asset.object_key
    await asset_service.delete_asset(db, asset)
    invalidate_asset(cache, object_key)
    await db.commit()


@router.post("/assets/{asset_id}/recalculate", response_model=RecalculationResponse)
async def recalculate_asset(
    asset_id: str,
    as_of: date | None = Query(None, description="计算基准日，缺省为今天"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    cache: CacheBackend = Depends(get_cache),
):
    """手动重算；机构无生效政策时返回 409"""
    asset = await load_asset(db, user, asset_id, manage=True)
    result = await recalculate(db, asset.id, as_of=as_of, cache=cache)
    await db.commit()
    return RecalculationResponse(
        asset=AssetResponse.model_validate(asset),
        disposed=result.disposed,
        changed_fields=sorted(result.changed_fields),
        outcomes=[
            FieldOutcomeResponse(
                step=o.step, status=o.status.value, fields=o.fields, message=o.message
            )
            for o in result.outcomes
        ],
        warnings=result.warnings,
    )


@router.post("/assets/{asset_id}/copy", response_model=AssetMutationResponse, status_code=201)
async def copy_asset(
    asset_id: str,
    body: AssetCopyRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    cache: CacheBackend = Depends(get_cache),
):
    asset = await load_asset(db, user, asset_id, manage=True)
    try:
        clone = await asset_service.copy_asset(db, asset, body.asset_tag, user.id)
    except AssetError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    _, warnings = await recalculate_or_warn(db, clone.id, cache=cache)
    await db.commit()
    return AssetMutationResponse(asset=AssetResponse.model_validate(clone), warnings=warnings)


@router.get("/assets/{asset_id}/supersession", response_model=SupersessionResponse)
async def get_supersession(
    asset_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """接替关系：接替本资产的资产，以及被本资产接替的资产"""
    asset = await load_asset(db, user, asset_id)
    successor = await asset_service.get_superseded_by(db, asset)
    predecessors = await asset_service.get_supersedes(db, asset)
    return SupersessionResponse(
        superseded_by=AssetResponse.model_validate(successor) if successor else None,
        supersedes=[AssetResponse.model_validate(a) for a in predecessors],
    )


@router.put("/assets/{asset_id}/superseded-by", response_model=AssetResponse)
async def set_superseded_by(
    asset_id: str,
    body: SupersededByRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    asset = await load_asset(db, user, asset_id, manage=True)
    try:
        asset = await asset_service.set_superseded_by(db, asset, body.superseded_by_id, user.id)
    except AssetError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    await db.commit()
    return asset


# ───── 个人标记 ─────


@router.post("/assets/{asset_id}/tag", response_model=AssetTagResponse)
async def tag_asset(
    asset_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """标记资产；只需查看权限"""
    asset = await load_asset(db, user, asset_id)
    await asset_service.tag_asset(db, asset, user.id)
    await db.commit()
    return AssetTagResponse(asset_id=asset.id, tagged=True)


@router.delete("/assets/{asset_id}/tag", response_model=AssetTagResponse)
async def untag_asset(
    asset_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    asset = await load_asset(db, user, asset_id)
    await asset_service.untag_asset(db, asset, user.id)
    await db.commit()
    return AssetTagResponse(asset_id=asset.id, tagged=False)
