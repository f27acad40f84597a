"""批量导入 API 路由"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleet_assets.database import get_db, get_session_factory
from fleet_assets.models.user import User
from fleet_assets.schemas.upload import UploadCreate, UploadResponse
from fleet_assets.services import upload_service
from fleet_assets.services.upload_service import UploadError
from fleet_assets.tasks.recalculation import run_recalculation_job
from fleet_assets.utils.cache import CacheBackend, get_cache
from fleet_assets.utils.deps import get_current_user, check_org_view, check_org_manage

router = APIRouter(tags=["批量导入"])


def _schedule(background_tasks: BackgroundTasks, jobs, session_factory, cache) -> None:
    for job in jobs:
        background_tasks.add_task(
            run_recalculation_job, job.id, session_factory=session_factory, cache=cache
        )


async def _load_upload(db: AsyncSession, user: User, upload_id: str, manage: bool = True):
    upload = await upload_service.get_upload(db, upload_id)
    if upload is None:
        raise HTTPException(status_code=404, detail="导入记录不存在")
    if manage:
        await check_org_manage(db, user, upload.organization_id)
    else:
        await check_org_view(db, user, upload.organization_id)
    return upload


@router.get("/organizations/{org_id}/uploads", response_model=list[UploadResponse])
async def list_uploads(
    org_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await check_org_view(db, user, org_id)
    return await upload_service.list_uploads(db, org_id)


@router.post("/organizations/{org_id}/uploads", response_model=UploadResponse, status_code=201)
async def create_upload(
    org_id: str,
    body: UploadCreate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    cache: CacheBackend = Depends(get_cache),
):
    """导入资产行；每个新建 / 更新的资产在后台重算"""
    await check_org_manage(db, user, org_id)
    try:
        upload = await upload_service.create_upload(
            db, org_id, user.id, body.rows, body.original_filename, body.force_update
        )
        jobs = await upload_service.process_upload(db, upload, cache)
    except UploadError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    await db.commit()
    _schedule(background_tasks, jobs, session_factory, cache)
    return upload


@router.get("/uploads/{upload_id}", response_model=UploadResponse)
async def get_upload(
    upload_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await _load_upload(db, user, upload_id, manage=False)


@router.post("/uploads/{upload_id}/resubmit", response_model=UploadResponse)
async def resubmit_upload(
    upload_id: str,
    background_tasks: BackgroundTasks,
    force_update: bool | None = Query(None),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    cache: CacheBackend = Depends(get_cache),
):
    upload = await _load_upload(db, user, upload_id)
    try:
        jobs = await upload_service.resubmit_upload(db, upload, force_update, cache)
    except UploadError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    await db.commit()
    _schedule(background_tasks, jobs, session_factory, cache)
    return upload


@router.delete("/uploads/{upload_id}", status_code=204)
async def delete_upload(
    upload_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    upload = await _load_upload(db, user, upload_id)
    try:
        await upload_service.delete_upload(db, upload)
    except UploadError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    await db.commit()
