"""后台重算任务 API 路由"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleet_assets.database import get_db, get_session_factory
from fleet_assets.models.user import User
from fleet_assets.schemas.job import RecalculationJobResponse, SweepResponse
from fleet_assets.services.asset_service import list_assets
from fleet_assets.tasks.recalculation import (
    get_job, list_jobs, reset_job, run_recalculation_job, run_organization_sweep,
)
from fleet_assets.utils.cache import CacheBackend, get_cache
from fleet_assets.utils.deps import get_current_user, check_org_view, check_org_manage

router = APIRouter(tags=["重算任务"])


@router.get(
    "/organizations/{org_id}/recalculation-jobs",
    response_model=list[RecalculationJobResponse],
)
async def list_jobs_endpoint(
    org_id: str,
    status: str | None = Query(None, pattern=r"^(queued|running|succeeded|dead)$"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await check_org_view(db, user, org_id)
    return await list_jobs(db, org_id, status)


@router.post("/recalculation-jobs/{job_id}/retry", response_model=RecalculationJobResponse)
async def retry_job(
    job_id: str,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    cache: CacheBackend = Depends(get_cache),
):
    """死信任务重新入队"""
    job = await get_job(db, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="任务不存在")
    await check_org_manage(db, user, job.organization_id)
    if job.status != "dead":
        raise HTTPException(status_code=400, detail="只有死信任务可以重试")
    await reset_job(db, job)
    await db.commit()
    background_tasks.add_task(
        run_recalculation_job, job.id, session_factory=session_factory, cache=cache
    )
    return job


@router.post(
    "/organizations/{org_id}/recalculation-jobs/sweep",
    response_model=SweepResponse,
    status_code=202,
)
async def sweep_organization(
    org_id: str,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    cache: CacheBackend = Depends(get_cache),
):
    """机构全量重算（如财年切换、政策调整后）"""
    await check_org_manage(db, user, org_id)
    queued = len(await list_assets(db, org_id))
    background_tasks.add_task(
        run_organization_sweep, org_id, session_factory=session_factory, cache=cache
    )
    return SweepResponse(queued=queued)
