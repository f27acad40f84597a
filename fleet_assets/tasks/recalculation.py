"""后台重算任务 — 单资产任务（重试 + 指数退避 + 死信）与机构全量重算"""

import asyncio
import logging
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fleet_assets.config import settings
from fleet_assets.database import AsyncSessionLocal
from fleet_assets.models.asset import Asset
from fleet_assets.models.job import RecalculationJob
from fleet_assets.services.policy_service import PolicyNotFoundError
from fleet_assets.services.recalculation_service import RecalculationError, recalculate
from fleet_assets.utils.cache import CacheBackend

logger = logging.getLogger(__name__)

# 重试无意义的错误：直接进入死信
NON_RETRYABLE_ERRORS = (PolicyNotFoundError, RecalculationError)


async def enqueue_recalculation(
    db: AsyncSession,
    asset: Asset,
    upload_id: str | None = None,
) -> RecalculationJob:
    """为资产登记一条待执行的重算任务（由调用方提交并调度）"""
    job = RecalculationJob(
        organization_id=asset.organization_id,
        asset_id=asset.id,
        upload_id=upload_id,
        status="queued",
    )
    db.add(job)
    await db.flush()
    return job


async def list_jobs(
    db: AsyncSession,
    organization_id: str,
    status: str | None = None,
) -> list[RecalculationJob]:
    stmt = select(RecalculationJob).where(RecalculationJob.organization_id == organization_id)
    if status:
        stmt = stmt.where(RecalculationJob.status == status)
    result = await db.execute(stmt.order_by(RecalculationJob.created_at.desc()))
    return list(result.scalars().all())


async def get_job(db: AsyncSession, job_id: str) -> RecalculationJob | None:
    result = await db.execute(select(RecalculationJob).where(RecalculationJob.id == job_id))
    return result.scalar_one_or_none()


async def reset_job(db: AsyncSession, job: RecalculationJob) -> RecalculationJob:
    """死信任务重新入队"""
    job.status = "queued"
    job.attempts = 0
    job.last_error = None
    job.finished_at = None
    await db.flush()
    return job


async def _finish(db: AsyncSession, job: RecalculationJob, status: str, error: str | None = None):
    job.status = status
    job.last_error = error
    job.finished_at = datetime.utcnow()
    await db.commit()


async def run_recalculation_job(
    job_id: str,
    session_factory: async_sessionmaker | None = None,
    max_attempts: int | None = None,
    backoff_seconds: float | None = None,
    as_of: date | None = None,
    cache: CacheBackend | None = None,
) -> str:
    """
    执行一条重算任务，返回最终状态
    1. 每次尝试使用独立的 Session，失败即回滚
    2. 第 n 次失败后等待 backoff · 2^(n-1) 秒再试
    3. 重试耗尽或遇到不可重试错误 → dead
    """
    session_factory = session_factory or AsyncSessionLocal
    max_attempts = max_attempts or settings.RECALC_MAX_ATTEMPTS
    if backoff_seconds is None:
        backoff_seconds = settings.RECALC_RETRY_BACKOFF_SECONDS

    while True:
        async with session_factory() as db:
            job = await get_job(db, job_id)
            if job is None:
                logger.error(f"[重算任务] 任务不存在: {job_id}")
                return "missing"
            if job.status in ("succeeded", "dead"):
                return job.status

            job.status = "running"
            job.attempts += 1
            attempt = job.attempts
            await db.commit()

            try:
                await recalculate(db, job.asset_id, as_of=as_of, cache=cache)
                await _finish(db, job, "succeeded")
                logger.info(f"[重算任务] 资产 {job.asset_id} 第 {attempt} 次尝试成功")
                return "succeeded"
            except NON_RETRYABLE_ERRORS as e:
                await db.rollback()
                await db.refresh(job)
                await _finish(db, job, "dead", e.detail)
                logger.warning(
                    f"[重算任务] 资产 {job.asset_id} 不可重试，进入死信: {e.detail}",
                    extra={"asset": job.asset_id, "step": "job"},
                )
                return "dead"
            except Exception as e:
                await db.rollback()
                await db.refresh(job)
                if attempt >= max_attempts:
                    await _finish(db, job, "dead", str(e))
                    logger.error(f"[重算任务] 资产 {job.asset_id} 重试 {attempt} 次仍失败，进入死信: {e}")
                    return "dead"
                job.status = "queued"
                job.last_error = str(e)
                await db.commit()
                logger.warning(
                    f"[重算任务] 资产 {job.asset_id} 第 {attempt} 次尝试失败，稍后重试: {e}",
                    extra={"asset": job.asset_id, "step": "job"},
                )

        await asyncio.sleep(backoff_seconds * 2 ** (attempt - 1))


async def run_organization_sweep(
    organization_id: str,
    session_factory: async_sessionmaker | None = None,
    as_of: date | None = None,
    cache: CacheBackend | None = None,
) -> dict:
    """
    机构全量重算（如财年切换时）
    为每个未处置资产登记任务并依次执行，返回各状态的数量
    """
    session_factory = session_factory or AsyncSessionLocal

    async with session_factory() as db:
        result = await db.execute(
            select(Asset).where(
                Asset.organization_id == organization_id,
                Asset.disposition_date.is_(None),
            )
        )
        job_ids = [(await enqueue_recalculation(db, asset)).id for asset in result.scalars().all()]
        await db.commit()

    logger.info(f"[全量重算] 机构 {organization_id} 开始，共 {len(job_ids)} 个资产")

    counts: dict[str, int] = {}
    for job_id in job_ids:
        status = await run_recalculation_job(
            job_id, session_factory=session_factory, as_of=as_of, cache=cache
        )
        counts[status] = counts.get(status, 0) + 1

    logger.info(f"[全量重算] 机构 {organization_id} 完成: {counts}")
    return counts
