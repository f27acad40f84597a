"""批量导入 Service — 按资产编号逐行新增 / 更新，单行失败不影响整批"""

import logging
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_assets.config import settings
from fleet_assets.models.asset import Asset, AssetSubtype
from fleet_assets.models.job import RecalculationJob
from fleet_assets.models.upload import Upload
from fleet_assets.schemas.upload import AssetImportRow
from fleet_assets.services.asset_service import AssetError, create_asset, update_asset
from fleet_assets.tasks.recalculation import enqueue_recalculation
from fleet_assets.utils.cache import CacheBackend

logger = logging.getLogger(__name__)


class UploadError(Exception):
    def __init__(self, detail: str, status_code: int = 400):
        self.detail = detail
        self.status_code = status_code
        super().__init__(detail)


def _format_validation_error(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err["loc"]) or "row"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


async def create_upload(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    rows: list[dict],
    original_filename: str | None = None,
    force_update: bool = False,
) -> Upload:
    if len(rows) > settings.IMPORT_MAX_ROWS:
        raise UploadError(f"单次最多导入 {settings.IMPORT_MAX_ROWS} 行，实际 {len(rows)} 行")

    upload = Upload(
        organization_id=organization_id,
        user_id=user_id,
        original_filename=original_filename,
        rows=rows,
        force_update=force_update,
        status="pending",
        messages=[],
    )
    db.add(upload)
    await db.flush()
    return upload


async def get_upload(db: AsyncSession, upload_id: str) -> Upload | None:
    result = await db.execute(select(Upload).where(Upload.id == upload_id))
    return result.scalar_one_or_none()


async def list_uploads(db: AsyncSession, organization_id: str) -> list[Upload]:
    result = await db.execute(
        select(Upload)
        .where(Upload.organization_id == organization_id)
        .order_by(Upload.created_at.desc())
    )
    return list(result.scalars().all())


async def _subtype_lookup(db: AsyncSession) -> tuple[dict[str, AssetSubtype], dict[int, AssetSubtype]]:
    result = await db.execute(select(AssetSubtype))
    subtypes = list(result.scalars().all())
    return {s.name.lower(): s for s in subtypes}, {s.id: s for s in subtypes}


async def process_upload(
    db: AsyncSession,
    upload: Upload,
    cache: CacheBackend | None = None,
) -> list[RecalculationJob]:
    """
    处理导入：
    1. 每行先校验，再按 asset_tag 查找：不存在则新建，存在且 force_update 则更新，否则跳过
    2. 单行失败只记录到 messages，继续处理后续行
    3. 每个新建 / 更新的资产登记一条后台重算任务
    """
    if upload.status == "processing":
        raise UploadError("导入正在处理中", 409)

    upload.status = "processing"
    upload.created_count = 0
    upload.updated_count = 0
    upload.failed_count = 0
    await db.flush()

    by_name, by_id = await _subtype_lookup(db)
    messages: list[dict] = []
    jobs: list[RecalculationJob] = []

    for index, raw in enumerate(upload.rows or [], start=1):
        try:
            row = AssetImportRow.model_validate(raw)
        except ValidationError as e:
            upload.failed_count += 1
            messages.append({"row": index, "level": "error", "message": _format_validation_error(e)})
            continue

        subtype = (
            by_id.get(row.asset_subtype_id)
            if row.asset_subtype_id is not None
            else by_name.get(row.asset_subtype.lower())
        )
        if subtype is None:
            upload.failed_count += 1
            messages.append({
                "row": index, "level": "error",
                "message": f"资产子类不存在: {row.asset_subtype or row.asset_subtype_id}",
            })
            continue

        data = row.model_dump(exclude={"asset_subtype"})
        data["asset_type_id"] = subtype.asset_type_id
        data["asset_subtype_id"] = subtype.id

        result = await db.execute(
            select(Asset).where(
                Asset.organization_id == upload.organization_id,
                Asset.asset_tag == row.asset_tag,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None and not upload.force_update:
            messages.append({"row": index, "level": "info", "message": f"资产 {row.asset_tag} 已存在，跳过"})
            continue

        # 资产校验在写入之前完成，失败时不会留下半行数据
        try:
            if existing is None:
                asset = await create_asset(db, upload.organization_id, data, upload.user_id)
                upload.created_count += 1
            else:
                asset = await update_asset(db, existing, data, upload.user_id, cache=cache)
                upload.updated_count += 1
        except AssetError as e:
            upload.failed_count += 1
            messages.append({"row": index, "level": "error", "message": e.detail})
            continue

        jobs.append(await enqueue_recalculation(db, asset, upload.id))

    upload.messages = messages
    touched = upload.created_count + upload.updated_count
    upload.status = "failed" if upload.failed_count and not touched else "complete"
    upload.processed_at = datetime.utcnow()
    await db.flush()

    logger.info(
        f"[资产导入] {upload.id} 完成: 新建 {upload.created_count}，更新 {upload.updated_count}，"
        f"失败 {upload.failed_count}"
    )
    return jobs


async def resubmit_upload(
    db: AsyncSession,
    upload: Upload,
    force_update: bool | None = None,
    cache: CacheBackend | None = None,
) -> list[RecalculationJob]:
    """按保存的原始行重新处理"""
    if force_update is not None:
        upload.force_update = force_update
    upload.messages = []
    upload.processed_at = None
    upload.status = "pending"
    return await process_upload(db, upload, cache)


async def delete_upload(db: AsyncSession, upload: Upload) -> None:
    """删除导入记录（已导入的资产保留）"""
    if upload.status == "processing":
        raise UploadError("导入正在处理中，不能删除", 409)
    await db.execute(
        update(RecalculationJob)
        .where(RecalculationJob.upload_id == upload.id)
        .values(upload_id=None)
    )
    await db.delete(upload)
    await db.flush()
