import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from fleet_assets.database import Base


class RecalculationJob(Base):
    """单资产后台重算任务；重试耗尽后状态为 dead（死信）"""

    __tablename__ = "recalculation_jobs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    asset_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    upload_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("uploads.id"))
    status: Mapped[str] = mapped_column(
        SAEnum("queued", "running", "succeeded", "dead", name="recalculation_job_status"),
        default="queued",
        index=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime)
