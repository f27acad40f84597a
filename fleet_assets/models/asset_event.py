import uuid
from datetime import datetime, date

from sqlalchemy import String, DateTime, Date, ForeignKey, Integer, Float, Text, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fleet_assets.database import Base


EVENT_TYPES = (
    "condition_update",
    "service_status_update",
    "location_update",
    "disposition_update",
    "schedule_replacement_update",
    "schedule_rehabilitation_update",
    "schedule_disposition_update",
    "rehabilitation_update",
)


class AssetEvent(Base):
    """资产事件（单表，按 event_type 区分载荷字段）"""

    __tablename__ = "asset_events"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    object_key: Mapped[str] = mapped_column(String(12), unique=True, nullable=False, index=True)
    asset_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("assets.id"), nullable=False, index=True
    )
    event_type: Mapped[str] = mapped_column(
        SAEnum(*EVENT_TYPES, name="asset_event_type"), nullable=False, index=True
    )
    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    comments: Mapped[str | None] = mapped_column(Text)

    # condition_update
    assessed_rating: Mapped[float | None] = mapped_column(Float)
    # service_status_update
    service_status_type: Mapped[str | None] = mapped_column(String(1))
    # location_update
    parent_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("assets.id"))
    # disposition_update
    disposition_type: Mapped[str | None] = mapped_column(String(64))
    sales_proceeds: Mapped[int | None] = mapped_column(Integer)
    # schedule_replacement_update
    replacement_year: Mapped[int | None] = mapped_column(Integer)
    replacement_reason_type: Mapped[str | None] = mapped_column(String(64))
    # schedule_rehabilitation_update
    rebuild_year: Mapped[int | None] = mapped_column(Integer)
    # schedule_disposition_update
    disposition_year: Mapped[int | None] = mapped_column(Integer)
    # rehabilitation_update
    total_cost: Mapped[int | None] = mapped_column(Integer)
    extended_useful_life_months: Mapped[int | None] = mapped_column(Integer)

    created_by_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # 关联
    asset = relationship("Asset", back_populates="events", foreign_keys=[asset_id])
