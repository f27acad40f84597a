import uuid
from datetime import datetime, date

from sqlalchemy import (
    String, DateTime, Date, ForeignKey, Integer, Float, Boolean, Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fleet_assets.database import Base


class AssetType(Base):
    __tablename__ = "asset_types"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(String(255))

    subtypes = relationship("AssetSubtype", back_populates="asset_type", order_by="AssetSubtype.id")


class AssetSubtype(Base):
    __tablename__ = "asset_subtypes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asset_type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("asset_types.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255))

    asset_type = relationship("AssetType", back_populates="subtypes")


class Asset(Base):
    """资产主记录。

    authoritative 字段由用户维护；derived 字段（状况、服务状态、更换年份、处置、
    成本等）只由状态重算引擎根据事件和政策写入。parent_id / superseded_by_id
    均为可空的稳定 ID 引用。
    """

    __tablename__ = "assets"
    __table_args__ = (
        UniqueConstraint("organization_id", "asset_tag", name="uq_assets_org_asset_tag"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    object_key: Mapped[str] = mapped_column(String(12), unique=True, nullable=False, index=True)
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    asset_type_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("asset_types.id"), nullable=False
    )
    asset_subtype_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("asset_subtypes.id"), nullable=False
    )

    # ── 基本信息 ──
    asset_tag: Mapped[str] = mapped_column(String(12), nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(32))
    description: Mapped[str | None] = mapped_column(String(255))
    manufacturer_model: Mapped[str | None] = mapped_column(String(128))
    serial_number: Mapped[str | None] = mapped_column(String(32))

    # ── authoritative ──
    manufacture_year: Mapped[int] = mapped_column(Integer, nullable=False)
    purchase_cost: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    purchase_date: Mapped[date] = mapped_column(Date, nullable=False)
    purchased_new: Mapped[bool] = mapped_column(Boolean, default=True)
    in_service_date: Mapped[date | None] = mapped_column(Date)
    warranty_date: Mapped[date | None] = mapped_column(Date)
    expected_useful_life: Mapped[int] = mapped_column(Integer, default=0)

    # ── 层级 / 接替关系 ──
    parent_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("assets.id"))
    superseded_by_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("assets.id"))
    location_comments: Mapped[str | None] = mapped_column(Text)

    # ── derived：状况 ──
    reported_condition_type: Mapped[str] = mapped_column(String(20), default="Unknown")
    reported_condition_rating: Mapped[float | None] = mapped_column(Float)
    reported_condition_date: Mapped[date | None] = mapped_column(Date)
    estimated_condition_type: Mapped[str] = mapped_column(String(20), default="Unknown")
    estimated_condition_rating: Mapped[float | None] = mapped_column(Float)

    # ── derived：服务状态 ──
    service_status_type: Mapped[str] = mapped_column(String(1), default="U")
    service_status_date: Mapped[date | None] = mapped_column(Date)

    # ── derived：更换 / 大修 / 处置规划 ──
    policy_replacement_year: Mapped[int | None] = mapped_column(Integer)
    policy_rehabilitation_year: Mapped[int | None] = mapped_column(Integer)
    estimated_replacement_year: Mapped[int | None] = mapped_column(Integer)
    scheduled_replacement_year: Mapped[int | None] = mapped_column(Integer)
    replacement_reason_type: Mapped[str | None] = mapped_column(String(64))
    scheduled_rehabilitation_year: Mapped[int | None] = mapped_column(Integer)
    scheduled_disposition_year: Mapped[int | None] = mapped_column(Integer)
    last_rehabilitation_date: Mapped[date | None] = mapped_column(Date)
    # 最近一次大修记录的延寿月数；为空时按政策规则的延寿月数
    rehabilitation_extension_months: Mapped[int | None] = mapped_column(Integer)
    in_backlog: Mapped[bool] = mapped_column(Boolean, default=False)

    # ── derived：成本 ──
    estimated_replacement_cost: Mapped[int | None] = mapped_column(Integer)
    scheduled_replacement_cost: Mapped[int | None] = mapped_column(Integer)

    # ── derived：处置 ──
    disposition_date: Mapped[date | None] = mapped_column(Date)
    disposition_type: Mapped[str | None] = mapped_column(String(64))

    created_by_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"))
    updated_by_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # 关联
    organization = relationship("Organization", back_populates="assets")
    asset_type = relationship("AssetType")
    asset_subtype = relationship("AssetSubtype")
    events = relationship(
        "AssetEvent",
        back_populates="asset",
        cascade="all, delete-orphan",
        foreign_keys="AssetEvent.asset_id",
    )


class AssetUserTag(Base):
    """用户对资产的个人标记"""

    __tablename__ = "asset_user_tags"

    asset_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("assets.id"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
