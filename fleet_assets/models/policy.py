import uuid
from datetime import datetime

from sqlalchemy import (
    String, DateTime, ForeignKey, Integer, Float, Boolean, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fleet_assets.database import Base


class Policy(Base):
    __tablename__ = "policies"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    organization_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("organizations.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(String(255))
    # 政策财年，也是成本计算的基准年
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    condition_threshold: Mapped[float] = mapped_column(Float, default=2.5)
    # 年化通胀率（%）
    interest_rate: Mapped[float] = mapped_column(Float, default=1.1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # 关联
    organization = relationship("Organization", back_populates="policies")
    rules = relationship(
        "PolicyRule", back_populates="policy", cascade="all, delete-orphan",
        order_by="PolicyRule.asset_subtype_id",
    )


class PolicyRule(Base):
    """政策中针对单个资产子类的规则，以及选用的计算策略"""

    __tablename__ = "policy_rules"
    __table_args__ = (
        UniqueConstraint("policy_id", "asset_subtype_id", name="uq_policy_rules_subtype"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    policy_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("policies.id"), nullable=False, index=True
    )
    asset_subtype_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("asset_subtypes.id"), nullable=False
    )
    min_service_life_months: Mapped[int] = mapped_column(Integer, nullable=False)
    replacement_cost: Mapped[int] = mapped_column(Integer, default=0)
    rehabilitation_service_month: Mapped[int] = mapped_column(Integer, default=0)
    rehabilitation_cost: Mapped[int] = mapped_column(Integer, default=0)
    extended_service_life_months: Mapped[int] = mapped_column(Integer, default=0)

    service_life_calculation_type: Mapped[str] = mapped_column(String(32), default="age_only")
    condition_estimation_type: Mapped[str] = mapped_column(String(32), default="straight_line")
    cost_calculation_type: Mapped[str] = mapped_column(String(32), default="replacement_cost")

    # 关联
    policy = relationship("Policy", back_populates="rules")
    asset_subtype = relationship("AssetSubtype")
