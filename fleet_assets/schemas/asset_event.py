"""资产事件 Pydantic Schema（单一请求体，按 event_type 取对应载荷字段）"""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from fleet_assets.schemas.asset import AssetResponse

EventType = Literal[
    "condition_update",
    "service_status_update",
    "location_update",
    "disposition_update",
    "schedule_replacement_update",
    "schedule_rehabilitation_update",
    "schedule_disposition_update",
    "rehabilitation_update",
]


class EventPayload(BaseModel):
    event_date: date
    comments: str | None = None

    assessed_rating: float | None = Field(None, ge=1, le=5, description="状况评分 1~5")
    service_status_type: str | None = Field(None, pattern=r"^[IOSU]$")
    parent_id: str | None = Field(None, description="上级位置资产 ID")
    disposition_type: str | None = None
    sales_proceeds: int | None = Field(None, ge=0)
    replacement_year: int | None = Field(None, ge=1900)
    replacement_reason_type: str | None = None
    rebuild_year: int | None = Field(None, ge=1900)
    disposition_year: int | None = Field(None, ge=1900)
    total_cost: int | None = Field(None, ge=0)
    extended_useful_life_months: int | None = Field(None, ge=0)


class EventCreate(EventPayload):
    event_type: EventType


class EventUpdate(EventPayload):
    event_date: date | None = None


class EventResponse(BaseModel):
    id: str
    object_key: str
    asset_id: str
    event_type: str
    event_date: date
    comments: str | None
    assessed_rating: float | None
    service_status_type: str | None
    parent_id: str | None
    disposition_type: str | None
    sales_proceeds: int | None
    replacement_year: int | None
    replacement_reason_type: str | None
    rebuild_year: int | None
    disposition_year: int | None
    total_cost: int | None
    extended_useful_life_months: int | None
    created_by_id: str | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class EventMutationResponse(BaseModel):
    """事件变更后返回事件本身与重算后的资产状态"""

    event: EventResponse | None
    asset: AssetResponse
    warnings: list[str] = []


class HistoryItem(BaseModel):
    object_key: str
    event_type: str
    event_date: date
    summary: str
    comments: str | None
    # 事件日期晚于今天（预登记的事件）
    future_dated: bool = False
