"""资产 Pydantic Schema"""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


class AssetCreate(BaseModel):
    asset_type_id: int
    asset_subtype_id: int
    asset_tag: str = Field(..., min_length=1, max_length=12, description="资产编号（机构内唯一）")
    external_id: str | None = Field(None, max_length=32)
    description: str | None = Field(None, max_length=255)
    manufacturer_model: str | None = Field(None, max_length=128)
    serial_number: str | None = Field(None, max_length=32)
    manufacture_year: int = Field(..., ge=1900, description="制造年份")
    purchase_cost: int = Field(..., ge=0, description="购置成本")
    purchase_date: date
    purchased_new: bool = True
    in_service_date: date | None = Field(None, description="投入使用日期，缺省为购置日期")
    warranty_date: date | None = None


class AssetUpdate(BaseModel):
    asset_type_id: int | None = None
    asset_subtype_id: int | None = None
    asset_tag: str | None = Field(None, min_length=1, max_length=12)
    external_id: str | None = Field(None, max_length=32)
    description: str | None = Field(None, max_length=255)
    manufacturer_model: str | None = Field(None, max_length=128)
    serial_number: str | None = Field(None, max_length=32)
    manufacture_year: int | None = Field(None, ge=1900)
    purchase_cost: int | None = Field(None, ge=0)
    purchase_date: date | None = None
    purchased_new: bool | None = None
    in_service_date: date | None = None
    warranty_date: date | None = None


class AssetCopyRequest(BaseModel):
    asset_tag: str = Field(..., min_length=1, max_length=12, description="新资产编号")


class SupersededByRequest(BaseModel):
    superseded_by_id: str | None = Field(None, description="接替资产 ID / object_key，null 表示清除")


class AssetResponse(BaseModel):
    id: str
    object_key: str
    organization_id: str
    asset_type_id: int
    asset_subtype_id: int
    asset_tag: str
    external_id: str | None
    description: str | None
    manufacturer_model: str | None
    serial_number: str | None
    manufacture_year: int
    purchase_cost: int
    purchase_date: date
    purchased_new: bool
    in_service_date: date | None
    warranty_date: date | None
    expected_useful_life: int

    parent_id: str | None
    superseded_by_id: str | None
    location_comments: str | None

    reported_condition_type: str
    reported_condition_rating: float | None
    reported_condition_date: date | None
    estimated_condition_type: str
    estimated_condition_rating: float | None
    service_status_type: str
    service_status_date: date | None

    policy_replacement_year: int | None
    policy_rehabilitation_year: int | None
    estimated_replacement_year: int | None
    scheduled_replacement_year: int | None
    replacement_reason_type: str | None
    scheduled_rehabilitation_year: int | None
    scheduled_disposition_year: int | None
    last_rehabilitation_date: date | None
    rehabilitation_extension_months: int | None
    in_backlog: bool

    estimated_replacement_cost: int | None
    scheduled_replacement_cost: int | None
    disposition_date: date | None
    disposition_type: str | None

    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AssetDetail(AssetResponse):
    """带派生查询结果的详情"""

    name: str
    age: int
    months_in_service: int
    years_in_service: int
    months_since_rehabilitation: int | None
    is_disposed: bool
    is_disposable: bool
    is_in_service: bool
    scheduled_for_disposition: bool
    scheduled_for_rehabilitation: bool
    rehabilitation_cost: int
    estimated_rehabilitation_cost: int | None
    tagged: bool


class FieldOutcomeResponse(BaseModel):
    step: str
    status: str
    fields: dict
    message: str | None = None


class RecalculationResponse(BaseModel):
    asset: AssetResponse
    disposed: bool
    changed_fields: list[str]
    outcomes: list[FieldOutcomeResponse]
    warnings: list[str]


class AssetTypeCount(BaseModel):
    asset_type: str
    count: int


class AssetSummary(BaseModel):
    total_count: int
    backlog_count: int
    disposed_count: int
    total_purchase_cost: int
    total_scheduled_replacement_cost: int
    by_type: list[AssetTypeCount]


class AssetSubtypeResponse(BaseModel):
    id: int
    asset_type_id: int
    name: str

    model_config = {"from_attributes": True}


class AssetTypeResponse(BaseModel):
    id: int
    name: str
    description: str | None
    subtypes: list[AssetSubtypeResponse]

    model_config = {"from_attributes": True}


class AssetMutationResponse(BaseModel):
    asset: AssetResponse
    warnings: list[str] = []


class SupersessionResponse(BaseModel):
    superseded_by: AssetResponse | None
    supersedes: list[AssetResponse]


# ───── 组合查询 ─────

# lt：小于，eq：等于，gt：大于
Comparator = Literal["lt", "eq", "gt"]


class IntComparison(BaseModel):
    value: int
    comparator: Comparator = "eq"


class DateComparison(BaseModel):
    value: date
    comparator: Comparator = "eq"


class AssetSearch(BaseModel):
    """资产组合查询，各条件之间为 AND；未给出的条件不参与过滤"""

    asset_type_id: int | None = None
    asset_subtype_id: int | None = None
    reported_condition_type: str | None = None
    estimated_condition_type: str | None = None
    service_status_type: str | None = Field(None, max_length=1)
    in_backlog: bool | None = None
    purchased_new: bool | None = None
    manufacturer_model: str | None = Field(None, description="型号，模糊匹配")
    purchase_cost: IntComparison | None = None
    manufacture_year: IntComparison | None = None
    policy_replacement_year: IntComparison | None = None
    scheduled_replacement_year: IntComparison | None = None
    purchase_date: DateComparison | None = None
    in_service_date: DateComparison | None = None
    include_disposed: bool = False


class AssetTagResponse(BaseModel):
    asset_id: str
    tagged: bool
