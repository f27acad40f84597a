"""批量导入 Pydantic Schema"""

from datetime import date, datetime
from pydantic import BaseModel, Field, model_validator


class AssetImportRow(BaseModel):
    """导入的一行资产数据；子类可按名称或 ID 指定"""

    asset_tag: str = Field(..., min_length=1, max_length=12)
    asset_subtype: str | None = Field(None, description="资产子类名称，如 Bus")
    asset_subtype_id: int | None = None
    external_id: str | None = Field(None, max_length=32)
    description: str | None = Field(None, max_length=255)
    manufacturer_model: str | None = Field(None, max_length=128)
    serial_number: str | None = Field(None, max_length=32)
    manufacture_year: int = Field(..., ge=1900)
    purchase_cost: int = Field(..., ge=0)
    purchase_date: date
    purchased_new: bool = True
    in_service_date: date | None = None
    warranty_date: date | None = None

    @model_validator(mode="after")
    def check_subtype(self):
        if self.asset_subtype is None and self.asset_subtype_id is None:
            raise ValueError("必须指定 asset_subtype 或 asset_subtype_id")
        return self


class UploadCreate(BaseModel):
    original_filename: str | None = Field(None, max_length=255)
    force_update: bool = Field(False, description="资产编号已存在时是否覆盖")
    rows: list[dict] = Field(..., min_length=1)


class UploadResponse(BaseModel):
    id: str
    organization_id: str
    user_id: str
    original_filename: str | None
    status: str
    force_update: bool
    created_count: int
    updated_count: int
    failed_count: int
    messages: list
    created_at: datetime
    processed_at: datetime | None

    model_config = {"from_attributes": True}
