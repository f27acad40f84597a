"""更换政策 Pydantic Schema"""

from datetime import datetime
from pydantic import BaseModel, Field

from fleet_assets.services.calculators import (
    ConditionEstimationType,
    CostCalculationType,
    ServiceLifeCalculationType,
)


class PolicyRuleFields(BaseModel):
    min_service_life_months: int | None = Field(None, gt=0, description="最短使用寿命（月）")
    replacement_cost: int | None = Field(None, ge=0)
    rehabilitation_service_month: int | None = Field(None, ge=0, description="大修月份，0 表示无大修")
    rehabilitation_cost: int | None = Field(None, ge=0)
    extended_service_life_months: int | None = Field(None, ge=0)
    service_life_calculation_type: ServiceLifeCalculationType | None = None
    condition_estimation_type: ConditionEstimationType | None = None
    cost_calculation_type: CostCalculationType | None = None


class PolicyRuleCreate(PolicyRuleFields):
    asset_subtype_id: int
    min_service_life_months: int = Field(..., gt=0)
    replacement_cost: int = Field(0, ge=0)
    rehabilitation_service_month: int = Field(0, ge=0)
    rehabilitation_cost: int = Field(0, ge=0)
    extended_service_life_months: int = Field(0, ge=0)
    service_life_calculation_type: ServiceLifeCalculationType = ServiceLifeCalculationType.AGE_ONLY
    condition_estimation_type: ConditionEstimationType = ConditionEstimationType.STRAIGHT_LINE
    cost_calculation_type: CostCalculationType = CostCalculationType.REPLACEMENT_COST


class PolicyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=255)
    year: int = Field(..., ge=1900, description="政策财年（成本基准年）")
    condition_threshold: float = Field(2.5, gt=1, lt=5)
    interest_rate: float = Field(1.1, ge=0, le=100, description="年通胀率(%)")
    rules: list[PolicyRuleCreate] = []
    copy_active_rules: bool = True
    activate: bool = False


class PolicyUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=255)
    year: int | None = Field(None, ge=1900)
    condition_threshold: float | None = Field(None, gt=1, lt=5)
    interest_rate: float | None = Field(None, ge=0, le=100)


class PolicyRuleResponse(BaseModel):
    id: str
    asset_subtype_id: int
    min_service_life_months: int
    replacement_cost: int
    rehabilitation_service_month: int
    rehabilitation_cost: int
    extended_service_life_months: int
    service_life_calculation_type: str
    condition_estimation_type: str
    cost_calculation_type: str

    model_config = {"from_attributes": True}


class PolicyResponse(BaseModel):
    id: str
    organization_id: str
    name: str
    description: str | None
    year: int
    active: bool
    condition_threshold: float
    interest_rate: float
    created_at: datetime
    updated_at: datetime
    rules: list[PolicyRuleResponse]

    model_config = {"from_attributes": True}
