from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    short_name: str | None = Field(None, max_length=20)
    organization_type: str = Field(
        "transit_operator", pattern=r"^(transit_operator|grantor|planning_partner)$"
    )


class OrganizationResponse(BaseModel):
    id: str
    name: str
    short_name: str | None
    organization_type: str
    owner_id: str
    created_at: datetime

    model_config = {"from_attributes": True}


class MemberAdd(BaseModel):
    email: EmailStr
    role: str = Field("viewer", pattern=r"^(admin|manager|viewer)$")


class MemberResponse(BaseModel):
    organization_id: str
    user_id: str
    role: str

    model_config = {"from_attributes": True}
