from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


# ---- 请求 ----

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128, description="密码（6-128位）")
    nickname: str | None = Field(None, max_length=100, description="昵称")
    organization_name: str | None = Field(None, max_length=100, description="默认机构名称")


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateRequest(BaseModel):
    nickname: str | None = Field(None, max_length=100, description="昵称")
    title: str | None = Field(None, max_length=100, description="职务")
    phone: str | None = Field(None, max_length=30, description="电话")


# ---- 响应 ----

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="过期时间（秒）")


class UserResponse(BaseModel):
    id: str
    email: str
    nickname: str | None
    title: str | None
    phone: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuthResponse(BaseModel):
    user: UserResponse
    token: TokenResponse


class ErrorResponse(BaseModel):
    detail: str
    code: str | None = None
