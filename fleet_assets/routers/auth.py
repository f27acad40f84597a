from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_assets.database import get_db
from fleet_assets.models.user import User
from fleet_assets.schemas.auth import (
    RegisterRequest,
    LoginRequest,
    ProfileUpdateRequest,
    AuthResponse,
    UserResponse,
    TokenResponse,
)
from fleet_assets.services.auth_service import (
    register_user,
    authenticate_user,
    build_token,
    update_profile,
    AuthError,
)
from fleet_assets.utils.deps import get_current_user

router = APIRouter(prefix="/auth", tags=["认证"])


@router.post("/register", response_model=AuthResponse, status_code=201, summary="用户注册")
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """邮箱 + 密码注册，同时创建默认机构（含默认更换政策），返回用户信息和 JWT Token"""
    try:
        user = await register_user(
            db, body.email, body.password, body.nickname, body.organization_name
        )
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    token = build_token(user.id)
    return AuthResponse(
        user=UserResponse.model_validate(user),
        token=TokenResponse(**token),
    )


@router.post("/login", response_model=AuthResponse, summary="用户登录")
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    try:
        user = await authenticate_user(db, body.email, body.password)
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    token = build_token(user.id)
    return AuthResponse(
        user=UserResponse.model_validate(user),
        token=TokenResponse(**token),
    )


@router.get("/me", response_model=UserResponse, summary="获取当前用户")
async def get_me(current_user: User = Depends(get_current_user)):
    return UserResponse.model_validate(current_user)


@router.put("/profile", response_model=UserResponse, summary="更新个人信息")
async def update_profile_endpoint(
    body: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """更新当前用户的昵称、职务、电话"""
    user = await update_profile(
        db,
        current_user,
        nickname=body.nickname,
        title=body.title,
        phone=body.phone,
    )
    return UserResponse.model_validate(user)
