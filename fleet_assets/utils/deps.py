from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_assets.database import get_db
from fleet_assets.models.asset import Asset
from fleet_assets.models.user import User
from fleet_assets.utils.security import decode_access_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """JWT 鉴权依赖：解析 Token → 查询用户 → 返回 User 实例"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="无效的认证凭据",
        headers={"WWW-Authenticate": "Bearer"},
    )

    user_id = decode_access_token(token)
    if user_id is None:
        raise credentials_exception

    from fleet_assets.services.auth_service import get_user_by_id

    user = await get_user_by_id(db, user_id)
    if user is None:
        raise credentials_exception

    return user


async def check_org_view(db: AsyncSession, user: User, organization_id: str) -> None:
    from fleet_assets.services.organization_service import user_has_org_access

    if not await user_has_org_access(db, user.id, organization_id):
        raise HTTPException(status_code=403, detail="无权访问该机构")


async def check_org_manage(db: AsyncSession, user: User, organization_id: str) -> None:
    from fleet_assets.services.organization_service import can_manage_organization, user_has_org_access

    if not await user_has_org_access(db, user.id, organization_id):
        raise HTTPException(status_code=403, detail="无权访问该机构")
    if not await can_manage_organization(db, user.id, organization_id):
        raise HTTPException(status_code=403, detail="只读成员不能修改")


async def load_asset(db: AsyncSession, user: User, asset_ref: str, manage: bool = False) -> Asset:
    """按 id / object_key 取资产并检查权限"""
    from fleet_assets.services.asset_service import get_asset
    from fleet_assets.services.organization_service import can_manage

    asset = await get_asset(db, asset_ref)
    if asset is None:
        raise HTTPException(status_code=404, detail="资产不存在")
    await check_org_view(db, user, asset.organization_id)
    if manage and not await can_manage(db, user, asset):
        raise HTTPException(status_code=403, detail="只读成员不能修改")
    return asset
