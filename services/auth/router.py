"""
services/auth/router.py
Session endpoints: who am I, switch the acting role, logout.
Identity providers sit in front of this service and hand us signed JWTs.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from config.settings import settings
from services.auth.roles import switch_active_role
from shared.middleware.auth import TokenData, get_current_user, get_token_data
from shared.models.models import User
from shared.schemas.schemas import (
    MessageResponse,
    SwitchRoleRequest,
    SwitchRoleResponse,
    UserResponse,
)
from shared.utils.security import get_token_remaining_ttl

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.get("/me", response_model=UserResponse, summary="Get current user")
async def get_me(current_user: User = Depends(get_current_user)):
    """Returns the authenticated user's profile, granted roles and active role."""
    return UserResponse.model_validate(current_user)


@router.post("/switch-role", response_model=SwitchRoleResponse, summary="Switch active role")
async def switch_role(
    data: SwitchRoleRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Persist a new active role and return a freshly signed token.
    Only roles granted to the account can be activated.
    """
    user, token = await switch_active_role(db, current_user, data.role)
    return SwitchRoleResponse(
        access_token=token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
    )


@router.post("/logout", response_model=MessageResponse, summary="Logout user")
async def logout(
    token_data: TokenData = Depends(get_token_data),
    redis=Depends(get_redis),
):
    """Add the access token's JTI to the Redis deny-list until it expires."""
    ttl = get_token_remaining_ttl(token_data.payload)
    if ttl > 0:
        await RedisCache(redis).revoke_token(token_data.jti, ttl)
    return MessageResponse(message="Logged out successfully")
