"""
User provisioning, role assignment and permission lookup endpoints.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from awareness.api.deps import get_caller_identity
from awareness.core.database import get_db
from awareness.core.security import CallerIdentity
from awareness.models.user import UserRole
from awareness.schemas.auth import (
    PermissionsResponse,
    RoleUpdateRequest,
    RoleUpdateResponse,
    SyncUserResponse,
    UserResponse,
)
from awareness.security.access_control import get_current_user, permissions_for
from awareness.services import user_service

router = APIRouter()


@router.post("/sync", response_model=SyncUserResponse)
async def sync_user(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    """Create or refresh the caller's user record after sign-in."""
    user, action = await user_service.sync_user(db, identity)
    return SyncUserResponse(action=action, user=UserResponse.model_validate(user))


@router.post("/bootstrap-admin", response_model=UserResponse)
async def bootstrap_admin(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    """One-time promotion of the first administrator."""
    return await user_service.bootstrap_admin(db, identity)


@router.get("/me", response_model=UserResponse)
async def get_me(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await get_current_user(db, identity)


@router.get("/me/permissions", response_model=PermissionsResponse)
async def get_my_permissions(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    user = await get_current_user(db, identity)
    return PermissionsResponse(
        role=user.role,
        permissions=sorted(permission.value for permission in permissions_for(user.role)),
    )


@router.get("/", response_model=List[UserResponse])
async def list_users(
    role: Optional[UserRole] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await user_service.list_users(db, identity, role=role, limit=limit, offset=offset)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await user_service.get_user(db, identity, user_id)


@router.put("/{user_id}/role", response_model=RoleUpdateResponse)
async def update_user_role(
    user_id: int,
    request: RoleUpdateRequest,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    """Change a user's role (admin only). Every change is audited."""
    return await user_service.update_user_role(db, identity, user_id, request.new_role, request.reason)
