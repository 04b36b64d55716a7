"""
Role audit trail endpoints (admin only).
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from awareness.api.deps import get_caller_identity
from awareness.core.database import get_db
from awareness.core.security import CallerIdentity
from awareness.schemas.auth import AuditChainResponse, RoleAuditLogResponse
from awareness.services.audit_service import role_audit_service

router = APIRouter()


@router.get("/role-changes", response_model=List[RoleAuditLogResponse])
async def list_role_changes(
    target_user_id: Optional[int] = None,
    limit: Optional[int] = Query(None, ge=1),
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    """Newest first, capped at the configured page size."""
    return await role_audit_service.list_entries(db, identity, target_user_id=target_user_id, limit=limit)


@router.get("/role-changes/verify", response_model=AuditChainResponse)
async def verify_role_change_chain(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await role_audit_service.verify_chain(db, identity)
