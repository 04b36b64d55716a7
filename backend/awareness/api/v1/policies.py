"""
Policy management and acknowledgment endpoints.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from awareness.api.deps import get_caller_identity
from awareness.core.database import get_db
from awareness.core.security import CallerIdentity
from awareness.schemas.policy import (
    AcknowledgePolicyRequest,
    PolicyAcknowledgmentResponse,
    PolicyCreate,
    PolicyResponse,
    PolicyUpdate,
)
from awareness.services.policy_service import policy_service

router = APIRouter()


@router.get("/", response_model=List[PolicyResponse])
async def list_active_policies(db: AsyncSession = Depends(get_db)):
    return await policy_service.list_active_policies(db)


@router.get("/all", response_model=List[PolicyResponse])
async def list_all_policies(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await policy_service.list_all_policies(db, identity)


@router.get("/acknowledgments", response_model=List[PolicyAcknowledgmentResponse])
async def list_acknowledgments(
    policy_id: Optional[int] = None,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await policy_service.list_acknowledgments(db, identity, policy_id)


@router.get("/acknowledgments/me", response_model=List[PolicyAcknowledgmentResponse])
async def get_my_acknowledgments(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await policy_service.get_my_acknowledgments(db, identity)


@router.post("/", response_model=PolicyResponse, status_code=status.HTTP_201_CREATED)
async def create_policy(
    policy: PolicyCreate,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await policy_service.create_policy(db, identity, policy)


@router.put("/{policy_id}", response_model=PolicyResponse)
async def update_policy(
    policy_id: int,
    policy: PolicyUpdate,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await policy_service.update_policy(db, identity, policy_id, policy)


@router.post("/{policy_id}/approve", response_model=PolicyResponse)
async def approve_policy(
    policy_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await policy_service.approve_policy(db, identity, policy_id)


@router.delete("/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_policy(
    policy_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    await policy_service.delete_policy(db, identity, policy_id)


@router.post("/{policy_id}/acknowledge", response_model=PolicyAcknowledgmentResponse, status_code=status.HTTP_201_CREATED)
async def acknowledge_policy(
    policy_id: int,
    request: Optional[AcknowledgePolicyRequest] = None,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    """Acknowledge the policy's current version as the caller."""
    request = request or AcknowledgePolicyRequest()
    return await policy_service.acknowledge_policy(db, identity, policy_id, request.method, request.notes)
