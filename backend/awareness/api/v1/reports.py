"""
Admin reporting endpoints.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, List, Optional

from awareness.api.deps import get_caller_identity
from awareness.core.database import get_db
from awareness.core.security import CallerIdentity
from awareness.services.report_service import report_service

router = APIRouter()


@router.get("/compliance")
async def get_compliance_report(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
) -> Dict[str, Any]:
    return await report_service.compliance_report(db, identity)


@router.get("/user-progress")
async def get_user_progress_report(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
) -> List[Dict[str, Any]]:
    return await report_service.user_progress_report(db, identity)


@router.get("/training-stats")
async def get_training_stats(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
) -> Dict[str, Any]:
    return await report_service.training_stats(db, identity)


@router.get("/quiz-statistics")
async def get_quiz_statistics(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
) -> Dict[str, Any]:
    return await report_service.quiz_statistics(db, identity)


@router.get("/compliance-scores")
async def get_compliance_scores(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
) -> List[Dict[str, Any]]:
    """Per-user share of required training completed, lowest first."""
    return await report_service.compliance_scores(db, identity)
