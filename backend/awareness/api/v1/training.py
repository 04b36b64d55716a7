"""
Training content, quiz submission and learner progress endpoints.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from awareness.api.deps import get_caller_identity
from awareness.core.database import get_db
from awareness.core.security import CallerIdentity
from awareness.schemas.training import (
    ModuleCompletionRequest,
    ModuleQuizLink,
    QuizCreate,
    QuizPublic,
    QuizResultDetail,
    QuizResultSummary,
    QuizSubmission,
    QuizSubmissionResult,
    QuizWithAnswers,
    TrainingModuleCreate,
    TrainingModuleResponse,
    TrainingModuleUpdate,
    UserProgressResponse,
)
from awareness.services.content_service import content_service
from awareness.services.progress_tracker import progress_tracker

router = APIRouter()


# Training modules

@router.get("/modules", response_model=List[TrainingModuleResponse])
async def list_active_modules(db: AsyncSession = Depends(get_db)):
    return await content_service.list_active_modules(db)


@router.get("/modules/required", response_model=List[TrainingModuleResponse])
async def list_required_modules(db: AsyncSession = Depends(get_db)):
    return await content_service.list_required_modules(db)


@router.get("/modules/category/{category}", response_model=List[TrainingModuleResponse])
async def list_modules_by_category(category: str, db: AsyncSession = Depends(get_db)):
    return await content_service.list_modules_by_category(db, category)


@router.get("/modules/all", response_model=List[TrainingModuleResponse])
async def list_all_modules(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    """Every module regardless of status (admin only)."""
    return await content_service.list_all_modules(db, identity)


@router.get("/modules/{module_id}", response_model=TrainingModuleResponse)
async def get_module(module_id: int, db: AsyncSession = Depends(get_db)):
    return await content_service.get_module(db, module_id)


@router.post("/modules", response_model=TrainingModuleResponse, status_code=status.HTTP_201_CREATED)
async def create_module(
    module: TrainingModuleCreate,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    """Create a module in draft status (admin only)."""
    return await content_service.create_module(db, identity, module)


@router.put("/modules/{module_id}", response_model=TrainingModuleResponse)
async def update_module(
    module_id: int,
    module: TrainingModuleUpdate,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await content_service.update_module(db, identity, module_id, module)


@router.post("/modules/{module_id}/approve", response_model=TrainingModuleResponse)
async def approve_module(
    module_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await content_service.approve_module(db, identity, module_id)


@router.delete("/modules/{module_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_module(
    module_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    await content_service.delete_module(db, identity, module_id)


@router.put("/modules/{module_id}/quiz", response_model=TrainingModuleResponse)
async def link_module_quiz(
    module_id: int,
    link: ModuleQuizLink,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await content_service.link_module_quiz(db, identity, module_id, link.quiz_id)


# Quizzes

@router.get("/quizzes", response_model=List[QuizPublic])
async def list_quizzes(db: AsyncSession = Depends(get_db)):
    return await content_service.list_quizzes(db)


@router.get("/quizzes/{quiz_id}", response_model=QuizPublic)
async def get_quiz(quiz_id: int, db: AsyncSession = Depends(get_db)):
    """Quiz questions without the correct answers."""
    return await content_service.get_quiz_public(db, quiz_id)


@router.get("/quizzes/{quiz_id}/answers", response_model=QuizWithAnswers)
async def get_quiz_with_answers(
    quiz_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await content_service.get_quiz_with_answers(db, identity, quiz_id)


@router.post("/quizzes", response_model=QuizWithAnswers, status_code=status.HTTP_201_CREATED)
async def create_quiz(
    quiz: QuizCreate,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await content_service.create_quiz(db, identity, quiz)


@router.put("/quizzes/{quiz_id}", response_model=QuizWithAnswers)
async def update_quiz(
    quiz_id: int,
    quiz: QuizCreate,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await content_service.update_quiz(db, identity, quiz_id, quiz)


@router.delete("/quizzes/{quiz_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_quiz(
    quiz_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    await content_service.delete_quiz(db, identity, quiz_id)


@router.post("/quizzes/{quiz_id}/submit", response_model=QuizSubmissionResult)
async def submit_quiz(
    quiz_id: int,
    submission: QuizSubmission,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    """Score a submission and update the linked module's progress."""
    return await progress_tracker.submit_quiz(
        db, identity, quiz_id, submission.answers, submission.time_spent
    )


# Learner results and progress

@router.get("/results/me", response_model=List[QuizResultSummary])
async def get_my_quiz_results(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await progress_tracker.get_my_quiz_results(db, identity)


@router.get("/results/{result_id}", response_model=QuizResultDetail)
async def get_quiz_result_details(
    result_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await progress_tracker.get_quiz_result_details(db, identity, result_id)


@router.get("/progress/me", response_model=List[UserProgressResponse])
async def get_my_progress(
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await progress_tracker.get_my_progress(db, identity)


@router.get("/progress/modules/{module_id}", response_model=Optional[UserProgressResponse])
async def get_module_progress(
    module_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await progress_tracker.get_module_progress(db, identity, module_id)


@router.post("/modules/{module_id}/start", response_model=UserProgressResponse)
async def start_module(
    module_id: int,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    return await progress_tracker.start_module(db, identity, module_id)


@router.post("/modules/{module_id}/complete", response_model=UserProgressResponse)
async def complete_module(
    module_id: int,
    request: Optional[ModuleCompletionRequest] = None,
    db: AsyncSession = Depends(get_db),
    identity: Optional[CallerIdentity] = Depends(get_caller_identity),
):
    """Complete a module that has no quiz; quiz-linked modules complete on a pass."""
    request = request or ModuleCompletionRequest()
    return await progress_tracker.complete_module(
        db,
        identity,
        module_id,
        quiz_score=request.quiz_score,
        time_spent=request.time_spent,
        completion_method=request.completion_method,
    )
