"""
Quiz submission and per-module progress tracking.
"""
from typing import Any, Dict, List, Optional, Sequence, Union
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, case
import logging

from awareness.core.database import upsert_insert
from awareness.core.exceptions import ConflictError, Forbidden, NotFound, ValidationError
from awareness.core.security import CallerIdentity
from awareness.core.timeutils import utcnow
from awareness.models.progress import MANUAL_COMPLETION_METHODS, CompletionMethod, QuizResult, UserProgress
from awareness.models.training import ContentStatus, Quiz, TrainingModule
from awareness.security.access_control import get_current_user
from awareness.services.scoring import pass_threshold_for, score_answers


logger = logging.getLogger(__name__)


def _keep_method_once_completed(table, stmt):
    """ON CONFLICT value for completion_method: frozen once completed_at is set."""
    return case(
        (table.c.completed_at.is_not(None), table.c.completion_method),
        else_=stmt.excluded.completion_method,
    )


class ProgressTracker:
    """Turns quiz submissions into results and module progress."""

    async def submit_quiz(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        quiz_id: int,
        answers: Sequence[Optional[int]],
        time_spent: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Score a submission and record it.

        The QuizResult is always committed first. Updating the linked
        module's progress is best effort: a failure there is logged and
        the submission still succeeds.
        """
        user = await get_current_user(db, identity)

        quiz = await db.get(Quiz, quiz_id)
        if quiz is None:
            raise NotFound("Quiz", quiz_id)

        # Plain copies survive a rollback expiring the ORM instances
        user_id, subject, quiz_pk = user.id, user.subject, quiz.id
        outcome = score_answers(quiz.questions or [], list(answers), pass_threshold_for(quiz))
        now = utcnow()

        result = QuizResult(
            user_id=user_id,
            quiz_id=quiz_pk,
            answers=list(answers),
            score=outcome.score,
            total_questions=outcome.total_questions,
            percentage=outcome.percentage,
            passed=outcome.passed,
            completed_at=now,
            time_spent=time_spent,
        )
        db.add(result)
        await db.commit()
        result_id = result.id

        logger.info(
            f"Quiz {quiz_pk} submitted by {subject}: "
            f"{outcome.score}/{outcome.total_questions} ({outcome.percentage}%)"
        )

        module_result = await db.execute(
            select(TrainingModule.id)
            .where(TrainingModule.quiz_id == quiz_pk)
            .order_by(TrainingModule.id)
            .limit(1)
        )
        module_id = module_result.scalar_one_or_none()

        if module_id is not None:
            try:
                await self.upsert_module_progress(
                    db,
                    user_id=user_id,
                    module_id=module_id,
                    quiz_score=outcome.percentage,
                    passed=outcome.passed,
                    time_spent=time_spent,
                    now=now,
                )
            except Exception:
                await db.rollback()
                logger.exception(
                    f"Progress update failed for user {user_id} module {module_id}; "
                    f"quiz result {result_id} kept"
                )

        return {
            "result_id": result_id,
            "score": outcome.score,
            "total_questions": outcome.total_questions,
            "percentage": outcome.percentage,
            "passed": outcome.passed,
        }

    async def upsert_module_progress(
        self,
        db: AsyncSession,
        user_id: int,
        module_id: int,
        quiz_score: int,
        passed: bool,
        time_spent: Optional[int] = None,
        now=None,
    ) -> None:
        """
        Atomic insert-or-update keyed by (user_id, module_id).

        completed_at is set on the first pass and kept forever after.
        """
        now = now or utcnow()
        table = UserProgress.__table__
        method = CompletionMethod.QUIZ_PASSED if passed else CompletionMethod.QUIZ_ATTEMPTED

        stmt = upsert_insert(db, UserProgress.__table__).values(
            user_id=user_id,
            module_id=module_id,
            quiz_score=quiz_score,
            completed_at=now if passed else None,
            completion_method=method.value,
            last_accessed_at=now,
            time_spent=time_spent,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.module_id],
            set_={
                "quiz_score": stmt.excluded.quiz_score,
                "last_accessed_at": stmt.excluded.last_accessed_at,
                "time_spent": stmt.excluded.time_spent,
                "completed_at": func.coalesce(table.c.completed_at, stmt.excluded.completed_at),
                "completion_method": _keep_method_once_completed(table, stmt),
            },
        )
        await db.execute(stmt)
        await db.commit()

    async def start_module(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        module_id: int,
    ) -> UserProgress:
        """Record that the caller opened a module. Completion is never undone."""
        user = await get_current_user(db, identity)
        user_id, subject = user.id, user.subject
        await self._get_active_module(db, module_id)

        now = utcnow()
        table = UserProgress.__table__
        stmt = upsert_insert(db, UserProgress.__table__).values(
            user_id=user_id,
            module_id=module_id,
            completed_at=None,
            completion_method=CompletionMethod.STARTED.value,
            last_accessed_at=now,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.module_id],
            set_={
                "last_accessed_at": stmt.excluded.last_accessed_at,
                "completion_method": _keep_method_once_completed(table, stmt),
            },
        )
        await db.execute(stmt)
        await db.commit()

        logger.info(f"Module {module_id} started by {subject}")
        return await self._load_progress(db, user_id, module_id)

    async def complete_module(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        module_id: int,
        quiz_score: Optional[int] = None,
        time_spent: Optional[int] = None,
        completion_method: Union[str, CompletionMethod] = CompletionMethod.COMPLETED,
    ) -> UserProgress:
        """
        Mark a module without a linked quiz as completed by the caller.

        Modules with a quiz are completed by passing it through
        ``submit_quiz``. The first completion time is kept on repeat calls.

        Raises:
            NotFound: module missing
            ConflictError: module is not active, or has a linked quiz
            ValidationError: unknown completion method or score out of range
        """
        user = await get_current_user(db, identity)
        user_id, subject = user.id, user.subject

        try:
            method = CompletionMethod(completion_method)
        except ValueError:
            method = None
        if method not in MANUAL_COMPLETION_METHODS:
            raise ValidationError(
                f"Invalid completion method: {completion_method}",
                {"allowed": sorted(m.value for m in MANUAL_COMPLETION_METHODS)},
            )
        if quiz_score is not None and not 0 <= quiz_score <= 100:
            raise ValidationError("quiz_score must be between 0 and 100")

        module = await self._get_active_module(db, module_id)
        if module.quiz_id is not None:
            raise ConflictError(
                "Module has a linked quiz; pass the quiz to complete it",
                {"module_id": module_id, "quiz_id": module.quiz_id},
            )

        now = utcnow()
        table = UserProgress.__table__
        stmt = upsert_insert(db, UserProgress.__table__).values(
            user_id=user_id,
            module_id=module_id,
            quiz_score=quiz_score,
            completed_at=now,
            completion_method=method.value,
            last_accessed_at=now,
            time_spent=time_spent,
            created_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.user_id, table.c.module_id],
            set_={
                "quiz_score": func.coalesce(stmt.excluded.quiz_score, table.c.quiz_score),
                "time_spent": func.coalesce(stmt.excluded.time_spent, table.c.time_spent),
                "last_accessed_at": stmt.excluded.last_accessed_at,
                "completed_at": func.coalesce(table.c.completed_at, stmt.excluded.completed_at),
                "completion_method": _keep_method_once_completed(table, stmt),
            },
        )
        await db.execute(stmt)
        await db.commit()

        logger.info(f"Module {module_id} completed by {subject} ({method.value})")
        return await self._load_progress(db, user_id, module_id)

    async def _get_active_module(self, db: AsyncSession, module_id: int) -> TrainingModule:
        module = await db.get(TrainingModule, module_id)
        if module is None:
            raise NotFound("Training module", module_id)
        if module.status != ContentStatus.ACTIVE:
            raise ConflictError("Training module is not active", {"module_id": module_id})
        return module

    async def _load_progress(self, db: AsyncSession, user_id: int, module_id: int) -> UserProgress:
        result = await db.execute(
            select(UserProgress)
            .where(UserProgress.user_id == user_id, UserProgress.module_id == module_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def get_my_progress(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
    ) -> List[UserProgress]:
        user = await get_current_user(db, identity)
        result = await db.execute(
            select(UserProgress)
            .where(UserProgress.user_id == user.id)
            .order_by(UserProgress.module_id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_module_progress(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        module_id: int,
    ) -> Optional[UserProgress]:
        user = await get_current_user(db, identity)
        result = await db.execute(
            select(UserProgress)
            .where(UserProgress.user_id == user.id, UserProgress.module_id == module_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_my_quiz_results(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
    ) -> List[Dict[str, Any]]:
        """The caller's attempts, newest first, with quiz titles."""
        user = await get_current_user(db, identity)
        result = await db.execute(
            select(QuizResult, Quiz.title)
            .join(Quiz, QuizResult.quiz_id == Quiz.id)
            .where(QuizResult.user_id == user.id)
            .order_by(QuizResult.completed_at.desc(), QuizResult.id.desc())
        )
        return [
            {
                "id": row.id,
                "quiz_id": row.quiz_id,
                "quiz_title": title,
                "score": row.score,
                "total_questions": row.total_questions,
                "percentage": row.percentage,
                "passed": row.passed,
                "completed_at": row.completed_at,
                "time_spent": row.time_spent,
            }
            for row, title in result.all()
        ]

    async def get_quiz_result_details(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        result_id: int,
    ) -> Dict[str, Any]:
        """Per-question breakdown of one attempt; only its owner may read it."""
        user = await get_current_user(db, identity)

        result = await db.get(QuizResult, result_id)
        if result is None:
            raise NotFound("Quiz result", result_id)
        if result.user_id != user.id:
            raise Forbidden(message="Unauthorized to view this result")

        quiz = await db.get(Quiz, result.quiz_id)
        if quiz is None:
            raise NotFound("Quiz", result.quiz_id)

        analysis = []
        for index, question in enumerate(quiz.questions or []):
            options = question.get("options", [])
            correct_index = question.get("correct_answer_index")
            user_answer = result.answers[index] if index < len(result.answers) else None
            answered = user_answer is not None and 0 <= user_answer < len(options)
            analysis.append({
                "question_number": index + 1,
                "question_text": question.get("question_text"),
                "options": options,
                "user_answer": user_answer,
                "correct_answer": correct_index,
                "is_correct": user_answer == correct_index,
                "user_answer_text": options[user_answer] if answered else "No answer",
                "correct_answer_text": options[correct_index] if correct_index is not None else None,
            })

        return {
            "id": result.id,
            "quiz_id": quiz.id,
            "quiz_title": quiz.title,
            "score": result.score,
            "total_questions": result.total_questions,
            "percentage": result.percentage,
            "passed": result.passed,
            "completed_at": result.completed_at,
            "question_analysis": analysis,
        }


# Global instance
progress_tracker = ProgressTracker()
