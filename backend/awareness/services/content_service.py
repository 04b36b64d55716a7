"""
Training content management: modules, quizzes and the link between them.

Every mutation goes through ``require_role``. Quiz reads for learners never
include the correct answer indices.
"""

from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update
import logging

from awareness.core.exceptions import ConflictError, NotFound
from awareness.core.security import CallerIdentity
from awareness.core.timeutils import utcnow
from awareness.models.progress import QuizResult, UserProgress
from awareness.models.training import ContentStatus, Quiz, TrainingModule
from awareness.schemas.training import QuizCreate, TrainingModuleCreate, TrainingModuleUpdate
from awareness.security.access_control import ADMIN_ONLY, require_role
from awareness.services.scoring import pass_threshold_for


logger = logging.getLogger(__name__)


class ContentService:
    """CRUD and lifecycle for training modules and quizzes."""

    # Training modules

    async def create_module(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        data: TrainingModuleCreate,
    ) -> TrainingModule:
        admin = await require_role(db, identity, ADMIN_ONLY)
        if data.quiz_id is not None:
            await self._get_quiz(db, data.quiz_id)

        module = TrainingModule(
            **data.model_dump(),
            version="1.0",
            status=ContentStatus.DRAFT,
            created_by=admin.subject,
        )
        db.add(module)
        await db.commit()
        await db.refresh(module)

        logger.info(f"Training module {module.id} '{module.title}' created by {admin.subject}")
        return module

    async def update_module(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        module_id: int,
        data: TrainingModuleUpdate,
    ) -> TrainingModule:
        await require_role(db, identity, ADMIN_ONLY)
        module = await self._get_module(db, module_id)
        if data.quiz_id is not None:
            await self._get_quiz(db, data.quiz_id)

        for field_name, value in data.model_dump().items():
            setattr(module, field_name, value)
        module.updated_at = utcnow()

        await db.commit()
        await db.refresh(module)
        return module

    async def approve_module(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        module_id: int,
    ) -> TrainingModule:
        admin = await require_role(db, identity, ADMIN_ONLY)
        module = await self._get_module(db, module_id)

        module.status = ContentStatus.ACTIVE
        module.approved_by = admin.subject
        module.approved_at = utcnow()
        await db.commit()
        await db.refresh(module)

        logger.info(f"Training module {module.id} approved by {admin.subject}")
        return module

    async def delete_module(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        module_id: int,
    ) -> None:
        """Refused once any learner has progress on the module."""
        admin = await require_role(db, identity, ADMIN_ONLY)
        module = await self._get_module(db, module_id)

        progress_count = await db.execute(
            select(func.count(UserProgress.id)).where(UserProgress.module_id == module_id)
        )
        if (progress_count.scalar() or 0) > 0:
            raise ConflictError(
                "Training module has learner progress and cannot be deleted",
                {"module_id": module_id},
            )

        await db.delete(module)
        await db.commit()
        logger.info(f"Training module {module_id} deleted by {admin.subject}")

    async def get_module(self, db: AsyncSession, module_id: int) -> TrainingModule:
        return await self._get_module(db, module_id)

    async def list_active_modules(self, db: AsyncSession) -> List[TrainingModule]:
        result = await db.execute(
            select(TrainingModule)
            .where(TrainingModule.status == ContentStatus.ACTIVE)
            .order_by(TrainingModule.id)
        )
        return list(result.scalars().all())

    async def list_modules_by_category(self, db: AsyncSession, category: str) -> List[TrainingModule]:
        result = await db.execute(
            select(TrainingModule)
            .where(
                TrainingModule.status == ContentStatus.ACTIVE,
                TrainingModule.category == category,
            )
            .order_by(TrainingModule.id)
        )
        return list(result.scalars().all())

    async def list_required_modules(self, db: AsyncSession) -> List[TrainingModule]:
        result = await db.execute(
            select(TrainingModule)
            .where(
                TrainingModule.status == ContentStatus.ACTIVE,
                TrainingModule.is_required.is_(True),
            )
            .order_by(TrainingModule.id)
        )
        return list(result.scalars().all())

    async def list_all_modules(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
    ) -> List[TrainingModule]:
        await require_role(db, identity, ADMIN_ONLY)
        result = await db.execute(select(TrainingModule).order_by(TrainingModule.id))
        return list(result.scalars().all())

    async def link_module_quiz(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        module_id: int,
        quiz_id: int,
    ) -> TrainingModule:
        admin = await require_role(db, identity, ADMIN_ONLY)
        module = await self._get_module(db, module_id)
        quiz = await self._get_quiz(db, quiz_id)

        module.quiz_id = quiz.id
        await db.commit()
        await db.refresh(module)

        logger.info(f"Linked module {module_id} to quiz {quiz_id} ({admin.subject})")
        return module

    # Quizzes

    async def create_quiz(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        data: QuizCreate,
    ) -> Quiz:
        admin = await require_role(db, identity, ADMIN_ONLY)

        quiz = Quiz(
            title=data.title,
            questions=[question.model_dump() for question in data.questions],
            pass_threshold=data.pass_threshold,
        )
        db.add(quiz)
        await db.commit()
        await db.refresh(quiz)

        logger.info(f"Quiz {quiz.id} '{quiz.title}' created by {admin.subject} with {quiz.question_count} questions")
        return quiz

    async def update_quiz(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        quiz_id: int,
        data: QuizCreate,
    ) -> Quiz:
        await require_role(db, identity, ADMIN_ONLY)
        quiz = await self._get_quiz(db, quiz_id)

        quiz.title = data.title
        quiz.questions = [question.model_dump() for question in data.questions]
        quiz.pass_threshold = data.pass_threshold
        await db.commit()
        await db.refresh(quiz)
        return quiz

    async def delete_quiz(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        quiz_id: int,
    ) -> None:
        """Refused once any result references the quiz. Linked modules are unlinked."""
        admin = await require_role(db, identity, ADMIN_ONLY)
        quiz = await self._get_quiz(db, quiz_id)

        result_count = await db.execute(
            select(func.count(QuizResult.id)).where(QuizResult.quiz_id == quiz_id)
        )
        if (result_count.scalar() or 0) > 0:
            raise ConflictError(
                "Quiz has recorded results and cannot be deleted",
                {"quiz_id": quiz_id},
            )

        await db.execute(
            update(TrainingModule).where(TrainingModule.quiz_id == quiz_id).values(quiz_id=None)
        )
        await db.delete(quiz)
        await db.commit()
        logger.info(f"Quiz {quiz_id} deleted by {admin.subject}")

    async def list_quizzes(self, db: AsyncSession) -> List[Dict[str, Any]]:
        result = await db.execute(select(Quiz).order_by(Quiz.id))
        return [self.public_quiz(quiz) for quiz in result.scalars().all()]

    async def get_quiz_public(self, db: AsyncSession, quiz_id: int) -> Dict[str, Any]:
        return self.public_quiz(await self._get_quiz(db, quiz_id))

    async def get_quiz_with_answers(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        quiz_id: int,
    ) -> Quiz:
        await require_role(db, identity, ADMIN_ONLY)
        return await self._get_quiz(db, quiz_id)

    @staticmethod
    def public_quiz(quiz: Quiz) -> Dict[str, Any]:
        """Strip correct answers for learner-facing reads."""
        return {
            "id": quiz.id,
            "title": quiz.title,
            "pass_threshold": pass_threshold_for(quiz),
            "questions": [
                {
                    "question_text": question.get("question_text"),
                    "options": list(question.get("options", [])),
                }
                for question in quiz.questions or []
            ],
        }

    # Helpers

    async def _get_module(self, db: AsyncSession, module_id: int) -> TrainingModule:
        module = await db.get(TrainingModule, module_id)
        if module is None:
            raise NotFound("Training module", module_id)
        return module

    async def _get_quiz(self, db: AsyncSession, quiz_id: int) -> Quiz:
        quiz = await db.get(Quiz, quiz_id)
        if quiz is None:
            raise NotFound("Quiz", quiz_id)
        return quiz


# Global instance
content_service = ContentService()
