"""
Report Aggregator

Read-only statistics over progress, quiz results and certificates for the
admin dashboards. Nothing here is cached and nothing here writes.
"""

from collections import defaultdict
from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from awareness.core.security import CallerIdentity
from awareness.models.certification import Certification, EffectiveStatus, effective_status
from awareness.models.progress import QuizResult, UserProgress
from awareness.models.training import ContentStatus, Quiz, TrainingModule
from awareness.models.user import User
from awareness.security.access_control import ADMIN_ONLY, require_role
from awareness.services.scoring import mean, pass_threshold_for, percent, round2


class ReportService:
    """Admin reports. Every percentage is two-decimal and zero-safe."""

    async def compliance_report(self, db: AsyncSession, identity: Optional[CallerIdentity]) -> Dict[str, Any]:
        await require_role(db, identity, ADMIN_ONLY)

        users = await self._all(db, User)
        modules = await self._all(db, TrainingModule)
        progress = await self._all(db, UserProgress)
        quizzes = {quiz.id: quiz for quiz in await self._all(db, Quiz)}
        total_users = len(users)

        completed_users = {p.user_id for p in progress if p.completed_at is not None}
        started_users = {p.user_id for p in progress}
        in_progress_users = started_users - completed_users

        scored = [p.quiz_score for p in progress if p.quiz_score is not None]

        module_completion = []
        quiz_results = []
        for module in modules:
            module_progress = [p for p in progress if p.module_id == module.id]
            completed = sum(1 for p in module_progress if p.completed_at is not None)
            module_completion.append({
                "module_id": module.id,
                "module_name": module.title,
                "completed": completed,
                "total": total_users,
                "completion_rate": percent(completed, total_users),
            })

            quiz = quizzes.get(module.quiz_id)
            if quiz is None:
                continue
            threshold = pass_threshold_for(quiz)
            attempted = [p for p in module_progress if p.quiz_score is not None]
            passed = sum(1 for p in attempted if p.quiz_score >= threshold)
            quiz_results.append({
                "quiz_id": quiz.id,
                "quiz_name": quiz.title,
                "passed": passed,
                "total": len(attempted),
                "pass_rate": percent(passed, len(attempted)),
            })

        return {
            "total_users": total_users,
            "completed_users": len(completed_users),
            "in_progress_users": len(in_progress_users),
            "not_started_users": total_users - len(started_users),
            "average_score": round2(mean(scored)),
            "module_completion": module_completion,
            "quiz_results": quiz_results,
        }

    async def user_progress_report(self, db: AsyncSession, identity: Optional[CallerIdentity]) -> List[Dict[str, Any]]:
        await require_role(db, identity, ADMIN_ONLY)

        users = await self._all(db, User)
        total_modules = len(await self._all(db, TrainingModule))
        by_user = self._group(await self._all(db, UserProgress))

        report = []
        for user in users:
            records = by_user.get(user.id, [])
            completed = sum(1 for p in records if p.completed_at is not None)
            activity = [
                moment
                for p in records
                for moment in (p.last_accessed_at, p.completed_at)
                if moment is not None
            ]
            report.append({
                "user_id": user.id,
                "user_name": user.display_name,
                "user_email": user.email,
                "completed_modules": completed,
                "total_modules": total_modules,
                "completion_rate": percent(completed, total_modules),
                "last_activity": max(activity) if activity else None,
            })
        return report

    async def training_stats(self, db: AsyncSession, identity: Optional[CallerIdentity]) -> Dict[str, Any]:
        await require_role(db, identity, ADMIN_ONLY)

        modules = await self._all(db, TrainingModule)
        progress = await self._all(db, UserProgress)
        quizzes = {quiz.id: quiz for quiz in await self._all(db, Quiz)}
        total_users = len(await self._all(db, User))

        thresholds = {module.id: pass_threshold_for(quizzes.get(module.quiz_id)) for module in modules}

        completed = sum(1 for p in progress if p.completed_at is not None)
        scored = [p for p in progress if p.quiz_score is not None]
        passed = sum(
            1 for p in scored
            if p.quiz_score >= thresholds.get(p.module_id, pass_threshold_for(None))
        )

        module_stats = []
        for module in modules:
            enrolled = [p for p in progress if p.module_id == module.id]
            module_completed = sum(1 for p in enrolled if p.completed_at is not None)
            module_stats.append({
                "id": module.id,
                "title": module.title,
                "category": module.category,
                "total_enrolled": len(enrolled),
                "completed": module_completed,
                "completion_rate": percent(module_completed, len(enrolled)),
            })

        return {
            "total_modules": len(modules),
            "active_modules": sum(1 for m in modules if m.status == ContentStatus.ACTIVE),
            "total_users": total_users,
            "completed_modules": completed,
            "completion_rate": percent(completed, total_users * len(modules)),
            "average_score": round2(mean([p.quiz_score for p in scored])),
            "pass_rate": percent(passed, len(scored)),
            "module_stats": module_stats,
        }

    async def quiz_statistics(self, db: AsyncSession, identity: Optional[CallerIdentity]) -> Dict[str, Any]:
        await require_role(db, identity, ADMIN_ONLY)

        results = await self._all(db, QuizResult)
        quizzes = await self._all(db, Quiz)
        users = await self._all(db, User)
        thresholds = {quiz.id: pass_threshold_for(quiz) for quiz in quizzes}

        def passed(result: QuizResult) -> bool:
            return result.percentage >= thresholds.get(result.quiz_id, pass_threshold_for(None))

        def summarize(rows: List[QuizResult]) -> Dict[str, Any]:
            passes = sum(1 for r in rows if passed(r))
            return {
                "attempts": len(rows),
                "passes": passes,
                "pass_rate": percent(passes, len(rows)),
                "average_score": round2(mean([r.percentage for r in rows])),
            }

        by_quiz = []
        for quiz in quizzes:
            stats = summarize([r for r in results if r.quiz_id == quiz.id])
            by_quiz.append({"quiz_id": quiz.id, "quiz_title": quiz.title, **stats})

        by_user = []
        for user in users:
            rows = [r for r in results if r.user_id == user.id]
            if not rows:
                continue
            stats = summarize(rows)
            by_user.append({
                "user_id": user.id,
                "user_email": user.email,
                "user_name": user.display_name,
                "completed_quizzes": stats["attempts"],
                "passed_quizzes": stats["passes"],
                "pass_rate": stats["pass_rate"],
                "average_score": stats["average_score"],
            })

        overall = summarize(results)
        return {
            "overall": {
                "total_quizzes": len(quizzes),
                "total_users": len(users),
                "total_attempts": overall["attempts"],
                "passed_attempts": overall["passes"],
                "pass_rate": overall["pass_rate"],
                "average_score": overall["average_score"],
            },
            "by_quiz": by_quiz,
            "by_user": by_user,
        }

    async def compliance_scores(self, db: AsyncSession, identity: Optional[CallerIdentity]) -> List[Dict[str, Any]]:
        """
        Per-user share of required, active modules completed.

        A user with no required modules to take scores 100.
        """
        await require_role(db, identity, ADMIN_ONLY)

        users = await self._all(db, User)
        required = {
            m.id for m in await self._all(db, TrainingModule)
            if m.is_required and m.status == ContentStatus.ACTIVE
        }
        by_user = self._group(await self._all(db, UserProgress))
        certs_by_user = self._group(await self._all(db, Certification))

        scores = []
        for user in users:
            done = {
                p.module_id for p in by_user.get(user.id, [])
                if p.completed_at is not None and p.module_id in required
            }
            active_certs = sum(
                1 for c in certs_by_user.get(user.id, [])
                if effective_status(c) == EffectiveStatus.ACTIVE
            )
            scores.append({
                "user_id": user.id,
                "user_name": user.display_name,
                "user_email": user.email,
                "role": user.role.value,
                "required_modules": len(required),
                "completed_required": len(done),
                "compliance_score": percent(len(done), len(required)) if required else 100.0,
                "active_certifications": active_certs,
            })
        return sorted(scores, key=lambda row: (row["compliance_score"], row["user_id"]))

    @staticmethod
    async def _all(db: AsyncSession, model) -> List[Any]:
        result = await db.execute(select(model).order_by(model.id))
        return list(result.scalars().all())

    @staticmethod
    def _group(rows) -> Dict[int, List[Any]]:
        grouped = defaultdict(list)
        for row in rows:
            grouped[row.user_id].append(row)
        return grouped


# Global instance
report_service = ReportService()
