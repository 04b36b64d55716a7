"""
Certification eligibility evaluation.

``evaluate_eligibility`` is a pure function over already-loaded rows so the
issuer can reuse it inside its own unit of work; ``check_eligibility`` is the
read-only query wrapper.
"""
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Sequence, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from awareness.core.config import settings
from awareness.core.exceptions import NotFound
from awareness.core.security import CallerIdentity
from awareness.models.certification import CertificationTemplate, OverallScoreScope
from awareness.models.progress import QuizResult, UserProgress
from awareness.security.access_control import Permission, get_current_user, require_permission
from awareness.services.scoring import mean


@dataclass
class EligibilityResult:
    eligible: bool
    module_requirements_met: bool
    quiz_requirements_met: bool
    overall_score_met: bool
    overall_score: float
    overall_score_scope: str
    completed_modules: int
    total_modules: int
    completed_quizzes: int
    total_quizzes: int
    missing_modules: List[int] = field(default_factory=list)
    missing_quizzes: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def resolve_score_scope(template: CertificationTemplate) -> OverallScoreScope:
    if template.overall_score_scope is not None:
        return OverallScoreScope(template.overall_score_scope)
    return OverallScoreScope(settings.OVERALL_SCORE_SCOPE)


def evaluate_eligibility(
    template: CertificationTemplate,
    progress: Sequence[UserProgress],
    quiz_results: Sequence[QuizResult],
) -> EligibilityResult:
    required_modules = list(template.required_modules or [])
    required_quizzes = list(template.required_quizzes or [])
    minimum = template.minimum_overall_score

    completed = {p.module_id for p in progress if p.completed_at is not None}
    missing_modules = [module_id for module_id in required_modules if module_id not in completed]

    # Retakes count: the best attempt per quiz is what gets compared
    best_by_quiz: Dict[int, int] = {}
    for result in quiz_results:
        best = best_by_quiz.get(result.quiz_id)
        if best is None or result.percentage > best:
            best_by_quiz[result.quiz_id] = result.percentage

    missing_quizzes = []
    for quiz_id in required_quizzes:
        best = best_by_quiz.get(quiz_id)
        if best is None or (minimum and best < minimum):
            missing_quizzes.append(quiz_id)

    scope = resolve_score_scope(template)
    if scope == OverallScoreScope.REQUIRED_QUIZZES:
        scored = [r.percentage for r in quiz_results if r.quiz_id in required_quizzes]
    else:
        scored = [r.percentage for r in quiz_results]
    overall_score = mean(scored)

    module_met = not missing_modules
    quiz_met = not missing_quizzes
    overall_met = not minimum or overall_score >= minimum

    return EligibilityResult(
        eligible=module_met and quiz_met and overall_met,
        module_requirements_met=module_met,
        quiz_requirements_met=quiz_met,
        overall_score_met=overall_met,
        overall_score=overall_score,
        overall_score_scope=scope.value,
        completed_modules=len(required_modules) - len(missing_modules),
        total_modules=len(required_modules),
        completed_quizzes=sum(1 for quiz_id in required_quizzes if quiz_id in best_by_quiz),
        total_quizzes=len(required_quizzes),
        missing_modules=missing_modules,
        missing_quizzes=missing_quizzes,
    )


async def load_learner_state(
    db: AsyncSession,
    user_id: int,
) -> Tuple[List[UserProgress], List[QuizResult]]:
    progress = await db.execute(
        select(UserProgress)
        .where(UserProgress.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    results = await db.execute(select(QuizResult).where(QuizResult.user_id == user_id))
    return list(progress.scalars().all()), list(results.scalars().all())


async def check_eligibility(
    db: AsyncSession,
    identity: Optional[CallerIdentity],
    user_id: int,
    template_id: int,
) -> EligibilityResult:
    """Read-only eligibility check for the caller, or any user for result viewers."""
    caller = await get_current_user(db, identity)
    if caller.id != user_id:
        await require_permission(db, identity, Permission.VIEW_ALL_RESULTS)

    template = await db.get(CertificationTemplate, template_id)
    if template is None:
        raise NotFound("Certification template", template_id)

    progress, quiz_results = await load_learner_state(db, user_id)
    return evaluate_eligibility(template, progress, quiz_results)
