"""
Tests for quiz scoring, result recording and module progress upserts.
"""

import logging

import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy import select, func

from conftest import answers_scoring, identity_for
from awareness.core.exceptions import ConflictError, Forbidden, NotFound, Unauthenticated, ValidationError
from awareness.models import CompletionMethod, ContentStatus, QuizResult, UserProgress
from awareness.services.certification_service import certification_service
from awareness.services.progress_tracker import progress_tracker
from awareness.services.scoring import percent, round2, round_half_up, score_answers


class TestScoring:

    def test_round_half_up(self):
        assert round_half_up(62.5) == 63
        assert round_half_up(62.4999) == 62
        assert round_half_up(0.5) == 1

    def test_two_decimal_percent_is_zero_safe(self):
        assert percent(1, 3) == 33.33
        assert percent(2, 3) == 66.67
        assert percent(5, 0) == 0.0
        assert round2(12.3456) == 12.35

    def test_short_answer_vector_counts_as_unanswered(self):
        questions = [{"correct_answer_index": 1}] * 4
        outcome = score_answers(questions, [1], pass_threshold=70)

        assert outcome.score == 1
        assert outcome.total_questions == 4
        assert outcome.percentage == 25
        assert outcome.passed is False

    def test_threshold_is_inclusive(self):
        questions = [{"correct_answer_index": 0}] * 10
        outcome = score_answers(questions, answers_scoring(7, 10), pass_threshold=70)

        assert outcome.percentage == 70
        assert outcome.passed is True


class TestSubmitQuiz:

    @pytest.mark.asyncio
    async def test_submission_is_scored_and_recorded(self, db, employee, employee_identity, create_quiz):
        quiz = await create_quiz(question_count=8)

        outcome = await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(5, 8), time_spent=90)

        assert outcome["score"] == 5
        assert outcome["total_questions"] == 8
        assert outcome["percentage"] == 63
        assert outcome["passed"] is False

        result = await db.get(QuizResult, outcome["result_id"])
        assert result.user_id == employee.id
        assert result.time_spent == 90
        assert result.passed is False

    @pytest.mark.asyncio
    async def test_every_attempt_is_kept(self, db, employee, employee_identity, create_quiz):
        quiz = await create_quiz(question_count=4)

        await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(1, 4))
        await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(4, 4))

        count = await db.execute(
            select(func.count(QuizResult.id)).where(QuizResult.user_id == employee.id)
        )
        assert count.scalar() == 2

    @pytest.mark.asyncio
    async def test_quiz_threshold_overrides_default(self, db, employee_identity, create_quiz):
        quiz = await create_quiz(question_count=4, pass_threshold=80)

        outcome = await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(3, 4))

        assert outcome["percentage"] == 75
        assert outcome["passed"] is False

    @pytest.mark.asyncio
    async def test_unknown_quiz(self, db, employee_identity):
        with pytest.raises(NotFound):
            await progress_tracker.submit_quiz(db, employee_identity, 999, [0])

    @pytest.mark.asyncio
    async def test_unauthenticated_submission(self, db, create_quiz):
        quiz = await create_quiz()
        with pytest.raises(Unauthenticated):
            await progress_tracker.submit_quiz(db, None, quiz.id, [0])


class TestModuleProgress:

    @pytest.mark.asyncio
    async def test_pass_completes_linked_module(self, db, employee_identity, create_quiz, create_module):
        quiz = await create_quiz(question_count=4)
        module = await create_module(quiz=quiz)

        await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(4, 4))

        progress = await progress_tracker.get_module_progress(db, employee_identity, module.id)
        assert progress.completed_at is not None
        assert progress.quiz_score == 100
        assert progress.completion_method == CompletionMethod.QUIZ_PASSED

    @pytest.mark.asyncio
    async def test_failing_attempt_leaves_module_incomplete(self, db, employee_identity, create_quiz, create_module):
        quiz = await create_quiz(question_count=4)
        module = await create_module(quiz=quiz)

        await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(1, 4))

        progress = await progress_tracker.get_module_progress(db, employee_identity, module.id)
        assert progress.completed_at is None
        assert progress.quiz_score == 25
        assert progress.completion_method == CompletionMethod.QUIZ_ATTEMPTED

    @pytest.mark.asyncio
    async def test_resubmission_updates_single_row(self, db, employee, employee_identity, create_quiz, create_module):
        """Completion is set once; a later failing attempt only refreshes the score."""
        quiz = await create_quiz(question_count=4)
        module = await create_module(quiz=quiz)

        await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(4, 4))
        first = await progress_tracker.get_module_progress(db, employee_identity, module.id)
        completed_at = first.completed_at

        await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(0, 4))
        await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(4, 4))

        count = await db.execute(
            select(func.count(UserProgress.id)).where(
                UserProgress.user_id == employee.id,
                UserProgress.module_id == module.id,
            )
        )
        assert count.scalar() == 1

        progress = await progress_tracker.get_module_progress(db, employee_identity, module.id)
        assert progress.completed_at == completed_at
        assert progress.quiz_score == 100
        assert progress.completion_method == CompletionMethod.QUIZ_PASSED

    @pytest.mark.asyncio
    async def test_failing_retake_never_clears_completion(self, db, employee_identity, create_quiz, create_module):
        quiz = await create_quiz(question_count=4)
        module = await create_module(quiz=quiz)

        await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(3, 4))
        await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(0, 4))

        progress = await progress_tracker.get_module_progress(db, employee_identity, module.id)
        assert progress.completed_at is not None
        assert progress.quiz_score == 0

    @pytest.mark.asyncio
    async def test_progress_failure_keeps_quiz_result(self, db, employee, employee_identity, create_quiz, create_module, caplog):
        quiz = await create_quiz(question_count=4)
        await create_module(quiz=quiz)
        user_id, quiz_id = employee.id, quiz.id

        failing_upsert = AsyncMock(side_effect=RuntimeError("database unavailable"))
        with patch.object(progress_tracker, "upsert_module_progress", failing_upsert):
            with caplog.at_level(logging.ERROR, logger="awareness.services.progress_tracker"):
                outcome = await progress_tracker.submit_quiz(db, employee_identity, quiz_id, answers_scoring(4, 4))

        assert outcome["passed"] is True
        failing_upsert.assert_awaited_once()
        assert "Progress update failed" in caplog.text

        results = await db.execute(select(func.count(QuizResult.id)).where(QuizResult.user_id == user_id))
        assert results.scalar() == 1
        progress = await db.execute(select(func.count(UserProgress.id)).where(UserProgress.user_id == user_id))
        assert progress.scalar() == 0

    @pytest.mark.asyncio
    async def test_unlinked_quiz_touches_no_progress(self, db, employee, employee_identity, create_quiz):
        quiz = await create_quiz()

        await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(4, 4))

        progress = await progress_tracker.get_my_progress(db, employee_identity)
        assert progress == []


class TestManualCompletion:

    async def _progress_rows(self, db, user_id):
        result = await db.execute(select(UserProgress).where(UserProgress.user_id == user_id))
        return result.scalars().all()

    @pytest.mark.asyncio
    async def test_start_records_access_only(self, db, employee_identity, create_module):
        module = await create_module(title="Clean Desk Policy")

        progress = await progress_tracker.start_module(db, employee_identity, module.id)

        assert progress.completion_method == CompletionMethod.STARTED
        assert progress.completed_at is None
        assert progress.last_accessed_at is not None

    @pytest.mark.asyncio
    async def test_repeat_completion_keeps_first(self, db, employee, employee_identity, create_module):
        module = await create_module(title="Clean Desk Policy")

        first = await progress_tracker.complete_module(
            db, employee_identity, module.id, time_spent=120, completion_method="video_watched"
        )
        first_completed_at = first.completed_at
        second = await progress_tracker.complete_module(db, employee_identity, module.id, quiz_score=90)

        assert second.completed_at == first_completed_at
        assert second.completion_method == CompletionMethod.VIDEO_WATCHED
        assert second.quiz_score == 90
        assert second.time_spent == 120
        assert len(await self._progress_rows(db, employee.id)) == 1

    @pytest.mark.asyncio
    async def test_start_after_completion_keeps_completion(self, db, employee_identity, create_module):
        module = await create_module(title="Clean Desk Policy")
        completed = await progress_tracker.complete_module(db, employee_identity, module.id)
        completed_at = completed.completed_at

        reopened = await progress_tracker.start_module(db, employee_identity, module.id)

        assert reopened.completed_at == completed_at
        assert reopened.completion_method == CompletionMethod.COMPLETED

    @pytest.mark.asyncio
    async def test_quiz_linked_module_needs_the_quiz(self, db, employee, employee_identity, create_quiz, create_module):
        module = await create_module(quiz=await create_quiz())

        with pytest.raises(ConflictError):
            await progress_tracker.complete_module(db, employee_identity, module.id)

        assert await self._progress_rows(db, employee.id) == []

    @pytest.mark.asyncio
    async def test_inactive_or_missing_module(self, db, employee_identity, create_module):
        draft = await create_module(status=ContentStatus.DRAFT)

        with pytest.raises(ConflictError):
            await progress_tracker.start_module(db, employee_identity, draft.id)
        with pytest.raises(ConflictError):
            await progress_tracker.complete_module(db, employee_identity, draft.id)
        with pytest.raises(NotFound):
            await progress_tracker.complete_module(db, employee_identity, 9999)

    @pytest.mark.asyncio
    async def test_quiz_methods_and_bad_scores_rejected(self, db, employee_identity, create_module):
        module = await create_module()

        for method in ("quiz_passed", "started", "skimmed"):
            with pytest.raises(ValidationError):
                await progress_tracker.complete_module(db, employee_identity, module.id, completion_method=method)
        with pytest.raises(ValidationError):
            await progress_tracker.complete_module(db, employee_identity, module.id, quiz_score=101)

    @pytest.mark.asyncio
    async def test_completion_unlocks_auto_award(self, db, employee_identity, create_module, create_template):
        module = await create_module(title="Clean Desk Policy", is_required=True)
        await create_template(required_modules=[module.id])

        assert await certification_service.check_and_award_eligible(db, employee_identity) == []

        await progress_tracker.complete_module(db, employee_identity, module.id)
        awarded = await certification_service.check_and_award_eligible(db, employee_identity)

        assert len(awarded) == 1


class TestLearnerReads:

    @pytest.mark.asyncio
    async def test_my_results_newest_first(self, db, employee_identity, create_quiz):
        quiz = await create_quiz(question_count=4, title="Password Hygiene")

        first = await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(1, 4))
        second = await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(3, 4))

        results = await progress_tracker.get_my_quiz_results(db, employee_identity)
        assert [r["id"] for r in results] == [second["result_id"], first["result_id"]]
        assert results[0]["quiz_title"] == "Password Hygiene"

    @pytest.mark.asyncio
    async def test_result_details_for_owner(self, db, employee_identity, create_quiz):
        quiz = await create_quiz(question_count=3)
        outcome = await progress_tracker.submit_quiz(db, employee_identity, quiz.id, [0, 1])

        details = await progress_tracker.get_quiz_result_details(db, employee_identity, outcome["result_id"])

        analysis = details["question_analysis"]
        assert len(analysis) == 3
        assert analysis[0]["is_correct"] is True
        assert analysis[1]["is_correct"] is False
        assert analysis[2]["user_answer"] is None
        assert analysis[2]["user_answer_text"] == "No answer"

    @pytest.mark.asyncio
    async def test_result_details_hidden_from_others(self, db, employee_identity, create_user, create_quiz):
        quiz = await create_quiz()
        outcome = await progress_tracker.submit_quiz(db, employee_identity, quiz.id, [0])
        colleague = await create_user()

        with pytest.raises(Forbidden):
            await progress_tracker.get_quiz_result_details(db, identity_for(colleague), outcome["result_id"])
