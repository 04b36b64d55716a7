"""
Tests for the admin report aggregations.
"""

import pytest

from conftest import answers_scoring, identity_for
from awareness.core.exceptions import Forbidden
from awareness.services.progress_tracker import progress_tracker
from awareness.services.report_service import report_service


@pytest.fixture
async def training_activity(db, admin, employee, employee_identity, create_user, create_quiz, create_module):
    """One learner passed the required module, one failed it, the admin never started."""
    quiz = await create_quiz(question_count=4, title="Phishing Check")
    required = await create_module(quiz=quiz, title="Phishing Basics", is_required=True)
    optional = await create_module(title="Clean Desk", category="physical")
    colleague = await create_user(first_name="Cal", last_name="Colleague")

    await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(4, 4))
    await progress_tracker.submit_quiz(db, identity_for(colleague), quiz.id, answers_scoring(1, 4))

    return {
        "admin_id": admin.id,
        "employee_id": employee.id,
        "colleague_id": colleague.id,
        "required_id": required.id,
        "optional_id": optional.id,
        "quiz_id": quiz.id,
    }


class TestComplianceReport:

    @pytest.mark.asyncio
    async def test_user_buckets_and_module_rates(self, db, admin_identity, training_activity):
        report = await report_service.compliance_report(db, admin_identity)

        assert report["total_users"] == 3
        assert report["completed_users"] == 1
        assert report["in_progress_users"] == 1
        assert report["not_started_users"] == 1
        assert report["average_score"] == 62.5

        by_module = {row["module_id"]: row for row in report["module_completion"]}
        assert by_module[training_activity["required_id"]]["completion_rate"] == 33.33
        assert by_module[training_activity["optional_id"]]["completion_rate"] == 0.0

        assert report["quiz_results"] == [{
            "quiz_id": training_activity["quiz_id"],
            "quiz_name": "Phishing Check",
            "passed": 1,
            "total": 2,
            "pass_rate": 50.0,
        }]

    @pytest.mark.asyncio
    async def test_empty_platform_is_zero_not_error(self, db, admin_identity):
        report = await report_service.compliance_report(db, admin_identity)

        assert report["total_users"] == 1
        assert report["average_score"] == 0.0
        assert report["module_completion"] == []


class TestTrainingStats:

    @pytest.mark.asyncio
    async def test_rates(self, db, admin_identity, training_activity):
        stats = await report_service.training_stats(db, admin_identity)

        assert stats["total_modules"] == 2
        assert stats["active_modules"] == 2
        assert stats["completed_modules"] == 1
        assert stats["completion_rate"] == 16.67
        assert stats["average_score"] == 62.5
        assert stats["pass_rate"] == 50.0

        by_module = {row["id"]: row for row in stats["module_stats"]}
        assert by_module[training_activity["required_id"]]["total_enrolled"] == 2
        assert by_module[training_activity["required_id"]]["completion_rate"] == 50.0
        assert by_module[training_activity["optional_id"]]["completion_rate"] == 0.0


class TestQuizStatistics:

    @pytest.mark.asyncio
    async def test_overall_and_breakdowns(self, db, admin_identity, training_activity):
        stats = await report_service.quiz_statistics(db, admin_identity)

        assert stats["overall"]["total_attempts"] == 2
        assert stats["overall"]["passed_attempts"] == 1
        assert stats["overall"]["pass_rate"] == 50.0
        assert stats["overall"]["average_score"] == 62.5
        assert stats["by_quiz"][0]["attempts"] == 2

        users = {row["user_id"] for row in stats["by_user"]}
        assert users == {training_activity["employee_id"], training_activity["colleague_id"]}


class TestUserProgressAndScores:

    @pytest.mark.asyncio
    async def test_user_progress_report(self, db, admin_identity, training_activity):
        report = await report_service.user_progress_report(db, admin_identity)
        by_user = {row["user_id"]: row for row in report}

        learner = by_user[training_activity["employee_id"]]
        assert learner["completed_modules"] == 1
        assert learner["total_modules"] == 2
        assert learner["completion_rate"] == 50.0
        assert learner["last_activity"] is not None
        assert by_user[training_activity["admin_id"]]["last_activity"] is None

    @pytest.mark.asyncio
    async def test_compliance_scores_lowest_first(self, db, admin_identity, training_activity):
        scores = await report_service.compliance_scores(db, admin_identity)

        assert [row["user_id"] for row in scores] == [
            training_activity["admin_id"],
            training_activity["colleague_id"],
            training_activity["employee_id"],
        ]
        assert scores[-1]["compliance_score"] == 100.0
        assert scores[0]["compliance_score"] == 0.0
        assert scores[-1]["required_modules"] == 1

    @pytest.mark.asyncio
    async def test_no_required_modules_means_fully_compliant(self, db, admin_identity, employee):
        scores = await report_service.compliance_scores(db, admin_identity)

        assert {row["compliance_score"] for row in scores} == {100.0}


class TestReportAccess:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("report", [
        "compliance_report",
        "user_progress_report",
        "training_stats",
        "quiz_statistics",
        "compliance_scores",
    ])
    async def test_reports_are_admin_only(self, db, employee_identity, report):
        with pytest.raises(Forbidden):
            await getattr(report_service, report)(db, employee_identity)
