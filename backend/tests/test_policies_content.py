"""
Tests for training content management and policy acknowledgments.
"""

import pytest
from pydantic import ValidationError as SchemaValidationError

from conftest import answers_scoring, make_questions
from awareness.core.exceptions import AlreadyAcknowledged, ConflictError, Forbidden, NotFound
from awareness.models import ContentStatus
from awareness.schemas.policy import PolicyCreate, PolicyUpdate
from awareness.schemas.training import QuizCreate, TrainingModuleCreate
from awareness.services.content_service import content_service
from awareness.services.policy_service import policy_service
from awareness.services.progress_tracker import progress_tracker


def quiz_payload(**kwargs):
    values = {"title": "Social Engineering Quiz", "questions": make_questions(3, correct_index=2)}
    values.update(kwargs)
    return QuizCreate(**values)


class TestQuizSchemas:

    def test_correct_index_must_point_at_an_option(self):
        with pytest.raises(SchemaValidationError):
            QuizCreate(
                title="Broken",
                questions=[{"question_text": "Q", "options": ["a", "b"], "correct_answer_index": 2}],
            )

    def test_at_least_two_options_and_one_question(self):
        with pytest.raises(SchemaValidationError):
            QuizCreate(title="Thin", questions=[{"question_text": "Q", "options": ["a"], "correct_answer_index": 0}])
        with pytest.raises(SchemaValidationError):
            QuizCreate(title="Empty", questions=[])

    def test_threshold_range(self):
        with pytest.raises(SchemaValidationError):
            quiz_payload(pass_threshold=101)


class TestQuizzes:

    @pytest.mark.asyncio
    async def test_public_view_hides_answers(self, db, admin_identity):
        quiz = await content_service.create_quiz(db, admin_identity, quiz_payload())

        public = await content_service.get_quiz_public(db, quiz.id)

        assert public["pass_threshold"] == 70
        assert all("correct_answer_index" not in q for q in public["questions"])
        full = await content_service.get_quiz_with_answers(db, admin_identity, quiz.id)
        assert full.questions[0]["correct_answer_index"] == 2

    @pytest.mark.asyncio
    async def test_answers_are_admin_only(self, db, admin_identity, employee_identity):
        quiz = await content_service.create_quiz(db, admin_identity, quiz_payload())

        with pytest.raises(Forbidden):
            await content_service.get_quiz_with_answers(db, employee_identity, quiz.id)
        with pytest.raises(Forbidden):
            await content_service.create_quiz(db, employee_identity, quiz_payload())

    @pytest.mark.asyncio
    async def test_update_quiz(self, db, admin_identity):
        quiz = await content_service.create_quiz(db, admin_identity, quiz_payload())

        updated = await content_service.update_quiz(
            db, admin_identity, quiz.id, quiz_payload(title="Revised", pass_threshold=80)
        )

        assert updated.title == "Revised"
        assert updated.pass_threshold == 80

    @pytest.mark.asyncio
    async def test_delete_refused_once_results_exist(self, db, admin_identity, employee_identity):
        quiz = await content_service.create_quiz(db, admin_identity, quiz_payload())
        await progress_tracker.submit_quiz(db, employee_identity, quiz.id, [2, 2, 2])

        with pytest.raises(ConflictError):
            await content_service.delete_quiz(db, admin_identity, quiz.id)

    @pytest.mark.asyncio
    async def test_delete_unlinks_modules(self, db, admin_identity, create_module):
        quiz = await content_service.create_quiz(db, admin_identity, quiz_payload())
        module = await create_module(quiz=quiz)
        module_id, quiz_id = module.id, quiz.id

        await content_service.delete_quiz(db, admin_identity, quiz_id)

        db.expire_all()
        assert (await content_service.get_module(db, module_id)).quiz_id is None
        with pytest.raises(NotFound):
            await content_service.get_quiz_public(db, quiz_id)


class TestModules:

    @pytest.mark.asyncio
    async def test_create_approve_and_list(self, db, admin_identity):
        module = await content_service.create_module(
            db,
            admin_identity,
            TrainingModuleCreate(title="Password Safety", category="passwords", is_required=True),
        )
        assert module.status == ContentStatus.DRAFT
        assert module.created_by == "idp|admin"
        assert await content_service.list_active_modules(db) == []

        approved = await content_service.approve_module(db, admin_identity, module.id)

        assert approved.status == ContentStatus.ACTIVE
        assert approved.approved_by == "idp|admin"
        assert approved.approved_at is not None
        assert [m.id for m in await content_service.list_required_modules(db)] == [module.id]
        assert [m.id for m in await content_service.list_modules_by_category(db, "passwords")] == [module.id]
        assert await content_service.list_modules_by_category(db, "phishing") == []

    @pytest.mark.asyncio
    async def test_link_module_quiz(self, db, admin_identity, create_module, create_quiz):
        module = await create_module()
        quiz = await create_quiz()

        linked = await content_service.link_module_quiz(db, admin_identity, module.id, quiz.id)
        assert linked.quiz_id == quiz.id

        with pytest.raises(NotFound):
            await content_service.link_module_quiz(db, admin_identity, module.id, 999)

    @pytest.mark.asyncio
    async def test_delete_refused_with_progress(self, db, admin_identity, employee_identity, create_module, create_quiz):
        quiz = await create_quiz(question_count=4)
        module = await create_module(quiz=quiz)
        await progress_tracker.submit_quiz(db, employee_identity, quiz.id, answers_scoring(4, 4))

        with pytest.raises(ConflictError):
            await content_service.delete_module(db, admin_identity, module.id)

    @pytest.mark.asyncio
    async def test_delete_unused_module(self, db, admin_identity, create_module):
        module = await create_module()
        module_id = module.id

        await content_service.delete_module(db, admin_identity, module_id)

        with pytest.raises(NotFound):
            await content_service.get_module(db, module_id)

    @pytest.mark.asyncio
    async def test_employee_cannot_manage_modules(self, db, employee_identity, create_module):
        module = await create_module()

        with pytest.raises(Forbidden):
            await content_service.approve_module(db, employee_identity, module.id)
        with pytest.raises(Forbidden):
            await content_service.list_all_modules(db, employee_identity)


class TestPolicies:

    @pytest.fixture
    async def active_policy(self, db, admin_identity):
        policy = await policy_service.create_policy(
            db,
            admin_identity,
            PolicyCreate(title="Acceptable Use", content="# Acceptable Use\n\nBe careful.", version="1.0"),
        )
        return await policy_service.approve_policy(db, admin_identity, policy.id)

    @pytest.mark.asyncio
    async def test_acknowledge_current_version_once(self, db, employee_identity, active_policy):
        ack = await policy_service.acknowledge_policy(db, employee_identity, active_policy.id)

        assert ack.acknowledged_version == "1.0"
        assert ack.method == "digital_signature"

        with pytest.raises(AlreadyAcknowledged):
            await policy_service.acknowledge_policy(db, employee_identity, active_policy.id)

    @pytest.mark.asyncio
    async def test_new_version_needs_new_acknowledgment(self, db, admin_identity, employee_identity, active_policy):
        await policy_service.acknowledge_policy(db, employee_identity, active_policy.id)

        await policy_service.update_policy(
            db,
            admin_identity,
            active_policy.id,
            PolicyUpdate(title="Acceptable Use", content="Revised.", version="2.0"),
        )
        ack = await policy_service.acknowledge_policy(db, employee_identity, active_policy.id)

        assert ack.acknowledged_version == "2.0"
        mine = await policy_service.get_my_acknowledgments(db, employee_identity)
        assert sorted(a.acknowledged_version for a in mine) == ["1.0", "2.0"]

    @pytest.mark.asyncio
    async def test_draft_policy_cannot_be_acknowledged(self, db, admin_identity, employee_identity):
        draft = await policy_service.create_policy(
            db, admin_identity, PolicyCreate(title="Draft", content="Not yet.")
        )

        with pytest.raises(ConflictError):
            await policy_service.acknowledge_policy(db, employee_identity, draft.id)

    @pytest.mark.asyncio
    async def test_listing_and_admin_views(self, db, admin_identity, employee_identity, active_policy):
        await policy_service.create_policy(db, admin_identity, PolicyCreate(title="Draft", content="Later."))
        await policy_service.acknowledge_policy(db, employee_identity, active_policy.id)

        assert [p.id for p in await policy_service.list_active_policies(db)] == [active_policy.id]
        assert len(await policy_service.list_all_policies(db, admin_identity)) == 2
        assert len(await policy_service.list_acknowledgments(db, admin_identity, active_policy.id)) == 1
        with pytest.raises(Forbidden):
            await policy_service.list_acknowledgments(db, employee_identity)

    @pytest.mark.asyncio
    async def test_delete_policy_removes_acknowledgments(self, db, admin_identity, employee_identity, active_policy):
        policy_id = active_policy.id
        await policy_service.acknowledge_policy(db, employee_identity, policy_id)

        await policy_service.delete_policy(db, admin_identity, policy_id)

        assert await policy_service.list_acknowledgments(db, admin_identity) == []
        with pytest.raises(NotFound):
            await policy_service.approve_policy(db, admin_identity, policy_id)
