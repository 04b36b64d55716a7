"""
Two sessions on a file database racing on the same rows.

Each session holds its own connection, so these exercise the storage-level
guarantees (upserts, the partial unique index, the audit chain head) rather
than the in-process locks alone.
"""

import asyncio
import logging

import pytest
from unittest.mock import patch
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from conftest import answers_scoring, identity_for, make_questions
from awareness.core.database import create_engine_for, init_db
from awareness.core.exceptions import DuplicateActiveCertificate
from awareness.models import (
    AuditChainHead,
    Certification,
    CertificationStatus,
    CertificationTemplate,
    ContentStatus,
    Quiz,
    QuizResult,
    RoleAuditLog,
    TrainingModule,
    User,
    UserProgress,
    UserRole,
)
from awareness.services import user_service
from awareness.services.audit_service import ROLE_CHAIN, RoleAuditService, role_audit_service
from awareness.services.certification_service import CertificationService, certification_service
from awareness.services.progress_tracker import progress_tracker


QUESTION_COUNT = 4

_original_commit = AsyncSession.commit


async def _slow_commit(self):
    # Hold the transaction open long enough for the other session to interleave
    await asyncio.sleep(0.05)
    return await _original_commit(self)


@pytest.fixture
async def file_engine(tmp_path):
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def file_sessions(file_engine):
    return async_sessionmaker(file_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def seeded(file_sessions):
    async with file_sessions() as session:
        admin = User(subject="idp|admin", email="admin@example.com", first_name="Ada", last_name="Admin", role=UserRole.ADMIN)
        employee = User(subject="idp|employee", email="eve@example.com", first_name="Eve", last_name="Employee", role=UserRole.EMPLOYEE)
        colleague = User(subject="idp|colleague", email="carl@example.com", first_name="Carl", last_name="Colleague", role=UserRole.EMPLOYEE)
        quiz = Quiz(title="Phishing quiz", questions=make_questions(QUESTION_COUNT))
        session.add_all([admin, employee, colleague, quiz])
        await session.flush()

        module = TrainingModule(
            title="Phishing Basics",
            description="Phishing Basics module",
            category="phishing",
            is_required=True,
            status=ContentStatus.ACTIVE,
            quiz_id=quiz.id,
            created_by="idp|admin",
        )
        template = CertificationTemplate(
            title="Security Awareness Certificate",
            description="Annual security awareness certification",
            category="security_awareness",
            required_modules=[],
            required_quizzes=[],
            is_active=True,
            auto_award=False,
            created_by="idp|admin",
        )
        session.add_all([module, template])
        await session.commit()

        return {
            "admin": admin,
            "employee": employee,
            "colleague": colleague,
            "quiz": quiz,
            "module": module,
            "template": template,
        }


class TestConcurrentQuizSubmissions:

    @pytest.mark.asyncio
    async def test_same_module_keeps_one_progress_row(self, file_sessions, seeded, caplog):
        identity = identity_for(seeded["employee"])
        answers = answers_scoring(QUESTION_COUNT, QUESTION_COUNT)

        async def submit():
            async with file_sessions() as session:
                return await progress_tracker.submit_quiz(session, identity, seeded["quiz"].id, answers)

        with caplog.at_level(logging.ERROR, logger="awareness.services.progress_tracker"):
            with patch.object(AsyncSession, "commit", _slow_commit):
                first, second = await asyncio.gather(submit(), submit())

        assert first["passed"] and second["passed"]
        assert "Progress update failed" not in caplog.text

        async with file_sessions() as session:
            rows = (
                await session.execute(
                    select(UserProgress).where(UserProgress.user_id == seeded["employee"].id)
                )
            ).scalars().all()
            result_count = (await session.execute(select(func.count(QuizResult.id)))).scalar()

        assert len(rows) == 1
        assert rows[0].module_id == seeded["module"].id
        assert rows[0].completed_at is not None
        assert rows[0].quiz_score == 100
        assert result_count == 2


class TestConcurrentAwards:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("shared_service", [True, False])
    async def test_one_active_certificate_survives(self, file_sessions, seeded, shared_service):
        admin_identity = identity_for(seeded["admin"])
        # Separate instances stand in for separate worker processes
        services = (
            [certification_service, certification_service]
            if shared_service
            else [CertificationService(), CertificationService()]
        )

        async def award(service):
            async with file_sessions() as session:
                return await service.award_certification(
                    session, admin_identity, seeded["employee"].id, seeded["template"].id
                )

        with patch.object(AsyncSession, "commit", _slow_commit):
            outcomes = await asyncio.gather(*(award(s) for s in services), return_exceptions=True)

        issued = [o for o in outcomes if isinstance(o, Certification)]
        rejected = [o for o in outcomes if isinstance(o, DuplicateActiveCertificate)]
        assert len(issued) == 1
        assert len(rejected) == 1

        async with file_sessions() as session:
            active = (
                await session.execute(
                    select(func.count(Certification.id)).where(
                        Certification.user_id == seeded["employee"].id,
                        Certification.status == CertificationStatus.ACTIVE,
                    )
                )
            ).scalar()
        assert active == 1


class TestConcurrentRoleChanges:

    async def _race(self, file_sessions, seeded, services):
        admin_identity = identity_for(seeded["admin"])

        async with file_sessions() as session:
            await user_service.update_user_role(
                session, admin_identity, seeded["colleague"].id, UserRole.MANAGER, "Initial assignment"
            )

        async def change_role(service, user_id, new_role, reason):
            async with file_sessions() as session:
                admin = await session.get(User, seeded["admin"].id)
                target = await session.get(User, user_id)
                previous_role = target.role
                target.role = new_role
                return await service.record_role_change(
                    session,
                    target=target,
                    performed_by=admin,
                    previous_role=previous_role,
                    new_role=new_role,
                    reason=reason,
                )

        with patch.object(AsyncSession, "commit", _slow_commit):
            await asyncio.gather(
                change_role(services[0], seeded["employee"].id, UserRole.HR, "Transfer"),
                # Same role as before: only the audit entry is written
                change_role(services[1], seeded["colleague"].id, UserRole.MANAGER, "Annual review"),
            )

        async with file_sessions() as session:
            entries = (
                await session.execute(select(RoleAuditLog).order_by(RoleAuditLog.id))
            ).scalars().all()
            head = await session.get(AuditChainHead, ROLE_CHAIN)
            outcome = await role_audit_service.verify_chain(session, admin_identity)
            roles = {
                user.id: user.role
                for user in (await session.execute(select(User))).scalars().all()
            }

        assert roles[seeded["employee"].id] == UserRole.HR
        return entries, head, outcome

    @pytest.mark.asyncio
    async def test_shared_service_keeps_chain_linear(self, file_sessions, seeded):
        entries, head, outcome = await self._race(
            file_sessions, seeded, [role_audit_service, role_audit_service]
        )

        assert outcome == {"verified": True, "entries_checked": 3, "broken_at": None}
        assert len({e.previous_hash for e in entries}) == 3
        assert head.last_hash == entries[-1].integrity_hash

    @pytest.mark.asyncio
    async def test_separate_services_keep_chain_linear(self, file_sessions, seeded):
        entries, head, outcome = await self._race(
            file_sessions, seeded, [RoleAuditService(), RoleAuditService()]
        )

        assert outcome == {"verified": True, "entries_checked": 3, "broken_at": None}
        assert len({e.previous_hash for e in entries}) == 3
        assert head.last_hash == entries[-1].integrity_hash
