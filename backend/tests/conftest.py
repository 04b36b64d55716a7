"""
Shared fixtures: an in-memory database per test plus user/content factories.
"""

import itertools

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

import awareness.models  # noqa: F401
from awareness.core.database import create_engine_for, init_db
from awareness.core.security import CallerIdentity
from awareness.models import (
    CertificationTemplate,
    ContentStatus,
    Quiz,
    TrainingModule,
    User,
    UserRole,
)


def identity_for(user: User) -> CallerIdentity:
    """The identity-provider view of a persisted user."""
    return CallerIdentity(
        subject=user.subject,
        email=user.email,
        given_name=user.first_name,
        family_name=user.last_name,
    )


def make_questions(count: int, correct_index: int = 0):
    return [
        {
            "question_text": f"Question {i + 1}",
            "options": ["Option A", "Option B", "Option C", "Option D"],
            "correct_answer_index": correct_index,
        }
        for i in range(count)
    ]


def answers_scoring(correct: int, total: int, correct_index: int = 0):
    """An answer vector with exactly ``correct`` right answers."""
    wrong_index = (correct_index + 1) % 4
    return [correct_index] * correct + [wrong_index] * (total - correct)


@pytest.fixture
async def engine():
    engine = create_engine_for("sqlite+aiosqlite://", poolclass=StaticPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def create_user(db):
    counter = itertools.count(1)

    async def _create(role: UserRole = UserRole.EMPLOYEE, subject: str = None, **kwargs) -> User:
        n = next(counter)
        subject = subject or f"idp|user-{n}"
        user = User(
            subject=subject,
            email=kwargs.pop("email", f"user{n}@example.com"),
            first_name=kwargs.pop("first_name", "Test"),
            last_name=kwargs.pop("last_name", f"User{n}"),
            role=role,
            **kwargs,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _create


@pytest.fixture
async def admin(create_user):
    return await create_user(role=UserRole.ADMIN, subject="idp|admin", first_name="Ada", last_name="Admin")


@pytest.fixture
async def employee(create_user):
    return await create_user(role=UserRole.EMPLOYEE, subject="idp|employee", first_name="Eve", last_name="Employee")


@pytest.fixture
def admin_identity(admin):
    return identity_for(admin)


@pytest.fixture
def employee_identity(employee):
    return identity_for(employee)


@pytest.fixture
def create_quiz(db):
    async def _create(question_count: int = 4, pass_threshold: int = None, title: str = None) -> Quiz:
        quiz = Quiz(
            title=title or f"Quiz with {question_count} questions",
            questions=make_questions(question_count),
            pass_threshold=pass_threshold,
        )
        db.add(quiz)
        await db.commit()
        await db.refresh(quiz)
        return quiz

    return _create


@pytest.fixture
def create_module(db):
    async def _create(
        quiz: Quiz = None,
        title: str = "Phishing Basics",
        is_required: bool = False,
        status: ContentStatus = ContentStatus.ACTIVE,
        category: str = "phishing",
    ) -> TrainingModule:
        module = TrainingModule(
            title=title,
            description=f"{title} module",
            category=category,
            is_required=is_required,
            status=status,
            quiz_id=quiz.id if quiz is not None else None,
            created_by="idp|admin",
        )
        db.add(module)
        await db.commit()
        await db.refresh(module)
        return module

    return _create


@pytest.fixture
def create_template(db):
    async def _create(**kwargs) -> CertificationTemplate:
        values = {
            "title": "Security Awareness Certificate",
            "description": "Annual security awareness certification",
            "category": "security_awareness",
            "required_modules": [],
            "required_quizzes": [],
            "is_active": True,
            "auto_award": True,
            "created_by": "idp|admin",
        }
        values.update(kwargs)
        template = CertificationTemplate(**values)
        db.add(template)
        await db.commit()
        await db.refresh(template)
        return template

    return _create
