"""
Role-Based Access Control (RBAC)

Identity resolution and the authorization guard every mutation goes through.
"""

from typing import Dict, FrozenSet, Iterable, Optional, Set
from enum import Enum
import logging
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from awareness.core.exceptions import ComplianceError, Forbidden, Unauthenticated, UserNotFound
from awareness.core.security import CallerIdentity
from awareness.models.user import User, UserRole


logger = logging.getLogger(__name__)


class Permission(str, Enum):
    """System capabilities granted to roles."""

    # User management
    MANAGE_USERS = "manage_users"
    VIEW_ALL_USERS = "view_all_users"
    ASSIGN_ROLES = "assign_roles"
    VIEW_TEAM_USERS = "view_team_users"

    # Content management
    CREATE_QUIZ = "create_quiz"
    EDIT_ANY_QUIZ = "edit_any_quiz"
    DELETE_ANY_QUIZ = "delete_any_quiz"
    VIEW_ALL_QUIZZES = "view_all_quizzes"
    MANAGE_TRAINING = "manage_training"
    MANAGE_POLICIES = "manage_policies"

    # Learning and assessment
    TAKE_QUIZ = "take_quiz"
    VIEW_OWN_RESULTS = "view_own_results"

    # Analytics and reporting
    VIEW_ALL_RESULTS = "view_all_results"
    VIEW_TEAM_RESULTS = "view_team_results"
    VIEW_CLASS_RESULTS = "view_class_results"
    EXPORT_DATA = "export_data"
    VIEW_ANALYTICS = "view_analytics"

    # HR and compliance
    MANAGE_COMPLIANCE = "manage_compliance"
    VIEW_HR_REPORTS = "view_hr_reports"
    MANAGE_CERTIFICATIONS = "manage_certifications"

    # Security
    MANAGE_SECURITY_POLICIES = "manage_security_policies"
    VIEW_SECURITY_INCIDENTS = "view_security_incidents"
    AUDIT_SYSTEM = "audit_system"

    # System administration
    MANAGE_SYSTEM = "manage_system"
    MANAGE_SETTINGS = "manage_settings"


_LEARNER: FrozenSet[Permission] = frozenset({
    Permission.VIEW_ALL_QUIZZES,
    Permission.TAKE_QUIZ,
    Permission.VIEW_OWN_RESULTS,
})

ROLE_PERMISSIONS: Dict[UserRole, FrozenSet[Permission]] = {
    UserRole.ADMIN: frozenset(Permission),
    UserRole.MANAGER: _LEARNER | {
        Permission.VIEW_TEAM_USERS,
        Permission.CREATE_QUIZ,
        Permission.EDIT_ANY_QUIZ,
        Permission.MANAGE_TRAINING,
        Permission.VIEW_TEAM_RESULTS,
        Permission.VIEW_CLASS_RESULTS,
        Permission.EXPORT_DATA,
        Permission.VIEW_ANALYTICS,
    },
    UserRole.HR: _LEARNER | {
        Permission.VIEW_ALL_USERS,
        Permission.MANAGE_COMPLIANCE,
        Permission.VIEW_HR_REPORTS,
        Permission.MANAGE_CERTIFICATIONS,
        Permission.MANAGE_TRAINING,
        Permission.VIEW_ALL_RESULTS,
        Permission.EXPORT_DATA,
    },
    UserRole.SECURITY_OFFICER: _LEARNER | {
        Permission.MANAGE_SECURITY_POLICIES,
        Permission.VIEW_SECURITY_INCIDENTS,
        Permission.AUDIT_SYSTEM,
        Permission.MANAGE_POLICIES,
        Permission.VIEW_ALL_RESULTS,
        Permission.EXPORT_DATA,
        Permission.VIEW_ANALYTICS,
    },
    UserRole.TEACHER: _LEARNER | {
        Permission.CREATE_QUIZ,
        Permission.EDIT_ANY_QUIZ,
        Permission.DELETE_ANY_QUIZ,
        Permission.MANAGE_TRAINING,
        Permission.VIEW_CLASS_RESULTS,
        Permission.EXPORT_DATA,
        Permission.VIEW_ANALYTICS,
    },
    UserRole.EMPLOYEE: _LEARNER,
    UserRole.STUDENT: _LEARNER,
}

ADMIN_ONLY: FrozenSet[UserRole] = frozenset({UserRole.ADMIN})


def permissions_for(role: UserRole) -> FrozenSet[Permission]:
    return ROLE_PERMISSIONS.get(role, frozenset())


def roles_with(permission: Permission) -> Set[UserRole]:
    """All roles whose capability set contains ``permission``."""
    return {role for role, granted in ROLE_PERMISSIONS.items() if permission in granted}


async def get_user_by_subject(db: AsyncSession, subject: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.subject == subject))
    return result.scalar_one_or_none()


async def get_current_user(db: AsyncSession, identity: Optional[CallerIdentity]) -> User:
    """
    Resolve the caller to a persisted User.

    Raises:
        Unauthenticated: no identity on the request
        UserNotFound: identity is valid but the User was never provisioned
    """
    if identity is None:
        raise Unauthenticated()

    user = await get_user_by_subject(db, identity.subject)
    if user is None:
        raise UserNotFound(identity.subject)
    return user


def require_identity(identity: Optional[CallerIdentity]) -> CallerIdentity:
    if identity is None:
        raise Unauthenticated()
    return identity


async def require_role(
    db: AsyncSession,
    identity: Optional[CallerIdentity],
    allowed_roles: Iterable[UserRole],
) -> User:
    """Resolve the caller and reject unless their role is in ``allowed_roles``."""
    allowed = frozenset(allowed_roles)
    user = await get_current_user(db, identity)

    if user.role not in allowed:
        logger.warning(
            f"Access denied for {user.subject} (role {user.role.value}); "
            f"required one of {sorted(role.value for role in allowed)}"
        )
        raise Forbidden(allowed)

    return user


async def require_permission(
    db: AsyncSession,
    identity: Optional[CallerIdentity],
    permission: Permission,
) -> User:
    return await require_role(db, identity, roles_with(permission))


async def has_role(
    db: AsyncSession,
    identity: Optional[CallerIdentity],
    role: UserRole,
) -> bool:
    """Non-throwing role check; resolution failures count as False."""
    try:
        user = await get_current_user(db, identity)
    except ComplianceError:
        return False
    return user.role == role


async def has_permission(
    db: AsyncSession,
    identity: Optional[CallerIdentity],
    permission: Permission,
) -> bool:
    try:
        user = await get_current_user(db, identity)
    except ComplianceError:
        return False
    return permission in permissions_for(user.role)
