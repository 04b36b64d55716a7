"""
User provisioning, role assignment and the one-time admin bootstrap.
"""

from typing import Any, Dict, List, Optional, Tuple, Union
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
import logging

from awareness.core.exceptions import Forbidden, NotFound, ValidationError
from awareness.core.security import CallerIdentity
from awareness.models.user import SystemBootstrap, User, UserRole
from awareness.security.access_control import (
    ADMIN_ONLY,
    get_user_by_subject,
    require_identity,
    require_role,
)
from awareness.services.audit_service import role_audit_service


logger = logging.getLogger(__name__)

ADMIN_BOOTSTRAP_KEY = "admin"


def coerce_role(value: Union[str, UserRole]) -> UserRole:
    try:
        return UserRole(value)
    except ValueError:
        raise ValidationError(
            f"Invalid role: {value}",
            {"allowed": [role.value for role in UserRole]},
        )


async def sync_user(db: AsyncSession, identity: Optional[CallerIdentity]) -> Tuple[User, str]:
    """
    Create or refresh the User record for the caller.

    New users always start as employees; role is never touched here.
    """
    identity = require_identity(identity)
    user = await get_user_by_subject(db, identity.subject)

    if user is None:
        user = User(
            subject=identity.subject,
            email=identity.email or "",
            first_name=identity.given_name,
            last_name=identity.family_name,
            role=UserRole.EMPLOYEE,
        )
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            # Concurrent sign-up sync for the same subject
            await db.rollback()
            user = await get_user_by_subject(db, identity.subject)
            return user, "updated"
        await db.refresh(user)
        logger.info(f"Provisioned user {user.subject} as {user.role.value}")
        return user, "created"

    if identity.email:
        user.email = identity.email
    if identity.given_name is not None:
        user.first_name = identity.given_name
    if identity.family_name is not None:
        user.last_name = identity.family_name
    await db.commit()
    await db.refresh(user)
    return user, "updated"


async def bootstrap_admin(db: AsyncSession, identity: Optional[CallerIdentity]) -> User:
    """
    One-time provisioning of the first administrator.

    Succeeds only while no admin exists and the bootstrap has not run.
    Calling it again as the bootstrapped admin returns that admin unchanged.
    """
    identity = require_identity(identity)

    user = await get_user_by_subject(db, identity.subject)
    if user is None:
        user, _ = await sync_user(db, identity)

    existing = await db.execute(
        select(SystemBootstrap).where(SystemBootstrap.key == ADMIN_BOOTSTRAP_KEY)
    )
    bootstrap_row = existing.scalar_one_or_none()
    if bootstrap_row is not None:
        if bootstrap_row.user_id == user.id and user.role == UserRole.ADMIN:
            return user
        raise Forbidden(message="Admin bootstrap has already been completed")

    admin_count = await db.execute(
        select(func.count(User.id)).where(User.role == UserRole.ADMIN)
    )
    if (admin_count.scalar() or 0) > 0:
        raise Forbidden(message="An administrator already exists")

    previous_role = user.role
    db.add(SystemBootstrap(key=ADMIN_BOOTSTRAP_KEY, user_id=user.id))
    user.role = UserRole.ADMIN
    try:
        await db.flush()
        await role_audit_service.record_role_change(
            db,
            target=user,
            performed_by=user,
            previous_role=previous_role,
            new_role=UserRole.ADMIN,
            reason="Initial admin bootstrap",
            action="admin_bootstrap",
        )
    except IntegrityError:
        await db.rollback()
        raise Forbidden(message="Admin bootstrap has already been completed")

    await db.refresh(user)
    logger.info(f"Bootstrapped {user.subject} as the first administrator")
    return user


async def update_user_role(
    db: AsyncSession,
    identity: Optional[CallerIdentity],
    user_id: int,
    new_role: Union[str, UserRole],
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Admin-only role change; writes exactly one audit entry per call."""
    admin = await require_role(db, identity, ADMIN_ONLY)
    new_role = coerce_role(new_role)

    target = await db.get(User, user_id)
    if target is None:
        raise NotFound("User", user_id)

    previous_role = target.role
    target.role = new_role

    await role_audit_service.record_role_change(
        db,
        target=target,
        performed_by=admin,
        previous_role=previous_role,
        new_role=new_role,
        reason=reason,
    )

    logger.info(f"User {target.subject} role updated from {previous_role.value} to {new_role.value}")
    return {
        "success": True,
        "message": f"User role updated from {previous_role.value} to {new_role.value}",
        "previous_role": previous_role,
        "new_role": new_role,
    }


async def list_users(
    db: AsyncSession,
    identity: Optional[CallerIdentity],
    role: Optional[Union[str, UserRole]] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[User]:
    await require_role(db, identity, ADMIN_ONLY)

    query = select(User)
    if role is not None:
        query = query.where(User.role == coerce_role(role))
    query = query.order_by(User.created_at.desc(), User.id.desc()).offset(offset).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())


async def get_user(db: AsyncSession, identity: Optional[CallerIdentity], user_id: int) -> User:
    await require_role(db, identity, ADMIN_ONLY)
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User", user_id)
    return user
