"""
Security policies and their per-version acknowledgments.
"""

from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError
import logging

from awareness.core.exceptions import AlreadyAcknowledged, ConflictError, NotFound
from awareness.core.security import CallerIdentity
from awareness.core.timeutils import utcnow
from awareness.models.policy import Policy, PolicyAcknowledgment
from awareness.models.training import ContentStatus
from awareness.schemas.policy import PolicyCreate, PolicyUpdate
from awareness.security.access_control import ADMIN_ONLY, get_current_user, require_role


logger = logging.getLogger(__name__)


class PolicyService:

    async def create_policy(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        data: PolicyCreate,
    ) -> Policy:
        admin = await require_role(db, identity, ADMIN_ONLY)

        values = data.model_dump()
        values["effective_date"] = values.get("effective_date") or utcnow()
        policy = Policy(**values, status=ContentStatus.DRAFT, created_by=admin.subject)
        db.add(policy)
        await db.commit()
        await db.refresh(policy)

        logger.info(f"Policy {policy.id} '{policy.title}' v{policy.version} created by {admin.subject}")
        return policy

    async def update_policy(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        policy_id: int,
        data: PolicyUpdate,
    ) -> Policy:
        await require_role(db, identity, ADMIN_ONLY)
        policy = await self._get_policy(db, policy_id)

        for field_name, value in data.model_dump().items():
            if field_name == "effective_date" and value is None:
                continue
            setattr(policy, field_name, value)
        policy.updated_at = utcnow()

        await db.commit()
        await db.refresh(policy)
        return policy

    async def approve_policy(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        policy_id: int,
    ) -> Policy:
        admin = await require_role(db, identity, ADMIN_ONLY)
        policy = await self._get_policy(db, policy_id)

        policy.status = ContentStatus.ACTIVE
        policy.approved_by = admin.subject
        policy.approved_at = utcnow()
        await db.commit()
        await db.refresh(policy)

        logger.info(f"Policy {policy.id} approved by {admin.subject}")
        return policy

    async def delete_policy(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        policy_id: int,
    ) -> None:
        """Deleting a policy removes its acknowledgments with it."""
        admin = await require_role(db, identity, ADMIN_ONLY)
        policy = await self._get_policy(db, policy_id)
        await db.execute(delete(PolicyAcknowledgment).where(PolicyAcknowledgment.policy_id == policy_id))
        await db.delete(policy)
        await db.commit()
        logger.info(f"Policy {policy_id} deleted by {admin.subject}")

    async def list_active_policies(self, db: AsyncSession) -> List[Policy]:
        result = await db.execute(
            select(Policy)
            .where(Policy.status == ContentStatus.ACTIVE)
            .order_by(Policy.effective_date.desc(), Policy.id.desc())
        )
        return list(result.scalars().all())

    async def list_all_policies(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
    ) -> List[Policy]:
        await require_role(db, identity, ADMIN_ONLY)
        result = await db.execute(select(Policy).order_by(Policy.id))
        return list(result.scalars().all())

    async def acknowledge_policy(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        policy_id: int,
        method: str = "digital_signature",
        notes: Optional[str] = None,
    ) -> PolicyAcknowledgment:
        """
        Record that the caller accepted the policy's current version.

        Raises:
            NotFound: policy missing
            ConflictError: policy is not active
            AlreadyAcknowledged: this version was already acknowledged
        """
        user = await get_current_user(db, identity)
        user_id, subject = user.id, user.subject
        policy = await self._get_policy(db, policy_id)
        if policy.status != ContentStatus.ACTIVE:
            raise ConflictError("Only active policies can be acknowledged", {"policy_id": policy_id})
        version = policy.version

        existing = await db.execute(
            select(PolicyAcknowledgment.id).where(
                PolicyAcknowledgment.policy_id == policy_id,
                PolicyAcknowledgment.user_id == user_id,
                PolicyAcknowledgment.acknowledged_version == version,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise AlreadyAcknowledged(policy_id, version)

        acknowledgment = PolicyAcknowledgment(
            policy_id=policy_id,
            user_id=user_id,
            acknowledged_version=version,
            acknowledged_at=utcnow(),
            method=method or "digital_signature",
            notes=notes,
        )
        db.add(acknowledgment)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise AlreadyAcknowledged(policy_id, version)

        await db.refresh(acknowledgment)
        logger.info(f"Policy {policy_id} v{version} acknowledged by {subject}")
        return acknowledgment

    async def list_acknowledgments(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        policy_id: Optional[int] = None,
    ) -> List[PolicyAcknowledgment]:
        await require_role(db, identity, ADMIN_ONLY)
        query = select(PolicyAcknowledgment)
        if policy_id is not None:
            query = query.where(PolicyAcknowledgment.policy_id == policy_id)
        result = await db.execute(query.order_by(PolicyAcknowledgment.acknowledged_at.desc()))
        return list(result.scalars().all())

    async def get_my_acknowledgments(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
    ) -> List[PolicyAcknowledgment]:
        user = await get_current_user(db, identity)
        result = await db.execute(
            select(PolicyAcknowledgment)
            .where(PolicyAcknowledgment.user_id == user.id)
            .order_by(PolicyAcknowledgment.acknowledged_at.desc())
        )
        return list(result.scalars().all())

    async def _get_policy(self, db: AsyncSession, policy_id: int) -> Policy:
        policy = await db.get(Policy, policy_id)
        if policy is None:
            raise NotFound("Policy", policy_id)
        return policy


# Global instance
policy_service = PolicyService()
