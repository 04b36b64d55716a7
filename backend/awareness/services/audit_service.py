"""
Role Audit Service

Appends immutable role-change records and serves them back to admins.
"""

import asyncio
from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, desc, asc
import logging

from awareness.core.config import settings
from awareness.core.database import upsert_insert
from awareness.core.security import CallerIdentity
from awareness.core.timeutils import utcnow
from awareness.models.audit_log import AuditChainHead, RoleAuditLog
from awareness.models.user import User, UserRole
from awareness.security.access_control import ADMIN_ONLY, require_role


logger = logging.getLogger(__name__)

DEFAULT_REASON = "No reason provided"
ROLE_CHAIN = "role_changes"
MAX_APPEND_ATTEMPTS = 5


class RoleAuditService:
    """
    Role audit trail with chained integrity hashes.

    Entries are only ever inserted. ``record_role_change`` commits the entry
    in the same transaction as the caller's pending role update, and the
    ``audit_chain_heads`` row tracks the newest hash across processes.
    """

    def __init__(self):
        self._chain_lock = asyncio.Lock()

    async def record_role_change(
        self,
        db: AsyncSession,
        target: User,
        performed_by: User,
        previous_role: Optional[UserRole],
        new_role: UserRole,
        reason: Optional[str] = None,
        action: str = "role_changed",
    ) -> RoleAuditLog:
        """
        Append an entry and commit it together with the caller's pending changes.

        The chain head is advanced with a compare-and-set on its stored hash,
        so a writer that read a stale head retries against the new one
        instead of forking the chain. The commit happens before the
        in-process lock is released.
        """
        async with self._chain_lock:
            for attempt in range(1, MAX_APPEND_ATTEMPTS + 1):
                previous_hash = await self._read_chain_head(db)

                entry = RoleAuditLog(
                    target_user_id=target.id,
                    target_subject=target.subject,
                    performed_by_id=performed_by.id,
                    performed_by_subject=performed_by.subject,
                    action=action,
                    previous_role=previous_role,
                    new_role=new_role,
                    reason=reason or DEFAULT_REASON,
                    timestamp=utcnow(),
                    previous_hash=previous_hash,
                )
                entry.integrity_hash = entry.calculate_integrity_hash()

                if await self._advance_chain_head(db, previous_hash, entry.integrity_hash):
                    break
                logger.warning(f"Role audit chain head moved, retrying append (attempt {attempt})")
            else:
                raise RuntimeError("Could not append to the role audit chain")

            db.add(entry)
            await db.commit()

        logger.info(
            f"Role audit: {performed_by.subject} changed {target.subject} "
            f"from {entry.previous_role} to {entry.new_role}"
        )
        return entry

    async def list_entries(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        target_user_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[RoleAuditLog]:
        """Newest-first page of audit entries, admin only."""
        await require_role(db, identity, ADMIN_ONLY)

        page_size = min(limit or settings.AUDIT_LOG_PAGE_SIZE, settings.AUDIT_LOG_PAGE_SIZE)
        query = select(RoleAuditLog)
        if target_user_id is not None:
            query = query.where(RoleAuditLog.target_user_id == target_user_id)
        query = query.order_by(desc(RoleAuditLog.timestamp), desc(RoleAuditLog.id)).limit(page_size)

        result = await db.execute(query)
        return list(result.scalars().all())

    async def verify_chain(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
    ) -> Dict[str, Any]:
        """Recompute every hash and check each link to its predecessor."""
        await require_role(db, identity, ADMIN_ONLY)

        result = await db.execute(
            select(RoleAuditLog)
            .order_by(asc(RoleAuditLog.id))
            .execution_options(populate_existing=True)
        )
        entries = result.scalars().all()

        previous_hash = None
        for entry in entries:
            if not entry.verify_integrity() or entry.previous_hash != previous_hash:
                logger.error(f"Role audit chain broken at entry {entry.id}")
                return {"verified": False, "entries_checked": len(entries), "broken_at": entry.id}
            previous_hash = entry.integrity_hash

        return {"verified": True, "entries_checked": len(entries), "broken_at": None}

    async def _get_last_hash(self, db: AsyncSession) -> Optional[str]:
        result = await db.execute(
            select(RoleAuditLog.integrity_hash).order_by(desc(RoleAuditLog.id)).limit(1)
        )
        return result.scalar_one_or_none()

    async def _read_chain_head(self, db: AsyncSession) -> Optional[str]:
        result = await db.execute(
            select(AuditChainHead.last_hash)
            .where(AuditChainHead.name == ROLE_CHAIN)
            .with_for_update()
        )
        row = result.first()
        if row is not None:
            return row.last_hash

        # First append on this database: seed the head from the newest entry
        last_hash = await self._get_last_hash(db)
        stmt = upsert_insert(db, AuditChainHead.__table__).values(
            name=ROLE_CHAIN,
            last_hash=last_hash,
            updated_at=utcnow(),
        ).on_conflict_do_nothing(index_elements=["name"])
        await db.execute(stmt)
        return last_hash

    async def _advance_chain_head(
        self,
        db: AsyncSession,
        previous_hash: Optional[str],
        new_hash: str,
    ) -> bool:
        result = await db.execute(
            update(AuditChainHead)
            .where(
                AuditChainHead.name == ROLE_CHAIN,
                AuditChainHead.last_hash.is_not_distinct_from(previous_hash),
            )
            .values(last_hash=new_hash, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


# Global instance
role_audit_service = RoleAuditService()
