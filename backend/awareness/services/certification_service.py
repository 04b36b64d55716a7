"""
Certification Issuer

Allocates certificate identifiers and persists issuance, revocation and
renewal. The one-active-certificate rule per (user, title) is held by a
partial unique index; the per-tuple lock below only narrows the window in
which two awards from the same process reach the database together.
"""

import asyncio
import weakref
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
import logging

from awareness.core.config import settings
from awareness.core.exceptions import DuplicateActiveCertificate, NotFound, ValidationError
from awareness.core.security import CallerIdentity, generate_certificate_id, generate_verification_code
from awareness.core.timeutils import days_from, utcnow
from awareness.models.certification import (
    Certification,
    CertificationStatus,
    CertificationTemplate,
    EffectiveStatus,
    effective_status,
)
from awareness.models.progress import QuizResult
from awareness.models.training import Quiz, TrainingModule
from awareness.models.user import User
from awareness.schemas.certification import CertificationTemplateCreate
from awareness.security.access_control import ADMIN_ONLY, get_current_user, require_role
from awareness.services.eligibility import evaluate_eligibility, load_learner_state
from awareness.services.scoring import mean, round2


logger = logging.getLogger(__name__)

AUTO_AWARD_ISSUER = "system_auto_award"
AUTO_AWARD_NOTE = "Automatically awarded upon meeting requirements"
MAX_ISSUE_ATTEMPTS = 3


def _template_snapshot(template: CertificationTemplate) -> Dict[str, Any]:
    """Plain copy of the template fields a certificate carries."""
    return {
        "template_id": template.id,
        "title": template.title,
        "description": template.description,
        "category": template.category,
        "certificate_type": template.certificate_type,
        "required_modules": list(template.required_modules or []),
        "required_quizzes": list(template.required_quizzes or []),
        "minimum_overall_score": template.minimum_overall_score,
        "compliance_framework": list(template.compliance_framework or []),
        "credits_earned": template.credits_awarded,
        "validity_period": template.validity_period,
    }


class CertificationService:
    """Issues, revokes and renews certificates."""

    def __init__(self):
        # Entries vanish once no award or renewal holds or awaits the lock
        self._award_locks = weakref.WeakValueDictionary()

    def _award_lock(self, user_id: int, title: str) -> asyncio.Lock:
        """Per-(user, title) lock, shared by every coroutine currently holding a reference."""
        key = (user_id, title)
        lock = self._award_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._award_locks[key] = lock
        return lock

    # Templates

    async def create_template(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        data: CertificationTemplateCreate,
    ) -> CertificationTemplate:
        admin = await require_role(db, identity, ADMIN_ONLY)

        await self._ensure_exist(db, TrainingModule, data.required_modules, "Training module")
        await self._ensure_exist(db, Quiz, data.required_quizzes, "Quiz")

        template = CertificationTemplate(
            title=data.title,
            description=data.description,
            category=data.category,
            certificate_type=data.certificate_type,
            required_modules=list(data.required_modules),
            required_quizzes=list(data.required_quizzes),
            minimum_overall_score=data.minimum_overall_score,
            overall_score_scope=data.overall_score_scope,
            validity_period=data.validity_period,
            compliance_framework=list(data.compliance_framework),
            credits_awarded=data.credits_awarded,
            auto_award=data.auto_award,
            is_active=True,
            created_by=admin.subject,
        )
        db.add(template)
        await db.commit()
        await db.refresh(template)

        logger.info(f"Certification template {template.id} '{template.title}' created by {admin.subject}")
        return template

    async def set_template_active(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        template_id: int,
        is_active: bool,
    ) -> CertificationTemplate:
        await require_role(db, identity, ADMIN_ONLY)
        template = await self._get_template(db, template_id)
        template.is_active = is_active
        await db.commit()
        await db.refresh(template)
        return template

    async def list_active_templates(self, db: AsyncSession) -> List[CertificationTemplate]:
        result = await db.execute(
            select(CertificationTemplate)
            .where(CertificationTemplate.is_active.is_(True))
            .order_by(CertificationTemplate.id)
        )
        return list(result.scalars().all())

    async def list_all_templates(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
    ) -> List[CertificationTemplate]:
        await require_role(db, identity, ADMIN_ONLY)
        result = await db.execute(select(CertificationTemplate).order_by(CertificationTemplate.id))
        return list(result.scalars().all())

    # Issuance

    async def award_certification(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        user_id: int,
        template_id: int,
        issued_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Certification:
        """
        Manually award a certificate (admin only).

        Raises:
            NotFound: template or user missing
            DuplicateActiveCertificate: the user already holds an active
                certificate with the template's title
        """
        admin = await require_role(db, identity, ADMIN_ONLY)
        admin_subject = admin.subject

        template = await self._get_template(db, template_id)
        if await db.get(User, user_id) is None:
            raise NotFound("User", user_id)

        snapshot = _template_snapshot(template)
        final_score, attempt_count = await self._required_quiz_stats(db, user_id, snapshot["required_quizzes"])

        cert = await self._issue(
            db,
            user_id=user_id,
            snapshot=snapshot,
            issued_by=issued_by or admin_subject,
            metadata={
                "final_score": final_score,
                "attempt_count": attempt_count,
                "special_notes": notes,
            },
        )
        logger.info(f"Certificate {cert.certificate_id} '{cert.title}' awarded to user {user_id} by {admin_subject}")
        return cert

    async def check_and_award_eligible(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        user_id: Optional[int] = None,
    ) -> List[Certification]:
        """
        Award every active auto-award template the user now qualifies for.

        Any user may sweep for themselves; sweeping for someone else is an
        admin action. Returns only the certificates created by this call.
        """
        caller = await get_current_user(db, identity)
        target_id = caller.id if user_id is None else user_id
        if target_id != caller.id:
            await require_role(db, identity, ADMIN_ONLY)
            if await db.get(User, target_id) is None:
                raise NotFound("User", target_id)

        result = await db.execute(
            select(CertificationTemplate)
            .where(
                CertificationTemplate.is_active.is_(True),
                CertificationTemplate.auto_award.is_(True),
            )
            .order_by(CertificationTemplate.id)
        )
        templates = list(result.scalars().all())
        if not templates:
            return []

        held = await self._active_titles(db, target_id)
        progress, quiz_results = await load_learner_state(db, target_id)

        # Evaluate everything before the first write so no rollback can
        # expire the rows being read
        pending = []
        for template in templates:
            if template.title in held:
                continue
            if evaluate_eligibility(template, progress, quiz_results).eligible:
                snapshot = _template_snapshot(template)
                relevant = [r.percentage for r in quiz_results if r.quiz_id in snapshot["required_quizzes"]]
                pending.append((snapshot, round2(mean(relevant)), len(relevant)))

        awarded = []
        for snapshot, final_score, attempt_count in pending:
            if snapshot["title"] in held:
                continue
            try:
                cert = await self._issue(
                    db,
                    user_id=target_id,
                    snapshot=snapshot,
                    issued_by=AUTO_AWARD_ISSUER,
                    metadata={
                        "final_score": final_score,
                        "attempt_count": attempt_count,
                        "special_notes": AUTO_AWARD_NOTE,
                    },
                )
            except DuplicateActiveCertificate:
                logger.warning(f"Auto-award skipped '{snapshot['title']}' for user {target_id}: already active")
                continue
            held.add(snapshot["title"])
            awarded.append(cert)
            logger.info(f"Auto-awarded {cert.certificate_id} '{cert.title}' to user {target_id}")

        return awarded

    async def _issue(
        self,
        db: AsyncSession,
        user_id: int,
        snapshot: Dict[str, Any],
        issued_by: str,
        metadata: Dict[str, Any],
    ) -> Certification:
        title = snapshot["title"]

        async with self._award_lock(user_id, title):
            for attempt in range(1, MAX_ISSUE_ATTEMPTS + 1):
                if await self._has_active(db, user_id, title):
                    logger.warning(f"Duplicate award rejected for user {user_id} '{title}'")
                    raise DuplicateActiveCertificate(user_id, title)

                now = utcnow()
                cert = Certification(
                    user_id=user_id,
                    template_id=snapshot["template_id"],
                    title=title,
                    description=snapshot["description"],
                    category=snapshot["category"],
                    certificate_type=snapshot["certificate_type"],
                    required_modules=snapshot["required_modules"],
                    required_quizzes=snapshot["required_quizzes"],
                    minimum_overall_score=snapshot["minimum_overall_score"],
                    compliance_framework=snapshot["compliance_framework"],
                    credits_earned=snapshot["credits_earned"],
                    issued_at=now,
                    expires_at=days_from(now, snapshot["validity_period"]),
                    renewal_notification_sent=False,
                    status=CertificationStatus.ACTIVE,
                    certificate_id=generate_certificate_id(),
                    verification_code=generate_verification_code(),
                    issued_by=issued_by,
                    award_metadata=metadata,
                )
                db.add(cert)
                try:
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    if await self._has_active(db, user_id, title):
                        logger.warning(f"Concurrent award for user {user_id} '{title}' lost the race")
                        raise DuplicateActiveCertificate(user_id, title)
                    # Identifier collision; draw fresh ones
                    logger.warning(f"Certificate identifier collision on attempt {attempt}, retrying")
                    continue

                await db.refresh(cert)
                return cert

        raise RuntimeError("Could not allocate unique certificate identifiers")

    # Lifecycle transitions

    async def revoke_certification(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        certification_id: int,
        reason: str,
    ) -> Certification:
        """Mark revoked and append the reason to the notes. The row stays."""
        admin = await require_role(db, identity, ADMIN_ONLY)
        if not reason or not reason.strip():
            raise ValidationError("A revocation reason is required")

        cert = await self._get_certification(db, certification_id)

        metadata = dict(cert.award_metadata or {})
        previous_notes = metadata.get("special_notes") or ""
        metadata["special_notes"] = f"{previous_notes} REVOKED: {reason.strip()}".strip()

        cert.status = CertificationStatus.REVOKED
        cert.award_metadata = metadata
        await db.commit()
        await db.refresh(cert)

        logger.info(f"Certificate {cert.certificate_id} revoked by {admin.subject}")
        return cert

    async def renew_certification(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        certification_id: int,
        validity_period: Optional[int] = None,
    ) -> Certification:
        """Reactivate with a fresh expiry. issued_at never moves."""
        admin = await require_role(db, identity, ADMIN_ONLY)
        days = validity_period or settings.DEFAULT_RENEWAL_VALIDITY_DAYS
        if days <= 0:
            raise ValidationError("validity_period must be a positive number of days")

        cert = await self._get_certification(db, certification_id)
        user_id, title = cert.user_id, cert.title

        async with self._award_lock(user_id, title):
            cert.status = CertificationStatus.ACTIVE
            cert.expires_at = utcnow() + timedelta(days=days)
            cert.renewal_notification_sent = False
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                # Another certificate with this title is already active
                raise DuplicateActiveCertificate(user_id, title)

        await db.refresh(cert)
        logger.info(f"Certificate {cert.certificate_id} renewed for {days} days by {admin.subject}")
        return cert

    # Reads

    async def verify_certificate(self, db: AsyncSession, verification_code: str) -> Optional[Dict[str, Any]]:
        """Public lookup. Revoked and expired certificates are still reported."""
        result = await db.execute(
            select(Certification).where(Certification.verification_code == verification_code)
        )
        cert = result.scalar_one_or_none()
        if cert is None:
            return None

        return {
            "certificate_id": cert.certificate_id,
            "title": cert.title,
            "issued_at": cert.issued_at,
            "expires_at": cert.expires_at,
            "status": effective_status(cert),
            "issued_by": cert.issued_by,
        }

    async def get_user_certifications(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
        user_id: int,
    ) -> List[Certification]:
        caller = await get_current_user(db, identity)
        if caller.id != user_id:
            await require_role(db, identity, ADMIN_ONLY)

        result = await db.execute(
            select(Certification)
            .where(Certification.user_id == user_id)
            .order_by(Certification.issued_at.desc(), Certification.id.desc())
        )
        return list(result.scalars().all())

    async def get_all_certifications(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
    ) -> List[Certification]:
        await require_role(db, identity, ADMIN_ONLY)
        result = await db.execute(select(Certification).order_by(Certification.id))
        return list(result.scalars().all())

    async def get_certification_stats(
        self,
        db: AsyncSession,
        identity: Optional[CallerIdentity],
    ) -> Dict[str, int]:
        await require_role(db, identity, ADMIN_ONLY)

        certifications = (await db.execute(select(Certification))).scalars().all()
        templates = (await db.execute(select(CertificationTemplate))).scalars().all()

        now = utcnow()
        warning_horizon = now + timedelta(days=settings.CERTIFICATE_EXPIRY_WARNING_DAYS)
        statuses = [effective_status(cert, now) for cert in certifications]

        expiring_soon = sum(
            1 for cert, cert_status in zip(certifications, statuses)
            if cert_status == EffectiveStatus.ACTIVE
            and cert.expires_at is not None
            and cert.expires_at < warning_horizon
        )

        return {
            "total_certifications": len(certifications),
            "active_certifications": statuses.count(EffectiveStatus.ACTIVE),
            "expired_certifications": statuses.count(EffectiveStatus.EXPIRED),
            "revoked_certifications": statuses.count(EffectiveStatus.REVOKED),
            "expiring_soon": expiring_soon,
            "certificate_templates": len(templates),
            "active_templates": sum(1 for t in templates if t.is_active),
            "auto_award_templates": sum(1 for t in templates if t.auto_award),
        }

    # Helpers

    async def _get_template(self, db: AsyncSession, template_id: int) -> CertificationTemplate:
        template = await db.get(CertificationTemplate, template_id)
        if template is None:
            raise NotFound("Certification template", template_id)
        return template

    async def _get_certification(self, db: AsyncSession, certification_id: int) -> Certification:
        cert = await db.get(Certification, certification_id)
        if cert is None:
            raise NotFound("Certificate", certification_id)
        return cert

    async def _has_active(self, db: AsyncSession, user_id: int, title: str) -> bool:
        result = await db.execute(
            select(func.count(Certification.id)).where(
                Certification.user_id == user_id,
                Certification.title == title,
                Certification.status == CertificationStatus.ACTIVE,
            )
        )
        return (result.scalar() or 0) > 0

    async def _active_titles(self, db: AsyncSession, user_id: int) -> set:
        result = await db.execute(
            select(Certification.title).where(
                Certification.user_id == user_id,
                Certification.status == CertificationStatus.ACTIVE,
            )
        )
        return set(result.scalars().all())

    async def _required_quiz_stats(self, db: AsyncSession, user_id: int, quiz_ids: List[int]) -> Tuple[float, int]:
        if not quiz_ids:
            return 0.0, 0
        result = await db.execute(
            select(QuizResult.percentage).where(
                QuizResult.user_id == user_id,
                QuizResult.quiz_id.in_(quiz_ids),
            )
        )
        percentages = list(result.scalars().all())
        return round2(mean(percentages)), len(percentages)

    async def _ensure_exist(self, db: AsyncSession, model, ids: List[int], label: str) -> None:
        if not ids:
            return
        result = await db.execute(select(model.id).where(model.id.in_(ids)))
        found = set(result.scalars().all())
        for identifier in ids:
            if identifier not in found:
                raise NotFound(label, identifier)


# Global instance
certification_service = CertificationService()
