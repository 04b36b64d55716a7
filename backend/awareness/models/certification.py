from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, JSON, Index, Enum as SQLEnum, text
from sqlalchemy.orm import relationship
import enum

from awareness.core.database import Base
from awareness.core.timeutils import utcnow
from awareness.models.user import _enum_values


class CertificationStatus(str, enum.Enum):
    """Persisted certificate states. Expiry is derived, never stored."""
    ACTIVE = "active"
    REVOKED = "revoked"


class EffectiveStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


class OverallScoreScope(str, enum.Enum):
    ALL_RESULTS = "all_results"
    REQUIRED_QUIZZES = "required_quizzes"


class CertificationTemplate(Base):
    __tablename__ = "certification_templates"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(100), nullable=False, index=True)
    certificate_type = Column(String(50), nullable=False, default="completion")

    required_modules = Column(JSON, nullable=False, default=list)
    required_quizzes = Column(JSON, nullable=False, default=list)
    minimum_overall_score = Column(Integer, nullable=True)
    # Falls back to settings.OVERALL_SCORE_SCOPE when NULL
    overall_score_scope = Column(
        SQLEnum(OverallScoreScope, values_callable=_enum_values, name="overall_score_scope"),
        nullable=True,
    )
    validity_period = Column(Integer, nullable=True)  # days
    compliance_framework = Column(JSON, nullable=False, default=list)
    credits_awarded = Column(Integer, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    auto_award = Column(Boolean, nullable=False, default=False)

    created_by = Column(String(255), nullable=False, default="unknown")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Certification(Base):
    """
    An issued certificate.

    Template fields are copied at issuance so later template edits never
    alter certificates that were already issued.
    """
    __tablename__ = "certifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    template_id = Column(Integer, ForeignKey("certification_templates.id"), nullable=True)

    # Snapshot of the template
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(100), nullable=False, index=True)
    certificate_type = Column(String(50), nullable=False, default="completion")
    required_modules = Column(JSON, nullable=False, default=list)
    required_quizzes = Column(JSON, nullable=False, default=list)
    minimum_overall_score = Column(Integer, nullable=True)
    compliance_framework = Column(JSON, nullable=False, default=list)
    credits_earned = Column(Integer, nullable=True)

    # Lifecycle
    issued_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=True, index=True)
    renewal_notification_sent = Column(Boolean, nullable=False, default=False)
    status = Column(
        SQLEnum(CertificationStatus, values_callable=_enum_values, name="certification_status"),
        nullable=False,
        default=CertificationStatus.ACTIVE,
        index=True,
    )
    certificate_id = Column(String(100), unique=True, nullable=False)
    verification_code = Column(String(64), unique=True, nullable=False, index=True)
    issued_by = Column(String(255), nullable=False)

    # {"final_score", "attempt_count", "special_notes"}
    award_metadata = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="certifications")
    template = relationship("CertificationTemplate")

    __table_args__ = (
        # At most one active certificate per (user, title)
        Index(
            "uq_certifications_user_title_active",
            "user_id",
            "title",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    def effective_status(self, now: Optional[datetime] = None) -> EffectiveStatus:
        return effective_status(self, now)


def effective_status(cert: Certification, now: Optional[datetime] = None) -> EffectiveStatus:
    """Derive the read-time status from the persisted fields."""
    if cert.status == CertificationStatus.REVOKED:
        return EffectiveStatus.REVOKED
    now = now or utcnow()
    if cert.expires_at is not None and cert.expires_at <= now:
        return EffectiveStatus.EXPIRED
    return EffectiveStatus.ACTIVE
