from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, JSON, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship

from awareness.core.database import Base
from awareness.core.timeutils import utcnow
from awareness.models.training import ContentStatus
from awareness.models.user import _enum_values


class Policy(Base):
    __tablename__ = "policies"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)  # Markdown
    summary = Column(Text, nullable=False, default="")
    category = Column(String(100), nullable=False, default="general_security", index=True)
    version = Column(String(20), nullable=False, default="1.0")
    effective_date = Column(DateTime, nullable=False, default=utcnow)
    expiry_date = Column(DateTime, nullable=True)
    status = Column(
        SQLEnum(ContentStatus, values_callable=_enum_values, name="policy_status"),
        nullable=False,
        default=ContentStatus.DRAFT,
        index=True,
    )
    requires_acknowledgment = Column(Boolean, nullable=False, default=True)
    acknowledgment_deadline = Column(DateTime, nullable=True)
    tags = Column(JSON, nullable=False, default=list)

    created_by = Column(String(255), nullable=False, default="unknown")
    approved_by = Column(String(255), nullable=True)
    approved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    acknowledgments = relationship(
        "PolicyAcknowledgment",
        back_populates="policy",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class PolicyAcknowledgment(Base):
    __tablename__ = "policy_acknowledgments"

    id = Column(Integer, primary_key=True, index=True)
    policy_id = Column(Integer, ForeignKey("policies.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    acknowledged_version = Column(String(20), nullable=False)
    acknowledged_at = Column(DateTime, nullable=False, default=utcnow)
    method = Column(String(50), nullable=False, default="digital_signature")
    notes = Column(Text, nullable=True)

    policy = relationship("Policy", back_populates="acknowledgments")

    __table_args__ = (
        UniqueConstraint("policy_id", "user_id", "acknowledged_version", name="uq_policy_ack_version"),
    )
