"""
Role Audit Log Model

Append-only trail of privilege changes with chained integrity hashes.
"""

import hashlib
import json
from sqlalchemy import Column, Integer, String, DateTime, Text, Index, event
from sqlalchemy.orm import validates

from awareness.core.database import Base
from awareness.core.timeutils import utcnow
from awareness.models.user import UserRole


class ImmutableAuditRecordError(RuntimeError):
    """Raised when code attempts to change or remove an audit entry."""


class RoleAuditLog(Base):
    """
    Immutable record of a role change.

    Each entry stores the hash of its predecessor so that removing or
    editing a row out-of-band breaks the chain.
    """
    __tablename__ = "role_audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    target_user_id = Column(Integer, nullable=False, index=True)
    target_subject = Column(String(255), nullable=False)
    performed_by_id = Column(Integer, nullable=False, index=True)
    performed_by_subject = Column(String(255), nullable=False)

    action = Column(String(50), nullable=False, default="role_changed")
    previous_role = Column(String(50), nullable=True)
    new_role = Column(String(50), nullable=False)
    reason = Column(Text, nullable=False)

    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)

    integrity_hash = Column(String(64), nullable=False)
    previous_hash = Column(String(64), nullable=True)

    __table_args__ = (
        Index('idx_role_audit_target_time', 'target_user_id', 'timestamp'),
    )

    @validates('action')
    def validate_action(self, key, value):
        if value not in {'role_changed', 'admin_bootstrap'}:
            raise ValueError(f"Invalid action: {value}")
        return value

    @validates('previous_role', 'new_role')
    def validate_roles(self, key, value):
        if value is None and key == 'previous_role':
            return value
        value = getattr(value, 'value', value)
        if value not in {role.value for role in UserRole}:
            raise ValueError(f"Invalid {key}: {value}")
        return value

    def calculate_integrity_hash(self) -> str:
        """SHA-256 over the fields that make up the entry."""
        hash_data = {
            'target_user_id': self.target_user_id,
            'target_subject': self.target_subject,
            'performed_by_id': self.performed_by_id,
            'performed_by_subject': self.performed_by_subject,
            'action': self.action,
            'previous_role': self.previous_role,
            'new_role': self.new_role,
            'reason': self.reason,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'previous_hash': self.previous_hash
        }
        hash_string = json.dumps(hash_data, sort_keys=True, default=str)
        return hashlib.sha256(hash_string.encode('utf-8')).hexdigest()

    def verify_integrity(self) -> bool:
        return self.calculate_integrity_hash() == self.integrity_hash


class AuditChainHead(Base):
    """
    Newest hash of a named audit chain.

    Writers lock this row before reading it, so appends from separate
    processes take turns instead of forking the chain.
    """
    __tablename__ = "audit_chain_heads"

    name = Column(String(50), primary_key=True)
    last_hash = Column(String(64), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


@event.listens_for(RoleAuditLog, "before_update")
def _refuse_audit_update(mapper, connection, target):
    raise ImmutableAuditRecordError("Role audit log entries cannot be modified")


@event.listens_for(RoleAuditLog, "before_delete")
def _refuse_audit_delete(mapper, connection, target):
    raise ImmutableAuditRecordError("Role audit log entries cannot be deleted")
