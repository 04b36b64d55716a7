from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum
from sqlalchemy.orm import relationship
import enum

from awareness.core.database import Base
from awareness.core.timeutils import utcnow


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    TEACHER = "teacher"
    HR = "hr"
    SECURITY_OFFICER = "security_officer"
    EMPLOYEE = "employee"
    STUDENT = "student"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    # Identity-provider subject id, the stable external key
    subject = Column(String(255), unique=True, index=True, nullable=False)
    email = Column(String(255), index=True, nullable=False, default="")
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    role = Column(
        SQLEnum(UserRole, values_callable=_enum_values, name="user_role"),
        nullable=False,
        default=UserRole.EMPLOYEE,
        index=True,
    )

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    progress_records = relationship("UserProgress", back_populates="user")
    quiz_results = relationship("QuizResult", back_populates="user")
    certifications = relationship("Certification", back_populates="user")

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email


class SystemBootstrap(Base):
    """One row per completed provisioning step; the unique key makes it one-time."""
    __tablename__ = "system_bootstrap"

    id = Column(Integer, primary_key=True)
    key = Column(String(50), unique=True, nullable=False)
    user_id = Column(Integer, nullable=False)
    completed_at = Column(DateTime, nullable=False, default=utcnow)
