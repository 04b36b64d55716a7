from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Text, JSON, Enum as SQLEnum
from sqlalchemy.orm import relationship
import enum

from awareness.core.database import Base
from awareness.core.timeutils import utcnow
from awareness.models.user import _enum_values


class ContentStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ARCHIVED = "archived"


class ModuleType(str, enum.Enum):
    VIDEO = "video"
    DOCUMENT = "document"
    INTERACTIVE = "interactive"
    SIMULATION = "simulation"
    ASSESSMENT = "assessment"


class Difficulty(str, enum.Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class Quiz(Base):
    __tablename__ = "quizzes"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    # Ordered list of {"question_text", "options", "correct_answer_index"}
    questions = Column(JSON, nullable=False, default=list)
    # Overrides settings.DEFAULT_QUIZ_PASS_THRESHOLD when set
    pass_threshold = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    modules = relationship("TrainingModule", back_populates="quiz", passive_deletes=True)
    results = relationship("QuizResult", back_populates="quiz", passive_deletes=True)

    @property
    def question_count(self) -> int:
        return len(self.questions or [])


class TrainingModule(Base):
    __tablename__ = "training_modules"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    summary = Column(Text, nullable=True)
    module_type = Column(
        SQLEnum(ModuleType, values_callable=_enum_values, name="module_type"),
        nullable=False,
        default=ModuleType.VIDEO,
    )
    category = Column(String(100), nullable=False, default="general_security", index=True)
    difficulty = Column(
        SQLEnum(Difficulty, values_callable=_enum_values, name="module_difficulty"),
        nullable=False,
        default=Difficulty.BEGINNER,
    )
    estimated_duration = Column(Integer, nullable=False, default=30)  # minutes
    content_url = Column(String(500), nullable=False, default="")
    is_required = Column(Boolean, nullable=False, default=False, index=True)
    target_audience = Column(JSON, nullable=False, default=list)
    compliance_framework = Column(JSON, nullable=False, default=list)
    tags = Column(JSON, nullable=False, default=list)

    quiz_id = Column(Integer, ForeignKey("quizzes.id"), nullable=True, index=True)

    version = Column(String(20), nullable=False, default="1.0")
    status = Column(
        SQLEnum(ContentStatus, values_callable=_enum_values, name="module_status"),
        nullable=False,
        default=ContentStatus.DRAFT,
        index=True,
    )
    created_by = Column(String(255), nullable=False, default="unknown")
    approved_by = Column(String(255), nullable=True)
    approved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    quiz = relationship("Quiz", back_populates="modules")
