from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON, UniqueConstraint, Index
from sqlalchemy.orm import relationship
import enum

from awareness.core.database import Base
from awareness.core.timeutils import utcnow


class CompletionMethod(str, enum.Enum):
    """How a progress row reached its current state."""
    STARTED = "started"
    COMPLETED = "completed"
    VIDEO_WATCHED = "video_watched"
    MANUAL = "manual"
    QUIZ_PASSED = "quiz_passed"
    QUIZ_ATTEMPTED = "quiz_attempted"


# Methods a learner may report when finishing a module without its quiz
MANUAL_COMPLETION_METHODS = frozenset({
    CompletionMethod.COMPLETED,
    CompletionMethod.VIDEO_WATCHED,
    CompletionMethod.MANUAL,
})


class QuizResult(Base):
    """One row per quiz attempt. Never updated."""
    __tablename__ = "quiz_results"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id"), nullable=False, index=True)

    answers = Column(JSON, nullable=False, default=list)
    score = Column(Integer, nullable=False)
    total_questions = Column(Integer, nullable=False)
    percentage = Column(Integer, nullable=False)
    passed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    time_spent = Column(Integer, nullable=True)  # seconds

    user = relationship("User", back_populates="quiz_results")
    quiz = relationship("Quiz", back_populates="results")

    __table_args__ = (
        Index("idx_quiz_results_user_quiz", "user_id", "quiz_id"),
    )


class UserProgress(Base):
    """Live completion state for one (user, module) pair."""
    __tablename__ = "user_progress"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    module_id = Column(Integer, ForeignKey("training_modules.id"), nullable=False, index=True)

    quiz_score = Column(Integer, nullable=True)
    # NULL means not completed; set once and never cleared
    completed_at = Column(DateTime, nullable=True)
    completion_method = Column(String(50), nullable=True)
    last_accessed_at = Column(DateTime, nullable=True)
    time_spent = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)

    user = relationship("User", back_populates="progress_records")
    module = relationship("TrainingModule")

    __table_args__ = (
        UniqueConstraint("user_id", "module_id", name="uq_user_progress_user_module"),
    )

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None
