from pydantic import BaseModel, Field, validator
from datetime import datetime
from typing import Optional, List

from awareness.models.progress import CompletionMethod
from awareness.models.training import ContentStatus, Difficulty, ModuleType


# Quiz Schemas
class QuestionIn(BaseModel):
    question_text: str = Field(..., min_length=1)
    options: List[str] = Field(..., min_length=2)
    correct_answer_index: int = Field(..., ge=0)

    @validator("correct_answer_index")
    def validate_correct_index(cls, v, values):
        options = values.get("options")
        if options is not None and v >= len(options):
            raise ValueError("correct_answer_index must point at one of the options")
        return v


class QuizCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    questions: List[QuestionIn] = Field(..., min_length=1)
    pass_threshold: Optional[int] = Field(None, ge=0, le=100)


class QuestionPublic(BaseModel):
    question_text: str
    options: List[str]


class QuizPublic(BaseModel):
    """Quiz as learners see it: no correct answers."""
    id: int
    title: str
    pass_threshold: int
    questions: List[QuestionPublic]


class QuizWithAnswers(BaseModel):
    id: int
    title: str
    pass_threshold: Optional[int] = None
    questions: List[QuestionIn]
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class QuizSubmission(BaseModel):
    answers: List[int] = Field(..., description="Selected option index per question")
    time_spent: Optional[int] = Field(None, ge=0, description="Seconds spent")


class QuizSubmissionResult(BaseModel):
    result_id: int
    score: int
    total_questions: int
    percentage: int
    passed: bool


class QuizResultSummary(BaseModel):
    id: int
    quiz_id: int
    quiz_title: str
    score: int
    total_questions: int
    percentage: int
    passed: bool
    completed_at: datetime
    time_spent: Optional[int] = None


class QuestionAnalysis(BaseModel):
    question_number: int
    question_text: Optional[str] = None
    options: List[str]
    user_answer: Optional[int] = None
    correct_answer: Optional[int] = None
    is_correct: bool
    user_answer_text: str
    correct_answer_text: Optional[str] = None


class QuizResultDetail(BaseModel):
    id: int
    quiz_id: int
    quiz_title: str
    score: int
    total_questions: int
    percentage: int
    passed: bool
    completed_at: datetime
    question_analysis: List[QuestionAnalysis]


# Training Module Schemas
class TrainingModuleBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field("", max_length=5000)
    summary: Optional[str] = None
    module_type: ModuleType = ModuleType.VIDEO
    category: str = Field("general_security", min_length=1, max_length=100)
    difficulty: Difficulty = Difficulty.BEGINNER
    estimated_duration: int = Field(30, ge=1)
    content_url: str = Field("", max_length=500)
    is_required: bool = False
    target_audience: List[str] = ["all_employees"]
    compliance_framework: List[str] = []
    tags: List[str] = []
    quiz_id: Optional[int] = None


class TrainingModuleCreate(TrainingModuleBase):
    pass


class TrainingModuleUpdate(TrainingModuleBase):
    pass


class TrainingModuleResponse(TrainingModuleBase):
    id: int
    version: str
    status: ContentStatus
    created_by: str
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ModuleQuizLink(BaseModel):
    quiz_id: int


class UserProgressResponse(BaseModel):
    id: int
    user_id: int
    module_id: int
    quiz_score: Optional[int] = None
    completed_at: Optional[datetime] = None
    completion_method: Optional[str] = None
    last_accessed_at: Optional[datetime] = None
    time_spent: Optional[int] = None
    is_completed: bool

    class Config:
        from_attributes = True


class ModuleCompletionRequest(BaseModel):
    quiz_score: Optional[int] = Field(None, ge=0, le=100)
    time_spent: Optional[int] = Field(None, ge=0, description="Seconds spent")
    completion_method: CompletionMethod = CompletionMethod.COMPLETED
