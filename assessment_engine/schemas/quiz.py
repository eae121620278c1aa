"""
Pydantic schemas for quiz definitions, attempts and their read-only projections
"""
from pydantic import BaseModel, Field, model_validator
from typing import List, Optional
from uuid import UUID
from datetime import datetime

from assessment_engine.config import settings
from assessment_engine.models.quiz import QuestionType, Difficulty


class QuizCreate(BaseModel):
    """Request schema for quiz creation"""
    title: str = Field(..., min_length=3, max_length=255)
    description: Optional[str] = None
    offering_id: UUID
    duration: int = Field(settings.DEFAULT_QUIZ_DURATION, ge=settings.MIN_QUIZ_DURATION)
    passing_score: float = Field(settings.DEFAULT_PASSING_SCORE, ge=0, le=100)


class QuizUpdate(BaseModel):
    """Settings update; only the time window applies once a quiz leaves DRAFT"""
    title: str = Field(..., min_length=3, max_length=255)
    description: Optional[str] = None
    duration: int = Field(..., ge=settings.MIN_QUIZ_DURATION)
    passing_score: float = Field(..., ge=0, le=100)
    shuffle_questions: Optional[bool] = None
    shuffle_options: Optional[bool] = None
    show_results: Optional[bool] = None
    allow_review: Optional[bool] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @model_validator(mode="after")
    def _window_is_ordered(self):
        if self.start_time and self.end_time and self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class OptionInput(BaseModel):
    text: str = Field(..., min_length=1)
    is_correct: bool = False
    order: int = 0


class QuestionInput(BaseModel):
    """Question definition as authored by an instructor"""
    id: Optional[UUID] = None
    type: QuestionType
    difficulty: Difficulty = Difficulty.MEDIUM
    text: str = Field(..., min_length=3)
    explanation: Optional[str] = None
    points: float = Field(1.0, ge=settings.MIN_QUESTION_POINTS)
    order: int = 0
    options: List[OptionInput] = []
    is_ai_generated: bool = False


class AnswerInput(BaseModel):
    question_id: UUID
    selected_option_id: Optional[UUID] = None
    text_answer: Optional[str] = None


class QuizStats(BaseModel):
    total: int
    draft: int
    published: int
    closed: int


# ============================================
# Read-only projections
# ============================================

class TakingOption(BaseModel):
    """Option as shown while taking; correctness is never part of it"""
    id: UUID
    text: str


class SavedAnswer(BaseModel):
    selected_option_id: Optional[UUID] = None
    text_answer: Optional[str] = None


class TakingQuestion(BaseModel):
    id: UUID
    type: str
    text: str
    points: float
    options: List[TakingOption]
    saved_answer: Optional[SavedAnswer] = None


class QuizForTaking(BaseModel):
    """Sanitized quiz view for an IN_PROGRESS attempt"""
    quiz_id: UUID
    title: str
    duration: int
    total_points: float
    attempt_id: UUID
    started_at: datetime
    remaining_seconds: int
    questions: List[TakingQuestion]


class ResultOption(BaseModel):
    id: UUID
    text: str
    is_correct: Optional[bool] = None


class ResultQuestion(BaseModel):
    id: UUID
    text: str
    type: str
    points: float
    points_earned: Optional[float] = None
    is_correct: Optional[bool] = None
    selected_option_id: Optional[UUID] = None
    text_answer: Optional[str] = None
    explanation: Optional[str] = None
    correct_option_id: Optional[UUID] = None
    options: List[ResultOption]


class QuizResult(BaseModel):
    """Result view; per-question review only when the quiz allows it"""
    quiz_id: UUID
    title: str
    total_points: float
    attempt_id: UUID
    status: str
    score: float
    percentage: float
    passed: bool
    submitted_at: Optional[datetime] = None
    graded_at: Optional[datetime] = None
    review_available: bool
    questions: List[ResultQuestion] = []


class AttemptSummary(BaseModel):
    id: UUID
    status: str
    started_at: datetime
    submitted_at: Optional[datetime] = None
    score: Optional[float] = None
    percentage: Optional[float] = None

    class Config:
        from_attributes = True


class StudentQuizData(BaseModel):
    id: UUID
    title: str
    description: Optional[str] = None
    duration: int
    total_points: float
    questions_count: int
    status: str
    offering_code: str
    attempt: Optional[AttemptSummary] = None


class RemainingTime(BaseModel):
    remaining_seconds: int
    is_expired: bool


# ============================================
# Authoring views
# ============================================

class OptionData(BaseModel):
    id: UUID
    text: str
    is_correct: bool
    order: int

    class Config:
        from_attributes = True


class QuestionData(BaseModel):
    id: UUID
    type: str
    difficulty: str
    text: str
    explanation: Optional[str] = None
    points: float
    order: int
    is_ai_generated: bool
    options: List[OptionData] = []

    class Config:
        from_attributes = True


class QuizData(BaseModel):
    """Full quiz definition as seen by its authors"""
    id: UUID
    title: str
    description: Optional[str] = None
    offering_id: UUID
    creator_id: UUID
    status: str
    duration: int
    total_points: float
    passing_score: float
    shuffle_questions: bool
    shuffle_options: bool
    show_results: bool
    allow_review: bool
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    questions: List[QuestionData] = []

    class Config:
        from_attributes = True


class SubmitQuizRequest(BaseModel):
    answers: List[AnswerInput] = []


class ReorderRequest(BaseModel):
    question_ids: List[UUID] = Field(..., min_length=1)
