"""
Pydantic schemas for manual and AI-assisted grading
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from uuid import UUID

from assessment_engine.config import settings
from assessment_engine.models.quiz import QuestionType, Difficulty


class AIGradeResult(BaseModel):
    """What the AI grading capability returns for one essay answer"""
    score_percentage: float = Field(..., ge=0, le=100)
    feedback: str
    strengths: List[str] = []
    improvements: List[str] = []


class GradeRequest(BaseModel):
    points_earned: float = Field(..., ge=0)


class GradeOutcome(BaseModel):
    """Aggregate state of an attempt after a grade was applied"""
    attempt_id: UUID
    status: str
    score: float
    percentage: float
    passed: bool
    pending_questions: int


class BulkAIGradeResult(BaseModel):
    graded_count: int
    remaining: int


class AIStatus(BaseModel):
    configured: bool
    provider: str


class GenerateQuestionsRequest(BaseModel):
    topic: str = Field(..., min_length=10)
    count: int = Field(5, ge=1, le=settings.MAX_GENERATED_QUESTIONS)
    difficulty: Difficulty = Difficulty.MEDIUM
    question_types: List[QuestionType] = Field(..., min_length=1)
    language: str = Field("en", pattern="^(ar|en)$")


class GeneratedOption(BaseModel):
    text: str
    is_correct: bool = False


class GeneratedQuestion(BaseModel):
    """Raw question as produced by the AI provider, before normalization"""
    type: QuestionType
    text: str = Field(..., min_length=5)
    difficulty: Difficulty = Difficulty.MEDIUM
    points: float = Field(1.0, ge=1, le=10)
    explanation: Optional[str] = ""
    options: List[GeneratedOption] = []
