"""
Quiz taking API endpoints (student side)
"""

from fastapi import APIRouter, Depends
from typing import List
from uuid import UUID
import logging

from assessment_engine.api.deps import get_engine, unwrap
from assessment_engine.schemas.quiz import (
    AnswerInput,
    AttemptSummary,
    QuizForTaking,
    QuizResult,
    RemainingTime,
    StudentQuizData,
    SubmitQuizRequest,
)
from assessment_engine.services.engine import AssessmentEngine


router = APIRouter(prefix="/api/attempts", tags=["attempts"])
logger = logging.getLogger(__name__)


@router.get("/my-quizzes", response_model=List[StudentQuizData])
def my_quizzes(engine: AssessmentEngine = Depends(get_engine)):
    """Published quizzes of every offering the caller is enrolled in"""
    return unwrap(engine.list_student_quizzes())


@router.post("/start/{quiz_id}", response_model=AttemptSummary)
def start_attempt(quiz_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    """
    Start the caller's attempt, or return the existing one

    One attempt per student and quiz; calling again never creates a second.
    """
    return unwrap(engine.start_attempt(quiz_id))


@router.get("/{attempt_id}", response_model=QuizForTaking)
def get_attempt(attempt_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    """Questions without correctness, in the attempt's stable shuffled order"""
    return unwrap(engine.get_quiz_for_taking(attempt_id))


@router.put("/{attempt_id}/answers")
def save_answer(attempt_id: UUID, request: AnswerInput, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.submit_answer(attempt_id, request))


@router.post("/{attempt_id}/submit", response_model=AttemptSummary)
def submit_quiz(attempt_id: UUID, request: SubmitQuizRequest, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.submit_quiz(attempt_id, request.answers))


@router.get("/{attempt_id}/remaining-time", response_model=RemainingTime)
def remaining_time(attempt_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.get_remaining_time(attempt_id))


@router.get("/{attempt_id}/result", response_model=QuizResult)
def get_result(attempt_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.get_result(attempt_id))
