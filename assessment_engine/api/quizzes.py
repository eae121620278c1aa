"""
Quiz authoring API endpoints: lifecycle and question bank
"""

from fastapi import APIRouter, Depends
from typing import List, Optional
from uuid import UUID
import logging

from assessment_engine.api.deps import get_engine, unwrap
from assessment_engine.schemas.grading import GenerateQuestionsRequest
from assessment_engine.schemas.quiz import (
    QuestionData,
    QuestionInput,
    QuizCreate,
    QuizData,
    QuizStats,
    QuizUpdate,
    ReorderRequest,
)
from assessment_engine.services.engine import AssessmentEngine


router = APIRouter(prefix="/api/quizzes", tags=["quizzes"])
logger = logging.getLogger(__name__)


@router.post("", response_model=QuizData, status_code=201)
def create_quiz(request: QuizCreate, engine: AssessmentEngine = Depends(get_engine)):
    """Create a DRAFT quiz for an offering"""
    return unwrap(engine.create_quiz(request))


@router.get("/stats", response_model=QuizStats)
def quiz_stats(offering_id: Optional[UUID] = None, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.get_quiz_stats(offering_id))


@router.get("/offering/{offering_id}", response_model=List[QuizData])
def list_offering_quizzes(offering_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.list_quizzes(offering_id))


@router.post("/generate-questions", response_model=List[QuestionInput])
async def generate_questions(request: GenerateQuestionsRequest, engine: AssessmentEngine = Depends(get_engine)):
    """
    Draft questions with the configured AI provider

    - Nothing is saved; drafts go through save_all or add_question afterwards
    - Multiple-choice drafts without exactly one correct option are dropped
    """
    return unwrap(await engine.generate_questions(request))


@router.get("/{quiz_id}", response_model=QuizData)
def get_quiz(quiz_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.get_quiz(quiz_id))


@router.put("/{quiz_id}", response_model=QuizData)
def update_quiz(quiz_id: UUID, request: QuizUpdate, engine: AssessmentEngine = Depends(get_engine)):
    """DRAFT: every setting. Published or closed: only start_time/end_time"""
    return unwrap(engine.update_quiz(quiz_id, request))


@router.delete("/{quiz_id}", status_code=204)
def delete_quiz(quiz_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    unwrap(engine.delete_quiz(quiz_id))


@router.post("/{quiz_id}/publish", response_model=QuizData)
def publish_quiz(quiz_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    """Publish a DRAFT quiz and notify the enrolled students"""
    return unwrap(engine.publish_quiz(quiz_id))


@router.post("/{quiz_id}/close", response_model=QuizData)
def close_quiz(quiz_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.close_quiz(quiz_id))


@router.post("/{quiz_id}/reopen", response_model=QuizData)
def reopen_quiz(quiz_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.reopen_quiz(quiz_id))


@router.post("/{quiz_id}/duplicate", response_model=QuizData, status_code=201)
def duplicate_quiz(quiz_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.duplicate_quiz(quiz_id))


# ============================================
# Questions
# ============================================

@router.post("/{quiz_id}/questions", response_model=QuestionData, status_code=201)
def add_question(quiz_id: UUID, request: QuestionInput, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.add_question(quiz_id, request))


@router.put("/{quiz_id}/questions", response_model=QuizData)
def save_all_questions(quiz_id: UUID, request: List[QuestionInput], engine: AssessmentEngine = Depends(get_engine)):
    """Replace the whole question set in one transaction"""
    return unwrap(engine.save_all_questions(quiz_id, request))


@router.put("/{quiz_id}/questions/order", status_code=204)
def reorder_questions(quiz_id: UUID, request: ReorderRequest, engine: AssessmentEngine = Depends(get_engine)):
    unwrap(engine.reorder_questions(quiz_id, request.question_ids))


@router.put("/questions/{question_id}", response_model=QuestionData)
def update_question(question_id: UUID, request: QuestionInput, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.update_question(question_id, request))


@router.delete("/questions/{question_id}", status_code=204)
def delete_question(question_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    unwrap(engine.delete_question(question_id))
