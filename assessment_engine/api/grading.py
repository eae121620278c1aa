"""
Grading API endpoints (instructor side)
"""

from fastapi import APIRouter, Depends
from uuid import UUID
import logging

from assessment_engine.api.deps import get_engine, unwrap
from assessment_engine.schemas.grading import AIStatus, BulkAIGradeResult, GradeOutcome, GradeRequest
from assessment_engine.services.engine import AssessmentEngine


router = APIRouter(prefix="/api/grading", tags=["grading"])
logger = logging.getLogger(__name__)


@router.get("/ai-status", response_model=AIStatus)
def ai_status(engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.ai_status())


@router.put("/attempts/{attempt_id}/questions/{question_id}", response_model=GradeOutcome)
def grade_answer(
    attempt_id: UUID, question_id: UUID, request: GradeRequest, engine: AssessmentEngine = Depends(get_engine)
):
    """Set the points of a short-answer question"""
    return unwrap(engine.apply_grade(attempt_id, question_id, request.points_earned))


@router.post("/attempts/{attempt_id}/questions/{question_id}/ai-suggestion")
async def suggest_grade(attempt_id: UUID, question_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    """
    Ask the AI provider for a suggested grade

    The suggestion is stored next to the answer; points change only through
    the apply-ai-suggestion or manual grade endpoints.
    """
    return unwrap(await engine.suggest_grade(attempt_id, question_id))


@router.post("/attempts/{attempt_id}/questions/{question_id}/apply-ai-suggestion", response_model=GradeOutcome)
def apply_ai_suggestion(attempt_id: UUID, question_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.apply_ai_suggestion(attempt_id, question_id))


@router.post("/attempts/{attempt_id}/ai-grade-all", response_model=BulkAIGradeResult)
async def grade_all_essays(attempt_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    """Suggest grades for every essay answer without one yet; safe to call again"""
    return unwrap(await engine.grade_attempt_essays(attempt_id))
