"""
Semester API endpoints
"""

from fastapi import APIRouter, Depends
from typing import List, Optional
from uuid import UUID
import logging

from assessment_engine.api.deps import get_engine, unwrap
from assessment_engine.schemas.academic import SemesterCreate, SemesterData
from assessment_engine.services.engine import AssessmentEngine


router = APIRouter(prefix="/api/semesters", tags=["semesters"])
logger = logging.getLogger(__name__)


@router.get("", response_model=List[SemesterData])
def list_semesters(engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.list_semesters())


@router.get("/current", response_model=Optional[SemesterData])
def current_semester(engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.get_current_semester())


@router.post("", response_model=SemesterData, status_code=201)
def create_semester(request: SemesterCreate, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.create_semester(request))


@router.post("/{semester_id}/activate", response_model=SemesterData)
def activate_semester(semester_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    """Make this the only current semester"""
    return unwrap(engine.activate_semester(semester_id))


@router.post("/{semester_id}/deactivate", response_model=SemesterData)
def deactivate_semester(semester_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.deactivate_semester(semester_id))


@router.delete("/{semester_id}", status_code=204)
def delete_semester(semester_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    unwrap(engine.delete_semester(semester_id))
