"""
Course offering and enrollment API endpoints
"""

from fastapi import APIRouter, Depends
from typing import List
from uuid import UUID
import logging

from assessment_engine.api.deps import get_engine, unwrap
from assessment_engine.schemas.academic import (
    BulkEnrollRequest,
    BulkEnrollResult,
    EnrollmentCheck,
    EnrollmentData,
    EnrollRequest,
    OfferingCreate,
    OfferingData,
    OfferingUpdate,
)
from assessment_engine.services.engine import AssessmentEngine


router = APIRouter(prefix="/api/offerings", tags=["offerings"])
logger = logging.getLogger(__name__)


@router.post("", response_model=OfferingData, status_code=201)
def create_offering(request: OfferingCreate, engine: AssessmentEngine = Depends(get_engine)):
    """Create an offering; its code is derived as COURSE-SEMESTER-SECTION"""
    return unwrap(engine.create_offering(request))


@router.put("/{offering_id}", response_model=OfferingData)
def update_offering(offering_id: UUID, request: OfferingUpdate, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.update_offering(offering_id, request))


@router.delete("/{offering_id}", status_code=204)
def delete_offering(offering_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    unwrap(engine.delete_offering(offering_id))


@router.get("/{offering_id}/can-enroll", response_model=EnrollmentCheck)
def can_enroll(offering_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.can_enroll(offering_id))


@router.get("/{offering_id}/enrollments", response_model=List[EnrollmentData])
def list_enrollments(offering_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.list_enrollments(offering_id))


@router.post("/{offering_id}/enrollments", response_model=EnrollmentData, status_code=201)
def enroll_student(offering_id: UUID, request: EnrollRequest, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.enroll_student(offering_id, request.student_id))


@router.post("/{offering_id}/enrollments/bulk", response_model=BulkEnrollResult)
def bulk_enroll(offering_id: UUID, request: BulkEnrollRequest, engine: AssessmentEngine = Depends(get_engine)):
    """Enroll many students; slots go to eligible students in request order"""
    return unwrap(engine.bulk_enroll(offering_id, request))


@router.delete("/enrollments/{enrollment_id}", response_model=EnrollmentData)
def drop_student(enrollment_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.drop_student(enrollment_id))
