"""
Pydantic schemas for offerings, enrollments and semesters
"""
from pydantic import BaseModel, Field, model_validator
from typing import List, Optional
from uuid import UUID
from datetime import datetime


class OfferingCreate(BaseModel):
    course_id: UUID
    semester_id: UUID
    instructor_id: Optional[UUID] = None
    section: str = Field("1", min_length=1, max_length=20)
    max_students: int = Field(50, ge=1)


class OfferingUpdate(OfferingCreate):
    is_active: Optional[bool] = None


class EnrollmentCheck(BaseModel):
    """Outcome of can_enroll"""
    ok: bool
    reason: Optional[str] = None
    active_count: int
    max_students: int


class EnrollmentData(BaseModel):
    id: UUID
    student_id: UUID
    offering_id: UUID
    enrolled_at: Optional[datetime] = None
    dropped_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BulkEnrollRequest(BaseModel):
    student_ids: List[UUID] = Field(..., min_length=1)


class BulkEnrollResult(BaseModel):
    enrolled: int
    failed: int


class SemesterCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=50)
    name: str = Field(..., min_length=2, max_length=255)
    type: str = Field("FIRST", pattern="^(FIRST|SECOND|SUMMER)$")
    year: int = Field(..., ge=2020, le=2100)
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def _dates_are_ordered(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class SemesterData(BaseModel):
    id: UUID
    code: str
    name: str
    type: str
    year: int
    is_active: bool
    is_current: bool

    class Config:
        from_attributes = True


class OfferingData(BaseModel):
    id: UUID
    code: str
    course_id: UUID
    semester_id: UUID
    instructor_id: Optional[UUID] = None
    section: str
    max_students: int
    is_active: bool

    class Config:
        from_attributes = True


class EnrollRequest(BaseModel):
    student_id: UUID
