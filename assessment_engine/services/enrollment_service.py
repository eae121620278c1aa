"""
Capacity ledger: offerings and enrollments

Business rules:
- Active enrollments (dropped_at IS NULL) never exceed max_students
- A student holds at most one active enrollment per offering
- Only ACTIVE, non-deleted students can be enrolled
- Offering code is unique and derived from course, semester and section
"""
import logging
from typing import List
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assessment_engine.database import transaction, not_deleted
from assessment_engine.exceptions import (
    CapacityExceeded,
    DuplicateEnrollment,
    InvalidState,
    NotFound,
    StudentInactive,
    ValidationFailed,
)
from assessment_engine.models import Course, CourseOffering, Enrollment, Quiz, Semester, User, UserStatus
from assessment_engine.schemas.academic import (
    BulkEnrollResult,
    EnrollmentCheck,
    OfferingCreate,
    OfferingUpdate,
)
from assessment_engine.utils.clock import utcnow
from assessment_engine.utils.locks import entity_locks

logger = logging.getLogger(__name__)


def generate_offering_code(course_code: str, semester_code: str, section: str) -> str:
    return f"{course_code}-{semester_code}-{section}"


class CapacityLedger:
    """
    Service guarding offering capacity and enrollment uniqueness

    enroll and bulk_enroll run their count-compare-insert as one transaction
    while holding the offering's lock (and a FOR UPDATE row lock where the
    database supports it).
    """

    def _lock_key(self, offering_id: UUID) -> str:
        return f"offering:{offering_id}"

    def get_offering(self, db: Session, offering_id: UUID, for_update: bool = False) -> CourseOffering:
        query = db.query(CourseOffering).filter(CourseOffering.id == offering_id, not_deleted(CourseOffering))
        if for_update:
            query = query.with_for_update()
        offering = query.first()
        if not offering:
            raise NotFound("Offering not found")
        return offering

    def count_active(self, db: Session, offering_id: UUID) -> int:
        return (
            db.query(func.count(Enrollment.id))
            .filter(Enrollment.offering_id == offering_id, Enrollment.dropped_at.is_(None))
            .scalar()
        )

    def is_enrolled(self, db: Session, student_id: UUID, offering_id: UUID) -> bool:
        return (
            db.query(Enrollment.id)
            .filter(
                Enrollment.student_id == student_id,
                Enrollment.offering_id == offering_id,
                Enrollment.dropped_at.is_(None),
            )
            .first()
            is not None
        )

    def can_enroll(self, db: Session, offering_id: UUID) -> EnrollmentCheck:
        offering = self.get_offering(db, offering_id)
        active = self.count_active(db, offering_id)
        ok = active < offering.max_students
        return EnrollmentCheck(
            ok=ok,
            reason=None if ok else f"Offering is full ({active}/{offering.max_students})",
            active_count=active,
            max_students=offering.max_students,
        )

    def _active_student(self, db: Session, student_id: UUID) -> User:
        student = db.get(User, student_id)
        if not student or student.deleted_at is not None or student.status != UserStatus.ACTIVE:
            raise StudentInactive("Student does not exist or is not active")
        return student

    def enroll(self, db: Session, offering_id: UUID, student_id: UUID) -> Enrollment:
        """
        Enroll one student

        Raises:
            NotFound, CapacityExceeded, StudentInactive, DuplicateEnrollment
        """
        with entity_locks.hold(self._lock_key(offering_id)):
            try:
                with transaction(db):
                    offering = self.get_offering(db, offering_id, for_update=True)
                    self._active_student(db, student_id)

                    if self.is_enrolled(db, student_id, offering_id):
                        raise DuplicateEnrollment("Student is already enrolled in this offering")

                    active = self.count_active(db, offering_id)
                    if active >= offering.max_students:
                        raise CapacityExceeded(
                            f"Offering is full ({active}/{offering.max_students})",
                            {"active": active, "max_students": offering.max_students},
                        )

                    enrollment = Enrollment(student_id=student_id, offering_id=offering_id, enrolled_at=utcnow())
                    db.add(enrollment)
                    db.flush()
            except IntegrityError:
                raise DuplicateEnrollment("Student is already enrolled in this offering")

        logger.info(f"Enrolled student {student_id} in offering {offering_id} ({active + 1}/{offering.max_students})")
        return enrollment

    def bulk_enroll(self, db: Session, offering_id: UUID, student_ids: List[UUID]) -> BulkEnrollResult:
        """
        Enroll many students against one capacity check

        Already-enrolled students are skipped. Eligible students get the
        remaining slots in input order; the rest, plus inactive students,
        are reported as failed.
        """
        requested = list(dict.fromkeys(student_ids))

        with entity_locks.hold(self._lock_key(offering_id)):
            with transaction(db):
                offering = self.get_offering(db, offering_id, for_update=True)

                available = offering.max_students - self.count_active(db, offering_id)
                if available <= 0:
                    raise CapacityExceeded("Offering is full")

                already = {
                    sid
                    for (sid,) in db.query(Enrollment.student_id).filter(
                        Enrollment.offering_id == offering_id,
                        Enrollment.student_id.in_(requested),
                        Enrollment.dropped_at.is_(None),
                    )
                }
                candidates = [sid for sid in requested if sid not in already]
                if not candidates:
                    raise DuplicateEnrollment("All selected students are already enrolled")

                active_ids = {
                    uid
                    for (uid,) in db.query(User.id).filter(
                        User.id.in_(candidates),
                        User.status == UserStatus.ACTIVE,
                        not_deleted(User),
                    )
                }
                eligible = [sid for sid in candidates if sid in active_ids]
                granted = eligible[:available]

                now = utcnow()
                for sid in granted:
                    db.add(Enrollment(student_id=sid, offering_id=offering_id, enrolled_at=now))

        result = BulkEnrollResult(enrolled=len(granted), failed=len(candidates) - len(granted))
        logger.info(f"Bulk enroll into {offering_id}: {result.enrolled} enrolled, {result.failed} failed")
        return result

    def drop(self, db: Session, enrollment_id: UUID) -> Enrollment:
        with transaction(db):
            enrollment = db.get(Enrollment, enrollment_id)
            if not enrollment:
                raise NotFound("Enrollment not found")
            if enrollment.dropped_at is not None:
                raise InvalidState("Student was already dropped")
            enrollment.dropped_at = utcnow()

        logger.info(f"Dropped enrollment {enrollment_id}")
        return enrollment

    def list_enrollments(self, db: Session, offering_id: UUID) -> List[Enrollment]:
        return (
            db.query(Enrollment)
            .filter(Enrollment.offering_id == offering_id, Enrollment.dropped_at.is_(None))
            .order_by(Enrollment.enrolled_at.asc())
            .all()
        )

    # ============================================
    # Offering uniqueness
    # ============================================

    def _code_for(self, db: Session, course_id: UUID, semester_id: UUID, section: str) -> str:
        course = db.query(Course).filter(Course.id == course_id, not_deleted(Course)).first()
        if not course:
            raise NotFound("Course not found")
        semester = db.get(Semester, semester_id)
        if not semester:
            raise NotFound("Semester not found")
        return generate_offering_code(course.code, semester.code, section)

    def _ensure_unique(self, db: Session, code: str, data: OfferingCreate, exclude_id: UUID = None):
        slot = db.query(CourseOffering.id).filter(
            CourseOffering.course_id == data.course_id,
            CourseOffering.semester_id == data.semester_id,
            CourseOffering.section == data.section,
        )
        taken_code = db.query(CourseOffering.id).filter(CourseOffering.code == code)
        if exclude_id is not None:
            slot = slot.filter(CourseOffering.id != exclude_id)
            taken_code = taken_code.filter(CourseOffering.id != exclude_id)

        if slot.first():
            raise ValidationFailed("This section already exists for the course and semester")
        if taken_code.first():
            raise ValidationFailed(f"Offering code {code} is already in use")

    def create_offering(self, db: Session, data: OfferingCreate) -> CourseOffering:
        try:
            with transaction(db):
                code = self._code_for(db, data.course_id, data.semester_id, data.section)
                self._ensure_unique(db, code, data)
                offering = CourseOffering(
                    code=code,
                    course_id=data.course_id,
                    semester_id=data.semester_id,
                    instructor_id=data.instructor_id,
                    section=data.section,
                    max_students=data.max_students,
                )
                db.add(offering)
                db.flush()
        except IntegrityError:
            raise ValidationFailed("Offering code or section is already in use")

        logger.info(f"Created offering {offering.code}")
        return offering

    def update_offering(self, db: Session, offering_id: UUID, data: OfferingUpdate) -> CourseOffering:
        with entity_locks.hold(self._lock_key(offering_id)):
            try:
                with transaction(db):
                    offering = self.get_offering(db, offering_id, for_update=True)

                    active = self.count_active(db, offering_id)
                    if data.max_students < active:
                        raise ValidationFailed(
                            f"Capacity cannot drop below the enrolled count ({active})"
                        )

                    code = offering.code
                    if (
                        data.course_id != offering.course_id
                        or data.semester_id != offering.semester_id
                        or data.section != offering.section
                    ):
                        code = self._code_for(db, data.course_id, data.semester_id, data.section)
                        self._ensure_unique(db, code, data, exclude_id=offering_id)

                    offering.code = code
                    offering.course_id = data.course_id
                    offering.semester_id = data.semester_id
                    offering.instructor_id = data.instructor_id
                    offering.section = data.section
                    offering.max_students = data.max_students
                    if data.is_active is not None:
                        offering.is_active = data.is_active
            except IntegrityError:
                raise ValidationFailed("Offering code or section is already in use")

        return offering

    def delete_offering(self, db: Session, offering_id: UUID) -> None:
        with entity_locks.hold(self._lock_key(offering_id)):
            with transaction(db):
                offering = self.get_offering(db, offering_id, for_update=True)
                if self.count_active(db, offering_id) > 0:
                    raise InvalidState("Offering still has enrolled students")
                live_quizzes = (
                    db.query(Quiz.id).filter(Quiz.offering_id == offering_id, not_deleted(Quiz)).first()
                )
                if live_quizzes:
                    raise InvalidState("Offering still has quizzes")
                offering.deleted_at = utcnow()

        logger.info(f"Soft-deleted offering {offering_id}")


# Global instance
capacity_ledger = CapacityLedger()
