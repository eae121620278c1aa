"""
Semester singleton

Business rule: at most ONE semester is current at a time. Activation clears the
flag everywhere and sets it on the target in a single transaction, so readers
never see two current semesters (or, for a committed state, none mid-switch).
"""
import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assessment_engine.database import transaction, not_deleted
from assessment_engine.exceptions import HasOfferings, IsCurrentSemester, NotFound, ValidationFailed
from assessment_engine.models import CourseOffering, Semester
from assessment_engine.schemas.academic import SemesterCreate
from assessment_engine.utils.locks import entity_locks

logger = logging.getLogger(__name__)

# The current flag is shared state across the whole table
SEMESTER_TABLE_LOCK = "semesters"


class SemesterService:

    def get(self, db: Session, semester_id: UUID) -> Semester:
        semester = db.get(Semester, semester_id)
        if not semester:
            raise NotFound("Semester not found")
        return semester

    def list(self, db: Session) -> List[Semester]:
        return db.query(Semester).order_by(Semester.year.desc(), Semester.type.asc()).all()

    def get_current(self, db: Session) -> Optional[Semester]:
        return db.query(Semester).filter(Semester.is_current.is_(True)).first()

    def create(self, db: Session, data: SemesterCreate) -> Semester:
        try:
            with transaction(db):
                if db.query(Semester.id).filter(Semester.code == data.code).first():
                    raise ValidationFailed("Semester code is already in use")
                semester = Semester(
                    code=data.code,
                    name=data.name,
                    type=data.type,
                    year=data.year,
                    start_date=data.start_date,
                    end_date=data.end_date,
                    is_active=False,
                    is_current=False,
                )
                db.add(semester)
                db.flush()
        except IntegrityError:
            raise ValidationFailed("Semester code is already in use")

        logger.info(f"Created semester {semester.code}")
        return semester

    def activate(self, db: Session, semester_id: UUID) -> Semester:
        """Make a semester the only current one"""
        with entity_locks.hold(SEMESTER_TABLE_LOCK):
            with transaction(db):
                semester = (
                    db.query(Semester).filter(Semester.id == semester_id).with_for_update().first()
                )
                if not semester:
                    raise NotFound("Semester not found")

                (
                    db.query(Semester)
                    .filter(Semester.is_current.is_(True), Semester.id != semester_id)
                    .update({Semester.is_current: False}, synchronize_session="fetch")
                )
                semester.is_current = True
                semester.is_active = True

        logger.info(f"Semester {semester.code} is now current")
        return semester

    def deactivate(self, db: Session, semester_id: UUID) -> Semester:
        """Clear the current flag without promoting another semester"""
        with entity_locks.hold(SEMESTER_TABLE_LOCK):
            with transaction(db):
                semester = self.get(db, semester_id)
                semester.is_current = False

        logger.info(f"Semester {semester.code} is no longer current")
        return semester

    def delete(self, db: Session, semester_id: UUID) -> None:
        with entity_locks.hold(SEMESTER_TABLE_LOCK):
            try:
                self._delete(db, semester_id)
            except IntegrityError:
                # an offering created concurrently still references the row
                raise HasOfferings("Semester is referenced by course offerings")

        logger.info(f"Deleted semester {semester_id}")

    def _delete(self, db: Session, semester_id: UUID) -> None:
        with transaction(db):
            semester = self.get(db, semester_id)

            offerings = (
                db.query(CourseOffering.id)
                .filter(CourseOffering.semester_id == semester_id, not_deleted(CourseOffering))
                .count()
            )
            if offerings:
                raise HasOfferings(
                    "Semester still has course offerings", {"offerings": offerings}
                )
            archived = (
                db.query(CourseOffering.id).filter(CourseOffering.semester_id == semester_id).count()
            )
            if archived:
                raise HasOfferings(
                    "Semester is referenced by archived offerings", {"offerings": 0, "archived": archived}
                )
            if semester.is_current:
                raise IsCurrentSemester("The current semester cannot be deleted")

            db.delete(semester)


# Global instance
semester_service = SemesterService()
