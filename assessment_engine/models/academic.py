"""
Academic structure consumed by the engine: courses, semesters, offerings, enrollments
"""
from sqlalchemy import (
    Column, String, Integer, Boolean, TIMESTAMP, ForeignKey, Index,
    UniqueConstraint, Uuid, func, text,
)
from sqlalchemy.orm import relationship
from assessment_engine.database import Base
import uuid


class Course(Base):
    __tablename__ = "courses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String(50), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    deleted_at = Column(TIMESTAMP(timezone=True))

    def __repr__(self):
        return f"<Course(code={self.code})>"


class Semester(Base):
    """
    Semesters table - at most one row has is_current set
    """
    __tablename__ = "semesters"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String(50), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False, default="FIRST")  # FIRST, SECOND, SUMMER
    year = Column(Integer, nullable=False)
    start_date = Column(TIMESTAMP(timezone=True), nullable=False)
    end_date = Column(TIMESTAMP(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    is_current = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Semester(code={self.code}, current={self.is_current})>"


class CourseOffering(Base):
    """
    Course offerings table - one section of a course in a semester, with capacity
    """
    __tablename__ = "course_offerings"
    __table_args__ = (
        UniqueConstraint("course_id", "semester_id", "section", name="uq_offering_course_semester_section"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    code = Column(String(120), unique=True, nullable=False)
    course_id = Column(Uuid, ForeignKey("courses.id", ondelete="RESTRICT"), nullable=False)
    semester_id = Column(Uuid, ForeignKey("semesters.id", ondelete="RESTRICT"), nullable=False)
    instructor_id = Column(Uuid, ForeignKey("users.id", ondelete="RESTRICT"))
    section = Column(String(20), nullable=False, default="1")
    max_students = Column(Integer, nullable=False, default=50)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    deleted_at = Column(TIMESTAMP(timezone=True))

    course = relationship("Course", lazy="joined")
    semester = relationship("Semester", lazy="joined")

    def __repr__(self):
        return f"<CourseOffering(code={self.code}, max={self.max_students})>"


class Enrollment(Base):
    """
    Enrollments table - dropped rows keep their history via dropped_at
    """
    __tablename__ = "enrollments"
    __table_args__ = (
        Index(
            "uq_enrollments_active_student_offering",
            "student_id",
            "offering_id",
            unique=True,
            sqlite_where=text("dropped_at IS NULL"),
            postgresql_where=text("dropped_at IS NULL"),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    offering_id = Column(Uuid, ForeignKey("course_offerings.id", ondelete="RESTRICT"), nullable=False, index=True)
    enrolled_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    dropped_at = Column(TIMESTAMP(timezone=True))

    student = relationship("User", lazy="joined")

    def __repr__(self):
        return f"<Enrollment(student_id={self.student_id}, offering_id={self.offering_id})>"
