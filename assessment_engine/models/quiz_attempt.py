"""
QuizAttempt model - one student's timed pass through a quiz, plus its answers
"""
import enum
from sqlalchemy import (
    Column, String, Float, Boolean, Text, TIMESTAMP, ForeignKey, UniqueConstraint, Uuid, func,
)
from sqlalchemy.orm import relationship
from assessment_engine.database import Base
import uuid


class AttemptStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    GRADED = "GRADED"
    EXPIRED = "EXPIRED"


class QuizAttempt(Base):
    """
    Quiz attempts table - unique per (quiz, student)
    """
    __tablename__ = "quiz_attempts"
    __table_args__ = (
        UniqueConstraint("quiz_id", "student_id", name="uq_quiz_attempts_quiz_student"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quiz_id = Column(Uuid, ForeignKey("quizzes.id", ondelete="RESTRICT"), nullable=False, index=True)
    student_id = Column(Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=AttemptStatus.IN_PROGRESS.value)
    score = Column(Float)  # points earned
    percentage = Column(Float)  # 0.00 to 100.00
    started_at = Column(TIMESTAMP(timezone=True), nullable=False)
    submitted_at = Column(TIMESTAMP(timezone=True))
    graded_at = Column(TIMESTAMP(timezone=True))

    quiz = relationship("Quiz", lazy="joined")
    answers = relationship(
        "Answer",
        back_populates="attempt",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<QuizAttempt(id={self.id}, student_id={self.student_id}, status={self.status})>"


class Answer(Base):
    """
    Answers table - unique per (attempt, question); ai_* fields are suggestions only
    """
    __tablename__ = "answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answers_attempt_question"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    attempt_id = Column(Uuid, ForeignKey("quiz_attempts.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Uuid, ForeignKey("questions.id", ondelete="RESTRICT"), nullable=False)
    selected_option_id = Column(Uuid, ForeignKey("options.id", ondelete="SET NULL"))
    text_answer = Column(Text)
    is_correct = Column(Boolean)
    points_earned = Column(Float)
    ai_score = Column(Float)  # 0-100 percentage suggested by the AI grader
    ai_feedback = Column(Text)
    ai_graded_at = Column(TIMESTAMP(timezone=True))
    answered_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    attempt = relationship("QuizAttempt", back_populates="answers")
    question = relationship("Question", lazy="joined")

    def __repr__(self):
        return f"<Answer(question_id={self.question_id}, points={self.points_earned})>"
