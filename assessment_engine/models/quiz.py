"""
Quiz model - quiz definitions with their questions and options
"""
import enum
from sqlalchemy import Column, String, Integer, Float, Boolean, Text, TIMESTAMP, ForeignKey, Uuid, func
from sqlalchemy.orm import relationship
from assessment_engine.database import Base
import uuid


class QuizStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    CLOSED = "CLOSED"


class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    TRUE_FALSE = "TRUE_FALSE"
    SHORT_ANSWER = "SHORT_ANSWER"


class Difficulty(str, enum.Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


OBJECTIVE_TYPES = (QuestionType.MULTIPLE_CHOICE.value, QuestionType.TRUE_FALSE.value)


class Quiz(Base):
    """
    Quizzes table - settings and derived total_points for one offering's quiz
    """
    __tablename__ = "quizzes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    description = Column(Text)
    offering_id = Column(Uuid, ForeignKey("course_offerings.id", ondelete="RESTRICT"), nullable=False, index=True)
    creator_id = Column(Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    status = Column(String(20), nullable=False, default=QuizStatus.DRAFT.value)
    duration = Column(Integer, nullable=False, default=30)  # minutes
    total_points = Column(Float, nullable=False, default=0.0)
    passing_score = Column(Float, nullable=False, default=60.0)  # percentage
    shuffle_questions = Column(Boolean, nullable=False, default=False)
    shuffle_options = Column(Boolean, nullable=False, default=False)
    show_results = Column(Boolean, nullable=False, default=True)
    allow_review = Column(Boolean, nullable=False, default=True)
    start_time = Column(TIMESTAMP(timezone=True))
    end_time = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())
    deleted_at = Column(TIMESTAMP(timezone=True))

    questions = relationship(
        "Question",
        back_populates="quiz",
        cascade="all, delete-orphan",
        order_by="Question.order",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Quiz(id={self.id}, title={self.title}, status={self.status})>"


class Question(Base):
    """
    Questions table - one quiz question; options cascade with it
    """
    __tablename__ = "questions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    quiz_id = Column(Uuid, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(20), nullable=False)
    difficulty = Column(String(10), nullable=False, default=Difficulty.MEDIUM.value)
    text = Column(Text, nullable=False)
    explanation = Column(Text)  # doubles as the model answer for essay grading
    points = Column(Float, nullable=False, default=1.0)
    order = Column(Integer, nullable=False, default=0)
    is_ai_generated = Column(Boolean, nullable=False, default=False)

    quiz = relationship("Quiz", back_populates="questions")
    options = relationship(
        "Option",
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="Option.order",
        lazy="selectin",
    )

    @property
    def correct_option(self):
        return next((o for o in self.options if o.is_correct), None)

    def __repr__(self):
        return f"<Question(id={self.id}, type={self.type}, points={self.points})>"


class Option(Base):
    __tablename__ = "options"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    question_id = Column(Uuid, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)
    order = Column(Integer, nullable=False, default=0)

    question = relationship("Question", back_populates="options")

    def __repr__(self):
        return f"<Option(id={self.id}, correct={self.is_correct})>"
