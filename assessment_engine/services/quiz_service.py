"""
Quiz lifecycle: DRAFT -> PUBLISHED <-> CLOSED, soft delete, duplication
"""
import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from assessment_engine.database import transaction, not_deleted
from assessment_engine.exceptions import InvalidState, NotFound
from assessment_engine.models import CourseOffering, Enrollment, Option, Question, Quiz, QuizAttempt, QuizStatus
from assessment_engine.schemas.quiz import QuizCreate, QuizStats, QuizUpdate
from assessment_engine.utils.cache import CacheService, cache_service
from assessment_engine.utils.clock import utcnow

logger = logging.getLogger(__name__)


class QuizService:
    """
    Service for quiz settings and status transitions

    Question content is owned by the question bank; this service only moves
    a quiz through its statuses and keeps the taking-view cache in step.
    """

    def __init__(self, cache: CacheService = cache_service):
        self.cache = cache

    def get(self, db: Session, quiz_id: UUID, for_update: bool = False) -> Quiz:
        query = db.query(Quiz).filter(Quiz.id == quiz_id, not_deleted(Quiz))
        if for_update:
            query = query.with_for_update()
        quiz = query.first()
        if not quiz:
            raise NotFound("Quiz not found")
        return quiz

    def list_for_offering(self, db: Session, offering_id: UUID) -> List[Quiz]:
        return (
            db.query(Quiz)
            .filter(Quiz.offering_id == offering_id, not_deleted(Quiz))
            .order_by(Quiz.created_at.desc())
            .all()
        )

    def has_attempts(self, db: Session, quiz_id: UUID) -> bool:
        return db.query(QuizAttempt.id).filter(QuizAttempt.quiz_id == quiz_id).first() is not None

    def create(self, db: Session, creator_id: UUID, data: QuizCreate) -> Quiz:
        with transaction(db):
            offering = (
                db.query(CourseOffering)
                .filter(CourseOffering.id == data.offering_id, not_deleted(CourseOffering))
                .first()
            )
            if not offering:
                raise NotFound("Offering not found")

            quiz = Quiz(
                title=data.title,
                description=data.description,
                offering_id=data.offering_id,
                creator_id=creator_id,
                status=QuizStatus.DRAFT.value,
                duration=data.duration,
                passing_score=data.passing_score,
                total_points=0.0,
            )
            db.add(quiz)
            db.flush()

        logger.info(f"Created quiz {quiz.id} for offering {offering.code}")
        return quiz

    def update(self, db: Session, quiz_id: UUID, data: QuizUpdate) -> Quiz:
        """DRAFT quizzes take every setting; later only the time window moves"""
        with transaction(db):
            quiz = self.get(db, quiz_id, for_update=True)

            if quiz.status == QuizStatus.DRAFT:
                quiz.title = data.title
                quiz.description = data.description
                quiz.duration = data.duration
                quiz.passing_score = data.passing_score
                for flag in ("shuffle_questions", "shuffle_options", "show_results", "allow_review"):
                    value = getattr(data, flag)
                    if value is not None:
                        setattr(quiz, flag, value)
            else:
                logger.info(f"Quiz {quiz_id} is {quiz.status}; only its time window is updated")

            quiz.start_time = data.start_time
            quiz.end_time = data.end_time

        self.cache.invalidate_quiz(quiz_id)
        return quiz

    def publish(self, db: Session, quiz_id: UUID, notifier=None) -> Quiz:
        with transaction(db):
            quiz = self.get(db, quiz_id, for_update=True)
            if quiz.status != QuizStatus.DRAFT:
                raise InvalidState("Only draft quizzes can be published")
            if not quiz.questions:
                raise InvalidState("Quiz needs at least one question before publishing")
            quiz.status = QuizStatus.PUBLISHED.value

        self.cache.invalidate_quiz(quiz_id)
        logger.info(f"Published quiz {quiz_id} ({len(quiz.questions)} questions, {quiz.total_points} points)")

        if notifier is not None:
            students = [
                sid
                for (sid,) in db.query(Enrollment.student_id).filter(
                    Enrollment.offering_id == quiz.offering_id,
                    Enrollment.dropped_at.is_(None),
                )
            ]
            notifier.notify(
                students,
                "New quiz available",
                f'"{quiz.title}" is now open ({quiz.duration} minutes)',
                link=f"/quizzes/{quiz.id}/take",
            )
        return quiz

    def _transition(self, db: Session, quiz_id: UUID, source: QuizStatus, target: QuizStatus) -> Quiz:
        with transaction(db):
            quiz = self.get(db, quiz_id, for_update=True)
            if quiz.status != source:
                raise InvalidState(f"Quiz must be {source.value} to become {target.value}")
            quiz.status = target.value

        self.cache.invalidate_quiz(quiz_id)
        logger.info(f"Quiz {quiz_id}: {source.value} -> {target.value}")
        return quiz

    def close(self, db: Session, quiz_id: UUID) -> Quiz:
        return self._transition(db, quiz_id, QuizStatus.PUBLISHED, QuizStatus.CLOSED)

    def reopen(self, db: Session, quiz_id: UUID) -> Quiz:
        return self._transition(db, quiz_id, QuizStatus.CLOSED, QuizStatus.PUBLISHED)

    def delete(self, db: Session, quiz_id: UUID) -> None:
        with transaction(db):
            quiz = self.get(db, quiz_id, for_update=True)
            if self.has_attempts(db, quiz_id):
                raise InvalidState("Quiz has attempts and cannot be deleted")
            quiz.deleted_at = utcnow()

        self.cache.invalidate_quiz(quiz_id)
        logger.info(f"Soft-deleted quiz {quiz_id}")

    def duplicate(self, db: Session, quiz_id: UUID, creator_id: UUID) -> Quiz:
        """New DRAFT copy with all questions and options"""
        with transaction(db):
            source = self.get(db, quiz_id)
            copy = Quiz(
                title=f"{source.title} (copy)",
                description=source.description,
                offering_id=source.offering_id,
                creator_id=creator_id,
                status=QuizStatus.DRAFT.value,
                duration=source.duration,
                passing_score=source.passing_score,
                shuffle_questions=source.shuffle_questions,
                shuffle_options=source.shuffle_options,
                show_results=source.show_results,
                allow_review=source.allow_review,
                total_points=source.total_points,
            )
            for q in source.questions:
                copy.questions.append(
                    Question(
                        type=q.type,
                        difficulty=q.difficulty,
                        text=q.text,
                        explanation=q.explanation,
                        points=q.points,
                        order=q.order,
                        is_ai_generated=q.is_ai_generated,
                        options=[Option(text=o.text, is_correct=o.is_correct, order=o.order) for o in q.options],
                    )
                )
            db.add(copy)
            db.flush()

        logger.info(f"Duplicated quiz {quiz_id} as {copy.id}")
        return copy

    def stats(self, db: Session, offering_id: Optional[UUID] = None) -> QuizStats:
        query = db.query(Quiz.status, func.count(Quiz.id)).filter(not_deleted(Quiz))
        if offering_id is not None:
            query = query.filter(Quiz.offering_id == offering_id)
        counts = dict(query.group_by(Quiz.status).all())

        return QuizStats(
            total=sum(counts.values()),
            draft=counts.get(QuizStatus.DRAFT.value, 0),
            published=counts.get(QuizStatus.PUBLISHED.value, 0),
            closed=counts.get(QuizStatus.CLOSED.value, 0),
        )


# Global instance
quiz_service = QuizService()
