"""
Attempt state machine

    IN_PROGRESS -> SUBMITTED -> GRADED
    IN_PROGRESS -> EXPIRED

Expiry is lazy: every read and every answer submission compares the clock
with started_at + duration and, once it has passed, finalizes the attempt
with the answers saved so far.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assessment_engine.database import transaction, not_deleted
from assessment_engine.exceptions import (
    AttemptExpired,
    DuplicateAttempt,
    InvalidState,
    NotFound,
    QuizNotAvailable,
    Unauthorized,
    ValidationFailed,
)
from assessment_engine.models import (
    Answer,
    AttemptStatus,
    CourseOffering,
    Enrollment,
    Quiz,
    QuizAttempt,
    QuizStatus,
    QuestionType,
)
from assessment_engine.schemas.quiz import (
    AnswerInput,
    AttemptSummary,
    QuizForTaking,
    QuizResult,
    RemainingTime,
    ResultOption,
    ResultQuestion,
    SavedAnswer,
    StudentQuizData,
    TakingOption,
    TakingQuestion,
)
from assessment_engine.services.enrollment_service import capacity_ledger
from assessment_engine.services.grading_service import (
    attempt_lock_key,
    grade_objective,
    grading_service,
    has_passed,
)
from assessment_engine.services.question_bank import seeded_order
from assessment_engine.utils.cache import CacheService, cache_service
from assessment_engine.utils.clock import ensure_utc, utcnow
from assessment_engine.utils.locks import entity_locks

logger = logging.getLogger(__name__)


def deadline(attempt: QuizAttempt) -> datetime:
    return ensure_utc(attempt.started_at) + timedelta(minutes=attempt.quiz.duration)


def remaining_seconds(attempt: QuizAttempt, now: datetime) -> int:
    return max(0, int((deadline(attempt) - ensure_utc(now)).total_seconds()))


def is_overdue(attempt: QuizAttempt, now: datetime) -> bool:
    return ensure_utc(now) >= deadline(attempt)


class AttemptService:
    """
    Args:
        cache: CacheService holding the sanitized question payload of published quizzes
    """

    def __init__(self, cache: CacheService = cache_service):
        self.cache = cache

    # ============================================
    # Lookups
    # ============================================

    def _get_attempt(
        self, db: Session, attempt_id: UUID, student_id: Optional[UUID] = None, for_update: bool = False
    ) -> QuizAttempt:
        query = db.query(QuizAttempt).filter(QuizAttempt.id == attempt_id)
        if for_update:
            query = query.with_for_update()
        attempt = query.first()
        if not attempt:
            raise NotFound("Attempt not found")
        if student_id is not None and attempt.student_id != student_id:
            raise Unauthorized("This attempt belongs to another student")
        return attempt

    def _pair_key(self, quiz_id: UUID, student_id: UUID) -> str:
        return f"attempt:{quiz_id}:{student_id}"

    def _find_pair(self, db: Session, quiz_id: UUID, student_id: UUID) -> Optional[QuizAttempt]:
        return (
            db.query(QuizAttempt)
            .filter(QuizAttempt.quiz_id == quiz_id, QuizAttempt.student_id == student_id)
            .first()
        )

    # ============================================
    # Start
    # ============================================

    def start_or_resume(
        self, db: Session, quiz_id: UUID, student_id: UUID, now: Optional[datetime] = None
    ) -> QuizAttempt:
        """
        Return the student's attempt at a quiz, creating it on first call

        Raises:
            NotFound, QuizNotAvailable, Unauthorized (not enrolled)
        """
        now = now or utcnow()

        with entity_locks.hold(self._pair_key(quiz_id, student_id)):
            existing = self._find_pair(db, quiz_id, student_id)
            if existing:
                logger.info(f"Resuming attempt {existing.id} ({existing.status})")
                return existing

            try:
                with transaction(db):
                    quiz = db.query(Quiz).filter(Quiz.id == quiz_id, not_deleted(Quiz)).first()
                    if not quiz:
                        raise NotFound("Quiz not found")
                    if quiz.status != QuizStatus.PUBLISHED:
                        raise QuizNotAvailable("Quiz is not open for attempts")
                    if not capacity_ledger.is_enrolled(db, student_id, quiz.offering_id):
                        raise Unauthorized("You are not enrolled in this offering")
                    if quiz.start_time and ensure_utc(now) < ensure_utc(quiz.start_time):
                        raise QuizNotAvailable("Quiz has not started yet", {"start_time": str(quiz.start_time)})
                    if quiz.end_time and ensure_utc(now) > ensure_utc(quiz.end_time):
                        raise QuizNotAvailable("Quiz window has ended", {"end_time": str(quiz.end_time)})

                    attempt = QuizAttempt(
                        quiz_id=quiz_id,
                        student_id=student_id,
                        status=AttemptStatus.IN_PROGRESS.value,
                        started_at=now,
                    )
                    db.add(attempt)
                    db.flush()
            except IntegrityError:
                # another process won the race on uq_quiz_attempts_quiz_student
                existing = self._find_pair(db, quiz_id, student_id)
                if existing is None:
                    raise DuplicateAttempt("An attempt for this quiz already exists")
                return existing

        logger.info(f"Student {student_id} started attempt {attempt.id} on quiz {quiz_id}")
        return attempt

    # ============================================
    # Finalization
    # ============================================

    def _finalize(self, db: Session, attempt: QuizAttempt, now: datetime, expired: bool) -> None:
        """Grade objective answers and close the attempt; caller holds lock and transaction"""
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise InvalidState(f"Attempt is already {attempt.status}")

        answers = {a.question_id: a for a in attempt.answers}
        for question in attempt.quiz.questions:
            answer = answers.get(question.id)
            if answer is None:
                answer = Answer(question_id=question.id, answered_at=None)
                answer.question = question
                attempt.answers.append(answer)

            if question.type == QuestionType.SHORT_ANSWER:
                # correctness of essays is only ever set by a grader; blanks just earn nothing
                answer.is_correct = None
                answer.points_earned = None if (answer.text_answer or "").strip() else 0.0
            else:
                grade_objective(question, answer)

        attempt.status = (AttemptStatus.EXPIRED if expired else AttemptStatus.SUBMITTED).value
        attempt.submitted_at = now
        grading_service.refresh_aggregate(attempt, now)

    def finalize(
        self,
        db: Session,
        attempt_id: UUID,
        student_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
        expired: bool = False,
    ) -> QuizAttempt:
        now = now or utcnow()
        with entity_locks.hold(attempt_lock_key(attempt_id)):
            with transaction(db):
                attempt = self._get_attempt(db, attempt_id, student_id, for_update=True)
                self._finalize(db, attempt, now, expired)

        logger.info(
            f"Attempt {attempt_id} finalized as {attempt.status}: "
            f"{attempt.score} points ({attempt.percentage}%)"
        )
        return attempt

    def _expire_if_overdue(self, db: Session, attempt: QuizAttempt, now: datetime) -> bool:
        """Finalize an overdue IN_PROGRESS attempt as EXPIRED; True if it did"""
        if attempt.status != AttemptStatus.IN_PROGRESS or not is_overdue(attempt, now):
            return False
        try:
            self.finalize(db, attempt.id, now=now, expired=True)
        except InvalidState:
            # finalized concurrently
            db.refresh(attempt)
            return attempt.status == AttemptStatus.EXPIRED
        logger.info(f"Attempt {attempt.id} expired at {deadline(attempt)}")
        return True

    # ============================================
    # Taking
    # ============================================

    def _question_payload(self, quiz: Quiz) -> List[Dict[str, Any]]:
        """Sanitized questions in authoring order; never carries correctness"""
        cached = self.cache.get_quiz_payload(quiz.id)
        if cached is not None:
            return cached

        payload = [
            {
                "id": str(q.id),
                "type": q.type,
                "text": q.text,
                "points": q.points,
                "options": [{"id": str(o.id), "text": o.text} for o in sorted(q.options, key=lambda o: o.order)],
            }
            for q in sorted(quiz.questions, key=lambda q: q.order)
        ]
        if quiz.status == QuizStatus.PUBLISHED:
            self.cache.store_quiz_payload(quiz.id, payload)
        return payload

    def get_for_taking(
        self, db: Session, attempt_id: UUID, student_id: UUID, now: Optional[datetime] = None
    ) -> QuizForTaking:
        """
        Sanitized, possibly shuffled view of an IN_PROGRESS attempt

        Raises:
            AttemptExpired: time ran out; the attempt has just been finalized
            InvalidState: the attempt is already submitted
        """
        now = now or utcnow()
        attempt = self._get_attempt(db, attempt_id, student_id)

        if self._expire_if_overdue(db, attempt, now) or attempt.status == AttemptStatus.EXPIRED:
            raise AttemptExpired("Time is up; your answers were submitted")
        if attempt.status != AttemptStatus.IN_PROGRESS:
            raise InvalidState("This attempt has already been submitted")

        quiz = attempt.quiz
        questions = self._question_payload(quiz)
        if quiz.shuffle_questions:
            questions = seeded_order(questions, attempt.id, "questions")

        saved = {str(a.question_id): a for a in attempt.answers}
        view = []
        for q in questions:
            options = q["options"]
            if quiz.shuffle_options:
                options = seeded_order(options, attempt.id, q["id"])
            answer = saved.get(q["id"])
            view.append(
                TakingQuestion(
                    id=q["id"],
                    type=q["type"],
                    text=q["text"],
                    points=q["points"],
                    options=[TakingOption(**o) for o in options],
                    saved_answer=SavedAnswer(
                        selected_option_id=answer.selected_option_id,
                        text_answer=answer.text_answer,
                    ) if answer else None,
                )
            )

        return QuizForTaking(
            quiz_id=quiz.id,
            title=quiz.title,
            duration=quiz.duration,
            total_points=quiz.total_points,
            attempt_id=attempt.id,
            started_at=ensure_utc(attempt.started_at),
            remaining_seconds=remaining_seconds(attempt, now),
            questions=view,
        )

    def _upsert_answer(self, db: Session, attempt: QuizAttempt, data: AnswerInput, now: datetime) -> Answer:
        question = next((q for q in attempt.quiz.questions if q.id == data.question_id), None)
        if not question:
            raise NotFound("Question is not part of this quiz")

        selected_option_id, text_answer = None, None
        if question.type == QuestionType.SHORT_ANSWER:
            text_answer = data.text_answer
        elif data.selected_option_id is not None:
            if not any(o.id == data.selected_option_id for o in question.options):
                raise ValidationFailed("Selected option does not belong to this question")
            selected_option_id = data.selected_option_id

        answer = next((a for a in attempt.answers if a.question_id == question.id), None)
        if answer is None:
            answer = Answer(question_id=question.id)
            answer.question = question
            attempt.answers.append(answer)
        answer.selected_option_id = selected_option_id
        answer.text_answer = text_answer
        answer.answered_at = now
        return answer

    def submit_answer(
        self,
        db: Session,
        attempt_id: UUID,
        student_id: UUID,
        data: AnswerInput,
        now: Optional[datetime] = None,
    ) -> Answer:
        """Save one answer; the last write for a question wins"""
        now = now or utcnow()
        attempt = self._get_attempt(db, attempt_id, student_id)
        if self._expire_if_overdue(db, attempt, now) or attempt.status == AttemptStatus.EXPIRED:
            raise AttemptExpired("Time is up; your answers were submitted")

        with entity_locks.hold(attempt_lock_key(attempt_id)):
            try:
                with transaction(db):
                    attempt = self._get_attempt(db, attempt_id, student_id, for_update=True)
                    if attempt.status != AttemptStatus.IN_PROGRESS:
                        raise InvalidState("This attempt has already been submitted")
                    answer = self._upsert_answer(db, attempt, data, now)
            except IntegrityError:
                raise InvalidState("Answer was saved concurrently; reload and retry")

        return answer

    def submit_quiz(
        self,
        db: Session,
        attempt_id: UUID,
        student_id: UUID,
        answers: List[AnswerInput],
        now: Optional[datetime] = None,
    ) -> QuizAttempt:
        """Save a batch of answers and finalize, all in one transaction"""
        now = now or utcnow()
        attempt = self._get_attempt(db, attempt_id, student_id)
        if self._expire_if_overdue(db, attempt, now) or attempt.status == AttemptStatus.EXPIRED:
            raise AttemptExpired("Time is up; your saved answers were submitted")

        with entity_locks.hold(attempt_lock_key(attempt_id)):
            with transaction(db):
                attempt = self._get_attempt(db, attempt_id, student_id, for_update=True)
                if attempt.status != AttemptStatus.IN_PROGRESS:
                    raise InvalidState("This attempt has already been submitted")
                for data in answers:
                    self._upsert_answer(db, attempt, data, now)
                self._finalize(db, attempt, now, expired=False)

        logger.info(f"Attempt {attempt_id} submitted: {attempt.score} points ({attempt.percentage}%)")
        return attempt

    def get_remaining_time(
        self, db: Session, attempt_id: UUID, student_id: UUID, now: Optional[datetime] = None
    ) -> RemainingTime:
        now = now or utcnow()
        attempt = self._get_attempt(db, attempt_id, student_id)
        self._expire_if_overdue(db, attempt, now)
        if attempt.status != AttemptStatus.IN_PROGRESS:
            return RemainingTime(remaining_seconds=0, is_expired=True)

        seconds = remaining_seconds(attempt, now)
        return RemainingTime(remaining_seconds=seconds, is_expired=seconds <= 0)

    # ============================================
    # Results
    # ============================================

    def get_result(
        self,
        db: Session,
        attempt_id: UUID,
        student_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
        enforce_visibility: bool = True,
    ) -> QuizResult:
        """
        Result of a finished attempt

        Students see it only when show_results is on, and the per-question
        review (correct option, explanation) only when allow_review is on.
        Graders pass enforce_visibility=False.
        """
        now = now or utcnow()
        attempt = self._get_attempt(db, attempt_id, student_id)
        self._expire_if_overdue(db, attempt, now)

        if attempt.status == AttemptStatus.IN_PROGRESS:
            raise InvalidState("Attempt has not been submitted yet")

        quiz = attempt.quiz
        if enforce_visibility and not quiz.show_results:
            raise InvalidState("Results of this quiz are not available")
        review = quiz.allow_review or not enforce_visibility

        answers = {a.question_id: a for a in attempt.answers}
        questions = []
        for q in sorted(quiz.questions, key=lambda q: q.order):
            answer = answers.get(q.id)
            correct = q.correct_option
            questions.append(
                ResultQuestion(
                    id=q.id,
                    text=q.text,
                    type=q.type,
                    points=q.points,
                    points_earned=answer.points_earned if answer else None,
                    is_correct=answer.is_correct if answer else None,
                    selected_option_id=answer.selected_option_id if answer else None,
                    text_answer=answer.text_answer if answer else None,
                    explanation=q.explanation if review else None,
                    correct_option_id=correct.id if review and correct else None,
                    options=[
                        ResultOption(id=o.id, text=o.text, is_correct=o.is_correct if review else None)
                        for o in sorted(q.options, key=lambda o: o.order)
                    ],
                )
            )

        return QuizResult(
            quiz_id=quiz.id,
            title=quiz.title,
            total_points=quiz.total_points,
            attempt_id=attempt.id,
            status=attempt.status,
            score=attempt.score or 0.0,
            percentage=attempt.percentage or 0.0,
            passed=has_passed(attempt),
            submitted_at=ensure_utc(attempt.submitted_at),
            graded_at=ensure_utc(attempt.graded_at),
            review_available=review,
            questions=questions,
        )

    def list_student_quizzes(self, db: Session, student_id: UUID) -> List[StudentQuizData]:
        """Published quizzes of the student's active enrollments, with their attempt if any"""
        rows = (
            db.query(Quiz, CourseOffering.code)
            .join(CourseOffering, Quiz.offering_id == CourseOffering.id)
            .join(Enrollment, Enrollment.offering_id == CourseOffering.id)
            .filter(
                Enrollment.student_id == student_id,
                Enrollment.dropped_at.is_(None),
                Quiz.status == QuizStatus.PUBLISHED.value,
                not_deleted(Quiz),
                not_deleted(CourseOffering),
            )
            .order_by(Quiz.created_at.desc())
            .all()
        )
        attempts = {
            a.quiz_id: a
            for a in db.query(QuizAttempt).filter(
                QuizAttempt.student_id == student_id,
                QuizAttempt.quiz_id.in_([quiz.id for quiz, _ in rows]),
            )
        }

        return [
            StudentQuizData(
                id=quiz.id,
                title=quiz.title,
                description=quiz.description,
                duration=quiz.duration,
                total_points=quiz.total_points,
                questions_count=len(quiz.questions),
                status=quiz.status,
                offering_code=code,
                attempt=AttemptSummary.model_validate(attempts[quiz.id]) if quiz.id in attempts else None,
            )
            for quiz, code in rows
        ]


# Global instance
attempt_service = AttemptService()
