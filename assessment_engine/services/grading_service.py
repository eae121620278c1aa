"""
Quiz grading service with hybrid approach
MULTIPLE_CHOICE / TRUE_FALSE: exact match on the selected option
SHORT_ANSWER: graded by an instructor, optionally from an AI suggestion
"""
import logging
import math
from datetime import datetime
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.orm import Session

from assessment_engine.config import settings
from assessment_engine.database import transaction
from assessment_engine.exceptions import (
    ExternalCapabilityUnavailable,
    InvalidState,
    NotFound,
    ValidationFailed,
)
from assessment_engine.models import (
    Answer,
    AttemptStatus,
    Question,
    QuestionType,
    QuizAttempt,
)
from assessment_engine.schemas.grading import AIStatus, BulkAIGradeResult, GradeOutcome
from assessment_engine.services.ai_grader import AIGrader
from assessment_engine.utils.clock import utcnow
from assessment_engine.utils.locks import entity_locks

logger = logging.getLogger(__name__)


def attempt_lock_key(attempt_id: UUID) -> str:
    return f"attempt:{attempt_id}"


def grade_objective(question: Question, answer: Answer) -> None:
    """Exact-match grading; an unanswered objective question earns 0"""
    correct = question.correct_option
    is_correct = (
        answer.selected_option_id is not None
        and correct is not None
        and answer.selected_option_id == correct.id
    )
    answer.is_correct = is_correct
    answer.points_earned = question.points if is_correct else 0.0


def compute_score(attempt: QuizAttempt) -> Tuple[float, float]:
    """
    Aggregate over graded answers

    Returns:
        Tuple of (score, percentage); percentage is 0 when the quiz has no points
    """
    score = sum(a.points_earned for a in attempt.answers if a.points_earned is not None)
    total = attempt.quiz.total_points or 0.0
    percentage = round(100.0 * score / total, 2) if total > 0 else 0.0
    return round(score, 2), percentage


def pending_answers(attempt: QuizAttempt) -> List[Answer]:
    return [a for a in attempt.answers if a.points_earned is None]


def has_passed(attempt: QuizAttempt) -> bool:
    return (attempt.percentage or 0.0) >= attempt.quiz.passing_score


class GradingService:
    """
    Service for grading submitted attempts

    AI output is only ever stored as a suggestion (ai_score, ai_feedback);
    points_earned changes through apply_grade alone.
    """

    def _get_attempt(self, db: Session, attempt_id: UUID, for_update: bool = False) -> QuizAttempt:
        query = db.query(QuizAttempt).filter(QuizAttempt.id == attempt_id)
        if for_update:
            query = query.with_for_update()
        attempt = query.first()
        if not attempt:
            raise NotFound("Attempt not found")
        return attempt

    def _get_answer(self, attempt: QuizAttempt, question_id: UUID) -> Answer:
        answer = next((a for a in attempt.answers if a.question_id == question_id), None)
        if not answer:
            raise NotFound("Answer not found for this question")
        return answer

    def outcome(self, attempt: QuizAttempt) -> GradeOutcome:
        return GradeOutcome(
            attempt_id=attempt.id,
            status=attempt.status,
            score=attempt.score or 0.0,
            percentage=attempt.percentage or 0.0,
            passed=has_passed(attempt),
            pending_questions=len(pending_answers(attempt)),
        )

    def refresh_aggregate(self, attempt: QuizAttempt, now: datetime) -> bool:
        """
        Recompute score/percentage; stamp graded_at once nothing is pending

        Returns:
            True when this call completed the grading
        """
        attempt.score, attempt.percentage = compute_score(attempt)
        if pending_answers(attempt) or attempt.graded_at is not None:
            return False

        attempt.graded_at = now
        if attempt.status == AttemptStatus.SUBMITTED:
            attempt.status = AttemptStatus.GRADED.value
        return True

    def apply_grade(
        self,
        db: Session,
        attempt_id: UUID,
        question_id: UUID,
        points_earned: float,
        now: Optional[datetime] = None,
        notifier=None,
    ) -> GradeOutcome:
        """
        Set the points of one SHORT_ANSWER answer

        Raises:
            NotFound, InvalidState, ValidationFailed
        """
        now = now or utcnow()

        with entity_locks.hold(attempt_lock_key(attempt_id)):
            with transaction(db):
                attempt = self._get_attempt(db, attempt_id, for_update=True)

                gradable = attempt.status == AttemptStatus.SUBMITTED or (
                    attempt.status == AttemptStatus.EXPIRED and pending_answers(attempt)
                )
                if not gradable:
                    raise InvalidState(f"Attempt in status {attempt.status} cannot be graded")

                answer = self._get_answer(attempt, question_id)
                question = answer.question
                if question.type != QuestionType.SHORT_ANSWER:
                    raise ValidationFailed("Only short-answer questions are graded manually")
                if not math.isfinite(points_earned) or not 0 <= points_earned <= question.points:
                    raise ValidationFailed(
                        f"Points must be between 0 and {question.points}",
                        {"max_points": question.points},
                    )

                answer.points_earned = points_earned
                answer.is_correct = points_earned >= question.points * settings.SHORT_ANSWER_PASS_RATIO
                completed = self.refresh_aggregate(attempt, now)

        logger.info(
            f"Graded question {question_id} of attempt {attempt_id}: {points_earned}/{question.points}"
        )
        if completed and notifier is not None:
            notifier.notify(
                [attempt.student_id],
                "Quiz graded",
                f'Your attempt at "{attempt.quiz.title}" has been graded: {attempt.percentage}%',
                type="SUCCESS",
                link=f"/quizzes/attempts/{attempt.id}/result",
            )
        return self.outcome(attempt)

    def apply_ai_suggestion(
        self,
        db: Session,
        attempt_id: UUID,
        question_id: UUID,
        now: Optional[datetime] = None,
        notifier=None,
    ) -> GradeOutcome:
        """Promote a stored ai_score (0-100) to points_earned"""
        attempt = self._get_attempt(db, attempt_id)
        answer = self._get_answer(attempt, question_id)
        if answer.ai_score is None:
            raise InvalidState("No AI suggestion exists for this answer")

        points = round(answer.question.points * answer.ai_score / 100.0, 2)
        return self.apply_grade(db, attempt_id, question_id, points, now=now, notifier=notifier)

    async def suggest_grade(
        self,
        db: Session,
        ai_grader: AIGrader,
        attempt_id: UUID,
        question_id: UUID,
        now: Optional[datetime] = None,
    ) -> Answer:
        """
        Ask the AI capability for a suggestion and store it on the answer

        Raises:
            ExternalCapabilityUnavailable: left to the caller, which degrades to manual grading
        """
        attempt = self._get_attempt(db, attempt_id)
        if attempt.status == AttemptStatus.IN_PROGRESS:
            raise InvalidState("Attempt has not been submitted yet")

        answer = self._get_answer(attempt, question_id)
        question = answer.question
        if question.type != QuestionType.SHORT_ANSWER:
            raise ValidationFailed("Only short-answer questions can be AI graded")
        if not (answer.text_answer or "").strip():
            raise ValidationFailed("There is no answer text to grade")

        result = await ai_grader.grade(question.text, answer.text_answer, question.explanation)

        with transaction(db):
            answer.ai_score = result.score_percentage
            answer.ai_feedback = result.feedback
            answer.ai_graded_at = now or utcnow()

        logger.info(f"AI suggestion for attempt {attempt_id} question {question_id}: {result.score_percentage}%")
        return answer

    async def grade_attempt_essays(
        self,
        db: Session,
        ai_grader: AIGrader,
        attempt_id: UUID,
        now: Optional[datetime] = None,
        notifier=None,
    ) -> BulkAIGradeResult:
        """
        Store AI suggestions for every ungraded essay answer of an attempt

        "Ungraded" is evaluated at call time (ai_score IS NULL), so a run cut
        short by a provider failure picks up where it stopped.
        """
        attempt = self._get_attempt(db, attempt_id)
        if attempt.status == AttemptStatus.IN_PROGRESS:
            raise InvalidState("Attempt has not been submitted yet")

        todo = (
            db.query(Answer)
            .join(Question, Answer.question_id == Question.id)
            .filter(
                Answer.attempt_id == attempt_id,
                Question.type == QuestionType.SHORT_ANSWER.value,
                Answer.ai_score.is_(None),
                Answer.points_earned.is_(None),
                Answer.text_answer.isnot(None),
            )
            .all()
        )

        graded = 0
        for answer in todo:
            try:
                await self.suggest_grade(db, ai_grader, attempt_id, answer.question_id, now=now)
                graded += 1
            except ExternalCapabilityUnavailable:
                if graded == 0:
                    raise
                logger.warning(f"AI grading of attempt {attempt_id} stopped after {graded} answers")
                break
            except ValidationFailed as e:
                logger.info(f"Skipping answer {answer.id}: {e.message}")

        result = BulkAIGradeResult(graded_count=graded, remaining=len(todo) - graded)
        if graded and notifier is not None:
            notifier.notify(
                [attempt.student_id],
                "Essay answers reviewed",
                f'{graded} of your answers in "{attempt.quiz.title}" received AI feedback',
                link=f"/quizzes/attempts/{attempt.id}/result",
            )
        return result

    def ai_status(self, ai_grader: AIGrader) -> AIStatus:
        return AIStatus(configured=ai_grader.configured, provider=ai_grader.provider)


# Global instance
grading_service = GradingService()
