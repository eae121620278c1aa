"""
Assessment engine - composition root

Every operation authorizes the actor, runs the owning service and wraps the
outcome in an ActionResult. Typed failures, input validation errors and store
failures are all turned into failed results here; no exception leaves the
engine.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union
from uuid import UUID

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from assessment_engine.exceptions import AssessmentError, ValidationFailed
from assessment_engine.schemas.academic import (
    BulkEnrollRequest,
    EnrollmentData,
    OfferingCreate,
    OfferingData,
    OfferingUpdate,
    SemesterCreate,
    SemesterData,
)
from assessment_engine.schemas.common import ActionResult
from assessment_engine.schemas.grading import GenerateQuestionsRequest
from assessment_engine.schemas.notification import NotificationData
from assessment_engine.schemas.quiz import (
    AnswerInput,
    AttemptSummary,
    QuestionData,
    QuestionInput,
    QuizCreate,
    QuizData,
    QuizUpdate,
)
from assessment_engine.services.ai_grader import AIGrader, UnavailableGrader
from assessment_engine.services.attempt_service import AttemptService, attempt_service
from assessment_engine.services.enrollment_service import CapacityLedger, capacity_ledger
from assessment_engine.services.grading_service import GradingService, grading_service
from assessment_engine.services.notification_service import notification_service
from assessment_engine.services.permissions import Actor, Any as AnyOf, Single, require_permission
from assessment_engine.services.question_bank import QuestionBank, normalize_generated, question_bank
from assessment_engine.services.quiz_service import QuizService, quiz_service
from assessment_engine.services.semester_service import SemesterService, semester_service
from assessment_engine.utils.clock import utcnow

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _coerce(schema: Type[M], data: Union[M, Dict[str, Any]]) -> M:
    return data if isinstance(data, schema) else schema.model_validate(data)


def quiz_data(quiz) -> QuizData:
    data = QuizData.model_validate(quiz)
    data.questions.sort(key=lambda q: q.order)
    return data


class AssessmentEngine:
    """
    One engine per request: a session, the authenticated actor and the
    external capabilities (AI grader, notifier, clock) it may use.
    """

    def __init__(
        self,
        db: Session,
        actor: Actor,
        ai_grader: Optional[AIGrader] = None,
        notifier=None,
        clock: Callable[[], datetime] = utcnow,
        quizzes: QuizService = quiz_service,
        bank: QuestionBank = question_bank,
        attempts: AttemptService = attempt_service,
        grading: GradingService = grading_service,
        ledger: CapacityLedger = capacity_ledger,
        semesters: SemesterService = semester_service,
    ):
        self.db = db
        self.actor = actor
        self.ai_grader = ai_grader or UnavailableGrader()
        self.notifier = notifier if notifier is not None else notification_service
        self.clock = clock
        self.quizzes = quizzes
        self.bank = bank
        self.attempts = attempts
        self.grading = grading
        self.ledger = ledger
        self.semesters = semesters

    # ============================================
    # Outcome wrapping
    # ============================================

    def _failed(self, error: AssessmentError) -> ActionResult:
        logger.warning(f"{type(error).__name__} for {self.actor.user_id}: {error.message}")
        return ActionResult.fail(error)

    def _invalid_input(self, error: ValidationError) -> ActionResult:
        messages = [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in error.errors()]
        return self._failed(ValidationFailed("Invalid input", {"errors": messages}))

    def _store_down(self, error: SQLAlchemyError) -> ActionResult:
        self.db.rollback()
        logger.error(f"Store failure: {str(error)}")
        return ActionResult(
            success=False,
            error="The data store is unavailable, please try again",
            error_code="store_unavailable",
        )

    def _run(self, operation: Callable[[], Any]) -> ActionResult:
        try:
            return ActionResult.ok(operation())
        except AssessmentError as e:
            return self._failed(e)
        except ValidationError as e:
            return self._invalid_input(e)
        except SQLAlchemyError as e:
            return self._store_down(e)

    async def _arun(self, operation: Callable[[], Any]) -> ActionResult:
        try:
            return ActionResult.ok(await operation())
        except AssessmentError as e:
            return self._failed(e)
        except ValidationError as e:
            return self._invalid_input(e)
        except SQLAlchemyError as e:
            return self._store_down(e)

    def _guarded(self, required, operation: Callable[[], Any]) -> ActionResult:
        def run():
            require_permission(self.actor, required)
            return operation()
        return self._run(run)

    # ============================================
    # Quizzes
    # ============================================

    def get_quiz(self, quiz_id: UUID) -> ActionResult:
        return self._guarded("quiz.view", lambda: quiz_data(self.quizzes.get(self.db, quiz_id)))

    def list_quizzes(self, offering_id: UUID) -> ActionResult:
        return self._guarded(
            "quiz.view",
            lambda: [quiz_data(q) for q in self.quizzes.list_for_offering(self.db, offering_id)],
        )

    def create_quiz(self, data: Union[QuizCreate, Dict[str, Any]]) -> ActionResult:
        return self._guarded(
            "quiz.create",
            lambda: quiz_data(self.quizzes.create(self.db, self.actor.user_id, _coerce(QuizCreate, data))),
        )

    def update_quiz(self, quiz_id: UUID, data: Union[QuizUpdate, Dict[str, Any]]) -> ActionResult:
        return self._guarded(
            "quiz.edit",
            lambda: quiz_data(self.quizzes.update(self.db, quiz_id, _coerce(QuizUpdate, data))),
        )

    def publish_quiz(self, quiz_id: UUID) -> ActionResult:
        return self._guarded(
            "quiz.publish",
            lambda: quiz_data(self.quizzes.publish(self.db, quiz_id, notifier=self.notifier)),
        )

    def close_quiz(self, quiz_id: UUID) -> ActionResult:
        return self._guarded("quiz.publish", lambda: quiz_data(self.quizzes.close(self.db, quiz_id)))

    def reopen_quiz(self, quiz_id: UUID) -> ActionResult:
        return self._guarded("quiz.publish", lambda: quiz_data(self.quizzes.reopen(self.db, quiz_id)))

    def delete_quiz(self, quiz_id: UUID) -> ActionResult:
        return self._guarded("quiz.delete", lambda: self.quizzes.delete(self.db, quiz_id))

    def duplicate_quiz(self, quiz_id: UUID) -> ActionResult:
        return self._guarded(
            "quiz.create",
            lambda: quiz_data(self.quizzes.duplicate(self.db, quiz_id, self.actor.user_id)),
        )

    def get_quiz_stats(self, offering_id: Optional[UUID] = None) -> ActionResult:
        return self._guarded("quiz.view", lambda: self.quizzes.stats(self.db, offering_id))

    # ============================================
    # Question bank
    # ============================================

    def add_question(self, quiz_id: UUID, data: Union[QuestionInput, Dict[str, Any]]) -> ActionResult:
        return self._guarded(
            "quiz.edit",
            lambda: QuestionData.model_validate(
                self.bank.add_question(self.db, quiz_id, _coerce(QuestionInput, data))
            ),
        )

    def update_question(self, question_id: UUID, data: Union[QuestionInput, Dict[str, Any]]) -> ActionResult:
        return self._guarded(
            "quiz.edit",
            lambda: QuestionData.model_validate(
                self.bank.update_question(self.db, question_id, _coerce(QuestionInput, data))
            ),
        )

    def delete_question(self, question_id: UUID) -> ActionResult:
        return self._guarded("quiz.edit", lambda: self.bank.delete_question(self.db, question_id))

    def reorder_questions(self, quiz_id: UUID, question_ids: List[UUID]) -> ActionResult:
        return self._guarded("quiz.edit", lambda: self.bank.reorder_questions(self.db, quiz_id, question_ids))

    def save_all_questions(self, quiz_id: UUID, questions: List[Union[QuestionInput, Dict[str, Any]]]) -> ActionResult:
        return self._guarded(
            "quiz.edit",
            lambda: quiz_data(
                self.bank.save_all_questions(self.db, quiz_id, [_coerce(QuestionInput, q) for q in questions])
            ),
        )

    async def generate_questions(self, data: Union[GenerateQuestionsRequest, Dict[str, Any]]) -> ActionResult:
        """Draft questions with the AI capability; nothing is saved"""
        async def run():
            require_permission(self.actor, "ai.generate_quiz")
            request = _coerce(GenerateQuestionsRequest, data)
            generated = await self.ai_grader.generate_questions(request)
            drafts = normalize_generated(generated)
            logger.info(f"Generated {len(drafts)} usable drafts out of {len(generated)} for {self.actor.user_id}")
            return drafts
        return await self._arun(run)

    # ============================================
    # Attempts (student side)
    # ============================================

    def list_student_quizzes(self) -> ActionResult:
        return self._guarded("quiz.take", lambda: self.attempts.list_student_quizzes(self.db, self.actor.user_id))

    def start_attempt(self, quiz_id: UUID) -> ActionResult:
        return self._guarded(
            "quiz.take",
            lambda: AttemptSummary.model_validate(
                self.attempts.start_or_resume(self.db, quiz_id, self.actor.user_id, now=self.clock())
            ),
        )

    def get_quiz_for_taking(self, attempt_id: UUID) -> ActionResult:
        return self._guarded(
            "quiz.take",
            lambda: self.attempts.get_for_taking(self.db, attempt_id, self.actor.user_id, now=self.clock()),
        )

    def submit_answer(self, attempt_id: UUID, data: Union[AnswerInput, Dict[str, Any]]) -> ActionResult:
        def run():
            answer = self.attempts.submit_answer(
                self.db, attempt_id, self.actor.user_id, _coerce(AnswerInput, data), now=self.clock()
            )
            return {"question_id": answer.question_id, "answered_at": answer.answered_at}
        return self._guarded("quiz.take", run)

    def submit_quiz(self, attempt_id: UUID, answers: List[Union[AnswerInput, Dict[str, Any]]] = ()) -> ActionResult:
        return self._guarded(
            "quiz.take",
            lambda: AttemptSummary.model_validate(
                self.attempts.submit_quiz(
                    self.db,
                    attempt_id,
                    self.actor.user_id,
                    [_coerce(AnswerInput, a) for a in answers],
                    now=self.clock(),
                )
            ),
        )

    def get_remaining_time(self, attempt_id: UUID) -> ActionResult:
        return self._guarded(
            "quiz.take",
            lambda: self.attempts.get_remaining_time(self.db, attempt_id, self.actor.user_id, now=self.clock()),
        )

    def get_result(self, attempt_id: UUID) -> ActionResult:
        """Graders see every result in full; students only their own, under the quiz's visibility flags"""
        def run():
            if self.actor.can(Single("quiz.grade")):
                return self.attempts.get_result(self.db, attempt_id, now=self.clock(), enforce_visibility=False)
            require_permission(self.actor, "quiz.take")
            return self.attempts.get_result(self.db, attempt_id, self.actor.user_id, now=self.clock())
        return self._run(run)

    # ============================================
    # Grading (instructor side)
    # ============================================

    def apply_grade(self, attempt_id: UUID, question_id: UUID, points_earned: float) -> ActionResult:
        return self._guarded(
            "quiz.grade",
            lambda: self.grading.apply_grade(
                self.db, attempt_id, question_id, points_earned, now=self.clock(), notifier=self.notifier
            ),
        )

    def apply_ai_suggestion(self, attempt_id: UUID, question_id: UUID) -> ActionResult:
        return self._guarded(
            "quiz.grade",
            lambda: self.grading.apply_ai_suggestion(
                self.db, attempt_id, question_id, now=self.clock(), notifier=self.notifier
            ),
        )

    async def suggest_grade(self, attempt_id: UUID, question_id: UUID) -> ActionResult:
        async def run():
            require_permission(self.actor, "quiz.grade")
            answer = await self.grading.suggest_grade(
                self.db, self.ai_grader, attempt_id, question_id, now=self.clock()
            )
            return {"question_id": answer.question_id, "ai_score": answer.ai_score, "ai_feedback": answer.ai_feedback}
        return await self._arun(run)

    async def grade_attempt_essays(self, attempt_id: UUID) -> ActionResult:
        async def run():
            require_permission(self.actor, "quiz.grade")
            return await self.grading.grade_attempt_essays(
                self.db, self.ai_grader, attempt_id, now=self.clock(), notifier=self.notifier
            )
        return await self._arun(run)

    def ai_status(self) -> ActionResult:
        return self._run(lambda: self.grading.ai_status(self.ai_grader))

    # ============================================
    # Offerings and enrollments
    # ============================================

    def create_offering(self, data: Union[OfferingCreate, Dict[str, Any]]) -> ActionResult:
        return self._guarded(
            "offering.create",
            lambda: OfferingData.model_validate(self.ledger.create_offering(self.db, _coerce(OfferingCreate, data))),
        )

    def update_offering(self, offering_id: UUID, data: Union[OfferingUpdate, Dict[str, Any]]) -> ActionResult:
        return self._guarded(
            "offering.edit",
            lambda: OfferingData.model_validate(
                self.ledger.update_offering(self.db, offering_id, _coerce(OfferingUpdate, data))
            ),
        )

    def delete_offering(self, offering_id: UUID) -> ActionResult:
        return self._guarded("offering.delete", lambda: self.ledger.delete_offering(self.db, offering_id))

    def can_enroll(self, offering_id: UUID) -> ActionResult:
        return self._guarded("offering.view", lambda: self.ledger.can_enroll(self.db, offering_id))

    def enroll_student(self, offering_id: UUID, student_id: UUID) -> ActionResult:
        return self._guarded(
            "offering.enroll_students",
            lambda: EnrollmentData.model_validate(self.ledger.enroll(self.db, offering_id, student_id)),
        )

    def bulk_enroll(self, offering_id: UUID, data: Union[BulkEnrollRequest, Dict[str, Any]]) -> ActionResult:
        return self._guarded(
            "offering.enroll_students",
            lambda: self.ledger.bulk_enroll(self.db, offering_id, _coerce(BulkEnrollRequest, data).student_ids),
        )

    def drop_student(self, enrollment_id: UUID) -> ActionResult:
        return self._guarded(
            "offering.enroll_students",
            lambda: EnrollmentData.model_validate(self.ledger.drop(self.db, enrollment_id)),
        )

    def list_enrollments(self, offering_id: UUID) -> ActionResult:
        return self._guarded(
            "offering.view",
            lambda: [EnrollmentData.model_validate(e) for e in self.ledger.list_enrollments(self.db, offering_id)],
        )

    # ============================================
    # Semesters
    # ============================================

    def list_semesters(self) -> ActionResult:
        return self._guarded(
            "semester.view",
            lambda: [SemesterData.model_validate(s) for s in self.semesters.list(self.db)],
        )

    def get_current_semester(self) -> ActionResult:
        def run():
            current = self.semesters.get_current(self.db)
            return SemesterData.model_validate(current) if current else None
        return self._guarded("semester.view", run)

    def create_semester(self, data: Union[SemesterCreate, Dict[str, Any]]) -> ActionResult:
        return self._guarded(
            "semester.manage",
            lambda: SemesterData.model_validate(self.semesters.create(self.db, _coerce(SemesterCreate, data))),
        )

    def activate_semester(self, semester_id: UUID) -> ActionResult:
        return self._guarded(
            AnyOf("semester.manage", "semester.set_current"),
            lambda: SemesterData.model_validate(self.semesters.activate(self.db, semester_id)),
        )

    def deactivate_semester(self, semester_id: UUID) -> ActionResult:
        return self._guarded(
            AnyOf("semester.manage", "semester.set_current"),
            lambda: SemesterData.model_validate(self.semesters.deactivate(self.db, semester_id)),
        )

    def delete_semester(self, semester_id: UUID) -> ActionResult:
        return self._guarded("semester.manage", lambda: self.semesters.delete(self.db, semester_id))

    # ============================================
    # Notifications
    # ============================================

    def list_notifications(self, unread_only: bool = False) -> ActionResult:
        return self._guarded(
            "notification.view",
            lambda: [
                NotificationData.model_validate(n)
                for n in notification_service.list_notifications(self.db, self.actor.user_id, unread_only)
            ],
        )

    def mark_notification_read(self, notification_id: UUID) -> ActionResult:
        return self._guarded(
            "notification.view",
            lambda: NotificationData.model_validate(
                notification_service.mark_read(self.db, self.actor.user_id, notification_id)
            ),
        )
