"""
Question bank: questions and options of a quiz

Validation policy is a hard reject. An MCQ needs at least two options and
exactly one correct; a TRUE_FALSE question exactly two options with one
correct; a SHORT_ANSWER question no options. AI-generated drafts go through
normalize_generated() first, which drops the MCQs it cannot trust.
"""
import hashlib
import logging
import random
from typing import List, Sequence, TypeVar
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from assessment_engine.database import transaction, not_deleted
from assessment_engine.exceptions import InvalidState, NotFound, ValidationFailed
from assessment_engine.models import Option, Question, QuestionType, Quiz, QuizAttempt, QuizStatus
from assessment_engine.schemas.grading import GeneratedQuestion
from assessment_engine.schemas.quiz import OptionInput, QuestionInput

logger = logging.getLogger(__name__)

T = TypeVar("T")


def true_false_options(correct: bool, labels=("True", "False")) -> List[OptionInput]:
    """Canonical option pair for a TRUE_FALSE question"""
    return [
        OptionInput(text=labels[0], is_correct=correct, order=0),
        OptionInput(text=labels[1], is_correct=not correct, order=1),
    ]


def validate_question(question: QuestionInput) -> None:
    """
    Check the per-type option invariants

    Raises:
        ValidationFailed: with a message naming the broken rule
    """
    correct = sum(1 for o in question.options if o.is_correct)

    if question.type == QuestionType.MULTIPLE_CHOICE:
        if len(question.options) < 2:
            raise ValidationFailed("A multiple-choice question needs at least two options")
        if correct != 1:
            raise ValidationFailed("A multiple-choice question needs exactly one correct option")

    elif question.type == QuestionType.TRUE_FALSE:
        if len(question.options) != 2:
            raise ValidationFailed("A true/false question needs exactly two options")
        if correct != 1:
            raise ValidationFailed("A true/false question needs exactly one correct option")

    elif question.type == QuestionType.SHORT_ANSWER:
        if question.options:
            raise ValidationFailed("A short-answer question cannot have options")


def normalize_generated(generated: Sequence[GeneratedQuestion]) -> List[QuestionInput]:
    """
    Turn AI output into question drafts that pass validate_question

    - SHORT_ANSWER: options are dropped
    - TRUE_FALSE with a malformed option list: rebuilt from the option marked correct
    - MULTIPLE_CHOICE without exactly one correct option: rejected, never guessed
    """
    drafts: List[QuestionInput] = []

    for index, q in enumerate(generated):
        options = [OptionInput(text=o.text, is_correct=o.is_correct, order=i) for i, o in enumerate(q.options)]

        if q.type == QuestionType.SHORT_ANSWER:
            options = []
        elif q.type == QuestionType.TRUE_FALSE and (
            len(options) != 2 or sum(o.is_correct for o in options) != 1
        ):
            marked = next((o for o in options if o.is_correct), None)
            is_true = marked is not None and marked.text.strip().lower() == "true"
            options = true_false_options(is_true)
        elif q.type == QuestionType.MULTIPLE_CHOICE and sum(o.is_correct for o in options) != 1:
            logger.warning(f"Discarding generated question {index}: ambiguous correct option")
            continue

        draft = QuestionInput(
            type=q.type,
            difficulty=q.difficulty,
            text=q.text,
            explanation=q.explanation or None,
            points=q.points,
            order=index,
            options=options,
            is_ai_generated=True,
        )
        try:
            validate_question(draft)
        except ValidationFailed as e:
            logger.warning(f"Discarding generated question {index}: {e.message}")
            continue
        drafts.append(draft)

    return drafts


def seeded_order(items: Sequence[T], *seed_parts) -> List[T]:
    """
    Deterministic permutation of items

    The same seed parts always give the same order, in any process, so an
    attempt sees one stable layout across reloads while different attempts
    get independent layouts.
    """
    digest = hashlib.sha256(":".join(str(p) for p in seed_parts).encode()).hexdigest()
    shuffled = list(items)
    random.Random(int(digest, 16)).shuffle(shuffled)
    return shuffled


class QuestionBank:
    """
    Service owning question CRUD for DRAFT quizzes and the derived total_points
    """

    def get_quiz(self, db: Session, quiz_id: UUID) -> Quiz:
        quiz = db.query(Quiz).filter(Quiz.id == quiz_id, not_deleted(Quiz)).first()
        if not quiz:
            raise NotFound("Quiz not found")
        return quiz

    def ensure_editable(self, db: Session, quiz: Quiz) -> None:
        if quiz.status != QuizStatus.DRAFT:
            raise InvalidState("Only draft quizzes can be edited")
        if db.query(QuizAttempt.id).filter(QuizAttempt.quiz_id == quiz.id).first():
            raise InvalidState("Quiz already has attempts and is read-only")

    def recalculate_total_points(self, db: Session, quiz: Quiz) -> float:
        db.flush()
        total = (
            db.query(func.coalesce(func.sum(Question.points), 0.0))
            .filter(Question.quiz_id == quiz.id)
            .scalar()
        )
        quiz.total_points = float(total)
        return quiz.total_points

    def _build_options(self, options: Sequence[OptionInput]) -> List[Option]:
        return [Option(text=o.text, is_correct=o.is_correct, order=i) for i, o in enumerate(options)]

    def add_question(self, db: Session, quiz_id: UUID, data: QuestionInput) -> Question:
        validate_question(data)

        with transaction(db):
            quiz = self.get_quiz(db, quiz_id)
            self.ensure_editable(db, quiz)

            max_order = db.query(func.max(Question.order)).filter(Question.quiz_id == quiz_id).scalar()
            question = Question(
                type=data.type.value,
                difficulty=data.difficulty.value,
                text=data.text,
                explanation=data.explanation,
                points=data.points,
                order=(max_order if max_order is not None else -1) + 1,
                is_ai_generated=data.is_ai_generated,
                options=self._build_options(data.options),
            )
            quiz.questions.append(question)
            self.recalculate_total_points(db, quiz)

        logger.info(f"Added {question.type} question to quiz {quiz_id}; total points {quiz.total_points}")
        return question

    def update_question(self, db: Session, question_id: UUID, data: QuestionInput) -> Question:
        validate_question(data)

        with transaction(db):
            question = db.get(Question, question_id)
            if not question:
                raise NotFound("Question not found")
            quiz = self.get_quiz(db, question.quiz_id)
            self.ensure_editable(db, quiz)

            question.type = data.type.value
            question.difficulty = data.difficulty.value
            question.text = data.text
            question.explanation = data.explanation
            question.points = data.points
            question.options = self._build_options(data.options)
            self.recalculate_total_points(db, quiz)

        return question

    def delete_question(self, db: Session, question_id: UUID) -> None:
        with transaction(db):
            question = db.get(Question, question_id)
            if not question:
                raise NotFound("Question not found")
            quiz = self.get_quiz(db, question.quiz_id)
            self.ensure_editable(db, quiz)

            quiz.questions.remove(question)
            self.recalculate_total_points(db, quiz)

        logger.info(f"Deleted question {question_id}; quiz {quiz.id} total points {quiz.total_points}")

    def reorder_questions(self, db: Session, quiz_id: UUID, question_ids: List[UUID]) -> None:
        with transaction(db):
            quiz = self.get_quiz(db, quiz_id)
            self.ensure_editable(db, quiz)

            by_id = {q.id: q for q in quiz.questions}
            if set(question_ids) != set(by_id) or len(question_ids) != len(by_id):
                raise ValidationFailed("Reorder must list every question of the quiz exactly once")
            for index, qid in enumerate(question_ids):
                by_id[qid].order = index

    def save_all_questions(self, db: Session, quiz_id: UUID, questions: List[QuestionInput]) -> Quiz:
        """Replace the quiz's question set in one transaction"""
        for q in questions:
            try:
                validate_question(q)
            except ValidationFailed as e:
                raise ValidationFailed(f'Question "{q.text[:30]}": {e.message}')

        with transaction(db):
            quiz = self.get_quiz(db, quiz_id)
            self.ensure_editable(db, quiz)

            existing = {q.id: q for q in quiz.questions}
            kept = {q.id for q in questions if q.id in existing}
            for qid, question in existing.items():
                if qid not in kept:
                    quiz.questions.remove(question)

            for index, data in enumerate(questions):
                question = existing.get(data.id) if data.id else None
                if question is None:
                    question = Question(quiz_id=quiz_id, is_ai_generated=data.is_ai_generated)
                    quiz.questions.append(question)
                question.type = data.type.value
                question.difficulty = data.difficulty.value
                question.text = data.text
                question.explanation = data.explanation
                question.points = data.points
                question.order = index
                question.options = self._build_options(data.options)

            self.recalculate_total_points(db, quiz)

        logger.info(f"Saved {len(questions)} questions for quiz {quiz_id}")
        return quiz


# Global instance
question_bank = QuestionBank()
