import pytest

from assessment_engine.exceptions import InvalidState, ValidationFailed
from assessment_engine.models import QuestionType, QuizStatus
from assessment_engine.schemas.grading import GeneratedOption, GeneratedQuestion
from assessment_engine.schemas.quiz import OptionInput, QuestionInput
from assessment_engine.services.question_bank import (
    normalize_generated,
    question_bank,
    seeded_order,
    true_false_options,
    validate_question,
)


def _mcq(points=2.0, correct=(True, False, False), text="Which one is right?"):
    return QuestionInput(
        type=QuestionType.MULTIPLE_CHOICE,
        text=text,
        points=points,
        options=[OptionInput(text=f"Option {i}", is_correct=c) for i, c in enumerate(correct)],
    )


def _essay(points=5.0):
    return QuestionInput(type=QuestionType.SHORT_ANSWER, text="Explain normal forms.", points=points)


@pytest.fixture
def draft(make, offering, instructor):
    return make.quiz(offering, instructor, status=QuizStatus.DRAFT)


def test_mcq_needs_exactly_one_correct_option():
    validate_question(_mcq())

    with pytest.raises(ValidationFailed):
        validate_question(_mcq(correct=(True, True, False)))
    with pytest.raises(ValidationFailed):
        validate_question(_mcq(correct=(False, False)))
    with pytest.raises(ValidationFailed):
        validate_question(_mcq(correct=(True,)))


def test_true_false_needs_two_options():
    question = QuestionInput(type=QuestionType.TRUE_FALSE, text="The sky is blue.", options=true_false_options(True))
    validate_question(question)

    question.options.append(OptionInput(text="Maybe"))
    with pytest.raises(ValidationFailed):
        validate_question(question)


def test_short_answer_has_no_options():
    validate_question(_essay())

    with pytest.raises(ValidationFailed):
        validate_question(
            QuestionInput(type=QuestionType.SHORT_ANSWER, text="Explain.", options=[OptionInput(text="x")])
        )


def test_true_false_options_helper():
    options = true_false_options(False)
    assert [(o.text, o.is_correct) for o in options] == [("True", False), ("False", True)]


def test_total_points_follow_every_edit(db, draft):
    first = question_bank.add_question(db, draft.id, _mcq(points=2))
    second = question_bank.add_question(db, draft.id, _essay(points=5))
    assert draft.total_points == 7
    assert [first.order, second.order] == [0, 1]

    question_bank.update_question(db, first.id, _mcq(points=3.5))
    assert draft.total_points == 8.5

    question_bank.delete_question(db, second.id)
    assert draft.total_points == 3.5
    assert [q.id for q in draft.questions] == [first.id]


def test_invalid_question_is_rejected_without_changes(db, draft):
    with pytest.raises(ValidationFailed):
        question_bank.add_question(db, draft.id, _mcq(correct=(True, True)))

    db.refresh(draft)
    assert draft.questions == []
    assert draft.total_points == 0


def test_published_quiz_is_read_only(db, make, offering, instructor):
    quiz = make.quiz(offering, instructor, [(QuestionType.SHORT_ANSWER, 1, [])])

    with pytest.raises(InvalidState):
        question_bank.add_question(db, quiz.id, _essay())
    with pytest.raises(InvalidState):
        question_bank.delete_question(db, quiz.questions[0].id)


def test_reorder_requires_every_question_once(db, draft):
    a = question_bank.add_question(db, draft.id, _mcq(text="First question"))
    b = question_bank.add_question(db, draft.id, _mcq(text="Second question"))

    with pytest.raises(ValidationFailed):
        question_bank.reorder_questions(db, draft.id, [a.id])

    question_bank.reorder_questions(db, draft.id, [b.id, a.id])
    assert (b.order, a.order) == (0, 1)


def test_save_all_replaces_the_question_set(db, draft):
    kept = question_bank.add_question(db, draft.id, _mcq(points=1, text="Keep me"))
    question_bank.add_question(db, draft.id, _mcq(points=1, text="Drop me"))

    updated = _mcq(points=4, text="Keep me, edited")
    updated.id = kept.id
    quiz = question_bank.save_all_questions(db, draft.id, [_essay(points=2), updated])

    assert quiz.total_points == 6
    texts = [q.text for q in sorted(quiz.questions, key=lambda q: q.order)]
    assert texts == ["Explain normal forms.", "Keep me, edited"]


def test_save_all_is_all_or_nothing(db, draft):
    question_bank.add_question(db, draft.id, _mcq(points=1))

    with pytest.raises(ValidationFailed):
        question_bank.save_all_questions(db, draft.id, [_essay(), _mcq(correct=(True, True))])

    db.refresh(draft)
    assert len(draft.questions) == 1
    assert draft.total_points == 1


def test_seeded_order_is_stable_per_seed():
    items = list(range(10))

    assert seeded_order(items, "attempt-1", "questions") == seeded_order(items, "attempt-1", "questions")
    assert sorted(seeded_order(items, "attempt-1", "questions")) == items
    assert seeded_order(items, "attempt-1", "questions") != seeded_order(items, "attempt-2", "questions")


def test_normalize_generated_drafts():
    generated = [
        GeneratedQuestion(
            type=QuestionType.MULTIPLE_CHOICE,
            text="Pick the prime number",
            options=[GeneratedOption(text="4"), GeneratedOption(text="7", is_correct=True)],
        ),
        GeneratedQuestion(
            type=QuestionType.MULTIPLE_CHOICE,
            text="Ambiguous question",
            options=[GeneratedOption(text="a", is_correct=True), GeneratedOption(text="b", is_correct=True)],
        ),
        GeneratedQuestion(
            type=QuestionType.TRUE_FALSE,
            text="Water boils at 100C at sea level",
            options=[
                GeneratedOption(text="True", is_correct=True),
                GeneratedOption(text="False"),
                GeneratedOption(text="Not sure"),
            ],
        ),
        GeneratedQuestion(
            type=QuestionType.SHORT_ANSWER,
            text="Describe photosynthesis",
            options=[GeneratedOption(text="stray option")],
        ),
    ]

    drafts = normalize_generated(generated)

    assert [d.text for d in drafts] == [
        "Pick the prime number",
        "Water boils at 100C at sea level",
        "Describe photosynthesis",
    ]
    assert all(d.is_ai_generated for d in drafts)
    assert [(o.text, o.is_correct) for o in drafts[1].options] == [("True", True), ("False", False)]
    assert drafts[2].options == []
