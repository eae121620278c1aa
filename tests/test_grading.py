import asyncio
from datetime import timedelta

import pytest

from assessment_engine.exceptions import ExternalCapabilityUnavailable, InvalidState, ValidationFailed
from assessment_engine.models import AttemptStatus, QuestionType
from assessment_engine.schemas.grading import GenerateQuestionsRequest
from assessment_engine.schemas.quiz import AnswerInput
from assessment_engine.services.ai_grader import UnavailableGrader, build_ai_grader, strip_json_fence
from assessment_engine.services.attempt_service import attempt_service
from assessment_engine.services.grading_service import grading_service

from conftest import T0

ESSAY_QUIZ = [
    (QuestionType.MULTIPLE_CHOICE, 2, [("Right", True), ("Wrong", False)]),
    (QuestionType.SHORT_ANSWER, 4, []),
    (QuestionType.SHORT_ANSWER, 4, []),
]


@pytest.fixture
def submitted(db, make, offering, instructor, student):
    """Attempt with a correct MCQ and two essay answers waiting for a grader"""
    make.enroll(offering, student)
    quiz = make.quiz(offering, instructor, ESSAY_QUIZ)
    mcq, essay1, essay2 = quiz.questions
    attempt = attempt_service.start_or_resume(db, quiz.id, student.id, now=T0)
    attempt_service.submit_quiz(
        db,
        attempt.id,
        student.id,
        [
            AnswerInput(question_id=mcq.id, selected_option_id=mcq.options[0].id),
            AnswerInput(question_id=essay1.id, text_answer="A primary key identifies each row."),
            AnswerInput(question_id=essay2.id, text_answer="Joins combine rows from tables."),
        ],
        now=T0 + timedelta(minutes=10),
    )
    return attempt


def test_essays_keep_attempt_submitted(submitted):
    outcome = grading_service.outcome(submitted)

    assert outcome.status == AttemptStatus.SUBMITTED
    assert outcome.score == 2
    assert outcome.pending_questions == 2


def test_grading_every_essay_completes_the_attempt(db, submitted, notifier):
    _, essay1, essay2 = submitted.quiz.questions
    later = T0 + timedelta(hours=1)

    partial = grading_service.apply_grade(db, submitted.id, essay1.id, 3, now=later, notifier=notifier)
    assert partial.status == AttemptStatus.SUBMITTED
    assert partial.pending_questions == 1
    assert notifier.sent == []

    done = grading_service.apply_grade(db, submitted.id, essay2.id, 1, now=later, notifier=notifier)
    assert done.status == AttemptStatus.GRADED
    assert done.score == 6
    assert done.percentage == 60.0
    assert done.passed is True
    assert submitted.graded_at == later

    assert len(notifier.sent) == 1
    assert notifier.sent[0]["user_ids"] == [submitted.student_id]
    assert notifier.sent[0]["title"] == "Quiz graded"


def test_essay_correctness_follows_pass_ratio(db, submitted):
    _, essay1, essay2 = submitted.quiz.questions

    grading_service.apply_grade(db, submitted.id, essay1.id, 2, now=T0)
    grading_service.apply_grade(db, submitted.id, essay2.id, 1.5, now=T0)

    answers = {a.question_id: a for a in submitted.answers}
    assert answers[essay1.id].is_correct is True
    assert answers[essay2.id].is_correct is False


def test_regrading_updates_the_score(db, submitted):
    _, essay1, essay2 = submitted.quiz.questions
    grading_service.apply_grade(db, submitted.id, essay1.id, 4, now=T0)
    grading_service.apply_grade(db, submitted.id, essay2.id, 4, now=T0)

    outcome = grading_service.apply_grade(db, submitted.id, essay1.id, 0, now=T0)

    assert outcome.score == 6
    assert outcome.status == AttemptStatus.GRADED


def test_only_essays_are_graded_manually(db, submitted):
    mcq = submitted.quiz.questions[0]

    with pytest.raises(ValidationFailed):
        grading_service.apply_grade(db, submitted.id, mcq.id, 1, now=T0)


def test_points_are_bounded(db, submitted):
    essay = submitted.quiz.questions[1]

    with pytest.raises(ValidationFailed) as exc:
        grading_service.apply_grade(db, submitted.id, essay.id, 4.5, now=T0)
    assert exc.value.details == {"max_points": 4}

    with pytest.raises(ValidationFailed):
        grading_service.apply_grade(db, submitted.id, essay.id, -1, now=T0)


@pytest.mark.parametrize("points", [float("nan"), float("inf")])
def test_non_finite_points_are_rejected(db, submitted, points):
    essay = submitted.quiz.questions[1]

    with pytest.raises(ValidationFailed):
        grading_service.apply_grade(db, submitted.id, essay.id, points, now=T0)

    db.refresh(submitted)
    answer = next(a for a in submitted.answers if a.question_id == essay.id)
    assert answer.points_earned is None
    assert submitted.status == AttemptStatus.SUBMITTED


def test_in_progress_attempt_cannot_be_graded(db, make, offering, instructor, student):
    make.enroll(offering, student)
    quiz = make.quiz(offering, instructor, ESSAY_QUIZ)
    attempt = attempt_service.start_or_resume(db, quiz.id, student.id, now=T0)

    with pytest.raises(InvalidState):
        grading_service.apply_grade(db, attempt.id, quiz.questions[1].id, 1, now=T0)


def test_expired_attempt_stays_expired_once_graded(db, make, offering, instructor, student):
    make.enroll(offering, student)
    quiz = make.quiz(offering, instructor, [(QuestionType.SHORT_ANSWER, 5, [])])
    essay = quiz.questions[0]
    attempt = attempt_service.start_or_resume(db, quiz.id, student.id, now=T0)
    attempt_service.submit_answer(
        db, attempt.id, student.id, AnswerInput(question_id=essay.id, text_answer="Partial thoughts"), now=T0
    )
    attempt_service.get_remaining_time(db, attempt.id, student.id, now=T0 + timedelta(hours=1))
    assert attempt.status == AttemptStatus.EXPIRED

    graded_at = T0 + timedelta(hours=2)
    outcome = grading_service.apply_grade(db, attempt.id, essay.id, 5, now=graded_at)

    assert outcome.status == AttemptStatus.EXPIRED
    assert outcome.percentage == 100.0
    assert attempt.graded_at == graded_at

    with pytest.raises(InvalidState):
        grading_service.apply_grade(db, attempt.id, essay.id, 4, now=graded_at)


def test_ai_suggestion_never_changes_points(db, submitted, fake_grader):
    essay = submitted.quiz.questions[1]
    grader = fake_grader([{"score_percentage": 75, "feedback": "Mostly right"}])

    answer = asyncio.run(grading_service.suggest_grade(db, grader, submitted.id, essay.id, now=T0))

    assert answer.ai_score == 75
    assert answer.ai_feedback == "Mostly right"
    assert answer.points_earned is None
    assert "A primary key identifies each row." in grader.prompts[0]
    assert "Model answer 2" in grader.prompts[0]


def test_apply_ai_suggestion_promotes_the_score(db, submitted, fake_grader):
    essay = submitted.quiz.questions[1]
    asyncio.run(
        grading_service.suggest_grade(db, fake_grader([{"score_percentage": 75}]), submitted.id, essay.id, now=T0)
    )

    outcome = grading_service.apply_ai_suggestion(db, submitted.id, essay.id, now=T0)

    assert outcome.score == 5
    assert outcome.pending_questions == 1


def test_apply_ai_suggestion_needs_a_suggestion(db, submitted):
    with pytest.raises(InvalidState):
        grading_service.apply_ai_suggestion(db, submitted.id, submitted.quiz.questions[1].id, now=T0)


def test_bulk_ai_grading_is_restartable(db, submitted, fake_grader, notifier):
    flaky = fake_grader([{"score_percentage": 90, "feedback": "Good"}, RuntimeError("quota exceeded")])

    first = asyncio.run(grading_service.grade_attempt_essays(db, flaky, submitted.id, now=T0, notifier=notifier))
    assert (first.graded_count, first.remaining) == (1, 1)
    assert len(notifier.sent) == 1

    recovered = fake_grader([{"score_percentage": 40, "feedback": "Thin"}])
    second = asyncio.run(grading_service.grade_attempt_essays(db, recovered, submitted.id, now=T0))
    assert (second.graded_count, second.remaining) == (1, 0)
    assert len(recovered.prompts) == 1

    assert sorted(a.ai_score for a in submitted.answers if a.ai_score is not None) == [40, 90]
    assert all(a.points_earned is None for a in submitted.answers if a.ai_score is not None)


def test_bulk_ai_grading_fails_when_nothing_was_graded(db, submitted, notifier):
    with pytest.raises(ExternalCapabilityUnavailable) as exc:
        asyncio.run(grading_service.grade_attempt_essays(db, UnavailableGrader(), submitted.id, notifier=notifier))

    assert exc.value.retryable is True
    assert notifier.sent == []


def test_grader_parses_fenced_json_and_clamps(fake_grader):
    grader = fake_grader(['```json\n{"score_percentage": 140, "feedback": "Over the top"}\n```'])

    result = asyncio.run(grader.grade("What is ACID?", "Atomicity and friends"))

    assert result.score_percentage == 100
    assert result.feedback == "Over the top"


def test_grader_rejects_garbage(fake_grader):
    with pytest.raises(ExternalCapabilityUnavailable):
        asyncio.run(fake_grader(["I think this deserves a B"]).grade("Q?", "A"))
    with pytest.raises(ExternalCapabilityUnavailable):
        asyncio.run(fake_grader([ConnectionError("timeout")]).grade("Q?", "A"))


def test_generate_questions_skips_broken_items(fake_grader):
    reply = {
        "questions": [
            {"type": "TRUE_FALSE", "text": "SQL is declarative", "options": [
                {"text": "True", "is_correct": True}, {"text": "False"}]},
            {"type": "ESSAY", "text": "Unknown type here"},
        ]
    }
    request = GenerateQuestionsRequest(
        topic="Relational databases", count=2, question_types=[QuestionType.TRUE_FALSE]
    )

    generated = asyncio.run(fake_grader([reply]).generate_questions(request))

    assert [q.text for q in generated] == ["SQL is declarative"]


def test_strip_json_fence():
    assert strip_json_fence('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_json_fence('{"a": 1}') == '{"a": 1}'


def test_missing_api_key_degrades_to_unavailable(monkeypatch):
    from assessment_engine.config import settings

    monkeypatch.setattr(settings, "AI_PROVIDER", "gemini")
    monkeypatch.setattr(settings, "GEMINI_API_KEY", "")
    grader = build_ai_grader(settings)

    assert isinstance(grader, UnavailableGrader)
    assert grading_service.ai_status(grader).model_dump() == {"configured": False, "provider": "gemini"}


class _FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        message = type("Message", (), {"content": self.content})
        choice = type("Choice", (), {"message": message})
        return type("Completion", (), {"choices": [choice]})


def test_openai_adapter_uses_json_mode():
    from assessment_engine.services.openai_service import OpenAIGrader

    grader = OpenAIGrader(api_key="sk-test", model="gpt-test", grading_temperature=0.1)
    completions = _FakeCompletions('{"score_percentage": 55, "feedback": "Half there"}')
    grader.client = type("Client", (), {"chat": type("Chat", (), {"completions": completions})})

    result = asyncio.run(grader.grade("Define a view.", "A saved query"))

    assert result.score_percentage == 55
    call = completions.calls[0]
    assert call["model"] == "gpt-test"
    assert call["temperature"] == 0.1
    assert call["response_format"] == {"type": "json_object"}
    assert call["messages"][0]["role"] == "system"


class _BlockedResponse:
    @property
    def text(self):
        raise ValueError("response was blocked")


def test_gemini_adapter(monkeypatch):
    from assessment_engine.services import gemini_service

    replies = [type("Response", (), {"text": '{"score_percentage": 80, "feedback": "Solid"}'}), _BlockedResponse()]

    class _Model:
        def __init__(self, name):
            self.name = name

        def generate_content(self, prompt, generation_config):
            assert generation_config["response_mime_type"] == "application/json"
            return replies.pop(0)

    monkeypatch.setattr(gemini_service.genai, "configure", lambda **kwargs: None)
    monkeypatch.setattr(gemini_service.genai, "GenerativeModel", _Model)
    grader = gemini_service.GeminiGrader(api_key="test-key", model="gemini-test")

    assert asyncio.run(grader.grade("Define a view.", "A saved query")).score_percentage == 80
    with pytest.raises(ExternalCapabilityUnavailable):
        asyncio.run(grader.grade("Define a view.", "A saved query"))
