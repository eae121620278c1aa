import pytest
from fastapi.testclient import TestClient

from assessment_engine.api.deps import get_ai_grader, get_notifier
from assessment_engine.database import get_db
from assessment_engine.main import app

MCQ = {
    "type": "MULTIPLE_CHOICE",
    "text": "Which SQL clause filters groups?",
    "points": 1,
    "options": [{"text": "WHERE"}, {"text": "HAVING", "is_correct": True}],
}


@pytest.fixture
def client(session_factory, notifier, fake_grader):
    def override_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    grader = fake_grader([RuntimeError("provider down")])
    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_ai_grader] = lambda: grader
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()


def _as(user):
    return {"X-User-Id": str(user.id)}


def _published_quiz(client, instructor, offering):
    quiz = client.post(
        "/api/quizzes", json={"title": "SQL basics", "offering_id": str(offering.id)}, headers=_as(instructor)
    )
    assert quiz.status_code == 201
    quiz_id = quiz.json()["id"]
    assert client.post(f"/api/quizzes/{quiz_id}/questions", json=MCQ, headers=_as(instructor)).status_code == 201
    assert client.post(f"/api/quizzes/{quiz_id}/publish", headers=_as(instructor)).status_code == 200
    return quiz_id


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_requests_need_a_known_user(client, make):
    assert client.get("/api/semesters").status_code == 401
    assert client.get("/api/semesters", headers={"X-User-Id": "not-a-uuid"}).status_code == 401

    frozen = make.user(["semester.view"], status="FROZEN")
    response = client.get("/api/semesters", headers=_as(frozen))
    assert response.status_code == 401
    assert response.json()["error"] == "unauthenticated"


def test_missing_capability_maps_to_403(client, student, offering):
    response = client.post(
        "/api/quizzes", json={"title": "Sneaky", "offering_id": str(offering.id)}, headers=_as(student)
    )

    assert response.status_code == 403
    assert response.json()["error"] == "unauthorized"


def test_rejected_question_maps_to_422(client, instructor, offering):
    quiz_id = client.post(
        "/api/quizzes", json={"title": "SQL basics", "offering_id": str(offering.id)}, headers=_as(instructor)
    ).json()["id"]
    broken = {**MCQ, "options": [{"text": "A", "is_correct": True}, {"text": "B", "is_correct": True}]}

    response = client.post(f"/api/quizzes/{quiz_id}/questions", json=broken, headers=_as(instructor))

    assert response.status_code == 422
    assert response.json()["error"] == "validation_failed"


def test_malformed_body_maps_to_validation_failed(client, instructor, offering):
    response = client.post("/api/quizzes", json={"offering_id": str(offering.id)}, headers=_as(instructor))

    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "validation_failed"
    assert any(e.startswith("title") for e in body["details"]["errors"])


def test_student_takes_a_quiz_over_http(client, make, instructor, student, offering, notifier):
    make.enroll(offering, student)
    quiz_id = _published_quiz(client, instructor, offering)
    assert notifier.sent[0]["user_ids"] == [student.id]

    attempt = client.post(f"/api/attempts/start/{quiz_id}", headers=_as(student)).json()
    again = client.post(f"/api/attempts/start/{quiz_id}", headers=_as(student)).json()
    assert again["id"] == attempt["id"]

    view = client.get(f"/api/attempts/{attempt['id']}", headers=_as(student))
    assert view.status_code == 200
    question = view.json()["questions"][0]
    assert all(set(o) == {"id", "text"} for o in question["options"])

    having = next(o["id"] for o in question["options"] if o["text"] == "HAVING")
    submitted = client.post(
        f"/api/attempts/{attempt['id']}/submit",
        json={"answers": [{"question_id": question["id"], "selected_option_id": having}]},
        headers=_as(student),
    )
    assert submitted.json()["status"] == "GRADED"

    result = client.get(f"/api/attempts/{attempt['id']}/result", headers=_as(student)).json()
    assert (result["score"], result["percentage"], result["passed"]) == (1.0, 100.0, True)

    second_submit = client.post(f"/api/attempts/{attempt['id']}/submit", json={"answers": []}, headers=_as(student))
    assert second_submit.status_code == 409
    assert second_submit.json()["error"] == "invalid_state"


def test_unavailable_quiz_maps_to_409(client, make, instructor, student, offering):
    make.enroll(offering, student)
    draft = client.post(
        "/api/quizzes", json={"title": "Not yet", "offering_id": str(offering.id)}, headers=_as(instructor)
    ).json()

    response = client.post(f"/api/attempts/start/{draft['id']}", headers=_as(student))

    assert response.status_code == 409
    assert response.json()["error"] == "quiz_not_available"


def test_unknown_quiz_maps_to_404(client, instructor, offering):
    response = client.get(f"/api/quizzes/{offering.id}", headers=_as(instructor))

    assert response.status_code == 404


def test_ai_outage_maps_to_503(client, make, instructor, student, offering):
    make.enroll(offering, student)
    quiz_id = client.post(
        "/api/quizzes", json={"title": "Essays", "offering_id": str(offering.id)}, headers=_as(instructor)
    ).json()["id"]
    essay = client.post(
        f"/api/quizzes/{quiz_id}/questions",
        json={"type": "SHORT_ANSWER", "text": "Why index foreign keys?", "points": 2},
        headers=_as(instructor),
    ).json()
    client.post(f"/api/quizzes/{quiz_id}/publish", headers=_as(instructor))
    attempt = client.post(f"/api/attempts/start/{quiz_id}", headers=_as(student)).json()
    client.post(
        f"/api/attempts/{attempt['id']}/submit",
        json={"answers": [{"question_id": essay["id"], "text_answer": "Faster joins and deletes"}]},
        headers=_as(student),
    )

    response = client.post(
        f"/api/grading/attempts/{attempt['id']}/questions/{essay['id']}/ai-suggestion", headers=_as(instructor)
    )
    assert response.status_code == 503
    assert response.json()["retryable"] is True

    graded = client.put(
        f"/api/grading/attempts/{attempt['id']}/questions/{essay['id']}",
        json={"points_earned": 2},
        headers=_as(instructor),
    )
    assert graded.status_code == 200
    assert graded.json()["status"] == "GRADED"


def test_enrollment_capacity_maps_to_409(client, make, instructor):
    offering = make.offering(max_students=1)
    first, second = make.user(["quiz.take"]), make.user(["quiz.take"])

    ok = client.post(
        f"/api/offerings/{offering.id}/enrollments", json={"student_id": str(first.id)}, headers=_as(instructor)
    )
    full = client.post(
        f"/api/offerings/{offering.id}/enrollments", json={"student_id": str(second.id)}, headers=_as(instructor)
    )

    assert ok.status_code == 201
    assert full.status_code == 409
    assert full.json()["error"] == "capacity_exceeded"


def test_rate_limit_per_user(client, instructor, monkeypatch):
    from assessment_engine.utils.rate_limiter import rate_limiter

    monkeypatch.setattr(rate_limiter, "windows", [(60, 2)])
    rate_limiter.reset()
    try:
        codes = [client.get("/api/semesters", headers=_as(instructor)).status_code for _ in range(3)]
    finally:
        rate_limiter.reset()

    assert codes == [200, 200, 429]
    assert client.get("/health").status_code == 200
