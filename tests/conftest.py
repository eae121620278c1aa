import os

# Settings are read at import time; keep tests off real services
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://127.0.0.1:1/0"
os.environ["AI_PROVIDER"] = "none"
os.environ["RATE_LIMIT_PER_MINUTE"] = "0"
os.environ["RATE_LIMIT_PER_HOUR"] = "0"

import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from assessment_engine.database import init_db
from assessment_engine.models import (
    Course,
    CourseOffering,
    Enrollment,
    Option,
    Permission,
    Question,
    Quiz,
    QuizStatus,
    Role,
    Semester,
    User,
    UserStatus,
)
from assessment_engine.services.ai_grader import AIGrader
from assessment_engine.services.permissions import Actor

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

INSTRUCTOR_CAPS = [
    "quiz.view", "quiz.create", "quiz.edit", "quiz.delete", "quiz.publish", "quiz.grade",
    "offering.view", "offering.create", "offering.edit", "offering.delete", "offering.enroll_students",
    "semester.view", "ai.generate_quiz", "notification.view",
]
STUDENT_CAPS = ["quiz.take", "notification.view"]


class _Clock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class _FakeNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, user_ids, title, body, **kwargs):
        self.sent.append({"user_ids": list(user_ids), "title": title, "body": body, **kwargs})
        return len(self.sent[-1]["user_ids"])


class _FakeAIGrader(AIGrader):
    """Replays canned provider replies; an Exception instance in the queue is raised"""

    provider = "fake"

    def __init__(self, replies=None):
        super().__init__()
        self.replies = list(replies or [])
        self.prompts = []

    def _complete(self, system_prompt, prompt, temperature):
        self.prompts.append(prompt)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply if isinstance(reply, str) else json.dumps(reply)


class _Factory:
    def __init__(self, db):
        self.db = db
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    def permission(self, code):
        perm = self.db.query(Permission).filter(Permission.code == code).first()
        if not perm:
            perm = Permission(code=code, category=code.split(".")[0])
            self.db.add(perm)
            self.db.flush()
        return perm

    def user(self, capabilities=(), status=UserStatus.ACTIVE, is_system=False):
        n = self._next()
        role = Role(code=f"role-{n}", name=f"Role {n}", is_system=is_system)
        role.permissions = [self.permission(c) for c in capabilities]
        user = User(email=f"user{n}@uni.test", name=f"User {n}", status=status)
        user.roles = [role]
        self.db.add(user)
        self.db.commit()
        return user

    def actor(self, user, capabilities=None):
        caps = capabilities if capabilities is not None else [p.code for r in user.roles for p in r.permissions]
        return Actor(user_id=user.id, capabilities=frozenset(caps))

    def course(self, code=None):
        n = self._next()
        course = Course(code=code or f"CS{100 + n}", name=f"Course {n}")
        self.db.add(course)
        self.db.commit()
        return course

    def semester(self, code=None, is_current=False):
        n = self._next()
        semester = Semester(
            code=code or f"2025-S{n}",
            name=f"Semester {n}",
            type="FIRST",
            year=2025,
            start_date=T0 - timedelta(days=30),
            end_date=T0 + timedelta(days=90),
            is_active=is_current,
            is_current=is_current,
        )
        self.db.add(semester)
        self.db.commit()
        return semester

    def offering(self, max_students=30, course=None, semester=None, section="1"):
        course = course or self.course()
        semester = semester or self.semester()
        offering = CourseOffering(
            code=f"{course.code}-{semester.code}-{section}",
            course_id=course.id,
            semester_id=semester.id,
            section=section,
            max_students=max_students,
        )
        self.db.add(offering)
        self.db.commit()
        return offering

    def enroll(self, offering, student):
        enrollment = Enrollment(student_id=student.id, offering_id=offering.id, enrolled_at=T0)
        self.db.add(enrollment)
        self.db.commit()
        return enrollment

    def quiz(self, offering, creator, questions=(), status=QuizStatus.PUBLISHED, **settings):
        """
        questions: tuples of (type, points, options) where options is a list of
        (text, is_correct); SHORT_ANSWER takes an empty list
        """
        quiz = Quiz(
            title=settings.pop("title", "Midterm quiz"),
            offering_id=offering.id,
            creator_id=creator.id,
            status=status.value,
            duration=settings.pop("duration", 30),
            passing_score=settings.pop("passing_score", 60.0),
            **settings,
        )
        for order, (qtype, points, options) in enumerate(questions):
            quiz.questions.append(
                Question(
                    type=qtype.value,
                    text=f"Question {order + 1}?",
                    explanation=f"Model answer {order + 1}",
                    points=points,
                    order=order,
                    options=[Option(text=t, is_correct=c, order=i) for i, (t, c) in enumerate(options)],
                )
            )
        quiz.total_points = float(sum(points for _, points, _ in questions))
        self.db.add(quiz)
        self.db.commit()
        return quiz


@pytest.fixture
def db_engine(tmp_path):
    # File-backed so that worker threads share one database
    engine = create_engine(
        f"sqlite:///{tmp_path / 'assessment.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make(db):
    return _Factory(db)


@pytest.fixture
def clock():
    return _Clock()


@pytest.fixture
def notifier():
    return _FakeNotifier()


@pytest.fixture
def fake_grader():
    return _FakeAIGrader


@pytest.fixture
def instructor(make):
    return make.user(INSTRUCTOR_CAPS)


@pytest.fixture
def student(make):
    return make.user(STUDENT_CAPS)


@pytest.fixture
def offering(make):
    return make.offering()
