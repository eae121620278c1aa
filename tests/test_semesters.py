from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest
from sqlalchemy import text

from assessment_engine.exceptions import HasOfferings, IsCurrentSemester, NotFound, ValidationFailed
from assessment_engine.models import Semester
from assessment_engine.schemas.academic import SemesterCreate
from assessment_engine.services.enrollment_service import capacity_ledger
from assessment_engine.services.semester_service import semester_service


def _create(db, code):
    return semester_service.create(
        db,
        SemesterCreate(
            code=code,
            name=f"Semester {code}",
            type="SECOND",
            year=2026,
            start_date=datetime(2026, 2, 1, tzinfo=timezone.utc),
            end_date=datetime(2026, 6, 1, tzinfo=timezone.utc),
        ),
    )


def _current_count(db):
    return db.query(Semester).filter(Semester.is_current.is_(True)).count()


def test_activation_moves_the_current_flag(db):
    a = _create(db, "2026-A")
    b = _create(db, "2026-B")

    semester_service.activate(db, a.id)
    assert semester_service.get_current(db).id == a.id

    semester_service.activate(db, b.id)
    db.refresh(a)
    assert semester_service.get_current(db).id == b.id
    assert a.is_current is False
    assert _current_count(db) == 1


def test_concurrent_activations_leave_one_current(session_factory, db):
    ids = [_create(db, f"2026-P{n}").id for n in range(5)]

    def activate(semester_id):
        session = session_factory()
        try:
            semester_service.activate(session, semester_id)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=5) as pool:
        list(pool.map(activate, ids * 2))

    check = session_factory()
    assert _current_count(check) == 1
    check.close()


def test_deactivate_leaves_no_current(db):
    a = _create(db, "2026-A")
    semester_service.activate(db, a.id)

    semester_service.deactivate(db, a.id)

    assert semester_service.get_current(db) is None


def test_duplicate_code_is_rejected(db):
    _create(db, "2026-A")

    with pytest.raises(ValidationFailed):
        _create(db, "2026-A")


def test_current_semester_cannot_be_deleted(db):
    a = _create(db, "2026-A")
    semester_service.activate(db, a.id)

    with pytest.raises(IsCurrentSemester):
        semester_service.delete(db, a.id)


def test_semester_with_offerings_cannot_be_deleted(db, make):
    semester = make.semester()
    make.offering(semester=semester)

    with pytest.raises(HasOfferings) as exc:
        semester_service.delete(db, semester.id)
    assert exc.value.details == {"offerings": 1}


def test_archived_offerings_still_block_deletion(db, make):
    semester = make.semester()
    offering = make.offering(semester=semester)
    capacity_ledger.delete_offering(db, offering.id)

    with pytest.raises(HasOfferings) as exc:
        semester_service.delete(db, semester.id)

    assert exc.value.details == {"offerings": 0, "archived": 1}
    assert db.get(Semester, semester.id) is not None


def test_sqlite_connections_enforce_foreign_keys(db):
    assert db.execute(text("PRAGMA foreign_keys")).scalar() == 1


def test_delete_unused_semester(db):
    a = _create(db, "2026-A")

    semester_service.delete(db, a.id)

    with pytest.raises(NotFound):
        semester_service.get(db, a.id)


def test_end_date_must_follow_start_date():
    with pytest.raises(ValueError):
        SemesterCreate(
            code="2026-X",
            name="Backwards",
            year=2026,
            start_date=datetime(2026, 6, 1, tzinfo=timezone.utc),
            end_date=datetime(2026, 2, 1, tzinfo=timezone.utc),
        )
