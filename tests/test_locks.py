import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from assessment_engine.models import QuestionType
from assessment_engine.services.attempt_service import attempt_service
from assessment_engine.services.enrollment_service import capacity_ledger
from assessment_engine.utils.locks import KeyedLock, entity_locks

from conftest import T0


def test_hold_is_mutually_exclusive_per_key():
    locks = KeyedLock()
    inside = []
    overlaps = []

    def work(_):
        with locks.hold("offering:1"):
            inside.append(1)
            if len(inside) > 1:
                overlaps.append(1)
            time.sleep(0.001)
            inside.pop()

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(work, range(40)))

    assert overlaps == []
    assert len(locks) == 0


def test_waiter_gets_the_key_after_release():
    locks = KeyedLock()
    waiting = threading.Event()
    done = threading.Event()

    def waiter():
        waiting.set()
        with locks.hold("attempt:1"):
            pass
        done.set()

    with locks.hold("attempt:1"):
        thread = threading.Thread(target=waiter)
        thread.start()
        waiting.wait(1)
        assert len(locks) == 1

    thread.join(1)
    assert done.is_set()
    assert len(locks) == 0


def test_released_keys_are_dropped_after_attempts(db, make, instructor):
    offering = make.offering(max_students=50)
    quiz = make.quiz(offering, instructor, [(QuestionType.MULTIPLE_CHOICE, 1, [("A", True), ("B", False)])])
    before = len(entity_locks)

    for _ in range(20):
        student = make.user(["quiz.take"])
        capacity_ledger.enroll(db, offering.id, student.id)
        attempt = attempt_service.start_or_resume(db, quiz.id, student.id, now=T0)
        attempt_service.submit_quiz(db, attempt.id, student.id, [], now=T0 + timedelta(minutes=1))

    assert len(entity_locks) == before == 0
