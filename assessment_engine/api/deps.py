"""
Shared FastAPI dependencies: actor resolution, engine wiring, outcome mapping
"""
import logging
from functools import lru_cache
from typing import Any, Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from assessment_engine.database import get_db
from assessment_engine.schemas.common import ActionResult
from assessment_engine.services.ai_grader import AIGrader, build_ai_grader
from assessment_engine.services.engine import AssessmentEngine
from assessment_engine.services.notification_service import notification_service
from assessment_engine.services.permissions import Actor, capability_registry, resolve_actor

logger = logging.getLogger(__name__)

# error_code -> HTTP status
STATUS_BY_ERROR = {
    "unauthorized": 403,
    "not_found": 404,
    "invalid_state": 409,
    "quiz_not_available": 409,
    "attempt_expired": 409,
    "has_offerings": 409,
    "is_current_semester": 409,
    "capacity_exceeded": 409,
    "duplicate_enrollment": 409,
    "duplicate_attempt": 409,
    "validation_failed": 422,
    "student_inactive": 422,
    "external_capability_unavailable": 503,
    "store_unavailable": 503,
}


@lru_cache
def get_ai_grader() -> AIGrader:
    """Provider adapter, built once from settings"""
    return build_ai_grader()


def get_notifier():
    return notification_service


def get_actor(
    x_user_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Actor:
    """
    Resolve the caller from the X-User-Id header

    Authentication proper happens upstream; this layer only maps a user id
    to its capabilities.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail={"error": "unauthenticated", "message": "X-User-Id header is required"})
    try:
        user_id = UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail={"error": "unauthenticated", "message": "Invalid X-User-Id header"})

    actor = resolve_actor(db, user_id, capability_registry)
    if actor is None:
        raise HTTPException(status_code=401, detail={"error": "unauthenticated", "message": "Unknown or inactive user"})
    return actor


def get_engine(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
    ai_grader: AIGrader = Depends(get_ai_grader),
    notifier=Depends(get_notifier),
) -> AssessmentEngine:
    return AssessmentEngine(db, actor, ai_grader=ai_grader, notifier=notifier)


def unwrap(result: ActionResult) -> Any:
    """Return the data of a successful outcome, or raise the matching HTTPException"""
    if result.success:
        return result.data

    status_code = STATUS_BY_ERROR.get(result.error_code, 400)
    raise HTTPException(
        status_code=status_code,
        detail={
            "error": result.error_code,
            "message": result.error,
            "retryable": result.retryable,
            "details": result.details,
        },
    )
