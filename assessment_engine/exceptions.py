"""
Typed failures raised by the engine services

The composition root converts these into ActionResult outcomes, so none of
them crosses the core boundary as an exception.
"""
from typing import Any, Dict, Optional


class AssessmentError(Exception):
    """Base class for every expected, user-facing failure"""

    code = "error"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class Unauthorized(AssessmentError):
    code = "unauthorized"


class NotFound(AssessmentError):
    code = "not_found"


class InvalidState(AssessmentError):
    code = "invalid_state"


class QuizNotAvailable(InvalidState):
    code = "quiz_not_available"


class AttemptExpired(InvalidState):
    code = "attempt_expired"


class HasOfferings(InvalidState):
    code = "has_offerings"


class IsCurrentSemester(InvalidState):
    code = "is_current_semester"


class CapacityExceeded(AssessmentError):
    code = "capacity_exceeded"


class DuplicateEnrollment(AssessmentError):
    code = "duplicate_enrollment"


class DuplicateAttempt(AssessmentError):
    code = "duplicate_attempt"


class ValidationFailed(AssessmentError):
    code = "validation_failed"


class StudentInactive(ValidationFailed):
    code = "student_inactive"


class ExternalCapabilityUnavailable(AssessmentError):
    """AI grading provider is down or misconfigured; safe to retry later"""

    code = "external_capability_unavailable"
    retryable = True
