"""
Structured outcome returned by every engine operation
"""
from pydantic import BaseModel
from typing import Any, Dict, Optional

from assessment_engine.exceptions import AssessmentError


class ActionResult(BaseModel):
    """Success/failure envelope with a human-readable reason"""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = False
    details: Dict[str, Any] = {}

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: AssessmentError) -> "ActionResult":
        return cls(
            success=False,
            error=error.message,
            error_code=error.code,
            retryable=error.retryable,
            details=error.details,
        )
