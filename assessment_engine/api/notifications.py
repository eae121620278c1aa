"""
Notification API endpoints
"""

from fastapi import APIRouter, Depends
from typing import List
from uuid import UUID

from assessment_engine.api.deps import get_engine, unwrap
from assessment_engine.schemas.notification import NotificationData
from assessment_engine.services.engine import AssessmentEngine


router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=List[NotificationData])
def list_notifications(unread_only: bool = False, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.list_notifications(unread_only))


@router.post("/{notification_id}/read", response_model=NotificationData)
def mark_read(notification_id: UUID, engine: AssessmentEngine = Depends(get_engine)):
    return unwrap(engine.mark_notification_read(notification_id))
