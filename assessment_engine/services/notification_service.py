"""
Notification service - persisted in-app notices, one row per recipient

Sending is fire-and-forget: notify() never raises and runs in its own
session, so a failed notice cannot roll back the grading or publishing
that triggered it.
"""
import logging
from typing import Callable, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from assessment_engine.database import SessionLocal, transaction, not_deleted
from assessment_engine.exceptions import NotFound
from assessment_engine.models import Notification
from assessment_engine.utils.clock import utcnow

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Args:
        session_factory: Callable returning a fresh Session for sends
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def create_notification(
        self,
        db: Session,
        user_ids: Iterable[UUID],
        title: str,
        body: str,
        type: str = "INFO",
        link: Optional[str] = None,
        data: Optional[bytes] = None,
    ) -> int:
        """
        Persist one notification per recipient

        Returns:
            Number of rows written
        """
        recipients = list(dict.fromkeys(user_ids))
        if not recipients:
            return 0

        with transaction(db):
            for user_id in recipients:
                db.add(
                    Notification(
                        user_id=user_id,
                        title=title,
                        body=body,
                        type=type,
                        link=link,
                        data=data,
                    )
                )
        return len(recipients)

    def notify(self, user_ids: Iterable[UUID], title: str, body: str, **kwargs) -> int:
        """Send in a separate session, logging instead of raising on failure"""
        db = self.session_factory()
        try:
            count = self.create_notification(db, user_ids, title, body, **kwargs)
            logger.info(f"Sent notification '{title}' to {count} users")
            return count
        except SQLAlchemyError as e:
            logger.error(f"Failed to send notification '{title}': {str(e)}")
            return 0
        finally:
            db.close()

    def list_notifications(self, db: Session, user_id: UUID, unread_only: bool = False) -> List[Notification]:
        query = db.query(Notification).filter(Notification.user_id == user_id, not_deleted(Notification))
        if unread_only:
            query = query.filter(Notification.is_read.is_(False))
        return query.order_by(Notification.created_at.desc()).all()

    def mark_read(self, db: Session, user_id: UUID, notification_id: UUID) -> Notification:
        with transaction(db):
            notification = (
                db.query(Notification)
                .filter(
                    Notification.id == notification_id,
                    Notification.user_id == user_id,
                    not_deleted(Notification),
                )
                .first()
            )
            if not notification:
                raise NotFound("Notification not found")
            if not notification.is_read:
                notification.is_read = True
                notification.read_at = utcnow()
        return notification


# Global instance
notification_service = NotificationService()
