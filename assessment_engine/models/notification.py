"""
Notification model - one row per recipient
"""
from sqlalchemy import Column, String, Boolean, Text, TIMESTAMP, ForeignKey, LargeBinary, Uuid, func
from assessment_engine.database import Base
import uuid


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    type = Column(String(20), nullable=False, default="INFO")  # INFO, WARNING, SUCCESS, ERROR
    link = Column(String(500))
    data = Column(LargeBinary)  # opaque payload, passed through untouched
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    deleted_at = Column(TIMESTAMP(timezone=True))

    def __repr__(self):
        return f"<Notification(user_id={self.user_id}, title={self.title})>"
