"""
Pydantic schemas for in-app notifications
"""
from pydantic import BaseModel
from typing import Optional
from uuid import UUID
from datetime import datetime


class NotificationData(BaseModel):
    id: UUID
    title: str
    body: str
    type: str
    link: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True
