"""
In-app notification model
"""
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean
from enum import Enum

from taskboard.database import Base
from taskboard.utils.helpers import utcnow


class NotificationType(str, Enum):
    TASK_ASSIGNED = "task_assigned"
    TASK_UPDATED = "task_updated"   # main fields edited
    TASK_UPDATE = "task_update"     # status change / note / evidence


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    type = Column(String(50), nullable=True)
    related_task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True, index=True)
    is_read = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, default=utcnow)
