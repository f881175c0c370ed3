from taskboard.models.user import User, UserRole
from taskboard.models.task import Task, TaskStatus, TaskUpdate, TaskFile
from taskboard.models.notification import Notification, NotificationType

__all__ = [
    "User",
    "UserRole",
    "Task",
    "TaskStatus",
    "TaskUpdate",
    "TaskFile",
    "Notification",
    "NotificationType",
]
