"""
Task models - tasks with up to four responsibility fields, the append-only
update history and file associations
"""
from sqlalchemy import Column, Integer, String, Text, Date, DateTime, ForeignKey, Boolean, Enum as SQLEnum
from enum import Enum

from taskboard.database import Base
from taskboard.utils.helpers import utcnow


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    IMPORTANT = "important"


STATUS_LABELS = {
    TaskStatus.PENDING: "Pending",
    TaskStatus.IN_PROGRESS: "In progress",
    TaskStatus.DONE: "Done",
    TaskStatus.IMPORTANT: "Important",
}


def _enum_values(enum_cls):
    return [m.value for m in enum_cls]


class Task(Base):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(
        SQLEnum(TaskStatus, native_enum=False, values_callable=_enum_values),
        nullable=False,
        default=TaskStatus.PENDING,
        index=True,
    )
    deadline = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    is_urgent = Column(Boolean, nullable=False, default=False)

    # Responsibility fields
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    secondary_responsible = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    tertiary_responsible = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    # Free-form: usually a user id as text, sometimes a name typed by hand
    subject_owner = Column(String(100), nullable=True)

    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Descriptive fields carried on the task form
    task_subject = Column(Text, nullable=True)
    form_date = Column(Date, nullable=True)
    assigned_date = Column(Date, nullable=True)
    region = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    municipality = Column(String(100), nullable=True)
    department = Column(String(50), nullable=True)
    is_archived = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=utcnow)


class TaskUpdate(Base):
    """History entry. Rows are never edited; they go away only with their task."""
    __tablename__ = "task_updates"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    status = Column(
        SQLEnum(TaskStatus, native_enum=False, values_callable=_enum_values),
        nullable=False,
    )
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class TaskFile(Base):
    """Association between a task (optionally one of its updates) and a stored file"""
    __tablename__ = "task_files"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    update_id = Column(Integer, ForeignKey("task_updates.id", ondelete="CASCADE"), nullable=True)
    uploader_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    filename = Column(String, nullable=False)
    original_name = Column(String, nullable=False)
    mime_type = Column(String, nullable=True)
    file_size = Column(Integer, nullable=True)
    uploaded_at = Column(DateTime, default=utcnow)
