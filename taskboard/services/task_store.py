"""
Task state store - task rows, their update history and file associations.

Every function takes the caller's AsyncSession and only flushes; the
caller owns the transaction boundary. Writes against a task that does not
exist raise NotFoundError.
"""
import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, delete, or_, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.exceptions import NotFoundError, ValidationError
from taskboard.models.notification import Notification
from taskboard.models.task import Task, TaskStatus, TaskUpdate, TaskFile
from taskboard.models.user import User, UserRole
from taskboard.services.responsibility import parse_identity
from taskboard.utils.helpers import utcnow

logger = logging.getLogger(__name__)

TEXT_FIELDS = (
    "description", "subject_owner", "task_subject",
    "region", "city", "municipality", "department",
)
OPTIONAL_IDENTITY_FIELDS = ("secondary_responsible", "tertiary_responsible")
DATETIME_FIELDS = ("deadline",)
DATE_FIELDS = ("form_date", "assigned_date")
BOOL_FIELDS = ("is_urgent", "is_archived")

EDITABLE_FIELDS = (
    ("title", "assigned_to", "status")
    + TEXT_FIELDS + OPTIONAL_IDENTITY_FIELDS + DATETIME_FIELDS + DATE_FIELDS + BOOL_FIELDS
)


# --- Validation helpers ---

def parse_status(value: Any) -> TaskStatus:
    if isinstance(value, TaskStatus):
        return value
    try:
        return TaskStatus(str(value).strip())
    except ValueError:
        allowed = ", ".join(s.value for s in TaskStatus)
        raise ValidationError(f"Invalid status {value!r}. Must be one of: {allowed}")


def _parse_datetime(field: str, value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date/time, got {value!r}")


def _parse_date(field: str, value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date, got {value!r}")


def _parse_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def _normalize_subject_owner(value: Any) -> str:
    """Store a parseable owner as its canonical id text (" 007" -> "7")"""
    parsed = parse_identity(value)
    return str(parsed.user_id) if parsed.is_valid else str(value).strip()


def _empty_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


async def _require_user(session: AsyncSession, field: str, raw: Any) -> int:
    parsed = parse_identity(raw)
    if not parsed.is_valid:
        raise ValidationError(f"{field} must be a user id, got {raw!r}")
    exists = await session.execute(select(User.id).where(User.id == parsed.user_id))
    if exists.scalar_one_or_none() is None:
        raise NotFoundError("User", parsed.user_id)
    return parsed.user_id


async def _normalize_fields(session: AsyncSession, fields: Dict[str, Any]) -> Dict[str, Any]:
    """Validate and coerce a partial field mapping.

    Keys that are missing or None are dropped (the stored value is kept).
    An empty string clears an optional field.
    """
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")

    values: Dict[str, Any] = {}
    for key, value in fields.items():
        if value is None:
            continue
        if key == "title":
            if not str(value).strip():
                continue
            values[key] = str(value).strip()
        elif key == "assigned_to":
            if isinstance(value, str) and not value.strip():
                continue
            values[key] = await _require_user(session, key, value)
        elif key == "status":
            values[key] = parse_status(value)
        elif key in OPTIONAL_IDENTITY_FIELDS:
            value = _empty_to_none(value)
            values[key] = None if value is None else await _require_user(session, key, value)
        elif key == "subject_owner":
            value = _empty_to_none(value)
            values[key] = None if value is None else _normalize_subject_owner(value)
        elif key in TEXT_FIELDS:
            value = _empty_to_none(value)
            values[key] = None if value is None else str(value).strip()
        elif key in DATETIME_FIELDS:
            values[key] = _parse_datetime(key, value)
        elif key in DATE_FIELDS:
            values[key] = _parse_date(key, value)
        elif key in BOOL_FIELDS:
            values[key] = _parse_bool(value)
    return values


# --- Reads ---

async def get_task(session: AsyncSession, task_id: int, for_update: bool = False) -> Task:
    """Load a task, optionally taking a row lock for the rest of the transaction"""
    query = select(Task).where(Task.id == task_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await session.execute(query)
    task = result.scalar_one_or_none()
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


def _visible_to(query, user: User):
    """Restrict a task query to what ``user`` may see; admins see everything"""
    if user.role == UserRole.ADMIN:
        return query
    return query.where(or_(
        Task.assigned_to == user.id,
        Task.secondary_responsible == user.id,
        Task.tertiary_responsible == user.id,
        Task.created_by == user.id,
        # subject_owner is stored normalized (see _normalize_subject_owner)
        and_(Task.subject_owner.isnot(None), Task.subject_owner == str(user.id)),
    ))


async def list_tasks_for(
    session: AsyncSession,
    user: User,
    status: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    urgent: Optional[bool] = None,
) -> List[Task]:
    """Tasks visible to ``user``: all of them for admins, otherwise the ones they control"""
    query = _visible_to(select(Task).order_by(Task.created_at.desc(), Task.id.desc()), user)

    if urgent is not None:
        query = query.where(Task.is_urgent == urgent)
    if status:
        query = query.where(Task.status == parse_status(status))
    if date_from:
        query = query.where(Task.deadline >= datetime(date_from.year, date_from.month, date_from.day))
    if date_to:
        query = query.where(Task.deadline < datetime(date_to.year, date_to.month, date_to.day, 23, 59, 59, 999999))

    result = await session.execute(query)
    return list(result.scalars().all())


async def task_stats(session: AsyncSession, user: User) -> Dict[str, Any]:
    """Counts by status, urgent count and the most assigned user over the tasks ``user`` can see"""
    visible = _visible_to(select(Task.id), user).subquery()

    by_status = await session.execute(
        select(Task.status, func.count(Task.id))
        .where(Task.id.in_(select(visible.c.id)))
        .group_by(Task.status)
    )
    counts = {status: count for status, count in by_status.all()}

    urgent = await session.execute(
        select(func.count(Task.id))
        .where(Task.id.in_(select(visible.c.id)), Task.is_urgent.is_(True))
    )

    assigned = func.count(Task.id).label("task_count")
    top = await session.execute(
        select(User.username, assigned)
        .select_from(Task)
        .join(User, User.id == Task.assigned_to)
        .where(Task.id.in_(select(visible.c.id)))
        .group_by(User.id, User.username)
        .order_by(assigned.desc(), User.username)
        .limit(1)
    )
    most_assigned = top.first()

    return {
        "total": sum(counts.values()),
        "done": counts.get(TaskStatus.DONE, 0),
        "pending": counts.get(TaskStatus.PENDING, 0),
        "in_progress": counts.get(TaskStatus.IN_PROGRESS, 0),
        "important": counts.get(TaskStatus.IMPORTANT, 0),
        "urgent": urgent.scalar() or 0,
        "most_assigned_user": (
            {"username": most_assigned.username, "task_count": most_assigned.task_count}
            if most_assigned else None
        ),
    }


async def list_updates(session: AsyncSession, task_id: int) -> List[TaskUpdate]:
    result = await session.execute(
        select(TaskUpdate)
        .where(TaskUpdate.task_id == task_id)
        .order_by(TaskUpdate.created_at.desc(), TaskUpdate.id.desc())
    )
    return list(result.scalars().all())


async def list_files(session: AsyncSession, task_id: int) -> List[TaskFile]:
    result = await session.execute(
        select(TaskFile)
        .where(TaskFile.task_id == task_id)
        .order_by(TaskFile.uploaded_at.desc(), TaskFile.id.desc())
    )
    return list(result.scalars().all())


# --- Writes ---

async def create_task(session: AsyncSession, fields: Dict[str, Any], created_by: int) -> Task:
    """Insert a task. Status defaults to pending; the assignee must exist."""
    values = await _normalize_fields(session, fields)
    if not values.get("title"):
        raise ValidationError("title is required")
    if "assigned_to" not in values:
        raise ValidationError("assigned_to is required")

    status = values.pop("status", TaskStatus.PENDING)
    task = Task(
        created_by=created_by,
        status=status,
        completed_at=utcnow() if status == TaskStatus.DONE else None,
        **values,
    )
    session.add(task)
    await session.flush()
    logger.info(f"Created task {task.id} assigned to user {task.assigned_to}")
    return task


def _apply_status(task: Task, status: TaskStatus, completed_at: Any = None) -> None:
    """Set status and keep completed_at non-null exactly when status is done"""
    task.status = status
    if status != TaskStatus.DONE:
        task.completed_at = None
        return

    manual = None
    if completed_at not in (None, ""):
        try:
            manual = _parse_datetime("completed_at", completed_at)
        except ValidationError:
            logger.warning(f"Ignoring invalid completion time {completed_at!r} for task {task.id}")
    task.completed_at = manual or utcnow()


async def set_status(
    session: AsyncSession,
    task_id: int,
    status: Any,
    completed_at: Any = None,
    task: Optional[Task] = None,
) -> Task:
    """Change a task's status, stamping or clearing the completion time"""
    new_status = parse_status(status)
    if task is None:
        task = await get_task(session, task_id)
    _apply_status(task, new_status, completed_at)
    await session.flush()
    return task


async def update_task_fields(
    session: AsyncSession,
    task_id: int,
    fields: Dict[str, Any],
    task: Optional[Task] = None,
) -> Task:
    """Partial update; fields that are omitted keep their stored value"""
    values = await _normalize_fields(session, fields)
    if task is None:
        task = await get_task(session, task_id)

    status = values.pop("status", None)
    for key, value in values.items():
        setattr(task, key, value)
    if status is not None and status != task.status:
        _apply_status(task, status)

    await session.flush()
    return task


async def append_update(
    session: AsyncSession,
    task_id: int,
    user_id: int,
    status: Any,
    note: Optional[str] = None,
) -> TaskUpdate:
    """Append one history row"""
    update = TaskUpdate(
        task_id=task_id,
        user_id=user_id,
        status=parse_status(status),
        note=note.strip() if note and note.strip() else None,
    )
    session.add(update)
    await session.flush()
    return update


async def attach_files(
    session: AsyncSession,
    task_id: int,
    uploader_id: int,
    files: Iterable,
    update_id: Optional[int] = None,
) -> List[TaskFile]:
    """Record stored files against a task (and optionally one of its updates)"""
    rows = [
        TaskFile(
            task_id=task_id,
            update_id=update_id,
            uploader_id=uploader_id,
            filename=f.filename,
            original_name=f.original_name,
            mime_type=f.mime_type,
            file_size=f.size,
        )
        for f in files
    ]
    if rows:
        session.add_all(rows)
        await session.flush()
    return rows


async def delete_task(session: AsyncSession, task_id: int) -> List[str]:
    """Delete a task with its files, history and notifications.

    Dependent rows are removed explicitly before the task row so the result
    does not depend on the backend enforcing foreign keys. Returns the
    stored filenames that were associated with the task.
    """
    await get_task(session, task_id)

    filenames = (await session.execute(
        select(TaskFile.filename).where(TaskFile.task_id == task_id)
    )).scalars().all()

    await session.execute(delete(Notification).where(Notification.related_task_id == task_id))
    await session.execute(delete(TaskFile).where(TaskFile.task_id == task_id))
    await session.execute(delete(TaskUpdate).where(TaskUpdate.task_id == task_id))
    result = await session.execute(delete(Task).where(Task.id == task_id))
    if result.rowcount == 0:
        raise NotFoundError("Task", task_id)

    await session.flush()
    logger.info(f"Deleted task {task_id} ({len(filenames)} files)")
    return list(filenames)
