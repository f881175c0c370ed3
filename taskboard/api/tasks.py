"""
Tasks API endpoints - task CRUD, status updates with evidence, history
"""
import os
from datetime import date, datetime
from typing import Dict, List, Optional, Union

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import get_settings
from taskboard.database import get_db
from taskboard.exceptions import ForbiddenError, ValidationError
from taskboard.models.task import Task, TaskFile
from taskboard.models.user import User
from taskboard.api.deps import get_current_user, get_workflow
from taskboard.services import task_store
from taskboard.services.access import is_authorized
from taskboard.services.file_storage import remove_attachment, resolve_path, store_attachment, validate_attachment
from taskboard.services.responsibility import parse_identity
from taskboard.services.task_workflow import TaskWorkflow

router = APIRouter()


# --- Pydantic Schemas ---

class TaskFileResponse(BaseModel):
    id: int
    task_id: int
    update_id: Optional[int]
    uploader_id: int
    original_name: str
    mime_type: Optional[str]
    file_size: Optional[int]
    uploaded_at: Optional[datetime]

    class Config:
        from_attributes = True


class TaskUpdateResponse(BaseModel):
    id: int
    task_id: int
    user_id: int
    username: Optional[str] = None
    status: str
    note: Optional[str]
    created_at: Optional[datetime]


class TaskResponse(BaseModel):
    id: int
    title: str
    description: Optional[str]
    status: str
    deadline: Optional[datetime]
    completed_at: Optional[datetime]
    is_urgent: bool
    assigned_to: int
    assigned_username: Optional[str] = None
    secondary_responsible: Optional[int]
    secondary_username: Optional[str] = None
    tertiary_responsible: Optional[int]
    tertiary_username: Optional[str] = None
    subject_owner: Optional[str]
    subject_owner_username: Optional[str] = None
    created_by: int
    created_username: Optional[str] = None
    task_subject: Optional[str]
    form_date: Optional[date]
    assigned_date: Optional[date]
    region: Optional[str]
    city: Optional[str]
    municipality: Optional[str]
    department: Optional[str]
    is_archived: bool
    created_at: Optional[datetime]
    is_overdue: bool = False


class TaskDetailResponse(TaskResponse):
    updates: List[TaskUpdateResponse] = []
    files: List[TaskFileResponse] = []


class TaskFields(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = None
    deadline: Optional[datetime] = None
    is_urgent: Optional[bool] = None
    assigned_to: Optional[int] = None
    secondary_responsible: Optional[Union[int, str]] = None
    tertiary_responsible: Optional[Union[int, str]] = None
    subject_owner: Optional[Union[int, str]] = None
    task_subject: Optional[str] = None
    form_date: Optional[date] = None
    assigned_date: Optional[date] = None
    region: Optional[str] = None
    city: Optional[str] = None
    municipality: Optional[str] = None
    department: Optional[str] = None
    is_archived: Optional[bool] = None


class TaskCreate(TaskFields):
    title: str
    assigned_to: int


class AssigneeCount(BaseModel):
    username: str
    task_count: int


class TaskStats(BaseModel):
    total: int
    done: int
    pending: int
    in_progress: int
    important: int
    urgent: int
    most_assigned_user: Optional[AssigneeCount] = None


class UpdateResult(BaseModel):
    task_id: int
    update_id: Optional[int]
    status: str
    completed_at: Optional[datetime]


# --- Helpers ---

async def _usernames(db: AsyncSession, user_ids) -> Dict[int, str]:
    ids = {i for i in user_ids if i is not None}
    if not ids:
        return {}
    result = await db.execute(select(User.id, User.username).where(User.id.in_(ids)))
    return dict(result.all())


def _task_ids(task: Task) -> list:
    return [
        task.assigned_to,
        task.secondary_responsible,
        task.tertiary_responsible,
        parse_identity(task.subject_owner).user_id,
        task.created_by,
    ]


def _build_task_response(t: Task, names: Dict[int, str], model=TaskResponse, **extra):
    is_overdue = (
        t.deadline is not None
        and t.status != "done"
        and t.deadline.date() < date.today()
    )
    return model(
        id=t.id,
        title=t.title,
        description=t.description,
        status=t.status.value if hasattr(t.status, "value") else t.status,
        deadline=t.deadline,
        completed_at=t.completed_at,
        is_urgent=bool(t.is_urgent),
        assigned_to=t.assigned_to,
        assigned_username=names.get(t.assigned_to),
        secondary_responsible=t.secondary_responsible,
        secondary_username=names.get(t.secondary_responsible),
        tertiary_responsible=t.tertiary_responsible,
        tertiary_username=names.get(t.tertiary_responsible),
        subject_owner=t.subject_owner,
        subject_owner_username=names.get(parse_identity(t.subject_owner).user_id),
        created_by=t.created_by,
        created_username=names.get(t.created_by),
        task_subject=t.task_subject,
        form_date=t.form_date,
        assigned_date=t.assigned_date,
        region=t.region,
        city=t.city,
        municipality=t.municipality,
        department=t.department,
        is_archived=bool(t.is_archived),
        created_at=t.created_at,
        is_overdue=is_overdue,
        **extra,
    )


async def _task_detail(db: AsyncSession, task_id: int) -> TaskDetailResponse:
    task = await task_store.get_task(db, task_id)
    updates = await task_store.list_updates(db, task_id)
    files = await task_store.list_files(db, task_id)
    names = await _usernames(db, _task_ids(task) + [u.user_id for u in updates])
    return _build_task_response(
        task,
        names,
        model=TaskDetailResponse,
        updates=[
            TaskUpdateResponse(
                id=u.id,
                task_id=u.task_id,
                user_id=u.user_id,
                username=names.get(u.user_id),
                status=u.status.value if hasattr(u.status, "value") else u.status,
                note=u.note,
                created_at=u.created_at,
            )
            for u in updates
        ],
        files=[TaskFileResponse.model_validate(f) for f in files],
    )


# --- Endpoints ---

@router.get("/", response_model=List[TaskResponse])
async def list_tasks(
    status: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    urgent: Optional[bool] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Tasks visible to the current user. Admins see every task."""
    tasks = await task_store.list_tasks_for(db, current_user, status, date_from, date_to, urgent)
    ids = [i for t in tasks for i in _task_ids(t)]
    names = await _usernames(db, ids)
    return [_build_task_response(t, names) for t in tasks]


@router.get("/stats", response_model=TaskStats)
async def get_task_stats(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Dashboard counters over the tasks the current user can see"""
    return await task_store.task_stats(db, current_user)


@router.post("/", response_model=TaskDetailResponse)
async def create_task(
    data: TaskCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    workflow: TaskWorkflow = Depends(get_workflow),
):
    """Create a task and notify the people it is assigned to"""
    task = await workflow.create_task(db, current_user, data.model_dump(exclude_none=True))
    return await _task_detail(db, task.id)


@router.get("/{task_id}", response_model=TaskDetailResponse)
async def get_task(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Task detail with update history and files"""
    task = await task_store.get_task(db, task_id)
    if not is_authorized(current_user, task):
        raise ForbiddenError(f"User {current_user.id} may not view task {task_id}")
    return await _task_detail(db, task_id)


@router.put("/{task_id}", response_model=TaskDetailResponse)
async def edit_task(
    task_id: int,
    data: TaskFields,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    workflow: TaskWorkflow = Depends(get_workflow),
):
    """Partial edit of the main fields; omitted fields keep their value"""
    await workflow.edit_task(db, task_id, current_user, data.model_dump(exclude_none=True))
    return await _task_detail(db, task_id)


@router.post("/{task_id}/updates", response_model=UpdateResult)
async def apply_update(
    task_id: int,
    status: Optional[str] = Form(None),
    note: Optional[str] = Form(None),
    completed_at: Optional[str] = Form(None),
    attachments: Optional[List[UploadFile]] = File(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    workflow: TaskWorkflow = Depends(get_workflow),
):
    """Change status and/or add a note, with optional evidence files"""
    settings = get_settings()
    uploads = [f for f in attachments or [] if f.filename]
    if len(uploads) > settings.MAX_FILES_PER_UPDATE:
        raise ValidationError(f"At most {settings.MAX_FILES_PER_UPDATE} files per update")

    # Reject bad input before anything is written to disk
    if status:
        task_store.parse_status(status)
    task = await task_store.get_task(db, task_id)
    if not is_authorized(current_user, task):
        raise ForbiddenError(f"User {current_user.id} may not update task {task_id}")

    contents = [(f, await f.read()) for f in uploads]
    for f, data in contents:
        validate_attachment(f.filename, len(data))

    stored = []
    try:
        for f, data in contents:
            stored.append(store_attachment(data, f.filename, f.content_type))
        update_id = await workflow.apply_update(
            db, task_id, current_user,
            new_status=status, note=note, attachments=stored, completed_at=completed_at,
        )
    except Exception:
        for s in stored:
            remove_attachment(s.filename)
        raise
    task = await task_store.get_task(db, task_id)
    return UpdateResult(
        task_id=task.id,
        update_id=update_id,
        status=task.status.value,
        completed_at=task.completed_at,
    )


@router.delete("/{task_id}")
async def delete_task(
    task_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    workflow: TaskWorkflow = Depends(get_workflow),
):
    """Delete a task with its history, files and notifications"""
    await workflow.remove_task(db, task_id, current_user)
    return {"message": "Task deleted"}


@router.get("/{task_id}/files/{file_id}/download")
async def download_file(
    task_id: int,
    file_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    task = await task_store.get_task(db, task_id)
    if not is_authorized(current_user, task):
        raise ForbiddenError(f"User {current_user.id} may not view task {task_id}")

    result = await db.execute(
        select(TaskFile).where(TaskFile.id == file_id, TaskFile.task_id == task_id)
    )
    f = result.scalar_one_or_none()
    if not f:
        raise HTTPException(404, "File not found")

    path = resolve_path(f.filename)
    if not os.path.exists(path):
        raise HTTPException(404, "File not found on disk")

    return FileResponse(
        path=path,
        filename=f.original_name,
        media_type=f.mime_type or "application/octet-stream",
    )
