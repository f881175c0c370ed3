"""
Shared API dependencies - acting user, dispatcher and workflow.

Authentication itself happens in front of this service; requests carry
the already-authenticated user id in the X-User-Id header.
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.database import get_db
from taskboard.models.user import User
from taskboard.services.directory import get_user
from taskboard.services.notifications import NotificationDispatcher
from taskboard.services.responsibility import parse_identity
from taskboard.services.task_workflow import TaskWorkflow


async def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> User:
    parsed = parse_identity(x_user_id)
    if not parsed.is_valid:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = await get_user(db, parsed.user_id)
    if user is None or user.is_active is False:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def get_dispatcher(request: Request) -> NotificationDispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        dispatcher = request.app.state.dispatcher = NotificationDispatcher()
    return dispatcher


def get_workflow(dispatcher: NotificationDispatcher = Depends(get_dispatcher)) -> TaskWorkflow:
    return TaskWorkflow(dispatcher)
