"""
Notifications API endpoints - the current user's in-app notifications
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.database import get_db
from taskboard.models.user import User
from taskboard.api.deps import get_current_user
from taskboard.services import notifications as notification_service

router = APIRouter()


class NotificationResponse(BaseModel):
    id: int
    user_id: int
    message: str
    type: Optional[str]
    related_task_id: Optional[int]
    is_read: bool
    created_at: Optional[datetime]

    class Config:
        from_attributes = True


@router.get("/", response_model=List[NotificationResponse])
async def list_notifications(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """All notifications of the current user, newest first.

    Viewing the list marks everything read; the response still shows which
    ones were unread before this call.
    """
    items = await notification_service.list_for_user(db, current_user.id)
    response = [NotificationResponse.model_validate(n) for n in items]
    await notification_service.mark_all_read_for_user(db, current_user.id)
    return response


@router.get("/unread-count")
async def unread_count(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return {"unread": await notification_service.unread_count(db, current_user.id)}
