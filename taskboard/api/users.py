"""
Users API endpoints - directory listing and admin user management
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.database import get_db
from taskboard.models.notification import Notification
from taskboard.models.task import Task
from taskboard.models.user import User, UserRole
from taskboard.api.deps import get_current_user
from taskboard.services.directory import get_user

logger = logging.getLogger(__name__)

router = APIRouter()


class UserResponse(BaseModel):
    id: int
    username: str
    full_name: Optional[str]
    email: Optional[str]
    role: UserRole
    is_active: bool

    class Config:
        from_attributes = True


class UserCreate(BaseModel):
    username: str
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: UserRole = UserRole.USER


class UserUpdate(BaseModel):
    username: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None


@router.get("/me", response_model=UserResponse)
async def get_me(current_user: User = Depends(get_current_user)):
    return current_user


@router.get("/", response_model=List[UserResponse])
async def list_users(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    result = await db.execute(select(User).order_by(User.username))
    return result.scalars().all()


@router.post("/", response_model=UserResponse)
async def create_user(
    data: UserCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Add a user to the directory (admins only)"""
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Only admins can add users")

    existing = await db.execute(select(User).where(User.username == data.username))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="Username already exists")

    user = User(**data.model_dump(), is_active=True)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    data: UserUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Edit a user (admins only); omitted fields keep their value"""
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Only admins can edit users")

    user = await get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    updates = data.model_dump(exclude_none=True)
    if "username" in updates and not updates["username"].strip():
        raise HTTPException(status_code=400, detail="Username cannot be empty")
    if "username" in updates and updates["username"] != user.username:
        existing = await db.execute(select(User.id).where(User.username == updates["username"]))
        if existing.scalar_one_or_none() is not None:
            raise HTTPException(status_code=400, detail="Username already exists")
    if "email" in updates and not updates["email"].strip():
        updates["email"] = None

    for key, value in updates.items():
        setattr(user, key, value)
    await db.commit()
    await db.refresh(user)
    logger.info(f"User {user_id} updated by {current_user.username}")
    return user


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Remove a user (admins only).

    Refused for the caller's own account and for users that are still
    assignee or creator of a task.
    """
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Only admins can delete users")
    if current_user.id == user_id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    user = await get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    owned = await db.execute(
        select(func.count(Task.id)).where(or_(Task.assigned_to == user_id, Task.created_by == user_id))
    )
    if owned.scalar():
        raise HTTPException(status_code=400, detail="Cannot delete user with assigned tasks")

    try:
        await db.execute(
            update(Task).where(Task.secondary_responsible == user_id)
            .values(secondary_responsible=None).execution_options(synchronize_session=False)
        )
        await db.execute(
            update(Task).where(Task.tertiary_responsible == user_id)
            .values(tertiary_responsible=None).execution_options(synchronize_session=False)
        )
        await db.execute(
            update(Task).where(Task.subject_owner == str(user_id))
            .values(subject_owner=None).execution_options(synchronize_session=False)
        )
        await db.execute(delete(Notification).where(Notification.user_id == user_id))
        await db.delete(user)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=400, detail="User is referenced by task history; deactivate instead")

    logger.info(f"User {user_id} deleted by {current_user.username}")
    return {"message": "User deleted"}
