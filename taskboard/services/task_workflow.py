"""
Task workflow - status transitions, history and notification fan-out.

Every operation runs in two phases:

1. the state change (task row, history row, file associations) inside one
   transaction, with the task row locked and a bounded duration;
2. the notification fan-out, after commit and best effort. A failure here
   is logged and does not undo phase 1.

Status transitions are unrestricted (any status to any other); the only
coupled effect is that completed_at is set exactly while a task is done.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import Settings, get_settings
from taskboard.exceptions import ForbiddenError, TaskboardError, TransientStorageError
from taskboard.models.notification import NotificationType
from taskboard.models.task import Task, STATUS_LABELS
from taskboard.models.user import User, UserRole
from taskboard.services import task_store
from taskboard.services.access import is_authorized, can_create_tasks
from taskboard.services.directory import list_administrators
from taskboard.services.file_storage import StoredFile, remove_attachment
from taskboard.services.notifications import NotificationDispatcher
from taskboard.services.responsibility import resolve_responsible_identities
from taskboard.utils.helpers import excerpt

logger = logging.getLogger(__name__)

ROLE_LABELS = {
    UserRole.ADMIN: "Admin",
    UserRole.CREATOR: "Creator",
    UserRole.USER: "Staff",
}


class TaskWorkflow:

    def __init__(self, dispatcher: NotificationDispatcher, settings: Optional[Settings] = None):
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()

    # --- Transaction handling ---

    async def _atomic(self, session: AsyncSession, work: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``work`` and commit, or roll back and raise.

        Domain errors pass through unchanged; storage errors and timeouts
        become TransientStorageError.
        """
        try:
            result = await asyncio.wait_for(work(), timeout=self.settings.TRANSACTION_TIMEOUT_SECONDS)
            await session.commit()
            return result
        except TaskboardError:
            await session.rollback()
            raise
        except asyncio.TimeoutError as e:
            await session.rollback()
            logger.error("Task transaction timed out; rolled back")
            raise TransientStorageError("The operation timed out, please retry", e) from e
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Task transaction failed: {e}")
            raise TransientStorageError("Storage is temporarily unavailable, please retry", e) from e

    async def _fan_out(self, session: AsyncSession, recipients, message: str,
                       notification_type: NotificationType, task: Task, actor: User) -> None:
        """Best-effort notification after commit. ``recipients`` may be a coroutine."""
        task_id = task.id
        try:
            if asyncio.iscoroutine(recipients):
                recipients = await recipients
            await self.dispatcher.notify(
                session,
                recipients,
                message,
                notification_type,
                related_task_id=task.id,
                acting_identity=actor.id,
                task=task,
            )
        except SQLAlchemyError:
            await session.rollback()
            logger.exception(f"Notification fan-out failed for task {task_id}")
        except Exception:
            # Phase 1 is committed; nothing from phase 2 may reach the caller
            if session.in_transaction():
                await session.rollback()
            logger.exception(f"Notification fan-out failed for task {task_id}")

    # --- Operations ---

    async def create_task(
        self,
        session: AsyncSession,
        actor: User,
        fields: Dict[str, Any],
        attachments: Sequence[StoredFile] = (),
    ) -> Task:
        """Create a task, record its files and notify everyone it was assigned to"""
        if not can_create_tasks(actor):
            raise ForbiddenError("Only admins and creators can create tasks")

        async def work():
            task = await task_store.create_task(session, fields, created_by=actor.id)
            await task_store.attach_files(session, task.id, actor.id, attachments)
            return task

        task = await self._atomic(session, work)
        task_id = task.id

        message = f"New task assigned (by {actor.username}): {task.title}"
        await self._fan_out(
            session, resolve_responsible_identities(task), message,
            NotificationType.TASK_ASSIGNED, task, actor,
        )
        # A failed fan-out rolls back the session, which expires loaded rows
        return await task_store.get_task(session, task_id)

    async def apply_update(
        self,
        session: AsyncSession,
        task_id: int,
        actor: User,
        new_status: Optional[str] = None,
        note: Optional[str] = None,
        attachments: Sequence[StoredFile] = (),
        completed_at: Any = None,
    ) -> Optional[int]:
        """Change status and/or add a note with evidence files.

        A history row is written when the status actually changes or the
        note is non-empty; the id of that row is returned, or None when the
        call changed nothing.
        """
        status = task_store.parse_status(new_status) if new_status not in (None, "") else None
        note = (note or "").strip()

        async def work():
            task = await task_store.get_task(session, task_id, for_update=True)
            if not is_authorized(actor, task):
                raise ForbiddenError(f"User {actor.id} may not update task {task_id}")

            status_changed = status is not None and status != task.status
            if status_changed:
                await task_store.set_status(session, task_id, status, completed_at, task=task)

            update_id = None
            if status_changed or note:
                update = await task_store.append_update(session, task_id, actor.id, task.status, note)
                update_id = update.id
            files = await task_store.attach_files(session, task_id, actor.id, attachments, update_id)
            return task, update_id, bool(files)

        task, update_id, has_files = await self._atomic(session, work)
        if update_id is None and not has_files:
            return None

        await self._fan_out(
            session,
            self._update_recipients(session, task, actor),
            self._update_message(task, actor, note, len(attachments)),
            NotificationType.TASK_UPDATE,
            task,
            actor,
        )
        return update_id

    async def edit_task(
        self,
        session: AsyncSession,
        task_id: int,
        actor: User,
        fields: Dict[str, Any],
    ) -> Task:
        """Partial edit of the task's main fields.

        Everyone responsible before or after the edit is told about it.
        """
        async def work():
            task = await task_store.get_task(session, task_id, for_update=True)
            if not is_authorized(actor, task):
                raise ForbiddenError(f"User {actor.id} may not edit task {task_id}")

            previous = resolve_responsible_identities(task)
            previous_status = task.status
            await task_store.update_task_fields(session, task_id, fields, task=task)
            if task.status != previous_status:
                await task_store.append_update(session, task_id, actor.id, task.status)
            return task, previous

        task, previous = await self._atomic(session, work)

        message = f"Task updated (by {actor.username}): {task.title}"
        await self._fan_out(
            session, previous | resolve_responsible_identities(task), message,
            NotificationType.TASK_UPDATED, task, actor,
        )
        return task

    async def remove_task(self, session: AsyncSession, task_id: int, actor: User) -> None:
        """Delete a task with its history, notifications and files"""
        async def work():
            task = await task_store.get_task(session, task_id, for_update=True)
            if not is_authorized(actor, task):
                raise ForbiddenError(f"User {actor.id} may not delete task {task_id}")
            return await task_store.delete_task(session, task_id)

        filenames = await self._atomic(session, work)
        for filename in filenames:
            remove_attachment(filename)

    # --- Helpers ---

    async def _update_recipients(self, session: AsyncSession, task: Task, actor: User) -> set:
        recipients = resolve_responsible_identities(task)
        recipients.add(task.created_by)
        if actor.role != UserRole.ADMIN:
            recipients |= await list_administrators(session)
        return recipients

    def _update_message(self, task: Task, actor: User, note: str, file_count: int) -> str:
        role = ROLE_LABELS.get(actor.role, "User")
        label = STATUS_LABELS.get(task.status, str(task.status))
        message = f"{role} ({actor.username}) updated task #{task.id} - Status: {label}"
        if note:
            message += f" - Note: {excerpt(note)}"
        if file_count:
            message += f" - Attachments: {file_count} file(s) uploaded"
        return message
