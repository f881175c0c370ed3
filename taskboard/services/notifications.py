"""
Notification dispatcher - in-app notification rows plus email fan-out.

Each distinct recipient except the acting user gets exactly one unread
Notification row. Recipients with an email address also get one email,
sent in the background; delivery failures are logged and never reach the
caller. Assignment emails go through this same path (with their own
template), so nobody receives two emails for one event.
"""
import asyncio
import logging
from typing import Iterable, List, Optional, Set

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import Settings, get_settings
from taskboard.exceptions import NotificationDeliveryError
from taskboard.models.notification import Notification, NotificationType
from taskboard.services.directory import existing_user_ids, lookup_emails
from taskboard.services.mailer import SmtpEmailSender
from taskboard.services.responsibility import parse_identity

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Fans a message out to a set of users through the in-app and email channels"""

    def __init__(self, email_sender=None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.email_sender = email_sender or SmtpEmailSender(self.settings)
        self._pending: Set[asyncio.Task] = set()

    async def notify(
        self,
        session: AsyncSession,
        recipients: Iterable,
        message: str,
        notification_type: Optional[str] = None,
        related_task_id: Optional[int] = None,
        acting_identity: Optional[int] = None,
        task=None,
    ) -> List[Notification]:
        """Persist one notification per recipient and schedule their emails.

        ``recipients`` may contain duplicates and raw identity values; they
        are parsed and collapsed to a set, the actor is removed, and ids that
        are not in the directory are skipped.
        """
        targets = set()
        for raw in recipients:
            parsed = parse_identity(raw)
            if parsed.is_valid:
                targets.add(parsed.user_id)
        targets.discard(acting_identity)
        if not targets:
            return []

        known = await existing_user_ids(session, targets)
        unknown = targets - known
        if unknown:
            logger.warning(f"Skipping notification for unknown users {sorted(unknown)}")
        if not known:
            return []

        type_tag = notification_type.value if isinstance(notification_type, NotificationType) else notification_type
        rows = [
            Notification(
                user_id=user_id,
                message=message,
                type=type_tag,
                related_task_id=related_task_id,
                is_read=False,
            )
            for user_id in sorted(known)
        ]
        session.add_all(rows)
        await session.commit()
        logger.info(f"Created {len(rows)} '{type_tag}' notifications for task {related_task_id}")

        emails = await lookup_emails(session, known)
        subject, body = self._render_email(message, type_tag, related_task_id, task)
        for user_id in sorted(known):
            address = emails.get(user_id)
            if address:
                self._schedule_email(address, subject, body)
            else:
                logger.debug(f"User {user_id} has no email address")

        return rows

    def _render_email(self, message: str, type_tag: Optional[str], task_id: Optional[int], task) -> tuple:
        base_url = self.settings.APP_BASE_URL.rstrip("/")
        task_link = f"{base_url}/tasks/{task_id}" if task_id else None

        if type_tag == NotificationType.TASK_ASSIGNED.value and task is not None:
            subject = f"New task assigned: {task.title}"
            lines = [
                f"You have been assigned a new task: {task.title}",
                "",
                f"Deadline: {task.deadline:%Y-%m-%d %H:%M}" if task.deadline else "",
                f"View the task: {task_link}" if task_link else "",
            ]
        else:
            subject = f"New notification: {self.settings.APP_NAME}"
            lines = [message, "", f"Details: {task_link}" if task_link else ""]

        lines += ["", "This message was sent automatically."]
        body = "\n".join(line for line in lines if line is not None)
        return subject, body

    def _schedule_email(self, address: str, subject: str, body: str) -> None:
        job = asyncio.create_task(self._send_email(address, subject, body))
        self._pending.add(job)
        job.add_done_callback(self._pending.discard)

    async def _send_email(self, address: str, subject: str, body: str) -> None:
        try:
            await asyncio.to_thread(self.email_sender.send_email, address, subject, body)
        except NotificationDeliveryError as e:
            logger.error(str(e))
        except Exception:
            # Email is best effort; nothing may propagate out of a background send
            logger.exception(f"Unexpected error sending notification email to {address}")

    async def drain(self) -> None:
        """Wait for in-flight email sends (shutdown, tests)"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


# --- Reader side ---

async def list_for_user(session: AsyncSession, user_id: int) -> List[Notification]:
    result = await session.execute(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
    )
    return list(result.scalars().all())


async def list_unread_for_user(session: AsyncSession, user_id: int) -> List[Notification]:
    result = await session.execute(
        select(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .order_by(Notification.created_at.desc(), Notification.id.desc())
    )
    return list(result.scalars().all())


async def unread_count(session: AsyncSession, user_id: int) -> int:
    result = await session.execute(
        select(func.count(Notification.id))
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
    )
    return result.scalar() or 0


async def mark_all_read_for_user(session: AsyncSession, user_id: int) -> int:
    """Flip every unread notification of a user to read; returns rows changed"""
    result = await session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount
