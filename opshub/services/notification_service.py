"""
Notification Service - in-app notifications with best-effort email copies.

Rows are flushed, not committed: callers own the transaction.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from opshub.core.async_utils import run_async
from opshub.core.config import settings
from opshub.core.structured_logging import build_log_context
from opshub.db.enums import ADMIN_ROLES
from opshub.db.models import Notification, User, UserNotificationSettings
from opshub.services import email_service
from opshub.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

# Keeps fire-and-forget email tasks referenced until they finish.
_pending_email_tasks: set[asyncio.Task] = set()


# =============================================================================
# Notification Settings
# =============================================================================


def email_copies_enabled(db: Session, user_id: UUID) -> bool:
    """Missing settings row = email copies ON."""
    row = db.get(UserNotificationSettings, user_id)
    return True if row is None else bool(row.email_enabled)


def set_email_copies_enabled(db: Session, user_id: UUID, enabled: bool) -> UserNotificationSettings:
    row = db.get(UserNotificationSettings, user_id)
    if row is None:
        row = UserNotificationSettings(user_id=user_id)
        db.add(row)
    row.email_enabled = enabled
    db.flush()
    return row


# =============================================================================
# Email copy
# =============================================================================


def _absolute_link(link_url: str | None) -> str | None:
    if not link_url:
        return None
    if link_url.startswith(("http://", "https://")):
        return link_url
    return f"{settings.FRONTEND_URL.rstrip('/')}/{link_url.lstrip('/')}"


async def _send_email_copy(
    sender: email_service.MailgunEmailSender,
    to: str,
    title: str,
    body: str | None,
    link_url: str | None,
    user_id: UUID,
) -> None:
    lines = [body or title]
    link = _absolute_link(link_url)
    if link:
        lines.append(f"Open: {link}")
    try:
        await sender.send(to, title, "\n\n".join(lines))
    except Exception as exc:
        logger.warning(
            "Notification email copy failed: %s",
            type(exc).__name__,
            extra=build_log_context(user_id=user_id, component="notifications"),
        )


def _log_task_failure(task: asyncio.Task) -> None:
    _pending_email_tasks.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logger.warning("Notification email task crashed: %s", type(task.exception()).__name__)


def _dispatch_email_copy(db: Session, user_id: UUID, title: str, body: str | None, link_url: str | None) -> None:
    sender = email_service.get_email_sender()
    if sender is None or not email_copies_enabled(db, user_id):
        return
    user = db.get(User, user_id)
    if user is None or not user.email:
        return

    coro = _send_email_copy(sender, user.email, title, body, link_url, user_id)
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop is not None:
        task = loop.create_task(coro)
        _pending_email_tasks.add(task)
        task.add_done_callback(_log_task_failure)
        return
    try:
        run_async(coro, timeout=settings.EMAIL_TIMEOUT_SECONDS + 5)
    except Exception as exc:
        logger.warning(
            "Notification email copy failed: %s",
            type(exc).__name__,
            extra=build_log_context(user_id=user_id, component="notifications"),
        )


# =============================================================================
# Notification CRUD
# =============================================================================


def create_notification(
    db: Session,
    user_id: UUID | None,
    title: str | None,
    body: Optional[str] = None,
    link_url: Optional[str] = None,
    meta: Optional[dict] = None,
    *,
    send_email: bool = True,
) -> Optional[Notification]:
    """
    Create an in-app notification.

    Returns None (no row) when user_id or title is empty. When the
    recipient allows it and email is configured, a copy is emailed; copy
    failures are logged and never raised.
    """
    if not user_id or not title:
        return None

    notification = Notification(
        user_id=user_id,
        title=title,
        body=body or None,
        link_url=link_url or None,
        meta=dict(meta or {}),
    )
    db.add(notification)
    db.flush()

    if send_email:
        _dispatch_email_copy(db, user_id, title, body, link_url)
    return notification


def get_admin_user_ids(db: Session) -> list[UUID]:
    return list(
        db.scalars(
            select(User.id)
            .where(User.role.in_([role.value for role in ADMIN_ROLES]))
            .order_by(User.created_at)
        ).all()
    )


def notify_admins(
    db: Session,
    title: str,
    body: Optional[str] = None,
    link_url: Optional[str] = None,
    meta: Optional[dict] = None,
    *,
    exclude_user_id: UUID | None = None,
) -> list[Notification]:
    """One notification per superadmin/admin user."""
    created = []
    for admin_id in get_admin_user_ids(db):
        if exclude_user_id and admin_id == exclude_user_id:
            continue
        notification = create_notification(db, admin_id, title, body, link_url, meta)
        if notification:
            created.append(notification)
    return created


def list_notifications(
    db: Session,
    user_id: UUID,
    limit: int = 25,
    unread_only: bool = False,
) -> list[Notification]:
    """Get notifications for user, newest first."""
    stmt = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        stmt = stmt.where(Notification.read_at.is_(None))
    return list(db.scalars(stmt.order_by(Notification.created_at.desc()).limit(limit)).all())


def get_unread_count(db: Session, user_id: UUID) -> int:
    """Get count of unread notifications."""
    return (
        db.scalar(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.read_at.is_(None))
        )
        or 0
    )


def mark_read(
    db: Session,
    notification_id: UUID,
    user_id: UUID,
    now: datetime | None = None,
) -> Optional[Notification]:
    """Mark a notification as read (scoped to its owner)."""
    notification = db.scalars(
        select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
    ).first()
    if notification and not notification.read_at:
        notification.read_at = now or utcnow()
        db.flush()
    return notification


def mark_all_read(db: Session, user_id: UUID, now: datetime | None = None) -> int:
    """Mark all notifications as read. Returns count updated."""
    result = db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read_at.is_(None))
        .values(read_at=now or utcnow())
        .execution_options(synchronize_session="fetch")
    )
    db.flush()
    return result.rowcount or 0
