"""Retention jobs: archived task purge and legacy service redaction."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from opshub.core.config import settings
from opshub.db.models import ClientService, TaskItem, TaskItemAssignee, TaskUpdate
from opshub.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


def purge_archived_tasks(
    db: Session,
    retention_days: int | None = None,
    *,
    now: datetime | None = None,
) -> int:
    """Permanently delete items archived more than `retention_days` ago."""
    days = settings.TASK_ARCHIVE_RETENTION_DAYS if retention_days is None else retention_days
    cutoff = (now or utcnow()) - timedelta(days=max(0, days))
    item_ids = list(
        db.scalars(
            select(TaskItem.id).where(
                TaskItem.archived_at.is_not(None),
                TaskItem.archived_at < cutoff,
            )
        ).all()
    )
    if not item_ids:
        return 0

    # Bulk deletes skip ORM cascades; clear children explicitly for SQLite.
    db.execute(delete(TaskItemAssignee).where(TaskItemAssignee.item_id.in_(item_ids)))
    db.execute(delete(TaskUpdate).where(TaskUpdate.item_id.in_(item_ids)))
    db.execute(delete(TaskItem).where(TaskItem.id.in_(item_ids)))
    db.commit()
    logger.info("Purged %s archived task item(s)", len(item_ids))
    return len(item_ids)


def redact_old_services(
    db: Session,
    days: int | None = None,
    *,
    now: datetime | None = None,
) -> int:
    """Stamp `redacted_at` on services agreed more than `days` ago."""
    current = now or utcnow()
    window = settings.SERVICE_REDACTION_DAYS if days is None else days
    cutoff = current - timedelta(days=window)
    result = db.execute(
        update(ClientService)
        .where(
            ClientService.redacted_at.is_(None),
            ClientService.agreed_date.is_not(None),
            ClientService.agreed_date < cutoff,
        )
        .values(redacted_at=current)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    count = result.rowcount or 0
    if count:
        logger.info("Redacted %s service(s) older than %s days", count, window)
    return count
