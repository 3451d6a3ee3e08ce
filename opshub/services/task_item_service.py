"""Task item service - write path for board items."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from opshub.db.enums import ItemChangeOrigin
from opshub.db.models import TaskGroup, TaskItem, TaskItemAssignee, TaskUpdate
from opshub.services import task_events
from opshub.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "status", "due_date", "needs_attention", "is_voicemail")


@dataclass(frozen=True)
class ItemSnapshot:
    """Point-in-time copy of the item fields automations compare."""

    id: UUID
    name: str
    status: str
    needs_attention: bool
    due_date: date | None

    @classmethod
    def from_item(cls, item: TaskItem) -> "ItemSnapshot":
        return cls(
            id=item.id,
            name=item.name,
            status=item.status,
            needs_attention=item.needs_attention,
            due_date=item.due_date,
        )


def get_item(db: Session, item_id: UUID) -> TaskItem | None:
    return db.get(TaskItem, item_id)


def get_board_id_for_item(db: Session, item_id: UUID) -> UUID | None:
    return db.scalar(
        select(TaskGroup.board_id)
        .join(TaskItem, TaskItem.group_id == TaskGroup.id)
        .where(TaskItem.id == item_id)
    )


def create_item(
    db: Session,
    group_id: UUID,
    name: str,
    *,
    status: str | None = None,
    due_date: date | None = None,
    created_by: UUID | None = None,
) -> TaskItem:
    item = TaskItem(group_id=group_id, name=name, due_date=due_date, created_by=created_by)
    if status:
        item.status = status
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


def update_item(
    db: Session,
    item_id: UUID,
    *,
    actor_user_id: UUID | None = None,
    origin: ItemChangeOrigin = ItemChangeOrigin.USER,
    **changes,
) -> TaskItem:
    """
    Apply field changes and commit.

    User writes that change the status are handed to the automation engine
    (detached). Automation-origin writes are never dispatched.
    """
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"Unsupported item fields: {', '.join(sorted(unknown))}")

    item = db.get(TaskItem, item_id)
    if item is None:
        raise LookupError("Task item not found")

    before = ItemSnapshot.from_item(item)
    for field_name, value in changes.items():
        setattr(item, field_name, value)
    db.commit()
    after = ItemSnapshot.from_item(item)

    task_events.dispatch_item_changed(before, after, actor_user_id, origin=origin)
    return item


def add_assignee(
    db: Session,
    item_id: UUID,
    user_id: UUID,
    *,
    actor_user_id: UUID | None = None,
) -> bool:
    """Insert an assignee. Returns False (and dispatches nothing) when already assigned."""
    exists = db.get(TaskItemAssignee, (item_id, user_id))
    if exists is not None:
        return False
    db.add(TaskItemAssignee(item_id=item_id, user_id=user_id))
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return False

    task_events.dispatch_assignee_added(item_id, user_id, actor_user_id)
    return True


def add_update(db: Session, item_id: UUID, content: str, *, user_id: UUID | None = None) -> TaskUpdate:
    """Append an update row. `user_id=None` marks an automation author."""
    update = TaskUpdate(item_id=item_id, user_id=user_id, content=content)
    db.add(update)
    db.flush()
    return update


def archive_item(db: Session, item_id: UUID, now: datetime | None = None) -> TaskItem:
    item = db.get(TaskItem, item_id)
    if item is None:
        raise LookupError("Task item not found")
    item.archived_at = now or utcnow()
    db.commit()
    return item
