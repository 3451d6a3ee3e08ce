"""SQLAlchemy ORM models."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from opshub.db.base import Base
from opshub.db.enums import DEFAULT_TASK_STATUS
from opshub.db.types import JSONBag
from opshub.utils.datetime_utils import utcnow


class TaskBoard(Base):
    __tablename__ = "task_boards"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    groups: Mapped[list["TaskGroup"]] = relationship(
        back_populates="board", cascade="all, delete-orphan"
    )


class TaskGroup(Base):
    __tablename__ = "task_groups"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    board_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("task_boards.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    board: Mapped["TaskBoard"] = relationship(back_populates="groups")
    items: Mapped[list["TaskItem"]] = relationship(
        back_populates="group", cascade="all, delete-orphan"
    )


class TaskItem(Base):
    """
    A task on a board.

    `status` is a free-form board label compared by exact text.
    """

    __tablename__ = "task_items"
    __table_args__ = (
        Index("idx_task_items_due", "due_date"),
        Index("idx_task_items_archived", "archived_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("task_groups.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[str] = mapped_column(String(100), default=DEFAULT_TASK_STATUS, nullable=False)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_voicemail: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    needs_attention: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    archived_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    group: Mapped["TaskGroup"] = relationship(back_populates="items")
    assignees: Mapped[list["TaskItemAssignee"]] = relationship(
        back_populates="item", cascade="all, delete-orphan"
    )
    updates: Mapped[list["TaskUpdate"]] = relationship(
        back_populates="item", cascade="all, delete-orphan"
    )


class TaskItemAssignee(Base):
    __tablename__ = "task_item_assignees"

    item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("task_items.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    item: Mapped["TaskItem"] = relationship(back_populates="assignees")


class TaskUpdate(Base):
    """Comment on a task item. `user_id` NULL means written by an automation."""

    __tablename__ = "task_updates"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    item_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("task_items.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    item: Mapped["TaskItem"] = relationship(back_populates="updates")


class TaskBoardAutomation(Base):
    """Automation rule bound to one board."""

    __tablename__ = "task_board_automations"
    __table_args__ = (Index("idx_board_automations_board", "board_id", "is_active"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    board_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("task_boards.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger_config: Mapped[dict] = mapped_column(JSONBag, default=dict, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    action_config: Mapped[dict] = mapped_column(JSONBag, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class TaskGlobalAutomation(Base):
    """Automation rule applied to items on every board."""

    __tablename__ = "task_global_automations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    trigger_type: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger_config: Mapped[dict] = mapped_column(JSONBag, default=dict, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    action_config: Mapped[dict] = mapped_column(JSONBag, default=dict, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class TaskAutomationRun(Base):
    """Append-only audit row: one per attempted rule firing."""

    __tablename__ = "task_automation_runs"
    __table_args__ = (
        Index("idx_automation_runs_dedupe", "automation_id", "item_id", "ran_at"),
        Index("idx_automation_runs_item", "item_id", "ran_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scope: Mapped[str] = mapped_column(String(20), nullable=False)
    # No FK: audit rows outlive deleted rules and purged items
    automation_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    board_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    item_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    ran_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False)
    detail: Mapped[dict] = mapped_column(JSONBag, default=dict, nullable=False)
