"""Task automation engine - evaluates board/global rules against item events."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from opshub.core.config import settings
from opshub.core.structured_logging import build_log_context
from opshub.db.enums import (
    AutomationActionType,
    AutomationOutcome,
    AutomationScope,
    AutomationTriggerType,
    ItemChangeOrigin,
)
from opshub.db.models import (
    TaskAutomationRun,
    TaskBoardAutomation,
    TaskGlobalAutomation,
    TaskGroup,
    TaskItem,
    TaskItemAssignee,
)
from opshub.services import notification_service, task_item_service
from opshub.utils.datetime_utils import local_day_bounds, local_today, utcnow

logger = logging.getLogger(__name__)

MAX_DUE_DAY_SPAN = 365

Rule = TaskBoardAutomation | TaskGlobalAutomation


class AutomationActionError(Exception):
    """Raised by an action that cannot run with its stored config."""

    pass


@dataclass
class RuleMatch:
    scope: AutomationScope
    rule: Rule


def build_item_link(board_id: UUID | None, item_id: UUID | None) -> str:
    if board_id and item_id:
        return f"/tasks?board={board_id}&item={item_id}"
    if board_id:
        return f"/tasks?board={board_id}"
    return "/tasks"


def parse_days_from_due(trigger_config: dict | None) -> int | None:
    """Integer offset from the rule config, clamped to one year either way."""
    value = (trigger_config or {}).get("days_from_due")
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        days = value
    elif isinstance(value, str) and value.strip().lstrip("+-").isdigit():
        days = int(value.strip())
    else:
        return None
    return max(-MAX_DUE_DAY_SPAN, min(MAX_DUE_DAY_SPAN, days))


class TaskAutomationEngine:
    """
    Rule evaluation with one audit row per attempt.

    Rules for an event fire in created_at order across board and global
    scope. A failing action is recorded and does not stop later rules.
    Writes made by actions never re-enter the engine.
    """

    # =========================================================================
    # Entry points
    # =========================================================================

    def on_item_changed(
        self,
        db: Session,
        before: Any,
        after: Any,
        actor_user_id: UUID | None,
        *,
        now: datetime | None = None,
    ) -> list[TaskAutomationRun]:
        """Fire status_change rules when the status differs."""
        if before is None or after is None or before.status == after.status:
            return []
        board_id = task_item_service.get_board_id_for_item(db, after.id)
        if not board_id:
            return []
        item = db.get(TaskItem, after.id)
        if item is None:
            return []

        event = {
            "type": AutomationTriggerType.STATUS_CHANGE.value,
            "from_status": before.status,
            "to_status": after.status,
        }
        runs = []
        for match in self._find_rules(db, board_id, AutomationTriggerType.STATUS_CHANGE):
            to_status = (match.rule.trigger_config or {}).get("to_status")
            if to_status and after.status != to_status:
                runs.append(
                    self._record_run(
                        db,
                        match,
                        board_id,
                        item.id,
                        AutomationOutcome.SKIPPED,
                        {"reason": "to_status did not match", "event": event},
                        now,
                    )
                )
                continue
            runs.append(self._fire(db, match, board_id, item, actor_user_id, event, now))
        return runs

    def on_assignee_added(
        self,
        db: Session,
        item_id: UUID,
        assignee_user_id: UUID,
        actor_user_id: UUID | None,
        *,
        now: datetime | None = None,
    ) -> list[TaskAutomationRun]:
        """Fire assignee_added rules for one newly inserted assignee."""
        if not item_id or not assignee_user_id:
            return []
        board_id = task_item_service.get_board_id_for_item(db, item_id)
        item = db.get(TaskItem, item_id)
        if not board_id or item is None:
            return []

        event = {
            "type": AutomationTriggerType.ASSIGNEE_ADDED.value,
            "assignee_user_id": str(assignee_user_id),
        }
        return [
            self._fire(db, match, board_id, item, actor_user_id, event, now)
            for match in self._find_rules(db, board_id, AutomationTriggerType.ASSIGNEE_ADDED)
        ]

    def run_due_date_automations(self, db: Session, *, now: datetime | None = None) -> dict:
        """
        Fire due_date_relative rules for items due on today + days_from_due.

        "Today" is the operational-timezone date. An item fires at most once
        per rule per day; later ticks the same day find the audit row and
        skip without writing.
        """
        current = now or utcnow()
        tz = settings.operational_tz
        today = local_today(tz, current)
        processed = fired = errors = 0

        for match in self._find_rules(db, None, AutomationTriggerType.DUE_DATE_RELATIVE):
            days = parse_days_from_due(match.rule.trigger_config)
            if days is None:
                logger.warning(
                    "Skipping due-date rule with invalid days_from_due",
                    extra=build_log_context(automation_id=match.rule.id, component="task_automations"),
                )
                continue
            target = today + timedelta(days=days)
            for item, board_id in self._items_due_on(db, target, match):
                if self._already_ran_today(db, match.rule.id, item.id, today, tz):
                    continue
                event = {
                    "type": AutomationTriggerType.DUE_DATE_RELATIVE.value,
                    "days_from_due": days,
                    "due_date": item.due_date.isoformat() if item.due_date else None,
                }
                run = self._fire(db, match, board_id, item, None, event, current)
                processed += 1
                if run.outcome == AutomationOutcome.FIRED.value:
                    fired += 1
                else:
                    errors += 1

        return {"processed": processed, "fired": fired, "errors": errors}

    # =========================================================================
    # Rule lookup
    # =========================================================================

    def _find_rules(
        self,
        db: Session,
        board_id: UUID | None,
        trigger_type: AutomationTriggerType,
    ) -> list[RuleMatch]:
        """Active board rules (one board, or all when None) plus global rules, oldest first."""
        board_stmt = select(TaskBoardAutomation).where(
            TaskBoardAutomation.is_active.is_(True),
            TaskBoardAutomation.trigger_type == trigger_type.value,
        )
        if board_id is not None:
            board_stmt = board_stmt.where(TaskBoardAutomation.board_id == board_id)
        global_stmt = select(TaskGlobalAutomation).where(
            TaskGlobalAutomation.is_active.is_(True),
            TaskGlobalAutomation.trigger_type == trigger_type.value,
        )
        matches = [RuleMatch(AutomationScope.BOARD, rule) for rule in db.scalars(board_stmt).all()]
        matches += [RuleMatch(AutomationScope.GLOBAL, rule) for rule in db.scalars(global_stmt).all()]
        matches.sort(key=lambda m: m.rule.created_at)
        return matches

    def _items_due_on(self, db: Session, target: date, match: RuleMatch) -> list[tuple[TaskItem, UUID]]:
        stmt = (
            select(TaskItem, TaskGroup.board_id)
            .join(TaskGroup, TaskItem.group_id == TaskGroup.id)
            .where(TaskItem.due_date == target, TaskItem.archived_at.is_(None))
            .order_by(TaskItem.created_at)
        )
        if match.scope == AutomationScope.BOARD:
            stmt = stmt.where(TaskGroup.board_id == match.rule.board_id)
        return [(item, board_id) for item, board_id in db.execute(stmt).all()]

    def _already_ran_today(self, db: Session, automation_id: UUID, item_id: UUID, today: date, tz) -> bool:
        start, end = local_day_bounds(today, tz)
        existing = db.scalar(
            select(TaskAutomationRun.id)
            .where(
                TaskAutomationRun.automation_id == automation_id,
                TaskAutomationRun.item_id == item_id,
                TaskAutomationRun.outcome.in_(
                    [AutomationOutcome.FIRED.value, AutomationOutcome.ERROR.value]
                ),
                TaskAutomationRun.ran_at >= start,
                TaskAutomationRun.ran_at < end,
            )
            .limit(1)
        )
        return existing is not None

    # =========================================================================
    # Firing and audit
    # =========================================================================

    def _fire(
        self,
        db: Session,
        match: RuleMatch,
        board_id: UUID,
        item: TaskItem,
        actor_user_id: UUID | None,
        event: dict,
        now: datetime | None,
    ) -> TaskAutomationRun:
        rule = match.rule
        item_id = item.id
        try:
            detail = self._execute_action(db, match, board_id, item, actor_user_id, event)
            db.commit()
            outcome = AutomationOutcome.FIRED
            detail = {**detail, "event": event}
        except Exception as exc:
            db.rollback()
            logger.exception(
                "Automation action %s failed",
                rule.action_type,
                extra=build_log_context(
                    automation_id=rule.id, item_id=item_id, component="task_automations"
                ),
            )
            outcome = AutomationOutcome.ERROR
            detail = {"message": str(exc) or type(exc).__name__, "event": event}
        return self._record_run(db, match, board_id, item_id, outcome, detail, now)

    def _record_run(
        self,
        db: Session,
        match: RuleMatch,
        board_id: UUID | None,
        item_id: UUID,
        outcome: AutomationOutcome,
        detail: dict,
        now: datetime | None,
    ) -> TaskAutomationRun:
        run = TaskAutomationRun(
            scope=match.scope.value,
            automation_id=match.rule.id,
            board_id=board_id if match.scope == AutomationScope.BOARD else None,
            item_id=item_id,
            ran_at=now or utcnow(),
            outcome=outcome.value,
            detail=detail,
        )
        db.add(run)
        db.commit()
        return run

    # =========================================================================
    # Action Executors
    # =========================================================================

    def _execute_action(
        self,
        db: Session,
        match: RuleMatch,
        board_id: UUID,
        item: TaskItem,
        actor_user_id: UUID | None,
        event: dict,
    ) -> dict:
        rule = match.rule
        action_type = rule.action_type
        config = rule.action_config or {}

        if action_type == AutomationActionType.NOTIFY_ADMINS.value:
            return self._action_notify_admins(db, match, board_id, item, actor_user_id, event)

        if action_type == AutomationActionType.NOTIFY_ASSIGNEES.value:
            return self._action_notify_assignees(db, match, board_id, item, actor_user_id, event)

        if action_type == AutomationActionType.SET_STATUS.value:
            status = str(config.get("status") or "").strip()
            if not status:
                raise AutomationActionError("Missing status")
            task_item_service.update_item(
                db, item.id, actor_user_id=None, origin=ItemChangeOrigin.AUTOMATION, status=status
            )
            return {"status": status}

        if action_type == AutomationActionType.SET_NEEDS_ATTENTION.value:
            if "value" not in config:
                raise AutomationActionError("Missing value")
            value = bool(config.get("value"))
            task_item_service.update_item(
                db, item.id, actor_user_id=None, origin=ItemChangeOrigin.AUTOMATION, needs_attention=value
            )
            return {"needs_attention": value}

        if action_type == AutomationActionType.ADD_UPDATE.value:
            content = str(config.get("content") or "").strip()
            if not content:
                raise AutomationActionError("Missing content")
            update = task_item_service.add_update(db, item.id, content, user_id=None)
            return {"update_id": str(update.id)}

        raise AutomationActionError(f"Unsupported action_type: {action_type}")

    def _notification_fields(
        self,
        match: RuleMatch,
        board_id: UUID,
        item: TaskItem,
        actor_user_id: UUID | None,
        event: dict,
    ) -> tuple[str, str, str, dict]:
        config = match.rule.action_config or {}
        title = config.get("title") or f"Task status updated: {item.status}"
        body = config.get("body") or item.name or ""
        link_url = config.get("link_url") or build_item_link(board_id, item.id)
        meta = {
            "source": "tasks_automation",
            "scope": match.scope.value,
            "board_id": str(board_id) if board_id else None,
            "item_id": str(item.id),
            "automation_id": str(match.rule.id),
            "actor_user_id": str(actor_user_id) if actor_user_id else None,
            "event": event,
        }
        return title, body, link_url, meta

    def _action_notify_admins(self, db, match, board_id, item, actor_user_id, event) -> dict:
        title, body, link_url, meta = self._notification_fields(match, board_id, item, actor_user_id, event)
        created = notification_service.notify_admins(db, title, body, link_url, meta)
        return {"recipients_count": len(created)}

    def _action_notify_assignees(self, db, match, board_id, item, actor_user_id, event) -> dict:
        """
        Notify current assignees except the actor.

        For assignee_added events only the new assignee is notified.
        """
        title, body, link_url, meta = self._notification_fields(match, board_id, item, actor_user_id, event)
        if match.rule.trigger_type == AutomationTriggerType.ASSIGNEE_ADDED.value and event.get(
            "assignee_user_id"
        ):
            user_ids = [UUID(event["assignee_user_id"])]
        else:
            user_ids = list(
                db.scalars(
                    select(TaskItemAssignee.user_id)
                    .where(TaskItemAssignee.item_id == item.id)
                    .order_by(TaskItemAssignee.created_at)
                ).all()
            )

        count = 0
        for user_id in user_ids:
            if actor_user_id and user_id == actor_user_id:
                continue
            if notification_service.create_notification(db, user_id, title, body, link_url, meta):
                count += 1
        return {"recipients_count": count}
