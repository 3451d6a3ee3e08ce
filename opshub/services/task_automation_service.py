"""Task automation service - rule CRUD with config validation."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from opshub.db.enums import AutomationActionType, AutomationTriggerType
from opshub.db.models import (
    TaskAutomationRun,
    TaskBoard,
    TaskBoardAutomation,
    TaskGlobalAutomation,
)
from opshub.services.task_automation_engine import MAX_DUE_DAY_SPAN

UPDATABLE_FIELDS = ("name", "trigger_type", "trigger_config", "action_type", "action_config", "is_active")


class AutomationValidationError(ValueError):
    """Rule config rejected; the message is safe to show to the caller."""

    pass


def validate_rule(
    trigger_type: str,
    trigger_config: dict | None,
    action_type: str,
    action_config: dict | None,
) -> tuple[dict, dict]:
    """Return normalized (trigger_config, action_config) or raise."""
    trigger_config = dict(trigger_config or {})
    action_config = dict(action_config or {})

    if not AutomationTriggerType.has_value(trigger_type):
        raise AutomationValidationError(f"Unsupported trigger_type: {trigger_type}")
    if not AutomationActionType.has_value(action_type):
        raise AutomationValidationError(f"Unsupported action_type: {action_type}")

    if trigger_type == AutomationTriggerType.DUE_DATE_RELATIVE.value:
        days = trigger_config.get("days_from_due")
        if isinstance(days, bool) or not isinstance(days, int):
            raise AutomationValidationError("days_from_due must be an integer")
        if abs(days) > MAX_DUE_DAY_SPAN:
            raise AutomationValidationError(
                f"days_from_due must be between -{MAX_DUE_DAY_SPAN} and {MAX_DUE_DAY_SPAN}"
            )

    if trigger_type == AutomationTriggerType.STATUS_CHANGE.value and "to_status" in trigger_config:
        to_status = trigger_config.get("to_status")
        if to_status is not None and not isinstance(to_status, str):
            raise AutomationValidationError("to_status must be text")
        if not to_status:
            trigger_config.pop("to_status")

    if action_type == AutomationActionType.SET_STATUS.value:
        status = action_config.get("status")
        if not isinstance(status, str) or not status.strip():
            raise AutomationValidationError("set_status requires action_config.status")
        action_config["status"] = status.strip()

    if action_type == AutomationActionType.SET_NEEDS_ATTENTION.value:
        if not isinstance(action_config.get("value"), bool):
            raise AutomationValidationError("set_needs_attention requires a boolean action_config.value")

    if action_type == AutomationActionType.ADD_UPDATE.value:
        content = action_config.get("content")
        if not isinstance(content, str) or not content.strip():
            raise AutomationValidationError("add_update requires action_config.content")
        action_config["content"] = content.strip()

    return trigger_config, action_config


def _clean_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise AutomationValidationError("Name is required")
    return name


def create_board_automation(
    db: Session,
    board_id: UUID,
    *,
    name: str,
    trigger_type: str,
    action_type: str,
    trigger_config: dict | None = None,
    action_config: dict | None = None,
    is_active: bool = True,
    created_by: UUID | None = None,
) -> TaskBoardAutomation:
    if db.get(TaskBoard, board_id) is None:
        raise LookupError("Board not found")
    trigger_config, action_config = validate_rule(trigger_type, trigger_config, action_type, action_config)
    rule = TaskBoardAutomation(
        board_id=board_id,
        name=_clean_name(name),
        trigger_type=trigger_type,
        trigger_config=trigger_config,
        action_type=action_type,
        action_config=action_config,
        is_active=is_active,
        created_by=created_by,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


def create_global_automation(
    db: Session,
    *,
    name: str,
    trigger_type: str,
    action_type: str,
    trigger_config: dict | None = None,
    action_config: dict | None = None,
    is_active: bool = True,
    created_by: UUID | None = None,
) -> TaskGlobalAutomation:
    trigger_config, action_config = validate_rule(trigger_type, trigger_config, action_type, action_config)
    rule = TaskGlobalAutomation(
        name=_clean_name(name),
        trigger_type=trigger_type,
        trigger_config=trigger_config,
        action_type=action_type,
        action_config=action_config,
        is_active=is_active,
        created_by=created_by,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


def get_automation(db: Session, automation_id: UUID) -> TaskBoardAutomation | TaskGlobalAutomation | None:
    return db.get(TaskBoardAutomation, automation_id) or db.get(TaskGlobalAutomation, automation_id)


def update_automation(db: Session, automation_id: UUID, **changes):
    """Patch a board or global rule; the merged rule is re-validated."""
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise AutomationValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}")
    rule = get_automation(db, automation_id)
    if rule is None:
        raise LookupError("Automation not found")

    trigger_type = changes.get("trigger_type", rule.trigger_type)
    action_type = changes.get("action_type", rule.action_type)
    trigger_config, action_config = validate_rule(
        trigger_type,
        changes.get("trigger_config", rule.trigger_config),
        action_type,
        changes.get("action_config", rule.action_config),
    )

    if "name" in changes:
        rule.name = _clean_name(changes["name"])
    if "is_active" in changes:
        rule.is_active = bool(changes["is_active"])
    rule.trigger_type = trigger_type
    rule.action_type = action_type
    rule.trigger_config = trigger_config
    rule.action_config = action_config
    db.commit()
    db.refresh(rule)
    return rule


def delete_automation(db: Session, automation_id: UUID) -> bool:
    """Delete the rule; its audit rows are kept."""
    rule = get_automation(db, automation_id)
    if rule is None:
        return False
    db.delete(rule)
    db.commit()
    return True


def list_board_automations(db: Session, board_id: UUID) -> list[TaskBoardAutomation]:
    return list(
        db.scalars(
            select(TaskBoardAutomation)
            .where(TaskBoardAutomation.board_id == board_id)
            .order_by(TaskBoardAutomation.created_at)
        ).all()
    )


def list_global_automations(db: Session) -> list[TaskGlobalAutomation]:
    return list(db.scalars(select(TaskGlobalAutomation).order_by(TaskGlobalAutomation.created_at)).all())


def list_runs(
    db: Session,
    *,
    item_id: UUID | None = None,
    automation_id: UUID | None = None,
    limit: int = 100,
) -> list[TaskAutomationRun]:
    """Audit rows, newest first."""
    stmt = select(TaskAutomationRun)
    if item_id:
        stmt = stmt.where(TaskAutomationRun.item_id == item_id)
    if automation_id:
        stmt = stmt.where(TaskAutomationRun.automation_id == automation_id)
    return list(db.scalars(stmt.order_by(TaskAutomationRun.ran_at.desc()).limit(limit)).all())
