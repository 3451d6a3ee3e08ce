"""Tests for the task automation engine and rule evaluation."""

import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from opshub.db.enums import AutomationOutcome, Role
from opshub.db.models import (
    Notification,
    TaskAutomationRun,
    TaskBoard,
    TaskBoardAutomation,
    TaskGlobalAutomation,
    TaskGroup,
    TaskItem,
    TaskItemAssignee,
    TaskUpdate,
)
from opshub.services import task_automation_service, task_item_service
from opshub.services.task_automation_engine import TaskAutomationEngine, build_item_link, parse_days_from_due
from opshub.services.task_item_service import ItemSnapshot

# 11:00 in New York; the operational day is 2026-03-10
NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def _board_rule(db, board, **fields) -> TaskBoardAutomation:
    return task_automation_service.create_board_automation(db, board.id, **{"name": "rule", **fields})


def _runs(db) -> list[TaskAutomationRun]:
    db.expire_all()
    return list(db.scalars(select(TaskAutomationRun).order_by(TaskAutomationRun.ran_at)).all())


def _change_status(db, item: TaskItem, status: str) -> tuple[ItemSnapshot, ItemSnapshot]:
    before = ItemSnapshot.from_item(item)
    item.status = status
    db.commit()
    return before, ItemSnapshot.from_item(item)


# =============================================================================
# status_change
# =============================================================================


def test_status_change_notifies_admins(db, admin_user, task_board, task_item):
    rule = _board_rule(
        db,
        task_board,
        trigger_type="status_change",
        trigger_config={"to_status": "Done"},
        action_type="notify_admins",
    )
    before, after = _change_status(db, task_item, "Done")

    runs = TaskAutomationEngine().on_item_changed(db, before, after, None, now=NOW)

    assert [run.outcome for run in runs] == [AutomationOutcome.FIRED.value]
    assert runs[0].automation_id == rule.id
    assert runs[0].board_id == task_board.id
    assert runs[0].scope == "board"
    note = db.scalars(select(Notification)).one()
    assert note.user_id == admin_user.id
    assert note.title == "Task status updated: Done"
    assert note.body == "Call back Jane"
    assert note.link_url == build_item_link(task_board.id, task_item.id)
    assert note.meta["source"] == "tasks_automation"


def test_status_change_to_other_status_is_skipped(db, admin_user, task_board, task_item):
    _board_rule(
        db,
        task_board,
        trigger_type="status_change",
        trigger_config={"to_status": "Done"},
        action_type="notify_admins",
    )
    before, after = _change_status(db, task_item, "In Progress")

    runs = TaskAutomationEngine().on_item_changed(db, before, after, None, now=NOW)

    assert [run.outcome for run in runs] == [AutomationOutcome.SKIPPED.value]
    assert db.scalar(select(Notification.id)) is None


def test_unchanged_status_fires_nothing(db, admin_user, task_board, task_item):
    _board_rule(db, task_board, trigger_type="status_change", action_type="notify_admins")
    snapshot = ItemSnapshot.from_item(task_item)

    assert TaskAutomationEngine().on_item_changed(db, snapshot, snapshot, None, now=NOW) == []
    assert _runs(db) == []


def test_rules_fire_in_creation_order_across_scopes(db, admin_user, task_board, task_item):
    board_rule = _board_rule(
        db,
        task_board,
        trigger_type="status_change",
        action_type="add_update",
        action_config={"content": "Moved by automation"},
    )
    global_rule = task_automation_service.create_global_automation(
        db, name="everywhere", trigger_type="status_change", action_type="notify_admins"
    )
    before, after = _change_status(db, task_item, "Review")

    runs = TaskAutomationEngine().on_item_changed(db, before, after, admin_user.id, now=NOW)

    assert [run.automation_id for run in runs] == [board_rule.id, global_rule.id]
    assert runs[1].scope == "global"
    assert runs[1].board_id is None
    update = db.scalars(select(TaskUpdate)).one()
    assert update.user_id is None
    assert update.content == "Moved by automation"


def test_failing_action_is_recorded_and_later_rules_still_fire(db, admin_user, task_board, task_item):
    broken = TaskBoardAutomation(
        board_id=task_board.id,
        name="broken",
        trigger_type="status_change",
        trigger_config={},
        action_type="set_status",
        action_config={},
        created_at=NOW - timedelta(days=2),
    )
    db.add(broken)
    db.commit()
    healthy = TaskBoardAutomation(
        board_id=task_board.id,
        name="healthy",
        trigger_type="status_change",
        trigger_config={},
        action_type="notify_admins",
        action_config={},
        created_at=NOW - timedelta(days=1),
    )
    db.add(healthy)
    db.commit()
    before, after = _change_status(db, task_item, "Done")

    runs = TaskAutomationEngine().on_item_changed(db, before, after, None, now=NOW)

    assert [(run.automation_id, run.outcome) for run in runs] == [
        (broken.id, AutomationOutcome.ERROR.value),
        (healthy.id, AutomationOutcome.FIRED.value),
    ]
    assert runs[0].detail["message"] == "Missing status"
    assert db.scalar(select(Notification.id)) is not None


def test_set_status_action_does_not_retrigger_rules(db, admin_user, task_board, task_item):
    _board_rule(
        db,
        task_board,
        trigger_type="status_change",
        trigger_config={"to_status": "Done"},
        action_type="set_status",
        action_config={"status": "Archived"},
    )
    _board_rule(db, task_board, trigger_type="status_change", action_type="notify_admins")
    before, after = _change_status(db, task_item, "Done")

    runs = TaskAutomationEngine().on_item_changed(db, before, after, None, now=NOW)

    assert len(runs) == 2
    assert len(_runs(db)) == 2
    db.refresh(task_item)
    assert task_item.status == "Archived"


def test_set_needs_attention_action(db, task_board, task_item):
    _board_rule(
        db,
        task_board,
        trigger_type="status_change",
        action_type="set_needs_attention",
        action_config={"value": True},
    )
    before, after = _change_status(db, task_item, "Blocked")

    TaskAutomationEngine().on_item_changed(db, before, after, None, now=NOW)

    db.refresh(task_item)
    assert task_item.needs_attention is True


def test_inactive_rules_are_ignored(db, admin_user, task_board, task_item):
    _board_rule(db, task_board, trigger_type="status_change", action_type="notify_admins", is_active=False)
    before, after = _change_status(db, task_item, "Done")

    assert TaskAutomationEngine().on_item_changed(db, before, after, None, now=NOW) == []


# =============================================================================
# assignee_added
# =============================================================================


def test_assignee_added_notifies_only_new_assignee(db, make_user, task_board, task_item):
    existing = make_user(Role.TEAM)
    newcomer = make_user(Role.TEAM)
    db.add(TaskItemAssignee(item_id=task_item.id, user_id=existing.id))
    db.add(TaskItemAssignee(item_id=task_item.id, user_id=newcomer.id))
    db.commit()
    _board_rule(
        db,
        task_board,
        trigger_type="assignee_added",
        action_type="notify_assignees",
        action_config={"title": "You were assigned"},
    )

    runs = TaskAutomationEngine().on_assignee_added(db, task_item.id, newcomer.id, existing.id, now=NOW)

    assert runs[0].outcome == AutomationOutcome.FIRED.value
    assert runs[0].detail["recipients_count"] == 1
    notes = db.scalars(select(Notification)).all()
    assert [(n.user_id, n.title) for n in notes] == [(newcomer.id, "You were assigned")]


def test_assignee_added_by_self_sends_nothing(db, make_user, task_board, task_item):
    member = make_user(Role.TEAM)
    _board_rule(db, task_board, trigger_type="assignee_added", action_type="notify_assignees")

    runs = TaskAutomationEngine().on_assignee_added(db, task_item.id, member.id, member.id, now=NOW)

    assert runs[0].detail["recipients_count"] == 0
    assert db.scalar(select(Notification.id)) is None


def test_notify_assignees_on_status_change_excludes_actor(db, make_user, task_board, task_item):
    actor = make_user(Role.TEAM)
    other = make_user(Role.TEAM)
    db.add_all(
        [
            TaskItemAssignee(item_id=task_item.id, user_id=actor.id),
            TaskItemAssignee(item_id=task_item.id, user_id=other.id),
        ]
    )
    db.commit()
    _board_rule(db, task_board, trigger_type="status_change", action_type="notify_assignees")
    before, after = _change_status(db, task_item, "Done")

    TaskAutomationEngine().on_item_changed(db, before, after, actor.id, now=NOW)

    assert db.scalars(select(Notification.user_id)).all() == [other.id]


# =============================================================================
# due_date_relative
# =============================================================================


def test_parse_days_from_due():
    assert parse_days_from_due({"days_from_due": -1}) == -1
    assert parse_days_from_due({"days_from_due": "2"}) == 2
    assert parse_days_from_due({"days_from_due": 900}) == 365
    assert parse_days_from_due({"days_from_due": True}) is None
    assert parse_days_from_due({}) is None


def test_due_date_rule_fires_once_per_day(db, admin_user, task_board, task_item):
    rule = _board_rule(
        db,
        task_board,
        trigger_type="due_date_relative",
        trigger_config={"days_from_due": -1},
        action_type="notify_admins",
        action_config={"title": "Task overdue"},
    )
    task_item.due_date = date(2026, 3, 9)
    db.commit()
    engine = TaskAutomationEngine()

    first = engine.run_due_date_automations(db, now=NOW)
    second = engine.run_due_date_automations(db, now=NOW + timedelta(hours=1))

    assert first == {"processed": 1, "fired": 1, "errors": 0}
    assert second == {"processed": 0, "fired": 0, "errors": 0}
    runs = _runs(db)
    assert [(run.automation_id, run.outcome) for run in runs] == [(rule.id, AutomationOutcome.FIRED.value)]
    assert runs[0].detail["event"]["due_date"] == "2026-03-09"
    assert len(db.scalars(select(Notification)).all()) == 1


def test_due_date_rule_uses_operational_day(db, admin_user, task_board, task_item):
    _board_rule(
        db,
        task_board,
        trigger_type="due_date_relative",
        trigger_config={"days_from_due": 0},
        action_type="notify_admins",
    )
    task_item.due_date = date(2026, 3, 10)
    db.commit()

    # 02:00 UTC on the 11th is still the 10th in New York
    result = TaskAutomationEngine().run_due_date_automations(
        db, now=datetime(2026, 3, 11, 2, 0, tzinfo=timezone.utc)
    )
    assert result["fired"] == 1


def test_due_date_rule_fires_again_next_day(db, admin_user, task_board, task_item):
    _board_rule(
        db,
        task_board,
        trigger_type="due_date_relative",
        trigger_config={"days_from_due": 0},
        action_type="notify_admins",
    )
    task_item.due_date = date(2026, 3, 10)
    db.commit()
    engine = TaskAutomationEngine()
    engine.run_due_date_automations(db, now=NOW)

    task_item.due_date = date(2026, 3, 11)
    db.commit()
    result = engine.run_due_date_automations(db, now=NOW + timedelta(days=1))

    assert result["fired"] == 1
    assert len(_runs(db)) == 2


def test_due_date_rule_skips_archived_and_other_boards(db, admin_user, task_board, task_group, task_item):
    _board_rule(
        db,
        task_board,
        trigger_type="due_date_relative",
        trigger_config={"days_from_due": 0},
        action_type="notify_admins",
    )
    other_board = TaskBoard(name="Sales")
    db.add(other_board)
    db.commit()
    other_group = TaskGroup(board_id=other_board.id, name="Leads")
    db.add(other_group)
    db.commit()
    db.add(TaskItem(group_id=other_group.id, name="Other board", due_date=date(2026, 3, 10)))
    task_item.due_date = date(2026, 3, 10)
    task_item.archived_at = NOW - timedelta(days=1)
    db.commit()

    result = TaskAutomationEngine().run_due_date_automations(db, now=NOW)

    assert result == {"processed": 0, "fired": 0, "errors": 0}


def test_global_due_date_rule_covers_every_board(db, admin_user, task_group, task_item):
    task_automation_service.create_global_automation(
        db,
        name="due tomorrow",
        trigger_type="due_date_relative",
        trigger_config={"days_from_due": 1},
        action_type="add_update",
        action_config={"content": "Due tomorrow"},
    )
    task_item.due_date = date(2026, 3, 11)
    db.commit()

    result = TaskAutomationEngine().run_due_date_automations(db, now=NOW)

    assert result["fired"] == 1
    assert db.scalars(select(TaskUpdate.content)).all() == ["Due tomorrow"]


def test_due_date_error_counts_and_dedups(db, task_board, task_item):
    db.add(
        TaskGlobalAutomation(
            name="broken",
            trigger_type="due_date_relative",
            trigger_config={"days_from_due": 0},
            action_type="add_update",
            action_config={},
        )
    )
    task_item.due_date = date(2026, 3, 10)
    db.commit()
    engine = TaskAutomationEngine()

    assert engine.run_due_date_automations(db, now=NOW) == {"processed": 1, "fired": 0, "errors": 1}
    assert engine.run_due_date_automations(db, now=NOW + timedelta(hours=1))["processed"] == 0


# =============================================================================
# Rule validation and CRUD
# =============================================================================


@pytest.mark.parametrize(
    "trigger_type,trigger_config,action_type,action_config,message",
    [
        ("on_fire", {}, "notify_admins", {}, "Unsupported trigger_type"),
        ("status_change", {}, "send_sms", {}, "Unsupported action_type"),
        ("due_date_relative", {}, "notify_admins", {}, "integer"),
        ("due_date_relative", {"days_from_due": True}, "notify_admins", {}, "integer"),
        ("due_date_relative", {"days_from_due": "3"}, "notify_admins", {}, "integer"),
        ("due_date_relative", {"days_from_due": 366}, "notify_admins", {}, "between"),
        ("status_change", {}, "set_status", {"status": "  "}, "set_status"),
        ("status_change", {}, "set_needs_attention", {"value": "yes"}, "boolean"),
        ("status_change", {}, "add_update", {}, "add_update"),
    ],
)
def test_validate_rule_rejects_bad_config(trigger_type, trigger_config, action_type, action_config, message):
    with pytest.raises(task_automation_service.AutomationValidationError) as exc_info:
        task_automation_service.validate_rule(trigger_type, trigger_config, action_type, action_config)
    assert message in str(exc_info.value)


def test_validate_rule_normalizes_config():
    trigger_config, action_config = task_automation_service.validate_rule(
        "status_change", {"to_status": ""}, "set_status", {"status": " Done "}
    )
    assert trigger_config == {}
    assert action_config == {"status": "Done"}


def test_create_board_automation_requires_board(db):
    with pytest.raises(LookupError):
        task_automation_service.create_board_automation(
            db, uuid.uuid4(), name="x", trigger_type="status_change", action_type="notify_admins"
        )


def test_update_and_delete_automation_keeps_runs(db, admin_user, task_board, task_item):
    rule = _board_rule(db, task_board, trigger_type="status_change", action_type="notify_admins")

    with pytest.raises(task_automation_service.AutomationValidationError):
        task_automation_service.update_automation(db, rule.id, action_type="set_status")

    updated = task_automation_service.update_automation(db, rule.id, name="Renamed", is_active=False)
    assert updated.name == "Renamed"
    assert updated.is_active is False

    task_automation_service.update_automation(db, rule.id, is_active=True)
    before, after = _change_status(db, task_item, "Done")
    TaskAutomationEngine().on_item_changed(db, before, after, None, now=NOW)

    assert task_automation_service.delete_automation(db, rule.id) is True
    assert task_automation_service.get_automation(db, rule.id) is None
    assert len(task_automation_service.list_runs(db, automation_id=rule.id)) == 1
    assert task_automation_service.delete_automation(db, rule.id) is False


def test_list_automations(db, task_board):
    _board_rule(db, task_board, trigger_type="status_change", action_type="notify_admins")
    task_automation_service.create_global_automation(
        db, name="g", trigger_type="assignee_added", action_type="notify_assignees"
    )

    assert len(task_automation_service.list_board_automations(db, task_board.id)) == 1
    assert len(task_automation_service.list_global_automations(db)) == 1
