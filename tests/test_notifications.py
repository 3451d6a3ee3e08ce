"""Tests for in-app notifications and their email copies."""

import asyncio
from datetime import datetime, timezone

import pytest

from opshub.db.enums import Role
from opshub.services import email_service, notification_service


class RecordingSender:
    def __init__(self, *, fail: bool = False):
        self.fail = fail
        self.sent = []

    async def send(self, to, subject, text, html=None, from_email=None):
        if self.fail:
            raise email_service.EmailSendError("mailbox full", status=550)
        self.sent.append({"to": to, "subject": subject, "text": text})
        return {"id": "msg-1"}


@pytest.fixture
def sender(monkeypatch) -> RecordingSender:
    recorder = RecordingSender()
    monkeypatch.setattr(email_service, "get_email_sender", lambda: recorder)
    return recorder


def test_create_notification_requires_user_and_title(db, admin_user):
    assert notification_service.create_notification(db, None, "Hello") is None
    assert notification_service.create_notification(db, admin_user.id, "") is None


def test_create_notification_flushes_without_commit(db, admin_user):
    note = notification_service.create_notification(
        db, admin_user.id, "New call", "Voicemail from Jane", "/portal?tab=leads", {"source": "calls"}
    )

    assert note.id is not None
    assert db.in_transaction()
    db.rollback()
    assert notification_service.get_unread_count(db, admin_user.id) == 0


def test_notify_admins_targets_admin_roles(db, make_user):
    owner = make_user(Role.SUPERADMIN)
    admin = make_user(Role.ADMIN)
    make_user(Role.TEAM)
    make_user(Role.CLIENT)

    created = notification_service.notify_admins(db, "Heads up", exclude_user_id=admin.id)
    db.commit()

    assert [note.user_id for note in created] == [owner.id]
    assert notification_service.get_admin_user_ids(db) == [owner.id, admin.id]


def test_read_state(db, admin_user, make_user):
    other = make_user(Role.ADMIN)
    first = notification_service.create_notification(db, admin_user.id, "One")
    notification_service.create_notification(db, admin_user.id, "Two")
    foreign = notification_service.create_notification(db, other.id, "Not yours")
    db.commit()

    assert notification_service.get_unread_count(db, admin_user.id) == 2
    assert notification_service.mark_read(db, foreign.id, admin_user.id) is None

    read_at = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    marked = notification_service.mark_read(db, first.id, admin_user.id, now=read_at)
    assert marked.read_at == read_at
    assert [n.title for n in notification_service.list_notifications(db, admin_user.id, unread_only=True)] == [
        "Two"
    ]

    assert notification_service.mark_all_read(db, admin_user.id) == 1
    assert notification_service.get_unread_count(db, admin_user.id) == 0
    assert notification_service.get_unread_count(db, other.id) == 1


def test_email_copy_sent_with_absolute_link(db, admin_user, sender):
    notification_service.create_notification(
        db, admin_user.id, "Call needs attention", "Voicemail from Jane", "/portal?tab=leads&call=C1"
    )

    assert sender.sent == [
        {
            "to": "admin@example.com",
            "subject": "Call needs attention",
            "text": "Voicemail from Jane\n\nOpen: http://localhost:3000/portal?tab=leads&call=C1",
        }
    ]


def test_email_copy_respects_opt_out(db, admin_user, sender):
    assert notification_service.email_copies_enabled(db, admin_user.id) is True
    notification_service.set_email_copies_enabled(db, admin_user.id, False)

    notification_service.create_notification(db, admin_user.id, "Quiet please")
    notification_service.create_notification(db, admin_user.id, "Also quiet", send_email=False)

    assert sender.sent == []


def test_email_copy_failure_keeps_notification(db, admin_user, monkeypatch, caplog):
    monkeypatch.setattr(email_service, "get_email_sender", lambda: RecordingSender(fail=True))

    note = notification_service.create_notification(db, admin_user.id, "Still delivered")

    assert note is not None
    assert "Notification email copy failed" in caplog.text


@pytest.mark.asyncio
async def test_email_copy_inside_event_loop_is_detached(db, admin_user, sender):
    notification_service.create_notification(db, admin_user.id, "Async path")
    pending = list(notification_service._pending_email_tasks)
    await asyncio.gather(*pending)

    assert [mail["subject"] for mail in sender.sent] == ["Async path"]
