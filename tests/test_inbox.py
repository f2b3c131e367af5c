"""Tests for the notification inbox."""
import asyncio
import pytest

from autopilot.automations.inbox import NotificationInbox, NotificationKind


class TestNotificationInbox:
    """Tests for NotificationInbox."""

    @pytest.mark.asyncio
    async def test_notify_and_list(self, inbox):
        notification = await inbox.notify(
            "user-1",
            "Automation ran",
            "Created: Launch recap",
            refs={"run_id": "run-1"},
        )

        stored = inbox.list_for_user("user-1")
        assert len(stored) == 1
        assert stored[0].id == notification.id
        assert stored[0].refs == {"run_id": "run-1"}
        assert stored[0].kind is NotificationKind.AUTOMATION
        assert inbox.list_for_user("user-2") == []

    @pytest.mark.asyncio
    async def test_mark_read(self, inbox):
        notification = await inbox.notify("user-1", "Title", "Message")

        assert inbox.mark_read(notification.id)
        assert inbox.list_for_user("user-1", unread_only=True) == []
        assert inbox.list_for_user("user-1")[0].read is True
        assert not inbox.mark_read("missing")

    @pytest.mark.asyncio
    async def test_subscribe_receives_new_notifications(self, inbox):
        subscription = inbox.subscribe()
        pending = asyncio.create_task(subscription.__anext__())
        await asyncio.sleep(0)

        await inbox.notify("user-1", "Processing failed", "Tick timed out", kind=NotificationKind.SYSTEM)

        received = await asyncio.wait_for(pending, timeout=1)
        assert received.title == "Processing failed"
        assert received.kind is NotificationKind.SYSTEM
        await subscription.aclose()

    @pytest.mark.asyncio
    async def test_file_database(self, tmp_path):
        db_path = str(tmp_path / "inbox.db")
        await NotificationInbox(db_path).notify("user-1", "Title", "Message")
        assert len(NotificationInbox(db_path).list_for_user("user-1")) == 1

    def test_to_dict(self):
        inbox = NotificationInbox()
        notification = asyncio.run(inbox.notify("user-1", "Title", "Message"))
        data = notification.to_dict()
        assert data["user_id"] == "user-1"
        assert data["kind"] == "automation"
        assert data["read"] is False
