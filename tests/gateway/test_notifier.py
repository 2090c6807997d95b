"""EventNotifier 测试

测试内容：
1. 空接收者 / 全部离线时不推送
2. 仅推送在线接收者，按 sid 定向
3. 单个连接推送失败或阻塞不影响其他接收者
4. dispatch 推送 TaskEvent 且永不抛出
"""

import asyncio
from datetime import UTC, datetime, timedelta

from taskhub.core.models import Task, TaskEvent, TaskEventKind, TaskPriority, TaskSnapshot
from taskhub.gateway.services.notifier import EventNotifier
from taskhub.gateway.services.presence import PresenceRegistry

NOW = datetime(2030, 1, 1, tzinfo=UTC)


def _snapshot(assigned_to: list[str], created_by: str = "admin") -> TaskSnapshot:
    task = Task(
        task_id="01JTASK0000000000000000001",
        title="Ship it",
        description="Release the build",
        priority=TaskPriority.MEDIUM,
        due_date=NOW + timedelta(days=1),
        assigned_to=assigned_to,
        created_by=created_by,
        created_at=NOW,
        updated_at=NOW,
    )
    return TaskSnapshot.from_task(task)


class TestNotify:
    """notify() 推送"""

    async def test_no_recipients(self, fake_emitter):
        notifier = EventNotifier(PresenceRegistry(), fake_emitter)
        assert await notifier.notify("task-created", {"x": 1}, []) == 0
        assert fake_emitter.emitted == []

    async def test_all_offline(self, fake_emitter):
        notifier = EventNotifier(PresenceRegistry(), fake_emitter)
        assert await notifier.notify("task-created", {"x": 1}, ["u1", "u2"]) == 0
        assert fake_emitter.emitted == []

    async def test_only_online_recipients_pushed(self, fake_emitter):
        registry = PresenceRegistry()
        registry.register("u2", "sid-2")
        notifier = EventNotifier(registry, fake_emitter)

        pushed = await notifier.notify("task-updated", {"x": 1}, ["u1", "u2", "u3"])

        assert pushed == 1
        assert fake_emitter.emitted == [("task-updated", {"x": 1}, "sid-2")]

    async def test_single_online_recipient_in_any_position(self, fake_emitter):
        registry = PresenceRegistry()
        registry.register("u2", "sid-2")
        notifier = EventNotifier(registry, fake_emitter)

        for order in (["u2", "u1", "u3"], ["u1", "u3", "u2"], ["u3", "u2", "u1"]):
            fake_emitter.emitted.clear()
            assert await notifier.notify("task-deleted", {}, order) == 1
            assert fake_emitter.emitted == [("task-deleted", {}, "sid-2")]

    async def test_failure_isolated(self, fake_emitter):
        registry = PresenceRegistry()
        registry.register("u1", "sid-1")
        registry.register("u2", "sid-2")
        registry.register("u3", "sid-3")
        fake_emitter.fail_for.add("sid-2")
        notifier = EventNotifier(registry, fake_emitter)

        pushed = await notifier.notify("task-updated", {}, ["u1", "u2", "u3"])

        assert pushed == 2
        assert fake_emitter.events_to("sid-1") == ["task-updated"]
        assert fake_emitter.events_to("sid-2") == []
        assert fake_emitter.events_to("sid-3") == ["task-updated"]

    async def test_pushes_to_latest_connection(self, fake_emitter):
        registry = PresenceRegistry()
        registry.register("u1", "sid-old")
        registry.register("u1", "sid-new")
        notifier = EventNotifier(registry, fake_emitter)

        await notifier.notify("task-created", {}, ["u1"])

        assert fake_emitter.events_to("sid-new") == ["task-created"]
        assert fake_emitter.events_to("sid-old") == []

    async def test_slow_recipient_does_not_block_others(self):
        class SlowEmitter:
            """对 sid-slow 的推送阻塞到 release 被设置"""

            def __init__(self) -> None:
                self.release = asyncio.Event()
                self.emitted: list[str] = []

            async def emit(self, event, data=None, to=None, **kwargs) -> None:
                if to == "sid-slow":
                    await self.release.wait()
                self.emitted.append(to)

        registry = PresenceRegistry()
        registry.register("slow", "sid-slow")
        registry.register("fast", "sid-fast")
        emitter = SlowEmitter()
        notifier = EventNotifier(registry, emitter)

        pending = asyncio.create_task(notifier.notify("task-updated", {}, ["slow", "fast"]))
        for _ in range(5):
            await asyncio.sleep(0)

        assert emitter.emitted == ["sid-fast"]
        assert not pending.done()

        emitter.release.set()
        assert await asyncio.wait_for(pending, timeout=5) == 2
        assert emitter.emitted == ["sid-fast", "sid-slow"]


class TestDispatch:
    """dispatch() 推送 TaskEvent"""

    async def test_task_deleted_reaches_online_members_only(self, fake_emitter):
        """删除事件只推给在线成员，创建者不在接收者中"""
        registry = PresenceRegistry()
        registry.register("u1", "sid-1")
        registry.register("admin", "sid-admin")
        notifier = EventNotifier(registry, fake_emitter)

        event = TaskEvent.for_snapshot(TaskEventKind.DELETED, _snapshot(["u1", "u2"]))
        pushed = await notifier.dispatch(event)

        assert pushed == 1
        name, data, to = fake_emitter.emitted[0]
        assert (name, to) == ("task-deleted", "sid-1")
        assert data["_id"] == "01JTASK0000000000000000001"
        assert fake_emitter.events_to("sid-admin") == []

    async def test_creator_receives_status_update(self, fake_emitter):
        registry = PresenceRegistry()
        registry.register("admin", "sid-admin")
        notifier = EventNotifier(registry, fake_emitter)

        event = TaskEvent.for_snapshot(TaskEventKind.STATUS_UPDATED, _snapshot(["u1"]))
        assert await notifier.dispatch(event) == 1
        assert fake_emitter.events_to("sid-admin") == ["task-status-updated"]

    async def test_dispatch_never_raises(self, fake_emitter):
        class BrokenRegistry(PresenceRegistry):
            def lookup(self, user_id: str) -> str | None:
                raise RuntimeError("registry broken")

        notifier = EventNotifier(BrokenRegistry(), fake_emitter)
        event = TaskEvent.for_snapshot(TaskEventKind.CREATED, _snapshot(["u1"]))

        assert await notifier.dispatch(event) == 0
        assert fake_emitter.emitted == []

    async def test_all_pushes_fail(self, fake_emitter):
        registry = PresenceRegistry()
        registry.register("u1", "sid-1")
        fake_emitter.fail_for.add("sid-1")
        notifier = EventNotifier(registry, fake_emitter)

        event = TaskEvent.for_snapshot(TaskEventKind.UPDATED, _snapshot(["u1"]))
        assert await notifier.dispatch(event) == 0
