"""任务 API 测试

测试内容：
1. 角色守卫（admin / manager / user）
2. 创建、修改、删除、状态、附件、成员管理的响应与持久化
3. 每个写操作响应后推送给在线接收者（FakeEmitter 记录）
4. 分页与优先级排序
5. 响应在推送完成前即已发出
"""

import asyncio
import json
from datetime import UTC, datetime, timedelta

from httpx import AsyncClient
from taskhub.gateway.services.notifier import EventNotifier


def _due(days: int = 3) -> str:
    return (datetime.now(UTC) + timedelta(days=days)).isoformat()


async def _create(client: AsyncClient, headers: dict, assigned_to: list[str], **extra):
    data = {
        "title": "Write docs",
        "description": "Document the public API",
        "priority": "medium",
        "dueDate": _due(),
        "assignedTo": assigned_to,
    }
    data.update(extra)
    return await client.post("/api/v1/tasks/create-task", data=data, headers=headers)


class TestCreateTask:
    """POST /create-task"""

    async def test_manager_creates_task(self, client: AsyncClient, make_user):
        member, _ = await make_user("Ann")
        manager, headers = await make_user("Max", role="manager")

        resp = await _create(client, headers, [member.user_id])

        assert resp.status_code == 200
        task = resp.json()["task"]
        assert task["title"] == "Write docs"
        assert task["status"] == "pending"
        assert task["assignedTo"] == [member.user_id]
        assert task["createdBy"] == manager.user_id

    async def test_plain_user_forbidden(self, client: AsyncClient, make_user):
        _, headers = await make_user("Ann")
        resp = await _create(client, headers, [])
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "FORBIDDEN"

    async def test_requires_token(self, client: AsyncClient):
        resp = await _create(client, {}, [])
        assert resp.status_code == 401

    async def test_comma_separated_members(self, client: AsyncClient, make_user):
        a, _ = await make_user("Ann")
        b, _ = await make_user("Bob")
        _, headers = await make_user("Root", role="admin")
        resp = await _create(client, headers, [f"{a.user_id},{b.user_id},{a.user_id}"])
        assert resp.json()["task"]["assignedTo"] == [a.user_id, b.user_id]

    async def test_unknown_member(self, client: AsyncClient, make_user):
        _, headers = await make_user("Root", role="admin")
        resp = await _create(client, headers, ["01JNOBODY00000000000000000"])
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "USER_NOT_FOUND"

    async def test_validation(self, client: AsyncClient, make_user):
        _, headers = await make_user("Root", role="admin")
        cases = [
            {"title": "ab"},
            {"description": "x" * 301},
            {"priority": "urgent"},
            {"dueDate": (datetime.now(UTC) - timedelta(days=1)).isoformat()},
            {"dueDate": "tomorrow"},
        ]
        for extra in cases:
            resp = await _create(client, headers, [], **extra)
            assert resp.status_code == 400, extra
            assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_with_attachment(self, client: AsyncClient, make_user, test_app):
        _, headers = await make_user("Root", role="admin")
        resp = await client.post(
            "/api/v1/tasks/create-task",
            data={
                "title": "Review",
                "description": "Review the attached plan",
                "priority": "high",
                "dueDate": _due(),
            },
            files={"localAttachment": ("plan.pdf", b"%PDF", "application/pdf")},
            headers=headers,
        )
        assert resp.status_code == 200
        url = resp.json()["task"]["attachmentUrl"]
        assert url.startswith("/media/attachments/")
        assert test_app.state.file_storage.exists(url.removeprefix("/media/"))

    async def test_pushes_task_created_to_online_members(
        self, client: AsyncClient, make_user, test_app, fake_emitter
    ):
        a, _ = await make_user("Ann")
        b, _ = await make_user("Bob")
        creator, headers = await make_user("Root", role="admin")
        registry = test_app.state.presence_registry
        registry.register(a.user_id, "sid-a")
        registry.register(creator.user_id, "sid-root")

        resp = await _create(client, headers, [a.user_id, b.user_id])

        assert fake_emitter.events_to("sid-a") == ["task-created"]
        assert fake_emitter.events_to("sid-root") == []
        _, payload, _ = fake_emitter.emitted[0]
        assert payload == resp.json()["task"]


class TestQueries:
    """查询接口"""

    async def test_get_all_tasks_sorted_and_paged(self, client: AsyncClient, make_user):
        _, headers = await make_user("Root", role="admin")
        for priority in ("low", "high", "medium"):
            await _create(client, headers, [], priority=priority, title=f"{priority} task")

        resp = await client.get("/api/v1/tasks/get-all-tasks", headers=headers)
        assert resp.status_code == 200
        data = resp.json()
        assert [t["priority"] for t in data["tasks"]] == ["high", "medium", "low"]
        assert data["pagination"] == {"page": 1, "limit": 10, "total": 3}

        resp = await client.get(
            "/api/v1/tasks/get-all-tasks", params={"page": 2, "limit": 2}, headers=headers
        )
        assert [t["priority"] for t in resp.json()["tasks"]] == ["low"]

    async def test_get_all_tasks_admin_only(self, client: AsyncClient, make_user):
        _, headers = await make_user("Max", role="manager")
        resp = await client.get("/api/v1/tasks/get-all-tasks", headers=headers)
        assert resp.status_code == 403

    async def test_invalid_page(self, client: AsyncClient, make_user):
        _, headers = await make_user("Root", role="admin")
        resp = await client.get("/api/v1/tasks/get-all-tasks", params={"page": 0}, headers=headers)
        assert resp.status_code == 400

    async def test_get_task_includes_members(self, client: AsyncClient, make_user):
        a, member_headers = await make_user("Ann")
        _, headers = await make_user("Root", role="admin")
        task_id = (await _create(client, headers, [a.user_id])).json()["task"]["_id"]

        resp = await client.get(f"/api/v1/tasks/get-task/{task_id}", headers=member_headers)
        assert resp.status_code == 200
        assert resp.json()["task"]["members"] == [{"name": "Ann", "email": "ann@example.com"}]

    async def test_get_unknown_task(self, client: AsyncClient, make_user):
        _, headers = await make_user("Ann")
        resp = await client.get("/api/v1/tasks/get-task/01JNOTHERE0000000000000000", headers=headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "TASK_NOT_FOUND"

    async def test_get_user_tasks(self, client: AsyncClient, make_user):
        a, member_headers = await make_user("Ann")
        _, headers = await make_user("Root", role="admin")
        await _create(client, headers, [a.user_id], title="mine")
        await _create(client, headers, [], title="not mine")

        resp = await client.get("/api/v1/tasks/get-user-tasks", headers=member_headers)
        user = resp.json()["user"]
        assert user["_id"] == a.user_id
        assert [t["title"] for t in user["tasks"]] == ["mine"]


class TestWriteOperations:
    """修改 / 删除 / 状态 / 附件 / 成员"""

    async def test_update_task(self, client: AsyncClient, make_user, test_app, fake_emitter):
        a, _ = await make_user("Ann")
        b, _ = await make_user("Bob")
        _, headers = await make_user("Root", role="admin")
        task_id = (await _create(client, headers, [a.user_id])).json()["task"]["_id"]
        test_app.state.presence_registry.register(b.user_id, "sid-b")

        resp = await client.patch(
            f"/api/v1/tasks/update-task/{task_id}",
            json={
                "title": "Write better docs",
                "description": "Document everything",
                "priority": "high",
                "dueDate": _due(5),
                "assignedTo": [b.user_id],
            },
            headers=headers,
        )

        assert resp.status_code == 200
        task = resp.json()["task"]
        assert (task["title"], task["priority"], task["assignedTo"]) == (
            "Write better docs",
            "high",
            [b.user_id],
        )
        assert fake_emitter.events_to("sid-b") == ["task-updated"]

    async def test_update_unknown_task(self, client: AsyncClient, make_user):
        _, headers = await make_user("Root", role="admin")
        resp = await client.patch(
            "/api/v1/tasks/update-task/01JNOTHERE0000000000000000",
            json={
                "title": "Title",
                "description": "Description",
                "priority": "low",
                "dueDate": _due(),
                "assignedTo": [],
            },
            headers=headers,
        )
        assert resp.status_code == 404

    async def test_update_without_members_rejected(self, client: AsyncClient, make_user, test_app):
        """省略 assignedTo 不会清空成员"""
        a, _ = await make_user("Ann")
        _, headers = await make_user("Root", role="admin")
        task_id = (await _create(client, headers, [a.user_id])).json()["task"]["_id"]

        resp = await client.patch(
            f"/api/v1/tasks/update-task/{task_id}",
            json={
                "title": "Retitled",
                "description": "Description",
                "priority": "low",
                "dueDate": _due(),
            },
            headers=headers,
        )

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"
        task = await test_app.state.store_group.task_store.get_task(task_id)
        assert task.assigned_to == [a.user_id]
        assert task.title == "Write docs"

    async def test_delete_task(self, client: AsyncClient, make_user, test_app, fake_emitter):
        a, member_headers = await make_user("Ann")
        creator, headers = await make_user("Root", role="admin")
        task_id = (await _create(client, headers, [a.user_id])).json()["task"]["_id"]
        registry = test_app.state.presence_registry
        registry.register(a.user_id, "sid-a")
        registry.register(creator.user_id, "sid-root")

        resp = await client.delete(f"/api/v1/tasks/delete-task/{task_id}", headers=headers)
        assert resp.status_code == 200
        assert resp.json() == {"message": "task deleted!"}
        assert fake_emitter.events_to("sid-a") == ["task-deleted"]
        assert fake_emitter.events_to("sid-root") == []

        resp = await client.get(f"/api/v1/tasks/get-task/{task_id}", headers=member_headers)
        assert resp.status_code == 404
        resp = await client.delete(f"/api/v1/tasks/delete-task/{task_id}", headers=headers)
        assert resp.status_code == 404

    async def test_member_updates_status(self, client: AsyncClient, make_user, test_app, fake_emitter):
        a, member_headers = await make_user("Ann")
        creator, headers = await make_user("Max", role="manager")
        task_id = (await _create(client, headers, [a.user_id])).json()["task"]["_id"]
        test_app.state.presence_registry.register(creator.user_id, "sid-max")

        resp = await client.patch(
            f"/api/v1/tasks/update-task-status/{task_id}",
            json={"status": "in-progress"},
            headers=member_headers,
        )

        assert resp.status_code == 200
        assert resp.json()["task"]["status"] == "in-progress"
        assert fake_emitter.events_to("sid-max") == ["task-status-updated"]

    async def test_outsider_cannot_update_status(self, client: AsyncClient, make_user):
        a, _ = await make_user("Ann")
        _, outsider_headers = await make_user("Eve")
        _, headers = await make_user("Root", role="admin")
        task_id = (await _create(client, headers, [a.user_id])).json()["task"]["_id"]

        resp = await client.patch(
            f"/api/v1/tasks/update-task-status/{task_id}",
            json={"status": "completed"},
            headers=outsider_headers,
        )
        assert resp.status_code == 403

    async def test_invalid_status(self, client: AsyncClient, make_user):
        a, member_headers = await make_user("Ann")
        _, headers = await make_user("Root", role="admin")
        task_id = (await _create(client, headers, [a.user_id])).json()["task"]["_id"]
        resp = await client.patch(
            f"/api/v1/tasks/update-task-status/{task_id}",
            json={"status": "archived"},
            headers=member_headers,
        )
        assert resp.status_code == 400

    async def test_update_attachment(self, client: AsyncClient, make_user, test_app, fake_emitter):
        a, _ = await make_user("Ann")
        creator, headers = await make_user("Root", role="admin")
        task_id = (await _create(client, headers, [a.user_id])).json()["task"]["_id"]
        test_app.state.presence_registry.register(creator.user_id, "sid-root")

        first = await client.patch(
            f"/api/v1/tasks/update-attachment/{task_id}",
            files={"localAttachment": ("v1.txt", b"v1", "text/plain")},
            headers=headers,
        )
        second = await client.patch(
            f"/api/v1/tasks/update-attachment/{task_id}",
            files={"localAttachment": ("v2.txt", b"v2", "text/plain")},
            headers=headers,
        )

        assert second.status_code == 200
        storage = test_app.state.file_storage
        assert not storage.exists(first.json()["task"]["attachmentUrl"].removeprefix("/media/"))
        assert storage.exists(second.json()["task"]["attachmentUrl"].removeprefix("/media/"))
        assert fake_emitter.events_to("sid-root") == ["task-attachment-update"] * 2

    async def test_add_and_remove_member(self, client: AsyncClient, make_user, test_app, fake_emitter):
        a, _ = await make_user("Ann")
        b, _ = await make_user("Bob")
        _, headers = await make_user("Root", role="admin")
        task_id = (await _create(client, headers, [a.user_id])).json()["task"]["_id"]
        registry = test_app.state.presence_registry
        registry.register(a.user_id, "sid-a")
        registry.register(b.user_id, "sid-b")

        resp = await client.patch(
            "/api/v1/tasks/add-member",
            params={"userId": b.user_id, "taskId": task_id},
            headers=headers,
        )
        assert resp.status_code == 200
        task = resp.json()["task"]
        assert task["assignedTo"] == [a.user_id, b.user_id]
        assert {m["name"] for m in task["members"]} == {"Ann", "Bob"}
        assert fake_emitter.events_to("sid-b") == ["user-added"]

        resp = await client.delete(
            "/api/v1/tasks/remove-member",
            params={"userId": b.user_id, "taskId": task_id},
            headers=headers,
        )
        assert resp.status_code == 200
        assert resp.json()["task"]["assignedTo"] == [a.user_id]
        # 被移除者不再收到该任务的事件
        assert fake_emitter.events_to("sid-b") == ["user-added"]
        assert fake_emitter.events_to("sid-a") == ["user-added", "user-removed"]

    async def test_add_member_is_idempotent(self, client: AsyncClient, make_user):
        a, _ = await make_user("Ann")
        _, headers = await make_user("Root", role="admin")
        task_id = (await _create(client, headers, [a.user_id])).json()["task"]["_id"]
        resp = await client.patch(
            "/api/v1/tasks/add-member",
            params={"userId": a.user_id, "taskId": task_id},
            headers=headers,
        )
        assert resp.json()["task"]["assignedTo"] == [a.user_id]

    async def test_remove_non_member(self, client: AsyncClient, make_user):
        a, _ = await make_user("Ann")
        b, _ = await make_user("Bob")
        _, headers = await make_user("Root", role="admin")
        task_id = (await _create(client, headers, [a.user_id])).json()["task"]["_id"]
        resp = await client.delete(
            "/api/v1/tasks/remove-member",
            params={"userId": b.user_id, "taskId": task_id},
            headers=headers,
        )
        assert resp.status_code == 404

    async def test_member_ops_require_query_params(self, client: AsyncClient, make_user):
        _, headers = await make_user("Root", role="admin")
        resp = await client.patch("/api/v1/tasks/add-member", headers=headers)
        assert resp.status_code == 400

    async def test_push_failure_does_not_fail_request(
        self, client: AsyncClient, make_user, test_app, fake_emitter
    ):
        a, _ = await make_user("Ann")
        b, _ = await make_user("Bob")
        _, headers = await make_user("Root", role="admin")
        registry = test_app.state.presence_registry
        registry.register(a.user_id, "sid-a")
        registry.register(b.user_id, "sid-b")
        fake_emitter.fail_for.add("sid-a")

        resp = await _create(client, headers, [a.user_id, b.user_id])

        assert resp.status_code == 200
        assert fake_emitter.events_to("sid-b") == ["task-created"]


class GatedEmitter:
    """emit 阻塞到 gate 打开为止"""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.emitted: list[tuple[str, str | None]] = []

    async def emit(self, event: str, data=None, to: str | None = None, **kwargs) -> None:
        await self.gate.wait()
        self.emitted.append((event, to))


class TestResponseBeforePush:
    """响应先于推送发出，推送阻塞不拖慢请求"""

    async def test_response_sent_while_push_pending(
        self, client: AsyncClient, make_user, test_app
    ):
        a, member_headers = await make_user("Ann")
        _, headers = await make_user("Root", role="admin")
        task_id = (await _create(client, headers, [a.user_id])).json()["task"]["_id"]

        registry = test_app.state.presence_registry
        registry.register(a.user_id, "sid-a")
        emitter = GatedEmitter()
        test_app.state.notifier = EventNotifier(registry, emitter)

        body = json.dumps({"status": "completed"}).encode()
        scope = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "PATCH",
            "scheme": "http",
            "path": f"/api/v1/tasks/update-task-status/{task_id}",
            "raw_path": f"/api/v1/tasks/update-task-status/{task_id}".encode(),
            "root_path": "",
            "query_string": b"",
            "headers": [
                (b"host", b"test"),
                (b"content-type", b"application/json"),
                (b"content-length", str(len(body)).encode()),
                (b"authorization", member_headers["Authorization"].encode()),
            ],
            "client": ("127.0.0.1", 50000),
            "server": ("test", 80),
        }
        messages: list[dict] = []
        response_done = asyncio.Event()
        request_sent = False

        async def receive() -> dict:
            nonlocal request_sent
            if not request_sent:
                request_sent = True
                return {"type": "http.request", "body": body, "more_body": False}
            await response_done.wait()
            return {"type": "http.disconnect"}

        async def send(message: dict) -> None:
            messages.append(message)
            if message["type"] == "http.response.body" and not message.get("more_body", False):
                response_done.set()

        app_task = asyncio.create_task(test_app(scope, receive, send))
        await asyncio.wait_for(response_done.wait(), timeout=5)

        # 响应已完整发出，推送仍被阻塞
        assert not app_task.done()
        assert emitter.emitted == []
        start = next(m for m in messages if m["type"] == "http.response.start")
        assert start["status"] == 200
        payload = json.loads(
            b"".join(m.get("body", b"") for m in messages if m["type"] == "http.response.body")
        )
        assert payload["task"]["status"] == "completed"

        emitter.gate.set()
        await asyncio.wait_for(app_task, timeout=5)
        assert emitter.emitted == [("task-status-updated", "sid-a")]
