"""TaskService -- 任务增删改查与成员管理业务逻辑

每个写操作在事务提交后返回一个 TaskEvent（事件类型 + 快照 + 接收者），
由路由层交给 BackgroundTasks 在响应发出后推送；本模块不直接接触推送通道。

接收者规则见 taskhub.core.models.event.recipients_for：
- created / updated / deleted：对应时刻的任务成员
- status-updated / attachment-updated / member-*：任务成员 + 创建者
"""

from datetime import UTC, datetime

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator
from taskhub.core.models import (
    TASK_EDITOR_ROLES,
    Task,
    TaskEvent,
    TaskEventKind,
    TaskMember,
    TaskPriority,
    TaskSnapshot,
    TaskStatus,
    User,
)
from taskhub.core.store import StoreGroup, transaction
from ulid import ULID

from ..errors import NotFoundError, PermissionDeniedError, ValidationFailedError
from .file_storage import LocalFileStorage

log = structlog.get_logger()

ATTACHMENT_FOLDER = "attachments"


def _parse_due_date(value):
    # 允许 "YYYY-MM-DD" 形式的纯日期
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return value
    return value


def split_member_ids(value: str | list[str] | None) -> list[str]:
    """表单中的 assignedTo 可能是逗号分隔字符串或多值字段"""
    if value is None:
        return []
    items = value if isinstance(value, list) else [value]
    ids: list[str] = []
    for item in items:
        ids.extend(part.strip() for part in item.split(",") if part.strip())
    return ids


class TaskDraft(BaseModel):
    """创建/修改任务的输入"""

    title: str = Field(min_length=3, description="任务标题")
    description: str = Field(min_length=3, max_length=300, description="任务描述")
    priority: TaskPriority = Field(description="优先级")
    due_date: datetime = Field(description="截止时间，必须晚于当前时间")
    assigned_to: list[str] = Field(default_factory=list, description="成员 user_id 列表")

    @field_validator("title", "description", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("due_date", mode="before")
    @classmethod
    def _accept_plain_date(cls, value):
        return _parse_due_date(value)

    @field_validator("due_date")
    @classmethod
    def _must_be_future(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if value <= datetime.now(UTC):
            raise ValueError("dueDate must be in the future")
        return value

    @field_validator("assigned_to")
    @classmethod
    def _dedupe_members(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(v.strip() for v in value if v.strip()))

    @classmethod
    def parse(cls, **fields) -> "TaskDraft":
        """从表单字段构建，校验失败转换为 ValidationFailedError"""
        try:
            return cls(**fields)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(p) for p in first.get("loc", ()))
            message = first.get("msg", "invalid value")
            raise ValidationFailedError(f"{location}: {message}" if location else message) from e


class TaskService:
    """任务业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        file_storage: LocalFileStorage | None = None,
    ) -> None:
        self._stores = store_group
        self._files = file_storage

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    async def list_all_tasks(self, page: int, limit: int) -> tuple[list[TaskSnapshot], int]:
        """分页查询全部任务（优先级高在前）

        Returns:
            (当前页快照列表, 任务总数)
        """
        offset = (page - 1) * limit
        tasks = await self._stores.task_store.list_tasks(offset=offset, limit=limit)
        total = await self._stores.task_store.count_tasks()
        return [TaskSnapshot.from_task(t) for t in tasks], total

    async def get_task(self, task_id: str) -> TaskSnapshot:
        """查询任务详情（含成员摘要）"""
        task = await self._require_task(task_id)
        return TaskSnapshot.from_task(task, members=await self._members_of(task))

    async def list_user_tasks(self, user_id: str) -> list[TaskSnapshot]:
        tasks = await self._stores.task_store.list_tasks_for_user(user_id)
        return [TaskSnapshot.from_task(t) for t in tasks]

    # ------------------------------------------------------------------
    # 写操作（每个返回一个待推送的 TaskEvent）
    # ------------------------------------------------------------------

    async def create_task(
        self,
        creator: User,
        draft: TaskDraft,
        attachment: bytes | None = None,
        attachment_filename: str | None = None,
    ) -> TaskEvent:
        await self._require_users(draft.assigned_to)

        now = datetime.now(UTC)
        task = Task(
            task_id=str(ULID()),
            title=draft.title,
            description=draft.description,
            priority=draft.priority,
            status=TaskStatus.PENDING,
            due_date=draft.due_date,
            assigned_to=draft.assigned_to,
            created_by=creator.user_id,
            created_at=now,
            updated_at=now,
        )
        stored = None
        if attachment and self._files is not None:
            stored = self._files.save(attachment, attachment_filename, ATTACHMENT_FOLDER)
            task.attachment_url = stored.url
            task.attachment_ref = stored.ref

        try:
            async with transaction(self._stores.conn):
                await self._stores.task_store.create_task(task)
        except Exception:
            # 记录未写入，刚保存的附件不再被引用
            if stored is not None:
                self._files.delete(stored.ref)
            raise

        log.info(
            "task_created",
            task_id=task.task_id,
            created_by=creator.user_id,
            members=len(task.assigned_to),
        )
        return TaskEvent.for_snapshot(TaskEventKind.CREATED, TaskSnapshot.from_task(task))

    async def update_task(self, task_id: str, draft: TaskDraft) -> TaskEvent:
        await self._require_task(task_id)
        await self._require_users(draft.assigned_to)

        async with transaction(self._stores.conn):
            updated = await self._stores.task_store.update_details(
                task_id,
                title=draft.title,
                description=draft.description,
                priority=draft.priority,
                due_date=draft.due_date,
                assigned_to=draft.assigned_to,
                updated_at=datetime.now(UTC),
            )
            if not updated:
                raise self._task_not_found(task_id)
            task = await self._require_task(task_id)

        log.info("task_updated", task_id=task_id)
        return TaskEvent.for_snapshot(TaskEventKind.UPDATED, TaskSnapshot.from_task(task))

    async def update_status(self, actor: User, task_id: str, status: TaskStatus) -> TaskEvent:
        """修改任务状态：任务成员、创建者或管理角色可操作"""
        task = await self._require_task(task_id)
        allowed = (
            actor.role in TASK_EDITOR_ROLES
            or actor.user_id == task.created_by
            or actor.user_id in task.assigned_to
        )
        if not allowed:
            raise PermissionDeniedError("Only task members can update the status")

        previous = task.status
        async with transaction(self._stores.conn):
            if not await self._stores.task_store.set_status(task_id, status, datetime.now(UTC)):
                raise self._task_not_found(task_id)
            task = await self._require_task(task_id)

        log.info(
            "task_status_updated",
            task_id=task_id,
            from_status=previous.value,
            to_status=status.value,
        )
        return TaskEvent.for_snapshot(TaskEventKind.STATUS_UPDATED, TaskSnapshot.from_task(task))

    async def update_attachment(
        self,
        task_id: str,
        content: bytes,
        filename: str | None,
    ) -> TaskEvent:
        """替换附件并删除旧文件"""
        if not content:
            raise ValidationFailedError("localAttachment is required")
        previous_ref = (await self._require_task(task_id)).attachment_ref
        if self._files is None:
            raise ValidationFailedError("File storage is not configured")

        stored = self._files.save(content, filename, ATTACHMENT_FOLDER)
        try:
            async with transaction(self._stores.conn):
                updated = await self._stores.task_store.set_attachment(
                    task_id, stored.url, stored.ref, datetime.now(UTC)
                )
                if not updated:
                    raise self._task_not_found(task_id)
                task = await self._require_task(task_id)
        except Exception:
            self._files.delete(stored.ref)
            raise

        if previous_ref:
            self._files.delete(previous_ref)
        log.info("task_attachment_updated", task_id=task_id)
        return TaskEvent.for_snapshot(
            TaskEventKind.ATTACHMENT_UPDATED, TaskSnapshot.from_task(task)
        )

    async def add_member(self, task_id: str, user_id: str) -> TaskEvent:
        """添加成员（已是成员时不重复添加）"""
        await self._require_task(task_id)
        await self._require_users([user_id])

        async with transaction(self._stores.conn):
            await self._stores.task_store.add_member(task_id, user_id, datetime.now(UTC))
            # 未命中可能是已是成员，也可能是任务刚被删除，以重读结果为准
            task = await self._require_task(task_id)

        log.info("task_member_added", task_id=task_id, user_id=user_id)
        snapshot = TaskSnapshot.from_task(task, members=await self._members_of(task))
        return TaskEvent.for_snapshot(TaskEventKind.MEMBER_ADDED, snapshot)

    async def remove_member(self, task_id: str, user_id: str) -> TaskEvent:
        """移除成员；被移除者不在接收者之列"""
        await self._require_task(task_id)

        async with transaction(self._stores.conn):
            removed = await self._stores.task_store.remove_member(
                task_id, user_id, datetime.now(UTC)
            )
            task = await self._require_task(task_id)
            if not removed:
                raise NotFoundError(f"User {user_id} is not a member of task {task_id}")

        log.info("task_member_removed", task_id=task_id, user_id=user_id)
        snapshot = TaskSnapshot.from_task(task, members=await self._members_of(task))
        return TaskEvent.for_snapshot(TaskEventKind.MEMBER_REMOVED, snapshot)

    async def delete_task(self, task_id: str) -> TaskEvent:
        """软删除；通知删除前的全部成员"""
        await self._require_task(task_id)
        async with transaction(self._stores.conn):
            if not await self._stores.task_store.mark_deleted(task_id, datetime.now(UTC)):
                raise self._task_not_found(task_id)
            task = await self._stores.task_store.get_task(task_id, include_deleted=True)

        log.info("task_deleted", task_id=task_id)
        return TaskEvent.for_snapshot(TaskEventKind.DELETED, TaskSnapshot.from_task(task))

    # ------------------------------------------------------------------
    # 内部辅助
    # ------------------------------------------------------------------

    @staticmethod
    def _task_not_found(task_id: str) -> NotFoundError:
        return NotFoundError(f"Task with id {task_id} does not exist", code="TASK_NOT_FOUND")

    async def _require_task(self, task_id: str) -> Task:
        task = await self._stores.task_store.get_task(task_id)
        if task is None:
            raise self._task_not_found(task_id)
        return task

    async def _require_users(self, user_ids: list[str]) -> None:
        if not user_ids:
            return
        found = await self._stores.user_store.get_users(user_ids)
        missing = set(user_ids) - {u.user_id for u in found}
        if missing:
            raise NotFoundError(
                f"Unknown user id(s): {', '.join(sorted(missing))}",
                code="USER_NOT_FOUND",
            )

    async def _members_of(self, task: Task) -> list[TaskMember]:
        users = await self._stores.user_store.get_users(task.assigned_to)
        return [TaskMember(name=u.name, email=u.email) for u in users]
