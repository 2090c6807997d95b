"""Store Protocol 接口定义

定义 UserStore、LoginStore、TaskStore 的抽象接口，
使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from datetime import datetime
from typing import Protocol

from ..models.enums import TaskPriority, TaskStatus
from ..models.task import Task
from ..models.user import LoginSession, User


class UserStore(Protocol):
    """User 存储接口"""

    async def create_user(self, user: User) -> None:
        """创建用户记录"""
        ...

    async def get_user(self, user_id: str) -> User | None:
        """根据 user_id 查询用户"""
        ...

    async def get_user_by_email(self, email: str) -> User | None:
        """根据邮箱查询用户"""
        ...

    async def get_users(self, user_ids: list[str]) -> list[User]:
        """批量查询用户"""
        ...

    async def update_user(self, user: User) -> None:
        """整体覆盖用户记录"""
        ...


class LoginStore(Protocol):
    """登录会话存储接口"""

    async def get_session(self, user_id: str) -> LoginSession | None:
        """查询用户的登录会话"""
        ...

    async def save_session(self, session: LoginSession) -> None:
        """写入或覆盖登录会话"""
        ...


class TaskStore(Protocol):
    """Task 存储接口"""

    async def create_task(self, task: Task) -> None:
        """创建任务记录"""
        ...

    async def get_task(self, task_id: str, include_deleted: bool = False) -> Task | None:
        """根据 task_id 查询任务"""
        ...

    async def list_tasks(self, offset: int = 0, limit: int | None = None) -> list[Task]:
        """分页查询未删除任务"""
        ...

    async def count_tasks(self) -> int:
        """统计未删除任务数量"""
        ...

    async def list_tasks_for_user(self, user_id: str) -> list[Task]:
        """查询指定用户被分配的任务"""
        ...

    async def list_pending_due_between(
        self,
        start: datetime,
        end: datetime,
    ) -> list[Task]:
        """查询即将到期的 pending 任务（提醒邮件用）"""
        ...

    async def update_details(
        self,
        task_id: str,
        *,
        title: str,
        description: str,
        priority: TaskPriority,
        due_date: datetime,
        assigned_to: list[str],
        updated_at: datetime,
    ) -> bool:
        """覆盖可编辑字段，其余列不变"""
        ...

    async def set_status(self, task_id: str, status: TaskStatus, updated_at: datetime) -> bool:
        """只更新状态列"""
        ...

    async def set_attachment(
        self,
        task_id: str,
        attachment_url: str,
        attachment_ref: str,
        updated_at: datetime,
    ) -> bool:
        """只更新附件列"""
        ...

    async def add_member(self, task_id: str, user_id: str, updated_at: datetime) -> bool:
        """在成员数组末尾追加；已是成员时返回 False"""
        ...

    async def remove_member(self, task_id: str, user_id: str, updated_at: datetime) -> bool:
        """从成员数组中移除；不是成员时返回 False"""
        ...

    async def mark_deleted(self, task_id: str, updated_at: datetime) -> bool:
        """软删除"""
        ...
