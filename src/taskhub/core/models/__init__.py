"""TaskHub Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    CREATOR_NOTIFIED_EVENTS,
    PRIORITY_RANK,
    TASK_EDITOR_ROLES,
    TaskEventKind,
    TaskPriority,
    TaskStatus,
    UserRole,
)
from .event import TaskEvent, recipients_for
from .task import Task, TaskMember, TaskSnapshot
from .user import LoginSession, User, UserProfile

__all__ = [
    # 枚举
    "UserRole",
    "TaskPriority",
    "TaskStatus",
    "TaskEventKind",
    "TASK_EDITOR_ROLES",
    "PRIORITY_RANK",
    "CREATOR_NOTIFIED_EVENTS",
    # User
    "User",
    "UserProfile",
    "LoginSession",
    # Task
    "Task",
    "TaskMember",
    "TaskSnapshot",
    # Event
    "TaskEvent",
    "recipients_for",
]
