"""枚举定义

包含 UserRole、TaskPriority、TaskStatus 以及任务实时事件 TaskEventKind。
TaskEventKind 的取值即客户端监听的事件名，属于对外 wire 协议，不可改名。
"""

from enum import StrEnum


class UserRole(StrEnum):
    """用户角色"""

    ADMIN = "admin"
    MANAGER = "manager"
    USER = "user"


# 可以创建/修改/删除任务、调整成员的角色
TASK_EDITOR_ROLES: frozenset[UserRole] = frozenset({UserRole.ADMIN, UserRole.MANAGER})


class TaskPriority(StrEnum):
    """任务优先级"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# 列表排序用：数值越小越靠前
PRIORITY_RANK: dict[TaskPriority, int] = {
    TaskPriority.HIGH: 0,
    TaskPriority.MEDIUM: 1,
    TaskPriority.LOW: 2,
}


class TaskStatus(StrEnum):
    """任务状态"""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


class TaskEventKind(StrEnum):
    """任务生命周期事件 -- 值为 Socket.IO 事件名"""

    CREATED = "task-created"
    UPDATED = "task-updated"
    STATUS_UPDATED = "task-status-updated"
    ATTACHMENT_UPDATED = "task-attachment-update"
    MEMBER_ADDED = "user-added"
    MEMBER_REMOVED = "user-removed"
    DELETED = "task-deleted"


# 除任务成员外还需通知创建者的事件
CREATOR_NOTIFIED_EVENTS: frozenset[TaskEventKind] = frozenset(
    {
        TaskEventKind.STATUS_UPDATED,
        TaskEventKind.ATTACHMENT_UPDATED,
        TaskEventKind.MEMBER_ADDED,
        TaskEventKind.MEMBER_REMOVED,
    }
)
