"""TaskEvent -- 一次任务变更对应的实时通知

事件只在内存中短暂存在：请求处理器在变更提交后构建，
由 EventNotifier 消费一次，不落盘、不重放。
"""

from pydantic import BaseModel, Field

from .enums import CREATOR_NOTIFIED_EVENTS, TaskEventKind
from .task import TaskSnapshot


def recipients_for(
    kind: TaskEventKind,
    assigned_to: list[str],
    created_by: str,
) -> list[str]:
    """按事件类型推导接收者（保序去重）

    Args:
        kind: 事件类型
        assigned_to: 与事件对应时刻的成员列表
            （created 为新成员、deleted 为删除前成员、member-* 为变更后成员）
        created_by: 任务创建者

    Returns:
        去重后的 user_id 列表
    """
    recipients = list(assigned_to)
    if kind in CREATOR_NOTIFIED_EVENTS:
        recipients.append(created_by)
    return list(dict.fromkeys(r for r in recipients if r))


class TaskEvent(BaseModel):
    """任务事件：事件类型 + 任务快照 + 接收者"""

    kind: TaskEventKind
    snapshot: TaskSnapshot
    recipients: list[str] = Field(default_factory=list)

    @classmethod
    def for_snapshot(cls, kind: TaskEventKind, snapshot: TaskSnapshot) -> "TaskEvent":
        """根据快照中的成员/创建者推导接收者"""
        return cls(
            kind=kind,
            snapshot=snapshot,
            recipients=recipients_for(kind, snapshot.assigned_to, snapshot.created_by),
        )
