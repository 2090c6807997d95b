"""Task Domain Model

Task 是存储层记录（软删除、附件存储引用等内部字段）；
TaskSnapshot 是推送给客户端的快照，字段名属于对外 wire 协议，
只包含客户端需要的字段，不泄露 is_deleted / attachment_ref。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import TaskPriority, TaskStatus


class Task(BaseModel):
    """Task 数据模型（存储层）"""

    task_id: str = Field(description="唯一标识，ULID 格式")
    title: str = Field(description="任务标题")
    description: str = Field(description="任务描述")
    priority: TaskPriority = Field(description="优先级")
    status: TaskStatus = Field(default=TaskStatus.PENDING, description="当前状态")
    due_date: datetime = Field(description="截止时间")
    assigned_to: list[str] = Field(default_factory=list, description="成员 user_id 列表")
    created_by: str = Field(description="创建者 user_id")
    attachment_url: str = Field(default="", description="附件访问 URL")
    attachment_ref: str = Field(default="", description="附件存储引用")
    is_deleted: bool = Field(default=False, description="软删除标记")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")


class TaskMember(BaseModel):
    """任务成员摘要"""

    name: str
    email: str


class TaskSnapshot(BaseModel):
    """任务快照 -- 实时事件 payload 与 REST 响应共用"""

    task_id: str = Field(serialization_alias="_id")
    title: str
    description: str
    priority: TaskPriority
    status: TaskStatus
    due_date: datetime = Field(serialization_alias="dueDate")
    assigned_to: list[str] = Field(default_factory=list, serialization_alias="assignedTo")
    created_by: str = Field(serialization_alias="createdBy")
    attachment_url: str = Field(default="", serialization_alias="attachmentUrl")
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")
    members: list[TaskMember] | None = Field(
        default=None,
        description="成员详情，仅成员变更类事件/详情查询携带",
    )

    @classmethod
    def from_task(
        cls,
        task: Task,
        members: list[TaskMember] | None = None,
    ) -> "TaskSnapshot":
        return cls(
            task_id=task.task_id,
            title=task.title,
            description=task.description,
            priority=task.priority,
            status=task.status,
            due_date=task.due_date,
            assigned_to=list(task.assigned_to),
            created_by=task.created_by,
            attachment_url=task.attachment_url,
            created_at=task.created_at,
            updated_at=task.updated_at,
            members=members,
        )

    def to_payload(self) -> dict:
        """序列化为 JSON 兼容 dict（使用对外字段名）"""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
