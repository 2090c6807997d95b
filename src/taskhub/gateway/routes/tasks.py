"""任务路由 -- /api/v1/tasks

写操作在事务提交后把 TaskEvent 交给 BackgroundTasks，
响应发出后由 EventNotifier 推送给在线的相关用户；推送失败不影响响应。

GET    /get-all-tasks                 全部任务（admin）
POST   /create-task                   创建（admin/manager）  -> task-created
PATCH  /update-attachment/{taskId}    替换附件               -> task-attachment-update
PATCH  /update-task/{taskId}          修改                   -> task-updated
DELETE /delete-task/{taskId}          软删除                 -> task-deleted
DELETE /remove-member                 移除成员               -> user-removed
PATCH  /add-member                    添加成员               -> user-added
GET    /get-task/{taskId}             任务详情（登录用户）
GET    /get-user-tasks                当前用户的任务
PATCH  /update-task-status/{taskId}   修改状态               -> task-status-updated
"""

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile
from pydantic import BaseModel, ConfigDict, Field
from taskhub.core.config import PAGE_SIZE_MAX
from taskhub.core.models import TaskEvent, TaskPriority, TaskStatus, User, UserRole

from ..deps import get_current_user, get_notifier, get_task_service, require_roles
from ..services.notifier import EventNotifier
from ..services.task_service import TaskDraft, TaskService, split_member_ids

router = APIRouter(prefix="/api/v1/tasks")

_editor = require_roles(UserRole.ADMIN, UserRole.MANAGER)
_admin = require_roles(UserRole.ADMIN)


class UpdateTaskRequest(BaseModel):
    """修改任务请求体"""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str
    priority: TaskPriority
    due_date: str = Field(alias="dueDate")
    assigned_to: list[str] = Field(alias="assignedTo")


class UpdateStatusRequest(BaseModel):
    """修改状态请求体"""

    status: TaskStatus


def _schedule(background_tasks: BackgroundTasks, notifier: EventNotifier, event: TaskEvent) -> None:
    background_tasks.add_task(notifier.dispatch, event)


@router.get("/get-all-tasks")
async def get_all_tasks(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=PAGE_SIZE_MAX),
    _: User = Depends(_admin),
    task_service: TaskService = Depends(get_task_service),
):
    """全部任务，按优先级 high -> medium -> low 排序后分页"""
    snapshots, total = await task_service.list_all_tasks(page, limit)
    return {
        "message": "all task fetched successfully!",
        "tasks": [s.to_payload() for s in snapshots],
        "pagination": {"page": page, "limit": limit, "total": total},
    }


@router.post("/create-task")
async def create_task(
    background_tasks: BackgroundTasks,
    title: str = Form(...),
    description: str = Form(...),
    priority: str = Form(...),
    due_date: str = Form(..., alias="dueDate"),
    assigned_to: list[str] | None = Form(default=None, alias="assignedTo"),
    local_attachment: UploadFile | None = File(default=None, alias="localAttachment"),
    user: User = Depends(_editor),
    task_service: TaskService = Depends(get_task_service),
    notifier: EventNotifier = Depends(get_notifier),
):
    draft = TaskDraft.parse(
        title=title,
        description=description,
        priority=priority,
        due_date=due_date,
        assigned_to=split_member_ids(assigned_to),
    )
    content = await local_attachment.read() if local_attachment is not None else None
    event = await task_service.create_task(
        user,
        draft,
        attachment=content,
        attachment_filename=local_attachment.filename if local_attachment is not None else None,
    )
    _schedule(background_tasks, notifier, event)
    return {"message": "task created successfully", "task": event.snapshot.to_payload()}


@router.patch("/update-attachment/{task_id}")
async def update_attachment(
    task_id: str,
    background_tasks: BackgroundTasks,
    local_attachment: UploadFile = File(..., alias="localAttachment"),
    _: User = Depends(_editor),
    task_service: TaskService = Depends(get_task_service),
    notifier: EventNotifier = Depends(get_notifier),
):
    content = await local_attachment.read()
    event = await task_service.update_attachment(task_id, content, local_attachment.filename)
    _schedule(background_tasks, notifier, event)
    return {"message": "attachment is updated!", "task": event.snapshot.to_payload()}


@router.patch("/update-task/{task_id}")
async def update_task(
    task_id: str,
    body: UpdateTaskRequest,
    background_tasks: BackgroundTasks,
    _: User = Depends(_editor),
    task_service: TaskService = Depends(get_task_service),
    notifier: EventNotifier = Depends(get_notifier),
):
    draft = TaskDraft.parse(
        title=body.title,
        description=body.description,
        priority=body.priority,
        due_date=body.due_date,
        assigned_to=body.assigned_to,
    )
    event = await task_service.update_task(task_id, draft)
    _schedule(background_tasks, notifier, event)
    return {"message": "task updated successfully", "task": event.snapshot.to_payload()}


@router.delete("/delete-task/{task_id}")
async def delete_task(
    task_id: str,
    background_tasks: BackgroundTasks,
    _: User = Depends(_editor),
    task_service: TaskService = Depends(get_task_service),
    notifier: EventNotifier = Depends(get_notifier),
):
    event = await task_service.delete_task(task_id)
    _schedule(background_tasks, notifier, event)
    return {"message": "task deleted!"}


@router.delete("/remove-member")
async def remove_member(
    background_tasks: BackgroundTasks,
    user_id: str = Query(..., alias="userId", min_length=1),
    task_id: str = Query(..., alias="taskId", min_length=1),
    _: User = Depends(_editor),
    task_service: TaskService = Depends(get_task_service),
    notifier: EventNotifier = Depends(get_notifier),
):
    event = await task_service.remove_member(task_id, user_id)
    _schedule(background_tasks, notifier, event)
    return {
        "message": "One team member has been removed from the task.",
        "task": event.snapshot.to_payload(),
    }


@router.patch("/add-member")
async def add_member(
    background_tasks: BackgroundTasks,
    user_id: str = Query(..., alias="userId", min_length=1),
    task_id: str = Query(..., alias="taskId", min_length=1),
    _: User = Depends(_editor),
    task_service: TaskService = Depends(get_task_service),
    notifier: EventNotifier = Depends(get_notifier),
):
    event = await task_service.add_member(task_id, user_id)
    _schedule(background_tasks, notifier, event)
    return {
        "message": "One team member has been added to the task.",
        "task": event.snapshot.to_payload(),
    }


@router.get("/get-task/{task_id}")
async def get_task(
    task_id: str,
    _: User = Depends(get_current_user),
    task_service: TaskService = Depends(get_task_service),
):
    snapshot = await task_service.get_task(task_id)
    return {"message": "task fetched!", "task": snapshot.to_payload()}


@router.get("/get-user-tasks")
async def get_user_tasks(
    user: User = Depends(get_current_user),
    task_service: TaskService = Depends(get_task_service),
):
    snapshots = await task_service.list_user_tasks(user.user_id)
    return {
        "message": "user tasks fetched successfully.",
        "user": {
            "_id": user.user_id,
            "name": user.name,
            "tasks": [s.to_payload() for s in snapshots],
        },
    }


@router.patch("/update-task-status/{task_id}")
async def update_task_status(
    task_id: str,
    body: UpdateStatusRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    task_service: TaskService = Depends(get_task_service),
    notifier: EventNotifier = Depends(get_notifier),
):
    event = await task_service.update_status(user, task_id, body.status)
    _schedule(background_tasks, notifier, event)
    return {"message": "task's status updated!", "task": event.snapshot.to_payload()}
