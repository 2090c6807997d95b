"""TraceMiddleware -- 为任务操作绑定 trace_id

任务路由形如 /api/v1/tasks/<action>/<task_id>，取最后一段 ULID 作为 task_id。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

_ULID_LENGTH = 26


def extract_task_id(path: str) -> str | None:
    """从任务路由中提取 task_id，非任务路由返回 None"""
    parts = [p for p in path.split("/") if p]
    if "tasks" not in parts:
        return None
    tail = parts[parts.index("tasks") + 1:]
    # 至少包含 action + task_id 两段
    if len(tail) >= 2 and len(tail[-1]) == _ULID_LENGTH:
        return tail[-1]
    return None


class TraceMiddleware(BaseHTTPMiddleware):
    """任务级追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        task_id = extract_task_id(request.url.path)
        if task_id is None:
            task_id = request.query_params.get("taskId")

        if task_id:
            structlog.contextvars.bind_contextvars(trace_id=f"trace-{task_id}")

        return await call_next(request)
