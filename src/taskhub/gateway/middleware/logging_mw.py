"""LoggingMiddleware -- 请求访问日志

每个请求分配 request_id（ULID，回写到 X-Request-ID 响应头）并绑定到 structlog contextvars。
鉴权依赖解析出当前用户后会把 user_id 写入 request.state，完成日志据此记录操作者。
任务事件推送在响应发出后执行，不计入 duration_ms。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

log = structlog.get_logger()

# 不记录访问日志的路径（探活、静态文件）
_QUIET_PREFIXES = ("/health", "/media/")


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = str(ULID())
        path = request.url.path

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=path,
        )

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 1)
        response.headers["X-Request-ID"] = request_id

        if path.startswith(_QUIET_PREFIXES):
            return response

        fields = {
            "status_code": response.status_code,
            "duration_ms": duration_ms,
            "user_id": getattr(request.state, "user_id", None),
            "client": request.client.host if request.client else None,
        }
        if response.status_code >= 500:
            log.error("request_completed", **fields)
        elif response.status_code >= 400:
            log.warning("request_completed", **fields)
        else:
            log.info("request_completed", **fields)
        return response
