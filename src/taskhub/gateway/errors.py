"""Gateway 异常体系

业务异常统一继承 TaskHubError，由 register_exception_handlers 注册的处理器
转换为 {"error": {"code", "message"}} 响应体。
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

log = structlog.get_logger()


class TaskHubError(Exception):
    """TaskHub 业务异常基类"""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        """
        Args:
            message: 返回给客户端的错误描述
            code: 覆盖默认错误码
        """
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationFailedError(TaskHubError):
    """请求参数不合法"""

    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(TaskHubError):
    """未登录、token 无效或凭据错误"""

    status_code = 401
    code = "UNAUTHORIZED"


class PermissionDeniedError(TaskHubError):
    """角色无权执行该操作"""

    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(TaskHubError):
    """资源不存在（含已软删除的任务）"""

    status_code = 404
    code = "NOT_FOUND"


class ConflictError(TaskHubError):
    """资源冲突，如邮箱已被注册"""

    status_code = 409
    code = "CONFLICT"


class UnprocessableError(TaskHubError):
    """请求格式正确但无法执行，如旧密码错误"""

    status_code = 422
    code = "UNPROCESSABLE"


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


async def _handle_taskhub_error(request: Request, exc: TaskHubError) -> JSONResponse:
    log.info(
        "request_rejected",
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )
    return error_response(exc.status_code, exc.code, exc.message)


async def _handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = "invalid request"
    if errors:
        first = errors[0]
        msg = first.get("msg", "invalid value")
        # loc 形如 ("body", "title")，只保留字段路径
        location = ".".join(
            str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")
        )
        message = f"{location}: {msg}" if location else msg
    return error_response(400, "VALIDATION_ERROR", message)


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    log.error("unhandled_exception", error=str(exc), error_type=type(exc).__name__)
    return error_response(500, "INTERNAL_ERROR", "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    """注册统一异常处理器"""
    app.add_exception_handler(TaskHubError, _handle_taskhub_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(Exception, _handle_unexpected_error)
