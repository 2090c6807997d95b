"""依赖注入模块 -- 通过 FastAPI Depends 注入 Store、服务与当前用户

共享实例通过 app.state 管理，在 lifespan（或测试 fixture）中初始化/清理。
"""

from collections.abc import Awaitable, Callable

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from taskhub.core.models import User, UserRole
from taskhub.core.store import StoreGroup

from .config import GatewayConfig
from .errors import AuthenticationError, PermissionDeniedError
from .services.email_service import EmailSender
from .services.file_storage import LocalFileStorage
from .services.notifier import EventNotifier
from .services.presence import PresenceRegistry
from .services.task_service import TaskService
from .services.user_service import UserService

_bearer = HTTPBearer(auto_error=False)


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_gateway_config(request: Request) -> GatewayConfig:
    return request.app.state.gateway_config


def get_presence_registry(request: Request) -> PresenceRegistry:
    """从 app.state 获取 PresenceRegistry 实例"""
    return request.app.state.presence_registry


def get_notifier(request: Request) -> EventNotifier:
    """从 app.state 获取 EventNotifier 实例"""
    return request.app.state.notifier


def get_file_storage(request: Request) -> LocalFileStorage:
    return request.app.state.file_storage


def get_email_sender(request: Request) -> EmailSender:
    return request.app.state.email_sender


def get_user_service(
    store_group: StoreGroup = Depends(get_store_group),
    config: GatewayConfig = Depends(get_gateway_config),
    file_storage: LocalFileStorage = Depends(get_file_storage),
) -> UserService:
    return UserService(store_group, config, file_storage)


def get_task_service(
    store_group: StoreGroup = Depends(get_store_group),
    file_storage: LocalFileStorage = Depends(get_file_storage),
) -> TaskService:
    return TaskService(store_group, file_storage)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
    user_service: UserService = Depends(get_user_service),
) -> User:
    """解析 Authorization: Bearer <token>，返回当前用户

    user_id 同时写入 request.state（访问日志）与 structlog contextvars（业务日志）。
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Authentication token is required")
    user = await user_service.authenticate(credentials.credentials)
    request.state.user_id = user.user_id
    structlog.contextvars.bind_contextvars(user_id=user.user_id)
    return user


def require_roles(*roles: UserRole) -> Callable[..., Awaitable[User]]:
    """角色守卫：当前用户角色不在 roles 中时返回 403"""
    allowed = frozenset(roles)

    async def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise PermissionDeniedError(
                f"Role '{user.role.value}' is not allowed to perform this action"
            )
        return user

    return _guard
