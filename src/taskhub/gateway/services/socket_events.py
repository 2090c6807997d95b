"""Socket.IO 连接生命周期处理

客户端连接后通过 userConnected 事件宣告自己的 user_id，
随后的任务事件都按该映射推送；连接断开时移除映射。
"""

import logging
from typing import Any

import socketio
import structlog

from ..middleware.logging_config import ENGINEIO_LOGGER, SOCKETIO_LOGGER
from .presence import PresenceRegistry

log = structlog.get_logger()

USER_CONNECTED_EVENT = "userConnected"


def create_socket_server(cors_origins: list[str]) -> socketio.AsyncServer:
    """创建 ASGI 模式的 Socket.IO 服务端"""
    allowed: str | list[str] = "*" if cors_origins == ["*"] else cors_origins
    return socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=allowed,
        logger=logging.getLogger(SOCKETIO_LOGGER),
        engineio_logger=logging.getLogger(ENGINEIO_LOGGER),
    )


def _extract_user_id(data: Any) -> str | None:
    # 兼容 "userId" 字符串与 {"userId": ...} 两种 payload
    if isinstance(data, dict):
        data = data.get("userId")
    if isinstance(data, str) and data.strip():
        return data.strip()
    return None


class SocketEventHandlers:
    """把 Socket.IO 连接事件翻译为 PresenceRegistry 操作"""

    def __init__(self, registry: PresenceRegistry) -> None:
        self._registry = registry

    def bind(self, sio: socketio.AsyncServer) -> None:
        """在 Socket.IO 服务端上注册处理器"""
        sio.on("connect", self.on_connect)
        sio.on(USER_CONNECTED_EVENT, self.on_user_connected)
        sio.on("disconnect", self.on_disconnect)

    async def on_connect(self, sid: str, environ: dict[str, Any], auth: Any = None) -> None:
        log.debug("socket_connected", sid=sid)

    async def on_user_connected(self, sid: str, data: Any = None) -> None:
        user_id = _extract_user_id(data)
        if user_id is None:
            log.warning("socket_user_announce_invalid", sid=sid)
            return
        self._registry.register(user_id, sid)

    async def on_disconnect(self, sid: str, reason: Any = None) -> None:
        user_id = self._registry.unregister(sid)
        log.debug("socket_disconnected", sid=sid, user_id=user_id, reason=str(reason) if reason else None)
