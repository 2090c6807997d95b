"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭、文件存储与邮件发送初始化、路由注册。
Socket.IO 服务端与 PresenceRegistry / EventNotifier 在 create_app() 中创建，
asgi_app 把 Socket.IO 挂在 FastAPI 之前（/socket.io 走实时通道，其余走 HTTP）。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import socketio
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from taskhub.core.config import get_db_path, get_temp_uploads_dir, get_uploads_dir
from taskhub.core.store import create_store_group

from .config import load_gateway_config
from .errors import register_exception_handlers
from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import health, presence, tasks, users
from .services.email_service import create_email_sender
from .services.file_storage import LocalFileStorage
from .services.notifier import EventNotifier
from .services.presence import PresenceRegistry
from .services.socket_events import SocketEventHandlers, create_socket_server

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB、文件存储与邮件，关闭时清理连接"""
    config = app.state.gateway_config

    store_group = await create_store_group(get_db_path())
    app.state.store_group = store_group

    app.state.file_storage = LocalFileStorage(
        uploads_dir=get_uploads_dir(),
        temp_dir=get_temp_uploads_dir(),
        media_url=config.media_url,
    )
    app.state.email_sender = create_email_sender(config)

    log.info("gateway_started", db_path=get_db_path())

    yield

    # 在线映射随进程结束丢弃
    log.info("gateway_stopping", online_users=len(app.state.presence_registry))
    if hasattr(app.state, "store_group") and app.state.store_group:
        await app.state.store_group.conn.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="TaskHub Gateway",
        version="0.1.0",
        description="TaskHub 任务管理 API + 实时任务通知",
        lifespan=lifespan,
    )

    config = load_gateway_config()
    app.state.gateway_config = config

    # 实时通知：在线注册表 + Socket.IO 服务端 + 推送器
    registry = PresenceRegistry()
    sio = create_socket_server(config.cors_origins)
    SocketEventHandlers(registry).bind(sio)
    app.state.presence_registry = registry
    app.state.sio = sio
    app.state.notifier = EventNotifier(registry, sio)

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 初始化日志
    setup_logging()
    setup_logfire(app)

    register_exception_handlers(app)

    # 注册路由
    app.include_router(users.router, tags=["users"])
    app.include_router(tasks.router, tags=["tasks"])
    app.include_router(presence.router, tags=["presence"])
    app.include_router(health.router, tags=["health"])

    # 上传文件（头像、附件）
    app.mount(
        config.media_url,
        StaticFiles(directory=str(get_uploads_dir()), check_dir=False),
        name="media",
    )

    return app


def create_asgi_app(app: FastAPI) -> socketio.ASGIApp:
    """把 Socket.IO 包在 FastAPI 外层"""
    return socketio.ASGIApp(app.state.sio, other_asgi_app=app)


# 默认 app 实例（uvicorn taskhub.gateway.main:asgi_app）
app = create_app()
asgi_app = create_asgi_app(app)
