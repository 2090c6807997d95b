"""structlog 配置模块

网关进程与 Celery worker 共用同一套配置：structlog 事件与标准库 logging
（uvicorn / python-socketio / engineio / celery）统一经 ProcessorFormatter 渲染。

环境变量：
- TASKHUB_LOG_FORMAT: dev（默认，彩色可读输出）/ json（结构化输出）
- TASKHUB_LOG_LEVEL: 根日志级别，默认 INFO
- TASKHUB_SOCKETIO_LOG_LEVEL: Socket.IO / Engine.IO 日志级别，默认 WARNING
  （INFO 级别会逐条记录收发的包）
- LOGFIRE_SEND_TO_LOGFIRE: true 时启用 Logfire APM
"""

import logging
import os
from collections.abc import MutableMapping
from typing import Any

import structlog
from fastapi import FastAPI

SOCKETIO_LOGGER = "socketio.server"
ENGINEIO_LOGGER = "engineio.server"

# 这些库自带 handler 或自行配置日志，统一改为向根 logger 传播
_FOREIGN_LOGGERS = (
    "uvicorn",
    "uvicorn.error",
    "uvicorn.access",
    "celery",
    "celery.task",
    "celery.worker",
)

# 事件字段中需要打码的键（密码、token、重置凭证）
_SENSITIVE_KEYS = frozenset({
    "password",
    "old_password",
    "new_password",
    "token",
    "reset_token",
    "authorization",
    "jwt_secret",
})
_REDACTED = "***"


def redact_sensitive(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """将敏感字段替换为掩码"""
    for key in event_dict.keys() & _SENSITIVE_KEYS:
        if event_dict[key]:
            event_dict[key] = _REDACTED
    return event_dict


def _level(env_name: str, default: str) -> int:
    level = logging.getLevelName(os.environ.get(env_name, default).upper())
    return level if isinstance(level, int) else logging.getLevelName(default)


def _renderer(log_format: str) -> structlog.types.Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer()


def setup_logging(log_format: str | None = None) -> None:
    """初始化 structlog 与标准库 logging

    Args:
        log_format: 覆盖 TASKHUB_LOG_FORMAT（worker 命令行参数等场景）
    """
    log_format = log_format or os.environ.get("TASKHUB_LOG_FORMAT", "dev")

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_sensitive,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(log_format),
            ],
            foreign_pre_chain=shared_processors,
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(_level("TASKHUB_LOG_LEVEL", "INFO"))

    for name in _FOREIGN_LOGGERS:
        foreign = logging.getLogger(name)
        foreign.handlers.clear()
        foreign.propagate = True

    # Socket.IO 服务端显式使用这两个 logger（见 create_socket_server）
    socket_level = _level("TASKHUB_SOCKETIO_LOG_LEVEL", "WARNING")
    for name in (SOCKETIO_LOGGER, ENGINEIO_LOGGER):
        socket_logger = logging.getLogger(name)
        socket_logger.handlers.clear()
        socket_logger.setLevel(socket_level)
        socket_logger.propagate = True


def setup_logfire(app: FastAPI) -> None:
    """Logfire 可选初始化

    LOGFIRE_SEND_TO_LOGFIRE 环境变量控制：
    - "true": 启用 Logfire APM（需要 LOGFIRE_TOKEN 与 observability extra）
    - "false" (默认): 降级为纯本地日志
    """
    if os.environ.get("LOGFIRE_SEND_TO_LOGFIRE", "false").lower() != "true":
        return
    try:
        import logfire

        logfire.configure(service_name="taskhub-gateway")
        logfire.instrument_fastapi(app)
    except Exception as e:
        structlog.get_logger().warning("logfire_init_failed", error=str(e))
