"""EventNotifier -- 任务事件实时推送

根据接收者列表查询 PresenceRegistry，对在线用户并发推送 Socket.IO 事件。
投递是尽力而为的：离线用户直接跳过，不排队、不重试、不持久化；
单个接收者推送失败只记录日志，不影响其他接收者，也不会抛回请求路径。
"""

import asyncio
from collections.abc import Iterable
from typing import Any, Protocol

import structlog
from taskhub.core.models import TaskEvent

from .presence import PresenceRegistry

log = structlog.get_logger()


class EventEmitter(Protocol):
    """推送通道接口 -- socketio.AsyncServer 满足此接口"""

    async def emit(self, event: str, data: Any = None, to: str | None = None, **kwargs: Any) -> Any:
        """向指定连接发送事件"""
        ...


class EventNotifier:
    """任务事件推送器"""

    def __init__(self, registry: PresenceRegistry, emitter: EventEmitter) -> None:
        self._registry = registry
        self._emitter = emitter

    async def notify(
        self,
        event_name: str,
        payload: dict[str, Any],
        recipient_ids: Iterable[str],
    ) -> int:
        """向在线接收者推送事件

        Args:
            event_name: Socket.IO 事件名
            payload: 事件 payload（JSON 兼容）
            recipient_ids: 接收者 user_id（调用方负责去重）

        Returns:
            成功交给传输层的推送数量（不代表客户端已收到）
        """
        targets: list[tuple[str, str]] = []
        for user_id in recipient_ids:
            try:
                sid = self._registry.lookup(user_id)
            except Exception as e:
                log.warning(
                    "presence_lookup_failed",
                    event_name=event_name,
                    user_id=user_id,
                    error=str(e),
                )
                continue
            if sid is None:
                continue
            targets.append((user_id, sid))

        if not targets:
            return 0

        # 并发推送，慢连接不阻塞其他接收者
        results = await asyncio.gather(
            *(self._push(event_name, payload, user_id, sid) for user_id, sid in targets)
        )
        return sum(results)

    async def dispatch(self, event: TaskEvent) -> int:
        """推送一个 TaskEvent（BackgroundTasks 入口，永不抛出）"""
        try:
            pushed = await self.notify(
                event.kind.value,
                event.snapshot.to_payload(),
                event.recipients,
            )
        except Exception as e:
            log.error(
                "notification_dispatch_failed",
                event_name=event.kind.value,
                task_id=event.snapshot.task_id,
                error=str(e),
            )
            return 0

        log.info(
            "notification_dispatched",
            event_name=event.kind.value,
            task_id=event.snapshot.task_id,
            recipients=len(event.recipients),
            pushed=pushed,
        )
        return pushed

    async def _push(
        self,
        event_name: str,
        payload: dict[str, Any],
        user_id: str,
        sid: str,
    ) -> int:
        try:
            await self._emitter.emit(event_name, payload, to=sid)
        except Exception as e:
            log.warning(
                "notification_push_failed",
                event_name=event_name,
                user_id=user_id,
                sid=sid,
                error=str(e),
            )
            return 0
        return 1
