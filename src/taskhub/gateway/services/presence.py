"""PresenceRegistry -- 在线用户到 Socket.IO 连接的内存映射

进程内唯一实例，由 create_app() 创建并挂在 app.state 上，进程退出即丢弃。
所有操作都是同步的，不会在中途让出事件循环，因此在 asyncio 下无需加锁。

语义：
- 单会话在线：同一用户后一次 register 直接覆盖前一次，被顶替的连接不做任何处理。
- unregister 只在映射仍指向该连接时才删除，迟到的断开不会误删新连接。
"""

import structlog

log = structlog.get_logger()


class PresenceRegistry:
    """用户在线注册表：user_id -> sid"""

    def __init__(self) -> None:
        self._sid_by_user: dict[str, str] = {}
        # 反向索引，断开时按 sid O(1) 定位用户
        self._user_by_sid: dict[str, str] = {}

    def register(self, user_id: str, sid: str) -> None:
        """登记 user_id 当前使用的连接（无条件覆盖）

        Args:
            user_id: 用户标识
            sid: Socket.IO 连接标识
        """
        # 同一连接此前宣告过其他用户：先解除旧绑定
        previous_user = self._user_by_sid.get(sid)
        if previous_user is not None and previous_user != user_id:
            if self._sid_by_user.get(previous_user) == sid:
                del self._sid_by_user[previous_user]

        displaced_sid = self._sid_by_user.get(user_id)
        if displaced_sid is not None and displaced_sid != sid:
            # 被顶替的连接不再代表任何用户
            self._user_by_sid.pop(displaced_sid, None)

        self._sid_by_user[user_id] = sid
        self._user_by_sid[sid] = user_id
        self._check_consistency(user_id)

        log.info(
            "presence_registered",
            user_id=user_id,
            sid=sid,
            displaced_sid=displaced_sid if displaced_sid != sid else None,
        )

    def unregister(self, sid: str) -> str | None:
        """连接关闭时移除对应条目

        Args:
            sid: 已关闭的连接

        Returns:
            被移除的 user_id；连接未知或已被新连接顶替时返回 None
        """
        user_id = self._user_by_sid.pop(sid, None)
        if user_id is None:
            return None

        if self._sid_by_user.get(user_id) != sid:
            return None

        del self._sid_by_user[user_id]
        log.info("presence_unregistered", user_id=user_id, sid=sid)
        return user_id

    def lookup(self, user_id: str) -> str | None:
        """查询用户当前连接，不在线返回 None"""
        return self._sid_by_user.get(user_id)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._sid_by_user

    def __len__(self) -> int:
        return len(self._sid_by_user)

    def _check_consistency(self, user_id: str) -> None:
        sid = self._sid_by_user[user_id]
        assert self._user_by_sid.get(sid) == user_id, "presence index out of sync"
        assert len(self._user_by_sid) == len(self._sid_by_user), "orphaned presence entry"
