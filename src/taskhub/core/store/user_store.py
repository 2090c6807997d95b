"""UserStore / LoginStore SQLite 实现

写操作不自行提交，由调用方通过 transaction() 统一提交或回滚。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.user import LoginSession, User


class SqliteUserStore:
    """UserStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_user(self, user: User) -> None:
        """创建用户记录"""
        await self._conn.execute(
            """
            INSERT INTO users (user_id, name, email, password_hash, role,
                               avatar_url, avatar_ref, reset_token,
                               reset_token_expiry, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user.user_id,
                user.name,
                user.email,
                user.password_hash,
                user.role.value,
                user.avatar_url,
                user.avatar_ref,
                user.reset_token,
                _iso_or_none(user.reset_token_expiry),
                user.created_at.isoformat(),
                user.updated_at.isoformat(),
            ),
        )

    async def get_user(self, user_id: str) -> User | None:
        """根据 user_id 查询用户"""
        cursor = await self._conn.execute(
            "SELECT * FROM users WHERE user_id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    async def get_user_by_email(self, email: str) -> User | None:
        """根据邮箱查询用户"""
        cursor = await self._conn.execute(
            "SELECT * FROM users WHERE email = ?",
            (email,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    async def get_users(self, user_ids: list[str]) -> list[User]:
        """批量查询用户，按传入顺序返回，忽略不存在的 id"""
        if not user_ids:
            return []
        placeholders = ", ".join("?" for _ in user_ids)
        cursor = await self._conn.execute(
            f"SELECT * FROM users WHERE user_id IN ({placeholders})",
            tuple(user_ids),
        )
        rows = await cursor.fetchall()
        by_id = {row["user_id"]: self._row_to_user(row) for row in rows}
        return [by_id[uid] for uid in user_ids if uid in by_id]

    async def update_user(self, user: User) -> None:
        """整体覆盖用户记录（user_id 不变）"""
        await self._conn.execute(
            """
            UPDATE users
            SET name = ?, email = ?, password_hash = ?, role = ?,
                avatar_url = ?, avatar_ref = ?, reset_token = ?,
                reset_token_expiry = ?, updated_at = ?
            WHERE user_id = ?
            """,
            (
                user.name,
                user.email,
                user.password_hash,
                user.role.value,
                user.avatar_url,
                user.avatar_ref,
                user.reset_token,
                _iso_or_none(user.reset_token_expiry),
                user.updated_at.isoformat(),
                user.user_id,
            ),
        )

    @staticmethod
    def _row_to_user(row: aiosqlite.Row) -> User:
        """将数据库行转换为 User 模型"""
        expiry = row["reset_token_expiry"]
        return User(
            user_id=row["user_id"],
            name=row["name"],
            email=row["email"],
            password_hash=row["password_hash"],
            role=row["role"],
            avatar_url=row["avatar_url"],
            avatar_ref=row["avatar_ref"],
            reset_token=row["reset_token"],
            reset_token_expiry=datetime.fromisoformat(expiry) if expiry else None,
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


class SqliteLoginStore:
    """LoginStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def get_session(self, user_id: str) -> LoginSession | None:
        """查询用户的登录会话"""
        cursor = await self._conn.execute(
            "SELECT * FROM logins WHERE user_id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return LoginSession(
            user_id=row["user_id"],
            login_at=[datetime.fromisoformat(ts) for ts in json.loads(row["login_at"])],
            is_deleted=bool(row["is_deleted"]),
            expire_at=datetime.fromisoformat(row["expire_at"]),
        )

    async def save_session(self, session: LoginSession) -> None:
        """写入或覆盖登录会话"""
        await self._conn.execute(
            """
            INSERT INTO logins (user_id, login_at, is_deleted, expire_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                login_at = excluded.login_at,
                is_deleted = excluded.is_deleted,
                expire_at = excluded.expire_at
            """,
            (
                session.user_id,
                json.dumps([ts.isoformat() for ts in session.login_at]),
                int(session.is_deleted),
                session.expire_at.isoformat(),
            ),
        )


def _iso_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
