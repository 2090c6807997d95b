"""SQLite 数据库初始化

PRAGMA 配置 + users / logins / tasks 三张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# users 表 DDL
_USERS_DDL = """
CREATE TABLE IF NOT EXISTS users (
    user_id            TEXT PRIMARY KEY,
    name               TEXT NOT NULL,
    email              TEXT NOT NULL,
    password_hash      TEXT NOT NULL,
    role               TEXT NOT NULL DEFAULT 'user',
    avatar_url         TEXT NOT NULL DEFAULT '',
    avatar_ref         TEXT NOT NULL DEFAULT '',
    reset_token        TEXT,
    reset_token_expiry TEXT,
    created_at         TEXT NOT NULL,
    updated_at         TEXT NOT NULL
);
"""

_USERS_INDEXES = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_users_email ON users(email);",
]

# logins 表 DDL（每个用户一条会话记录）
_LOGINS_DDL = """
CREATE TABLE IF NOT EXISTS logins (
    user_id     TEXT PRIMARY KEY,
    login_at    TEXT NOT NULL DEFAULT '[]',
    is_deleted  INTEGER NOT NULL DEFAULT 0,
    expire_at   TEXT NOT NULL,

    FOREIGN KEY (user_id) REFERENCES users(user_id)
);
"""

# tasks 表 DDL
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id         TEXT PRIMARY KEY,
    title           TEXT NOT NULL,
    description     TEXT NOT NULL,
    priority        TEXT NOT NULL,
    status          TEXT NOT NULL DEFAULT 'pending',
    due_date        TEXT NOT NULL,
    assigned_to     TEXT NOT NULL DEFAULT '[]',
    created_by      TEXT NOT NULL,
    attachment_url  TEXT NOT NULL DEFAULT '',
    attachment_ref  TEXT NOT NULL DEFAULT '',
    is_deleted      INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_is_deleted ON tasks(is_deleted);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_due_date ON tasks(due_date);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at DESC);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    await conn.execute(_USERS_DDL)
    await conn.execute(_LOGINS_DDL)
    await conn.execute(_TASKS_DDL)

    for idx_sql in _USERS_INDEXES + _TASKS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
