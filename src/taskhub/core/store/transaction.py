"""事务封装

Store 的写方法只执行 SQL，不自行提交；服务层在 transaction() 中组合多个写操作，
正常退出时提交，出现异常时回滚并继续抛出。
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite


@asynccontextmanager
async def transaction(conn: aiosqlite.Connection) -> AsyncIterator[aiosqlite.Connection]:
    """在同一连接上原子提交一组写操作

    Args:
        conn: 数据库连接（需在同一连接上操作以保证事务性）
    """
    try:
        yield conn
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
