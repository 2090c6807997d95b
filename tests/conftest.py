"""全局 pytest 配置 -- 测试环境变量 + 临时 SQLite 数据库 + 手动初始化的 app（绕过 lifespan）"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import aiosqlite
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# 须在导入 taskhub 之前设置：降低 bcrypt 成本，关闭 Logfire
os.environ.setdefault("TASKHUB_PASSWORD_HASH_ROUNDS", "4")
os.environ.setdefault("LOGFIRE_SEND_TO_LOGFIRE", "false")


class FakeEmitter:
    """记录 emit 调用的假 Socket.IO 服务端，可指定对某些 sid 推送失败"""

    def __init__(self) -> None:
        self.emitted: list[tuple[str, Any, str | None]] = []
        self.fail_for: set[str] = set()

    async def emit(self, event: str, data: Any = None, to: str | None = None, **kwargs: Any) -> None:
        if to in self.fail_for:
            raise ConnectionResetError(f"connection {to} closed")
        self.emitted.append((event, data, to))

    def events_to(self, sid: str) -> list[str]:
        return [event for event, _, target in self.emitted if target == sid]


@pytest.fixture
def fake_emitter() -> FakeEmitter:
    return FakeEmitter()


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"


@pytest_asyncio.fixture
async def db_conn(tmp_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """提供已初始化的临时 SQLite 数据库连接"""
    from taskhub.core.store.sqlite_init import init_db

    conn = await aiosqlite.connect(str(tmp_path / "raw.db"))
    conn.row_factory = aiosqlite.Row
    await init_db(conn)
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path):
    """提供共享连接的 StoreGroup"""
    from taskhub.core.store import create_store_group

    group = await create_store_group(str(tmp_db_path))
    yield group
    await group.conn.close()


STRONG_PASSWORD = "Secret#123"

_ENV_KEYS = ["TASKHUB_UPLOADS_DIR", "TASKHUB_TEMP_UPLOADS_DIR", "TASKHUB_JWT_SECRET"]


@pytest_asyncio.fixture
async def test_app(tmp_path: Path, store_group, fake_emitter):
    os.environ["TASKHUB_UPLOADS_DIR"] = str(tmp_path / "uploads")
    os.environ["TASKHUB_TEMP_UPLOADS_DIR"] = str(tmp_path / "tmp")
    os.environ["TASKHUB_JWT_SECRET"] = "test-secret"

    from taskhub.gateway.main import create_app
    from taskhub.gateway.services.email_service import LogOnlyEmailSender
    from taskhub.gateway.services.file_storage import LocalFileStorage
    from taskhub.gateway.services.notifier import EventNotifier

    app = create_app()

    # 手动初始化（绕过 lifespan）；推送通道替换为 FakeEmitter
    app.state.store_group = store_group
    app.state.file_storage = LocalFileStorage(tmp_path / "uploads", tmp_path / "tmp")
    app.state.email_sender = LogOnlyEmailSender()
    app.state.notifier = EventNotifier(app.state.presence_registry, fake_emitter)

    yield app

    for key in _ENV_KEYS:
        os.environ.pop(key, None)


@pytest_asyncio.fixture
async def client(test_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def make_user(test_app):
    """创建用户并登录，返回 (User, Authorization 请求头)"""
    from taskhub.gateway.services.user_service import UserService

    async def _make(name: str, role: str = "user", email: str | None = None):
        service = UserService(
            test_app.state.store_group,
            test_app.state.gateway_config,
            test_app.state.file_storage,
        )
        email = email or f"{name.lower()}@example.com"
        await service.create_user(name, email, STRONG_PASSWORD, role)
        user, token = await service.login(email, STRONG_PASSWORD)
        return user, {"Authorization": f"Bearer {token}"}

    return _make
