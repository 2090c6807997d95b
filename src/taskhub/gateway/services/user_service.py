"""UserService -- 账户、登录会话与密码相关业务逻辑

登录成功会刷新 logins 表中的会话；每个已认证请求除校验 JWT 外还要求会话有效，
因此登出后旧 token 立即失效。
"""

import re
from datetime import UTC, datetime, timedelta

import aiosqlite
import structlog
from taskhub.core.config import RESET_TOKEN_TTL_MINUTES, SESSION_TTL_HOURS
from taskhub.core.models import LoginSession, User, UserRole
from taskhub.core.store import StoreGroup, transaction
from ulid import ULID

from ..config import GatewayConfig
from ..errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    UnprocessableError,
    ValidationFailedError,
)
from ..security import (
    create_access_token,
    decode_access_token,
    generate_reset_token,
    hash_password,
    validate_password_strength,
    verify_password,
)
from .file_storage import LocalFileStorage

log = structlog.get_logger()

_EMAIL_RULE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

AVATAR_FOLDER = "avatars"


def normalize_email(email: str) -> str:
    """邮箱统一小写并校验格式"""
    value = (email or "").strip().lower()
    if not _EMAIL_RULE.match(value):
        raise ValidationFailedError("email must be a valid email")
    return value


def parse_role(role: str) -> UserRole:
    try:
        return UserRole((role or "").strip().lower())
    except ValueError as e:
        allowed = ", ".join(r.value for r in UserRole)
        raise ValidationFailedError(f"role must be one of: {allowed}") from e


class UserService:
    """用户业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        config: GatewayConfig,
        file_storage: LocalFileStorage | None = None,
    ) -> None:
        self._stores = store_group
        self._config = config
        self._files = file_storage

    async def create_user(
        self,
        name: str,
        email: str,
        password: str,
        role: str,
        avatar: bytes | None = None,
        avatar_filename: str | None = None,
    ) -> User:
        """注册新用户

        Raises:
            ValidationFailedError: 字段不合法
            ConflictError: 邮箱已被注册
        """
        name = (name or "").strip()
        if not name:
            raise ValidationFailedError("name is required")
        email = normalize_email(email)
        user_role = parse_role(role)
        validate_password_strength(password)

        if await self._stores.user_store.get_user_by_email(email) is not None:
            raise ConflictError("User with this email already exists")

        now = datetime.now(UTC)
        user = User(
            user_id=str(ULID()),
            name=name,
            email=email,
            password_hash=hash_password(password),
            role=user_role,
            created_at=now,
            updated_at=now,
        )
        if avatar and self._files is not None:
            stored = self._files.save(avatar, avatar_filename, AVATAR_FOLDER)
            user.avatar_url = stored.url
            user.avatar_ref = stored.ref

        try:
            async with transaction(self._stores.conn):
                await self._stores.user_store.create_user(user)
        except aiosqlite.IntegrityError as e:
            # 并发注册同一邮箱：唯一索引兜底
            if self._files is not None and user.avatar_ref:
                self._files.delete(user.avatar_ref)
            raise ConflictError("User with this email already exists") from e

        log.info("user_created", user_id=user.user_id, role=user.role.value)
        return user

    async def login(self, email: str, password: str) -> tuple[User, str]:
        """登录：校验凭据，刷新会话，签发 token

        Raises:
            NotFoundError: 邮箱未注册
            AuthenticationError: 密码错误
        """
        email = normalize_email(email)
        user = await self._stores.user_store.get_user_by_email(email)
        if user is None:
            raise NotFoundError("User Doesn't Exist")
        if not verify_password(password, user.password_hash):
            raise AuthenticationError("Invalid credentials")

        now = datetime.now(UTC)
        session = await self._stores.login_store.get_session(user.user_id)
        login_at = [*session.login_at, now] if session else [now]
        async with transaction(self._stores.conn):
            await self._stores.login_store.save_session(
                LoginSession(
                    user_id=user.user_id,
                    login_at=login_at,
                    is_deleted=False,
                    expire_at=now + timedelta(hours=SESSION_TTL_HOURS),
                )
            )

        token = create_access_token(user.user_id, self._config)
        log.info("user_logged_in", user_id=user.user_id)
        return user, token

    async def authenticate(self, token: str) -> User:
        """根据 token 解析当前用户

        Raises:
            AuthenticationError: token 无效、会话已登出或过期、用户不存在
        """
        user_id = decode_access_token(token, self._config)
        session = await self._stores.login_store.get_session(user_id)
        if session is None or not session.is_active(datetime.now(UTC)):
            raise AuthenticationError("Session expired, please login again")
        user = await self._stores.user_store.get_user(user_id)
        if user is None:
            raise AuthenticationError("User no longer exists")
        return user

    async def logout(self, user: User) -> None:
        session = await self._stores.login_store.get_session(user.user_id)
        if session is None or session.is_deleted:
            return
        session.is_deleted = True
        async with transaction(self._stores.conn):
            await self._stores.login_store.save_session(session)
        log.info("user_logged_out", user_id=user.user_id)

    async def request_password_reset(self, email: str) -> tuple[User, str]:
        """生成密码重置令牌（有效期 RESET_TOKEN_TTL_MINUTES）

        Returns:
            (user, reset_token)
        """
        email = normalize_email(email)
        user = await self._stores.user_store.get_user_by_email(email)
        if user is None:
            raise NotFoundError("User Doesn't Exist")

        now = datetime.now(UTC)
        token = generate_reset_token()
        user.reset_token = token
        user.reset_token_expiry = now + timedelta(minutes=RESET_TOKEN_TTL_MINUTES)
        user.updated_at = now
        async with transaction(self._stores.conn):
            await self._stores.user_store.update_user(user)

        log.info("password_reset_requested", user_id=user.user_id)
        return user, token

    async def reset_password(self, email: str, reset_token: str, new_password: str) -> User:
        """使用重置令牌设置新密码

        Raises:
            NotFoundError: 邮箱未注册
            AuthenticationError: 令牌不匹配
            ValidationFailedError: 令牌过期或新密码不合规
        """
        email = normalize_email(email)
        user = await self._stores.user_store.get_user_by_email(email)
        if user is None:
            raise NotFoundError("User Doesn't Exist")
        if not user.reset_token or user.reset_token != reset_token:
            raise AuthenticationError("Invalid reset token")

        now = datetime.now(UTC)
        if user.reset_token_expiry is None or user.reset_token_expiry <= now:
            raise ValidationFailedError("Reset token has expired")
        validate_password_strength(new_password)

        user.password_hash = hash_password(new_password)
        user.reset_token = None
        user.reset_token_expiry = None
        user.updated_at = now
        async with transaction(self._stores.conn):
            await self._stores.user_store.update_user(user)

        log.info("password_reset_completed", user_id=user.user_id)
        return user

    async def change_password(self, user: User, old_password: str, new_password: str) -> User:
        """修改密码

        Raises:
            ValidationFailedError: 新旧密码相同或新密码不合规
            UnprocessableError: 旧密码错误
        """
        if old_password == new_password:
            raise ValidationFailedError("New password must be different from the old password.")
        validate_password_strength(new_password)
        if not verify_password(old_password, user.password_hash):
            raise UnprocessableError("Old password is incorrect")

        user.password_hash = hash_password(new_password)
        user.updated_at = datetime.now(UTC)
        async with transaction(self._stores.conn):
            await self._stores.user_store.update_user(user)

        log.info("password_changed", user_id=user.user_id)
        return user

    async def update_user(self, user: User, name: str, email: str, role: str) -> User:
        """修改姓名、邮箱与角色

        Raises:
            ConflictError: 邮箱已被其他用户使用
        """
        name = (name or "").strip()
        if not name:
            raise ValidationFailedError("name is required")
        email = normalize_email(email)
        user_role = parse_role(role)

        existing = await self._stores.user_store.get_user_by_email(email)
        if existing is not None and existing.user_id != user.user_id:
            raise ConflictError("Email is already in use")

        user.name = name
        user.email = email
        user.role = user_role
        user.updated_at = datetime.now(UTC)
        async with transaction(self._stores.conn):
            await self._stores.user_store.update_user(user)

        log.info("user_updated", user_id=user.user_id)
        return user

    async def update_avatar(self, user: User, content: bytes, filename: str | None) -> User:
        """替换头像并删除旧文件"""
        if not content:
            raise ValidationFailedError("avatar is required")
        if self._files is None:
            raise UnprocessableError("File storage is not configured")

        previous_ref = user.avatar_ref
        stored = self._files.save(content, filename, AVATAR_FOLDER)
        user.avatar_url = stored.url
        user.avatar_ref = stored.ref
        user.updated_at = datetime.now(UTC)
        async with transaction(self._stores.conn):
            await self._stores.user_store.update_user(user)

        if previous_ref:
            self._files.delete(previous_ref)
        log.info("avatar_updated", user_id=user.user_id)
        return user
