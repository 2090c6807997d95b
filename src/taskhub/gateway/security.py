"""认证工具 -- 密码哈希、密码强度校验、JWT 签发与解析"""

import re
import secrets
from datetime import UTC, datetime, timedelta

import bcrypt
from jose import JWTError, jwt
from taskhub.core.config import PASSWORD_HASH_ROUNDS

from .config import GatewayConfig
from .errors import AuthenticationError, ValidationFailedError

# 至少 8 位，包含大写、小写、数字与 !@#$%^&* 中的一个
_PASSWORD_RULE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[!@#$%^&*]).{8,}$")

PASSWORD_RULE_MESSAGE = (
    "Password must be at least 8 characters long and contain at least one "
    "uppercase letter, one lowercase letter, one number and one special "
    "character (!@#$%^&*)"
)


def validate_password_strength(password: str) -> None:
    """校验密码强度，不满足时抛出 ValidationFailedError"""
    if not _PASSWORD_RULE.match(password):
        raise ValidationFailedError(PASSWORD_RULE_MESSAGE)


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=PASSWORD_HASH_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # 存储的哈希格式损坏
        return False


def generate_reset_token() -> str:
    """生成密码重置令牌（URL 安全）"""
    return secrets.token_urlsafe(32)


def create_access_token(user_id: str, config: GatewayConfig) -> str:
    """签发访问令牌

    Args:
        user_id: 写入 sub claim
        config: Gateway 配置（密钥、算法、有效期）
    """
    now = datetime.now(UTC)
    claims = {
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": now + timedelta(hours=config.jwt_ttl_hours),
    }
    return jwt.encode(
        claims,
        config.jwt_secret.get_secret_value(),
        algorithm=config.jwt_algorithm,
    )


def decode_access_token(token: str, config: GatewayConfig) -> str:
    """解析访问令牌，返回 user_id

    Raises:
        AuthenticationError: 签名无效、已过期或缺少 sub
    """
    try:
        claims = jwt.decode(
            token,
            config.jwt_secret.get_secret_value(),
            algorithms=[config.jwt_algorithm],
        )
    except JWTError as e:
        raise AuthenticationError("Invalid or expired token") from e

    user_id = claims.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise AuthenticationError("Invalid token: missing subject")
    return user_id
