"""GatewayConfig -- Gateway 运行配置加载

从环境变量加载 JWT、邮件、CORS、媒体 URL、Celery broker 等配置。
数值型配置解析失败时记录 warning 并回退默认值，不阻塞启动。
"""

import os

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()


class GatewayConfig(BaseModel):
    """Gateway 配置 -- 从环境变量加载

    环境变量:
        TASKHUB_JWT_SECRET: JWT 签名密钥
        TASKHUB_JWT_TTL_HOURS: JWT 有效期（小时，默认 24）
        SENDGRID_API_KEY: SendGrid API key（为空时邮件只写日志）
        TASKHUB_MAIL_FROM: 发件人地址
        TASKHUB_CORS_ORIGINS: 允许的跨域来源，逗号分隔（默认 *）
        TASKHUB_MEDIA_URL: 上传文件的对外 URL 前缀（默认 /media）
        TASKHUB_CELERY_BROKER_URL: Celery broker 地址
    """

    jwt_secret: SecretStr = Field(
        default=SecretStr("taskhub-dev-secret"),
        description="JWT HS256 签名密钥",
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT 签名算法")
    jwt_ttl_hours: int = Field(default=24, ge=1, description="JWT 有效期（小时）")
    sendgrid_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="SendGrid API key",
    )
    mail_from: str = Field(
        default="no-reply@taskhub.local",
        description="邮件发件人",
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="CORS / Socket.IO 允许的来源",
    )
    media_url: str = Field(default="/media", description="上传文件对外 URL 前缀")
    celery_broker_url: str = Field(
        default="redis://localhost:6379/0",
        description="Celery broker 地址",
    )

    @property
    def email_enabled(self) -> bool:
        """是否配置了真实邮件发送"""
        return bool(self.sendgrid_api_key.get_secret_value())


def load_gateway_config() -> GatewayConfig:
    """从环境变量加载 Gateway 配置

    Returns:
        GatewayConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("TASKHUB_JWT_SECRET"):
        kwargs["jwt_secret"] = SecretStr(val)

    if val := os.environ.get("TASKHUB_JWT_TTL_HOURS"):
        try:
            ttl = int(val)
            if ttl < 1:
                raise ValueError(val)
            kwargs["jwt_ttl_hours"] = ttl
        except ValueError:
            log.warning(
                "invalid_jwt_ttl_config",
                env_var="TASKHUB_JWT_TTL_HOURS",
                value=val,
                fallback=24,
            )

    if val := os.environ.get("SENDGRID_API_KEY"):
        kwargs["sendgrid_api_key"] = SecretStr(val)

    if val := os.environ.get("TASKHUB_MAIL_FROM"):
        kwargs["mail_from"] = val

    if val := os.environ.get("TASKHUB_CORS_ORIGINS"):
        origins = [o.strip() for o in val.split(",") if o.strip()]
        if origins:
            kwargs["cors_origins"] = origins

    if val := os.environ.get("TASKHUB_MEDIA_URL"):
        kwargs["media_url"] = val.rstrip("/") or "/media"

    if val := os.environ.get("TASKHUB_CELERY_BROKER_URL"):
        kwargs["celery_broker_url"] = val

    return GatewayConfig(**kwargs)
