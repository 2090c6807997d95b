"""邮件发送 -- SendGrid 实现 + 仅记录日志的 echo 实现

未配置 SENDGRID_API_KEY 时使用 LogOnlyEmailSender，邮件内容只写日志，
便于本地开发与测试。
"""

import asyncio
from html import escape
from typing import Protocol
from urllib.parse import urlencode

import structlog
from pydantic import BaseModel

from ..config import GatewayConfig

log = structlog.get_logger()


class EmailDeliveryError(Exception):
    """邮件投递失败"""

    def __init__(self, to: str, reason: str) -> None:
        super().__init__(f"邮件发送失败: {to} -- {reason}")
        self.to = to
        self.reason = reason


class EmailMessage(BaseModel):
    """待发送邮件"""

    to: str
    subject: str
    html: str


class EmailSender(Protocol):
    """邮件发送接口"""

    async def send(self, message: EmailMessage) -> None:
        """发送邮件，失败时抛出 EmailDeliveryError"""
        ...


class SendGridEmailSender:
    """通过 SendGrid Web API 发送邮件"""

    def __init__(self, api_key: str, from_email: str) -> None:
        self._api_key = api_key
        self._from_email = from_email

    async def send(self, message: EmailMessage) -> None:
        # sendgrid 客户端是同步的，放到线程中执行避免阻塞事件循环
        await asyncio.to_thread(self._send_sync, message)
        log.info("email_sent", to=message.to, subject=message.subject)

    def _send_sync(self, message: EmailMessage) -> None:
        from sendgrid import SendGridAPIClient
        from sendgrid.helpers.mail import Mail

        mail = Mail(
            from_email=self._from_email,
            to_emails=message.to,
            subject=message.subject,
            html_content=message.html,
        )
        try:
            response = SendGridAPIClient(self._api_key).send(mail)
        except Exception as e:
            raise EmailDeliveryError(message.to, str(e)) from e
        if response.status_code not in (200, 201, 202):
            raise EmailDeliveryError(message.to, f"status {response.status_code}")


class LogOnlyEmailSender:
    """Echo 模式：不真正发送，只记录日志并保留已发送列表"""

    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> None:
        self.sent.append(message)
        log.info("email_echo", to=message.to, subject=message.subject)


def create_email_sender(config: GatewayConfig) -> EmailSender:
    """根据配置选择邮件发送实现"""
    if config.email_enabled:
        log.info("email_sender_initialized", mode="sendgrid")
        return SendGridEmailSender(
            api_key=config.sendgrid_api_key.get_secret_value(),
            from_email=config.mail_from,
        )
    log.info("email_sender_initialized", mode="echo")
    return LogOnlyEmailSender()


async def send_quietly(sender: EmailSender, message: EmailMessage) -> bool:
    """后台任务入口：发送失败只记录日志"""
    try:
        await sender.send(message)
    except EmailDeliveryError as e:
        log.warning("email_delivery_failed", to=e.to, reason=e.reason)
        return False
    return True


_FOOTER = (
    '<div class="footer"><p>If you have any questions, feel free to contact '
    "our support team.</p></div>"
)


def build_welcome_email(to: str, name: str) -> EmailMessage:
    return EmailMessage(
        to=to,
        subject="Account created successfully",
        html=(
            f"<div><h1>Welcome, {escape(name)}</h1>"
            "<p><strong>Account created successfully</strong></p>"
            f"{_FOOTER}</div>"
        ),
    )


def build_reset_link(reset_link: str, token: str, email: str) -> str:
    """拼接重置链接：<resetLink>/?token=..&email=.."""
    query = urlencode({"token": token, "email": email})
    return f"{reset_link.rstrip('/')}/?{query}"


def build_reset_password_email(to: str, reset_link: str, token: str) -> EmailMessage:
    link = escape(build_reset_link(reset_link, token, to), quote=True)
    return EmailMessage(
        to=to,
        subject="Reset Password",
        html=(
            "<div><h1>Password Reset Request</h1>"
            "<p>Hello,</p>"
            "<p>We received a request to reset your password. If you did not "
            "request a password reset, please ignore this email.</p>"
            f'<a href="{link}" class="button">Reset My Password</a>'
            "<p>If the button above doesn't work, copy and paste the following "
            f'link into your browser:</p><p><a href="{link}">{link}</a></p>'
            f"{_FOOTER}</div>"
        ),
    )


def build_reminder_email(to: str, name: str, title: str, due: str) -> EmailMessage:
    return EmailMessage(
        to=to,
        subject=f"task reminder {title}",
        html=(
            "<div><center><h1>Task due reminder</h1></center>"
            f"<p>Hello {escape(name)},</p>"
            f"<p>Your task named {escape(title)} is due at {escape(due)}. "
            "Please complete it on time. If you already completed the task, "
            "please ignore this mail.</p>"
            f"{_FOOTER}</div>"
        ),
    )
