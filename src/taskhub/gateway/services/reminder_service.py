"""ReminderService -- 任务到期提醒邮件

查找截止时间在 [当前时间, 明天 23:59:59.999999] 内、未删除且仍为 pending 的任务，
向每位仍存在的成员发送提醒邮件。单封邮件失败只记录日志，不中断其余发送。
"""

from datetime import UTC, datetime, time, timedelta

import structlog
from taskhub.core.store import StoreGroup

from .email_service import EmailSender, build_reminder_email, send_quietly

log = structlog.get_logger()


def reminder_window(now: datetime) -> tuple[datetime, datetime]:
    """提醒时间窗口：从 now 到次日结束（UTC）"""
    now = now.astimezone(UTC)
    tomorrow = now.date() + timedelta(days=1)
    end = datetime.combine(tomorrow, time.max, tzinfo=UTC)
    return now, end


class ReminderService:
    """到期提醒"""

    def __init__(self, store_group: StoreGroup, email_sender: EmailSender) -> None:
        self._stores = store_group
        self._sender = email_sender

    async def send_due_reminders(self, now: datetime | None = None) -> int:
        """发送提醒邮件

        Returns:
            成功发送的邮件数量
        """
        start, end = reminder_window(now or datetime.now(UTC))
        tasks = await self._stores.task_store.list_pending_due_between(start, end)

        sent = 0
        for task in tasks:
            members = await self._stores.user_store.get_users(task.assigned_to)
            for user in members:
                message = build_reminder_email(
                    to=user.email,
                    name=user.name,
                    title=task.title,
                    due=task.due_date.isoformat(),
                )
                if await send_quietly(self._sender, message):
                    sent += 1

        log.info(
            "task_reminders_sent",
            tasks=len(tasks),
            emails=sent,
            window_end=end.isoformat(),
        )
        return sent
