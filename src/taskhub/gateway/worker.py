"""Celery worker -- 定时任务

启动 worker:  celery -A taskhub.gateway.worker worker --loglevel=info
启动 beat:    celery -A taskhub.gateway.worker beat --loglevel=info

任务本身是同步入口，内部用 asyncio.run 驱动异步服务，
每次执行单独打开并关闭数据库连接。
"""

import asyncio

import structlog
from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging
from taskhub.core.config import get_db_path, get_temp_uploads_dir
from taskhub.core.store import create_store_group

from .config import load_gateway_config
from .middleware.logging_config import setup_logging
from .services.email_service import create_email_sender
from .services.reminder_service import ReminderService
from .services.upload_cleanup import purge_temp_uploads

log = structlog.get_logger()

_config = load_gateway_config()

celery_app = Celery("taskhub_worker", broker=_config.celery_broker_url)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_ignore_result=True,
    worker_hijack_root_logger=False,
)


@celery_setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    """worker / beat 日志与网关共用 structlog 渲染"""
    setup_logging()


celery_app.conf.beat_schedule = {
    "send-task-reminders": {
        "task": "taskhub.send_task_reminders",
        "schedule": crontab(hour=16, minute=15),
    },
    "purge-temp-uploads": {
        "task": "taskhub.purge_temp_uploads",
        "schedule": crontab(hour=14, minute=46),
    },
}


@celery_app.task(name="taskhub.send_task_reminders")
def send_task_reminders() -> int:
    """每日提醒：即将到期的 pending 任务"""
    return asyncio.run(_send_task_reminders())


async def _send_task_reminders() -> int:
    store_group = await create_store_group(get_db_path())
    try:
        service = ReminderService(store_group, create_email_sender(load_gateway_config()))
        return await service.send_due_reminders()
    finally:
        await store_group.conn.close()


@celery_app.task(name="taskhub.purge_temp_uploads")
def purge_temp_uploads_task() -> int:
    """每日清理上传暂存目录"""
    return purge_temp_uploads(get_temp_uploads_dir())
