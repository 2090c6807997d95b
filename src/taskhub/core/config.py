"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、上传目录、会话有效期、分页上限等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("TASKHUB_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "TASKHUB_DB_PATH",
        str(_get_base_dir() / "sqlite" / "taskhub.db"),
    )


def get_uploads_dir() -> Path:
    """获取附件/头像的持久存储目录"""
    return Path(
        os.environ.get(
            "TASKHUB_UPLOADS_DIR",
            str(_get_base_dir() / "uploads"),
        )
    )


def get_temp_uploads_dir() -> Path:
    """获取上传暂存目录（定时任务会清理残留文件）"""
    return Path(
        os.environ.get(
            "TASKHUB_TEMP_UPLOADS_DIR",
            str(_get_base_dir() / "tmp"),
        )
    )


# 登录会话有效期（小时）
SESSION_TTL_HOURS: int = int(os.environ.get("TASKHUB_SESSION_TTL_HOURS", "24"))

# 密码重置令牌有效期（分钟）
RESET_TOKEN_TTL_MINUTES: int = int(
    os.environ.get("TASKHUB_RESET_TOKEN_TTL_MINUTES", "60")
)

# 任务列表分页上限
PAGE_SIZE_MAX: int = int(os.environ.get("TASKHUB_PAGE_SIZE_MAX", "100"))

# bcrypt cost
PASSWORD_HASH_ROUNDS: int = int(os.environ.get("TASKHUB_PASSWORD_HASH_ROUNDS", "12"))

# 暂存目录中不清理的占位文件
TEMP_KEEP_FILES: frozenset[str] = frozenset({".gitkeep"})
