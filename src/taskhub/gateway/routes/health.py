"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、上传目录、磁盘空间。
"""

import shutil

import structlog
from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(request: Request):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. uploads_dir: 上传目录可访问性
    3. disk_space_mb: 磁盘剩余空间
    """
    checks = {}
    all_ok = True

    # 1. SQLite 连通性检查
    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
    except Exception as e:
        log.warning("readiness_check_failed", check="sqlite", error=str(e))
        checks["sqlite"] = f"error: {str(e)}"
        all_ok = False

    # 2. 上传目录检查
    uploads_dir = None
    try:
        uploads_dir = request.app.state.file_storage.uploads_dir
        if uploads_dir.exists() and uploads_dir.is_dir():
            checks["uploads_dir"] = "ok"
        else:
            checks["uploads_dir"] = "error: directory does not exist"
            all_ok = False
    except Exception as e:
        checks["uploads_dir"] = f"error: {str(e)}"
        all_ok = False

    # 3. 磁盘空间检查
    try:
        disk_usage = shutil.disk_usage(uploads_dir if uploads_dir and uploads_dir.exists() else "/")
        checks["disk_space_mb"] = disk_usage.free // (1024 * 1024)
    except OSError:
        checks["disk_space_mb"] = 0
        all_ok = False

    status_code = 200 if all_ok else 503
    status_text = "ready" if all_ok else "not_ready"

    return JSONResponse(
        status_code=status_code,
        content={
            "status": status_text,
            "checks": checks,
        },
    )
