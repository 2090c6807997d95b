"""暂存目录清理 -- 删除上传失败或中断后残留的暂存文件"""

from pathlib import Path

import structlog
from taskhub.core.config import TEMP_KEEP_FILES

log = structlog.get_logger()


def purge_temp_uploads(temp_dir: Path, keep: frozenset[str] = TEMP_KEEP_FILES) -> int:
    """删除暂存目录下的文件（保留占位文件，不递归子目录）

    Returns:
        删除的文件数量
    """
    temp_dir = Path(temp_dir)
    if not temp_dir.is_dir():
        return 0

    removed = 0
    for path in temp_dir.iterdir():
        if not path.is_file() or path.name in keep:
            continue
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        except OSError as e:
            log.warning("temp_upload_purge_failed", path=str(path), error=str(e))
            continue
        removed += 1

    log.info("temp_uploads_purged", temp_dir=str(temp_dir), removed=removed)
    return removed
