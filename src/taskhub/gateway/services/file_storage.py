"""LocalFileStorage -- 头像与任务附件的本地文件存储

上传内容先写入暂存目录，再原子移动到持久目录，以 ULID 命名；
持久目录由 main.py 以 StaticFiles 挂载到 media_url 下对外访问。
暂存目录中残留的文件由定时任务清理（见 upload_cleanup）。
"""

import hashlib
import os
from pathlib import Path

import structlog
from pydantic import BaseModel
from ulid import ULID

log = structlog.get_logger()


class StoredFile(BaseModel):
    """已保存文件的引用"""

    ref: str
    url: str
    size: int
    sha256: str


class LocalFileStorage:
    """本地文件存储"""

    def __init__(self, uploads_dir: Path, temp_dir: Path, media_url: str = "/media") -> None:
        self._uploads_dir = Path(uploads_dir)
        self._temp_dir = Path(temp_dir)
        self._media_url = media_url.rstrip("/")
        self._uploads_dir.mkdir(parents=True, exist_ok=True)
        self._temp_dir.mkdir(parents=True, exist_ok=True)

    @property
    def uploads_dir(self) -> Path:
        return self._uploads_dir

    @property
    def temp_dir(self) -> Path:
        return self._temp_dir

    def save(self, content: bytes, filename: str | None, folder: str) -> StoredFile:
        """保存上传内容

        Args:
            content: 文件内容
            filename: 客户端文件名（仅取扩展名）
            folder: 子目录，如 avatars / attachments

        Returns:
            StoredFile，ref 为相对 uploads_dir 的路径
        """
        suffix = Path(filename or "").suffix.lower()
        name = f"{ULID()}{suffix}"

        temp_path = self._temp_dir / name
        temp_path.write_bytes(content)

        target_dir = self._uploads_dir / folder
        target_dir.mkdir(parents=True, exist_ok=True)
        target_path = target_dir / name
        os.replace(temp_path, target_path)

        ref = f"{folder}/{name}"
        stored = StoredFile(
            ref=ref,
            url=f"{self._media_url}/{ref}",
            size=len(content),
            sha256=hashlib.sha256(content).hexdigest(),
        )
        log.info("file_stored", ref=ref, size=stored.size)
        return stored

    def delete(self, ref: str) -> bool:
        """删除已保存的文件，文件不存在时返回 False"""
        if not ref:
            return False
        path = (self._uploads_dir / ref).resolve()
        if self._uploads_dir.resolve() not in path.parents:
            log.warning("file_delete_rejected", ref=ref)
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        log.info("file_deleted", ref=ref)
        return True

    def exists(self, ref: str) -> bool:
        return bool(ref) and (self._uploads_dir / ref).is_file()
