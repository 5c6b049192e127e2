"""
Local filesystem storage for cleaning photos.
Files live in one flat directory and are served statically under /uploads.
"""
import os
from pathlib import Path
from typing import BinaryIO, Optional

import structlog

from ..config import settings
from .provider import StorageProvider


logger = structlog.get_logger(__name__)

PUBLIC_PREFIX = "/uploads/"


class LocalStorageProvider(StorageProvider):
    """Flat-directory storage; keys are the public /uploads/<name> paths stored on task rows."""

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.uploads_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Optional[Path]:
        """Filesystem path for a stored key, or None if the key is not an upload path."""
        if not key or not key.startswith(PUBLIC_PREFIX):
            return None
        name = os.path.basename(key[len(PUBLIC_PREFIX):])
        if not name or name in (".", ".."):
            return None
        return self.base_dir / name

    def save(self, data: bytes | BinaryIO, filename: str) -> str:
        name = os.path.basename(filename)
        path = self.base_dir / name
        with open(path, "wb") as f:
            if hasattr(data, "read"):
                f.write(data.read())
            else:
                f.write(data)
        return f"{PUBLIC_PREFIX}{name}"

    def read(self, key: str) -> Optional[bytes]:
        path = self.path_for(key)
        if path is None or not path.is_file():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            logger.warning("upload_read_failed", key=key, error=str(e))
            return None

    def exists(self, key: str) -> bool:
        path = self.path_for(key)
        return path is not None and path.is_file()

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        if path is None:
            return
        try:
            if path.exists():
                path.unlink()
        except OSError as e:
            logger.warning("upload_delete_failed", key=key, error=str(e))


def get_storage() -> LocalStorageProvider:
    return LocalStorageProvider()
