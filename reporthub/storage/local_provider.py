"""
Local filesystem storage provider.
Default backend; report files live under ``STORAGE_LOCAL_DIR``.
"""
from typing import Optional, BinaryIO, Union
from pathlib import Path
from urllib.parse import quote

from ..config import settings
from ..errors import StorageError
from .provider import StorageProvider


class LocalStorageProvider(StorageProvider):
    name = "local"

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.storage_local_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        """Get the local filesystem path for a given key."""
        clean_key = key.replace("\\", "/").replace("..", "").lstrip("/")
        return self.base_dir / clean_key

    def put(self, data: Union[bytes, BinaryIO], key: str, content_type: Optional[str] = None) -> str:
        path = self._get_path(key)
        payload = data.read() if hasattr(data, "read") else data
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as f:
                f.write(payload)
        except OSError as e:
            raise StorageError(f"Failed to store file {key}: {e}")
        return key

    def read(self, key: str) -> bytes:
        path = self._get_path(key)
        if not path.exists():
            raise StorageError(f"Report file not found: {key}")
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read file {key}: {e}")

    def exists(self, key: str) -> bool:
        return self._get_path(key).exists()

    def delete(self, key: str) -> bool:
        path = self._get_path(key)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            raise StorageError(f"Failed to delete file {key}: {e}")
        return True

    def get_download_url(self, key: str, expires_s: int = 900) -> Optional[str]:
        if self.exists(key):
            return f"{settings.public_base_url}/uploads/{quote(key.lstrip('/'))}"
        return None
