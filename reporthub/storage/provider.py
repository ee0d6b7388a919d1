from typing import BinaryIO, Optional, Union


class StorageProvider:
    """Blob collaborator used for report attachments.

    ``put`` and ``delete`` raise ``StorageError`` on transport failures.
    ``delete`` returns False when the key does not exist.
    """

    name = "abstract"

    def put(self, data: Union[bytes, BinaryIO], key: str, content_type: Optional[str] = None) -> str:
        raise NotImplementedError

    def read(self, key: str) -> bytes:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def get_download_url(self, key: str, expires_s: int = 900) -> Optional[str]:
        raise NotImplementedError
