from datetime import datetime, timedelta
from typing import Optional, BinaryIO, Union

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.storage.blob import (
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
    BlobSasPermissions,
)

from ..config import settings
from ..errors import StorageError
from .provider import StorageProvider


class BlobStorageProvider(StorageProvider):
    name = "blob"

    def __init__(self, connection: Optional[str] = None, container: Optional[str] = None) -> None:
        connection = connection or settings.azure_blob_connection
        container = container or settings.azure_blob_container
        if not connection or not container:
            raise RuntimeError("AZURE_BLOB_CONNECTION and AZURE_BLOB_CONTAINER must be set")
        self._service = BlobServiceClient.from_connection_string(connection)
        self._container = container

    def _client(self, key: str):
        return self._service.get_blob_client(self._container, key.lstrip("/"))

    def put(self, data: Union[bytes, BinaryIO], key: str, content_type: Optional[str] = None) -> str:
        try:
            self._client(key).upload_blob(
                data,
                overwrite=True,
                content_settings=ContentSettings(content_type=content_type) if content_type else None,
            )
        except AzureError as e:
            raise StorageError(f"Failed to upload {key}: {e}")
        return key

    def read(self, key: str) -> bytes:
        try:
            return self._client(key).download_blob().readall()
        except ResourceNotFoundError:
            raise StorageError(f"Report file not found: {key}")
        except AzureError as e:
            raise StorageError(f"Failed to read {key}: {e}")

    def exists(self, key: str) -> bool:
        return self._client(key).exists()

    def delete(self, key: str) -> bool:
        try:
            self._client(key).delete_blob()
        except ResourceNotFoundError:
            return False
        except AzureError as e:
            raise StorageError(f"Failed to delete {key}: {e}")
        return True

    def get_download_url(self, key: str, expires_s: int = 900) -> Optional[str]:
        expiry = datetime.utcnow() + timedelta(seconds=expires_s)
        sas = generate_blob_sas(
            account_name=self._service.account_name,
            container_name=self._container,
            blob_name=key.lstrip("/"),
            account_key=self._service.credential.account_key,
            permission=BlobSasPermissions(read=True),
            expiry=expiry,
        )
        return f"{self._client(key).url}?{sas}"
