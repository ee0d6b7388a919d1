import structlog

from ..config import settings
from .blob_provider import BlobStorageProvider
from .local_provider import LocalStorageProvider
from .provider import StorageProvider


def get_storage() -> StorageProvider:
    """
    Get storage provider based on configuration.
    STORAGE_PROVIDER=blob uses Azure Blob when it is configured; anything else
    (or blob without credentials) uses the local filesystem.
    """
    if settings.storage_provider == "blob":
        if settings.azure_blob_connection and settings.azure_blob_container:
            return BlobStorageProvider()
        structlog.get_logger(__name__).warning("blob_storage_not_configured", fallback="local")
    return LocalStorageProvider()
