import logging

from greenpoints.config import Settings
from greenpoints.errors import StorageUnavailable
from greenpoints.storage.base import StorageBackend
from greenpoints.storage.local_backend import LocalStorageBackend
from greenpoints.storage.sql_backend import SqlStorageBackend

logger = logging.getLogger(__name__)


def select_backend(settings: Settings) -> StorageBackend:
    """Pick the storage backend once, at startup.

    The SQL store is the system of record. When it is not configured or not
    reachable the device-local store takes over, except in production where
    an unshared store would silently split balances across devices.
    """
    if settings.database_url:
        backend = SqlStorageBackend(settings.database_url)
        try:
            backend.ping()
            backend.init_schema()
            logger.info("Using SQL storage backend")
            return backend
        except StorageUnavailable:
            backend.close()
            if settings.is_production:
                raise
            logger.warning("Database unreachable, falling back to local storage", exc_info=True)
    elif settings.is_production:
        raise StorageUnavailable("DATABASE_URL is required in production")
    else:
        logger.warning("DATABASE_URL not set, using local storage")

    return LocalStorageBackend(settings.local_store_path)
