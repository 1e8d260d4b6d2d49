"""Storage factory - returns the storage backend for the configured database.

PostgreSQL is used when storage.database_url is a postgres URL, SQLite
otherwise. Both backends expose the same methods.
"""

import logging
from typing import Union

from config.app_config import StorageConfig
from storage.sqlite_store import SQLiteStore

logger = logging.getLogger(__name__)


def get_store(config: StorageConfig) -> Union[SQLiteStore, "PostgresStore"]:
    """Create the storage backend for this configuration.

    Args:
        config: Storage configuration

    Returns:
        PostgresStore if database_url starts with postgresql:// or postgres://,
        otherwise SQLiteStore on config.db_path
    """
    if config.is_postgres:
        from storage.pg_store import PostgresStore

        logger.info("Using PostgreSQL storage (DATABASE_URL configured)")
        return PostgresStore(config.database_url)

    logger.info("Using SQLite storage at %s", config.db_path)
    return SQLiteStore(config.db_path)
