from fanpulse.config import Settings
from fanpulse.logging_config import get_logger

logger = get_logger(__name__)


def create_store(settings: Settings):
    """Build the record store selected by settings."""
    if settings.use_postgres:
        from fanpulse.storage.db import PostgresStorage
        from fanpulse.storage.db_pool import DatabasePool

        pool = DatabasePool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            timeout_seconds=settings.store_timeout_seconds,
        )
        pool.initialize()
        logger.info("Using PostgreSQL storage")
        return PostgresStorage(pool)

    from fanpulse.storage.memory_storage import InMemoryStorage
    logger.info("Using in-memory storage")
    return InMemoryStorage()
