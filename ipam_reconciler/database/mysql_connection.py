"""
MySQL Connection Manager
Handles connection pooling and pool lifecycle
"""
import logging
from typing import Optional
import aiomysql

from ..config.settings import get_mysql_settings, MYSQL_POOL_SIZE

logger = logging.getLogger(__name__)

# Global connection pool
_mysql_pool: Optional[aiomysql.Pool] = None


async def get_mysql_pool() -> aiomysql.Pool:
    """
    Get or create the MySQL connection pool

    Returns:
        aiomysql.Pool instance

    Raises:
        Exception: If pool creation fails
    """
    global _mysql_pool

    if _mysql_pool is None:
        settings = get_mysql_settings()
        logger.info(
            f"Creating MySQL connection pool: "
            f"{settings['host']}:{settings['port']}/{settings['db']}"
        )

        _mysql_pool = await aiomysql.create_pool(
            minsize=1,
            maxsize=MYSQL_POOL_SIZE,
            autocommit=True,  # Reads end immediately; transaction() opens its own BEGIN
            charset='utf8mb4',
            connect_timeout=10,
            echo=False,
            **settings
        )

        logger.info(
            f"MySQL connection pool created successfully "
            f"(max={MYSQL_POOL_SIZE}, autocommit=True)"
        )

    return _mysql_pool


async def close_mysql_pool():
    """
    Close the MySQL connection pool

    Closes all connections and releases resources
    """
    global _mysql_pool

    if _mysql_pool is not None:
        logger.info("Closing MySQL connection pool")
        _mysql_pool.close()
        await _mysql_pool.wait_closed()
        _mysql_pool = None
        logger.info("MySQL connection pool closed")
