"""
MySQL query execution shared by every store

Provides single-statement execution with timing and rollback, and an
explicit transaction context for multi-statement units of work.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Optional

import aiomysql

from ..config.constants import MySQLErrorCodes, PerformanceThresholds
from ..utils.error_handlers import SchemaMissing

logger = logging.getLogger(__name__)


def mysql_error_code(error: Exception) -> Optional[int]:
    """Server error number of a pymysql/aiomysql error, if any"""
    if isinstance(error, aiomysql.MySQLError) and error.args and isinstance(error.args[0], int):
        return error.args[0]
    return None


def is_duplicate_key(error: Exception) -> bool:
    return isinstance(error, aiomysql.IntegrityError) and mysql_error_code(error) == MySQLErrorCodes.DUPLICATE_ENTRY


def _raise_if_schema_missing(error: Exception) -> None:
    if mysql_error_code(error) in (MySQLErrorCodes.NO_SUCH_TABLE, MySQLErrorCodes.BAD_FIELD):
        raise SchemaMissing(
            f"Database schema is incomplete ({error.args[1] if len(error.args) > 1 else error}). "
            f"Run migrations before starting the service."
        ) from error


class MySQLExecutor:
    """Base class for stores backed by an aiomysql pool"""

    def __init__(self, pool: aiomysql.Pool):
        self.pool = pool

    def _log_elapsed(self, t_start: float, what: str) -> None:
        elapsed = (time.time() - t_start) * 1000
        if elapsed > PerformanceThresholds.MYSQL_SLOW_WARNING:
            logger.warning(f"⚠️  MYSQL SLOW: {what} took {elapsed:.0f}ms")
        else:
            logger.debug(f"⏱️  MYSQL OK: {what} took {elapsed:.0f}ms")

    async def _execute_query(self, query: str, params: tuple = None, fetch_one=False, fetch_all=False) -> Any:
        """Execute a query with timing and error handling

        Writes are committed immediately and return the affected row count.
        """
        t_start = time.time()
        async with self.pool.acquire() as conn:
            async with conn.cursor(aiomysql.DictCursor) as cursor:
                try:
                    await cursor.execute(query, params or ())

                    if fetch_one:
                        result = await cursor.fetchone()
                    elif fetch_all:
                        result = await cursor.fetchall()
                    else:
                        await conn.commit()
                        result = cursor.rowcount

                    self._log_elapsed(t_start, "query")
                    return result

                except Exception as e:
                    await conn.rollback()
                    elapsed = (time.time() - t_start) * 1000
                    if is_duplicate_key(e):
                        logger.debug(f"MYSQL duplicate key after {elapsed:.0f}ms - {e}")
                    else:
                        logger.error(f"MYSQL FAILED: query failed after {elapsed:.0f}ms - {e}")
                    _raise_if_schema_missing(e)
                    raise

    @asynccontextmanager
    async def transaction(self, name: str = "transaction"):
        """Run several statements atomically on one connection

        Usage:
            async with self.transaction("sync prefixes") as cursor:
                await cursor.execute(...)
        """
        t_start = time.time()
        async with self.pool.acquire() as conn:
            await conn.begin()
            async with conn.cursor(aiomysql.DictCursor) as cursor:
                try:
                    yield cursor
                    await conn.commit()
                except Exception as e:
                    await conn.rollback()
                    logger.error(f"MYSQL ROLLBACK: {name} - {e}")
                    _raise_if_schema_missing(e)
                    raise
        self._log_elapsed(t_start, name)
