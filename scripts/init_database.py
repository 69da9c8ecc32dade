#!/usr/bin/env python3
"""
Database Initialization Script
Creates the MySQL database if needed and applies pending schema migrations
"""

import asyncio
import sys

import aiomysql

from ipam_reconciler.config.settings import (
    MYSQL_HOST, MYSQL_PORT, MYSQL_USER, MYSQL_PASSWORD, MYSQL_DATABASE
)
from ipam_reconciler.database.migrations import run_migrations
from ipam_reconciler.database.mysql_connection import get_mysql_pool, close_mysql_pool


async def create_database():
    conn = await aiomysql.connect(
        host=MYSQL_HOST,
        port=MYSQL_PORT,
        user=MYSQL_USER,
        password=MYSQL_PASSWORD,
        charset='utf8mb4'
    )
    try:
        async with conn.cursor() as cursor:
            await cursor.execute(
                f"CREATE DATABASE IF NOT EXISTS {MYSQL_DATABASE} "
                f"CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
            )
        print(f"✓ Database '{MYSQL_DATABASE}' created/verified")
    finally:
        conn.close()


async def init_database():
    """Initialize database with schema"""
    print(f"Initializing database: {MYSQL_DATABASE} on {MYSQL_HOST}:{MYSQL_PORT}")

    try:
        await create_database()
        pool = await get_mysql_pool()
        applied = await run_migrations(pool)
        print(f"✓ Migrations applied: {applied or 'none pending'}")
        await close_mysql_pool()

        print("\n✅ Database initialization complete!")
        return True

    except Exception as e:
        print(f"\n✗ Database initialization failed: {e}")
        return False


if __name__ == "__main__":
    success = asyncio.run(init_database())
    sys.exit(0 if success else 1)
