"""
asyncpg pool for the postgres persistence backend.

The pool is created lazily on first use, so the in-memory backend never
opens a connection.
"""
import asyncpg
from contextlib import asynccontextmanager
from pathlib import Path
from app.config import settings
import logging

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "persistence" / "schema.sql"


class DatabasePool:
    _pool = None

    @classmethod
    async def get_pool(cls) -> asyncpg.Pool:
        if cls._pool is None:
            try:
                cls._pool = await asyncpg.create_pool(
                    **settings.db_connection_params,
                    min_size=settings.db_pool_min_size,
                    max_size=settings.db_pool_max_size,
                    command_timeout=settings.db_command_timeout
                )
            except (OSError, asyncpg.PostgresError) as e:
                logger.error(f"Could not connect to {settings.db_name}@{settings.db_host}: {e}")
                raise
            logger.info(
                f"Database pool ready: {settings.db_name}@{settings.db_host} "
                f"({settings.db_pool_min_size}-{settings.db_pool_max_size} connections)"
            )
        return cls._pool

    @classmethod
    def is_open(cls) -> bool:
        return cls._pool is not None

    @classmethod
    async def close_pool(cls):
        if cls._pool is None:
            return
        await cls._pool.close()
        cls._pool = None
        logger.info("Database pool closed")

    @classmethod
    async def apply_schema(cls):
        """Run schema.sql; every statement in it is idempotent"""
        pool = await cls.get_pool()
        async with pool.acquire() as connection:
            await connection.execute(SCHEMA_PATH.read_text())
        logger.info(f"Schema applied from {SCHEMA_PATH.name}")


@asynccontextmanager
async def get_db_connection(use_transaction: bool = True):
    """
    Borrow a pooled connection.

    Single-statement reads pass use_transaction=False. Conditional writes
    (UPDATE ... WHERE status = $n) are atomic on their own; the transaction
    only matters for callers that issue several statements.

    Usage:
    async with get_db_connection() as conn:
        row = await conn.fetchrow("SELECT * FROM invoices WHERE id = $1", invoice_id)
    """
    pool = await DatabasePool.get_pool()
    async with pool.acquire() as connection:
        if not use_transaction:
            yield connection
            return
        async with connection.transaction():
            yield connection
