"""
ContextRAG - Database Connection Manager
========================================

Async connection pool management for PostgreSQL with pgvector.
"""

import json
import logging
from contextlib import asynccontextmanager
from importlib import resources
from typing import AsyncGenerator, Optional

import asyncpg
import numpy as np
from asyncpg import Connection, Pool

from contextrag.shared.exceptions import DatabaseError

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """
    Manages a PostgreSQL connection pool with vector and jsonb codecs.

    Usage:
        db = DatabaseConnection(connection_string)
        await db.connect()
        await db.apply_schema()

        async with db.acquire() as conn:
            rows = await conn.fetch("SELECT * FROM documents")

        await db.close()
    """

    def __init__(
        self,
        connection_string: str,
        min_connections: int = 2,
        max_connections: int = 10
    ):
        self.connection_string = connection_string
        self.min_connections = min_connections
        self.max_connections = max_connections
        self._pool: Optional[Pool] = None

    @classmethod
    def from_config(cls, config) -> "DatabaseConnection":
        """Build from a DatabaseConfig."""
        return cls(
            config.connection_string,
            min_connections=config.min_connections,
            max_connections=config.max_connections,
        )

    async def connect(self) -> None:
        """Initialize connection pool."""
        if self._pool is not None:
            return

        try:
            self._pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.min_connections,
                max_size=self.max_connections,
                init=self._init_connection,
                command_timeout=60
            )
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Failed to create database pool: {e}")
            raise DatabaseError(f"Failed to connect to database: {e}") from e

        logger.info(
            f"Database pool created: {self.min_connections}-{self.max_connections} connections"
        )

    async def _init_connection(self, conn: Connection) -> None:
        """Register pgvector and jsonb codecs on each new connection."""
        await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")
        await conn.set_type_codec(
            'vector',
            encoder=self._encode_vector,
            decoder=self._decode_vector,
            schema='public'
        )
        await conn.set_type_codec(
            'jsonb',
            encoder=json.dumps,
            decoder=json.loads,
            schema='pg_catalog'
        )

    @staticmethod
    def _encode_vector(vector) -> Optional[str]:
        """Encode numpy array/list to pgvector text format."""
        if vector is None:
            return None
        if isinstance(vector, (np.ndarray, list, tuple)):
            return '[' + ','.join(str(float(x)) for x in vector) + ']'
        return str(vector)

    @staticmethod
    def _decode_vector(value: str) -> Optional[np.ndarray]:
        """Decode pgvector text format to a float32 numpy array."""
        if value is None:
            return None
        values = value.strip('[]')
        if not values:
            return np.zeros(0, dtype=np.float32)
        return np.array([float(x) for x in values.split(',')], dtype=np.float32)

    async def apply_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        sql = resources.files("contextrag.database").joinpath("schema.sql").read_text()
        async with self.acquire() as conn:
            await conn.execute(sql)
        logger.info("Database schema applied")

    async def close(self) -> None:
        """Close connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database pool closed")

    @property
    def pool(self) -> Pool:
        """Get connection pool."""
        if not self._pool:
            raise DatabaseError("Database not connected. Call connect() first.")
        return self._pool

    @asynccontextmanager
    async def acquire(self) -> AsyncGenerator[Connection, None]:
        """Acquire a connection from the pool."""
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[Connection, None]:
        """Acquire a connection with a transaction."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def execute(self, query: str, *args) -> str:
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args) -> list:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args):
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            result = await self.fetchval("SELECT 1")
            return result == 1
        except (OSError, asyncpg.PostgresError, DatabaseError) as e:
            logger.error(f"Health check failed: {e}")
            return False

    async def get_stats(self) -> dict:
        """Get connection pool statistics."""
        if not self._pool:
            return {"status": "disconnected"}

        return {
            "status": "connected",
            "size": self._pool.get_size(),
            "free_size": self._pool.get_idle_size(),
            "min_size": self._pool.get_min_size(),
            "max_size": self._pool.get_max_size()
        }
