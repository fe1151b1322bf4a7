"""
PostgreSQL server handler for database operations.

This module provides an object-oriented handler for managing connections
and operations with a PostgreSQL database, using SQLAlchemy Core for query
building and asyncpg as the driver.
"""

import logging
import os
from typing import Any

from sqlalchemy import text
from sqlalchemy.dialects import postgresql
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.sql import ddl

from callscribe.server.db_models import SQL_DATABASE_MODELS

from ..services import SQLDatabase

logger = logging.getLogger(__name__)


# -------------------------------------------------------------- #
# PostgreSQL Server Handler
# -------------------------------------------------------------- #


class PostgreSQLServer(SQLDatabase):
    """Handler for PostgreSQL database server operations."""

    def __init__(
        self,
        name: str = "postgresql",
        host: str | None = None,
        port: int | None = None,
        user: str | None = None,
        password: str | None = None,
        database: str | None = None,
        connection_string: str | None = None,
        pool_size: int = 10,
    ):
        """
        Initialize PostgreSQL server handler.

        Args:
            name: Name of the server handler
            host: PostgreSQL server host
            port: PostgreSQL server port (default: 5432)
            user: Database user
            password: Database password
            database: Database name
            connection_string: Full connection string (overrides individual params)
            pool_size: Maximum number of pooled connections
        """
        self.host = host or os.getenv("SQL_HOST", "localhost")
        self.port = port or int(os.getenv("SQL_PORT", "5432"))
        self.user = user or os.getenv("SQL_USER", "postgres")
        self.password = password or os.getenv("SQL_PASSWORD", "")
        self.database = database or os.getenv("SQL_DATABASE", "postgres")
        self.pool_size = pool_size

        if connection_string:
            conn_str = connection_string
        else:
            conn_str = (
                f"postgresql+asyncpg://{self.user}:{self.password}"
                f"@{self.host}:{self.port}/{self.database}"
            )

        super().__init__(name, conn_str)

        self._engine: AsyncEngine | None = None

    # -------------------------------------------------------------- #
    # Connection Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Establish connection pool to PostgreSQL server."""
        try:
            self._engine = create_async_engine(
                self.connection_string,
                pool_size=self.pool_size,
                pool_pre_ping=True,
                connect_args={"command_timeout": 60},
            )
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))

            self._connected = True
            logger.info(f"[{self.name}] Connected to PostgreSQL at {self.host}:{self.port}")
        except Exception as e:
            logger.error(f"[{self.name}] Failed to connect: {e}")
            self._connected = False
            raise

    async def disconnect(self) -> None:
        """Close connection pool to PostgreSQL server."""
        if self._engine:
            try:
                await self._engine.dispose()
                self._engine = None
                self._connected = False
                logger.info(f"[{self.name}] Disconnected from PostgreSQL")
            except Exception as e:
                logger.error(f"[{self.name}] Failed to disconnect: {e}")
                raise

    async def health_check(self) -> bool:
        """Check if the PostgreSQL server is healthy and responding."""
        if not self._engine:
            return False

        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(text("SELECT 1"))
                is_healthy = result.scalar() == 1
                if is_healthy:
                    logger.debug(f"[{self.name}] Health check passed")
                else:
                    logger.warning(f"[{self.name}] Health check failed")
                return is_healthy
        except Exception as e:
            logger.error(f"[{self.name}] Health check error: {e}")
            return False

    async def create_tables(self) -> None:
        """Create all database tables (and their indexes) that do not exist yet."""
        if not self._engine:
            raise RuntimeError(f"[{self.name}] Connection pool not initialized")

        logger.info(f"[{self.name}] Creating database tables...")

        async with self._engine.begin() as conn:
            for model in SQL_DATABASE_MODELS:
                await conn.execute(ddl.CreateTable(model.__table__, if_not_exists=True))

                for index in model.__table__.indexes:
                    await conn.execute(ddl.CreateIndex(index, if_not_exists=True))

                logger.info(f"[{self.name}] Created/verified table: {model.__tablename__}")

        logger.info(f"[{self.name}] All tables created successfully")

    # -------------------------------------------------------------- #
    # Utils
    # -------------------------------------------------------------- #

    def compile_query_object(self, stmt) -> str:
        """
        Compile a SQLAlchemy statement object into a SQL query string.

        Args:
            stmt: SQLAlchemy statement object

        Returns:
            Compiled SQL query string
        """
        return str(stmt.compile(dialect=postgresql.dialect()))

    async def execute(self, stmt) -> list[dict[str, Any]]:
        """
        Execute a SQLAlchemy statement and return results.

        Args:
            stmt: SQLAlchemy statement object (select, insert, update, delete)

        Returns:
            List of result rows as dictionaries (empty list for non-SELECT queries)
        """
        if not self._engine:
            raise RuntimeError(f"[{self.name}] Connection pool not initialized")

        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(stmt)
                if result.returns_rows:
                    return [dict(row._mapping) for row in result.fetchall()]
                return []
        except Exception as e:
            table_name = getattr(getattr(stmt, "table", None), "name", "unknown")
            logger.error(
                f"CRITICAL SQL ERROR [{self.name}] - Table: {table_name}, "
                f"Error Type: {type(e).__name__}, Details: {str(e)}"
            )
            logger.error(f"[{self.name}] Query: {self.compile_query_object(stmt)}")
            raise
