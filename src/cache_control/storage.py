"""
Cache Control - Option and Transient Storage

The host keeps its settings and transients in one key/value options table.
This module maps that table with SQLAlchemy and exposes the narrow access
paths the cache engine needs: plain options, the JSON system option document,
and the transient rows the transient tier deletes.
"""
import json
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from sqlalchemy import Column, Integer, String, Text, delete, select, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from ..shared.config import DatabaseSettings

logger = structlog.get_logger(__name__)

Base = declarative_base()

SYSTEM_OPTION = "mwp_system"
TRANSIENT_PREFIX = "_transient_"
TRANSIENT_TIMEOUT_PREFIX = "_transient_timeout_"


class Option(Base):
    """Host options table."""
    __tablename__ = "wp_options"

    option_id = Column(Integer, primary_key=True, autoincrement=True)
    option_name = Column(String(191), unique=True, nullable=False, index=True)
    option_value = Column(Text, nullable=False, default="")
    autoload = Column(String(20), nullable=False, default="yes")

    def __repr__(self):
        return f"<Option(option_name='{self.option_name}')>"


class DatabaseManager:
    """
    Manages the async engine and sessions for the options table.
    """

    def __init__(self, database_url: Optional[str] = None, echo: bool = False, pool_size: int = 5):
        self.database_url = database_url or DatabaseSettings().get_database_url()
        self.echo = echo
        self.pool_size = pool_size

        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None
        self._is_connected = False

    @classmethod
    def from_settings(cls, settings: DatabaseSettings) -> "DatabaseManager":
        """Create a manager from database settings."""
        return cls(
            database_url=settings.get_database_url(),
            echo=settings.db_echo,
            pool_size=settings.db_pool_size
        )

    async def initialize(self) -> None:
        """Create the engine and session factory."""
        if self.engine is not None:
            return

        engine_options: Dict[str, Any] = {"echo": self.echo}
        if not self.database_url.startswith("sqlite"):
            engine_options.update(
                pool_size=self.pool_size,
                pool_pre_ping=True,
                pool_recycle=3600
            )

        try:
            self.engine = create_async_engine(self.database_url, **engine_options)
            self.session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )
            self._is_connected = True
            logger.info("Option store engine initialized")
        except Exception as e:
            logger.error("Failed to initialize option store", error=str(e))
            raise

    async def create_schema(self) -> None:
        """Create the options table if it does not exist."""
        await self.initialize()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def health_check(self) -> bool:
        """Return True if the database answers."""
        if not self.engine:
            return False

        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(text("SELECT 1"))
                return result.scalar() == 1
        except Exception as e:
            logger.error("Option store health check failed", error=str(e))
            return False

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get a session with automatic rollback on error.

        Usage:
            async with db_manager.get_session() as session:
                ...
        """
        await self.initialize()

        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Dispose of the engine."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None
            self._is_connected = False
            logger.info("Option store connections closed")

    @property
    def is_connected(self) -> bool:
        return self._is_connected


class OptionStore:
    """Read and write host options. Values are stored JSON encoded."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    async def get(self, name: str, default: Any = None) -> Any:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Option.option_value).where(Option.option_name == name)
            )
            raw = result.scalar_one_or_none()

        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            return raw

    async def update(self, name: str, value: Any, autoload: str = "yes") -> None:
        """Insert or replace an option. The last writer wins."""
        encoded = json.dumps(value, default=str)

        async with self.db.get_session() as session:
            result = await session.execute(select(Option).where(Option.option_name == name))
            option = result.scalar_one_or_none()
            if option is None:
                session.add(Option(option_name=name, option_value=encoded, autoload=autoload))
            else:
                option.option_value = encoded
            await session.commit()

    async def delete(self, name: str) -> bool:
        """Delete an option. Returns True if a row was removed."""
        async with self.db.get_session() as session:
            result = await session.execute(delete(Option).where(Option.option_name == name))
            await session.commit()
            return result.rowcount > 0


class SystemOptions:
    """Platform settings kept as one JSON document in the ``mwp_system`` option."""

    def __init__(self, store: OptionStore, option_name: str = SYSTEM_OPTION):
        self.store = store
        self.option_name = option_name

    async def get_all(self) -> Dict[str, Any]:
        values = await self.store.get(self.option_name, {})
        return values if isinstance(values, dict) else {}

    async def get(self, key: str, default: Any = None) -> Any:
        return (await self.get_all()).get(key, default)

    async def update(self, key: str, value: Any) -> None:
        values = await self.get_all()
        values[key] = value
        await self.store.update(self.option_name, values)

    async def delete(self, key: str) -> None:
        values = await self.get_all()
        if values.pop(key, None) is not None:
            await self.store.update(self.option_name, values)


class TransientStore:
    """Transient rows in the options table."""

    def __init__(self, store: OptionStore):
        self.store = store

    async def set_transient(self, name: str, value: Any, expiration: int = 0) -> None:
        await self.store.update(f"{TRANSIENT_PREFIX}{name}", value, autoload="no" if expiration else "yes")
        if expiration:
            await self.store.update(f"{TRANSIENT_TIMEOUT_PREFIX}{name}", int(time.time()) + expiration, autoload="no")

    async def get_transient(self, name: str) -> Any:
        timeout = await self.store.get(f"{TRANSIENT_TIMEOUT_PREFIX}{name}")
        if timeout is not None and int(timeout) < time.time():
            return None
        return await self.store.get(f"{TRANSIENT_PREFIX}{name}")

    async def delete_all(self) -> int:
        """Delete every row whose name contains ``_transient_``. Returns the row count."""
        async with self.store.db.get_session() as session:
            result = await session.execute(
                delete(Option).where(Option.option_name.contains(TRANSIENT_PREFIX, autoescape=True))
            )
            await session.commit()

        count = result.rowcount
        logger.info("Transients deleted", count=count)
        return count
