"""Relational store: the authoritative copy of every record.

One table per record type plus ``entity_relationships``. The schema only ever
grows by new nullable columns; existing columns are never renamed.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from ..errors import DatabaseError
from ..logging import get_logger

logger = get_logger(__name__)

Base = declarative_base()


class EntityRow(Base):
    __tablename__ = "entities"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    type = Column(String(32), nullable=False, index=True)
    description = Column(Text)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)
    embedding = Column(JSON)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    deleted_at = Column(DateTime(timezone=True), index=True)
    last_seen_at = Column(DateTime(timezone=True))


class EventRow(Base):
    __tablename__ = "events"

    id = Column(String(36), primary_key=True)
    type = Column(String(32), nullable=False, index=True)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True))
    participants = Column(JSON, nullable=False, default=list)
    source = Column(String(255))
    source_id = Column(String(255))
    meta = Column("metadata", JSON, nullable=False, default=dict)
    embedding = Column(JSON)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    deleted_at = Column(DateTime(timezone=True), index=True)


class TaskRow(Base):
    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    status = Column(String(32), nullable=False, index=True)
    priority = Column(String(32), nullable=False)
    due_date = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    assignee_id = Column(String(36), index=True)
    created_by = Column(String(255))
    related_entity_id = Column(String(36), index=True)
    related_event_id = Column(String(36), index=True)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    embedding = Column(JSON)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    deleted_at = Column(DateTime(timezone=True), index=True)


class RelationshipRow(Base):
    __tablename__ = "entity_relationships"
    __table_args__ = (
        UniqueConstraint("source_id", "target_id", "type", name="uq_relationship_edge"),
    )

    id = Column(String(36), primary_key=True)
    source_id = Column(String(36), nullable=False, index=True)
    source_kind = Column(String(16), nullable=False, default="entity")
    target_id = Column(String(36), nullable=False, index=True)
    target_kind = Column(String(16), nullable=False, default="entity")
    type = Column(String(32), nullable=False)
    weight = Column(Integer, nullable=False, default=1)
    meta = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class Database:
    """Async engine plus per-operation transactions.

    Every SQLAlchemy failure leaves this class as a ``DatabaseError`` with the
    driver error chained, after the transaction has been rolled back.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        engine_kwargs = {}
        if url.startswith("sqlite") and ":memory:" in url:
            # A single shared connection, otherwise every session sees an empty database
            engine_kwargs = {
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            }
        self.engine = create_async_engine(url, echo=echo, **engine_kwargs)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    async def create_schema(self) -> None:
        """Create any missing tables."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            logger.error("Schema creation failed", error=str(e), url=self.url)
            raise DatabaseError("create_schema", str(e)) from e
        logger.debug("Relational schema ready", url=self.url)

    @asynccontextmanager
    async def transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Session inside ``BEGIN``; commits on exit, rolls back on any exception."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except SQLAlchemyError as e:
            logger.error(
                "Relational transaction failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise DatabaseError(operation, str(e)) from e

    @asynccontextmanager
    async def session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Read-only session."""
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(
                "Relational query failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise DatabaseError(operation, str(e)) from e

    async def ping(self) -> bool:
        async with self.session("ping") as session:
            await session.execute(text("SELECT 1"))
        return True

    async def close(self) -> None:
        await self.engine.dispose()
