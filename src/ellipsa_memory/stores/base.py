"""Shared machinery for the Entity/Event/Task stores.

Every write is two-phase. The relational row is written inside a transaction
and is the source of truth; once it has committed, the vector-index entry and
the graph node are updated best-effort. A failure in either secondary index is
logged with the record id and the index name, then swallowed, so callers only
ever see validation errors, missing records and relational failures.
"""

import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from typing import Any, ClassVar, Generic, TypeVar

import pydantic
from sqlalchemy import asc, delete, desc, func, inspect, or_, select

from ..db.graph import GraphStore
from ..db.relational import Database, RelationshipRow
from ..db.vector import VectorIndex
from ..errors import NotFoundError, ValidationError
from ..logging import get_logger
from ..schemas.records import Page, PageRequest, PaginationInfo, RecordKind
from ..services.embedding import EmbeddingService
from ..utils.time import ensure_utc, utc_now, utc_timestamp

logger = get_logger("stores")

RecordT = TypeVar("RecordT", bound=pydantic.BaseModel)
SchemaT = TypeVar("SchemaT", bound=pydantic.BaseModel)

# Record fields whose values are JSON documents in the relational row
JSON_FIELDS = {"metadata", "participants"}


def iso(value: datetime | None) -> str | None:
    return utc_timestamp(value) if value is not None else None


class BaseStore(Generic[RecordT]):
    """CRUD over one record type, kept in step across the three backends."""

    kind: ClassVar[RecordKind]
    row_type: ClassVar[type]
    record_type: ClassVar[type[pydantic.BaseModel]]
    create_schema: ClassVar[type[pydantic.BaseModel]]
    update_schema: ClassVar[type[pydantic.BaseModel]]
    # Text fields that feed the embedding, in order
    embedding_fields: ClassVar[tuple[str, ...]]
    sortable_fields: ClassVar[frozenset[str]]
    filterable_fields: ClassVar[frozenset[str]]
    default_sort: ClassVar[str] = "created_at"

    def __init__(
        self,
        database: Database,
        embeddings: EmbeddingService,
        graph: GraphStore | None = None,
        vectors: VectorIndex | None = None,
        collection: str | None = None,
    ):
        self.database = database
        self.embeddings = embeddings
        self.graph = graph
        self.vectors = vectors
        self.collection = collection

    # Validation and conversion

    def _validate(self, schema: type[SchemaT], data: Any) -> SchemaT:
        """Validate ``data`` against ``schema``, reporting every violated field."""
        if isinstance(data, schema):
            return data
        if isinstance(data, pydantic.BaseModel):
            data = data.model_dump(exclude_unset=True)
        try:
            return schema.model_validate(data)
        except pydantic.ValidationError as e:
            raise ValidationError.from_pydantic(e, record_type=self.kind.value) from e

    @staticmethod
    def _values(model: pydantic.BaseModel, exclude_unset: bool = False) -> dict[str, Any]:
        values = model.model_dump(exclude_unset=exclude_unset)
        json_values = model.model_dump(
            mode="json", include=JSON_FIELDS, exclude_unset=exclude_unset
        )
        values.update(json_values)
        return values

    @staticmethod
    def _columns(values: dict[str, Any]) -> dict[str, Any]:
        """Record field names to row attribute names."""
        columns = dict(values)
        if "metadata" in columns:
            columns["meta"] = columns.pop("metadata") or {}
        for key, value in columns.items():
            if isinstance(value, datetime):
                columns[key] = ensure_utc(value)
        return columns

    def _to_record(self, row: Any) -> RecordT:
        data: dict[str, Any] = {}
        for attr in inspect(self.row_type).column_attrs:
            value = getattr(row, attr.key)
            if isinstance(value, datetime):
                value = ensure_utc(value)
            data["metadata" if attr.key == "meta" else attr.key] = value
        data["metadata"] = data.get("metadata") or {}
        data["embedding"] = data.get("embedding") or []
        return self.record_type.model_validate(data)

    def embedding_text(self, values: dict[str, Any]) -> str:
        parts = [values.get(field) for field in self.embedding_fields]
        return " ".join(part.strip() for part in parts if isinstance(part, str) and part.strip())

    # Secondary indexes

    async def _best_effort(
        self,
        index: str,
        operation: str,
        record_id: str,
        action: Callable[[], Awaitable[Any]],
    ) -> bool:
        """Run one secondary-index write; log and swallow any failure."""
        try:
            await action()
            return True
        except Exception as e:
            logger.warning(
                "Secondary index write failed",
                record_type=self.kind.value,
                record_id=record_id,
                index=index,
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    def graph_properties(self, record: RecordT) -> dict[str, Any]:
        return {}

    def vector_payload(self, record: RecordT) -> dict[str, Any]:
        return {}

    async def sync_edges(self, record: RecordT, previous: RecordT | None) -> None:
        """Write the graph edges a record implies. Subclasses override."""

    async def _index_vector(self, record: RecordT) -> None:
        if self.vectors is not None and self.collection:
            if self.embeddings.is_placeholder(record.embedding):
                logger.debug(
                    "Skipping vector index for placeholder embedding",
                    record_type=self.kind.value,
                    record_id=record.id,
                )
            else:
                await self._best_effort(
                    "vector",
                    "upsert",
                    record.id,
                    lambda: self.vectors.upsert(
                        self.collection, record.id, record.embedding, self.vector_payload(record)
                    ),
                )

    async def _sync_secondary(
        self, record: RecordT, previous: RecordT | None = None, reindex: bool = True
    ) -> None:
        if reindex:
            await self._index_vector(record)

        if self.graph is not None:
            properties = self.graph_properties(record)
            await self._best_effort(
                "graph",
                "upsert_node",
                record.id,
                lambda: self.graph.upsert_node(self.kind.value, record.id, properties),
            )
            await self.sync_edges(record, previous)

    async def _link(
        self,
        source_kind: str,
        source_id: str,
        target_kind: str,
        target_id: str,
        rel_type: str,
        properties: dict[str, Any] | None = None,
    ) -> None:
        """Best-effort graph-only edge for links held as columns on the record."""
        if self.graph is None:
            return
        await self._best_effort(
            "graph",
            f"link_{rel_type.lower()}",
            source_id,
            lambda: self.graph.merge_relationship(
                source_kind,
                source_id,
                target_kind,
                target_id,
                rel_type,
                relationship_id=str(uuid.uuid4()),
                properties=properties,
            ),
        )

    # Writes

    async def _embed(self, values: dict[str, Any]) -> list[float]:
        return await self.embeddings.embed_or_placeholder(self.embedding_text(values))

    def prepare_create(self, values: dict[str, Any]) -> dict[str, Any]:
        return values

    def prepare_update(self, existing: RecordT, changes: dict[str, Any]) -> dict[str, Any]:
        return changes

    async def create(self, data: Any) -> RecordT:
        """Validate, embed, insert, then update the secondary indexes."""
        validated = self._validate(self.create_schema, data)
        values = self.prepare_create(self._values(validated))
        embedding = await self._embed(values)
        return await self._insert(values, embedding)

    async def _insert(self, values: dict[str, Any], embedding: list[float]) -> RecordT:
        start_time = time.perf_counter()
        now = utc_now()
        row = self.row_type(
            id=str(uuid.uuid4()),
            embedding=embedding,
            created_at=now,
            updated_at=now,
            **self._columns(values),
        )
        async with self.database.transaction(f"create_{self.kind.value}") as session:
            session.add(row)

        record = self._to_record(row)
        logger.info(
            "Record created",
            record_type=self.kind.value,
            record_id=record.id,
            placeholder_embedding=self.embeddings.is_placeholder(embedding),
            operation_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        await self._sync_secondary(record)
        return record

    async def update(self, record_id: str, data: Any) -> RecordT:
        """Merge ``data`` over a live record.

        The embedding is regenerated when a text field that feeds it changes,
        or when the stored one is a placeholder. Metadata keys are merged into
        the existing map rather than replacing it.
        """
        validated = self._validate(self.update_schema, data)
        changes = self._values(validated, exclude_unset=True)
        existing = await self.get(record_id)

        if "metadata" in changes:
            changes["metadata"] = {**existing.metadata, **(changes["metadata"] or {})}
        changes = self.prepare_update(existing, changes)

        text_changed = any(
            field in changes and changes[field] != getattr(existing, field)
            for field in self.embedding_fields
        )
        reindex = text_changed or self.embeddings.is_placeholder(existing.embedding)
        if reindex:
            merged = existing.model_dump() | changes
            changes["embedding"] = await self._embed(merged)

        async with self.database.transaction(f"update_{self.kind.value}") as session:
            row = await session.get(self.row_type, record_id)
            if row is None or row.deleted_at is not None:
                raise NotFoundError(self.kind.value, record_id)
            for key, value in self._columns(changes).items():
                setattr(row, key, value)
            row.updated_at = utc_now()

        record = self._to_record(row)
        logger.info(
            "Record updated",
            record_type=self.kind.value,
            record_id=record_id,
            fields=sorted(changes),
            reembedded=reindex,
        )
        await self._sync_secondary(record, previous=existing, reindex=reindex)
        return record

    async def delete(self, record_id: str) -> None:
        """Soft delete: stamp ``deleted_at`` so default reads skip the record."""
        now = utc_now()
        async with self.database.transaction(f"delete_{self.kind.value}") as session:
            row = await session.get(self.row_type, record_id)
            if row is None or row.deleted_at is not None:
                raise NotFoundError(self.kind.value, record_id)
            row.deleted_at = now
            row.updated_at = now

        logger.info("Record soft-deleted", record_type=self.kind.value, record_id=record_id)
        # Restore re-indexes from the row's embedding
        if self.vectors is not None and self.collection:
            await self._best_effort(
                "vector",
                "delete",
                record_id,
                lambda: self.vectors.delete(self.collection, record_id),
            )
        if self.graph is not None:
            await self._best_effort(
                "graph",
                "mark_deleted",
                record_id,
                lambda: self.graph.upsert_node(
                    self.kind.value, record_id, {"deleted_at": iso(now)}
                ),
            )

    async def restore(self, record_id: str) -> RecordT:
        """Undo a soft delete."""
        async with self.database.transaction(f"restore_{self.kind.value}") as session:
            row = await session.get(self.row_type, record_id)
            if row is None:
                raise NotFoundError(self.kind.value, record_id)
            row.deleted_at = None
            row.updated_at = utc_now()

        record = self._to_record(row)
        logger.info("Record restored", record_type=self.kind.value, record_id=record_id)
        await self._index_vector(record)
        if self.graph is not None:
            await self._best_effort(
                "graph",
                "restore",
                record_id,
                lambda: self.graph.run(
                    "MATCH (n {id: $id}) REMOVE n.deleted_at", {"id": record_id}
                ),
            )
        return record

    async def detach_references(self, session: Any, record_id: str) -> None:
        """Clear links to ``record_id`` held as columns on other records. Subclasses override."""

    async def hard_delete(self, record_id: str) -> None:
        """Physically remove the row, every relationship touching it and column links to it."""
        async with self.database.transaction(f"hard_delete_{self.kind.value}") as session:
            row = await session.get(self.row_type, record_id)
            if row is None:
                raise NotFoundError(self.kind.value, record_id)
            await self.detach_references(session, record_id)
            await session.delete(row)
            await session.execute(
                delete(RelationshipRow).where(
                    or_(
                        RelationshipRow.source_id == record_id,
                        RelationshipRow.target_id == record_id,
                    )
                )
            )

        logger.info("Record purged", record_type=self.kind.value, record_id=record_id)
        await self._purge_secondary(record_id)

    async def _purge_secondary(self, record_id: str) -> None:
        if self.vectors is not None and self.collection:
            await self._best_effort(
                "vector",
                "delete",
                record_id,
                lambda: self.vectors.delete(self.collection, record_id),
            )
        if self.graph is not None:
            await self._best_effort(
                "graph",
                "delete_node",
                record_id,
                lambda: self.graph.delete_node(self.kind.value, record_id),
            )

    # Reads

    async def find_by_id(
        self, record_id: str, include_deleted: bool = False
    ) -> RecordT | None:
        async with self.database.session(f"find_{self.kind.value}") as session:
            row = await session.get(self.row_type, record_id)
        if row is None or (row.deleted_at is not None and not include_deleted):
            return None
        return self._to_record(row)

    async def get(self, record_id: str, include_deleted: bool = False) -> RecordT:
        """Like ``find_by_id`` but raises ``NotFoundError``."""
        record = await self.find_by_id(record_id, include_deleted=include_deleted)
        if record is None:
            raise NotFoundError(self.kind.value, record_id)
        return record

    async def find_by_ids(self, record_ids: Iterable[str]) -> list[RecordT]:
        """Live records among ``record_ids``, in the order given."""
        ids = list(dict.fromkeys(record_ids))
        if not ids:
            return []
        query = select(self.row_type).where(
            self.row_type.id.in_(ids), self.row_type.deleted_at.is_(None)
        )
        async with self.database.session(f"find_{self.kind.value}_by_ids") as session:
            rows = (await session.execute(query)).scalars().all()
        by_id = {row.id: self._to_record(row) for row in rows}
        return [by_id[record_id] for record_id in ids if record_id in by_id]

    def _query(self, filters: dict[str, Any] | None, include_deleted: bool, conditions=()):
        query = select(self.row_type)
        if not include_deleted:
            query = query.where(self.row_type.deleted_at.is_(None))
        for key, value in (filters or {}).items():
            if key not in self.filterable_fields:
                raise ValidationError.single(
                    f"filters.{key}", "not a filterable field", record_type=self.kind.value
                )
            query = query.where(getattr(self.row_type, key) == value)
        for condition in conditions:
            query = query.where(condition)
        return query

    async def find_all(
        self,
        filters: dict[str, Any] | None = None,
        *,
        page: int = 1,
        page_size: int = 10,
        sort_by: str | None = None,
        sort_order: str = "desc",
        include_deleted: bool = False,
        conditions=(),
    ) -> Page[RecordT]:
        """One page of records matching ``filters`` (exact-match on columns)."""
        request = self._validate(
            PageRequest,
            {
                "page": page,
                "page_size": page_size,
                "sort_by": sort_by,
                "sort_order": sort_order,
                "include_deleted": include_deleted,
            },
        )
        sort_field = request.sort_by or self.default_sort
        if sort_field not in self.sortable_fields:
            raise ValidationError.single(
                "sort_by",
                f"must be one of {sorted(self.sortable_fields)}",
                record_type=self.kind.value,
            )

        query = self._query(filters, request.include_deleted, conditions)
        direction = desc if request.sort_order == "desc" else asc
        paged = (
            query.order_by(direction(getattr(self.row_type, sort_field)), asc(self.row_type.id))
            .offset((request.page - 1) * request.page_size)
            .limit(request.page_size)
        )

        async with self.database.session(f"find_all_{self.kind.value}") as session:
            total = (
                await session.execute(select(func.count()).select_from(query.subquery()))
            ).scalar_one()
            rows = (await session.execute(paged)).scalars().all()

        return Page[self.record_type](
            data=[self._to_record(row) for row in rows],
            pagination=PaginationInfo.build(request.page, request.page_size, total),
        )

    async def scan(self, filters: dict[str, Any] | None = None, conditions=()) -> list[RecordT]:
        """Every live record matching ``filters``, oldest first."""
        query = self._query(filters, False, conditions).order_by(
            asc(self.row_type.created_at), asc(self.row_type.id)
        )
        async with self.database.session(f"scan_{self.kind.value}") as session:
            rows = (await session.execute(query)).scalars().all()
        return [self._to_record(row) for row in rows]
