"""Entity store: people, organizations, places and concepts.

On top of the shared CRUD this store owns the relationship table, the
advisory duplicate check run before every create, similarity search and
merging of duplicates.
"""

import time
import uuid
from typing import Any

from sqlalchemy import String, cast, func, or_, select

from ..db.relational import EntityRow, EventRow, RelationshipRow, TaskRow
from ..errors import NotFoundError, ProviderError
from ..logging import get_logger
from ..schemas.records import (
    Entity,
    EntityCreate,
    EntityCreation,
    EntityType,
    EntityUpdate,
    RecordKind,
    Relationship,
    RelationshipCreate,
    RelationshipType,
    SimilarEntity,
)
from ..utils.time import ensure_utc, utc_now
from ..utils.vectors import cosine_similarity
from .base import BaseStore, iso

logger = get_logger("stores.entities")

MAX_OVERSAMPLE = 16


class EntityStore(BaseStore[Entity]):
    kind = RecordKind.ENTITY
    row_type = EntityRow
    record_type = Entity
    create_schema = EntityCreate
    update_schema = EntityUpdate
    embedding_fields = ("name", "description")
    sortable_fields = frozenset({"name", "type", "created_at", "updated_at", "last_seen_at"})
    filterable_fields = frozenset({"name", "type"})

    def __init__(
        self,
        *args,
        duplicate_threshold: float = 0.85,
        duplicate_limit: int = 5,
        similarity_threshold: float = 0.7,
        **kwargs,
    ):
        super().__init__(*args, **kwargs)
        self.duplicate_threshold = duplicate_threshold
        self.duplicate_limit = duplicate_limit
        self.similarity_threshold = similarity_threshold

    def graph_properties(self, record: Entity) -> dict[str, Any]:
        return {
            "name": record.name,
            "type": record.type.value,
            "description": record.description,
            "created_at": iso(record.created_at),
            "updated_at": iso(record.updated_at),
            "last_seen_at": iso(record.last_seen_at),
        }

    def vector_payload(self, record: Entity) -> dict[str, Any]:
        return {"name": record.name, "type": record.type.value}

    # Creation with duplicate detection

    async def create(self, data: Any) -> Entity:
        return (await self.create_checked(data)).entity

    async def create_checked(self, data: Any) -> EntityCreation:
        """Create an entity and report near-duplicates of the same type.

        Duplicates never block creation; the caller decides whether to merge.
        """
        validated = self._validate(self.create_schema, data)
        values = self._values(validated)
        embedding = await self._embed(values)

        duplicates: list[SimilarEntity] = []
        if not self.embeddings.is_placeholder(embedding):
            duplicates = await self._similar_to(
                embedding,
                limit=self.duplicate_limit,
                threshold=self.duplicate_threshold,
                entity_type=validated.type,
            )
        if duplicates:
            logger.warning(
                "Possible duplicate entities",
                name=validated.name,
                entity_type=validated.type.value,
                candidates=[
                    {"id": d.entity.id, "name": d.entity.name, "similarity": round(d.similarity, 3)}
                    for d in duplicates
                ],
            )

        entity = await self._insert(values, embedding)
        return EntityCreation(entity=entity, duplicates=duplicates)

    async def find_potential_duplicates(
        self, name: str, entity_type: EntityType | str, description: str | None = None
    ) -> list[SimilarEntity]:
        try:
            embedding = await self.embeddings.embed(
                self.embedding_text({"name": name, "description": description})
            )
        except ProviderError as e:
            logger.warning("Duplicate check skipped, embedding failed", name=name, error=str(e))
            return []
        return await self._similar_to(
            embedding,
            limit=self.duplicate_limit,
            threshold=self.duplicate_threshold,
            entity_type=EntityType(entity_type),
        )

    async def find_by_name(
        self, name: str, entity_type: EntityType | str | None = None
    ) -> Entity | None:
        """Case-insensitive exact match among live entities; oldest wins."""
        query = select(EntityRow).where(
            func.lower(EntityRow.name) == name.strip().lower(),
            EntityRow.deleted_at.is_(None),
        )
        if entity_type is not None:
            query = query.where(EntityRow.type == EntityType(entity_type).value)
        query = query.order_by(EntityRow.created_at, EntityRow.id).limit(1)

        async with self.database.session("find_entity_by_name") as session:
            row = (await session.execute(query)).scalars().first()
        return self._to_record(row) if row is not None else None

    # Similarity search

    async def find_similar(
        self,
        text: str,
        limit: int = 10,
        threshold: float | None = None,
        entity_type: EntityType | str | None = None,
    ) -> list[SimilarEntity]:
        """Entities whose embedding is close to ``text``, most similar first."""
        try:
            embedding = await self.embeddings.embed(text)
        except ProviderError as e:
            logger.warning("Similarity search skipped, embedding failed", error=str(e))
            return []
        return await self._similar_to(
            embedding,
            limit=limit,
            threshold=self.similarity_threshold if threshold is None else threshold,
            entity_type=EntityType(entity_type) if entity_type else None,
        )

    async def _similar_to(
        self,
        embedding: list[float],
        limit: int,
        threshold: float,
        entity_type: EntityType | None = None,
    ) -> list[SimilarEntity]:
        start_time = time.perf_counter()
        fetch = limit * 2
        while True:
            scores = await self._nearest(embedding, fetch, entity_type)
            wanted = {entity_id: score for entity_id, score in scores if score >= threshold}
            # Points whose vector delete failed can outlive their live row
            entities = await self.find_by_ids(wanted)
            exhausted = len(scores) < fetch or len(wanted) < len(scores)
            if len(entities) >= limit or exhausted or fetch >= limit * MAX_OVERSAMPLE:
                break
            fetch *= 2

        matches = sorted(
            (SimilarEntity(entity=entity, similarity=wanted[entity.id]) for entity in entities),
            key=lambda match: (-match.similarity, match.entity.id),
        )[:limit]

        logger.debug(
            "Similarity search completed",
            candidates=len(scores),
            matches=len(matches),
            threshold=threshold,
            search_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return matches

    async def _nearest(
        self, embedding: list[float], limit: int, entity_type: EntityType | None
    ) -> list[tuple[str, float]]:
        """(id, similarity) pairs from the vector index, or a relational scan if it fails."""
        if self.vectors is not None and self.collection:
            filters = {"type": entity_type.value} if entity_type else None
            try:
                matches = await self.vectors.query(self.collection, embedding, limit, filters)
                return [(match.id, match.score) for match in matches]
            except Exception as e:
                logger.warning(
                    "Vector query failed, scanning relational store",
                    index="vector",
                    collection=self.collection,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        filters = {"type": entity_type.value} if entity_type else None
        scored = [
            (entity.id, cosine_similarity(embedding, entity.embedding))
            for entity in await self.scan(filters)
        ]
        scored.sort(key=lambda pair: (-pair[1], pair[0]))
        return scored[:limit]

    # Relationships

    @staticmethod
    def _to_relationship(row: RelationshipRow) -> Relationship:
        return Relationship(
            id=row.id,
            source_id=row.source_id,
            source_kind=row.source_kind,
            target_id=row.target_id,
            target_kind=row.target_kind,
            type=row.type,
            weight=row.weight,
            metadata=row.meta or {},
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )

    async def _mirror_relationship(self, relationship: Relationship) -> None:
        if self.graph is None:
            return
        await self._best_effort(
            "graph",
            "merge_relationship",
            relationship.id,
            lambda: self.graph.merge_relationship(
                relationship.source_kind.value,
                relationship.source_id,
                relationship.target_kind.value,
                relationship.target_id,
                relationship.type.value,
                relationship_id=relationship.id,
                weight=relationship.weight,
                properties=relationship.metadata,
            ),
        )

    async def create_relationship(self, data: Any) -> Relationship:
        """Assert a typed, directed edge.

        Re-asserting an existing (source, target, type) edge increments its
        weight and merges its metadata instead of adding a second edge.
        Entity endpoints must be live entities.
        """
        validated = self._validate(RelationshipCreate, data)
        now = utc_now()

        async with self.database.transaction("create_relationship") as session:
            for endpoint_id, endpoint_kind in (
                (validated.source_id, validated.source_kind),
                (validated.target_id, validated.target_kind),
            ):
                if endpoint_kind == RecordKind.ENTITY:
                    endpoint = await session.get(EntityRow, endpoint_id)
                    if endpoint is None or endpoint.deleted_at is not None:
                        raise NotFoundError(RecordKind.ENTITY.value, endpoint_id)

            row = (
                await session.execute(
                    select(RelationshipRow).where(
                        RelationshipRow.source_id == validated.source_id,
                        RelationshipRow.target_id == validated.target_id,
                        RelationshipRow.type == validated.type.value,
                    )
                )
            ).scalar_one_or_none()

            if row is None:
                row = RelationshipRow(
                    id=str(uuid.uuid4()),
                    source_id=validated.source_id,
                    source_kind=validated.source_kind.value,
                    target_id=validated.target_id,
                    target_kind=validated.target_kind.value,
                    type=validated.type.value,
                    weight=1,
                    meta=validated.metadata,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
            else:
                row.weight = row.weight + 1
                row.meta = {**(row.meta or {}), **validated.metadata}
                row.updated_at = now

        relationship = self._to_relationship(row)
        logger.info(
            "Relationship asserted",
            relationship_id=relationship.id,
            source_id=relationship.source_id,
            target_id=relationship.target_id,
            relationship_type=relationship.type.value,
            weight=relationship.weight,
        )
        await self._mirror_relationship(relationship)
        return relationship

    async def get_relationships(
        self,
        entity_id: str,
        relationship_type: RelationshipType | str | None = None,
        direction: str = "both",
    ) -> list[Relationship]:
        """Edges touching ``entity_id``, heaviest first."""
        if direction == "outgoing":
            touches = RelationshipRow.source_id == entity_id
        elif direction == "incoming":
            touches = RelationshipRow.target_id == entity_id
        else:
            touches = or_(
                RelationshipRow.source_id == entity_id,
                RelationshipRow.target_id == entity_id,
            )

        query = select(RelationshipRow).where(touches)
        if relationship_type is not None:
            query = query.where(
                RelationshipRow.type == RelationshipType(relationship_type).value
            )
        query = query.order_by(
            RelationshipRow.weight.desc(), RelationshipRow.created_at, RelationshipRow.id
        )

        async with self.database.session("get_relationships") as session:
            rows = (await session.execute(query)).scalars().all()
        return [self._to_relationship(row) for row in rows]

    async def remove_relationship(self, relationship_id: str) -> None:
        async with self.database.transaction("remove_relationship") as session:
            row = await session.get(RelationshipRow, relationship_id)
            if row is None:
                raise NotFoundError("relationship", relationship_id)
            await session.delete(row)

        logger.info("Relationship removed", relationship_id=relationship_id)
        if self.graph is not None:
            await self._best_effort(
                "graph",
                "delete_relationship",
                relationship_id,
                lambda: self.graph.delete_relationship(relationship_id),
            )

    # Duplicate resolution

    async def _repoint_references(
        self, session: Any, old_id: str, new_id: str | None
    ) -> list[tuple[str, str, str, str, str, dict[str, Any] | None]]:
        """Move event participations and task links from ``old_id`` to ``new_id``.

        With ``new_id`` None the references are dropped instead. Returns the
        graph edges (source kind, source id, target kind, target id, type,
        properties) the moved references imply.
        """
        now = utc_now()
        links = []

        events = (
            await session.execute(
                select(EventRow).where(cast(EventRow.participants, String).contains(old_id))
            )
        ).scalars().all()
        for row in events:
            participants = row.participants or []
            if not any(p.get("entity_id") == old_id for p in participants):
                continue
            kept: list[dict[str, Any]] = []
            seen: set[str] = set()
            for participant in participants:
                if participant.get("entity_id") == old_id:
                    if new_id is None:
                        continue
                    participant = {**participant, "entity_id": new_id}
                if participant["entity_id"] in seen:
                    continue
                seen.add(participant["entity_id"])
                kept.append(participant)
                if new_id is not None and participant["entity_id"] == new_id:
                    links.append(
                        (
                            RecordKind.ENTITY.value,
                            new_id,
                            RecordKind.EVENT.value,
                            row.id,
                            RelationshipType.ATTENDED.value,
                            {"role": participant.get("role")},
                        )
                    )
            row.participants = kept
            row.updated_at = now

        tasks = (
            await session.execute(
                select(TaskRow).where(
                    or_(TaskRow.assignee_id == old_id, TaskRow.related_entity_id == old_id)
                )
            )
        ).scalars().all()
        for row in tasks:
            if row.assignee_id == old_id:
                row.assignee_id = new_id
                if new_id is not None:
                    links.append(
                        (
                            RecordKind.ENTITY.value,
                            new_id,
                            RecordKind.TASK.value,
                            row.id,
                            RelationshipType.ASSIGNED_TO.value,
                            None,
                        )
                    )
            if row.related_entity_id == old_id:
                row.related_entity_id = new_id
                if new_id is not None:
                    links.append(
                        (
                            RecordKind.TASK.value,
                            row.id,
                            RecordKind.ENTITY.value,
                            new_id,
                            RelationshipType.RELATED_TO.value,
                            None,
                        )
                    )
            row.updated_at = now

        return links

    async def detach_references(self, session: Any, record_id: str) -> None:
        await self._repoint_references(session, record_id, None)

    async def merge_entities(
        self, primary_id: str, duplicate_ids: list[str], merge_metadata: bool = True
    ) -> Entity:
        """Fold ``duplicate_ids`` into ``primary_id``.

        Relationships are re-pointed at the primary. Re-pointed edges that
        collide with an existing primary edge are collapsed into it (weights
        added) and edges that would become self-loops are dropped. Duplicate
        metadata fills keys the primary lacks and ``merged_from`` records the
        absorbed ids. Event participations and task assignments held as
        columns move to the primary too. The duplicates are then purged.
        """
        primary = await self.get(primary_id)
        duplicates = [
            await self.get(duplicate_id)
            for duplicate_id in dict.fromkeys(duplicate_ids)
            if duplicate_id != primary_id
        ]
        if not duplicates:
            return primary

        now = utc_now()
        touched: dict[str, RelationshipRow] = {}
        dropped: set[str] = set()
        links = []

        async with self.database.transaction("merge_entities") as session:
            for duplicate in duplicates:
                links.extend(await self._repoint_references(session, duplicate.id, primary_id))
                rows = (
                    await session.execute(
                        select(RelationshipRow).where(
                            or_(
                                RelationshipRow.source_id == duplicate.id,
                                RelationshipRow.target_id == duplicate.id,
                            )
                        )
                    )
                ).scalars().all()

                for row in rows:
                    source_id = primary_id if row.source_id == duplicate.id else row.source_id
                    target_id = primary_id if row.target_id == duplicate.id else row.target_id

                    if source_id == target_id:
                        dropped.add(row.id)
                        await session.delete(row)
                        continue

                    existing = (
                        await session.execute(
                            select(RelationshipRow).where(
                                RelationshipRow.source_id == source_id,
                                RelationshipRow.target_id == target_id,
                                RelationshipRow.type == row.type,
                                RelationshipRow.id != row.id,
                            )
                        )
                    ).scalar_one_or_none()

                    if existing is not None:
                        existing.weight = existing.weight + row.weight
                        existing.meta = {**(row.meta or {}), **(existing.meta or {})}
                        existing.updated_at = now
                        touched[existing.id] = existing
                        dropped.add(row.id)
                        await session.delete(row)
                    else:
                        row.source_id = source_id
                        row.target_id = target_id
                        row.updated_at = now
                        touched[row.id] = row

            primary_row = await session.get(EntityRow, primary_id)
            if merge_metadata:
                metadata: dict[str, Any] = {}
                for duplicate in duplicates:
                    metadata.update(duplicate.metadata)
                metadata.update(primary.metadata)
                merged_from = list(primary.metadata.get("merged_from", []))
                merged_from.extend(d.id for d in duplicates if d.id not in merged_from)
                metadata["merged_from"] = merged_from
                primary_row.meta = metadata
            primary_row.updated_at = now

            for duplicate in duplicates:
                await session.delete(await session.get(EntityRow, duplicate.id))

        logger.info(
            "Entities merged",
            primary_id=primary_id,
            duplicate_ids=[d.id for d in duplicates],
            relationships_moved=len(touched),
            relationships_dropped=len(dropped),
            references_moved=len(links),
        )

        for duplicate in duplicates:
            await self._purge_secondary(duplicate.id)
        for row in touched.values():
            if row.id not in dropped:
                await self._mirror_relationship(self._to_relationship(row))
        for link in links:
            await self._link(*link)

        return await self.get(primary_id)
