"""Graph store over Bolt (Neo4j or Memgraph).

Holds the ``Entity``/``Event``/``Task`` nodes and their typed edges. Every
method raises on failure; callers in the store layer decide whether a graph
failure is fatal (it never is for writes that follow a relational commit).
"""

import re
import time
from typing import Any

from neo4j import AsyncDriver, AsyncGraphDatabase
from neo4j.exceptions import AuthError, ServiceUnavailable

from ..logging import get_logger
from ..utils.time import current_utc

logger = get_logger(__name__)

NODE_LABELS = {"entity": "Entity", "event": "Event", "task": "Task"}

# Labels and relationship types cannot be query parameters, so they are
# interpolated and must match this pattern.
_IDENTIFIER = re.compile(r"^[A-Z][A-Z0-9_]*$")


def _label(kind: str) -> str:
    try:
        return NODE_LABELS[kind]
    except KeyError:
        raise ValueError(f"Unknown node kind: {kind}") from None


def _rel_type(rel_type: str) -> str:
    if not _IDENTIFIER.match(rel_type):
        raise ValueError(f"Invalid relationship type: {rel_type}")
    return rel_type


class GraphStore:
    """Thin async wrapper around the Bolt driver with memory-specific queries."""

    def __init__(
        self,
        uri: str,
        user: str = "",
        password: str = "",
        database: str | None = None,
        connection_timeout: float = 30.0,
    ):
        self.uri = uri
        self.user = user
        self.password = password
        self.database = database
        self.connection_timeout = connection_timeout
        self.driver: AsyncDriver | None = None

    async def connect(self) -> None:
        """Open the driver and verify the server is reachable.

        Raises:
            ServiceUnavailable: If the server cannot be reached
            AuthError: If authentication fails
        """
        auth = (self.user, self.password) if self.user else None
        try:
            self.driver = AsyncGraphDatabase.driver(
                self.uri, auth=auth, connection_timeout=self.connection_timeout
            )
            await self.driver.verify_connectivity()
            logger.info("Connected to graph store", uri=self.uri)
        except (ServiceUnavailable, AuthError) as e:
            logger.error("Failed to connect to graph store", uri=self.uri, error=str(e))
            raise

    async def close(self) -> None:
        if self.driver:
            await self.driver.close()
            self.driver = None
            logger.info("Disconnected from graph store", uri=self.uri)

    async def is_connected(self) -> bool:
        if not self.driver:
            return False
        try:
            await self.driver.verify_connectivity()
            return True
        except Exception as e:
            logger.warning("Graph connectivity check failed", error=str(e))
            return False

    async def run(
        self, query: str, parameters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Run one Cypher statement and return its records as dicts."""
        if not self.driver:
            raise ConnectionError("Graph store is not connected")

        start_time = time.perf_counter()
        async with self.driver.session(database=self.database) as session:
            result = await session.run(query, parameters or {})
            records = [record.data() async for record in result]

        logger.debug(
            "Graph query executed",
            records=len(records),
            query_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )
        return records

    async def upsert_node(self, kind: str, node_id: str, properties: dict[str, Any]) -> None:
        """Create the node or overwrite its properties."""
        query = f"""
        MERGE (n:{_label(kind)} {{id: $id}})
        SET n += $properties
        """
        await self.run(query, {"id": node_id, "properties": _graph_safe(properties)})

    async def delete_node(self, kind: str, node_id: str) -> None:
        query = f"MATCH (n:{_label(kind)} {{id: $id}}) DETACH DELETE n"
        await self.run(query, {"id": node_id})

    async def merge_relationship(
        self,
        source_kind: str,
        source_id: str,
        target_kind: str,
        target_id: str,
        rel_type: str,
        relationship_id: str,
        weight: int = 1,
        properties: dict[str, Any] | None = None,
    ) -> None:
        """Create the typed edge if missing and set its weight and properties.

        The weight comes from the relational row, which owns the count.

        Missing endpoint nodes are created as bare stubs so an edge is never
        lost because the node write for one endpoint failed earlier.
        """
        query = f"""
        MERGE (s:{_label(source_kind)} {{id: $source_id}})
        MERGE (t:{_label(target_kind)} {{id: $target_id}})
        MERGE (s)-[r:{_rel_type(rel_type)}]->(t)
        ON CREATE SET r.id = $relationship_id, r.created_at = $now
        SET r += $properties, r.weight = $weight, r.updated_at = $now
        """
        await self.run(
            query,
            {
                "source_id": source_id,
                "target_id": target_id,
                "relationship_id": relationship_id,
                "weight": weight,
                "properties": _graph_safe(properties or {}),
                "now": current_utc(),
            },
        )

    async def delete_relationship(self, relationship_id: str) -> None:
        await self.run("MATCH ()-[r {id: $id}]->() DELETE r", {"id": relationship_id})

    async def delete_edges(
        self, kind: str, node_id: str, rel_type: str, direction: str = "incoming"
    ) -> None:
        """Remove every ``rel_type`` edge touching one node in one direction."""
        pattern = "<-[r:{t}]-()" if direction == "incoming" else "-[r:{t}]->()"
        query = (
            f"MATCH (n:{_label(kind)} {{id: $id}})"
            + pattern.format(t=_rel_type(rel_type))
            + " DELETE r"
        )
        await self.run(query, {"id": node_id})


def _graph_safe(properties: dict[str, Any]) -> dict[str, Any]:
    """Graph properties must be primitives or lists of primitives."""
    safe: dict[str, Any] = {}
    for key, value in properties.items():
        if value is None:
            continue
        if isinstance(value, str | int | float | bool):
            safe[key] = value
        elif isinstance(value, list) and all(
            isinstance(item, str | int | float | bool) for item in value
        ):
            safe[key] = value
        else:
            safe[key] = str(value)
    return safe
