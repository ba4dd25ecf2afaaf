"""Neo4j-backed segment store."""

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from neo4j import AsyncDriver, AsyncManagedTransaction, AsyncSession
from neo4j.time import DateTime

from chayo_memory.core.base import ErrorLevel
from chayo_memory.core.decorators import with_error_handling, with_session
from chayo_memory.core.errors import DimensionMismatchError
from chayo_memory.core.logging import get_logger
from chayo_memory.domain.models import MemorySegment, ScoredSegment, SegmentStats
from chayo_memory.infrastructure.neo4j.driver import translate_neo4j_errors
from chayo_memory.infrastructure.neo4j.queries import SegmentQueries

logger = get_logger(__name__)

# Stored as top-level node properties so Cypher can filter on them
_NODE_METADATA_KEYS = ("superseded_by", "superseded_at")


def _to_native(value: Any) -> Any:
    return value.to_native() if isinstance(value, DateTime) else value


def segment_to_properties(segment: MemorySegment) -> dict[str, Any]:
    """Flatten a segment into Neo4j node properties."""
    metadata = segment.metadata.model_dump(mode="json", exclude={"superseded_by", "superseded_at"})
    return {
        "id": str(segment.id),
        "organization_id": segment.organization_id,
        "text": segment.text,
        "embedding": segment.embedding,
        "kind": segment.kind.value,
        "source": segment.metadata.source,
        "metadata_json": json.dumps(metadata),
        "created_at": segment.created_at,
        "superseded_by": str(segment.metadata.superseded_by) if segment.metadata.superseded_by else None,
        "superseded_at": segment.metadata.superseded_at,
    }


def node_to_segment(node: Any) -> MemorySegment:
    """Rebuild a segment from a node returned by any segment query."""
    properties = dict(node)
    metadata = json.loads(properties.get("metadata_json") or "{}")
    metadata.setdefault("kind", properties.get("kind"))
    for key in _NODE_METADATA_KEYS:
        metadata[key] = _to_native(properties.get(key))

    return MemorySegment.model_validate(
        {
            "id": properties["id"],
            "organization_id": properties["organization_id"],
            "text": properties["text"],
            "embedding": list(properties["embedding"]),
            "metadata": metadata,
            "created_at": _to_native(properties["created_at"]),
        }
    )


class Neo4jSegmentStore:
    """Segments as ``(:MemorySegment)`` nodes.

    Similarity is computed exactly over one organization's nodes, so results
    are never approximated or filtered after the fact.
    """

    def __init__(self, driver: AsyncDriver, dimensions: int):
        self.driver = driver
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _check_dimensions(self, embedding: list[float], operation: str) -> None:
        if len(embedding) != self._dimensions:
            raise DimensionMismatchError(
                expected=self._dimensions,
                actual=len(embedding),
                source="neo4j_store",
                operation=operation,
            )

    @staticmethod
    async def _insert_tx(tx: AsyncManagedTransaction, rows: list[dict[str, Any]]) -> int:
        result = await tx.run(SegmentQueries.insert_many(), segments=rows)
        record = await result.single()
        return record["created"] if record else 0

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    @with_session()
    async def insert(self, session: AsyncSession, segments: list[MemorySegment]) -> list[MemorySegment]:
        if not segments:
            return []
        for segment in segments:
            self._check_dimensions(segment.embedding, "insert")

        rows = [segment_to_properties(segment) for segment in segments]
        # One write transaction: every segment is committed or none is
        async with translate_neo4j_errors("insert", segments[0].organization_id, "insert"):
            created = await session.execute_write(self._insert_tx, rows)

        logger.debug(f"Stored {created} segment(s)", extra={"organization_id": segments[0].organization_id})
        return segments

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    @with_session()
    async def search(
        self,
        session: AsyncSession,
        organization_id: str,
        embedding: list[float],
        threshold: float,
        limit: int,
        include_superseded: bool = False,
    ) -> list[ScoredSegment]:
        self._check_dimensions(embedding, "search")
        async with translate_neo4j_errors("search", organization_id, "search"):
            result = await session.run(
                SegmentQueries.similarity_search(),
                organization_id=organization_id,
                embedding=embedding,
                threshold=threshold,
                limit=limit,
                include_superseded=include_superseded,
            )
            return [
                ScoredSegment(segment=node_to_segment(record["s"]), score=float(record["score"]))
                async for record in result
            ]

    @with_session()
    async def get(self, session: AsyncSession, organization_id: str, segment_id: UUID) -> MemorySegment | None:
        async with translate_neo4j_errors("get", organization_id, "read"):
            result = await session.run(SegmentQueries.get_by_id(), organization_id=organization_id, id=str(segment_id))
            record = await result.single()
        return node_to_segment(record["s"]) if record else None

    @with_session()
    async def list_recent(
        self, session: AsyncSession, organization_id: str, limit: int, include_superseded: bool = False
    ) -> list[MemorySegment]:
        async with translate_neo4j_errors("list_recent", organization_id, "read"):
            result = await session.run(
                SegmentQueries.list_recent(),
                organization_id=organization_id,
                limit=limit,
                include_superseded=include_superseded,
            )
            return [node_to_segment(record["s"]) async for record in result]

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    @with_session()
    async def mark_superseded(
        self,
        session: AsyncSession,
        organization_id: str,
        segment_id: UUID,
        superseded_by: UUID,
        superseded_at: datetime,
    ) -> MemorySegment | None:
        async with translate_neo4j_errors("mark_superseded", organization_id, "update"):
            result = await session.run(
                SegmentQueries.mark_superseded(),
                organization_id=organization_id,
                id=str(segment_id),
                superseded_by=str(superseded_by),
                superseded_at=superseded_at,
            )
            record = await result.single()
        return node_to_segment(record["s"]) if record else None

    @staticmethod
    async def _insert_superseding_tx(
        tx: AsyncManagedTransaction,
        tagged_row: dict[str, Any],
        untagged_row: dict[str, Any],
        superseded_id: str,
        superseded_at: datetime,
    ) -> bool:
        result = await tx.run(
            SegmentQueries.mark_superseded(),
            organization_id=tagged_row["organization_id"],
            id=superseded_id,
            superseded_by=tagged_row["id"],
            superseded_at=superseded_at,
        )
        replaced = await result.single() is not None
        await tx.run(SegmentQueries.insert_many(), segments=[tagged_row if replaced else untagged_row])
        return replaced

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    @with_session()
    async def insert_superseding(
        self,
        session: AsyncSession,
        segment: MemorySegment,
        superseded_id: UUID,
        superseded_at: datetime,
    ) -> tuple[MemorySegment, bool]:
        self._check_dimensions(segment.embedding, "insert_superseding")
        tagged = segment.model_copy(
            update={"metadata": segment.metadata.model_copy(update={"supersedes": superseded_id})}
        )
        untagged = segment.model_copy(update={"metadata": segment.metadata.model_copy(update={"supersedes": None})})

        # Tag and insert share one write transaction; a failure in either rolls back both
        async with translate_neo4j_errors("insert_superseding", segment.organization_id, "update"):
            replaced = await session.execute_write(
                self._insert_superseding_tx,
                segment_to_properties(tagged),
                segment_to_properties(untagged),
                str(superseded_id),
                superseded_at,
            )
        return (tagged if replaced else untagged), replaced

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    @with_session()
    async def delete(self, session: AsyncSession, organization_id: str, segment_id: UUID) -> bool:
        async with translate_neo4j_errors("delete", organization_id, "delete"):
            result = await session.run(SegmentQueries.delete_by_id(), organization_id=organization_id, id=str(segment_id))
            record = await result.single()
        return bool(record and record["deleted"])

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    @with_session()
    async def delete_organization(self, session: AsyncSession, organization_id: str) -> int:
        async with translate_neo4j_errors("delete_organization", organization_id, "delete"):
            result = await session.run(SegmentQueries.delete_organization(), organization_id=organization_id)
            record = await result.single()
        deleted = int(record["deleted"]) if record else 0
        logger.info(f"Deleted {deleted} segment(s)", extra={"organization_id": organization_id})
        return deleted

    @with_session()
    async def stats(self, session: AsyncSession, organization_id: str) -> SegmentStats:
        async with translate_neo4j_errors("stats", organization_id, "aggregate"):
            result = await session.run(SegmentQueries.stats(), organization_id=organization_id)
            rows = [record async for record in result]

        stats = SegmentStats()
        for row in rows:
            oldest, newest = _to_native(row["oldest"]), _to_native(row["newest"])
            stats = SegmentStats(
                total=stats.total + row["total"],
                superseded=stats.superseded + row["superseded"],
                by_kind={**stats.by_kind, row["kind"]: row["total"]},
                oldest=min(d for d in (stats.oldest, oldest) if d is not None) if (stats.oldest or oldest) else None,
                newest=max(d for d in (stats.newest, newest) if d is not None) if (stats.newest or newest) else None,
            )
        return stats
