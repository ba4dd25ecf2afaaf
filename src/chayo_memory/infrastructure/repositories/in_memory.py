"""Process-local segment store backed by numpy.

Used for development and tests. Behaves like the Neo4j store: same tenant
partitioning, same ordering, same dimension check, atomic inserts.
"""

import asyncio
from datetime import datetime, timedelta
from uuid import UUID

import numpy as np

from chayo_memory.core.errors import DimensionMismatchError
from chayo_memory.core.logging import get_logger
from chayo_memory.domain.models import MemorySegment, ScoredSegment, SegmentStats
from chayo_memory.domain.models.utils import utc_now

logger = get_logger(__name__)


def cosine_similarity(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    """Cosine of each row of ``matrix`` against ``vector``; zero vectors score 0."""
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(vector)
    dots = matrix @ vector
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0, dots / norms, 0.0)
    return scores


class InMemorySegmentStore:
    def __init__(self, dimensions: int):
        if dimensions <= 0:
            raise ValueError("dimensions must be positive")
        self._dimensions = dimensions
        self._segments: dict[str, dict[UUID, MemorySegment]] = {}
        self._lock = asyncio.Lock()
        self._last_created_at: datetime | None = None

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _check_dimensions(self, embedding: list[float], operation: str) -> None:
        if len(embedding) != self._dimensions:
            raise DimensionMismatchError(
                expected=self._dimensions,
                actual=len(embedding),
                source="in_memory_store",
                operation=operation,
            )

    def _next_created_at(self, requested: datetime) -> datetime:
        # created_at is the only ordering signal, so it never repeats within a process
        candidate = requested
        if self._last_created_at is not None and candidate <= self._last_created_at:
            candidate = self._last_created_at + timedelta(microseconds=1)
        self._last_created_at = candidate
        return candidate

    async def insert(self, segments: list[MemorySegment]) -> list[MemorySegment]:
        for segment in segments:
            self._check_dimensions(segment.embedding, "insert")

        async with self._lock:
            stored = []
            for segment in segments:
                created_at = self._next_created_at(max(segment.created_at, utc_now()))
                stored.append(segment.model_copy(update={"created_at": created_at}))
            for segment in stored:
                self._segments.setdefault(segment.organization_id, {})[segment.id] = segment

        logger.debug(f"Stored {len(stored)} segment(s)", extra={"count": len(stored)})
        return stored

    def _candidates(self, organization_id: str, include_superseded: bool) -> list[MemorySegment]:
        return [
            segment
            for segment in self._segments.get(organization_id, {}).values()
            if include_superseded or segment.is_active
        ]

    async def search(
        self,
        organization_id: str,
        embedding: list[float],
        threshold: float,
        limit: int,
        include_superseded: bool = False,
    ) -> list[ScoredSegment]:
        self._check_dimensions(embedding, "search")
        candidates = self._candidates(organization_id, include_superseded)
        if not candidates or limit <= 0:
            return []

        matrix = np.array([segment.embedding for segment in candidates], dtype=np.float64)
        scores = cosine_similarity(matrix, np.array(embedding, dtype=np.float64))

        scored = [
            ScoredSegment(segment=segment, score=float(score))
            for segment, score in zip(candidates, scores, strict=True)
            if score >= threshold
        ]
        scored.sort(key=lambda item: (item.score, item.segment.created_at), reverse=True)
        return scored[:limit]

    async def get(self, organization_id: str, segment_id: UUID) -> MemorySegment | None:
        return self._segments.get(organization_id, {}).get(segment_id)

    async def list_recent(
        self, organization_id: str, limit: int, include_superseded: bool = False
    ) -> list[MemorySegment]:
        candidates = self._candidates(organization_id, include_superseded)
        candidates.sort(key=lambda segment: segment.created_at, reverse=True)
        return candidates[:limit]

    async def mark_superseded(
        self, organization_id: str, segment_id: UUID, superseded_by: UUID, superseded_at: datetime
    ) -> MemorySegment | None:
        async with self._lock:
            tenant = self._segments.get(organization_id, {})
            segment = tenant.get(segment_id)
            if segment is None or not segment.is_active:
                return None
            tenant[segment_id] = self._tagged(segment, superseded_by, superseded_at)
            return tenant[segment_id]

    def _tagged(self, segment: MemorySegment, superseded_by: UUID, superseded_at: datetime) -> MemorySegment:
        return segment.superseded(by=superseded_by, at=superseded_at)

    async def insert_superseding(
        self, segment: MemorySegment, superseded_id: UUID, superseded_at: datetime
    ) -> tuple[MemorySegment, bool]:
        self._check_dimensions(segment.embedding, "insert_superseding")

        async with self._lock:
            tenant = self._segments.get(segment.organization_id, {})
            target = tenant.get(superseded_id)
            # Both changes are staged before either is applied
            tagged = (
                self._tagged(target, segment.id, superseded_at) if target is not None and target.is_active else None
            )
            metadata = segment.metadata.model_copy(update={"supersedes": superseded_id if tagged is not None else None})
            created_at = self._next_created_at(max(segment.created_at, utc_now()))
            stored = segment.model_copy(update={"metadata": metadata, "created_at": created_at})

            tenant = self._segments.setdefault(segment.organization_id, {})
            tenant[stored.id] = stored
            if tagged is not None:
                tenant[tagged.id] = tagged

        return stored, tagged is not None

    async def delete(self, organization_id: str, segment_id: UUID) -> bool:
        async with self._lock:
            return self._segments.get(organization_id, {}).pop(segment_id, None) is not None

    async def delete_organization(self, organization_id: str) -> int:
        async with self._lock:
            return len(self._segments.pop(organization_id, {}))

    async def stats(self, organization_id: str) -> SegmentStats:
        segments = list(self._segments.get(organization_id, {}).values())
        if not segments:
            return SegmentStats()

        by_kind: dict[str, int] = {}
        for segment in segments:
            by_kind[segment.kind.value] = by_kind.get(segment.kind.value, 0) + 1

        return SegmentStats(
            total=len(segments),
            superseded=sum(1 for segment in segments if not segment.is_active),
            by_kind=by_kind,
            oldest=min(segment.created_at for segment in segments),
            newest=max(segment.created_at for segment in segments),
        )
