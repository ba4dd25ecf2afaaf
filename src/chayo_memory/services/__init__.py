"""Service layer interfaces and implementations."""

from datetime import datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

from chayo_memory.domain.models import (
    EmbeddingRequest,
    MemorySegment,
    Organization,
    ScoredSegment,
    SegmentStats,
)


@runtime_checkable
class EmbeddingGenerator(Protocol):
    """Protocol for embedding generators.

    One vector per item, in input order, all or nothing.
    """

    @property
    def dimensions(self) -> int: ...

    async def generate_embeddings(self, items: list[EmbeddingRequest]) -> list[list[float]]:
        """Generate embeddings for multiple items."""
        ...

    async def embed_query(self, text: str) -> list[float]:
        """Generate an embedding for a search query."""
        ...


@runtime_checkable
class VectorStore(Protocol):
    """Protocol for tenant-partitioned segment storage with similarity search."""

    @property
    def dimensions(self) -> int: ...

    async def insert(self, segments: list[MemorySegment]) -> list[MemorySegment]:
        """Persist all segments or none of them."""
        ...

    async def search(
        self,
        organization_id: str,
        embedding: list[float],
        threshold: float,
        limit: int,
        include_superseded: bool = False,
    ) -> list[ScoredSegment]:
        """Segments scoring at least ``threshold``, best first, newest first on ties."""
        ...

    async def get(self, organization_id: str, segment_id: UUID) -> MemorySegment | None: ...

    async def list_recent(
        self, organization_id: str, limit: int, include_superseded: bool = False
    ) -> list[MemorySegment]: ...

    async def mark_superseded(
        self, organization_id: str, segment_id: UUID, superseded_by: UUID, superseded_at: datetime
    ) -> MemorySegment | None:
        """Tag an active segment as replaced; None if it is missing or already superseded."""
        ...

    async def insert_superseding(
        self, segment: MemorySegment, superseded_id: UUID, superseded_at: datetime
    ) -> tuple[MemorySegment, bool]:
        """Insert ``segment`` and tag ``superseded_id`` as replaced by it, atomically.

        If the target is no longer active the segment is stored without
        ``supersedes`` and the flag is False. A failure leaves both untouched.
        """
        ...

    async def delete(self, organization_id: str, segment_id: UUID) -> bool: ...

    async def delete_organization(self, organization_id: str) -> int: ...

    async def stats(self, organization_id: str) -> SegmentStats: ...


@runtime_checkable
class OrganizationDirectory(Protocol):
    """Protocol for tenant metadata lookups."""

    async def get_organization(self, organization_id: str) -> Organization | None: ...


__all__ = ["EmbeddingGenerator", "OrganizationDirectory", "VectorStore"]
