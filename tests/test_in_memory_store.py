"""Tests for the in-memory segment store."""

from uuid import uuid4

import pytest
from conftest import DIMENSIONS, unit

from chayo_memory.core.errors import DimensionMismatchError
from chayo_memory.domain.models import MemorySegment
from chayo_memory.domain.models.utils import utc_now


def _segment(organization_id: str = "org1", text: str = "text", embedding=None) -> MemorySegment:
    return MemorySegment(organization_id=organization_id, text=text, embedding=embedding or unit(1.0))


class TestInMemorySegmentStore:
    @pytest.mark.asyncio
    async def test_rejects_wrong_dimension_on_insert(self, store):
        with pytest.raises(DimensionMismatchError) as exc_info:
            await store.insert([_segment(embedding=[1.0, 0.0])])

        assert exc_info.value.expected == DIMENSIONS
        assert exc_info.value.actual == 2
        assert (await store.stats("org1")).total == 0

    @pytest.mark.asyncio
    async def test_rejects_wrong_dimension_on_search(self, store):
        with pytest.raises(DimensionMismatchError):
            await store.search("org1", [1.0], threshold=0.0, limit=5)

    @pytest.mark.asyncio
    async def test_insert_is_all_or_nothing(self, store):
        with pytest.raises(DimensionMismatchError):
            await store.insert([_segment(), _segment(embedding=[1.0])])
        assert (await store.stats("org1")).total == 0

    @pytest.mark.asyncio
    async def test_created_at_strictly_increases(self, store):
        stored = await store.insert([_segment(text=f"segment {i}") for i in range(20)])
        stamps = [segment.created_at for segment in stored]
        assert all(earlier < later for earlier, later in zip(stamps, stamps[1:], strict=False))

    @pytest.mark.asyncio
    async def test_mark_superseded_only_once(self, store):
        [old] = await store.insert([_segment()])
        first, second = uuid4(), uuid4()

        tagged = await store.mark_superseded("org1", old.id, first, utc_now())
        again = await store.mark_superseded("org1", old.id, second, utc_now())

        assert tagged.metadata.superseded_by == first
        assert again is None
        assert (await store.get("org1", old.id)).metadata.superseded_by == first

    @pytest.mark.asyncio
    async def test_mark_superseded_is_tenant_scoped(self, store):
        [old] = await store.insert([_segment()])
        assert await store.mark_superseded("org2", old.id, uuid4(), utc_now()) is None

    @pytest.mark.asyncio
    async def test_get_is_tenant_scoped(self, store):
        [segment] = await store.insert([_segment()])
        assert await store.get("org1", segment.id) == segment
        assert await store.get("org2", segment.id) is None

    @pytest.mark.asyncio
    async def test_delete(self, store):
        [segment] = await store.insert([_segment()])
        assert await store.delete("org2", segment.id) is False
        assert await store.delete("org1", segment.id) is True
        assert await store.delete("org1", segment.id) is False

    @pytest.mark.asyncio
    async def test_delete_organization_counts(self, store):
        await store.insert([_segment(), _segment(), _segment("org2")])

        assert await store.delete_organization("org1") == 2
        assert (await store.stats("org1")).total == 0
        assert (await store.stats("org2")).total == 1

    @pytest.mark.asyncio
    async def test_stats(self, store):
        [a, _] = await store.insert([_segment(), _segment()])
        await store.mark_superseded("org1", a.id, uuid4(), utc_now())

        stats = await store.stats("org1")

        assert stats.total == 2
        assert stats.superseded == 1
        assert stats.active == 1
        assert stats.by_kind == {"business_fact": 2}
        assert stats.oldest < stats.newest

    @pytest.mark.asyncio
    async def test_zero_vector_scores_zero(self, store):
        await store.insert([_segment(embedding=[0.0] * DIMENSIONS)])
        assert await store.search("org1", unit(1.0), threshold=0.1, limit=5) == []

    @pytest.mark.asyncio
    async def test_insert_superseding_tags_target(self, store):
        [old] = await store.insert([_segment()])
        new = _segment(text="replacement")

        stored, replaced = await store.insert_superseding(new, old.id, utc_now())

        assert replaced is True
        assert stored.metadata.supersedes == old.id
        assert (await store.get("org1", old.id)).metadata.superseded_by == stored.id
        assert stored.created_at > old.created_at

    @pytest.mark.asyncio
    async def test_insert_superseding_inactive_target(self, store):
        [old] = await store.insert([_segment()])
        await store.mark_superseded("org1", old.id, uuid4(), utc_now())

        stored, replaced = await store.insert_superseding(_segment(text="replacement"), old.id, utc_now())

        assert replaced is False
        assert stored.metadata.supersedes is None
        assert stored.is_active
        assert (await store.stats("org1")).total == 2

    @pytest.mark.asyncio
    async def test_insert_superseding_rejects_wrong_dimension(self, store):
        [old] = await store.insert([_segment()])

        with pytest.raises(DimensionMismatchError):
            await store.insert_superseding(_segment(embedding=[1.0]), old.id, utc_now())

        assert (await store.get("org1", old.id)).is_active
        assert (await store.stats("org1")).total == 1
