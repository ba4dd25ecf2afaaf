"""Retrieval behaviour: tenant isolation, thresholds, ordering and limits."""

import pytest
from conftest import unit

from chayo_memory.core.errors import DimensionMismatchError, ValidationError
from chayo_memory.domain.models import ConflictStrategy, MemorySegment, MemoryUpdate, UpdateAction


async def _seed(store, organization_id, *vectors):
    segments = [
        MemorySegment(organization_id=organization_id, text=f"segment {i}", embedding=vector)
        for i, vector in enumerate(vectors)
    ]
    return await store.insert(segments)


class TestTenantIsolation:
    @pytest.mark.asyncio
    async def test_other_tenants_never_returned(self, memory_service, store):
        await _seed(store, "org2", unit(1.0), unit(1.0, 0.1))

        results = await memory_service.search_similar_conversations("org1", unit(1.0), threshold=-1.0, limit=100)

        assert results == []

    @pytest.mark.asyncio
    async def test_identical_text_stays_in_its_tenant(self, memory_service):
        await memory_service.store_single_message("org1", "We open at 9am on weekdays")
        await memory_service.store_single_message("org2", "We open at 9am on weekdays")

        results = await memory_service.search_by_text("org1", "What are your hours?")

        assert len(results) == 1
        assert all(result.segment.organization_id == "org1" for result in results)


class TestThresholdAndOrdering:
    @pytest.mark.asyncio
    async def test_higher_threshold_returns_subset(self, memory_service, store):
        await _seed(store, "org1", unit(1.0), unit(1.0, 0.5), unit(1.0, 1.0), unit(0.2, 1.0), unit(0.0, 1.0))
        query = unit(1.0)

        loose = await memory_service.search_similar_conversations("org1", query, threshold=0.1, limit=100)
        strict = await memory_service.search_similar_conversations("org1", query, threshold=0.8, limit=100)

        assert {r.segment.id for r in strict} <= {r.segment.id for r in loose}
        assert len(strict) < len(loose)
        assert all(r.score >= 0.8 for r in strict)

    @pytest.mark.asyncio
    async def test_results_sorted_by_score(self, memory_service, store):
        await _seed(store, "org1", unit(0.2, 1.0), unit(1.0), unit(1.0, 0.5))

        results = await memory_service.search_similar_conversations("org1", unit(1.0), threshold=0.0, limit=10)

        scores = [result.score for result in results]
        assert scores == sorted(scores, reverse=True)
        assert scores[0] == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_ties_prefer_newer_segments(self, memory_service, store):
        older, newer = await _seed(store, "org1", unit(1.0), unit(1.0))

        results = await memory_service.search_similar_conversations("org1", unit(1.0), threshold=0.5, limit=10)

        assert [r.segment.id for r in results] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_limit(self, memory_service, store):
        await _seed(store, "org1", *[unit(1.0, 0.1 * i) for i in range(10)])

        results = await memory_service.search_similar_conversations("org1", unit(1.0), threshold=0.0, limit=3)

        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_no_match_is_empty(self, memory_service, store):
        await _seed(store, "org1", unit(0.0, 1.0))
        assert await memory_service.search_similar_conversations("org1", unit(1.0), threshold=0.5) == []

    @pytest.mark.asyncio
    async def test_defaults_come_from_settings(self, memory_service, store):
        await _seed(store, "org1", *[unit(1.0) for _ in range(8)])
        results = await memory_service.search_similar_conversations("org1", unit(1.0))
        assert len(results) == memory_service.settings.retrieval_limit


class TestInvalidQueries:
    @pytest.mark.asyncio
    async def test_wrong_dimension(self, memory_service):
        with pytest.raises(DimensionMismatchError):
            await memory_service.search_similar_conversations("org1", [1.0, 0.0])

    @pytest.mark.asyncio
    async def test_empty_embedding(self, memory_service):
        with pytest.raises(ValidationError):
            await memory_service.search_similar_conversations("org1", [])

    @pytest.mark.asyncio
    async def test_non_positive_limit(self, memory_service):
        with pytest.raises(ValidationError):
            await memory_service.search_similar_conversations("org1", unit(1.0), limit=0)

    @pytest.mark.asyncio
    async def test_blank_text_query(self, memory_service, embedder):
        with pytest.raises(ValidationError):
            await memory_service.search_by_text("org1", "   ")
        assert embedder.calls == []


class TestClinicHoursScenario:
    @pytest.mark.asyncio
    async def test_hours_question_finds_hours_answer(self, memory_service, embedder):
        await memory_service.process_business_conversations(
            "org1",
            [
                "Customer: What is your schedule?\nAgent: We are open Monday to Friday, 9am to 7pm.",
                "Customer: How much is a cleaning?\nAgent: A cleaning costs 600 pesos.",
            ],
            "text",
        )

        results = await memory_service.search_by_text("org1", "¿Cuál es su horario?")

        assert len(results) == 1
        assert "9am to 7pm" in results[0].segment.text
        assert embedder.calls[-1][0].type.input_type == "query"

    @pytest.mark.asyncio
    async def test_updated_hours_replace_old_hours(self, memory_service):
        old = await memory_service.store_single_message("org1", "Our clinic is open 9am-5pm Mon-Fri", "user", {})

        before = await memory_service.search_by_text("org1", "What are your clinic hours?")
        assert [result.segment.id for result in before] == [old.id]

        result = await memory_service.update_memory(
            "org1", MemoryUpdate(text="Our clinic is open 9am-6pm Mon-Sat"), ConflictStrategy.AUTO
        )
        assert result.action == UpdateAction.SUPERSEDED
        assert result.superseded_id == old.id

        after = await memory_service.search_by_text("org1", "What are your clinic hours?")
        assert [item.segment.text for item in after] == ["Our clinic is open 9am-6pm Mon-Sat"]
