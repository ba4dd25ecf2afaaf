"""Tests for ConversationMemoryService ingestion, updates and purges."""

import json
from uuid import uuid4

import pytest
from conftest import KeywordEmbedder, make_settings

from chayo_memory.core.errors import (
    DimensionMismatchError,
    EmbeddingError,
    NotFoundError,
    StorageError,
    UpstreamError,
    ValidationError,
)
from chayo_memory.domain.models import (
    ConflictStrategy,
    MemoryUpdate,
    MessageRole,
    SegmentKind,
    SegmentStatus,
    UpdateAction,
)
from chayo_memory.infrastructure.repositories.in_memory import InMemorySegmentStore
from chayo_memory.services.memory_service import ConversationMemoryService


class RacingStore(InMemorySegmentStore):
    """Another writer always supersedes the target first."""

    async def insert_superseding(self, segment, superseded_id, superseded_at):
        await self.mark_superseded(segment.organization_id, superseded_id, uuid4(), superseded_at)
        return await super().insert_superseding(segment, superseded_id, superseded_at)


class FailingTagStore(InMemorySegmentStore):
    """Tagging the replaced segment fails."""

    def _tagged(self, segment, superseded_by, superseded_at):
        raise StorageError("Neo4j write failed", details={"source": "test", "operation": "tag"})


class BrokenStatsStore(InMemorySegmentStore):
    async def stats(self, organization_id):
        raise StorageError("Neo4j unavailable", details={"source": "test", "operation": "stats"})


class TestConstruction:
    def test_dimension_mismatch_is_rejected(self, store, settings):
        with pytest.raises(DimensionMismatchError):
            ConversationMemoryService(embeddings=KeywordEmbedder(dimensions=4), store=store, settings=settings)


class TestStoreSingleMessage:
    @pytest.mark.asyncio
    async def test_stores_conversation_segment(self, memory_service, store):
        segment = await memory_service.store_single_message("org1", "  What are your opening hours?  ", "user")

        assert segment.text == "What are your opening hours?"
        assert segment.kind is SegmentKind.CONVERSATION
        assert segment.metadata.role is MessageRole.USER
        assert segment.metadata.source == "single_message"
        assert segment.metadata.confidence == 0.8
        assert await store.get("org1", segment.id) == segment

    @pytest.mark.asyncio
    async def test_caller_metadata_kept_as_attributes(self, memory_service):
        segment = await memory_service.store_single_message(
            "org1", "We deliver on weekends too", "assistant", {"channel": "whatsapp"}
        )
        assert segment.metadata.attributes == {"channel": "whatsapp"}
        assert segment.metadata.role is MessageRole.ASSISTANT

    @pytest.mark.asyncio
    async def test_short_message_rejected_before_embedding(self, memory_service, embedder):
        with pytest.raises(ValidationError):
            await memory_service.store_single_message("org1", "hi", "user")
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_system_role_rejected(self, memory_service):
        with pytest.raises(ValidationError):
            await memory_service.store_single_message("org1", "You are a helpful bot", "system")

    @pytest.mark.asyncio
    async def test_unknown_role_rejected(self, memory_service):
        with pytest.raises(ValidationError):
            await memory_service.store_single_message("org1", "You are a helpful bot", "owner")

    @pytest.mark.asyncio
    async def test_blank_organization_rejected(self, memory_service):
        with pytest.raises(ValidationError):
            await memory_service.store_single_message("  ", "What are your opening hours?")

    @pytest.mark.asyncio
    async def test_unknown_organization_rejected_before_embedding(self, directory_service, embedder):
        with pytest.raises(NotFoundError):
            await directory_service.store_single_message("org-missing", "What are your opening hours?")
        assert embedder.calls == []


class TestConversationIngestion:
    @pytest.mark.asyncio
    async def test_exchange_is_one_conversation_segment(self, memory_service):
        [segment] = await memory_service.store_conversation_exchange(
            "org1", "Do you have parking?", "Yes, free parking for patients."
        )

        assert segment.text == "user: Do you have parking?\nassistant: Yes, free parking for patients."
        assert segment.metadata.source == "chat_exchange"
        assert segment.metadata.roles == [MessageRole.USER, MessageRole.ASSISTANT]
        assert segment.metadata.role is None
        assert segment.metadata.turn_count == 2

    @pytest.mark.asyncio
    async def test_exchange_requires_both_sides(self, memory_service):
        with pytest.raises(ValidationError):
            await memory_service.store_conversation_exchange("org1", "Do you have parking?", "   ")

    @pytest.mark.asyncio
    async def test_json_conversations(self, memory_service):
        conversations = [
            json.dumps(
                {
                    "messages": [
                        {"role": "customer", "content": "How much is a cleaning?"},
                        {"role": "agent", "content": "A cleaning costs 500 pesos."},
                    ],
                    "metadata": {"channel": "whatsapp"},
                }
            ),
            json.dumps([{"speaker": "Doña Rosa", "text": "Where are you located?"}]),
        ]

        segments = await memory_service.process_business_conversations("org1", conversations, "json")

        assert len(segments) == 2
        first, second = segments
        assert first.metadata.source == "business_conversation"
        assert first.metadata.format == "json"
        assert first.metadata.conversation_index == 0
        assert first.metadata.attributes == {"channel": "whatsapp"}
        assert second.metadata.conversation_index == 1
        assert second.metadata.attributes == {"speakers": "Doña Rosa"}
        assert second.metadata.role is MessageRole.USER

    @pytest.mark.asyncio
    async def test_text_conversations(self, memory_service):
        transcript = "Cliente: ¿Tienen estacionamiento?\nChayo: Sí, tenemos parking."

        [segment] = await memory_service.process_business_conversations("org1", [transcript], "text")

        assert segment.text == "user: ¿Tienen estacionamiento?\nassistant: Sí, tenemos parking."
        assert segment.metadata.format == "text"

    @pytest.mark.asyncio
    async def test_long_conversation_is_chunked(self, embedder, store):
        service = ConversationMemoryService(embedder, store, make_settings(max_chunk_tokens=16))
        messages = [{"role": "user", "content": f"Question number {i} about prices"} for i in range(6)]

        segments = await service.process_business_conversations("org1", [messages], "structured")

        assert len(segments) > 1
        assert [segment.metadata.chunk_index for segment in segments] == list(range(len(segments)))

    @pytest.mark.asyncio
    async def test_empty_input_rejected(self, memory_service):
        with pytest.raises(ValidationError):
            await memory_service.process_business_conversations("org1", [], "json")

    @pytest.mark.asyncio
    async def test_conversations_without_content_rejected(self, memory_service, embedder):
        with pytest.raises(ValidationError):
            await memory_service.process_business_conversations("org1", ["[]", '{"messages": []}'], "json")
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_malformed_conversation_rejected(self, memory_service):
        with pytest.raises(ValidationError):
            await memory_service.process_business_conversations("org1", ["not json"], "json")

    @pytest.mark.asyncio
    async def test_failed_batch_stores_nothing(self, store):
        embedder = KeywordEmbedder(fail_on_call=2)
        service = ConversationMemoryService(embedder, store, make_settings(embedding_batch_size=1))
        conversations = [
            [{"role": "user", "content": "What are your hours?"}],
            [{"role": "user", "content": "Do you take card payment?"}],
        ]

        with pytest.raises(EmbeddingError):
            await service.process_business_conversations("org1", conversations, "structured")

        assert len(embedder.calls) == 2
        assert (await store.stats("org1")).total == 0


class TestUpdateMemory:
    @pytest.mark.asyncio
    async def test_new_knowledge_is_created(self, memory_service, store):
        result = await memory_service.update_memory("org1", MemoryUpdate(text="We open at 9am"))

        assert result.success
        assert result.action is UpdateAction.CREATED
        segment = await store.get("org1", result.segment_id)
        assert segment.kind is SegmentKind.BUSINESS_FACT
        assert segment.metadata.source == "knowledge_update"

    @pytest.mark.asyncio
    async def test_unrelated_knowledge_does_not_conflict(self, memory_service):
        await memory_service.update_memory("org1", MemoryUpdate(text="We open at 9am"))
        result = await memory_service.update_memory("org1", MemoryUpdate(text="We accept card payment"))
        assert result.action is UpdateAction.CREATED

    @pytest.mark.asyncio
    async def test_auto_supersedes_conflicting_fact(self, memory_service, store):
        old = await memory_service.update_memory("org1", MemoryUpdate(text="We open at 9am"))

        result = await memory_service.update_memory(
            "org1", MemoryUpdate(text="From March our hours are 10am to 6pm", reason="new schedule", confidence=0.95)
        )

        assert result.action is UpdateAction.SUPERSEDED
        assert result.superseded_id == old.segment_id
        assert [conflict.segment.id for conflict in result.conflicts] == [old.segment_id]

        replaced = await store.get("org1", old.segment_id)
        replacement = await store.get("org1", result.segment_id)
        assert replaced.status is SegmentStatus.SUPERSEDED
        assert replaced.metadata.superseded_by == replacement.id
        assert replacement.metadata.supersedes == replaced.id
        assert replacement.metadata.reason == "new schedule"
        assert replacement.metadata.confidence == 0.95

    @pytest.mark.asyncio
    async def test_superseded_segments_leave_search(self, memory_service):
        await memory_service.update_memory("org1", MemoryUpdate(text="We open at 9am"))
        await memory_service.update_memory("org1", MemoryUpdate(text="We now open at 10am"))

        results = await memory_service.search_by_text("org1", "opening hours")
        assert [result.segment.text for result in results] == ["We now open at 10am"]

        history = await memory_service.search_by_text("org1", "opening hours", include_superseded=True)
        assert len(history) == 2

    @pytest.mark.asyncio
    async def test_auto_picks_newest_conflict(self, memory_service):
        first = await memory_service.update_memory("org1", MemoryUpdate(text="We open at 9am"))
        second = await memory_service.update_memory(
            "org1", MemoryUpdate(text="Saturday hours are 9am to 1pm"), ConflictStrategy.KEEP_BOTH
        )

        result = await memory_service.update_memory("org1", MemoryUpdate(text="Our hours changed to 10am"))

        assert result.superseded_id == second.segment_id
        assert result.superseded_id != first.segment_id

    @pytest.mark.asyncio
    async def test_keep_both(self, memory_service, store):
        old = await memory_service.update_memory("org1", MemoryUpdate(text="We open at 9am"))

        result = await memory_service.update_memory(
            "org1", MemoryUpdate(text="On holidays we open at 11am"), "keep_both"
        )

        assert result.success
        assert result.action is UpdateAction.CREATED_WITH_CONFLICTS
        assert len(result.conflicts) == 1
        assert (await store.get("org1", old.segment_id)).is_active
        assert (await store.stats("org1")).active == 2

    @pytest.mark.asyncio
    async def test_manual_writes_nothing(self, memory_service, store):
        await memory_service.update_memory("org1", MemoryUpdate(text="We open at 9am"))

        result = await memory_service.update_memory("org1", MemoryUpdate(text="We open at 8am"), "manual")

        assert not result.success
        assert result.action is UpdateAction.CONFLICTS_DETECTED
        assert result.segment_id is None
        assert len(result.conflicts) == 1
        assert (await store.stats("org1")).total == 1

    @pytest.mark.asyncio
    async def test_lost_race_keeps_new_segment(self, embedder, settings):
        store = RacingStore(dimensions=embedder.dimensions)
        service = ConversationMemoryService(embedder, store, settings)
        old = await service.update_memory("org1", MemoryUpdate(text="We open at 9am"))

        result = await service.update_memory("org1", MemoryUpdate(text="We open at 10am"))

        assert result.action is UpdateAction.CREATED_WITH_CONFLICTS
        assert result.superseded_id is None
        assert (await store.get("org1", old.segment_id)).metadata.superseded_by != result.segment_id
        new = await store.get("org1", result.segment_id)
        assert new.is_active
        assert new.metadata.supersedes is None

    @pytest.mark.asyncio
    async def test_failed_tag_leaves_store_unchanged(self, embedder, settings):
        store = FailingTagStore(dimensions=embedder.dimensions)
        service = ConversationMemoryService(embedder, store, settings)
        old = await service.update_memory("org1", MemoryUpdate(text="We open at 9am"))

        with pytest.raises(UpstreamError):
            await service.update_memory("org1", MemoryUpdate(text="We now open at 10am"))

        stats = await store.stats("org1")
        assert stats.total == 1
        assert stats.superseded == 0
        assert (await store.get("org1", old.segment_id)).is_active

    @pytest.mark.asyncio
    async def test_conflicts_are_tenant_scoped(self, memory_service):
        await memory_service.update_memory("org2", MemoryUpdate(text="We open at 9am"))
        result = await memory_service.update_memory("org1", MemoryUpdate(text="We open at 10am"))
        assert result.action is UpdateAction.CREATED

    @pytest.mark.asyncio
    async def test_blank_text_rejected_before_embedding(self, memory_service, embedder):
        with pytest.raises(ValidationError):
            await memory_service.update_memory("org1", MemoryUpdate(text="   "))
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_unknown_strategy_rejected(self, memory_service, embedder):
        with pytest.raises(ValidationError):
            await memory_service.update_memory("org1", MemoryUpdate(text="We open at 9am"), "newest")
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_faq_kind(self, memory_service, store):
        update = MemoryUpdate(
            text="Yes, we offer delivery within 5 km",
            kind=SegmentKind.FAQ,
            metadata={"question": "Do you deliver?"},
        )
        result = await memory_service.update_memory("org1", update)

        segment = await store.get("org1", result.segment_id)
        assert segment.kind is SegmentKind.FAQ
        assert segment.metadata.question == "Do you deliver?"


class TestSummaryAndPurges:
    @pytest.mark.asyncio
    async def test_summary(self, memory_service):
        await memory_service.update_memory("org1", MemoryUpdate(text="We open at 9am"))
        await memory_service.update_memory("org1", MemoryUpdate(text="We open at 10am"))
        await memory_service.store_single_message("org1", "Do you accept card payment?")

        summary = await memory_service.get_business_knowledge_summary("org1")

        assert summary.total == 3
        assert summary.active == 2
        assert summary.superseded == 1
        assert summary.by_kind == {"business_fact": 2, "conversation": 1}
        assert summary.recent[0] == "Do you accept card payment?"
        assert "We open at 9am" not in summary.recent
        assert not summary.degraded

    @pytest.mark.asyncio
    async def test_empty_summary(self, memory_service):
        summary = await memory_service.get_business_knowledge_summary("org1")
        assert summary.total == 0
        assert summary.recent == []
        assert summary.summary == ""

    @pytest.mark.asyncio
    async def test_degraded_summary(self, embedder, settings):
        service = ConversationMemoryService(embedder, BrokenStatsStore(embedder.dimensions), settings)

        summary = await service.get_business_knowledge_summary("org1")

        assert summary.degraded
        assert summary.total == 0

    @pytest.mark.asyncio
    async def test_summary_for_unknown_organization(self, directory_service):
        with pytest.raises(NotFoundError):
            await directory_service.get_business_knowledge_summary("org-missing")

    @pytest.mark.asyncio
    async def test_get_memory_is_tenant_scoped(self, memory_service):
        segment = await memory_service.store_single_message("org1", "Where are you located?")

        assert (await memory_service.get_memory("org1", segment.id)).id == segment.id
        with pytest.raises(NotFoundError):
            await memory_service.get_memory("org2", segment.id)
        with pytest.raises(NotFoundError):
            await memory_service.get_memory("org1", uuid4())

    @pytest.mark.asyncio
    async def test_delete_memory(self, memory_service):
        segment = await memory_service.store_single_message("org1", "Where are you located?")

        assert await memory_service.delete_memory("org2", segment.id) is False
        assert await memory_service.delete_memory("org1", segment.id) is True
        assert await memory_service.search_by_text("org1", "location", threshold=0.0) == []

    @pytest.mark.asyncio
    async def test_delete_organization_embeddings(self, memory_service):
        await memory_service.store_single_message("org1", "Where are you located?")
        await memory_service.store_single_message("org1", "Do you take card payment?")
        await memory_service.store_single_message("org2", "Where are you located?")

        assert await memory_service.delete_organization_embeddings("org1") == 2
        assert await memory_service.list_recent("org1", 10) == []
        assert len(await memory_service.list_recent("org2", 10)) == 1
