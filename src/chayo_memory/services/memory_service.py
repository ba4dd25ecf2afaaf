"""Conversation memory service.

Ingests conversations and explicit business knowledge as embedded segments,
resolves updates that contradict stored knowledge, and serves tenant-scoped
retrieval for prompt construction.
"""

import asyncio
from collections import defaultdict
from collections.abc import Mapping
from contextlib import AbstractAsyncContextManager, nullcontext
from typing import Any
from uuid import UUID

from chayo_memory.core.base import ErrorLevel, ResourceErrorDetails, ValidationErrorDetails
from chayo_memory.core.config import Settings
from chayo_memory.core.decorators import with_error_handling
from chayo_memory.core.errors import (
    DimensionMismatchError,
    EmbeddingError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from chayo_memory.core.logging import get_logger
from chayo_memory.domain.models import (
    ConflictStrategy,
    Conversation,
    ConversationFormat,
    ConversationMessage,
    EmbeddingRequest,
    EmbeddingType,
    KnowledgeSummary,
    MemorySegment,
    MemoryUpdate,
    MessageRole,
    Organization,
    ScoredSegment,
    SegmentKind,
    UpdateAction,
    UpdateResult,
    parse_conversation,
    parse_metadata,
)
from chayo_memory.domain.models.segment import BaseSegmentMetadata
from chayo_memory.domain.models.utils import utc_now
from chayo_memory.domain.segmentation import chunk_conversation
from chayo_memory.services import EmbeddingGenerator, OrganizationDirectory, VectorStore
from chayo_memory.services.conflicts import ResolutionAction, get_resolver

logger = get_logger(__name__)

SINGLE_MESSAGE_SOURCE = "single_message"
EXCHANGE_SOURCE = "chat_exchange"
CONVERSATION_SOURCE = "business_conversation"
UPDATE_SOURCE = "knowledge_update"


def _invalid(message: str, operation: str, field: str, organization_id: str | None = None) -> ValidationError:
    return ValidationError(
        message,
        details=ValidationErrorDetails(
            source="memory_service",
            operation=operation,
            organization_id=organization_id,
            field=field,
        ),
    )


class ConversationMemoryService:
    """Tenant-scoped memory over an embedding generator and a vector store.

    All collaborators are passed in; the service holds no global clients.
    """

    def __init__(
        self,
        embeddings: EmbeddingGenerator,
        store: VectorStore,
        settings: Settings,
        organizations: OrganizationDirectory | None = None,
    ):
        if embeddings.dimensions != store.dimensions:
            raise DimensionMismatchError(
                expected=store.dimensions,
                actual=embeddings.dimensions,
                source="memory_service",
                operation="initialization",
            )
        self.embeddings = embeddings
        self.store = store
        self.settings = settings
        self.organizations = organizations
        self._update_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_organization_id(organization_id: str, operation: str) -> None:
        if not organization_id or not organization_id.strip():
            raise _invalid("organization_id is required", operation, "organization_id")

    async def get_organization(self, organization_id: str, operation: str) -> Organization | None:
        """Look the tenant up when a directory is configured.

        Raises:
            NotFoundError: If a directory is configured and has no such organization
        """
        self._check_organization_id(organization_id, operation)
        if self.organizations is None:
            return None

        organization = await self.organizations.get_organization(organization_id)
        if organization is None:
            raise NotFoundError(
                f"Organization {organization_id} not found",
                details=ResourceErrorDetails(
                    source="memory_service",
                    operation=operation,
                    organization_id=organization_id,
                    resource_id=organization_id,
                    resource_type="organization",
                    action="read",
                ),
            )
        return organization

    def _build_metadata(
        self,
        kind: SegmentKind,
        metadata: Mapping[str, Any] | None,
        defaults: Mapping[str, Any],
        **fixed: Any,
    ) -> BaseSegmentMetadata:
        """Caller metadata over defaults; ``fixed`` values always win."""
        caller = {key: value for key, value in (metadata or {}).items() if key != "kind"}
        merged = {"confidence": self.settings.default_confidence, **defaults, **caller}
        return parse_metadata(merged, kind=kind, **fixed)

    async def _embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed every text before anything is written; any failed batch aborts the call."""
        requests = [EmbeddingRequest(text=text, type=EmbeddingType.DOCUMENT) for text in texts]
        batch_size = self.settings.embedding_batch_size

        vectors: list[list[float]] = []
        for start in range(0, len(requests), batch_size):
            vectors.extend(await self.embeddings.generate_embeddings(requests[start : start + batch_size]))

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Expected {len(texts)} embeddings, got {len(vectors)}",
                details={"source": "memory_service", "operation": "embed_documents"},
            )
        return vectors

    def _update_lock(self, organization_id: str) -> AbstractAsyncContextManager[Any]:
        if not self.settings.serialize_updates:
            return nullcontext()
        return self._update_locks[organization_id]

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def store_single_message(
        self,
        organization_id: str,
        text: str,
        role: MessageRole | str = MessageRole.USER,
        metadata: Mapping[str, Any] | None = None,
    ) -> MemorySegment:
        """Embed and store one chat message.

        Raises:
            ValidationError: If the message is too short or the role is not user/assistant
        """
        operation = "store_single_message"
        self._check_organization_id(organization_id, operation)

        content = (text or "").strip()
        if len(content) < self.settings.min_message_length:
            raise _invalid(
                f"Message must be at least {self.settings.min_message_length} characters",
                operation,
                "text",
                organization_id,
            )

        try:
            message_role = MessageRole(role)
        except ValueError as e:
            raise _invalid(f"Unknown role: {role!r}", operation, "role", organization_id) from e
        if message_role is MessageRole.SYSTEM:
            raise _invalid("Role must be 'user' or 'assistant'", operation, "role", organization_id)

        segment_metadata = self._build_metadata(
            SegmentKind.CONVERSATION,
            metadata,
            defaults={"source": SINGLE_MESSAGE_SOURCE},
            role=message_role,
            roles=[message_role],
            turn_count=1,
        )
        await self.get_organization(organization_id, operation)

        [embedding] = await self._embed_documents([content])
        segment = MemorySegment(
            organization_id=organization_id,
            text=content,
            embedding=embedding,
            metadata=segment_metadata,
        )
        [stored] = await self.store.insert([segment])

        logger.info(
            f"Stored {message_role.value} message",
            extra={"organization_id": organization_id, "segment_id": str(stored.id)},
        )
        return stored

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def store_conversation_exchange(
        self,
        organization_id: str,
        user_message: str,
        assistant_response: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> list[MemorySegment]:
        """Store one user message and the assistant's reply as a conversation."""
        operation = "store_conversation_exchange"
        self._check_organization_id(organization_id, operation)
        if not (user_message or "").strip():
            raise _invalid("user_message is required", operation, "user_message", organization_id)
        if not (assistant_response or "").strip():
            raise _invalid("assistant_response is required", operation, "assistant_response", organization_id)

        conversation = Conversation(
            messages=[
                ConversationMessage(role=MessageRole.USER, content=user_message.strip()),
                ConversationMessage(role=MessageRole.ASSISTANT, content=assistant_response.strip()),
            ],
            metadata=dict(metadata or {}),
        )
        return await self._ingest(organization_id, [conversation], None, EXCHANGE_SOURCE, operation)

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def process_business_conversations(
        self,
        organization_id: str,
        conversations: list[Any],
        format: ConversationFormat | str = ConversationFormat.JSON,
    ) -> list[MemorySegment]:
        """Parse, segment, embed and store a batch of conversations.

        All embeddings are generated before the single atomic insert, so a
        failure anywhere leaves the store untouched.

        Raises:
            ValidationError: If the input is empty, malformed or has no content
            UpstreamError: If embedding or storage fails
        """
        operation = "process_business_conversations"
        self._check_organization_id(organization_id, operation)
        if not conversations:
            raise _invalid("At least one conversation is required", operation, "conversations", organization_id)

        parsed = [parse_conversation(raw, format) for raw in conversations]
        return await self._ingest(organization_id, parsed, ConversationFormat(format), CONVERSATION_SOURCE, operation)

    async def _ingest(
        self,
        organization_id: str,
        conversations: list[Conversation],
        conversation_format: ConversationFormat | None,
        source: str,
        operation: str,
    ) -> list[MemorySegment]:
        texts: list[str] = []
        metadata: list[BaseSegmentMetadata] = []

        for conversation_index, conversation in enumerate(conversations):
            defaults: dict[str, Any] = {"source": source}
            speakers = conversation.speakers()
            if speakers:
                defaults["speakers"] = ", ".join(speakers)

            for chunk in chunk_conversation(conversation, self.settings.max_chunk_tokens):
                texts.append(chunk.text)
                metadata.append(
                    self._build_metadata(
                        SegmentKind.CONVERSATION,
                        conversation.metadata,
                        defaults=defaults,
                        role=chunk.roles[0] if len(chunk.roles) == 1 else None,
                        roles=chunk.roles,
                        turn_count=chunk.turn_count,
                        conversation_index=conversation_index,
                        chunk_index=chunk.chunk_index,
                        format=conversation_format.value if conversation_format else None,
                    )
                )

        if not texts:
            raise _invalid("Conversations contain no message content", operation, "conversations", organization_id)

        await self.get_organization(organization_id, operation)

        vectors = await self._embed_documents(texts)
        segments = [
            MemorySegment(organization_id=organization_id, text=text, embedding=vector, metadata=segment_metadata)
            for text, vector, segment_metadata in zip(texts, vectors, metadata, strict=True)
        ]
        stored = await self.store.insert(segments)

        logger.info(
            f"Stored {len(stored)} segment(s) from {len(conversations)} conversation(s)",
            extra={"organization_id": organization_id, "source": source},
        )
        return stored

    # ------------------------------------------------------------------
    # Conflict-aware updates
    # ------------------------------------------------------------------

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def update_memory(
        self,
        organization_id: str,
        memory_update: MemoryUpdate,
        conflict_strategy: ConflictStrategy | str = ConflictStrategy.AUTO,
    ) -> UpdateResult:
        """Store new knowledge, resolving conflicts with what is already known.

        Writing the new segment and tagging the old one as superseded is a
        single store operation; a failure leaves both unchanged.
        """
        operation = "update_memory"
        self._check_organization_id(organization_id, operation)
        text = (memory_update.text or "").strip()
        if not text:
            raise _invalid("Memory text is required", operation, "text", organization_id)
        try:
            strategy = ConflictStrategy(conflict_strategy)
        except ValueError as e:
            raise _invalid(
                f"Unknown conflict strategy: {conflict_strategy!r}", operation, "conflict_strategy", organization_id
            ) from e

        fixed: dict[str, Any] = {}
        if memory_update.confidence is not None:
            fixed["confidence"] = memory_update.confidence
        if memory_update.reason is not None:
            fixed["reason"] = memory_update.reason
        segment_metadata = self._build_metadata(
            memory_update.kind, memory_update.metadata, defaults={"source": UPDATE_SOURCE}, **fixed
        )

        await self.get_organization(organization_id, operation)

        async with self._update_lock(organization_id):
            [embedding] = await self._embed_documents([text])
            conflicts = await self.store.search(
                organization_id,
                embedding,
                threshold=self.settings.conflict_threshold,
                limit=self.settings.conflict_search_limit,
                include_superseded=False,
            )

            if not conflicts:
                segment = await self._write(organization_id, text, embedding, segment_metadata)
                return UpdateResult(success=True, action=UpdateAction.CREATED, segment_id=segment.id)

            resolution = get_resolver(strategy).resolve(memory_update, conflicts)
            logger.info(
                f"Update conflicts with {len(conflicts)} segment(s), resolving with '{strategy.value}'",
                extra={"organization_id": organization_id, "action": resolution.action.value},
            )

            if resolution.action is ResolutionAction.DEFER:
                return UpdateResult(
                    success=False,
                    action=UpdateAction.CONFLICTS_DETECTED,
                    conflicts=resolution.conflicts,
                    reason=resolution.reason,
                )

            if resolution.action is ResolutionAction.KEEP_BOTH or resolution.target is None:
                segment = await self._write(organization_id, text, embedding, segment_metadata)
                return UpdateResult(
                    success=True,
                    action=UpdateAction.CREATED_WITH_CONFLICTS,
                    segment_id=segment.id,
                    conflicts=resolution.conflicts,
                    reason=resolution.reason,
                )

            target = resolution.target.segment
            segment, replaced = await self.store.insert_superseding(
                MemorySegment(
                    organization_id=organization_id,
                    text=text,
                    embedding=embedding,
                    metadata=segment_metadata.model_copy(update={"supersedes": target.id}),
                ),
                target.id,
                utc_now(),
            )
            if not replaced:
                # Superseded or deleted by another writer since the search
                logger.warning(
                    f"Segment {target.id} was no longer active; kept new segment without superseding",
                    extra={"organization_id": organization_id, "segment_id": str(segment.id)},
                )
                return UpdateResult(
                    success=True,
                    action=UpdateAction.CREATED_WITH_CONFLICTS,
                    segment_id=segment.id,
                    conflicts=resolution.conflicts,
                    reason=f"Segment {target.id} was no longer active",
                )

            return UpdateResult(
                success=True,
                action=UpdateAction.SUPERSEDED,
                segment_id=segment.id,
                superseded_id=target.id,
                conflicts=resolution.conflicts,
                reason=resolution.reason,
            )

    async def _write(
        self,
        organization_id: str,
        text: str,
        embedding: list[float],
        metadata: BaseSegmentMetadata,
    ) -> MemorySegment:
        segment = MemorySegment(organization_id=organization_id, text=text, embedding=embedding, metadata=metadata)
        [stored] = await self.store.insert([segment])
        return stored

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def search_similar_conversations(
        self,
        organization_id: str,
        query_embedding: list[float],
        threshold: float | None = None,
        limit: int | None = None,
        include_superseded: bool = False,
    ) -> list[ScoredSegment]:
        """Active segments of one organization scoring at least ``threshold``.

        Ordered by score descending, newer first on ties. No match is an
        empty list, not an error.
        """
        operation = "search_similar_conversations"
        self._check_organization_id(organization_id, operation)
        if not query_embedding:
            raise _invalid("query_embedding is required", operation, "query_embedding", organization_id)

        limit = self.settings.retrieval_limit if limit is None else limit
        if limit < 1:
            raise _invalid("limit must be positive", operation, "limit", organization_id)
        threshold = self.settings.retrieval_threshold if threshold is None else threshold

        return await self.store.search(
            organization_id,
            query_embedding,
            threshold=threshold,
            limit=limit,
            include_superseded=include_superseded,
        )

    async def search_by_text(
        self,
        organization_id: str,
        query: str,
        threshold: float | None = None,
        limit: int | None = None,
        include_superseded: bool = False,
    ) -> list[ScoredSegment]:
        """Embed ``query`` as a search query and run a similarity search."""
        self._check_organization_id(organization_id, "search_by_text")
        if not (query or "").strip():
            raise _invalid("query is required", "search_by_text", "query", organization_id)

        embedding = await self.embeddings.embed_query(query.strip())
        return await self.search_similar_conversations(
            organization_id,
            embedding,
            threshold=threshold,
            limit=limit,
            include_superseded=include_superseded,
        )

    async def list_recent(self, organization_id: str, limit: int) -> list[MemorySegment]:
        self._check_organization_id(organization_id, "list_recent")
        return await self.store.list_recent(organization_id, limit)

    async def get_memory(self, organization_id: str, memory_id: UUID) -> MemorySegment:
        self._check_organization_id(organization_id, "get_memory")
        segment = await self.store.get(organization_id, memory_id)
        if segment is None:
            raise NotFoundError(
                f"Memory {memory_id} not found",
                details=ResourceErrorDetails(
                    source="memory_service",
                    operation="get_memory",
                    organization_id=organization_id,
                    resource_id=str(memory_id),
                    resource_type="segment",
                    action="read",
                ),
            )
        return segment

    async def get_business_knowledge_summary(self, organization_id: str) -> KnowledgeSummary:
        """Counts and recent texts for the dashboard.

        Store read failures degrade to an empty summary flagged ``degraded``.
        """
        await self.get_organization(organization_id, "get_business_knowledge_summary")

        try:
            stats = await self.store.stats(organization_id)
            recent = await self.store.list_recent(organization_id, self.settings.summary_recent_limit)
        except UpstreamError as e:
            logger.warning(
                f"Knowledge summary unavailable: {e.message}",
                extra={"organization_id": organization_id, "error_code": e.code.value},
            )
            return KnowledgeSummary(organization_id=organization_id, degraded=True)

        texts = [segment.text for segment in recent]
        return KnowledgeSummary(
            organization_id=organization_id,
            total=stats.total,
            active=stats.active,
            superseded=stats.superseded,
            by_kind=stats.by_kind,
            oldest=stats.oldest,
            newest=stats.newest,
            recent=texts,
            summary="\n".join(texts),
        )

    # ------------------------------------------------------------------
    # Purges
    # ------------------------------------------------------------------

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def delete_memory(self, organization_id: str, memory_id: UUID) -> bool:
        self._check_organization_id(organization_id, "delete_memory")
        deleted = await self.store.delete(organization_id, memory_id)
        if deleted:
            logger.info(f"Deleted memory {memory_id}", extra={"organization_id": organization_id})
        return deleted

    @with_error_handling(error_level=ErrorLevel.ERROR, reraise=True)
    async def delete_organization_embeddings(self, organization_id: str) -> int:
        self._check_organization_id(organization_id, "delete_organization_embeddings")
        deleted = await self.store.delete_organization(organization_id)
        logger.info(f"Purged {deleted} segment(s)", extra={"organization_id": organization_id})
        return deleted
