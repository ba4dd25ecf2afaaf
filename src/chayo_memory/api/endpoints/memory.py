"""Memory API endpoints."""

from datetime import datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from chayo_memory.api.dependencies import bind_organization, get_memory_service
from chayo_memory.core.base import ResourceErrorDetails, ValidationErrorDetails
from chayo_memory.core.errors import NotFoundError, ValidationError
from chayo_memory.core.logging import get_logger
from chayo_memory.domain.models import (
    ConflictStrategy,
    ConversationFormat,
    KnowledgeSummary,
    MemorySegment,
    MemoryUpdate,
    ScoredSegment,
    SegmentKind,
    UpdateAction,
    UpdateResult,
)
from chayo_memory.services.memory_service import ConversationMemoryService

logger = get_logger(__name__)
router = APIRouter(dependencies=[Depends(bind_organization)])


class StoreMessageRequest(BaseModel):
    """Request model for storing a single chat message."""

    text: str
    role: str = Field(default="user", pattern="^(user|assistant)$", description="Role: 'user' or 'assistant'")
    metadata: dict[str, Any] | None = None


class StoreExchangeRequest(BaseModel):
    user_message: str
    assistant_response: str
    metadata: dict[str, Any] | None = None


class ProcessConversationsRequest(BaseModel):
    conversations: list[Any]
    format: ConversationFormat = ConversationFormat.JSON


class SearchRequest(BaseModel):
    """Search by text, or by a precomputed embedding when one is given."""

    query: str | None = None
    embedding: list[float] | None = None
    threshold: float | None = Field(default=None, ge=-1.0, le=1.0)
    limit: int | None = Field(default=None, ge=1, le=100)
    include_superseded: bool = False


class UpdateMemoryRequest(BaseModel):
    text: str
    kind: SegmentKind = SegmentKind.BUSINESS_FACT
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    conflict_strategy: ConflictStrategy = ConflictStrategy.AUTO


class SegmentResponse(BaseModel):
    """A stored segment without its embedding."""

    id: UUID
    organization_id: str
    text: str
    kind: SegmentKind
    status: str
    metadata: dict[str, Any]
    created_at: datetime

    @classmethod
    def from_segment(cls, segment: MemorySegment) -> "SegmentResponse":
        return cls(
            id=segment.id,
            organization_id=segment.organization_id,
            text=segment.text,
            kind=segment.kind,
            status=segment.status.value,
            metadata=segment.metadata.model_dump(mode="json"),
            created_at=segment.created_at,
        )


class ScoredSegmentResponse(BaseModel):
    segment: SegmentResponse
    score: float

    @classmethod
    def from_scored(cls, scored: ScoredSegment) -> "ScoredSegmentResponse":
        return cls(segment=SegmentResponse.from_segment(scored.segment), score=scored.score)


class UpdateMemoryResponse(BaseModel):
    success: bool
    action: UpdateAction
    segment_id: UUID | None = None
    superseded_id: UUID | None = None
    conflicts: list[ScoredSegmentResponse] = Field(default_factory=list)
    reason: str | None = None

    @classmethod
    def from_result(cls, result: UpdateResult) -> "UpdateMemoryResponse":
        return cls(
            success=result.success,
            action=result.action,
            segment_id=result.segment_id,
            superseded_id=result.superseded_id,
            conflicts=[ScoredSegmentResponse.from_scored(conflict) for conflict in result.conflicts],
            reason=result.reason,
        )


@router.post("/memory/messages", status_code=status.HTTP_201_CREATED, response_model=SegmentResponse)
async def store_message(
    organization_id: str,
    request: StoreMessageRequest,
    service: ConversationMemoryService = Depends(get_memory_service),
):
    """Store a single chat message."""
    segment = await service.store_single_message(organization_id, request.text, request.role, request.metadata)
    return SegmentResponse.from_segment(segment)


@router.post("/memory/exchanges", status_code=status.HTTP_201_CREATED, response_model=list[SegmentResponse])
async def store_exchange(
    organization_id: str,
    request: StoreExchangeRequest,
    service: ConversationMemoryService = Depends(get_memory_service),
):
    """Store a user message with the assistant's reply."""
    segments = await service.store_conversation_exchange(
        organization_id, request.user_message, request.assistant_response, request.metadata
    )
    return [SegmentResponse.from_segment(segment) for segment in segments]


@router.post("/memory/conversations", status_code=status.HTTP_201_CREATED, response_model=list[SegmentResponse])
async def process_conversations(
    organization_id: str,
    request: ProcessConversationsRequest,
    service: ConversationMemoryService = Depends(get_memory_service),
):
    """Segment, embed and store a batch of business conversations."""
    segments = await service.process_business_conversations(organization_id, request.conversations, request.format)
    return [SegmentResponse.from_segment(segment) for segment in segments]


@router.post("/memory/search", response_model=list[ScoredSegmentResponse])
async def search_memory(
    organization_id: str,
    request: SearchRequest,
    service: ConversationMemoryService = Depends(get_memory_service),
):
    if request.embedding:
        results = await service.search_similar_conversations(
            organization_id,
            request.embedding,
            threshold=request.threshold,
            limit=request.limit,
            include_superseded=request.include_superseded,
        )
    elif request.query:
        results = await service.search_by_text(
            organization_id,
            request.query,
            threshold=request.threshold,
            limit=request.limit,
            include_superseded=request.include_superseded,
        )
    else:
        raise ValidationError(
            "Either 'query' or 'embedding' is required",
            details=ValidationErrorDetails(
                source="memory_endpoint",
                operation="search_memory",
                organization_id=organization_id,
                field="query",
            ),
        )
    return [ScoredSegmentResponse.from_scored(result) for result in results]


@router.put("/memory", response_model=UpdateMemoryResponse)
async def update_memory(
    organization_id: str,
    request: UpdateMemoryRequest,
    service: ConversationMemoryService = Depends(get_memory_service),
):
    """Add knowledge, resolving conflicts with what is already stored.

    Responds 409 when the manual strategy found conflicts and nothing was written.
    """
    update = MemoryUpdate(
        text=request.text,
        kind=request.kind,
        confidence=request.confidence,
        reason=request.reason,
        metadata=request.metadata,
    )
    result = await service.update_memory(organization_id, update, request.conflict_strategy)
    response = UpdateMemoryResponse.from_result(result)

    if result.action is UpdateAction.CONFLICTS_DETECTED:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=response.model_dump(mode="json"))
    return response


@router.get("/memory/summary", response_model=KnowledgeSummary)
async def knowledge_summary(
    organization_id: str,
    service: ConversationMemoryService = Depends(get_memory_service),
):
    return await service.get_business_knowledge_summary(organization_id)


@router.get("/memory/{memory_id}", response_model=SegmentResponse)
async def get_memory(
    organization_id: str,
    memory_id: UUID,
    service: ConversationMemoryService = Depends(get_memory_service),
):
    segment = await service.get_memory(organization_id, memory_id)
    return SegmentResponse.from_segment(segment)


@router.delete("/memory/{memory_id}")
async def delete_memory(
    organization_id: str,
    memory_id: UUID,
    service: ConversationMemoryService = Depends(get_memory_service),
):
    deleted = await service.delete_memory(organization_id, memory_id)
    if not deleted:
        raise NotFoundError(
            f"Memory {memory_id} not found",
            details=ResourceErrorDetails(
                source="memory_endpoint",
                operation="delete_memory",
                organization_id=organization_id,
                resource_id=str(memory_id),
                resource_type="segment",
                action="delete",
            ),
        )
    return {"deleted": True, "memory_id": str(memory_id)}


@router.delete("/memory")
async def delete_organization_memory(
    organization_id: str,
    service: ConversationMemoryService = Depends(get_memory_service),
):
    """Purge every segment belonging to the organization."""
    deleted = await service.delete_organization_embeddings(organization_id)
    return {"deleted": deleted}
