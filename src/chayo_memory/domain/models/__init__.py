"""Domain models for the memory service."""

from .conversation import (
    Conversation,
    ConversationFormat,
    ConversationMessage,
    MessageRole,
    parse_conversation,
)
from .embedding import EmbeddingRequest, EmbeddingType
from .memory import (
    ConflictStrategy,
    KnowledgeSummary,
    MemoryUpdate,
    UpdateAction,
    UpdateResult,
)
from .organization import Organization
from .segment import (
    BaseSegmentMetadata,
    BusinessFactMetadata,
    ConversationMetadata,
    FaqMetadata,
    MemorySegment,
    ScoredSegment,
    SegmentKind,
    SegmentMetadata,
    SegmentStats,
    SegmentStatus,
    parse_metadata,
)

__all__ = [
    "BaseSegmentMetadata",
    "BusinessFactMetadata",
    "ConflictStrategy",
    "Conversation",
    "ConversationFormat",
    "ConversationMessage",
    "ConversationMetadata",
    "EmbeddingRequest",
    "EmbeddingType",
    "FaqMetadata",
    "KnowledgeSummary",
    "MemorySegment",
    "MemoryUpdate",
    "MessageRole",
    "Organization",
    "ScoredSegment",
    "SegmentKind",
    "SegmentMetadata",
    "SegmentStats",
    "SegmentStatus",
    "UpdateAction",
    "UpdateResult",
    "parse_conversation",
    "parse_metadata",
]
