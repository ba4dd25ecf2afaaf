"""Update requests, conflict outcomes and knowledge summaries."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from chayo_memory.domain.models.segment import ScoredSegment, SegmentKind


class ConflictStrategy(str, Enum):
    """How ``update_memory`` treats stored segments that say nearly the same thing."""

    AUTO = "auto"  # the newest conflicting segment is superseded
    KEEP_BOTH = "keep_both"  # write alongside, report conflicts
    MANUAL = "manual"  # write nothing, hand conflicts to a human


class UpdateAction(str, Enum):
    CREATED = "created"
    SUPERSEDED = "superseded"
    CREATED_WITH_CONFLICTS = "created_with_conflicts"
    CONFLICTS_DETECTED = "conflicts_detected"


class MemoryUpdate(BaseModel):
    """An explicit piece of knowledge a business wants the assistant to hold."""

    text: str
    kind: SegmentKind = SegmentKind.BUSINESS_FACT
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class UpdateResult(BaseModel):
    success: bool
    action: UpdateAction
    segment_id: UUID | None = None
    superseded_id: UUID | None = None
    conflicts: list[ScoredSegment] = Field(default_factory=list)
    reason: str | None = None


class KnowledgeSummary(BaseModel):
    """Dashboard view of what an organization's assistant currently knows."""

    organization_id: str
    total: int = 0
    active: int = 0
    superseded: int = 0
    by_kind: dict[str, int] = Field(default_factory=dict)
    oldest: datetime | None = None
    newest: datetime | None = None
    recent: list[str] = Field(default_factory=list)
    summary: str = ""
    degraded: bool = False
