"""Memory segments: the unit of stored knowledge."""

from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from chayo_memory.core.base import ValidationErrorDetails
from chayo_memory.core.errors import ValidationError
from chayo_memory.domain.models.conversation import MessageRole
from chayo_memory.domain.models.utils import utc_now

Scalar = str | int | float | bool | None


class SegmentKind(str, Enum):
    CONVERSATION = "conversation"
    FAQ = "faq"
    BUSINESS_FACT = "business_fact"


class SegmentStatus(str, Enum):
    ACTIVE = "active"
    SUPERSEDED = "superseded"


class BaseSegmentMetadata(BaseModel):
    """Fields every segment carries regardless of kind."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    source: str | None = None
    confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    reason: str | None = None
    supersedes: UUID | None = None
    superseded_by: UUID | None = None
    superseded_at: datetime | None = None
    attributes: dict[str, Scalar] = Field(default_factory=dict)


class ConversationMetadata(BaseSegmentMetadata):
    kind: Literal["conversation"] = "conversation"
    role: MessageRole | None = None
    roles: list[MessageRole] = Field(default_factory=list)
    turn_count: int = Field(default=1, ge=1)
    conversation_index: int | None = None
    chunk_index: int | None = None
    format: str | None = None


class FaqMetadata(BaseSegmentMetadata):
    kind: Literal["faq"] = "faq"
    question: str | None = None
    category: str | None = None


class BusinessFactMetadata(BaseSegmentMetadata):
    kind: Literal["business_fact"] = "business_fact"
    field_name: str | None = None


SegmentMetadata = Annotated[
    ConversationMetadata | FaqMetadata | BusinessFactMetadata,
    Field(discriminator="kind"),
]

METADATA_TYPES: dict[SegmentKind, type[BaseSegmentMetadata]] = {
    SegmentKind.CONVERSATION: ConversationMetadata,
    SegmentKind.FAQ: FaqMetadata,
    SegmentKind.BUSINESS_FACT: BusinessFactMetadata,
}


def _metadata_error(message: str, field: str, value: Any = None) -> ValidationError:
    return ValidationError(
        message,
        details=ValidationErrorDetails(
            source="segment_metadata",
            operation="parse_metadata",
            field=field,
            actual_value=value if isinstance(value, str | int | float | bool) else None,
        ),
    )


def parse_metadata(
    raw: Mapping[str, Any] | None,
    kind: SegmentKind | str | None = None,
    **overrides: Any,
) -> BaseSegmentMetadata:
    """Parse an untyped metadata mapping into the variant for its kind.

    Known keys become fields; unknown scalar keys are kept in ``attributes``.
    Nested unknown values are rejected rather than silently dropped.
    ``overrides`` are applied after the caller's keys.
    """
    data = dict(raw or {})
    kind_value = data.pop("kind", None) or kind or SegmentKind.BUSINESS_FACT
    try:
        segment_kind = SegmentKind(kind_value)
    except ValueError as e:
        raise _metadata_error(f"Unknown segment kind: {kind_value!r}", field="kind", value=kind_value) from e

    model = METADATA_TYPES[segment_kind]
    known = set(model.model_fields) - {"kind", "attributes"}

    attributes = data.pop("attributes", None) or {}
    if not isinstance(attributes, Mapping):
        raise _metadata_error("'attributes' must be an object", field="attributes")
    attributes = dict(attributes)

    fields: dict[str, Any] = {}
    for key, value in {**data, **overrides}.items():
        if key in known:
            fields[key] = value
        elif value is None or isinstance(value, str | int | float | bool):
            attributes[key] = value
        else:
            raise _metadata_error(f"Metadata key '{key}' must be a scalar value", field=key)

    try:
        return model(**fields, attributes=attributes)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "metadata"
        raise _metadata_error(f"Invalid metadata: {first['msg']}", field=field) from e


class MemorySegment(BaseModel):
    """An embedded unit of business knowledge belonging to one organization.

    Segments are never edited in place. The only change a stored segment ever
    sees is the superseding tag, applied through ``mark_superseded``.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    organization_id: str = Field(min_length=1)
    text: str
    embedding: list[float]
    metadata: SegmentMetadata = Field(default_factory=BusinessFactMetadata)
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def kind(self) -> SegmentKind:
        return SegmentKind(self.metadata.kind)

    @property
    def status(self) -> SegmentStatus:
        if self.metadata.superseded_by is not None:
            return SegmentStatus.SUPERSEDED
        return SegmentStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status is SegmentStatus.ACTIVE

    def superseded(self, by: UUID, at: datetime) -> "MemorySegment":
        """Copy of this segment tagged as replaced by ``by``."""
        metadata = self.metadata.model_copy(update={"superseded_by": by, "superseded_at": at})
        return self.model_copy(update={"metadata": metadata})


class ScoredSegment(BaseModel):
    """A segment returned from similarity search with its cosine score."""

    model_config = ConfigDict(frozen=True)

    segment: MemorySegment
    score: float


class SegmentStats(BaseModel):
    """Aggregate counts over one organization's segments."""

    total: int = 0
    superseded: int = 0
    by_kind: dict[str, int] = Field(default_factory=dict)
    oldest: datetime | None = None
    newest: datetime | None = None

    @property
    def active(self) -> int:
        return self.total - self.superseded
