"""Embedding request models."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EmbeddingType(str, Enum):
    """Types of embedding vectors."""

    DOCUMENT = "document"
    CHUNK = "chunk"
    QUERY = "query"
    TEXT = "text"  # Generic text embedding

    @property
    def input_type(self) -> str:
        """Voyage input type: queries are embedded asymmetrically to stored text."""
        return "query" if self is EmbeddingType.QUERY else "document"


class EmbeddingRequest(BaseModel):
    """A single text to embed, with what it will be used for."""

    text: str
    type: EmbeddingType = EmbeddingType.DOCUMENT
    metadata: dict[str, Any] = Field(default_factory=dict)
