"""Tenant metadata."""

from pydantic import BaseModel, ConfigDict, Field


class Organization(BaseModel):
    """A business using the assistant; the unit every segment is partitioned by."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    slug: str | None = None
    enabled_tools: list[str] = Field(default_factory=list)

    def has_tool(self, tool: str) -> bool:
        return tool in self.enabled_tools
