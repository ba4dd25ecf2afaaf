"""Conflict resolution strategies for knowledge updates.

A resolver only decides. ``ConversationMemoryService.update_memory`` applies
the decision; superseding writes the new segment and tags the old one in one
store operation.
"""

from enum import Enum
from typing import ClassVar, Protocol

from pydantic import BaseModel, ConfigDict, Field

from chayo_memory.domain.models import ConflictStrategy, MemoryUpdate, ScoredSegment


class ResolutionAction(str, Enum):
    SUPERSEDE = "supersede"  # write new, tag target as replaced
    KEEP_BOTH = "keep_both"  # write new, tag nothing
    DEFER = "defer"  # write nothing


class ConflictResolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: ResolutionAction
    target: ScoredSegment | None = None
    conflicts: list[ScoredSegment] = Field(default_factory=list)
    reason: str


class ConflictResolver(Protocol):
    strategy: ClassVar[ConflictStrategy]

    def resolve(self, update: MemoryUpdate, conflicts: list[ScoredSegment]) -> ConflictResolution: ...


class AutoResolver:
    """Newest wins: the most recent conflicting segment is superseded.

    Ties on ``created_at`` go to the higher score.
    """

    strategy: ClassVar[ConflictStrategy] = ConflictStrategy.AUTO

    def resolve(self, update: MemoryUpdate, conflicts: list[ScoredSegment]) -> ConflictResolution:
        target = max(conflicts, key=lambda item: (item.segment.created_at, item.score))
        return ConflictResolution(
            action=ResolutionAction.SUPERSEDE,
            target=target,
            conflicts=conflicts,
            reason=f"Replaced segment {target.segment.id} (similarity {target.score:.3f})",
        )


class KeepBothResolver:
    strategy: ClassVar[ConflictStrategy] = ConflictStrategy.KEEP_BOTH

    def resolve(self, update: MemoryUpdate, conflicts: list[ScoredSegment]) -> ConflictResolution:
        return ConflictResolution(
            action=ResolutionAction.KEEP_BOTH,
            conflicts=conflicts,
            reason=f"Stored alongside {len(conflicts)} similar segment(s)",
        )


class ManualResolver:
    strategy: ClassVar[ConflictStrategy] = ConflictStrategy.MANUAL

    def resolve(self, update: MemoryUpdate, conflicts: list[ScoredSegment]) -> ConflictResolution:
        return ConflictResolution(
            action=ResolutionAction.DEFER,
            conflicts=conflicts,
            reason=f"{len(conflicts)} conflicting segment(s) need review",
        )


CONFLICT_RESOLVERS: dict[ConflictStrategy, ConflictResolver] = {
    resolver.strategy: resolver for resolver in (AutoResolver(), KeepBothResolver(), ManualResolver())
}

_missing = set(ConflictStrategy) - set(CONFLICT_RESOLVERS)
if _missing:
    raise RuntimeError(f"No conflict resolver for: {sorted(strategy.value for strategy in _missing)}")


def get_resolver(strategy: ConflictStrategy) -> ConflictResolver:
    return CONFLICT_RESOLVERS[strategy]
