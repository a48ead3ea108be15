"""Decision lifecycle, supersession chains and their graph projection."""

from .ledger import DecisionLedger
from .refs import ArtifactRef, parse_artifact_ref, resolve_node_key
from .types import (
    Decision,
    DecisionCreate,
    DecisionEvent,
    DecisionEventType,
    DecisionFilter,
    DecisionPatch,
    DecisionStatus,
    DecisionTimelineItem,
    DecisionType,
    ParticipantRole,
    TimelineQuery,
)

__all__ = [
    "ArtifactRef",
    "Decision",
    "DecisionCreate",
    "DecisionEvent",
    "DecisionEventType",
    "DecisionFilter",
    "DecisionLedger",
    "DecisionPatch",
    "DecisionStatus",
    "DecisionTimelineItem",
    "DecisionType",
    "ParticipantRole",
    "TimelineQuery",
    "parse_artifact_ref",
    "resolve_node_key",
]
