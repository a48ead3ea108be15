"""Decision ledger models and the status state machine."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from knowledge_engine.kernel.time import coerce_utc_optional


class DecisionStatus(str, Enum):
    PROPOSED = "proposed"
    DECIDED = "decided"
    REVISITED = "revisited"
    SUPERSEDED = "superseded"


class DecisionType(str, Enum):
    TECHNICAL = "technical"
    PROCESS = "process"
    PRODUCT = "product"
    TEAM = "team"
    OTHER = "other"


class DecisionEventType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SUPERSEDED = "superseded"
    PARTICIPANT_ADDED = "participant_added"
    PARTICIPANT_REMOVED = "participant_removed"
    LINKED = "linked"


class ParticipantRole(str, Enum):
    PROPOSER = "proposer"
    APPROVER = "approver"
    PARTICIPANT = "participant"
    OBJECTOR = "objector"


CREATION_STATES = frozenset({DecisionStatus.PROPOSED, DecisionStatus.DECIDED})

# superseded is reachable only through supersede_decision
ALLOWED_TRANSITIONS: dict[DecisionStatus, frozenset[DecisionStatus]] = {
    DecisionStatus.PROPOSED: frozenset({DecisionStatus.DECIDED}),
    DecisionStatus.DECIDED: frozenset({DecisionStatus.REVISITED, DecisionStatus.SUPERSEDED}),
    DecisionStatus.REVISITED: frozenset({DecisionStatus.DECIDED, DecisionStatus.SUPERSEDED}),
    DecisionStatus.SUPERSEDED: frozenset(),
}

SUPERSEDABLE_STATES = frozenset({DecisionStatus.DECIDED, DecisionStatus.REVISITED})

MIN_CONFIDENCE = 0
MAX_CONFIDENCE = 100


def can_transition(current: DecisionStatus, target: DecisionStatus) -> bool:
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS[current]


def normalize_tags(tags: list[str] | set[str] | None) -> list[str]:
    """Tags are a set; stored sorted so equal sets compare equal."""
    if not tags:
        return []
    return sorted({tag.strip().lower() for tag in tags if tag and tag.strip()})


def normalize_topic(name: str) -> str:
    return " ".join(name.strip().lower().split())


# ============================================================================
# Inputs
# ============================================================================


class DecisionCreate(BaseModel):
    summary: str = Field(..., min_length=1)
    context: str | None = None
    reasoning: str | None = None
    video_id: str | None = None
    timestamp_start: int | None = Field(default=None, ge=0)
    timestamp_end: int | None = Field(default=None, ge=0)
    decision_type: DecisionType = DecisionType.OTHER
    status: DecisionStatus = DecisionStatus.PROPOSED
    confidence: int = 100
    tags: list[str] = Field(default_factory=list)

    participant_ids: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)
    actor_id: str | None = None

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: list[str]) -> list[str]:
        return normalize_tags(value)


class DecisionPatch(BaseModel):
    """Partial update. Only fields explicitly set are applied."""

    summary: str | None = Field(default=None, min_length=1)
    context: str | None = None
    reasoning: str | None = None
    timestamp_start: int | None = Field(default=None, ge=0)
    timestamp_end: int | None = Field(default=None, ge=0)
    decision_type: DecisionType | None = None
    status: DecisionStatus | None = None
    confidence: int | None = None
    tags: list[str] | None = None

    @field_validator("tags")
    @classmethod
    def _normalize_tags(cls, value: list[str] | None) -> list[str] | None:
        return normalize_tags(value) if value is not None else None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class TimelineQuery(BaseModel):
    topic: str | None = None
    person_id: str | None = None
    from_: datetime | None = Field(default=None, alias="from")
    to: datetime | None = None
    limit: int = 20
    offset: int = 0

    model_config = {"populate_by_name": True}

    @field_validator("from_", "to")
    @classmethod
    def _utc(cls, value: datetime | None) -> datetime | None:
        return coerce_utc_optional(value)


class DecisionFilter(BaseModel):
    video_id: str | None = None
    status: DecisionStatus | None = None
    decision_type: DecisionType | None = None
    min_confidence: int | None = None
    search: str | None = None
    limit: int = 50
    offset: int = 0


# ============================================================================
# Read Models
# ============================================================================


class Decision(BaseModel):
    id: str
    organization_id: str
    node_id: str
    video_id: str | None = None
    summary: str
    context: str | None = None
    reasoning: str | None = None
    timestamp_start: int | None = None
    timestamp_end: int | None = None
    decision_type: DecisionType
    status: DecisionStatus
    confidence: int
    tags: list[str] = Field(default_factory=list)
    superseded_by: str | None = None
    participant_ids: list[str] = Field(default_factory=list)
    decided_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class DecisionTimelineItem(BaseModel):
    decision: Decision
    occurred_at: datetime
    topics: list[str] = Field(default_factory=list)


class DecisionEvent(BaseModel):
    id: str
    decision_id: str
    organization_id: str
    event_type: DecisionEventType
    actor_id: str | None = None
    previous_value: dict[str, Any] | None = None
    new_value: dict[str, Any] | None = None
    created_at: datetime
