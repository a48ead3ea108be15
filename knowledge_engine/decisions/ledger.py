"""
Decision Ledger

Owns the `decision` table and keeps its graph projection in sync. Every write
runs in one transaction that touches the decision row, its `decision` node,
the edges around it and the append-only `decision_event` history together.

State machine:
    proposed -> decided -> revisited <-> decided
    decided | revisited -> superseded (terminal, via supersede_decision only)

Supersession is serialized by a single guarded UPDATE
(`status IN (decided, revisited)`); the losing caller of a race gets
ConflictError.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Sequence

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from knowledge_engine.db.client import Database
from knowledge_engine.db.models import (
    DecisionEventRow,
    DecisionRow,
    KnowledgeEdgeRow,
    KnowledgeNodeRow,
    VideoRow,
)
from knowledge_engine.decisions.refs import ArtifactRef, parse_artifact_ref, resolve_node_key
from knowledge_engine.decisions.types import (
    CREATION_STATES,
    MAX_CONFIDENCE,
    MIN_CONFIDENCE,
    SUPERSEDABLE_STATES,
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
    can_transition,
    normalize_topic,
)
from knowledge_engine.graph.store import GraphStore
from knowledge_engine.graph.types import EdgeInput, NodeInput, NodeType, Relationship
from knowledge_engine.kernel.errors import (
    ConflictError,
    InvalidReferenceError,
    NotFoundError,
    ValidationError,
)
from knowledge_engine.kernel.ids import (
    DECISION_EVENT_ID_PREFIX,
    DECISION_ID_PREFIX,
    new_prefixed_id,
)
from knowledge_engine.kernel.time import (
    Clock,
    SystemClock,
    coerce_utc,
    coerce_utc_optional,
    isoformat_z,
)
from knowledge_engine.kernel.validation import require_int_in_range, require_organization_id
from knowledge_engine.monitoring.metrics import Metrics, get_metrics

logger = structlog.get_logger()

MAX_PAGE_SIZE = 100
_NODE_NAME_MAX = 200


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return isoformat_z(value)
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return value


def _validate_confidence(confidence: int | None) -> None:
    if confidence is None:
        return
    if isinstance(confidence, bool) or not isinstance(confidence, int):
        raise ValidationError(message="confidence must be an integer", meta={"field": "confidence"})
    if confidence < MIN_CONFIDENCE or confidence > MAX_CONFIDENCE:
        raise ValidationError(
            message=f"confidence must be between {MIN_CONFIDENCE} and {MAX_CONFIDENCE}",
            meta={"field": "confidence", "value": confidence},
        )


def _validate_timestamps(start: int | None, end: int | None) -> None:
    if start is not None and end is not None and end < start:
        raise ValidationError(
            message="timestamp_end must not be before timestamp_start",
            meta={"timestamp_start": start, "timestamp_end": end},
        )


def _validate_page(limit: int, offset: int) -> None:
    require_int_in_range(limit, field="limit", minimum=1, maximum=MAX_PAGE_SIZE)
    if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
        raise ValidationError(message="offset must be >= 0", meta={"field": "offset"})


def _node_name(summary: str) -> str:
    summary = summary.strip()
    if len(summary) <= _NODE_NAME_MAX:
        return summary
    return summary[: _NODE_NAME_MAX - 3].rstrip() + "..."


def decision_from_row(row: DecisionRow, participant_ids: Iterable[str] = ()) -> Decision:
    return Decision(
        id=row.id,
        organization_id=row.organization_id,
        node_id=row.node_id,
        video_id=row.video_id,
        summary=row.summary,
        context=row.context,
        reasoning=row.reasoning,
        timestamp_start=row.timestamp_start,
        timestamp_end=row.timestamp_end,
        decision_type=DecisionType(row.decision_type),
        status=DecisionStatus(row.status),
        confidence=row.confidence,
        tags=sorted(row.tags or []),
        superseded_by=row.superseded_by,
        participant_ids=sorted(participant_ids),
        decided_at=coerce_utc_optional(row.decided_at),
        created_at=coerce_utc(row.created_at),
        updated_at=coerce_utc(row.updated_at),
    )


def _event_from_row(row: DecisionEventRow) -> DecisionEvent:
    return DecisionEvent(
        id=row.id,
        decision_id=row.decision_id,
        organization_id=row.organization_id,
        event_type=DecisionEventType(row.event_type),
        actor_id=row.actor_id,
        previous_value=row.previous_value,
        new_value=row.new_value,
        created_at=coerce_utc(row.created_at),
    )


class DecisionLedger:
    """Decision lifecycle, supersession chains and decision lookups."""

    def __init__(
        self,
        db: Database,
        graph: GraphStore,
        clock: Clock | None = None,
        metrics: Metrics | None = None,
    ):
        self._db = db
        self._graph = graph
        self._clock = clock or SystemClock()
        self._metrics = metrics or get_metrics()

    # =========================================================================
    # Writes
    # =========================================================================

    async def create_decision(self, organization_id: str, data: DecisionCreate) -> Decision:
        """
        Record a decision and its graph projection in one transaction.

        Writes the decision row, the `decision` node, a `video -produces->
        decision` edge when `video_id` is set, and any requested participant,
        topic and artifact edges.
        """
        organization_id = require_organization_id(organization_id)
        if data.status not in CREATION_STATES:
            raise ValidationError(
                message="Decisions can only be created as proposed or decided",
                meta={"field": "status", "value": data.status.value},
            )
        if not data.summary.strip():
            raise ValidationError(message="summary is required", meta={"field": "summary"})
        _validate_confidence(data.confidence)
        _validate_timestamps(data.timestamp_start, data.timestamp_end)

        now = self._clock.now()
        decision_id = new_prefixed_id(DECISION_ID_PREFIX)

        async with self._db.session() as session:
            node_id = await self._graph.upsert_node_in_session(
                session,
                NodeInput(
                    organization_id=organization_id,
                    type=NodeType.DECISION,
                    name=_node_name(data.summary),
                    description=data.context,
                    external_id=decision_id,
                    metadata={
                        "status": data.status.value,
                        "decision_type": data.decision_type.value,
                    },
                ),
            )

            row = DecisionRow(
                id=decision_id,
                organization_id=organization_id,
                node_id=node_id,
                video_id=data.video_id,
                summary=data.summary,
                context=data.context,
                reasoning=data.reasoning,
                timestamp_start=data.timestamp_start,
                timestamp_end=data.timestamp_end,
                decision_type=data.decision_type.value,
                status=data.status.value,
                confidence=data.confidence,
                tags=list(data.tags),
                decided_at=now if data.status == DecisionStatus.DECIDED else None,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            await session.flush()

            if data.video_id:
                video_node_id = await self._ensure_video_node(
                    session, organization_id, data.video_id
                )
                await self._link(session, organization_id, video_node_id, node_id, Relationship.PRODUCES)

            participant_ids = sorted({p.strip() for p in data.participant_ids if p and p.strip()})
            for user_id in participant_ids:
                person_node_id = await self._ensure_node(
                    session, organization_id, NodeType.PERSON, user_id, user_id
                )
                await self._link(
                    session,
                    organization_id,
                    person_node_id,
                    node_id,
                    Relationship.PARTICIPATES_IN,
                    metadata={"role": ParticipantRole.PARTICIPANT.value},
                )

            for topic in data.topics:
                if not topic or not topic.strip():
                    continue
                topic_node_id = await self._ensure_node(
                    session, organization_id, NodeType.TOPIC, normalize_topic(topic), topic.strip()
                )
                await self._link(session, organization_id, node_id, topic_node_id, Relationship.ABOUT)

            for ref in data.references:
                target_id = await self._ensure_ref_node(
                    session, organization_id, parse_artifact_ref(ref)
                )
                await self._link(session, organization_id, node_id, target_id, Relationship.REFERENCES)

            decision = decision_from_row(row, participant_ids)
            self._append_event(
                session,
                decision_id=decision_id,
                organization_id=organization_id,
                event_type=DecisionEventType.CREATED,
                actor_id=data.actor_id,
                new_value={
                    "summary": decision.summary,
                    "status": decision.status.value,
                    "decision_type": decision.decision_type.value,
                    "confidence": decision.confidence,
                    "video_id": decision.video_id,
                },
                at=now,
            )

        logger.info(
            "Decision created",
            organization_id=organization_id,
            decision_id=decision_id,
            status=decision.status.value,
            video_id=data.video_id,
        )
        return decision

    async def update_decision(
        self,
        organization_id: str,
        decision_id: str,
        patch: DecisionPatch,
        actor_id: str | None = None,
    ) -> Decision:
        """
        Apply a partial update.

        Raises:
            ValidationError: The patch asks for `superseded` or carries an
                out-of-range confidence.
            NotFoundError: Unknown decision.
            ConflictError: The transition is not allowed, the decision is
                superseded, or its status changed concurrently.
        """
        organization_id = require_organization_id(organization_id)
        changes = patch.changes()
        target_status = changes.get("status")
        if target_status == DecisionStatus.SUPERSEDED:
            raise ValidationError(
                message="Use supersede_decision to supersede a decision",
                meta={"field": "status"},
            )
        if "confidence" in changes:
            if changes["confidence"] is None:
                raise ValidationError(message="confidence cannot be cleared", meta={"field": "confidence"})
            _validate_confidence(changes["confidence"])
        for required in ("summary", "decision_type", "tags"):
            if required in changes and changes[required] is None:
                raise ValidationError(message=f"{required} cannot be cleared", meta={"field": required})
        if "summary" in changes and not changes["summary"].strip():
            raise ValidationError(message="summary is required", meta={"field": "summary"})

        now = self._clock.now()

        async with self._db.session() as session:
            row = await self._require_decision_row(session, organization_id, decision_id)
            current_status = DecisionStatus(row.status)

            if current_status == DecisionStatus.SUPERSEDED:
                raise ConflictError(
                    message="Superseded decisions are immutable",
                    meta={"decision_id": decision_id, "superseded_by": row.superseded_by},
                )
            if target_status is not None and not can_transition(current_status, target_status):
                raise ConflictError(
                    message=f"Cannot move decision from {current_status.value} to {target_status.value}",
                    meta={
                        "decision_id": decision_id,
                        "from": current_status.value,
                        "to": target_status.value,
                    },
                )
            _validate_timestamps(
                changes.get("timestamp_start", row.timestamp_start),
                changes.get("timestamp_end", row.timestamp_end),
            )

            values: dict[str, Any] = {}
            previous: dict[str, Any] = {}
            for field, value in changes.items():
                stored = value.value if isinstance(value, Enum) else value
                if getattr(row, field) == stored:
                    continue
                previous[field] = _jsonable(getattr(row, field))
                values[field] = stored

            if not values:
                participants = await self._participants_by_node(session, [row.node_id])
                return decision_from_row(row, participants.get(row.node_id, []))

            if values.get("status") == DecisionStatus.DECIDED.value:
                values["decided_at"] = now
            values["updated_at"] = now

            result = await session.execute(
                update(DecisionRow)
                .where(
                    DecisionRow.id == decision_id,
                    DecisionRow.organization_id == organization_id,
                    DecisionRow.status == current_status.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ConflictError(
                    message="Decision changed concurrently",
                    meta={"decision_id": decision_id},
                )

            row = await self._require_decision_row(session, organization_id, decision_id, refresh=True)
            await self._graph.upsert_node_in_session(
                session,
                NodeInput(
                    organization_id=organization_id,
                    type=NodeType.DECISION,
                    name=_node_name(row.summary),
                    description=row.context,
                    external_id=row.id,
                    metadata={"status": row.status, "decision_type": row.decision_type},
                ),
            )
            self._append_event(
                session,
                decision_id=decision_id,
                organization_id=organization_id,
                event_type=DecisionEventType.UPDATED,
                actor_id=actor_id,
                previous_value=previous,
                new_value={field: _jsonable(values[field]) for field in previous},
                at=now,
            )
            participants = await self._participants_by_node(session, [row.node_id])
            decision = decision_from_row(row, participants.get(row.node_id, []))

        logger.info(
            "Decision updated",
            organization_id=organization_id,
            decision_id=decision_id,
            fields=sorted(previous),
        )
        return decision

    async def supersede_decision(
        self,
        organization_id: str,
        old_id: str,
        new_id: str,
        actor_id: str | None = None,
    ) -> Decision:
        """
        Mark `old_id` as superseded by `new_id` and add the `new -supersedes->
        old` edge.

        The guarded UPDATE is the first statement of the transaction and the
        only concurrency control: of any number of concurrent callers exactly
        one sees a matching row.
        """
        organization_id = require_organization_id(organization_id)
        if old_id == new_id:
            raise ValidationError(
                message="A decision cannot supersede itself",
                meta={"decision_id": old_id},
            )

        now = self._clock.now()

        async with self._db.session() as session:
            result = await session.execute(
                update(DecisionRow)
                .where(
                    DecisionRow.id == old_id,
                    DecisionRow.organization_id == organization_id,
                    DecisionRow.status.in_([s.value for s in SUPERSEDABLE_STATES]),
                )
                .values(
                    status=DecisionStatus.SUPERSEDED.value,
                    superseded_by=new_id,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                existing = await self._get_decision_row(session, organization_id, old_id)
                if existing is None:
                    raise NotFoundError(
                        message="Decision not found",
                        meta={"decision_id": old_id},
                    )
                if existing.status == DecisionStatus.SUPERSEDED.value:
                    self._metrics.track_supersession_conflict()
                    logger.warning(
                        "Decision already superseded",
                        organization_id=organization_id,
                        decision_id=old_id,
                        superseded_by=existing.superseded_by,
                    )
                    raise ConflictError(
                        message="Decision is already superseded",
                        meta={"decision_id": old_id, "superseded_by": existing.superseded_by},
                    )
                raise ConflictError(
                    message=f"Cannot supersede a {existing.status} decision",
                    meta={"decision_id": old_id, "status": existing.status},
                )

            replacement = await self._get_decision_row(session, organization_id, new_id)
            if replacement is None:
                raise ConflictError(
                    message="Superseding decision does not exist",
                    meta={"decision_id": new_id},
                )
            if replacement.status == DecisionStatus.SUPERSEDED.value:
                raise ConflictError(
                    message="Superseding decision is itself superseded",
                    meta={"decision_id": new_id, "superseded_by": replacement.superseded_by},
                )

            old_row = await self._require_decision_row(session, organization_id, old_id, refresh=True)
            await self._link(
                session, organization_id, replacement.node_id, old_row.node_id, Relationship.SUPERSEDES
            )
            await self._graph.upsert_node_in_session(
                session,
                NodeInput(
                    organization_id=organization_id,
                    type=NodeType.DECISION,
                    name=_node_name(old_row.summary),
                    description=old_row.context,
                    external_id=old_row.id,
                    metadata={"status": old_row.status, "decision_type": old_row.decision_type},
                ),
            )
            self._append_event(
                session,
                decision_id=old_id,
                organization_id=organization_id,
                event_type=DecisionEventType.SUPERSEDED,
                actor_id=actor_id,
                previous_value={"superseded_by": None},
                new_value={"status": DecisionStatus.SUPERSEDED.value, "superseded_by": new_id},
                at=now,
            )
            participants = await self._participants_by_node(session, [old_row.node_id])
            decision = decision_from_row(old_row, participants.get(old_row.node_id, []))

        logger.info(
            "Decision superseded",
            organization_id=organization_id,
            decision_id=old_id,
            superseded_by=new_id,
        )
        return decision

    async def add_participant(
        self,
        organization_id: str,
        decision_id: str,
        user_id: str,
        role: ParticipantRole = ParticipantRole.PARTICIPANT,
        actor_id: str | None = None,
    ) -> bool:
        """Add a `participates_in` edge. Returns False when it already existed."""
        organization_id = require_organization_id(organization_id)
        user_id = self._require_user_id(user_id)

        async with self._db.session() as session:
            row = await self._require_decision_row(session, organization_id, decision_id)
            person_node_id = await self._ensure_node(
                session, organization_id, NodeType.PERSON, user_id, user_id
            )
            if await self._edge_exists(
                session, person_node_id, row.node_id, Relationship.PARTICIPATES_IN
            ):
                return False

            await self._link(
                session,
                organization_id,
                person_node_id,
                row.node_id,
                Relationship.PARTICIPATES_IN,
                metadata={"role": ParticipantRole(role).value},
            )
            self._append_event(
                session,
                decision_id=decision_id,
                organization_id=organization_id,
                event_type=DecisionEventType.PARTICIPANT_ADDED,
                actor_id=actor_id,
                new_value={"user_id": user_id, "role": ParticipantRole(role).value},
                at=self._clock.now(),
            )

        logger.info(
            "Decision participant added",
            organization_id=organization_id,
            decision_id=decision_id,
            user_id=user_id,
        )
        return True

    async def remove_participant(
        self,
        organization_id: str,
        decision_id: str,
        user_id: str,
        actor_id: str | None = None,
    ) -> bool:
        """Remove the `participates_in` edge. Returns False when there was none."""
        organization_id = require_organization_id(organization_id)
        user_id = self._require_user_id(user_id)

        async with self._db.session() as session:
            row = await self._require_decision_row(session, organization_id, decision_id)
            person = await self._graph.find_node_in_session(
                session, organization_id, NodeType.PERSON, user_id
            )
            if person is None:
                return False
            removed = await self._graph.delete_edge_by_key_in_session(
                session,
                organization_id,
                person.id,
                row.node_id,
                Relationship.PARTICIPATES_IN.value,
            )
            if not removed:
                return False
            self._append_event(
                session,
                decision_id=decision_id,
                organization_id=organization_id,
                event_type=DecisionEventType.PARTICIPANT_REMOVED,
                actor_id=actor_id,
                previous_value={"user_id": user_id},
                at=self._clock.now(),
            )

        logger.info(
            "Decision participant removed",
            organization_id=organization_id,
            decision_id=decision_id,
            user_id=user_id,
        )
        return True

    async def link_artifact(
        self,
        organization_id: str,
        decision_id: str,
        artifact_ref: str,
        actor_id: str | None = None,
    ) -> str:
        """
        Link a decision to an artifact reference. Returns the artifact node id.

        Raises:
            InvalidReferenceError: A `decision:` or `video:` reference names a
                row that does not exist in the organization.
        """
        organization_id = require_organization_id(organization_id)
        parsed = parse_artifact_ref(artifact_ref)

        async with self._db.session() as session:
            row = await self._require_decision_row(session, organization_id, decision_id)
            target_id = await self._ensure_ref_node(session, organization_id, parsed)
            if target_id == row.node_id:
                raise ValidationError(
                    message="A decision cannot reference itself",
                    meta={"decision_id": decision_id},
                )
            if not await self._edge_exists(session, row.node_id, target_id, Relationship.REFERENCES):
                await self._link(session, organization_id, row.node_id, target_id, Relationship.REFERENCES)
                self._append_event(
                    session,
                    decision_id=decision_id,
                    organization_id=organization_id,
                    event_type=DecisionEventType.LINKED,
                    actor_id=actor_id,
                    new_value={"artifact_ref": parsed.raw, "node_id": target_id},
                    at=self._clock.now(),
                )

        return target_id

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_decision(self, organization_id: str, decision_id: str) -> Decision:
        organization_id = require_organization_id(organization_id)
        async with self._db.session() as session:
            row = await self._require_decision_row(session, organization_id, decision_id)
            participants = await self._participants_by_node(session, [row.node_id])
        return decision_from_row(row, participants.get(row.node_id, []))

    async def list_decisions(
        self,
        organization_id: str,
        filters: DecisionFilter | None = None,
    ) -> list[Decision]:
        """Decisions of an organization, newest first."""
        organization_id = require_organization_id(organization_id)
        filters = filters or DecisionFilter()
        _validate_page(filters.limit, filters.offset)
        _validate_confidence(filters.min_confidence)

        stmt = select(DecisionRow).where(DecisionRow.organization_id == organization_id)
        if filters.video_id:
            stmt = stmt.where(DecisionRow.video_id == filters.video_id)
        if filters.status is not None:
            stmt = stmt.where(DecisionRow.status == filters.status.value)
        if filters.decision_type is not None:
            stmt = stmt.where(DecisionRow.decision_type == filters.decision_type.value)
        if filters.min_confidence is not None:
            stmt = stmt.where(DecisionRow.confidence >= filters.min_confidence)
        if filters.search and filters.search.strip():
            pattern = f"%{filters.search.strip()}%"
            stmt = stmt.where(
                or_(
                    DecisionRow.summary.ilike(pattern),
                    DecisionRow.context.ilike(pattern),
                    DecisionRow.reasoning.ilike(pattern),
                )
            )
        stmt = (
            stmt.order_by(DecisionRow.created_at.desc(), DecisionRow.id.asc())
            .limit(filters.limit)
            .offset(filters.offset)
        )

        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            participants = await self._participants_by_node(session, [r.node_id for r in rows])
        return [decision_from_row(r, participants.get(r.node_id, [])) for r in rows]

    async def get_decision_context(
        self,
        organization_id: str,
        entity_type: str,
        entity_id: str,
    ) -> list[Decision]:
        """
        Decisions linked, in either edge direction, to the node named by
        `(entity_type, entity_id)`.

        Ordered by `timestamp_start` descending (unset last), then
        `created_at` descending. An unknown entity yields an empty list.
        """
        organization_id = require_organization_id(organization_id)
        if not entity_type or not entity_id:
            raise ValidationError(
                message="entity_type and entity_id are required",
                meta={"entity_type": entity_type, "entity_id": entity_id},
            )
        node_type, external_id = resolve_node_key(entity_type, entity_id)

        async with self._db.session() as session:
            node = await self._graph.find_node_in_session(
                session, organization_id, node_type, external_id
            )
            if node is None:
                return []

            neighbor_ids = (
                select(KnowledgeEdgeRow.source_node_id)
                .where(
                    KnowledgeEdgeRow.organization_id == organization_id,
                    KnowledgeEdgeRow.target_node_id == node.id,
                )
                .union(
                    select(KnowledgeEdgeRow.target_node_id).where(
                        KnowledgeEdgeRow.organization_id == organization_id,
                        KnowledgeEdgeRow.source_node_id == node.id,
                    )
                )
            )
            rows = (
                await session.execute(
                    select(DecisionRow)
                    .where(
                        DecisionRow.organization_id == organization_id,
                        DecisionRow.node_id.in_(neighbor_ids),
                    )
                    .order_by(
                        DecisionRow.timestamp_start.desc().nulls_last(),
                        DecisionRow.created_at.desc(),
                        DecisionRow.id.asc(),
                    )
                )
            ).scalars().all()
            participants = await self._participants_by_node(session, [r.node_id for r in rows])

        return [decision_from_row(r, participants.get(r.node_id, [])) for r in rows]

    async def get_decision_timeline(
        self,
        organization_id: str,
        query: TimelineQuery,
    ) -> list[DecisionTimelineItem]:
        """
        Decisions filtered by topic and/or participant within `[from, to)` on
        `decided_at` (or `created_at` when never decided), newest first.
        """
        items, _ = await self.get_decision_timeline_page(organization_id, query)
        return items

    async def get_decision_timeline_page(
        self,
        organization_id: str,
        query: TimelineQuery,
    ) -> tuple[list[DecisionTimelineItem], bool]:
        """Timeline page plus whether another page exists.

        Reads one row past the page, so `has_more` is never true at the end.
        """
        organization_id = require_organization_id(organization_id)
        _validate_page(query.limit, query.offset)
        if query.from_ is not None and query.to is not None and query.from_ >= query.to:
            raise ValidationError(
                message="'from' must be before 'to'",
                meta={"from": isoformat_z(query.from_), "to": isoformat_z(query.to)},
            )

        occurred_at = func.coalesce(DecisionRow.decided_at, DecisionRow.created_at)
        stmt = select(DecisionRow).where(DecisionRow.organization_id == organization_id)

        if query.topic and query.topic.strip():
            topic_nodes = select(KnowledgeNodeRow.id).where(
                KnowledgeNodeRow.organization_id == organization_id,
                KnowledgeNodeRow.type == NodeType.TOPIC.value,
                or_(
                    KnowledgeNodeRow.id == query.topic.strip(),
                    KnowledgeNodeRow.external_id == normalize_topic(query.topic),
                ),
            )
            stmt = stmt.where(
                DecisionRow.node_id.in_(
                    select(KnowledgeEdgeRow.source_node_id).where(
                        KnowledgeEdgeRow.relationship == Relationship.ABOUT.value,
                        KnowledgeEdgeRow.target_node_id.in_(topic_nodes),
                    )
                )
            )

        if query.person_id and query.person_id.strip():
            person_nodes = select(KnowledgeNodeRow.id).where(
                KnowledgeNodeRow.organization_id == organization_id,
                KnowledgeNodeRow.type == NodeType.PERSON.value,
                KnowledgeNodeRow.external_id == query.person_id.strip(),
            )
            stmt = stmt.where(
                DecisionRow.node_id.in_(
                    select(KnowledgeEdgeRow.target_node_id).where(
                        KnowledgeEdgeRow.relationship == Relationship.PARTICIPATES_IN.value,
                        KnowledgeEdgeRow.source_node_id.in_(person_nodes),
                    )
                )
            )

        if query.from_ is not None:
            stmt = stmt.where(occurred_at >= query.from_)
        if query.to is not None:
            stmt = stmt.where(occurred_at < query.to)

        stmt = (
            stmt.order_by(occurred_at.desc(), DecisionRow.id.asc())
            .limit(query.limit + 1)
            .offset(query.offset)
        )

        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            has_more = len(rows) > query.limit
            rows = rows[: query.limit]
            node_ids = [r.node_id for r in rows]
            participants = await self._participants_by_node(session, node_ids)
            topics = await self._topics_by_node(session, node_ids)

        items = [
            DecisionTimelineItem(
                decision=decision_from_row(r, participants.get(r.node_id, [])),
                occurred_at=coerce_utc(r.decided_at or r.created_at),
                topics=topics.get(r.node_id, []),
            )
            for r in rows
        ]
        return items, has_more

    async def get_decision_history(
        self,
        organization_id: str,
        decision_id: str,
    ) -> list[DecisionEvent]:
        """Append-only event history of a decision, oldest first."""
        organization_id = require_organization_id(organization_id)
        async with self._db.session() as session:
            await self._require_decision_row(session, organization_id, decision_id)
            rows = (
                await session.execute(
                    select(DecisionEventRow)
                    .where(
                        DecisionEventRow.decision_id == decision_id,
                        DecisionEventRow.organization_id == organization_id,
                    )
                    .order_by(DecisionEventRow.created_at.asc(), DecisionEventRow.id.asc())
                )
            ).scalars().all()
        return [_event_from_row(r) for r in rows]

    async def get_supersession_chain(
        self,
        organization_id: str,
        decision_id: str,
    ) -> list[Decision]:
        """The decision followed by each successor up to the current one."""
        organization_id = require_organization_id(organization_id)
        chain: list[Decision] = []
        seen: set[str] = set()

        async with self._db.session() as session:
            row = await self._require_decision_row(session, organization_id, decision_id)
            while row is not None and row.id not in seen:
                seen.add(row.id)
                chain.append(decision_from_row(row))
                if not row.superseded_by:
                    break
                row = await self._get_decision_row(session, organization_id, row.superseded_by)

        return chain

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _require_user_id(user_id: str) -> str:
        if not user_id or not user_id.strip():
            raise ValidationError(message="user_id is required", meta={"field": "user_id"})
        return user_id.strip()

    async def _get_decision_row(
        self,
        session: AsyncSession,
        organization_id: str,
        decision_id: str,
        refresh: bool = False,
    ) -> DecisionRow | None:
        stmt = select(DecisionRow).where(
            DecisionRow.id == decision_id,
            DecisionRow.organization_id == organization_id,
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def _require_decision_row(
        self,
        session: AsyncSession,
        organization_id: str,
        decision_id: str,
        refresh: bool = False,
    ) -> DecisionRow:
        row = await self._get_decision_row(session, organization_id, decision_id, refresh=refresh)
        if row is None:
            raise NotFoundError(
                message="Decision not found",
                meta={"decision_id": decision_id},
            )
        return row

    async def _ensure_node(
        self,
        session: AsyncSession,
        organization_id: str,
        node_type: NodeType,
        external_id: str,
        name: str,
    ) -> str:
        """Node id for a natural key, creating the node when absent.

        Existing nodes are left untouched so ingestion-provided names survive.
        """
        existing = await self._graph.find_node_in_session(
            session, organization_id, node_type, external_id
        )
        if existing is not None:
            return existing.id
        return await self._graph.upsert_node_in_session(
            session,
            NodeInput(
                organization_id=organization_id,
                type=node_type,
                name=name,
                external_id=external_id,
            ),
        )

    async def _ensure_video_node(
        self, session: AsyncSession, organization_id: str, video_id: str
    ) -> str:
        video = await session.get(VideoRow, video_id)
        if video is None or video.organization_id != organization_id:
            raise InvalidReferenceError(
                message="Video not found in organization",
                meta={"video_id": video_id},
            )
        return await self._ensure_node(
            session, organization_id, NodeType.VIDEO, video_id, video.title or video_id
        )

    async def _ensure_ref_node(
        self, session: AsyncSession, organization_id: str, ref: ArtifactRef
    ) -> str:
        """Node id for a reference target.

        Decision and video references must name rows that exist in the
        organization; other artifacts are opaque and created on demand.
        """
        node_type, external_id = ref.node_key()
        if node_type == NodeType.VIDEO:
            return await self._ensure_video_node(session, organization_id, external_id)
        if node_type == NodeType.DECISION:
            target = await self._get_decision_row(session, organization_id, external_id)
            if target is None:
                raise InvalidReferenceError(
                    message="Referenced decision not found in organization",
                    meta={"decision_id": external_id},
                )
            return target.node_id
        return await self._ensure_node(session, organization_id, node_type, external_id, ref.raw)

    async def _link(
        self,
        session: AsyncSession,
        organization_id: str,
        source_node_id: str,
        target_node_id: str,
        relationship: Relationship,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        return await self._graph.upsert_edge_in_session(
            session,
            EdgeInput(
                organization_id=organization_id,
                source_node_id=source_node_id,
                target_node_id=target_node_id,
                relationship=relationship.value,
                metadata=metadata or {},
            ),
        )

    async def _edge_exists(
        self,
        session: AsyncSession,
        source_node_id: str,
        target_node_id: str,
        relationship: Relationship,
    ) -> bool:
        result = await session.execute(
            select(KnowledgeEdgeRow.id).where(
                KnowledgeEdgeRow.source_node_id == source_node_id,
                KnowledgeEdgeRow.target_node_id == target_node_id,
                KnowledgeEdgeRow.relationship == relationship.value,
            )
        )
        return result.first() is not None

    async def _participants_by_node(
        self, session: AsyncSession, node_ids: Sequence[str]
    ) -> dict[str, list[str]]:
        if not node_ids:
            return {}
        result = await session.execute(
            select(KnowledgeEdgeRow.target_node_id, KnowledgeNodeRow.external_id)
            .join(KnowledgeNodeRow, KnowledgeNodeRow.id == KnowledgeEdgeRow.source_node_id)
            .where(
                KnowledgeEdgeRow.relationship == Relationship.PARTICIPATES_IN.value,
                KnowledgeEdgeRow.target_node_id.in_(list(node_ids)),
                KnowledgeNodeRow.type == NodeType.PERSON.value,
            )
        )
        participants: dict[str, list[str]] = {}
        for target_id, user_id in result:
            if user_id:
                participants.setdefault(target_id, []).append(user_id)
        return participants

    async def _topics_by_node(
        self, session: AsyncSession, node_ids: Sequence[str]
    ) -> dict[str, list[str]]:
        if not node_ids:
            return {}
        result = await session.execute(
            select(KnowledgeEdgeRow.source_node_id, KnowledgeNodeRow.name)
            .join(KnowledgeNodeRow, KnowledgeNodeRow.id == KnowledgeEdgeRow.target_node_id)
            .where(
                KnowledgeEdgeRow.relationship == Relationship.ABOUT.value,
                KnowledgeEdgeRow.source_node_id.in_(list(node_ids)),
                KnowledgeNodeRow.type == NodeType.TOPIC.value,
            )
        )
        topics: dict[str, list[str]] = {}
        for source_id, name in result:
            topics.setdefault(source_id, []).append(name)
        return {key: sorted(names) for key, names in topics.items()}

    @staticmethod
    def _append_event(
        session: AsyncSession,
        *,
        decision_id: str,
        organization_id: str,
        event_type: DecisionEventType,
        at: datetime,
        actor_id: str | None = None,
        previous_value: dict[str, Any] | None = None,
        new_value: dict[str, Any] | None = None,
    ) -> None:
        session.add(
            DecisionEventRow(
                id=new_prefixed_id(DECISION_EVENT_ID_PREFIX),
                decision_id=decision_id,
                organization_id=organization_id,
                event_type=event_type.value,
                actor_id=actor_id,
                previous_value=previous_value,
                new_value=new_value,
                created_at=at,
            )
        )
