"""
Expertise Ranker

Ranks the experts of a topic cluster from the content its members authored.

Each authored item contributes:
    base_weight(content_type) * 0.5 ** (age_days / half_life_days)

so recent contributions outweigh stale ones without discarding history.
Scores are recomputed on every call and never stored; `score` is the literal
sum of an author's contribution weights.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import select

from knowledge_engine.config import Settings, get_settings
from knowledge_engine.db.client import Database
from knowledge_engine.db.models import ContentItemRow, TopicClusterMemberRow, TopicClusterRow
from knowledge_engine.kernel.errors import NotFoundError
from knowledge_engine.kernel.time import Clock, SystemClock, age_in_days, coerce_utc
from knowledge_engine.kernel.validation import require_int_in_range, require_organization_id

logger = structlog.get_logger()

MIN_LIMIT = 1
MAX_LIMIT = 100


@dataclass
class ExpertiseConfig:
    """Weights for expertise scoring."""

    half_life_days: float = 90.0
    default_base_weight: float = 1.0

    # Long-form authored work counts more than chatter
    base_weights: dict[str, float] = field(default_factory=lambda: {
        "document": 3.0,
        "pull_request": 3.0,
        "video": 2.5,
        "issue": 2.0,
        "thread": 1.5,
        "file": 1.5,
        "message": 1.0,
        "comment": 1.0,
    })

    def base_weight(self, content_type: str) -> float:
        return self.base_weights.get(content_type, self.default_base_weight)


@dataclass(frozen=True)
class Contribution:
    """One authored item inside a topic."""

    author_id: str | None
    content_type: str
    occurred_at: datetime


class ExpertSignals(BaseModel):
    mention_count: int
    recency_weighted_count: float
    role_weight: float
    by_content_type: dict[str, float] = Field(default_factory=dict)


class RankedExpert(BaseModel):
    user_id: str
    topic_id: str
    score: float
    first_contribution_at: datetime
    signals: ExpertSignals


def compute_recency_decay(age_days: float, half_life_days: float) -> float:
    """Exponential half-life decay; 1.0 for brand new, 0.5 at one half-life."""
    return 0.5 ** (max(age_days, 0.0) / half_life_days)


@dataclass
class _Accumulator:
    first_contribution_at: datetime
    score: float = 0.0
    mention_count: int = 0
    recency_weighted_count: float = 0.0
    by_content_type: dict[str, float] = field(default_factory=dict)


def rank_contributions(
    contributions: list[Contribution],
    *,
    topic_id: str,
    now: datetime,
    limit: int,
    config: ExpertiseConfig | None = None,
) -> list[RankedExpert]:
    """
    Pure ranking over a topic's contributions.

    Authors are sorted by score descending; ties go to the author with the
    earliest contribution, then to the smaller user id. Contributions without
    an author are skipped.
    """
    config = config or ExpertiseConfig()
    totals: dict[str, _Accumulator] = {}

    for contribution in contributions:
        if not contribution.author_id:
            continue
        occurred_at = coerce_utc(contribution.occurred_at)
        decay = compute_recency_decay(age_in_days(occurred_at, now=now), config.half_life_days)
        weight = config.base_weight(contribution.content_type) * decay

        acc = totals.get(contribution.author_id)
        if acc is None:
            acc = _Accumulator(first_contribution_at=occurred_at)
            totals[contribution.author_id] = acc
        acc.first_contribution_at = min(acc.first_contribution_at, occurred_at)
        acc.score += weight
        acc.mention_count += 1
        acc.recency_weighted_count += decay
        acc.by_content_type[contribution.content_type] = (
            acc.by_content_type.get(contribution.content_type, 0.0) + weight
        )

    ordered = sorted(
        totals.items(),
        key=lambda item: (-item[1].score, item[1].first_contribution_at, item[0]),
    )

    return [
        RankedExpert(
            user_id=user_id,
            topic_id=topic_id,
            score=acc.score,
            first_contribution_at=acc.first_contribution_at,
            signals=ExpertSignals(
                mention_count=acc.mention_count,
                recency_weighted_count=acc.recency_weighted_count,
                role_weight=(
                    acc.score / acc.recency_weighted_count if acc.recency_weighted_count else 0.0
                ),
                by_content_type=dict(sorted(acc.by_content_type.items())),
            ),
        )
        for user_id, acc in ordered[:limit]
    ]


class ExpertiseRanker:
    """Loads a topic's member content and ranks its authors."""

    def __init__(
        self,
        db: Database,
        settings: Settings | None = None,
        clock: Clock | None = None,
        config: ExpertiseConfig | None = None,
    ):
        self._db = db
        self._settings = settings or get_settings()
        self._clock = clock or SystemClock()
        self.config = config or ExpertiseConfig(
            half_life_days=self._settings.expertise_half_life_days
        )

    async def get_topic_experts(
        self,
        organization_id: str,
        topic_id: str,
        limit: int | None = None,
    ) -> list[RankedExpert]:
        """
        Rank the authors of a topic cluster's member content.

        Raises:
            ValidationError: Missing organization or limit outside [1, 100].
            NotFoundError: The topic does not exist in the organization.
        """
        organization_id = require_organization_id(organization_id)
        limit = self._settings.expertise_default_limit if limit is None else limit
        require_int_in_range(limit, field="limit", minimum=MIN_LIMIT, maximum=MAX_LIMIT)

        async with self._db.session() as session:
            topic = (
                await session.execute(
                    select(TopicClusterRow.id).where(
                        TopicClusterRow.id == topic_id,
                        TopicClusterRow.organization_id == organization_id,
                    )
                )
            ).scalar_one_or_none()
            if topic is None:
                raise NotFoundError(
                    message="Topic not found",
                    meta={"topic_id": topic_id},
                )

            rows = (
                await session.execute(
                    select(
                        ContentItemRow.author_id,
                        ContentItemRow.type,
                        ContentItemRow.created_at_source,
                        ContentItemRow.created_at,
                    )
                    .join(
                        TopicClusterMemberRow,
                        TopicClusterMemberRow.content_item_id == ContentItemRow.id,
                    )
                    .where(
                        TopicClusterMemberRow.cluster_id == topic_id,
                        ContentItemRow.organization_id == organization_id,
                    )
                )
            ).all()

        contributions = [
            Contribution(
                author_id=row.author_id,
                content_type=row.type,
                occurred_at=row.created_at_source or row.created_at,
            )
            for row in rows
        ]
        experts = rank_contributions(
            contributions,
            topic_id=topic_id,
            now=self._clock.now(),
            limit=limit,
            config=self.config,
        )

        logger.debug(
            "Topic experts ranked",
            organization_id=organization_id,
            topic_id=topic_id,
            contributions=len(contributions),
            experts=len(experts),
        )
        return experts
