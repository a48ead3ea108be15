"""Per-topic expert ranking from recency-decayed contributions."""

from .ranker import (
    Contribution,
    ExpertiseConfig,
    ExpertiseRanker,
    ExpertSignals,
    RankedExpert,
    compute_recency_decay,
    rank_contributions,
)

__all__ = [
    "Contribution",
    "ExpertSignals",
    "ExpertiseConfig",
    "ExpertiseRanker",
    "RankedExpert",
    "compute_recency_decay",
    "rank_contributions",
]
