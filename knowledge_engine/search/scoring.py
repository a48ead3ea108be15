"""
Relevance scoring for hybrid search.

Everything here is a pure function of immutable inputs: BM25 for lexical
relevance, cosine similarity for semantic relevance, and the max-normalized
linear blend that combines them.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from knowledge_engine.kernel.time import age_in_days
from knowledge_engine.search.types import SearchMode

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)

RECENCY_HORIZON_DAYS = 365.0
RECENCY_MAX_BOOST = 0.1


@dataclass(frozen=True)
class BM25Params:
    k1: float = 1.2
    b: float = 0.75


@dataclass(frozen=True)
class ComponentScores:
    lexical: float
    semantic: float | None  # raw cosine; None when either vector is missing


@dataclass(frozen=True)
class BlendedScore:
    score: float
    lexical_norm: float
    semantic_norm: float
    lexical_match: bool


def tokenize(text: str | None) -> list[str]:
    if not text:
        return []
    return _TOKEN_RE.findall(text.lower())


def query_terms(query: str | None) -> list[str]:
    """Distinct query tokens in first-seen order."""
    return list(dict.fromkeys(tokenize(query)))


def bm25_scores(
    terms: Sequence[str],
    documents: Sequence[Sequence[str]],
    params: BM25Params | None = None,
) -> list[float]:
    """
    Okapi BM25 of each tokenized document against the query terms.

    Document frequencies and the average length are taken over `documents`
    itself, i.e. the filtered candidate set.
    """
    params = params or BM25Params()
    n_docs = len(documents)
    if n_docs == 0 or not terms:
        return [0.0] * n_docs

    avgdl = sum(len(doc) for doc in documents) / n_docs or 1.0
    counts = [Counter(doc) for doc in documents]
    idf: dict[str, float] = {}
    for term in terms:
        df = sum(1 for c in counts if term in c)
        idf[term] = math.log(1.0 + (n_docs - df + 0.5) / (df + 0.5))

    scores: list[float] = []
    for doc, tf in zip(documents, counts):
        length_norm = params.k1 * (1.0 - params.b + params.b * len(doc) / avgdl)
        score = 0.0
        for term in terms:
            freq = tf.get(term, 0)
            if freq:
                score += idf[term] * freq * (params.k1 + 1.0) / (freq + length_norm)
        scores.append(score)
    return scores


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float | None:
    """Cosine similarity, or None when a vector is missing or dimensions differ."""
    if not a or not b or len(a) != len(b):
        return None
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def normalize_by_max(values: Sequence[float]) -> list[float]:
    peak = max(values, default=0.0)
    if peak <= 0:
        return [0.0] * len(values)
    return [v / peak for v in values]


def blend_scores(
    components: Sequence[ComponentScores],
    *,
    mode: SearchMode,
    semantic_weight: float,
    semantic_threshold: float,
) -> list[BlendedScore | None]:
    """
    Final score per candidate, or None when the candidate is not a match.

    Semantic scores below the threshold count as 0. Each component is then
    normalized by its maximum over the set.

    keyword:  lexical matches only, scored by normalized lexical score.
    semantic: candidates at/above the threshold only, scored by raw similarity.
    hybrid:   (1 - w) * lexical_norm + w * semantic_norm; a candidate with
              neither a lexical match nor an above-threshold similarity is
              dropped.
    """
    lexical_norm = normalize_by_max([c.lexical for c in components])
    effective_semantic = [
        c.semantic if c.semantic is not None and c.semantic >= semantic_threshold else 0.0
        for c in components
    ]
    semantic_norm = normalize_by_max(effective_semantic)

    blended: list[BlendedScore | None] = []
    for i, component in enumerate(components):
        lexical_match = component.lexical > 0
        above_threshold = (
            component.semantic is not None and component.semantic >= semantic_threshold
        )

        if mode == SearchMode.KEYWORD:
            score = lexical_norm[i] if lexical_match else None
        elif mode == SearchMode.SEMANTIC:
            score = component.semantic if above_threshold else None
        else:
            if not lexical_match and effective_semantic[i] <= 0:
                score = None
            else:
                score = (1.0 - semantic_weight) * lexical_norm[i] + semantic_weight * semantic_norm[i]

        blended.append(
            None
            if score is None
            else BlendedScore(
                score=score,
                lexical_norm=lexical_norm[i],
                semantic_norm=semantic_norm[i],
                lexical_match=lexical_match,
            )
        )
    return blended


def recency_boost(created_at: datetime, *, now: datetime) -> float:
    """Linear decay from 0.1 for brand-new content to 0 after a year."""
    age = age_in_days(created_at, now=now)
    return RECENCY_MAX_BOOST * max(0.0, 1.0 - age / RECENCY_HORIZON_DAYS)
