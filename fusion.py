"""
Score fusion policy for hybrid search.

All tunable numbers used when merging keyword and vector results live here.

    combined = vector_score * w + keyword_score * (1 - w)

where `vector_score = 1 - cosine distance` and
`keyword_score = min(raw_bm25 / KEYWORD_RANK_SCALE, 1)`. An item that both
sources contribute to (under the current weights) is multiplied by
DUAL_HIT_BOOST.
"""

from __future__ import annotations

import math
from typing import Any

# Raw BM25 scores are unbounded; this maps typical scores into [0, 1].
KEYWORD_RANK_SCALE = 10.0
# Multiplier for items found by both keyword and vector search.
DUAL_HIT_BOOST = 1.2
DEFAULT_VECTOR_WEIGHT = 0.5

# Similarity thresholds per route.
DEFAULT_SEMANTIC_THRESHOLD = 0.3
NATURAL_LANGUAGE_THRESHOLD = 0.25
KEYWORD_BOOST_THRESHOLD = 0.3
HYBRID_VECTOR_THRESHOLD = 0.2

# keyword_boost tops up with vector results below this many keyword hits.
KEYWORD_BOOST_MIN_RESULTS = 3

# Enhanced semantic search: added per query term found in a hit's text.
TERM_MATCH_BOOST = 0.1


def normalize_keyword_score(raw: float) -> float:
    return min(abs(raw) / KEYWORD_RANK_SCALE, 1.0)


def result_key(row: dict[str, Any]) -> str:
    """Items are merged on embedding id; vector rows carry it as `id`."""
    return str(row.get("embedding_id") or row["id"])


def combine_scores(vector_score: float, keyword_score: float, vector_weight: float) -> float:
    vector_part = vector_score * vector_weight
    keyword_part = keyword_score * (1 - vector_weight)
    combined = vector_part + keyword_part
    if vector_part > 0 and keyword_part > 0:
        combined *= DUAL_HIT_BOOST
    return combined


def fuse(
    vector_results: list[dict[str, Any]],
    keyword_results: list[dict[str, Any]],
    vector_weight: float = DEFAULT_VECTOR_WEIGHT,
    limit: int = 10,
) -> list[dict[str, Any]]:
    """Merge both result lists into one ranking by combined score.

    Items scoring zero under the given weights are dropped, and ties keep the
    order of the more heavily weighted source. With `vector_weight=1` the
    output is the vector ranking; with `vector_weight=0` the keyword ranking.
    """
    if not 0.0 <= vector_weight <= 1.0:
        raise ValueError(f"vector_weight must be within [0, 1], got {vector_weight}")

    merged: dict[str, dict[str, Any]] = {}
    vector_rank: dict[str, int] = {}
    keyword_rank: dict[str, int] = {}

    for rank, row in enumerate(vector_results):
        key = result_key(row)
        if key in merged:
            continue
        item = dict(row)
        item["embedding_id"] = key
        item["vector_score"] = row.get("similarity", 1 - row.get("_distance", 1.0))
        item["keyword_score"] = 0.0
        merged[key] = item
        vector_rank[key] = rank

    for rank, row in enumerate(keyword_results):
        key = result_key(row)
        if key in keyword_rank:
            continue
        keyword_rank[key] = rank
        score = normalize_keyword_score(row.get("keyword_score", 0.0))
        if key in merged:
            item = merged[key]
            # Keep the vector record's id; add structured fields it lacks.
            for field, value in row.items():
                item.setdefault(field, value)
        else:
            item = dict(row)
            item["embedding_id"] = key
            item["vector_score"] = 0.0
            merged[key] = item
        item["keyword_rank_score"] = row.get("keyword_score", 0.0)
        item["keyword_score"] = score

    results = []
    for key, item in merged.items():
        item["combined_score"] = combine_scores(item["vector_score"], item["keyword_score"], vector_weight)
        if item["combined_score"] <= 0:
            continue
        item["search_type"] = "hybrid"
        results.append(item)

    primary = vector_rank if vector_weight >= 0.5 else keyword_rank
    results.sort(
        key=lambda r: (-r["combined_score"], primary.get(r["embedding_id"], math.inf))
    )
    return results[:limit]


def _hit_text(row: dict[str, Any]) -> str:
    return " ".join(str(row.get(f) or "") for f in ("text", "title", "content", "file_path")).lower()


def rerank_by_terms(results: list[dict[str, Any]], query: str, limit: int) -> list[dict[str, Any]]:
    """Re-rank vector hits by similarity plus TERM_MATCH_BOOST per query term in the hit text."""
    terms = query.lower().split()
    for row in results:
        text = _hit_text(row)
        matches = sum(1 for term in terms if term in text)
        row["rerank_score"] = row["similarity"] + matches * TERM_MATCH_BOOST
    return sorted(results, key=lambda r: -r["rerank_score"])[:limit]
