"""
Hybrid search orchestration for devassist-memory.

Routes a query to the keyword index, the vector index, or both (fused), as
chosen by the query analyzer. Index failures never reach the caller: every
index call goes through `degrade_to_empty`, which logs and returns no results.

Usage:
    searcher = HybridSearchOrchestrator(keyword_index, vector_index, embeddings)
    results = await searcher.hybrid_search("jwt auth", table="decisions", project="api")
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Any

import fusion
from embeddings import EmbeddingProvider
from errors import EmbeddingError, SearchError
from keyword_index import KeywordIndex
from query_analyzer import analyze_query, expand_query
from utils import log
from vector_index import VectorIndex

Results = list[dict[str, Any]]


async def degrade_to_empty(operation: Awaitable[Results], label: str) -> Results:
    """Await an index query; on index or embedding failure log and return []."""
    try:
        return await operation
    except (SearchError, EmbeddingError) as e:
        log(f"{label} failed, returning no results: {e}")
        return []


class HybridSearchOrchestrator:
    """Keyword, semantic and fused search over one table at a time."""

    def __init__(
        self,
        keyword_index: KeywordIndex,
        vector_index: VectorIndex,
        embeddings: EmbeddingProvider,
    ):
        self.keyword_index = keyword_index
        self.vector_index = vector_index
        self.embeddings = embeddings

    # ------------------------------------------------------------------
    # Single-index searches
    # ------------------------------------------------------------------

    async def _keyword(self, query: str, table: str, project: str | None, limit: int) -> Results:
        return await asyncio.to_thread(self.keyword_index.search, query, table, project, limit)

    async def _semantic(
        self,
        query: str,
        table: str,
        project: str | None,
        limit: int,
        threshold: float,
        enhance_query: bool,
        overfetch_multiplier: int | None,
    ) -> Results:
        text = expand_query(query) if enhance_query else query
        vector = await self.embeddings.embed(text)
        candidates = limit
        if enhance_query:
            candidates = limit * (overfetch_multiplier or self.vector_index.overfetch_multiplier)
        results = await asyncio.to_thread(
            self.vector_index.search,
            table,
            vector,
            candidates,
            project,
            threshold,
            overfetch_multiplier,
        )
        if enhance_query:
            return fusion.rerank_by_terms(results, query, limit)
        return results

    async def keyword_search(
        self,
        query: str,
        table: str = "decisions",
        project: str | None = None,
        limit: int = 10,
    ) -> Results:
        """Full-text search; rows carry a raw, non-negative `keyword_score`."""
        return await degrade_to_empty(self._keyword(query, table, project, limit), "Keyword search")

    async def semantic_search(
        self,
        query: str,
        table: str = "decisions",
        project: str | None = None,
        limit: int = 10,
        threshold: float = fusion.DEFAULT_SEMANTIC_THRESHOLD,
        enhance_query: bool = False,
        overfetch_multiplier: int | None = None,
    ) -> Results:
        """Vector search; rows carry `similarity` and `_distance`.

        With `enhance_query` the embedded text is expanded with related terms and
        the hits are re-ranked by how many of the query's own terms they contain.
        """
        return await degrade_to_empty(
            self._semantic(query, table, project, limit, threshold, enhance_query, overfetch_multiplier),
            "Semantic search",
        )

    # ------------------------------------------------------------------
    # Hybrid
    # ------------------------------------------------------------------

    async def hybrid_search(
        self,
        query: str,
        table: str = "decisions",
        project: str | None = None,
        limit: int = 10,
        vector_weight: float = fusion.DEFAULT_VECTOR_WEIGHT,
        auto_route: bool = True,
    ) -> Results:
        """Search with the strategy the query calls for, fusing when both run."""
        if not query or not query.strip() or limit <= 0:
            return []

        if auto_route:
            analysis = analyze_query(query)
            log(
                f"Query analysis: {analysis.type} ({analysis.strategy}) - "
                f"confidence {analysis.confidence}"
            )
            if analysis.strategy == "keyword":
                return await self.keyword_search(query, table, project, limit)
            if analysis.strategy == "vector":
                return await self.semantic_search(
                    query, table, project, limit, threshold=fusion.NATURAL_LANGUAGE_THRESHOLD
                )
            if analysis.strategy == "keyword_boost":
                return await self._keyword_boost(query, table, project, limit)

        vector_results, keyword_results = await asyncio.gather(
            self.semantic_search(query, table, project, limit, threshold=fusion.HYBRID_VECTOR_THRESHOLD),
            self.keyword_search(query, table, project, limit),
        )
        return fusion.fuse(vector_results, keyword_results, vector_weight, limit)

    async def _keyword_boost(self, query: str, table: str, project: str | None, limit: int) -> Results:
        """Keyword results first, topped up from vector search when sparse."""
        keyword_results = await self.keyword_search(query, table, project, max(1, limit // 2))
        if len(keyword_results) >= fusion.KEYWORD_BOOST_MIN_RESULTS:
            return keyword_results

        remaining = limit - len(keyword_results)
        if remaining <= 0:
            return keyword_results
        seen = {fusion.result_key(r) for r in keyword_results}
        vector_results = await self.semantic_search(
            query,
            table,
            project,
            remaining + len(seen),
            threshold=fusion.KEYWORD_BOOST_THRESHOLD,
        )
        extra = [r for r in vector_results if fusion.result_key(r) not in seen]
        return keyword_results + extra[:remaining]
