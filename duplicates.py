"""Near-duplicate code detection over stored code patterns."""

from __future__ import annotations

from typing import Any

from models import CODE_PATTERNS
from search import HybridSearchOrchestrator
from utils import log

DUPLICATE_SEARCH_LIMIT = 20


class DuplicateDetector:
    def __init__(self, searcher: HybridSearchOrchestrator):
        self.searcher = searcher

    async def identify_duplicates(
        self,
        feature: str | None,
        search_scope: str | None = None,
        threshold: float = 0.7,
        project: str | None = None,
    ) -> dict[str, Any]:
        """Find stored code patterns similar to `feature`.

        Finding nothing is a normal outcome and is reported in `message`.
        `search_scope` is accepted for callers that pass a path; matching is
        over every stored pattern (of `project`, when given).
        """
        if not feature or not feature.strip():
            return {"duplicates": [], "message": "No feature specified"}

        try:
            results = await self.searcher.semantic_search(
                feature,
                table=CODE_PATTERNS,
                project=project,
                limit=DUPLICATE_SEARCH_LIMIT,
                threshold=threshold,
            )
        except Exception as e:
            log(f"Duplicate detection error: {e}")
            return {"duplicates": [], "message": f"Error during duplicate detection: {e}"}

        if not results:
            return {"duplicates": [], "message": f'No duplicates found for "{feature}"'}

        duplicates = [
            {
                "content": r.get("content"),
                "similarity": 1 - r["_distance"],
                "file_path": r.get("file_path"),
                "language": r.get("language"),
            }
            for r in results
        ]
        return {
            "duplicates": duplicates,
            "message": f"Found {len(duplicates)} potential duplicates",
        }
