"""
Project memory service for devassist-memory.

Owns the shared resources (SQLite store, LanceDB index, embedding pipelines)
and exposes the operations the MCP tools and other collaborators call.

Writes are dual: a structured row plus an embedding record sharing the same
`embedding_id`. The row is inserted inside a transaction that commits only
after the vector record is written; a failed vector write rolls the row back,
and a failed commit deletes the vector record again.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import uuid
from collections.abc import Callable
from typing import Any

import fusion
from config import Config
from duplicates import DuplicateDetector
from embeddings import EmbeddingProvider
from errors import StoreError
from keyword_index import KeywordIndex
from models import CODE_PATTERNS, DECISIONS, DOCUMENTATION, MEMORY_CATEGORIES, VECTOR_TABLES
from query_analyzer import QueryAnalysis, analyze_query
from search import HybridSearchOrchestrator
from store import StructuredStore
from utils import log
from vector_index import VectorIndex


def new_embedding_id(kind: str) -> str:
    return f"{kind}_{uuid.uuid4().hex}"


def pattern_hash(file_path: str, content: str) -> str:
    """Identity of a code pattern: its file path and content length."""
    return hashlib.sha256(f"{file_path}:{len(content)}".encode()).hexdigest()


class MemoryService:
    """Decisions, progress, code patterns and documentation for projects."""

    def __init__(
        self,
        config: Config,
        store: StructuredStore,
        vector_index: VectorIndex,
        embeddings: EmbeddingProvider,
    ):
        self.config = config
        self.store = store
        self.vector_index = vector_index
        self.embeddings = embeddings
        self.keyword_index = KeywordIndex(store)
        self.searcher = HybridSearchOrchestrator(self.keyword_index, vector_index, embeddings)
        self.duplicates = DuplicateDetector(self.searcher)

    @classmethod
    def open(cls, config: Config | None = None, embeddings: EmbeddingProvider | None = None) -> MemoryService:
        """Open the store and vector index once; every component shares them."""
        config = config or Config()
        config.ensure_directories()
        embeddings = embeddings or EmbeddingProvider(config)
        store = StructuredStore(config.sqlite_path)
        vector_index = VectorIndex(config.vector_dir, embeddings.dimension(), config.overfetch_multiplier)
        vector_index.ensure_tables()
        log(f"Memory opened for project '{config.project_name}' at {config.data_dir}")
        return cls(config, store, vector_index, embeddings)

    def close(self) -> None:
        self.store.close()
        self.embeddings.close()

    def _project_name(self, project: str | None) -> str:
        return project or self.config.project_name

    async def _project(self, project: str | None) -> dict[str, Any]:
        name = self._project_name(project)
        path = str(self.config.project_path) if name == self.config.project_name else None
        return await asyncio.to_thread(self.store.get_or_create_project, name, path)

    # ------------------------------------------------------------------
    # Dual write
    # ------------------------------------------------------------------

    def _write(
        self,
        table: str,
        insert_row: Callable[[], int],
        make_record: Callable[[int], dict[str, Any]],
    ) -> int:
        """Insert a structured row and its embedding record as one unit."""
        written_id: str | None = None
        try:
            with self.store.transaction():
                row_id = insert_row()
                record = make_record(row_id)
                self.vector_index.add(table, record)
                written_id = record["id"]
        except Exception as e:
            if written_id is not None:
                try:
                    self.vector_index.delete(table, [written_id])
                except Exception as cleanup_error:
                    log(f"Orphaned embedding {written_id} in '{table}': {cleanup_error}")
            raise StoreError(f"Failed to write {table} record: {e}") from e
        return row_id

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def record_decision(
        self,
        decision: str,
        context: str | None = None,
        alternatives: list[str] | None = None,
        impact: str | None = None,
        project: str | None = None,
    ) -> dict[str, Any]:
        """Store an architectural decision. Returns {id, embedding_id}."""
        if not decision or not decision.strip():
            raise ValueError("decision is required")
        project_row = await self._project(project)
        alternatives = alternatives or []
        text = f"{decision} {context or ''}".strip()
        vector = await self.embeddings.embed(text)
        embedding_id = new_embedding_id("decision")

        def insert_row() -> int:
            return self.store.insert_decision(
                project_row["id"], decision, context, impact, alternatives, embedding_id
            )

        def make_record(row_id: int) -> dict[str, Any]:
            return {
                "id": embedding_id,
                "project": project_row["name"],
                "text": text,
                "vector": vector,
                "metadata": json.dumps(
                    {"decision_id": row_id, "impact": impact, "alternatives": alternatives}
                ),
            }

        row_id = await asyncio.to_thread(self._write, DECISIONS, insert_row, make_record)
        return {"id": row_id, "embedding_id": embedding_id}

    async def get_decisions(self, project: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        project_row = await self._project(project)
        return await asyncio.to_thread(self.store.get_decisions, project_row["id"], limit)

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def track_progress(
        self,
        milestone: str,
        status: str,
        notes: str | None = None,
        blockers: list[str] | None = None,
        project: str | None = None,
    ) -> int:
        """Create or update a milestone by name. Returns the progress id."""
        if not milestone or not milestone.strip():
            raise ValueError("milestone is required")
        project_row = await self._project(project)
        progress_id, _created = await asyncio.to_thread(
            self.store.upsert_progress, project_row["id"], milestone, status, notes, blockers or []
        )
        return progress_id

    async def get_progress(self, project: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        project_row = await self._project(project)
        return await asyncio.to_thread(self.store.get_progress, project_row["id"], limit)

    # ------------------------------------------------------------------
    # Code patterns
    # ------------------------------------------------------------------

    async def add_code_pattern(
        self,
        file_path: str,
        content: str,
        language: str | None = None,
        project: str | None = None,
    ) -> dict[str, Any]:
        """Store a code fragment for duplicate detection (idempotent per pattern hash)."""
        if not file_path or not content:
            raise ValueError("file_path and content are required")
        # Hashes are unique across projects: a repeat from another project
        # returns the ids of the project that stored it first.
        digest = pattern_hash(file_path, content)
        existing = await asyncio.to_thread(self.store.find_code_pattern, digest)
        if existing is not None:
            return {"id": existing["id"], "embedding_id": existing["embedding_id"], "status": "exists"}

        project_row = await self._project(project)
        vector = await self.embeddings.embed(content)
        embedding_id = new_embedding_id("pattern")

        def write() -> dict[str, Any]:
            with self.store.lock:
                # Another caller may have stored it while we were embedding.
                current = self.store.find_code_pattern(digest)
                if current is not None:
                    return {"id": current["id"], "embedding_id": current["embedding_id"], "status": "exists"}
                row_id = self._write(
                    CODE_PATTERNS,
                    lambda: self.store.insert_code_pattern(
                        project_row["id"],
                        digest,
                        file_path,
                        language,
                        content[: self.config.pattern_content_limit],
                        embedding_id,
                    ),
                    lambda _row_id: {
                        "id": embedding_id,
                        "project": project_row["name"],
                        "file_path": file_path,
                        "content": content,
                        "vector": vector,
                        "language": language or "unknown",
                    },
                )
                return {"id": row_id, "embedding_id": embedding_id, "status": "created"}

        return await asyncio.to_thread(write)

    # ------------------------------------------------------------------
    # Documentation
    # ------------------------------------------------------------------

    async def add_documentation(
        self,
        title: str,
        content: str,
        path: str,
        source: str | None = None,
        project: str | None = None,
    ) -> dict[str, Any]:
        """Index one documentation entry (called by documentation indexers)."""
        if not title or not content:
            raise ValueError("title and content are required")
        project_row = await self._project(project)
        vector = await self.embeddings.embed(f"{title}\n{content}")
        embedding_id = new_embedding_id("doc")

        row_id = await asyncio.to_thread(
            self._write,
            DOCUMENTATION,
            lambda: self.store.insert_documentation(
                project_row["id"], title, content, path, source, embedding_id
            ),
            lambda _row_id: {
                "id": embedding_id,
                "project": project_row["name"],
                "title": title,
                "content": content,
                "vector": vector,
                "source": source or "",
                "path": path,
            },
        )
        return {"id": row_id, "embedding_id": embedding_id}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_project_memory(
        self,
        query: str | None = None,
        category: str = "all",
        limit: int = 10,
        project: str | None = None,
    ) -> list[dict[str, Any]]:
        """Recent decisions and progress, with semantic decision hits ranked first."""
        if category not in MEMORY_CATEGORIES:
            raise ValueError(f"Invalid category '{category}'. Valid: {sorted(MEMORY_CATEGORIES)}")
        project_row = await self._project(project)
        memories: list[dict[str, Any]] = []

        if category in ("all", "decisions"):
            decisions = await asyncio.to_thread(self.store.get_decisions, project_row["id"], limit)
            memories.extend({**d, "type": "decision", "category": "decisions"} for d in decisions)

        if category in ("all", "progress"):
            progress = await asyncio.to_thread(self.store.get_progress, project_row["id"], limit)
            memories.extend({**p, "type": "progress", "category": "progress"} for p in progress)

        if query and category in ("all", "decisions"):
            hits = await self.searcher.semantic_search(
                query, table=DECISIONS, project=project_row["name"], limit=limit
            )
            similarity = {h["id"]: h["similarity"] for h in hits}
            known = {m["embedding_id"]: m for m in memories if m["type"] == "decision"}
            missing = [eid for eid in similarity if eid not in known]
            extra = await asyncio.to_thread(
                self.store.get_decisions_by_embedding_ids, project_row["id"], missing
            )
            for d in extra:
                item = {**d, "type": "decision", "category": "decisions"}
                memories.append(item)
                known[d["embedding_id"]] = item
            for embedding_id, score in similarity.items():
                if embedding_id in known:
                    known[embedding_id]["similarity"] = score

        ranked = sorted((m for m in memories if "similarity" in m), key=lambda m: -m["similarity"])
        recent = sorted(
            (m for m in memories if "similarity" not in m),
            key=lambda m: m.get("timestamp") or m.get("updated_at") or "",
            reverse=True,
        )
        return (ranked + recent)[:limit]

    async def hybrid_search(
        self,
        query: str,
        table: str = DECISIONS,
        project: str | None = None,
        limit: int = 10,
        vector_weight: float | None = None,
        auto_route: bool = True,
    ) -> list[dict[str, Any]]:
        return await self.searcher.hybrid_search(
            query,
            table=table,
            project=self._project_name(project),
            limit=limit,
            vector_weight=self.config.vector_weight if vector_weight is None else vector_weight,
            auto_route=auto_route,
        )

    async def semantic_search(
        self,
        query: str,
        table: str = DECISIONS,
        project: str | None = None,
        limit: int = 10,
        threshold: float = fusion.DEFAULT_SEMANTIC_THRESHOLD,
        enhance_query: bool = False,
    ) -> list[dict[str, Any]]:
        return await self.searcher.semantic_search(
            query,
            table=table,
            project=self._project_name(project),
            limit=limit,
            threshold=threshold,
            enhance_query=enhance_query,
        )

    async def keyword_search(
        self,
        query: str,
        table: str = DECISIONS,
        project: str | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        return await self.searcher.keyword_search(
            query, table=table, project=self._project_name(project), limit=limit
        )

    async def identify_duplicates(
        self,
        feature: str | None,
        scope: str | None = None,
        threshold: float | None = None,
        project: str | None = None,
    ) -> dict[str, Any]:
        return await self.duplicates.identify_duplicates(
            feature,
            scope,
            self.config.duplicate_threshold if threshold is None else threshold,
            project=self._project_name(project),
        )

    def analyze_query(self, query: str) -> QueryAnalysis:
        return analyze_query(query)

    # ------------------------------------------------------------------
    # Projects & stats
    # ------------------------------------------------------------------

    async def list_projects(self) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self.store.list_projects)

    async def stats(self, project: str | None = None) -> dict[str, Any]:
        """Row counts per table for a project, plus index state."""
        project_row = await self._project(project)

        def collect() -> dict[str, Any]:
            counts = {
                table: self.store.count_rows(table, project_row["id"])
                for table in ("decisions", "progress", "code_patterns", "documentation")
            }
            vectors = {table: self.vector_index.count(table) for table in VECTOR_TABLES}
            keyword = {table: self.keyword_index.has_index(table) for table in VECTOR_TABLES}
            return {"counts": counts, "vectors": vectors, "keyword_indexes": keyword}

        result = await asyncio.to_thread(collect)
        result["project"] = project_row["name"]
        result["embedding_model"] = self.embeddings.default_model
        result["embedding_dim"] = self.embeddings.dimension()
        result["model_warm"] = self.embeddings.is_warm()
        return result
