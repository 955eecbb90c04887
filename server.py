#!/usr/bin/env python3
"""
DevAssist Memory MCP Server - project memory with hybrid retrieval

Persists architectural decisions, progress milestones, code patterns and
documentation per project, and retrieves them by meaning, keyword or both:
- FastMCP for clean, idiomatic MCP server patterns
- SQLite (WAL) for structured records and FTS5 (BM25) keyword search
- LanceDB for vector search (cosine distance)
- Query analysis routes each query to keyword, vector, boosted or fused search
- sentence-transformers / Ollama / Google Gemini embeddings (hash fallback)
"""

from __future__ import annotations

import asyncio
import json
import threading
from typing import Any

from mcp.server.fastmcp import FastMCP

from config import Config
from errors import DevAssistError
from memory import MemoryService
from models import MEMORY_CATEGORIES, VALID_STATUSES, VECTOR_TABLES
from utils import log

# =============================================================================
# Service (Lazy Singleton)
# =============================================================================

_lock = threading.RLock()
_service: MemoryService | None = None


def get_service() -> MemoryService:
    """Get or create the memory service (thread-safe)."""
    global _service
    if _service is None:
        with _lock:
            if _service is None:  # Double-check after acquiring lock
                _service = MemoryService.open(Config())
    return _service


async def init_service() -> MemoryService:
    """Open stores and warm up the embedding model (loads once per process)."""
    service = get_service()
    log(f"Warming up embedding model '{service.embeddings.default_model}'...")
    try:
        await service.embeddings.get_pipeline()
    except DevAssistError as e:
        log(f"Embedding warm-up warning: {e}")
    log("Server ready")
    return service


# =============================================================================
# Validation & Formatting
# =============================================================================


def _validate_limit(limit: int, max_limit: int) -> str | None:
    if limit <= 0:
        return f"Error: limit must be positive, got {limit}"
    if limit > max_limit:
        return f"Error: limit cannot exceed {max_limit}, got {limit}"
    return None


def _validate_table(table: str) -> str | None:
    if table not in VECTOR_TABLES:
        return f"Error: Invalid table '{table}'. Valid: {list(VECTOR_TABLES)}"
    return None


def _truncate(text: str | None, length: int = 200) -> str:
    text = (text or "").strip().replace("\n", " ")
    return text if len(text) <= length else text[:length] + "..."


def _describe(row: dict[str, Any]) -> str:
    """One-line description of a result from any table."""
    if row.get("decision"):
        return _truncate(row["decision"])
    if row.get("file_path"):
        language = row.get("language") or "unknown"
        return f"{row['file_path']} ({language}): {_truncate(row.get('content'), 120)}"
    if row.get("title"):
        return f"{row['title']}: {_truncate(row.get('content'), 120)}"
    return _truncate(row.get("text") or row.get("content"))


def _score_line(row: dict[str, Any]) -> str:
    if "combined_score" in row:
        return (
            f"Score: {row['combined_score']:.3f} "
            f"(vector {row.get('vector_score', 0.0):.2f}, keyword {row.get('keyword_score', 0.0):.2f})"
        )
    if "similarity" in row:
        return f"Similarity: {row['similarity']:.0%}"
    if "keyword_score" in row:
        return f"Keyword score: {row['keyword_score']:.2f}"
    return ""


def format_results(results: list[dict[str, Any]], query: str, label: str) -> str:
    if not results:
        return f"No results found for '{query}'"
    lines = [f"Found {len(results)} results ({label}):\n"]
    for i, row in enumerate(results, 1):
        lines.append(f"[{i}] {row.get('search_type', label)} (ID: {row.get('embedding_id') or row.get('id')})")
        lines.append(f"    {_describe(row)}")
        if row.get("project"):
            lines.append(f"    Project: {row['project']}")
        score = _score_line(row)
        if score:
            lines.append(f"    {score}")
        lines.append("")
    return "\n".join(lines)


# =============================================================================
# FastMCP Server
# =============================================================================

mcp = FastMCP(
    "devassist-memory",
    instructions=(
        "Project memory: decisions, progress, code patterns and documentation with "
        "query-routed hybrid search (SQLite FTS5 BM25 + LanceDB vectors)"
    ),
)


@mcp.tool(
    annotations={
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
    }
)
async def record_decision(
    decision: str,
    context: str | None = None,
    alternatives: list[str] | None = None,
    impact: str | None = None,
    project: str | None = None,
) -> str:
    """Record an architectural decision with its context and alternatives.

    Args:
        decision: The decision that was made
        context: Why it was made / what prompted it
        alternatives: Options that were considered and rejected
        impact: Expected impact on the project
        project: Project name (defaults to the current project)
    """
    if not decision or not decision.strip():
        return "Error: decision is required"
    result = await get_service().record_decision(decision, context, alternatives, impact, project)
    return f"Decision recorded (ID: {result['id']}, embedding: {result['embedding_id']})"


@mcp.tool(
    annotations={
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def track_progress(
    milestone: str,
    status: str,
    notes: str | None = None,
    blockers: list[str] | None = None,
    project: str | None = None,
) -> str:
    """Create or update a milestone. A repeated milestone name updates it in place.

    Args:
        milestone: Milestone name (unique per project)
        status: One of not_started, in_progress, testing, completed, blocked
        notes: Free-form notes
        blockers: Things blocking progress
        project: Project name (defaults to the current project)
    """
    if not milestone or not milestone.strip():
        return "Error: milestone is required"
    if status not in VALID_STATUSES:
        return f"Error: Invalid status '{status}'. Valid: {sorted(VALID_STATUSES)}"
    progress_id = await get_service().track_progress(milestone, status, notes, blockers, project)
    return f"Progress tracked: {milestone} -> {status} (ID: {progress_id})"


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def get_project_memory(
    query: str | None = None,
    category: str = "all",
    limit: int = 10,
    project: str | None = None,
) -> str:
    """Recent decisions and progress for a project, semantically re-ranked if a query is given.

    Args:
        query: Optional query; matching decisions are ranked first
        category: all, decisions or progress
        limit: Max results (default 10, max 50)
        project: Project name (defaults to the current project)
    """
    service = get_service()
    error = _validate_limit(limit, service.config.max_limit)
    if error:
        return error
    if category not in MEMORY_CATEGORIES:
        return f"Error: Invalid category '{category}'. Valid: {sorted(MEMORY_CATEGORIES)}"

    memories = await service.get_project_memory(query, category, limit, project)
    if not memories:
        return f"No memories found for project '{project or service.config.project_name}'"

    lines = [f"Found {len(memories)} memories:\n"]
    for i, m in enumerate(memories, 1):
        if m["type"] == "decision":
            lines.append(f"[{i}] DECISION (ID: {m['id']}) {_truncate(m['decision'])}")
            if m.get("context"):
                lines.append(f"    Context: {_truncate(m['context'])}")
            if m.get("alternatives"):
                lines.append(f"    Alternatives: {', '.join(m['alternatives'])}")
            lines.append(f"    {m['timestamp'][:19]}")
        else:
            lines.append(f"[{i}] PROGRESS (ID: {m['id']}) {m['milestone']} [{m['status']}]")
            if m.get("notes"):
                lines.append(f"    Notes: {_truncate(m['notes'])}")
            if m.get("blockers"):
                lines.append(f"    Blockers: {', '.join(m['blockers'])}")
            lines.append(f"    Updated: {m['updated_at'][:19]}")
        if "similarity" in m:
            lines.append(f"    Similarity: {m['similarity']:.0%}")
        lines.append("")
    return "\n".join(lines)


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def hybrid_search(
    query: str,
    table: str = "decisions",
    limit: int = 10,
    vector_weight: float = 0.5,
    auto_route: bool = True,
    project: str | None = None,
) -> str:
    """Search memory with the strategy the query calls for (keyword, vector or fused).

    Args:
        query: Search query - code symbols, questions or keywords
        table: decisions, code_patterns or documentation
        limit: Max results (default 10, max 50)
        vector_weight: Weight of vector similarity in fused ranking (0-1)
        auto_route: Route by query analysis; False always fuses both searches
        project: Project name (defaults to the current project)
    """
    if not query.strip():
        return "Error: query is required"
    service = get_service()
    error = _validate_limit(limit, service.config.max_limit) or _validate_table(table)
    if error:
        return error
    if not 0.0 <= vector_weight <= 1.0:
        return f"Error: vector_weight must be within [0, 1], got {vector_weight}"
    results = await service.hybrid_search(query, table, project, limit, vector_weight, auto_route)
    strategy = service.analyze_query(query).strategy if auto_route else "hybrid"
    return format_results(results, query, strategy)


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def semantic_search(
    query: str,
    table: str = "decisions",
    limit: int = 10,
    threshold: float = 0.3,
    enhance_query: bool = False,
    project: str | None = None,
) -> str:
    """Vector similarity search.

    Args:
        query: Natural-language query
        table: decisions, code_patterns or documentation
        limit: Max results (default 10, max 50)
        threshold: Minimum similarity (0-1)
        enhance_query: Append related terms before embedding
        project: Project name (defaults to the current project)
    """
    if not query.strip():
        return "Error: query is required"
    service = get_service()
    error = _validate_limit(limit, service.config.max_limit) or _validate_table(table)
    if error:
        return error
    results = await service.semantic_search(query, table, project, limit, threshold, enhance_query)
    return format_results(results, query, "vector")


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def keyword_search(
    query: str,
    table: str = "decisions",
    limit: int = 10,
    project: str | None = None,
) -> str:
    """Full-text (BM25) search.

    Args:
        query: Keywords or code symbols
        table: decisions, code_patterns or documentation
        limit: Max results (default 10, max 50)
        project: Project name (defaults to the current project)
    """
    if not query.strip():
        return "Error: query is required"
    service = get_service()
    error = _validate_limit(limit, service.config.max_limit) or _validate_table(table)
    if error:
        return error
    results = await service.keyword_search(query, table, project, limit)
    return format_results(results, query, "keyword")


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def identify_duplicates(
    feature: str | None = None,
    scope: str | None = None,
    threshold: float = 0.7,
    project: str | None = None,
) -> str:
    """Find stored code patterns similar to a feature description or snippet.

    Args:
        feature: Code or description of the feature to check
        scope: Optional path hint
        threshold: Minimum similarity (0-1, default 0.7)
        project: Project name (defaults to the current project)
    """
    result = await get_service().identify_duplicates(feature, scope, threshold, project)
    lines = [result["message"]]
    for i, d in enumerate(result["duplicates"], 1):
        lines.append(f"[{i}] {d['file_path']} ({d['language']}) - {d['similarity']:.0%} similar")
        lines.append(f"    {_truncate(d['content'], 160)}")
    return "\n".join(lines)


@mcp.tool(
    annotations={
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def add_code_pattern(
    file_path: str,
    content: str,
    language: str | None = None,
    project: str | None = None,
) -> str:
    """Store a code fragment for duplicate detection. Repeated fragments are not duplicated.

    Args:
        file_path: Source file of the fragment
        content: The code
        language: Programming language
        project: Project name (defaults to the current project)
    """
    if not file_path.strip() or not content.strip():
        return "Error: file_path and content are required"
    result = await get_service().add_code_pattern(file_path, content, language, project)
    verb = "Stored" if result["status"] == "created" else "Already stored"
    return f"{verb}: {file_path} (ID: {result['id']}, embedding: {result['embedding_id']})"


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def analyze_query(query: str) -> str:
    """Show how a query would be routed (strategy, type, confidence, signals).

    Args:
        query: Query to analyze
    """
    return json.dumps(get_service().analyze_query(query).to_dict(), indent=2)


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def list_projects() -> str:
    """List all projects known to this memory store."""
    projects = await get_service().list_projects()
    if not projects:
        return "No projects yet."
    lines = [f"{len(projects)} projects:"]
    for p in projects:
        lines.append(f"  {p['name']} (last accessed {p['last_accessed'][:19]})")
    return "\n".join(lines)


@mcp.tool(
    annotations={
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
    }
)
async def memory_stats(project: str | None = None) -> str:
    """Get memory statistics for a project - row counts, vector counts, index state."""
    stats = await get_service().stats(project)
    lines = [
        f"=== Memory Statistics ({stats['project']}) ===",
        f"Embedding: {stats['embedding_model']} ({stats['embedding_dim']}D, "
        f"{'warm' if stats['model_warm'] else 'cold'})",
        "",
        "Rows:",
    ]
    for table, count in stats["counts"].items():
        lines.append(f"  {table}: {count}")
    lines.append("\nVectors (all projects):")
    for table, count in stats["vectors"].items():
        keyword = "BM25 index" if stats["keyword_indexes"].get(table) else "no keyword index yet"
        lines.append(f"  {table}: {count} ({keyword})")
    return "\n".join(lines)


# =============================================================================
# Server Entry Point
# =============================================================================


async def run_server():
    """Run the MCP server after opening stores and warming the model."""
    await init_service()
    try:
        await mcp.run_stdio_async()
    finally:
        if _service is not None:
            _service.close()


def main():
    """Entry point."""
    asyncio.run(run_server())


if __name__ == "__main__":
    main()
