"""Shared data models for devassist-memory."""

from functools import lru_cache

from lancedb.pydantic import LanceModel, Vector

DECISIONS = "decisions"
CODE_PATTERNS = "code_patterns"
DOCUMENTATION = "documentation"

VECTOR_TABLES = (DECISIONS, CODE_PATTERNS, DOCUMENTATION)

VALID_STATUSES = frozenset({"not_started", "in_progress", "testing", "completed", "blocked"})
MEMORY_CATEGORIES = frozenset({"all", "decisions", "progress"})

# Every vector table is created with this row so the engine never sees an
# empty table. It is excluded from every search result.
SEED_ROW_ID = "__seed__"
SEED_PROJECT = "__seed__"


@lru_cache(maxsize=None)
def vector_schema(table: str, dim: int) -> type[LanceModel]:
    """Return the LanceDB schema for a vector table at a given dimension.

    IMPORTANT: Any changes to these schemas require migration of existing data
    (see migrate_embeddings.py).
    """
    if table == DECISIONS:

        class DecisionRecord(LanceModel):
            id: str  # == decisions.embedding_id
            project: str
            text: str
            vector: Vector(dim)  # type: ignore[valid-type]
            metadata: str  # JSON object as string

        return DecisionRecord

    if table == CODE_PATTERNS:

        class CodePatternRecord(LanceModel):
            id: str  # == code_patterns.embedding_id
            project: str
            file_path: str
            content: str  # Full content; the structured row keeps a truncated copy
            vector: Vector(dim)  # type: ignore[valid-type]
            language: str

        return CodePatternRecord

    if table == DOCUMENTATION:

        class DocumentationRecord(LanceModel):
            id: str  # == documentation.embedding_id
            project: str
            title: str
            content: str
            vector: Vector(dim)  # type: ignore[valid-type]
            source: str
            path: str

        return DocumentationRecord

    raise ValueError(f"Unknown vector table '{table}'. Valid: {list(VECTOR_TABLES)}")


def seed_record(table: str, dim: int) -> dict:
    """Initializer row for a freshly created vector table."""
    # Unit vector rather than zeros so cosine distance stays defined.
    vector = [0.0] * dim
    vector[0] = 1.0
    fields = {
        DECISIONS: {"text": "Initial decision", "metadata": "{}"},
        CODE_PATTERNS: {"file_path": "/init", "content": "Initial pattern", "language": "unknown"},
        DOCUMENTATION: {"title": "Initial document", "content": "", "source": "init", "path": "/init"},
    }[table]
    record = vector_schema(table, dim)(id=SEED_ROW_ID, project=SEED_PROJECT, vector=vector, **fields)
    return record.model_dump()
