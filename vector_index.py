"""
Vector index for devassist-memory (LanceDB).

One LanceDB table per searchable entity, each created with a seed row.
Search uses cosine distance; callers read `similarity = 1 - _distance`.
Project and threshold filters run after retrieval, so filtered searches
over-fetch by `overfetch_multiplier` to still fill the requested limit.
"""

from __future__ import annotations

import math
import threading
from pathlib import Path
from typing import Any

import lancedb

from errors import SearchError
from models import SEED_ROW_ID, VECTOR_TABLES, seed_record, vector_schema
from utils import escape_filter_value, log


class VectorIndex:
    """Nearest-neighbour search over embedding records."""

    def __init__(self, db_path: Path | str, dim: int, overfetch_multiplier: int = 2):
        self.db_path = Path(db_path)
        self.dim = dim
        self.overfetch_multiplier = overfetch_multiplier
        self._lock = threading.RLock()
        self._tables: dict[str, lancedb.table.Table] = {}
        self.db_path.mkdir(parents=True, exist_ok=True)
        self.db = lancedb.connect(str(self.db_path))

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def get_table(self, table: str) -> lancedb.table.Table:
        """Open a vector table, creating it with a seed row if missing."""
        if table not in VECTOR_TABLES:
            raise ValueError(f"Unknown vector table '{table}'. Valid: {list(VECTOR_TABLES)}")
        handle = self._tables.get(table)
        if handle is None:
            with self._lock:
                handle = self._tables.get(table)
                if handle is None:  # Double-check after acquiring lock
                    # exist_ok opens an existing table without re-adding the seed
                    handle = self.db.create_table(
                        table,
                        data=[seed_record(table, self.dim)],
                        schema=vector_schema(table, self.dim),
                        exist_ok=True,
                    )
                    self._tables[table] = handle
        return handle

    def ensure_tables(self) -> None:
        for table in VECTOR_TABLES:
            self.get_table(table)

    def table_dimension(self, table: str) -> int:
        field = self.get_table(table).schema.field("vector")
        return field.type.list_size

    def count(self, table: str) -> int:
        """Number of real records (the seed row is not counted)."""
        total = self.get_table(table).count_rows()
        return max(0, total - 1)

    def recreate_table(self, table: str, dim: int) -> None:
        """Drop a table and create it empty (seed only) at a new dimension."""
        with self._lock:
            self._tables.pop(table, None)
            self.db.drop_table(table, ignore_missing=True)
            log(f"Dropped vector table '{table}'")
            self.dim = dim
            self.get_table(table)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add(self, table: str, record: dict[str, Any]) -> None:
        """Add one embedding record. The vector must match the table dimension."""
        vector = record.get("vector")
        expected = self.table_dimension(table)
        if vector is None or len(vector) != expected:
            got = None if vector is None else len(vector)
            raise ValueError(f"Vector dimension mismatch for '{table}': expected {expected}, got {got}")
        row = vector_schema(table, expected)(**record)
        self.get_table(table).add([row.model_dump()])

    def delete(self, table: str, ids: list[str]) -> None:
        """Remove records by id. Used only to compensate a failed dual write."""
        if not ids:
            return
        id_list = ", ".join(f"'{escape_filter_value(i)}'" for i in ids)
        self.get_table(table).delete(f"id IN ({id_list})")

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        table: str,
        vector: list[float],
        limit: int = 10,
        project: str | None = None,
        threshold: float | None = None,
        overfetch_multiplier: int | None = None,
    ) -> list[dict[str, Any]]:
        """Nearest neighbours, closest first, filtered by project and similarity."""
        if limit <= 0:
            return []
        filtering = project is not None or threshold is not None
        multiplier = overfetch_multiplier or self.overfetch_multiplier
        fetch_limit = (limit * multiplier if filtering else limit) + 1  # +1: seed row

        try:
            rows = (
                self.get_table(table)
                .search(vector, vector_column_name="vector")
                .distance_type("cosine")
                .limit(fetch_limit)
                .to_list()
            )
        except Exception as e:
            raise SearchError(f"Vector search failed on '{table}': {e}", table=table) from e

        results = []
        for row in rows:
            if row["id"] == SEED_ROW_ID:
                continue
            distance = row.get("_distance")
            if distance is None or math.isnan(distance):
                continue
            similarity = 1 - distance
            if project is not None and row.get("project") != project:
                continue
            if threshold is not None and similarity < threshold:
                continue
            row.pop("vector", None)
            row["embedding_id"] = row["id"]
            row["similarity"] = similarity
            row["search_type"] = "vector"
            results.append(row)
            if len(results) >= limit:
                break
        return results
