"""
Keyword index for devassist-memory (SQLite FTS5, BM25 ranking).

A `<table>_fts` external-content index is built the first time a table is
queried, by copying the searchable columns out of the structured store.
Triggers created alongside it keep the index current for rows written later.
"""

from __future__ import annotations

import re
import sqlite3
from typing import Any

from errors import SearchError
from store import StructuredStore

SEARCHABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "decisions": ("decision", "context", "impact"),
    "code_patterns": ("file_path", "content", "language"),
    "documentation": ("title", "content"),
}

_WORD_RE = re.compile(r"\w+")


def build_match_expression(query: str) -> str | None:
    """Turn free text into an FTS5 expression of quoted terms joined by OR.

    Quoting every term means code-like input such as `getUserById()` or
    `a.b::c` never reaches FTS5 as query syntax.
    """
    terms = _WORD_RE.findall(query)
    if not terms:
        return None
    return " OR ".join(f'"{term}"' for term in dict.fromkeys(terms))


class KeywordIndex:
    """Relevance-ranked full-text search over structured store rows."""

    def __init__(self, store: StructuredStore):
        self.store = store
        self._built: set[str] = set()

    def has_index(self, table: str) -> bool:
        if table in self._built:
            return True
        with self.store.lock:
            row = self.store.conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?",
                (f"{table}_fts",),
            ).fetchone()
        if row is not None:
            self._built.add(table)
        return row is not None

    def ensure_index(self, table: str) -> None:
        """Build the FTS index for a table if it does not exist yet."""
        columns = SEARCHABLE_COLUMNS.get(table)
        if columns is None:
            raise SearchError(f"Table '{table}' has no keyword index", table=table)
        if self.has_index(table):
            return

        fts = f"{table}_fts"
        cols = ", ".join(columns)
        new_cols = ", ".join(f"new.{c}" for c in columns)
        old_cols = ", ".join(f"old.{c}" for c in columns)
        statements = [
            f"CREATE VIRTUAL TABLE {fts} USING fts5({cols}, content='{table}', content_rowid='id')",
            f"INSERT INTO {fts}({fts}) VALUES('rebuild')",
            f"""CREATE TRIGGER {fts}_ai AFTER INSERT ON {table} BEGIN
                INSERT INTO {fts}(rowid, {cols}) VALUES (new.id, {new_cols});
            END""",
            f"""CREATE TRIGGER {fts}_ad AFTER DELETE ON {table} BEGIN
                INSERT INTO {fts}({fts}, rowid, {cols}) VALUES ('delete', old.id, {old_cols});
            END""",
            f"""CREATE TRIGGER {fts}_au AFTER UPDATE ON {table} BEGIN
                INSERT INTO {fts}({fts}, rowid, {cols}) VALUES ('delete', old.id, {old_cols});
                INSERT INTO {fts}(rowid, {cols}) VALUES (new.id, {new_cols});
            END""",
        ]
        try:
            with self.store.transaction() as conn:
                # Re-check under the lock in case another caller built it first.
                exists = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type = 'table' AND name = ?", (fts,)
                ).fetchone()
                if exists is None:
                    for statement in statements:
                        conn.execute(statement)
        except sqlite3.Error as e:
            raise SearchError(f"Could not build keyword index for '{table}': {e}", table=table) from e
        self._built.add(table)

    def search(
        self,
        query: str,
        table: str = "decisions",
        project: str | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Rows matching query, best first, with a non-negative keyword_score."""
        self.ensure_index(table)
        expression = build_match_expression(query)
        if expression is None or limit <= 0:
            return []

        fts = f"{table}_fts"
        sql = (
            f"SELECT {table}.*, projects.name AS project, -bm25({fts}) AS keyword_score "
            f"FROM {fts} "
            f"JOIN {table} ON {table}.id = {fts}.rowid "
            f"JOIN projects ON projects.id = {table}.project_id "
            f"WHERE {fts} MATCH ?"
        )
        params: list[Any] = [expression]
        if project is not None:
            sql += " AND projects.name = ?"
            params.append(project)
        sql += f" ORDER BY keyword_score DESC, {table}.id LIMIT ?"
        params.append(limit)

        try:
            with self.store.lock:
                rows = self.store.conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise SearchError(f"Keyword search failed on '{table}': {e}", table=table) from e

        results = []
        for row in rows:
            result = dict(row)
            result["keyword_score"] = max(0.0, result["keyword_score"])
            result["search_type"] = "keyword"
            results.append(result)
        return results
