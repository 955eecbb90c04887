"""
Structured store for devassist-memory (SQLite).

Holds projects, decisions, progress, code patterns and documentation. One
connection is opened per process and shared; WAL journaling lets readers run
alongside the single writer. Every entity except Project is tagged with a
project_id and every read is scoped by it.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from models import VALID_STATUSES
from utils import now_iso

SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT UNIQUE NOT NULL,
    path TEXT,
    created_at TEXT NOT NULL,
    last_accessed TEXT NOT NULL,
    metadata TEXT
);

CREATE TABLE IF NOT EXISTS decisions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id),
    decision TEXT NOT NULL,
    context TEXT,
    impact TEXT,
    alternatives TEXT,
    embedding_id TEXT UNIQUE,
    timestamp TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS progress (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id),
    milestone TEXT NOT NULL,
    status TEXT CHECK(status IN ('not_started', 'in_progress', 'testing', 'completed', 'blocked')),
    notes TEXT,
    blockers TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (project_id, milestone)
);

CREATE TABLE IF NOT EXISTS code_patterns (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id),
    pattern_hash TEXT UNIQUE NOT NULL,
    file_path TEXT NOT NULL,
    language TEXT,
    content TEXT,
    embedding_id TEXT UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS documentation (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id),
    title TEXT NOT NULL,
    path TEXT NOT NULL,
    source TEXT,
    content TEXT,
    embedding_id TEXT UNIQUE,
    indexed_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_decisions_project ON decisions(project_id);
CREATE INDEX IF NOT EXISTS idx_progress_project ON progress(project_id);
CREATE INDEX IF NOT EXISTS idx_progress_status ON progress(status);
CREATE INDEX IF NOT EXISTS idx_patterns_project ON code_patterns(project_id);
CREATE INDEX IF NOT EXISTS idx_documentation_project ON documentation(project_id);
"""

COUNTABLE_TABLES = frozenset({"decisions", "progress", "code_patterns", "documentation"})


def _decode_decision(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    data["alternatives"] = json.loads(data.get("alternatives") or "[]")
    return data


def _decode_progress(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    data["blockers"] = json.loads(data.get("blockers") or "[]")
    return data


class StructuredStore:
    """Typed access to the relational half of the memory layer."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # RLock allows reentrant calls (transaction -> insert_*)
        self.lock = threading.RLock()
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode = WAL")
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.conn.executescript(SCHEMA)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Hold the connection for an explicit BEGIN ... COMMIT block.

        The lock is held until the block exits, so no other caller can commit
        or observe a half-written row through this connection.
        """
        with self.lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
                self.conn.execute("COMMIT")
            except BaseException:
                if self.conn.in_transaction:
                    self.conn.execute("ROLLBACK")
                raise

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def get_or_create_project(self, name: str, path: str | None = None) -> dict[str, Any]:
        """Return the project row, creating it on first reference."""
        timestamp = now_iso()
        with self.lock:
            row = self.conn.execute("SELECT * FROM projects WHERE name = ?", (name,)).fetchone()
            if row is None:
                self.conn.execute(
                    "INSERT INTO projects (name, path, created_at, last_accessed, metadata) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (name, path, timestamp, timestamp, json.dumps({"created": timestamp})),
                )
            else:
                self.conn.execute(
                    "UPDATE projects SET last_accessed = ? WHERE id = ?", (timestamp, row["id"])
                )
            row = self.conn.execute("SELECT * FROM projects WHERE name = ?", (name,)).fetchone()
        project = dict(row)
        project["metadata"] = json.loads(project.get("metadata") or "{}")
        return project

    def list_projects(self) -> list[dict[str, Any]]:
        with self.lock:
            rows = self.conn.execute("SELECT * FROM projects ORDER BY name").fetchall()
        projects = []
        for row in rows:
            project = dict(row)
            project["metadata"] = json.loads(project.get("metadata") or "{}")
            projects.append(project)
        return projects

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def insert_decision(
        self,
        project_id: int,
        decision: str,
        context: str | None,
        impact: str | None,
        alternatives: list[str],
        embedding_id: str,
    ) -> int:
        with self.lock:
            cursor = self.conn.execute(
                "INSERT INTO decisions "
                "(project_id, decision, context, impact, alternatives, embedding_id, timestamp) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (project_id, decision, context, impact, json.dumps(alternatives), embedding_id, now_iso()),
            )
            return cursor.lastrowid

    def get_decisions(self, project_id: int, limit: int = 50) -> list[dict[str, Any]]:
        with self.lock:
            rows = self.conn.execute(
                "SELECT * FROM decisions WHERE project_id = ? ORDER BY timestamp DESC, id DESC LIMIT ?",
                (project_id, limit),
            ).fetchall()
        return [_decode_decision(r) for r in rows]

    def get_decisions_by_embedding_ids(
        self, project_id: int, embedding_ids: list[str]
    ) -> list[dict[str, Any]]:
        if not embedding_ids:
            return []
        placeholders = ",".join("?" for _ in embedding_ids)
        with self.lock:
            rows = self.conn.execute(
                f"SELECT * FROM decisions WHERE project_id = ? AND embedding_id IN ({placeholders})",
                (project_id, *embedding_ids),
            ).fetchall()
        return [_decode_decision(r) for r in rows]

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def upsert_progress(
        self,
        project_id: int,
        milestone: str,
        status: str,
        notes: str | None,
        blockers: list[str],
    ) -> tuple[int, bool]:
        """Insert or update a milestone. Returns (id, created)."""
        if status not in VALID_STATUSES:
            raise ValueError(f"Invalid status '{status}'. Valid: {sorted(VALID_STATUSES)}")
        timestamp = now_iso()
        with self.lock:
            existing = self.conn.execute(
                "SELECT id FROM progress WHERE project_id = ? AND milestone = ?",
                (project_id, milestone),
            ).fetchone()
            if existing is not None:
                self.conn.execute(
                    "UPDATE progress SET status = ?, notes = ?, blockers = ?, updated_at = ? WHERE id = ?",
                    (status, notes, json.dumps(blockers), timestamp, existing["id"]),
                )
                return existing["id"], False
            cursor = self.conn.execute(
                "INSERT INTO progress "
                "(project_id, milestone, status, notes, blockers, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (project_id, milestone, status, notes, json.dumps(blockers), timestamp, timestamp),
            )
            return cursor.lastrowid, True

    def get_progress(self, project_id: int, limit: int = 50) -> list[dict[str, Any]]:
        with self.lock:
            rows = self.conn.execute(
                "SELECT * FROM progress WHERE project_id = ? ORDER BY updated_at DESC, id DESC LIMIT ?",
                (project_id, limit),
            ).fetchall()
        return [_decode_progress(r) for r in rows]

    # ------------------------------------------------------------------
    # Code patterns
    # ------------------------------------------------------------------

    def find_code_pattern(self, pattern_hash: str) -> dict[str, Any] | None:
        with self.lock:
            row = self.conn.execute(
                "SELECT * FROM code_patterns WHERE pattern_hash = ?", (pattern_hash,)
            ).fetchone()
        return dict(row) if row else None

    def insert_code_pattern(
        self,
        project_id: int,
        pattern_hash: str,
        file_path: str,
        language: str | None,
        content: str,
        embedding_id: str,
    ) -> int:
        with self.lock:
            cursor = self.conn.execute(
                "INSERT INTO code_patterns "
                "(project_id, pattern_hash, file_path, language, content, embedding_id, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (project_id, pattern_hash, file_path, language, content, embedding_id, now_iso()),
            )
            return cursor.lastrowid

    # ------------------------------------------------------------------
    # Documentation
    # ------------------------------------------------------------------

    def insert_documentation(
        self,
        project_id: int,
        title: str,
        content: str,
        path: str,
        source: str | None,
        embedding_id: str,
    ) -> int:
        with self.lock:
            cursor = self.conn.execute(
                "INSERT INTO documentation "
                "(project_id, title, path, source, content, embedding_id, indexed_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (project_id, title, path, source, content, embedding_id, now_iso()),
            )
            return cursor.lastrowid

    # ------------------------------------------------------------------
    # Bulk access
    # ------------------------------------------------------------------

    def count_rows(self, table: str, project_id: int | None = None) -> int:
        if table not in COUNTABLE_TABLES:
            raise ValueError(f"Unknown table '{table}'")
        sql = f"SELECT COUNT(*) FROM {table}"
        params: tuple = ()
        if project_id is not None:
            sql += " WHERE project_id = ?"
            params = (project_id,)
        with self.lock:
            return self.conn.execute(sql, params).fetchone()[0]

    def iter_rows(self, table: str) -> list[dict[str, Any]]:
        """All rows of a table joined with their project name (for migration)."""
        if table not in COUNTABLE_TABLES:
            raise ValueError(f"Unknown table '{table}'")
        with self.lock:
            rows = self.conn.execute(
                f"SELECT t.*, p.name AS project FROM {table} t "
                "JOIN projects p ON p.id = t.project_id ORDER BY t.id"
            ).fetchall()
        return [dict(r) for r in rows]

    def close(self) -> None:
        with self.lock:
            self.conn.close()
