#!/usr/bin/env python3
"""
Re-embed stored memories with a different embedding model.

Recreates each LanceDB table at the new model's dimension and re-embeds every
decision, code pattern and documentation entry from the SQLite store, keeping
their embedding ids. Best-effort: a row that fails is logged and skipped, and
a partial run is not rolled back (re-run it to retry).

Code patterns are re-embedded from the stored (truncated) content.

Usage:
    python migrate_embeddings.py --to mpnet --dry-run  # Preview
    python migrate_embeddings.py --to mpnet            # Apply
    EMBEDDING_MODEL=mpnet python server.py             # then serve with it
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any

from config import Config
from embeddings import EMBEDDING_MODELS, EmbeddingProvider
from memory import MemoryService
from models import CODE_PATTERNS, DECISIONS, VECTOR_TABLES


@dataclass
class MigrationResult:
    to_model: str
    planned: Counter = field(default_factory=Counter)
    migrated: Counter = field(default_factory=Counter)
    failed: Counter = field(default_factory=Counter)


def embedding_text(table: str, row: dict[str, Any]) -> str:
    """The text a write path embedded for this row."""
    if table == DECISIONS:
        return f"{row['decision']} {row.get('context') or ''}".strip()
    if table == CODE_PATTERNS:
        return row.get("content") or ""
    return f"{row['title']}\n{row.get('content') or ''}"


def vector_record(table: str, row: dict[str, Any], vector: list[float]) -> dict[str, Any]:
    base = {"id": row["embedding_id"], "project": row["project"], "vector": vector}
    if table == DECISIONS:
        return {
            **base,
            "text": embedding_text(table, row),
            "metadata": json.dumps(
                {
                    "decision_id": row["id"],
                    "impact": row.get("impact"),
                    "alternatives": json.loads(row.get("alternatives") or "[]"),
                }
            ),
        }
    if table == CODE_PATTERNS:
        return {
            **base,
            "file_path": row["file_path"],
            "content": row.get("content") or "",
            "language": row.get("language") or "unknown",
        }
    return {
        **base,
        "title": row["title"],
        "content": row.get("content") or "",
        "source": row.get("source") or "",
        "path": row["path"],
    }


async def migrate_embeddings(
    service: MemoryService,
    to_model: str,
    dry_run: bool = True,
    embeddings: EmbeddingProvider | None = None,
) -> MigrationResult:
    """Re-embed every stored row into `to_model`. Swaps the service onto it when done."""
    result = MigrationResult(to_model=to_model)
    rows = {table: await asyncio.to_thread(service.store.iter_rows, table) for table in VECTOR_TABLES}
    for table, table_rows in rows.items():
        result.planned[table] = sum(1 for r in table_rows if r.get("embedding_id"))

    print("=" * 70)
    print("MIGRATION PLAN")
    print("=" * 70)
    print(f"\nFrom: {service.embeddings.default_model} ({service.embeddings.dimension()}D)")
    spec = EMBEDDING_MODELS[to_model]
    print(f"To:   {to_model} ({spec.dimensions}D) - {spec.description}\n")
    for table in VECTOR_TABLES:
        print(f"  {result.planned[table]:5d} {table}")
    print("\n" + "=" * 70)

    if dry_run:
        print("\n⚠ DRY RUN MODE - No changes applied")
        print("Run without --dry-run to apply migration")
        return result

    embeddings = embeddings or EmbeddingProvider(replace(service.config, embedding_model=to_model))
    await embeddings.get_pipeline()

    print("\nApplying migration...")
    for table, table_rows in rows.items():
        await asyncio.to_thread(service.vector_index.recreate_table, table, embeddings.dimension())
        for row in table_rows:
            if not row.get("embedding_id"):
                continue
            try:
                vector = await embeddings.embed(embedding_text(table, row))
                record = vector_record(table, row, vector)
                await asyncio.to_thread(service.vector_index.add, table, record)
                result.migrated[table] += 1
            except Exception as e:
                print(f"Warning: {table} row {row['id']} failed: {e}", file=sys.stderr)
                result.failed[table] += 1
        print(f"  {table}: {result.migrated[table]} migrated, {result.failed[table]} failed")

    service.embeddings = embeddings
    service.searcher.embeddings = embeddings
    print(f"\n✓ Migration complete! Set EMBEDDING_MODEL={to_model} before restarting the server")
    return result


async def run(args: argparse.Namespace) -> int:
    config = Config()
    if args.project:
        config = replace(config, project_name=args.project)
    if not config.sqlite_path.exists():
        print(f"Error: Database not found at {config.sqlite_path}")
        return 1
    service = MemoryService.open(config)
    try:
        result = await migrate_embeddings(service, args.to, dry_run=args.dry_run)
    finally:
        service.close()
    return 1 if sum(result.failed.values()) else 0


def main():
    parser = argparse.ArgumentParser(
        description="Re-embed stored memories with a different embedding model",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python migrate_embeddings.py --to mpnet --dry-run  # Preview changes
  python migrate_embeddings.py --to mpnet            # Apply migration
        """,
    )
    parser.add_argument("--to", required=True, choices=sorted(EMBEDDING_MODELS), help="Target model key")
    parser.add_argument("--project", help="Project whose data directory to migrate")
    parser.add_argument("--dry-run", action="store_true", help="Preview changes without applying them")
    args = parser.parse_args()

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\n\nMigration cancelled")
        sys.exit(1)


if __name__ == "__main__":
    main()
