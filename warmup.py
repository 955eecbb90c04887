#!/usr/bin/env python3
"""
Session warm-up for DevAssist memory.

Run at session start: loads the embedding model, builds the keyword indexes,
then prints a project context block (recent decisions, open milestones and
search hits for a few standing topics) for the agent to read.

Every step degrades on its own; one failing search never aborts the rest.

Usage:
    python warmup.py                      # current project
    python warmup.py --project api --topics "auth" "deployment"
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from dataclasses import dataclass, field, replace
from typing import Any

from config import Config
from memory import MemoryService
from models import VECTOR_TABLES
from utils import log

DEFAULT_TOPICS = ("architecture decisions", "known blockers", "testing strategy")
OPEN_STATUSES = frozenset({"not_started", "in_progress", "testing", "blocked"})


@dataclass
class WarmupReport:
    project: str
    decisions: list[dict[str, Any]] = field(default_factory=list)
    open_milestones: list[dict[str, Any]] = field(default_factory=list)
    topic_hits: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    failures: list[str] = field(default_factory=list)
    elapsed: float = 0.0


async def _step(report: WarmupReport, label: str, coro):
    try:
        return await coro
    except Exception as e:
        log(f"Warm-up step '{label}' failed: {e}")
        report.failures.append(label)
        return None


async def prepare_search_indices(service: MemoryService) -> None:
    """Build keyword indexes and warm the embedding pipeline."""
    await service.embeddings.get_pipeline()
    for table in VECTOR_TABLES:
        await asyncio.to_thread(service.keyword_index.ensure_index, table)


async def warm_up(
    service: MemoryService,
    project: str | None = None,
    topics: tuple[str, ...] = DEFAULT_TOPICS,
    limit: int = 5,
) -> WarmupReport:
    """Load context for a session. Never raises for a failed step."""
    start = time.time()
    report = WarmupReport(project=project or service.config.project_name)

    await _step(report, "indices", prepare_search_indices(service))

    decisions = await _step(report, "decisions", service.get_decisions(project, limit=limit))
    report.decisions = decisions or []

    progress = await _step(report, "progress", service.get_progress(project, limit=50))
    report.open_milestones = [p for p in progress or [] if p["status"] in OPEN_STATUSES]

    results = await asyncio.gather(
        *(_step(report, f"topic:{t}", service.hybrid_search(t, project=project, limit=limit)) for t in topics)
    )
    report.topic_hits = {t: r or [] for t, r in zip(topics, results)}

    report.elapsed = time.time() - start
    return report


def format_report(report: WarmupReport) -> str:
    border = "=" * 60
    lines = [border, f"PROJECT CONTEXT - {report.project}", border, ""]

    lines.append("Recent decisions:")
    if not report.decisions:
        lines.append("  (none yet)")
    for d in report.decisions:
        lines.append(f"  - {d['decision'][:150]} ({d['timestamp'][:10]})")

    lines.append("\nOpen milestones:")
    if not report.open_milestones:
        lines.append("  (none)")
    for p in report.open_milestones:
        blockers = f" - blocked by: {', '.join(p['blockers'])}" if p["blockers"] else ""
        lines.append(f"  - {p['milestone']} [{p['status']}]{blockers}")

    for topic, hits in report.topic_hits.items():
        if not hits:
            continue
        lines.append(f"\nRelated to '{topic}':")
        for hit in hits:
            text = hit.get("decision") or hit.get("text") or ""
            lines.append(f"  - {text[:150]}")

    lines.append("")
    if report.failures:
        lines.append(f"Skipped: {', '.join(report.failures)}")
    lines.append(f"Warm-up took {report.elapsed:.1f}s")
    lines.append(border)
    return "\n".join(lines)


async def run(args: argparse.Namespace) -> int:
    config = Config()
    if args.project:
        config = replace(config, project_name=args.project)
    service = MemoryService.open(config)
    try:
        report = await warm_up(service, topics=tuple(args.topics), limit=args.limit)
    finally:
        service.close()
    print(format_report(report))
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Warm up DevAssist memory and print project context")
    parser.add_argument("--project", help="Project name (defaults to DEVASSIST_PROJECT or git remote)")
    parser.add_argument("--topics", nargs="*", default=list(DEFAULT_TOPICS), help="Standing topics to search")
    parser.add_argument("--limit", type=int, default=5, help="Results per section")
    sys.exit(asyncio.run(run(parser.parse_args())))


if __name__ == "__main__":
    main()
