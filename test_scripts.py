"""Tests for the session warm-up, the embedding migration and the web viewer."""

from dataclasses import replace

import pytest

import memory_viewer
from embeddings import EmbeddingProvider
from migrate_embeddings import embedding_text, migrate_embeddings
from warmup import format_report, warm_up


class TestWarmup:
    async def test_report(self, service):
        await service.record_decision("Pin the test database image", "Flaky CI runs")
        await service.track_progress("CI pipeline", "blocked", blockers=["runner quota"])
        await service.track_progress("Docs site", "completed")

        report = await warm_up(service, topics=("testing strategy",))

        assert report.failures == []
        assert [d["decision"] for d in report.decisions] == ["Pin the test database image"]
        assert [p["milestone"] for p in report.open_milestones] == ["CI pipeline"]
        assert service.embeddings.is_warm()
        assert service.keyword_index.has_index("code_patterns")

        text = format_report(report)
        assert "PROJECT CONTEXT - alpha" in text
        assert "CI pipeline [blocked] - blocked by: runner quota" in text

    async def test_failed_step_is_reported(self, service, monkeypatch):
        async def broken_search(*args, **kwargs):
            raise RuntimeError("index offline")

        monkeypatch.setattr(service, "hybrid_search", broken_search)
        report = await warm_up(service, topics=("auth",))
        assert report.failures == ["topic:auth"]
        assert report.topic_hits == {"auth": []}
        assert "Skipped: topic:auth" in format_report(report)


class TestMigrateEmbeddings:
    async def test_dry_run_changes_nothing(self, service):
        await service.record_decision("Use Redis for rate limiting")
        result = await migrate_embeddings(service, "mpnet", dry_run=True)
        assert result.planned["decisions"] == 1
        assert sum(result.migrated.values()) == 0
        assert service.vector_index.table_dimension("decisions") == 384

    async def test_migrate_to_new_dimension(self, service, config):
        await service.record_decision("Use Redis for rate limiting", "Shared counters")
        await service.add_code_pattern("limiter.py", "def allow(key): return True", "python")
        await service.add_documentation("Runbook", "Restart the limiter", "docs/runbook.md")

        provider = EmbeddingProvider(replace(config, embedding_model="mpnet"))
        result = await migrate_embeddings(service, "mpnet", dry_run=False, embeddings=provider)

        assert dict(result.migrated) == {"decisions": 1, "code_patterns": 1, "documentation": 1}
        assert sum(result.failed.values()) == 0
        for table in ("decisions", "code_patterns", "documentation"):
            assert service.vector_index.table_dimension(table) == 768
            assert service.vector_index.count(table) == 1

        hits = await service.semantic_search("Use Redis for rate limiting Shared counters")
        assert hits[0]["similarity"] > 0.99

    def test_embedding_text_matches_write_paths(self):
        assert embedding_text("decisions", {"decision": "Use Redis", "context": None}) == "Use Redis"
        row = {"title": "Runbook", "content": "Restart"}
        assert embedding_text("documentation", row) == "Runbook\nRestart"


class TestMemoryViewer:
    @pytest.fixture
    def client(self, service):
        memory_viewer._store = service.store
        memory_viewer.app.config["TESTING"] = True
        yield memory_viewer.app.test_client()
        memory_viewer._store = None

    async def test_index_lists_project_memory(self, service, client):
        await service.record_decision("Use Redis for rate limiting", alternatives=["Memcached"])
        await service.track_progress("Rate limiter", "testing", notes="load test pending")

        response = client.get("/?project=alpha")
        assert response.status_code == 200
        body = response.get_data(as_text=True)
        assert "Use Redis for rate limiting" in body
        assert "Alternatives: Memcached" in body
        assert "Rate limiter" in body
        assert "load test pending" in body

    def test_unknown_project(self, client):
        body = client.get("/?project=nope").get_data(as_text=True)
        assert "No decisions yet." in body
        assert "No milestones yet." in body

    def test_page_links(self):
        assert memory_viewer.get_page_links(1, 3) == [1, 2, 3]
        assert memory_viewer.get_page_links(6, 12) == [1, 2, 3, "...", 5, 6, 7, "...", 10, 11, 12]
