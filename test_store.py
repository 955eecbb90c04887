"""Tests for the SQLite structured store and its FTS5 keyword index."""

import sqlite3

import pytest

from errors import SearchError
from keyword_index import KeywordIndex, build_match_expression
from store import StructuredStore


@pytest.fixture
def store(tmp_path):
    store = StructuredStore(tmp_path / "memory.db")
    yield store
    store.close()


class TestProjects:
    def test_get_or_create_is_stable(self, store):
        first = store.get_or_create_project("api", "/src/api")
        second = store.get_or_create_project("api")
        assert first["id"] == second["id"]
        assert second["path"] == "/src/api"
        assert second["last_accessed"] >= first["last_accessed"]
        assert [p["name"] for p in store.list_projects()] == ["api"]


class TestDecisions:
    def test_insert_and_read_back(self, store):
        project = store.get_or_create_project("api")
        store.insert_decision(project["id"], "Use SQLite", "Single file", "low", ["Postgres"], "decision_1")
        decisions = store.get_decisions(project["id"])
        assert len(decisions) == 1
        assert decisions[0]["alternatives"] == ["Postgres"]
        assert decisions[0]["embedding_id"] == "decision_1"

    def test_reads_are_scoped_to_project(self, store):
        api = store.get_or_create_project("api")
        web = store.get_or_create_project("web")
        store.insert_decision(api["id"], "Use SQLite", None, None, [], "decision_1")
        assert store.get_decisions(web["id"]) == []
        assert store.get_decisions_by_embedding_ids(web["id"], ["decision_1"]) == []
        assert len(store.get_decisions_by_embedding_ids(api["id"], ["decision_1"])) == 1

    def test_transaction_rolls_back(self, store):
        project = store.get_or_create_project("api")
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.insert_decision(project["id"], "Use SQLite", None, None, [], "decision_1")
                raise RuntimeError("vector write failed")
        assert store.count_rows("decisions") == 0


class TestProgress:
    def test_upsert_updates_in_place(self, store):
        project = store.get_or_create_project("api")
        first_id, created = store.upsert_progress(project["id"], "Auth", "in_progress", None, [])
        assert created
        second_id, created = store.upsert_progress(
            project["id"], "Auth", "blocked", "waiting", ["key rotation"]
        )
        assert not created
        assert second_id == first_id

        rows = store.get_progress(project["id"])
        assert len(rows) == 1
        assert rows[0]["status"] == "blocked"
        assert rows[0]["blockers"] == ["key rotation"]

    def test_same_milestone_in_two_projects(self, store):
        api = store.get_or_create_project("api")
        web = store.get_or_create_project("web")
        store.upsert_progress(api["id"], "Auth", "completed", None, [])
        store.upsert_progress(web["id"], "Auth", "not_started", None, [])
        assert store.count_rows("progress") == 2

    def test_invalid_status(self, store):
        project = store.get_or_create_project("api")
        with pytest.raises(ValueError, match="Invalid status"):
            store.upsert_progress(project["id"], "Auth", "done", None, [])


class TestCodePatterns:
    def test_pattern_hash_is_unique(self, store):
        project = store.get_or_create_project("api")
        store.insert_code_pattern(project["id"], "abc", "a.py", "python", "x = 1", "pattern_1")
        with pytest.raises(sqlite3.IntegrityError):
            store.insert_code_pattern(project["id"], "abc", "a.py", "python", "x = 1", "pattern_2")
        assert store.find_code_pattern("abc")["embedding_id"] == "pattern_1"
        assert store.find_code_pattern("missing") is None


class TestKeywordIndex:
    def test_match_expression_quotes_terms(self):
        assert build_match_expression("getUserById()") == '"getUserById"'
        assert build_match_expression("jwt auth jwt") == '"jwt" OR "auth"'
        assert build_match_expression("()") is None

    def test_ranked_search(self, store):
        project = store.get_or_create_project("api")
        store.insert_decision(project["id"], "Use JWT for auth", "jwt jwt tokens", None, [], "d1")
        store.insert_decision(project["id"], "Cache sessions in Redis", None, None, [], "d2")
        index = KeywordIndex(store)

        results = index.search("jwt", "decisions", "api")
        assert [r["embedding_id"] for r in results] == ["d1"]
        assert results[0]["keyword_score"] >= 0
        assert results[0]["project"] == "api"
        assert results[0]["search_type"] == "keyword"

    def test_rows_written_after_build_are_found(self, store):
        project = store.get_or_create_project("api")
        index = KeywordIndex(store)
        index.ensure_index("decisions")
        assert index.has_index("decisions")

        store.insert_decision(project["id"], "Adopt zanzibar permissions", None, None, [], "d1")
        assert [r["embedding_id"] for r in index.search("zanzibar", "decisions")] == ["d1"]

    def test_project_filter(self, store):
        api = store.get_or_create_project("api")
        web = store.get_or_create_project("web")
        store.insert_decision(api["id"], "Use GraphQL", None, None, [], "d1")
        store.insert_decision(web["id"], "Use GraphQL", None, None, [], "d2")
        index = KeywordIndex(store)
        assert [r["embedding_id"] for r in index.search("graphql", "decisions", "web")] == ["d2"]
        assert len(index.search("graphql", "decisions")) == 2

    def test_code_like_query_does_not_fail(self, store):
        project = store.get_or_create_project("api")
        store.insert_code_pattern(
            project["id"], "h1", "users.js", "javascript", "function getUserById(id) {}", "p1"
        )
        results = KeywordIndex(store).search("getUserById()", "code_patterns")
        assert [r["embedding_id"] for r in results] == ["p1"]

    def test_unknown_table(self, store):
        with pytest.raises(SearchError):
            KeywordIndex(store).search("jwt", "progress")
