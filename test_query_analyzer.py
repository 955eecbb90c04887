"""Tests for query classification and expansion."""

import pytest

from query_analyzer import analyze_query, expand_query, extract_keywords


class TestRouting:
    """The four routes, with the queries they were designed around."""

    def test_code_symbol_routes_to_keyword(self):
        analysis = analyze_query("getUserById()")
        assert analysis.strategy == "keyword"
        assert analysis.type == "code_search"
        assert analysis.has_code_elements
        assert analysis.confidence == 0.9

    def test_question_routes_to_vector(self):
        analysis = analyze_query("how should I structure authentication")
        assert analysis.strategy == "vector"
        assert analysis.type == "semantic_question"
        assert analysis.is_natural_language
        assert not analysis.has_specific_terms

    def test_short_technical_lookup_routes_to_keyword_boost(self):
        analysis = analyze_query("jwt auth")
        assert analysis.strategy == "keyword_boost"
        assert analysis.type == "specific_lookup"
        assert analysis.confidence == 0.85

    def test_plain_phrase_routes_to_hybrid(self):
        analysis = analyze_query("improve the onboarding flow")
        assert analysis.strategy == "hybrid"
        assert analysis.type == "mixed_query"
        assert analysis.confidence == 0.7

    @pytest.mark.parametrize("query", ["src/auth/session.py", "config.yaml", "where is login.ts"])
    def test_paths_and_files_route_to_keyword(self, query):
        analysis = analyze_query(query)
        assert analysis.is_navigational
        assert analysis.strategy == "keyword"

    def test_code_wins_over_question(self):
        """Rules are checked in order, so a question about a symbol is a code search."""
        analysis = analyze_query("why does user.save() fail")
        assert analysis.is_natural_language
        assert analysis.strategy == "keyword"

    def test_question_with_technology_is_not_vector(self):
        analysis = analyze_query("how does jwt work")
        assert analysis.strategy != "vector"

    def test_long_technical_query_is_hybrid(self):
        analysis = analyze_query("migrate react state management into redux store slices")
        assert analysis.has_specific_terms
        assert analysis.strategy == "hybrid"

    def test_plain_sentence_dot_is_not_code(self):
        analysis = analyze_query("improve onboarding. then measure it")
        assert not analysis.has_code_elements

    def test_empty_query(self):
        analysis = analyze_query("")
        assert analysis.strategy == "hybrid"
        assert analysis.keywords == []

    def test_to_dict(self):
        data = analyze_query("jwt auth").to_dict()
        assert data["strategy"] == "keyword_boost"
        assert data["keywords"] == ["jwt", "auth"]


class TestKeywords:
    def test_drops_stop_words_and_short_tokens(self):
        assert extract_keywords("the cache and a db for users") == ["cache", "users"]


class TestExpansion:
    def test_expands_known_concept(self):
        expanded = expand_query("frontend routing")
        assert expanded.startswith("frontend routing ")
        assert "user interface" in expanded

    def test_unknown_concept_unchanged(self):
        assert expand_query("billing retries") == "billing retries"
