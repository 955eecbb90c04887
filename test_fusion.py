"""Tests for hybrid score fusion."""

import pytest

import fusion
from fusion import combine_scores, fuse, normalize_keyword_score


def vector_hit(embedding_id: str, similarity: float) -> dict:
    return {"id": embedding_id, "similarity": similarity, "_distance": 1 - similarity, "search_type": "vector"}


def keyword_hit(row_id: int, embedding_id: str, raw: float) -> dict:
    return {"id": row_id, "embedding_id": embedding_id, "keyword_score": raw, "search_type": "keyword"}


VECTOR = [vector_hit("a", 0.9), vector_hit("b", 0.7), vector_hit("c", 0.5), vector_hit("d", 0.5)]
KEYWORD = [keyword_hit(5, "e", 30.0), keyword_hit(3, "c", 12.0), keyword_hit(1, "f", 4.0), keyword_hit(2, "a", 1.0)]


class TestScores:
    def test_keyword_score_is_capped(self):
        assert normalize_keyword_score(5.0) == 0.5
        assert normalize_keyword_score(50.0) == 1.0

    def test_dual_hit_boost(self):
        assert combine_scores(0.8, 0.6, 0.5) == pytest.approx((0.4 + 0.3) * fusion.DUAL_HIT_BOOST)

    def test_single_source_not_boosted(self):
        assert combine_scores(0.8, 0.0, 0.5) == pytest.approx(0.4)
        assert combine_scores(0.0, 0.6, 0.5) == pytest.approx(0.3)

    def test_boost_needs_both_weighted_parts(self):
        assert combine_scores(0.8, 0.6, 1.0) == pytest.approx(0.8)
        assert combine_scores(0.8, 0.6, 0.0) == pytest.approx(0.6)


class TestFuse:
    def test_item_found_by_both_is_boosted(self):
        results = fuse([vector_hit("x", 0.6)], [keyword_hit(1, "x", 6.0)], 0.5)
        assert len(results) == 1
        item = results[0]
        assert item["combined_score"] == pytest.approx((0.3 + 0.3) * 1.2)
        assert item["vector_score"] == pytest.approx(0.6)
        assert item["keyword_score"] == pytest.approx(0.6)
        assert item["keyword_rank_score"] == 6.0
        assert item["search_type"] == "hybrid"

    def test_dual_hit_outranks_stronger_single_hits(self):
        results = fuse(
            [vector_hit("only-vector", 0.7), vector_hit("both", 0.6)],
            [keyword_hit(1, "both", 6.0)],
            0.5,
        )
        assert [r["embedding_id"] for r in results] == ["both", "only-vector"]

    def test_weight_one_reproduces_vector_order(self):
        results = fuse(VECTOR, KEYWORD, vector_weight=1.0, limit=10)
        assert [r["embedding_id"] for r in results] == ["a", "b", "c", "d"]

    def test_weight_zero_reproduces_keyword_order(self):
        results = fuse(VECTOR, KEYWORD, vector_weight=0.0, limit=10)
        assert [r["embedding_id"] for r in results] == ["e", "c", "f", "a"]

    def test_merged_item_keeps_structured_fields(self):
        results = fuse(
            [vector_hit("x", 0.6)],
            [{**keyword_hit(7, "x", 2.0), "decision": "Use WAL mode"}],
            0.5,
        )
        assert results[0]["decision"] == "Use WAL mode"
        assert results[0]["id"] == "x"

    def test_limit(self):
        assert len(fuse(VECTOR, KEYWORD, 0.5, limit=2)) == 2

    def test_empty_inputs(self):
        assert fuse([], [], 0.5) == []

    @pytest.mark.parametrize("weight", [-0.1, 1.5])
    def test_weight_out_of_range(self, weight):
        with pytest.raises(ValueError):
            fuse(VECTOR, KEYWORD, weight)


class TestTermRerank:
    def test_literal_terms_overtake_closer_vector_hit(self):
        hits = [
            {**vector_hit("near", 0.80), "text": "session store"},
            {**vector_hit("literal", 0.72), "text": "Redis session store"},
        ]
        results = fusion.rerank_by_terms(hits, "redis session", limit=10)
        assert [r["id"] for r in results] == ["literal", "near"]
        assert results[0]["rerank_score"] == pytest.approx(0.72 + 2 * fusion.TERM_MATCH_BOOST)
        assert results[1]["rerank_score"] == pytest.approx(0.80 + fusion.TERM_MATCH_BOOST)

    def test_reads_code_and_documentation_text(self):
        hits = [
            {**vector_hit("doc", 0.5), "title": "Deploy guide", "content": "blue green"},
            {**vector_hit("code", 0.6), "file_path": "app.py", "content": "def main(): pass"},
        ]
        results = fusion.rerank_by_terms(hits, "blue green deploy", limit=1)
        assert [r["id"] for r in results] == ["doc"]
