import numpy as np
import pytest

from assessmatch.models import AssessmentRecord
from assessmatch.store import VectorStore, cosine_similarity


def make_record(id, test_type="K", remote=True):
    return AssessmentRecord(
        id=id, name=f"Assessment {id}", duration="10 minutes", test_type=test_type,
        adaptive_irt=False, remote_testing=remote, url=f"https://example.com/{id}",
        description=f"Description of {id}",
    )


def build_store(vectors, **record_kwargs):
    store = VectorStore()
    for id, vector in vectors.items():
        store.add(id, np.array(vector, dtype=np.float32), make_record(id, **record_kwargs))
    return store.freeze()


class TestCosineSimilarity:

    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, -2.0], [-1.0, 2.0]) == pytest.approx(-1.0)

    def test_zero_norm_scores_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError):
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


class TestVectorStore:

    def test_results_are_non_increasing(self):
        store = build_store({
            "a": [1.0, 0.0, 0.0],
            "b": [0.7, 0.7, 0.0],
            "c": [0.0, 1.0, 0.0],
            "d": [-1.0, 0.0, 0.0],
        })
        results = store.search_similar(np.array([1.0, 0.1, 0.0]), top_k=4)
        scores = [r.score for r in results]
        assert [r.id for r in results] == ["a", "b", "c", "d"]
        assert scores == sorted(scores, reverse=True)
        assert all(-1.0 <= s <= 1.0 for s in scores)

    def test_top_k_larger_than_catalog_returns_everything(self):
        store = build_store({"a": [1.0, 0.0], "b": [0.0, 1.0], "c": [1.0, 1.0]})
        results = store.search_similar(np.array([1.0, 0.0]), top_k=50)
        assert sorted(r.id for r in results) == ["a", "b", "c"]

    def test_ties_keep_insertion_order(self):
        store = build_store({"first": [1.0, 0.0], "second": [2.0, 0.0], "third": [3.0, 0.0]})
        results = store.search_similar(np.array([1.0, 0.0]), top_k=3)
        assert [r.id for r in results] == ["first", "second", "third"]

    def test_zero_query_scores_zero(self):
        store = build_store({"a": [1.0, 0.0], "b": [0.0, 1.0]})
        results = store.search_similar(np.array([0.0, 0.0]), top_k=2)
        assert [r.score for r in results] == [0.0, 0.0]
        assert [r.id for r in results] == ["a", "b"]

    def test_zero_stored_vector_scores_zero(self):
        store = build_store({"empty": [0.0, 0.0], "a": [1.0, 0.0]})
        results = store.search_similar(np.array([1.0, 0.0]), top_k=2)
        assert results[0].id == "a"
        assert results[1].score == 0.0

    def test_predicate_filters_candidates(self):
        store = VectorStore()
        store.add("remote", np.array([1.0, 0.0]), make_record("remote", remote=True))
        store.add("onsite", np.array([1.0, 0.0]), make_record("onsite", remote=False))
        store.freeze()
        results = store.search_similar(np.array([1.0, 0.0]), 5, predicate=lambda r: r.remote_testing)
        assert [r.id for r in results] == ["remote"]

    def test_results_reference_stored_records(self):
        store = build_store({"a": [1.0, 0.0]})
        result = store.search_similar(np.array([1.0, 0.0]), 1)[0]
        assert result.record is store.get("a")

    @pytest.mark.parametrize("top_k", [0, -1, True, 1.5, "3"])
    def test_invalid_top_k(self, top_k):
        store = build_store({"a": [1.0, 0.0]})
        with pytest.raises(ValueError):
            store.search_similar(np.array([1.0, 0.0]), top_k)

    def test_empty_store_returns_nothing(self):
        store = VectorStore().freeze()
        assert store.search_similar(np.array([1.0, 0.0]), 3) == []

    def test_search_requires_frozen_store(self):
        store = VectorStore()
        store.add("a", np.array([1.0, 0.0]), make_record("a"))
        with pytest.raises(RuntimeError):
            store.search_similar(np.array([1.0, 0.0]), 1)

    def test_rejects_mismatched_dimension(self):
        store = VectorStore()
        store.add("a", np.array([1.0, 0.0]), make_record("a"))
        with pytest.raises(ValueError):
            store.add("b", np.array([1.0, 0.0, 0.0]), make_record("b"))
        store.freeze()
        with pytest.raises(ValueError):
            store.search_similar(np.array([1.0, 0.0, 0.0]), 1)

    def test_rejects_duplicate_ids_and_adds_after_freeze(self):
        store = VectorStore()
        store.add("a", np.array([1.0, 0.0]), make_record("a"))
        with pytest.raises(ValueError):
            store.add("a", np.array([0.0, 1.0]), make_record("a"))
        store.freeze()
        with pytest.raises(RuntimeError):
            store.add("b", np.array([0.0, 1.0]), make_record("b"))

    def test_stored_vectors_are_read_only_copies(self):
        source = np.array([1.0, 0.0], dtype=np.float32)
        store = VectorStore()
        store.add("a", source, make_record("a"))
        source[0] = 5.0
        stored = store.get_vector("a")
        assert stored[0] == 1.0
        with pytest.raises(ValueError):
            stored[0] = 2.0
