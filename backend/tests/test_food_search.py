"""Food search ranking, cache handling and the initialization guard."""
from __future__ import annotations

import json
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.errors import MalformedDataError, UpstreamUnavailableError  # noqa: E402
from services.food_search_service import (  # noqa: E402
    CACHE_FILES,
    FoodSearchService,
    TfidfVectorizer,
    cosine_similarity,
    tokenize,
)

CORPUS = [
    {"id": "1", "name": "Apple", "calories": 52, "protein": 0.3, "carbs": 13.8, "fat": 0.2},
    {"id": "2", "name": "Apple Pie", "calories": 237, "protein": 1.9, "carbs": 34.0, "fat": 11.0},
    {"id": "3", "name": "Green Apple Juice", "calories": 46, "protein": 0.1, "carbs": 11.3, "fat": 0.1},
    {"id": "4", "name": "Banana", "calories": 89, "protein": 1.1, "carbs": 22.8, "fat": 0.3},
    {"id": "5", "name": "Chicken Breast", "calories": 165, "protein": 31.0, "carbs": 0.0, "fat": 3.6},
    {"id": "6", "name": "Fried Chicken", "calories": 246, "protein": 19.0, "carbs": 8.0, "fat": 15.0},
    {"id": "7", "name": "Grilled Chicken Salad", "calories": 120, "protein": 14.0, "carbs": 4.5, "fat": 5.0},
    {"id": "8", "name": "Tuna Salad", "calories": 187, "protein": 16.0, "carbs": 9.4, "fat": 9.3},
]


class FakeClock:
    def __init__(self, now: float = 100.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _corpus_dir(tmp_path: Path, items=CORPUS) -> Path:
    corpus = tmp_path / "corpus"
    corpus.mkdir()
    (corpus / "food_database.json").write_text(json.dumps(items), encoding="utf-8")
    return corpus


def _service(tmp_path: Path, clock=None, corpus=None) -> FoodSearchService:
    return FoodSearchService(
        corpus_dir=corpus or _corpus_dir(tmp_path),
        cache_dir=tmp_path / "cache",
        retry_delay=5.0,
        clock=clock or FakeClock(),
    )


def test_tokenize_strips_punctuation_and_single_characters():
    assert tokenize("Mac & Cheese, 2 cups!") == ["mac", "cheese", "cups"]
    assert tokenize("A b") == []


def test_cosine_of_item_with_itself_is_one():
    vectorizer = TfidfVectorizer.fit([item["name"] for item in CORPUS])
    vector = vectorizer.transform("Grilled Chicken Salad")
    assert cosine_similarity(vector, vector) == pytest.approx(1.0)
    assert cosine_similarity(vector, [0.0] * len(vector)) == 0.0


def test_out_of_vocabulary_tokens_contribute_nothing():
    vectorizer = TfidfVectorizer.fit(["apple pie", "banana"])
    assert vectorizer.transform("quinoa") == [0.0] * vectorizer.max_features


def test_short_query_never_uses_vectorizer(tmp_path, monkeypatch):
    svc = _service(tmp_path)
    svc.initialize()
    calls = []
    monkeypatch.setattr(TfidfVectorizer, "transform", lambda self, text: calls.append(text) or [])

    results = svc.search("ap")

    assert calls == []
    assert [m.item.name for m in results][:2] == ["Apple", "Apple Pie"]
    assert all(m.source in {"prefix", "substring"} for m in results)


def test_prefix_matches_rank_before_substring_matches(tmp_path):
    svc = _service(tmp_path)
    results = svc.search("apple", limit=5)
    sources = [(m.item.name, m.source) for m in results]
    assert sources[:3] == [
        ("Apple", "prefix"),
        ("Apple Pie", "prefix"),
        ("Green Apple Juice", "substring"),
    ]
    assert results[0].similarity == pytest.approx(1.0)
    assert results[2].similarity == pytest.approx(0.7 - 6 * 0.01)


def test_vector_matches_fill_remaining_slots_without_duplicates(tmp_path):
    svc = _service(tmp_path)
    results = svc.search("chicken salad", limit=10)
    ids = [m.item.id for m in results]

    assert len(ids) == len(set(ids))
    assert (results[0].item.name, results[0].source) == ("Grilled Chicken Salad", "substring")
    vector_names = [m.item.name for m in results if m.source == "vector"]
    assert {"Tuna Salad", "Chicken Breast"} <= set(vector_names)
    assert "Grilled Chicken Salad" not in vector_names
    assert all(m.similarity > 0.1 for m in results if m.source == "vector")


def test_limit_truncates_results(tmp_path):
    svc = _service(tmp_path)
    assert len(svc.search("chicken", limit=2)) == 2


@pytest.mark.parametrize("query", ["", "   ", None, 42])
def test_invalid_queries_rejected(tmp_path, query):
    svc = _service(tmp_path)
    with pytest.raises(ValueError):
        svc.search(query)


def test_vector_failure_degrades_to_prefix_results(tmp_path, monkeypatch):
    svc = _service(tmp_path)
    svc.initialize()

    def broken(self, text):
        raise RuntimeError("vectorizer exploded")

    monkeypatch.setattr(TfidfVectorizer, "transform", broken)
    results = svc.search("banana")
    assert [(m.item.name, m.source) for m in results] == [("Banana", "prefix")]


def test_initialize_writes_cache_and_reloads_from_it(tmp_path):
    first = _service(tmp_path)
    first.initialize()
    for name in CACHE_FILES.values():
        assert (tmp_path / "cache" / name).exists()

    (tmp_path / "corpus" / "food_database.json").unlink()
    second = _service(tmp_path, corpus=tmp_path / "corpus")
    second.initialize()
    assert second.search("tuna")[0].item.name == "Tuna Salad"


def test_corrupt_cache_is_rebuilt(tmp_path):
    _service(tmp_path).initialize()
    vectors_path = tmp_path / "cache" / CACHE_FILES["vectors"]
    vectors_path.write_text("{not json", encoding="utf-8")

    svc = _service(tmp_path, corpus=tmp_path / "corpus")
    svc.initialize()

    assert svc.is_initialized
    rebuilt = json.loads(vectors_path.read_text(encoding="utf-8"))
    assert rebuilt["dimensions"][0] == len(CORPUS)


def test_cache_with_wrong_shape_is_rebuilt(tmp_path):
    _service(tmp_path).initialize()
    database_path = tmp_path / "cache" / CACHE_FILES["database"]
    payload = json.loads(database_path.read_text(encoding="utf-8"))
    payload["items"] = payload["items"][:3]
    database_path.write_text(json.dumps(payload), encoding="utf-8")

    svc = _service(tmp_path, corpus=tmp_path / "corpus")
    svc.initialize()
    assert svc.status()["items"] == len(CORPUS)


def test_unreadable_source_is_malformed_data(tmp_path):
    corpus = tmp_path / "corpus"
    corpus.mkdir()
    (corpus / "food_database.json").write_text("[{broken", encoding="utf-8")
    svc = _service(tmp_path, corpus=corpus)
    with pytest.raises(MalformedDataError):
        svc.initialize()


def test_init_guard_refuses_quick_retries(tmp_path):
    clock = FakeClock()
    corpus = tmp_path / "corpus"
    corpus.mkdir()
    svc = _service(tmp_path, clock=clock, corpus=corpus)

    with pytest.raises(MalformedDataError):
        svc.initialize()
    clock.now += 4.9
    with pytest.raises(UpstreamUnavailableError):
        svc.initialize()

    (corpus / "food_database.json").write_text(json.dumps(CORPUS), encoding="utf-8")
    clock.now += 0.2
    svc.initialize()
    assert svc.is_initialized


def test_precomputed_vectors_are_used_when_consistent(tmp_path):
    corpus = _corpus_dir(tmp_path, CORPUS[:2])
    (corpus / "vectorizer.json").write_text(json.dumps({
        "vocabulary": {"apple": 0, "pie": 1},
        "idf": [1.0, 2.0],
        "maxFeatures": 2,
    }), encoding="utf-8")
    (corpus / "food_vectors.json").write_text(json.dumps({
        "vectors": [[1.0, 0.0], [1.0, 2.0]],
        "dimensions": [2, 2],
    }), encoding="utf-8")

    svc = _service(tmp_path, corpus=corpus)
    svc.initialize()
    assert svc.status()["vocabulary_size"] == 2


def test_dispose_drops_index(tmp_path):
    svc = _service(tmp_path)
    svc.initialize()
    svc.dispose()
    assert not svc.is_initialized


def test_search_right_after_dispose_reinitializes(tmp_path):
    clock = FakeClock()
    svc = _service(tmp_path, clock=clock)
    svc.initialize()
    svc.dispose()
    clock.now += 1.0

    assert svc.search("banana")[0].item.name == "Banana"
    assert svc.is_initialized
