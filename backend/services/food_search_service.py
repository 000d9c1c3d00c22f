"""TF-IDF food search over a static corpus with a prefix/substring fallback.

The index is built once per process from `food_database.json` (plus an
optional precomputed `vectorizer.json` / `food_vectors.json` pair) and
written to a processed cache that later starts load directly.
"""
from __future__ import annotations

import json
import logging
import math
import re
import threading
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable

from config import settings
from services.errors import MalformedDataError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

CACHE_FORMAT_VERSION = 1
SOURCE_DATABASE = "food_database.json"
SOURCE_VECTORIZER = "vectorizer.json"
SOURCE_VECTORS = "food_vectors.json"
CACHE_FILES = {
    "vectorizer": "vectorizer_processed.json",
    "vectors": "vectors_processed.json",
    "database": "database_processed.json",
}
SHORT_QUERY_LENGTH = 3

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")


@dataclass(frozen=True)
class FoodItem:
    id: str
    name: str
    calories: float
    protein: float
    carbs: float
    fat: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FoodItem":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            calories=float(data.get("calories") or 0),
            protein=float(data.get("protein") or 0),
            carbs=float(data.get("carbs") or 0),
            fat=float(data.get("fat") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class FoodMatch:
    item: FoodItem
    similarity: float
    source: str  # prefix | substring | vector

    def to_dict(self) -> dict[str, Any]:
        out = self.item.to_dict()
        out["similarity"] = self.similarity
        out["source"] = self.source
        return out


def tokenize(text: str) -> list[str]:
    cleaned = _NON_ALNUM.sub("", (text or "").lower())
    return [token for token in cleaned.split() if len(token) > 1]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class TfidfVectorizer:
    """Raw-count TF times IDF; tokens outside the vocabulary are ignored."""

    def __init__(self, vocabulary: dict[str, int], idf: list[float], max_features: int | None = None):
        self.vocabulary = dict(vocabulary)
        self.idf = list(idf)
        self.max_features = max_features if max_features is not None else len(self.idf)

    @classmethod
    def fit(cls, documents: list[str]) -> "TfidfVectorizer":
        tokenized = [set(tokenize(doc)) for doc in documents]
        terms = sorted(set().union(*tokenized)) if tokenized else []
        vocabulary = {term: idx for idx, term in enumerate(terms)}
        n = len(documents)
        idf = []
        for term in terms:
            df = sum(1 for tokens in tokenized if term in tokens)
            idf.append(math.log((1 + n) / (1 + df)) + 1)
        return cls(vocabulary, idf)

    def transform(self, text: str) -> list[float]:
        vector = [0.0] * self.max_features
        counts: dict[str, int] = {}
        for token in tokenize(text):
            if token in self.vocabulary:
                counts[token] = counts.get(token, 0) + 1
        for token, count in counts.items():
            idx = self.vocabulary[token]
            if idx < self.max_features and idx < len(self.idf):
                vector[idx] = count * self.idf[idx]
        return vector

    def to_dict(self) -> dict[str, Any]:
        return {"vocabulary": self.vocabulary, "idf": self.idf, "maxFeatures": self.max_features}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TfidfVectorizer":
        vocabulary = data.get("vocabulary")
        idf = data.get("idf")
        if not isinstance(vocabulary, dict) or not isinstance(idf, list):
            raise MalformedDataError("vectorizer needs a vocabulary object and an idf list")
        max_features = int(data.get("maxFeatures") or len(idf))
        if len(idf) != max_features:
            raise MalformedDataError(f"idf has {len(idf)} entries, expected {max_features}")
        if any(not isinstance(i, int) or not 0 <= i < max_features for i in vocabulary.values()):
            raise MalformedDataError("vocabulary index out of range")
        return cls({str(k): int(v) for k, v in vocabulary.items()}, [float(x) for x in idf], max_features)


@dataclass
class FoodIndex:
    items: list[FoodItem]
    vectorizer: TfidfVectorizer | None
    vectors: list[list[float]] | None


def _check_vectors(vectors: Any, rows: int, cols: int) -> list[list[float]]:
    if not isinstance(vectors, list) or len(vectors) != rows:
        raise MalformedDataError(f"expected {rows} vector rows")
    out = []
    for row in vectors:
        if not isinstance(row, list) or len(row) != cols:
            raise MalformedDataError(f"expected vector rows of width {cols}")
        out.append([float(v) for v in row])
    return out


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


class FoodSearchService:
    def __init__(
        self,
        corpus_dir: Path,
        cache_dir: Path,
        retry_delay: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
        min_similarity: float = 0.1,
        default_limit: int = 15,
    ):
        self.corpus_dir = Path(corpus_dir)
        self.cache_dir = Path(cache_dir)
        self.retry_delay = retry_delay
        self.clock = clock
        self.min_similarity = min_similarity
        self.default_limit = default_limit
        self._index: FoodIndex | None = None
        self._last_attempt: float | None = None
        self._lock = threading.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._index is not None

    def status(self) -> dict[str, Any]:
        index = self._index
        return {
            "initialized": index is not None,
            "items": len(index.items) if index else 0,
            "vocabulary_size": index.vectorizer.max_features if index and index.vectorizer else 0,
        }

    def initialize(self) -> None:
        if self._index is not None:
            return
        with self._lock:
            if self._index is not None:
                return
            now = self.clock()
            if self._last_attempt is not None and now - self._last_attempt < self.retry_delay:
                raise UpstreamUnavailableError("Food search is initializing; retry shortly")
            self._last_attempt = now

            index = self._load_cache()
            if index is None:
                index = self._build_from_source()
                self._write_cache(index)
            self._index = index
            logger.info("Food search ready with %d items", len(index.items))

    def dispose(self) -> None:
        with self._lock:
            self._index = None
            self._last_attempt = None

    # ------------------------------------------------------------------
    # cache
    # ------------------------------------------------------------------
    def _load_cache(self) -> FoodIndex | None:
        paths = {key: self.cache_dir / name for key, name in CACHE_FILES.items()}
        if not all(path.exists() for path in paths.values()):
            return None
        try:
            payloads = {key: _read_json(path) for key, path in paths.items()}
            for key, payload in payloads.items():
                if not isinstance(payload, dict) or payload.get("version") != CACHE_FORMAT_VERSION:
                    raise MalformedDataError(f"{key} cache has an unexpected format version")
            items = [FoodItem.from_dict(row) for row in payloads["database"]["items"]]
            vectorizer = TfidfVectorizer.from_dict(payloads["vectorizer"])
            dimensions = payloads["vectors"].get("dimensions")
            if dimensions != [len(items), vectorizer.max_features]:
                raise MalformedDataError(f"vector dimensions {dimensions} do not match the corpus")
            vectors = _check_vectors(payloads["vectors"].get("vectors"), len(items), vectorizer.max_features)
        except (OSError, ValueError, KeyError, TypeError, MalformedDataError) as exc:
            logger.warning(f"Food search cache unusable, rebuilding: {exc}")
            return None
        return FoodIndex(items=items, vectorizer=vectorizer, vectors=vectors)

    def _write_cache(self, index: FoodIndex) -> None:
        documents = {
            "vectorizer": {"version": CACHE_FORMAT_VERSION, **index.vectorizer.to_dict()},
            "vectors": {
                "version": CACHE_FORMAT_VERSION,
                "vectors": index.vectors,
                "dimensions": [len(index.items), index.vectorizer.max_features],
            },
            "database": {
                "version": CACHE_FORMAT_VERSION,
                "items": [item.to_dict() for item in index.items],
            },
        }
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            for key, payload in documents.items():
                (self.cache_dir / CACHE_FILES[key]).write_text(json.dumps(payload), encoding="utf-8")
        except OSError as exc:
            logger.warning(f"Failed to write food search cache: {exc}")

    def _build_from_source(self) -> FoodIndex:
        try:
            raw_items = _read_json(self.corpus_dir / SOURCE_DATABASE)
            if isinstance(raw_items, dict):
                raw_items = raw_items.get("items")
            if not isinstance(raw_items, list):
                raise MalformedDataError("food database must be a list of items")
            items = [FoodItem.from_dict(row) for row in raw_items]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise MalformedDataError(f"Food corpus is unreadable: {exc}") from exc

        precomputed = self._load_precomputed(len(items))
        if precomputed is not None:
            vectorizer, vectors = precomputed
        else:
            vectorizer = TfidfVectorizer.fit([item.name for item in items])
            vectors = [vectorizer.transform(item.name) for item in items]
        return FoodIndex(items=items, vectorizer=vectorizer, vectors=vectors)

    def _load_precomputed(self, rows: int) -> tuple[TfidfVectorizer, list[list[float]]] | None:
        vectorizer_path = self.corpus_dir / SOURCE_VECTORIZER
        vectors_path = self.corpus_dir / SOURCE_VECTORS
        if not (vectorizer_path.exists() and vectors_path.exists()):
            return None
        try:
            vectorizer = TfidfVectorizer.from_dict(_read_json(vectorizer_path))
            vectors = _check_vectors(_read_json(vectors_path).get("vectors"), rows, vectorizer.max_features)
        except (OSError, ValueError, AttributeError, MalformedDataError) as exc:
            logger.warning(f"Precomputed food vectors ignored, refitting: {exc}")
            return None
        return vectorizer, vectors

    # ------------------------------------------------------------------
    # search
    # ------------------------------------------------------------------
    def prefix_search(self, query: str, limit: int) -> list[FoodMatch]:
        """Prefix matches, then substring matches for the remaining slots."""
        index = self._index
        if index is None or limit <= 0:
            return []
        q = query.lower()

        prefix = [
            FoodMatch(item, len(q) / len(item.name), "prefix")
            for item in index.items
            if item.name.lower().startswith(q)
        ]
        prefix.sort(key=lambda m: m.similarity, reverse=True)
        prefix = prefix[:limit]
        if len(prefix) >= limit or len(q) <= 1:
            return prefix

        substring = []
        for item in index.items:
            name = item.name.lower()
            pos = name.find(q)
            if pos > 0:
                substring.append(FoodMatch(item, 0.7 - pos * 0.01, "substring"))
        substring.sort(key=lambda m: m.similarity, reverse=True)
        return prefix + substring[: limit - len(prefix)]

    def vector_search(self, query: str, limit: int) -> list[FoodMatch]:
        index = self._index
        if index is None or index.vectorizer is None or index.vectors is None:
            raise MalformedDataError("Vector index is not loaded")
        query_vector = index.vectorizer.transform(query)
        scored = [
            FoodMatch(item, cosine_similarity(query_vector, row), "vector")
            for item, row in zip(index.items, index.vectors)
        ]
        scored.sort(key=lambda m: m.similarity, reverse=True)
        return [m for m in scored[:limit] if m.similarity > self.min_similarity]

    def search(self, query: str, limit: int | None = None) -> list[FoodMatch]:
        if not isinstance(query, str) or not query.strip():
            raise ValueError("Invalid search query")
        limit = self.default_limit if limit is None else limit
        if limit <= 0:
            return []
        self.initialize()

        normalized = query.lower().strip()
        lexical = self.prefix_search(normalized, limit)
        if len(normalized) < SHORT_QUERY_LENGTH:
            return lexical

        try:
            vector = self.vector_search(normalized, limit)
        except Exception as exc:
            logger.warning(f"Vector food search failed, using prefix results: {exc}")
            return lexical

        seen = {m.item.id for m in lexical}
        merged = list(lexical)
        for match in vector:
            if match.item.id not in seen:
                seen.add(match.item.id)
                merged.append(match)
        return merged[:limit]


def build_food_search_service() -> FoodSearchService:
    return FoodSearchService(
        corpus_dir=settings.FOOD_CORPUS_DIR,
        cache_dir=settings.FOOD_CACHE_DIR,
        retry_delay=settings.FOOD_SEARCH_INIT_RETRY_SECONDS,
        min_similarity=settings.FOOD_SEARCH_MIN_SIMILARITY,
        default_limit=settings.FOOD_SEARCH_DEFAULT_LIMIT,
    )
