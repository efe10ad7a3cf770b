"""Co-occurrence context vectors learned from the corpus itself.

Two words that never appear together still end up close when they share
neighbours ("python" and "javascript" both sit next to "code", "function").
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

_PUNCT_RE = re.compile(r"[^\w\s]")

SparseVector = Dict[str, float]


def tokenize(text: str) -> List[str]:
    return [t for t in _PUNCT_RE.sub(" ", (text or "").lower()).split() if len(t) > 2]


def _normalize(row: SparseVector) -> SparseVector:
    magnitude = math.sqrt(sum(v * v for v in row.values()))
    if magnitude == 0:
        return {}
    return {word: value / magnitude for word, value in row.items()}


def _dot(v1: SparseVector, v2: SparseVector) -> float:
    if len(v2) < len(v1):
        v1, v2 = v2, v1
    return sum(value * v2[word] for word, value in v1.items() if word in v2)


class ContextVectorModel:
    def __init__(self, window_size: int = 5, min_occurrences: int = 2):
        self.window_size = window_size
        self.min_occurrences = min_occurrences
        self.vectors: Dict[str, SparseVector] = {}

    def build_from_documents(self, documents: Iterable[Tuple[str, Optional[float]]]) -> None:
        """Rebuild all rows from `(text, weight)` pairs."""
        matrix: Dict[str, SparseVector] = {}
        counts: Counter = Counter()
        total_docs = 0

        for text, weight in documents:
            total_docs += 1
            tokens = tokenize(text)
            doc_weight = weight or 1.0
            counts.update(tokens)

            for i, center in enumerate(tokens):
                start = max(0, i - self.window_size)
                end = min(len(tokens), i + self.window_size + 1)
                for j in range(start, end):
                    if i == j:
                        continue
                    context = tokens[j]
                    if context == center:
                        continue
                    row = matrix.setdefault(center, {})
                    row[context] = row.get(context, 0.0) + doc_weight / abs(i - j)

        self.vectors = {}
        for word, row in matrix.items():
            if counts[word] < self.min_occurrences:
                continue
            normalized = _normalize(row)
            if normalized:
                self.vectors[word] = normalized

        logger.info("Built %d context vectors from %d documents", len(self.vectors), total_docs)

    def word_similarity(self, word1: str, word2: str) -> float:
        v1 = self.vectors.get(word1.lower())
        v2 = self.vectors.get(word2.lower())
        if v1 is None or v2 is None:
            return 0.0
        return _dot(v1, v2)

    def find_similar_words(self, word: str, top_n: int = 10, min_similarity: float = 0.1) -> List[Tuple[str, float]]:
        target = word.lower()
        vector = self.vectors.get(target)
        if vector is None:
            return []
        scored = []
        for candidate, candidate_vector in self.vectors.items():
            if candidate == target:
                continue
            score = _dot(vector, candidate_vector)
            if score >= min_similarity:
                scored.append((candidate, score))
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:top_n]

    def text_vector(self, text: str) -> SparseVector:
        aggregated: SparseVector = {}
        for token in tokenize(text):
            row = self.vectors.get(token)
            if row is None:
                continue
            for word, value in row.items():
                aggregated[word] = aggregated.get(word, 0.0) + value
        return _normalize(aggregated)

    def text_similarity(self, text1: str, text2: str) -> float:
        v1 = self.text_vector(text1)
        v2 = self.text_vector(text2)
        if not v1 or not v2:
            return 0.0
        return _dot(v1, v2)

    def statistics(self) -> Dict[str, object]:
        sizes = [len(v) for v in self.vectors.values()]
        most_connected = sorted(
            ((word, len(row)) for word, row in self.vectors.items()),
            key=lambda item: item[1],
            reverse=True,
        )[:10]
        return {
            "total_words": len(self.vectors),
            "avg_vector_size": sum(sizes) / len(sizes) if sizes else 0.0,
            "most_connected_words": [{"word": w, "connections": c} for w, c in most_connected],
        }

    def clear(self) -> None:
        self.vectors = {}

    def serialize(self) -> str:
        return json.dumps(
            {
                "window_size": self.window_size,
                "min_occurrences": self.min_occurrences,
                "vectors": self.vectors,
            }
        )

    def deserialize(self, data: str) -> None:
        parsed = json.loads(data)
        self.window_size = int(parsed.get("window_size", self.window_size))
        self.min_occurrences = int(parsed.get("min_occurrences", self.min_occurrences))
        self.vectors = {
            word: {k: float(v) for k, v in row.items()} for word, row in parsed.get("vectors", {}).items()
        }
