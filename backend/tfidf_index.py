"""
Lexical similarity index for Linkweaver.

Maintains per-document TF-IDF vectors over the corpus word frequencies and
ranks documents by cosine similarity.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List

from models import Corpus, Document

logger = logging.getLogger(__name__)

_STATS_SAMPLE_SIZE = 100


@dataclass
class LexicalHit:
    target: Document
    score: float
    matched_keywords: List[str] = field(default_factory=list)


def is_linked(source: Document, target: Document) -> bool:
    """True when `source` already carries an outbound link to `target`."""
    for link in source.links:
        if link.target_path == target.id:
            return True
        if link.target_title == target.title or link.target_title == target.id:
            return True
    return False


def cosine_similarity(vec1: Dict[str, float], vec2: Dict[str, float]) -> float:
    """Cosine similarity of two sparse vectors. Symmetric; 0 when either norm is 0."""
    if not vec1 or not vec2:
        return 0.0
    dot = 0.0
    for term in set(vec1) | set(vec2):
        dot += vec1.get(term, 0.0) * vec2.get(term, 0.0)
    norm1 = math.sqrt(sum(v * v for v in vec1.values()))
    norm2 = math.sqrt(sum(v * v for v in vec2.values()))
    if norm1 == 0 or norm2 == 0:
        return 0.0
    return dot / (norm1 * norm2)


class LexicalIndex:
    """TF-IDF vectors over a shared `Corpus`."""

    def __init__(self, corpus: Corpus):
        self.corpus = corpus

    def idf(self, term: str) -> float:
        """ln(N / df). Terms in every document give 0; unseen terms use df = 1."""
        total = self.corpus.total_documents
        if total <= 0:
            return 0.0
        df = self.corpus.document_frequency.get(term) or 1
        return math.log(total / df)

    def compute_vector(self, doc: Document) -> Dict[str, float]:
        if self.corpus.total_documents <= 0:
            return {}
        total_terms = sum(doc.word_frequency.values())
        if total_terms <= 0:
            return {}
        vector: Dict[str, float] = {}
        for term, count in doc.word_frequency.items():
            vector[term] = (count / total_terms) * self.idf(term)
        return vector

    def update_document_frequency(self, doc: Document, adding: bool) -> None:
        df = self.corpus.document_frequency
        for term in doc.word_frequency:
            if adding:
                df[term] = df.get(term, 0) + 1
                continue
            remaining = df.get(term, 0) - 1
            if remaining <= 0:
                df.pop(term, None)
            else:
                df[term] = remaining

    def recalculate_all_vectors(self) -> None:
        for doc in self.corpus.documents.values():
            doc.tfidf_vector = self.compute_vector(doc)
        logger.info("Recalculated TF-IDF vectors for %d documents", len(self.corpus.documents))

    def find_similar(self, source: Document, threshold: float = 0.3, max_results: int = 10) -> List[LexicalHit]:
        if not source.tfidf_vector:
            return []

        hits: List[LexicalHit] = []
        for doc_id, target in self.corpus.documents.items():
            if doc_id == source.id or is_linked(source, target):
                continue
            score = cosine_similarity(source.tfidf_vector, target.tfidf_vector)
            if score < threshold:
                continue
            target_keywords = set(target.keywords)
            matched = [kw for kw in source.keywords if kw in target_keywords]
            hits.append(LexicalHit(target=target, score=score, matched_keywords=matched))

        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:max_results]

    def statistics(self) -> Dict[str, float]:
        docs = list(self.corpus.documents.values())
        vector_sizes = [len(d.tfidf_vector) for d in docs]
        average_size = sum(vector_sizes) / len(vector_sizes) if vector_sizes else 0.0

        sample = docs[:_STATS_SAMPLE_SIZE]
        total_similarity = 0.0
        comparisons = 0
        for i, first in enumerate(sample):
            for second in sample[i + 1:]:
                total_similarity += cosine_similarity(first.tfidf_vector, second.tfidf_vector)
                comparisons += 1

        return {
            "total_documents": len(docs),
            "total_terms": len(self.corpus.document_frequency),
            "average_vector_size": average_size,
            "average_similarity": total_similarity / comparisons if comparisons else 0.0,
        }
