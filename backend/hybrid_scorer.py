"""
Hybrid candidate scoring.

Merges lexical TF-IDF similarity with one pluggable semantic signal (the
statistical engine or neural embeddings) into a single ranked candidate list.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple

from config import LinkerConfig
from embedder import Embedder
from embedding_cache import EmbeddingCache
from models import CandidateMatch, Corpus, Document
from semantic_engine import SemanticEngine
from tfidf_index import LexicalIndex, is_linked

logger = logging.getLogger(__name__)


@dataclass
class SignalHit:
    target: Document
    score: float
    matched_phrases: List[str] = field(default_factory=list)


class SimilaritySignal(Protocol):
    name: str

    def is_available(self) -> bool:
        ...

    def find_similar(self, source: Document, threshold: float, max_results: int) -> List[SignalHit]:
        ...


class StatisticalSignal:
    """N-gram + context-vector similarity."""

    name = "statistical"

    def __init__(self, engine: SemanticEngine):
        self.engine = engine

    def is_available(self) -> bool:
        return self.engine.is_ready()

    def find_similar(self, source: Document, threshold: float, max_results: int) -> List[SignalHit]:
        return [
            SignalHit(target=hit.target, score=hit.score, matched_phrases=hit.matched_phrases)
            for hit in self.engine.find_similar(source, threshold, max_results)
        ]


class EmbeddingSignal:
    """Neural similarity over cached document embeddings."""

    name = "embedding"

    def __init__(self, embedder: Embedder, cache: EmbeddingCache, corpus: Corpus):
        self.embedder = embedder
        self.cache = cache
        self.corpus = corpus

    def is_available(self) -> bool:
        return self.embedder.is_ready()

    def source_vector(self, source: Document):
        cached = self.cache.get(source.id)
        if cached is not None:
            return cached
        if not self.embedder.is_ready():
            return None
        text = source.clean_text or source.content
        if not text.strip():
            return None
        return self.embedder.generate_embedding(text)

    def find_similar(self, source: Document, threshold: float, max_results: int) -> List[SignalHit]:
        try:
            vector = self.source_vector(source)
            if vector is None:
                return []
            candidates = {
                doc_id: vec for doc_id, vec in self.cache.all().items() if doc_id in self.corpus.documents
            }
            ranked = self.embedder.find_similar(vector, candidates, max_results, exclude={source.id})
        except Exception as exc:
            logger.warning("Embedding similarity unavailable for %s: %s", source.id, exc)
            return []

        return [
            SignalHit(target=self.corpus.documents[doc_id], score=score)
            for doc_id, score in ranked
            if score >= threshold
        ]


def combine_scores(lexical: float, semantic: float, weights: Tuple[float, float]) -> float:
    """One nonzero score stands alone; two are averaged with normalized weights."""
    if lexical and not semantic:
        return lexical
    if semantic and not lexical:
        return semantic
    if not lexical and not semantic:
        return 0.0
    lexical_weight, semantic_weight = weights
    total = lexical_weight + semantic_weight
    if total <= 0:
        return (lexical + semantic) / 2
    return (lexical * lexical_weight + semantic * semantic_weight) / total


class HybridScorer:
    def __init__(self, lexical: LexicalIndex, config: LinkerConfig, semantic: Optional[SimilaritySignal] = None):
        self.lexical = lexical
        self.config = config
        self.semantic = semantic

    def _semantic_active(self) -> bool:
        if self.semantic is None or not self.config.enable_semantic:
            return False
        return self.semantic.is_available()

    def find_similar(self, source: Document, max_results: int = 10) -> List[CandidateMatch]:
        if not self._semantic_active():
            return self._lexical_only(source, max_results)

        config = self.config
        merged: Dict[str, CandidateMatch] = {}

        for hit in self.lexical.find_similar(source, config.lexical_threshold * 0.5, max_results * 3):
            merged[hit.target.id] = CandidateMatch(
                target=hit.target,
                lexical_score=hit.score,
                semantic_score=0.0,
                matched_keywords=hit.matched_keywords,
            )

        for hit in self.semantic.find_similar(source, config.semantic_threshold * 0.5, max_results * 3):
            if hit.target.id == source.id or is_linked(source, hit.target):
                continue
            existing = merged.get(hit.target.id)
            if existing is None:
                merged[hit.target.id] = CandidateMatch(
                    target=hit.target,
                    lexical_score=0.0,
                    semantic_score=hit.score,
                    matched_phrases=hit.matched_phrases,
                )
            else:
                existing.semantic_score = hit.score
                existing.matched_phrases = hit.matched_phrases

        weights = (config.lexical_weight, config.semantic_weight)
        results: List[CandidateMatch] = []
        for candidate in merged.values():
            lexical = candidate.lexical_score
            semantic = candidate.semantic_score or 0.0
            if not lexical and not semantic:
                continue
            candidate.combined_score = combine_scores(lexical, semantic, weights)

            if lexical and semantic:
                threshold = config.combined_threshold
            elif lexical:
                threshold = config.lexical_threshold
            else:
                threshold = config.semantic_threshold
            if candidate.combined_score < threshold:
                logger.debug(
                    "Dropped %s -> %s (lexical=%.3f semantic=%.3f combined=%.3f)",
                    source.id,
                    candidate.target.id,
                    lexical,
                    semantic,
                    candidate.combined_score,
                )
                continue
            results.append(candidate)

        results.sort(key=lambda c: c.combined_score, reverse=True)
        return results[:max_results]

    def _lexical_only(self, source: Document, max_results: int) -> List[CandidateMatch]:
        return [
            CandidateMatch(
                target=hit.target,
                lexical_score=hit.score,
                semantic_score=None,
                combined_score=hit.score,
                matched_keywords=hit.matched_keywords,
            )
            for hit in self.lexical.find_similar(source, self.config.lexical_threshold, max_results)
        ]
