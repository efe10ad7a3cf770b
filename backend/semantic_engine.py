"""
Statistical semantic similarity for Linkweaver.

Combines phrase overlap (Jaccard over per-document n-grams) with corpus-learned
co-occurrence vectors. No neural model is involved.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from context_vectors import ContextVectorModel
from models import Corpus, Document
from ngrams import NGram, NGramExtractor, NGramResult, jaccard

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]


@dataclass
class SemanticHit:
    target: Document
    score: float
    ngram_score: float = 0.0
    context_score: float = 0.0
    matched_phrases: List[str] = field(default_factory=list)


def document_weight(doc: Document) -> float:
    """Longer documents count more when learning context, capped at 2x."""
    return min(len(doc.clean_text) / 1000, 2.0)


class SemanticEngine:
    """N-gram + context-vector similarity over a shared `Corpus`."""

    def __init__(self, corpus: Corpus, ngram_weight: float = 0.6, context_weight: float = 0.4):
        self.corpus = corpus
        self.ngrams = NGramExtractor(min_frequency=2)
        self.context = ContextVectorModel(window_size=5, min_occurrences=2)
        self.ngram_results: Dict[str, NGramResult] = {}
        self.ngram_weight = ngram_weight
        self.context_weight = context_weight
        self._ready = False

    def is_ready(self) -> bool:
        return self._ready

    def build_models(self, progress: Optional[ProgressCallback] = None) -> None:
        docs = list(self.corpus.documents.values())
        total = len(docs)
        if total == 0:
            logger.warning("No documents to build semantic models from")
            self._ready = False
            return

        def report(value: float, message: str) -> None:
            if progress:
                progress(value, message)

        report(0, "Extracting phrases from documents...")
        self.ngram_results = {}
        for i, doc in enumerate(docs):
            self.ngram_results[doc.id] = self.ngrams.extract(doc.clean_text)
            if i % 10 == 0:
                report(i / total * 30, f"Extracted phrases: {i}/{total}")

        report(30, "Building context vectors...")
        weighted = []
        for i, doc in enumerate(docs):
            weighted.append((doc.clean_text, document_weight(doc)))
            if i % 10 == 0:
                report(30 + i / total * 70, f"Building context: {i}/{total}")
        self.context.build_from_documents(weighted)

        self._ready = True
        report(100, "Semantic models ready")
        logger.info("Semantic models built for %d documents", total)

    def _ngrams_for(self, doc: Document) -> NGramResult:
        # Only indexed documents are cached; live or temporary copies are extracted fresh.
        if self.corpus.documents.get(doc.id) is not doc:
            return self.ngrams.extract(doc.clean_text)
        result = self.ngram_results.get(doc.id)
        if result is None:
            result = self.ngrams.extract(doc.clean_text)
            self.ngram_results[doc.id] = result
        return result

    def calculate_similarity(self, source: Document, target: Document) -> SemanticHit:
        source_grams = self._ngrams_for(source).all_ngrams
        target_grams = self._ngrams_for(target).all_ngrams

        ngram_score = jaccard(source_grams, target_grams)
        context_score = self.context.text_similarity(source.clean_text, target.clean_text)
        score = ngram_score * self.ngram_weight + context_score * self.context_weight

        target_set = set(target_grams)
        matched = [phrase for phrase in source_grams if phrase in target_set]
        return SemanticHit(
            target=target,
            score=score,
            ngram_score=ngram_score,
            context_score=context_score,
            matched_phrases=matched[:5],
        )

    def find_similar(self, source: Document, threshold: float = 0.3, max_results: int = 10) -> List[SemanticHit]:
        if not self._ready:
            logger.debug("Semantic models not ready; skipping similarity for %s", source.id)
            return []

        hits = []
        for doc_id, target in self.corpus.documents.items():
            if doc_id == source.id:
                continue
            hit = self.calculate_similarity(source, target)
            if hit.score >= threshold:
                hits.append(hit)

        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:max_results]

    def update_document(self, doc: Document) -> None:
        # Context vectors need a full rebuild; only the phrases are refreshed here.
        if not self._ready:
            return
        self.ngram_results[doc.id] = self.ngrams.extract(doc.clean_text)

    def remove_document(self, doc_id: str) -> None:
        self.ngram_results.pop(doc_id, None)

    def rename_document(self, old_id: str, new_id: str) -> None:
        result = self.ngram_results.pop(old_id, None)
        if result is not None:
            self.ngram_results[new_id] = result

    def set_weights(self, ngram_weight: float, context_weight: float) -> None:
        total = ngram_weight + context_weight
        if total <= 0:
            raise ValueError("Semantic weights must sum to a positive value")
        self.ngram_weight = ngram_weight / total
        self.context_weight = context_weight / total
        logger.info("Semantic weights updated: ngram=%.2f context=%.2f", self.ngram_weight, self.context_weight)

    def clear(self) -> None:
        self.ngram_results = {}
        self.context.clear()
        self._ready = False

    def statistics(self) -> Dict[str, object]:
        count = len(self.ngram_results)
        bigrams = sum(len(r.bigrams) for r in self.ngram_results.values())
        trigrams = sum(len(r.trigrams) for r in self.ngram_results.values())
        context_stats = self.context.statistics()
        return {
            "total_documents": len(self.corpus.documents),
            "avg_bigrams_per_document": bigrams / count if count else 0.0,
            "avg_trigrams_per_document": trigrams / count if count else 0.0,
            "context_words": context_stats["total_words"],
            "avg_context_vector_size": context_stats["avg_vector_size"],
            "ready": self._ready,
        }

    def serialize(self) -> Dict[str, object]:
        def grams(bucket: Dict[str, NGram]) -> List[Dict[str, object]]:
            return [
                {"phrase": g.phrase, "frequency": g.frequency, "positions": g.positions, "kind": g.kind}
                for g in bucket.values()
            ]

        return {
            "ngram_results": {
                doc_id: {"bigrams": grams(r.bigrams), "trigrams": grams(r.trigrams)}
                for doc_id, r in self.ngram_results.items()
            },
            "context_vectors": self.context.serialize(),
            "weights": {"ngram": self.ngram_weight, "context": self.context_weight},
        }

    def deserialize(self, data: Dict[str, object]) -> None:
        def grams(items: List[Dict[str, object]]) -> Dict[str, NGram]:
            return {
                str(item["phrase"]): NGram(
                    phrase=str(item["phrase"]),
                    frequency=int(item["frequency"]),
                    positions=list(item.get("positions", [])),
                    kind=str(item.get("kind", "bigram")),
                )
                for item in items
            }

        self.ngram_results = {
            doc_id: NGramResult(bigrams=grams(r.get("bigrams", [])), trigrams=grams(r.get("trigrams", [])))
            for doc_id, r in dict(data.get("ngram_results", {})).items()
        }
        self.context.deserialize(str(data.get("context_vectors", "{}")))
        weights = data.get("weights") or {}
        if weights:
            self.ngram_weight = float(weights.get("ngram", self.ngram_weight))
            self.context_weight = float(weights.get("context", self.context_weight))
        self._ready = True
        logger.info("Semantic models restored for %d documents", len(self.ngram_results))
