"""
Unit tests for hybrid candidate scoring.
"""

import os
import sys
from unittest.mock import Mock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from config import LinkerConfig
from hybrid_scorer import EmbeddingSignal, HybridScorer, SignalHit, combine_scores
from models import Corpus, Document, LinkReference, title_from_id
from nlp_processor import NLPProcessor
from tfidf_index import LexicalIndex, cosine_similarity

NLP = NLPProcessor(enable_ner=False)


def make_doc(doc_id, text):
    return Document(
        id=doc_id,
        title=title_from_id(doc_id),
        content=text,
        clean_text=text,
        keywords=NLP.extract_keywords(text),
        word_frequency=NLP.word_frequency(text),
    )


class FakeSignal:
    name = "fake"

    def __init__(self, hits, available=True):
        self.hits = hits
        self.available = available

    def is_available(self):
        return self.available

    def find_similar(self, source, threshold, max_results):
        return list(self.hits)


class TestHybridScorer:
    """Test suite for the HybridScorer class."""

    def setup_method(self):
        self.corpus = Corpus()
        self.index = LexicalIndex(self.corpus)
        self.a = make_doc("a.md", "kubernetes pods deployment cluster scaling")
        self.b = make_doc("b.md", "kubernetes cluster networking ingress controller")
        self.c = make_doc("c.md", "baking bread sourdough flour water")
        for doc in (self.a, self.b, self.c):
            self.corpus.documents[doc.id] = doc
            self.index.update_document_frequency(doc, adding=True)
        self.corpus.total_documents = 3
        self.index.recalculate_all_vectors()
        self.config = LinkerConfig(lexical_threshold=0.05)

    def test_lexical_only_without_signal(self):
        results = HybridScorer(self.index, self.config).find_similar(self.a)
        assert [r.target.id for r in results] == ["b.md"]
        assert results[0].semantic_score is None
        assert results[0].combined_score == results[0].lexical_score

    def test_unavailable_signal_falls_back_to_lexical(self):
        signal = FakeSignal([SignalHit(target=self.c, score=0.9)], available=False)
        results = HybridScorer(self.index, self.config, signal).find_similar(self.a)
        assert [r.target.id for r in results] == ["b.md"]

    def test_disabled_semantic_falls_back_to_lexical(self):
        config = self.config.model_copy(update={"enable_semantic": False})
        signal = FakeSignal([SignalHit(target=self.c, score=0.9)])
        results = HybridScorer(self.index, config, signal).find_similar(self.a)
        assert [r.target.id for r in results] == ["b.md"]

    def test_single_semantic_score_stands_alone(self):
        signal = FakeSignal([SignalHit(target=self.a, score=0.42)])
        results = HybridScorer(self.index, self.config, signal).find_similar(self.c)

        assert len(results) == 1
        assert results[0].target.id == "a.md"
        assert results[0].lexical_score == 0.0
        assert results[0].combined_score == pytest.approx(0.42)

    def test_semantic_only_uses_semantic_threshold(self):
        signal = FakeSignal([SignalHit(target=self.a, score=0.2)])
        assert HybridScorer(self.index, self.config, signal).find_similar(self.c) == []

    def test_both_signals_are_weighted(self):
        config = self.config.model_copy(update={"lexical_threshold": 0.1})
        signal = FakeSignal([SignalHit(target=self.b, score=0.95, matched_phrases=["kubernetes cluster"])])
        results = HybridScorer(self.index, config, signal).find_similar(self.a)

        lexical = cosine_similarity(self.a.tfidf_vector, self.b.tfidf_vector)
        assert [r.target.id for r in results] == ["b.md"]
        assert results[0].lexical_score == pytest.approx(lexical)
        assert results[0].combined_score == pytest.approx(combine_scores(lexical, 0.95, (0.6, 0.4)))
        assert results[0].matched_phrases == ["kubernetes cluster"]

    def test_self_and_linked_targets_are_excluded(self):
        self.c.links = [LinkReference(target_title="b", target_path="b.md")]
        signal = FakeSignal([SignalHit(target=self.c, score=0.9), SignalHit(target=self.b, score=0.9)])
        assert HybridScorer(self.index, self.config, signal).find_similar(self.c) == []

    def test_results_are_truncated(self):
        signal = FakeSignal([SignalHit(target=self.a, score=0.9), SignalHit(target=self.b, score=0.8)])
        results = HybridScorer(self.index, self.config, signal).find_similar(self.c, max_results=1)
        assert [r.target.id for r in results] == ["a.md"]


class TestEmbeddingSignal:
    """Test suite for the EmbeddingSignal adapter."""

    def test_provider_failure_degrades_to_no_hits(self):
        embedder = Mock()
        embedder.is_ready.return_value = True
        embedder.generate_embedding.side_effect = RuntimeError("model crashed")
        cache = Mock()
        cache.get.return_value = None
        corpus = Corpus(documents={"a.md": Document(id="a.md", title="a", clean_text="text")})

        signal = EmbeddingSignal(embedder, cache, corpus)

        assert signal.find_similar(corpus.documents["a.md"], 0.3, 10) == []

    def test_unloaded_model_is_unavailable(self):
        embedder = Mock()
        embedder.is_ready.return_value = False
        assert not EmbeddingSignal(embedder, Mock(), Corpus()).is_available()


@pytest.mark.unit
def test_combine_scores_single_signal_rule():
    assert combine_scores(0.42, 0.0, (0.6, 0.4)) == pytest.approx(0.42)
    assert combine_scores(0.0, 0.42, (0.6, 0.4)) == pytest.approx(0.42)
    assert combine_scores(0.0, 0.0, (0.6, 0.4)) == 0.0


@pytest.mark.unit
def test_combine_scores_weighted_average():
    assert combine_scores(0.5, 1.0, (0.6, 0.4)) == pytest.approx(0.7)
    assert combine_scores(0.5, 1.0, (3.0, 2.0)) == pytest.approx(0.7)
    assert combine_scores(0.4, 0.8, (0.0, 0.0)) == pytest.approx(0.6)
