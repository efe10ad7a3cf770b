"""
Unit tests for the corpus indexer and its cache.
"""

import json
import os
import shutil
import sys
import tempfile
from pathlib import Path

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from config import LinkerConfig
from corpus_cache import CorpusCache
from indexer import CorpusIndexer
from models import Corpus
from nlp_processor import NLPProcessor
from vault_store import VaultStore

NOTES = {
    "Kubernetes.md": "Kubernetes schedules containers across a cluster of machines. See [[Docker]] for images.",
    "Docker.md": "Docker builds container images that Kubernetes later schedules onto cluster machines.",
    "drafts/Idea.md": "An unfinished idea about container orchestration that should stay out of the index.",
    "Short.md": "tiny",
    "Private.md": "#private Personal reflections about learning container orchestration this month.",
}


def assert_df_consistent(corpus):
    expected = {}
    for doc in corpus.documents.values():
        for term in doc.word_frequency:
            expected[term] = expected.get(term, 0) + 1
    assert corpus.document_frequency == expected


class TestCorpusIndexer:
    """Test suite for CorpusIndexer."""

    def setup_method(self):
        self.test_dir = tempfile.mkdtemp()
        vault = Path(self.test_dir) / "vault"
        self.config = LinkerConfig(vault_dir=str(vault), excluded_folders=["drafts"], enable_ner=False)
        self.store = VaultStore(vault, self.config.resolved_data_dir())
        for doc_id, content in NOTES.items():
            self.store.create(doc_id, content)

        self.cache = CorpusCache(self.config.resolved_data_dir())
        self.corpus = Corpus()
        self.indexer = CorpusIndexer(
            self.corpus, self.store, self.config, cache=self.cache, nlp=NLPProcessor(enable_ner=False)
        )

    def teardown_method(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_analyze_applies_exclusion_rules(self):
        progress = []
        self.indexer.analyze(progress=lambda value, message: progress.append(value))

        assert sorted(self.corpus.documents) == ["Docker.md", "Kubernetes.md"]
        assert self.corpus.total_documents == 2
        assert self.corpus.last_full_analysis > 0
        assert progress[0] == 0
        assert progress[-1] == 100
        assert_df_consistent(self.corpus)

    def test_analyze_resolves_links_and_vectors(self):
        self.indexer.analyze()
        kubernetes = self.corpus.documents["Kubernetes.md"]
        assert kubernetes.links[0].target_title == "Docker"
        assert kubernetes.links[0].target_path == "Docker.md"
        assert kubernetes.tfidf_vector
        assert kubernetes.title == "Kubernetes"

    def test_analyze_persists_cache(self):
        self.indexer.analyze()
        loaded = self.cache.load()
        assert sorted(loaded.documents) == ["Docker.md", "Kubernetes.md"]
        assert loaded.document_frequency == self.corpus.document_frequency
        assert loaded.documents["Kubernetes.md"].links[0].target_path == "Docker.md"

    def test_update_document_keeps_frequencies_consistent(self):
        self.indexer.analyze()
        self.store.write("Docker.md", "Docker compose files describe multi container applications for developers.")

        doc = self.indexer.update_document("Docker.md")

        assert doc is not None
        assert "compose" in doc.word_frequency
        assert self.corpus.document_frequency.get("compose") == 1
        assert_df_consistent(self.corpus)

    def test_update_adds_new_document(self):
        self.indexer.analyze()
        self.store.create("Helm.md", "Helm packages Kubernetes manifests into versioned charts for releases.")
        assert self.indexer.update_document("Helm.md") is not None
        assert self.corpus.total_documents == 3
        assert_df_consistent(self.corpus)

    def test_update_removes_document_that_became_ineligible(self):
        self.indexer.analyze()
        self.store.write("Docker.md", "tiny now")
        assert self.indexer.update_document("Docker.md") is None
        assert "Docker.md" not in self.corpus.documents
        assert_df_consistent(self.corpus)

    def test_remove_document(self):
        self.indexer.analyze()
        assert self.indexer.remove_document("Docker.md")
        assert not self.indexer.remove_document("Docker.md")
        assert self.corpus.total_documents == 1
        assert_df_consistent(self.corpus)

    def test_rename_document_re_resolves_links(self):
        self.indexer.analyze()
        assert self.indexer.rename_document("Docker.md", "tools/Docker.md")
        assert "tools/Docker.md" in self.corpus.documents
        assert self.corpus.documents["Kubernetes.md"].links[0].target_path == "tools/Docker.md"
        assert not self.indexer.rename_document("Missing.md", "Other.md")

    def test_statistics(self):
        self.indexer.analyze()
        stats = self.indexer.statistics()
        assert stats["total_documents"] == 2
        assert stats["total_links"] == 1
        assert stats["total_terms"] == len(self.corpus.document_frequency)

    def test_no_cache_when_disabled(self):
        config = self.config.model_copy(update={"cache_enabled": False})
        indexer = CorpusIndexer(Corpus(), self.store, config, cache=self.cache, nlp=NLPProcessor(enable_ner=False))
        indexer.analyze()
        assert not self.cache.path.exists()


class TestCorpusCache:
    """Test suite for CorpusCache."""

    def setup_method(self):
        self.test_dir = tempfile.mkdtemp()
        self.cache = CorpusCache(Path(self.test_dir))

    def teardown_method(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_missing_cache(self):
        assert self.cache.load() is None
        assert self.cache.stats()["exists"] is False

    def test_version_mismatch_is_ignored(self):
        self.cache.path.write_text(json.dumps({"version": "0.1.0", "documents": []}), encoding="utf-8")
        assert self.cache.load() is None

    def test_corrupt_cache_is_ignored(self):
        self.cache.path.write_text("{broken", encoding="utf-8")
        assert self.cache.load() is None

    def test_clear(self):
        self.cache.save(Corpus())
        assert self.cache.path.exists()
        self.cache.clear()
        assert not self.cache.path.exists()
