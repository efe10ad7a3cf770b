"""Service layer wiring the indexer, scorers, matcher and vault operations together."""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Tuple

from anchor_replacer import process_content
from backup_manager import BackupManager, RestoreProgress
from batch_linker import BatchLinker, BatchOptions, BatchProgressCallback, BatchSummary
from config import LinkerConfig
from corpus_cache import CorpusCache
from embedder import BatchProgressCallback as EmbeddingProgressCallback
from embedder import Embedder, ProgressCallback as ModelProgressCallback
from embedding_cache import EmbeddingCache, content_hash
from hybrid_scorer import EmbeddingSignal, HybridScorer, SimilaritySignal, StatisticalSignal
from indexer import CorpusIndexer, ProgressCallback
from keyword_matcher import KeywordMatcher
from link_cleaner import CleanProgressCallback, LinkCleaner, LinkCleanSummary
from link_discovery import LinkDiscovery, LinkSuggestion
from models import CandidateMatch, Corpus, Document, ReplacementResult
from nlp_processor import NLPProcessor
from semantic_engine import SemanticEngine
from vault_store import VaultStore

logger = logging.getLogger(__name__)

SEMANTIC_FILE = "semantic.json"


def _embedding_text(doc: Document) -> str:
    return doc.clean_text or doc.content


class LinkService:
    """Owns one vault's corpus and every component that reads or mutates it."""

    def __init__(
        self,
        config: Optional[LinkerConfig] = None,
        embedder: Optional[Embedder] = None,
        nlp: Optional[NLPProcessor] = None,
    ):
        self.config = config or LinkerConfig.from_env()
        config = self.config
        self.data_dir = config.resolved_data_dir()

        self.store = VaultStore(config.vault_dir, data_dir=self.data_dir)
        self.corpus_cache = CorpusCache(self.data_dir)
        cached = self.corpus_cache.load() if config.cache_enabled else None
        self.corpus: Corpus = cached or Corpus()

        self.nlp = nlp or NLPProcessor(enable_ner=config.enable_ner)
        self.indexer = CorpusIndexer(self.corpus, self.store, config, cache=self.corpus_cache, nlp=self.nlp)
        self.lexical = self.indexer.lexical
        self.semantic = SemanticEngine(self.corpus, config.ngram_weight, config.context_weight)
        self._load_semantic()

        self.embedder = embedder or Embedder(
            model_name=config.embedding_model,
            max_sequence_length=config.max_sequence_length,
            batch_size=config.embedding_batch_size,
            allow_download=config.allow_model_download,
        )
        self.embedding_cache = EmbeddingCache(self.data_dir, self.embedder.model_name)
        if config.enable_embeddings:
            self.embedding_cache.load()
        self._embedding_cancelled = False

        self.scorer = HybridScorer(self.lexical, config)
        self.matcher = KeywordMatcher(
            self.corpus,
            config,
            embedder=self.embedder,
            embedding_cache=self.embedding_cache,
        )
        self.backups = BackupManager(self.data_dir / "backups", self.store)
        self.batch = BatchLinker(self.corpus, self.store, self.scorer, self.matcher, self.backups, config)
        self.cleaner = LinkCleaner(self.store, self.backups)
        self.discovery = LinkDiscovery(self.corpus, self.store, self.scorer, config, nlp=self.nlp)

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------
    def semantic_signal(self) -> Optional[SimilaritySignal]:
        if self.config.enable_embeddings and self.embedder.is_ready():
            return EmbeddingSignal(self.embedder, self.embedding_cache, self.corpus)
        if self.semantic.is_ready():
            return StatisticalSignal(self.semantic)
        return None

    def _refresh_signal(self) -> None:
        self.scorer.semantic = self.semantic_signal()

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------
    def analyze(self, progress: Optional[ProgressCallback] = None) -> Dict[str, Any]:
        """Full rebuild of the lexical index, then the statistical semantic models."""

        def indexing(value: float, message: str) -> None:
            if progress:
                progress(value * 0.8, message)

        def modelling(value: float, message: str) -> None:
            if progress:
                progress(80 + value * 0.2, message)

        self.indexer.analyze(indexing)
        if self.config.enable_semantic:
            self.semantic.build_models(modelling)
            self._save_semantic()
        if progress:
            progress(100, "Analysis complete")
        return self.indexer.statistics()

    def refresh_document(self, doc_id: str) -> Optional[Document]:
        if not self.store.exists(doc_id):
            self.remove_document(doc_id)
            return None
        doc = self.indexer.update_document(doc_id)
        if doc is None:
            self.semantic.remove_document(doc_id)
            self.embedding_cache.delete(doc_id)
        else:
            self.semantic.update_document(doc)
        return doc

    def remove_document(self, doc_id: str) -> bool:
        removed = self.indexer.remove_document(doc_id)
        self.semantic.remove_document(doc_id)
        self.embedding_cache.delete(doc_id)
        self._save_embeddings()
        return removed

    def rename_document(self, old_id: str, new_id: str) -> bool:
        renamed = self.indexer.rename_document(old_id, new_id)
        if renamed:
            self.semantic.rename_document(old_id, new_id)
            self.embedding_cache.rename(old_id, new_id)
            self._save_embeddings()
        return renamed

    def _refresh_many(self, doc_ids: Iterable[str]) -> None:
        touched = False
        for doc_id in doc_ids:
            try:
                if not self.store.exists(doc_id):
                    continue
                doc = self.indexer.update_document(doc_id, save=False)
            except (OSError, ValueError) as exc:
                logger.error("Failed to re-index %s: %s", doc_id, exc)
                continue
            touched = True
            if doc is not None:
                self.semantic.update_document(doc)
        if touched:
            self.indexer.resolve_link_paths()
            self.indexer.save()

    # ------------------------------------------------------------------
    # Similarity
    # ------------------------------------------------------------------
    def _indexed(self, doc_id: str) -> Document:
        doc = self.corpus.documents.get(doc_id)
        if doc is None:
            raise FileNotFoundError(f"Document not indexed: {doc_id}")
        return doc

    def similar(self, doc_id: str, max_results: Optional[int] = None) -> List[CandidateMatch]:
        source = self._indexed(doc_id)
        self._refresh_signal()
        return self.scorer.find_similar(source, max_results or self.config.max_suggestions)

    def suggestions(self, doc_id: str, content: Optional[str] = None) -> List[LinkSuggestion]:
        self._refresh_signal()
        return self.discovery.suggest(doc_id, content)

    def anchor_preview(self, doc_id: str) -> ReplacementResult:
        source = self._indexed(doc_id)
        content = self.store.read(doc_id)
        source = dataclasses.replace(source, content=content)
        self._refresh_signal()

        limit = self.config.max_links_per_note
        candidates = [c for c in self.scorer.find_similar(source, limit * 3) if self.store.exists(c.target.id)]
        matches = self.matcher.process_candidates(candidates, source, min_confidence=self.config.min_confidence)
        assignments = KeywordMatcher.flatten(matches, max_per_note=limit)
        return process_content(content, assignments, max_replacements=limit)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------
    def _batch_options(self, preview_only: bool, min_confidence=None, max_links_per_note=None) -> BatchOptions:
        return BatchOptions(
            preview_only=preview_only,
            min_confidence=self.config.min_confidence if min_confidence is None else min_confidence,
            max_links_per_note=max_links_per_note or self.config.max_links_per_note,
        )

    async def batch_preview(
        self,
        min_confidence: Optional[float] = None,
        max_links_per_note: Optional[int] = None,
        progress: Optional[BatchProgressCallback] = None,
    ) -> BatchSummary:
        self._refresh_signal()
        options = self._batch_options(True, min_confidence, max_links_per_note)
        return await self.batch.run_batch_auto_link(options, progress)

    async def batch_apply(
        self,
        min_confidence: Optional[float] = None,
        max_links_per_note: Optional[int] = None,
        progress: Optional[BatchProgressCallback] = None,
    ) -> BatchSummary:
        self._refresh_signal()
        options = self._batch_options(False, min_confidence, max_links_per_note)
        summary = await self.batch.run_batch_auto_link(options, progress)
        if summary.backup_id:
            self._refresh_many(r.doc_id for r in summary.results)
        return summary

    def batch_cancel(self) -> None:
        self.batch.cancel()
        self.cleaner.cancel()
        self._embedding_cancelled = True

    # ------------------------------------------------------------------
    # Backups and link cleaning
    # ------------------------------------------------------------------
    def restore_backup(
        self, backup_id: str, progress: Optional[RestoreProgress] = None
    ) -> Tuple[int, List[str]]:
        details = self.backups.backup_details(backup_id) or {}
        restored, errors = self.backups.restore_backup(backup_id, progress)
        self._refresh_many(note.get("path", "") for note in details.get("notes", []) if note.get("path"))
        return restored, errors

    async def clear_links_preview(self, progress: Optional[CleanProgressCallback] = None) -> LinkCleanSummary:
        return await self.cleaner.scan(progress)

    async def clear_links_apply(self, progress: Optional[CleanProgressCallback] = None) -> LinkCleanSummary:
        summary = await self.cleaner.clean_all(progress)
        if summary.cleaned_count:
            self._refresh_many(r.document_id for r in summary.results)
        return summary

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------
    def load_embedding_model(self, progress: Optional[ModelProgressCallback] = None) -> None:
        self.embedder.load_model(progress)
        if not self.embedding_cache.size() and self.embedding_cache.model_name == self.embedder.model_name:
            self.embedding_cache.load()
        self.embedding_cache.update_model(self.embedder.model_name, self.embedder.embedding_dimension())

    async def generate_embeddings(self, progress: Optional[EmbeddingProgressCallback] = None) -> Dict[str, int]:
        """Embed every document whose cached vector is missing or stale."""
        self._embedding_cancelled = False
        pending: List[tuple] = []
        hashes: Dict[str, str] = {}
        for doc in self.corpus.documents.values():
            text = _embedding_text(doc)
            hash_value = content_hash(text)
            if self.embedding_cache.is_valid(doc.id, hash_value):
                continue
            hashes[doc.id] = hash_value
            pending.append((doc.id, text))

        if not pending:
            return {"generated": 0, "skipped": len(self.corpus.documents)}

        vectors = await self.embedder.generate_batch_embeddings(
            pending,
            progress_callback=progress,
            should_cancel=lambda: self._embedding_cancelled,
        )
        for doc_id, vector in vectors.items():
            self.embedding_cache.set(doc_id, vector, hashes[doc_id])
        self._save_embeddings()
        return {"generated": len(vectors), "skipped": len(self.corpus.documents) - len(pending)}

    def embedding_status(self) -> Dict[str, Any]:
        return {
            "status": self.embedder.status.value,
            "model_name": self.embedder.model_name,
            "ready": self.embedder.is_ready(),
            "load_error": self.embedder.load_error,
            "cache": self.embedding_cache.stats(),
        }

    def _save_embeddings(self) -> None:
        if self.embedding_cache.needs_save():
            self.embedding_cache.save()

    # ------------------------------------------------------------------
    # Semantic model persistence
    # ------------------------------------------------------------------
    def _semantic_path(self):
        return self.data_dir / SEMANTIC_FILE

    def _save_semantic(self) -> None:
        if not self.config.cache_enabled or not self.semantic.is_ready():
            return
        path = self._semantic_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(self.semantic.serialize(), handle)
        os.replace(tmp_path, path)

    def _load_semantic(self) -> None:
        path = self._semantic_path()
        if not self.config.cache_enabled or not self.config.enable_semantic or not path.exists():
            return
        if not self.corpus.documents:
            return
        try:
            with open(path, "r", encoding="utf-8") as handle:
                self.semantic.deserialize(json.load(handle))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding semantic model cache: %s", exc)
            self.semantic.clear()

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------
    def stats(self) -> Dict[str, Any]:
        return {
            "index": self.indexer.statistics(),
            "lexical": self.lexical.statistics(),
            "semantic": self.semantic.statistics(),
            "matcher": self.matcher.statistics(),
            "embeddings": self.embedding_status(),
            "backups": self.backups.stats(),
        }
