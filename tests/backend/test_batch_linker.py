"""
Tests for batch auto-linking.
"""

import asyncio
import os
import shutil
import sys
import tempfile
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from backup_manager import BackupError, BackupManager
from batch_linker import BatchLinker, BatchNoteResult, BatchOptions
from config import LinkerConfig
from keyword_matcher import KeywordMatcher
from models import CandidateMatch, Corpus, Document
from vault_store import VaultStore

SOURCE_TEXT = "Our team deployed the new service on Kubernetes and monitored it for a week."
TARGET_TEXT = "Kubernetes schedules containers across a cluster of machines in production."


def make_doc(doc_id, content, **fields):
    return Document(id=doc_id, title=doc_id[:-3].rsplit("/", 1)[-1], content=content, clean_text=content, **fields)


class TestBatchLinker:
    """Test suite for BatchLinker."""

    def setup_method(self):
        self.test_dir = tempfile.mkdtemp()
        self.store = VaultStore(Path(self.test_dir) / "vault")
        self.backups = BackupManager(Path(self.test_dir) / "backups", self.store)
        self.config = LinkerConfig(vault_dir=str(Path(self.test_dir) / "vault"))

        self.source = make_doc("Deploy Log.md", SOURCE_TEXT)
        self.target = make_doc("Kubernetes.md", TARGET_TEXT)
        self.corpus = Corpus(documents={d.id: d for d in (self.source, self.target)}, total_documents=2)
        for doc in (self.source, self.target):
            self.store.create(doc.id, doc.content)

        self.scorer = Mock()
        self.scorer.find_similar.side_effect = self._similar
        self.matcher = KeywordMatcher(self.corpus, self.config)
        self.linker = BatchLinker(self.corpus, self.store, self.scorer, self.matcher, self.backups, self.config)

    def teardown_method(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def _similar(self, source, max_results):
        if source.id == self.source.id:
            return [CandidateMatch(target=self.target, lexical_score=0.8, combined_score=0.8)]
        return []

    def test_preview_finds_anchor_without_writing(self):
        summary = asyncio.run(self.linker.run_batch_auto_link(BatchOptions(preview_only=True)))

        assert summary.total_processed == 2
        assert summary.notes_with_changes == 1
        assert summary.total_links_added == 1
        assert summary.backup_id is None
        result = summary.results[0]
        assert result.doc_id == "Deploy Log.md"
        assert "on [[Kubernetes]] and" in result.modified_content
        assert self.store.read("Deploy Log.md") == SOURCE_TEXT
        assert self.backups.load_manifests() == []

    def test_apply_backs_up_originals_first(self):
        summary = asyncio.run(self.linker.run_batch_auto_link(BatchOptions(preview_only=False)))

        assert summary.backup_id is not None
        assert "[[Kubernetes]]" in self.store.read("Deploy Log.md")
        data = self.backups.backup_details(summary.backup_id)
        assert data["notes"] == [{"path": "Deploy Log.md", "content": SOURCE_TEXT, "links_added": 1}]
        manifest = self.backups.load_manifests()[0]
        assert manifest.description == "Batch auto-link: 1 links added to 1 notes"
        assert manifest.triggered_by == "batch-autolink"

    def test_backup_failure_aborts_before_any_write(self):
        self.linker.backups = Mock()
        self.linker.backups.create_backup.side_effect = BackupError("disk full")

        with pytest.raises(BackupError):
            asyncio.run(self.linker.run_batch_auto_link(BatchOptions(preview_only=False)))
        assert self.store.read("Deploy Log.md") == SOURCE_TEXT

    def test_write_failure_is_reported_and_others_still_written(self):
        real_write = self.store.write

        def write(doc_id, content):
            if doc_id == "Kubernetes.md":
                raise OSError("read-only file")
            real_write(doc_id, content)

        results = [
            BatchNoteResult("Kubernetes.md", "Kubernetes", TARGET_TEXT, "linked target", replacements=[Mock()]),
            BatchNoteResult("Deploy Log.md", "Deploy Log", SOURCE_TEXT, "linked source", replacements=[Mock()]),
        ]
        with patch.object(self.store, "write", side_effect=write):
            backup_id, applied, failures = asyncio.run(self.linker.apply_changes(results))

        assert backup_id is not None
        assert applied == 1
        assert failures == ["Kubernetes.md: read-only file"]
        assert results[0].error == "read-only file"
        assert self.store.read("Deploy Log.md") == "linked source"
        assert self.store.read("Kubernetes.md") == TARGET_TEXT

    def test_apply_failures_land_in_summary_errors(self):
        with patch.object(self.store, "write", side_effect=OSError("disk full")):
            summary = asyncio.run(self.linker.run_batch_auto_link(BatchOptions(preview_only=False)))

        assert summary.backup_id is not None
        assert summary.notes_with_changes == 0
        assert summary.errors == ["Deploy Log.md: disk full"]

    def test_apply_without_changes_is_rejected(self):
        unchanged = BatchNoteResult(doc_id="A.md", title="A", original_content="x", modified_content="x")
        with pytest.raises(ValueError, match="No changes"):
            asyncio.run(self.linker.apply_changes([unchanged]))

    def test_anchors_use_current_disk_content(self):
        self.store.write("Deploy Log.md", "Rewritten today: nothing about containers at all, only sourdough baking.")
        summary = asyncio.run(self.linker.process_corpus(BatchOptions()))
        assert summary.results == []

    def test_missing_target_is_skipped(self):
        self.store.delete("Kubernetes.md")
        summary = asyncio.run(self.linker.process_corpus(BatchOptions()))
        assert summary.results == []
        assert summary.errors == []

    def test_unreadable_source_is_reported(self):
        self.store.delete("Deploy Log.md")
        summary = asyncio.run(self.linker.process_corpus(BatchOptions()))
        assert len(summary.errors) == 1
        assert summary.errors[0].startswith("Deploy Log.md: ")

    def test_cancel_stops_processing(self):
        def cancel(progress):
            if progress.phase == "analyzing":
                self.linker.cancel()

        summary = asyncio.run(self.linker.run_batch_auto_link(BatchOptions(preview_only=False), progress=cancel))
        assert summary.total_processed == 1
        assert summary.backup_id is None
        assert self.store.read("Deploy Log.md") == SOURCE_TEXT

    def test_excluded_documents_are_not_processed(self):
        self.source.tags = ["#draft"]
        summary = asyncio.run(self.linker.process_corpus(BatchOptions()))
        assert summary.total_processed == 1
        assert summary.results == []

    def test_short_documents_are_not_processed(self):
        config = self.config.model_copy(update={"min_note_length": 500})
        linker = BatchLinker(self.corpus, self.store, self.scorer, self.matcher, self.backups, config)
        summary = asyncio.run(linker.process_corpus(BatchOptions()))
        assert summary.total_processed == 0
