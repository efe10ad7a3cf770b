"""
Tests for removing wikilinks across the vault.
"""

import asyncio
import os
import shutil
import sys
import tempfile
from pathlib import Path
from unittest.mock import Mock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from backup_manager import BackupError, BackupManager
from link_cleaner import LinkCleaner, count_wiki_links, remove_wiki_links
from vault_store import VaultStore


class TestLinkCleaner:
    """Test suite for LinkCleaner."""

    def setup_method(self):
        self.test_dir = tempfile.mkdtemp()
        self.store = VaultStore(Path(self.test_dir) / "vault")
        self.backups = BackupManager(Path(self.test_dir) / "backups", self.store)
        self.cleaner = LinkCleaner(self.store, self.backups)

        self.store.create("A.md", "See [[Kubernetes]] and [[Pod Lifecycle|pods]].")
        self.store.create("sub/B.md", "Nothing linked here.")
        self.store.create("C.md", "Back to [[A]].")

    def teardown_method(self):
        shutil.rmtree(self.test_dir, ignore_errors=True)

    def test_scan_previews_without_writing(self):
        summary = asyncio.run(self.cleaner.scan())

        assert summary.total_processed == 3
        assert summary.notes_with_changes == 2
        assert summary.total_links_removed == 3
        assert {r.document_id: r.links_removed for r in summary.results} == {"A.md": 2, "C.md": 1}
        assert self.store.read("A.md") == "See [[Kubernetes]] and [[Pod Lifecycle|pods]]."
        assert self.backups.load_manifests() == []

    def test_clean_all_backs_up_then_writes(self):
        events = []
        summary = asyncio.run(self.cleaner.clean_all(progress=lambda p: events.append(p.phase)))

        assert self.store.read("A.md") == "See Kubernetes and pods."
        assert self.store.read("C.md") == "Back to A."
        assert summary.cleaned_count == 2
        assert summary.backup_id is not None

        manifest = self.backups.load_manifests()[0]
        assert manifest.id == summary.backup_id
        assert manifest.triggered_by == "clear-all-links"
        assert manifest.links_removed == 3
        assert manifest.links_added == -3
        assert manifest.description == "Clear all links: Removed 3 links from 2 notes"
        assert events.index("backup") < events.index("cleaning")

    def test_clean_all_restores_cleanly(self):
        summary = asyncio.run(self.cleaner.clean_all())
        self.backups.restore_backup(summary.backup_id)
        assert self.store.read("A.md") == "See [[Kubernetes]] and [[Pod Lifecycle|pods]]."

    def test_backup_failure_leaves_vault_untouched(self):
        self.cleaner.backups = Mock()
        self.cleaner.backups.create_backup.side_effect = BackupError("disk full")

        with pytest.raises(BackupError):
            asyncio.run(self.cleaner.clean_all())
        assert self.store.read("A.md") == "See [[Kubernetes]] and [[Pod Lifecycle|pods]]."

    def test_nothing_to_clean_creates_no_backup(self):
        self.store.write("A.md", "plain")
        self.store.write("C.md", "plain")
        summary = asyncio.run(self.cleaner.clean_all())
        assert summary.backup_id is None
        assert self.backups.load_manifests() == []

    def test_cancel_during_scan(self):
        def cancel_on_first(progress):
            if progress.phase == "scanning":
                self.cleaner.cancel()

        summary = asyncio.run(self.cleaner.clean_all(progress=cancel_on_first))
        assert summary.backup_id is None
        assert self.store.read("A.md").startswith("See [[Kubernetes]]")


@pytest.mark.unit
def test_remove_wiki_links_keeps_visible_text():
    content = "[[Note]] [[folder/Deep Note]] [[Note#Heading]] [[Target|shown]] #[[Tagged]]"
    cleaned, count = remove_wiki_links(content)
    assert cleaned == "Note Deep Note Note shown Tagged"
    assert count == 5


@pytest.mark.unit
def test_count_wiki_links():
    assert count_wiki_links("no links") == 0
    assert count_wiki_links("[[a]] and [[b|c]]") == 2
