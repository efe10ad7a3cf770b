"""Strips `[[wikilinks]]` from the vault, keeping their visible text."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from backup_manager import BackupManager
from models import BackupTrigger, title_from_id
from vault_store import VaultStore

logger = logging.getLogger(__name__)

# `#[[...]]` is a malformed tag-prefixed link; the `#` goes with it.
WIKI_LINK_RE = re.compile(r"#?\[\[([^\]|]+)(?:\|([^\]]+))?\]\]")


def _visible_text(match: re.Match) -> str:
    target, display = match.group(1), match.group(2)
    if display:
        return display
    title = target.rsplit("/", 1)[-1]
    return title.split("#", 1)[0].strip()


def remove_wiki_links(content: str) -> Tuple[str, int]:
    return WIKI_LINK_RE.subn(_visible_text, content)


def count_wiki_links(content: str) -> int:
    return len(WIKI_LINK_RE.findall(content))


@dataclass
class LinkCleanResult:
    document_id: str
    title: str
    links_removed: int
    original_content: str
    cleaned_content: str


@dataclass
class LinkCleanSummary:
    total_processed: int = 0
    notes_with_changes: int = 0
    total_links_removed: int = 0
    results: List[LinkCleanResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    backup_id: Optional[str] = None
    cleaned_count: int = 0


@dataclass
class CleanProgress:
    phase: str
    current: int
    total: int
    message: str
    document_id: Optional[str] = None


CleanProgressCallback = Callable[[CleanProgress], None]


class LinkCleaner:
    def __init__(self, store: VaultStore, backups: BackupManager):
        self.store = store
        self.backups = backups
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def reset(self) -> None:
        self._cancelled = False

    async def scan(self, progress: Optional[CleanProgressCallback] = None) -> LinkCleanSummary:
        """Preview what `clean_all` would change. Writes nothing."""
        self.reset()
        summary = LinkCleanSummary()
        doc_ids = self.store.list_documents()
        total = len(doc_ids)

        for i, doc_id in enumerate(doc_ids, start=1):
            if self._cancelled:
                break
            if progress:
                progress(CleanProgress("scanning", i, total, f"Scanning: {title_from_id(doc_id)}", doc_id))
            try:
                content = self.store.read(doc_id)
            except (OSError, ValueError) as exc:
                summary.errors.append(f"{doc_id}: {exc}")
                continue

            summary.total_processed += 1
            cleaned, removed = remove_wiki_links(content)
            if removed:
                summary.notes_with_changes += 1
                summary.total_links_removed += removed
                summary.results.append(
                    LinkCleanResult(
                        document_id=doc_id,
                        title=title_from_id(doc_id),
                        links_removed=removed,
                        original_content=content,
                        cleaned_content=cleaned,
                    )
                )
            await asyncio.sleep(0)

        if progress:
            progress(
                CleanProgress(
                    "complete",
                    total,
                    total,
                    f"Found {summary.total_links_removed} links in {summary.notes_with_changes} notes",
                )
            )
        return summary

    async def clean_all(self, progress: Optional[CleanProgressCallback] = None) -> LinkCleanSummary:
        """Back up every affected document, then strip its links."""
        summary = await self.scan(progress)
        if not summary.results or self._cancelled:
            return summary

        if progress:
            progress(CleanProgress("backup", 0, summary.notes_with_changes, "Creating backup..."))
        manifest = self.backups.create_backup(
            [(r.document_id, r.original_content, -r.links_removed) for r in summary.results],
            links_added=-summary.total_links_removed,
            links_removed=summary.total_links_removed,
            description=(
                f"Clear all links: Removed {summary.total_links_removed} links "
                f"from {summary.notes_with_changes} notes"
            ),
            triggered_by=BackupTrigger.CLEAR_ALL_LINKS,
        )
        summary.backup_id = manifest.id

        total = len(summary.results)
        for result in summary.results:
            if self._cancelled:
                logger.info("Link cleaning cancelled after %d documents", summary.cleaned_count)
                break
            if progress:
                progress(
                    CleanProgress(
                        "cleaning",
                        summary.cleaned_count + 1,
                        total,
                        f"Cleaning: {result.title}",
                        result.document_id,
                    )
                )
            try:
                self.store.write(result.document_id, result.cleaned_content)
                summary.cleaned_count += 1
            except (OSError, ValueError) as exc:
                summary.errors.append(f"Failed to clean {result.document_id}: {exc}")
            await asyncio.sleep(0)

        logger.info(
            "Removed %d links from %d documents (backup %s)",
            summary.total_links_removed,
            summary.cleaned_count,
            summary.backup_id,
        )
        if progress:
            progress(
                CleanProgress(
                    "complete",
                    summary.cleaned_count,
                    total,
                    f"Removed {summary.total_links_removed} links from {summary.cleaned_count} notes",
                )
            )
        return summary
