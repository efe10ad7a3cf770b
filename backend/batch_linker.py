"""
Batch auto-linking over the whole vault.

A pass reads every eligible document, scores it against the corpus, picks
anchors and computes the rewritten content. Nothing is written until
`apply_changes`, which always snapshots the originals first.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from anchor_replacer import process_content
from backup_manager import BackupManager
from config import LinkerConfig
from hybrid_scorer import HybridScorer
from keyword_matcher import KeywordMatcher
from models import BackupTrigger, Corpus, Document, Replacement
from vault_store import VaultStore

logger = logging.getLogger(__name__)


@dataclass
class BatchOptions:
    preview_only: bool = True
    min_confidence: float = 0.3
    max_links_per_note: int = 10


@dataclass
class BatchNoteResult:
    doc_id: str
    title: str
    original_content: str
    modified_content: str
    replacements: List[Replacement] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class BatchSummary:
    total_processed: int = 0
    notes_with_changes: int = 0
    total_links_added: int = 0
    errors: List[str] = field(default_factory=list)
    results: List[BatchNoteResult] = field(default_factory=list)
    backup_id: Optional[str] = None


@dataclass
class BatchProgress:
    phase: str
    current: int
    total: int
    message: str
    document_id: Optional[str] = None


BatchProgressCallback = Callable[[BatchProgress], None]


class BatchLinker:
    def __init__(
        self,
        corpus: Corpus,
        store: VaultStore,
        scorer: HybridScorer,
        matcher: KeywordMatcher,
        backups: BackupManager,
        config: LinkerConfig,
    ):
        self.corpus = corpus
        self.store = store
        self.scorer = scorer
        self.matcher = matcher
        self.backups = backups
        self.config = config
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def reset(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    # ------------------------------------------------------------------
    # Eligibility
    # ------------------------------------------------------------------
    def _is_eligible(self, doc: Document) -> bool:
        if len(doc.content) < self.config.min_note_length:
            return False
        for folder in self.config.excluded_folders:
            prefix = folder.strip().strip("/")
            if prefix and doc.id.startswith(prefix + "/"):
                return False
        excluded = set(self.config.excluded_tags)
        return not any(tag in excluded for tag in doc.tags)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------
    async def process_note(self, doc: Document, options: BatchOptions) -> BatchNoteResult:
        """Compute the anchors for one document. Errors land on the result."""
        result = BatchNoteResult(doc_id=doc.id, title=doc.title, original_content="", modified_content="")
        try:
            content = self.store.read(doc.id)
            result.original_content = content
            result.modified_content = content

            # Anchors are picked against what is on disk now, not the indexed snapshot.
            source = dataclasses.replace(doc, content=content)
            candidates = self.scorer.find_similar(source, max_results=options.max_links_per_note * 3)
            candidates = [c for c in candidates if self.store.exists(c.target.id)]
            if not candidates:
                return result

            matches = self.matcher.process_candidates(candidates, source, min_confidence=options.min_confidence)
            assignments = KeywordMatcher.flatten(matches, max_per_note=options.max_links_per_note)
            if not assignments:
                return result

            replaced = process_content(content, assignments, max_replacements=options.max_links_per_note)
            result.modified_content = replaced.modified_content
            result.replacements = replaced.replacements
        except Exception as exc:
            logger.exception("Error processing %s", doc.id)
            result.error = str(exc)
        return result

    async def process_corpus(
        self,
        options: BatchOptions,
        progress: Optional[BatchProgressCallback] = None,
    ) -> BatchSummary:
        self.reset()
        summary = BatchSummary()
        docs = [doc for doc in self.corpus.documents.values() if self._is_eligible(doc)]
        total = len(docs)
        logger.info("Batch analysis of %d documents", total)

        for i, doc in enumerate(docs, start=1):
            if self._cancelled:
                logger.info("Batch analysis cancelled at %d/%d", i - 1, total)
                break
            if progress:
                progress(BatchProgress("analyzing", i, total, f"Analyzing: {doc.title}", doc.id))

            result = await self.process_note(doc, options)
            summary.total_processed += 1
            if result.error:
                summary.errors.append(f"{doc.id}: {result.error}")
            elif result.replacements:
                summary.results.append(result)
                summary.notes_with_changes += 1
                summary.total_links_added += len(result.replacements)
            await asyncio.sleep(0)

        if progress:
            progress(
                BatchProgress(
                    "complete",
                    total,
                    total,
                    f"Found {summary.total_links_added} links in {summary.notes_with_changes} notes",
                )
            )
        return summary

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------
    async def apply_changes(
        self,
        results: Sequence[BatchNoteResult],
        progress: Optional[BatchProgressCallback] = None,
    ) -> Tuple[str, int, List[str]]:
        """Back up, then write every changed document.

        Returns `(backup_id, applied, failures)`; each failure reads `"<doc_id>: <message>"`
        and the remaining documents are still written.
        """
        changed = [r for r in results if r.replacements and r.modified_content != r.original_content]
        if not changed:
            raise ValueError("No changes to apply")

        total_links = sum(len(r.replacements) for r in changed)
        if progress:
            progress(BatchProgress("backup", 0, len(changed), "Creating backup..."))
        # BackupError propagates; no document has been touched yet.
        manifest = self.backups.create_backup(
            [(r.doc_id, r.original_content, len(r.replacements)) for r in changed],
            links_added=total_links,
            description=f"Batch auto-link: {total_links} links added to {len(changed)} notes",
            triggered_by=BackupTrigger.BATCH_AUTOLINK,
        )

        applied = 0
        failures: List[str] = []
        for i, result in enumerate(changed, start=1):
            if self._cancelled:
                logger.info("Batch apply cancelled after %d documents", applied)
                break
            if progress:
                progress(BatchProgress("applying", i, len(changed), f"Applying: {result.title}", result.doc_id))
            try:
                self.store.write(result.doc_id, result.modified_content)
                applied += 1
            except (OSError, ValueError) as exc:
                logger.error("Failed to apply changes to %s: %s", result.doc_id, exc)
                result.error = str(exc)
                failures.append(f"{result.doc_id}: {exc}")
            await asyncio.sleep(0)

        logger.info("Applied links to %d/%d documents (backup %s)", applied, len(changed), manifest.id)
        if progress:
            progress(
                BatchProgress(
                    "complete",
                    applied,
                    len(changed),
                    f"Applied {total_links} links to {applied} notes",
                )
            )
        return manifest.id, applied, failures

    async def run_batch_auto_link(
        self,
        options: BatchOptions,
        progress: Optional[BatchProgressCallback] = None,
    ) -> BatchSummary:
        summary = await self.process_corpus(options, progress)
        if options.preview_only or not summary.results or self._cancelled:
            return summary

        backup_id, applied, failures = await self.apply_changes(summary.results, progress)
        summary.backup_id = backup_id
        summary.notes_with_changes = applied
        summary.errors.extend(failures)
        return summary
