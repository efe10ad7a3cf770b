"""
Indexer module for Linkweaver.

Builds and maintains the corpus index: parses every vault document, extracts
keywords, phrases and entities, keeps global document frequencies consistent
and persists the result.
"""

import logging
import time
from typing import Callable, Dict, Iterable, List, Optional

from config import LinkerConfig
from content_parser import ContentParser
from corpus_cache import CorpusCache
from models import Corpus, Document, title_from_id
from nlp_processor import NLPProcessor
from tfidf_index import LexicalIndex
from vault_store import VaultStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], None]


class CorpusIndexer:
    """Owns the mutable `Corpus` and keeps it in sync with the vault."""

    def __init__(
        self,
        corpus: Corpus,
        store: VaultStore,
        config: LinkerConfig,
        cache: Optional[CorpusCache] = None,
        nlp: Optional[NLPProcessor] = None,
    ):
        """
        Initialize the indexer.

        Args:
            corpus: Corpus to populate in place
            store: Vault accessor used to list and read documents
            config: Exclusion rules and cache settings
            cache: Where the corpus is persisted; nothing is saved when omitted
            nlp: Keyword/entity extractor; built from `config` when omitted
        """
        self.corpus = corpus
        self.store = store
        self.config = config
        self.cache = cache
        self.parser = ContentParser()
        self.nlp = nlp or NLPProcessor(enable_ner=config.enable_ner)
        self.lexical = LexicalIndex(corpus)

    # ------------------------------------------------------------------
    # Exclusion rules
    # ------------------------------------------------------------------
    def is_excluded_folder(self, doc_id: str) -> bool:
        for folder in self.config.excluded_folders:
            prefix = folder.strip().strip("/")
            if prefix and doc_id.startswith(prefix + "/"):
                return True
        return False

    def has_excluded_tags(self, tags: Iterable[str]) -> bool:
        excluded = set(self.config.excluded_tags)
        return any(tag in excluded for tag in tags)

    def is_too_short(self, content: str) -> bool:
        return len(content) < self.config.min_note_length

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------
    def build_document(self, doc_id: str, content: str, last_modified: Optional[float] = None) -> Optional[Document]:
        """Parse one document. Returns None when exclusion rules reject it."""
        if self.is_excluded_folder(doc_id) or self.is_too_short(content):
            return None
        parsed = self.parser.parse(content, doc_id)
        if self.has_excluded_tags(parsed.tags):
            return None

        clean = parsed.clean_text
        return Document(
            id=doc_id,
            title=title_from_id(doc_id),
            content=content,
            clean_text=clean,
            keywords=self.nlp.extract_keywords(clean),
            phrases=self.nlp.extract_phrases(clean),
            entities=self.nlp.extract_entities(clean),
            tags=parsed.tags,
            headings=parsed.headings,
            links=parsed.links,
            word_frequency=self.nlp.word_frequency(clean),
            last_modified=last_modified if last_modified is not None else time.time(),
        )

    def analyze(self, progress: Optional[ProgressCallback] = None) -> None:
        """Full rebuild of the corpus from the vault."""

        def report(value: float, message: str) -> None:
            if progress:
                progress(value, message)

        started = time.monotonic()
        doc_ids = self.store.list_documents()
        total = len(doc_ids)
        logger.info("Starting full analysis of %d documents", total)
        report(0, "Starting analysis...")

        self.corpus.reset()
        for i, doc_id in enumerate(doc_ids, start=1):
            try:
                content = self.store.read(doc_id)
                doc = self.build_document(doc_id, content, self.store.modified_time(doc_id))
            except Exception:
                logger.exception("Error indexing %s", doc_id)
                continue
            if doc is not None:
                self.corpus.documents[doc_id] = doc
                self.lexical.update_document_frequency(doc, adding=True)
            if total:
                report(i / total * 50, f"Indexing documents: {i}/{total}")

        self.corpus.total_documents = len(self.corpus.documents)
        logger.info(
            "Indexed %d documents with %d unique terms",
            self.corpus.total_documents,
            len(self.corpus.document_frequency),
        )

        report(60, "Calculating TF-IDF vectors...")
        self.lexical.recalculate_all_vectors()

        report(80, "Resolving link references...")
        self.resolve_link_paths()

        report(90, "Saving cache...")
        self.corpus.last_full_analysis = time.time()
        self.save()

        logger.info("Analysis complete in %.2f seconds", time.monotonic() - started)
        report(100, "Analysis complete")

    def update_document(self, doc_id: str, save: bool = True) -> Optional[Document]:
        """Incrementally re-index one document. Returns the indexed document, if any."""
        existing = self.corpus.documents.get(doc_id)
        content = self.store.read(doc_id) if not self.is_excluded_folder(doc_id) else ""
        doc = None
        if content:
            doc = self.build_document(doc_id, content, self.store.modified_time(doc_id))

        if doc is None:
            if existing is not None:
                self.remove_document(doc_id, save=save)
            return None

        if existing is not None:
            self.lexical.update_document_frequency(existing, adding=False)
        self.lexical.update_document_frequency(doc, adding=True)
        self.corpus.documents[doc_id] = doc
        self.corpus.total_documents = len(self.corpus.documents)
        doc.tfidf_vector = self.lexical.compute_vector(doc)
        self._resolve_links(doc, self._title_lookup())
        if save:
            self.save()
        logger.info("Document updated: %s", doc_id)
        return doc

    def remove_document(self, doc_id: str, save: bool = True) -> bool:
        existing = self.corpus.documents.pop(doc_id, None)
        if existing is None:
            return False
        self.lexical.update_document_frequency(existing, adding=False)
        self.corpus.total_documents = len(self.corpus.documents)
        if save:
            self.save()
        logger.info("Removed document from index: %s", doc_id)
        return True

    def rename_document(self, old_id: str, new_id: str) -> bool:
        doc = self.corpus.documents.pop(old_id, None)
        if doc is None:
            return False
        doc.id = new_id
        doc.title = title_from_id(new_id)
        self.corpus.documents[new_id] = doc
        self.resolve_link_paths()
        self.save()
        logger.info("Renamed document in index: %s -> %s", old_id, new_id)
        return True

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------
    def _title_lookup(self) -> Dict[str, str]:
        return {doc.title: doc.id for doc in self.corpus.documents.values()}

    @staticmethod
    def _resolve_links(doc: Document, titles: Dict[str, str]) -> None:
        for link in doc.links:
            link.target_path = titles.get(link.target_title, link.target_title)

    def resolve_link_paths(self) -> None:
        titles = self._title_lookup()
        for doc in self.corpus.documents.values():
            self._resolve_links(doc, titles)

    # ------------------------------------------------------------------
    # Misc
    # ------------------------------------------------------------------
    def save(self) -> None:
        if self.cache is not None and self.config.cache_enabled:
            self.cache.save(self.corpus)

    def statistics(self) -> Dict[str, object]:
        docs: List[Document] = list(self.corpus.documents.values())
        total_links = sum(len(d.links) for d in docs)
        total_keywords = sum(len(d.keywords) for d in docs)
        count = self.corpus.total_documents
        return {
            "total_documents": count,
            "total_terms": len(self.corpus.document_frequency),
            "total_links": total_links,
            "avg_keywords_per_document": total_keywords / count if count else 0.0,
            "last_full_analysis": self.corpus.last_full_analysis or None,
        }
