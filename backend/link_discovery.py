"""On-demand link suggestions for a single document's live content."""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import List, Optional

from config import LinkerConfig
from content_parser import ContentParser
from hybrid_scorer import HybridScorer
from models import CandidateMatch, Corpus, Document, folder_from_id, title_from_id
from nlp_processor import NLPProcessor
from tfidf_index import LexicalIndex
from vault_store import VaultStore

logger = logging.getLogger(__name__)

PREVIEW_LENGTH = 200


@dataclass
class LinkSuggestion:
    id: str
    source: str
    target: str
    target_title: str
    lexical_score: float
    semantic_score: Optional[float]
    combined_score: float
    matched_keywords: List[str] = field(default_factory=list)
    matched_phrases: List[str] = field(default_factory=list)
    explanation: str = ""
    content_preview: str = ""
    target_folder: str = ""
    target_tags: List[str] = field(default_factory=list)
    status: str = "pending"
    created_at: int = 0


def explanation(candidate: CandidateMatch) -> str:
    percent = round(candidate.combined_score * 100)
    keywords = candidate.matched_keywords[:3]
    if keywords:
        return f"{percent}% match - {', '.join(keywords)}"
    if candidate.semantic_score:
        return f"{percent}% semantic match"
    return f"{percent}% similarity"


def content_preview(clean_text: str) -> str:
    if not clean_text:
        return ""
    preview = re.sub(r"\s+", " ", clean_text[:PREVIEW_LENGTH].strip())
    if len(clean_text) > PREVIEW_LENGTH:
        last_space = preview.rfind(" ")
        if last_space > 100:
            preview = preview[:last_space]
        preview += "..."
    return preview


def _string_similarity(a: str, b: str) -> float:
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    shortest = min(len(a), len(b))
    longest = max(len(a), len(b))
    matches = sum(1 for i in range(shortest) if a[i] == b[i])
    length_penalty = 1 - abs(len(a) - len(b)) / longest
    return (matches / shortest) * 0.7 + length_penalty * 0.3


def is_similar_content(new_content: str, old_content: str) -> bool:
    """Whether an edit is too small to be worth re-suggesting for."""
    if not new_content or not old_content:
        return False
    if abs(len(new_content) - len(old_content)) > 50:
        return False
    return _string_similarity(new_content, old_content) > 0.95


class LinkDiscovery:
    """Scores a document's current text against the indexed corpus without touching it."""

    def __init__(
        self,
        corpus: Corpus,
        store: VaultStore,
        scorer: HybridScorer,
        config: LinkerConfig,
        nlp: Optional[NLPProcessor] = None,
    ):
        self.corpus = corpus
        self.store = store
        self.scorer = scorer
        self.config = config
        self.parser = ContentParser()
        self.nlp = nlp or NLPProcessor(enable_ner=False)
        self.lexical = LexicalIndex(corpus)

    def temporary_document(self, doc_id: str, content: str) -> Document:
        parsed = self.parser.parse(content, doc_id)
        clean = parsed.clean_text
        doc = Document(
            id=doc_id,
            title=title_from_id(doc_id),
            content=content,
            clean_text=clean,
            keywords=self.nlp.extract_keywords(clean),
            phrases=self.nlp.extract_phrases(clean),
            tags=parsed.tags,
            headings=parsed.headings,
            links=parsed.links,
            word_frequency=self.nlp.word_frequency(clean),
        )
        titles = {d.title: d.id for d in self.corpus.documents.values()}
        for link in doc.links:
            link.target_path = titles.get(link.target_title, link.target_title)
        # Uses the corpus df as-is; the document is never counted into it.
        doc.tfidf_vector = self.lexical.compute_vector(doc)
        return doc

    def suggest(self, doc_id: str, content: Optional[str] = None) -> List[LinkSuggestion]:
        if not self.corpus.document_frequency:
            logger.warning("No document frequencies yet; run a full analysis before asking for suggestions")
            return []
        if content is None:
            content = self.store.read(doc_id)

        source = self.temporary_document(doc_id, content)
        candidates = self.scorer.find_similar(source, max_results=self.config.max_realtime_suggestions)
        linked = {link.target_path for link in source.links}
        candidates = [c for c in candidates if c.target.id not in linked]
        logger.debug("%d suggestions for %s", len(candidates), doc_id)
        return [self._suggestion(doc_id, c) for c in candidates]

    @staticmethod
    def _suggestion(source_id: str, candidate: CandidateMatch) -> LinkSuggestion:
        target = candidate.target
        now = int(time.time() * 1000)
        return LinkSuggestion(
            id=f"{source_id}-{target.id}-{now}",
            source=source_id,
            target=target.id,
            target_title=target.title,
            lexical_score=candidate.lexical_score,
            semantic_score=candidate.semantic_score,
            combined_score=candidate.combined_score,
            matched_keywords=list(candidate.matched_keywords),
            matched_phrases=list(candidate.matched_phrases),
            explanation=explanation(candidate),
            content_preview=content_preview(target.clean_text),
            target_folder=folder_from_id(target.id),
            target_tags=list(target.tags),
            created_at=now,
        )
