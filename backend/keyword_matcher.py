"""
Anchor selection for candidate links.

For one (source, target) pair the matcher picks the literal text in the source
that should become a link to the target. Four tiers are tried in order and the
first one that produces an anchor wins:

1. title    - the target title appears verbatim in the source
2. entity   - a named entity of the target that is specific to it
3. phrase   - a rare multi-word phrase of the target
4. keyword  - a specific single keyword, context-verified when embeddings exist
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from config import LinkerConfig
from embedder import Embedder
from embedding_cache import EmbeddingCache
from models import AnchorAssignment, CandidateMatch, Corpus, Document, MatchReason

logger = logging.getLogger(__name__)

_NUMERIC_PREFIX_RE = re.compile(r"^\d+(?:\.\d+)*\s*[-–—:.)]?\s*")
_WORD_RE = re.compile(r"\w+")

_CONTEXT_WINDOW = 500
_CONTEXT_MARGIN = 200
_MIN_CONTEXT_CHARS = 20
_NEUTRAL_SIMILARITY = 0.5


def normalize(text: str) -> str:
    return (text or "").lower().strip()


def text_exists(text: str, content: str) -> bool:
    """Whole-word, case-insensitive containment."""
    if not text or not content:
        return False
    return re.search(r"\b" + re.escape(text) + r"\b", content, re.IGNORECASE) is not None


def strip_numeric_prefix(title: str) -> str:
    return _NUMERIC_PREFIX_RE.sub("", title or "").strip()


def significant_words(title: str) -> set:
    return {w for w in _WORD_RE.findall((title or "").lower()) if len(w) > 3}


def titles_overlap(source_title: str, target_title: str) -> bool:
    """True when the titles share half or more of the smaller title's significant words."""
    source_words = significant_words(source_title)
    target_words = significant_words(target_title)
    if not source_words or not target_words:
        return False
    shared = source_words & target_words
    return len(shared) / min(len(source_words), len(target_words)) >= 0.5


def sentence_context(content: str, keyword: str) -> Optional[str]:
    """The sentence around the first whole-word occurrence of `keyword`, at most 500 chars."""
    if not content or not keyword:
        return None
    match = re.search(r"\b" + re.escape(keyword) + r"\b", content, re.IGNORECASE)
    if match is None:
        return None

    index = match.start()
    before = content[:index]
    after = content[index:]

    start = before.rfind(". ")
    if start == -1:
        start = before.rfind("\n")
    start = 0 if start == -1 else start + 2

    end = after.find(". ")
    if end == -1:
        end = after.find("\n")
    if end == -1:
        end = len(after)

    sentence = content[start:index + end].strip()
    if len(sentence) > _CONTEXT_WINDOW:
        position = index - start
        window_start = max(0, position - _CONTEXT_MARGIN)
        window_end = min(len(sentence), position + len(keyword) + _CONTEXT_MARGIN)
        return sentence[window_start:window_end]
    return sentence


def term_weight(doc: Document, term: str) -> Optional[float]:
    """TF-IDF weight of a term; multi-word terms use the mean of their present words."""
    words = _WORD_RE.findall(term.lower())
    if not words:
        return None
    if len(words) == 1:
        return doc.tfidf_vector.get(words[0])
    present = [doc.tfidf_vector[w] for w in words if w in doc.tfidf_vector]
    if not present:
        return None
    return sum(present) / len(present)


def specificity(term: str, source: Document, target: Document) -> float:
    """Target weight over source weight. 0 when the target lacks the term."""
    target_weight = term_weight(target, term)
    if target_weight is None or target_weight <= 0:
        return 0.0
    source_weight = term_weight(source, term)
    if source_weight is None or source_weight <= 0:
        return math.inf
    return target_weight / source_weight


@dataclass(frozen=True)
class ContextCheck:
    """Outcome of context verification. `measured` is False when the neutral value stood in."""

    similarity: float
    measured: bool = True


@dataclass
class MatchContext:
    """Everything a tier needs to decide on one (source, target) pair."""

    source: Document
    target: Document
    score: float
    config: LinkerConfig
    corpus: Corpus
    verify: Callable[[str, str, str], Optional[ContextCheck]]

    def rare_enough(self, phrase: str) -> bool:
        total = max(self.corpus.total_documents, 1)
        ceiling = self.config.max_vault_frequency_percent
        for word in _WORD_RE.findall(phrase.lower()):
            df = self.corpus.document_frequency.get(word, 0)
            if df / total * 100 > ceiling:
                return False
        return True

    def in_source_title(self, term: str) -> bool:
        return normalize(term) in normalize(self.source.title)

    def assignment(self, keyword: str, confidence: float, reason: MatchReason) -> AnchorAssignment:
        return AnchorAssignment(
            keyword=keyword,
            target_id=self.target.id,
            target_title=self.target.title,
            confidence=confidence,
            reason=reason,
        )


Tier = Callable[[MatchContext], Optional[AnchorAssignment]]


def title_tier(ctx: MatchContext) -> Optional[AnchorAssignment]:
    content = ctx.source.content
    title = ctx.target.title
    variants = [title]
    stripped = strip_numeric_prefix(title)
    if stripped and stripped != title:
        variants.append(stripped)
    for variant in variants:
        if text_exists(variant, content):
            return ctx.assignment(variant, ctx.score * 0.9, MatchReason.TITLE)
    return None


def entity_tier(ctx: MatchContext) -> Optional[AnchorAssignment]:
    if not ctx.config.enable_entity_tier:
        return None
    for entity in ctx.target.entities.all():
        if ctx.in_source_title(entity) or not text_exists(entity, ctx.source.content):
            continue
        if specificity(entity, ctx.source, ctx.target) < ctx.config.specificity_ratio:
            continue
        return ctx.assignment(entity, ctx.score * 0.8, MatchReason.ENTITY)
    return None


def phrase_tier(ctx: MatchContext) -> Optional[AnchorAssignment]:
    if not ctx.config.enable_phrase_tier:
        return None
    for phrase in ctx.target.phrases:
        if ctx.in_source_title(phrase) or not text_exists(phrase, ctx.source.content):
            continue
        if not ctx.rare_enough(phrase):
            continue
        confidence = ctx.score * 0.7
        if ctx.config.enable_context_verification:
            check = ctx.verify(ctx.source.content, phrase, ctx.target.id)
            if check is not None:
                similarity = check.similarity
                if similarity < ctx.config.min_context_similarity:
                    logger.debug("Phrase %r rejected for %s (context %.2f)", phrase, ctx.target.id, similarity)
                    continue
                confidence *= 0.5 + 0.5 * similarity
        return ctx.assignment(phrase, confidence, MatchReason.PHRASE)
    return None


def keyword_tier(ctx: MatchContext) -> Optional[AnchorAssignment]:
    config = ctx.config
    if not config.enable_keyword_tier:
        return None
    for keyword in ctx.target.keywords:
        word = normalize(keyword)
        if len(word) < config.min_keyword_length or word in config.domain_stopwords:
            continue
        if ctx.in_source_title(word) or not text_exists(word, ctx.source.content):
            continue
        if specificity(word, ctx.source, ctx.target) < config.specificity_ratio:
            continue
        confidence = ctx.score * 0.5
        # Mandatory whenever embeddings are usable, regardless of the verification flag.
        check = ctx.verify(ctx.source.content, word, ctx.target.id)
        if check is not None:
            if not check.measured:
                logger.debug("Keyword %r rejected for %s (context not measurable)", word, ctx.target.id)
                continue
            similarity = check.similarity
            if similarity < config.min_context_similarity:
                logger.debug("Keyword %r rejected for %s (context %.2f)", word, ctx.target.id, similarity)
                continue
            confidence *= 0.5 + 0.5 * similarity
        return ctx.assignment(keyword, confidence, MatchReason.KEYWORD)
    return None


DEFAULT_TIERS: Sequence[Tier] = (title_tier, entity_tier, phrase_tier, keyword_tier)


@dataclass
class MatchResult:
    target: Document
    assignments: List[AnchorAssignment] = field(default_factory=list)
    total_confidence: float = 0.0


class KeywordMatcher:
    def __init__(
        self,
        corpus: Corpus,
        config: LinkerConfig,
        embedder: Optional[Embedder] = None,
        embedding_cache: Optional[EmbeddingCache] = None,
        tiers: Sequence[Tier] = DEFAULT_TIERS,
    ):
        self.corpus = corpus
        self.config = config
        self.embedder = embedder
        self.embedding_cache = embedding_cache
        self.tiers = tuple(tiers)

    def embeddings_usable(self) -> bool:
        return self.embedder is not None and self.embedding_cache is not None and self.embedder.is_ready()

    def context_check(self, content: str, keyword: str, target_id: str) -> Optional[ContextCheck]:
        """Sentence-to-target similarity, or None when embeddings are not usable.

        When the similarity cannot be measured the neutral 0.5 is returned with
        `measured=False`.
        """
        if not self.embeddings_usable():
            return None
        unmeasured = ContextCheck(_NEUTRAL_SIMILARITY, measured=False)
        try:
            context = sentence_context(content, keyword)
            if not context or len(context) < _MIN_CONTEXT_CHARS:
                return unmeasured
            target_vector = self.embedding_cache.get(target_id)
            if target_vector is None:
                return unmeasured
            sentence_vector = self.embedder.generate_embedding(context)
            return ContextCheck(self.embedder.cosine_similarity(sentence_vector, target_vector))
        except Exception as exc:
            logger.warning("Context verification failed for %r: %s", keyword, exc)
            return unmeasured

    def context_similarity(self, content: str, keyword: str, target_id: str) -> Optional[float]:
        check = self.context_check(content, keyword, target_id)
        return check.similarity if check is not None else None

    def find_anchors(self, candidate: CandidateMatch, source: Document) -> List[AnchorAssignment]:
        target = candidate.target
        if target.id == source.id:
            return []
        if normalize(target.title) == normalize(source.title):
            return []
        if titles_overlap(source.title, target.title):
            logger.debug("Title overlap guard rejected %s -> %s", source.id, target.id)
            return []

        ctx = MatchContext(
            source=source,
            target=target,
            score=candidate.combined_score,
            config=self.config,
            corpus=self.corpus,
            verify=self.context_check,
        )
        found: List[AnchorAssignment] = []
        for tier in self.tiers:
            assignment = tier(ctx)
            if assignment is not None:
                found.append(assignment)
                break

        unique: Dict[str, AnchorAssignment] = {}
        for assignment in found:
            key = normalize(assignment.keyword)
            existing = unique.get(key)
            if existing is None or assignment.confidence > existing.confidence:
                unique[key] = assignment
        return sorted(unique.values(), key=lambda a: a.confidence, reverse=True)

    def process_candidates(
        self,
        candidates: Sequence[CandidateMatch],
        source: Document,
        min_confidence: float = 0.3,
    ) -> List[MatchResult]:
        results: List[MatchResult] = []
        for candidate in candidates:
            if candidate.target.id == source.id or candidate.combined_score < min_confidence:
                continue
            assignments = [a for a in self.find_anchors(candidate, source) if a.confidence >= min_confidence]
            if assignments:
                results.append(
                    MatchResult(
                        target=candidate.target,
                        assignments=assignments,
                        total_confidence=candidate.combined_score,
                    )
                )
        results.sort(key=lambda r: r.total_confidence, reverse=True)
        return results

    @staticmethod
    def flatten(results: Sequence[MatchResult], max_per_note: int = 10) -> List[AnchorAssignment]:
        """One claim per keyword across all targets; the highest confidence wins."""
        claimed: Dict[str, AnchorAssignment] = {}
        for result in results:
            for assignment in result.assignments:
                key = normalize(assignment.keyword)
                existing = claimed.get(key)
                if existing is None or assignment.confidence > existing.confidence:
                    claimed[key] = assignment
        ranked = sorted(claimed.values(), key=lambda a: a.confidence, reverse=True)
        return ranked[:max_per_note]

    def statistics(self) -> Dict[str, object]:
        return {
            "total_documents": self.corpus.total_documents,
            "unique_words": len(self.corpus.document_frequency),
            "domain_stopwords": len(self.config.domain_stopwords),
            "tiers": [tier.__name__ for tier in self.tiers],
            "embeddings_usable": self.embeddings_usable(),
        }
