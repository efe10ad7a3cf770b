"""Keyword, phrase and named-entity extraction.

Keywords and word frequencies are plain frequency counts over a stopword-filtered
token stream. Named entities come from spaCy NER when a model is installed
(`LINKWEAVER_SPACY_MODEL`, default `en_core_web_sm`); acronyms and technical
terms are always pattern based.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from collections import Counter
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from models import EntityGroups
from ngrams import NGramExtractor

logger = logging.getLogger(__name__)

ENGLISH_STOPWORDS: FrozenSet[str] = frozenset(
    """
    a about above after again against all am an and any are aren't as at be because been
    before being below between both but by can't cannot could couldn't did didn't do does
    doesn't doing don't down during each few for from further had hadn't has hasn't have
    haven't having he he'd he'll he's her here here's hers herself him himself his how how's
    i i'd i'll i'm i've if in into is isn't it it's its itself let's me more most mustn't my
    myself no nor not of off on once only or other ought our ours ourselves out over own same
    shan't she she'd she'll she's should shouldn't so some such than that that's the their
    theirs them themselves then there there's these they they'd they'll they're they've this
    those through to too under until up very was wasn't we we'd we'll we're we've were
    weren't what what's when when's where where's which while who who's whom why why's with
    won't would wouldn't you you'd you'll you're you've your yours yourself yourselves
    """.split()
)

_PUNCT_RE = re.compile(r"[^\w\s-]")
_NORMALIZE_RE = re.compile(r"[^\w-]")

_ACRONYM_RE = re.compile(r"\b[A-Z][A-Z0-9]{1,5}s?\b")
_ROMAN_RE = re.compile(r"^[IVXLCDM]+$")
_CAMEL_RE = re.compile(r"\b[a-z]+(?:[A-Z][a-z0-9]+)+\b|\b[A-Z][a-z0-9]+(?:[A-Z][a-z0-9]+)+\b")
_SNAKE_RE = re.compile(r"\b[a-z][a-z0-9]*(?:_[a-z0-9]+)+\b")
_DOTTED_RE = re.compile(r"\b[A-Za-z][A-Za-z0-9]*\.(?:js|py|io|net|ts|rs|go)\b")
_ALNUM_RE = re.compile(r"\b[A-Za-z]+[0-9]+[A-Za-z0-9]*\b|\b[A-Za-z]{1,4}v[0-9]+\b")
_CAPITALIZED_SEQ_RE = re.compile(r"\b[A-Z][a-z]+(?:\s+(?:of\s+|the\s+|and\s+)?[A-Z][a-z]+)+\b")

_ORG_SUFFIXES = (
    "inc", "corp", "corporation", "company", "university", "institute", "foundation",
    "labs", "lab", "group", "association", "society", "agency", "college", "bank", "ltd",
)

_NER_LABELS = {
    "PERSON": "people",
    "ORG": "organizations",
    "GPE": "places",
    "LOC": "places",
    "FAC": "places",
}

_MAX_PER_GROUP = 20

_SPACY_NLP = None
_SPACY_LOCK = threading.Lock()


class SpacyModelUnavailable(RuntimeError):
    """The spaCy package is installed but the configured model is not."""


def _load_spacy() -> object:
    """Load spaCy model lazily. Raises if unavailable."""
    global _SPACY_NLP
    with _SPACY_LOCK:
        if _SPACY_NLP is not None:
            return _SPACY_NLP
        try:
            import spacy  # type: ignore
        except ImportError as exc:
            raise RuntimeError(
                "spaCy is required for entity extraction. Install it or set LINKWEAVER_ENABLE_NER=0."
            ) from exc

        model_name = os.environ.get("LINKWEAVER_SPACY_MODEL", "en_core_web_sm").strip() or "en_core_web_sm"
        try:
            _SPACY_NLP = spacy.load(model_name, disable=["lemmatizer"])
        except OSError as exc:
            raise SpacyModelUnavailable(
                f"spaCy model '{model_name}' is unavailable. Install it to use NER-based entities."
            ) from exc
        return _SPACY_NLP


def _dedupe(items: Iterable[str], limit: int = _MAX_PER_GROUP) -> List[str]:
    seen: Set[str] = set()
    out: List[str] = []
    for item in items:
        cleaned = " ".join(item.split()).strip(" .,;:")
        key = cleaned.lower()
        if len(cleaned) < 2 or key in seen:
            continue
        seen.add(key)
        out.append(cleaned)
        if len(out) >= limit:
            break
    return out


class NLPProcessor:
    def __init__(self, enable_ner: bool = True, stopwords: Optional[FrozenSet[str]] = None):
        self.enable_ner = enable_ner
        self.stopwords = stopwords or ENGLISH_STOPWORDS
        self._phrases = NGramExtractor(min_frequency=1)
        self._fallback_warned = False

    def tokenize(self, text: str) -> List[str]:
        return [t for t in _PUNCT_RE.sub(" ", (text or "").lower()).split() if t]

    def normalize(self, word: str) -> str:
        return _NORMALIZE_RE.sub("", (word or "").lower()).strip()

    def is_stopword(self, word: str) -> bool:
        return (word or "").lower() in self.stopwords

    def word_frequency(self, text: str) -> Dict[str, int]:
        """Count non-stopword tokens of two characters or more."""
        counts: Dict[str, int] = {}
        for token in self.tokenize(text):
            if token in self.stopwords or len(token) < 2:
                continue
            counts[token] = counts.get(token, 0) + 1
        return counts

    def extract_keywords(self, text: str, top_n: int = 20) -> List[str]:
        counts = Counter(t for t in self.tokenize(text) if t not in self.stopwords and len(t) > 2)
        return [word for word, _ in counts.most_common(top_n)]

    def extract_phrases(self, text: str, top_n: int = 20) -> List[str]:
        return self._phrases.top_phrases(text, top_n=top_n)

    def unique_terms(self, text: str) -> Set[str]:
        return {t for t in self.tokenize(text) if t not in self.stopwords and len(t) > 2}

    def jaccard_similarity(self, text1: str, text2: str) -> float:
        terms1 = self.unique_terms(text1)
        terms2 = self.unique_terms(text2)
        union = terms1 | terms2
        return len(terms1 & terms2) / len(union) if union else 0.0

    def term_frequency(self, term: str, document: str) -> float:
        tokens = self.tokenize(document)
        if not tokens:
            return 0.0
        return tokens.count(term.lower()) / len(tokens)

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------
    def extract_entities(self, text: str) -> EntityGroups:
        groups: Dict[str, List[str]] = {
            "people": [],
            "organizations": [],
            "places": [],
        }
        if text and self.enable_ner:
            try:
                self._ner_entities(text, groups)
            except SpacyModelUnavailable as exc:
                if not self._fallback_warned:
                    logger.warning("%s Falling back to capitalisation heuristics.", exc)
                    self._fallback_warned = True
                self._heuristic_entities(text, groups)

        return EntityGroups(
            people=_dedupe(groups["people"]),
            organizations=_dedupe(groups["organizations"]),
            places=_dedupe(groups["places"]),
            acronyms=_dedupe(self._acronyms(text or "")),
            technical_terms=_dedupe(self._technical_terms(text or "")),
        )

    def _ner_entities(self, text: str, groups: Dict[str, List[str]]) -> None:
        nlp = _load_spacy()
        try:
            doc = nlp(text)  # type: ignore[operator]
        except Exception as exc:
            raise RuntimeError(f"spaCy parse failed: {exc}") from exc
        for ent in getattr(doc, "ents", []):
            group = _NER_LABELS.get(getattr(ent, "label_", ""))
            if group:
                groups[group].append(str(ent.text))

    def _heuristic_entities(self, text: str, groups: Dict[str, List[str]]) -> None:
        for match in _CAPITALIZED_SEQ_RE.finditer(text):
            surface = match.group(0)
            last = surface.split()[-1].lower()
            first = surface.split()[0].lower()
            if first in self.stopwords:
                continue
            if last in _ORG_SUFFIXES or first in _ORG_SUFFIXES:
                groups["organizations"].append(surface)
            elif len(surface.split()) == 2:
                groups["people"].append(surface)
            else:
                groups["organizations"].append(surface)

    def _acronyms(self, text: str) -> List[str]:
        out = []
        for match in _ACRONYM_RE.finditer(text):
            token = match.group(0)
            bare = token[:-1] if token.endswith("s") else token
            if _ROMAN_RE.match(bare) or bare.isdigit():
                continue
            out.append(bare)
        return out

    def _technical_terms(self, text: str) -> List[str]:
        found: List[tuple] = []
        for pattern in (_CAMEL_RE, _SNAKE_RE, _DOTTED_RE, _ALNUM_RE):
            for match in pattern.finditer(text):
                found.append((match.start(), match.group(0)))
        found.sort(key=lambda item: item[0])
        return [term for _, term in found if not _ACRONYM_RE.fullmatch(term)]
