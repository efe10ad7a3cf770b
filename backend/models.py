"""Shared record types for Linkweaver."""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

CORPUS_VERSION = "1.0.0"


class MatchReason(str, Enum):
    TITLE = "title"
    ENTITY = "entity"
    PHRASE = "phrase"
    KEYWORD = "keyword"


class ZoneReason(str, Enum):
    FRONTMATTER = "frontmatter"
    CODEBLOCK = "codeblock"
    INLINECODE = "inlinecode"
    WIKILINK = "wikilink"
    MDLINK = "mdlink"
    URL = "url"
    HEADING = "heading"


class BackupTrigger(str, Enum):
    MANUAL = "manual"
    BATCH_AUTOLINK = "batch-autolink"
    CLEAR_ALL_LINKS = "clear-all-links"
    OTHER = "other"


def _timestamp() -> float:
    return time.time()


def title_from_id(doc_id: str) -> str:
    """`folder/Some Note.md` -> `Some Note`."""
    name = doc_id.replace("\\", "/").rsplit("/", 1)[-1]
    if name.lower().endswith(".md"):
        name = name[:-3]
    return name


def folder_from_id(doc_id: str) -> str:
    parts = doc_id.replace("\\", "/").split("/")
    return "/".join(parts[:-1]) if len(parts) > 1 else ""


@dataclass
class LinkReference:
    """An outbound wikilink found in a document."""

    target_title: str
    target_path: str = ""
    display_text: Optional[str] = None
    line_number: int = 0


@dataclass
class EntityGroups:
    people: List[str] = field(default_factory=list)
    organizations: List[str] = field(default_factory=list)
    places: List[str] = field(default_factory=list)
    acronyms: List[str] = field(default_factory=list)
    technical_terms: List[str] = field(default_factory=list)

    def all(self) -> List[str]:
        """Flatten groups in priority order, first occurrence wins."""
        seen = set()
        out: List[str] = []
        for group in (self.people, self.organizations, self.places, self.acronyms, self.technical_terms):
            for term in group:
                key = term.lower()
                if key in seen:
                    continue
                seen.add(key)
                out.append(term)
        return out

    def is_empty(self) -> bool:
        return not self.all()


@dataclass
class Document:
    """One indexed document of the corpus."""

    id: str
    title: str
    content: str = ""
    clean_text: str = ""
    keywords: List[str] = field(default_factory=list)
    phrases: List[str] = field(default_factory=list)
    entities: EntityGroups = field(default_factory=EntityGroups)
    tags: List[str] = field(default_factory=list)
    headings: List[str] = field(default_factory=list)
    links: List[LinkReference] = field(default_factory=list)
    tfidf_vector: Dict[str, float] = field(default_factory=dict)
    word_frequency: Dict[str, int] = field(default_factory=dict)
    embedding: Optional[List[float]] = None
    last_modified: float = field(default_factory=_timestamp)

    @property
    def folder(self) -> str:
        return folder_from_id(self.id)


@dataclass
class Corpus:
    """All indexed documents plus global term bookkeeping.

    `document_frequency[t]` must always equal the number of documents whose
    `word_frequency` contains `t`.
    """

    documents: Dict[str, Document] = field(default_factory=dict)
    document_frequency: Dict[str, int] = field(default_factory=dict)
    total_documents: int = 0
    last_full_analysis: float = 0.0
    version: str = CORPUS_VERSION

    def reset(self) -> None:
        self.documents.clear()
        self.document_frequency.clear()
        self.total_documents = 0


@dataclass
class CandidateMatch:
    """A scored target for one source document."""

    target: Document
    lexical_score: float = 0.0
    semantic_score: Optional[float] = None
    combined_score: float = 0.0
    matched_keywords: List[str] = field(default_factory=list)
    matched_phrases: List[str] = field(default_factory=list)


@dataclass
class AnchorAssignment:
    keyword: str
    target_id: str
    target_title: str
    confidence: float
    reason: MatchReason


@dataclass
class ProtectedZone:
    start: int
    end: int
    reason: ZoneReason


@dataclass
class Replacement:
    keyword: str
    target_id: str
    target_title: str
    position: int
    length: int
    original_text: str
    replacement_text: str
    confidence: float
    context_before: str = ""
    context_after: str = ""
    reason: Optional[MatchReason] = None


@dataclass
class ReplacementResult:
    original_content: str
    modified_content: str
    replacements: List[Replacement] = field(default_factory=list)
    zones: List[ProtectedZone] = field(default_factory=list)


def normalize_doc_id(doc_id: str) -> str:
    cleaned = (doc_id or "").strip().replace("\\", "/").lstrip("/")
    return os.path.normpath(cleaned).replace("\\", "/") if cleaned else ""
