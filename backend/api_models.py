"""API payloads for the Linkweaver backend."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from backup_manager import BackupInfo, RestoreRecord
from batch_linker import BatchNoteResult, BatchSummary
from link_cleaner import LinkCleanSummary
from link_discovery import LinkSuggestion
from models import CandidateMatch, Replacement, ReplacementResult


# Requests

class DocumentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    doc_id: str = Field(alias="doc_id")


class RenameDocumentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    old_id: str
    new_id: str


class BatchRequest(BaseModel):
    min_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_links_per_note: Optional[int] = Field(default=None, ge=1)


# Responses

class SimilarHitPayload(BaseModel):
    target: str
    title: str
    lexical_score: float
    semantic_score: Optional[float] = None
    combined_score: float
    matched_keywords: List[str] = Field(default_factory=list)
    matched_phrases: List[str] = Field(default_factory=list)

    @classmethod
    def from_candidate(cls, candidate: CandidateMatch) -> "SimilarHitPayload":
        return cls(
            target=candidate.target.id,
            title=candidate.target.title,
            lexical_score=candidate.lexical_score,
            semantic_score=candidate.semantic_score,
            combined_score=candidate.combined_score,
            matched_keywords=candidate.matched_keywords,
            matched_phrases=candidate.matched_phrases,
        )


class SimilarResponsePayload(BaseModel):
    doc_id: str
    results: List[SimilarHitPayload] = Field(default_factory=list)


class SuggestionPayload(BaseModel):
    id: str
    source: str
    target: str
    target_title: str
    lexical_score: float
    semantic_score: Optional[float] = None
    combined_score: float
    matched_keywords: List[str] = Field(default_factory=list)
    matched_phrases: List[str] = Field(default_factory=list)
    explanation: str = ""
    content_preview: str = ""
    target_folder: str = ""
    target_tags: List[str] = Field(default_factory=list)
    status: str = "pending"
    created_at: int = 0

    @classmethod
    def from_suggestion(cls, suggestion: LinkSuggestion) -> "SuggestionPayload":
        return cls(**asdict(suggestion))


class SuggestionsResponsePayload(BaseModel):
    doc_id: str
    suggestions: List[SuggestionPayload] = Field(default_factory=list)


class ReplacementPayload(BaseModel):
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
    reason: Optional[str] = None

    @classmethod
    def from_replacement(cls, replacement: Replacement) -> "ReplacementPayload":
        payload = asdict(replacement)
        if replacement.reason is not None:
            payload["reason"] = replacement.reason.value
        return cls(**payload)


class AnchorPreviewPayload(BaseModel):
    doc_id: str
    modified_content: str
    replacements: List[ReplacementPayload] = Field(default_factory=list)
    protected_zones: int = 0

    @classmethod
    def from_result(cls, doc_id: str, result: ReplacementResult) -> "AnchorPreviewPayload":
        return cls(
            doc_id=doc_id,
            modified_content=result.modified_content,
            replacements=[ReplacementPayload.from_replacement(r) for r in result.replacements],
            protected_zones=len(result.zones),
        )


class BatchNotePayload(BaseModel):
    doc_id: str
    title: str
    links_added: int
    replacements: List[ReplacementPayload] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: BatchNoteResult) -> "BatchNotePayload":
        return cls(
            doc_id=result.doc_id,
            title=result.title,
            links_added=len(result.replacements),
            replacements=[ReplacementPayload.from_replacement(r) for r in result.replacements],
        )


class BatchSummaryPayload(BaseModel):
    total_processed: int
    notes_with_changes: int
    total_links_added: int
    errors: List[str] = Field(default_factory=list)
    results: List[BatchNotePayload] = Field(default_factory=list)
    backup_id: Optional[str] = None

    @classmethod
    def from_summary(cls, summary: BatchSummary) -> "BatchSummaryPayload":
        return cls(
            total_processed=summary.total_processed,
            notes_with_changes=summary.notes_with_changes,
            total_links_added=summary.total_links_added,
            errors=summary.errors,
            results=[BatchNotePayload.from_result(r) for r in summary.results],
            backup_id=summary.backup_id,
        )


class LinkCleanSummaryPayload(BaseModel):
    total_processed: int
    notes_with_changes: int
    total_links_removed: int
    cleaned_count: int = 0
    documents: Dict[str, int] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)
    backup_id: Optional[str] = None

    @classmethod
    def from_summary(cls, summary: LinkCleanSummary) -> "LinkCleanSummaryPayload":
        return cls(
            total_processed=summary.total_processed,
            notes_with_changes=summary.notes_with_changes,
            total_links_removed=summary.total_links_removed,
            cleaned_count=summary.cleaned_count,
            documents={r.document_id: r.links_removed for r in summary.results},
            errors=summary.errors,
            backup_id=summary.backup_id,
        )


class BackupPayload(BaseModel):
    id: str
    timestamp: float
    note_count: int
    links_added: int
    links_removed: int
    description: str
    triggered_by: str
    note_paths: List[str] = Field(default_factory=list)
    has_data: bool = True

    @classmethod
    def from_info(cls, info: BackupInfo) -> "BackupPayload":
        m = info.manifest
        return cls(
            id=m.id,
            timestamp=m.timestamp,
            note_count=m.note_count,
            links_added=m.links_added,
            links_removed=m.links_removed,
            description=m.description,
            triggered_by=m.triggered_by,
            note_paths=m.note_paths,
            has_data=info.has_data,
        )


class BackupsResponsePayload(BaseModel):
    backups: List[BackupPayload] = Field(default_factory=list)


class RestoreRecordPayload(BaseModel):
    id: str
    backup_id: str
    timestamp: float
    notes_restored: int
    notes_attempted: int
    errors: List[str] = Field(default_factory=list)
    duration: float = 0.0

    @classmethod
    def from_record(cls, record: RestoreRecord) -> "RestoreRecordPayload":
        return cls(**asdict(record))


class RestoreResponsePayload(BaseModel):
    success: bool
    backup_id: str
    notes_restored: int
    errors: List[str] = Field(default_factory=list)


class EmbeddingGenerateResponsePayload(BaseModel):
    generated: int
    skipped: int


class StatsResponsePayload(BaseModel):
    stats: Dict[str, Any]
