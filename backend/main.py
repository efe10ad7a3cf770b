"""FastAPI entrypoint for the Linkweaver backend."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from api_models import (
    AnchorPreviewPayload,
    BackupPayload,
    BackupsResponsePayload,
    BatchRequest,
    BatchSummaryPayload,
    DocumentRequest,
    EmbeddingGenerateResponsePayload,
    LinkCleanSummaryPayload,
    RenameDocumentRequest,
    RestoreRecordPayload,
    RestoreResponsePayload,
    SimilarHitPayload,
    SimilarResponsePayload,
    StatsResponsePayload,
    SuggestionPayload,
    SuggestionsResponsePayload,
)
from config import LinkerConfig
from services import LinkService

logging.basicConfig(
    level=os.environ.get("LINKWEAVER_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Linkweaver Backend", description="Document relevance and anchor-link API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_service: Optional[LinkService] = None


def get_service() -> LinkService:
    global _service
    if _service is None:
        _service = LinkService(LinkerConfig.from_env())
    return _service


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, FileNotFoundError):
        return HTTPException(status_code=404, detail=str(exc) or "Document not found")
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    logger.exception("Request failed")
    return HTTPException(status_code=500, detail=str(exc))


@app.get("/", tags=["health"])
async def root():
    return {"status": "ok", "message": "Linkweaver backend is running"}


@app.get("/health", tags=["health"])
async def health():
    return {"status": "ok", "message": "Linkweaver backend is running"}


@app.get("/stats", response_model=StatsResponsePayload, tags=["health"])
async def stats():
    try:
        return StatsResponsePayload(stats=await asyncio.to_thread(get_service().stats))
    except Exception as exc:
        raise _http_error(exc)


# Indexing

@app.post("/analyze", tags=["index"])
async def analyze():
    try:
        summary = await asyncio.to_thread(get_service().analyze)
        return {"success": True, **summary}
    except Exception as exc:
        raise _http_error(exc)


@app.post("/documents/refresh", tags=["index"])
async def refresh_document(request: DocumentRequest):
    try:
        doc = await asyncio.to_thread(get_service().refresh_document, request.doc_id)
        return {"success": True, "doc_id": request.doc_id, "indexed": doc is not None}
    except Exception as exc:
        raise _http_error(exc)


@app.post("/documents/remove", tags=["index"])
async def remove_document(request: DocumentRequest):
    try:
        removed = await asyncio.to_thread(get_service().remove_document, request.doc_id)
        return {"success": True, "doc_id": request.doc_id, "removed": removed}
    except Exception as exc:
        raise _http_error(exc)


@app.post("/documents/rename", tags=["index"])
async def rename_document(request: RenameDocumentRequest):
    try:
        renamed = await asyncio.to_thread(get_service().rename_document, request.old_id, request.new_id)
    except Exception as exc:
        raise _http_error(exc)
    if not renamed:
        raise HTTPException(status_code=404, detail=f"Document not indexed: {request.old_id}")
    return {"success": True, "doc_id": request.new_id}


# Similarity

@app.get("/similar/{doc_id:path}", response_model=SimilarResponsePayload, tags=["similarity"])
async def similar(doc_id: str, max_results: Optional[int] = None):
    try:
        hits = await asyncio.to_thread(get_service().similar, doc_id, max_results)
        return SimilarResponsePayload(doc_id=doc_id, results=[SimilarHitPayload.from_candidate(h) for h in hits])
    except Exception as exc:
        raise _http_error(exc)


@app.get("/suggestions/{doc_id:path}", response_model=SuggestionsResponsePayload, tags=["similarity"])
async def suggestions(doc_id: str, content: Optional[str] = None):
    try:
        found = await asyncio.to_thread(get_service().suggestions, doc_id, content)
        return SuggestionsResponsePayload(
            doc_id=doc_id,
            suggestions=[SuggestionPayload.from_suggestion(s) for s in found],
        )
    except Exception as exc:
        raise _http_error(exc)


@app.get("/anchors/{doc_id:path}", response_model=AnchorPreviewPayload, tags=["similarity"])
async def anchors(doc_id: str):
    try:
        result = await asyncio.to_thread(get_service().anchor_preview, doc_id)
        return AnchorPreviewPayload.from_result(doc_id, result)
    except Exception as exc:
        raise _http_error(exc)


# Batch

@app.post("/batch/preview", response_model=BatchSummaryPayload, tags=["batch"])
async def batch_preview(request: BatchRequest = BatchRequest()):
    try:
        summary = await get_service().batch_preview(request.min_confidence, request.max_links_per_note)
        return BatchSummaryPayload.from_summary(summary)
    except Exception as exc:
        raise _http_error(exc)


@app.post("/batch/apply", response_model=BatchSummaryPayload, tags=["batch"])
async def batch_apply(request: BatchRequest = BatchRequest()):
    try:
        summary = await get_service().batch_apply(request.min_confidence, request.max_links_per_note)
        return BatchSummaryPayload.from_summary(summary)
    except Exception as exc:
        raise _http_error(exc)


@app.post("/batch/cancel", tags=["batch"])
async def batch_cancel():
    get_service().batch_cancel()
    return {"success": True}


# Backups

@app.get("/backups", response_model=BackupsResponsePayload, tags=["backups"])
async def backups():
    try:
        infos = await asyncio.to_thread(get_service().backups.available_backups)
        return BackupsResponsePayload(backups=[BackupPayload.from_info(i) for i in infos])
    except Exception as exc:
        raise _http_error(exc)


@app.get("/backups/stats", tags=["backups"])
async def backup_stats():
    try:
        return await asyncio.to_thread(get_service().backups.stats)
    except Exception as exc:
        raise _http_error(exc)


@app.post("/backups/{backup_id}/restore", response_model=RestoreResponsePayload, tags=["backups"])
async def restore_backup(backup_id: str):
    service = get_service()
    if service.backups.backup_details(backup_id) is None:
        raise HTTPException(status_code=404, detail=f"Backup not found: {backup_id}")
    try:
        restored, errors = await asyncio.to_thread(service.restore_backup, backup_id)
        return RestoreResponsePayload(
            success=not errors, backup_id=backup_id, notes_restored=restored, errors=errors
        )
    except Exception as exc:
        raise _http_error(exc)


@app.get("/restore-history", tags=["backups"])
async def restore_history():
    try:
        history = await asyncio.to_thread(get_service().backups.restore_history)
        return {"restores": [RestoreRecordPayload.from_record(r) for r in history]}
    except Exception as exc:
        raise _http_error(exc)


# Link cleaning

@app.post("/links/clear/preview", response_model=LinkCleanSummaryPayload, tags=["links"])
async def clear_links_preview():
    try:
        summary = await get_service().clear_links_preview()
        return LinkCleanSummaryPayload.from_summary(summary)
    except Exception as exc:
        raise _http_error(exc)


@app.post("/links/clear", response_model=LinkCleanSummaryPayload, tags=["links"])
async def clear_links():
    try:
        summary = await get_service().clear_links_apply()
        return LinkCleanSummaryPayload.from_summary(summary)
    except Exception as exc:
        raise _http_error(exc)


# Embeddings

@app.post("/embeddings/load", tags=["embeddings"])
async def load_embeddings():
    service = get_service()
    try:
        await asyncio.to_thread(service.load_embedding_model)
        return {"success": True, **service.embedding_status()}
    except Exception as exc:
        raise _http_error(exc)


@app.post("/embeddings/generate", response_model=EmbeddingGenerateResponsePayload, tags=["embeddings"])
async def generate_embeddings():
    try:
        counts = await get_service().generate_embeddings()
        return EmbeddingGenerateResponsePayload(**counts)
    except Exception as exc:
        raise _http_error(exc)


@app.get("/embeddings/status", tags=["embeddings"])
async def embeddings_status():
    return get_service().embedding_status()


if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=int(os.environ.get("LINKWEAVER_PORT", "8000")))
