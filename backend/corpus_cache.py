"""JSON persistence for the corpus index."""

import json
import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional

from models import CORPUS_VERSION, Corpus, Document, EntityGroups, LinkReference

logger = logging.getLogger(__name__)

CACHE_FILE = "cache.json"


def _document_to_dict(doc: Document) -> Dict[str, Any]:
    payload = asdict(doc)
    # Embeddings live in the embedding cache, not here.
    payload.pop("embedding", None)
    return payload


def _document_from_dict(raw: Dict[str, Any]) -> Document:
    return Document(
        id=raw["id"],
        title=raw.get("title", ""),
        content=raw.get("content", ""),
        clean_text=raw.get("clean_text", ""),
        keywords=list(raw.get("keywords", [])),
        phrases=list(raw.get("phrases", [])),
        entities=EntityGroups(**raw.get("entities", {})),
        tags=list(raw.get("tags", [])),
        headings=list(raw.get("headings", [])),
        links=[LinkReference(**link) for link in raw.get("links", [])],
        tfidf_vector={k: float(v) for k, v in raw.get("tfidf_vector", {}).items()},
        word_frequency={k: int(v) for k, v in raw.get("word_frequency", {}).items()},
        last_modified=float(raw.get("last_modified", 0.0)),
    )


class CorpusCache:
    """Saves and restores a `Corpus` as `cache.json` under the data directory."""

    def __init__(self, data_dir: Path):
        self.path = Path(data_dir) / CACHE_FILE

    def save(self, corpus: Corpus) -> None:
        payload = {
            "version": corpus.version,
            "total_documents": corpus.total_documents,
            "last_full_analysis": corpus.last_full_analysis,
            "document_frequency": corpus.document_frequency,
            "documents": [_document_to_dict(doc) for doc in corpus.documents.values()],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
        os.replace(tmp_path, self.path)
        logger.info("Saved corpus cache with %d documents", len(corpus.documents))

    def load(self) -> Optional[Corpus]:
        if not self.path.exists():
            logger.info("No corpus cache found, starting fresh")
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                raw = json.load(handle)
            if raw.get("version") != CORPUS_VERSION:
                logger.warning("Ignoring corpus cache with version %s", raw.get("version"))
                return None
            documents = [_document_from_dict(item) for item in raw.get("documents", [])]
            corpus = Corpus(
                documents={doc.id: doc for doc in documents},
                document_frequency={k: int(v) for k, v in raw.get("document_frequency", {}).items()},
                total_documents=int(raw.get("total_documents", len(documents))),
                last_full_analysis=float(raw.get("last_full_analysis", 0.0)),
            )
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning("Failed to load corpus cache: %s", exc)
            return None
        logger.info("Loaded corpus cache with %d documents", corpus.total_documents)
        return corpus

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.info("Corpus cache cleared")

    def stats(self) -> Dict[str, Any]:
        exists = self.path.exists()
        return {
            "path": str(self.path),
            "exists": exists,
            "size_bytes": self.path.stat().st_size if exists else 0,
        }
