"""
Embedding module for Linkweaver.

Uses sentence-transformers to turn document text into normalized vectors and
FAISS to rank them. The model is resolved from the local Hugging Face cache
first; when downloads are allowed it is fetched file by file with progress.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

import numpy as np

from config import DEFAULT_EMBEDDING_MODEL

logger = logging.getLogger(__name__)

# Known models and their output dimension. Unknown names fall back to 384.
MODEL_REGISTRY: Dict[str, int] = {
    "sentence-transformers/all-MiniLM-L6-v2": 384,
    "sentence-transformers/all-MiniLM-L12-v2": 384,
    "BAAI/bge-small-en-v1.5": 384,
    "sentence-transformers/all-mpnet-base-v2": 768,
}

_FALLBACK_DIMENSION = 384


def model_dimension(model_name: str) -> int:
    name = (model_name or "").strip()
    if name in MODEL_REGISTRY:
        return MODEL_REGISTRY[name]
    short = name.rsplit("/", 1)[-1]
    for known, dim in MODEL_REGISTRY.items():
        if known.rsplit("/", 1)[-1] == short:
            return dim
    return _FALLBACK_DIMENSION


class EmbeddingModelError(RuntimeError):
    """The embedding model could not be resolved or loaded."""


class ModelStatus(str, Enum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass
class ProgressInfo:
    status: ModelStatus
    progress: Optional[float] = None
    loaded: Optional[int] = None
    total: Optional[int] = None
    file: Optional[str] = None
    message: str = ""


@dataclass
class BatchProgressInfo:
    current: int
    total: int
    document_id: str
    eta: Optional[float] = None


class EmbeddingCancelled(RuntimeError):
    """Raised when a batch embedding run is cancelled."""


ProgressCallback = Callable[[ProgressInfo], None]
BatchProgressCallback = Callable[[BatchProgressInfo], None]


def _resolve_hf_snapshot(model_name_or_path: str) -> str:
    """Resolve a HF model id to a local snapshot path (no network).

    If the model is not present locally, this raises.
    """
    name = (model_name_or_path or "").strip()
    if not name:
        raise ValueError("Model name is empty.")
    if os.path.exists(name):
        return name
    try:
        from huggingface_hub import snapshot_download  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"huggingface_hub is required to load '{name}': {exc}") from exc
    try:
        return snapshot_download(repo_id=name, local_files_only=True)
    except Exception as exc:
        raise RuntimeError(
            f"Model '{name}' is not available in the local HF cache. "
            "Download it (with network access) before running."
        ) from exc


class Embedder:
    """Lazy sentence-transformers model with load states and progress."""

    def __init__(
        self,
        model_name: Optional[str] = None,
        max_sequence_length: int = 256,
        batch_size: int = 8,
        allow_download: bool = True,
    ):
        """
        Initialize the embedder.

        Args:
            model_name: Hugging Face model id or local path. Defaults to
                       `LINKWEAVER_EMBED_MODEL` or all-MiniLM-L6-v2.
            max_sequence_length: Token limit; text is cut at four characters per token.
            batch_size: Documents per chunk in `generate_batch_embeddings`.
            allow_download: Fetch the model when it is not cached locally.
        """
        self.model_name = model_name or os.environ.get("LINKWEAVER_EMBED_MODEL") or DEFAULT_EMBEDDING_MODEL
        self.max_sequence_length = max_sequence_length
        self.batch_size = batch_size
        self.allow_download = allow_download
        self.model = None
        self.status = ModelStatus.IDLE
        self.load_error: Optional[str] = None
        self.dimension: Optional[int] = None

    # ------------------------------------------------------------------
    # Model lifecycle
    # ------------------------------------------------------------------
    def is_ready(self) -> bool:
        return self.model is not None and self.status == ModelStatus.READY

    def embedding_dimension(self) -> int:
        """Size reported by the loaded model, or the registry value before loading."""
        return self.dimension or model_dimension(self.model_name)

    def load_model(self, progress_callback: Optional[ProgressCallback] = None) -> None:
        """Resolve, optionally download, and load the model."""

        def report(info: ProgressInfo) -> None:
            if progress_callback:
                progress_callback(info)

        if self.is_ready():
            report(ProgressInfo(status=ModelStatus.READY, progress=100, message="Model already loaded"))
            return

        self.load_error = None
        try:
            self.status = ModelStatus.DOWNLOADING
            report(ProgressInfo(status=self.status, progress=0, message=f"Resolving {self.model_name}..."))
            path = self._resolve_model_path(report)

            self.status = ModelStatus.LOADING
            report(ProgressInfo(status=self.status, progress=90, message="Loading model..."))
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as exc:
                raise RuntimeError(
                    "sentence-transformers is required for embeddings. "
                    f"Install it and ensure model '{self.model_name}' is available. Reason: {exc}"
                ) from exc

            self.model = SentenceTransformer(path)
            reported = self.model.get_sentence_embedding_dimension()
            if not reported:
                reported = len(self.model.encode(["test"], convert_to_numpy=True)[0])
            self.dimension = int(reported)
            self.status = ModelStatus.READY
            logger.info("Embedding model loaded: %s (dimension %d)", self.model_name, self.embedding_dimension())
            report(ProgressInfo(status=self.status, progress=100, message="Model ready"))
        except Exception as exc:
            self.model = None
            self.dimension = None
            self.status = ModelStatus.ERROR
            self.load_error = str(exc)
            logger.warning("Failed to load embedding model '%s': %s", self.model_name, exc)
            report(ProgressInfo(status=self.status, message=f"Failed to load model: {exc}"))
            raise EmbeddingModelError(f"Failed to load sentence-transformers model '{self.model_name}': {exc}") from exc

    def _resolve_model_path(self, report: ProgressCallback) -> str:
        try:
            return _resolve_hf_snapshot(self.model_name)
        except ValueError:
            raise
        except RuntimeError:
            if not self.allow_download:
                raise
        logger.info("Model %s not cached locally; downloading", self.model_name)
        return self._download(report)

    def _download(self, report: ProgressCallback) -> str:
        from huggingface_hub import HfApi, hf_hub_download, snapshot_download  # type: ignore

        info = HfApi().model_info(self.model_name, files_metadata=True)
        files: List[Tuple[str, int]] = [(s.rfilename, int(s.size or 0)) for s in (info.siblings or [])]
        total = sum(size for _, size in files)
        loaded = 0
        for filename, size in files:
            report(
                ProgressInfo(
                    status=ModelStatus.DOWNLOADING,
                    progress=round(10 + (loaded / total * 75 if total else 0)),
                    loaded=loaded,
                    total=total,
                    file=filename,
                    message=f"Downloading {filename}",
                )
            )
            hf_hub_download(repo_id=self.model_name, filename=filename)
            loaded += size

        report(
            ProgressInfo(
                status=ModelStatus.DOWNLOADING,
                progress=85,
                loaded=loaded,
                total=total,
                message=f"Downloaded {len(files)} files ({loaded / (1024 * 1024):.1f} MB)",
            )
        )
        return snapshot_download(repo_id=self.model_name, local_files_only=True)

    def unload_model(self) -> None:
        if self.model is not None:
            logger.info("Unloading embedding model %s", self.model_name)
        self.model = None
        self.status = ModelStatus.IDLE

    def update_config(
        self,
        model_name: Optional[str] = None,
        max_sequence_length: Optional[int] = None,
        batch_size: Optional[int] = None,
    ) -> bool:
        """Apply new settings. Returns True when the model changed and must be reloaded."""
        if max_sequence_length is not None:
            self.max_sequence_length = max_sequence_length
        if batch_size is not None:
            self.batch_size = batch_size
        if model_name and model_name != self.model_name:
            logger.info("Embedding model changed from %s to %s", self.model_name, model_name)
            self.unload_model()
            self.model_name = model_name
            self.dimension = None
            self.load_error = None
            return True
        return False

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------
    def generate_embedding(self, text: str) -> np.ndarray:
        """
        Convert text to a normalized embedding vector.

        Args:
            text: Text to embed; cut to `max_sequence_length * 4` characters.

        Returns:
            float32 numpy vector
        """
        if not self.is_ready():
            raise RuntimeError("Model not loaded. Call load_model() first.")

        max_chars = self.max_sequence_length * 4
        truncated = text[:max_chars] if len(text) > max_chars else text
        try:
            vector = self.model.encode(
                [truncated],
                convert_to_numpy=True,
                normalize_embeddings=True,
                show_progress_bar=False,
            )[0]
        except Exception as exc:
            raise RuntimeError(f"Embedding failed: {exc}") from exc

        vector = np.asarray(vector, dtype=np.float32)
        expected = self.embedding_dimension()
        if vector.shape[0] != expected:
            logger.warning("Unexpected embedding dimension: %d, expected %d", vector.shape[0], expected)
        return vector

    async def generate_batch_embeddings(
        self,
        documents: Iterable[Tuple[str, str]],
        progress_callback: Optional[BatchProgressCallback] = None,
        should_cancel: Optional[Callable[[], bool]] = None,
    ) -> Dict[str, np.ndarray]:
        """Embed `(document_id, text)` pairs, yielding to the loop after each one."""
        if not self.is_ready():
            raise RuntimeError("Model not loaded. Call load_model() first.")

        items = list(documents)
        total = len(items)
        results: Dict[str, np.ndarray] = {}
        started = time.monotonic()
        processed = 0
        logger.info("Starting batch embedding for %d documents", total)

        for offset in range(0, total, max(1, self.batch_size)):
            for doc_id, text in items[offset:offset + self.batch_size]:
                if should_cancel and should_cancel():
                    logger.info("Batch embedding cancelled after %d documents", processed)
                    raise EmbeddingCancelled("Cancelled by user")
                if not text or not text.strip():
                    logger.debug("Skipping empty document: %s", doc_id)
                    continue
                try:
                    results[doc_id] = self.generate_embedding(text)
                except Exception:
                    logger.exception("Failed to embed %s", doc_id)
                    continue

                processed += 1
                elapsed = time.monotonic() - started
                rate = processed / elapsed if elapsed > 0 else 0.0
                eta = (total - processed) / rate if rate > 0 else None
                if progress_callback:
                    progress_callback(
                        BatchProgressInfo(
                            current=processed,
                            total=total,
                            document_id=doc_id,
                            eta=round(eta) if eta is not None else None,
                        )
                    )
                await asyncio.sleep(0)

        logger.info(
            "Batch embedding complete: %d/%d documents in %.1fs",
            len(results),
            total,
            time.monotonic() - started,
        )
        return results

    # ------------------------------------------------------------------
    # Similarity
    # ------------------------------------------------------------------
    @staticmethod
    def cosine_similarity(vec1, vec2) -> float:
        """Dot product of two pre-normalized vectors."""
        a = np.asarray(vec1, dtype=np.float32)
        b = np.asarray(vec2, dtype=np.float32)
        if a.shape[0] != b.shape[0]:
            raise ValueError(f"Vector dimensions don't match: {a.shape[0]} vs {b.shape[0]}")
        return float(np.dot(a, b))

    def find_similar(
        self,
        source,
        embeddings: Dict[str, np.ndarray],
        top_k: int,
        exclude: Optional[Set[str]] = None,
    ) -> List[Tuple[str, float]]:
        """Top-k ids by inner product, highest first."""
        exclude = exclude or set()
        ids = [doc_id for doc_id in embeddings if doc_id not in exclude]
        if not ids or top_k <= 0:
            return []

        query = np.asarray(source, dtype=np.float32).reshape(1, -1)
        matrix = np.vstack([np.asarray(embeddings[doc_id], dtype=np.float32) for doc_id in ids])
        if matrix.shape[1] != query.shape[1]:
            raise ValueError(f"Vector dimensions don't match: {query.shape[1]} vs {matrix.shape[1]}")

        try:
            import faiss
        except ImportError as exc:
            raise RuntimeError("FAISS not installed. Install with: pip install faiss-cpu") from exc

        index = faiss.IndexFlatIP(matrix.shape[1])
        index.add(np.ascontiguousarray(matrix))
        scores, positions = index.search(np.ascontiguousarray(query), min(top_k, len(ids)))

        results = []
        for score, position in zip(scores[0], positions[0]):
            if position < 0:
                continue
            results.append((ids[int(position)], float(score)))
        results.sort(key=lambda item: item[1], reverse=True)
        return results
