"""Persistent store for document embeddings.

Layout under the data directory:
- `embeddings.bin`: little-endian float32 rows, one per entry
- `embedding-metadata.json`: model, dimension and per-entry offsets/hashes
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from embedder import model_dimension

logger = logging.getLogger(__name__)

CACHE_VERSION = "1.0.0"
METADATA_FILE = "embedding-metadata.json"
BINARY_FILE = "embeddings.bin"

_FLOAT = np.dtype("<f4")


def content_hash(text: str) -> str:
    return hashlib.sha1((text or "").encode("utf-8")).hexdigest()


class EmbeddingCache:
    def __init__(self, data_dir: Path, model_name: str):
        self.data_dir = Path(data_dir)
        self.model_name = model_name
        self.dimension = model_dimension(model_name)
        self._vectors: Dict[str, np.ndarray] = {}
        self._hashes: Dict[str, str] = {}
        self._generated: Dict[str, float] = {}
        self._dirty = False
        self.last_saved: Optional[float] = None

    @property
    def metadata_path(self) -> Path:
        return self.data_dir / METADATA_FILE

    @property
    def binary_path(self) -> Path:
        return self.data_dir / BINARY_FILE

    def needs_save(self) -> bool:
        return self._dirty

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def load(self) -> None:
        self._reset_memory()
        if not self.metadata_path.exists() or not self.binary_path.exists():
            return

        try:
            metadata = json.loads(self.metadata_path.read_text(encoding="utf-8"))
            payload = np.frombuffer(self.binary_path.read_bytes(), dtype=_FLOAT)
        except (OSError, ValueError) as exc:
            logger.warning("Embedding cache unreadable, starting cold: %s", exc)
            self._reset_memory()
            return

        if not isinstance(metadata, dict) or not isinstance(metadata.get("entries", []), list):
            logger.warning("Embedding cache metadata is malformed, starting cold")
            self.clear()
            return

        stored_dimension = metadata.get("embedding_dimension")
        if (
            metadata.get("version") != CACHE_VERSION
            or metadata.get("model_name") != self.model_name
            or not isinstance(stored_dimension, int)
            or stored_dimension <= 0
        ):
            logger.warning("Embedding cache does not match model %s; discarding", self.model_name)
            self.clear()
            return
        # The loaded model confirms this later through update_model().
        self.dimension = stored_dimension

        skipped = 0
        for entry in metadata.get("entries", []):
            if not isinstance(entry, dict):
                skipped += 1
                continue
            try:
                offset = int(entry["offset"])
                doc_id = str(entry["id"])
            except (KeyError, TypeError, ValueError):
                skipped += 1
                continue
            start = offset // 4
            if offset % 4 or offset < 0 or start + self.dimension > payload.shape[0]:
                skipped += 1
                continue
            self._vectors[doc_id] = payload[start:start + self.dimension].astype(np.float32)
            self._hashes[doc_id] = str(entry.get("content_hash", ""))
            self._generated[doc_id] = float(entry.get("generated_at", 0.0))

        self.last_saved = metadata.get("last_saved")
        # Skipped entries leave the files out of sync with memory; rewrite them.
        self._dirty = skipped > 0
        if skipped:
            logger.warning("Skipped %d corrupt embedding cache entries", skipped)
        logger.info("Loaded %d cached embeddings", len(self._vectors))

    def save(self) -> None:
        if not self._dirty:
            return

        self.data_dir.mkdir(parents=True, exist_ok=True)
        entries: List[Dict[str, object]] = []
        rows: List[np.ndarray] = []
        offset = 0
        for doc_id, vector in self._vectors.items():
            rows.append(np.asarray(vector, dtype=_FLOAT))
            entries.append(
                {
                    "id": doc_id,
                    "content_hash": self._hashes.get(doc_id, ""),
                    "model_version": self.model_name,
                    "generated_at": self._generated.get(doc_id, time.time()),
                    "offset": offset,
                }
            )
            offset += self.dimension * 4

        payload = np.concatenate(rows).astype(_FLOAT) if rows else np.zeros(0, dtype=_FLOAT)
        saved_at = time.time()
        metadata = {
            "version": CACHE_VERSION,
            "model_name": self.model_name,
            "embedding_dimension": self.dimension,
            "total_embeddings": len(entries),
            "last_saved": saved_at,
            "entries": entries,
        }

        binary_tmp = self.binary_path.with_suffix(".bin.tmp")
        metadata_tmp = self.metadata_path.with_suffix(".json.tmp")
        binary_tmp.write_bytes(payload.tobytes())
        metadata_tmp.write_text(json.dumps(metadata, indent=2), encoding="utf-8")
        os.replace(binary_tmp, self.binary_path)
        os.replace(metadata_tmp, self.metadata_path)

        self.last_saved = saved_at
        self._dirty = False
        logger.info("Saved %d embeddings to %s", len(entries), self.data_dir)

    def _reset_memory(self) -> None:
        self._vectors.clear()
        self._hashes.clear()
        self._generated.clear()
        self._dirty = False
        self.last_saved = None

    def clear(self) -> None:
        self._reset_memory()
        for path in (self.metadata_path, self.binary_path):
            try:
                path.unlink()
            except FileNotFoundError:
                pass

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------
    def get(self, doc_id: str) -> Optional[np.ndarray]:
        return self._vectors.get(doc_id)

    def set(self, doc_id: str, vector, hash_value: str) -> None:
        array = np.asarray(vector, dtype=np.float32)
        if array.shape[0] != self.dimension:
            raise ValueError(f"Embedding dimension {array.shape[0]} does not match cache dimension {self.dimension}")
        self._vectors[doc_id] = array
        self._hashes[doc_id] = hash_value
        self._generated[doc_id] = time.time()
        self._dirty = True

    def delete(self, doc_id: str) -> None:
        if doc_id in self._vectors:
            self._vectors.pop(doc_id)
            self._hashes.pop(doc_id, None)
            self._generated.pop(doc_id, None)
            self._dirty = True

    def rename(self, old_id: str, new_id: str) -> None:
        if old_id not in self._vectors or old_id == new_id:
            return
        self._vectors[new_id] = self._vectors.pop(old_id)
        self._hashes[new_id] = self._hashes.pop(old_id, "")
        self._generated[new_id] = self._generated.pop(old_id, time.time())
        self._dirty = True

    def has(self, doc_id: str) -> bool:
        return doc_id in self._vectors

    def is_valid(self, doc_id: str, hash_value: str) -> bool:
        return doc_id in self._vectors and self._hashes.get(doc_id) == hash_value

    def all(self) -> Dict[str, np.ndarray]:
        return dict(self._vectors)

    def ids(self) -> List[str]:
        return list(self._vectors)

    def size(self) -> int:
        return len(self._vectors)

    def update_model(self, model_name: str, dimension: Optional[int] = None) -> None:
        """Switch models; cached vectors from the old model are discarded.

        `dimension` is the size reported by the loaded model. Without it the
        registry value for `model_name` is used.
        """
        dimension = dimension or model_dimension(model_name)
        if model_name == self.model_name and dimension == self.dimension:
            return
        self.clear()
        self.model_name = model_name
        self.dimension = dimension

    def stats(self) -> Dict[str, object]:
        size_bytes = self.binary_path.stat().st_size if self.binary_path.exists() else 0
        return {
            "total_embeddings": len(self._vectors),
            "cache_size_bytes": size_bytes,
            "model_name": self.model_name,
            "embedding_dimension": self.dimension,
            "last_saved": self.last_saved,
        }
