"""Filesystem-backed access to the Markdown vault."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from models import normalize_doc_id


class VaultStore:
    """Reads and writes `.md` documents addressed by vault-relative ids."""

    def __init__(self, root: Path, data_dir: Optional[Path] = None):
        base_dir = Path(root)
        base_dir.mkdir(parents=True, exist_ok=True)
        self.root = base_dir.resolve()
        self.data_dir = Path(data_dir).resolve() if data_dir else None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def list_documents(self) -> List[str]:
        ids: List[str] = []
        for path in self.root.rglob("*.md"):
            if self._is_hidden(path):
                continue
            ids.append(path.relative_to(self.root).as_posix())
        ids.sort()
        return ids

    def exists(self, doc_id: str) -> bool:
        return self._path_for(doc_id).is_file()

    def read(self, doc_id: str) -> str:
        path = self._path_for(doc_id)
        if not path.is_file():
            raise FileNotFoundError(f"Document not found: {doc_id}")
        with open(path, "r", encoding="utf-8") as handle:
            return handle.read()

    def write(self, doc_id: str, content: str) -> None:
        path = self._path_for(doc_id)
        if not path.is_file():
            raise FileNotFoundError(f"Document not found: {doc_id}")
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(content)

    def create(self, doc_id: str, content: str) -> None:
        """Write a document, creating missing parent folders."""
        path = self._path_for(doc_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(content)

    def delete(self, doc_id: str) -> None:
        path = self._path_for(doc_id)
        if not path.is_file():
            raise FileNotFoundError(f"Document not found: {doc_id}")
        path.unlink()

    def modified_time(self, doc_id: str) -> float:
        path = self._path_for(doc_id)
        if not path.is_file():
            raise FileNotFoundError(f"Document not found: {doc_id}")
        return path.stat().st_mtime

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _path_for(self, doc_id: str) -> Path:
        normalized = normalize_doc_id(doc_id)
        if not normalized or normalized.startswith(".."):
            raise ValueError(f"Invalid document id: {doc_id!r}")
        path = (self.root / normalized).resolve()
        if self.root not in path.parents:
            raise ValueError(f"Document id escapes the vault: {doc_id!r}")
        return path

    def _is_hidden(self, path: Path) -> bool:
        if self.data_dir is not None and (path == self.data_dir or self.data_dir in path.parents):
            return True
        relative = path.relative_to(self.root)
        return any(part.startswith(".") for part in relative.parts)
