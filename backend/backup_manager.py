"""Snapshots of document content taken before bulk edits, and their restore."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from models import BackupTrigger, title_from_id
from vault_store import VaultStore

logger = logging.getLogger(__name__)

BACKUP_FORMAT_VERSION = "1.0.0"
MAX_BACKUPS = 5
MAX_RESTORE_RECORDS = 20
MAX_RESTORE_ERRORS = 10

RestoreProgress = Callable[[int, int, str], None]


class BackupError(RuntimeError):
    """A backup could not be written, read or restored."""


@dataclass
class BackupEntry:
    path: str
    content: str
    links_added: int = 0


@dataclass
class BackupNoteDetail:
    path: str
    title: str
    links_added: int
    content_length: int


@dataclass
class BackupManifest:
    id: str
    timestamp: float
    note_count: int
    links_added: int
    note_paths: List[str]
    description: str = ""
    note_details: List[BackupNoteDetail] = field(default_factory=list)
    triggered_by: str = BackupTrigger.BATCH_AUTOLINK.value
    links_removed: int = 0
    version: str = BACKUP_FORMAT_VERSION

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "BackupManifest":
        return cls(
            id=raw["id"],
            timestamp=float(raw.get("timestamp", 0)),
            note_count=int(raw.get("note_count", 0)),
            links_added=int(raw.get("links_added", 0)),
            note_paths=list(raw.get("note_paths", [])),
            description=raw.get("description", ""),
            note_details=[BackupNoteDetail(**d) for d in raw.get("note_details", [])],
            triggered_by=raw.get("triggered_by", BackupTrigger.OTHER.value),
            links_removed=int(raw.get("links_removed", 0)),
            version=raw.get("version", BACKUP_FORMAT_VERSION),
        )


@dataclass
class BackupInfo:
    manifest: BackupManifest
    has_data: bool


@dataclass
class RestoreRecord:
    id: str
    backup_id: str
    timestamp: float
    notes_restored: int
    notes_attempted: int
    errors: List[str] = field(default_factory=list)
    duration: float = 0.0


def _millis() -> int:
    return int(time.time() * 1000)


class BackupManager:
    def __init__(self, backup_dir: Path, store: VaultStore):
        self.backup_dir = Path(backup_dir)
        self.store = store
        self._restore_history: Optional[List[RestoreRecord]] = None

    @property
    def manifest_path(self) -> Path:
        return self.backup_dir / "manifest.json"

    @property
    def history_path(self) -> Path:
        return self.backup_dir / "restore-history.json"

    def data_path(self, backup_id: str) -> Path:
        return self.backup_dir / f"{backup_id}.json"

    # ------------------------------------------------------------------
    # Manifests
    # ------------------------------------------------------------------
    def load_manifests(self) -> List[BackupManifest]:
        if not self.manifest_path.exists():
            return []
        try:
            with open(self.manifest_path, "r", encoding="utf-8") as handle:
                raw = json.load(handle)
            return [BackupManifest.from_dict(item) for item in raw.get("backups", [])]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.error("Failed to load backup manifests: %s", exc)
            return []

    def _save_manifests(self, manifests: Sequence[BackupManifest]) -> None:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        with open(self.manifest_path, "w", encoding="utf-8") as handle:
            json.dump({"backups": [asdict(m) for m in manifests]}, handle, indent=2)

    def _new_backup_id(self) -> str:
        stamp = _millis()
        while self.data_path(f"backup-{stamp}").exists():
            stamp += 1
        return f"backup-{stamp}"

    def create_backup(
        self,
        entries: Sequence[Tuple[str, str, int]],
        links_added: int,
        description: Optional[str] = None,
        triggered_by: BackupTrigger = BackupTrigger.BATCH_AUTOLINK,
        links_removed: int = 0,
    ) -> BackupManifest:
        """Snapshot `(path, content, links_added)` entries. Raises BackupError on failure."""
        if not entries:
            raise BackupError("No documents to back up")

        notes = [BackupEntry(path=p, content=c, links_added=n) for p, c, n in entries]
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackupError(f"Failed to create backup folder: {exc}") from exc

        backup_id = self._new_backup_id()
        manifest = BackupManifest(
            id=backup_id,
            timestamp=_millis(),
            note_count=len(notes),
            links_added=links_added,
            links_removed=links_removed,
            note_paths=[n.path for n in notes],
            description=description or f"Batch auto-link: {links_added} links added to {len(notes)} notes",
            note_details=[
                BackupNoteDetail(
                    path=n.path,
                    title=title_from_id(n.path),
                    links_added=n.links_added,
                    content_length=len(n.content),
                )
                for n in notes
            ],
            triggered_by=BackupTrigger(triggered_by).value,
        )

        path = self.data_path(backup_id)
        try:
            with open(path, "w", encoding="utf-8") as handle:
                json.dump({"manifest": asdict(manifest), "notes": [asdict(n) for n in notes]}, handle, indent=2)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to write backup %s: %s", backup_id, exc)
            raise BackupError(f"Failed to write backup: {exc}") from exc
        if not path.exists():
            raise BackupError("Backup file was not created")

        manifests = self.load_manifests()
        manifests.insert(0, manifest)
        while len(manifests) > MAX_BACKUPS:
            old = manifests.pop()
            try:
                self.data_path(old.id).unlink()
            except FileNotFoundError:
                pass
        self._save_manifests(manifests)

        logger.info("Created backup %s with %d documents", backup_id, len(notes))
        return manifest

    def available_backups(self) -> List[BackupInfo]:
        return [BackupInfo(manifest=m, has_data=self.data_path(m.id).exists()) for m in self.load_manifests()]

    def has_backup(self) -> bool:
        return any(info.has_data for info in self.available_backups())

    def latest_backup(self) -> Optional[BackupInfo]:
        for info in self.available_backups():
            if info.has_data:
                return info
        return None

    def backup_details(self, backup_id: str) -> Optional[Dict[str, Any]]:
        path = self.data_path(backup_id)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, ValueError) as exc:
            logger.error("Failed to load backup %s: %s", backup_id, exc)
            return None

    def delete_backup(self, backup_id: str) -> None:
        path = self.data_path(backup_id)
        if path.exists():
            path.unlink()
        self._save_manifests([m for m in self.load_manifests() if m.id != backup_id])

    def clear_all_backups(self) -> None:
        for manifest in self.load_manifests():
            path = self.data_path(manifest.id)
            if path.exists():
                path.unlink()
        self._save_manifests([])

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------
    def restore_backup(self, backup_id: str, progress: Optional[RestoreProgress] = None) -> Tuple[int, List[str]]:
        """Write every backed-up document back.

        Returns `(restored, errors)`. A document that cannot be written adds one
        message to `errors` and the rest are still restored.
        """
        started = time.monotonic()
        data = self.backup_details(backup_id)
        if data is None:
            raise BackupError(f"Backup {backup_id} not found or corrupted")

        notes = data.get("notes")
        if not isinstance(notes, list) or not notes:
            raise BackupError("Backup contains no notes")
        for note in notes:
            if not isinstance(note, dict) or not note.get("path") or not isinstance(note.get("content"), str):
                raise BackupError(f"Invalid note data in backup: {json.dumps(note)[:100]}")

        restored = 0
        errors: List[str] = []
        for i, note in enumerate(notes, start=1):
            path, content = note["path"], note["content"]
            if progress:
                progress(i, len(notes), path)
            try:
                if self.store.exists(path):
                    self.store.write(path, content)
                else:
                    self.store.create(path, content)
                restored += 1
            except (OSError, ValueError) as exc:
                message = f"Failed to restore {path}: {exc}"
                logger.error(message)
                errors.append(message)

        record = RestoreRecord(
            id=f"restore-{_millis()}",
            backup_id=backup_id,
            timestamp=_millis(),
            notes_restored=restored,
            notes_attempted=len(notes),
            errors=errors[:MAX_RESTORE_ERRORS],
            duration=round((time.monotonic() - started) * 1000),
        )
        self._add_restore_record(record)
        logger.info("Restored %d/%d documents from %s", restored, len(notes), backup_id)
        return restored, errors

    def restore_history(self) -> List[RestoreRecord]:
        if self._restore_history is not None:
            return self._restore_history
        history: List[RestoreRecord] = []
        if self.history_path.exists():
            try:
                with open(self.history_path, "r", encoding="utf-8") as handle:
                    raw = json.load(handle)
                history = [RestoreRecord(**item) for item in raw.get("restores", [])]
            except (OSError, ValueError, TypeError) as exc:
                logger.error("Failed to load restore history: %s", exc)
        self._restore_history = history
        return history

    def last_restore(self) -> Optional[RestoreRecord]:
        history = self.restore_history()
        return history[0] if history else None

    def clear_restore_history(self) -> None:
        self._restore_history = []
        self._save_restore_history()

    def _add_restore_record(self, record: RestoreRecord) -> None:
        history = self.restore_history()
        history.insert(0, record)
        del history[MAX_RESTORE_RECORDS:]
        self._save_restore_history()

    def _save_restore_history(self) -> None:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        with open(self.history_path, "w", encoding="utf-8") as handle:
            json.dump({"restores": [asdict(r) for r in self._restore_history or []]}, handle, indent=2)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------
    def stats(self) -> Dict[str, Any]:
        manifests = self.load_manifests()
        history = self.restore_history()

        total_added = 0
        total_removed = 0
        for manifest in manifests:
            if manifest.links_added > 0:
                total_added += manifest.links_added
            if manifest.links_removed > 0:
                total_removed += manifest.links_removed
            elif manifest.links_added < 0:
                total_removed += -manifest.links_added

        return {
            "total_backups": len(manifests),
            "total_restores": len(history),
            "last_backup_timestamp": max((m.timestamp for m in manifests), default=None),
            "last_restore_timestamp": history[0].timestamp if history else None,
            "total_notes_backed_up": sum(m.note_count for m in manifests),
            "total_links_added": total_added,
            "total_links_removed": total_removed,
            "net_links_added": total_added - total_removed,
        }
