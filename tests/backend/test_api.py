"""
Integration tests for the FastAPI backend API.
"""

import os
import shutil
import sys
import tempfile
from pathlib import Path
from unittest.mock import Mock, patch

import numpy as np
import pytest
from fastapi.testclient import TestClient

# Add backend to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from config import LinkerConfig
from main import app
from services import LinkService

NOTES = {
    "Kubernetes.md": (
        "Kubernetes schedules containers across a cluster of machines and restarts failed containers automatically."
    ),
    "Deploy Log.md": (
        "Deployed the payments service to Kubernetes today; containers restarted automatically across the cluster twice."
    ),
    "Sourdough.md": "Sourdough bread needs a lively starter, patient proofing and a hot oven for crust.",
}

DEPLOY_URL = "Deploy%20Log.md"


class TestFastAPIEndpoints:
    """Test suite for FastAPI endpoints."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.vault = Path(self.temp_dir) / "vault"
        config = LinkerConfig(
            vault_dir=str(self.vault),
            enable_ner=False,
            enable_semantic=False,
            lexical_threshold=0.01,
            min_note_length=20,
        )
        self.service = LinkService(config)
        for doc_id, content in NOTES.items():
            self.service.store.create(doc_id, content)

        self.service_patch = patch("main._service", self.service)
        self.service_patch.start()
        self.client = TestClient(app)

    def teardown_method(self):
        self.service_patch.stop()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _analyze(self):
        response = self.client.post("/analyze")
        assert response.status_code == 200
        return response.json()

    def test_health(self):
        assert self.client.get("/").json()["status"] == "ok"
        assert self.client.get("/health").status_code == 200

    def test_analyze_and_stats(self):
        data = self._analyze()
        assert data["success"] is True
        assert data["total_documents"] == 3

        stats = self.client.get("/stats").json()["stats"]
        assert stats["index"]["total_documents"] == 3
        assert stats["embeddings"]["ready"] is False
        assert stats["backups"]["total_backups"] == 0

    def test_similar_ranks_related_note(self):
        self._analyze()
        response = self.client.get(f"/similar/{DEPLOY_URL}")

        assert response.status_code == 200
        targets = [hit["target"] for hit in response.json()["results"]]
        assert targets == ["Kubernetes.md"]
        assert response.json()["results"][0]["semantic_score"] is None

    def test_similar_unknown_document_is_404(self):
        self._analyze()
        assert self.client.get("/similar/Missing.md").status_code == 404

    def test_suggestions_for_edited_content(self):
        self._analyze()
        response = self.client.get(
            f"/suggestions/{DEPLOY_URL}",
            params={"content": "Rolled the cluster again; containers on Kubernetes came back automatically."},
        )
        assert response.status_code == 200
        suggestions = response.json()["suggestions"]
        assert [s["target"] for s in suggestions] == ["Kubernetes.md"]
        assert suggestions[0]["status"] == "pending"

    def test_anchor_preview(self):
        self._analyze()
        self.service.config.min_confidence = 0.0
        response = self.client.get(f"/anchors/{DEPLOY_URL}")

        assert response.status_code == 200
        data = response.json()
        assert "to [[Kubernetes]] today" in data["modified_content"]
        assert data["replacements"][0]["reason"] == "title"

    def test_batch_preview_writes_nothing(self):
        self._analyze()
        response = self.client.post("/batch/preview", json={"min_confidence": 0.0})

        assert response.status_code == 200
        data = response.json()
        assert data["backup_id"] is None
        deploy = [r for r in data["results"] if r["doc_id"] == "Deploy Log.md"]
        assert deploy and deploy[0]["links_added"] >= 1
        assert self.service.store.read("Deploy Log.md") == NOTES["Deploy Log.md"]

    def test_batch_request_validation(self):
        assert self.client.post("/batch/preview", json={"min_confidence": 2}).status_code == 422

    def test_batch_apply_then_restore(self):
        self._analyze()
        applied = self.client.post("/batch/apply", json={"min_confidence": 0.0}).json()
        backup_id = applied["backup_id"]

        assert backup_id is not None
        assert "[[Kubernetes]]" in self.service.store.read("Deploy Log.md")
        assert self.service.corpus.documents["Deploy Log.md"].links[0].target_path == "Kubernetes.md"

        backups = self.client.get("/backups").json()["backups"]
        assert [b["id"] for b in backups] == [backup_id]
        assert backups[0]["triggered_by"] == "batch-autolink"

        restored = self.client.post(f"/backups/{backup_id}/restore")
        assert restored.status_code == 200
        data = restored.json()
        assert data["success"] is True
        assert data["errors"] == []
        assert data["notes_restored"] >= 1
        assert self.service.store.read("Deploy Log.md") == NOTES["Deploy Log.md"]
        assert self.service.corpus.documents["Deploy Log.md"].links == []

        history = self.client.get("/restore-history").json()["restores"]
        assert history[0]["backup_id"] == backup_id

    def test_partial_restore_reports_errors(self):
        self._analyze()
        backup_id = self.client.post("/batch/apply", json={"min_confidence": 0.0}).json()["backup_id"]

        with patch.object(self.service.store, "write", side_effect=OSError("permission denied")):
            restored = self.client.post(f"/backups/{backup_id}/restore")

        assert restored.status_code == 200
        data = restored.json()
        assert data["success"] is False
        assert data["notes_restored"] == 0
        assert "Failed to restore Deploy Log.md: permission denied" in data["errors"]

    def test_restore_unknown_backup_is_404(self):
        assert self.client.post("/backups/backup-0/restore").status_code == 404

    def test_clear_links(self):
        self.service.store.write("Sourdough.md", NOTES["Sourdough.md"] + " See [[Kubernetes|k8s]].")
        self._analyze()

        preview = self.client.post("/links/clear/preview").json()
        assert preview["documents"] == {"Sourdough.md": 1}
        assert preview["backup_id"] is None

        cleaned = self.client.post("/links/clear").json()
        assert cleaned["cleaned_count"] == 1
        assert cleaned["backup_id"] is not None
        assert self.service.store.read("Sourdough.md").endswith("See k8s.")
        assert self.client.get("/backups/stats").json()["total_links_removed"] == 1

    def test_document_lifecycle(self):
        self._analyze()
        self.service.store.create("Helm.md", "Helm packages Kubernetes manifests into versioned release charts.")
        refreshed = self.client.post("/documents/refresh", json={"doc_id": "Helm.md"}).json()
        assert refreshed["indexed"] is True

        renamed = self.client.post("/documents/rename", json={"old_id": "Helm.md", "new_id": "tools/Helm.md"})
        assert renamed.status_code == 200
        assert "tools/Helm.md" in self.service.corpus.documents

        removed = self.client.post("/documents/remove", json={"doc_id": "tools/Helm.md"}).json()
        assert removed["removed"] is True

    def test_rename_unknown_document_is_404(self):
        response = self.client.post("/documents/rename", json={"old_id": "Missing.md", "new_id": "Other.md"})
        assert response.status_code == 404

    def test_embedding_status(self):
        data = self.client.get("/embeddings/status").json()
        assert data["status"] == "idle"
        assert data["ready"] is False
        assert data["cache"]["total_embeddings"] == 0

    @patch("embedder._resolve_hf_snapshot", return_value="/models/wide")
    @patch("sentence_transformers.SentenceTransformer")
    def test_embeddings_use_loaded_model_dimension(self, mock_sentence_transformer, _mock_resolve):
        model = Mock()
        model.get_sentence_embedding_dimension.return_value = 768
        model.encode.side_effect = lambda texts, **kwargs: np.full((len(texts), 768), 0.1, dtype=np.float32)
        mock_sentence_transformer.return_value = model
        self._analyze()

        loaded = self.client.post("/embeddings/load").json()
        assert loaded["cache"]["embedding_dimension"] == 768

        generated = self.client.post("/embeddings/generate").json()
        assert generated["generated"] == 3
        assert self.service.embedding_cache.get("Kubernetes.md").shape == (768,)

    def test_batch_cancel(self):
        assert self.client.post("/batch/cancel").json() == {"success": True}
        assert self.service.batch.cancelled
