"""
Unit tests for the Embedder module.
"""

import asyncio
import os
import sys
from unittest.mock import Mock, patch

import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from embedder import (
    Embedder,
    EmbeddingCancelled,
    EmbeddingModelError,
    ModelStatus,
    model_dimension,
)


def _mock_model(dimension=384):
    model = Mock()
    model.get_sentence_embedding_dimension.return_value = dimension
    model.encode.side_effect = lambda texts, **kwargs: np.full((len(texts), dimension), 0.1, dtype=np.float32)
    return model


class TestEmbedder:
    """Test suite for the Embedder class."""

    def setup_method(self):
        """Set up test fixtures."""
        self.embedder = Embedder(model_name="sentence-transformers/all-MiniLM-L6-v2")

    def test_embedder_initialization(self):
        """Test that embedder initializes idle with the registry dimension."""
        assert self.embedder.model is None
        assert self.embedder.status == ModelStatus.IDLE
        assert not self.embedder.is_ready()
        assert self.embedder.embedding_dimension() == 384

    @patch("embedder._resolve_hf_snapshot", return_value="/models/minilm")
    @patch("sentence_transformers.SentenceTransformer")
    def test_load_model(self, mock_sentence_transformer, _mock_resolve):
        """Test loading the sentence-transformers model from the local snapshot."""
        mock_sentence_transformer.return_value = _mock_model()
        events = []

        self.embedder.load_model(events.append)

        assert self.embedder.is_ready()
        mock_sentence_transformer.assert_called_once_with("/models/minilm")
        statuses = [event.status for event in events]
        assert statuses[0] == ModelStatus.DOWNLOADING
        assert ModelStatus.LOADING in statuses
        assert statuses[-1] == ModelStatus.READY

    @patch("embedder._resolve_hf_snapshot", return_value="/models/e5")
    @patch("sentence_transformers.SentenceTransformer")
    def test_loaded_model_sets_dimension(self, mock_sentence_transformer, _mock_resolve):
        """Test that an unregistered model reports its own dimension once loaded."""
        mock_sentence_transformer.return_value = _mock_model(dimension=768)
        embedder = Embedder(model_name="intfloat/e5-base-v2")
        assert embedder.embedding_dimension() == 384

        embedder.load_model()

        assert embedder.embedding_dimension() == 768
        embedder.update_config(model_name="sentence-transformers/all-MiniLM-L6-v2")
        assert embedder.embedding_dimension() == 384

    @patch("embedder._resolve_hf_snapshot", return_value="/models/minilm")
    @patch("sentence_transformers.SentenceTransformer")
    def test_second_load_is_a_no_op(self, mock_sentence_transformer, _mock_resolve):
        mock_sentence_transformer.return_value = _mock_model()
        self.embedder.load_model()
        self.embedder.load_model()
        mock_sentence_transformer.assert_called_once()

    @patch("embedder._resolve_hf_snapshot", side_effect=RuntimeError("not cached"))
    def test_load_failure_without_download(self, _mock_resolve):
        embedder = Embedder(model_name="sentence-transformers/all-MiniLM-L6-v2", allow_download=False)
        events = []

        with pytest.raises(EmbeddingModelError):
            embedder.load_model(events.append)

        assert embedder.status == ModelStatus.ERROR
        assert "not cached" in embedder.load_error
        assert events[-1].status == ModelStatus.ERROR

    def test_generate_embedding_requires_model(self):
        with pytest.raises(RuntimeError):
            self.embedder.generate_embedding("hello")

    def test_generate_embedding_truncates_and_normalizes(self):
        embedder = Embedder(model_name="sentence-transformers/all-MiniLM-L6-v2", max_sequence_length=2)
        embedder.model = _mock_model()
        embedder.status = ModelStatus.READY

        vector = embedder.generate_embedding("abcdefghijkl")

        assert vector.shape == (384,)
        assert vector.dtype == np.float32
        args, kwargs = embedder.model.encode.call_args
        assert args[0] == ["abcdefgh"]
        assert kwargs["normalize_embeddings"] is True

    def test_batch_skips_empty_and_failed_documents(self):
        model = _mock_model()

        def encode(texts, **kwargs):
            if texts[0] == "explode":
                raise RuntimeError("boom")
            return np.full((1, 384), 0.2, dtype=np.float32)

        model.encode.side_effect = encode
        self.embedder.model = model
        self.embedder.status = ModelStatus.READY
        progress = []

        results = asyncio.run(
            self.embedder.generate_batch_embeddings(
                [("a.md", "first"), ("b.md", "   "), ("c.md", "explode"), ("d.md", "last")],
                progress_callback=progress.append,
            )
        )

        assert sorted(results) == ["a.md", "d.md"]
        assert [p.document_id for p in progress] == ["a.md", "d.md"]
        assert progress[-1].total == 4

    def test_batch_cancellation(self):
        self.embedder.model = _mock_model()
        self.embedder.status = ModelStatus.READY

        with pytest.raises(EmbeddingCancelled):
            asyncio.run(
                self.embedder.generate_batch_embeddings([("a.md", "text")], should_cancel=lambda: True)
            )

    def test_update_config_reports_model_change(self):
        self.embedder.model = _mock_model()
        self.embedder.status = ModelStatus.READY

        assert self.embedder.update_config(batch_size=4) is False
        assert self.embedder.batch_size == 4
        assert self.embedder.update_config(model_name="BAAI/bge-small-en-v1.5") is True
        assert self.embedder.model is None
        assert self.embedder.status == ModelStatus.IDLE

    def test_cosine_similarity(self):
        assert Embedder.cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        with pytest.raises(ValueError):
            Embedder.cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])

    def test_find_similar_ranks_by_inner_product(self):
        pytest.importorskip("faiss")
        embeddings = {
            "near.md": np.array([0.9, 0.1], dtype=np.float32),
            "far.md": np.array([0.0, 1.0], dtype=np.float32),
            "self.md": np.array([1.0, 0.0], dtype=np.float32),
        }

        ranked = self.embedder.find_similar(
            np.array([1.0, 0.0], dtype=np.float32), embeddings, top_k=5, exclude={"self.md"}
        )

        assert [doc_id for doc_id, _ in ranked] == ["near.md", "far.md"]
        assert ranked[0][1] == pytest.approx(0.9)


@pytest.mark.unit
def test_model_dimension_lookup():
    assert model_dimension("sentence-transformers/all-mpnet-base-v2") == 768
    assert model_dimension("all-MiniLM-L6-v2") == 384
    assert model_dimension("someone/unknown-model") == 384
