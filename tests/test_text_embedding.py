"""Tests for CLAP text embedding generation (lyrics_vault.ai.text_embedding)."""

from unittest.mock import MagicMock

import numpy as np
import pytest
import torch

from lyrics_vault.ai.text_embedding import (
    ClapTextEmbedder,
    EmbeddingError,
    generate_text_embedding,
)
from lyrics_vault.errors import ValidationError


def _make_mock_model(embedding_dim: int = 512) -> MagicMock:
    """Create a mock CLAP model whose text tower returns a fixed tensor."""
    model = MagicMock()
    model.device = "cpu"
    model.get_text_features = MagicMock(return_value=torch.full((1, embedding_dim), 3.0))
    return model


def _make_mock_processor() -> MagicMock:
    processor = MagicMock()
    processor.return_value = {"input_ids": torch.ones(1, 8, dtype=torch.long)}
    return processor


class TestGenerateTextEmbedding:
    def test_returns_unit_vector(self) -> None:
        vector = generate_text_embedding("lucid dreams", _make_mock_model(), _make_mock_processor())

        assert vector.shape == (512,)
        assert np.linalg.norm(vector) == pytest.approx(1.0, abs=1e-5)

    def test_processor_receives_text(self) -> None:
        processor = _make_mock_processor()
        generate_text_embedding("all girls are the same", _make_mock_model(), processor)

        assert processor.call_args.kwargs["text"] == ["all girls are the same"]

    def test_pooler_output_is_used(self) -> None:
        model = _make_mock_model()
        output = MagicMock()
        output.pooler_output = torch.full((1, 4), 2.0)
        model.get_text_features.return_value = output

        vector = generate_text_embedding("x", model, _make_mock_processor())

        assert vector.shape == (4,)

    def test_model_failure_raises_embedding_error(self) -> None:
        model = _make_mock_model()
        model.get_text_features.side_effect = RuntimeError("CUDA OOM")

        with pytest.raises(EmbeddingError, match="CUDA OOM"):
            generate_text_embedding("x", model, _make_mock_processor())


class TestClapTextEmbedder:
    async def test_embed_returns_list_of_floats(self) -> None:
        embedder = ClapTextEmbedder(_make_mock_model(), _make_mock_processor())

        vector = await embedder.embed("robbery")

        assert isinstance(vector, list)
        assert len(vector) == 512
        assert all(isinstance(v, float) for v in vector)

    @pytest.mark.parametrize("text", ["", "   "])
    async def test_blank_text_rejected(self, text: str) -> None:
        model = _make_mock_model()
        with pytest.raises(ValidationError):
            await ClapTextEmbedder(model, _make_mock_processor()).embed(text)
        model.get_text_features.assert_not_called()
