"""CLAP text embedding generation.

Uses the text tower of HuggingFace Transformers CLAP
(laion/larger_clap_music_and_speech) to produce 512-dim embeddings for song
titles, lyrics and search queries. Shares the embedding space with the
model's audio tower, so a future audio lane can query the same index.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import numpy as np
import torch

from lyrics_vault.errors import ProviderError, ValidationError

logger = logging.getLogger(__name__)

MODEL_NAME: str = "laion/larger_clap_music_and_speech"


class EmbeddingError(ProviderError):
    """Raised when embedding generation fails."""

    def __init__(self, reason: str) -> None:
        super().__init__("embedding", reason)


class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> list[float]: ...


def load_clap_model(model_name: str = MODEL_NAME) -> tuple[Any, Any]:
    """Load the CLAP model and processor.

    Returns:
        (model, processor) tuple. The types are ClapModel and ClapProcessor
        from HuggingFace Transformers, typed as Any to avoid import at
        module scope.

    Note:
        This should be called ONCE during app startup and stored
        in app.state. Do NOT call in module-level code.
    """
    from transformers import ClapModel, ClapProcessor

    logger.info("Loading CLAP model: %s", model_name)
    processor = ClapProcessor.from_pretrained(model_name)
    model = ClapModel.from_pretrained(model_name)
    model.eval()
    logger.info("CLAP model loaded successfully")
    return model, processor


def generate_text_embedding(text: str, model: Any, processor: Any) -> np.ndarray:
    """Generate a single L2-normalised embedding from text.

    Args:
        text: Input text (title, lyrics or query).
        model: ClapModel instance.
        processor: ClapProcessor instance.

    Returns:
        numpy array of shape (512,).

    Raises:
        EmbeddingError: If embedding generation fails.
    """
    try:
        inputs = processor(text=[text], return_tensors="pt", padding=True, truncation=True)
        device = getattr(model, "device", None)
        if device is not None and str(device) != "cpu":
            inputs = {k: v.to(device) for k, v in inputs.items()}

        with torch.no_grad():
            raw_output = model.get_text_features(**inputs)

        # Handle varying return types across model versions
        if isinstance(raw_output, torch.Tensor):
            embedding_tensor = raw_output
        elif hasattr(raw_output, "pooler_output") and raw_output.pooler_output is not None:
            embedding_tensor = raw_output.pooler_output
        else:
            embedding_tensor = raw_output.last_hidden_state[:, 0, :]

        vector: np.ndarray = embedding_tensor.squeeze().detach().cpu().numpy()
    except Exception as e:
        raise EmbeddingError(f"Failed to generate embedding: {e}") from e

    norm = float(np.linalg.norm(vector))
    if norm > 0:
        vector = vector / norm
    return vector


class ClapTextEmbedder:
    """Async embedding provider over a loaded CLAP model.

    Inference is CPU/GPU-bound, so it runs in the default executor behind a
    semaphore; concurrent inferences contend for the same device and degrade
    latency for every caller.
    """

    def __init__(self, model: Any, processor: Any, max_concurrency: int = 1) -> None:
        self._model = model
        self._processor = processor
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise ValidationError("text", "cannot embed empty text")

        loop = asyncio.get_running_loop()
        async with self._semaphore:
            vector = await loop.run_in_executor(
                None,
                generate_text_embedding,
                text,
                self._model,
                self._processor,
            )
        return vector.tolist()
