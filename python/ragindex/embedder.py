"""
Embedder - Batch text-to-vector embedding with sentence-transformers.

The model is loaded lazily on first use and placed on the best available
device. Vectors are L2-normalized so the store can rank by dot product.
"""

import logging
from typing import List, Optional

import numpy as np

from .config import get_config, IndexerConfig


logger = logging.getLogger(__name__)


class SentenceTransformerEmbedder:
    """
    Embedding provider backed by a sentence-transformers model.

    Features:
    - Lazy model loading
    - Automatic device selection (CUDA, Apple MPS, CPU)
    - Normalized float32 output
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()
        self._model = None
        self._dimension: Optional[int] = None

    def _get_model(self):
        """Lazy-load the embedding model on the best available device."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            import torch

            device = self.config.embedding_device
            if device is None:
                device = "cpu"
                if torch.backends.mps.is_available():
                    device = "mps"
                elif torch.cuda.is_available():
                    device = "cuda"

            logger.info(f"Loading embedding model {self.config.embedding_model} on {device}...")
            self._model = SentenceTransformer(self.config.embedding_model, device=device)
            self._dimension = self._model.get_sentence_embedding_dimension()
            logger.info(f"Loaded {self.config.embedding_model} (dim={self._dimension})")
        return self._model

    @property
    def model_name(self) -> str:
        return self.config.embedding_model

    @property
    def dimension(self) -> int:
        """Get embedding dimension (loads model if needed)."""
        self._get_model()
        return self._dimension

    def embed_batch(self, texts: List[str]) -> np.ndarray:
        """
        Embed a batch of texts.

        Args:
            texts: List of strings to embed

        Returns:
            NumPy array of shape (len(texts), dimension)
        """
        model = self._get_model()
        if not texts:
            return np.empty((0, self._dimension), dtype=np.float32)

        embeddings = model.encode(
            texts,
            batch_size=len(texts),
            convert_to_numpy=True,
            normalize_embeddings=True,  # Better for cosine similarity
        )
        return embeddings.astype(np.float32)

    def embed(self, text: str) -> np.ndarray:
        """Embed a single text."""
        return self.embed_batch([text])[0]
