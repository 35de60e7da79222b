"""Local sentence-transformers embeddings, no API key required."""

import logging
from typing import List

import numpy as np
from sentence_transformers import SentenceTransformer

from .embed import EmbeddingClient

logger = logging.getLogger(__name__)


class LocalEmbeddingClient(EmbeddingClient):
    """Embed text with a locally loaded sentence-transformers model."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", batch_size: int = 32, device: str = "cpu"):
        """
        Load the model once at construction.

        Args:
            model_name: Name of the sentence-transformers model to use
            batch_size: Batch size for encoding
            device: Torch device string
        """
        self.model_name = model_name
        self.batch_size = batch_size

        logger.info(f"Loading local embedding model: {model_name}")
        self.model = SentenceTransformer(model_name, device=device)
        self.dimensions = self.model.get_sentence_embedding_dimension()
        logger.info(f"Loaded model with dimension: {self.dimensions}")

    def embed_batch(self, texts: List[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dimensions), dtype=np.float32)

        # encode() keeps input order across its internal batches
        embeddings = self.model.encode(
            texts,
            batch_size=self.batch_size,
            convert_to_numpy=True,
            show_progress_bar=False,
        )
        logger.info(f"Generated {len(embeddings)} local embeddings")
        return np.asarray(embeddings, dtype=np.float32)
