"""Embedding clients: abstract interface, OpenAI implementation and backend selection."""

import os
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
from tenacity import retry, stop_after_attempt, wait_exponential

import openai

logger = logging.getLogger(__name__)


class EmbeddingClient(ABC):
    """Turns text into fixed-dimension vectors.

    embed_batch must return vectors in the same order as its input.
    """
    model_name: str = ""
    dimensions: Optional[int] = None

    @abstractmethod
    def embed_batch(self, texts: List[str]) -> np.ndarray:
        ...

    def embed(self, text: str) -> np.ndarray:
        return self.embed_batch([text])[0]


@dataclass
class EmbeddingConfig:
    """Configuration for OpenAI embedding generation."""
    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100
    max_tokens: int = 8191  # Max tokens for text-embedding-3-small


def get_embedding_config() -> EmbeddingConfig:
    """Get OpenAI embedding configuration from environment."""
    model = os.getenv("EMBED_MODEL", "text-embedding-3-small")

    # Set dimensions based on model
    if model == "text-embedding-3-large":
        dimensions = 3072
    else:
        dimensions = 1536

    return EmbeddingConfig(
        model=model,
        dimensions=dimensions,
        batch_size=int(os.getenv("EMBED_BATCH_SIZE", "100")),
        max_tokens=8191
    )


class OpenAIEmbeddingClient(EmbeddingClient):
    """Embeddings through the OpenAI API, batched, with retry on transient failures."""

    def __init__(self, config: Optional[EmbeddingConfig] = None, api_key: Optional[str] = None):
        self.config = config or get_embedding_config()
        self.model_name = self.config.model
        self.dimensions = self.config.dimensions

        api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError("OpenAI API key not found in environment variables")
        self.client = openai.OpenAI(api_key=api_key)

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=4, max=10)
    )
    def _create(self, texts: List[str]) -> List[List[float]]:
        response = self.client.embeddings.create(
            model=self.config.model,
            input=texts,
            dimensions=self.config.dimensions
        )
        # The API may return items out of order; index restores input order
        return [item.embedding for item in sorted(response.data, key=lambda d: d.index)]

    def embed_batch(self, texts: List[str]) -> np.ndarray:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: Text strings to embed

        Returns:
            Array of shape (len(texts), dimensions)
        """
        vectors: List[List[float]] = []
        limit = self.config.max_tokens * 4  # ~4 chars per token

        for i in range(0, len(texts), self.config.batch_size):
            batch = texts[i:i + self.config.batch_size]
            truncated = []
            for text in batch:
                if len(text) > limit:
                    logger.warning(f"Truncated text from {len(text)} to {limit} characters")
                    text = text[:limit]
                truncated.append(text)

            logger.info(f"Processing embedding batch {i // self.config.batch_size + 1}: {len(batch)} texts")
            vectors.extend(self._create(truncated))

        logger.info(f"Generated {len(vectors)} embeddings using {self.config.model}")
        return np.array(vectors, dtype=np.float32).reshape(len(vectors), self.dimensions)


def get_embedding_client(backend: str = "local", model_name: Optional[str] = None,
                         batch_size: int = 32) -> EmbeddingClient:
    """
    Build the embedding client for the configured backend.

    Args:
        backend: "local" (sentence-transformers) or "openai"
        model_name: Local model name (ignored for openai, which reads EMBED_MODEL)
        batch_size: Local encoding batch size
    """
    backend = backend.lower()
    if backend == "openai":
        return OpenAIEmbeddingClient()
    if backend == "local":
        from .local_embeddings import LocalEmbeddingClient
        return LocalEmbeddingClient(model_name or "all-MiniLM-L6-v2", batch_size=batch_size)
    raise ValueError(f"Unknown embedding backend: {backend}")
