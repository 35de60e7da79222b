"""
Shared test fixtures.

Provides: deterministic hashing embedder, temp SQLite catalog, temp FAISS
stores (flat and HNSW), PDF bytes generated with PyMuPDF, wired services.
"""

import hashlib
import re
from typing import List

import fitz
import numpy as np
import pytest

from docingest.core.catalog import DocumentCatalog
from docingest.core.embed import EmbeddingClient
from docingest.core.faiss_index import FAISSConfig, FAISSVectorStore, INDEX_FLAT, INDEX_HNSW
from docingest.core.ingest import IngestionService
from docingest.core.retrieve import SearchService


class HashingEmbedder(EmbeddingClient):
    """Bag-of-words embedder: each lowercase word increments one hashed bucket."""

    model_name = "hashing-test"

    def __init__(self, dimensions: int = 256):
        self.dimensions = dimensions
        self.batches = 0

    def embed_batch(self, texts: List[str]) -> np.ndarray:
        self.batches += 1
        vectors = np.zeros((len(texts), self.dimensions), dtype=np.float32)
        for row, text in enumerate(texts):
            vectors[row, 0] = 0.01  # never a zero vector
            for token in re.findall(r"\w+", text.lower()):
                bucket = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dimensions
                vectors[row, bucket] += 1.0
        return vectors


class FailingEmbedder(EmbeddingClient):
    model_name = "failing-test"
    dimensions = 256

    def embed_batch(self, texts: List[str]) -> np.ndarray:
        raise RuntimeError("embedding backend unavailable")


def make_pdf(pages: List[str]) -> bytes:
    """Build a PDF with one page per entry, one text line per '\\n'-separated line."""
    doc = fitz.open()
    try:
        for text in pages:
            page = doc.new_page()
            y = 72
            for line in text.split("\n"):
                if line:
                    page.insert_text((72, y), line, fontsize=10)
                y += 14
        return doc.tobytes()
    finally:
        doc.close()


@pytest.fixture
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture
def failing_embedder() -> FailingEmbedder:
    return FailingEmbedder()


@pytest.fixture
def catalog_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'catalog.db'}"


@pytest.fixture
def catalog(catalog_url):
    catalog = DocumentCatalog(catalog_url)
    yield catalog
    catalog.close()


@pytest.fixture
def flat_store(tmp_path) -> FAISSVectorStore:
    return FAISSVectorStore(tmp_path / "flat_index", FAISSConfig(INDEX_FLAT))


@pytest.fixture
def hnsw_store(tmp_path) -> FAISSVectorStore:
    return FAISSVectorStore(tmp_path / "hnsw_index", FAISSConfig(INDEX_HNSW))


@pytest.fixture(params=[INDEX_FLAT, INDEX_HNSW])
def store(request, tmp_path) -> FAISSVectorStore:
    """Both store variants: physical delete (flat) and append-only (HNSW)."""
    return FAISSVectorStore(tmp_path / f"index_{request.param.lower()}", FAISSConfig(request.param))


@pytest.fixture
def ingestion(embedder, store, catalog) -> IngestionService:
    return IngestionService(embedder, store, catalog)


@pytest.fixture
def search_service(embedder, store, catalog) -> SearchService:
    return SearchService(embedder, store, catalog)


@pytest.fixture
def pdf_factory():
    return make_pdf
