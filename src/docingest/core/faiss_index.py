"""FAISS vector store: index creation, persistence, search and (for flat indexes) physical delete."""

import os
import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Dict, Any, Optional

import numpy as np
import faiss

logger = logging.getLogger(__name__)

INDEX_FLAT = "FLAT"
INDEX_HNSW = "HNSW"


@dataclass
class StoreMatch:
    """A vector store hit: opaque handle, similarity score and stored payload."""
    handle: str
    score: float
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)


class VectorStore(ABC):
    """Vector store capability interface.

    Stores that cannot delete physically are append-only: removed documents
    leave orphan vectors behind, which search must filter out through the
    catalog's active document ids.
    """
    store_type: str = ""
    supports_delete: bool = False
    supports_filter: bool = False

    @abstractmethod
    def add(self, vectors: np.ndarray, payloads: List[Dict[str, Any]]) -> List[str]:
        """Store vectors with their {text, metadata} payloads; returns one handle per vector."""

    @abstractmethod
    def search(self, query_vector: np.ndarray, k: int,
               filter: Optional[Dict[str, Any]] = None) -> List[StoreMatch]:
        """Return up to k matches by descending similarity."""

    def delete(self, handles: List[str]) -> int:
        raise NotImplementedError(f"{self.store_type} store is append-only")

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        ...


class FAISSConfig:
    """Configuration for FAISS index."""
    def __init__(self, index_type: Optional[str] = None):
        self.index_type = (index_type or os.getenv("FAISS_INDEX", INDEX_FLAT)).upper()
        if self.index_type not in (INDEX_FLAT, INDEX_HNSW):
            raise ValueError(f"Unsupported FAISS_INDEX: {self.index_type}")
        self.hnsw_m = 16  # Number of bidirectional links for HNSW
        self.hnsw_ef_construction = 200  # Size of dynamic candidate list for HNSW
        self.hnsw_ef_search = 100  # Size of dynamic candidate list for search


class FAISSVectorStore(VectorStore):
    """
    FAISS-backed vector store with a JSON payload sidecar.

    FLAT wraps IndexFlatIP in IndexIDMap2 and supports remove_ids, so removed
    documents are purged physically. HNSW cannot remove vectors and is
    append-only. Vectors are L2-normalised: scores are cosine similarities.
    """

    def __init__(self, index_path: Optional[Path] = None, config: Optional[FAISSConfig] = None):
        """
        Args:
            index_path: Directory holding faiss.index and payloads.json; None keeps the store in memory
            config: Index configuration (FAISS_INDEX env var by default)
        """
        self.index_path = Path(index_path) if index_path is not None else None
        self.config = config or FAISSConfig()
        self.index: Optional[faiss.Index] = None
        self.payloads: Dict[int, Dict[str, Any]] = {}
        self.next_id = 0
        self._lock = threading.RLock()

        if self.index_path is not None:
            self.load_index()

        self.store_type = f"FAISS-{self.config.index_type}"
        self.supports_delete = self.config.index_type == INDEX_FLAT
        self.supports_filter = self.supports_delete

    def create_index(self, dimensions: int) -> faiss.Index:
        """Create a new FAISS index."""
        if self.config.index_type == INDEX_HNSW:
            base = faiss.IndexHNSWFlat(dimensions, self.config.hnsw_m, faiss.METRIC_INNER_PRODUCT)
            base.hnsw.efConstruction = self.config.hnsw_ef_construction
            base.hnsw.efSearch = self.config.hnsw_ef_search
            logger.info(f"Created HNSW index with dimensions={dimensions}, M={self.config.hnsw_m}")
        else:
            base = faiss.IndexFlatIP(dimensions)  # Inner product (cosine on normalised vectors)
            logger.info(f"Created flat index with dimensions={dimensions}")

        return faiss.IndexIDMap2(base)

    def load_index(self) -> bool:
        """Load existing FAISS index and payloads from disk."""
        index_file = self.index_path / "faiss.index"
        payload_file = self.index_path / "payloads.json"

        if not index_file.exists() or not payload_file.exists():
            logger.info("No existing FAISS index found")
            return False

        self.index = faiss.read_index(str(index_file))
        with open(payload_file, "r", encoding="utf-8") as f:
            data = json.load(f)

        stored_type = data.get("index_type", self.config.index_type)
        if stored_type != self.config.index_type:
            logger.warning(
                f"FAISS index on disk is {stored_type}, configured {self.config.index_type}; using {stored_type}"
            )
            self.config.index_type = stored_type

        self.payloads = {int(faiss_id): payload for faiss_id, payload in data.get("payloads", {}).items()}
        self.next_id = int(data.get("next_id", len(self.payloads)))

        logger.info(f"Loaded FAISS index with {self.index.ntotal} vectors")
        return True

    def save_index(self) -> None:
        """Save FAISS index and payloads to disk (no-op for in-memory stores)."""
        if self.index_path is None or self.index is None:
            return

        self.index_path.mkdir(parents=True, exist_ok=True)
        faiss.write_index(self.index, str(self.index_path / "faiss.index"))

        with open(self.index_path / "payloads.json", "w", encoding="utf-8") as f:
            json.dump({
                "index_type": self.config.index_type,
                "next_id": self.next_id,
                "payloads": {str(k): v for k, v in self.payloads.items()},
            }, f)

        logger.debug(f"Saved FAISS index with {self.index.ntotal} vectors to {self.index_path}")

    @staticmethod
    def _normalize(vectors: np.ndarray) -> np.ndarray:
        vectors = np.ascontiguousarray(vectors, dtype=np.float32)
        if vectors.ndim == 1:
            vectors = vectors.reshape(1, -1)
        vectors = vectors.copy()
        faiss.normalize_L2(vectors)
        return vectors

    def add(self, vectors: np.ndarray, payloads: List[Dict[str, Any]]) -> List[str]:
        """Add embeddings with their payloads to the index."""
        if len(vectors) != len(payloads):
            raise ValueError("Number of vectors must match number of payloads")
        if len(payloads) == 0:
            return []

        vectors = self._normalize(vectors)

        with self._lock:
            if self.index is None:
                self.index = self.create_index(vectors.shape[1])
            if vectors.shape[1] != self.index.d:
                raise ValueError(f"Vector dimension {vectors.shape[1]} does not match index dimension {self.index.d}")

            ids = np.arange(self.next_id, self.next_id + len(vectors), dtype=np.int64)
            self.index.add_with_ids(vectors, ids)
            for faiss_id, payload in zip(ids.tolist(), payloads):
                self.payloads[faiss_id] = {
                    "text": payload["text"],
                    "metadata": dict(payload.get("metadata", {})),
                }
            self.next_id += len(vectors)
            self.save_index()

        logger.info(f"Added {len(vectors)} embeddings to FAISS index")
        return [str(faiss_id) for faiss_id in ids.tolist()]

    def _matching_ids(self, filter: Dict[str, Any]) -> np.ndarray:
        ids = [
            faiss_id for faiss_id, payload in self.payloads.items()
            if all(payload["metadata"].get(key) == value for key, value in filter.items())
        ]
        return np.array(ids, dtype=np.int64)

    def search(self, query_vector: np.ndarray, k: int,
               filter: Optional[Dict[str, Any]] = None) -> List[StoreMatch]:
        """Search the index for the k most similar vectors, optionally restricted by payload metadata."""
        if filter and not self.supports_filter:
            raise NotImplementedError(f"{self.store_type} store does not support filtered search")

        query = self._normalize(query_vector)

        with self._lock:
            if self.index is None or self.index.ntotal == 0:
                return []

            params = None
            if filter:
                allowed = self._matching_ids(filter)
                if len(allowed) == 0:
                    return []
                # selector must outlive the search call; params.sel holds no Python reference
                selector = faiss.IDSelectorBatch(len(allowed), faiss.swig_ptr(allowed))
                params = faiss.SearchParameters()
                params.sel = selector

            k = min(k, self.index.ntotal)
            scores, labels = self.index.search(query, k, params=params)

            results = []
            for score, faiss_id in zip(scores[0], labels[0]):
                if faiss_id == -1:  # -1 means not found
                    continue
                payload = self.payloads.get(int(faiss_id))
                if payload is None:
                    continue
                results.append(StoreMatch(
                    handle=str(int(faiss_id)),
                    score=float(score),
                    text=payload["text"],
                    metadata=dict(payload["metadata"]),
                ))

        return results

    def delete(self, handles: List[str]) -> int:
        """Physically remove vectors (FLAT only)."""
        if not self.supports_delete:
            return super().delete(handles)
        if not handles:
            return 0

        ids = np.array([int(h) for h in handles], dtype=np.int64)
        with self._lock:
            removed = 0
            if self.index is not None:
                removed = self.index.remove_ids(ids)
            for faiss_id in ids.tolist():
                self.payloads.pop(faiss_id, None)
            self.save_index()

        logger.info(f"Removed {removed} vectors from FAISS index")
        return int(removed)

    def get_stats(self) -> Dict[str, Any]:
        """Get index statistics."""
        if self.index is None:
            return {"total_vectors": 0, "index_type": self.config.index_type, "dimensions": None,
                    "supports_delete": self.supports_delete}

        return {
            "total_vectors": self.index.ntotal,
            "index_type": self.config.index_type,
            "dimensions": self.index.d,
            "supports_delete": self.supports_delete,
        }
