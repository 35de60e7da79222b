"""Semantic search over indexed chunks, filtering out vectors of removed documents."""

import time
from typing import Dict, List, Optional

import structlog

from .catalog import DocumentCatalog
from .embed import EmbeddingClient
from .exceptions import CollaboratorError, ValidationError
from .faiss_index import StoreMatch, VectorStore
from .logging_config import get_audit_logger, log_search_event
from .models import SearchResult

logger = structlog.get_logger(__name__)

MIN_OVERFETCH_MULTIPLIER = 5


def to_search_result(match: StoreMatch) -> SearchResult:
    """Map a store hit and its payload metadata to a search result."""
    metadata = match.metadata
    return SearchResult(
        score=match.score,
        text=match.text,
        filename=metadata.get("filename"),
        document_id=metadata.get("document_id"),
        project_id=metadata.get("project_id"),
        section_path=metadata.get("section_path", ""),
        section_title=metadata.get("section_title", ""),
        section_level=metadata.get("section_level", 0),
        page_start=metadata.get("page_start"),
        page_end=metadata.get("page_end"),
    )


class SearchService:
    """
    Query the vector store and return ranked chunks.

    Stores that purge vectors physically and filter natively are queried with
    the project filter and the exact limit. Append-only stores may still hold
    vectors of removed or replaced documents, so candidates are over-fetched
    before truncation. Every candidate is checked against the catalog.
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        store: VectorStore,
        catalog: DocumentCatalog,
        overfetch_multiplier: int = MIN_OVERFETCH_MULTIPLIER,
    ):
        if overfetch_multiplier < MIN_OVERFETCH_MULTIPLIER:
            raise ValidationError(
                f"overfetch_multiplier must be >= {MIN_OVERFETCH_MULTIPLIER} (got {overfetch_multiplier})",
                field="overfetch_multiplier",
            )
        self.embedder = embedder
        self.store = store
        self.catalog = catalog
        self.overfetch_multiplier = overfetch_multiplier
        self._audit = get_audit_logger("search")

    @property
    def uses_native_filter(self) -> bool:
        return self.store.supports_filter and self.store.supports_delete

    def search(self, query: str, limit: int = 5, project_id: Optional[str] = None) -> List[SearchResult]:
        """
        Rank chunks by similarity to the query.

        Args:
            query: Natural language query
            limit: Maximum number of results (>= 1)
            project_id: Restrict results to one project

        Returns:
            At most `limit` results by descending score; fewer if filtering
            leaves fewer, the store is never queried twice

        Raises:
            ValidationError: Blank query or limit < 1
            CollaboratorError: Embedding or vector store failure
        """
        if not query or not query.strip():
            raise ValidationError("Query must not be blank", field="query")
        if limit < 1:
            raise ValidationError(f"limit must be >= 1 (got {limit})", field="limit")

        start_time = time.time()

        try:
            query_vector = self.embedder.embed(query)
        except Exception as e:
            raise CollaboratorError(f"Query embedding failed: {e}") from e

        filtered_orphans = 0
        if self.uses_native_filter:
            store_filter = {"project_id": project_id} if project_id is not None else None
            matches = self._query_store(query_vector, limit, store_filter)
            candidates = len(matches)
            # Vectors of a run whose catalog write or purge failed can still be stored
            active = self._filter_active(matches)
            filtered_orphans = candidates - len(active)
            results = [to_search_result(m) for m in active[:limit]]
        else:
            matches = self._query_store(query_vector, limit * self.overfetch_multiplier, None)
            candidates = len(matches)
            active = self._filter_active(matches)
            filtered_orphans = candidates - len(active)
            if project_id is not None:
                active = [m for m in active if m.metadata.get("project_id") == project_id]
            # sorted() is stable: equal scores keep the store's order
            ranked = sorted(active, key=lambda m: m.score, reverse=True)
            results = [to_search_result(m) for m in ranked[:limit]]

        execution_time = (time.time() - start_time) * 1000
        log_search_event(
            self._audit,
            query=query,
            project_id=project_id,
            limit=limit,
            candidates=candidates,
            results_count=len(results),
            filtered_orphans=filtered_orphans,
            execution_time_ms=execution_time,
        )
        return results

    def _query_store(self, query_vector, k: int, store_filter: Optional[Dict[str, str]]) -> List[StoreMatch]:
        try:
            return self.store.search(query_vector, k, filter=store_filter)
        except Exception as e:
            raise CollaboratorError(f"Vector store search failed: {e}") from e

    def _filter_active(self, matches: List[StoreMatch]) -> List[StoreMatch]:
        """Drop candidates whose owning document is no longer catalogued."""
        active_cache: Dict[str, bool] = {}
        kept = []
        for match in matches:
            document_id = match.metadata.get("document_id")
            if document_id is None:
                continue
            if document_id not in active_cache:
                active_cache[document_id] = self.catalog.is_active(document_id)
            if active_cache[document_id]:
                kept.append(match)

        if len(kept) < len(matches):
            logger.debug("orphan_candidates_dropped", dropped=len(matches) - len(kept), kept=len(kept))
        return kept
