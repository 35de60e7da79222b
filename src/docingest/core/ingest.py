"""Ingestion pipeline: parse -> detect sections -> split -> enrich -> embed -> store -> register."""

import time
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional

import structlog

from .catalog import DocumentCatalog
from .embed import EmbeddingClient
from .enrich import EnrichedChunk, enrich_chunks
from .exceptions import CollaboratorError, NotFoundError, ValidationError
from .faiss_index import VectorStore
from .logging_config import get_audit_logger, log_ingestion_event
from .models import ChunkingParams, DocumentRecord, DocumentSummary, StoreStats
from .parse import parse_document
from .sections import count_sections, detect
from .settings import REPLACE_INGEST_THEN_SWAP, REPLACE_REMOVE_FIRST
from .split import RecursiveSplitter, Splitter

logger = structlog.get_logger(__name__)


class IngestionService:
    """
    Turns raw document bytes into searchable chunks and a catalog row.

    A run is all-or-nothing from the catalog's point of view: the row is
    registered last, so a failure at any earlier stage leaves no record.
    Vectors already written by a failed run stay in the store as orphans and
    are never returned by search, which only trusts catalogued document ids.
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        store: VectorStore,
        catalog: DocumentCatalog,
        splitter_factory: Callable[[int, int], Splitter] = RecursiveSplitter,
        legacy_hierarchy: bool = False,
        replace_strategy: str = REPLACE_REMOVE_FIRST,
    ):
        if replace_strategy not in (REPLACE_REMOVE_FIRST, REPLACE_INGEST_THEN_SWAP):
            raise ValueError(f"Unknown replace strategy: {replace_strategy}")

        self.embedder = embedder
        self.store = store
        self.catalog = catalog
        self.splitter_factory = splitter_factory
        self.legacy_hierarchy = legacy_hierarchy
        self.replace_strategy = replace_strategy
        self._audit = get_audit_logger("ingestion")

    def ingest(
        self,
        filename: str,
        data: bytes,
        params: Optional[ChunkingParams] = None,
        project_id: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> DocumentSummary:
        """
        Index a new document under a freshly generated document id.

        Args:
            filename: Original filename (".pdf" selects the PDF parser)
            data: Raw document bytes
            params: Chunking parameters, defaults to 500/50
            project_id: Optional project scope
            content_type: Optional MIME type

        Returns:
            Summary of the registered document

        Raises:
            ValidationError: Empty file
            ParseError: Corrupt PDF, undecodable or empty text
            CollaboratorError: Splitter, embedding or vector store failure
        """
        self._validate_data(filename, data)
        return self._run(filename, data, params or ChunkingParams.defaults(), project_id, content_type)

    def reingest(
        self,
        document_id: str,
        data: bytes,
        params: Optional[ChunkingParams] = None,
        content_type: Optional[str] = None,
    ) -> DocumentSummary:
        """
        Replace a document with a new version; the new version gets a new document id.

        With the remove_first strategy the old row (and its vectors, where the
        store can delete) is removed before the new version is ingested: if
        ingestion then fails, the document is gone entirely. ingest_then_swap
        registers the new version first and only then removes the old one.

        Raises:
            NotFoundError: Unknown document id
            ValidationError: Empty file
        """
        existing = self.catalog.find_by_id(document_id)
        if existing is None:
            raise NotFoundError(document_id)
        self._validate_data(existing.filename, data)
        params = params or ChunkingParams.defaults()

        logger.info(
            "reingest_started",
            document_id=document_id,
            filename=existing.filename,
            strategy=self.replace_strategy,
        )

        if self.replace_strategy == REPLACE_INGEST_THEN_SWAP:
            summary = self._run(existing.filename, data, params, existing.project_id, content_type)
            self.delete(document_id)
            return summary

        self.delete(document_id)
        return self._run(existing.filename, data, params, existing.project_id, content_type)

    def delete(self, document_id: str) -> bool:
        """
        Remove a document from the catalog and, when the store allows it, its vectors.

        Vectors are purged before the catalog row goes, so a failed purge
        leaves the document listed and retryable.

        Returns:
            False if the document id is unknown
        """
        record = self.catalog.find_by_id(document_id)
        if record is None:
            logger.info("delete_unknown_document", document_id=document_id)
            return False
        handles = list(record.chunk_store_handles)

        purged = 0
        if self.store.supports_delete and handles:
            try:
                purged = self.store.delete(handles)
            except Exception as e:
                raise CollaboratorError(
                    f"Vector store delete failed: {e}",
                    details={"document_id": document_id, "handles": len(handles)},
                ) from e

        self.catalog.remove(document_id)

        logger.info(
            "document_deleted",
            document_id=document_id,
            handles=len(handles),
            purged=purged,
            orphaned=len(handles) - purged,
        )
        return True

    def get(self, document_id: str) -> DocumentRecord:
        record = self.catalog.find_by_id(document_id)
        if record is None:
            raise NotFoundError(document_id)
        return record

    def list(self, project_id: Optional[str] = None) -> List[DocumentSummary]:
        return self.catalog.list_summaries(project_id)

    def stats(self) -> StoreStats:
        return StoreStats(
            total_documents=self.catalog.total_documents(),
            total_chunks=self.catalog.total_chunks(),
            store_type=self.store.store_type,
            embedding_model=self.embedder.model_name,
            supports_delete=self.store.supports_delete,
        )

    @staticmethod
    def _validate_data(filename: str, data: bytes) -> None:
        if not data:
            raise ValidationError(f"File is empty: {filename}", field="file")

    def _split(self, text: str, params: ChunkingParams) -> List[str]:
        try:
            splitter = self.splitter_factory(params.chunk_size, params.overlap)
            return splitter.split(text)
        except Exception as e:
            raise CollaboratorError(f"Splitting failed: {e}") from e

    def _embed_and_store(self, enriched: List[EnrichedChunk], base_metadata: dict) -> List[str]:
        texts = [chunk.text for chunk in enriched]

        try:
            vectors = self.embedder.embed_batch(texts)
        except Exception as e:
            raise CollaboratorError(f"Embedding failed: {e}", details={"chunks": len(texts)}) from e
        if len(vectors) != len(texts):
            raise CollaboratorError(
                "Embedding client returned a different number of vectors than chunks",
                details={"chunks": len(texts), "vectors": len(vectors)},
            )

        payloads = [
            {"text": chunk.text, "metadata": {**base_metadata, **chunk.store_metadata}}
            for chunk in enriched
        ]
        try:
            return self.store.add(vectors, payloads)
        except Exception as e:
            raise CollaboratorError(f"Vector store write failed: {e}", details={"chunks": len(texts)}) from e

    def _run(
        self,
        filename: str,
        data: bytes,
        params: ChunkingParams,
        project_id: Optional[str],
        content_type: Optional[str],
    ) -> DocumentSummary:
        start_time = time.time()
        document_id = str(uuid.uuid4())
        log = logger.bind(document_id=document_id, filename=filename)
        log.info("ingestion_started", chunk_size=params.chunk_size, overlap=params.overlap, project_id=project_id)

        paged = parse_document(filename, data, content_type)

        boundaries = detect(paged.full_text)
        section_count = count_sections(boundaries)
        log.debug("sections_detected", headings=len(boundaries), section_count=section_count)

        chunks = self._split(paged.full_text, params)
        if not chunks:
            raise CollaboratorError("Splitter returned no chunks", details={"filename": filename})

        enriched = enrich_chunks(
            chunks,
            paged.full_text,
            boundaries,
            paged_text=paged,
            legacy=self.legacy_hierarchy,
        )

        base_metadata = {
            "filename": filename,
            "document_id": document_id,
            "project_id": project_id,
        }
        handles = self._embed_and_store(enriched, base_metadata)

        record = DocumentRecord(
            document_id=document_id,
            project_id=project_id,
            filename=filename,
            ingested_at=datetime.now(timezone.utc),
            chunk_count=len(enriched),
            chunk_size=params.chunk_size,
            overlap=params.overlap,
            section_count=section_count,
            chunk_metadata=[chunk.metadata for chunk in enriched],
            chunk_store_handles=handles,
        )
        self.catalog.register(record)

        processing_time = (time.time() - start_time) * 1000
        log_ingestion_event(
            self._audit,
            filename=filename,
            document_id=document_id,
            project_id=project_id,
            chunks_created=record.chunk_count,
            section_count=section_count,
            pages=len(paged.page_offsets) if paged.page_offsets else 0,
            processing_time_ms=processing_time,
        )
        return record.to_summary()
