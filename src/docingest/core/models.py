"""Data model shared by ingestion, catalog and search."""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from .exceptions import ValidationError

MIN_CHUNK_SIZE = 50
DEFAULT_CHUNK_SIZE = 500
DEFAULT_OVERLAP = 50


@dataclass(frozen=True)
class ChunkingParams:
    """Chunking parameters for a single ingestion run.

    Every document may be indexed with different values; all chunks land in
    the same vector space, so they remain searchable uniformly.
    """
    chunk_size: int = DEFAULT_CHUNK_SIZE
    overlap: int = DEFAULT_OVERLAP

    def __post_init__(self):
        if self.chunk_size < MIN_CHUNK_SIZE:
            raise ValidationError(
                f"chunk_size must be >= {MIN_CHUNK_SIZE} (got {self.chunk_size})",
                field="chunk_size",
            )
        if self.overlap < 0:
            raise ValidationError(
                f"overlap must be >= 0 (got {self.overlap})",
                field="overlap",
            )
        if self.overlap >= self.chunk_size:
            raise ValidationError(
                f"overlap ({self.overlap}) must be < chunk_size ({self.chunk_size})",
                field="overlap",
            )

    @classmethod
    def defaults(cls) -> "ChunkingParams":
        return cls(DEFAULT_CHUNK_SIZE, DEFAULT_OVERLAP)


class ChunkMetadata(BaseModel):
    """Section and page attribution plus preview of one indexed chunk."""
    index: int  # 0-based position within its section path
    section_l1: Optional[str] = None
    section_l2: Optional[str] = None
    section_l3: Optional[str] = None
    section_title: str = ""  # deepest present level, "" for a flat document
    section_path: str = ""  # "L1 / L2 / L3"
    section_level: int = Field(default=0, ge=0, le=3)
    page_start: Optional[int] = None  # PDF only
    page_end: Optional[int] = None
    preview: str = ""


class DocumentSummary(BaseModel):
    """Lightweight view of an indexed document, without chunk detail."""
    document_id: str
    project_id: Optional[str] = None
    filename: str
    ingested_at: datetime
    chunk_count: int
    chunk_size: int
    overlap: int
    section_count: int = 0


class DocumentRecord(BaseModel):
    """Full catalog row for an indexed document."""
    document_id: str
    project_id: Optional[str] = None
    filename: str
    ingested_at: datetime
    chunk_count: int
    chunk_size: int
    overlap: int
    section_count: int = 0
    chunk_metadata: List[ChunkMetadata] = Field(default_factory=list)
    chunk_store_handles: List[str] = Field(default_factory=list)

    def to_summary(self) -> DocumentSummary:
        return DocumentSummary(
            document_id=self.document_id,
            project_id=self.project_id,
            filename=self.filename,
            ingested_at=self.ingested_at,
            chunk_count=self.chunk_count,
            chunk_size=self.chunk_size,
            overlap=self.overlap,
            section_count=self.section_count,
        )


class SearchResult(BaseModel):
    """A ranked chunk returned by semantic search."""
    score: float
    text: str
    filename: Optional[str] = None
    document_id: Optional[str] = None
    project_id: Optional[str] = None
    section_path: str = ""
    section_title: str = ""
    section_level: int = 0
    page_start: Optional[int] = None
    page_end: Optional[int] = None


class StoreStats(BaseModel):
    """Aggregate counters over the catalog and vector store."""
    total_documents: int
    total_chunks: int
    store_type: str
    embedding_model: str
    supports_delete: bool
