"""Document catalog: durable registry of indexed documents keyed by document_id.

One SQLAlchemy engine is shared by every operation and access is serialised
through a single lock; each operation is atomic on its own, but sequences of
operations (remove then register) are not composed into one transaction.

Schema evolution is destructive: if the persisted structure predates the
current one, the tables are dropped and recreated empty and every document
must be re-ingested.
"""

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import structlog
from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    func,
    inspect,
    insert,
    select,
)
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.pool import StaticPool

from .exceptions import CatalogSchemaError
from .logging_config import get_audit_logger, log_catalog_rebuild
from .models import ChunkMetadata, DocumentRecord, DocumentSummary

logger = structlog.get_logger(__name__)

# Bump whenever the documents table changes shape
CATALOG_SCHEMA_VERSION = "3"
SCHEMA_VERSION_KEY = "schema_version"

metadata = MetaData()

documents = Table(
    "documents",
    metadata,
    Column("document_id", String(64), primary_key=True),
    Column("project_id", String(255), nullable=True, index=True),
    Column("filename", String(1024), nullable=False),
    Column("ingested_at", DateTime(timezone=True), nullable=False),
    Column("chunk_count", Integer, nullable=False),
    Column("chunk_size", Integer, nullable=False),
    Column("overlap", Integer, nullable=False),
    Column("section_count", Integer, nullable=False, server_default="0"),
    Column("chunk_metadata", Text, nullable=False),
    Column("chunk_store_handles", Text, nullable=False),
)

catalog_meta = Table(
    "catalog_meta",
    metadata,
    Column("key", String(64), primary_key=True),
    Column("value", String(255), nullable=False),
)

REQUIRED_COLUMNS = frozenset(c.name for c in documents.columns)

SUMMARY_COLUMNS = (
    documents.c.document_id,
    documents.c.project_id,
    documents.c.filename,
    documents.c.ingested_at,
    documents.c.chunk_count,
    documents.c.chunk_size,
    documents.c.overlap,
    documents.c.section_count,
)


def _utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DocumentCatalog:
    """Lock-guarded repository of DocumentRecord rows."""

    def __init__(self, url: str = "sqlite:///./data/catalog.db", rebuild_on_mismatch: bool = True):
        """
        Open the catalog and reconcile its schema.

        Args:
            url: SQLAlchemy database URL (sqlite, or postgresql+psycopg)
            rebuild_on_mismatch: Drop and recreate outdated tables instead of raising

        Raises:
            CatalogSchemaError: Schema mismatch with rebuild_on_mismatch=False
        """
        self.url = url
        self._lock = threading.Lock()
        self._engine = self._create_engine(url)
        self._audit = get_audit_logger("catalog")

        with self._lock:
            self._ensure_schema(rebuild_on_mismatch)

        logger.info("catalog_ready", url=self._engine.url.render_as_string(hide_password=True))

    @staticmethod
    def _create_engine(url: str):
        parsed = make_url(url)
        if parsed.get_backend_name() != "sqlite":
            return create_engine(url, pool_pre_ping=True)

        database = parsed.database
        if not database or database == ":memory:":
            # A single shared connection, otherwise every checkout sees a fresh empty database
            return create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )

        Path(database).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url, connect_args={"check_same_thread": False})

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _ensure_schema(self, rebuild_on_mismatch: bool) -> None:
        with self._engine.begin() as conn:
            try:
                fresh = self._verify_schema(conn)
            except CatalogSchemaError as e:
                if not rebuild_on_mismatch:
                    raise
                self._rebuild(conn, e)
                return

            if fresh:
                # A stale version row may outlive a dropped documents table
                metadata.create_all(conn, checkfirst=True)
                self._write_version(conn)

    def _verify_schema(self, conn: Connection) -> bool:
        """
        Compare the persisted documents table with the expected structure.

        Returns:
            True when there is no documents table yet
        """
        inspector = inspect(conn)
        tables = set(inspector.get_table_names())
        if "documents" not in tables:
            return True

        problems = []
        columns = {col["name"] for col in inspector.get_columns("documents")}
        missing = sorted(REQUIRED_COLUMNS - columns)
        if missing:
            problems.append(f"missing columns: {', '.join(missing)}")

        if not self._document_id_is_unique(inspector):
            problems.append("documents is not keyed by document_id")

        version = None
        if "catalog_meta" in tables:
            version = conn.execute(
                select(catalog_meta.c.value).where(catalog_meta.c.key == SCHEMA_VERSION_KEY)
            ).scalar_one_or_none()
        if version != CATALOG_SCHEMA_VERSION:
            problems.append(f"schema version {version!r}, expected {CATALOG_SCHEMA_VERSION!r}")

        if problems:
            raise CatalogSchemaError(
                "Catalog schema does not match the current structure",
                details={"problems": problems, "columns": sorted(columns)},
            )
        return False

    @staticmethod
    def _document_id_is_unique(inspector) -> bool:
        pk = inspector.get_pk_constraint("documents").get("constrained_columns") or []
        if pk == ["document_id"]:
            return True
        for constraint in inspector.get_unique_constraints("documents"):
            if constraint.get("column_names") == ["document_id"]:
                return True
        for index in inspector.get_indexes("documents"):
            if index.get("unique") and index.get("column_names") == ["document_id"]:
                return True
        return False

    def _rebuild(self, conn: Connection, error: CatalogSchemaError) -> None:
        log_catalog_rebuild(
            self._audit,
            catalog_url=self._engine.url.render_as_string(hide_password=True),
            problems=error.details.get("problems", []),
            details={"columns": error.details.get("columns", [])},
        )
        metadata.drop_all(conn, checkfirst=True)
        metadata.create_all(conn)
        self._write_version(conn)

    @staticmethod
    def _write_version(conn: Connection) -> None:
        conn.execute(delete(catalog_meta).where(catalog_meta.c.key == SCHEMA_VERSION_KEY))
        conn.execute(insert(catalog_meta).values(key=SCHEMA_VERSION_KEY, value=CATALOG_SCHEMA_VERSION))

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _to_row(record: DocumentRecord) -> dict:
        return {
            "document_id": record.document_id,
            "project_id": record.project_id,
            "filename": record.filename,
            "ingested_at": _utc(record.ingested_at),
            "chunk_count": record.chunk_count,
            "chunk_size": record.chunk_size,
            "overlap": record.overlap,
            "section_count": record.section_count,
            "chunk_metadata": json.dumps([m.model_dump() for m in record.chunk_metadata]),
            "chunk_store_handles": json.dumps(list(record.chunk_store_handles)),
        }

    @staticmethod
    def _to_record(row) -> DocumentRecord:
        return DocumentRecord(
            document_id=row.document_id,
            project_id=row.project_id,
            filename=row.filename,
            ingested_at=_utc(row.ingested_at),
            chunk_count=row.chunk_count,
            chunk_size=row.chunk_size,
            overlap=row.overlap,
            section_count=row.section_count,
            chunk_metadata=[ChunkMetadata(**m) for m in json.loads(row.chunk_metadata)],
            chunk_store_handles=json.loads(row.chunk_store_handles),
        )

    @staticmethod
    def _to_summary(row) -> DocumentSummary:
        return DocumentSummary(
            document_id=row.document_id,
            project_id=row.project_id,
            filename=row.filename,
            ingested_at=_utc(row.ingested_at),
            chunk_count=row.chunk_count,
            chunk_size=row.chunk_size,
            overlap=row.overlap,
            section_count=row.section_count,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def register(self, record: DocumentRecord) -> None:
        """Insert or fully overwrite the row for record.document_id."""
        with self._lock, self._engine.begin() as conn:
            conn.execute(delete(documents).where(documents.c.document_id == record.document_id))
            conn.execute(insert(documents).values(**self._to_row(record)))
        logger.debug("catalog_registered", document_id=record.document_id, chunk_count=record.chunk_count)

    def find_by_id(self, document_id: str) -> Optional[DocumentRecord]:
        with self._lock, self._engine.connect() as conn:
            row = conn.execute(
                select(documents).where(documents.c.document_id == document_id)
            ).first()
        return self._to_record(row) if row is not None else None

    def list(self, project_id: Optional[str] = None) -> List[DocumentRecord]:
        """All records, newest first, optionally scoped to a project."""
        query = select(documents).order_by(documents.c.ingested_at.desc())
        if project_id is not None:
            query = query.where(documents.c.project_id == project_id)
        with self._lock, self._engine.connect() as conn:
            rows = conn.execute(query).all()
        return [self._to_record(row) for row in rows]

    def list_summaries(self, project_id: Optional[str] = None) -> List[DocumentSummary]:
        query = select(*SUMMARY_COLUMNS).order_by(documents.c.ingested_at.desc())
        if project_id is not None:
            query = query.where(documents.c.project_id == project_id)
        with self._lock, self._engine.connect() as conn:
            rows = conn.execute(query).all()
        return [self._to_summary(row) for row in rows]

    def remove(self, document_id: str) -> Optional[List[str]]:
        """
        Delete a document row.

        Returns:
            The vector store handles the document owned, or None if the id is unknown
        """
        with self._lock, self._engine.begin() as conn:
            handles = conn.execute(
                select(documents.c.chunk_store_handles).where(documents.c.document_id == document_id)
            ).scalar_one_or_none()
            if handles is None:
                return None
            conn.execute(delete(documents).where(documents.c.document_id == document_id))
        logger.debug("catalog_removed", document_id=document_id)
        return json.loads(handles)

    def is_active(self, document_id: str) -> bool:
        """Whether the document id belongs to a currently catalogued document."""
        with self._lock, self._engine.connect() as conn:
            row = conn.execute(
                select(documents.c.document_id).where(documents.c.document_id == document_id).limit(1)
            ).first()
        return row is not None

    def total_documents(self) -> int:
        with self._lock, self._engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(documents)).scalar_one()

    def total_chunks(self) -> int:
        with self._lock, self._engine.connect() as conn:
            return conn.execute(select(func.coalesce(func.sum(documents.c.chunk_count), 0))).scalar_one()

    def close(self) -> None:
        self._engine.dispose()
