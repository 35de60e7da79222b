"""Structured logging configuration for docingest."""

import logging
from typing import Any, Dict, List, Optional

import structlog
from structlog.stdlib import LoggerFactory


def configure_logging(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structured logging with audit capabilities."""

    # Set log level
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level)

    # Configure structlog processors
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if json_logs:
        # JSON output for production/audit
        processors.append(structlog.processors.JSONRenderer())
    else:
        # Human-readable for development
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        logger_factory=LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def get_audit_logger(component: str) -> structlog.BoundLogger:
    """Get a logger with audit context for a specific component."""
    logger = structlog.get_logger(component)
    return logger.bind(component=component, audit=True)


def log_ingestion_event(
    logger: structlog.BoundLogger,
    filename: str,
    document_id: str,
    project_id: Optional[str],
    chunks_created: int,
    section_count: int,
    pages: int,
    processing_time_ms: float
) -> None:
    """Log document ingestion for audit trail."""
    logger.info(
        "document_ingested",
        filename=filename,
        document_id=document_id,
        project_id=project_id,
        chunks_created=chunks_created,
        section_count=section_count,
        pages=pages,
        processing_time_ms=processing_time_ms,
        event_type="document_ingestion"
    )


def log_search_event(
    logger: structlog.BoundLogger,
    query: str,
    project_id: Optional[str],
    limit: int,
    candidates: int,
    results_count: int,
    filtered_orphans: int,
    execution_time_ms: float
) -> None:
    """Log search execution, including how many orphan candidates were dropped."""
    logger.info(
        "search_completed",
        query=query,
        project_id=project_id,
        limit=limit,
        candidates=candidates,
        results_count=results_count,
        filtered_orphans=filtered_orphans,
        execution_time_ms=execution_time_ms,
        event_type="search"
    )


def log_catalog_rebuild(
    logger: structlog.BoundLogger,
    catalog_url: str,
    problems: List[str],
    details: Dict[str, Any]
) -> None:
    """Loud warning: the catalog was rebuilt empty and documents must be re-ingested."""
    logger.warning(
        "catalog_schema_rebuilt",
        catalog_url=catalog_url,
        problems=problems,
        details=details,
        action_required="re-ingest all previously catalogued documents",
        event_type="catalog_schema_rebuild"
    )
