import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from docingest.core.catalog import DocumentCatalog
from docingest.core.embed import get_embedding_client
from docingest.core.exceptions import ConfigurationError, DocIngestError, NotFoundError, ValidationError
from docingest.core.faiss_index import FAISSConfig, FAISSVectorStore
from docingest.core.ingest import IngestionService
from docingest.core.logging_config import configure_logging
from docingest.core.models import ChunkingParams, DocumentSummary
from docingest.core.retrieve import SearchService
from docingest.core.settings import Settings, get_settings
from docingest.cli.config_manager import DEFAULT_CONFIG, get_config_manager

app = typer.Typer(help="docingest: section-aware document ingestion and semantic search")
console = Console()

# Initialize structured logging
configure_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "false").lower() == "true"
)

# Exit code for caller mistakes (bad input, unknown document); 1 is an internal failure
EXIT_USAGE = 2


@dataclass
class Services:
    settings: Settings
    ingestion: IngestionService
    search: SearchService


def _build_services() -> Services:
    """Wire the catalog, vector store and embedding client from the current settings."""
    get_config_manager().apply_to_environment()
    try:
        settings = get_settings()
        embedder = get_embedding_client(
            settings.embed_backend,
            model_name=settings.local_embedding_model,
            batch_size=settings.local_embedding_batch_size,
        )
        store = FAISSVectorStore(Path(settings.index_path), FAISSConfig(settings.faiss_index))
        catalog = DocumentCatalog(settings.catalog_url)
        ingestion = IngestionService(
            embedder,
            store,
            catalog,
            legacy_hierarchy=settings.legacy_hierarchy,
            replace_strategy=settings.replace_strategy,
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    return Services(
        settings=settings,
        ingestion=ingestion,
        search=SearchService(embedder, store, catalog, overfetch_multiplier=settings.overfetch_multiplier),
    )


def _fail(error: Exception, action: str):
    if isinstance(error, (ValidationError, NotFoundError)):
        console.print(f"[red]Error:[/] {error.message}")
        raise typer.Exit(EXIT_USAGE)
    console.print(f"[red]Error during {action}:[/] {error}")
    raise typer.Exit(1)


def _chunking_params(settings: Settings, chunk_size: Optional[int], overlap: Optional[int]) -> ChunkingParams:
    return ChunkingParams(
        chunk_size if chunk_size is not None else settings.default_chunk_size,
        overlap if overlap is not None else settings.default_overlap,
    )


def _read_file(path: str) -> bytes:
    file_path = Path(path)
    if not file_path.is_file():
        raise ValidationError(f"File {path} does not exist", field="file")
    return file_path.read_bytes()


def _print_summary(summary: DocumentSummary):
    console.print(f"[bold]Document ID:[/] {summary.document_id}")
    console.print(f"[bold]Filename:[/] {summary.filename}")
    if summary.project_id:
        console.print(f"[bold]Project:[/] {summary.project_id}")
    console.print(f"[bold]Chunks:[/] {summary.chunk_count} (size {summary.chunk_size}, overlap {summary.overlap})")
    console.print(f"[bold]Sections:[/] {summary.section_count}")
    console.print(f"[bold]Ingested at:[/] {summary.ingested_at.isoformat()}")


def _pages(page_start: Optional[int], page_end: Optional[int]) -> str:
    if page_start is None:
        return "-"
    if page_start == page_end:
        return str(page_start)
    return f"{page_start}-{page_end}"


@app.command()
def ingest(
    path: str = typer.Argument(..., help="PDF or UTF-8 text file"),
    chunk_size: Optional[int] = typer.Option(None, help="Chunk size in characters (default 500)"),
    overlap: Optional[int] = typer.Option(None, help="Overlap between chunks in characters (default 50)"),
    project: Optional[str] = typer.Option(None, "--project", help="Project scope"),
):
    """Ingest a document: detect sections, chunk, embed and index it."""
    console.print(f"[bold]Ingesting:[/] {path}")

    try:
        data = _read_file(path)
        services = _build_services()
        params = _chunking_params(services.settings, chunk_size, overlap)
        with console.status("[bold green]Processing document..."):
            summary = services.ingestion.ingest(Path(path).name, data, params, project_id=project)
    except DocIngestError as e:
        _fail(e, "ingestion")

    console.print("[green]✅ Ingestion complete![/]")
    _print_summary(summary)


@app.command()
def search(
    query: str = typer.Argument(..., help="Natural language query"),
    limit: int = typer.Option(5, "--limit", "-k", help="Maximum number of results"),
    project: Optional[str] = typer.Option(None, "--project", help="Restrict to a project"),
):
    """Semantic search over indexed chunks."""
    try:
        services = _build_services()
        results = services.search.search(query, limit=limit, project_id=project)
    except DocIngestError as e:
        _fail(e, "search")

    if not results:
        console.print("[yellow]No results found[/]")
        return

    console.print(f"[bold]🔍 {len(results)} result(s) for:[/] {query}")
    for rank, result in enumerate(results, 1):
        console.print(
            f"\n[bold blue]{rank}. {result.filename}[/] "
            f"[dim](score {result.score:.3f}, pages {_pages(result.page_start, result.page_end)})[/]"
        )
        if result.section_path:
            console.print(f"   [bold]Section:[/] {result.section_path}")
        console.print(f"   {result.text}", markup=False)


@app.command("list")
def list_documents(
    project: Optional[str] = typer.Option(None, "--project", help="Restrict to a project"),
):
    """List indexed documents, newest first."""
    try:
        services = _build_services()
        summaries = services.ingestion.list(project)
    except DocIngestError as e:
        _fail(e, "listing")

    if not summaries:
        console.print("[yellow]No documents indexed[/]")
        return

    table = Table(title="Indexed documents")
    table.add_column("Filename", style="blue")
    table.add_column("Document ID", overflow="fold")
    table.add_column("Project")
    table.add_column("Chunks", justify="right")
    table.add_column("Sections", justify="right")
    table.add_column("Ingested at")
    for summary in summaries:
        table.add_row(
            summary.filename,
            summary.document_id,
            summary.project_id or "-",
            str(summary.chunk_count),
            str(summary.section_count),
            summary.ingested_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


@app.command()
def get(
    document_id: str = typer.Argument(..., help="Document ID"),
    chunks: bool = typer.Option(False, "--chunks", help="Show per-chunk section and page detail"),
):
    """Show the full catalog record of a document."""
    try:
        services = _build_services()
        record = services.ingestion.get(document_id)
    except DocIngestError as e:
        _fail(e, "lookup")

    _print_summary(record.to_summary())

    if not chunks:
        return

    table = Table(title="Chunks")
    table.add_column("#", justify="right")
    table.add_column("Section")
    table.add_column("Level", justify="right")
    table.add_column("Pages")
    table.add_column("Preview", overflow="fold")
    for chunk in record.chunk_metadata:
        table.add_row(
            str(chunk.index),
            chunk.section_path or "-",
            str(chunk.section_level),
            _pages(chunk.page_start, chunk.page_end),
            chunk.preview,
        )
    console.print(table)


@app.command()
def delete(
    document_id: str = typer.Argument(..., help="Document ID"),
):
    """Remove a document from the catalog (and its vectors, when the index supports it)."""
    try:
        services = _build_services()
        removed = services.ingestion.delete(document_id)
    except DocIngestError as e:
        _fail(e, "delete")

    if not removed:
        console.print(f"[red]Error:[/] Document not found: {document_id}")
        raise typer.Exit(EXIT_USAGE)

    console.print(f"[green]✅ Deleted document {document_id}[/]")
    if not services.ingestion.store.supports_delete:
        console.print("[yellow]Note:[/] the index is append-only; its vectors stay hidden from search")


@app.command()
def replace(
    document_id: str = typer.Argument(..., help="Document ID to replace"),
    path: str = typer.Argument(..., help="New version of the document"),
    chunk_size: Optional[int] = typer.Option(None, help="Chunk size in characters (default 500)"),
    overlap: Optional[int] = typer.Option(None, help="Overlap between chunks in characters (default 50)"),
):
    """Replace a document with a new version; the new version gets a new document ID."""
    try:
        data = _read_file(path)
        services = _build_services()
        params = _chunking_params(services.settings, chunk_size, overlap)
        with console.status("[bold green]Re-ingesting document..."):
            summary = services.ingestion.reingest(document_id, data, params)
    except DocIngestError as e:
        _fail(e, "replace")

    console.print(f"[green]✅ Replaced {document_id}[/]")
    _print_summary(summary)


@app.command()
def stats():
    """Show catalog and index statistics."""
    try:
        services = _build_services()
        store_stats = services.ingestion.stats()
    except DocIngestError as e:
        _fail(e, "stats")

    console.print(Panel.fit(
        f"[bold]Documents:[/] {store_stats.total_documents}\n"
        f"[bold]Chunks:[/] {store_stats.total_chunks}\n"
        f"[bold]Index:[/] {store_stats.store_type}\n"
        f"[bold]Embedding model:[/] {store_stats.embedding_model}\n"
        f"[bold]Physical delete:[/] {'yes' if store_stats.supports_delete else 'no (append-only)'}",
        title="📊 docingest",
        border_style="blue"
    ))


@app.command()
def config(
    action: str = typer.Argument(..., help="Action: show, set, reset, validate"),
    key: Optional[str] = typer.Argument(None, help="Configuration key"),
    value: Optional[str] = typer.Argument(None, help="Configuration value")
):
    """Manage docingest configuration settings."""
    config_manager = get_config_manager()

    if action == "show":
        console.print("\n[bold]Current Configuration:[/]")
        for name, current in config_manager.get_all().items():
            console.print(f"  [blue]{name}:[/] {current}")
    elif action == "set":
        if not key or value is None:
            console.print("[red]Error:[/] Both key and value required for 'set' action")
            raise typer.Exit(EXIT_USAGE)
        try:
            config_manager.set(key, value)
        except ValidationError as e:
            _fail(e, "config")
        console.print(f"[green]✅ Set {key}[/]")
    elif action == "reset":
        if not key:
            console.print("[red]Error:[/] Key required for 'reset' action")
            raise typer.Exit(EXIT_USAGE)
        try:
            config_manager.reset(key)
        except ValidationError as e:
            _fail(e, "config")
        console.print(f"[green]✅ Reset {key} to default ({DEFAULT_CONFIG[key]})[/]")
    elif action == "validate":
        validation = config_manager.validate()
        for warning in validation["warnings"]:
            console.print(f"[yellow]Warning:[/] {warning}")
        if not validation["valid"]:
            for issue in validation["issues"]:
                console.print(f"[red]Issue:[/] {issue}")
            raise typer.Exit(1)
        console.print("[green]✅ Configuration is valid[/]")
    else:
        console.print(f"[red]Error:[/] Unknown action: {action}")
        console.print("Available actions: show, set, reset, validate")
        raise typer.Exit(EXIT_USAGE)


if __name__ == "__main__":
    app()
