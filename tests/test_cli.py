"""Tests for the docingest command line."""

import json

import pytest
from typer.testing import CliRunner

from docingest.cli import main
from docingest.core.ingest import IngestionService
from docingest.core.retrieve import SearchService
from docingest.core.settings import Settings

runner = CliRunner()

TEXT = "Capitolo 1 Premessa\nIl gatto dorme sul divano.\n\nArt. 1 Oggetto\nIl cane abbaia."


@pytest.fixture
def services(embedder, flat_store, catalog, monkeypatch, tmp_path):
    """Route every command to services backed by temp storage."""
    monkeypatch.setenv("DOCINGEST_CONFIG_DIR", str(tmp_path / "config"))
    wired = main.Services(
        settings=Settings(),
        ingestion=IngestionService(embedder, flat_store, catalog),
        search=SearchService(embedder, flat_store, catalog),
    )
    monkeypatch.setattr(main, "_build_services", lambda: wired)
    return wired


@pytest.fixture
def text_file(tmp_path):
    path = tmp_path / "doc.txt"
    path.write_text(TEXT, encoding="utf-8")
    return path


class TestDocumentCommands:

    def test_ingest(self, services, text_file) -> None:
        result = runner.invoke(main.app, ["ingest", str(text_file), "--project", "alpha"])

        assert result.exit_code == 0, result.output
        assert "Ingestion complete" in result.output
        [summary] = services.ingestion.list()
        assert summary.filename == "doc.txt"
        assert summary.project_id == "alpha"
        assert summary.section_count == 1
        assert summary.document_id in result.output

    def test_ingest_custom_params(self, services, text_file) -> None:
        result = runner.invoke(main.app, ["ingest", str(text_file), "--chunk-size", "60", "--overlap", "5"])

        assert result.exit_code == 0, result.output
        [summary] = services.ingestion.list()
        assert (summary.chunk_size, summary.overlap) == (60, 5)

    def test_ingest_invalid_params(self, services, text_file) -> None:
        result = runner.invoke(main.app, ["ingest", str(text_file), "--chunk-size", "40"])

        assert result.exit_code == main.EXIT_USAGE
        assert services.ingestion.list() == []

    def test_ingest_missing_file(self, services, tmp_path) -> None:
        result = runner.invoke(main.app, ["ingest", str(tmp_path / "nope.txt")])
        assert result.exit_code == main.EXIT_USAGE

    def test_ingest_empty_file(self, services, tmp_path) -> None:
        empty = tmp_path / "empty.txt"
        empty.write_bytes(b"")

        result = runner.invoke(main.app, ["ingest", str(empty)])

        assert result.exit_code == main.EXIT_USAGE

    def test_ingest_parse_failure(self, services, tmp_path) -> None:
        broken = tmp_path / "broken.pdf"
        broken.write_bytes(b"definitely not a pdf document")

        result = runner.invoke(main.app, ["ingest", str(broken)])

        assert result.exit_code == 1
        assert "Error during ingestion" in result.output

    def test_search(self, services, text_file) -> None:
        runner.invoke(main.app, ["ingest", str(text_file)])

        result = runner.invoke(main.app, ["search", "gatto divano", "--limit", "1"])

        assert result.exit_code == 0, result.output
        assert "doc.txt" in result.output
        assert "Capitolo 1 Premessa" in result.output

    def test_search_blank_query(self, services) -> None:
        result = runner.invoke(main.app, ["search", "  "])
        assert result.exit_code == main.EXIT_USAGE

    def test_search_no_results(self, services) -> None:
        result = runner.invoke(main.app, ["search", "gatto"])
        assert result.exit_code == 0
        assert "No results found" in result.output

    def test_list(self, services, text_file) -> None:
        runner.invoke(main.app, ["ingest", str(text_file)])

        result = runner.invoke(main.app, ["list"])

        assert result.exit_code == 0, result.output
        assert "doc.txt" in result.output

    def test_list_empty(self, services) -> None:
        result = runner.invoke(main.app, ["list"])
        assert "No documents indexed" in result.output

    def test_get(self, services, text_file) -> None:
        runner.invoke(main.app, ["ingest", str(text_file)])
        [summary] = services.ingestion.list()

        result = runner.invoke(main.app, ["get", summary.document_id, "--chunks"])

        assert result.exit_code == 0, result.output
        assert "doc.txt" in result.output
        assert "Chunks" in result.output

    def test_get_unknown(self, services) -> None:
        result = runner.invoke(main.app, ["get", "missing"])

        assert result.exit_code == main.EXIT_USAGE
        assert "Document not found" in result.output

    def test_delete(self, services, text_file) -> None:
        runner.invoke(main.app, ["ingest", str(text_file)])
        [summary] = services.ingestion.list()

        result = runner.invoke(main.app, ["delete", summary.document_id])

        assert result.exit_code == 0, result.output
        assert services.ingestion.list() == []

    def test_delete_unknown(self, services) -> None:
        result = runner.invoke(main.app, ["delete", "missing"])
        assert result.exit_code == main.EXIT_USAGE

    def test_replace(self, services, text_file, tmp_path) -> None:
        runner.invoke(main.app, ["ingest", str(text_file), "--project", "alpha"])
        [old] = services.ingestion.list()
        new_version = tmp_path / "doc_v2.txt"
        new_version.write_text("Capitolo 1 Nuovo\nContenuto aggiornato.", encoding="utf-8")

        result = runner.invoke(main.app, ["replace", old.document_id, str(new_version)])

        assert result.exit_code == 0, result.output
        [new] = services.ingestion.list()
        assert new.document_id != old.document_id
        assert new.filename == "doc.txt"
        assert new.project_id == "alpha"

    def test_replace_unknown(self, services, text_file) -> None:
        result = runner.invoke(main.app, ["replace", "missing", str(text_file)])
        assert result.exit_code == main.EXIT_USAGE

    def test_stats(self, services, text_file) -> None:
        runner.invoke(main.app, ["ingest", str(text_file)])

        result = runner.invoke(main.app, ["stats"])

        assert result.exit_code == 0, result.output
        assert "Documents:" in result.output
        assert "FAISS-FLAT" in result.output
        assert "hashing-test" in result.output


class TestConfigCommand:

    @pytest.fixture(autouse=True)
    def config_dir(self, tmp_path, monkeypatch):
        config_dir = tmp_path / "config"
        monkeypatch.setenv("DOCINGEST_CONFIG_DIR", str(config_dir))
        # Registered so monkeypatch restores whatever the commands export
        monkeypatch.setenv("SEARCH_OVERFETCH_MULTIPLIER", "5")
        monkeypatch.setenv("FAISS_INDEX", "FLAT")
        return config_dir

    def test_show(self) -> None:
        result = runner.invoke(main.app, ["config", "show"])

        assert result.exit_code == 0
        assert "catalog_url" in result.output
        assert "openai_api_key" in result.output

    def test_set_persists(self, config_dir) -> None:
        result = runner.invoke(main.app, ["config", "set", "overfetch_multiplier", "8"])

        assert result.exit_code == 0, result.output
        saved = json.loads((config_dir / "docingest_cli.json").read_text())
        assert saved == {"overfetch_multiplier": 8}

    def test_set_unknown_key(self) -> None:
        result = runner.invoke(main.app, ["config", "set", "no_such_key", "1"])
        assert result.exit_code == main.EXIT_USAGE

    def test_set_requires_value(self) -> None:
        result = runner.invoke(main.app, ["config", "set", "faiss_index"])
        assert result.exit_code == main.EXIT_USAGE

    def test_validate(self) -> None:
        result = runner.invoke(main.app, ["config", "validate"])
        assert result.exit_code == 0, result.output
        assert "Configuration is valid" in result.output

    def test_validate_reports_issues(self) -> None:
        runner.invoke(main.app, ["config", "set", "overfetch_multiplier", "3"])

        result = runner.invoke(main.app, ["config", "validate"])

        assert result.exit_code == 1
        assert "overfetch_multiplier" in result.output

    def test_reset(self, config_dir) -> None:
        runner.invoke(main.app, ["config", "set", "faiss_index", "HNSW"])

        result = runner.invoke(main.app, ["config", "reset", "faiss_index"])

        assert result.exit_code == 0, result.output
        assert json.loads((config_dir / "docingest_cli.json").read_text()) == {}

    def test_unknown_action(self) -> None:
        result = runner.invoke(main.app, ["config", "explode"])
        assert result.exit_code == main.EXIT_USAGE


class TestServiceWiring:

    @pytest.fixture(autouse=True)
    def environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("DOCINGEST_CONFIG_DIR", str(tmp_path / "config"))
        monkeypatch.setenv("DOCINGEST_CATALOG_URL", f"sqlite:///{tmp_path / 'catalog.db'}")
        monkeypatch.setenv("DOCINGEST_INDEX_PATH", str(tmp_path / "index"))
        monkeypatch.setenv("OPENAI_API_KEY", "")

    @pytest.mark.parametrize("name,value", [
        ("EMBED_BACKEND", "carrier-pigeon"),
        ("EMBED_BACKEND", "openai"),
    ])
    def test_bad_settings_exit_cleanly(self, monkeypatch, name, value) -> None:
        monkeypatch.setenv(name, value)

        result = runner.invoke(main.app, ["stats"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output
        assert not isinstance(result.exception, ValueError)
