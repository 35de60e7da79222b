"""Tests for search ranking, limits, project scoping and orphan filtering."""

import pytest

from docingest.core.exceptions import CollaboratorError, ValidationError
from docingest.core.faiss_index import StoreMatch
from docingest.core.ingest import IngestionService
from docingest.core.models import ChunkingParams
from docingest.core.retrieve import SearchService, to_search_result

# Each paragraph below is shorter than a chunk and any two together are longer
PARAMS = ChunkingParams(50, 5)

ANIMALS = "\n\n".join([
    "Il gatto dorme sul divano tutto il pomeriggio",
    "Il cane abbaia al postino ogni mattina",
    "Il gatto e il cane giocano in giardino",
    "Il pappagallo ripete le parole del gatto",
]).encode("utf-8")

FINANCE = "\n\n".join([
    "Il mercato azionario chiude in rialzo",
    "La banca centrale alza i tassi di interesse",
    "Gli investitori comprano obbligazioni sicure",
]).encode("utf-8")


class TestValidation:

    def test_blank_query(self, search_service) -> None:
        with pytest.raises(ValidationError):
            search_service.search("   ")

    def test_limit_below_one(self, search_service) -> None:
        with pytest.raises(ValidationError):
            search_service.search("gatto", limit=0)

    def test_multiplier_below_five(self, embedder, store, catalog) -> None:
        with pytest.raises(ValidationError):
            SearchService(embedder, store, catalog, overfetch_multiplier=4)

    def test_store_failure(self, embedder, store, catalog, monkeypatch) -> None:
        def broken_search(query_vector, k, filter=None):
            raise RuntimeError("index corrupted")

        monkeypatch.setattr(store, "search", broken_search)
        with pytest.raises(CollaboratorError):
            SearchService(embedder, store, catalog).search("gatto")


class TestRanking:

    def test_respects_limit_and_order(self, ingestion, search_service) -> None:
        ingestion.ingest("animali.txt", ANIMALS, PARAMS)
        ingestion.ingest("finanza.txt", FINANCE, PARAMS)

        results = search_service.search("il gatto e il cane", limit=3)

        assert 0 < len(results) <= 3
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        assert results[0].filename == "animali.txt"

    def test_fewer_results_than_limit(self, ingestion, search_service) -> None:
        ingestion.ingest("finanza.txt", FINANCE, PARAMS)
        assert len(search_service.search("tassi", limit=10)) == 3

    def test_empty_index(self, search_service) -> None:
        assert search_service.search("gatto") == []

    def test_result_fields(self, ingestion, search_service) -> None:
        text = "Capitolo 1 Animali\nIl gatto dorme sul divano".encode("utf-8")
        summary = ingestion.ingest("zoo.txt", text, PARAMS, project_id="alpha")

        result = search_service.search("gatto", limit=1)[0]

        assert result.document_id == summary.document_id
        assert result.project_id == "alpha"
        assert result.section_path == "Capitolo 1 Animali"
        assert result.section_level == 1
        assert result.page_start is None


class TestProjectScope:

    def test_filters_by_project(self, ingestion, search_service) -> None:
        ingestion.ingest("animali.txt", ANIMALS, PARAMS, project_id="alpha")
        ingestion.ingest("finanza.txt", FINANCE, PARAMS, project_id="beta")

        results = search_service.search("il gatto", limit=10, project_id="beta")

        assert results
        assert {r.project_id for r in results} == {"beta"}
        assert {r.filename for r in results} == {"finanza.txt"}

    def test_unknown_project(self, ingestion, search_service) -> None:
        ingestion.ingest("animali.txt", ANIMALS, PARAMS, project_id="alpha")
        assert search_service.search("gatto", project_id="gamma") == []


class TestOrphans:

    def test_append_only_store_hides_removed_documents(self, embedder, hnsw_store, catalog) -> None:
        """Vectors left behind by a delete never reach the caller."""
        ingestion = IngestionService(embedder, hnsw_store, catalog)
        search = SearchService(embedder, hnsw_store, catalog)
        removed = ingestion.ingest("animali.txt", ANIMALS, PARAMS)
        kept = ingestion.ingest("finanza.txt", FINANCE, PARAMS)
        ingestion.delete(removed.document_id)

        results = search.search("il gatto e il cane", limit=5)

        assert hnsw_store.get_stats()["total_vectors"] == 7
        assert results
        assert all(r.document_id == kept.document_id for r in results)

    def test_uses_native_filter_only_with_physical_delete(self, embedder, flat_store, hnsw_store, catalog) -> None:
        assert SearchService(embedder, flat_store, catalog).uses_native_filter
        assert not SearchService(embedder, hnsw_store, catalog).uses_native_filter

    def test_overfetch_size(self, embedder, hnsw_store, catalog, monkeypatch) -> None:
        requested = []

        def recording_search(query_vector, k, filter=None):
            requested.append((k, filter))
            return []

        monkeypatch.setattr(hnsw_store, "search", recording_search)
        SearchService(embedder, hnsw_store, catalog, overfetch_multiplier=6).search("gatto", limit=4)

        assert requested == [(24, None)]

    def test_exact_limit_with_native_filter(self, embedder, flat_store, catalog, monkeypatch) -> None:
        requested = []

        def recording_search(query_vector, k, filter=None):
            requested.append((k, filter))
            return []

        monkeypatch.setattr(flat_store, "search", recording_search)
        SearchService(embedder, flat_store, catalog).search("gatto", limit=4, project_id="alpha")

        assert requested == [(4, {"project_id": "alpha"})]

    def test_equal_scores_keep_store_order(self, embedder, hnsw_store, catalog, monkeypatch) -> None:
        ingestion = IngestionService(embedder, hnsw_store, catalog)
        summary = ingestion.ingest("animali.txt", ANIMALS, PARAMS)
        tied = [
            StoreMatch(handle=str(i), score=0.5, text=f"testo {i}", metadata={"document_id": summary.document_id})
            for i in range(4)
        ]
        monkeypatch.setattr(hnsw_store, "search", lambda query_vector, k, filter=None: tied)

        results = SearchService(embedder, hnsw_store, catalog).search("gatto", limit=3)

        assert [r.text for r in results] == ["testo 0", "testo 1", "testo 2"]


def test_to_search_result_defaults() -> None:
    result = to_search_result(StoreMatch(handle="0", score=0.3, text="x"))
    assert result.section_path == ""
    assert result.section_level == 0
    assert result.document_id is None
