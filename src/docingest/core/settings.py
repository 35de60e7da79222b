"""Runtime settings resolved from environment variables (and .env)."""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from .models import DEFAULT_CHUNK_SIZE, DEFAULT_OVERLAP

# Load environment variables
load_dotenv()

HIERARCHY_FORWARD = "forward"
HIERARCHY_LEGACY = "legacy"

REPLACE_REMOVE_FIRST = "remove_first"
REPLACE_INGEST_THEN_SWAP = "ingest_then_swap"


@dataclass
class Settings:
    catalog_url: str = "sqlite:///./data/catalog.db"
    index_path: str = "./data/faiss_index"
    faiss_index: str = "FLAT"
    embed_backend: str = "local"
    local_embedding_model: str = "all-MiniLM-L6-v2"
    local_embedding_batch_size: int = 32
    overfetch_multiplier: int = 5
    default_chunk_size: int = DEFAULT_CHUNK_SIZE
    default_overlap: int = DEFAULT_OVERLAP
    section_hierarchy_mode: str = HIERARCHY_FORWARD
    replace_strategy: str = REPLACE_REMOVE_FIRST
    log_level: str = "INFO"
    json_logs: bool = False

    @property
    def legacy_hierarchy(self) -> bool:
        return self.section_hierarchy_mode == HIERARCHY_LEGACY


def get_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings(
        catalog_url=os.getenv("DOCINGEST_CATALOG_URL", "sqlite:///./data/catalog.db"),
        index_path=os.getenv("DOCINGEST_INDEX_PATH", "./data/faiss_index"),
        faiss_index=os.getenv("FAISS_INDEX", "FLAT").upper(),
        embed_backend=os.getenv("EMBED_BACKEND", "local").lower(),
        local_embedding_model=os.getenv("LOCAL_EMBEDDING_MODEL", "all-MiniLM-L6-v2"),
        local_embedding_batch_size=int(os.getenv("LOCAL_EMBEDDING_BATCH_SIZE", "32")),
        overfetch_multiplier=int(os.getenv("SEARCH_OVERFETCH_MULTIPLIER", "5")),
        default_chunk_size=int(os.getenv("DEFAULT_CHUNK_SIZE", str(DEFAULT_CHUNK_SIZE))),
        default_overlap=int(os.getenv("DEFAULT_OVERLAP", str(DEFAULT_OVERLAP))),
        section_hierarchy_mode=os.getenv("SECTION_HIERARCHY_MODE", HIERARCHY_FORWARD).lower(),
        replace_strategy=os.getenv("REPLACE_STRATEGY", REPLACE_REMOVE_FIRST).lower(),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        json_logs=os.getenv("JSON_LOGS", "false").lower() == "true",
    )
