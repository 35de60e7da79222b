"""Configuration manager for docingest CLI settings."""

import os
import json
from pathlib import Path
from typing import Dict, Any, List
import logging

from docingest.core.exceptions import ValidationError
from docingest.core.faiss_index import INDEX_FLAT, INDEX_HNSW
from docingest.core.models import ChunkingParams, DEFAULT_CHUNK_SIZE, DEFAULT_OVERLAP
from docingest.core.retrieve import MIN_OVERFETCH_MULTIPLIER
from docingest.core.settings import (
    HIERARCHY_FORWARD,
    HIERARCHY_LEGACY,
    REPLACE_INGEST_THEN_SWAP,
    REPLACE_REMOVE_FIRST,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Any] = {
    "catalog_url": "sqlite:///./data/catalog.db",
    "index_path": "./data/faiss_index",
    "faiss_index": INDEX_FLAT,
    "embed_backend": "local",
    "local_embedding_model": "all-MiniLM-L6-v2",
    "local_embedding_batch_size": 32,
    "overfetch_multiplier": MIN_OVERFETCH_MULTIPLIER,
    "default_chunk_size": DEFAULT_CHUNK_SIZE,
    "default_overlap": DEFAULT_OVERLAP,
    "section_hierarchy_mode": HIERARCHY_FORWARD,
    "replace_strategy": REPLACE_REMOVE_FIRST,
    "log_level": "INFO",
    "json_logs": False,
    "openai_api_key": "",
}

# Config keys whose environment variable is not simply key.upper()
ENV_NAMES = {
    "catalog_url": "DOCINGEST_CATALOG_URL",
    "index_path": "DOCINGEST_INDEX_PATH",
    "overfetch_multiplier": "SEARCH_OVERFETCH_MULTIPLIER",
}

SECRET_KEYS = {"openai_api_key"}


def env_name(key: str) -> str:
    return ENV_NAMES.get(key, key.upper())


def _coerce(key: str, value: Any) -> Any:
    """Convert a CLI string to the type of the key's default."""
    default = DEFAULT_CONFIG[key]
    if not isinstance(value, str):
        return value
    if isinstance(default, bool):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "on"):
            return True
        if lowered in ("false", "0", "no", "off"):
            return False
        raise ValidationError(f"{key} expects true/false (got {value!r})", field=key)
    if isinstance(default, int):
        try:
            return int(value)
        except ValueError as e:
            raise ValidationError(f"{key} expects an integer (got {value!r})", field=key) from e
    return value


class DocIngestConfigManager:
    """Manage docingest configuration settings with persistence."""

    def __init__(self, config_dir: str = "./config"):
        self.config_dir = Path(config_dir)
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_file = self.config_dir / "docingest_cli.json"
        self.overrides: Dict[str, Any] = {}
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file, merged over the defaults."""
        config = dict(DEFAULT_CONFIG)

        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    file_config = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to load config file: {e}, using defaults")
            else:
                unknown = sorted(set(file_config) - set(DEFAULT_CONFIG))
                if unknown:
                    logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
                self.overrides = {k: v for k, v in file_config.items() if k in DEFAULT_CONFIG}
                config.update(self.overrides)
                logger.info("Configuration loaded from file")
        else:
            logger.info("No config file found, using defaults")

        return config

    def _save_config(self):
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(self.overrides, f, indent=2)
        logger.info("Configuration saved to file")

    def get(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    def set(self, key: str, value: Any, persist: bool = True):
        """Set a configuration value and export it to the environment."""
        if key not in DEFAULT_CONFIG:
            raise ValidationError(f"Unknown configuration key: {key}", field=key)

        value = _coerce(key, value)
        self.config[key] = value
        self.overrides[key] = value
        self._export(key, value)

        if persist:
            self._save_config()

        logger.info(f"Set {key} = {'***' if key in SECRET_KEYS else value}")

    def reset(self, key: str, persist: bool = True):
        """Drop a persisted override; the default applies again."""
        if key not in DEFAULT_CONFIG:
            raise ValidationError(f"Unknown configuration key: {key}", field=key)

        self.overrides.pop(key, None)
        self.config[key] = DEFAULT_CONFIG[key]
        os.environ.pop(env_name(key), None)

        if persist:
            self._save_config()

        logger.info(f"Reset {key} to default")

    def get_all(self, mask_secrets: bool = True) -> Dict[str, Any]:
        config = self.config.copy()
        if mask_secrets:
            for key in SECRET_KEYS:
                config[key] = "***" if config.get(key) else "Not set"
        return config

    @staticmethod
    def _export(key: str, value: Any):
        if isinstance(value, bool):
            os.environ[env_name(key)] = str(value).lower()
        else:
            os.environ[env_name(key)] = str(value)

    def apply_to_environment(self) -> List[str]:
        """
        Export persisted overrides as environment variables.

        Variables already present in the environment take precedence.

        Returns:
            Names of the variables that were set
        """
        applied = []
        for key, value in self.overrides.items():
            name = env_name(key)
            if name in os.environ:
                continue
            self._export(key, value)
            applied.append(name)
        return applied

    def validate(self) -> Dict[str, Any]:
        """Validate current configuration."""
        validation = {
            "valid": True,
            "issues": [],
            "warnings": []
        }

        def issue(message: str):
            validation["issues"].append(message)
            validation["valid"] = False

        if not self.get("catalog_url"):
            issue("catalog_url not set")

        if str(self.get("faiss_index", "")).upper() not in (INDEX_FLAT, INDEX_HNSW):
            issue(f"faiss_index must be {INDEX_FLAT} or {INDEX_HNSW}")
        elif str(self.get("faiss_index")).upper() == INDEX_HNSW:
            validation["warnings"].append(
                "HNSW is append-only: removed documents leave orphan vectors that search filters out"
            )

        backend = self.get("embed_backend")
        if backend not in ("local", "openai"):
            issue("embed_backend must be 'local' or 'openai'")
        elif backend == "openai" and not (self.get("openai_api_key") or os.getenv("OPENAI_API_KEY")):
            issue("OPENAI_API_KEY not set (required by the openai embedding backend)")

        batch_size = self.get("local_embedding_batch_size")
        if not isinstance(batch_size, int) or batch_size < 1:
            issue("local_embedding_batch_size must be a positive integer")

        multiplier = self.get("overfetch_multiplier")
        if not isinstance(multiplier, int) or multiplier < MIN_OVERFETCH_MULTIPLIER:
            issue(f"overfetch_multiplier must be an integer >= {MIN_OVERFETCH_MULTIPLIER}")

        try:
            ChunkingParams(int(self.get("default_chunk_size")), int(self.get("default_overlap")))
        except (TypeError, ValueError, ValidationError) as e:
            issue(f"default chunking parameters are invalid: {getattr(e, 'message', e)}")

        if self.get("section_hierarchy_mode") not in (HIERARCHY_FORWARD, HIERARCHY_LEGACY):
            issue(f"section_hierarchy_mode must be '{HIERARCHY_FORWARD}' or '{HIERARCHY_LEGACY}'")
        elif self.get("section_hierarchy_mode") == HIERARCHY_LEGACY:
            validation["warnings"].append("legacy section hierarchy does not clear deeper headings")

        if self.get("replace_strategy") not in (REPLACE_REMOVE_FIRST, REPLACE_INGEST_THEN_SWAP):
            issue(f"replace_strategy must be '{REPLACE_REMOVE_FIRST}' or '{REPLACE_INGEST_THEN_SWAP}'")

        return validation


def get_config_manager() -> DocIngestConfigManager:
    """Get the configuration manager for the configured directory."""
    config_dir = os.getenv("DOCINGEST_CONFIG_DIR", "./config")
    return DocIngestConfigManager(config_dir)
