"""
Configuration Loading
----------------------
Settings live in `config/config.yaml`; secrets (OPENAI_API_KEY) come from the
environment or a `.env` file.  `load_config()` deep-merges the YAML file over
DEFAULT_CONFIG, so a missing file or a partial file still yields a complete
configuration.

Components receive their own section as a plain dict and read keys with
`.get(key, default)`, e.g. `DocumentChunker.from_config(cfg["chunking"])`.
"""
from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from loguru import logger

DEFAULT_CONFIG_PATH = "config/config.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "chunking": {
        "min_chunk_size": 500,
        "default_chunk_size": 1000,
        "max_chunk_size": 2000,
        "small_document_threshold": 2_000,
        "large_document_threshold": 10_000,
        "very_large_document_threshold": 50_000,
        "large_chunk_size": 1500,
        "overlap_ratio": 0.10,
        "lookback_ratio": 0.5,
    },
    "ingestion": {
        "max_documents_per_bot": 1000,
        "website_batch_size": 3,
        "max_urls_per_batch": 50,
        "scrape_timeout_seconds": 15.0,
        "pdf_max_size_bytes": 50 * 1024 * 1024,
    },
    "embedding": {
        "model": "text-embedding-3-small",
        "dimensions": 1536,
    },
    "retrieval": {
        "top_k": 4,
        "min_query_chars": 6,
    },
    "analytics": {
        "default_window_days": 7,
        "queue_size": 1000,
    },
    "storage": {
        "documents_path": "data/documents.json",
        "usage_log_path": "data/usage_log.json",
    },
    "logging": {
        "level": "INFO",
        "file": "logs/kb_ingest.log",
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(path: str | Path | None = DEFAULT_CONFIG_PATH) -> dict[str, Any]:
    """Load .env, then merge the YAML config file (if present) over the defaults."""
    load_dotenv()
    if path is None:
        return copy.deepcopy(DEFAULT_CONFIG)

    p = Path(path)
    if not p.exists():
        logger.debug(f"[Config] {p} not found - using built-in defaults")
        return copy.deepcopy(DEFAULT_CONFIG)

    with open(p, "r", encoding="utf-8") as f:
        file_cfg = yaml.safe_load(f) or {}
    logger.debug(f"[Config] Loaded {p}")
    return _deep_merge(DEFAULT_CONFIG, file_cfg)
