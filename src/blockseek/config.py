"""Configuration loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _require(name: str) -> str:
    val = os.getenv(name)
    if not val:
        raise RuntimeError(f"Required environment variable {name} is not set")
    return val


# Paths
CORPUS_PATH: Path = Path(os.getenv("CORPUS_PATH", ""))
DATA_DIR: Path = Path(os.getenv("DATA_DIR", "./data"))

# API keys
GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")

# Embedding backend
EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "gemini-embedding-001")
EMBEDDING_DIMS: int = int(os.getenv("EMBEDDING_DIMS", "768"))
EMBED_WORKERS: int = int(os.getenv("EMBED_WORKERS", "4"))
EMBED_TIMEOUT: float = float(os.getenv("EMBED_TIMEOUT", "30"))

# Vector index
INDEX_NAME: str = os.getenv("INDEX_NAME", "saved_index")
INDEX_CAPACITY: int = int(os.getenv("INDEX_CAPACITY", "10000"))

# Server
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "8000"))
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

# Derived paths
LOCATIONS_PATH: Path = DATA_DIR / "block_locations.json"


def get_corpus_path() -> Path:
    """Return the corpus root, failing if CORPUS_PATH is unset."""
    return Path(_require("CORPUS_PATH"))
