"""Pipeline step functions for indexing operations.

Each function wraps one step of the indexing pipeline, accepts an optional
on_progress callback, and returns a summary dict.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

from blockseek.indexer.locations import BlockLocationIndex
from blockseek.storage.vector_store import VectorStore

MARKDOWN_SUFFIXES = (".md", ".markdown")


def get_markdown_files(corpus_path: Path) -> list[Path]:
    """Get all markdown files under the corpus root, skipping hidden directories."""
    files = []
    for p in sorted(corpus_path.rglob("*")):
        if p.suffix.lower() not in MARKDOWN_SUFFIXES or not p.is_file():
            continue
        if any(part.startswith(".") for part in p.relative_to(corpus_path).parts):
            continue
        files.append(p)
    return files


def read_documents(corpus_path: Path, files: list[Path] | None = None) -> dict[str, str]:
    """Read markdown files into {relative posix path: text}.

    Unreadable files are reported on stderr and left out.
    """
    if files is None:
        files = get_markdown_files(corpus_path)
    documents: dict[str, str] = {}
    for fpath in files:
        relative = fpath.relative_to(corpus_path).as_posix()
        try:
            documents[relative] = fpath.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            print(f"  Warning: Cannot read {relative}: {e}", file=sys.stderr)
    return documents


def run_reset(
    vector_store: VectorStore,
    locations: BlockLocationIndex,
    capacity: int,
    dims: int,
    on_progress: Callable[[dict], None] | None = None,
) -> dict:
    """Clear the vector index and the block locations.

    Returns {"vectors": 0}.
    """
    if on_progress:
        on_progress({"step": "reset", "status": "resetting"})
    vector_store.reset(capacity, dims)
    locations.clear()
    locations.save()
    if on_progress:
        on_progress({"step": "reset", "status": "done"})
    return {"vectors": vector_store.count()}
