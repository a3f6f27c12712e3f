"""Block location index: document path → block key → line span.

Built while embedding and consumed by line-based lookup ("which blocks cover
line N of this document?"). Blocks skipped for having no text are recorded too,
so lookup covers every line the segmenter assigned to a block.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path

from blockseek.indexer.identity import HASH_VERSION

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class BlockLocationIndex:
    """Thread-safe map of document path to its block spans."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._documents: dict[str, dict[str, tuple[int, int]]] = {}
        self._lock = threading.Lock()

    def set_document(self, document_path: str, blocks: dict[str, tuple[int, int]]) -> None:
        """Replace the recorded spans for one document."""
        spans = {key: (int(start), int(end)) for key, (start, end) in blocks.items()}
        with self._lock:
            self._documents[document_path] = spans

    def get_document(self, document_path: str) -> dict[str, tuple[int, int]]:
        with self._lock:
            return dict(self._documents.get(document_path, {}))

    def documents(self) -> list[str]:
        with self._lock:
            return list(self._documents)

    def keys_at(self, document_path: str, line: int) -> list[str]:
        """Return every block key whose inclusive span contains ``line``.

        Keys come back in segmenter order. An unknown document yields [].
        """
        with self._lock:
            spans = self._documents.get(document_path)
            if not spans:
                return []
            return [key for key, (start, end) in spans.items() if start <= line <= end]

    def clear(self) -> None:
        with self._lock:
            self._documents.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)

    # ── Persistence ──

    def save(self, path: Path | None = None) -> None:
        """Write the index as JSON, replacing the previous file atomically."""
        target = path or self._path
        if target is None:
            raise ValueError("No path configured for the block location index")
        with self._lock:
            payload = {
                "version": FORMAT_VERSION,
                "hash": HASH_VERSION,
                "documents": {
                    doc: {key: [start, end] for key, (start, end) in spans.items()}
                    for doc, spans in self._documents.items()
                },
            }
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f, ensure_ascii=False)
        os.replace(tmp, target)
        logger.debug("Saved block locations for %d documents to %s", len(payload["documents"]), target)

    def load(self, path: Path | None = None) -> bool:
        """Load the index from JSON.

        A missing, unreadable, or stale file leaves the index empty and
        returns False; it never raises.
        """
        source = path or self._path
        if source is None:
            raise ValueError("No path configured for the block location index")
        try:
            with open(source, encoding="utf-8") as f:
                payload = json.load(f)
            if payload.get("hash") != HASH_VERSION:
                raise ValueError(f"hash scheme {payload.get('hash')!r} != {HASH_VERSION!r}")
            documents = {
                doc: {key: (int(span[0]), int(span[1])) for key, span in spans.items()}
                for doc, spans in payload["documents"].items()
            }
        except FileNotFoundError:
            logger.info("No block location index at %s, starting empty", source)
            self.clear()
            return False
        except (OSError, ValueError, KeyError, TypeError, IndexError, AttributeError) as e:
            logger.warning("Discarding unreadable block location index %s: %s", source, e)
            self.clear()
            return False

        with self._lock:
            self._documents = documents
        logger.info("Loaded block locations for %d documents", len(documents))
        return True
