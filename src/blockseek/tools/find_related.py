"""Find blocks related to a position in a document."""

from __future__ import annotations

import logging
import time

from blockseek.indexer.identity import content_id
from blockseek.indexer.locations import BlockLocationIndex
from blockseek.storage.vector_store import SearchResult, VectorStore
from blockseek.tools.centroid import centroid

logger = logging.getLogger(__name__)


class RelatedFinder:
    """Expands a (document, line) position into blocks and searches by their centroid."""

    def __init__(self, vector_store: VectorStore, locations: BlockLocationIndex) -> None:
        self._vector_store = vector_store
        self._locations = locations

    def source_ids(self, document_path: str, line: int) -> list[int]:
        """Content ids of the indexed blocks covering the line."""
        keys = self._locations.keys_at(document_path, line)
        ids = [content_id(document_path, key) for key in keys]
        return [cid for cid in ids if self._vector_store.contains(cid)]

    def find_related(self, document_path: str, line: int, k: int = 10) -> list[SearchResult]:
        """Search for the k blocks closest to the centroid of the blocks at the line.

        The source blocks themselves are left out of the results.
        """
        if k <= 0:
            return []
        t0 = time.perf_counter()
        ids = self.source_ids(document_path, line)
        vectors = []
        for cid in ids:
            record = self._vector_store.get(cid)
            if record is not None:
                vectors.append(record.vector)
        if not vectors:
            logger.debug("No indexed blocks at %s:%d", document_path, line)
            return []

        query = centroid(vectors)
        exclude = set(ids)
        hits = self._vector_store.search(query, k + len(exclude))
        results = [r for r in hits if r.id not in exclude][:k]
        logger.info(
            "Related to %s:%d (%d source blocks): %d results, %.0fms",
            document_path, line, len(ids), len(results), (time.perf_counter() - t0) * 1000,
        )
        return results
