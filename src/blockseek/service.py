"""Host-facing service: reindex the corpus and find related blocks.

One lock covers both operations, so a search never runs while the index is
being rebuilt or extended.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable

from blockseek import config
from blockseek.indexer.embedder import CorpusReport, EmbeddingPipeline
from blockseek.indexer.locations import BlockLocationIndex
from blockseek.indexer.pipeline import read_documents, run_reset
from blockseek.provider import EmbeddingProvider
from blockseek.storage.vector_store import SearchResult, VectorStore
from blockseek.tools.find_related import RelatedFinder

logger = logging.getLogger(__name__)


class RelatedContentService:
    def __init__(
        self,
        provider: EmbeddingProvider | None = None,
        data_dir: Path | None = None,
        corpus_path: Path | None = None,
        index_name: str | None = None,
        dims: int | None = None,
        capacity: int | None = None,
        max_workers: int | None = None,
        timeout: float | None = None,
    ) -> None:
        if provider is None:
            from blockseek.provider import GeminiProvider

            provider = GeminiProvider()
        data_dir = data_dir or config.DATA_DIR
        self._corpus_path = corpus_path
        self._index_name = index_name or config.INDEX_NAME
        self._dims = dims or config.EMBEDDING_DIMS
        self._capacity = capacity or config.INDEX_CAPACITY

        self.vector_store = VectorStore(data_dir)
        self.locations = BlockLocationIndex(data_dir / config.LOCATIONS_PATH.name)
        self.pipeline = EmbeddingPipeline(
            provider,
            self.vector_store,
            self.locations,
            max_workers=max_workers,
            timeout=timeout,
        )
        self.finder = RelatedFinder(self.vector_store, self.locations)
        self._lock = threading.Lock()

    def start(self) -> None:
        """Open (or create) the vector store and load block locations."""
        with self._lock:
            t0 = time.perf_counter()
            self.vector_store.initialize(self._index_name, self._dims, self._capacity)
            self.locations.load()
            logger.info(
                "Service ready: %d vectors, %d documents located (%.2fs)",
                self.vector_store.count(), len(self.locations), time.perf_counter() - t0,
            )

    def reindex(
        self,
        corpus_path: Path | None = None,
        reset: bool = False,
        on_progress: Callable[[dict], None] | None = None,
    ) -> CorpusReport:
        """Embed every markdown document under the corpus root.

        With ``reset`` the index and block locations are cleared first, so
        every block is embedded again.
        """
        root = corpus_path or self._corpus_path or config.get_corpus_path()
        if not root.is_dir():
            raise FileNotFoundError(f"Corpus path {root} is not a directory")
        with self._lock:
            if reset:
                run_reset(self.vector_store, self.locations, self._capacity, self._dims, on_progress)
            documents = read_documents(root)
            logger.info("Reindexing %d documents under %s (reset=%s)", len(documents), root, reset)
            return self.pipeline.embed_corpus(documents, on_progress=on_progress)

    def find_related(self, document_path: str, line: int, k: int = 10) -> list[SearchResult]:
        with self._lock:
            return self.finder.find_related(document_path, line, k)
