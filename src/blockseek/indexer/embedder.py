"""Embed markdown blocks via the embedding provider and store them in the HNSW index."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Mapping

from blockseek import config
from blockseek.indexer.identity import content_id
from blockseek.indexer.locations import BlockLocationIndex
from blockseek.indexer.segmenter import BlockSegmenter, MarkdownSegmenter
from blockseek.provider import EmbeddingProvider, EmbedResult
from blockseek.storage.vector_store import BlockMetadata, VectorRecord, VectorStore

logger = logging.getLogger(__name__)

# One retry per block after a short pause; a second failure fails the document.
RETRY_DELAY = 2.0


class DocumentEmbeddingError(RuntimeError):
    """Embedding one document failed; the rest of the corpus is unaffected."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        super().__init__(f"{path}: {message}")


@dataclass
class DocumentEmbedding:
    path: str
    records: list[VectorRecord] = field(default_factory=list)
    blocks: int = 0
    skipped_empty: int = 0
    skipped_existing: int = 0
    tokens: int = 0


@dataclass
class CorpusReport:
    documents: int = 0
    blocks_embedded: int = 0
    blocks_skipped: int = 0
    vectors_added: int = 0
    tokens: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict:
        return {
            "documents": self.documents,
            "blocks_embedded": self.blocks_embedded,
            "blocks_skipped": self.blocks_skipped,
            "vectors_added": self.vectors_added,
            "tokens": self.tokens,
            "failures": [{"path": p, "error": e} for p, e in self.failures],
        }


def block_text(lines: list[str], start: int, end: int) -> str:
    """Slice a 1-indexed inclusive line span and trim surrounding whitespace."""
    return "\n".join(lines[start - 1 : end]).strip()


class EmbeddingPipeline:
    """Segments documents, embeds each non-empty block, and feeds the vector store.

    Documents are embedded on a fixed-size worker pool. Each provider call runs
    under ``timeout`` seconds; a timeout or a failed retry fails only that
    document.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        vector_store: VectorStore,
        locations: BlockLocationIndex,
        segmenter: BlockSegmenter | None = None,
        max_workers: int | None = None,
        timeout: float | None = None,
        retry_delay: float = RETRY_DELAY,
    ) -> None:
        self._provider = provider
        self._vector_store = vector_store
        self._locations = locations
        self._segmenter = segmenter or MarkdownSegmenter()
        self._max_workers = max(1, max_workers or config.EMBED_WORKERS)
        self._timeout = timeout if timeout is not None else config.EMBED_TIMEOUT
        self._retry_delay = retry_delay

    def _call_provider(self, path: str, key: str, text: str) -> EmbedResult:
        # One daemon thread per call; the timeout covers only the call itself
        outcome: dict[str, object] = {}

        def run() -> None:
            try:
                outcome["result"] = self._provider.embed(text)
            except Exception as e:
                outcome["error"] = e

        worker = threading.Thread(target=run, name="embed-call", daemon=True)
        worker.start()
        worker.join(self._timeout)
        if worker.is_alive():
            raise DocumentEmbeddingError(
                path, f"embedding block {key!r} timed out after {self._timeout:.1f}s"
            )
        if "error" in outcome:
            raise outcome["error"]
        return outcome["result"]

    def _embed_block(self, path: str, key: str, text: str) -> EmbedResult:
        try:
            return self._call_provider(path, key, text)
        except DocumentEmbeddingError:
            raise
        except Exception as e:
            logger.warning("Error embedding %s block %r, retrying: %s", path, key, e)
        time.sleep(self._retry_delay)
        try:
            return self._call_provider(path, key, text)
        except DocumentEmbeddingError:
            raise
        except Exception as e:
            raise DocumentEmbeddingError(path, f"embedding block {key!r} failed: {e}") from e

    def _embed_document(self, path: str, content: str) -> DocumentEmbedding:
        blocks = self._segmenter.segment(content)
        # Record every span, including the ones skipped below as empty
        self._locations.set_document(path, blocks)

        result = DocumentEmbedding(path=path, blocks=len(blocks))
        lines = content.split("\n")
        dims = self._vector_store.dims
        logger.debug("%s: %d blocks", path, len(blocks))

        for key, (start, end) in blocks.items():
            text = block_text(lines, start, end)
            if not text:
                result.skipped_empty += 1
                continue

            cid = content_id(path, key)
            if self._vector_store.contains(cid):
                result.skipped_existing += 1
                continue

            embedded = self._embed_block(path, key, text)
            if len(embedded.vector) != dims:
                raise DocumentEmbeddingError(
                    path, f"block {key!r} embedded to {len(embedded.vector)} dims, index expects {dims}"
                )
            result.tokens += embedded.token_count
            result.records.append(
                VectorRecord(
                    id=cid,
                    vector=[float(x) for x in embedded.vector],
                    metadata=BlockMetadata(key=key, text=text, document_path=path),
                )
            )
        return result

    def embed_document(self, path: str, content: str) -> list[VectorRecord]:
        """Embed one document's blocks without touching the vector store.

        Raises DocumentEmbeddingError if any block can't be embedded.
        """
        return self._embed_document(path, content).records

    def embed_corpus(
        self,
        documents: Mapping[str, str],
        on_progress: Callable[[dict], None] | None = None,
    ) -> CorpusReport:
        """Embed every document, add all new vectors in one batch, and persist.

        Args:
            documents: Document path -> document text.
            on_progress: Optional callback for progress events.

        Returns a CorpusReport; failed documents are listed in ``failures``.
        """
        paths = list(documents)
        total = len(paths)
        report = CorpusReport(documents=total)
        logger.info("Embedding %d documents (%d workers)", total, self._max_workers)
        t0 = time.perf_counter()

        outcomes: dict[str, DocumentEmbedding | Exception] = {}
        with ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="embed-doc") as pool:
            futures = {pool.submit(self._embed_document, p, documents[p]): p for p in paths}
            for done, (future, path) in enumerate(futures.items(), 1):
                try:
                    outcomes[path] = future.result()
                except Exception as e:
                    outcomes[path] = e
                if on_progress:
                    on_progress({"step": "embed", "current": done, "total": total, "file": path})

        # Merge in input order so records stay grouped per document
        records: list[VectorRecord] = []
        for path in paths:
            outcome = outcomes[path]
            if isinstance(outcome, Exception):
                logger.warning("Failed to embed %s: %s", path, outcome)
                report.failures.append((path, str(outcome)))
                continue
            records.extend(outcome.records)
            report.blocks_embedded += len(outcome.records)
            report.blocks_skipped += outcome.skipped_empty + outcome.skipped_existing
            report.tokens += outcome.tokens

        report.vectors_added = self._vector_store.add(records)
        self._locations.save()
        self._vector_store.save()

        logger.info(
            "Embedding complete: %d blocks embedded, %d added, %d skipped, %d failed documents (%.2fs)",
            report.blocks_embedded, report.vectors_added, report.blocks_skipped,
            len(report.failures), time.perf_counter() - t0,
        )
        return report
