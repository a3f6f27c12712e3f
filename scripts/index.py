#!/usr/bin/env python3
"""CLI: Index a markdown corpus into the vector store, or query related blocks."""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path

# Ensure the package is importable when running as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from blockseek import config
from blockseek.indexer.embedder import block_text
from blockseek.indexer.identity import content_id
from blockseek.indexer.pipeline import read_documents
from blockseek.indexer.segmenter import MarkdownSegmenter
from blockseek.storage.vector_store import VectorStore


def _resolve_corpus(corpus_arg: Path | None) -> Path:
    corpus = corpus_arg or config.CORPUS_PATH
    if not corpus or corpus == Path("") or not corpus.is_dir():
        print(f"Error: corpus path {corpus} is not a valid directory.", file=sys.stderr)
        print("Set CORPUS_PATH in .env or use --corpus <dir>.", file=sys.stderr)
        sys.exit(1)
    return corpus


def _dry_run(corpus: Path) -> None:
    """Report how many blocks would be embedded, without calling the API."""
    documents = read_documents(corpus)
    segmenter = MarkdownSegmenter()

    # Only open an existing index; initialize() would persist an empty one
    store = VectorStore(config.DATA_DIR)
    graph_path = config.DATA_DIR / f"{config.INDEX_NAME}.hnsw"
    if graph_path.exists():
        store.initialize(config.INDEX_NAME, config.EMBEDDING_DIMS, config.INDEX_CAPACITY)

    blocks = existing = 0
    for path, text in documents.items():
        lines = text.split("\n")
        for key, (start, end) in segmenter.segment(text).items():
            if not block_text(lines, start, end):
                continue
            blocks += 1
            if store.is_ready and store.contains(content_id(path, key)):
                existing += 1

    print(f"Corpus: {corpus}")
    print(f"[documents]  {len(documents)} markdown files")
    print(f"[blocks]     {blocks} non-empty blocks, {existing} already embedded")
    print(f"[embed]      ~{blocks - existing} new (Gemini API calls)")
    if store.is_ready:
        print(f"[index]      {store.count()} vectors in {graph_path}")
    else:
        print(f"[index]      {graph_path} not created yet")


def _index(args: argparse.Namespace) -> None:
    corpus = _resolve_corpus(args.corpus)
    if args.dry_run:
        _dry_run(corpus)
        return

    if not config.GEMINI_API_KEY:
        print("Error: indexing requires GEMINI_API_KEY in .env", file=sys.stderr)
        sys.exit(1)

    from blockseek.service import RelatedContentService

    print(f"Indexing corpus: {corpus}")
    start = time.time()
    service = RelatedContentService(corpus_path=corpus, max_workers=args.workers)
    service.start()

    def on_progress(event: dict) -> None:
        if event.get("step") == "embed":
            i, total = event["current"], event["total"]
            if i % 25 == 0 or i == total:
                print(f"  Embedded {i}/{total}: {event['file']}")

    report = service.reindex(reset=args.reset, on_progress=on_progress)

    print("\nEmbedding complete:")
    print(f"  Documents: {report.documents} ({len(report.failures)} failed)")
    print(f"  Blocks embedded: {report.blocks_embedded} ({report.blocks_skipped} skipped)")
    print(f"  Vectors added: {report.vectors_added}")
    print(f"  Tokens: {report.tokens}")
    for path, error in report.failures:
        print(f"  Failed: {path}: {error}", file=sys.stderr)
    print(f"\nDone in {time.time() - start:.1f}s")
    print(f"  Index: {config.DATA_DIR / config.INDEX_NAME}.hnsw")

    if not report.ok:
        sys.exit(1)


def _related(args: argparse.Namespace) -> None:
    from blockseek.service import RelatedContentService

    # Stored vectors only; no embedding call is made
    service = RelatedContentService()
    service.start()
    results = service.find_related(args.path, args.line, args.k)

    if not results:
        if not service.locations.keys_at(args.path, args.line):
            print(f"No block covers {args.path}:{args.line}.")
        else:
            print("No related blocks found.")
        return

    for r in results:
        snippet = r.metadata.text.replace("\n", " ")[:100]
        print(f"{r.score:6.3f}  {r.metadata.document_path} {r.metadata.key}")
        print(f"        {snippet}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Index a markdown corpus for related-content search")
    sub = parser.add_subparsers(dest="command")

    index_parser = sub.add_parser("index", help="Embed the corpus (default command)")
    related_parser = sub.add_parser("related", help="Show blocks related to a document line")

    for p in (parser, index_parser):
        p.add_argument(
            "--corpus",
            type=Path,
            default=None,
            help="Corpus root directory (default: CORPUS_PATH)",
        )
        p.add_argument(
            "--reset",
            action="store_true",
            help="Clear the vector index first and re-embed every block",
        )
        p.add_argument(
            "--workers",
            type=int,
            default=None,
            help=f"Documents embedded in parallel (default: {config.EMBED_WORKERS})",
        )
        p.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be embedded without calling the API",
        )

    related_parser.add_argument("path", help="Document path relative to the corpus root")
    related_parser.add_argument("line", type=int, help="1-indexed line number")
    related_parser.add_argument("-k", type=int, default=10, help="Number of results (default: 10)")

    args = parser.parse_args()
    if args.command == "related":
        _related(args)
    else:
        _index(args)


if __name__ == "__main__":
    main()
