"""Tests for the indexing CLI script."""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from blockseek import config
from blockseek.indexer.identity import content_id
from blockseek.storage.vector_store import BlockMetadata, VectorRecord, VectorStore

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "index.py"


@pytest.fixture
def cli():
    spec = importlib.util.spec_from_file_location("blockseek_index_cli", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def data_dir(tmp_path: Path):
    data = tmp_path / "data"
    with patch.object(config, "DATA_DIR", data), \
         patch.object(config, "INDEX_NAME", "idx"), \
         patch.object(config, "EMBEDDING_DIMS", 4), \
         patch.object(config, "INDEX_CAPACITY", 100):
        yield data


def _run(cli, *argv: str) -> None:
    with patch.object(sys, "argv", ["index.py", *argv]):
        cli.main()


class TestDryRun:
    def test_does_not_create_index(self, cli, data_dir: Path, corpus: Path, capsys) -> None:
        _run(cli, "--corpus", str(corpus), "--dry-run")

        out = capsys.readouterr().out
        assert "[blocks]     5 non-empty blocks, 0 already embedded" in out
        assert "not created yet" in out
        assert not (data_dir / "idx.hnsw").exists()

    def test_counts_existing_blocks(self, cli, data_dir: Path, corpus: Path, capsys) -> None:
        store = VectorStore(data_dir)
        store.initialize("idx", 4, 100)
        store.add([
            VectorRecord(
                id=content_id("a.md", "#Cats"),
                vector=[1.0, 0.0, 0.0, 0.0],
                metadata=BlockMetadata(key="#Cats", text="# Cats\ncat cat", document_path="a.md"),
            )
        ])
        store.save()

        _run(cli, "--corpus", str(corpus), "--dry-run")

        out = capsys.readouterr().out
        assert "5 non-empty blocks, 1 already embedded" in out
        assert "1 vectors in" in out


class TestRelated:
    def test_runs_without_api_key(self, cli, data_dir: Path, capsys) -> None:
        with patch.object(config, "GEMINI_API_KEY", ""):
            _run(cli, "related", "a.md", "2")
        assert "No block covers a.md:2." in capsys.readouterr().out
