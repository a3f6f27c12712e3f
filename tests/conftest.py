"""Shared fixtures: keyword-counting embedding provider and a small markdown corpus."""

from unittest.mock import MagicMock

import pytest

from blockseek.provider import EmbedResult

KEYWORDS = ["cat", "dog", "car", "sql"]


def keyword_vector(text: str) -> list[float]:
    """4-dim embedding counting keyword occurrences, so similar topics point the same way."""
    lowered = text.lower()
    return [lowered.count(w) + 0.01 for w in KEYWORDS]


@pytest.fixture
def keyword_provider() -> MagicMock:
    provider = MagicMock()
    provider.embed = MagicMock(side_effect=lambda text: EmbedResult(vector=keyword_vector(text), token_count=1))
    return provider


@pytest.fixture
def corpus(tmp_path):
    """Small markdown corpus with two related sections across documents."""
    root = tmp_path / "corpus"
    (root / "notes").mkdir(parents=True)
    (root / "a.md").write_text("# Cats\ncat cat\n\n# Dogs\ndog dog\n")
    (root / "notes" / "b.md").write_text("# Kittens\ncat kitten\n\n# Engines\ncar\n")
    (root / "c.md").write_text("# Queries\nsql sql\n")
    (root / ".hidden").mkdir()
    (root / ".hidden" / "skip.md").write_text("# Hidden\ncat\n")
    (root / "readme.txt").write_text("not markdown")
    return root
