"""Stable content ids for blocks.

A block's id is the unsigned 32-bit MurmurHash3 (x86_32) of the document path
concatenated with the block key, under a fixed seed. The same (path, key) pair
maps to the same id on every run and every platform, so persisted vector
stores stay addressable across restarts.

Changing the algorithm or the seed invalidates every persisted id; bump
HASH_VERSION when that happens so stale indexes can be detected.
"""

from __future__ import annotations

import mmh3

HASH_SEED = 42
HASH_VERSION = f"murmur3_32:seed={HASH_SEED}"


def content_id(document_path: str, block_key: str, seed: int = HASH_SEED) -> int:
    """Return the content id for a block within a document."""
    return mmh3.hash(document_path + block_key, seed, signed=False)
