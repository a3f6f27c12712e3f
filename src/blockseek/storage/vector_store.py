"""Vector storage using an hnswlib HNSW graph for approximate semantic search.

The graph addresses vectors by dense integer labels that this store allocates
(0, 1, 2, ... in insertion order). Blocks are addressed by content ids (see
``blockseek.indexer.identity``). The store keeps the two identity spaces in one
``IdentityMap`` and the block payloads in ``vector_data``.

On disk a store named ``name`` is four files under the data directory::

    <name>.hnsw                 the graph
    <name>.id_to_label.json     {"<content id>": label}
    <name>.label_to_id.json     {"<label>": content id}
    <name>.vector_data.json     {"<content id>": {"id", "vector", "metadata"}}
"""

from __future__ import annotations

import enum
import json
import logging
import os
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterable, Sequence

import hnswlib
import numpy as np

logger = logging.getLogger(__name__)

SPACE = "cosine"
HNSW_M = 32
HNSW_EF_CONSTRUCTION = 150
HNSW_EF_SEARCH = 32
HNSW_RANDOM_SEED = 42


class StoreNotInitializedError(RuntimeError):
    """Raised when the store is used before ``initialize`` (or during a reset)."""


class DimensionMismatchError(ValueError):
    """Raised when a vector's length differs from the store's dimension."""

    def __init__(self, expected: int, got: int, content_id: int | None = None) -> None:
        self.expected = expected
        self.got = got
        self.content_id = content_id
        where = f" for id {content_id}" if content_id is not None else ""
        super().__init__(f"dimension mismatch{where}: expected {expected}, got {got}")


@dataclass
class BlockMetadata:
    key: str
    text: str
    document_path: str


@dataclass
class VectorRecord:
    id: int
    vector: list[float]
    metadata: BlockMetadata

    @classmethod
    def from_dict(cls, data: dict) -> VectorRecord:
        meta = data["metadata"]
        return cls(
            id=int(data["id"]),
            vector=[float(x) for x in data["vector"]],
            metadata=BlockMetadata(
                key=str(meta["key"]),
                text=str(meta["text"]),
                document_path=str(meta["document_path"]),
            ),
        )


@dataclass
class SearchResult:
    id: int
    score: float
    metadata: BlockMetadata


class StoreState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    RESETTING = "resetting"


class IdentityMap:
    """Bijection between content ids and graph labels.

    Both directions change only through ``bind`` and ``clear``, so they are
    inverses of each other after every call.
    """

    def __init__(self) -> None:
        self._id_to_label: dict[int, int] = {}
        self._label_to_id: dict[int, int] = {}

    @classmethod
    def from_dicts(cls, id_to_label: dict[int, int], label_to_id: dict[int, int]) -> IdentityMap:
        """Rebuild from persisted maps, rejecting any pair that isn't mutually inverse."""
        if len(id_to_label) != len(label_to_id):
            raise ValueError(
                f"map sizes differ: {len(id_to_label)} ids, {len(label_to_id)} labels"
            )
        identity = cls()
        for cid, label in id_to_label.items():
            if label_to_id.get(label) != cid:
                raise ValueError(f"id {cid} -> label {label} has no matching inverse")
            identity.bind(cid, label)
        return identity

    def bind(self, content_id: int, label: int) -> None:
        if content_id in self._id_to_label:
            raise ValueError(f"id {content_id} is already bound to label {self._id_to_label[content_id]}")
        if label in self._label_to_id:
            raise ValueError(f"label {label} is already bound to id {self._label_to_id[label]}")
        self._id_to_label[content_id] = label
        self._label_to_id[label] = content_id

    def label_of(self, content_id: int) -> int | None:
        return self._id_to_label.get(content_id)

    def id_of(self, label: int) -> int | None:
        return self._label_to_id.get(label)

    def max_label(self) -> int:
        return max(self._label_to_id, default=-1)

    def id_to_label(self) -> dict[int, int]:
        return dict(self._id_to_label)

    def label_to_id(self) -> dict[int, int]:
        return dict(self._label_to_id)

    def clear(self) -> None:
        self._id_to_label.clear()
        self._label_to_id.clear()

    def __contains__(self, content_id: object) -> bool:
        return content_id in self._id_to_label

    def __len__(self) -> int:
        return len(self._id_to_label)


def _new_index(dims: int, capacity: int) -> hnswlib.Index:
    index = hnswlib.Index(space=SPACE, dim=dims)
    index.init_index(
        max_elements=max(1, capacity),
        ef_construction=HNSW_EF_CONSTRUCTION,
        M=HNSW_M,
        random_seed=HNSW_RANDOM_SEED,
    )
    index.set_ef(HNSW_EF_SEARCH)
    return index


def _write_json(path: Path, data: dict) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False)


def _read_json(path: Path) -> dict:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path.name}: expected a JSON object, got {type(data).__name__}")
    return data


class VectorStore:
    """HNSW vector store for block embeddings.

    Callers serialize mutating calls (``add``, ``reset``) and keep searches
    out while one is in flight; the store itself takes no locks.
    """

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir
        self._name: str | None = None
        self._dims = 0
        self._index: hnswlib.Index | None = None
        self._identity = IdentityMap()
        self._vector_data: dict[int, VectorRecord] = {}
        self._state = StoreState.UNINITIALIZED

    # ── Properties ──

    @property
    def name(self) -> str | None:
        return self._name

    @property
    def dims(self) -> int:
        return self._dims

    @property
    def capacity(self) -> int:
        return self._index.get_max_elements() if self._index is not None else 0

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is StoreState.READY

    def _require_ready(self) -> hnswlib.Index:
        if self._state is not StoreState.READY or self._index is None:
            raise StoreNotInitializedError(
                f"Vector store is not initialized (state={self._state.value})"
            )
        return self._index

    # ── Paths ──

    def _graph_path(self) -> Path:
        return self._data_dir / f"{self._name}.hnsw"

    def _map_paths(self) -> tuple[Path, Path, Path]:
        return (
            self._data_dir / f"{self._name}.id_to_label.json",
            self._data_dir / f"{self._name}.label_to_id.json",
            self._data_dir / f"{self._name}.vector_data.json",
        )

    # ── Lifecycle ──

    def initialize(self, name: str, dims: int, capacity: int) -> bool:
        """Open the store named ``name``, creating an empty one if none is persisted.

        Re-invoking on the same name reloads the on-disk state. Errors creating
        or reading the graph propagate; unreadable maps degrade to empty maps.
        """
        if dims <= 0:
            raise ValueError(f"dims must be positive, got {dims}")
        self._name = name
        self._dims = dims
        self._data_dir.mkdir(parents=True, exist_ok=True)

        graph_path = self._graph_path()
        t0 = time.perf_counter()
        if not graph_path.exists():
            logger.info("No index %r on disk, creating empty graph (dims=%d, capacity=%d)", name, dims, capacity)
            self._index = _new_index(dims, capacity)
            self._identity.clear()
            self._vector_data.clear()
            self._state = StoreState.READY
            self.save()
            return True

        index = hnswlib.Index(space=SPACE, dim=dims)
        index.load_index(str(graph_path), max_elements=capacity)
        index.set_ef(HNSW_EF_SEARCH)
        self._index = index
        self._state = StoreState.READY
        self.load()
        logger.info(
            "Loaded index %r: %d vectors, %d mapped ids (%.2fs)",
            name, index.get_current_count(), len(self._identity), time.perf_counter() - t0,
        )
        return True

    def load(self) -> None:
        """Load the three map artifacts.

        Any failure (missing file, bad JSON, maps that contradict each other)
        leaves all three maps empty. Never raises.
        """
        self._require_ready()
        id_path, label_path, data_path = self._map_paths()
        try:
            id_to_label = {int(k): int(v) for k, v in _read_json(id_path).items()}
            label_to_id = {int(k): int(v) for k, v in _read_json(label_path).items()}
            identity = IdentityMap.from_dicts(id_to_label, label_to_id)

            vector_data: dict[int, VectorRecord] = {}
            for k, v in _read_json(data_path).items():
                record = VectorRecord.from_dict(v)
                if record.id != int(k):
                    raise ValueError(f"vector data key {k} holds record {record.id}")
                if record.id not in identity:
                    raise ValueError(f"vector data id {record.id} has no label")
                if len(record.vector) != self._dims:
                    raise DimensionMismatchError(self._dims, len(record.vector), record.id)
                vector_data[record.id] = record
        except Exception as e:
            logger.warning("Could not load maps for index %r, starting with empty maps: %s", self._name, e)
            self._identity = IdentityMap()
            self._vector_data = {}
            return

        self._identity = identity
        self._vector_data = vector_data

    def save(self) -> None:
        """Persist the graph and the three maps.

        Every artifact is written to a temporary file first; the real files are
        only replaced once all temporaries exist.
        """
        index = self._require_ready()
        graph_path = self._graph_path()
        id_path, label_path, data_path = self._map_paths()
        targets = [id_path, label_path, data_path, graph_path]
        temps = [p.with_name(p.name + ".tmp") for p in targets]

        t0 = time.perf_counter()
        try:
            _write_json(temps[0], {str(k): v for k, v in self._identity.id_to_label().items()})
            _write_json(temps[1], {str(k): v for k, v in self._identity.label_to_id().items()})
            _write_json(temps[2], {str(k): asdict(v) for k, v in self._vector_data.items()})
            index.save_index(str(temps[3]))
        except Exception:
            for tmp in temps:
                tmp.unlink(missing_ok=True)
            raise

        for tmp, target in zip(temps, targets):
            os.replace(tmp, target)
        logger.debug("Saved index %r (%d vectors, %.0fms)", self._name, index.get_current_count(), (time.perf_counter() - t0) * 1000)

    def reset(self, capacity: int, dims: int) -> None:
        """Discard everything and persist a new empty graph of the given size."""
        self._require_ready()
        if dims <= 0:
            raise ValueError(f"dims must be positive, got {dims}")
        # Allocation failures leave the current graph in service
        index = _new_index(dims, capacity)
        self._state = StoreState.RESETTING
        self._index = index
        self._dims = dims
        self._identity = IdentityMap()
        self._vector_data = {}
        self._state = StoreState.READY
        self.save()
        logger.info("Reset index %r (dims=%d, capacity=%d)", self._name, dims, capacity)

    # ── Mutation ──

    def add(self, records: Iterable[VectorRecord]) -> int:
        """Insert records whose ids are not in the store yet.

        Ids already present are skipped, never updated. Every vector is checked
        against the store dimension before anything is inserted.

        Returns the number of records inserted.
        """
        index = self._require_ready()
        records = list(records)
        for record in records:
            if len(record.vector) != self._dims:
                raise DimensionMismatchError(self._dims, len(record.vector), record.id)

        new_records: list[VectorRecord] = []
        batch_ids: set[int] = set()
        for record in records:
            if record.id in self._identity or record.id in batch_ids:
                continue
            batch_ids.add(record.id)
            new_records.append(record)

        skipped = len(records) - len(new_records)
        if not new_records:
            if skipped:
                logger.debug("All %d records already indexed, nothing to add", skipped)
            return 0

        first_label = max(index.get_current_count(), self._identity.max_label() + 1)
        labels = np.arange(first_label, first_label + len(new_records), dtype=np.int64)

        needed = first_label + len(new_records)
        if needed > index.get_max_elements():
            new_size = max(needed, index.get_max_elements() * 2)
            logger.info("Growing index %r capacity %d -> %d", self._name, index.get_max_elements(), new_size)
            index.resize_index(new_size)

        vectors = np.asarray([r.vector for r in new_records], dtype=np.float32)
        t0 = time.perf_counter()
        index.add_items(vectors, labels)

        for label, record in zip(labels.tolist(), new_records):
            self._identity.bind(record.id, label)
            self._vector_data[record.id] = record

        logger.info(
            "Added %d new vectors to index %r (%d already present, %.0fms)",
            len(new_records), self._name, skipped, (time.perf_counter() - t0) * 1000,
        )
        return len(new_records)

    # ── Queries ──

    def search(self, query: Sequence[float], k: int) -> list[SearchResult]:
        """Approximate k-NN search by cosine similarity.

        Scores are ``1 - cosine distance`` (1.0 = identical direction), closest
        first. Hits whose label or record can't be resolved are dropped, so
        fewer than ``k`` results may come back.
        """
        index = self._require_ready()
        if len(query) != self._dims:
            raise DimensionMismatchError(self._dims, len(query))
        total = index.get_current_count()
        k = min(k, total)
        if k <= 0:
            return []

        q = np.asarray(query, dtype=np.float32).reshape(1, -1)
        labels, distances = index.knn_query(q, k=k)

        results: list[SearchResult] = []
        for label, distance in zip(labels[0].tolist(), distances[0].tolist()):
            cid = self._identity.id_of(int(label))
            if cid is None:
                logger.debug("Label %d has no content id, skipping", label)
                continue
            record = self._vector_data.get(cid)
            if record is None:
                logger.debug("Content id %d has no vector data, skipping", cid)
                continue
            results.append(SearchResult(id=cid, score=1.0 - float(distance), metadata=record.metadata))
        return results

    def count(self) -> int:
        """Return the graph's live element count."""
        return self._require_ready().get_current_count()

    def contains(self, content_id: int) -> bool:
        self._require_ready()
        return content_id in self._identity

    def get(self, content_id: int) -> VectorRecord | None:
        self._require_ready()
        return self._vector_data.get(content_id)

    def id_to_label(self) -> dict[int, int]:
        return self._identity.id_to_label()

    def label_to_id(self) -> dict[int, int]:
        return self._identity.label_to_id()

    def vector_data(self) -> dict[int, VectorRecord]:
        return dict(self._vector_data)
