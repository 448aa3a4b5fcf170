"""
In-Memory Embedding Store

Holds every registered face embedding as a unit-length row of a float32
matrix, in registration order. PostgreSQL is the source of truth; this
store is a read-optimized cache that is rebuilt on startup and appended to
after each durable registration.

Readers never lock. Each insert writes a row past the end of the last
published snapshot and then publishes a new snapshot covering it, so a
scan only ever sees rows that were complete when its snapshot was taken.
"""
import uuid
import logging
import threading
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

import numpy as np

from app.config import EMBEDDING_DIM
from app.exceptions import DimensionMismatch

logger = logging.getLogger(__name__)

_INITIAL_CAPACITY = 1024


@dataclass(frozen=True, eq=False)
class Target:
    """One registered face: identifier, origin tag and unit embedding."""
    identifier: uuid.UUID
    origin: str
    embedding: np.ndarray


def normalize_embedding(embedding) -> np.ndarray:
    """
    Scale an embedding to unit length.

    A zero vector stays zero, which gives it similarity 0 against
    everything instead of dividing by zero.
    """
    vector = np.asarray(embedding, dtype=np.float32).reshape(-1)
    norm = float(np.linalg.norm(vector))
    if norm > 0:
        vector = vector / np.float32(norm)
    return vector.astype(np.float32, copy=False)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two unit vectors (a plain dot product)."""
    return float(np.dot(a, b))


def make_target(identifier: uuid.UUID, origin: str, embedding) -> Target:
    """Build a Target with a normalized, read-only embedding."""
    vector = normalize_embedding(embedding).copy()
    vector.setflags(write=False)
    return Target(identifier=identifier, origin=origin, embedding=vector)


@dataclass(frozen=True)
class StoreSnapshot:
    """
    Consistent view of the store for one search.

    `matrix` is a read-only (N, D) view; row i belongs to `targets[i]`
    and i is the insertion position used for tie-breaking.
    """
    matrix: np.ndarray
    targets: Sequence[Target]

    def __len__(self) -> int:
        return self.matrix.shape[0]


class EmbeddingStore:
    """
    Append-only store of face embeddings.

    Thread-safe: inserts are serialized by a lock, snapshots are taken
    without one.
    """

    def __init__(self, dimension: Optional[int] = None):
        """
        Args:
            dimension: Expected embedding length. If None the first
                loaded or inserted embedding establishes it.
        """
        self._write_lock = threading.Lock()
        self._dimension = dimension
        self._buffer: Optional[np.ndarray] = None
        self._targets: List[Target] = []
        self._snapshot = self._publish(0)

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    @property
    def count(self) -> int:
        return len(self._snapshot)

    def check_dimension(self, embedding) -> None:
        """Raise DimensionMismatch if `embedding` cannot go in this store."""
        actual = int(np.asarray(embedding).reshape(-1).shape[0])
        if self._dimension is not None and actual != self._dimension:
            raise DimensionMismatch(self._dimension, actual)
        if actual == 0:
            raise DimensionMismatch(self._dimension or 0, actual)

    def load(self, targets: Iterable[Target]) -> int:
        """
        Replace the store contents wholesale.

        Only called at startup, before the service takes traffic. All
        targets are validated before anything is replaced.

        Returns:
            Number of targets loaded
        """
        targets = list(targets)
        with self._write_lock:
            dimension = self._dimension
            if dimension is None and targets:
                dimension = targets[0].embedding.shape[0]

            self._check_all(targets, dimension)

            buffer = None
            if dimension is not None:
                capacity = max(_INITIAL_CAPACITY, len(targets))
                buffer = np.zeros((capacity, dimension), dtype=np.float32)
                for position, target in enumerate(targets):
                    buffer[position] = target.embedding

            self._dimension = dimension
            self._buffer = buffer
            self._targets = targets
            self._snapshot = self._publish(len(targets))

        logger.info(f"Loaded {len(targets)} embeddings into memory (dim={dimension})")
        return len(targets)

    def insert(self, target: Target) -> int:
        """
        Append one target; it is visible to searches once this returns.

        Returns:
            Insertion position of the target
        """
        with self._write_lock:
            self.check_dimension(target.embedding)
            if self._dimension is None:
                self._dimension = target.embedding.shape[0]

            position = len(self._targets)
            self._ensure_capacity(position + 1)
            self._buffer[position] = target.embedding
            self._targets.append(target)
            self._snapshot = self._publish(position + 1)

        logger.debug(f"Inserted target {target.identifier} at position {position}")
        return position

    def snapshot_for_search(self) -> StoreSnapshot:
        """Return the latest published snapshot."""
        return self._snapshot

    def identifiers(self) -> List[uuid.UUID]:
        """Distinct identifiers, in first-registration order."""
        seen = {}
        for target in self._snapshot.targets:
            seen.setdefault(target.identifier, None)
        return list(seen)

    def _check_all(self, targets: List[Target], dimension: Optional[int]) -> None:
        for target in targets:
            actual = target.embedding.shape[0]
            if actual != dimension or actual == 0:
                raise DimensionMismatch(dimension or 0, actual)

    def _ensure_capacity(self, size: int) -> None:
        """Grow the buffer by doubling; old snapshots keep the old buffer."""
        if self._buffer is not None and self._buffer.shape[0] >= size:
            return
        old_capacity = 0 if self._buffer is None else self._buffer.shape[0]
        capacity = max(_INITIAL_CAPACITY, old_capacity * 2, size)
        buffer = np.zeros((capacity, self._dimension), dtype=np.float32)
        if self._buffer is not None:
            used = len(self._targets)
            buffer[:used] = self._buffer[:used]
        self._buffer = buffer
        logger.debug(f"Grew embedding buffer to {capacity} rows")

    def _publish(self, size: int) -> StoreSnapshot:
        if self._buffer is None:
            matrix = np.zeros((0, self._dimension or 0), dtype=np.float32)
        else:
            matrix = self._buffer[:size]
        matrix = matrix.view()
        matrix.setflags(write=False)
        # A slice of the list, not the list itself: later appends must not
        # change what this snapshot sees.
        return StoreSnapshot(matrix=matrix, targets=tuple(self._targets[:size]))


# Singleton instance
embedding_store = EmbeddingStore(dimension=EMBEDDING_DIM)
