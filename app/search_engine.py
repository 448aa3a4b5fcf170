"""
Similarity Search Engine

Exact cosine-similarity search over the in-memory embedding store.

Both the stored embeddings and the query are unit-length, so similarity
is a dot product. A search is a fork-join over the store snapshot:
1. Split the snapshot into contiguous chunks
2. Score each chunk on a worker thread, keep scores >= threshold,
   sort and keep the best `limit`
3. Merge the partial lists and keep the best `limit`

Equal similarities are ordered by insertion position (earlier
registration ranks first), so results are deterministic.

There is no approximate index: the scan is O(N*D) per query.
"""
import math
import uuid
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

from app.config import SEARCH_WORKERS, SEARCH_MIN_CHUNK
from app.embedding_store import (
    EmbeddingStore,
    StoreSnapshot,
    embedding_store,
    normalize_embedding,
)
from app.exceptions import DimensionMismatch, InvalidQuery, SearchCancelled

logger = logging.getLogger(__name__)

# (similarity, insertion position)
Candidate = Tuple[float, int]


@dataclass(frozen=True)
class SearchResult:
    identifier: uuid.UUID
    origin: str
    similarity: float


def _rank_key(candidate: Candidate):
    similarity, position = candidate
    return (-similarity, position)


def partition(size: int, workers: int, min_chunk: int) -> List[Tuple[int, int]]:
    """
    Split range(size) into contiguous (start, stop) chunks.

    Uses at most `workers` chunks and never makes a chunk smaller than
    `min_chunk` unless the whole range is smaller.
    """
    if size <= 0:
        return []
    n_chunks = max(1, min(workers, math.ceil(size / max(1, min_chunk))))
    step = math.ceil(size / n_chunks)
    return [(start, min(start + step, size)) for start in range(0, size, step)]


def score_chunk(
    matrix: np.ndarray,
    query: np.ndarray,
    start: int,
    stop: int,
    threshold: float,
    limit: int,
) -> List[Candidate]:
    """
    Score rows [start, stop) and return this chunk's top `limit`
    candidates, best first.
    """
    scores = matrix[start:stop] @ query
    hits = np.flatnonzero(scores >= threshold)
    if hits.size == 0:
        return []

    hit_scores = scores[hits]
    # lexsort sorts by the last key first: similarity desc, then position
    order = np.lexsort((hits, -hit_scores))[:limit]
    return [(float(hit_scores[i]), start + int(hits[i])) for i in order]


def merge_candidates(partials: List[List[Candidate]], limit: int) -> List[Candidate]:
    """Merge per-chunk candidate lists into the global top `limit`."""
    merged = [candidate for partial in partials for candidate in partial]
    merged.sort(key=_rank_key)
    return merged[:limit]


class SimilaritySearchEngine:
    """
    Parallel exact search over an EmbeddingStore.

    numpy releases the GIL inside the matrix-vector product, so chunks
    scored on the thread pool run in parallel. The engine is safe to use
    from many request threads at once.
    """

    def __init__(
        self,
        store: EmbeddingStore,
        workers: int = SEARCH_WORKERS,
        min_chunk: int = SEARCH_MIN_CHUNK,
    ):
        self.store = store
        self.workers = max(1, workers)
        self.min_chunk = max(1, min_chunk)
        self._executor = ThreadPoolExecutor(
            max_workers=self.workers, thread_name_prefix="search"
        )

    def search(
        self,
        query_embedding,
        threshold: float,
        limit: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[SearchResult]:
        """
        Find stored faces similar to the query.

        Args:
            query_embedding: Raw or normalized query embedding
            threshold: Minimum cosine similarity to include
            limit: Maximum number of results
            cancel_event: Set by the caller to abandon the search

        Returns:
            Results ordered by similarity desc, then registration order
        """
        validate_query(threshold, limit)

        snapshot = self.store.snapshot_for_search()
        if len(snapshot) == 0:
            return []

        query = np.asarray(query_embedding, dtype=np.float32).reshape(-1)
        if query.shape[0] != snapshot.matrix.shape[1]:
            raise DimensionMismatch(snapshot.matrix.shape[1], query.shape[0])
        query = normalize_embedding(query)

        candidates = self._scan(snapshot, query, float(threshold), int(limit), cancel_event)

        return [
            SearchResult(
                identifier=snapshot.targets[position].identifier,
                origin=snapshot.targets[position].origin,
                similarity=similarity,
            )
            for similarity, position in candidates
        ]

    def _scan(
        self,
        snapshot: StoreSnapshot,
        query: np.ndarray,
        threshold: float,
        limit: int,
        cancel_event: Optional[threading.Event],
    ) -> List[Candidate]:
        chunks = partition(len(snapshot), self.workers, self.min_chunk)

        def work(bounds: Tuple[int, int]) -> List[Candidate]:
            if cancel_event is not None and cancel_event.is_set():
                raise SearchCancelled("Search cancelled by caller")
            start, stop = bounds
            return score_chunk(snapshot.matrix, query, start, stop, threshold, limit)

        if len(chunks) == 1:
            partials = [work(chunks[0])]
        else:
            partials = list(self._executor.map(work, chunks))

        logger.debug(
            f"Scanned {len(snapshot)} embeddings in {len(chunks)} chunks"
        )
        return merge_candidates(partials, limit)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)


def validate_query(threshold, limit) -> None:
    """Reject malformed search parameters before any scanning."""
    if isinstance(limit, bool) or not isinstance(limit, (int, np.integer)):
        raise InvalidQuery(f"limit must be an integer, got {limit!r}")
    if limit <= 0:
        raise InvalidQuery(f"limit must be positive, got {limit}")
    try:
        threshold = float(threshold)
    except (TypeError, ValueError):
        raise InvalidQuery(f"threshold must be a number, got {threshold!r}")
    if math.isnan(threshold):
        raise InvalidQuery("threshold must not be NaN")


# Singleton instance
search_engine = SimilaritySearchEngine(embedding_store)
