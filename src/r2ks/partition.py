"""
Pair enumeration and static work partitioning.

Pairs are 1-based ``(i, j)`` list indices with ``i <= j``. The enumeration is
split once into one contiguous chunk per worker; chunks are never rebalanced.
"""

import logging
from typing import List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

Pair = Tuple[int, int]
WorkChunk = Tuple[Pair, ...]


def count_pairs(num_lists: int, include_self: bool = True) -> int:
    """Number of pairs ``enumerate_pairs`` yields."""
    if num_lists <= 0:
        return 0
    if include_self:
        return num_lists * (num_lists + 1) // 2
    return num_lists * (num_lists - 1) // 2


def enumerate_pairs(num_lists: int, include_self: bool = True) -> List[Pair]:
    """All unordered list pairs in row-major order.

    With ``include_self`` the diagonal ``(i, i)`` is part of the enumeration;
    a self-comparison scores the maximum attainable value and serves as a
    per-list baseline.
    """
    if num_lists < 0:
        raise ValueError(f"num_lists must be non-negative, got {num_lists}")
    offset = 0 if include_self else 1
    return [
        (i, j)
        for i in range(1, num_lists + 1)
        for j in range(i + offset, num_lists + 1)
    ]


def make_chunks(pairs: Sequence[Pair], num_workers: int) -> List[WorkChunk]:
    """Split ``pairs`` into ``num_workers`` contiguous chunks.

    Every chunk holds ``len(pairs) // num_workers`` pairs and the remainder is
    appended to the last chunk, so chunks may be empty when there are fewer
    pairs than workers.
    """
    if num_workers < 1:
        raise ValueError(f"num_workers must be >= 1, got {num_workers}")
    per_worker = len(pairs) // num_workers
    chunks = []
    for w in range(num_workers):
        start = per_worker * w
        end = len(pairs) if w == num_workers - 1 else start + per_worker
        chunks.append(tuple(pairs[start:end]))
    return chunks


class Partitioner:
    """Hands out work chunks to workers.

    Subclasses decide how chunks are formed; workers only ever call
    ``next_chunk`` until it returns ``None``.
    """

    def __init__(self, pairs: Sequence[Pair], num_workers: int):
        if num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {num_workers}")
        self.pairs = list(pairs)
        self.num_workers = num_workers

    @property
    def total_pairs(self) -> int:
        return len(self.pairs)

    def next_chunk(self, worker_id: int) -> Optional[WorkChunk]:
        raise NotImplementedError


class StaticPartitioner(Partitioner):
    """One precomputed contiguous chunk per worker, handed out once."""

    def __init__(self, pairs: Sequence[Pair], num_workers: int):
        super().__init__(pairs, num_workers)
        self.chunks = make_chunks(self.pairs, num_workers)
        self._handed_out = [False] * num_workers
        logger.debug(
            f"Static partition of {self.total_pairs} pairs: "
            f"{[len(c) for c in self.chunks]}"
        )

    def next_chunk(self, worker_id: int) -> Optional[WorkChunk]:
        if worker_id < 0 or worker_id >= self.num_workers:
            raise IndexError(f"worker_id {worker_id} outside [0, {self.num_workers})")
        if self._handed_out[worker_id]:
            return None
        self._handed_out[worker_id] = True
        return self.chunks[worker_id]
