import numpy as np
import pandas as pd
from typing import Sequence, Union

from .emitter import PairResult, results_to_frame
from .kernel import (
	score_lists,
	score_pair,
	score_pairs_batch,
	total_weight,
	weight,
)
from .partition import enumerate_pairs
from .reader import GeneIndexError, RankedList


ListLike = Union[np.ndarray, RankedList, list]


def _as_gene_array(x: ListLike, name: str) -> np.ndarray:
	if isinstance(x, RankedList):
		return x.genes
	arr = np.asarray(x)
	if arr.ndim != 1:
		raise ValueError(f"{name} must be 1D, got shape {arr.shape}")
	if arr.size and not np.issubdtype(arr.dtype, np.integer):
		raise TypeError(f"{name} must hold integer gene ids, got {arr.dtype}")
	return arr.astype(np.int64, copy=False)


def _assert_permutation(genes: np.ndarray, name: str) -> None:
	n = genes.shape[0]
	if n == 0:
		raise ValueError(f"{name} is empty; num_genes must be positive")
	if genes.min() < 0 or genes.max() >= n:
		raise GeneIndexError(f"{name} has gene ids outside [0, {n})")
	if np.bincount(genes, minlength=n).max() != 1:
		raise GeneIndexError(f"{name} is not a permutation (duplicate gene ids)")


def _prepare(list_a: ListLike, list_b: ListLike):
	a = _as_gene_array(list_a, "list_a")
	b = _as_gene_array(list_b, "list_b")
	if a.shape != b.shape:
		raise ValueError(f"Lists must have equal length, got {a.shape[0]} and {b.shape[0]}")
	_assert_permutation(a, "list_a")
	_assert_permutation(b, "list_b")
	return np.ascontiguousarray(a), np.ascontiguousarray(b)


# -------------------- Public operators --------------------

def rank_weight(rank_position: int, pivot: int = 0) -> float:
	"""Weight of one rank position (``pivot=0`` is the unweighted test)."""
	if rank_position < 0 or pivot < 0:
		raise ValueError("rank_position and pivot must be non-negative")
	return weight(rank_position, pivot)


def rank_total_weight(num_genes: int, pivot: int = 0) -> float:
	"""Normalising denominator for ``num_genes`` rank positions."""
	if num_genes <= 0:
		raise ValueError(f"num_genes must be positive, got {num_genes}")
	return total_weight(num_genes, pivot)


def r2ks_score(
	list_a: ListLike,
	list_b: ListLike,
	pivot: int = 0,
	two_tailed: bool = False,
) -> float:
	"""R2KS similarity of two ranked lists.

	Args:
		list_a: gene ids in rank order, drives the scan
		list_b: gene ids in rank order, reference ranking
		pivot: weighting pivot, 0 disables weighting
		two_tailed: also score against ``list_b`` reversed and keep the max
	Returns:
		score (float)
	Raises:
		GeneIndexError: if either list is not a permutation of ``[0, n)``
	"""
	if pivot < 0:
		raise ValueError(f"pivot must be non-negative, got {pivot}")
	a, b = _prepare(list_a, list_b)
	if two_tailed:
		return score_pair(a, b, int(pivot), True)
	return score_lists(a, b, int(pivot))


def r2ks_two_tailed(list_a: ListLike, list_b: ListLike, pivot: int = 0) -> float:
	"""Two-tailed R2KS: max of forward and reversed-reference scores."""
	return r2ks_score(list_a, list_b, pivot=pivot, two_tailed=True)


def r2ks_pairwise(
	lists: Union[np.ndarray, Sequence[ListLike]],
	pivot: int = 0,
	two_tailed: bool = False,
	include_self: bool = True,
) -> pd.DataFrame:
	"""All-pairs R2KS over lists already held in memory.

	Pairs are scored in parallel with numba ``prange``; every pair owns its
	own history, nothing is shared between iterations.

	Args:
		lists: [L, n] gene ids in rank order, one list per row
		pivot: weighting pivot
		two_tailed: keep the better of both tails
		include_self: also score ``(i, i)``
	Returns:
		DataFrame with columns ``list_i``, ``list_j`` (1-based) and ``score``
	"""
	if pivot < 0:
		raise ValueError(f"pivot must be non-negative, got {pivot}")
	rows = [_as_gene_array(x, f"lists[{k}]") for k, x in enumerate(lists)]
	if rows and len({r.shape[0] for r in rows}) != 1:
		raise ValueError("All lists must have the same length")
	for k, r in enumerate(rows):
		_assert_permutation(r, f"lists[{k}]")

	pairs = enumerate_pairs(len(rows), include_self=include_self)
	if not pairs:
		return results_to_frame([])

	genes = np.ascontiguousarray(np.vstack(rows), dtype=np.int64)
	idx = np.asarray(pairs, dtype=np.int64) - 1
	scores = score_pairs_batch(genes, idx, int(pivot), bool(two_tailed))
	return results_to_frame(
		PairResult(i, j, float(s)) for (i, j), s in zip(pairs, scores)
	)
