"""
Numba kernels for the R2KS rank statistic.

The pairwise score follows Ni & Vingron's weighted two-sample KS construction
for ranked lists. Rather than filling the full ``num_genes x num_genes``
overlap matrix, the scan keeps a history of ``(pos_y, value)`` entries: the
cumulative weighted overlap at every rank of the second list that has been
reached so far. Each gene occurs exactly once in both lists, so one scan step
only touches the entries at or above that gene's rank in the second list.

The per-pair kernels are compiled with ``nogil=True`` so that a thread pool can
score several pairs at the same time.
"""

import math

import numpy as np
from numba import njit, prange


@njit(cache=True, nogil=True)
def weight(rank_position: int, pivot: int) -> float:
    """Weight of a rank position.

    ``pivot == 0`` disables weighting. Otherwise ranks before the pivot get the
    triangular weight ``h * (h + 1) / 2`` with ``h = pivot - rank_position``
    and ranks past the pivot get ``1.0``.
    """
    if pivot == 0:
        return 1.0
    h = float(pivot) - float(rank_position)
    if h < 0.0:
        return 1.0
    return h * (h + 1.0) / 2.0


@njit(cache=True, nogil=True)
def total_weight(num_genes: int, pivot: int) -> float:
    """Sum of ``weight(i, pivot)`` over all rank positions."""
    acc = 0.0
    for i in range(num_genes):
        acc += weight(i, pivot)
    return acc


@njit(cache=True, nogil=True, boundscheck=False)
def score_lists(list_a: np.ndarray, list_b: np.ndarray, pivot: int) -> float:
    """R2KS score of ``list_a`` against the reference ranking ``list_b``.

    Both inputs must be permutations of ``[0, n)``; ``list_x[r]`` is the gene
    at rank ``r``. No validation is done here, see ``r2ks.operator``.

    Args:
        list_a: Ranked gene ids driving the scan, shape [n]
        list_b: Ranked gene ids of the reference list, shape [n]
        pivot: Weighting pivot, 0 for the unweighted statistic

    Returns:
        The maximum of the normalised overlap excess, scaled by ``sqrt(n)``
    """
    n = list_a.shape[0]
    tw = total_weight(n, pivot)

    rank_in_b = np.empty(n, dtype=np.int64)
    for r in range(n):
        rank_in_b[list_b[r]] = r

    one_over = 1.0 / (float(n) * float(n))

    # history, strictly increasing in pos_y
    hist_pos = np.empty(n, dtype=np.int64)
    hist_val = np.empty(n, dtype=np.float64)
    size = 0

    rvalue = 0.0

    for i in range(n):
        pos = rank_in_b[list_a[i]]

        if i == 0:
            w = weight(0, pivot)
        else:
            iw = weight(i, pivot)
            jw = weight(pos, pivot)
            w = iw if iw < jw else jw

        step = float(i + 1) * one_over

        if size == 0 or pos > hist_pos[size - 1]:
            # past every rank seen so far: extend the envelope
            prev = hist_val[size - 1] if size > 0 else 0.0
            hist_pos[size] = pos
            hist_val[size] = prev + w
            nvalue = hist_val[size] / tw - float(pos + 1) * step
            if nvalue > rvalue:
                rvalue = nvalue
            size += 1
            continue

        k = size - 1
        while k >= 0 and hist_pos[k] > pos:
            hist_val[k] += w
            nvalue = hist_val[k] / tw - float(hist_pos[k] + 1) * step
            if nvalue > rvalue:
                rvalue = nvalue
            k -= 1

        # k == -1 means the new rank sits below every entry
        prev = hist_val[k] if k >= 0 else 0.0
        for m in range(size, k + 1, -1):
            hist_pos[m] = hist_pos[m - 1]
            hist_val[m] = hist_val[m - 1]
        hist_pos[k + 1] = pos
        hist_val[k + 1] = prev + w
        size += 1

        nvalue = hist_val[k + 1] / tw - float(pos + 1) * step
        if nvalue > rvalue:
            rvalue = nvalue

    return rvalue * math.sqrt(n)


@njit(cache=True, nogil=True)
def score_pair(list_a: np.ndarray, list_b: np.ndarray, pivot: int, two_tailed: bool) -> float:
    """Score one pair, optionally taking the better of both tails.

    The second tail compares ``list_a`` against ``list_b`` reversed end to end,
    which picks up negatively correlated rankings.
    """
    rvalue = score_lists(list_a, list_b, pivot)
    if two_tailed:
        reversed_b = list_b[::-1].copy()
        tvalue = score_lists(list_a, reversed_b, pivot)
        if tvalue > rvalue:
            rvalue = tvalue
    return rvalue


@njit(cache=True, parallel=True)
def score_pairs_batch(genes: np.ndarray, pairs: np.ndarray, pivot: int, two_tailed: bool) -> np.ndarray:
    """Score many pairs of in-memory lists in parallel.

    Args:
        genes: Ranked gene ids with shape [L, n], C-contiguous
        pairs: 0-based row indices with shape [B, 2]
        pivot: Weighting pivot
        two_tailed: Whether to keep the better of both tails

    Returns:
        out: Scores with shape [B], float64
    """
    B = pairs.shape[0]
    out = np.empty(B, dtype=np.float64)
    for b in prange(B):
        out[b] = score_pair(genes[pairs[b, 0]], genes[pairs[b, 1]], pivot, two_tailed)
    return out
