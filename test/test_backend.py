"""
Backend tests: single worker, thread and process modes.

All modes must deliver every pair exactly once with identical scores; only
the arrival order may differ.
"""

import math
import multiprocessing as mp
import os
import queue

import numpy as np
import pandas as pd
import pytest

from r2ks import backend, parallel_r2ks, r2ks_pairwise, run
from r2ks.backend import WorkerFailedError, _collect, timed_run
from r2ks.config import R2KSConfig
from r2ks.emitter import PairResult, ResultEmitter
from r2ks.reader import GeneIndexError, HeaderError


def _sorted(df: pd.DataFrame) -> pd.DataFrame:
    return df.sort_values(["list_i", "list_j"]).reset_index(drop=True)


@pytest.fixture
def corrupt_file(raw_file):
    """Four lists of four genes; list 3 repeats a gene id."""
    return raw_file(
        "4 4\n"
        "0 1 2 3\n"
        "3 2 1 0\n"
        "0 0 2 3\n"
        "1 0 3 2\n",
        name="corrupt.txt",
    )


class TestSingleWorker:

    def test_matches_in_memory_batch(self, ranked_list_file, random_lists):
        lists = random_lists(6, 40, seed=4)
        path = ranked_list_file(lists)
        df = parallel_r2ks(path, pivot=8, two_tailed=True, show_progress=False)
        expected = r2ks_pairwise(lists, pivot=8, two_tailed=True)
        pd.testing.assert_frame_equal(_sorted(df), _sorted(expected))

    def test_enumeration_order(self, ranked_list_file, random_lists):
        path = ranked_list_file(random_lists(3, 10))
        df = parallel_r2ks(path, show_progress=False)
        assert list(zip(df["list_i"], df["list_j"])) == [
            (1, 1), (1, 2), (1, 3), (2, 2), (2, 3), (3, 3)
        ]

    def test_self_pairs_score_identity_value(self, ranked_list_file, random_lists):
        path = ranked_list_file(random_lists(3, 10))
        df = parallel_r2ks(path, show_progress=False)
        diag = df[df["list_i"] == df["list_j"]]["score"]
        ident = r2ks_pairwise([np.arange(10)])["score"].iloc[0]
        np.testing.assert_allclose(diag.values, ident)

    def test_exclude_self(self, ranked_list_file, random_lists):
        path = ranked_list_file(random_lists(4, 10))
        df = parallel_r2ks(path, include_self=False, show_progress=False)
        assert len(df) == 6

    def test_on_result_streams_every_pair(self, ranked_list_file, random_lists):
        path = ranked_list_file(random_lists(4, 10))
        seen = []
        df = parallel_r2ks(path, show_progress=False, on_result=seen.append)
        assert len(seen) == len(df) == 10
        assert all(isinstance(r, PairResult) for r in seen)

    def test_no_lists(self, raw_file):
        df = parallel_r2ks(raw_file("5 0\n"), show_progress=False)
        assert len(df) == 0

    def test_header_error_before_scoring(self, raw_file):
        seen = []
        with pytest.raises(HeaderError):
            parallel_r2ks(raw_file("0 2\n\n\n"), show_progress=False, on_result=seen.append)
        assert seen == []

    def test_failed_pairs_are_nan(self, corrupt_file):
        df = parallel_r2ks(corrupt_file, show_progress=False)
        assert len(df) == 10
        bad = (df["list_i"] == 3) | (df["list_j"] == 3)
        assert df.loc[bad, "score"].isna().all()
        assert df.loc[~bad, "score"].notna().all()

    def test_id_overflow_fails_only_its_pairs(self, raw_file):
        df = parallel_r2ks(raw_file("3 2\n0 1 2\n0 99999999999999999999 2\n"),
                           show_progress=False)
        assert len(df) == 3
        assert df["score"].isna().sum() == 2
        assert df.loc[0, "score"] == pytest.approx(r2ks_pairwise([[0, 1, 2]])["score"][0])

    def test_invalid_utf8_line_fails_only_its_pairs(self, raw_file):
        df = parallel_r2ks(raw_file(b"3 2\n0 1 2\n0 \xff 2\n"), show_progress=False)
        assert len(df) == 3
        assert df["score"].isna().sum() == 2

    def test_fractional_pivot_rejected(self, ranked_list_file, random_lists):
        path = ranked_list_file(random_lists(2, 5))
        with pytest.raises(ValueError, match="pivot must be an integer"):
            parallel_r2ks(path, pivot=2.5, show_progress=False)

    def test_run_without_keep_streams_only(self, ranked_list_file, random_lists):
        path = ranked_list_file(random_lists(3, 8))
        seen = []
        config = R2KSConfig(filename=str(path), show_progress=False)
        assert run(config, on_result=seen.append, keep=False) == []
        assert len(seen) == 6

    def test_timed_run_keeps_nothing(self, ranked_list_file, random_lists, monkeypatch):
        path = ranked_list_file(random_lists(3, 8))
        calls = []
        real_run = backend.run

        def spy(config, on_result=None, keep=True):
            calls.append(keep)
            return real_run(config, on_result=on_result, keep=keep)

        monkeypatch.setattr(backend, "run", spy)
        emitter = ResultEmitter(keep=True)
        timed_run(R2KSConfig(filename=str(path), show_progress=False), emitter)
        assert calls == [False]
        assert len(emitter.results) == 6

    def test_strict_raises(self, corrupt_file):
        with pytest.raises(GeneIndexError):
            parallel_r2ks(corrupt_file, strict=True, show_progress=False)

    def test_invalid_mode(self, ranked_list_file, random_lists):
        path = ranked_list_file(random_lists(2, 5))
        with pytest.raises(ValueError, match="Unsupported mode"):
            parallel_r2ks(path, mode="mpi", show_progress=False)


class TestThreads:

    def test_same_results_as_serial(self, ranked_list_file, random_lists, n_workers):
        lists = random_lists(7, 50, seed=8)
        path = ranked_list_file(lists)
        serial = parallel_r2ks(path, pivot=5, two_tailed=True, show_progress=False)
        threaded = parallel_r2ks(path, pivot=5, two_tailed=True, num_workers=n_workers,
                                 mode="threads", show_progress=False)
        assert len(threaded) == 28
        pd.testing.assert_frame_equal(_sorted(threaded), _sorted(serial))

    def test_more_workers_than_pairs(self, ranked_list_file, random_lists):
        path = ranked_list_file(random_lists(2, 6))
        df = parallel_r2ks(path, num_workers=8, mode="threads", show_progress=False)
        assert len(df) == 3

    def test_failed_pairs_are_nan(self, corrupt_file):
        df = parallel_r2ks(corrupt_file, num_workers=3, mode="threads", show_progress=False)
        assert len(df) == 10
        assert df["score"].isna().sum() == 4

    def test_strict_propagates(self, corrupt_file):
        with pytest.raises(GeneIndexError):
            parallel_r2ks(corrupt_file, num_workers=2, mode="threads", strict=True,
                          poll_interval=0.05, show_progress=False)


def _exit_with_code(path, chunk, pivot, two_tailed, results_queue, worker_id, strict):
    os._exit(3)


def _exit_without_results(path, chunk, pivot, two_tailed, results_queue, worker_id, strict):
    return None


needs_fork = pytest.mark.skipif(
    "fork" not in mp.get_all_start_methods(), reason="needs the fork start method"
)


@pytest.mark.slow
class TestProcesses:

    def test_same_results_as_serial(self, ranked_list_file, random_lists, n_workers):
        lists = random_lists(6, 30, seed=12)
        path = ranked_list_file(lists)
        serial = parallel_r2ks(path, pivot=3, show_progress=False)
        procs = parallel_r2ks(path, pivot=3, num_workers=n_workers, mode="processes",
                              show_progress=False)
        assert len(procs) == 21
        pd.testing.assert_frame_equal(_sorted(procs), _sorted(serial))

    def test_failed_pairs_are_nan(self, corrupt_file):
        df = parallel_r2ks(corrupt_file, num_workers=2, mode="processes", show_progress=False)
        assert len(df) == 10
        assert df["score"].isna().sum() == 4

    def test_strict_reraises_reader_error(self, corrupt_file):
        with pytest.raises(GeneIndexError):
            parallel_r2ks(corrupt_file, num_workers=2, mode="processes", strict=True,
                          poll_interval=0.05, show_progress=False)

    @needs_fork
    def test_worker_killed(self, ranked_list_file, random_lists, monkeypatch):
        path = ranked_list_file(random_lists(4, 10))
        fork_ctx = mp.get_context("fork")
        monkeypatch.setattr(backend.mp, "get_context", lambda *a: fork_ctx)
        monkeypatch.setattr(backend, "_process_worker", _exit_with_code)
        with pytest.raises(WorkerFailedError, match="exited with code 3"):
            parallel_r2ks(path, num_workers=2, mode="processes", poll_interval=0.05,
                          show_progress=False)

    @needs_fork
    def test_workers_exit_without_results(self, ranked_list_file, random_lists, monkeypatch):
        path = ranked_list_file(random_lists(4, 10))
        fork_ctx = mp.get_context("fork")
        monkeypatch.setattr(backend.mp, "get_context", lambda *a: fork_ctx)
        monkeypatch.setattr(backend, "_process_worker", _exit_without_results)
        with pytest.raises(WorkerFailedError, match="results are missing"):
            parallel_r2ks(path, num_workers=2, mode="processes", poll_interval=0.05,
                          show_progress=False)


class TestCollector:
    """Coordinator loop in isolation."""

    def test_forwards_in_arrival_order(self):
        q = queue.Queue()
        items = [PairResult(2, 3, 0.1), PairResult(1, 1, 0.5), PairResult(1, 2, math.nan)]
        for it in items:
            q.put(it)
        got = []
        n_failed = _collect(q, 3, got.append, lambda: None, 0.01, show_progress=False)
        assert got == items
        assert n_failed == 1

    def test_missing_results_do_not_block(self):
        q = queue.Queue()
        q.put(PairResult(1, 1, 0.5))

        def check_workers():
            raise WorkerFailedError("gone")

        with pytest.raises(WorkerFailedError):
            _collect(q, 2, lambda r: None, check_workers, 0.01, show_progress=False)


def test_run_requires_file():
    with pytest.raises(ValueError, match="No input file"):
        run(R2KSConfig(show_progress=False))
