"""
Parallel all-pairs R2KS scoring over a ranked list file.

Three execution paths share the same pair enumeration and per-pair worker:

- a single worker scores every pair in enumeration order, in-process;
- ``mode="threads"``: one thread per static chunk, kernels release the GIL;
- ``mode="processes"``: one ``multiprocessing`` process per static chunk.

In both parallel modes the calling thread is the coordinator: it drains a
results queue until exactly ``total_pairs`` results have arrived and forwards
each one to the emitter in arrival order. Each worker opens the input file on
its own and keeps its loaded lists and history private.
"""

import logging
import math
import multiprocessing as mp
import os
import queue
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, NamedTuple, Optional, Sequence, Union

import pandas as pd
from tqdm import tqdm

from .config import R2KSConfig
from .emitter import PairResult, ResultEmitter, results_to_frame
from .kernel import score_pair
from .partition import Pair, StaticPartitioner, WorkChunk, enumerate_pairs
from .reader import (
    GeneIndexError,
    R2KSError,
    RankedListReader,
    TruncatedListError,
)

logger = logging.getLogger(__name__)

ResultCallback = Callable[[PairResult], None]


class WorkerFailedError(R2KSError, RuntimeError):
    """A worker stopped before delivering all of its results."""


class _WorkerError(NamedTuple):
    worker_id: int
    message: str
    error: Optional[R2KSError] = None


def _score_one(reader: RankedListReader, pair: Pair, pivot: int, two_tailed: bool) -> PairResult:
    i, j = pair
    list_i = reader.read(i)
    list_j = reader.read(j)
    score = score_pair(list_i.genes, list_j.genes, pivot, two_tailed)
    return PairResult(i, j, float(score))


def _run_chunk(
    reader: RankedListReader,
    chunk: WorkChunk,
    pivot: int,
    two_tailed: bool,
    put: ResultCallback,
    worker_id: int = 0,
    strict: bool = False,
) -> int:
    """Score every pair of ``chunk`` and hand each result to ``put``.

    A pair whose lists fail to load is reported with a nan score unless
    ``strict`` is set, in which case the error propagates.

    Returns:
        Number of failed pairs
    """
    n_failed = 0
    for pair in chunk:
        try:
            result = _score_one(reader, pair, pivot, two_tailed)
        except (GeneIndexError, TruncatedListError) as e:
            if strict:
                raise
            logger.warning(f"Worker {worker_id} failed on pair {pair}: {e}")
            result = PairResult(pair[0], pair[1], math.nan)
            n_failed += 1
        put(result)
    return n_failed


def _process_worker(
    path: str,
    chunk: WorkChunk,
    pivot: int,
    two_tailed: bool,
    results_queue,
    worker_id: int,
    strict: bool,
) -> None:
    """Entry point of a worker process: score one chunk, send every result."""
    try:
        reader = RankedListReader(path)
        _run_chunk(reader, chunk, pivot, two_tailed, results_queue.put, worker_id, strict)
    except Exception as e:
        error = e if isinstance(e, R2KSError) else None
        results_queue.put(_WorkerError(worker_id, f"{type(e).__name__}: {e}", error))
        raise


def _collect(
    results_queue,
    total: int,
    emit: ResultCallback,
    check_workers: Callable[[], None],
    poll_interval: float = 1.0,
    show_progress: bool = True,
) -> int:
    """Coordinator loop: forward ``total`` results in arrival order.

    ``check_workers`` is called whenever the queue stays empty for
    ``poll_interval`` seconds and raises if the remaining results can no
    longer arrive.

    Returns:
        Number of results with a nan score
    """
    received = 0
    n_failed = 0
    with tqdm(total=total, desc="Scoring list pairs", disable=not show_progress) as bar:
        while received < total:
            try:
                item = results_queue.get(timeout=poll_interval)
            except queue.Empty:
                check_workers()
                continue
            if isinstance(item, _WorkerError):
                logger.error(f"Worker {item.worker_id} failed: {item.message}")
                if item.error is not None:
                    raise item.error
                raise WorkerFailedError(f"Worker {item.worker_id} failed: {item.message}")
            if math.isnan(item.score):
                n_failed += 1
            emit(item)
            received += 1
            bar.update(1)
    return n_failed


def _run_serial(reader: RankedListReader, pairs: Sequence[Pair], config: R2KSConfig,
                emit: ResultCallback) -> int:
    iterator = tqdm(pairs, desc="Scoring list pairs", disable=not config.show_progress)
    return _run_chunk(reader, iterator, config.pivot, config.two_tailed, emit, 0, config.strict)


def _run_threads(reader: RankedListReader, partitioner: StaticPartitioner, config: R2KSConfig,
                 emit: ResultCallback) -> int:
    results_queue: "queue.Queue" = queue.Queue()
    futures: List[Future] = []

    def check_workers() -> None:
        if not results_queue.empty():
            return
        for f in futures:
            if f.done() and f.exception() is not None:
                raise f.exception()
        if all(f.done() for f in futures):
            raise WorkerFailedError("All worker threads finished but results are missing")

    with ThreadPoolExecutor(max_workers=config.num_workers, thread_name_prefix="r2ks") as ex:
        for worker_id in range(config.num_workers):
            chunk = partitioner.next_chunk(worker_id)
            # one reader per thread, nothing is shared between workers
            futures.append(ex.submit(
                _run_chunk, RankedListReader(reader.path), chunk, config.pivot, config.two_tailed,
                results_queue.put, worker_id, config.strict,
            ))
        return _collect(results_queue, partitioner.total_pairs, emit, check_workers,
                        config.poll_interval, config.show_progress)


def _run_processes(reader: RankedListReader, partitioner: StaticPartitioner, config: R2KSConfig,
                   emit: ResultCallback) -> int:
    ctx = mp.get_context()
    results_queue = ctx.Queue()
    procs = []
    for worker_id in range(config.num_workers):
        chunk = partitioner.next_chunk(worker_id)
        p = ctx.Process(
            target=_process_worker,
            args=(reader.path, chunk, config.pivot, config.two_tailed,
                  results_queue, worker_id, config.strict),
            name=f"r2ks-worker-{worker_id}",
        )
        procs.append(p)

    def check_workers() -> None:
        # a worker flushes its queue before exiting, drain what is left first
        if not results_queue.empty():
            return
        for worker_id, p in enumerate(procs):
            if p.exitcode not in (None, 0):
                raise WorkerFailedError(f"Worker {worker_id} exited with code {p.exitcode}")
        if all(p.exitcode == 0 for p in procs):
            raise WorkerFailedError("All worker processes exited but results are missing")

    try:
        for p in procs:
            p.start()
        n_failed = _collect(results_queue, partitioner.total_pairs, emit, check_workers,
                            config.poll_interval, config.show_progress)
        for p in procs:
            p.join()
        return n_failed
    finally:
        for p in procs:
            if p.is_alive():
                p.terminate()
                p.join()
        results_queue.close()


def run(
    config: R2KSConfig,
    on_result: Optional[ResultCallback] = None,
    keep: bool = True,
) -> List[PairResult]:
    """Score all pairs described by ``config``.

    Results are passed to ``on_result`` as they arrive. With ``keep`` they
    are also collected and returned; otherwise the returned list is empty.

    Raises:
        HeaderError: If the input header is malformed
        GeneIndexError, TruncatedListError: Under ``strict``, in every mode
        WorkerFailedError: If a parallel worker dies
    """
    config.validate()
    if config.filename is None:
        raise ValueError("No input file given")

    reader = RankedListReader(config.filename)
    logger.info(f"Loaded header: {reader.num_genes} genes, {reader.num_lists} lists")

    pairs = enumerate_pairs(reader.num_lists, include_self=config.include_self)
    collector = ResultEmitter(keep=keep)

    def emit(result: PairResult) -> None:
        collector.emit(result)
        if on_result is not None:
            on_result(result)

    if not pairs:
        logger.warning("No list pairs to score")
        return collector.results

    if config.num_workers <= 1:
        logger.info(f"Scoring {len(pairs)} pairs with a single worker")
        n_failed = _run_serial(reader, pairs, config, emit)
    else:
        partitioner = StaticPartitioner(pairs, config.num_workers)
        logger.info(
            f"Scoring {len(pairs)} pairs with {config.num_workers} {config.mode} "
            f"({len(partitioner.chunks[0])} pairs per worker)"
        )
        if config.mode == "threads":
            n_failed = _run_threads(reader, partitioner, config, emit)
        else:
            n_failed = _run_processes(reader, partitioner, config, emit)

    if n_failed > 0:
        logger.warning(f"{n_failed} pairs failed to compute")
    return collector.results


# -- Public API
def parallel_r2ks(
    path: Union[str, os.PathLike],
    pivot: int = 0,
    two_tailed: bool = False,
    num_workers: int = 1,
    mode: str = "threads",
    include_self: bool = True,
    show_progress: bool = True,
    strict: bool = False,
    poll_interval: float = 1.0,
    on_result: Optional[ResultCallback] = None,
) -> pd.DataFrame:
    """All-pairs R2KS similarity of the ranked lists in ``path``.

    Args:
        path: Ranked list file (header line, then one list per line)
        pivot: Weighting pivot, 0 for the unweighted statistic
        two_tailed: Keep the better of the forward and reversed comparison
        num_workers: Number of parallel workers; 1 scores in-process
        mode: "threads" or "processes"
        include_self: Whether to score the self pairs ``(i, i)``
        show_progress: Show a tqdm progress bar
        strict: Raise on the first unreadable list instead of reporting nan.
            The reader error propagates unchanged in every mode
        poll_interval: Seconds between worker liveness checks while waiting
        on_result: Called with every PairResult as it arrives

    Returns:
        DataFrame with columns ``list_i``, ``list_j`` (1-based) and ``score``,
        in arrival order. Failed pairs have a nan score.

    Examples:
        >>> df = parallel_r2ks("lists.txt", pivot=50, two_tailed=True, num_workers=4)
        >>> df.sort_values("score", ascending=False).head()
    """
    config = R2KSConfig(
        filename=os.fspath(path),
        pivot=pivot,
        two_tailed=two_tailed,
        num_workers=num_workers,
        mode=mode,
        include_self=include_self,
        show_progress=show_progress,
        strict=strict,
        poll_interval=poll_interval,
    )
    return results_to_frame(run(config, on_result=on_result))


def timed_run(config: R2KSConfig, emitter: ResultEmitter) -> float:
    """Run ``config`` streaming into ``emitter``, then emit the wall clock time."""
    start = time.perf_counter()
    run(config, on_result=emitter.emit, keep=False)
    elapsed = time.perf_counter() - start
    emitter.emit_timing(elapsed)
    return elapsed
