"""Result sinks."""

import threading
from typing import Iterable, List, NamedTuple, Optional, TextIO

import numpy as np
import pandas as pd


class PairResult(NamedTuple):
    """Score of one list pair; ``score`` is nan when the comparison failed."""
    i: int
    j: int
    score: float


def format_result(result: PairResult) -> str:
    return f"{result.i}_{result.j} {result.score:g}"


class ResultEmitter:
    """Writes one ``"<i>_<j> <score>"`` line per result.

    Writes are serialised with a lock so lines never interleave when several
    threads emit to the same stream. With ``keep`` the results are also
    collected in ``results``.
    """

    def __init__(self, stream: Optional[TextIO] = None, keep: bool = True):
        self.stream = stream
        self.keep = keep
        self.results: List[PairResult] = []
        self._lock = threading.Lock()

    def emit(self, result: PairResult) -> None:
        with self._lock:
            if self.keep:
                self.results.append(result)
            if self.stream is not None:
                self.stream.write(format_result(result) + "\n")
                self.stream.flush()

    def emit_timing(self, seconds: float) -> None:
        if self.stream is not None:
            with self._lock:
                self.stream.write(f"Wall clock time: {seconds}\n")
                self.stream.flush()


def results_to_frame(results: Iterable[PairResult]) -> pd.DataFrame:
    """Assemble results as a DataFrame with columns ``list_i, list_j, score``."""
    results = list(results)
    return pd.DataFrame({
        "list_i": np.fromiter((r.i for r in results), dtype=np.int64, count=len(results)),
        "list_j": np.fromiter((r.j for r in results), dtype=np.int64, count=len(results)),
        "score": np.fromiter((r.score for r in results), dtype=np.float64, count=len(results)),
    })
