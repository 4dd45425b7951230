"""
Ranked list file access.

File layout::

    <num_genes> <num_lists>
    <gene at rank 0> <gene at rank 1> ... <gene at rank num_genes-1>   # list 1
    ...                                                                 # list num_lists

Lists are addressed by their 1-based line number. Every read reopens the file
and seeks to the start of the requested line, so concurrent readers in
separate threads or processes never share file state.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional, Union

import numpy as np

logger = logging.getLogger(__name__)


class R2KSError(Exception):
    """Base class for all r2ks errors."""


class HeaderError(R2KSError, ValueError):
    """The header line is missing, malformed or describes an empty universe."""


class GeneIndexError(R2KSError, ValueError):
    """A list is not a permutation of the gene universe."""


class TruncatedListError(R2KSError, EOFError):
    """A list line is missing or holds fewer than ``num_genes`` tokens."""


class Header(NamedTuple):
    num_genes: int
    num_lists: int


@dataclass(frozen=True)
class RankedList:
    """One loaded list.

    Attributes:
        index: 1-based list index (line number in the file)
        genes: ``genes[r]`` is the gene at rank ``r``
        ranks: ``ranks[g]`` is the rank of gene ``g``
    """
    index: int
    genes: np.ndarray = field(repr=False)
    ranks: np.ndarray = field(repr=False)

    @property
    def num_genes(self) -> int:
        return int(self.genes.shape[0])


def parse_header(line: str) -> Header:
    """Parse ``"<num_genes> <num_lists>"``.

    Raises:
        HeaderError: If either field is missing or not an integer, if
            ``num_genes`` is not positive or ``num_lists`` is negative
    """
    tokens = line.split()
    if len(tokens) < 2:
        raise HeaderError(f"Header needs `num_genes num_lists`, got {line.strip()!r}")
    try:
        num_genes, num_lists = int(tokens[0]), int(tokens[1])
    except ValueError as e:
        raise HeaderError(f"Non-numeric header {line.strip()!r}") from e
    if num_genes <= 0:
        raise HeaderError(f"num_genes must be positive, got {num_genes}")
    if num_lists < 0:
        raise HeaderError(f"num_lists must be non-negative, got {num_lists}")
    return Header(num_genes, num_lists)


def read_header(path: Union[str, os.PathLike]) -> Header:
    """Read the header block of a ranked list file."""
    with open(path, "rb") as f:
        raw = f.readline()
    if not raw:
        raise HeaderError(f"Empty file: {path}")
    try:
        line = raw.decode()
    except UnicodeDecodeError as e:
        raise HeaderError(f"Header of {path} is not valid text") from e
    return parse_header(line)


def parse_ranked_line(line: str, num_genes: int, index: int = 0) -> RankedList:
    """Build a RankedList from one line of gene identifiers.

    Only the first ``num_genes`` tokens are used.

    Raises:
        TruncatedListError: If the line has fewer than ``num_genes`` tokens
        GeneIndexError: If a token is not an integer in ``[0, num_genes)`` or
            a gene occurs twice
    """
    tokens = line.split()
    if len(tokens) < num_genes:
        raise TruncatedListError(
            f"List {index} has {len(tokens)} genes, expected {num_genes}"
        )
    try:
        genes = np.array([int(t) for t in tokens[:num_genes]], dtype=np.int64)
    except ValueError as e:
        raise GeneIndexError(f"List {index} contains a non-integer gene id") from e
    except OverflowError as e:
        raise GeneIndexError(f"List {index}: gene id outside [0, {num_genes})") from e

    bad = (genes < 0) | (genes >= num_genes)
    if np.any(bad):
        raise GeneIndexError(
            f"List {index}: gene id {int(genes[np.argmax(bad)])} outside [0, {num_genes})"
        )

    ranks = np.full(num_genes, -1, dtype=np.int64)
    ranks[genes] = np.arange(num_genes, dtype=np.int64)
    if np.any(ranks < 0):
        # some id was written twice, so another one never appears
        raise GeneIndexError(
            f"List {index}: gene {int(np.argmax(ranks < 0))} missing (duplicate ids)"
        )

    genes.flags.writeable = False
    ranks.flags.writeable = False
    return RankedList(index=index, genes=genes, ranks=ranks)


class RankedListReader:
    """Positional reader over a ranked list file.

    The header is read on construction. Line offsets are indexed lazily on
    the first list read; after that each read is an ``open`` + ``seek``.
    """

    def __init__(self, path: Union[str, os.PathLike]):
        self.path = os.fspath(path)
        self.header = read_header(self.path)
        self._offsets: Optional[List[int]] = None

    @property
    def num_genes(self) -> int:
        return self.header.num_genes

    @property
    def num_lists(self) -> int:
        return self.header.num_lists

    def _index_line_offsets(self) -> List[int]:
        offsets = []
        pos = 0
        with open(self.path, "rb") as f:
            for raw in f:
                offsets.append(pos)
                pos += len(raw)
        logger.debug(f"Indexed {len(offsets)} lines of {self.path}")
        return offsets

    def read_line(self, idx: int) -> str:
        """Return the raw text of line ``idx`` (0 is the header).

        Raises:
            TruncatedListError: If the file has no line ``idx``
            GeneIndexError: If the line is not valid UTF-8
        """
        if self._offsets is None:
            self._offsets = self._index_line_offsets()
        if idx < 0 or idx >= len(self._offsets):
            raise TruncatedListError(
                f"Line {idx} requested but {self.path} has {len(self._offsets)} lines"
            )
        with open(self.path, "rb") as f:
            f.seek(self._offsets[idx])
            raw = f.readline()
        try:
            return raw.decode()
        except UnicodeDecodeError as e:
            raise GeneIndexError(f"Line {idx} of {self.path} is not valid text") from e

    def read(self, idx: int) -> RankedList:
        """Load list ``idx`` (1-based)."""
        if idx < 1 or idx > self.num_lists:
            raise TruncatedListError(f"List index {idx} outside [1, {self.num_lists}]")
        return parse_ranked_line(self.read_line(idx), self.num_genes, index=idx)

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(path={self.path!r}, "
                f"num_genes={self.num_genes}, num_lists={self.num_lists})")


def write_ranked_lists(path: Union[str, os.PathLike], lists) -> Header:
    """Write lists of gene ids (rank order) in the reader's format."""
    lists = [np.asarray(x, dtype=np.int64) for x in lists]
    num_genes = int(lists[0].shape[0]) if lists else 0
    with open(path, "w") as f:
        f.write(f"{num_genes} {len(lists)}\n")
        for genes in lists:
            f.write(" ".join(str(int(g)) for g in genes))
            f.write("\n")
    return Header(num_genes, len(lists))
