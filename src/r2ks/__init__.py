from .backend import parallel_r2ks, run, WorkerFailedError
from .config import R2KSConfig, load_config
from .emitter import PairResult, ResultEmitter, results_to_frame
from .partition import StaticPartitioner, count_pairs, enumerate_pairs, make_chunks
from .reader import (
	GeneIndexError,
	Header,
	HeaderError,
	R2KSError,
	RankedList,
	RankedListReader,
	TruncatedListError,
	read_header,
)

# Operator exports
from .operator import (
	rank_weight,
	rank_total_weight,
	r2ks_score,
	r2ks_two_tailed,
	r2ks_pairwise,
)

__version__ = "0.1.0"

__all__ = [
	"parallel_r2ks",
	"run",
	"R2KSConfig",
	"load_config",
	"PairResult",
	"ResultEmitter",
	"results_to_frame",
	"StaticPartitioner",
	"count_pairs",
	"enumerate_pairs",
	"make_chunks",
	"RankedList",
	"RankedListReader",
	"Header",
	"read_header",
	"R2KSError",
	"HeaderError",
	"GeneIndexError",
	"TruncatedListError",
	"WorkerFailedError",
	"rank_weight",
	"rank_total_weight",
	"r2ks_score",
	"r2ks_two_tailed",
	"r2ks_pairwise",
]

all_pairs_r2ks = parallel_r2ks
