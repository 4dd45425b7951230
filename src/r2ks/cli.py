"""
Command-line entry point.

Usage:
    r2ks -f lists.txt
    r2ks -f lists.txt -w 100 -t -n 8 --mode processes
    r2ks -c run.yml -f other.txt
"""

import argparse
import logging
import sys
from typing import List, Optional

from .backend import timed_run
from .config import R2KSConfig, load_config, supported_modes
from .emitter import ResultEmitter
from .reader import R2KSError


def setup_logging(verbose: bool = False) -> None:
    """Setup logging for command-line runs."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%H:%M:%S',
        stream=sys.stderr,
    )

    logging.getLogger('numba').setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="r2ks",
        description="All-pairs weighted rank KS similarity (R2KS) of ranked gene lists",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  r2ks -f lists.txt                     # unweighted, single worker
  r2ks -f lists.txt -w 100 -t           # weighted around rank 100, two-tailed
  r2ks -f lists.txt -n 8 -m processes   # 8 worker processes
        """,
    )
    parser.add_argument('-f', '--file', dest='filename', help='Ranked list file')
    parser.add_argument('-w', '--pivot', type=int, default=None,
                        help='Weighting pivot rank (default: 0, unweighted)')
    parser.add_argument('-t', '--two-tailed', action='store_true', default=None,
                        help='Also score against the reversed second list')
    parser.add_argument('-n', '--workers', dest='num_workers', type=int, default=None,
                        help='Number of parallel workers (default: 1)')
    parser.add_argument('-m', '--mode', choices=supported_modes, default=None,
                        help='Parallel backend (default: threads)')
    parser.add_argument('--exclude-self', action='store_true',
                        help='Skip the self pairs (i, i)')
    parser.add_argument('-c', '--config', help='YAML configuration file')
    parser.add_argument('--no-progress', action='store_true', help='Disable the progress bar')
    parser.add_argument('--strict', action='store_true', default=None,
                        help='Abort on the first unreadable list')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    return parser


def resolve_config(args: argparse.Namespace) -> R2KSConfig:
    """YAML values first, command-line flags on top."""
    config = load_config(args.config) if args.config else R2KSConfig()
    config = config.update(
        filename=args.filename,
        pivot=args.pivot,
        two_tailed=args.two_tailed,
        num_workers=args.num_workers,
        mode=args.mode,
        strict=args.strict,
    )
    if args.exclude_self:
        config = config.update(include_self=False)
    if args.no_progress:
        config = config.update(show_progress=False)
    return config.validate()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args, extras = parser.parse_known_args(argv)

    unknown = [a for a in extras if a.startswith('-') and a != '-']
    positional = [a for a in extras if not (a.startswith('-') and a != '-')]
    for flag in unknown:
        print(f"Unknown option: {flag}", file=sys.stderr)
    if positional:
        print("non-option ARGV-elements: " + " ".join(positional))

    setup_logging(args.verbose)
    logger = logging.getLogger("r2ks")

    try:
        config = resolve_config(args)
    except (ValueError, FileNotFoundError) as e:
        parser.error(str(e))

    if config.filename is None:
        parser.error("an input file is required (-f/--file or `filename` in the config)")

    emitter = ResultEmitter(stream=sys.stdout, keep=False)
    try:
        timed_run(config, emitter)
    except R2KSError as e:
        logger.error(str(e))
        return 1
    except FileNotFoundError as e:
        logger.error(f"Input file not found: {e.filename}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
