"""
Pytest configuration file for r2ks testing.

Provides fixtures for writing ranked list files and generating random
permutations, plus command-line options for the parallel tests.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from r2ks.reader import write_ranked_lists


def pytest_addoption(parser):
    """Add custom command-line options for pytest."""

    parser.addoption(
        "--n-workers",
        action="store",
        type=int,
        default=3,
        help="Number of workers for parallel testing (default: 3)"
    )

    parser.addoption(
        "--skip-slow",
        action="store_true",
        default=False,
        help="Skip slow tests (process backend, larger inputs)"
    )


@pytest.fixture(scope="session")
def n_workers(request):
    return request.config.getoption("--n-workers")


@pytest.fixture
def random_lists():
    """Generate ``n_lists`` random permutations of ``range(n_genes)``."""
    def _generate(n_lists=5, n_genes=40, seed=42):
        rng = np.random.default_rng(seed)
        return [rng.permutation(n_genes).astype(np.int64) for _ in range(n_lists)]

    return _generate


@pytest.fixture
def ranked_list_file(tmp_path):
    """Write lists to a ranked list file and return its path."""
    counter = {"n": 0}

    def _write(lists, name=None):
        counter["n"] += 1
        path = tmp_path / (name or f"lists_{counter['n']}.txt")
        write_ranked_lists(path, lists)
        return path

    return _write


@pytest.fixture
def raw_file(tmp_path):
    """Write raw text or bytes (for malformed inputs) and return its path."""
    def _write(text, name="raw.txt"):
        path = tmp_path / name
        if isinstance(text, bytes):
            path.write_bytes(text)
        else:
            path.write_text(text)
        return path

    return _write


def pytest_collection_modifyitems(config, items):
    """Skip slow tests when requested."""
    if not config.getoption("--skip-slow"):
        return
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(pytest.mark.skip(reason="Slow tests skipped"))


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow running")
