"""
Pytest configuration and shared fixtures.
"""

import sys
from pathlib import Path

import numpy as np
import pytest

# Make the top-level modules importable without installing the project
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from matrix_formats import COOMatrix, CSRMatrix


@pytest.fixture(params=[np.float32, np.float64], ids=["float32", "float64"])
def dtype(request):
    return np.dtype(request.param)


@pytest.fixture
def example_csr(dtype):
    """
    Matrix:
    [[1, 0, 2],
     [0, 3, 0]]
    """
    return CSRMatrix((2, 3), row_offsets=[0, 2, 3], col_ids=[0, 2, 1],
                     values=[1.0, 2.0, 3.0], dtype=dtype)


@pytest.fixture
def make_random_coo():
    """Factory for unordered COO matrices with possible duplicate positions."""
    def make(rows=40, cols=30, nnz=300, seed=0, dtype=np.float64):
        rng = np.random.default_rng(seed)
        return COOMatrix(
            (rows, cols),
            rng.integers(0, rows, nnz),
            rng.integers(0, cols, nnz),
            rng.standard_normal(nnz),
            dtype=dtype,
        )
    return make
