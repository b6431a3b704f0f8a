"""
Verification Script for Sparse Matrix-Vector Products
Tests whether COO -> CSR conversion, the binary CSR format and SpMV produce correct results.

This script:
1. Checks a small hand-worked example for A·x and Aᵗ·x
2. Converts random COO matrices to CSR and compares against scipy (ground truth)
3. Stores and reloads each matrix and checks the round trip is bit-exact
4. Compares serial and parallel SpMV
"""

import sys
import tempfile
from pathlib import Path

import numpy as np
import logging

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from matrix_formats import CSRMatrix, DenseVector, verify_csr_against_scipy
from csr_io import load_csr, store_csr
from sparse_spmv import spmv, verify_spmv_scipy
from parallel_cpu import parallel_spmv
from generate_data import SparseMatrixGenerator

logger = logging.getLogger(__name__)


def verify_simple_example():
    """
    Test with a simple manual example:
    A = [[1, 0, 2],    (row 0: col 0=1, col 2=2)
         [0, 3, 0]]    (row 1: col 1=3)

    A·x with x = [1, 1, 1]:
    y[0] = 1*1 + 2*1 = 3
    y[1] = 3*1       = 3

    Aᵗ·x with x = [1, 1]:
    y[0] = 1, y[1] = 3, y[2] = 2
    """
    logger.info("\n" + "=" * 70)
    logger.info("TEST 1: Simple Manual Example")
    logger.info("=" * 70)

    A = CSRMatrix((2, 3), row_offsets=[0, 2, 3], col_ids=[0, 2, 1], values=[1.0, 2.0, 3.0])

    y = spmv(None, A, DenseVector([1.0, 1.0, 1.0]))
    logger.info(f"A·x  = {y.values.tolist()} (expected [3.0, 3.0])")
    ok = y.values.tolist() == [3.0, 3.0]

    yt = spmv(None, A, DenseVector([1.0, 1.0]), transpose=True)
    logger.info(f"Aᵗ·x = {yt.values.tolist()} (expected [1.0, 3.0, 2.0])")
    ok = ok and yt.values.tolist() == [1.0, 3.0, 2.0]

    logger.info("✓ Simple example passed" if ok else "✗ Simple example failed")
    return ok


def verify_random_matrices(dtype=np.float64, seeds=(0, 1, 2)):
    """Convert, store, reload and multiply random matrices."""
    logger.info("\n" + "=" * 70)
    logger.info(f"TEST 2: Random Matrices ({np.dtype(dtype).name})")
    logger.info("=" * 70)

    all_ok = True
    with tempfile.TemporaryDirectory() as tmp:
        generator = SparseMatrixGenerator(tmp, dtype=dtype)
        for seed in seeds:
            coo = generator.random_coo(300, 200, 3000, seed=seed)
            csr = coo.to_csr()
            ok = verify_csr_against_scipy(csr, coo)

            path = Path(tmp) / f"m{seed}.csr"
            store_csr(csr, path)
            reloaded = load_csr(path, dtype=dtype)
            if reloaded != csr:
                logger.error("✗ Round trip through the binary format changed the matrix")
                ok = False

            rng = np.random.default_rng(seed)
            for transpose in (False, True):
                size = csr.rows if transpose else csr.cols
                x = DenseVector(rng.standard_normal(size).astype(dtype))
                y = spmv(None, reloaded, x, transpose=transpose)
                ok = verify_spmv_scipy(reloaded, x, y, transpose=transpose) and ok

                yp = parallel_spmv(reloaded, x, transpose=transpose, num_workers=2)
                if not np.allclose(y.values, yp.values, rtol=1e-4, atol=1e-6):
                    logger.error("✗ Parallel SpMV differs from serial SpMV")
                    ok = False

            all_ok = all_ok and ok

    return all_ok


def main():
    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    results = {
        "simple example": verify_simple_example(),
        "random float64": verify_random_matrices(np.float64),
        "random float32": verify_random_matrices(np.float32),
    }

    logger.info("\n" + "=" * 70)
    for name, ok in results.items():
        logger.info(f"{'✓' if ok else '✗'} {name}")
    logger.info("=" * 70)

    return 0 if all(results.values()) else 1


if __name__ == "__main__":
    sys.exit(main())
