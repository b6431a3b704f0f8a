"""
Parallel Sparse Matrix-Vector Product (CPU Multi-core)
Implements row-block parallel SpMV using Python's multiprocessing.

Parallelization Strategy:
- A·x:  Partition rows into blocks; each block writes a disjoint slice of y
- Aᵗ·x: Partition rows into blocks; each block scatters into its own
        private copy of y, and the partial results are summed

Uses: multiprocessing.Pool for CPU parallelism
"""

import numpy as np
import logging
from multiprocessing import Pool, cpu_count
from typing import List, Tuple
import time

from matrix_formats import CSRMatrix, DenseVector
from sparse_spmv import (
    _spmv_csr_numba, _spmv_csr_transpose_numba, _as_input_vector,
    check_spmv_dimensions, spmv,
)


logger = logging.getLogger(__name__)


# ============================================================================
# Worker
# ============================================================================

def _spmv_row_block(args):
    """
    Worker function to compute one row block's contribution.
    Used by multiprocessing.Pool.

    Returns:
        (row_start, partial) where partial holds y[row_start:row_end] for A·x,
        or a full cols-length partial sum for Aᵗ·x
    """
    row_start, row_end, row_offsets, col_ids, values, x, num_cols, transpose = args

    num_rows = row_end - row_start
    data_start = row_offsets[row_start]
    data_end = row_offsets[row_end]

    block_offsets = row_offsets[row_start:row_end + 1] - data_start
    block_cols = col_ids[data_start:data_end]
    block_vals = values[data_start:data_end]

    if transpose:
        partial = np.empty(num_cols, dtype=values.dtype)
        _spmv_csr_transpose_numba(
            block_offsets, block_cols, block_vals,
            x[row_start:row_end], partial, num_rows, num_cols
        )
    else:
        partial = np.empty(num_rows, dtype=values.dtype)
        _spmv_csr_numba(block_offsets, block_cols, block_vals, x, partial, num_rows)

    return row_start, partial


def partition_rows(num_rows: int, num_blocks: int) -> List[Tuple[int, int]]:
    """Split [0, num_rows) into at most num_blocks non-empty contiguous ranges."""
    if num_rows == 0:
        return []
    num_blocks = max(1, min(num_blocks, num_rows))
    block_size = (num_rows + num_blocks - 1) // num_blocks
    return [
        (start, min(start + block_size, num_rows))
        for start in range(0, num_rows, block_size)
    ]


# ============================================================================
# Parallel SpMV
# ============================================================================

def parallel_spmv(matrix: CSRMatrix, x, transpose: bool = False, num_workers: int = None) -> DenseVector:
    """
    Parallel sparse matrix-vector product using row-based partitioning.

    Args:
        matrix: CSR matrix A
        x: Input DenseVector (or array-like)
        transpose: Compute Aᵗ·x instead of A·x
        num_workers: Number of parallel workers (default: CPU count)

    Returns:
        DenseVector result

    Raises:
        DimensionMismatchError if x's size does not match A
    """
    if num_workers is None:
        num_workers = cpu_count()

    x = _as_input_vector(x, matrix.dtype)
    out_size = check_spmv_dimensions(matrix, x.size, transpose)

    blocks = partition_rows(matrix.rows, num_workers)
    if len(blocks) <= 1:
        return spmv(None, matrix, x, transpose=transpose)

    logger.info(f"Parallel SpMV using {num_workers} workers over {len(blocks)} row blocks")

    x_values = np.ascontiguousarray(x.values)
    tasks = [
        (row_start, row_end, matrix.row_offsets, matrix.col_ids, matrix.values,
         x_values, matrix.cols, transpose)
        for row_start, row_end in blocks
    ]

    start = time.time()
    with Pool(min(num_workers, len(tasks))) as pool:
        results = pool.map(_spmv_row_block, tasks)
    logger.info(f"✓ Parallel SpMV complete in {time.time() - start:.4f}s")

    result = np.zeros(out_size, dtype=matrix.dtype)
    if transpose:
        # Reduction over per-block partial sums, in block order
        for _, partial in results:
            result += partial
    else:
        for row_start, partial in results:
            result[row_start:row_start + len(partial)] = partial

    return DenseVector(result)


# ============================================================================
# Benchmarking
# ============================================================================

def benchmark_parallel_vs_serial(matrix: CSRMatrix, num_workers: int = None) -> list:
    """
    Compare parallel vs serial SpMV timings.

    Returns:
        Rows of [operation, serial (s), parallel (s), speedup]
    """
    rng = np.random.default_rng(0)
    table = []

    for transpose in (False, True):
        size = matrix.rows if transpose else matrix.cols
        x = DenseVector(rng.standard_normal(size).astype(matrix.dtype))

        spmv(None, matrix, x, transpose=transpose)  # compile

        start = time.time()
        serial = spmv(None, matrix, x, transpose=transpose)
        serial_time = time.time() - start

        start = time.time()
        parallel = parallel_spmv(matrix, x, transpose=transpose, num_workers=num_workers)
        parallel_time = time.time() - start

        if not np.allclose(serial.values, parallel.values, rtol=1e-4):
            logger.error("✗ Parallel result differs from serial result")

        speedup = serial_time / parallel_time if parallel_time > 0 else float('inf')
        table.append(["Aᵗ·x" if transpose else "A·x", serial_time, parallel_time, speedup])

    return table


def main():
    import argparse
    from tabulate import tabulate
    from csr_io import load_csr

    parser = argparse.ArgumentParser(description="Parallel vs serial SpMV benchmark")
    parser.add_argument('matrix', help='Binary CSR file')
    parser.add_argument('--float32', action='store_true', help='File holds single-precision values')
    parser.add_argument('--workers', type=int, default=None, help='Number of worker processes')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    matrix = load_csr(args.matrix, dtype=np.float32 if args.float32 else np.float64)
    table = benchmark_parallel_vs_serial(matrix, num_workers=args.workers)
    print(tabulate(table, headers=["Operation", "Serial (s)", "Parallel (s)", "Speedup"],
                   tablefmt="grid", floatfmt=".6f"))


if __name__ == "__main__":
    main()
