"""
Sparse Matrix-Vector Product (y = A·x and y = Aᵗ·x)
Implements CSR SpMV with Numba acceleration.

Algorithm:
- A·x:  for each row r, y[r] = sum(values[e] * x[col_ids[e]]) over the row's entries,
        accumulated in the matrix element type in stored column order
- Aᵗ·x: y is zeroed, then each entry scatters y[col_ids[e]] += values[e] * x[r]

Time Complexity: O(nnz + rows) for A·x, O(nnz + rows + cols) for Aᵗ·x
"""

import numpy as np
import numba
import logging
import time
import argparse
from typing import Optional

from matrix_formats import CSRMatrix, DenseVector


logger = logging.getLogger(__name__)


class DimensionMismatchError(ValueError):
    """Input vector size does not match the contracted matrix dimension."""


# ============================================================================
# Numba-Accelerated Kernels
# ============================================================================

@numba.jit(nopython=True, cache=True)
def _spmv_csr_numba(row_offsets, col_ids, values, x, out, num_rows):
    """
    out[:num_rows] = A·x for CSR matrix A.

    Each row is independent; accumulation happens in out's element type.
    """
    for i in range(num_rows):
        out[i] = 0
        for o in range(int(row_offsets[i]), int(row_offsets[i + 1])):
            out[i] += values[o] * x[col_ids[o]]


@numba.jit(nopython=True, cache=True)
def _spmv_csr_transpose_numba(row_offsets, col_ids, values, x, out, num_rows, num_cols):
    """
    out[:num_cols] = Aᵗ·x for CSR matrix A, without building the transpose.

    Rows scatter into shared output positions, so this loop is sequential.
    """
    for j in range(num_cols):
        out[j] = 0
    for i in range(num_rows):
        xi = x[i]
        for o in range(int(row_offsets[i]), int(row_offsets[i + 1])):
            out[col_ids[o]] += values[o] * xi


# ============================================================================
# Main SpMV Functions
# ============================================================================

def check_spmv_dimensions(matrix: CSRMatrix, input_size: int, transpose: bool) -> int:
    """
    Check that an input vector of `input_size` can multiply `matrix`.

    Returns:
        Size of the result vector

    Raises:
        DimensionMismatchError
    """
    expected = matrix.rows if transpose else matrix.cols
    if input_size != expected:
        op = "Aᵗ·x" if transpose else "A·x"
        raise DimensionMismatchError(
            f"SPMV dimensions mismatch: {op} with A {matrix.shape} needs x of size "
            f"{expected}, got {input_size}"
        )
    return matrix.cols if transpose else matrix.rows


def _as_input_vector(x, dtype: np.dtype) -> DenseVector:
    if isinstance(x, DenseVector):
        if x.dtype != dtype:
            raise TypeError(f"Input vector dtype {x.dtype} does not match matrix dtype {dtype}")
        return x
    return DenseVector(np.asarray(x, dtype=dtype))


def spmv(output: Optional[DenseVector], matrix: CSRMatrix, x, transpose: bool = False) -> DenseVector:
    """
    Sparse matrix-vector product into a caller-supplied buffer.

    Args:
        output: Result buffer; grown if too small, its size set to the result size.
                None allocates a new vector.
        matrix: CSR matrix A
        x: Input DenseVector (or array-like, converted to A's dtype)
        transpose: Compute Aᵗ·x instead of A·x

    Returns:
        The output vector

    Raises:
        DimensionMismatchError if x's size is not A's cols (A·x) / rows (Aᵗ·x)
        TypeError if x or output hold a different element type than A
    """
    x = _as_input_vector(x, matrix.dtype)
    out_size = check_spmv_dimensions(matrix, x.size, transpose)

    if output is None:
        output = DenseVector.empty(matrix.dtype)
    elif output.dtype != matrix.dtype:
        raise TypeError(f"Output vector dtype {output.dtype} does not match matrix dtype {matrix.dtype}")

    output.reserve(out_size)
    output.size = out_size

    logger.debug(f"SpMV {'Aᵗ·x' if transpose else 'A·x'}: A{matrix.shape}, nnz={matrix.nnz:,}")

    if transpose:
        _spmv_csr_transpose_numba(
            matrix.row_offsets, matrix.col_ids, matrix.values,
            x.values, output.data, matrix.rows, matrix.cols
        )
    else:
        _spmv_csr_numba(
            matrix.row_offsets, matrix.col_ids, matrix.values,
            x.values, output.data, matrix.rows
        )

    return output


def multiply(matrix: CSRMatrix, x, transpose: bool = False) -> np.ndarray:
    """
    Convenience wrapper: returns A·x (or Aᵗ·x) as a new NumPy array.
    """
    return spmv(None, matrix, x, transpose=transpose).values.copy()


# ============================================================================
# Verification Against scipy
# ============================================================================

def verify_spmv_scipy(matrix: CSRMatrix, x, result, transpose: bool = False,
                      rtol: float = 1e-5, atol: float = 1e-8) -> bool:
    """
    Verify an SpMV result against scipy.sparse.

    Args:
        matrix: Input matrix
        x: Input vector
        result: Our result (DenseVector or array)
        transpose: Whether result is Aᵗ·x

    Returns:
        True if correct
    """
    logger.info("Verifying SpMV result against scipy.sparse...")

    scipy_a = matrix.to_scipy_sparse()
    if transpose:
        scipy_a = scipy_a.T
    x = x.values if isinstance(x, DenseVector) else np.asarray(x)
    result = result.values if isinstance(result, DenseVector) else np.asarray(result)

    expected = scipy_a @ x.astype(np.float64)

    if result.shape != expected.shape:
        logger.error(f"✗ Shape mismatch: ours={result.shape}, scipy={expected.shape}")
        return False

    if not np.allclose(result, expected, rtol=rtol, atol=atol):
        max_diff = np.abs(result - expected).max()
        logger.error(f"✗ Verification failed: max difference = {max_diff}")
        return False

    logger.info("✓ Verification passed! Result matches scipy.sparse")
    return True


def benchmark_spmv(matrix: CSRMatrix, repeats: int = 10, seed: int = 0) -> list:
    """
    Time A·x and Aᵗ·x with our kernels and scipy.sparse.

    Returns:
        Rows of [operation, ours (s), scipy (s), speedup]
    """
    rng = np.random.default_rng(seed)
    scipy_a = matrix.to_scipy_sparse()
    table = []

    for transpose in (False, True):
        size = matrix.rows if transpose else matrix.cols
        x = DenseVector(rng.standard_normal(size).astype(matrix.dtype))
        out = DenseVector.empty(matrix.dtype)

        # First call compiles the kernel
        spmv(out, matrix, x, transpose=transpose)

        start = time.time()
        for _ in range(repeats):
            spmv(out, matrix, x, transpose=transpose)
        ours = (time.time() - start) / repeats

        op = scipy_a.T if transpose else scipy_a
        start = time.time()
        for _ in range(repeats):
            op @ x.values
        theirs = (time.time() - start) / repeats

        speedup = theirs / ours if ours > 0 else float('inf')
        table.append(["Aᵗ·x" if transpose else "A·x", ours, theirs, speedup])

    return table


# ============================================================================
# Main Function
# ============================================================================

def main():
    """Run A·x (and Aᵗ·x) on a stored CSR matrix with x = ones and verify."""
    from tabulate import tabulate
    from csr_io import load_csr

    parser = argparse.ArgumentParser(description="Sparse matrix-vector product on a binary CSR file")
    parser.add_argument('matrix', help='Binary CSR file')
    parser.add_argument('--float32', action='store_true', help='File holds single-precision values')
    parser.add_argument('--transpose', action='store_true', help='Compute Aᵗ·x instead of A·x')
    parser.add_argument('--benchmark', action='store_true', help='Time against scipy.sparse')
    parser.add_argument('--repeats', type=int, default=10, help='Benchmark repetitions')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    dtype = np.float32 if args.float32 else np.float64
    matrix = load_csr(args.matrix, dtype=dtype)

    size = matrix.rows if args.transpose else matrix.cols
    x = DenseVector(np.ones(size, dtype=dtype))

    start = time.time()
    y = spmv(None, matrix, x, transpose=args.transpose)
    logger.info(f"✓ SpMV complete in {time.time() - start:.4f}s (including JIT compile)")
    logger.info(f"Result: size={y.size}, sum={y.values.sum():.6g}")

    verify_spmv_scipy(matrix, x, y, transpose=args.transpose)

    if args.benchmark:
        table = benchmark_spmv(matrix, repeats=args.repeats)
        print(tabulate(table, headers=["Operation", "Ours (s)", "scipy (s)", "Speedup"],
                       tablefmt="grid", floatfmt=".6f"))


if __name__ == "__main__":
    main()
