"""
Matrix Formats for Sparse Matrix-Vector Products
Supports COO input, CSR storage and dense vectors in single or double precision.

Key Design:
- CSRMatrix owns three parallel arrays (values, col_ids, row_offsets)
- COO -> CSR conversion sorts by (row, col) and never merges duplicates
- Numba JIT acceleration for the counting / prefix-sum pass
- scipy.sparse for verification and comparison
"""

import numpy as np
from pathlib import Path
import logging
from typing import Tuple, Optional, Iterable
import numba
from scipy import sparse as sp


# Element types a matrix or vector may hold; one dtype per matrix.
SUPPORTED_DTYPES = (np.dtype(np.float32), np.dtype(np.float64))
DEFAULT_DTYPE = np.dtype(np.float64)

INDEX_DTYPE = np.dtype(np.uint32)


def resolve_dtype(dtype) -> np.dtype:
    """
    Normalize a dtype-like into one of SUPPORTED_DTYPES.

    Raises:
        TypeError if the element type is neither float32 nor float64
    """
    if dtype is None:
        return DEFAULT_DTYPE
    dtype = np.dtype(dtype)
    if dtype not in SUPPORTED_DTYPES:
        raise TypeError(f"Unsupported element type {dtype}; expected float32 or float64")
    return dtype


# ============================================================================
# Numba-Accelerated Helper Functions
# ============================================================================

@numba.jit(nopython=True, cache=True)
def _build_csr_arrays(rows, cols, values, num_rows, row_offsets, col_ids, out_values):
    """
    Fill CSR arrays from (row, col)-sorted COO data using Numba acceleration.

    Args:
        rows: Sorted row indices
        cols: Column indices, parallel to rows
        values: Values, parallel to rows
        num_rows: Total number of rows
        row_offsets: Output array of size (num_rows + 1)
        col_ids: Output array of size nnz
        out_values: Output array of size nnz
    """
    nnz = len(rows)
    for i in range(num_rows + 1):
        row_offsets[i] = 0

    # Copy sorted entries and count entries per row
    for i in range(nnz):
        out_values[i] = values[i]
        col_ids[i] = cols[i]
        row_offsets[rows[i] + 1] += 1

    # Cumulative sum to get offsets
    for i in range(1, num_rows + 1):
        row_offsets[i] += row_offsets[i - 1]


def sort_coo_arrays(rows, cols, values):
    """
    Sort COO arrays by (row, col).

    The sort is stable: entries sharing a (row, col) position keep the
    order in which they appeared in the input.

    Args:
        rows: NumPy array of row indices
        cols: NumPy array of column indices
        values: NumPy array of values

    Returns:
        (rows, cols, values) sorted by (row, col)
    """
    if len(rows) <= 1:
        return rows.copy(), cols.copy(), values.copy()

    order = np.lexsort((cols, rows))
    return rows[order], cols[order], values[order]


class DenseVector:
    """
    Dense vector with a logical size and an owned buffer.

    The buffer may be larger than the logical size; `reserve` only ever grows it.
    """

    def __init__(self, data, dtype=None):
        """
        Args:
            data: Sequence or array of values (copied)
            dtype: float32 or float64 (default: inferred, falling back to float64)
        """
        if dtype is None:
            dtype = getattr(data, 'dtype', None)
            if dtype is not None and np.dtype(dtype) not in SUPPORTED_DTYPES:
                dtype = None
        dtype = resolve_dtype(dtype)
        self.data = np.array(data, dtype=dtype).reshape(-1)
        self.size = len(self.data)

    @classmethod
    def zeros(cls, size: int, dtype=None) -> 'DenseVector':
        return cls(np.zeros(size, dtype=resolve_dtype(dtype)))

    @classmethod
    def empty(cls, dtype=None) -> 'DenseVector':
        """Zero-length vector, typically used as an output buffer."""
        return cls(np.empty(0, dtype=resolve_dtype(dtype)))

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    @property
    def capacity(self) -> int:
        return len(self.data)

    @property
    def values(self) -> np.ndarray:
        """View of the first `size` elements."""
        return self.data[:self.size]

    def reserve(self, size: int):
        """Grow the buffer to hold at least `size` elements. Never shrinks."""
        if self.capacity < size:
            self.data = np.empty(size, dtype=self.data.dtype)

    def __len__(self):
        return self.size

    def __repr__(self):
        return f"DenseVector(size={self.size}, dtype={self.dtype})"


class COOMatrix:
    """
    Coordinate (COO) format: unordered (row, col, value) triples.

    Rows and columns may appear in any order and (row, col) pairs may repeat.
    Conversion to CSR reads these arrays and never modifies them.
    """

    def __init__(self, shape: Tuple[int, int], row_ids, col_ids, data, dtype=None):
        """
        Args:
            shape: (num_rows, num_cols)
            row_ids: Row index of each entry
            col_ids: Column index of each entry
            data: Value of each entry
            dtype: Element type (default: float32 if data is float32, else float64)
        """
        if dtype is None and np.asarray(data).dtype == np.float32:
            dtype = np.float32
        dtype = resolve_dtype(dtype)

        self.shape = (int(shape[0]), int(shape[1]))
        self.row_ids = np.asarray(row_ids, dtype=np.int64).reshape(-1)
        self.col_ids = np.asarray(col_ids, dtype=np.int64).reshape(-1)
        self.data = np.asarray(data, dtype=dtype).reshape(-1)

        if not (len(self.row_ids) == len(self.col_ids) == len(self.data)):
            raise ValueError(
                f"COO arrays must have equal length: row_ids={len(self.row_ids)}, "
                f"col_ids={len(self.col_ids)}, data={len(self.data)}"
            )
        self.logger = logging.getLogger(__name__)

    @property
    def rows(self) -> int:
        return self.shape[0]

    @property
    def cols(self) -> int:
        return self.shape[1]

    @property
    def nnz(self) -> int:
        return len(self.data)

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    @classmethod
    def from_triples(cls, shape: Tuple[int, int], triples: Iterable[Tuple[int, int, float]],
                     dtype=None) -> 'COOMatrix':
        """
        Create COOMatrix from an iterable of (i, j, v) triples.
        """
        triples = list(triples)
        rows = [i for i, j, v in triples]
        cols = [j for i, j, v in triples]
        values = [v for i, j, v in triples]
        return cls(shape, rows, cols, values, dtype=dtype)

    @classmethod
    def from_csv(cls, filepath: str, shape: Optional[Tuple[int, int]] = None,
                 dtype=None) -> 'COOMatrix':
        """
        Create COOMatrix from CSV file.

        Args:
            filepath: Path to CSV file (format: row,col,value per line)
            shape: Optional (rows, cols). If None, inferred from data.
            dtype: Element type of the values

        Returns:
            COOMatrix instance
        """
        filepath = Path(filepath)

        if not filepath.exists():
            raise FileNotFoundError(f"Matrix file not found: {filepath}")

        rows, cols, values = [], [], []
        with open(filepath, 'r') as f:
            for line in f:
                parts = line.strip().split(',')
                if len(parts) == 3:
                    try:
                        i, j, v = int(parts[0]), int(parts[1]), float(parts[2])
                    except ValueError:
                        continue
                    rows.append(i)
                    cols.append(j)
                    values.append(v)

        if shape is None:
            shape = (max(rows) + 1 if rows else 0, max(cols) + 1 if cols else 0)

        return cls(shape, rows, cols, values, dtype=dtype)

    def to_csv(self, filepath: str):
        """
        Write COOMatrix to CSV file.

        Args:
            filepath: Output CSV file path
        """
        with open(filepath, 'w') as f:
            for i, j, v in zip(self.row_ids, self.col_ids, self.data):
                f.write(f"{i},{j},{float(v)!r}\n")
        self.logger.info(f"Wrote {self.nnz} entries to {filepath}")

    def to_csr(self) -> 'CSRMatrix':
        """
        Convert COO to CSR format.

        Returns:
            CSRMatrix instance
        """
        return build_csr_from_coo(self)

    def to_scipy_sparse(self) -> sp.coo_matrix:
        """
        Convert to scipy.sparse.coo_matrix for verification.

        Returns:
            scipy.sparse.coo_matrix
        """
        return sp.coo_matrix((self.data, (self.row_ids, self.col_ids)), shape=self.shape)

    def __repr__(self):
        return f"COOMatrix(shape={self.shape}, nnz={self.nnz}, dtype={self.dtype})"


class CSRMatrix:
    """
    Compressed Sparse Row (CSR) format.

    Storage:
    - row_offsets[i] = starting index in col_ids/values for row i
    - col_ids[k] = column index of k-th nonzero (uint32)
    - values[k] = value of k-th nonzero (float32 or float64)

    Row i occupies [row_offsets[i], row_offsets[i + 1]) in col_ids/values.
    """

    def __init__(self, shape: Tuple[int, int], row_offsets: np.ndarray,
                 col_ids: np.ndarray, values: np.ndarray, dtype=None, copy: bool = True):
        """
        Args:
            shape: (num_rows, num_cols)
            row_offsets: Array of size (num_rows + 1), row offsets
            col_ids: Array of column indices
            values: Array of nonzero values
            dtype: Element type (default: taken from values when supported)
            copy: Copy the arrays so this instance exclusively owns them
        """
        if dtype is None:
            dtype = getattr(values, 'dtype', None)
            if dtype is not None and np.dtype(dtype) not in SUPPORTED_DTYPES:
                dtype = None
        dtype = resolve_dtype(dtype)

        asarray = np.array if copy else np.ascontiguousarray

        self.rows = int(shape[0])
        self.cols = int(shape[1])
        self.row_offsets = asarray(row_offsets, dtype=INDEX_DTYPE).reshape(-1)
        self.col_ids = asarray(col_ids, dtype=INDEX_DTYPE).reshape(-1)
        self.values = asarray(values, dtype=dtype).reshape(-1)

    @classmethod
    def allocate(cls, rows: int, cols: int, nnz: int, dtype=None) -> 'CSRMatrix':
        """
        Allocate an uninitialized CSR matrix.

        The caller must fill values, col_ids and row_offsets before the
        matrix is used.

        Args:
            rows: Number of rows
            cols: Number of columns
            nnz: Number of stored entries
            dtype: float32 or float64

        Returns:
            CSRMatrix instance with uninitialized arrays
        """
        dtype = resolve_dtype(dtype)
        return cls(
            (rows, cols),
            np.empty(rows + 1, dtype=INDEX_DTYPE),
            np.empty(nnz, dtype=INDEX_DTYPE),
            np.empty(nnz, dtype=dtype),
            dtype=dtype,
            copy=False
        )

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.rows, self.cols)

    @property
    def nnz(self) -> int:
        """Number of stored entries."""
        return len(self.values)

    @property
    def dtype(self) -> np.dtype:
        return self.values.dtype

    def validate(self):
        """
        Check the CSR invariants.

        Raises:
            ValueError describing the first violated invariant
        """
        if len(self.col_ids) != self.nnz:
            raise ValueError(f"col_ids has {len(self.col_ids)} entries, expected nnz={self.nnz}")
        if len(self.row_offsets) != self.rows + 1:
            raise ValueError(
                f"row_offsets has {len(self.row_offsets)} entries, expected rows+1={self.rows + 1}"
            )
        if self.row_offsets[0] != 0:
            raise ValueError(f"row_offsets[0] must be 0, got {self.row_offsets[0]}")
        if self.row_offsets[-1] != self.nnz:
            raise ValueError(f"row_offsets[-1] must equal nnz={self.nnz}, got {self.row_offsets[-1]}")
        if np.any(np.diff(self.row_offsets.astype(np.int64)) < 0):
            raise ValueError("row_offsets must be non-decreasing")
        if self.nnz > 0 and self.col_ids.max() >= self.cols:
            raise ValueError(f"Column index {self.col_ids.max()} out of bounds for {self.cols} columns")

    def get_row(self, i: int) -> Tuple[np.ndarray, np.ndarray]:
        """
        Get row i's data in O(1) time.

        Args:
            i: Row index

        Returns:
            (col_ids, values) for row i
        """
        if i < 0 or i >= self.rows:
            raise IndexError(f"Row index {i} out of bounds for shape {self.shape}")

        start = self.row_offsets[i]
        end = self.row_offsets[i + 1]

        return self.col_ids[start:end], self.values[start:end]

    def get_row_block(self, row_start: int, row_end: int) -> 'CSRMatrix':
        """
        Extract a block of rows [row_start, row_end).

        Args:
            row_start: Starting row (inclusive)
            row_end: Ending row (exclusive)

        Returns:
            CSRMatrix for the row block
        """
        if row_start < 0 or row_end > self.rows or row_start > row_end:
            raise IndexError(f"Row range [{row_start}, {row_end}) out of bounds")

        # Find data range for this block
        data_start = self.row_offsets[row_start]
        data_end = self.row_offsets[row_end]

        # Adjust row offsets (shift to start at 0)
        block_row_offsets = self.row_offsets[row_start:row_end + 1] - data_start

        return CSRMatrix(
            (row_end - row_start, self.cols),
            block_row_offsets,
            self.col_ids[data_start:data_end],
            self.values[data_start:data_end]
        )

    def save_to_disk(self, filepath: str, byteorder: str = 'native'):
        """
        Save CSR to disk in the binary CSR format.

        Args:
            filepath: Output file path
            byteorder: 'native', 'little' or 'big'
        """
        from csr_io import store_csr
        store_csr(self, filepath, byteorder=byteorder)

    @classmethod
    def load_from_disk(cls, filepath: str, dtype=None, byteorder: str = 'native') -> 'CSRMatrix':
        """
        Load CSR from a binary CSR file.

        Args:
            filepath: Input file path
            dtype: Element type the file is expected to hold
            byteorder: 'native', 'little' or 'big'

        Returns:
            CSRMatrix instance
        """
        from csr_io import load_csr
        return load_csr(filepath, dtype=dtype, byteorder=byteorder)

    def to_dense(self) -> np.ndarray:
        """
        Only for debugging. Builds a dense matrix (watch memory). Duplicates are summed.
        """
        dense = np.zeros(self.shape, dtype=self.dtype)
        for i in range(self.rows):
            cols, vals = self.get_row(i)
            np.add.at(dense[i], cols.astype(np.int64), vals)
        return dense

    def to_scipy_sparse(self) -> sp.csr_matrix:
        """
        Convert to scipy.sparse.csr_matrix for verification.

        Returns:
            scipy.sparse.csr_matrix
        """
        return sp.csr_matrix(
            (self.values, self.col_ids.astype(np.int64), self.row_offsets.astype(np.int64)),
            shape=self.shape
        )

    @classmethod
    def from_scipy_sparse(cls, scipy_csr: sp.csr_matrix, dtype=None) -> 'CSRMatrix':
        """
        Create CSRMatrix from scipy.sparse.csr_matrix.

        Args:
            scipy_csr: scipy CSR matrix
            dtype: Element type (default: float32 if scipy data is float32, else float64)

        Returns:
            CSRMatrix instance
        """
        if dtype is None and scipy_csr.dtype == np.float32:
            dtype = np.float32
        return cls(
            shape=scipy_csr.shape,
            row_offsets=scipy_csr.indptr,
            col_ids=scipy_csr.indices,
            values=scipy_csr.data,
            dtype=resolve_dtype(dtype)
        )

    def __eq__(self, other):
        if not isinstance(other, CSRMatrix):
            return NotImplemented
        return (
            self.shape == other.shape
            and self.dtype == other.dtype
            and np.array_equal(self.row_offsets, other.row_offsets)
            and np.array_equal(self.col_ids, other.col_ids)
            and self.values.tobytes() == other.values.tobytes()
        )

    __hash__ = None

    def __repr__(self):
        return f"CSRMatrix(shape={self.shape}, nnz={self.nnz}, dtype={self.dtype})"


# ============================================================================
# Conversion Functions
# ============================================================================

def build_csr_from_coo(coo: COOMatrix) -> CSRMatrix:
    """
    Build CSR from unordered COO data.
    Uses Numba JIT acceleration for the counting pass.

    Algorithm:
    1. Sort the (row, col, value) triples by row, then column
    2. Allocate a CSR matrix of shape (rows, cols) with nnz entries
    3. Copy sorted values/columns while counting entries per row
    4. Prefix-sum the counts into row offsets

    Duplicate (row, col) entries are kept as separate stored entries.
    Row/column ids outside the matrix shape are not checked.

    Args:
        coo: COOMatrix (any order)

    Returns:
        CSRMatrix
    """
    logger = logging.getLogger(__name__)
    logger.info(f"Building CSR from COO (shape={coo.shape}, nnz={coo.nnz:,})")

    num_rows, num_cols = coo.shape

    rows, cols, values = sort_coo_arrays(coo.row_ids, coo.col_ids, coo.data)

    csr = CSRMatrix.allocate(num_rows, num_cols, coo.nnz, dtype=coo.dtype)

    logger.debug("Building CSR arrays with Numba acceleration...")
    _build_csr_arrays(
        rows, cols.astype(INDEX_DTYPE), values, num_rows,
        csr.row_offsets, csr.col_ids, csr.values
    )

    logger.info(f"CSR built: {csr.nnz:,} nonzeros, {num_rows} rows")

    return csr


# ============================================================================
# Utility Functions
# ============================================================================

def print_matrix_info(matrix, name="Matrix"):
    """
    Log statistics about a matrix.

    Args:
        matrix: COOMatrix or CSRMatrix
        name: Name to display
    """
    logger = logging.getLogger(__name__)

    if isinstance(matrix, COOMatrix):
        logger.info(f"{name} (COO): shape={matrix.shape}, nnz={matrix.nnz:,}, dtype={matrix.dtype}")
    elif isinstance(matrix, CSRMatrix):
        logger.info(f"{name} (CSR): shape={matrix.shape}, nnz={matrix.nnz:,}, dtype={matrix.dtype}")
    else:
        logger.info(f"{name}: Unknown format")
        return

    total_entries = matrix.shape[0] * matrix.shape[1]
    density = (matrix.nnz / total_entries * 100) if total_entries > 0 else 0
    logger.info(f"  Density: {density:.4f}% ({matrix.nnz:,} / {total_entries:,})")


def verify_csr_against_scipy(csr: CSRMatrix, coo: COOMatrix, tolerance=1e-6) -> bool:
    """
    Verify CSR conversion correctness against scipy.sparse.

    Duplicates are summed on both sides before comparing values, so this
    checks the represented matrix, not the stored layout.

    Args:
        csr: Our CSRMatrix
        coo: Original COOMatrix (must fit in memory for this test)
        tolerance: Numerical tolerance for comparisons

    Returns:
        True if verification passes
    """
    logger = logging.getLogger(__name__)
    logger.info("Verifying CSR against scipy.sparse...")

    scipy_csr_expected = coo.to_scipy_sparse().tocsr()
    scipy_csr_ours = csr.to_scipy_sparse()

    if scipy_csr_ours.shape != scipy_csr_expected.shape:
        logger.error(f"Shape mismatch: ours={scipy_csr_ours.shape}, scipy={scipy_csr_expected.shape}")
        return False

    if csr.nnz != coo.nnz:
        logger.error(f"Stored entry count mismatch: ours={csr.nnz}, COO={coo.nnz}")
        return False

    diff = scipy_csr_ours - scipy_csr_expected
    max_diff = np.abs(diff.data).max() if diff.nnz > 0 else 0

    if max_diff > tolerance:
        logger.error(f"Data mismatch: max difference = {max_diff}")
        return False

    logger.info("✓ CSR verification passed (matches scipy.sparse)")
    return True


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    coo = COOMatrix.from_triples((2, 3), [(1, 1, 3.0), (0, 2, 2.0), (0, 0, 1.0)])
    csr = coo.to_csr()
    print_matrix_info(coo, "A")
    print_matrix_info(csr, "A")
    verify_csr_against_scipy(csr, coo)
