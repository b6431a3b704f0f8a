"""
Sparse Matrix Data Generator
Generates synthetic sparse matrices in COO form and stores them as binary CSR files.

Features:
- Control matrix size, density and element type
- Memory estimation before generation
- Various sparsity patterns (random, banded, power-law)
- Progress tracking
- Safe generation (won't crash your computer)
"""

import numpy as np
import argparse
import logging
from pathlib import Path
from typing import Optional
from tqdm import tqdm

from matrix_formats import COOMatrix, build_csr_from_coo, resolve_dtype
from csr_io import HEADER_SIZE, store_csr


logger = logging.getLogger(__name__)


class SparseMatrixGenerator:
    """Generate synthetic sparse matrices for testing."""

    def __init__(self, output_dir: str = "data/input", dtype=np.float64, max_memory_mb: float = 500):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.dtype = resolve_dtype(dtype)
        self.max_memory_mb = max_memory_mb

    def estimate_memory(self, num_rows: int, num_cols: int, nnz: int) -> dict:
        """
        Estimate memory requirements for generating and storing the matrix.

        Args:
            num_rows: Number of rows
            num_cols: Number of columns
            nnz: Number of nonzeros

        Returns:
            Dictionary with memory estimates in MB
        """
        itemsize = self.dtype.itemsize

        # COO entry: row (8 bytes) + col (8 bytes) + value
        memory_generation_mb = (nnz * (16 + itemsize)) / (1024 * 1024)

        # CSR file: header + values + col_ids + row_offsets
        csr_size_mb = (HEADER_SIZE + nnz * (itemsize + 4) + (num_rows + 1) * 4) / (1024 * 1024)

        return {
            'generation_mb': memory_generation_mb,
            'csr_size_mb': csr_size_mb,
            'total_mb': memory_generation_mb + csr_size_mb
        }

    def check_safety(self, num_rows: int, num_cols: int, nnz: int):
        """
        Check if generation is safe (won't crash computer).

        Raises:
            ValueError if unsafe
        """
        estimates = self.estimate_memory(num_rows, num_cols, nnz)

        if estimates['total_mb'] > self.max_memory_mb:
            raise ValueError(
                f"Matrix too large! Estimated memory: {estimates['total_mb']:.1f} MB\n"
                f"Maximum allowed: {self.max_memory_mb} MB\n"
                f"Suggestion: Reduce nnz to {int(nnz * self.max_memory_mb / estimates['total_mb'])}"
            )

    def random_coo(
        self,
        num_rows: int,
        num_cols: int,
        nnz: int,
        seed: Optional[int] = None,
        unique: bool = False
    ) -> COOMatrix:
        """
        Generate random sparse matrix with uniform distribution.

        Args:
            num_rows: Number of rows
            num_cols: Number of columns
            nnz: Number of nonzeros
            seed: Random seed for reproducibility
            unique: If True, ensure no duplicate (i,j) pairs

        Returns:
            COOMatrix in random (unsorted) order
        """
        logger.info(f"Generating random matrix: {num_rows}×{num_cols}, {nnz:,} nonzeros")

        self.check_safety(num_rows, num_cols, nnz)
        rng = np.random.default_rng(seed)

        if unique:
            total_possible = num_rows * num_cols
            if nnz > total_possible:
                raise ValueError(f"Cannot generate {nnz} unique entries in {num_rows}×{num_cols} matrix")

            positions = rng.choice(total_possible, size=nnz, replace=False)
            rows = positions // num_cols
            cols = positions % num_cols
        else:
            # Faster, may have duplicates
            rows = rng.integers(0, num_rows, nnz) if num_rows else np.zeros(0, dtype=np.int64)
            cols = rng.integers(0, num_cols, nnz) if num_cols else np.zeros(0, dtype=np.int64)

        values = rng.standard_normal(nnz)
        return COOMatrix((num_rows, num_cols), rows, cols, values, dtype=self.dtype)

    def banded_coo(self, size: int, bandwidth: int, seed: Optional[int] = None) -> COOMatrix:
        """
        Generate banded matrix (nonzeros near diagonal).
        Common in differential equations and physics simulations.

        Args:
            size: Matrix size (size × size)
            bandwidth: Number of diagonals on each side of main diagonal
            seed: Random seed

        Returns:
            COOMatrix with entries emitted in shuffled order
        """
        logger.info(f"Generating banded matrix: {size}×{size}, bandwidth={bandwidth}")
        rng = np.random.default_rng(seed)

        rows, cols = [], []
        for i in tqdm(range(size), desc="Building band", unit=" rows"):
            for k in range(-bandwidth, bandwidth + 1):
                j = i + k
                if 0 <= j < size:
                    rows.append(i)
                    cols.append(j)

        nnz = len(rows)
        self.check_safety(size, size, nnz)

        order = rng.permutation(nnz)
        rows = np.asarray(rows, dtype=np.int64)[order]
        cols = np.asarray(cols, dtype=np.int64)[order]
        values = rng.standard_normal(nnz)
        return COOMatrix((size, size), rows, cols, values, dtype=self.dtype)

    def power_law_coo(
        self,
        num_rows: int,
        num_cols: int,
        nnz: int,
        alpha: float,
        seed: Optional[int] = None
    ) -> COOMatrix:
        """
        Generate matrix with power-law row degree distribution.
        Common in social networks, web graphs.

        Args:
            num_rows, num_cols: Matrix dimensions
            nnz: Approximate number of nonzeros
            alpha: Power-law exponent (typically 2-3)
            seed: Random seed

        Returns:
            COOMatrix
        """
        logger.info(f"Generating power-law matrix: {num_rows}×{num_cols}, alpha={alpha}")

        self.check_safety(num_rows, num_cols, nnz)
        rng = np.random.default_rng(seed)

        # Generate row degrees following power law
        row_degrees = rng.pareto(alpha, num_rows).astype(int) + 1
        row_degrees = np.clip(row_degrees, 1, num_cols)

        # Normalize to roughly nnz entries, without exceeding the row width
        row_degrees = (row_degrees / row_degrees.sum() * nnz).astype(int)
        row_degrees = np.clip(row_degrees, 0, num_cols)

        rows, cols = [], []
        for i in tqdm(range(num_rows), desc="Sampling rows", unit=" rows"):
            degree = row_degrees[i]
            if degree > 0:
                rows.append(np.full(degree, i, dtype=np.int64))
                cols.append(rng.choice(num_cols, size=degree, replace=False))

        rows = np.concatenate(rows) if rows else np.zeros(0, dtype=np.int64)
        cols = np.concatenate(cols) if cols else np.zeros(0, dtype=np.int64)
        values = rng.standard_normal(len(rows))
        return COOMatrix((num_rows, num_cols), rows, cols, values, dtype=self.dtype)

    def save(self, coo: COOMatrix, filename: str) -> str:
        """
        Convert a COO matrix to CSR and store it as a binary CSR file.

        Returns:
            Path to generated file
        """
        filepath = self.output_dir / filename
        csr = build_csr_from_coo(coo)
        store_csr(csr, filepath)

        file_size_mb = filepath.stat().st_size / (1024 * 1024)
        logger.info(f"✓ Generated {filepath} ({file_size_mb:.1f} MB)")
        return str(filepath)


def generate_preset_matrices(output_dir: str = "data/input", dtype=np.float64) -> list:
    """
    Generate a small set of test matrices of different shapes and patterns.

    Returns:
        List of generated file paths
    """
    generator = SparseMatrixGenerator(output_dir, dtype=dtype)

    presets = [
        ("random_small.csr", lambda: generator.random_coo(100, 80, 500, seed=1)),
        ("random_medium.csr", lambda: generator.random_coo(5000, 5000, 50000, seed=2)),
        ("banded_1000.csr", lambda: generator.banded_coo(1000, 5, seed=3)),
        ("power_law_2000.csr", lambda: generator.power_law_coo(2000, 2000, 20000, 2.5, seed=4)),
    ]

    generated_files = []
    for filename, make in presets:
        generated_files.append(generator.save(make(), filename))

    logger.info("\n" + "=" * 70)
    logger.info(f"✓ Generated {len(generated_files)} matrices in {output_dir}")
    logger.info("=" * 70)

    return generated_files


def main(argv=None):
    """Command-line interface for data generation."""
    parser = argparse.ArgumentParser(
        description="Generate sparse matrices as binary CSR files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate all preset matrices
  python generate_data.py --preset

  # Generate custom random matrix (1 million entries)
  python generate_data.py --random --rows 50000 --cols 50000 --nnz 1000000 -o my_matrix.csr

  # Generate single-precision banded matrix
  python generate_data.py --banded --size 5000 --bandwidth 10 --float32 -o banded.csr
        """
    )

    parser.add_argument('--output-dir', default='data/input', help='Output directory')
    parser.add_argument('--seed', type=int, default=42, help='Random seed')
    parser.add_argument('--max-memory', type=float, default=500, help='Max memory in MB (safety limit)')
    parser.add_argument('--float32', action='store_true', help='Store single-precision values')

    parser.add_argument('--preset', action='store_true', help='Generate all preset test matrices')

    parser.add_argument('--random', action='store_true', help='Generate random matrix')
    parser.add_argument('--banded', action='store_true', help='Generate banded matrix')
    parser.add_argument('--power-law', action='store_true', help='Generate power-law matrix')

    parser.add_argument('--rows', type=int, help='Number of rows')
    parser.add_argument('--cols', type=int, help='Number of columns')
    parser.add_argument('--nnz', type=int, help='Number of nonzeros')
    parser.add_argument('--unique', action='store_true', help='Avoid duplicate (row, col) pairs')
    parser.add_argument('--size', type=int, help='Matrix size (for square matrices)')
    parser.add_argument('--bandwidth', type=int, help='Bandwidth for banded matrices')
    parser.add_argument('--alpha', type=float, default=2.5, help='Power-law exponent')

    parser.add_argument('-o', '--output', help='Output filename')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s: %(message)s'
    )

    dtype = np.float32 if args.float32 else np.float64

    if args.preset:
        return generate_preset_matrices(args.output_dir, dtype=dtype)

    generator = SparseMatrixGenerator(args.output_dir, dtype=dtype, max_memory_mb=args.max_memory)

    if args.random:
        if not all([args.rows, args.cols, args.nnz, args.output]):
            parser.error("--random requires --rows, --cols, --nnz, and -o")
        coo = generator.random_coo(args.rows, args.cols, args.nnz, seed=args.seed, unique=args.unique)

    elif args.banded:
        if not all([args.size, args.bandwidth is not None, args.output]):
            parser.error("--banded requires --size, --bandwidth, and -o")
        coo = generator.banded_coo(args.size, args.bandwidth, seed=args.seed)

    elif args.power_law:
        if not all([args.rows, args.cols, args.nnz, args.output]):
            parser.error("--power-law requires --rows, --cols, --nnz, and -o")
        coo = generator.power_law_coo(args.rows, args.cols, args.nnz, args.alpha, seed=args.seed)

    else:
        parser.error("Choose one of --preset, --random, --banded or --power-law")

    return [generator.save(coo, args.output)]


if __name__ == "__main__":
    main()
