"""
Binary CSR File Format
Stores a CSRMatrix as a fixed-size header followed by its three arrays.

Layout:
- magic "Hola\\x01CSR\\x01" (9 bytes) + 7 zero bytes of alignment padding
- element size, rows, cols, nnz (unsigned 64-bit each)
- nnz values (4 or 8 bytes each), nnz column ids (uint32), rows+1 row offsets (uint32)

Byte order is the host's unless a caller pins 'little' or 'big' on both
store and load; it is not recorded in the file.
"""

import struct
import logging
from contextlib import nullcontext
from dataclasses import dataclass

import numpy as np

from matrix_formats import CSRMatrix, INDEX_DTYPE, resolve_dtype


logger = logging.getLogger(__name__)

CSR_MAGIC = b'Hola\x01CSR\x01'

_BYTEORDER_PREFIX = {
    'native': '=',
    'little': '<',
    'big': '>',
}


class CSRFormatError(ValueError):
    """File is not a CSR matrix of the expected element type."""


class CSRIOError(OSError):
    """A read or write transferred fewer bytes than required."""


def _byteorder_prefix(byteorder: str) -> str:
    try:
        return _BYTEORDER_PREFIX[byteorder]
    except KeyError:
        raise ValueError(
            f"Unknown byte order {byteorder!r}; expected one of {sorted(_BYTEORDER_PREFIX)}"
        ) from None


def _header_struct(byteorder: str) -> struct.Struct:
    # 9s magic, 7x padding up to the first 8-byte field, then 4 x uint64
    return struct.Struct(_byteorder_prefix(byteorder) + '9s7x4Q')


HEADER_SIZE = _header_struct('native').size


@dataclass
class CSRHeader:
    typesize: int
    rows: int
    cols: int
    nnz: int
    magic: bytes = CSR_MAGIC

    @classmethod
    def for_matrix(cls, matrix: CSRMatrix) -> 'CSRHeader':
        return cls(
            typesize=matrix.dtype.itemsize,
            rows=matrix.rows,
            cols=matrix.cols,
            nnz=matrix.nnz,
        )

    def check_magic(self) -> bool:
        return self.magic == CSR_MAGIC

    def to_bytes(self, byteorder: str = 'native') -> bytes:
        return _header_struct(byteorder).pack(
            self.magic, self.typesize, self.rows, self.cols, self.nnz
        )

    @classmethod
    def from_bytes(cls, buffer: bytes, byteorder: str = 'native') -> 'CSRHeader':
        if len(buffer) < HEADER_SIZE:
            raise CSRFormatError(
                f"Could not read CSR header: got {len(buffer)} bytes, need {HEADER_SIZE}"
            )
        magic, typesize, rows, cols, nnz = _header_struct(byteorder).unpack(buffer[:HEADER_SIZE])
        return cls(typesize=typesize, rows=rows, cols=cols, nnz=nnz, magic=magic)


def _open(target, mode: str):
    """Use an already open binary file as is, otherwise open the path."""
    if hasattr(target, 'read' if 'r' in mode else 'write'):
        return nullcontext(target)
    return open(target, mode)


def _write_bytes(f, buffer: bytes):
    written = f.write(buffer)
    if written is not None and written != len(buffer):
        raise CSRIOError(f"Short write: wrote {written} of {len(buffer)} bytes")


def _write_array(f, array: np.ndarray, dtype: np.dtype):
    _write_bytes(f, np.ascontiguousarray(array, dtype=dtype).tobytes())


def _read_into(f, array: np.ndarray, file_dtype: np.dtype, what: str):
    """Fill a native-order array from the stream, swapping bytes if the file order differs."""
    expected = array.nbytes
    if expected == 0:
        return

    got = f.readinto(array.view(np.uint8))
    if got is None or got < expected:
        raise CSRIOError(
            f"Could not read CSR matrix data: {what} truncated ({got or 0} of {expected} bytes)"
        )

    if not file_dtype.isnative:
        array.byteswap(inplace=True)


def read_header(source, byteorder: str = 'native') -> CSRHeader:
    """
    Read and check the header of a binary CSR file.

    Args:
        source: Path or readable binary file object
        byteorder: 'native', 'little' or 'big'

    Returns:
        CSRHeader

    Raises:
        CSRFormatError if the header is short or the magic does not match
    """
    with _open(source, 'rb') as f:
        header = CSRHeader.from_bytes(f.read(HEADER_SIZE), byteorder)

    if not header.check_magic():
        raise CSRFormatError("File does not appear to be a CSR Matrix")
    return header


def store_csr(matrix: CSRMatrix, destination, byteorder: str = 'native'):
    """
    Write a CSRMatrix in the binary CSR format.

    Args:
        matrix: Matrix to store
        destination: Path or writable binary file object
        byteorder: 'native', 'little' or 'big'
    """
    prefix = _byteorder_prefix(byteorder)
    header = CSRHeader.for_matrix(matrix)

    with _open(destination, 'wb') as f:
        _write_bytes(f, header.to_bytes(byteorder))
        _write_array(f, matrix.values, matrix.dtype.newbyteorder(prefix))
        _write_array(f, matrix.col_ids, INDEX_DTYPE.newbyteorder(prefix))
        _write_array(f, matrix.row_offsets, INDEX_DTYPE.newbyteorder(prefix))

    logger.info(
        f"Stored CSR matrix {matrix.shape} ({matrix.nnz:,} nonzeros, {matrix.dtype}) "
        f"to {getattr(destination, 'name', destination)}"
    )


def load_csr(source, dtype=None, byteorder: str = 'native') -> CSRMatrix:
    """
    Read a CSRMatrix from the binary CSR format.

    Args:
        source: Path or readable binary file object
        dtype: Element type the file must hold (float32 or float64)
        byteorder: 'native', 'little' or 'big'

    Returns:
        CSRMatrix instance

    Raises:
        OSError if the source cannot be opened
        CSRFormatError on a short header, wrong magic or mismatched element size
        CSRIOError if a body segment is truncated
    """
    dtype = resolve_dtype(dtype)
    prefix = _byteorder_prefix(byteorder)

    with _open(source, 'rb') as f:
        header = CSRHeader.from_bytes(f.read(HEADER_SIZE), byteorder)
        if not header.check_magic():
            raise CSRFormatError("File does not appear to be a CSR Matrix")
        if header.typesize != dtype.itemsize:
            raise CSRFormatError(
                f"File does not contain a CSR matrix with matching type: "
                f"element size {header.typesize}, expected {dtype.itemsize} ({dtype})"
            )

        matrix = CSRMatrix.allocate(header.rows, header.cols, header.nnz, dtype=dtype)
        _read_into(f, matrix.values, dtype.newbyteorder(prefix), "values")
        _read_into(f, matrix.col_ids, INDEX_DTYPE.newbyteorder(prefix), "col_ids")
        _read_into(f, matrix.row_offsets, INDEX_DTYPE.newbyteorder(prefix), "row_offsets")

    logger.info(
        f"Loaded CSR matrix {matrix.shape} ({matrix.nnz:,} nonzeros, {matrix.dtype}) "
        f"from {getattr(source, 'name', source)}"
    )
    return matrix
