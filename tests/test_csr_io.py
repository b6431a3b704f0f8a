"""
Tests for the binary CSR file format.
"""

import io
import struct

import numpy as np
import pytest

import csr_io
from csr_io import (
    CSR_MAGIC, HEADER_SIZE, CSRFormatError, CSRHeader, CSRIOError,
    load_csr, read_header, store_csr,
)
from matrix_formats import COOMatrix, CSRMatrix


def _stored_bytes(matrix, **kwargs) -> bytes:
    buffer = io.BytesIO()
    store_csr(matrix, buffer, **kwargs)
    return buffer.getvalue()


class TestHeader:

    def test_size(self):
        # 9 magic bytes padded to 16, then four 8-byte fields
        assert HEADER_SIZE == 48

    def test_magic_bytes(self):
        assert CSR_MAGIC == bytes([0x48, 0x6F, 0x6C, 0x61, 0x01, 0x43, 0x53, 0x52, 0x01])

    def test_layout(self, example_csr):
        raw = _stored_bytes(example_csr)
        assert raw[:9] == CSR_MAGIC
        assert raw[9:16] == b'\x00' * 7
        typesize, rows, cols, nnz = struct.unpack('=4Q', raw[16:48])
        assert typesize == example_csr.dtype.itemsize
        assert (rows, cols, nnz) == (2, 3, 3)

    def test_body_layout(self, example_csr):
        raw = _stored_bytes(example_csr)
        itemsize = example_csr.dtype.itemsize
        body = raw[HEADER_SIZE:]
        assert len(body) == 3 * itemsize + 3 * 4 + 3 * 4

        values = np.frombuffer(body[:3 * itemsize], dtype=example_csr.dtype)
        col_ids = np.frombuffer(body[3 * itemsize:3 * itemsize + 12], dtype=np.uint32)
        row_offsets = np.frombuffer(body[3 * itemsize + 12:], dtype=np.uint32)
        np.testing.assert_array_equal(values, [1.0, 2.0, 3.0])
        np.testing.assert_array_equal(col_ids, [0, 2, 1])
        np.testing.assert_array_equal(row_offsets, [0, 2, 3])

    def test_header_bytes_round_trip(self):
        header = CSRHeader(typesize=8, rows=10, cols=20, nnz=30)
        decoded = CSRHeader.from_bytes(header.to_bytes())
        assert decoded == header
        assert decoded.check_magic()

    def test_read_header(self, example_csr, tmp_path):
        path = tmp_path / "m.csr"
        store_csr(example_csr, path)
        header = read_header(path)
        assert (header.rows, header.cols, header.nnz) == (2, 3, 3)
        assert header.typesize == example_csr.dtype.itemsize


class TestRoundTrip:

    def test_example(self, example_csr, tmp_path):
        path = tmp_path / "m.csr"
        store_csr(example_csr, path)
        loaded = load_csr(path, dtype=example_csr.dtype)
        assert loaded == example_csr
        assert loaded.dtype == example_csr.dtype

    @pytest.mark.parametrize("seed", [0, 1])
    def test_random(self, make_random_coo, dtype, seed, tmp_path):
        csr = make_random_coo(rows=60, cols=45, nnz=400, seed=seed, dtype=dtype).to_csr()
        path = tmp_path / "m.csr"
        csr.save_to_disk(path)
        loaded = CSRMatrix.load_from_disk(path, dtype=dtype)
        assert loaded == csr
        assert loaded.values.tobytes() == csr.values.tobytes()

    def test_file_objects(self, example_csr):
        buffer = io.BytesIO()
        store_csr(example_csr, buffer)
        buffer.seek(0)
        assert load_csr(buffer, dtype=example_csr.dtype) == example_csr

    def test_special_values_bit_exact(self, tmp_path):
        values = np.array([np.nan, -0.0, np.inf, 5e-324], dtype=np.float64)
        csr = CSRMatrix((1, 4), [0, 4], [0, 1, 2, 3], values)
        path = tmp_path / "m.csr"
        store_csr(csr, path)
        loaded = load_csr(path, dtype=np.float64)
        assert loaded.values.tobytes() == values.tobytes()

    def test_loaded_arrays_are_writable(self, example_csr, tmp_path):
        path = tmp_path / "m.csr"
        store_csr(example_csr, path)
        loaded = load_csr(path, dtype=example_csr.dtype)
        loaded.values[0] = 9.0
        assert loaded.values[0] == 9.0

    @pytest.mark.parametrize("shape", [(0, 0), (0, 5), (4, 3)])
    def test_empty_matrix(self, shape, dtype, tmp_path):
        csr = COOMatrix(shape, [], [], [], dtype=dtype).to_csr()
        path = tmp_path / "empty.csr"
        store_csr(csr, path)
        assert path.stat().st_size == HEADER_SIZE + (shape[0] + 1) * 4
        loaded = load_csr(path, dtype=dtype)
        assert loaded == csr
        assert loaded.nnz == 0

    @pytest.mark.parametrize("byteorder", ["native", "little", "big"])
    def test_explicit_byte_order(self, example_csr, byteorder):
        raw = _stored_bytes(example_csr, byteorder=byteorder)
        loaded = load_csr(io.BytesIO(raw), dtype=example_csr.dtype, byteorder=byteorder)
        assert loaded == example_csr

    def test_big_endian_layout(self, example_csr):
        raw = _stored_bytes(example_csr, byteorder="big")
        assert struct.unpack('>4Q', raw[16:48])[1:] == (2, 3, 3)
        assert raw[-4:] == b'\x00\x00\x00\x03'

    def test_unknown_byte_order(self, example_csr):
        with pytest.raises(ValueError):
            _stored_bytes(example_csr, byteorder="middle")


class TestRejection:

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_csr(tmp_path / "missing.csr")

    def test_unwritable_destination(self, example_csr, tmp_path):
        with pytest.raises(OSError):
            store_csr(example_csr, tmp_path / "no_such_dir" / "m.csr")

    def test_short_header(self):
        with pytest.raises(CSRFormatError):
            load_csr(io.BytesIO(CSR_MAGIC + b'\x00' * 10))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.csr"
        path.write_bytes(b"")
        with pytest.raises(CSRFormatError):
            load_csr(path)

    def test_bad_magic(self, example_csr, monkeypatch):
        raw = bytearray(_stored_bytes(example_csr))
        raw[4] = 0x02
        allocated = []
        monkeypatch.setattr(csr_io.CSRMatrix, "allocate",
                            classmethod(lambda cls, *a, **kw: allocated.append(a)))
        with pytest.raises(CSRFormatError, match="does not appear"):
            load_csr(io.BytesIO(bytes(raw)), dtype=example_csr.dtype)
        assert allocated == []

    def test_bad_magic_in_read_header(self, example_csr):
        raw = bytearray(_stored_bytes(example_csr))
        raw[0] = ord('h')
        with pytest.raises(CSRFormatError):
            read_header(io.BytesIO(bytes(raw)))

    def test_element_size_mismatch(self, example_csr, monkeypatch):
        raw = _stored_bytes(example_csr)
        other = np.float64 if example_csr.dtype == np.float32 else np.float32
        allocated = []
        monkeypatch.setattr(csr_io.CSRMatrix, "allocate",
                            classmethod(lambda cls, *a, **kw: allocated.append(a)))
        with pytest.raises(CSRFormatError, match="matching type"):
            load_csr(io.BytesIO(raw), dtype=other)
        assert allocated == []

    @pytest.mark.parametrize("cut", [1, 4, 13, 20])
    def test_truncated_body(self, example_csr, cut):
        raw = _stored_bytes(example_csr)
        with pytest.raises(CSRIOError, match="truncated"):
            load_csr(io.BytesIO(raw[:-cut]), dtype=example_csr.dtype)

    def test_truncation_is_an_os_error(self):
        assert issubclass(CSRIOError, OSError)
        assert issubclass(CSRFormatError, ValueError)

    def test_short_write(self, example_csr):
        class ShortWriter(io.RawIOBase):
            def writable(self):
                return True

            def write(self, b):
                return max(len(b) - 1, 0)

        with pytest.raises(CSRIOError):
            store_csr(example_csr, ShortWriter())
