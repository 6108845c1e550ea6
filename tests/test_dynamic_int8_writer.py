import os

import numpy as np
import pytest

from vardb.data.load_genotype_vcf import _DynamicInt8RowWriter


def test_dynamic_int8_writer_finalize_preserves_rows():
    writer = _DynamicInt8RowWriter(n_cols=6, initial_capacity=16)

    rows = [
        np.array([2, 0, 0, 2, -9, 1], dtype=np.int8),
        np.array([0, 2, 0, 0, 1, -9], dtype=np.int8),
        np.array([1, 1, 1, 1, 1, 1], dtype=np.int8),
    ]

    for row in rows:
        writer.append(row)

    expected = np.vstack(rows)
    matrix = writer.finalize()

    np.testing.assert_array_equal(matrix, expected)
    assert not os.path.exists(writer.path)


def test_dynamic_int8_writer_finalize_handles_capacity_growth():
    writer = _DynamicInt8RowWriter(n_cols=5, initial_capacity=1)

    rows = [
        np.array([2, 0, -9, 1, 0], dtype=np.int8),
        np.array([0, 2, 0, -9, 1], dtype=np.int8),
        np.array([1, 1, 1, 1, 1], dtype=np.int8),
        np.array([2, 2, 2, 2, 2], dtype=np.int8),
    ]

    for row in rows:
        writer.append(row)

    # ensure append triggered an internal resize
    assert writer.capacity >= len(rows)

    expected = np.vstack(rows)
    matrix = writer.finalize()

    np.testing.assert_array_equal(matrix, expected)


def test_dynamic_int8_writer_empty_and_shape_errors():
    writer = _DynamicInt8RowWriter(n_cols=3)

    with pytest.raises(ValueError, match="shape mismatch"):
        writer.append(np.zeros(4, dtype=np.int8))

    assert writer.finalize().shape == (0, 3)

    with pytest.raises(ValueError):
        _DynamicInt8RowWriter(n_cols=0)
