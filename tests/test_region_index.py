import numpy as np
import pandas as pd
import pytest

from vardb.data.region_index import RegionIndex
from vardb.utils.data_types import RowRange, ranges_to_rows
from vardb.utils.errors import InvalidArgumentError


def _make_index(**kwargs):
    # chr1: SNV at 100, deletion 150-180, SNV at 200; chr2: SNV at 50; chrX: SNV at 10
    chroms = np.array([1, 1, 1, 2, 23], dtype=np.int8)
    starts = np.array([100, 150, 200, 50, 10])
    ends = np.array([100, 180, 200, 50, 10])
    return RegionIndex(chroms, starts, ends, **kwargs)


def test_resolve_point_and_range() -> None:
    index = _make_index()

    assert index.resolve("1", 100, 100) == [RowRange(0, 1)]
    assert index.resolve("chr1", 1, 1000) == [RowRange(0, 3)]
    assert index.resolve("2", 50, 50) == [RowRange(3, 4)]
    assert index.resolve("X", 1, 9) == []
    assert index.resolve("5", 1, 1000) == []


def test_resolve_finds_long_variant_starting_before_region() -> None:
    index = _make_index()

    # The deletion starts at 150 but overlaps 170-175
    assert index.resolve("1", 170, 175) == [RowRange(1, 2)]
    # Touching the last base counts as overlap
    assert index.resolve("1", 180, 199) == [RowRange(1, 2)]
    assert index.resolve("1", 181, 199) == []


def test_resolve_rejects_bad_bounds() -> None:
    index = _make_index()

    with pytest.raises(InvalidArgumentError):
        index.resolve("1", 0, 10)
    with pytest.raises(InvalidArgumentError):
        index.resolve("1", 20, 10)


def test_resolve_multi_unions_without_duplicates() -> None:
    index = _make_index()

    ranges = index.resolve_multi(["1", "1", "X"], [90, 95, 10], [160, 210, 10])

    assert ranges == [RowRange(0, 3), RowRange(4, 5)]
    np.testing.assert_array_equal(ranges_to_rows(ranges), [0, 1, 2, 4])


def test_resolve_multi_requires_equal_lengths() -> None:
    index = _make_index()

    with pytest.raises(InvalidArgumentError, match="equal lengths"):
        index.resolve_multi(["1", "2"], [1], [10, 20])


def test_panels_resolve_through_gene_table() -> None:
    genes = pd.DataFrame({
        "symbol": ["GENE_A", "GENE_B", "GENE_C"],
        "chrom": [1, 2, 1],
        "start": [95, 40, 190],
        "end": [120, 60, 210],
    })
    index = _make_index(gene_table=genes, panels={"p1": ["GENE_A", "GENE_B", "UNKNOWN"], "p2": ["GENE_C"]})

    assert sorted(index.panels) == ["p1", "p2"]
    assert len(index.panel_regions("p1")) == 2
    assert index.resolve_panel("p1") == [RowRange(0, 1), RowRange(3, 4)]
    assert index.resolve_panel("p2") == [RowRange(2, 3)]
    assert index.resolve_panel("missing") == []


def test_panels_without_gene_table_are_empty() -> None:
    index = _make_index(panels={"p1": ["GENE_A"]})

    assert index.resolve_panel("p1") == []


def test_chromosome_blocks() -> None:
    blocks = _make_index().chromosome_blocks()

    assert blocks == {1: RowRange(0, 3), 2: RowRange(3, 4), 23: RowRange(4, 5)}
