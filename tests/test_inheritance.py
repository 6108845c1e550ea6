import numpy as np
import pytest

from vardb.association.inheritance import InheritanceMode, inheritance_mask, inheritance_shard
from vardb.core.scheduler import CancellationToken, Shard
from vardb.utils.data_types import RowRange
from vardb.utils.errors import QueryCancelledError

from conftest import flatten


@pytest.mark.parametrize(
    "mode,trio,expected",
    [
        (InheritanceMode.DE_NOVO, [[1, 0, 0], [2, 0, 0], [1, 0, 1], [1, -9, 0], [0, 0, 0]],
         [True, True, False, False, False]),
        (InheritanceMode.HET_DOMINANT, [[1, 1, 0], [1, 2, 0], [1, 1, -9], [2, 1, 0]],
         [True, False, False, False]),
        (InheritanceMode.HOM_RECESSIVE, [[1, 1, 2], [1, 1, 1], [2, 1, 2], [1, 1, -9]],
         [True, False, False, False]),
    ],
)
def test_inheritance_mask(mode, trio, expected) -> None:
    mask = inheritance_mask(mode, np.array(trio, dtype=np.int8))

    np.testing.assert_array_equal(mask, expected)


def test_inheritance_shard_returns_global_rows(trio_snapshot) -> None:
    shard = Shard(0, 1, RowRange(0, 3))

    rows = inheritance_shard(trio_snapshot, InheritanceMode.DE_NOVO, (0, 1, 2), shard, batch_rows=1)

    np.testing.assert_array_equal(rows, [1])


def test_inheritance_shard_honours_cancellation(trio_snapshot) -> None:
    token = CancellationToken()
    token.cancel()

    with pytest.raises(QueryCancelledError):
        inheritance_shard(trio_snapshot, InheritanceMode.DE_NOVO, (0, 1, 2), Shard(0, 1, RowRange(0, 3)), token)


def test_select_de_novo(engine) -> None:
    variants = flatten(engine.select_de_novo("HG002", "HG003", "HG004"))

    assert [v.label for v in variants] == ["1:881627-881627:G>A"]
    assert variants[0].ac == 4


def test_select_het_dominant(engine) -> None:
    variants = flatten(engine.select_het_dominant("HG003", "HG002", "HG004"))

    assert [v.label for v in variants] == ["2:1000-1000:C>T"]


def test_select_hom_recessive(engine) -> None:
    variants = flatten(engine.select_hom_recessive("HG003", "HG004", "HG002"))

    assert [v.label for v in variants] == ["2:5000-5000:G>C"]


def test_inheritance_parallel_matches_sequential(engine) -> None:
    parallel = flatten(engine.select_de_novo("S5", "HG003", "S6"))
    sequential = flatten(engine.select_de_novo("S5", "HG003", "S6", seq=True))

    assert parallel == sequential
    assert [v.start for v in parallel] == [881627, 5000000]


def test_inheritance_unknown_sample_gives_empty_stream(engine) -> None:
    batches = list(engine.select_de_novo("HG002", "HG003", "nobody"))

    assert batches == [[]]
    assert list(engine.select_de_novo("HG002", "HG003", "HG004", assembly="GRCh37")) == [[]]
