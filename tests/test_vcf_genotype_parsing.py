"""Unit tests for GT parsing helpers in load_genotype_vcf."""

from typing import Optional, Tuple

import pytest

from vardb.data.load_genotype_vcf import (
    MISSING,
    _code_genotype_split,
    _decode_biallelic_gt,
    _parse_chrom,
    _split_gt_tokens,
    _variant_end,
)


@pytest.mark.parametrize(
    "gt,expected",
    [
        ("0/0", ("0", "0")),
        ("0|1", ("0", "1")),
        ("1/1/1", ("1", "1", "1")),
        ("1", ("1",)),
    ],
)
def test_split_gt_tokens_returns_cached_tuple(gt: str, expected: Tuple[str, ...]) -> None:
    first = _split_gt_tokens(gt)
    second = _split_gt_tokens(gt)
    assert first == expected
    assert second == expected
    # Cached results should reuse the same tuple object
    assert first is second


@pytest.mark.parametrize("gt", [None, "", ".", "./.", ".|.", "0/"])
def test_split_gt_tokens_handles_missing(gt) -> None:
    assert _split_gt_tokens(gt) is None


@pytest.mark.parametrize(
    "gt,expected",
    [
        ("0/0", 0),
        ("1|0", 1),
        ("1/1", 2),
        ("0", 0),
        ("1", 2),
        ("./.", MISSING),
        ("1/.", MISSING),
        ("0/2", MISSING),
        (None, MISSING),
    ],
)
def test_decode_biallelic_gt(gt: Optional[str], expected: int) -> None:
    assert _decode_biallelic_gt(gt) == expected


@pytest.mark.parametrize(
    "tokens,alt_index,expected",
    [
        (("0", "0"), 1, 0),
        (("0", "2"), 2, 1),
        (("2", "2"), 2, 2),
        (("1", "2"), 1, 1),
        (("1", "2"), 2, 1),
        (("1", "1"), 2, MISSING),
        (("0", "1"), 2, MISSING),
        (("2",), 2, 2),
        (("1",), 2, MISSING),
        (("1", "."), 1, MISSING),
        (("A", "1"), 1, MISSING),
        (None, 1, MISSING),
    ],
)
def test_code_genotype_split(tokens, alt_index: int, expected: int) -> None:
    assert _code_genotype_split(tokens, alt_index) == expected


def test_variant_end_uses_info_end_or_ref_length() -> None:
    assert _variant_end(100, "A", ".") == 100
    assert _variant_end(100, "ACGT", "DP=10") == 103
    assert _variant_end(100, "N", "SVTYPE=DEL;END=5000") == 5000


def test_parse_chrom_skips_unsupported_contigs() -> None:
    assert _parse_chrom("chr1") == 1
    assert _parse_chrom("chrX") == 23
    assert _parse_chrom("chrUn_gl000220") is None
