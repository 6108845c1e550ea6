"""
Coordinate index mapping genomic regions to variant row ranges
"""

from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from ..utils.data_types import Chromosome, RowRange, rows_to_ranges
from ..utils.errors import InvalidArgumentError


def _check_bounds(start: int, end: int) -> None:
    if start < 1:
        raise InvalidArgumentError(f"Region start must be >= 1, got {start}")
    if end < start:
        raise InvalidArgumentError(f"Region end ({end}) must be >= start ({start})")


class RegionIndex:
    """Region lookups over rows sorted by (chromosome, start, end, ref, alt).

    Each chromosome occupies one contiguous block of rows with non-decreasing
    starts. A variant overlaps [start, end] when ``variant.start <= end`` and
    ``variant.end >= start``; the longest variant of the block bounds how far
    left of ``start`` an overlapping variant may begin.
    """

    def __init__(self, chroms: np.ndarray, starts: np.ndarray, ends: np.ndarray,
                 gene_table: Optional[pd.DataFrame] = None,
                 panels: Optional[Mapping[str, Sequence[str]]] = None):
        self._starts = np.asarray(starts, dtype=np.int64)
        self._ends = np.asarray(ends, dtype=np.int64)
        chroms = np.asarray(chroms)
        self._blocks: Dict[int, RowRange] = {}
        self._max_span: Dict[int, int] = {}
        for code in np.unique(chroms):
            lo = int(np.searchsorted(chroms, code, side='left'))
            hi = int(np.searchsorted(chroms, code, side='right'))
            self._blocks[int(code)] = RowRange(lo, hi)
            self._max_span[int(code)] = int((self._ends[lo:hi] - self._starts[lo:hi]).max())
        self._genes = gene_table
        self._panels = {k: list(v) for k, v in (panels or {}).items()}

    @property
    def panels(self) -> Dict[str, List[str]]:
        return {k: list(v) for k, v in self._panels.items()}

    def _overlapping_rows(self, chrom: int, start: int, end: int) -> np.ndarray:
        block = self._blocks.get(chrom)
        if block is None:
            return np.zeros(0, dtype=np.int64)
        starts = self._starts[block.start:block.stop]
        lo = int(np.searchsorted(starts, start - self._max_span[chrom], side='left'))
        hi = int(np.searchsorted(starts, end, side='right'))
        if hi <= lo:
            return np.zeros(0, dtype=np.int64)
        candidates = np.arange(block.start + lo, block.start + hi, dtype=np.int64)
        return candidates[self._ends[candidates] >= start]

    def resolve(self, chrom, start: int, end: int) -> List[RowRange]:
        """Row ranges of variants overlapping chrom:start-end (1-based, inclusive)"""
        start, end = int(start), int(end)
        _check_bounds(start, end)
        return rows_to_ranges(self._overlapping_rows(int(Chromosome.parse(chrom)), start, end))

    def resolve_multi(self, chroms: Sequence, starts: Sequence[int], ends: Sequence[int]) -> List[RowRange]:
        """Union of rows over several regions, each row reported once, in row order"""
        if not (len(chroms) == len(starts) == len(ends)):
            raise InvalidArgumentError(
                f"Region arrays must have equal lengths (chr={len(chroms)}, start={len(starts)}, end={len(ends)})"
            )
        parsed = []
        for chrom, start, end in zip(chroms, starts, ends):
            _check_bounds(int(start), int(end))
            parsed.append((int(Chromosome.parse(chrom)), int(start), int(end)))
        pieces = [self._overlapping_rows(c, s, e) for c, s, e in parsed]
        if not pieces:
            return []
        return rows_to_ranges(np.unique(np.concatenate(pieces)))

    def panel_regions(self, panel: str) -> pd.DataFrame:
        """Gene regions (chrom, start, end) of a panel; empty when unknown"""
        genes = self._panels.get(panel)
        empty = pd.DataFrame({'chrom': [], 'start': [], 'end': []})
        if not genes or self._genes is None:
            return empty
        return self._genes.loc[self._genes['symbol'].isin(genes), ['chrom', 'start', 'end']].reset_index(drop=True)

    def resolve_panel(self, panel: str) -> List[RowRange]:
        """Rows of variants overlapping any gene of the panel"""
        regions = self.panel_regions(panel)
        if regions.empty:
            return []
        return self.resolve_multi(regions['chrom'].tolist(), regions['start'].tolist(), regions['end'].tolist())

    def chromosome_blocks(self) -> Dict[int, RowRange]:
        """Row range of each chromosome present, keyed by Chromosome code"""
        return dict(self._blocks)
