"""
Named cohorts, virtual cohorts and genotype-class restriction
"""

from typing import Dict, Iterator, List, Mapping, NamedTuple, Optional, Sequence

import numpy as np
import pandas as pd

from ..utils.data_types import AlleleStats, GenotypeClass
from ..utils.stats import allele_counts, counts_to_allele_stats


class CohortRegistry:
    """Resolves sample names and cohort names to matrix column indices."""

    def __init__(self, samples: Sequence[str], cohorts: Optional[Mapping[str, Sequence[str]]] = None):
        self._samples = list(samples)
        self._index = {name: i for i, name in enumerate(self._samples)}
        self._cohorts: Dict[str, List[str]] = {}
        for name, members in (cohorts or {}).items():
            # Members absent from the matrix are dropped
            self._cohorts[name] = [m for m in members if m in self._index]

    @classmethod
    def from_sample_sheet(cls, samples: Sequence[str], sheet: Optional[pd.DataFrame]) -> "CohortRegistry":
        cohorts: Dict[str, List[str]] = {}
        if sheet is not None and 'cohorts' in sheet.columns:
            for sample, names in zip(sheet['sample'], sheet['cohorts']):
                for name in names:
                    cohorts.setdefault(name, []).append(sample)
        return cls(samples, cohorts)

    @property
    def names(self) -> List[str]:
        return sorted(self._cohorts)

    @property
    def samples(self) -> List[str]:
        return list(self._samples)

    def members(self, cohort_name: str) -> List[str]:
        return list(self._cohorts.get(cohort_name, []))

    def index_of(self, sample: str) -> Optional[int]:
        return self._index.get(sample)

    def resolve(self, samples: Optional[Sequence[str]] = None,
                cohort_name: Optional[str] = None) -> np.ndarray:
        """Sorted column indices of the explicit samples united with the cohort

        Unknown sample or cohort names are ignored; a request that resolves
        nothing selects no columns.
        """
        columns = {self._index[s] for s in (samples or ()) if s in self._index}
        if cohort_name:
            columns.update(self._index[s] for s in self._cohorts.get(cohort_name, ()))
        return np.array(sorted(columns), dtype=np.int64)

    @property
    def all_columns(self) -> np.ndarray:
        return np.arange(len(self._samples), dtype=np.int64)


class RestrictedRow(NamedTuple):
    row: int
    samples: List[str]
    stats: AlleleStats


def restrict(snapshot, rows: np.ndarray, columns: np.ndarray,
             genotype_class: GenotypeClass, batch_size: int = 10_000) -> Iterator[RestrictedRow]:
    """Per row, the samples of ``columns`` in the selected genotype classes and
    the allele statistics recomputed over ``columns``.

    Args:
        snapshot: DatasetSnapshot
        rows: Sorted variant row indices
        columns: Sorted sample column indices
        genotype_class: Classes a sample must fall in to be reported
        batch_size: Rows read from the matrix at a time
    """
    rows = np.asarray(rows, dtype=np.int64)
    columns = np.asarray(columns, dtype=np.int64)
    names = np.asarray(snapshot.samples, dtype=object)[columns]
    codes = genotype_class.codes
    for offset in range(0, rows.size, batch_size):
        batch_rows = rows[offset:offset + batch_size]
        block = snapshot.genotypes.columns_for(columns, batch_rows)
        counts = allele_counts(
            block,
            is_male=snapshot.is_male[columns],
            is_female=snapshot.is_female[columns],
            haploid_rows=snapshot.haploid_rows[batch_rows],
            chrx_rows=snapshot.chrx_rows[batch_rows],
        )
        matched = np.isin(block, codes) if codes else np.zeros(block.shape, dtype=bool)
        for i, stat in enumerate(counts_to_allele_stats(counts)):
            yield RestrictedRow(int(batch_rows[i]), names[matched[i]].tolist(), stat)
