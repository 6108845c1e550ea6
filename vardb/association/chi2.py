"""
Chi-squared test of a sample subset's genotypes against the whole cohort
"""

import numpy as np
from typing import Tuple

from ..utils.stats import genotype_chi2_pvalues, genotype_class_counts

BATCH_ROWS = 10_000


def chi2_shard(snapshot, columns: np.ndarray, shard, token=None,
               batch_rows: int = BATCH_ROWS) -> Tuple[np.ndarray, np.ndarray]:
    """Genotype chi-squared p-values of the subset ``columns`` for one shard

    Expected genotype counts follow HWE at the whole-cohort alt allele
    frequency. Rows with hemizygous samples, monomorphic cohort frequency or
    no called subset genotype are skipped.

    Returns:
        Tuple of (p-values, global row indices)
    """
    columns = np.asarray(columns, dtype=np.int64)
    p_parts, row_parts = [], []
    for start in range(shard.rows.start, shard.rows.stop, batch_rows):
        if token is not None:
            token.raise_if_cancelled()
        stop = min(start + batch_rows, shard.rows.stop)
        rows = np.arange(start, stop, dtype=np.int64)[snapshot.diploid_rows[start:stop]]
        if rows.size == 0:
            continue
        hom_ref, het, hom_alt = genotype_class_counts(snapshot.genotypes.columns_for(columns, rows))
        pvalues = genotype_chi2_pvalues(hom_ref, het, hom_alt, snapshot.stats['af'][rows])
        tested = ~np.isnan(pvalues)
        p_parts.append(pvalues[tested])
        row_parts.append(rows[tested])
    if not p_parts:
        return np.zeros(0, dtype=np.float64), np.zeros(0, dtype=np.int64)
    return np.concatenate(p_parts), np.concatenate(row_parts)
