"""
Hardy-Weinberg equilibrium exact test over dataset shards
"""

import numpy as np
from typing import Tuple

from ..utils.stats import genotype_class_counts, hwe_exact_pvalues

BATCH_ROWS = 10_000


def hwe_shard(snapshot, shard, token=None, batch_rows: int = BATCH_ROWS) -> Tuple[np.ndarray, np.ndarray]:
    """HWE exact p-values for the testable rows of one shard

    Rows are testable when every sample is diploid there (autosomes, chrX PAR)
    and at least one genotype is called.

    Returns:
        Tuple of (p-values, global row indices)
    """
    p_parts, row_parts = [], []
    for start in range(shard.rows.start, shard.rows.stop, batch_rows):
        if token is not None:
            token.raise_if_cancelled()
        stop = min(start + batch_rows, shard.rows.stop)
        rows = np.arange(start, stop, dtype=np.int64)[snapshot.diploid_rows[start:stop]]
        if rows.size == 0:
            continue
        hom_ref, het, hom_alt = genotype_class_counts(snapshot.genotypes.take_rows(rows))
        called = (hom_ref + het + hom_alt) > 0
        if not called.any():
            continue
        p_parts.append(hwe_exact_pvalues(het[called], hom_ref[called], hom_alt[called]))
        row_parts.append(rows[called])
    if not p_parts:
        return np.zeros(0, dtype=np.float64), np.zeros(0, dtype=np.int64)
    return np.concatenate(p_parts), np.concatenate(row_parts)
