"""
Pairwise relatedness using the KING-robust between-family kinship estimator
"""

import numpy as np
import numba
from typing import List, Optional, Sequence, Tuple

from ..utils.data_types import KinshipDegree, Relatedness

# Lower phi bound of each degree (Manichaikul et al. 2010)
DEGREE_BOUNDS = (
    (KinshipDegree.TWINS_MONOZYGOTIC, 0.354),
    (KinshipDegree.FIRST_DEGREE, 0.177),
    (KinshipDegree.SECOND_DEGREE, 0.0884),
    (KinshipDegree.THIRD_DEGREE, 0.0442),
)


def kinship_degree(phi: float) -> KinshipDegree:
    """Relationship class of a kinship coefficient"""
    if phi > DEGREE_BOUNDS[0][1]:
        return KinshipDegree.TWINS_MONOZYGOTIC
    for degree, bound in DEGREE_BOUNDS[1:]:
        if phi >= bound:
            return degree
    return KinshipDegree.UNRELATED


@numba.jit(nopython=True, cache=True, nogil=True)
def _king_counts_jit(Gt, pair_i, pair_j):
    """Het/het, opposite-homozygote and per-sample het counts per pair.

    Gt is samples x sites (int8); only sites called in both samples count.
    """
    n_pairs = pair_i.shape[0]
    n_sites = Gt.shape[1]
    counts = np.zeros((n_pairs, 4), dtype=np.int64)
    for p in range(n_pairs):
        gi = Gt[pair_i[p]]
        gj = Gt[pair_j[p]]
        hethet = 0
        opphom = 0
        het_i = 0
        het_j = 0
        for k in range(n_sites):
            a = gi[k]
            b = gj[k]
            if a < 0 or b < 0:
                continue
            if a == 1:
                het_i += 1
                if b == 1:
                    hethet += 1
            if b == 1:
                het_j += 1
            if (a == 0 and b == 2) or (a == 2 and b == 0):
                opphom += 1
        counts[p, 0] = hethet
        counts[p, 1] = opphom
        counts[p, 2] = het_i
        counts[p, 3] = het_j
    return counts


def king_robust_phi(counts: np.ndarray) -> np.ndarray:
    """KING-robust phi from (hethet, opphom, het_i, het_j) count rows

    phi = (N_hethet - 2 N_opphom) / (2 min(het_i, het_j))
          + 1/2 - (het_i + het_j) / (4 min(het_i, het_j))

    Pairs where either sample has no heterozygous call get NaN.
    """
    counts = np.asarray(counts, dtype=np.float64).reshape(-1, 4)
    hethet, opphom, het_i, het_j = counts.T
    min_het = np.minimum(het_i, het_j)
    phi = np.full(counts.shape[0], np.nan)
    ok = min_het > 0
    phi[ok] = ((hethet[ok] - 2.0 * opphom[ok]) / (2.0 * min_het[ok])
               + 0.5 - (het_i[ok] + het_j[ok]) / (4.0 * min_het[ok]))
    return phi


def sample_pairs(n_samples: int) -> np.ndarray:
    """All (i, j) column pairs with i < j in row-major order"""
    if n_samples < 2:
        return np.zeros((0, 2), dtype=np.int64)
    i, j = np.triu_indices(n_samples, k=1)
    return np.column_stack([i, j]).astype(np.int64)


def king_kinship_pairs(Gt: np.ndarray, pairs: np.ndarray) -> np.ndarray:
    """phi for each (i, j) pair of rows of a samples x sites matrix"""
    pairs = np.asarray(pairs, dtype=np.int64).reshape(-1, 2)
    if pairs.shape[0] == 0:
        return np.zeros(0, dtype=np.float64)
    Gt = np.ascontiguousarray(Gt, dtype=np.int8)
    counts = _king_counts_jit(Gt, np.ascontiguousarray(pairs[:, 0]), np.ascontiguousarray(pairs[:, 1]))
    return king_robust_phi(counts)


def relatedness_records(names: Sequence[str],
                        pairs: np.ndarray,
                        phi: np.ndarray,
                        threshold: Optional[float] = None,
                        degree: Optional[KinshipDegree] = None) -> List[Relatedness]:
    """Build Relatedness records, keeping pairs with phi >= threshold and a
    degree at or closer than ``degree`` (both optional)

    Pairs with undefined phi are dropped.
    """
    records = []
    for (i, j), value in zip(np.asarray(pairs).reshape(-1, 2), phi):
        if np.isnan(value):
            continue
        if threshold is not None and value < threshold:
            continue
        cls = kinship_degree(float(value))
        if degree is not None and cls < degree:
            continue
        records.append(Relatedness(names[int(i)], names[int(j)], float(value), cls))
    return records


def validate_kinship_pairs(records: Sequence[Relatedness]) -> Tuple[bool, List[str]]:
    """Sanity checks on relatedness output

    Returns:
        Tuple of (is_valid, list_of_issues)
    """
    issues = []
    seen = set()
    for r in records:
        if r.sample_a == r.sample_b:
            issues.append(f"Self pair reported for {r.sample_a}")
        key = tuple(sorted((r.sample_a, r.sample_b)))
        if key in seen:
            issues.append(f"Duplicate pair {key}")
        seen.add(key)
        if not np.isfinite(r.phi_bwf):
            issues.append(f"Non-finite phi for {key}")
        elif r.phi_bwf > 0.5 + 1e-9:
            issues.append(f"phi above 0.5 for {key}")
        if kinship_degree(r.phi_bwf) != r.degree:
            issues.append(f"Degree does not match phi for {key}")
    return len(issues) == 0, issues
