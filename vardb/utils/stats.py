"""
Statistical utilities for variant allele counts and genotype tests
"""

import numpy as np
import numba
from typing import Dict, List, Optional, Tuple
from scipy import stats

from .data_types import AlleleStats, HET, HOM_ALT, HOM_REF, MISSING

COUNT_FIELDS = ('ac', 'an', 'af', 'homc', 'hetc', 'misc', 'homfc')


def allele_counts(
    genotypes: np.ndarray,
    *,
    is_male: Optional[np.ndarray] = None,
    is_female: Optional[np.ndarray] = None,
    haploid_rows: Optional[np.ndarray] = None,
    chrx_rows: Optional[np.ndarray] = None,
) -> Dict[str, np.ndarray]:
    """Calculate allele statistics for every row of a genotype block (vectorized)

    Args:
        genotypes: Genotype block (variants × samples), int8 codes
        is_male: Boolean mask over columns marking declared males
        is_female: Boolean mask over columns marking declared females
        haploid_rows: Boolean mask over rows where males are hemizygous
            (chrX outside the pseudo-autosomal regions)
        chrx_rows: Boolean mask over rows on chrX; HOMFC is counted there only

    Returns:
        Dictionary of per-row arrays keyed by ac, an, af, homc, hetc, misc, homfc
    """
    g = np.asarray(genotypes)
    n_rows, n_cols = g.shape

    het = g == HET
    hom = g == HOM_ALT
    miss = g == MISSING
    called = ~miss

    ac = het.sum(axis=1, dtype=np.int64) + 2 * hom.sum(axis=1, dtype=np.int64)
    an = 2 * called.sum(axis=1, dtype=np.int64)
    homc = hom.sum(axis=1, dtype=np.int64)
    hetc = het.sum(axis=1, dtype=np.int64)
    misc = miss.sum(axis=1, dtype=np.int64)

    if is_male is not None and haploid_rows is not None:
        is_male = np.asarray(is_male, dtype=bool)
        haploid_rows = np.asarray(haploid_rows, dtype=bool)
        if is_male.any() and haploid_rows.any():
            # Hemizygous cells: one allele copy, any alt call counts as hom-alt
            sub = g[np.ix_(haploid_rows, is_male)]
            sub_het = (sub == HET).sum(axis=1, dtype=np.int64)
            sub_hom = (sub == HOM_ALT).sum(axis=1, dtype=np.int64)
            sub_called = (sub != MISSING).sum(axis=1, dtype=np.int64)
            ac[haploid_rows] -= sub_hom
            an[haploid_rows] -= sub_called
            homc[haploid_rows] += sub_het
            hetc[haploid_rows] -= sub_het

    homfc = np.zeros(n_rows, dtype=np.int64)
    if is_female is not None and chrx_rows is not None:
        is_female = np.asarray(is_female, dtype=bool)
        chrx_rows = np.asarray(chrx_rows, dtype=bool)
        if is_female.any() and chrx_rows.any():
            homfc[chrx_rows] = (g[np.ix_(chrx_rows, is_female)] == HOM_ALT).sum(axis=1, dtype=np.int64)

    af = np.zeros(n_rows, dtype=np.float64)
    nonzero = an > 0
    af[nonzero] = ac[nonzero] / an[nonzero]

    return {'ac': ac, 'an': an, 'af': af, 'homc': homc, 'hetc': hetc, 'misc': misc, 'homfc': homfc}


def counts_to_allele_stats(counts: Dict[str, np.ndarray]) -> List[AlleleStats]:
    """Convert the arrays returned by allele_counts into AlleleStats records"""
    return [
        AlleleStats(ac=int(ac), an=int(an), af=float(af), homc=int(homc),
                    hetc=int(hetc), misc=int(misc), homfc=int(homfc))
        for ac, an, af, homc, hetc, misc, homfc in zip(*(counts[k] for k in COUNT_FIELDS))
    ]


def genotype_class_counts(genotypes: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Count hom-ref, het and hom-alt calls per row

    Returns:
        Tuple of (n_hom_ref, n_het, n_hom_alt) int64 arrays
    """
    g = np.asarray(genotypes)
    return (
        (g == HOM_REF).sum(axis=1, dtype=np.int64),
        (g == HET).sum(axis=1, dtype=np.int64),
        (g == HOM_ALT).sum(axis=1, dtype=np.int64),
    )


@numba.jit(nopython=True, cache=True, nogil=True)
def hwe_exact_jit(obs_hets, obs_hom1, obs_hom2):
    """Exact test of Hardy-Weinberg equilibrium (Wigginton et al. 2005)."""
    if obs_hets < 0 or obs_hom1 < 0 or obs_hom2 < 0:
        return np.nan

    obs_homc = max(obs_hom1, obs_hom2)
    obs_homr = min(obs_hom1, obs_hom2)
    rare_copies = 2 * obs_homr + obs_hets
    n_genotypes = obs_hets + obs_homc + obs_homr
    if n_genotypes == 0:
        return 1.0

    het_probs = np.zeros(rare_copies + 1)

    # Start at the most likely het count, matching the parity of rare_copies
    mid = (rare_copies * (2 * n_genotypes - rare_copies)) // (2 * n_genotypes)
    if (rare_copies % 2) != (mid % 2):
        mid += 1

    curr_hets = mid
    curr_homr = (rare_copies - mid) // 2
    curr_homc = n_genotypes - curr_hets - curr_homr
    het_probs[mid] = 1.0
    total = 1.0

    while curr_hets >= 2:
        het_probs[curr_hets - 2] = (het_probs[curr_hets] * curr_hets * (curr_hets - 1.0)
                                    / (4.0 * (curr_homr + 1.0) * (curr_homc + 1.0)))
        total += het_probs[curr_hets - 2]
        curr_homr += 1
        curr_homc += 1
        curr_hets -= 2

    curr_hets = mid
    curr_homr = (rare_copies - mid) // 2
    curr_homc = n_genotypes - curr_hets - curr_homr
    while curr_hets <= rare_copies - 2:
        het_probs[curr_hets + 2] = (het_probs[curr_hets] * 4.0 * curr_homr * curr_homc
                                    / ((curr_hets + 2.0) * (curr_hets + 1.0)))
        total += het_probs[curr_hets + 2]
        curr_homr -= 1
        curr_homc -= 1
        curr_hets += 2

    for i in range(rare_copies + 1):
        het_probs[i] /= total

    observed = het_probs[obs_hets] * (1.0 + 1e-8)
    p_hwe = 0.0
    for i in range(rare_copies + 1):
        if het_probs[i] <= observed:
            p_hwe += het_probs[i]

    return min(1.0, p_hwe)


@numba.jit(nopython=True, cache=True, nogil=True)
def _hwe_batch_jit(hets, hom_ref, hom_alt):
    n = hets.shape[0]
    out = np.empty(n)
    for i in range(n):
        out[i] = hwe_exact_jit(hets[i], hom_ref[i], hom_alt[i])
    return out


def hwe_exact_pvalues(n_het: np.ndarray, n_hom_ref: np.ndarray, n_hom_alt: np.ndarray) -> np.ndarray:
    """Hardy-Weinberg exact test p-values for arrays of genotype counts

    Args:
        n_het: Heterozygous counts per variant
        n_hom_ref: Homozygous reference counts per variant
        n_hom_alt: Homozygous alternate counts per variant

    Returns:
        Array of p-values in [0, 1]
    """
    hets = np.ascontiguousarray(n_het, dtype=np.int64)
    hom_ref = np.ascontiguousarray(n_hom_ref, dtype=np.int64)
    hom_alt = np.ascontiguousarray(n_hom_alt, dtype=np.int64)
    if not (hets.shape == hom_ref.shape == hom_alt.shape):
        raise ValueError("Genotype count arrays must have the same length")
    if hets.size == 0:
        return np.zeros(0, dtype=np.float64)
    return _hwe_batch_jit(hets, hom_ref, hom_alt)


def genotype_chi2_pvalues(
    n_hom_ref: np.ndarray,
    n_het: np.ndarray,
    n_hom_alt: np.ndarray,
    cohort_af: np.ndarray,
) -> np.ndarray:
    """Pearson chi-squared test of subset genotype counts against HWE expectation

    Expected counts are derived from the whole-cohort alt allele frequency, so
    the test asks whether the subset's genotype distribution departs from the
    population. Degrees of freedom = 2.

    Returns:
        Array of p-values; NaN where the test is undefined (monomorphic cohort
        frequency or no called genotypes in the subset)
    """
    obs = np.column_stack([
        np.asarray(n_hom_ref, dtype=np.float64),
        np.asarray(n_het, dtype=np.float64),
        np.asarray(n_hom_alt, dtype=np.float64),
    ])
    p = np.asarray(cohort_af, dtype=np.float64)
    n = obs.sum(axis=1)
    pvalues = np.full(p.shape[0], np.nan)

    valid = (n > 0) & (p > 0.0) & (p < 1.0)
    if not valid.any():
        return pvalues

    q = 1.0 - p[valid]
    pv = p[valid]
    expected = n[valid, None] * np.column_stack([q * q, 2.0 * pv * q, pv * pv])
    statistic = ((obs[valid] - expected) ** 2 / expected).sum(axis=1)
    pvalues[valid] = stats.chi2.sf(statistic, df=2)
    return pvalues
