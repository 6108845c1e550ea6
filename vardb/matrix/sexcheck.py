"""
chrX inbreeding coefficient (F-statistic) and declared-sex checks
"""

import numpy as np
from typing import List, Sequence, Tuple

from ..utils.data_types import HOM_ALT, HOM_REF, MISSING, SampleStat, Sex


def fstat_x(genotypes: np.ndarray, af: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Per-sample F over chrX sites

    For each sample, over the sites where it is called:
    ``F = (O_hom - E_hom) / (N - E_hom)`` with ``E_hom = sum(1 - 2pq)``.
    The diploid genotype codes are used as stored, so a hemizygous male call
    (coded 0 or 2) counts as homozygous.

    Args:
        genotypes: Block of sites x samples (int8), already restricted to the
            polymorphic non-PAR chrX sites to test
        af: Whole-cohort alt allele frequency of each site

    Returns:
        Tuple of (F per sample, number of sites used per sample); F is NaN
        where N == E_hom
    """
    g = np.asarray(genotypes)
    p = np.asarray(af, dtype=np.float64)
    called = g != MISSING
    hom = (g == HOM_REF) | (g == HOM_ALT)
    e_site = 1.0 - 2.0 * p * (1.0 - p)

    n = called.sum(axis=0).astype(np.float64)
    o_hom = hom.sum(axis=0).astype(np.float64)
    e_hom = (called * e_site[:, None]).sum(axis=0)

    denom = n - e_hom
    f = np.full(g.shape[1], np.nan)
    ok = denom > 0
    f[ok] = (o_hom[ok] - e_hom[ok]) / denom[ok]
    return f, n.astype(np.int64)


def split_by_sex(names: Sequence[str], sexes: Sequence[Sex], f: np.ndarray,
                 n_sites: np.ndarray) -> Tuple[List[SampleStat], List[SampleStat]]:
    """Group per-sample F records into declared males and females

    Samples of unknown sex or with undefined F are left out.
    """
    males, females = [], []
    for name, sex, value, n in zip(names, sexes, f, n_sites):
        if np.isnan(value):
            continue
        record = SampleStat(name, float(value), int(n))
        if sex is Sex.MALE:
            males.append(record)
        elif sex is Sex.FEMALE:
            females.append(record)
    return males, females


def sex_mismatches(males: Sequence[SampleStat], females: Sequence[SampleStat],
                   female_threshold: float, male_threshold: float) -> Tuple[List[SampleStat], List[SampleStat]]:
    """Declared males with F below male_threshold and declared females with
    F above female_threshold"""
    mismatch_males = [s for s in males if s.f_stat < male_threshold]
    mismatch_females = [s for s in females if s.f_stat > female_threshold]
    return mismatch_males, mismatch_females
