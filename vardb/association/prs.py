"""
Polygenic risk scores over stored genotypes
"""

import numpy as np
import pandas as pd
from typing import List, Optional, Tuple

from ..utils.data_types import (
    GeneticModel,
    HET,
    HOM_ALT,
    HOM_REF,
    MISSING,
    PRSDefinition,
    PRSResult,
    SampleScore,
)

BATCH_ROWS = 10_000


def match_prs_variants(snapshot, definition: PRSDefinition) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Snapshot rows carrying the definition's effect alleles

    A definition entry matches a row on chromosome and position == start,
    then on alleles in one of two orientations:

    * refalt: effect allele == ALT, and REF == other allele when one is given
    * altref: effect allele == REF and other allele == ALT; the effect allele
      is the reference one, so the row is scored with a flipped dosage

    An entry with a refalt match is not also matched altref.

    Returns:
        Tuple of (rows, weights, flipped), one entry per match, in row order
    """
    if len(definition) == 0 or snapshot.n_variants == 0:
        return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.float64), np.zeros(0, dtype=bool)
    table = pd.DataFrame({
        'chr': snapshot.chroms.astype(np.int64),
        'pos': snapshot.starts,
        'alt': [a.upper() for a in snapshot.alts],
        'ref': [r.upper() for r in snapshot.refs],
        'row': np.arange(snapshot.n_variants, dtype=np.int64),
    })
    entries = pd.DataFrame({
        'entry': np.arange(len(definition), dtype=np.int64),
        'chr': np.asarray(definition.chr, dtype=np.int64),
        'pos': np.asarray(definition.pos, dtype=np.int64),
        'effect_allele': definition.effect_allele,
        'other_allele': definition.other_allele,
        'weight': np.asarray(definition.weight, dtype=np.float64),
    })

    refalt = entries.merge(table, left_on=['chr', 'pos', 'effect_allele'],
                           right_on=['chr', 'pos', 'alt'], how='inner')
    refalt = refalt[(refalt['other_allele'] == '') | (refalt['other_allele'] == refalt['ref'])]
    refalt = refalt.assign(flipped=False)

    altref = entries[entries['other_allele'] != ''].merge(
        table, left_on=['chr', 'pos', 'effect_allele', 'other_allele'],
        right_on=['chr', 'pos', 'ref', 'alt'], how='inner')
    altref = altref[~altref['entry'].isin(refalt['entry'])].assign(flipped=True)

    merged = pd.concat([refalt, altref], ignore_index=True)
    merged = merged.sort_values(['row', 'entry'], kind='mergesort')
    return (
        merged['row'].to_numpy(dtype=np.int64),
        merged['weight'].to_numpy(dtype=np.float64),
        merged['flipped'].to_numpy(dtype=bool),
    )


def dosage(genotypes: np.ndarray, model: GeneticModel, flipped: Optional[np.ndarray] = None) -> np.ndarray:
    """Effect-allele dosage under a genetic model; missing calls give 0

    ``flipped`` marks the rows (first axis) whose effect allele is REF; their
    called genotypes count reference alleles instead (``2 - g``).
    """
    g = np.asarray(genotypes)
    if flipped is not None:
        flip = np.asarray(flipped, dtype=bool)[:, None]
        g = np.where(flip & (g != MISSING), HOM_ALT - g, g)
    if model is GeneticModel.ADDITIVE:
        return np.where((g == HET) | (g == HOM_ALT), g, 0).astype(np.float64)
    if model is GeneticModel.DOMINANT:
        return ((g == HET) | (g == HOM_ALT)).astype(np.float64)
    if model is GeneticModel.RECESSIVE:
        return (g == HOM_ALT).astype(np.float64)
    raise ValueError(f"Unknown genetic model: {model}")


def score_prs(snapshot, definition: PRSDefinition, columns: np.ndarray,
              model: GeneticModel, batch_rows: int = BATCH_ROWS) -> PRSResult:
    """Score the samples of ``columns`` against a PRS definition

    Returns:
        PRSResult whose cardinality is the number of definition entries
        present in the snapshot; one SampleScore per column in column order
    """
    rows, weights, flipped = match_prs_variants(snapshot, definition)
    columns = np.asarray(columns, dtype=np.int64)
    if columns.size == 0:
        return PRSResult(prs_cardinality=int(rows.size), sample_scores=())

    scores = np.zeros(columns.size, dtype=np.float64)
    hethom = np.zeros(columns.size, dtype=np.int64)
    ref = np.zeros(columns.size, dtype=np.int64)
    for start in range(0, rows.size, batch_rows):
        batch = rows[start:start + batch_rows]
        block = snapshot.genotypes.columns_for(columns, batch)
        scores += weights[start:start + batch_rows] @ dosage(block, model, flipped[start:start + batch_rows])
        hethom += ((block == HET) | (block == HOM_ALT)).sum(axis=0)
        ref += (block == HOM_REF).sum(axis=0)

    names = [snapshot.samples[int(c)] for c in columns]
    sample_scores: List[SampleScore] = [
        SampleScore(name, float(s), int(h), int(r)) for name, s, h, r in zip(names, scores, hethom, ref)
    ]
    return PRSResult(prs_cardinality=int(rows.size), sample_scores=tuple(sample_scores))
