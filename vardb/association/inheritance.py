"""
Trio inheritance-pattern filters (de novo, dominant, recessive)
"""

import enum
import numpy as np
from typing import Tuple

from ..utils.data_types import HET, HOM_ALT, HOM_REF

BATCH_ROWS = 50_000


class InheritanceMode(enum.Enum):
    DE_NOVO = 'de_novo'
    HET_DOMINANT = 'het_dominant'
    HOM_RECESSIVE = 'hom_recessive'


def inheritance_mask(mode: InheritanceMode, trio: np.ndarray) -> np.ndarray:
    """Rows of a (rows x 3) genotype block matching the pattern

    Column order of ``trio`` per mode:
        DE_NOVO: proband, parent 1, parent 2
        HET_DOMINANT: affected parent, affected child, unaffected parent
        HOM_RECESSIVE: unaffected parent 1, unaffected parent 2, affected child

    Missing calls never match.
    """
    a, b, c = trio[:, 0], trio[:, 1], trio[:, 2]
    if mode is InheritanceMode.DE_NOVO:
        return ((a == HET) | (a == HOM_ALT)) & (b == HOM_REF) & (c == HOM_REF)
    if mode is InheritanceMode.HET_DOMINANT:
        return (a == HET) & (b == HET) & (c == HOM_REF)
    if mode is InheritanceMode.HOM_RECESSIVE:
        return (a == HET) & (b == HET) & (c == HOM_ALT)
    raise ValueError(f"Unknown inheritance mode: {mode}")


def inheritance_shard(snapshot, mode: InheritanceMode, columns: Tuple[int, int, int], shard,
                      token=None, batch_rows: int = BATCH_ROWS) -> np.ndarray:
    """Global rows of one shard matching the inheritance pattern"""
    parts = []
    for start in range(shard.rows.start, shard.rows.stop, batch_rows):
        if token is not None:
            token.raise_if_cancelled()
        stop = min(start + batch_rows, shard.rows.stop)
        trio = snapshot.genotypes.get_rows(start, stop)[:, list(columns)]
        parts.append(np.flatnonzero(inheritance_mask(mode, trio)) + start)
    if not parts:
        return np.zeros(0, dtype=np.int64)
    return np.concatenate(parts).astype(np.int64)
