"""
Core data structures for vardb package
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .errors import InvalidArgumentError

# Fixed-width genotype cell codes (int8)
HOM_REF = 0
HET = 1
HOM_ALT = 2
MISSING = -9

VALID_CODES = (MISSING, HOM_REF, HET, HOM_ALT)


class Assembly(enum.Enum):
    """Reference assembly of a dataset or request."""

    UNSPECIFIED = 0
    GRCh37 = 1
    GRCh38 = 2

    @classmethod
    def parse(cls, value: Union["Assembly", str, int, None]) -> "Assembly":
        if value is None:
            return cls.UNSPECIFIED
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        token = str(value).strip().lower()
        aliases = {
            '': cls.UNSPECIFIED, 'unspecified': cls.UNSPECIFIED,
            'grch37': cls.GRCh37, 'hg19': cls.GRCh37, 'b37': cls.GRCh37,
            'grch38': cls.GRCh38, 'hg38': cls.GRCh38, 'b38': cls.GRCh38,
        }
        if token not in aliases:
            raise ValueError(f"Unknown assembly: {value}")
        return aliases[token]


class Chromosome(enum.IntEnum):
    """Chromosomes in canonical sort order."""

    CHR_1 = 1
    CHR_2 = 2
    CHR_3 = 3
    CHR_4 = 4
    CHR_5 = 5
    CHR_6 = 6
    CHR_7 = 7
    CHR_8 = 8
    CHR_9 = 9
    CHR_10 = 10
    CHR_11 = 11
    CHR_12 = 12
    CHR_13 = 13
    CHR_14 = 14
    CHR_15 = 15
    CHR_16 = 16
    CHR_17 = 17
    CHR_18 = 18
    CHR_19 = 19
    CHR_20 = 20
    CHR_21 = 21
    CHR_22 = 22
    CHR_X = 23
    CHR_Y = 24
    CHR_MT = 25

    @classmethod
    def parse(cls, value: Union["Chromosome", str, int]) -> "Chromosome":
        """Parse '1', 'chr1', 'X', 'chrX', 'M', 'MT' or an integer code."""
        if isinstance(value, cls):
            return value
        if isinstance(value, (int, np.integer)):
            return cls(int(value))
        token = str(value).strip()
        if token.upper().startswith('CHR_'):
            token = token[4:]
        elif token.lower().startswith('chr'):
            token = token[3:]
        token = token.upper()
        if token in ('M', 'MT'):
            return cls.CHR_MT
        if token == 'X':
            return cls.CHR_X
        if token == 'Y':
            return cls.CHR_Y
        try:
            number = int(token)
        except ValueError:
            raise ValueError(f"Unknown chromosome: {value}")
        if not 1 <= number <= 22:
            raise ValueError(f"Unknown chromosome: {value}")
        return cls(number)

    @property
    def label(self) -> str:
        """Short name as used in VCF files without the 'chr' prefix."""
        if self is Chromosome.CHR_X:
            return 'X'
        if self is Chromosome.CHR_Y:
            return 'Y'
        if self is Chromosome.CHR_MT:
            return 'MT'
        return str(int(self))

    @property
    def is_autosome(self) -> bool:
        return int(self) <= 22


# Pseudo-autosomal regions on chrX (1-based inclusive)
PAR_REGIONS: Dict[Assembly, Tuple[Tuple[int, int], ...]] = {
    Assembly.GRCh37: ((60001, 2699520), (154931044, 155260560)),
    Assembly.GRCh38: ((10001, 2781479), (155701383, 156030895)),
}


def in_par(assembly: Assembly, start: np.ndarray) -> np.ndarray:
    """Boolean mask of chrX positions falling inside a pseudo-autosomal region."""
    start = np.asarray(start)
    mask = np.zeros(start.shape, dtype=bool)
    for lo, hi in PAR_REGIONS.get(assembly, ()):
        mask |= (start >= lo) & (start <= hi)
    return mask


class Sex(enum.Enum):
    UNKNOWN = 0
    MALE = 1
    FEMALE = 2

    @classmethod
    def parse(cls, value) -> "Sex":
        if isinstance(value, cls):
            return value
        if value is None or (isinstance(value, float) and np.isnan(value)):
            return cls.UNKNOWN
        token = str(value).strip().lower()
        if token in ('m', 'male', '1'):
            return cls.MALE
        if token in ('f', 'female', '2'):
            return cls.FEMALE
        return cls.UNKNOWN


class GenotypeClass(enum.Flag):
    """Genotype classes a request selects: hom-alt, het, both or neither."""

    NONE = 0
    HET = 1
    HOM = 2
    ANY = HET | HOM

    @classmethod
    def from_flags(cls, hom: bool, het: bool) -> "GenotypeClass":
        selected = cls.NONE
        if hom:
            selected |= cls.HOM
        if het:
            selected |= cls.HET
        return selected

    @property
    def codes(self) -> Tuple[int, ...]:
        """Genotype cell codes matched by this selection."""
        codes = []
        if self & GenotypeClass.HET:
            codes.append(HET)
        if self & GenotypeClass.HOM:
            codes.append(HOM_ALT)
        return tuple(codes)


class GeneticModel(enum.Enum):
    """Dosage model used when scoring a PRS."""

    ADDITIVE = 'additive'
    DOMINANT = 'dominant'
    RECESSIVE = 'recessive'

    @classmethod
    def from_flags(cls, dominant: bool = False, recessive: bool = False) -> "GeneticModel":
        if dominant and recessive:
            raise InvalidArgumentError("dominant and recessive models are mutually exclusive")
        if dominant:
            return cls.DOMINANT
        if recessive:
            return cls.RECESSIVE
        return cls.ADDITIVE


class KinshipDegree(enum.IntEnum):
    """Relationship classes; a larger value means a closer relationship."""

    UNRELATED = 0
    THIRD_DEGREE = 1
    SECOND_DEGREE = 2
    FIRST_DEGREE = 3
    TWINS_MONOZYGOTIC = 4


class RowRange(NamedTuple):
    """Half-open range [start, stop) of variant rows in a snapshot."""

    start: int
    stop: int

    def __len__(self) -> int:
        return max(self.stop - self.start, 0)


def rows_to_ranges(rows: np.ndarray) -> List[RowRange]:
    """Collapse sorted unique row indices into contiguous ranges."""
    rows = np.asarray(rows, dtype=np.int64)
    if rows.size == 0:
        return []
    breaks = np.where(np.diff(rows) != 1)[0] + 1
    starts = np.concatenate([[0], breaks])
    stops = np.concatenate([breaks, [rows.size]])
    return [RowRange(int(rows[a]), int(rows[b - 1]) + 1) for a, b in zip(starts, stops)]


def ranges_to_rows(ranges: Sequence[RowRange]) -> np.ndarray:
    """Expand ranges back into a sorted array of unique row indices."""
    if not ranges:
        return np.zeros(0, dtype=np.int64)
    rows = np.concatenate([np.arange(r.start, r.stop, dtype=np.int64) for r in ranges])
    return np.unique(rows)


@dataclass(frozen=True)
class AlleleStats:
    """Allele statistics of one variant over a set of samples."""

    ac: int
    an: int
    af: float
    homc: int
    hetc: int
    misc: int
    homfc: int = 0


@dataclass(frozen=True)
class Variant:
    """A variant site with its whole-cohort allele statistics."""

    assembly: Assembly
    chr: Chromosome
    start: int
    end: int
    ref: str
    alt: str
    ac: int = 0
    af: float = 0.0
    an: int = 0
    homc: int = 0
    hetc: int = 0
    misc: int = 0
    homfc: int = 0

    @property
    def identity(self) -> Tuple[Assembly, Chromosome, int, int, str, str]:
        return (self.assembly, self.chr, self.start, self.end, self.ref, self.alt)

    @property
    def label(self) -> str:
        return f"{self.chr.label}:{self.start}-{self.end}:{self.ref}>{self.alt}"


@dataclass(frozen=True)
class VariantWithStats:
    """Variant plus statistics scoped to a virtual cohort or a test."""

    allele: Variant
    vac: int = 0
    vaf: float = 0.0
    van: int = 0
    vhomc: int = 0
    vhetc: int = 0
    vmisc: int = 0
    p_hwe: Optional[float] = None
    p_chi2: Optional[float] = None


@dataclass(frozen=True)
class BeaconResult:
    exists: bool
    ac: int = 0
    af: float = 0.0


@dataclass(frozen=True)
class SampleStat:
    """Per-sample chrX F-statistic."""

    sample: str
    f_stat: float
    n_sites: int = 0


@dataclass(frozen=True)
class Relatedness:
    sample_a: str
    sample_b: str
    phi_bwf: float
    degree: KinshipDegree


@dataclass(frozen=True)
class SampleScore:
    sample: str
    scores_sum: float
    hethom_cardinality: int
    ref_cardinality: int


@dataclass(frozen=True)
class PRSResult:
    prs_cardinality: int
    sample_scores: Tuple[SampleScore, ...] = ()


@dataclass(frozen=True, eq=False)
class PRSDefinition:
    """Polygenic risk score: weighted effect alleles on one assembly.

    Arrays are aligned; other_allele holds '' where the scoring file gives none.
    """

    name: str
    assembly: Assembly
    chr: np.ndarray
    pos: np.ndarray
    effect_allele: np.ndarray
    other_allele: np.ndarray
    weight: np.ndarray

    def __len__(self) -> int:
        return int(self.pos.shape[0])


@dataclass(frozen=True)
class FstatXResult:
    males: Tuple[SampleStat, ...] = ()
    females: Tuple[SampleStat, ...] = ()


@dataclass(frozen=True)
class SexMismatchResult:
    mismatch_males: Tuple[SampleStat, ...] = ()
    mismatch_females: Tuple[SampleStat, ...] = ()


class VariantTable:
    """Variant site table aligned to the rows of a GenotypeMatrix

    Expected columns: [CHROM, START, END, REF, ALT]; CHROM holds Chromosome
    codes (1-25), START/END are 1-based inclusive.
    """

    REQUIRED_COLUMNS = ('CHROM', 'START', 'END', 'REF', 'ALT')

    def __init__(self, data: Union[pd.DataFrame, str, Path]):
        if isinstance(data, (str, Path)):
            self.data = pd.read_csv(data)
        elif isinstance(data, pd.DataFrame):
            self.data = data.copy()
        else:
            raise ValueError("Data must be DataFrame or file path")

        for col in self.REQUIRED_COLUMNS:
            if col not in self.data.columns:
                raise ValueError(f"Missing required column: {col}")

        self.data = self.data.loc[:, list(self.REQUIRED_COLUMNS)].reset_index(drop=True)
        self.data['CHROM'] = [int(Chromosome.parse(c)) for c in self.data['CHROM']]
        self.data['START'] = self.data['START'].astype(np.int64)
        self.data['END'] = self.data['END'].astype(np.int64)
        self.data['REF'] = self.data['REF'].astype(str)
        self.data['ALT'] = self.data['ALT'].astype(str)

        if (self.data['START'] < 1).any():
            raise ValueError("Variant start positions must be >= 1")
        if (self.data['END'] < self.data['START']).any():
            raise ValueError("Variant end must be >= start")

    @property
    def chromosomes(self) -> np.ndarray:
        return self.data['CHROM'].to_numpy(dtype=np.int8)

    @property
    def starts(self) -> np.ndarray:
        return self.data['START'].to_numpy(dtype=np.int64)

    @property
    def ends(self) -> np.ndarray:
        return self.data['END'].to_numpy(dtype=np.int64)

    @property
    def refs(self) -> np.ndarray:
        return self.data['REF'].to_numpy(dtype=object)

    @property
    def alts(self) -> np.ndarray:
        return self.data['ALT'].to_numpy(dtype=object)

    @property
    def n_variants(self) -> int:
        return len(self.data)

    def sort_order(self) -> np.ndarray:
        """Row permutation giving canonical (chrom, start, end, ref, alt) order."""
        ordered = self.data.sort_values(list(self.REQUIRED_COLUMNS), kind='mergesort')
        return ordered.index.to_numpy(dtype=np.int64)

    def duplicated(self) -> np.ndarray:
        return self.data.duplicated(subset=list(self.REQUIRED_COLUMNS)).to_numpy()

    def take(self, order: np.ndarray) -> "VariantTable":
        return VariantTable(self.data.iloc[order].reset_index(drop=True))


class GenotypeMatrix:
    """Fixed-width genotype matrix (variants x samples)

    Each cell is an int8 code: 0 ref/ref, 1 ref/alt, 2 alt/alt (or hemizygous
    alt), -9 missing. Rows are variants, so a contiguous row range is a
    contiguous block of memory. The matrix never changes after construction.
    """

    def __init__(self, data: Union[np.ndarray, str, Path],
                 shape: Optional[Tuple[int, int]] = None,
                 dtype: np.dtype = np.int8):

        if isinstance(data, np.memmap):
            self._data = data
        elif isinstance(data, np.ndarray):
            self._data = np.array(data, dtype=np.int8, copy=True)
        elif isinstance(data, (str, Path)):
            # Memory-mapped file
            if shape is None:
                raise ValueError("Shape required for memory-mapped files")
            self._data = np.memmap(data, dtype=dtype, mode='r', shape=shape)
        else:
            raise ValueError("Data must be array or file path")

        if self._data.ndim != 2:
            raise ValueError("Genotype matrix must be 2D (variants x samples)")
        if self._data.dtype != np.int8:
            raise ValueError(f"Genotype matrix must be int8, got {self._data.dtype}")
        if self._data.flags.writeable:
            self._data.flags.writeable = False

    @property
    def shape(self) -> Tuple[int, int]:
        """Matrix shape (n_variants, n_samples)"""
        return self._data.shape

    @property
    def n_variants(self) -> int:
        return self.shape[0]

    @property
    def n_samples(self) -> int:
        return self.shape[1]

    def __getitem__(self, key):
        """Support array indexing"""
        return self._data[key]

    def get_row(self, row_idx: int) -> np.ndarray:
        """Get genotypes for a specific variant row"""
        return self._data[row_idx, :]

    def get_rows(self, row_start: int, row_end: int) -> np.ndarray:
        """Get a contiguous block of variant rows"""
        return self._data[row_start:row_end, :]

    def take_rows(self, rows: Union[np.ndarray, list]) -> np.ndarray:
        """Get arbitrary variant rows (copy)."""
        return self._data[np.asarray(rows, dtype=np.int64), :]

    def columns_for(self, columns: Union[np.ndarray, list],
                    rows: Optional[Union[np.ndarray, list]] = None) -> np.ndarray:
        """Get the sample columns of all rows, or of the given rows (copy)."""
        cols = np.asarray(columns, dtype=np.int64)
        if rows is None:
            return self._data[:, cols]
        return self._data[np.ix_(np.asarray(rows, dtype=np.int64), cols)]

    def validate_codes(self, batch_size: int = 10_000) -> None:
        """Raise ValueError when a cell holds a code outside {-9, 0, 1, 2}."""
        for start in range(0, self.n_variants, batch_size):
            batch = self.get_rows(start, min(start + batch_size, self.n_variants))
            bad = ~np.isin(batch, VALID_CODES)
            if bad.any():
                row, col = np.argwhere(bad)[0]
                raise ValueError(
                    f"Invalid genotype code {int(batch[row, col])} at row {start + row}, column {col}"
                )

    def to_numpy(self) -> np.ndarray:
        """Convert to numpy array"""
        return np.array(self._data, copy=True)
