"""
Immutable per-assembly dataset snapshots and the store that hands them out
"""

import threading
import warnings
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..utils.data_types import (
    Assembly,
    Chromosome,
    GenotypeMatrix,
    PRSDefinition,
    Sex,
    Variant,
    VariantTable,
    in_par,
)
from ..utils.stats import COUNT_FIELDS, allele_counts
from .cohorts import CohortRegistry
from .region_index import RegionIndex

STATS_BATCH_ROWS = 10_000


def _read_only(arr: np.ndarray) -> np.ndarray:
    arr = np.ascontiguousarray(arr)
    arr.flags.writeable = False
    return arr


class DatasetSnapshot:
    """One assembly's variants, genotypes and sample metadata, frozen at load time.

    Rows are in canonical (chromosome, start, end, ref, alt) order. Whole-cohort
    allele statistics are computed once here and reused by every query.

    Attributes:
        assembly: Reference assembly
        variants: VariantTable aligned to the genotype rows
        genotypes: GenotypeMatrix (n_variants x n_samples)
        samples: Sample names in column order
        sexes: Declared sex per column
        cohorts: CohortRegistry for the samples
        index: RegionIndex over the rows
        prs: PRS definitions scored against this assembly, by name
    """

    def __init__(self, assembly: Assembly, variants: VariantTable, genotypes: GenotypeMatrix,
                 samples: Sequence[str], sexes: Sequence[Sex], cohorts: CohortRegistry,
                 gene_table: Optional[pd.DataFrame] = None,
                 panels: Optional[Mapping[str, Sequence[str]]] = None,
                 prs: Optional[Mapping[str, PRSDefinition]] = None):
        self.assembly = assembly
        self.variants = variants
        self.genotypes = genotypes
        self.samples = tuple(samples)
        self.sexes = tuple(sexes)
        self.cohorts = cohorts
        self.gene_table = gene_table
        self.prs = dict(prs or {})

        self.chroms = _read_only(variants.chromosomes)
        self.starts = _read_only(variants.starts)
        self.ends = _read_only(variants.ends)
        self.refs = _read_only(variants.refs)
        self.alts = _read_only(variants.alts)

        sex_codes = np.array([s.value for s in self.sexes], dtype=np.int8)
        self.is_male = _read_only(sex_codes == Sex.MALE.value)
        self.is_female = _read_only(sex_codes == Sex.FEMALE.value)
        self.chrx_rows = _read_only(self.chroms == int(Chromosome.CHR_X))
        self.haploid_rows = _read_only(self.chrx_rows & ~in_par(assembly, self.starts))
        self.autosomal_rows = _read_only(self.chroms <= 22)
        # Rows where every sample is diploid (autosomes and chrX PAR)
        self.diploid_rows = _read_only(self.autosomal_rows | (self.chrx_rows & ~self.haploid_rows))

        self.index = RegionIndex(self.chroms, self.starts, self.ends, gene_table, panels)
        self.stats = self._compute_stats()

    def _compute_stats(self) -> Dict[str, np.ndarray]:
        n = self.n_variants
        out = {k: np.zeros(n, dtype=np.float64 if k == 'af' else np.int64) for k in COUNT_FIELDS}
        for start in range(0, n, STATS_BATCH_ROWS):
            stop = min(start + STATS_BATCH_ROWS, n)
            counts = allele_counts(
                self.genotypes.get_rows(start, stop),
                is_male=self.is_male,
                is_female=self.is_female,
                haploid_rows=self.haploid_rows[start:stop],
                chrx_rows=self.chrx_rows[start:stop],
            )
            for key in COUNT_FIELDS:
                out[key][start:stop] = counts[key]
        return {k: _read_only(v) for k, v in out.items()}

    @property
    def n_variants(self) -> int:
        return self.genotypes.n_variants

    @property
    def n_samples(self) -> int:
        return self.genotypes.n_samples

    @property
    def panels(self) -> Dict[str, List[str]]:
        return self.index.panels

    def variant(self, row: int) -> Variant:
        """Variant record for one row with whole-cohort statistics"""
        return Variant(
            assembly=self.assembly,
            chr=Chromosome(int(self.chroms[row])),
            start=int(self.starts[row]),
            end=int(self.ends[row]),
            ref=str(self.refs[row]),
            alt=str(self.alts[row]),
            ac=int(self.stats['ac'][row]),
            af=float(self.stats['af'][row]),
            an=int(self.stats['an'][row]),
            homc=int(self.stats['homc'][row]),
            hetc=int(self.stats['hetc'][row]),
            misc=int(self.stats['misc'][row]),
            homfc=int(self.stats['homfc'][row]),
        )

    @classmethod
    def build(cls, assembly: Union[Assembly, str],
              variants: Union[VariantTable, pd.DataFrame],
              genotypes: Union[np.ndarray, GenotypeMatrix],
              samples: Sequence[str],
              sample_sheet: Optional[pd.DataFrame] = None,
              gene_table: Optional[pd.DataFrame] = None,
              panels: Optional[Mapping[str, Sequence[str]]] = None,
              prs: Optional[Sequence[PRSDefinition]] = None,
              validate: bool = True) -> "DatasetSnapshot":
        """Validate inputs, sort rows canonically and build a snapshot

        Args:
            assembly: GRCh37 or GRCh38
            variants: Variant table (CHROM, START, END, REF, ALT)
            genotypes: int8 matrix (n_variants x n_samples)
            samples: Sample names in column order
            sample_sheet: Output of load_sample_sheet (sex, cohorts)
            gene_table: Output of load_gene_table for this assembly
            panels: Panel name -> gene symbols
            prs: PRS definitions; those for another assembly are ignored
            validate: Check every genotype code

        Raises:
            ValueError: On shape mismatches, duplicate samples or variants,
                invalid genotype codes or an unspecified assembly
        """
        assembly = Assembly.parse(assembly)
        if assembly is Assembly.UNSPECIFIED:
            raise ValueError("A dataset must be loaded for a concrete assembly")
        table = variants if isinstance(variants, VariantTable) else VariantTable(variants)
        raw = genotypes.to_numpy() if isinstance(genotypes, GenotypeMatrix) else np.asarray(genotypes)
        if raw.ndim != 2:
            raise ValueError("Genotype matrix must be 2D (variants x samples)")
        if raw.shape[0] != table.n_variants:
            raise ValueError(
                f"Genotype rows ({raw.shape[0]}) do not match variant count ({table.n_variants})"
            )
        samples = [str(s) for s in samples]
        if raw.shape[1] != len(samples):
            raise ValueError(f"Genotype columns ({raw.shape[1]}) do not match sample count ({len(samples)})")
        if len(set(samples)) != len(samples):
            raise ValueError("Sample names must be unique")

        order = table.sort_order()
        if not np.array_equal(order, np.arange(order.size)):
            table = table.take(order)
            raw = raw[order]
        if table.duplicated().any():
            first = table.data.loc[table.duplicated()].iloc[0].tolist()
            raise ValueError(f"Duplicate variant identity in load: {first}")

        matrix = GenotypeMatrix(raw)
        if validate:
            matrix.validate_codes()

        sexes = [Sex.UNKNOWN] * len(samples)
        if sample_sheet is not None:
            sex_by_name = dict(zip(sample_sheet['sample'], sample_sheet['sex']))
            sexes = [Sex.parse(sex_by_name.get(s)) for s in samples]
            unknown = set(sample_sheet['sample']) - set(samples)
            if unknown:
                warnings.warn(f"{len(unknown)} samples in the sample sheet are absent from the genotype matrix")

        if panels and gene_table is not None:
            missing = sorted({g for genes in panels.values() for g in genes} - set(gene_table['symbol']))
            if missing:
                warnings.warn(f"{len(missing)} panel genes are absent from the gene table: {', '.join(missing)}")

        definitions = {}
        for definition in prs or ():
            if definition.assembly in (assembly, Assembly.UNSPECIFIED):
                definitions[definition.name] = definition

        return cls(
            assembly=assembly,
            variants=table,
            genotypes=matrix,
            samples=samples,
            sexes=sexes,
            cohorts=CohortRegistry.from_sample_sheet(samples, sample_sheet),
            gene_table=gene_table,
            panels=panels,
            prs=definitions,
        )


class GenotypeStore:
    """Holds the current snapshot of each loaded assembly.

    Loading an assembly again swaps in a new snapshot; queries that already
    hold the old one keep reading it.
    """

    def __init__(self):
        self._snapshots: Dict[Assembly, DatasetSnapshot] = {}
        self._primary: Optional[Assembly] = None
        self._lock = threading.Lock()

    def load(self, assembly, variants, genotypes, samples, **kwargs) -> DatasetSnapshot:
        """Build a snapshot (see DatasetSnapshot.build) and install it"""
        snapshot = DatasetSnapshot.build(assembly, variants, genotypes, samples, **kwargs)
        self.install(snapshot)
        return snapshot

    def install(self, snapshot: DatasetSnapshot) -> None:
        with self._lock:
            self._snapshots[snapshot.assembly] = snapshot
            if self._primary is None:
                self._primary = snapshot.assembly

    def snapshot(self, assembly: Optional[Union[Assembly, str]]) -> Optional[DatasetSnapshot]:
        """Current snapshot for an assembly; None selects the primary assembly"""
        if assembly is None:
            assembly = self._primary
            if assembly is None:
                return None
        assembly = Assembly.parse(assembly)
        with self._lock:
            return self._snapshots.get(assembly)

    @property
    def assemblies(self) -> List[Assembly]:
        with self._lock:
            return list(self._snapshots)

    @property
    def primary_assembly(self) -> Optional[Assembly]:
        return self._primary
