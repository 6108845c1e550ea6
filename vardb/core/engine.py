"""
Query engine: the read-only operations exposed over loaded datasets.

Streams are generators of batches (lists) of at most ``batch_size`` records
and always yield at least one batch, which may be empty. Arguments are checked
when the operation is called, before any batch is produced.
"""

import time
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar, Union

import numpy as np

from ..association.chi2 import chi2_shard
from ..association.hwe import hwe_shard
from ..association.inheritance import InheritanceMode, inheritance_shard
from ..association.prs import score_prs
from ..data.cohorts import restrict
from ..data.store import DatasetSnapshot, GenotypeStore
from ..matrix.kinship import king_kinship_pairs, relatedness_records, sample_pairs
from ..matrix.sexcheck import fstat_x as compute_fstat_x
from ..matrix.sexcheck import sex_mismatches, split_by_sex
from ..utils.config import EngineConfig
from ..utils.data_types import (
    Assembly,
    BeaconResult,
    Chromosome,
    FstatXResult,
    GeneticModel,
    GenotypeClass,
    KinshipDegree,
    PRSResult,
    Relatedness,
    RowRange,
    SexMismatchResult,
    Variant,
    VariantWithStats,
    ranges_to_rows,
)
from ..utils.errors import InvalidArgumentError
from ..utils.stats import allele_counts, counts_to_allele_stats
from .scheduler import CancellationToken, Scheduler, chunk_units, make_shards

T = TypeVar('T')

AssemblyLike = Union[Assembly, str, None]


def batched(records: Iterable[T], batch_size: int) -> Iterator[List[T]]:
    """Group records into lists of at most batch_size; yields at least one list"""
    batch: List[T] = []
    emitted = False
    for record in records:
        batch.append(record)
        if len(batch) >= batch_size:
            yield batch
            emitted = True
            batch = []
    if batch or not emitted:
        yield batch


def _parse_chrom(chr) -> Chromosome:
    try:
        return Chromosome.parse(chr)
    except ValueError as e:
        raise InvalidArgumentError(str(e)) from e


def _allele_filter(snapshot: DatasetSnapshot, rows: np.ndarray,
                   ref: Optional[str], alt: Optional[str]) -> np.ndarray:
    if ref:
        rows = rows[np.array([r.upper() == ref.upper() for r in snapshot.refs[rows]], dtype=bool)]
    if alt:
        rows = rows[np.array([a.upper() == alt.upper() for a in snapshot.alts[rows]], dtype=bool)]
    return rows


class QueryEngine:
    """Answers queries against the snapshots held by a GenotypeStore.

    Region operations are scoped by ``assembly`` (default UNSPECIFIED, which
    matches no dataset). Whole-dataset operations accept ``assembly=None`` for
    the primary (first loaded) assembly.

    Args:
        store: GenotypeStore with loaded datasets
        config: Engine defaults (workers, shard size, batch size, thresholds)
    """

    def __init__(self, store: GenotypeStore, config: Optional[EngineConfig] = None):
        self.store = store
        self.config = config or EngineConfig()

    def log(self, message: str):
        if self.config.verbose:
            print(message)

    def _scheduler(self) -> Scheduler:
        return Scheduler(workers=self.config.effective_workers, verbose=self.config.verbose)

    def _region_snapshot(self, assembly: AssemblyLike) -> Optional[DatasetSnapshot]:
        try:
            assembly = Assembly.parse(assembly)
        except ValueError as e:
            raise InvalidArgumentError(str(e)) from e
        if assembly is Assembly.UNSPECIFIED:
            return None
        return self.store.snapshot(assembly)

    def _dataset_snapshot(self, assembly: AssemblyLike) -> Optional[DatasetSnapshot]:
        if assembly is None:
            return self.store.snapshot(None)
        return self._region_snapshot(assembly)

    # ------------------------------------------------------------------
    # Point and region lookups
    # ------------------------------------------------------------------

    def beacon(self, chr, pos: int, alt: str, ref: Optional[str] = None,
               assembly: AssemblyLike = Assembly.UNSPECIFIED) -> BeaconResult:
        """Does any sample carry ``alt`` at chr:pos?"""
        if pos < 1:
            raise InvalidArgumentError(f"Position must be >= 1, got {pos}")
        chrom = _parse_chrom(chr)
        snapshot = self._region_snapshot(assembly)
        if snapshot is None:
            return BeaconResult(False)
        rows = ranges_to_rows(snapshot.index.resolve(chrom, pos, pos))
        rows = rows[snapshot.starts[rows] == pos]
        rows = _allele_filter(snapshot, rows, ref, alt)
        carried = rows[snapshot.stats['ac'][rows] > 0]
        if carried.size == 0:
            return BeaconResult(False)
        row = int(carried[0])
        return BeaconResult(True, int(snapshot.stats['ac'][row]), float(snapshot.stats['af'][row]))

    def _selected_rows(self, snapshot: DatasetSnapshot, rows: np.ndarray,
                       columns: np.ndarray, genotype_class: GenotypeClass):
        if genotype_class is GenotypeClass.NONE or columns.size == 0 or rows.size == 0:
            return
        for restricted in restrict(snapshot, rows, columns, genotype_class):
            if restricted.samples:
                yield restricted

    def _variant_stream(self, snapshot: Optional[DatasetSnapshot], ranges: Sequence[RowRange],
                        hom: bool, het: bool, ref: Optional[str], alt: Optional[str],
                        virtual: bool = False, samples: Optional[Sequence[str]] = None,
                        cohort_name: Optional[str] = None,
                        with_stats: bool = False) -> Iterator[list]:
        genotype_class = GenotypeClass.from_flags(hom, het)

        def records():
            if snapshot is None:
                return
            rows = _allele_filter(snapshot, ranges_to_rows(ranges), ref, alt)
            if virtual:
                columns = snapshot.cohorts.resolve(samples, cohort_name)
            else:
                columns = snapshot.cohorts.all_columns
            for restricted in self._selected_rows(snapshot, rows, columns, genotype_class):
                variant = snapshot.variant(restricted.row)
                if not with_stats:
                    yield variant
                    continue
                stat = restricted.stats
                yield VariantWithStats(
                    allele=variant, vac=stat.ac, vaf=stat.af, van=stat.an,
                    vhomc=stat.homc, vhetc=stat.hetc, vmisc=stat.misc,
                )

        return batched(records(), self.config.batch_size)

    def _resolve_region(self, snapshot, chr, start, end) -> List[RowRange]:
        if start < 1 or end < start:
            raise InvalidArgumentError(f"Invalid region bounds {start}-{end}")
        chrom = _parse_chrom(chr)
        if snapshot is None:
            return []
        return snapshot.index.resolve(chrom, start, end)

    def _resolve_regions(self, snapshot, chrs, starts, ends) -> List[RowRange]:
        if not (len(chrs) == len(starts) == len(ends)):
            raise InvalidArgumentError("chr, start and end arrays must have equal lengths")
        for start, end in zip(starts, ends):
            if start < 1 or end < start:
                raise InvalidArgumentError(f"Invalid region bounds {start}-{end}")
        chroms = [_parse_chrom(c) for c in chrs]
        if snapshot is None:
            return []
        return snapshot.index.resolve_multi(chroms, starts, ends)

    def select_variants_in_region(self, chr, start: int, end: int, hom: bool = True, het: bool = True,
                                  ref: Optional[str] = None, alt: Optional[str] = None,
                                  assembly: AssemblyLike = Assembly.UNSPECIFIED) -> Iterator[List[Variant]]:
        snapshot = self._region_snapshot(assembly)
        ranges = self._resolve_region(snapshot, chr, start, end)
        return self._variant_stream(snapshot, ranges, hom, het, ref, alt)

    def select_variants_in_region_in_virtual_cohort(
            self, chr, start: int, end: int, hom: bool = True, het: bool = True,
            ref: Optional[str] = None, alt: Optional[str] = None,
            samples: Optional[Sequence[str]] = None, cohort_name: Optional[str] = None,
            assembly: AssemblyLike = Assembly.UNSPECIFIED) -> Iterator[List[Variant]]:
        snapshot = self._region_snapshot(assembly)
        ranges = self._resolve_region(snapshot, chr, start, end)
        return self._variant_stream(snapshot, ranges, hom, het, ref, alt, True, samples, cohort_name)

    def select_variants_in_region_in_virtual_cohort_with_stats(
            self, chr, start: int, end: int, hom: bool = True, het: bool = True,
            ref: Optional[str] = None, alt: Optional[str] = None,
            samples: Optional[Sequence[str]] = None, cohort_name: Optional[str] = None,
            assembly: AssemblyLike = Assembly.UNSPECIFIED) -> Iterator[List[VariantWithStats]]:
        snapshot = self._region_snapshot(assembly)
        ranges = self._resolve_region(snapshot, chr, start, end)
        return self._variant_stream(snapshot, ranges, hom, het, ref, alt, True, samples, cohort_name,
                                   with_stats=True)

    def select_variants_in_multi_regions(
            self, chrs: Sequence, starts: Sequence[int], ends: Sequence[int],
            hom: bool = True, het: bool = True, ref: Optional[str] = None, alt: Optional[str] = None,
            assembly: AssemblyLike = Assembly.UNSPECIFIED) -> Iterator[List[Variant]]:
        snapshot = self._region_snapshot(assembly)
        ranges = self._resolve_regions(snapshot, chrs, starts, ends)
        return self._variant_stream(snapshot, ranges, hom, het, ref, alt)

    def select_variants_in_multi_regions_in_virtual_cohort(
            self, chrs: Sequence, starts: Sequence[int], ends: Sequence[int],
            hom: bool = True, het: bool = True, ref: Optional[str] = None, alt: Optional[str] = None,
            samples: Optional[Sequence[str]] = None, cohort_name: Optional[str] = None,
            assembly: AssemblyLike = Assembly.UNSPECIFIED) -> Iterator[List[Variant]]:
        snapshot = self._region_snapshot(assembly)
        ranges = self._resolve_regions(snapshot, chrs, starts, ends)
        return self._variant_stream(snapshot, ranges, hom, het, ref, alt, True, samples, cohort_name)

    def select_variants_in_multi_regions_in_virtual_cohort_with_stats(
            self, chrs: Sequence, starts: Sequence[int], ends: Sequence[int],
            hom: bool = True, het: bool = True, ref: Optional[str] = None, alt: Optional[str] = None,
            samples: Optional[Sequence[str]] = None, cohort_name: Optional[str] = None,
            assembly: AssemblyLike = Assembly.UNSPECIFIED) -> Iterator[List[VariantWithStats]]:
        snapshot = self._region_snapshot(assembly)
        ranges = self._resolve_regions(snapshot, chrs, starts, ends)
        return self._variant_stream(snapshot, ranges, hom, het, ref, alt, True, samples, cohort_name,
                                   with_stats=True)

    def select_variants_in_panel(self, panel: str, hom: bool = True, het: bool = True,
                                 assembly: AssemblyLike = Assembly.UNSPECIFIED) -> Iterator[List[Variant]]:
        snapshot = self._region_snapshot(assembly)
        ranges = snapshot.index.resolve_panel(panel) if snapshot is not None else []
        return self._variant_stream(snapshot, ranges, hom, het, None, None)

    def _sample_names(self, snapshot, ranges, hom, het, ref, alt, samples, cohort_name) -> List[str]:
        if snapshot is None:
            return []
        genotype_class = GenotypeClass.from_flags(hom, het)
        rows = _allele_filter(snapshot, ranges_to_rows(ranges), ref, alt)
        if samples is None and cohort_name is None:
            columns = snapshot.cohorts.all_columns
        else:
            columns = snapshot.cohorts.resolve(samples, cohort_name)
        found = set()
        for restricted in self._selected_rows(snapshot, rows, columns, genotype_class):
            found.update(restricted.samples)
        return [s for s in snapshot.samples if s in found]

    def select_samples_in_region(self, chr, start: int, end: int, hom: bool = True, het: bool = True,
                                 ref: Optional[str] = None, alt: Optional[str] = None,
                                 samples: Optional[Sequence[str]] = None, cohort_name: Optional[str] = None,
                                 assembly: AssemblyLike = Assembly.UNSPECIFIED) -> List[str]:
        """Samples with a genotype of the selected classes at any variant of the region

        Every sample is considered when neither ``samples`` nor ``cohort_name``
        is given; a sample or cohort request that resolves nothing gives [].
        """
        snapshot = self._region_snapshot(assembly)
        ranges = self._resolve_region(snapshot, chr, start, end)
        return self._sample_names(snapshot, ranges, hom, het, ref, alt, samples, cohort_name)

    def select_samples_in_multi_regions(self, chrs: Sequence, starts: Sequence[int], ends: Sequence[int],
                                        hom: bool = True, het: bool = True,
                                        ref: Optional[str] = None, alt: Optional[str] = None,
                                        samples: Optional[Sequence[str]] = None,
                                        cohort_name: Optional[str] = None,
                                        assembly: AssemblyLike = Assembly.UNSPECIFIED) -> List[str]:
        snapshot = self._region_snapshot(assembly)
        ranges = self._resolve_regions(snapshot, chrs, starts, ends)
        return self._sample_names(snapshot, ranges, hom, het, ref, alt, samples, cohort_name)

    # ------------------------------------------------------------------
    # Whole-dataset scans
    # ------------------------------------------------------------------

    def _shards(self, snapshot: DatasetSnapshot):
        return make_shards(snapshot.index.chromosome_blocks(), self.config.shard_rows)

    def _inheritance(self, mode: InheritanceMode, names: Tuple[str, str, str], assembly: AssemblyLike,
                     seq: bool, token: Optional[CancellationToken]) -> Iterator[List[Variant]]:
        snapshot = self._dataset_snapshot(assembly)
        if snapshot is None:
            return batched([], self.config.batch_size)
        columns = [snapshot.cohorts.index_of(n) for n in names]
        if any(c is None for c in columns):
            return batched([], self.config.batch_size)

        t0 = time.time()

        def run_shard(shard, tok):
            return inheritance_shard(snapshot, mode, tuple(columns), shard, tok)

        parts = self._scheduler().run(run_shard, self._shards(snapshot), seq=seq, token=token, label=mode.value)
        rows = np.concatenate(parts) if parts else np.zeros(0, dtype=np.int64)
        self.log(f"{mode.value}: {rows.size} variants in {time.time() - t0:.2f} seconds")
        return batched((snapshot.variant(int(r)) for r in rows), self.config.batch_size)

    def select_de_novo(self, proband: str, parent1: str, parent2: str, assembly: AssemblyLike = None,
                       seq: bool = False, token: Optional[CancellationToken] = None) -> Iterator[List[Variant]]:
        """Variants where the proband carries the alt allele and both parents are ref/ref"""
        return self._inheritance(InheritanceMode.DE_NOVO, (proband, parent1, parent2), assembly, seq, token)

    def select_het_dominant(self, affected_parent: str, affected_child: str, unaffected_parent: str,
                            assembly: AssemblyLike = None, seq: bool = False,
                            token: Optional[CancellationToken] = None) -> Iterator[List[Variant]]:
        return self._inheritance(InheritanceMode.HET_DOMINANT,
                                 (affected_parent, affected_child, unaffected_parent), assembly, seq, token)

    def select_hom_recessive(self, unaffected_parent1: str, unaffected_parent2: str, affected_child: str,
                             assembly: AssemblyLike = None, seq: bool = False,
                             token: Optional[CancellationToken] = None) -> Iterator[List[Variant]]:
        return self._inheritance(InheritanceMode.HOM_RECESSIVE,
                                 (unaffected_parent1, unaffected_parent2, affected_child), assembly, seq, token)

    def top_n_hwe(self, n: int, assembly: AssemblyLike = None, seq: bool = False,
                  token: Optional[CancellationToken] = None) -> List[VariantWithStats]:
        """The n variants with the smallest HWE exact-test p-values"""
        if n < 0:
            raise InvalidArgumentError(f"n must be >= 0, got {n}")
        snapshot = self._dataset_snapshot(assembly)
        if snapshot is None or n == 0:
            return []

        def run_shard(shard, tok):
            return hwe_shard(snapshot, shard, tok)

        rows, pvalues = self._scheduler().top_n(run_shard, self._shards(snapshot), n, seq=seq, token=token,
                                                label="hwe")
        records = []
        for row, p in zip(rows, pvalues):
            variant = snapshot.variant(int(row))
            records.append(VariantWithStats(
                allele=variant, vac=variant.ac, vaf=variant.af, van=variant.an,
                vhomc=variant.homc, vhetc=variant.hetc, vmisc=variant.misc, p_hwe=float(p),
            ))
        return records

    def top_n_chi2(self, n: int, samples: Optional[Sequence[str]] = None, cohort_name: Optional[str] = None,
                   assembly: AssemblyLike = None, seq: bool = False,
                   token: Optional[CancellationToken] = None) -> List[VariantWithStats]:
        """The n variants whose subset genotypes depart most from the whole cohort"""
        if n < 0:
            raise InvalidArgumentError(f"n must be >= 0, got {n}")
        snapshot = self._dataset_snapshot(assembly)
        if snapshot is None or n == 0:
            return []
        columns = snapshot.cohorts.resolve(samples, cohort_name)
        if columns.size == 0:
            return []

        def run_shard(shard, tok):
            return chi2_shard(snapshot, columns, shard, tok)

        rows, pvalues = self._scheduler().top_n(run_shard, self._shards(snapshot), n, seq=seq, token=token,
                                                label="chi2")
        if rows.size == 0:
            return []
        subset = counts_to_allele_stats(allele_counts(
            snapshot.genotypes.columns_for(columns, rows),
            is_male=snapshot.is_male[columns],
            is_female=snapshot.is_female[columns],
            haploid_rows=snapshot.haploid_rows[rows],
            chrx_rows=snapshot.chrx_rows[rows],
        ))
        return [
            VariantWithStats(
                allele=snapshot.variant(int(row)), vac=stat.ac, vaf=stat.af, van=stat.an,
                vhomc=stat.homc, vhetc=stat.hetc, vmisc=stat.misc, p_chi2=float(p),
            )
            for row, p, stat in zip(rows, pvalues, subset)
        ]

    # ------------------------------------------------------------------
    # Sample-level analyses
    # ------------------------------------------------------------------

    def prs(self, prs_name: str, samples: Optional[Sequence[str]] = None, cohort_name: Optional[str] = None,
            dominant: bool = False, recessive: bool = False, assembly: AssemblyLike = None) -> PRSResult:
        """Score samples against a loaded PRS definition

        Raises:
            InvalidArgumentError: If both dominant and recessive are set
        """
        model = GeneticModel.from_flags(dominant, recessive)
        snapshot = self._dataset_snapshot(assembly)
        if snapshot is None or prs_name not in snapshot.prs:
            return PRSResult(prs_cardinality=-1)
        columns = snapshot.cohorts.resolve(samples, cohort_name)
        result = score_prs(snapshot, snapshot.prs[prs_name], columns, model)
        self.log(f"PRS {prs_name}: {result.prs_cardinality} variants, {len(result.sample_scores)} samples")
        return result

    def kinship(self, samples: Optional[Sequence[str]] = None, cohort_name: Optional[str] = None,
                threshold: Optional[float] = None, degree: Optional[KinshipDegree] = None,
                assembly: AssemblyLike = None, seq: bool = False,
                token: Optional[CancellationToken] = None) -> List[Relatedness]:
        """KING-robust kinship of every sample pair, optionally filtered"""
        if threshold is None:
            threshold = self.config.kinship_threshold
        snapshot = self._dataset_snapshot(assembly)
        if snapshot is None:
            return []
        columns = snapshot.cohorts.resolve(samples, cohort_name)
        if columns.size < 2:
            return []

        t0 = time.time()
        sites = np.flatnonzero(snapshot.autosomal_rows)
        Gt = np.ascontiguousarray(snapshot.genotypes.columns_for(columns, sites).T)
        pairs = sample_pairs(columns.size)
        scheduler = self._scheduler()
        chunks = chunk_units(pairs, max(1, -(-len(pairs) // (scheduler.workers * 4))))

        def run_chunk(chunk, tok):
            tok.raise_if_cancelled()
            return king_kinship_pairs(Gt, chunk)

        parts = scheduler.run(run_chunk, chunks, seq=seq, token=token, label="kinship")
        phi = np.concatenate(parts) if parts else np.zeros(0, dtype=np.float64)
        names = [snapshot.samples[int(c)] for c in columns]
        records = relatedness_records(names, pairs, phi, threshold=threshold, degree=degree)
        self.log(f"kinship: {len(pairs)} pairs over {sites.size} sites in {time.time() - t0:.2f} seconds")
        return records

    def _fstat(self, snapshot: DatasetSnapshot, columns: np.ndarray, aaf_threshold: float,
               seq: bool, token: Optional[CancellationToken]):
        af = snapshot.stats['af']
        sites = np.flatnonzero(snapshot.haploid_rows & (af > 0.0) & (af < 1.0) & (af >= aaf_threshold))
        scheduler = self._scheduler()
        chunks = chunk_units(columns, max(1, -(-columns.size // scheduler.workers)))

        def run_chunk(chunk, tok):
            tok.raise_if_cancelled()
            return compute_fstat_x(snapshot.genotypes.columns_for(chunk, sites), af[sites])

        parts = scheduler.run(run_chunk, chunks, seq=seq, token=token, label="fstat-x")
        f = np.concatenate([p[0] for p in parts]) if parts else np.zeros(0)
        n_sites = np.concatenate([p[1] for p in parts]) if parts else np.zeros(0, dtype=np.int64)
        names = [snapshot.samples[int(c)] for c in columns]
        sexes = [snapshot.sexes[int(c)] for c in columns]
        return split_by_sex(names, sexes, f, n_sites)

    def fstat_x(self, samples: Optional[Sequence[str]] = None, cohort_name: Optional[str] = None,
                aaf_threshold: Optional[float] = None, assembly: AssemblyLike = None,
                seq: bool = False, token: Optional[CancellationToken] = None) -> FstatXResult:
        """chrX F-statistic of each sample, split by declared sex"""
        if aaf_threshold is None:
            aaf_threshold = self.config.aaf_threshold
        snapshot = self._dataset_snapshot(assembly)
        if snapshot is None:
            return FstatXResult()
        columns = snapshot.cohorts.resolve(samples, cohort_name)
        if columns.size == 0:
            return FstatXResult()
        males, females = self._fstat(snapshot, columns, aaf_threshold, seq, token)
        return FstatXResult(tuple(males), tuple(females))

    def sex_mismatch_check(self, samples: Optional[Sequence[str]] = None, cohort_name: Optional[str] = None,
                           female_threshold: Optional[float] = None, male_threshold: Optional[float] = None,
                           aaf_threshold: Optional[float] = None, assembly: AssemblyLike = None,
                           seq: bool = False, token: Optional[CancellationToken] = None) -> SexMismatchResult:
        """Declared males with low chrX F and declared females with high chrX F"""
        female_threshold = self.config.female_threshold if female_threshold is None else female_threshold
        male_threshold = self.config.male_threshold if male_threshold is None else male_threshold
        result = self.fstat_x(samples, cohort_name, aaf_threshold, assembly, seq, token)
        males, females = sex_mismatches(result.males, result.females, female_threshold, male_threshold)
        return SexMismatchResult(tuple(males), tuple(females))
