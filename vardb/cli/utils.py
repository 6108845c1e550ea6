import argparse
import sys
from dataclasses import fields, is_dataclass
from typing import Iterable, List, Optional, Sequence

import pandas as pd

from ..core.engine import QueryEngine
from ..data.io_utils import load_snapshot, save_snapshot
from ..data.load_genotype_vcf import load_genotype_vcf
from ..data.loaders import detect_file_format, load_gene_table, load_panels, load_prs_file, load_sample_sheet
from ..data.store import DatasetSnapshot, GenotypeStore
from ..utils.config import EngineConfig
from ..utils.data_types import Assembly, KinshipDegree

QUERY_CHOICES = (
    'beacon', 'region', 'samples', 'panel',
    'de-novo', 'het-dominant', 'hom-recessive',
    'hwe', 'chi2', 'prs', 'kinship', 'fstat', 'sexcheck', 'summary',
)


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(',') if v.strip()]


def parse_args(argv: Optional[Sequence[str]] = None):
    """Parse command line arguments for a single query"""
    parser = argparse.ArgumentParser(
        description="Query a genomic variant dataset with vardb",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    # Dataset
    parser.add_argument("--genotype", "-g", required=True,
                        help="Genotype file (VCF/VCF.GZ or HDF5 snapshot)")
    parser.add_argument("--assembly", "-a", default="GRCh38",
                        choices=['GRCh37', 'GRCh38'],
                        help="Assembly of the genotype file (ignored for snapshots)")
    parser.add_argument("--sample-sheet", "-s", default=None,
                        help="Sample sheet (sample, sex, cohorts)")
    parser.add_argument("--genes", default=None,
                        help="Gene table (symbol, chrom, start, end)")
    parser.add_argument("--panels", default=None,
                        help="Panel file (panel, gene)")
    parser.add_argument("--prs", nargs='*', default=[],
                        help="PRS scoring files in PGS Catalog layout")
    parser.add_argument("--backend", choices=['builtin', 'cyvcf2'], default='builtin',
                        help="VCF parsing backend")
    parser.add_argument("--save-snapshot", default=None,
                        help="Write the loaded dataset to this HDF5 file")

    # Query
    parser.add_argument("--query", "-q", default='summary', choices=list(QUERY_CHOICES),
                        help="Query to run")
    parser.add_argument("--chr", default=None, help="Chromosome(s), comma-separated for multi-region")
    parser.add_argument("--start", default=None, help="Start position(s), comma-separated")
    parser.add_argument("--end", default=None, help="End position(s), comma-separated")
    parser.add_argument("--ref", default=None, help="Reference allele filter")
    parser.add_argument("--alt", default=None, help="Alternate allele filter")
    parser.add_argument("--no-hom", action='store_true', help="Exclude homozygous-alt genotypes")
    parser.add_argument("--no-het", action='store_true', help="Exclude heterozygous genotypes")
    parser.add_argument("--samples", default=None, help="Comma-separated sample names")
    parser.add_argument("--cohort", default=None, help="Cohort name")
    parser.add_argument("--with-stats", action='store_true',
                        help="Report virtual-cohort statistics for region queries")
    parser.add_argument("--panel", default=None, help="Panel name")
    parser.add_argument("--trio", default=None,
                        help="Three comma-separated sample names for inheritance queries")
    parser.add_argument("--n", type=int, default=10, help="Number of ranked variants")
    parser.add_argument("--prs-name", default=None, help="PRS name for the prs query")
    parser.add_argument("--dominant", action='store_true', help="Dominant PRS model")
    parser.add_argument("--recessive", action='store_true', help="Recessive PRS model")
    parser.add_argument("--kinship-threshold", type=float, default=None,
                        help="Minimum phi reported by kinship")
    parser.add_argument("--degree", default=None, choices=[d.name for d in KinshipDegree],
                        help="Report pairs at this degree or closer")
    parser.add_argument("--female-threshold", type=float, default=None,
                        help="F above which a declared female is flagged")
    parser.add_argument("--male-threshold", type=float, default=None,
                        help="F below which a declared male is flagged")
    parser.add_argument("--aaf-threshold", type=float, default=None,
                        help="Minimum alt allele frequency of chrX sites for F")

    # Execution
    parser.add_argument("--workers", type=int, default=None,
                        help="Worker threads (0 = all CPUs; default from VARDB_WORKERS)")
    parser.add_argument("--shard-rows", type=int, default=None,
                        help="Variant rows per shard")
    parser.add_argument("--batch-size", type=int, default=None,
                        help="Records per streamed batch")
    parser.add_argument("--seq", action='store_true', help="Run shards sequentially")
    parser.add_argument("--output", "-o", default=None,
                        help="Output TSV file (default: stdout)")
    parser.add_argument("--verbose", "-v", action='store_true', help="Print progress")

    return parser.parse_args(argv)


def build_config(args) -> EngineConfig:
    return EngineConfig.from_env().with_overrides(
        workers=args.workers,
        shard_rows=args.shard_rows,
        batch_size=args.batch_size,
        kinship_threshold=args.kinship_threshold,
        verbose=True if args.verbose else None,
    )


def load_dataset(args) -> DatasetSnapshot:
    """Load the genotype file plus side tables named on the command line"""
    if detect_file_format(args.genotype) == 'hdf5':
        if args.verbose:
            print(f"Loading snapshot {args.genotype}")
        return load_snapshot(args.genotype)

    if args.verbose:
        print(f"Loading VCF {args.genotype}")
    genotypes, samples, variants = load_genotype_vcf(args.genotype, backend=args.backend, verbose=args.verbose)
    sheet = load_sample_sheet(args.sample_sheet) if args.sample_sheet else None
    genes = load_gene_table(args.genes) if args.genes else None
    panels = load_panels(args.panels) if args.panels else None
    prs = [load_prs_file(p, assembly=None) for p in args.prs]
    snapshot = DatasetSnapshot.build(
        args.assembly, variants, genotypes, samples,
        sample_sheet=sheet, gene_table=genes, panels=panels, prs=prs,
    )
    if args.verbose:
        print(f"   Loaded {snapshot.n_variants} variants x {snapshot.n_samples} samples ({snapshot.assembly.name})")
    return snapshot


def _row(record) -> dict:
    out = {}
    for f in fields(record):
        value = getattr(record, f.name)
        if is_dataclass(value):
            out.update(_row(value))
        elif hasattr(value, 'name') and not isinstance(value, str):
            out[f.name] = value.name
        else:
            out[f.name] = value
    return out


def records_to_frame(records: Iterable) -> pd.DataFrame:
    """Flatten result dataclasses (nested ones inline) into a DataFrame"""
    return pd.DataFrame([_row(r) for r in records])


def run_query(engine: QueryEngine, assembly: Assembly, args) -> pd.DataFrame:
    q = args.query
    samples = _split_list(args.samples) or None
    hom, het = not args.no_hom, not args.no_het

    if q == 'summary':
        snapshot = engine.store.snapshot(assembly)
        return pd.DataFrame([{
            'assembly': assembly.name,
            'n_variants': snapshot.n_variants,
            'n_samples': snapshot.n_samples,
            'cohorts': ','.join(snapshot.cohorts.names),
            'panels': ','.join(snapshot.panels),
            'prs': ','.join(snapshot.prs),
        }])
    if q == 'beacon':
        result = engine.beacon(args.chr, int(args.start), args.alt, ref=args.ref, assembly=assembly)
        return records_to_frame([result])
    if q in ('region', 'samples'):
        chrs, starts, ends = _split_list(args.chr), _split_list(args.start), _split_list(args.end)
        starts = [int(s) for s in starts]
        ends = [int(e) for e in ends] if ends else list(starts)
        if q == 'samples':
            names = engine.select_samples_in_multi_regions(
                chrs, starts, ends, hom=hom, het=het, ref=args.ref, alt=args.alt,
                samples=samples, cohort_name=args.cohort, assembly=assembly)
            return pd.DataFrame({'sample': names})
        if samples is None and args.cohort is None:
            stream = engine.select_variants_in_multi_regions(
                chrs, starts, ends, hom=hom, het=het, ref=args.ref, alt=args.alt, assembly=assembly)
        elif args.with_stats:
            stream = engine.select_variants_in_multi_regions_in_virtual_cohort_with_stats(
                chrs, starts, ends, hom=hom, het=het, ref=args.ref, alt=args.alt,
                samples=samples, cohort_name=args.cohort, assembly=assembly)
        else:
            stream = engine.select_variants_in_multi_regions_in_virtual_cohort(
                chrs, starts, ends, hom=hom, het=het, ref=args.ref, alt=args.alt,
                samples=samples, cohort_name=args.cohort, assembly=assembly)
        return records_to_frame(r for batch in stream for r in batch)
    if q == 'panel':
        stream = engine.select_variants_in_panel(args.panel, hom=hom, het=het, assembly=assembly)
        return records_to_frame(r for batch in stream for r in batch)
    if q in ('de-novo', 'het-dominant', 'hom-recessive'):
        trio = _split_list(args.trio)
        if len(trio) != 3:
            raise ValueError("--trio requires exactly three sample names")
        op = {
            'de-novo': engine.select_de_novo,
            'het-dominant': engine.select_het_dominant,
            'hom-recessive': engine.select_hom_recessive,
        }[q]
        return records_to_frame(r for batch in op(*trio, assembly=assembly, seq=args.seq) for r in batch)
    if q == 'hwe':
        return records_to_frame(engine.top_n_hwe(args.n, assembly=assembly, seq=args.seq))
    if q == 'chi2':
        return records_to_frame(engine.top_n_chi2(args.n, samples=samples, cohort_name=args.cohort,
                                                  assembly=assembly, seq=args.seq))
    if q == 'prs':
        result = engine.prs(args.prs_name, samples=samples, cohort_name=args.cohort,
                            dominant=args.dominant, recessive=args.recessive, assembly=assembly)
        frame = records_to_frame(result.sample_scores)
        frame.attrs['prs_cardinality'] = result.prs_cardinality
        return frame
    if q == 'kinship':
        degree = KinshipDegree[args.degree] if args.degree else None
        return records_to_frame(engine.kinship(samples=samples, cohort_name=args.cohort,
                                               threshold=args.kinship_threshold, degree=degree,
                                               assembly=assembly, seq=args.seq))
    if q == 'fstat':
        result = engine.fstat_x(samples=samples, cohort_name=args.cohort, aaf_threshold=args.aaf_threshold,
                                assembly=assembly, seq=args.seq)
        frame = records_to_frame(list(result.males) + list(result.females))
        frame['sex'] = ['MALE'] * len(result.males) + ['FEMALE'] * len(result.females)
        return frame
    if q == 'sexcheck':
        result = engine.sex_mismatch_check(samples=samples, cohort_name=args.cohort,
                                           female_threshold=args.female_threshold,
                                           male_threshold=args.male_threshold,
                                           aaf_threshold=args.aaf_threshold, assembly=assembly, seq=args.seq)
        frame = records_to_frame(list(result.mismatch_males) + list(result.mismatch_females))
        frame['declared_sex'] = ['MALE'] * len(result.mismatch_males) + ['FEMALE'] * len(result.mismatch_females)
        return frame
    raise ValueError(f"Unknown query: {q}")


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    config = build_config(args)

    snapshot = load_dataset(args)
    if args.save_snapshot:
        path = save_snapshot(snapshot, args.save_snapshot)
        if args.verbose:
            print(f"   Snapshot written to {path}")

    store = GenotypeStore()
    store.install(snapshot)
    engine = QueryEngine(store, config)

    frame = run_query(engine, snapshot.assembly, args)
    if args.query == 'prs':
        print(f"# prs_cardinality={frame.attrs.get('prs_cardinality')}",
              file=sys.stdout if args.output is None else sys.stderr)
    if args.output:
        frame.to_csv(args.output, sep='\t', index=False)
    else:
        frame.to_csv(sys.stdout, sep='\t', index=False)
    return 0
