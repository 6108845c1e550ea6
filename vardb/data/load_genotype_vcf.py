"""
VCF loader for the variant store: builds (genotypes, sample_ids, variant_table).

Key features:
- Streaming parsing of VCF text (supports .vcf and .vcf.gz)
- Multi-allelic records split into one row per ALT allele
- GT decoded to genotype class codes: 0 ref/ref, 1 het, 2 hom-alt, -9 missing
- Haploid calls (male chrX, chrY, MT) coded 0 (ref) or 2 (hemizygous alt)

Return signature:
    (genotypes: np.ndarray[int8] (variants x samples), sample_ids: List[str],
     variant_table: DataFrame with CHROM, START, END, REF, ALT)

The builtin parser has no dependency beyond numpy/pandas. ``backend='cyvcf2'``
reads through cyvcf2 (required for .bcf) with the same coding logic.
"""
import gzip
import io
import os
import tempfile
import warnings
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from tqdm import tqdm

from ..utils.data_types import Chromosome, HET, HOM_ALT, HOM_REF, MISSING

_GT_TOKEN_CACHE_SENTINEL = object()
_GT_TOKEN_CACHE: Dict[str, Optional[Tuple[str, ...]]] = {}
_BIALLELIC_GT_CACHE: Dict[str, int] = {}
_BIALLELIC_GT_DIRECT: Dict[str, int] = {
    '0/0': HOM_REF,
    '0|0': HOM_REF,
    '0/1': HET,
    '1/0': HET,
    '0|1': HET,
    '1|0': HET,
    '1/1': HOM_ALT,
    '1|1': HOM_ALT,
    '0': HOM_REF,
    '1': HOM_ALT,
    './.': MISSING,
    '.|.': MISSING,
    '.': MISSING,
}

_FORMAT_CACHE: Dict[str, Dict[str, int]] = {}

VARIANT_COLUMNS = ['CHROM', 'START', 'END', 'REF', 'ALT']


class _DynamicInt8RowWriter:
    """Append-only int8 matrix builder backed by a temporary memmap.

    Rows are variants; the backing file grows along axis 0 so existing rows
    never move when capacity is extended.
    """

    def __init__(self, n_cols, initial_capacity=4096):
        self.n_cols = int(n_cols)
        if self.n_cols <= 0:
            raise ValueError("Writer requires a positive number of columns")
        self.capacity = max(int(initial_capacity), 1)
        tmp = tempfile.NamedTemporaryFile(prefix="vardb_geno_", suffix=".tmp", delete=False)
        self.path = tmp.name
        tmp.close()
        self.memmap = np.memmap(self.path, dtype=np.int8, mode='w+', shape=(self.capacity, self.n_cols))
        self.count = 0

    def _grow(self, min_capacity):
        new_capacity = self.capacity
        while new_capacity < min_capacity:
            new_capacity = max(new_capacity * 2, min_capacity)
        self.memmap.flush()
        del self.memmap
        with open(self.path, 'r+b') as fh:
            fh.truncate(new_capacity * self.n_cols)
        self.memmap = np.memmap(self.path, dtype=np.int8, mode='r+', shape=(new_capacity, self.n_cols))
        self.capacity = new_capacity

    def append(self, row):
        if row.shape != (self.n_cols,):
            raise ValueError(f"Row shape mismatch: expected ({self.n_cols},), got {row.shape}")
        if self.count >= self.capacity:
            self._grow(self.count + 1)
        self.memmap[self.count, :] = row
        self.count += 1

    def finalize(self):
        mm = self.memmap
        if mm is None:
            return np.zeros((0, self.n_cols), dtype=np.int8)
        total_rows = self.count
        mm.flush()
        if total_rows == 0:
            result = np.zeros((0, self.n_cols), dtype=np.int8)
        else:
            result = np.array(mm[:total_rows, :], dtype=np.int8, copy=True, order='C')
        self.memmap = None
        del mm
        try:
            os.remove(self.path)
        except OSError:
            pass
        return result


def _open_text(path):
    """Open VCF text transparently from plain or gzip-compressed files.

    Accepts string or Path-like, and handles .vcf, .vcf.gz, and .vcf.bgz.
    """
    p = str(path)
    pl = p.lower()
    if pl.endswith('.gz') or pl.endswith('.bgz'):
        return io.TextIOWrapper(gzip.open(p, 'rb'))
    return open(p, 'r')


def _parse_samples(header_line):
    # header line starts with #CHROM
    cols = header_line.strip().split('\t')
    if len(cols) < 9 or cols[0] != '#CHROM':
        raise ValueError('Malformed VCF header line: missing #CHROM ... FORMAT ...')
    return cols[9:]


def _parse_format_keys(fmt_str: str) -> Dict[str, int]:
    cached = _FORMAT_CACHE.get(fmt_str)
    if cached is not None:
        return cached
    keys = fmt_str.split(':') if fmt_str else []
    result = {k: i for i, k in enumerate(keys)}
    _FORMAT_CACHE[fmt_str] = result
    return result


def _split_gt_tokens(gt):
    # Accept phased, unphased or haploid; return tuple of allele indices as strings
    if gt is None or gt == '' or gt == '.' or gt == './.' or gt == '.|.':
        return None
    cached = _GT_TOKEN_CACHE.get(gt, _GT_TOKEN_CACHE_SENTINEL)
    if cached is not _GT_TOKEN_CACHE_SENTINEL:
        return cached
    sep = '/' if '/' in gt else '|' if '|' in gt else None
    toks = tuple(gt.split(sep)) if sep is not None else (gt,)
    if any(token == '' for token in toks):
        toks = None
    _GT_TOKEN_CACHE[gt] = toks
    return toks


def _class_code(alt_count, ploidy):
    if ploidy == 0:
        return MISSING
    if alt_count == 0:
        return HOM_REF
    if alt_count == ploidy:
        return HOM_ALT
    return HET


def _code_genotype_split(gt_tokens, alt_index):
    """Genotype class of one call with respect to the ALT at alt_index (1-based).

    A call carrying alt_index alongside another ALT (e.g. 1/2) is heterozygous
    for each of them; a call made only of other ALT alleles is missing for this
    split row.
    """
    if not gt_tokens:
        return MISSING
    alt_count = 0
    other = 0
    for token in gt_tokens:
        if token == '.':
            return MISSING
        try:
            allele = int(token)
        except ValueError:
            return MISSING
        if allele == alt_index:
            alt_count += 1
        elif allele != 0:
            other += 1
    if alt_count == 0 and other > 0:
        return MISSING
    if other > 0:
        return HET
    return _class_code(alt_count, len(gt_tokens))


def _decode_biallelic_gt(gt: Optional[str]) -> int:
    if gt is None:
        return MISSING
    direct = _BIALLELIC_GT_DIRECT.get(gt)
    if direct is not None:
        return direct
    cached = _BIALLELIC_GT_CACHE.get(gt)
    if cached is not None:
        return cached
    tokens = _split_gt_tokens(gt)
    result = MISSING
    if tokens is not None and all(t in ('0', '1') for t in tokens):
        result = _class_code(sum(1 for t in tokens if t == '1'), len(tokens))
    _BIALLELIC_GT_CACHE[gt] = result
    return result


def _variant_end(pos, ref, info):
    for entry in info.split(';'):
        if entry.startswith('END='):
            try:
                return int(entry[4:])
            except ValueError:
                break
    return pos + max(len(ref), 1) - 1


def _parse_chrom(chrom):
    try:
        return int(Chromosome.parse(chrom))
    except ValueError:
        return None


def _iter_builtin(vcf_path, split_multiallelic, include_indels, skipped, verbose):
    """Yield (sample_ids) once, then (chrom_code, start, end, ref, alt, row) tuples."""
    sample_ids = None
    with _open_text(vcf_path) as fh:
        for line in tqdm(fh, desc="Reading VCF", unit=" lines", disable=not verbose):
            if not line or line.startswith('##'):
                continue
            if line.startswith('#CHROM'):
                sample_ids = _parse_samples(line)
                if len(sample_ids) == 0:
                    raise ValueError('VCF contains no sample columns')
                yield sample_ids
                continue
            if sample_ids is None:
                raise ValueError('VCF header not found before data lines')
            parts = line.rstrip('\n').split('\t')
            if len(parts) < 8:
                skipped['malformed'] += 1
                continue
            chrom, pos_str, _, ref, alt_str = parts[:5]
            try:
                pos = int(pos_str)
            except ValueError:
                skipped['malformed'] += 1
                continue
            chrom_code = _parse_chrom(chrom)
            if chrom_code is None:
                skipped['contig'] += 1
                continue
            alt_alleles = alt_str.split(',') if alt_str and alt_str != '.' else []
            if not alt_alleles:
                continue
            if len(alt_alleles) > 1 and not split_multiallelic:
                continue

            end = _variant_end(pos, ref, parts[7])
            gt_index = _parse_format_keys(parts[8] if len(parts) >= 9 else '').get('GT')
            sample_fields = parts[9:]
            if len(sample_fields) != len(sample_ids):
                skipped['malformed'] += 1
                continue
            if gt_index is None:
                gt_values = [None] * len(sample_fields)
            elif gt_index == 0:
                gt_values = [field.partition(':')[0] for field in sample_fields]
            else:
                gt_values = []
                for field in sample_fields:
                    toks = field.split(':')
                    gt_values.append(toks[gt_index] if gt_index < len(toks) else None)

            for alt_index, alt in enumerate(alt_alleles, start=1):
                if not include_indels and (len(ref) != 1 or len(alt) != 1):
                    continue
                if len(alt_alleles) == 1:
                    row = np.fromiter((_decode_biallelic_gt(gt) for gt in gt_values),
                                      dtype=np.int8, count=len(gt_values))
                else:
                    row = np.fromiter((_code_genotype_split(_split_gt_tokens(gt), alt_index) for gt in gt_values),
                                      dtype=np.int8, count=len(gt_values))
                yield chrom_code, pos, end, ref, alt, row


def _iter_cyvcf2(vcf_path, split_multiallelic, include_indels, skipped, verbose):
    from cyvcf2 import VCF  # type: ignore

    vcf = VCF(str(vcf_path), threads=min(4, os.cpu_count() or 1))
    try:
        sample_ids = list(vcf.samples)
        if len(sample_ids) == 0:
            raise ValueError('VCF contains no sample columns')
        yield sample_ids
        for var in tqdm(vcf, desc="Reading VCF", unit=" records", disable=not verbose):
            chrom_code = _parse_chrom(var.CHROM)
            if chrom_code is None:
                skipped['contig'] += 1
                continue
            alts = var.ALT or []
            if not alts or (len(alts) > 1 and not split_multiallelic):
                continue
            pos = int(var.POS)
            ref = var.REF
            end = int(var.end) if var.end else pos + len(ref) - 1
            # cyvcf2: -1 missing, -2 ploidy padding, last entry phase flag
            calls = [
                tuple('.' if a == -1 else str(a) for a in g[:-1] if a != -2)
                for g in var.genotypes
            ]
            for alt_index, alt in enumerate(alts, start=1):
                if not include_indels and (len(ref) != 1 or len(alt) != 1):
                    continue
                row = np.fromiter((_code_genotype_split(c, alt_index) for c in calls),
                                  dtype=np.int8, count=len(calls))
                yield chrom_code, pos, end, ref, alt, row
    finally:
        vcf.close()


def load_genotype_vcf(
    vcf_path,
    split_multiallelic=True,
    include_indels=True,
    backend='builtin',  # 'builtin' or 'cyvcf2'
    verbose=False,
) -> Tuple[np.ndarray, List[str], pd.DataFrame]:
    """
    Load a VCF file and return (genotypes, sample_ids, variant_table).

    Parameters
    - vcf_path: path to .vcf, .vcf.gz or (cyvcf2 only) .bcf
    - split_multiallelic: if True, split multi-ALT records into one row per ALT;
      otherwise multi-allelic records are skipped
    - include_indels: include indels (if False, only include SNVs)
    - backend: 'builtin' streaming text parser or 'cyvcf2'
    - verbose: show a progress bar while reading
    """
    if not os.path.exists(str(vcf_path)):
        raise FileNotFoundError(f"VCF file not found: {vcf_path}")

    is_bcf = str(vcf_path).lower().endswith('.bcf')
    if backend == 'builtin':
        if is_bcf:
            raise ImportError('Builtin VCF parser does not support .bcf. Use backend="cyvcf2".')
        records = _iter_builtin
    elif backend == 'cyvcf2':
        records = _iter_cyvcf2
    else:
        raise ValueError("backend must be one of {'builtin', 'cyvcf2'}")

    skipped = {'malformed': 0, 'contig': 0}
    stream = records(vcf_path, split_multiallelic, include_indels, skipped, verbose)
    sample_ids = next(stream, None)
    if sample_ids is None:
        raise ValueError('No header line found; invalid VCF')

    writer = _DynamicInt8RowWriter(len(sample_ids))
    map_rows = []
    for chrom_code, start, end, ref, alt, row in stream:
        writer.append(row)
        map_rows.append((chrom_code, start, end, ref, alt))
    genotypes = writer.finalize()

    if skipped['malformed']:
        warnings.warn(f"Skipped {skipped['malformed']} malformed VCF records in {vcf_path}")
    if skipped['contig']:
        warnings.warn(f"Skipped {skipped['contig']} VCF records on unsupported contigs in {vcf_path}")

    variant_table = pd.DataFrame(map_rows, columns=VARIANT_COLUMNS)
    if genotypes.shape[0] != len(variant_table):
        raise AssertionError('Row count mismatch: %d vs %d' % (genotypes.shape[0], len(variant_table)))

    return genotypes, list(sample_ids), variant_table
