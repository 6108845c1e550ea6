"""
Data loading utilities for sample sheets, gene tables, panels and PRS files
"""

import gzip
import pandas as pd
import numpy as np
from pathlib import Path
from typing import Dict, List, Optional, Union
import warnings

from ..utils.data_types import Assembly, Chromosome, PRSDefinition, Sex

NA_VALUES = [
    '', 'NA', 'NaN', 'nan', 'NAN', 'na', 'N/A', 'n/a', 'Null', 'NULL',
    '.', '-', '--'
]

SAMPLE_ID_COLUMNS = ['sample', 'Sample', 'ID', 'id', 'IID', 'sample_id']


def detect_file_format(filepath: Union[str, Path]) -> str:
    """Detect file format based on extension and content

    Args:
        filepath: Path to file

    Returns:
        Detected format: 'vcf', 'hdf5', 'csv', 'tsv' or 'unknown'
    """
    filepath = Path(filepath)

    # Check extension first (handle multi-suffix like .vcf.gz)
    name_lower = filepath.name.lower()
    if (
        name_lower.endswith('.vcf')
        or name_lower.endswith('.vcf.gz')
        or name_lower.endswith('.vcf.bgz')
        or name_lower.endswith('.bcf')
    ):
        return 'vcf'
    elif filepath.suffix.lower() in ['.h5', '.hdf5']:
        return 'hdf5'
    elif filepath.suffix.lower() in ['.tsv', '.txt']:
        return 'tsv'
    elif filepath.suffix.lower() == '.csv':
        return 'csv'

    # Try to detect by content
    try:
        with open(filepath, 'r') as f:
            first_line = f.readline().strip()
    except (OSError, UnicodeDecodeError):
        return 'unknown'
    if first_line.startswith('##fileformat=VCF'):
        return 'vcf'
    elif '\t' in first_line and ',' not in first_line:
        return 'tsv'
    elif ',' in first_line:
        return 'csv'
    return 'unknown'


def _read_table(filepath: Union[str, Path], comment: Optional[str] = None) -> pd.DataFrame:
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"File not found: {filepath}")
    file_format = detect_file_format(filepath)
    read_kwargs = dict(na_values=NA_VALUES, keep_default_na=True, comment=comment, dtype=str)
    if file_format == 'csv':
        return pd.read_csv(filepath, **read_kwargs)
    # Default to tab separation for .tsv/.txt and unrecognised text
    return pd.read_csv(filepath, sep='\t', **read_kwargs)


def _require_columns(df: pd.DataFrame, columns: List[str], what: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(f"{what} is missing required columns: {missing}")


def load_sample_sheet(filepath: Union[str, Path]) -> pd.DataFrame:
    """Load a sample sheet with declared sex and cohort memberships

    Expected columns: ``sample``, ``sex`` and optionally ``cohorts`` holding
    ``;``-separated cohort names.

    Returns:
        DataFrame with columns sample (str), sex (Sex), cohorts (tuple of str)
    """
    df = _read_table(filepath)

    if 'sample' not in df.columns:
        present_candidates = [c for c in df.columns if c in SAMPLE_ID_COLUMNS]
        if not present_candidates:
            raise ValueError(f"Sample sheet has no sample column; expected one of {SAMPLE_ID_COLUMNS}")
        df = df.rename(columns={present_candidates[0]: 'sample'})
    if 'sex' not in df.columns:
        warnings.warn("Sample sheet has no 'sex' column; all samples treated as unknown sex.")
        df['sex'] = None
    if 'cohorts' not in df.columns:
        df['cohorts'] = None

    df = df.dropna(subset=['sample'])
    df['sample'] = df['sample'].astype(str).str.strip()
    if df['sample'].duplicated().any():
        n_dups = int(df['sample'].duplicated().sum())
        warnings.warn(f"Detected {n_dups} duplicated sample records; retained only the first record per sample.")
        df = df.drop_duplicates(subset=['sample'], keep='first')

    df['sex'] = [Sex.parse(v) for v in df['sex']]
    df['cohorts'] = [
        tuple(c.strip() for c in str(v).split(';') if c.strip()) if isinstance(v, str) else ()
        for v in df['cohorts']
    ]
    return df.loc[:, ['sample', 'sex', 'cohorts']].reset_index(drop=True)


def load_gene_table(filepath: Union[str, Path]) -> pd.DataFrame:
    """Load gene coordinates for one assembly

    Expected columns: ``symbol``, ``chrom``, ``start``, ``end`` (1-based inclusive).

    Returns:
        DataFrame with columns symbol, chrom (Chromosome code), start, end
    """
    df = _read_table(filepath)
    _require_columns(df, ['symbol', 'chrom', 'start', 'end'], "Gene table")
    df = df.dropna(subset=['symbol', 'chrom', 'start', 'end']).copy()
    df['symbol'] = df['symbol'].astype(str).str.strip()
    df['chrom'] = [int(Chromosome.parse(c)) for c in df['chrom']]
    df['start'] = pd.to_numeric(df['start']).astype(np.int64)
    df['end'] = pd.to_numeric(df['end']).astype(np.int64)
    bad = (df['start'] < 1) | (df['end'] < df['start'])
    if bad.any():
        raise ValueError(f"Gene table has {int(bad.sum())} rows with invalid coordinates")
    return df.loc[:, ['symbol', 'chrom', 'start', 'end']].reset_index(drop=True)


def load_panels(filepath: Union[str, Path]) -> Dict[str, List[str]]:
    """Load gene panels from a two-column table (``panel``, ``gene``)

    Returns:
        Dictionary mapping panel name to its gene symbols in file order
    """
    df = _read_table(filepath)
    _require_columns(df, ['panel', 'gene'], "Panel file")
    df = df.dropna(subset=['panel', 'gene'])
    panels: Dict[str, List[str]] = {}
    for panel, gene in zip(df['panel'].astype(str).str.strip(), df['gene'].astype(str).str.strip()):
        genes = panels.setdefault(panel, [])
        if gene not in genes:
            genes.append(gene)
    return panels


def _read_scoring_header(filepath: Path) -> Dict[str, str]:
    opener = gzip.open if filepath.name.lower().endswith('.gz') else open
    header: Dict[str, str] = {}
    with opener(filepath, 'rt') as fh:
        for line in fh:
            if not line.startswith('#'):
                break
            key, sep, value = line[1:].strip().partition('=')
            if sep:
                header[key.strip()] = value.strip()
    return header


def load_prs_file(filepath: Union[str, Path],
                  name: Optional[str] = None,
                  assembly: Optional[Union[Assembly, str]] = None) -> PRSDefinition:
    """Load a PRS scoring file in PGS Catalog layout

    Header lines ``#pgs_name=`` / ``#pgs_id=`` and ``#genome_build=`` give the
    score name and assembly unless overridden. Columns: ``chr_name``,
    ``chr_position``, ``effect_allele``, optional ``other_allele`` and
    ``effect_weight``.

    Args:
        filepath: Path to scoring file (plain or gzip)
        name: Score name (default: header, then file stem)
        assembly: Assembly (default: header ``genome_build``)

    Returns:
        PRSDefinition
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise FileNotFoundError(f"File not found: {filepath}")
    header = _read_scoring_header(filepath)
    df = pd.read_csv(filepath, sep='\t', comment='#', dtype=str, na_values=NA_VALUES, keep_default_na=True)
    _require_columns(df, ['chr_name', 'chr_position', 'effect_allele', 'effect_weight'], "PRS scoring file")
    if 'other_allele' not in df.columns:
        df['other_allele'] = ''

    n_before = len(df)
    df = df.dropna(subset=['chr_name', 'chr_position', 'effect_allele', 'effect_weight']).copy()
    if len(df) < n_before:
        warnings.warn(f"Dropped {n_before - len(df)} PRS variants without position or weight in {filepath}")
    df['other_allele'] = df['other_allele'].fillna('').astype(str).str.upper()
    df['effect_allele'] = df['effect_allele'].astype(str).str.upper()

    key = ['chr_name', 'chr_position', 'effect_allele', 'other_allele']
    if df.duplicated(subset=key).any():
        n_dups = int(df.duplicated(subset=key).sum())
        warnings.warn(f"Detected {n_dups} duplicated PRS variants in {filepath}; retained only the first.")
        df = df.drop_duplicates(subset=key, keep='first')

    if name is None:
        name = header.get('pgs_name') or header.get('pgs_id') or filepath.name.split('.')[0]
    if assembly is None:
        assembly = header.get('genome_build')
    return PRSDefinition(
        name=name,
        assembly=Assembly.parse(assembly),
        chr=np.array([int(Chromosome.parse(c)) for c in df['chr_name']], dtype=np.int8),
        pos=pd.to_numeric(df['chr_position']).to_numpy(dtype=np.int64),
        effect_allele=df['effect_allele'].to_numpy(dtype=object),
        other_allele=df['other_allele'].to_numpy(dtype=object),
        weight=pd.to_numeric(df['effect_weight']).to_numpy(dtype=np.float64),
    )
