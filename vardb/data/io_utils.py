"""
HDF5 persistence of dataset snapshots
"""

from pathlib import Path
from typing import Dict, List, Union

import h5py
import numpy as np
import pandas as pd

from ..utils.data_types import Assembly, PRSDefinition, Sex
from ..utils.errors import InternalError
from .store import DatasetSnapshot

FORMAT_VERSION = 1

_STR = h5py.string_dtype(encoding='utf-8')


def _write_strings(group, name, values):
    group.create_dataset(name, data=np.array([str(v) for v in values], dtype=object), dtype=_STR)


def _read_strings(group, name) -> List[str]:
    return [v.decode('utf-8') if isinstance(v, bytes) else str(v) for v in group[name][:]]


def save_snapshot(snapshot: DatasetSnapshot, path: Union[str, Path], compression: str = 'gzip') -> Path:
    """Write a snapshot to an HDF5 file

    Layout: /variants (chrom, start, end, ref, alt), /genotype (int8, chunked
    by rows), /samples (name, sex), /cohorts (name, sample pairs), and when
    present /genes, /panels and one /prs/<name> group per score.

    Args:
        snapshot: DatasetSnapshot to persist
        path: Output file (.h5)
        compression: h5py compression filter for the genotype matrix

    Returns:
        Path of the written file
    """
    path = Path(path)
    geno = snapshot.genotypes.to_numpy()
    with h5py.File(path, 'w') as f:
        f.attrs['format_version'] = FORMAT_VERSION
        f.attrs['assembly'] = snapshot.assembly.name

        var = f.create_group('variants')
        var.create_dataset('chrom', data=np.asarray(snapshot.chroms, dtype=np.int8))
        var.create_dataset('start', data=np.asarray(snapshot.starts, dtype=np.int64))
        var.create_dataset('end', data=np.asarray(snapshot.ends, dtype=np.int64))
        _write_strings(var, 'ref', snapshot.refs)
        _write_strings(var, 'alt', snapshot.alts)

        if geno.size:
            f.create_dataset('genotype', data=geno,
                             compression=compression,
                             chunks=(min(geno.shape[0], 4096), geno.shape[1]))
        else:
            f.create_dataset('genotype', data=geno)

        smp = f.create_group('samples')
        _write_strings(smp, 'name', snapshot.samples)
        smp.create_dataset('sex', data=np.array([s.value for s in snapshot.sexes], dtype=np.int8))

        coh = f.create_group('cohorts')
        pairs = [(name, member) for name in snapshot.cohorts.names for member in snapshot.cohorts.members(name)]
        _write_strings(coh, 'name', [p[0] for p in pairs])
        _write_strings(coh, 'sample', [p[1] for p in pairs])

        if snapshot.gene_table is not None:
            genes = f.create_group('genes')
            _write_strings(genes, 'symbol', snapshot.gene_table['symbol'])
            genes.create_dataset('chrom', data=snapshot.gene_table['chrom'].to_numpy(dtype=np.int8))
            genes.create_dataset('start', data=snapshot.gene_table['start'].to_numpy(dtype=np.int64))
            genes.create_dataset('end', data=snapshot.gene_table['end'].to_numpy(dtype=np.int64))

        panel_pairs = [(name, gene) for name, genes in snapshot.panels.items() for gene in genes]
        if panel_pairs:
            pan = f.create_group('panels')
            _write_strings(pan, 'panel', [p[0] for p in panel_pairs])
            _write_strings(pan, 'gene', [p[1] for p in panel_pairs])

        prs_root = f.create_group('prs')
        for i, definition in enumerate(snapshot.prs.values()):
            grp = prs_root.create_group(f"score_{i}")
            grp.attrs['name'] = definition.name
            grp.attrs['assembly'] = definition.assembly.name
            grp.create_dataset('chrom', data=np.asarray(definition.chr, dtype=np.int8))
            grp.create_dataset('pos', data=np.asarray(definition.pos, dtype=np.int64))
            _write_strings(grp, 'effect_allele', definition.effect_allele)
            _write_strings(grp, 'other_allele', definition.other_allele)
            grp.create_dataset('weight', data=np.asarray(definition.weight, dtype=np.float64))
    return path


def load_snapshot(path: Union[str, Path], validate: bool = True) -> DatasetSnapshot:
    """Read a snapshot written by save_snapshot

    Raises:
        FileNotFoundError: If the file does not exist
        InternalError: If the file is not a readable snapshot
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Snapshot file not found: {path}")
    try:
        with h5py.File(path, 'r') as f:
            version = int(f.attrs.get('format_version', -1))
            if version != FORMAT_VERSION:
                raise InternalError(f"Unsupported snapshot format version {version} in {path}")
            assembly = Assembly[str(f.attrs['assembly'])]

            var = f['variants']
            variants = pd.DataFrame({
                'CHROM': var['chrom'][:],
                'START': var['start'][:],
                'END': var['end'][:],
                'REF': _read_strings(var, 'ref'),
                'ALT': _read_strings(var, 'alt'),
            })
            genotypes = f['genotype'][:]

            samples = _read_strings(f['samples'], 'name')
            sexes = [Sex(int(v)) for v in f['samples']['sex'][:]]
            cohorts: Dict[str, List[str]] = {}
            for name, member in zip(_read_strings(f['cohorts'], 'name'), _read_strings(f['cohorts'], 'sample')):
                cohorts.setdefault(name, []).append(member)
            sheet = pd.DataFrame({
                'sample': samples,
                'sex': sexes,
                'cohorts': [tuple(c for c, m in cohorts.items() if s in m) for s in samples],
            })

            gene_table = None
            if 'genes' in f:
                genes = f['genes']
                gene_table = pd.DataFrame({
                    'symbol': _read_strings(genes, 'symbol'),
                    'chrom': genes['chrom'][:].astype(np.int64),
                    'start': genes['start'][:],
                    'end': genes['end'][:],
                })

            panels: Dict[str, List[str]] = {}
            if 'panels' in f:
                for panel, gene in zip(_read_strings(f['panels'], 'panel'), _read_strings(f['panels'], 'gene')):
                    panels.setdefault(panel, []).append(gene)

            definitions = []
            for grp in f['prs'].values():
                definitions.append(PRSDefinition(
                    name=str(grp.attrs['name']),
                    assembly=Assembly[str(grp.attrs['assembly'])],
                    chr=grp['chrom'][:],
                    pos=grp['pos'][:],
                    effect_allele=np.array(_read_strings(grp, 'effect_allele'), dtype=object),
                    other_allele=np.array(_read_strings(grp, 'other_allele'), dtype=object),
                    weight=grp['weight'][:],
                ))
    except (KeyError, OSError) as e:
        raise InternalError(f"Corrupt snapshot file {path}: {e}") from e

    try:
        return DatasetSnapshot.build(
            assembly, variants, genotypes, samples,
            sample_sheet=sheet, gene_table=gene_table, panels=panels,
            prs=definitions, validate=validate,
        )
    except ValueError as e:
        raise InternalError(f"Corrupt snapshot file {path}: {e}") from e
