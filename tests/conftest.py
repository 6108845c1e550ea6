import numpy as np
import pandas as pd
import pytest

from vardb.core.engine import QueryEngine
from vardb.data.store import DatasetSnapshot, GenotypeStore
from vardb.utils.config import EngineConfig
from vardb.utils.data_types import Assembly, PRSDefinition, Sex

SAMPLES = ["HG002", "HG003", "HG004", "S4", "S5", "S6"]
SEXES = [Sex.MALE, Sex.MALE, Sex.FEMALE, Sex.FEMALE, Sex.MALE, Sex.FEMALE]
COHORTS = [("trio",), ("trio",), ("trio",), ("controls",), ("controls",), ("controls",)]

# CHROM, START, END, REF, ALT, genotypes per sample (given out of canonical order)
TRIO_ROWS = [
    ("2", 5000, 5000, "G", "C", [2, 1, 1, 0, 0, 1]),
    ("1", 881627, 881627, "G", "A", [1, 0, 0, 1, 2, 0]),
    ("X", 5000000, 5000000, "C", "T", [2, 0, 1, 1, 2, 0]),
    ("1", 880238, 880238, "A", "G", [2, 2, 2, 2, 2, 2]),
    ("1", 900000, 900004, "ATTTG", "A", [0, 1, 0, 0, 0, -9]),
    ("2", 1000, 1000, "C", "T", [1, 1, 0, 0, 1, 0]),
    ("X", 155800000, 155800000, "A", "G", [1, 1, 2, 0, 0, 0]),
    ("X", 10000000, 10000000, "G", "A", [2, 2, 0, 0, 2, 1]),
]


def make_sample_sheet():
    return pd.DataFrame({"sample": SAMPLES, "sex": SEXES, "cohorts": COHORTS})


def make_trio_data():
    variants = pd.DataFrame(
        [r[:5] for r in TRIO_ROWS], columns=["CHROM", "START", "END", "REF", "ALT"]
    )
    genotypes = np.array([r[5] for r in TRIO_ROWS], dtype=np.int8)
    return variants, genotypes


def make_gene_table():
    return pd.DataFrame({
        "symbol": ["GENE1", "GENE2"],
        "chrom": [1, 2],
        "start": [880000, 900],
        "end": [882000, 1100],
    })


def make_prs_definition(assembly=Assembly.GRCh38):
    return PRSDefinition(
        name="PGS_TEST",
        assembly=assembly,
        chr=np.array([1, 1, 2, 3], dtype=np.int8),
        pos=np.array([880238, 881627, 5000, 12345], dtype=np.int64),
        effect_allele=np.array(["G", "A", "C", "T"], dtype=object),
        other_allele=np.array(["A", "G", "", "C"], dtype=object),
        weight=np.array([0.5, 1.0, -0.25, 2.0]),
    )


@pytest.fixture
def trio_snapshot():
    variants, genotypes = make_trio_data()
    return DatasetSnapshot.build(
        Assembly.GRCh38, variants, genotypes, SAMPLES,
        sample_sheet=make_sample_sheet(),
        gene_table=make_gene_table(),
        panels={"cardio": ["GENE1", "GENE2", "NOT_A_GENE"]},
        prs=[make_prs_definition()],
    )


@pytest.fixture
def trio_store(trio_snapshot):
    store = GenotypeStore()
    store.install(trio_snapshot)
    return store


@pytest.fixture
def engine(trio_store):
    return QueryEngine(trio_store, EngineConfig(workers=2, shard_rows=2, batch_size=2))


def flatten(stream):
    return [record for batch in stream for record in batch]
