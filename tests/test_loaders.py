import gzip

import numpy as np
import pytest

from vardb.data.loaders import (
    detect_file_format,
    load_gene_table,
    load_panels,
    load_prs_file,
    load_sample_sheet,
)
from vardb.utils.data_types import Assembly, Sex


@pytest.mark.parametrize(
    "name,expected",
    [
        ("calls.vcf", "vcf"),
        ("calls.vcf.gz", "vcf"),
        ("calls.bcf", "vcf"),
        ("store.h5", "hdf5"),
        ("sheet.tsv", "tsv"),
        ("sheet.csv", "csv"),
    ],
)
def test_detect_file_format_by_extension(tmp_path, name, expected) -> None:
    assert detect_file_format(tmp_path / name) == expected


def test_detect_file_format_by_content(tmp_path) -> None:
    path = tmp_path / "noext"
    path.write_text("##fileformat=VCFv4.2\n", encoding="utf-8")
    assert detect_file_format(path) == "vcf"
    assert detect_file_format(tmp_path / "missing") == "unknown"


def test_load_sample_sheet_parses_sex_and_cohorts(tmp_path) -> None:
    path = tmp_path / "samples.tsv"
    path.write_text(
        "sample\tsex\tcohorts\n"
        "HG002\tM\ttrio;giab\n"
        "HG004\tfemale\ttrio\n"
        "S9\tNA\t\n",
        encoding="utf-8",
    )

    sheet = load_sample_sheet(path)

    assert sheet["sample"].tolist() == ["HG002", "HG004", "S9"]
    assert sheet["sex"].tolist() == [Sex.MALE, Sex.FEMALE, Sex.UNKNOWN]
    assert sheet["cohorts"].tolist() == [("trio", "giab"), ("trio",), ()]


def test_load_sample_sheet_alternate_id_and_duplicates(tmp_path) -> None:
    path = tmp_path / "samples.csv"
    path.write_text("IID,sex\nA,1\nB,2\nA,2\n", encoding="utf-8")

    with pytest.warns(UserWarning, match="duplicated sample"):
        sheet = load_sample_sheet(path)

    assert sheet["sample"].tolist() == ["A", "B"]
    assert sheet["sex"].tolist() == [Sex.MALE, Sex.FEMALE]


def test_load_sample_sheet_without_sex_column_warns(tmp_path) -> None:
    path = tmp_path / "samples.tsv"
    path.write_text("sample\nA\n", encoding="utf-8")

    with pytest.warns(UserWarning, match="no 'sex' column"):
        sheet = load_sample_sheet(path)

    assert sheet["sex"].tolist() == [Sex.UNKNOWN]


def test_load_sample_sheet_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_sample_sheet(tmp_path / "none.tsv")


def test_load_gene_table(tmp_path) -> None:
    path = tmp_path / "genes.tsv"
    path.write_text("symbol\tchrom\tstart\tend\nBRCA2\tchr13\t32315508\t32400268\nDMD\tX\t31097677\t33339441\n",
                    encoding="utf-8")

    genes = load_gene_table(path)

    assert genes["symbol"].tolist() == ["BRCA2", "DMD"]
    assert genes["chrom"].tolist() == [13, 23]
    assert genes["start"].dtype == np.int64


def test_load_gene_table_rejects_bad_coordinates(tmp_path) -> None:
    path = tmp_path / "genes.tsv"
    path.write_text("symbol\tchrom\tstart\tend\nBAD\t1\t500\t100\n", encoding="utf-8")

    with pytest.raises(ValueError, match="invalid coordinates"):
        load_gene_table(path)


def test_load_gene_table_requires_columns(tmp_path) -> None:
    path = tmp_path / "genes.tsv"
    path.write_text("symbol\tchrom\nBRCA2\t13\n", encoding="utf-8")

    with pytest.raises(ValueError, match="missing required columns"):
        load_gene_table(path)


def test_load_panels_deduplicates_genes(tmp_path) -> None:
    path = tmp_path / "panels.tsv"
    path.write_text("panel\tgene\ncardio\tMYH7\ncardio\tTTN\ncardio\tMYH7\ncancer\tBRCA2\n", encoding="utf-8")

    panels = load_panels(path)

    assert panels == {"cardio": ["MYH7", "TTN"], "cancer": ["BRCA2"]}


def _write_scoring_file(path, opener=open):
    with opener(path, "wt") as fh:
        fh.write(
            "###PGS CATALOG SCORING FILE\n"
            "#pgs_id=PGS000001\n"
            "#pgs_name=PRS77_BC\n"
            "#genome_build=GRCh37\n"
            "chr_name\tchr_position\teffect_allele\tother_allele\teffect_weight\n"
            "1\t100880328\tt\ta\t0.0373\n"
            "X\t5000\tG\t\t-0.1\n"
            "1\t100880328\tT\tA\t0.5\n"
            "2\t\tC\tT\t0.2\n"
        )


def test_load_prs_file_reads_header_and_cleans_rows(tmp_path) -> None:
    path = tmp_path / "PGS000001.txt"
    _write_scoring_file(path)

    with pytest.warns(UserWarning):
        definition = load_prs_file(path)

    assert definition.name == "PRS77_BC"
    assert definition.assembly is Assembly.GRCh37
    assert len(definition) == 2
    assert definition.chr.tolist() == [1, 23]
    assert definition.effect_allele.tolist() == ["T", "G"]
    assert definition.other_allele.tolist() == ["A", ""]
    np.testing.assert_allclose(definition.weight, [0.0373, -0.1])


def test_load_prs_file_gzip_with_overrides(tmp_path) -> None:
    path = tmp_path / "score.txt.gz"
    _write_scoring_file(path, opener=gzip.open)

    with pytest.warns(UserWarning):
        definition = load_prs_file(path, name="custom", assembly="GRCh38")

    assert definition.name == "custom"
    assert definition.assembly is Assembly.GRCh38
