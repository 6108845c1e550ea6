import gzip
import sys
import types

import numpy as np
import pytest

from vardb.data.load_genotype_vcf import load_genotype_vcf

VCF_TEXT = "\n".join([
    "##fileformat=VCFv4.2",
    "##contig=<ID=1>",
    "\t".join(["#CHROM", "POS", "ID", "REF", "ALT", "QUAL", "FILTER", "INFO", "FORMAT", "HG002", "HG003", "HG004"]),
    "\t".join(["1", "100", "rs1", "A", "G", ".", "PASS", ".", "GT:DP", "0/1:10", "1/1:12", "0/0:9"]),
    "\t".join(["1", "200", "rs2", "C", "T,G", ".", "PASS", ".", "GT", "1/2", "0/2", "./."]),
    "\t".join(["1", "300", "del1", "ACGT", "A", ".", "PASS", ".", "GT", "0|1", "0|0", "1|1"]),
    "\t".join(["X", "5000000", "rsx", "C", "T", ".", "PASS", ".", "GT", "1", "0", "0/1"]),
    "\t".join(["chrUn_gl000220", "10", ".", "A", "C", ".", "PASS", ".", "GT", "0/1", "0/1", "0/1"]),
    "\t".join(["1", "bad", ".", "A", "C", ".", "PASS", ".", "GT", "0/1", "0/1", "0/1"]),
    "\t".join(["2", "50", "sv1", "N", "<DEL>", ".", "PASS", "SVTYPE=DEL;END=900", "GT", "0/1", "0/0", "0/0"]),
    "\t".join(["1", "400", ".", "A", ".", ".", "PASS", ".", "GT", "0/0", "0/0", "0/0"]),
]) + "\n"


def _write_vcf(tmp_path, name="calls.vcf"):
    path = tmp_path / name
    if name.endswith(".gz"):
        with gzip.open(path, "wt") as fh:
            fh.write(VCF_TEXT)
    else:
        path.write_text(VCF_TEXT, encoding="utf-8")
    return path


def test_load_genotype_vcf_builtin_codes_and_splits(tmp_path) -> None:
    path = _write_vcf(tmp_path)

    with pytest.warns(UserWarning) as record:
        geno, ids, table = load_genotype_vcf(path)

    messages = " ".join(str(w.message) for w in record)
    assert "1 malformed" in messages
    assert "unsupported contigs" in messages

    assert ids == ["HG002", "HG003", "HG004"]
    assert geno.dtype == np.int8
    np.testing.assert_array_equal(
        geno,
        np.array(
            [
                [1, 2, 0],     # rs1
                [1, -9, -9],   # rs2 T: HG003 carries only the other ALT
                [1, 1, -9],    # rs2 G
                [1, 0, 2],     # del1
                [2, 0, 1],     # rsx, haploid calls
                [1, 0, 0],     # sv1
            ],
            dtype=np.int8,
        ),
    )
    assert table["CHROM"].tolist() == [1, 1, 1, 1, 23, 2]
    assert table["ALT"].tolist() == ["G", "T", "G", "A", "T", "<DEL>"]
    assert table["END"].tolist() == [100, 200, 200, 303, 5000000, 900]


def test_load_genotype_vcf_filters(tmp_path) -> None:
    path = _write_vcf(tmp_path, "calls.vcf.gz")

    with pytest.warns(UserWarning):
        geno, _, table = load_genotype_vcf(path, split_multiallelic=False, include_indels=False)

    assert table["START"].tolist() == [100, 5000000]
    assert geno.shape == (2, 3)


def test_load_genotype_vcf_errors(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_genotype_vcf(tmp_path / "absent.vcf")

    bcf = tmp_path / "calls.bcf"
    bcf.write_bytes(b"")
    with pytest.raises(ImportError):
        load_genotype_vcf(bcf)

    path = _write_vcf(tmp_path)
    with pytest.raises(ValueError, match="backend"):
        load_genotype_vcf(path, backend="pysam")

    headerless = tmp_path / "headerless.vcf"
    headerless.write_text("1\t100\t.\tA\tG\t.\t.\t.\tGT\t0/1\n", encoding="utf-8")
    with pytest.raises(ValueError, match="header"):
        load_genotype_vcf(headerless)


def test_load_genotype_vcf_cyvcf2_stub(monkeypatch, tmp_path) -> None:
    class FakeVariant:
        def __init__(self, chrom, pos, ref, alts, genotypes):
            self.CHROM = chrom
            self.POS = pos
            self.REF = ref
            self.ALT = alts
            self.end = pos + len(ref) - 1
            self.genotypes = genotypes

    class FakeVCF:
        def __init__(self, path, threads=1):
            self.samples = ["S1", "S2"]
            self.closed = False
            self._vars = [
                FakeVariant("1", 100, "A", ["G"], [[0, 0, False], [0, 1, False]]),
                FakeVariant("1", 200, "C", ["T"], [[1, 1, True], [-1, -1, False]]),
                FakeVariant("1", 300, "G", ["T", "C"], [[1, 2, False], [0, 2, False]]),
                FakeVariant("1", 400, "A", ["AT"], [[0, 1, False], [0, 0, False]]),
                FakeVariant("chrX", 5000000, "C", ["T"], [[1, False], [0, -2, False]]),
                FakeVariant("GL000220.1", 10, "A", ["C"], [[0, 1, False], [0, 1, False]]),
            ]

        def __iter__(self):
            return iter(self._vars)

        def close(self):
            self.closed = True

    fake_module = types.SimpleNamespace(VCF=FakeVCF)
    monkeypatch.setitem(sys.modules, "cyvcf2", fake_module)

    vcf_path = tmp_path / "dummy.vcf"
    vcf_path.write_text("", encoding="utf-8")

    with pytest.warns(UserWarning, match="unsupported contigs"):
        geno, ids, table = load_genotype_vcf(vcf_path, backend="cyvcf2", include_indels=False)

    assert ids == ["S1", "S2"]
    np.testing.assert_array_equal(
        geno,
        np.array(
            [
                [0, 1],     # 1:100
                [2, -9],    # 1:200
                [1, -9],    # 1:300 T
                [1, 1],     # 1:300 C
                [2, 0],     # chrX haploid calls
            ],
            dtype=np.int8,
        ),
    )
    assert table["ALT"].tolist() == ["G", "T", "T", "C", "T"]
    assert table["CHROM"].tolist() == [1, 1, 1, 1, 23]
