import numpy as np
import pytest

from vardb.association.prs import dosage, match_prs_variants, score_prs
from vardb.utils.data_types import Assembly, GeneticModel, PRSDefinition, SampleScore
from vardb.utils.errors import InvalidArgumentError


def test_dosage_models() -> None:
    g = np.array([[0, 1, 2, -9]], dtype=np.int8)

    np.testing.assert_array_equal(dosage(g, GeneticModel.ADDITIVE), [[0, 1, 2, 0]])
    np.testing.assert_array_equal(dosage(g, GeneticModel.DOMINANT), [[0, 1, 1, 0]])
    np.testing.assert_array_equal(dosage(g, GeneticModel.RECESSIVE), [[0, 0, 1, 0]])


def test_match_prs_variants(trio_snapshot) -> None:
    rows, weights, flipped = match_prs_variants(trio_snapshot, trio_snapshot.prs["PGS_TEST"])

    np.testing.assert_array_equal(rows, [0, 1, 4])
    np.testing.assert_allclose(weights, [0.5, 1.0, -0.25])
    assert not flipped.any()


def test_match_prs_variants_checks_other_allele(trio_snapshot) -> None:
    definition = PRSDefinition(
        name="mismatched",
        assembly=Assembly.GRCh38,
        chr=np.array([1, 1], dtype=np.int8),
        pos=np.array([880238, 881627]),
        effect_allele=np.array(["G", "g"], dtype=object),
        other_allele=np.array(["C", "G"], dtype=object),
        weight=np.array([1.0, 2.0]),
    )

    rows, weights, flipped = match_prs_variants(trio_snapshot, definition)

    # The first entry names a different reference allele; the second is
    # lower-case in the definition and does not match an upper-case ALT
    assert rows.size == 0
    assert weights.size == 0


def test_dosage_counts_reference_alleles_on_flipped_rows() -> None:
    g = np.array([[0, 1, 2, -9], [0, 1, 2, -9]], dtype=np.int8)
    flipped = np.array([False, True])

    np.testing.assert_array_equal(dosage(g, GeneticModel.ADDITIVE, flipped), [[0, 1, 2, 0], [2, 1, 0, 0]])
    np.testing.assert_array_equal(dosage(g, GeneticModel.DOMINANT, flipped), [[0, 1, 1, 0], [1, 1, 0, 0]])
    np.testing.assert_array_equal(dosage(g, GeneticModel.RECESSIVE, flipped), [[0, 0, 1, 0], [1, 0, 0, 0]])


def _reference_effect_definition() -> PRSDefinition:
    # 1:881627 is G>A; the effect allele is the reference G
    return PRSDefinition(
        name="reference_effect",
        assembly=Assembly.GRCh38,
        chr=np.array([1, 1, 1], dtype=np.int8),
        pos=np.array([881627, 881627, 881627]),
        effect_allele=np.array(["G", "A", "G"], dtype=object),
        other_allele=np.array(["A", "G", ""], dtype=object),
        weight=np.array([1.0, 0.5, 3.0]),
    )


def test_match_prs_variants_effect_on_reference(trio_snapshot) -> None:
    rows, weights, flipped = match_prs_variants(trio_snapshot, _reference_effect_definition())

    # The entry without an other allele cannot be placed on REF
    np.testing.assert_array_equal(rows, [1, 1])
    np.testing.assert_allclose(weights, [1.0, 0.5])
    np.testing.assert_array_equal(flipped, [True, False])


def test_score_prs_effect_on_reference(trio_snapshot) -> None:
    definition = PRSDefinition(
        name="reference_effect",
        assembly=Assembly.GRCh38,
        chr=np.array([1], dtype=np.int8),
        pos=np.array([881627]),
        effect_allele=np.array(["G"], dtype=object),
        other_allele=np.array(["A"], dtype=object),
        weight=np.array([1.0]),
    )
    columns = np.arange(trio_snapshot.n_samples)

    additive = score_prs(trio_snapshot, definition, columns, GeneticModel.ADDITIVE)
    dominant = score_prs(trio_snapshot, definition, columns, GeneticModel.DOMINANT)
    recessive = score_prs(trio_snapshot, definition, columns, GeneticModel.RECESSIVE)

    # Stored genotypes at the row: [1, 0, 0, 1, 2, 0]
    assert additive.prs_cardinality == 1
    assert [s.scores_sum for s in additive.sample_scores] == pytest.approx([1, 2, 2, 1, 0, 2])
    assert [s.scores_sum for s in dominant.sample_scores] == pytest.approx([1, 1, 1, 1, 0, 1])
    assert [s.scores_sum for s in recessive.sample_scores] == pytest.approx([0, 1, 1, 0, 0, 1])
    # Carrier counts describe the stored genotypes
    assert [s.hethom_cardinality for s in additive.sample_scores] == [1, 0, 0, 1, 1, 0]
    assert [s.ref_cardinality for s in additive.sample_scores] == [0, 1, 1, 0, 0, 1]


def test_score_prs_additive(trio_snapshot) -> None:
    columns = np.arange(trio_snapshot.n_samples)

    result = score_prs(trio_snapshot, trio_snapshot.prs["PGS_TEST"], columns, GeneticModel.ADDITIVE, batch_rows=2)

    assert result.prs_cardinality == 3
    scores = {s.sample: s.scores_sum for s in result.sample_scores}
    assert scores == pytest.approx({
        "HG002": 1.5, "HG003": 0.75, "HG004": 0.75, "S4": 2.0, "S5": 3.0, "S6": 0.75,
    })


def test_engine_prs_models(engine) -> None:
    additive = engine.prs("PGS_TEST", cohort_name="trio")
    dominant = engine.prs("PGS_TEST", cohort_name="trio", dominant=True)
    recessive = engine.prs("PGS_TEST", cohort_name="trio", recessive=True)

    assert additive.sample_scores == (
        SampleScore("HG002", 1.5, 3, 0),
        SampleScore("HG003", 0.75, 2, 1),
        SampleScore("HG004", 0.75, 2, 1),
    )
    assert [s.scores_sum for s in dominant.sample_scores] == pytest.approx([1.25, 0.25, 0.25])
    assert [s.scores_sum for s in recessive.sample_scores] == pytest.approx([0.25, 0.5, 0.5])
    assert dominant.prs_cardinality == recessive.prs_cardinality == 3


def test_engine_prs_sample_selection(engine) -> None:
    result = engine.prs("PGS_TEST", samples=["S5"], cohort_name="trio")

    assert [s.sample for s in result.sample_scores] == ["HG002", "HG003", "HG004", "S5"]
    # No explicit samples or cohort: the score is matched but nobody is scored
    empty = engine.prs("PGS_TEST")
    assert empty.prs_cardinality == 3
    assert empty.sample_scores == ()


def test_engine_prs_unknown_name(engine) -> None:
    assert engine.prs("PGS_MISSING", cohort_name="trio").prs_cardinality == -1
    assert engine.prs("PGS_TEST", cohort_name="trio", assembly="GRCh37").prs_cardinality == -1


def test_engine_prs_rejects_both_models(engine) -> None:
    with pytest.raises(InvalidArgumentError):
        engine.prs("PGS_TEST", cohort_name="trio", dominant=True, recessive=True)
    # Checked before the score is looked up
    with pytest.raises(InvalidArgumentError):
        engine.prs("PGS_MISSING", dominant=True, recessive=True)
