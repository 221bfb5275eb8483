import logging
import os

import numpy as np
import pandas as pd
import pytest

from phagecorr._data_config import ComparisonSettings
from phagecorr.cli import parse_cli
from phagecorr.exceptions import NoSuccessfulComparisons
from phagecorr.pantry import AbundanceMatrix
from phagecorr.analysis import CorrelationResult, correlation_obj
from phagecorr.pipelines import join_sides, run_comparisons, write_results

SAMPLES = [f"S{i}" for i in range(1, 9)]


def _matrix(entities, seed, samples=SAMPLES):
    rng = np.random.default_rng(seed)
    return AbundanceMatrix.from_arrays(samples, entities, rng.random((len(samples), len(entities))))


@pytest.fixture
def sides():
    bacteria = {
        "Family": _matrix(["bf1", "bf2"], 1),
        "Genus": _matrix(["bg1", "bg2", "bg3"], 2),
    }
    phage = {
        "Family": _matrix(["pf1", "pf2"], 3),
        "Genus": _matrix(["pg1", "pg2"], 4, samples=SAMPLES[:7] + ["S99"]),
    }
    return bacteria, phage


@pytest.fixture
def membership():
    return {"pos": {"S1", "S2", "S3", "S4"}, "neg": {"S5", "S6", "S7", "S8"}}


def test_join_sides_inner_join_and_suffixes():
    bacteria = AbundanceMatrix.from_arrays(["S1", "S2"], ["x", "shared"], [[0.1, 0.2], [0.3, 0.4]])
    phage = AbundanceMatrix.from_arrays(["S2", "S3"], ["shared", "y"], [[0.5, 0.6], [0.7, 0.8]])

    joined, set_a, set_b = join_sides(bacteria, phage)

    assert joined.samples == ["S2"]
    assert set_a == ["x", "shared (bacteria)"]
    assert set_b == ["shared (phage)", "y"]
    assert joined.entities == set_a + set_b
    assert joined.frame.loc["S2", "shared (phage)"] == pytest.approx(0.5)


def test_every_level_pair_and_cohort(sides, membership):
    settings = ComparisonSettings(ranks=("Family", "Genus"), alpha=0.5)
    results = run_comparisons(*sides, membership, settings)

    assert list(results) == [
        ("Family", "Family"), ("Family", "Genus"), ("Genus", "Family"), ("Genus", "Genus")
    ]
    for by_cohort in results.values():
        assert list(by_cohort) == ["pos", "neg"]

    genus = results[("Genus", "Family")]["pos"]
    assert not genus.failed
    assert genus.cross_matrix.index.tolist() == ["bg1", "bg2", "bg3"]
    assert genus.cross_matrix.columns.tolist() == ["pf1", "pf2"]


def test_failed_unit_does_not_abort_others(sides, membership):
    # phage Genus lacks S8, so "neg" keeps only S7 in the Family-Genus join
    membership = {"pos": membership["pos"], "neg": {"S7", "S8"}}
    results = run_comparisons(*sides, membership, ComparisonSettings(ranks=("Family", "Genus")))

    failed = results[("Family", "Genus")]["neg"]
    assert failed.failed
    assert failed.reason.startswith("InsufficientSamples")
    assert not results[("Family", "Genus")]["pos"].failed
    assert not results[("Family", "Family")]["pos"].failed


def test_missing_rank_is_recorded_as_failure(sides, membership):
    settings = ComparisonSettings(ranks=("Family", "Order"))
    results = run_comparisons(*sides, membership, settings)

    assert results[("Order", "Family")]["pos"].failed
    assert "bacteria Order" in results[("Order", "Family")]["pos"].reason
    assert not results[("Family", "Family")]["neg"].failed


def test_join_failure_is_recorded_per_cohort(sides, membership):
    bacteria, phage = sides
    # suffixing the shared "x" collides with the existing "x (bacteria)" column
    bacteria = dict(bacteria, Genus=_matrix(["x", "x (bacteria)"], 5))
    phage = dict(phage, Genus=_matrix(["x"], 6))
    results = run_comparisons(bacteria, phage, membership, ComparisonSettings(ranks=("Family", "Genus")))

    for cohort in ("pos", "neg"):
        failed = results[("Genus", "Genus")][cohort]
        assert failed.failed
        assert failed.reason.startswith("ValueError")
        assert "Duplicate entity labels" in failed.reason
    assert not results[("Genus", "Family")]["pos"].failed
    assert not results[("Family", "Genus")]["pos"].failed


def test_all_units_failing_raises(sides):
    with pytest.raises(NoSuccessfulComparisons):
        run_comparisons(*sides, {"tiny": {"S1", "S2"}}, ComparisonSettings(ranks=("Family",)))


def test_worker_pool_matches_serial(sides, membership):
    serial = run_comparisons(*sides, membership, ComparisonSettings(ranks=("Family", "Genus"), n_workers=1))
    pooled = run_comparisons(*sides, membership, ComparisonSettings(ranks=("Family", "Genus"), n_workers=2))

    for key, by_cohort in serial.items():
        for cohort, result in by_cohort.items():
            pd.testing.assert_frame_equal(result.cross_matrix, pooled[key][cohort].cross_matrix)
            pd.testing.assert_frame_equal(result.p_value_matrix, pooled[key][cohort].p_value_matrix)


def test_write_results(tmp_path, sides, membership):
    results = run_comparisons(*sides, membership, ComparisonSettings(ranks=("Family",), alpha=1.0))
    summary = write_results(results, str(tmp_path), tag="run_")

    base = tmp_path / "run_Family-Family_pos"
    matrix = pd.read_csv(f"{base}_Correlation_Matrix.tsv", sep="\t", index_col=0)
    assert matrix.index.tolist() == ["bf1", "bf2"]
    assert matrix.columns.tolist() == ["pf1", "pf2"]
    assert os.path.exists(f"{base}_Correlation_P-Values.tsv")
    assert os.path.exists(f"{base}_Significant_Correlation_Matrix.tsv")
    assert (tmp_path / "run_summary.tsv").exists()
    assert summary["status"].tolist() == ["populated", "populated"]


def _counts(prefix, n_samples):
    rows = []
    for i in range(1, n_samples + 1):
        rows.append({"sample": f"S{i}", "rank": "Genus", "taxon": f"{prefix}1", "count": i})
        rows.append({"sample": f"S{i}", "rank": "Genus", "taxon": f"{prefix}2", "count": 10})
    return pd.DataFrame(rows)


def test_correlate_command(tmp_path):
    _counts("B", 8).to_csv(tmp_path / "bacteria.tsv", sep="\t", index=False)
    _counts("P", 8).to_csv(tmp_path / "phage.tsv", sep="\t", index=False)
    pd.DataFrame({"sample": ["S1", "S2", "S3", "S4"], "group": ["pos"] * 4}).to_csv(
        tmp_path / "a.tsv", sep="\t", index=False)
    pd.DataFrame({"sample": ["S5", "S6", "S7", "S8"], "group": ["neg"] * 4}).to_csv(
        tmp_path / "b.tsv", sep="\t", index=False)
    out = tmp_path / "out"

    parse_cli([
        "correlate",
        "--bacteria_counts", str(tmp_path / "bacteria.tsv"),
        "--phage_counts", str(tmp_path / "phage.tsv"),
        "--annotations_a", str(tmp_path / "a.tsv"),
        "--annotations_b", str(tmp_path / "b.tsv"),
        "--output_dir", str(out),
        "--ranks", "Genus",
        "--quiet",
    ])

    matrix = pd.read_csv(out / "Genus-Genus_pos_Correlation_Matrix.tsv", sep="\t", index_col=0)
    assert matrix.loc["B1", "P1"] == pytest.approx(1.0)
    assert matrix.loc["B1", "P2"] == pytest.approx(-1.0)
    assert (out / "Genus-Genus_neg_Significant_Correlation_Matrix.tsv").exists()
    summary = pd.read_csv(out / "summary.tsv", sep="\t")
    assert set(summary["cohort"]) == {"pos", "neg"}


def test_write_results_reports_unplottable_results(tmp_path, scenario_matrix, caplog):
    results = {
        ("Genus", "Genus"): {
            "all": correlation_obj(scenario_matrix, {"B1"}, {"P2"}),
            "tiny": CorrelationResult.empty_comparison("InsufficientSamples: 2 samples"),
        }
    }
    with caplog.at_level(logging.INFO, logger="phagecorr.pipelines"):
        summary = write_results(results, str(tmp_path))

    messages = [r.getMessage() for r in caplog.records if "not enough for a heatmap" in r.getMessage()]
    assert len(messages) == 1
    assert messages[0].startswith("Genus-Genus_all")
    assert summary["status"].tolist() == ["empty", "failed"]
    assert not (tmp_path / "Genus-Genus_all_Significant_Correlation_Matrix.tsv").exists()
    assert not (tmp_path / "Genus-Genus_tiny_Correlation_Matrix.tsv").exists()
