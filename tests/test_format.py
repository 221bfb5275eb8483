import numpy as np
import pandas as pd
import pytest

from phagecorr.format import format_data, project_abundance, project_by_rank

from conftest import long_counts


def test_projection_normalises_and_thresholds():
    records = long_counts("Genus", {
        "S1": {"a": 50, "b": 49, "c": 1},
        "S2": {"a": 10},
    })
    matrix = project_abundance(records)

    assert matrix.samples == ["S1", "S2"]
    assert matrix.entities == ["a", "b", "c"]
    frame = matrix.frame
    assert frame.loc["S1", "a"] == pytest.approx(0.5)
    assert frame.loc["S1", "b"] == pytest.approx(0.49)
    # exactly 1% is discarded
    assert frame.loc["S1", "c"] == 0.0
    assert frame.loc["S2"].tolist() == [1.0, 0.0, 0.0]


def test_thresholded_entity_keeps_its_column():
    records = long_counts("Genus", {
        "S1": {"a": 999, "rare": 1},
        "S2": {"a": 500, "rare": 1},
    })
    matrix = project_abundance(records)
    assert "rare" in matrix.entities
    assert matrix.frame["rare"].sum() == 0.0


def test_rows_sum_to_at_most_one():
    rng = np.random.default_rng(3)
    table = {f"S{i}": {f"t{j}": int(rng.integers(0, 200)) for j in range(30)} for i in range(8)}
    matrix = project_abundance(long_counts("Genus", table))
    sums = matrix.values.sum(axis=1)
    assert np.all(sums <= 1.0 + 1e-12)
    assert np.all(matrix.values >= 0.0)


def test_zero_count_sample_is_all_zero():
    records = long_counts("Genus", {"S1": {"a": 0, "b": 0}, "S2": {"a": 3, "b": 1}})
    matrix = project_abundance(records)
    assert matrix.frame.loc["S1"].tolist() == [0.0, 0.0]


def test_records_sharing_a_label_are_combined_before_cutoff():
    records = pd.DataFrame({
        "sample": ["S1", "S1", "S1"],
        "rank": ["Genus"] * 3,
        "taxon": ["a", "rare", "rare"],
        "count": [984, 8, 8],
    })
    matrix = project_abundance(records)
    assert matrix.entities == ["a", "rare"]
    assert matrix.frame.loc["S1", "rare"] == pytest.approx(0.016)
    assert matrix.frame.loc["S1", "a"] == pytest.approx(0.984)


def test_cutoff_zero_keeps_everything():
    records = long_counts("Genus", {"S1": {"a": 999, "b": 1}})
    matrix = project_abundance(records, cutoff=0.0)
    assert matrix.frame.loc["S1", "b"] == pytest.approx(0.001)


def test_negative_counts_rejected():
    records = long_counts("Genus", {"S1": {"a": -1, "b": 2}})
    with pytest.raises(ValueError):
        project_abundance(records)


def test_project_by_rank_splits_ranks():
    records = pd.concat([
        long_counts("Family", {"S1": {"f1": 3}, "S2": {"f1": 1, "f2": 1}}),
        long_counts("Genus", {"S1": {"g1": 1}, "S2": {"g2": 4}}),
    ])
    matrices = project_by_rank(records, ranks=["Family", "Genus", "Species"])

    assert set(matrices) == {"Family", "Genus"}
    assert matrices["Family"].entities == ["f1", "f2"]
    assert matrices["Genus"].frame.loc["S2", "g2"] == 1.0


def test_format_data_writes_one_file_per_rank(tmp_path):
    records = pd.concat([
        long_counts("Family", {"S1": {"f1": 3}}),
        long_counts("Genus", {"S1": {"g1": 1}}),
    ])
    counts_file = tmp_path / "counts.tsv"
    records.to_csv(counts_file, sep="\t", index=False)

    paths = format_data(str(counts_file), str(tmp_path / "out"), ranks=["Family", "Genus"], tag="bac_")

    assert sorted(paths) == ["Family", "Genus"]
    assert paths["Genus"].endswith("bac_Genus_abundance.tsv")
    frame = pd.read_csv(paths["Family"], sep="\t", index_col=0)
    assert frame.loc["S1", "f1"] == 1.0
