import numpy as np
import pandas as pd
import pytest

from phagecorr.pantry import AbundanceMatrix


@pytest.fixture
def scenario_matrix():
    """B1 increasing, B2 all zero, P1 monotone with B1, P2 weakly related."""
    samples = ["S1", "S2", "S3", "S4", "S5"]
    frame = pd.DataFrame(
        {
            "B1": [0.10, 0.20, 0.30, 0.40, 0.50],
            "B2": [0.0, 0.0, 0.0, 0.0, 0.0],
            "P1": [0.05, 0.15, 0.25, 0.35, 0.45],
            "P2": [0.20, 0.50, 0.10, 0.40, 0.30],
        },
        index=samples,
    )
    return AbundanceMatrix(frame)


@pytest.fixture
def random_matrix():
    rng = np.random.default_rng(7)
    values = rng.random((12, 6))
    values[:, 2] = 0.0
    samples = [f"S{i}" for i in range(12)]
    entities = ["B1", "B2", "B3", "P1", "P2", "P3"]
    return AbundanceMatrix.from_arrays(samples, entities, values)


def long_counts(rank, table):
    """Build long-format count records from {sample: {taxon: count}}."""
    rows = [
        {"sample": sample, "rank": rank, "taxon": taxon, "count": count}
        for sample, by_taxon in table.items()
        for taxon, count in by_taxon.items()
    ]
    return pd.DataFrame(rows)
