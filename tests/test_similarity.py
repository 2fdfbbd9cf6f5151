import numpy as np
import pandas as pd
import pytest

from tsnescope.errors import (
    IncompleteDistanceTable,
    InconsistentDistance,
    InsufficientData,
    NonFiniteDistance,
)
from tsnescope.similarity import (
    resolve_distance_matrix,
    resolve_distance_table,
    resolve_feature_distances,
    validate_distance_matrix,
)


def _pairs(rows):
    return pd.DataFrame(rows, columns=["entity1", "entity2", "distance"])


def _square(n=4):
    return [
        ("a", "b", 1.0), ("a", "c", 2.0), ("a", "d", 3.0),
        ("b", "c", 1.5), ("b", "d", 2.5), ("c", "d", 1.0),
    ][: n * (n - 1) // 2]


# ---------------------------------------------------------------------------
# Feature vectors
# ---------------------------------------------------------------------------


def test_feature_distances_are_euclidean():
    X = np.array([[0.0, 0.0], [3.0, 4.0], [6.0, 8.0], [0.0, 1.0]])
    D = resolve_feature_distances(X)

    assert D.shape == (4, 4)
    assert D[0, 1] == pytest.approx(5.0)
    assert D[0, 2] == pytest.approx(10.0)
    assert D[1, 3] == pytest.approx(np.hypot(3.0, 3.0))
    np.testing.assert_array_equal(D, D.T)
    np.testing.assert_array_equal(np.diag(D), 0.0)


def test_feature_distances_single_dimension():
    D = resolve_feature_distances(np.array([[0.0], [1.0], [3.0], [7.0]]))
    assert D[0, 3] == pytest.approx(7.0)


def test_feature_distances_need_four_entities():
    with pytest.raises(InsufficientData):
        resolve_feature_distances(np.zeros((3, 2)))


def test_feature_distances_reject_nan():
    X = np.array([[0.0, 0.0], [1.0, np.nan], [2.0, 2.0], [3.0, 3.0]])
    with pytest.raises(NonFiniteDistance):
        resolve_feature_distances(X)


# ---------------------------------------------------------------------------
# Distance tables
# ---------------------------------------------------------------------------


def test_table_matches_feature_distances(blobs_df, blobs_distance_table):
    ids, D = resolve_distance_table(blobs_distance_table)
    expected = resolve_feature_distances(blobs_df[["x1", "x2", "x3"]].to_numpy())

    assert ids == blobs_df["entity_id"].tolist()
    np.testing.assert_allclose(D, expected, atol=1e-12)


def test_table_orders_entities_by_first_appearance():
    rows = [("d", "b", 1.0), ("a", "d", 2.0), ("b", "a", 3.0),
            ("c", "a", 1.0), ("c", "b", 1.0), ("c", "d", 1.0)]
    ids, D = resolve_distance_table(_pairs(rows))

    assert ids == ["d", "b", "a", "c"]
    assert D[ids.index("a"), ids.index("b")] == 3.0
    assert D[ids.index("b"), ids.index("a")] == 3.0


def test_table_missing_pair_is_an_error():
    with pytest.raises(IncompleteDistanceTable):
        resolve_distance_table(_pairs(_square()[:-1]))


def test_table_without_symmetric_completion_needs_both_directions():
    rows = _square()
    with pytest.raises(IncompleteDistanceTable):
        resolve_distance_table(_pairs(rows), complete_symmetric=False)

    both = rows + [(b, a, d) for a, b, d in rows]
    ids, D = resolve_distance_table(_pairs(both), complete_symmetric=False)
    assert D[ids.index("a"), ids.index("d")] == 3.0


def test_table_averages_values_within_tolerance():
    rows = _square() + [("b", "a", 1.0 + 1e-12)]
    ids, D = resolve_distance_table(_pairs(rows), tolerance=1e-9)

    assert D[0, 1] == pytest.approx(1.0 + 0.5e-12, abs=1e-15)
    assert D[0, 1] == D[1, 0]


def test_table_conflicting_values_are_an_error():
    rows = _square() + [("b", "a", 1.1)]
    with pytest.raises(InconsistentDistance):
        resolve_distance_table(_pairs(rows))


def test_table_rejects_negative_and_self_distances():
    with pytest.raises(InconsistentDistance):
        resolve_distance_table(_pairs(_square()[:-1] + [("c", "d", -1.0)]))
    with pytest.raises(InconsistentDistance):
        resolve_distance_table(_pairs(_square() + [("a", "a", 0.5)]))

    # A zero self distance is accepted and ignored
    ids, _ = resolve_distance_table(_pairs(_square() + [("a", "a", 0.0)]))
    assert len(ids) == 4


def test_table_rejects_non_finite_distances():
    with pytest.raises(NonFiniteDistance):
        resolve_distance_table(_pairs(_square()[:-1] + [("c", "d", np.inf)]))
    with pytest.raises(NonFiniteDistance):
        resolve_distance_table(_pairs(_square()[:-1] + [("c", "d", None)]))


def test_table_needs_four_entities():
    rows = [("a", "b", 1.0), ("a", "c", 1.0), ("b", "c", 1.0)]
    with pytest.raises(InsufficientData):
        resolve_distance_table(_pairs(rows))


def test_table_custom_column_names():
    df = _pairs(_square()).rename(
        columns={"entity1": "node1", "entity2": "node2", "distance": "dist"}
    )
    ids, D = resolve_distance_table(df, columns=("node1", "node2", "dist"))
    assert ids == ["a", "b", "c", "d"]
    assert D[2, 3] == 1.0


# ---------------------------------------------------------------------------
# Dense matrices
# ---------------------------------------------------------------------------


def test_dense_dataframe_uses_index_as_ids():
    D = np.array([
        [0.0, 1.0, 2.0, 3.0],
        [1.0, 0.0, 1.5, 2.5],
        [2.0, 1.5, 0.0, 1.0],
        [3.0, 2.5, 1.0, 0.0],
    ])
    labels = ["w", "x", "y", "z"]
    ids, resolved = resolve_distance_matrix(pd.DataFrame(D, index=labels, columns=labels))

    assert ids == labels
    np.testing.assert_array_equal(resolved, D)


def test_dense_matrix_asymmetry():
    D = np.ones((4, 4)) - np.eye(4)
    D[0, 1] += 1e-13
    np.testing.assert_allclose(validate_distance_matrix(D), np.ones((4, 4)) - np.eye(4))

    D[0, 1] = 2.0
    with pytest.raises(InconsistentDistance):
        validate_distance_matrix(D)


def test_dense_matrix_checks():
    with pytest.raises(ValueError):
        validate_distance_matrix(np.zeros((4, 3)))
    with pytest.raises(InsufficientData):
        validate_distance_matrix(np.zeros((3, 3)))

    D = np.ones((4, 4)) - np.eye(4)
    D[2, 2] = 1.0
    with pytest.raises(InconsistentDistance):
        validate_distance_matrix(D)

    D = np.ones((4, 4)) - np.eye(4)
    D[1, 2] = D[2, 1] = np.nan
    with pytest.raises(NonFiniteDistance):
        validate_distance_matrix(D)
