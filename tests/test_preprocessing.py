import numpy as np
import pandas as pd
import pytest

from tsnescope.errors import InsufficientData, NonFiniteDistance
from tsnescope.preprocessing import (
    build_feature_matrix,
    get_feature_columns,
    rescale_features,
)


def test_default_feature_columns_skip_id_and_text(blobs_df):
    assert get_feature_columns(blobs_df, "entity_id") == ["x1", "x2", "x3"]


def test_explicit_feature_columns_are_checked(blobs_df):
    assert get_feature_columns(blobs_df, "entity_id", ["x2"]) == ["x2"]
    with pytest.raises(ValueError):
        get_feature_columns(blobs_df, "entity_id", ["missing"])
    with pytest.raises(ValueError):
        get_feature_columns(blobs_df, "entity_id", ["entity_id"])


def test_zscore_rescaling():
    values = np.array([[1.0, 5.0], [2.0, 5.0], [3.0, 5.0], [6.0, 5.0]])
    scaled = rescale_features(values, "zscore")

    np.testing.assert_allclose(scaled.mean(axis=0), 0.0, atol=1e-12)
    assert scaled[:, 0].std() == pytest.approx(1.0)
    # A constant column is centered but not divided by zero
    np.testing.assert_array_equal(scaled[:, 1], 0.0)


def test_capped_zscore_is_clipped():
    values = np.array([[0.0]] * 19 + [[100.0]])
    scaled = rescale_features(values, "zscore_capped")
    assert scaled.max() == pytest.approx(2.0)
    assert scaled.min() >= -2.0


def test_quantile_rescaling_uses_min_rank():
    values = np.array([[10.0], [30.0], [20.0], [20.0], [40.0]])
    scaled = rescale_features(values, "quantile")
    np.testing.assert_allclose(scaled[:, 0], [0.0, 0.75, 0.25, 0.25, 1.0])


def test_minmax_and_none_rescaling():
    values = np.array([[1.0], [3.0], [5.0]])
    np.testing.assert_allclose(rescale_features(values, "minmax")[:, 0], [0.0, 0.5, 1.0])
    np.testing.assert_array_equal(rescale_features(values, "none"), values)
    with pytest.raises(ValueError):
        rescale_features(values, "log")


def test_build_feature_matrix_drops_duplicate_ids(blobs_df):
    df = pd.concat([blobs_df, blobs_df.iloc[[0]].assign(x1=999.0)], ignore_index=True)
    ids, values, cols = build_feature_matrix(df, "entity_id")

    assert len(ids) == 12
    assert values[0, 0] == blobs_df.loc[0, "x1"]
    assert cols == ["x1", "x2", "x3"]


def test_build_feature_matrix_rejects_missing_values(blobs_df):
    df = blobs_df.copy()
    df.loc[3, "x2"] = np.nan
    with pytest.raises(NonFiniteDistance):
        build_feature_matrix(df, "entity_id")

    df = blobs_df.astype({"x3": object})
    df.loc[5, "x3"] = "n/a"
    with pytest.raises(NonFiniteDistance):
        build_feature_matrix(df, "entity_id", feature_columns=["x1", "x3"])


def test_build_feature_matrix_needs_four_entities(six_pairs_df):
    with pytest.raises(InsufficientData):
        build_feature_matrix(six_pairs_df.head(3), "entity_id")
