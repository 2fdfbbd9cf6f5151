import numpy as np
import pytest

from tsnescope.affinity import build_affinities, check_perplexity, conditional_probabilities
from tsnescope.errors import InvalidPerplexity
from tsnescope.similarity import resolve_feature_distances


@pytest.fixture
def blob_distances(blobs_df):
    return resolve_feature_distances(blobs_df[["x1", "x2", "x3"]].to_numpy())


def test_joint_probabilities_invariants(blob_distances):
    aff = build_affinities(blob_distances, perplexity=3.0)
    P = aff.P

    assert P.sum() == pytest.approx(1.0, abs=1e-9)
    np.testing.assert_allclose(P, P.T, atol=0, rtol=0)
    np.testing.assert_array_equal(np.diag(P), 0.0)
    assert (P >= 0).all()
    assert aff.perplexity == 3.0
    assert aff.unconverged_rows == 0


def test_random_inputs_keep_invariants():
    rng = np.random.default_rng(11)
    for n, perplexity in [(10, 2.5), (25, 5.0), (40, 12.0)]:
        D = resolve_feature_distances(rng.normal(size=(n, 5)))
        P = build_affinities(D, perplexity).P
        assert P.sum() == pytest.approx(1.0, abs=1e-9)
        np.testing.assert_array_equal(P, P.T)
        np.testing.assert_array_equal(np.diag(P), 0.0)


def test_conditional_entropy_matches_perplexity(blob_distances):
    perplexity = 3.0
    conditionals, sigmas, unconverged = conditional_probabilities(blob_distances, perplexity)

    assert unconverged == 0
    np.testing.assert_allclose(conditionals.sum(axis=1), 1.0)
    for row in conditionals:
        p = row[row > 0]
        entropy = -np.sum(p * np.log(p))
        assert entropy == pytest.approx(np.log(perplexity), abs=1e-4)
    assert (sigmas > 0).all()


def test_close_neighbours_get_more_mass(blob_distances):
    P = build_affinities(blob_distances, perplexity=3.0).P
    # p0..p3 form the first blob, p4.. are far away
    assert P[0, 1:4].min() > P[0, 4:].max()


def test_affinity_matrix_is_read_only(blob_distances):
    P = build_affinities(blob_distances, perplexity=3.0).P
    with pytest.raises(ValueError):
        P[0, 1] = 0.5


@pytest.mark.parametrize("n", range(4, 30))
def test_perplexity_at_or_above_a_third_of_n_is_rejected(n):
    with pytest.raises(InvalidPerplexity):
        check_perplexity(n / 3.0, n)
    with pytest.raises(InvalidPerplexity):
        check_perplexity(n / 3.0 + 0.5, n)


def test_perplexity_lower_bound():
    with pytest.raises(InvalidPerplexity):
        check_perplexity(1.0, 30)
    with pytest.raises(InvalidPerplexity):
        check_perplexity(float("nan"), 30)
    check_perplexity(1.01, 30)
    check_perplexity(9.99, 30)


def test_build_affinities_validates_perplexity(blob_distances):
    with pytest.raises(InvalidPerplexity):
        build_affinities(blob_distances, perplexity=4.0)
