import pytest

from tsnescope import TSNEConfig


def test_defaults_are_valid():
    TSNEConfig().validate()


@pytest.mark.parametrize(
    "overrides",
    [
        {"distance_tolerance": -1e-9},
        {"gain_increase": -0.1},
        {"gain_decrease": 0.0},
        {"gain_decrease": 1.5},
        {"entropy_tolerance": 0.0},
    ],
)
def test_validate_rejects_out_of_range_settings(overrides):
    with pytest.raises(ValueError, match=next(iter(overrides))):
        TSNEConfig(**overrides).validate()


def test_gain_decrease_of_one_is_allowed():
    TSNEConfig(gain_decrease=1.0).validate()
