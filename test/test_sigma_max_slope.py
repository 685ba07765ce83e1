import numpy as np
import pytest
from pyslope.design import Design
from pyslope.families import Gaussian, Binomial
from pyslope.fista import fista
from pyslope.lambda_sequence import lambda_sequence
from pyslope.sigma_max_slope import (
    SIGMA_MAX_CORRECTION,
    sigma_max_slope,
    sigma_path,
    check_sigma,
)
from pyslope.sorted_l1 import dual_sorted_l1_norm


@pytest.fixture
def sample_data():
    np.random.seed(42)
    n, p = 50, 12
    X = np.random.randn(n, p)
    y = X[:, :3] @ np.array([1.0, -2.0, 1.5]) + np.random.randn(n)
    return {"X": X, "y": y, "lam": lambda_sequence(p, "bh", q=0.1)}


def solve_at(design, Y, family, lam, sigma, fit_intercept):
    step = 1.0 / (family.step_bound(Y) * design.spectral_norm_squared(fit_intercept))
    intercept = family.null_intercept(Y) if fit_intercept else np.zeros(1)
    return fista(
        design, Y, family, sigma * lam, np.zeros((design.p, 1)), intercept, step,
        fit_intercept=fit_intercept, tol=1e-8,
    )


def test_sigma_max_without_intercept(sample_data):
    X, y, lam = sample_data["X"], sample_data["y"], sample_data["lam"]
    value = sigma_max_slope(Design(X), y[:, np.newaxis], Gaussian(), lam, fit_intercept=False)
    expected = dual_sorted_l1_norm(X.T @ y, lam) * SIGMA_MAX_CORRECTION
    assert value == pytest.approx(expected)


@pytest.mark.parametrize("fit_intercept", [False, True])
def test_sigma_max_is_smallest_zero_solution(sample_data, fit_intercept):
    """Test the solution is zero at sigma_max and nonzero just below it."""
    X, y, lam = sample_data["X"], sample_data["y"], sample_data["lam"]
    design = Design(X, center=fit_intercept, scale=True)
    Y = y[:, np.newaxis]
    family = Gaussian()
    s_max = sigma_max_slope(design, Y, family, lam, fit_intercept)

    at_max = solve_at(design, Y, family, lam, s_max, fit_intercept)
    below = solve_at(design, Y, family, lam, 0.95 * s_max, fit_intercept)

    np.testing.assert_array_equal(at_max["beta"], 0.0)
    assert np.any(below["beta"] != 0)


def test_sigma_max_binomial(sample_data):
    X, y, lam = sample_data["X"], sample_data["y"], sample_data["lam"]
    design = Design(X, center=True, scale=True)
    Y = (y > 0).astype(float)[:, np.newaxis]
    family = Binomial()
    s_max = sigma_max_slope(design, Y, family, lam, True)
    assert s_max > 0
    result = solve_at(design, Y, family, lam, s_max, True)
    np.testing.assert_array_equal(result["beta"], 0.0)


def test_sigma_path_is_geometric():
    path = sigma_path(2.0, n_sigma=5, sigma_min_ratio=1e-2)
    assert path[0] == pytest.approx(2.0)
    assert path[-1] == pytest.approx(2e-2)
    assert np.all(np.diff(path) < 0)
    np.testing.assert_allclose(path[1:] / path[:-1], path[1] / path[0])


def test_sigma_path_default_ratio():
    """Test the default ratio depends on whether n < p."""
    wide = sigma_path(1.0, n_sigma=10, n=10, p=100)
    tall = sigma_path(1.0, n_sigma=10, n=100, p=10)
    assert wide[-1] == pytest.approx(1e-2)
    assert tall[-1] == pytest.approx(1e-4)


def test_sigma_path_single_point():
    np.testing.assert_array_equal(sigma_path(3.0, n_sigma=1), [3.0])


def test_sigma_path_invalid():
    with pytest.raises(ValueError):
        sigma_path(1.0, n_sigma=0)
    with pytest.raises(ValueError):
        sigma_path(1.0, sigma_min_ratio=1.5)


def test_check_sigma():
    np.testing.assert_array_equal(check_sigma(0.5), [0.5])
    np.testing.assert_array_equal(check_sigma([2.0, 1.0, 0.0]), [2.0, 1.0, 0.0])
    for bad in ([], [1.0, 2.0], [1.0, 1.0], [1.0, -1.0], [np.nan]):
        with pytest.raises(ValueError):
            check_sigma(bad)
