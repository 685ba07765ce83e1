import numpy as np
import pytest
from pyslope.design import Design
from pyslope.errors import NumericalInstabilityError
from pyslope.families import Gaussian, Binomial
from pyslope.fista import fista, CONVERGED, MAX_ITER_REACHED
from pyslope.lambda_sequence import lambda_sequence
from pyslope.sorted_l1 import prox_sorted_l1


@pytest.fixture
def sample_data():
    np.random.seed(42)
    n, p = 60, 6
    X = np.random.randn(n, p)
    beta_true = np.array([2.0, -1.5, 0.0, 0.0, 1.0, 0.0])
    y = X @ beta_true + 0.5 * np.random.randn(n)
    return {"X": X, "y": y, "n": n, "p": p}


def solve(design, Y, family, lam, fit_intercept=False, **kwargs):
    p, m = design.p, Y.shape[1]
    step = 1.0 / (family.step_bound(Y) * design.spectral_norm_squared(fit_intercept))
    intercept = family.null_intercept(Y) if fit_intercept else np.zeros(m)
    return fista(
        design, Y, family, lam, np.zeros((p, m)), intercept, step,
        fit_intercept=fit_intercept, **kwargs
    )


def test_orthonormal_design_solution_is_prox():
    """Test the solution on an orthonormal design is the prox of X^T y."""
    np.random.seed(0)
    n, p = 30, 10
    Q, _ = np.linalg.qr(np.random.randn(n, p))
    y = Q @ (3 * np.random.randn(p)) + np.random.randn(n)
    lam = lambda_sequence(p, "bh", q=0.2)

    result = solve(Design(Q), y[:, np.newaxis], Gaussian(), lam, tol=1e-10)
    expected = prox_sorted_l1(Q.T @ y, lam)

    assert result["status"] == CONVERGED
    np.testing.assert_allclose(result["beta"][:, 0], expected, atol=1e-8)


def test_zero_penalty_matches_least_squares(sample_data):
    X, y = sample_data["X"], sample_data["y"]
    result = solve(
        Design(X), y[:, np.newaxis], Gaussian(), np.zeros(X.shape[1]),
        tol=1e-10, max_iter=100000,
    )
    expected = np.linalg.lstsq(X, y, rcond=None)[0]
    assert result["converged"]
    np.testing.assert_allclose(result["beta"][:, 0], expected, atol=1e-5)


def test_unpenalized_intercept(sample_data):
    """Test a huge penalty leaves only the intercept, which is the mean."""
    X, y = sample_data["X"], sample_data["y"]
    design = Design(X, center=True)
    lam = np.full(X.shape[1], 1e6)
    result = solve(design, y[:, np.newaxis], Gaussian(), lam, fit_intercept=True)

    np.testing.assert_array_equal(result["beta"], 0.0)
    np.testing.assert_allclose(result["intercept"], [y.mean()])


def test_max_iter_reached(sample_data):
    X, y = sample_data["X"], sample_data["y"]
    lam = lambda_sequence(X.shape[1], "bh", q=0.1)
    result = solve(Design(X), y[:, np.newaxis], Gaussian(), lam, max_iter=1)
    assert result["status"] == MAX_ITER_REACHED
    assert not result["converged"]
    assert result["iterations"] == 1


def test_inputs_are_not_modified(sample_data):
    X, y = sample_data["X"], sample_data["y"]
    design = Design(X)
    Y = y[:, np.newaxis]
    beta = np.zeros((X.shape[1], 1))
    intercept = np.zeros(1)
    lam = lambda_sequence(X.shape[1], "bh", q=0.1)
    fista(design, Y, Gaussian(), lam, beta, intercept, 0.01, fit_intercept=False)
    np.testing.assert_array_equal(beta, 0.0)
    np.testing.assert_array_equal(intercept, 0.0)


def test_proximal_gradient_is_monotone(sample_data):
    """Test the objective never increases without acceleration."""
    X, y = sample_data["X"], sample_data["y"]
    lam = lambda_sequence(X.shape[1], "bh", q=0.1)
    result = solve(
        Design(X), y[:, np.newaxis], Gaussian(), lam, accelerate=False, diagnostics=True
    )
    objectives = np.array(result["objectives"])
    assert len(objectives) == result["iterations"]
    assert np.all(np.diff(objectives) <= 1e-10)


def test_accelerated_and_plain_agree(sample_data):
    X, y = sample_data["X"], sample_data["y"]
    lam = 5 * lambda_sequence(X.shape[1], "bh", q=0.1)
    fast = solve(Design(X), y[:, np.newaxis], Gaussian(), lam, tol=1e-10)
    slow = solve(
        Design(X), y[:, np.newaxis], Gaussian(), lam, tol=1e-10, accelerate=False,
        max_iter=100000,
    )
    np.testing.assert_allclose(fast["beta"], slow["beta"], atol=1e-6)
    assert fast["objective"] == pytest.approx(slow["objective"])


def test_backtracking_recovers_from_large_step(sample_data):
    """Test an overly large initial step is reduced by the line search."""
    X = sample_data["X"]
    np.random.seed(1)
    y = (X[:, 0] + 0.5 * np.random.randn(X.shape[0]) > 0).astype(float)
    Y = y[:, np.newaxis]
    design = Design(X)
    lam = 0.5 * lambda_sequence(X.shape[1], "bh", q=0.1)

    reference = solve(design, Y, Binomial(), lam, tol=1e-9)
    result = fista(
        design, Y, Binomial(), lam, np.zeros((X.shape[1], 1)), np.zeros(1), 100.0,
        fit_intercept=False, tol=1e-9, max_backtracks=30,
    )
    assert result["step"] < 100.0
    np.testing.assert_allclose(result["beta"], reference["beta"], atol=1e-5)


class NaNGaussian(Gaussian):
    def loss(self, eta, Y):
        return np.nan


def test_non_finite_loss_raises(sample_data):
    X, y = sample_data["X"], sample_data["y"]
    with pytest.raises(NumericalInstabilityError):
        solve(Design(X), y[:, np.newaxis], NaNGaussian(), np.ones(X.shape[1]))
