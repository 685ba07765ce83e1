import numpy as np
import pytest
import scipy.sparse as sp
from pyslope.simulation import random_problem, false_discovery_proportion, fdr_simulation


def test_gaussian_problem():
    problem = random_problem(40, 20, q=0.25, random_state=0)
    x, y, beta = problem["x"], problem["y"], problem["beta"]

    assert x.shape == (40, 20)
    assert y.shape == (40,)
    assert beta.shape == (20,)
    assert problem["nonzero"].size == 5
    np.testing.assert_array_equal(np.flatnonzero(beta), problem["nonzero"])
    np.testing.assert_allclose(np.abs(beta[problem["nonzero"]]), np.sqrt(2 * np.log(20)))


def test_problem_is_reproducible():
    first = random_problem(30, 10, random_state=5)
    second = random_problem(30, 10, random_state=5)
    np.testing.assert_array_equal(first["x"], second["x"])
    np.testing.assert_array_equal(first["y"], second["y"])


def test_orthonormal_design():
    problem = random_problem(50, 20, orthonormal=True, random_state=1)
    x = problem["x"]
    np.testing.assert_allclose(x.T @ x, np.eye(20), atol=1e-10)


def test_sparse_design():
    problem = random_problem(100, 30, density=0.2, random_state=2)
    x = problem["x"]
    assert sp.issparse(x)
    assert 0.1 < x.nnz / (100 * 30) < 0.3


def test_correlated_design():
    """Test adjacent features are correlated with the requested coefficient."""
    problem = random_problem(5000, 5, rho=0.8, random_state=3)
    corr = np.corrcoef(problem["x"], rowvar=False)
    assert corr[0, 1] == pytest.approx(0.8, abs=0.05)
    assert corr[0, 2] == pytest.approx(0.64, abs=0.05)


def test_binomial_and_poisson_responses():
    binomial = random_problem(100, 10, response="binomial", random_state=4)
    assert set(np.unique(binomial["y"])) <= {0.0, 1.0}

    poisson = random_problem(100, 10, amplitude=0.2, response="poisson", random_state=4)
    assert np.all(poisson["y"] >= 0)
    np.testing.assert_array_equal(poisson["y"], np.round(poisson["y"]))


def test_multinomial_response():
    problem = random_problem(200, 10, response="multinomial", n_classes=4, random_state=6)
    assert problem["beta"].shape == (10, 3)
    assert set(np.unique(problem["y"])) <= {0, 1, 2, 3}


@pytest.mark.parametrize(
    "kwargs",
    [
        {"n": 0, "p": 5},
        {"n": 10, "p": 5, "q": 1.5},
        {"n": 10, "p": 5, "density": 0.0},
        {"n": 10, "p": 5, "rho": 1.0},
        {"n": 10, "p": 5, "response": "gamma"},
        {"n": 5, "p": 10, "orthonormal": True},
    ],
)
def test_invalid_problem(kwargs):
    with pytest.raises(ValueError):
        random_problem(**kwargs)


def test_false_discovery_proportion():
    assert false_discovery_proportion([0, 1, 2, 5], [0, 1, 2]) == pytest.approx(0.25)
    assert false_discovery_proportion([], [0, 1]) == 0.0
    selected = np.array([True, False, True, True])
    nonzero = np.array([True, True, False, False])
    assert false_discovery_proportion(selected, nonzero) == pytest.approx(2 / 3)


def test_fdr_simulation_output():
    fdp = fdr_simulation(5, 40, 20, signal_q=0.2, q=0.1, random_state=0)
    assert fdp.shape == (5,)
    assert np.all((fdp >= 0) & (fdp <= 1))

    again = fdr_simulation(5, 40, 20, signal_q=0.2, q=0.1, random_state=0)
    np.testing.assert_array_equal(fdp, again)


def test_fdr_is_controlled_on_orthonormal_design():
    """Test SLOPE with the BH sequence controls the FDR at the known noise level."""
    p = 200
    q = 0.1
    fdp = fdr_simulation(
        300,
        p,
        p,
        signal_q=0.1,
        q=q,
        sigma=1.0,
        random_state=2024,
        problem_kwargs={"orthonormal": True, "amplitude": 1.2 * np.sqrt(2 * np.log(p))},
        fit_intercept=False,
        standardize=False,
        lam="bh",
    )
    assert 0.5 * q < fdp.mean() < q + 0.02


def test_fdr_is_controlled_with_default_standardization():
    """Test the default intercept and standardization keep sigma on the noise scale."""
    n, p = 300, 200
    q = 0.1
    fdp = fdr_simulation(
        200,
        n,
        p,
        signal_q=0.1,
        q=q,
        sigma=1.0,
        random_state=7,
        problem_kwargs={"orthonormal": True, "amplitude": 1.2 * np.sqrt(2 * np.log(p))},
        lam="bh",
    )
    assert 0.5 * q < fdp.mean() < 1.5 * q


def test_fdr_gaussian_sequence_on_random_design():
    """Test the gaussian sequence controls the FDR on an uncorrelated random design."""
    q = 0.1
    fdp = fdr_simulation(
        50, 200, 100, signal_q=0.05, q=q, sigma=1.0, random_state=11, lam="gaussian"
    )
    assert fdp.mean() < 2 * q
    assert fdp.max() > 0


def test_fdr_simulation_invalid():
    with pytest.raises(ValueError):
        fdr_simulation(0, 10, 5, signal_q=0.2, q=0.1)
