"""
Simulation Module
=================

Random SLOPE problems and false discovery rate experiments.

Key components:

1. random_problem: Simulates a design matrix, sparse coefficients and a response
   from one of the supported families.

2. false_discovery_proportion: Fraction of false selections in a selected set.

3. fdr_simulation: Repeats independent SLOPE fits at the known noise level and
   reports the false discovery proportion of each, in parallel with joblib.
"""

from typing import Optional

import numpy as np
import scipy.sparse as sp
from joblib import Parallel, delayed
from scipy.special import expit

from .families import FAMILIES
from .slope import slope


def _ar1_cholesky(p: int, rho: float) -> np.ndarray:
    indices = np.arange(p)
    Sigma = rho ** np.abs(np.subtract.outer(indices, indices))
    return np.linalg.cholesky(Sigma)


def random_problem(
    n: int,
    p: int,
    q: float = 0.2,
    density: float = 1.0,
    amplitude: Optional[float] = None,
    sigma: float = 1.0,
    rho: float = 0.0,
    response: str = "gaussian",
    n_classes: int = 3,
    orthonormal: bool = False,
    random_state=None,
) -> dict:
    r"""Simulate a sparse regression problem.

    Rows of the design are drawn from :math:`N(\mathbf{0}, \boldsymbol{\Sigma})`
    with :math:`\Sigma_{ij} = \rho^{|i - j|}`, by rotating i.i.d. normal draws
    with the Cholesky factor of :math:`\boldsymbol{\Sigma}`.

    Parameters
    ----------
    n : int
        Number of samples.
    p : int
        Number of features.
    q : float, default=0.2
        Fraction of features with a nonzero coefficient; ``round(q * p)``
        signals are placed at random.
    density : float, default=1.0
        Fraction of nonzero entries in the design. If below 1, the design is
        returned as a ``scipy.sparse.csc_matrix``.
    amplitude : float, optional
        Magnitude of the signals. Defaults to :math:`\sqrt{2 \log p}`.
    sigma : float, default=1.0
        Noise level of the Gaussian response.
    rho : float, default=0.0
        Correlation between adjacent features, in [0, 1).
    response : {'gaussian', 'binomial', 'poisson', 'multinomial'}, default='gaussian'
        Response family.
    n_classes : int, default=3
        Number of classes of the multinomial response.
    orthonormal : bool, default=False
        If True, the design has orthonormal columns (requires ``n >= p``).
    random_state : int or numpy.random.Generator, optional
        Seed or generator.

    Returns
    -------
    dict
        A dictionary with keys:
        - `'x'`: ndarray or sparse matrix of shape (n, p)
        - `'y'`: ndarray of shape (n,)
        - `'beta'`: ndarray of shape (p,), or (p, n_classes - 1) for 'multinomial'
        - `'nonzero'`: ndarray of int, indices of the true signals

    Raises
    ------
    ValueError
        If any argument is out of range.

    Notes
    -----
    The Poisson response uses :math:`\exp(\mathbf{X}\boldsymbol{\beta})` as its
    mean, so a small `amplitude` keeps the counts moderate.
    """
    if n <= 0 or p <= 0:
        raise ValueError("'n' and 'p' must be positive integers.")
    if not (0 <= q <= 1):
        raise ValueError("'q' must be in the interval [0, 1].")
    if not (0 < density <= 1):
        raise ValueError("'density' must be in the interval (0, 1].")
    if not (0 <= rho < 1):
        raise ValueError("'rho' must be in the interval [0, 1).")
    if sigma < 0:
        raise ValueError("'sigma' must be non-negative.")
    if response not in FAMILIES:
        raise ValueError(
            f"Unknown response '{response}'; expected one of {sorted(FAMILIES)}."
        )
    if response == "multinomial" and n_classes < 2:
        raise ValueError("'n_classes' must be at least 2.")
    if orthonormal and (n < p or density < 1 or rho > 0):
        raise ValueError(
            "An orthonormal design requires n >= p, density = 1 and rho = 0."
        )

    rng = np.random.default_rng(random_state)

    Z = rng.standard_normal((n, p))
    if orthonormal:
        x, _ = np.linalg.qr(Z)
    elif rho > 0:
        x = Z @ _ar1_cholesky(p, rho).T
    else:
        x = Z

    if density < 1:
        x = sp.csc_matrix(x * (rng.random((n, p)) < density))

    if amplitude is None:
        amplitude = np.sqrt(2 * np.log(p)) if p > 1 else 1.0

    k = int(round(q * p))
    nonzero = np.sort(rng.choice(p, size=k, replace=False))
    m = n_classes - 1 if response == "multinomial" else 1

    beta = np.zeros((p, m))
    beta[nonzero] = amplitude * rng.choice([-1.0, 1.0], size=(k, m))
    eta = np.asarray(x @ beta)

    if response == "gaussian":
        y = eta[:, 0] + sigma * rng.standard_normal(n)
    elif response == "binomial":
        y = rng.binomial(1, expit(eta[:, 0])).astype(float)
    elif response == "poisson":
        y = rng.poisson(np.exp(eta[:, 0])).astype(float)
    else:
        full = np.column_stack([eta, np.zeros(n)])
        probs = np.exp(full - full.max(axis=1, keepdims=True))
        probs /= probs.sum(axis=1, keepdims=True)
        cumulative = np.cumsum(probs, axis=1)
        u = rng.random((n, 1))
        y = np.minimum((u > cumulative).sum(axis=1), n_classes - 1)

    if m == 1:
        beta = beta[:, 0]

    return {"x": x, "y": y, "beta": beta, "nonzero": nonzero}


def false_discovery_proportion(selected, nonzero) -> float:
    r"""Compute the false discovery proportion of a selection.

    .. math::
        \text{FDP} = \frac{V}{\max(R, 1)}

    where :math:`R` is the number of selected features and :math:`V` the
    number of selected features that are not true signals.

    Parameters
    ----------
    selected : array-like of int or bool
        Indices (or a boolean mask) of the selected features.
    nonzero : array-like of int or bool
        Indices (or a boolean mask) of the true signals.

    Returns
    -------
    float
        The false discovery proportion, 0 if nothing was selected.
    """
    selected = np.asarray(selected)
    nonzero = np.asarray(nonzero)
    if selected.dtype == bool:
        selected = np.flatnonzero(selected)
    if nonzero.dtype == bool:
        nonzero = np.flatnonzero(nonzero)

    n_selected = np.unique(selected).size
    n_false = np.setdiff1d(selected, nonzero).size
    return n_false / max(n_selected, 1)


def _fdr_trial(seed, n, p, signal_q, q, sigma, problem_kwargs, slope_kwargs):
    problem = random_problem(
        n, p, q=signal_q, sigma=sigma, random_state=seed, **problem_kwargs
    )
    fit = slope(problem["x"], problem["y"], sigma=sigma, q=q, **slope_kwargs)
    selected = np.flatnonzero(np.any(fit.coefficients[:, :, -1] != 0, axis=1))
    return false_discovery_proportion(selected, problem["nonzero"])


def fdr_simulation(
    n_trials: int,
    n: int,
    p: int,
    signal_q: float,
    q: float,
    sigma: float = 1.0,
    n_jobs: int = 1,
    random_state=None,
    problem_kwargs: Optional[dict] = None,
    **slope_kwargs,
) -> np.ndarray:
    """Estimate the false discovery rate of SLOPE by simulation.

    Each trial simulates a Gaussian problem with :func:`random_problem`, fits
    SLOPE at the true noise level (a path of the single value `sigma`), and
    records the false discovery proportion of the selected features. Trials
    are independent and run in parallel.

    Parameters
    ----------
    n_trials : int
        Number of trials.
    n, p : int
        Problem dimensions.
    signal_q : float
        Fraction of true signals in each problem.
    q : float
        Target false discovery rate of the penalty sequence.
    sigma : float, default=1.0
        Noise level, used both to simulate and to fit.
    n_jobs : int, default=1
        Number of parallel jobs, as in :class:`joblib.Parallel`.
    random_state : int or numpy.random.Generator, optional
        Seed from which the per-trial seeds are drawn.
    problem_kwargs : dict, optional
        Additional arguments for :func:`random_problem`.
    **slope_kwargs
        Additional arguments for :func:`~pyslope.slope.slope`.

    Returns
    -------
    ndarray of shape (n_trials,)
        False discovery proportion of each trial; its mean estimates the FDR.
    """
    if n_trials <= 0:
        raise ValueError("'n_trials' must be a positive integer.")
    if sigma <= 0:
        raise ValueError("'sigma' must be positive.")

    problem_kwargs = dict(problem_kwargs or {})
    rng = np.random.default_rng(random_state)
    seeds = rng.integers(np.iinfo(np.int32).max, size=n_trials)

    fdp = Parallel(n_jobs=n_jobs)(
        delayed(_fdr_trial)(
            seed, n, p, signal_q, q, sigma, problem_kwargs, slope_kwargs
        )
        for seed in seeds
    )
    return np.asarray(fdp, dtype=float)
