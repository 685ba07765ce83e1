"""Compute the maximum sigma value and the sigma path for SLOPE regularization."""

from typing import Optional

import numpy as np

from .design import Design
from .families import Family
from .sorted_l1 import dual_sorted_l1_norm

SIGMA_MAX_CORRECTION = 1.00001


def sigma_max_slope(
    design: Design,
    Y: np.ndarray,
    family: Family,
    lam: np.ndarray,
    fit_intercept: bool = True,
) -> float:
    r"""Compute the maximal sigma for SLOPE.

    The maximal sigma is the smallest scale for which all coefficients are
    zero in the SLOPE optimization problem.

    Parameters
    ----------
    design : Design
        Standardized design matrix :math:`\tilde{\mathbf{X}}`.
    Y : ndarray of shape (n_samples, m)
        Encoded response.
    family : Family
        Loss family.
    lam : ndarray of shape (p * m,)
        Penalty sequence, :math:`\boldsymbol{\lambda}`.
    fit_intercept : bool, default=True
        Whether the null model has an intercept.

    Returns
    -------
    float
        The maximal sigma, :math:`\sigma_{\text{max}}`.

    Notes
    -----
    With :math:`\boldsymbol{\eta}_0` the linear predictor of the null model,
    zero is optimal exactly when

    .. math::
        J^*\left(\tilde{\mathbf{X}}^T \nabla f(\boldsymbol{\eta}_0); \sigma \boldsymbol{\lambda}\right) \leq 1

    so :math:`\sigma_{\text{max}}` is the dual sorted L1 norm of the gradient.
    A numeric correction factor is applied so that the first point of the
    path is exactly zero.
    """
    m = family.n_targets(Y)
    if fit_intercept:
        intercept = family.null_intercept(Y)
    else:
        intercept = np.zeros(m)

    eta = np.tile(intercept, (design.n, 1))
    gradient = design.rmatmul(family.gradient(eta, Y))

    sigma_max = dual_sorted_l1_norm(gradient, lam)
    return sigma_max * SIGMA_MAX_CORRECTION


def sigma_path(
    sigma_max: float,
    n_sigma: int = 100,
    sigma_min_ratio: Optional[float] = None,
    n: Optional[int] = None,
    p: Optional[int] = None,
) -> np.ndarray:
    r"""Generate a geometric, strictly decreasing sequence of scales.

    Parameters
    ----------
    sigma_max : float
        Largest scale, :math:`\sigma_{\text{max}}`.
    n_sigma : int, default=100
        Number of scales, :math:`m`.
    sigma_min_ratio : float, optional
        Ratio :math:`\xi` between the smallest and the largest scale. Defaults
        to 1e-2 if ``n < p`` and 1e-4 otherwise.
    n, p : int, optional
        Problem dimensions, used for the default ratio.

    Returns
    -------
    ndarray of shape (n_sigma,)
        :math:`\sigma_k = \sigma_{\text{max}} \exp\left(\frac{k}{m-1} \log \xi\right)`,
        :math:`k = 0, \ldots, m - 1`.

    Raises
    ------
    ValueError
        If `n_sigma` is not positive or `sigma_min_ratio` is not in (0, 1).
    """
    if n_sigma < 1:
        raise ValueError("n_sigma must be a positive integer.")
    if sigma_min_ratio is None:
        sigma_min_ratio = 1e-2 if (n is not None and p is not None and n < p) else 1e-4
    if not (0 < sigma_min_ratio < 1):
        raise ValueError("sigma_min_ratio must be between 0 and 1 (exclusive).")

    if n_sigma == 1:
        return np.array([sigma_max])

    intervals = np.arange(n_sigma)
    return sigma_max * np.exp((intervals / (n_sigma - 1)) * np.log(sigma_min_ratio))


def check_sigma(sigma) -> np.ndarray:
    """Validate a user-supplied sigma path.

    Parameters
    ----------
    sigma : float or array-like
        Scale(s) at which to fit.

    Returns
    -------
    ndarray of shape (n_sigma,)

    Raises
    ------
    ValueError
        If the path is empty, non-finite, negative, or not strictly decreasing.
    """
    sigma = np.atleast_1d(np.asarray(sigma, dtype=float))
    if sigma.ndim != 1 or sigma.size == 0:
        raise ValueError("sigma must be a non-empty one-dimensional sequence.")
    if not np.all(np.isfinite(sigma)):
        raise ValueError("sigma contains NaN or infinite values.")
    if np.any(sigma < 0):
        raise ValueError("sigma must be non-negative.")
    if np.any(np.diff(sigma) >= 0):
        raise ValueError("sigma must be strictly decreasing.")
    return sigma
