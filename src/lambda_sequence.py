"""Build the penalty sequence for SLOPE."""

from typing import Optional, Union

import numpy as np
from scipy.stats import norm

from .errors import InvalidPenaltyError

LAMBDA_KINDS = ("bh", "gaussian", "oscar")


def check_lambda(lam, n_lambda: int) -> np.ndarray:
    """Validate an explicit penalty sequence.

    Parameters
    ----------
    lam : array-like of shape (n_lambda,)
        Candidate penalty sequence.
    n_lambda : int
        Required length, the number of penalized coefficients.

    Returns
    -------
    ndarray of shape (n_lambda,)
        The sequence as a float array.

    Raises
    ------
    InvalidPenaltyError
        If the sequence has the wrong length, contains non-finite or negative
        values, or is increasing anywhere.
    """
    lam = np.asarray(lam, dtype=float)
    if lam.ndim != 1:
        raise InvalidPenaltyError("lambda must be a one-dimensional sequence.")
    if lam.size != n_lambda:
        raise InvalidPenaltyError(
            f"lambda has length {lam.size}, expected {n_lambda}."
        )
    if not np.all(np.isfinite(lam)):
        raise InvalidPenaltyError("lambda contains NaN or infinite values.")
    if np.any(lam < 0):
        raise InvalidPenaltyError("lambda must be non-negative.")
    if np.any(np.diff(lam) > 0):
        raise InvalidPenaltyError("lambda must be non-increasing.")
    return lam


def lambda_sequence(
    n_lambda: int,
    kind: str = "bh",
    q: float = 0.1,
    n: Optional[int] = None,
    theta1: float = 1.0,
    theta2: float = 1.0,
) -> np.ndarray:
    r"""Generate a non-increasing penalty sequence from a named rule.

    Parameters
    ----------
    n_lambda : int
        Length of the sequence, :math:`p`.
    kind : {'bh', 'gaussian', 'oscar'}, default='bh'
        Rule used to generate the sequence.
    q : float, default=0.1
        Target false discovery rate for the 'bh' and 'gaussian' rules,
        :math:`0 < q < 1`.
    n : int, optional
        Number of observations. Required by the 'gaussian' rule.
    theta1 : float, default=1.0
        Constant part of the 'oscar' sequence.
    theta2 : float, default=1.0
        Slope of the 'oscar' sequence.

    Returns
    -------
    ndarray of shape (n_lambda,)
        The penalty sequence.

    Raises
    ------
    InvalidPenaltyError
        If `kind` is unknown, `q` is outside (0, 1), the OSCAR parameters are
        negative, or `n` is missing for the 'gaussian' rule.
    ValueError
        If `n_lambda` is not positive.

    Notes
    -----
    The Benjamini-Hochberg sequence is

    .. math::
        \lambda_i^{\text{BH}} = \Phi^{-1}\left(1 - \frac{i q}{2p}\right)

    The 'gaussian' rule corrects it for the variance inflation caused by
    estimating previously selected coefficients:

    .. math::
        \lambda_i^{\text{G}} = \lambda_i^{\text{BH}}
        \sqrt{1 + \frac{1}{\max(1, n - i - 1)} \sum_{j < i} (\lambda_j^{\text{G}})^2}

    and is held constant from the first index at which it would increase.
    The OSCAR sequence is :math:`\lambda_i = \theta_1 + \theta_2 (p - i)`.
    """
    if n_lambda <= 0:
        raise ValueError("n_lambda must be a positive integer.")
    if kind not in LAMBDA_KINDS:
        raise InvalidPenaltyError(
            f"Unknown lambda rule '{kind}'; expected one of {LAMBDA_KINDS}."
        )

    if kind == "oscar":
        if theta1 < 0 or theta2 < 0:
            raise InvalidPenaltyError("theta1 and theta2 must be non-negative.")
        return theta1 + theta2 * (n_lambda - np.arange(1, n_lambda + 1))

    if not (0 < q < 1):
        raise InvalidPenaltyError("q must be between 0 and 1 (exclusive).")

    ranks = np.arange(1, n_lambda + 1)
    lam = norm.ppf(1 - ranks * q / (2 * n_lambda))

    if kind == "gaussian":
        if n is None:
            raise InvalidPenaltyError(
                "The 'gaussian' lambda rule requires the number of observations."
            )
        sum_sq = 0.0
        for i in range(1, n_lambda):
            # i is zero-based, so rank i + 1 uses n - (i + 1) - 1
            w = 1.0 / max(1, n - i - 2)
            sum_sq += lam[i - 1] ** 2
            adjusted = lam[i] * np.sqrt(1 + w * sum_sq)
            if adjusted > lam[i - 1]:
                lam[i:] = lam[i - 1]
                break
            lam[i] = adjusted

    return lam


def build_lambda(
    n_lambda: int,
    lam: Union[str, np.ndarray] = "bh",
    q: float = 0.1,
    n: Optional[int] = None,
    theta1: float = 1.0,
    theta2: float = 1.0,
) -> np.ndarray:
    """Return a validated penalty sequence from a rule name or explicit values.

    Parameters
    ----------
    n_lambda : int
        Number of penalized coefficients.
    lam : str or array-like
        Name of a rule accepted by :func:`lambda_sequence`, or an explicit
        sequence checked by :func:`check_lambda`.
    q, n, theta1, theta2
        Passed on to :func:`lambda_sequence`.

    Returns
    -------
    ndarray of shape (n_lambda,)
        Non-increasing, non-negative penalty sequence.
    """
    if isinstance(lam, str):
        sequence = lambda_sequence(
            n_lambda, kind=lam, q=q, n=n, theta1=theta1, theta2=theta2
        )
    else:
        sequence = check_lambda(lam, n_lambda)
    return check_lambda(sequence, n_lambda)
