"""Linear interpolation of SLOPE coefficients between path points."""

import numpy as np


def interpolate_penalty(path_sigma: np.ndarray, sigma) -> dict:
    """Locate the path points that bracket each requested sigma.

    Requested values outside the path are clamped to its end points.

    Parameters
    ----------
    path_sigma : ndarray of shape (s,)
        Strictly decreasing sigma values of a fitted path.
    sigma : float or array-like
        Requested sigma values.

    Returns
    -------
    dict
        A dictionary with keys:
        - `'left'`: ndarray of int, index of the bracketing point with larger sigma
        - `'right'`: ndarray of int, index of the bracketing point with smaller sigma
        - `'frac'`: ndarray of float, weight of the left point

    Raises
    ------
    ValueError
        If the path is empty or a requested value is negative.
    """
    path_sigma = np.asarray(path_sigma, dtype=float)
    sigma = np.atleast_1d(np.asarray(sigma, dtype=float))

    if path_sigma.size == 0:
        raise ValueError("Cannot interpolate on an empty path.")
    if np.any(sigma < 0):
        raise ValueError("sigma must be non-negative.")

    sigma = np.clip(sigma, path_sigma.min(), path_sigma.max())

    # path_sigma is decreasing, so search on the negated (increasing) values
    right = np.searchsorted(-path_sigma, -sigma, side="left")
    right = np.clip(right, 0, path_sigma.size - 1)
    left = np.where(path_sigma[right] == sigma, right, np.maximum(right - 1, 0))

    frac = np.ones(sigma.size)
    gap = path_sigma[left] - path_sigma[right]
    inside = gap > 0
    frac[inside] = (sigma[inside] - path_sigma[right][inside]) / gap[inside]

    return {"left": left, "right": right, "frac": frac}


def interpolate_coefficients(beta: np.ndarray, interpolation: dict) -> np.ndarray:
    """Form convex combinations of bracketing coefficient slices.

    Parameters
    ----------
    beta : ndarray of shape (p, m, s)
        Coefficient tensor of the fitted path.
    interpolation : dict
        Output of :func:`interpolate_penalty`.

    Returns
    -------
    ndarray of shape (p, m, len(interpolation['frac']))
        Interpolated coefficients.
    """
    left = interpolation["left"]
    right = interpolation["right"]
    frac = interpolation["frac"]
    return beta[:, :, left] * frac + beta[:, :, right] * (1 - frac)
