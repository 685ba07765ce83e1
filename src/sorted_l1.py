"""Sorted L1 norm, its dual norm, and its proximal operator."""

import numpy as np

from .errors import DimensionMismatchError


def _check_lengths(v: np.ndarray, lam: np.ndarray):
    if v.size != lam.size:
        raise DimensionMismatchError(
            f"Length of lambda ({lam.size}) does not match the number of "
            f"coefficients ({v.size})."
        )


def sorted_l1_norm(beta: np.ndarray, lam: np.ndarray) -> float:
    r"""Evaluate the sorted L1 norm.

    .. math::
        J(\boldsymbol{\beta}; \boldsymbol{\lambda}) = \sum_{j=1}^p \lambda_j |\beta|_{(j)}

    where :math:`|\beta|_{(1)} \geq |\beta|_{(2)} \geq \ldots \geq |\beta|_{(p)}`.

    Parameters
    ----------
    beta : ndarray
        Coefficients, :math:`\boldsymbol{\beta}`. Any shape; flattened.
    lam : ndarray of shape (beta.size,)
        Non-increasing penalty sequence, :math:`\boldsymbol{\lambda}`.

    Returns
    -------
    float
        The value of the penalty.
    """
    beta = np.asarray(beta, dtype=float).ravel()
    lam = np.asarray(lam, dtype=float).ravel()
    _check_lengths(beta, lam)
    return float(np.sum(lam * np.sort(np.abs(beta))[::-1]))


def dual_sorted_l1_norm(g: np.ndarray, lam: np.ndarray) -> float:
    r"""Evaluate the dual of the sorted L1 norm.

    .. math::
        J^*(\mathbf{g}; \boldsymbol{\lambda}) = \max_k
        \frac{\sum_{j \leq k} |g|_{(j)}}{\sum_{j \leq k} \lambda_j}

    Zero is a solution of the penalized problem exactly when the gradient of
    the loss at zero has dual norm at most one, which is how the largest
    useful penalty scale is found.

    Parameters
    ----------
    g : ndarray
        Vector (typically a gradient). Any shape; flattened.
    lam : ndarray of shape (g.size,)
        Non-increasing, non-negative penalty sequence.

    Returns
    -------
    float
        The dual norm. ``inf`` if the gradient cannot be bounded because the
        penalty vanishes on leading ranks.
    """
    g = np.asarray(g, dtype=float).ravel()
    lam = np.asarray(lam, dtype=float).ravel()
    _check_lengths(g, lam)

    cum_g = np.cumsum(np.sort(np.abs(g))[::-1])
    cum_lam = np.cumsum(lam)

    with np.errstate(divide="ignore", invalid="ignore"):
        ratios = np.where(cum_lam > 0, cum_g / cum_lam, np.inf)
    ratios[(cum_lam == 0) & (cum_g == 0)] = 0.0

    return float(np.max(ratios)) if ratios.size else 0.0


def prox_sorted_l1(v: np.ndarray, lam: np.ndarray) -> np.ndarray:
    r"""Compute the proximal operator of the sorted L1 norm.

    Solves

    .. math::
        \operatorname{prox}(\mathbf{v}) = \arg\min_{\boldsymbol{\beta}}
        \frac{1}{2} \| \mathbf{v} - \boldsymbol{\beta} \|_2^2 +
        \sum_{j=1}^p \lambda_j |\beta|_{(j)}

    Parameters
    ----------
    v : ndarray
        Input point, :math:`\mathbf{v}`. Any shape; the result has the same shape.
    lam : ndarray of shape (v.size,)
        Non-increasing, non-negative penalty sequence, :math:`\boldsymbol{\lambda}`.

    Returns
    -------
    ndarray
        The minimizer, with the signs of ``v`` and magnitudes that are
        non-increasing along the ordering of :math:`|\mathbf{v}|`.

    Raises
    ------
    DimensionMismatchError
        If ``lam`` and ``v`` have different numbers of elements.

    Notes
    -----
    The magnitudes are sorted in decreasing order and :math:`\boldsymbol{\lambda}`
    is subtracted. The remaining problem is an isotonic regression onto
    non-increasing sequences, clipped at zero, and is solved with a single
    stack-based pool-adjacent-violators pass: each new coordinate opens a block,
    and while the previous block's mean does not exceed the new block's mean
    the two are merged. Merged blocks share one magnitude, which is what
    clusters coefficients in SLOPE.

    Coordinates with equal magnitude receive equal outputs regardless of how
    the stable sort orders them.
    """
    v = np.asarray(v, dtype=float)
    lam = np.asarray(lam, dtype=float).ravel()
    shape = v.shape
    v = v.ravel()
    _check_lengths(v, lam)

    p = v.size
    if p == 0:
        return v.reshape(shape)

    v_abs = np.abs(v)
    order = np.argsort(-v_abs, kind="stable")
    z = v_abs[order] - lam

    # Block i covers sorted positions start[i]..end[i] with sum total[i].
    start = np.empty(p, dtype=np.int64)
    end = np.empty(p, dtype=np.int64)
    total = np.empty(p)
    mean = np.empty(p)

    k = 0
    for i in range(p):
        start[k] = i
        end[k] = i
        total[k] = z[i]
        mean[k] = z[i]

        while k > 0 and mean[k - 1] <= mean[k]:
            k -= 1
            end[k] = i
            total[k] += total[k + 1]
            mean[k] = total[k] / (i - start[k] + 1)

        k += 1

    sorted_out = np.empty(p)
    for j in range(k):
        sorted_out[start[j] : end[j] + 1] = max(mean[j], 0.0)

    out = np.empty(p)
    out[order] = sorted_out

    return (np.sign(v) * out).reshape(shape)
