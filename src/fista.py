"""Accelerated proximal gradient solver for a single SLOPE problem."""

import logging

import numpy as np

from .design import Design
from .errors import NumericalInstabilityError
from .families import Family
from .sorted_l1 import prox_sorted_l1, sorted_l1_norm

logger = logging.getLogger(__name__)

INITIALIZED = "initialized"
ITERATING = "iterating"
CONVERGED = "converged"
MAX_ITER_REACHED = "max_iter_reached"

DEFAULT_MAX_BACKTRACKS = 10


def _check_finite(value, what: str):
    if not np.all(np.isfinite(value)):
        raise NumericalInstabilityError(f"Non-finite {what} encountered.")


def fista(
    design: Design,
    Y: np.ndarray,
    family: Family,
    lam: np.ndarray,
    beta: np.ndarray,
    intercept: np.ndarray,
    step: float,
    fit_intercept: bool = True,
    tol: float = 1e-6,
    max_iter: int = 10000,
    accelerate: bool = True,
    max_backtracks: int = DEFAULT_MAX_BACKTRACKS,
    diagnostics: bool = False,
) -> dict:
    r"""Solve one SLOPE problem with FISTA.

    Minimizes

    .. math::
        F(\boldsymbol{\beta}, \mathbf{b}_0) = f(\tilde{\mathbf{X}} \boldsymbol{\beta} + \mathbf{1}\mathbf{b}_0^T)
        + \sum_j \lambda_j |\beta|_{(j)}

    where :math:`f` is the family loss and :math:`\boldsymbol{\lambda}` is the
    penalty sequence already multiplied by the scale :math:`\sigma`. The
    intercept is not penalized.

    Parameters
    ----------
    design : Design
        Standardized design matrix.
    Y : ndarray of shape (n_samples, m)
        Encoded response.
    family : Family
        Loss family.
    lam : ndarray of shape (p * m,)
        Scaled, non-increasing penalty sequence.
    beta : ndarray of shape (p, m)
        Starting coefficients (warm start). Not modified.
    intercept : ndarray of shape (m,)
        Starting intercept. Not modified.
    step : float
        Initial step size, typically the inverse of the Lipschitz bound.
    fit_intercept : bool, default=True
        Whether to update the intercept.
    tol : float, default=1e-6
        Relative accuracy of the solution, :math:`\epsilon`.
    max_iter : int, default=10000
        Maximum number of iterations.
    accelerate : bool, default=True
        Whether to use Nesterov momentum.
    max_backtracks : int, default=10
        Maximum number of step halvings per iteration. After that the last
        trial step is accepted.
    diagnostics : bool, default=False
        If True, record the objective after each iteration.

    Returns
    -------
    dict
        A dictionary with keys:
        - `'beta'`: ndarray of shape (p, m)
        - `'intercept'`: ndarray of shape (m,)
        - `'iterations'`: int
        - `'status'`: 'converged' or 'max_iter_reached'
        - `'converged'`: bool
        - `'step'`: float, the final step size
        - `'loss'`: float, the loss at the solution
        - `'objective'`: float, the penalized objective at the solution
        - `'objectives'`: list of float (only if `diagnostics` is True)

    Raises
    ------
    NumericalInstabilityError
        If the loss or gradient becomes non-finite.

    Notes
    -----
    Each iteration takes a gradient step from the extrapolated point and
    applies the sorted L1 proximal operator. The step is halved until the
    quadratic upper bound

    .. math::
        f(\mathbf{x}^+) \leq f(\mathbf{y}) + \langle \nabla f(\mathbf{y}), \mathbf{x}^+ - \mathbf{y} \rangle
        + \frac{1}{2t} \| \mathbf{x}^+ - \mathbf{y} \|_2^2

    holds, at most `max_backtracks` times. If the objective increases after
    an accelerated step, the step is discarded, the momentum is reset, and
    the next iteration is a plain proximal gradient step from the last
    accepted iterate.
    """
    p, m = beta.shape
    beta = beta.copy()
    intercept = intercept.copy()

    def objective_parts(b, b0):
        eta = design.matmul(b) + b0
        return eta, family.loss(eta, Y)

    eta, loss = objective_parts(beta, intercept)
    _check_finite(loss, "loss")
    objective = loss + sorted_l1_norm(beta, lam)

    beta_y = beta.copy()
    intercept_y = intercept.copy()
    eta_y, loss_y = eta, loss
    t = 1.0

    state = INITIALIZED
    objectives = []
    iteration = 0

    while iteration < max_iter:
        state = ITERATING
        iteration += 1

        G = family.gradient(eta_y, Y)
        _check_finite(G, "gradient")
        grad_beta = design.rmatmul(G)
        grad_intercept = G.sum(axis=0) if fit_intercept else np.zeros(m)

        for _ in range(max_backtracks + 1):
            beta_new = prox_sorted_l1(beta_y - step * grad_beta, step * lam)
            intercept_new = intercept_y - step * grad_intercept

            d_beta = beta_new - beta_y
            d_intercept = intercept_new - intercept_y
            eta_new, loss_new = objective_parts(beta_new, intercept_new)

            upper = (
                loss_y
                + np.sum(grad_beta * d_beta)
                + np.dot(grad_intercept, d_intercept)
                + (0.5 / step) * (np.sum(d_beta**2) + np.sum(d_intercept**2))
            )
            if np.isfinite(loss_new) and loss_new <= upper:
                break
            step *= 0.5
        else:
            # the last trial used the step before halving
            step *= 2.0

        _check_finite(loss_new, "loss")
        objective_new = loss_new + sorted_l1_norm(beta_new, lam)

        if accelerate and t > 1.0 and objective_new > objective:
            # restart from the last accepted iterate without momentum
            t = 1.0
            beta_y, intercept_y = beta.copy(), intercept.copy()
            eta_y, loss_y = eta, loss
            if diagnostics:
                objectives.append(objective)
            continue

        delta = max(
            np.max(np.abs(beta_new - beta), initial=0.0),
            np.max(np.abs(intercept_new - intercept), initial=0.0),
        )
        scale = max(
            1.0,
            np.max(np.abs(beta_new), initial=0.0),
            np.max(np.abs(intercept_new), initial=0.0),
        )

        if accelerate:
            t_new = 0.5 * (1.0 + np.sqrt(1.0 + 4.0 * t**2))
            momentum = (t - 1.0) / t_new
            beta_y = beta_new + momentum * (beta_new - beta)
            intercept_y = intercept_new + momentum * (intercept_new - intercept)
            t = t_new
        else:
            beta_y, intercept_y = beta_new, intercept_new

        beta, intercept = beta_new, intercept_new
        eta, loss, objective = eta_new, loss_new, objective_new

        if accelerate:
            eta_y, loss_y = objective_parts(beta_y, intercept_y)
        else:
            eta_y, loss_y = eta, loss

        if diagnostics:
            objectives.append(objective)

        if delta <= tol * scale:
            state = CONVERGED
            break

    if state != CONVERGED:
        state = MAX_ITER_REACHED

    logger.debug(
        "FISTA finished after %d iterations with status '%s' (objective %.6g).",
        iteration,
        state,
        objective,
    )

    result = {
        "beta": beta,
        "intercept": intercept,
        "iterations": iteration,
        "status": state,
        "converged": state == CONVERGED,
        "step": step,
        "loss": loss,
        "objective": objective,
    }
    if diagnostics:
        result["objectives"] = objectives
    return result
