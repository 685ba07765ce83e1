"""Fit SLOPE regularization paths for generalized linear models."""

import logging
import warnings
from typing import Optional, Union

import numpy as np
import scipy.sparse as sp

from .design import Design
from .errors import DimensionMismatchError, InvalidPenaltyError, NonConvergenceWarning
from .errors import NumericalInstabilityError
from .families import Family, get_family
from .fista import CONVERGED, DEFAULT_MAX_BACKTRACKS, fista
from .interpolation import interpolate_coefficients, interpolate_penalty
from .lambda_sequence import build_lambda
from .sigma_max_slope import check_sigma, sigma_max_slope, sigma_path

logger = logging.getLogger(__name__)

NOT_COMPUTED = "not_computed"


class PathAccumulator:
    """Collect the results of each computed path point.

    Slices are appended in path order and only for points that were actually
    computed. :meth:`finalize` turns them into an immutable :class:`SlopeFit`.

    Parameters
    ----------
    design : Design
        Standardized design, used to map coefficients back to the original scale.
    requested_sigma : ndarray of shape (s,)
        The full sigma path that was requested.
    """

    def __init__(self, design: Design, requested_sigma: np.ndarray):
        self.design = design
        self.requested_sigma = requested_sigma
        self.betas = []
        self.intercepts = []
        self.iterations = []
        self.statuses = []
        self.deviances = []
        self.diagnostics = []
        self.termination = None
        self.error = None

    def __len__(self):
        return len(self.betas)

    def append(self, result: dict, deviance: float):
        """Append the converged (or budget-exhausted) iterate of one path point.

        Parameters
        ----------
        result : dict
            Output of :func:`~pyslope.fista.fista`, in standardized coordinates.
        deviance : float
            Deviance at the solution.
        """
        beta, intercept = self.design.unstandardize(
            result["beta"], result["intercept"]
        )
        self.betas.append(beta)
        self.intercepts.append(intercept)
        self.iterations.append(result["iterations"])
        self.statuses.append(result["status"])
        self.deviances.append(deviance)
        self.diagnostics.append(result.get("objectives"))

    def stop(self, reason: str, error: Optional[Exception] = None):
        """Mark the remaining path as not computed."""
        self.termination = reason
        self.error = error

    def finalize(self, **attributes) -> "SlopeFit":
        """Build the fitted model from the accumulated slices.

        Parameters
        ----------
        **attributes
            Passed on to :class:`SlopeFit`.

        Returns
        -------
        SlopeFit
        """
        s = len(self)
        p = self.design.p
        m = attributes["n_targets"]

        if s > 0:
            coefficients = np.stack(self.betas, axis=2)
            intercepts = np.stack(self.intercepts, axis=1)
        else:
            coefficients = np.zeros((p, m, 0))
            intercepts = np.zeros((m, 0))

        status = list(self.statuses) + [NOT_COMPUTED] * (len(self.requested_sigma) - s)

        return SlopeFit(
            coefficients=coefficients,
            intercepts=intercepts,
            sigma=self.requested_sigma[:s].copy(),
            requested_sigma=self.requested_sigma.copy(),
            status=status,
            iterations=np.array(self.iterations, dtype=int),
            deviance=np.array(self.deviances, dtype=float),
            diagnostics=list(self.diagnostics),
            termination=self.termination,
            error=self.error,
            **attributes,
        )


class SlopeFit:
    r"""A fitted SLOPE regularization path.

    Attributes
    ----------
    coefficients : ndarray of shape (p, m, s)
        Coefficients on the original scale for each computed path point.
    intercepts : ndarray of shape (m, s)
        Intercepts (zeros when no intercept was fitted).
    sigma : ndarray of shape (s,)
        Realized sigma path; shorter than `requested_sigma` if the path was
        stopped early.
    requested_sigma : ndarray
        The sigma path that was requested.
    computed : ndarray of bool
        Which requested points were computed.
    status : list of str
        'converged', 'max_iter_reached' or 'not_computed' for each requested point.
    iterations : ndarray of int, shape (s,)
        Inner iterations used at each computed point.
    converged : ndarray of bool, shape (s,)
        Convergence flag of each computed point.
    deviance : ndarray of shape (s,)
        Deviance at each computed point.
    lam : ndarray of shape (p * m,)
        Penalty sequence.
    family : Family
        Loss family.
    class_names : ndarray or None
        Class labels for binomial and multinomial models.
    fit_intercept : bool
        Whether an intercept was fitted.
    termination : str or None
        None if the whole path was computed, otherwise 'max_variables' or
        'numerical_instability'.
    error : Exception or None
        The error that stopped the path, if any.
    diagnostics : list
        Objective traces per computed point (None unless requested).
    """

    def __init__(
        self,
        coefficients,
        intercepts,
        sigma,
        requested_sigma,
        status,
        iterations,
        deviance,
        diagnostics,
        termination,
        error,
        lam,
        family,
        class_names,
        fit_intercept,
        n_targets,
        refit_args=None,
    ):
        self.coefficients = coefficients
        self.intercepts = intercepts
        self.sigma = sigma
        self.requested_sigma = requested_sigma
        self.status = status
        self.computed = np.array([s != NOT_COMPUTED for s in status], dtype=bool)
        self.iterations = iterations
        self.converged = np.array([s == CONVERGED for s in status[: len(sigma)]], dtype=bool)
        self.deviance = deviance
        self.diagnostics = diagnostics
        self.termination = termination
        self.error = error
        self.lam = lam
        self.family = family
        self.class_names = class_names
        self.fit_intercept = fit_intercept
        self.n_targets = n_targets
        self._refit_args = refit_args

        for array in (
            self.coefficients,
            self.intercepts,
            self.sigma,
            self.requested_sigma,
            self.computed,
            self.iterations,
            self.converged,
            self.deviance,
            self.lam,
        ):
            array.flags.writeable = False

    @property
    def nonzeros(self) -> np.ndarray:
        """Active set of each path point, shape (p, m, s)."""
        return self.coefficients != 0

    @property
    def n_penalties(self) -> int:
        """Number of computed path points."""
        return len(self.sigma)

    def _full_coefficients(self, beta: np.ndarray, intercepts: np.ndarray) -> np.ndarray:
        if self.fit_intercept:
            return np.concatenate([intercepts[np.newaxis, :, :], beta], axis=0)
        return beta

    def coef(self, sigma=None, exact: bool = False, simplify: bool = True) -> np.ndarray:
        """Obtain coefficients.

        If `exact` is False and `sigma` is not on the path, coefficients are
        approximated by linear interpolation between the bracketing path
        points. If `exact` is True the model is refit at `sigma`.

        Parameters
        ----------
        sigma : float or array-like, optional
            Scale(s) at which to return coefficients. Defaults to the
            realized path.
        exact : bool, default=False
            Whether to refit instead of interpolating. The requested values
            may come in any order.
        simplify : bool, default=True
            If True, singleton dimensions are dropped.

        Returns
        -------
        ndarray of shape (p + fit_intercept, m, k)
            Coefficients, with the intercept in the first row if fitted.
        """
        if sigma is None:
            beta = self.coefficients
            intercepts = self.intercepts
        else:
            value = np.atleast_1d(np.asarray(sigma, dtype=float))
            on_path = np.array([np.any(self.sigma == v) for v in value])

            if np.all(on_path):
                index = np.array([np.flatnonzero(self.sigma == v)[0] for v in value])
                beta = self.coefficients[:, :, index]
                intercepts = self.intercepts[:, index]
            elif exact:
                # refit on a decreasing path, then restore the requested order
                targets = np.unique(value)[::-1]
                refitted = self.refit(targets)
                index = np.searchsorted(-targets, -value)
                beta = refitted.coefficients[:, :, index]
                intercepts = refitted.intercepts[:, index]
            else:
                interpolation = interpolate_penalty(self.sigma, value)
                beta = interpolate_coefficients(self.coefficients, interpolation)
                intercepts = interpolate_coefficients(
                    self.intercepts[np.newaxis, :, :], interpolation
                )[0]

        out = self._full_coefficients(beta, intercepts)
        if simplify:
            out = np.squeeze(out)
        return out

    def predict(
        self,
        x,
        sigma=None,
        type: str = "link",
        exact: bool = False,
        simplify: bool = True,
    ) -> np.ndarray:
        """Generate predictions.

        Parameters
        ----------
        x : array-like or scipy.sparse matrix of shape (n_samples, p)
            New data.
        sigma : float or array-like, optional
            Scale(s) at which to predict. Defaults to the realized path.
        type : {'link', 'response', 'class'}, default='link'
            'link' returns the linear predictors, 'response' applies the
            inverse link, and 'class' (binomial and multinomial only) returns
            class labels.
        exact : bool, default=False
            Whether to refit at sigma values that are not on the path.
        simplify : bool, default=True
            If True, singleton dimensions are dropped.

        Returns
        -------
        ndarray
            Predictions of shape (n_samples, m, k) for 'link', (n_samples,
            K, k) for multinomial 'response', and (n_samples, k) for 'class',
            before simplification.

        Raises
        ------
        ValueError
            If `type` is not available for the family.
        DimensionMismatchError
            If `x` does not have p columns.
        """
        allowed = ("link", "response")
        if self.family.name in ("binomial", "multinomial"):
            allowed = allowed + ("class",)
        if type not in allowed:
            raise ValueError(
                f"type must be one of {allowed} for the {self.family.name} family."
            )

        if not sp.issparse(x):
            x = np.asarray(x, dtype=float)
            if x.ndim == 1:
                x = x[np.newaxis, :]

        coefs = self.coef(sigma=sigma, exact=exact, simplify=False)
        if self.fit_intercept:
            intercepts, beta = coefs[0], coefs[1:]
        else:
            intercepts, beta = np.zeros(coefs.shape[1:]), coefs

        if x.shape[1] != beta.shape[0]:
            raise DimensionMismatchError(
                f"x has {x.shape[1]} columns but the model has {beta.shape[0]} features."
            )

        k = beta.shape[2]
        lin_pred = np.stack(
            [np.asarray(x @ beta[:, :, i]) + intercepts[:, i] for i in range(k)],
            axis=2,
        )

        if type == "link":
            out = lin_pred
        elif type == "response":
            out = np.stack(
                [self.family.link_inverse(lin_pred[:, :, i]) for i in range(k)], axis=2
            )
        elif self.family.name == "binomial":
            out = self.class_names[(lin_pred[:, 0, :] > 0).astype(int)]
        else:
            probs = np.stack(
                [self.family.link_inverse(lin_pred[:, :, i]) for i in range(k)], axis=2
            )
            out = self.class_names[np.argmax(probs, axis=1)]

        if simplify:
            out = np.squeeze(out)
        return out

    def refit(self, sigma) -> "SlopeFit":
        """Refit the model at new sigma values.

        The new path is warm-started from the computed path point whose sigma
        is closest to the first requested value.

        Parameters
        ----------
        sigma : float or array-like
            Strictly decreasing scale(s).

        Returns
        -------
        SlopeFit
            A new fit at the requested sigma values.

        Raises
        ------
        RuntimeError
            If the fit does not retain its training data.
        """
        if self._refit_args is None:
            raise RuntimeError("This fit does not retain the data required to refit.")

        sigma = np.atleast_1d(np.asarray(sigma, dtype=float))
        kwargs = dict(self._refit_args)
        x = kwargs.pop("x")
        y = kwargs.pop("y")

        warm_start = None
        if self.n_penalties > 0:
            nearest = int(np.argmin(np.abs(self.sigma - sigma[0])))
            warm_start = self.coefficients[:, :, nearest].copy()

        return slope(x, y, sigma=sigma, warm_start=warm_start, **kwargs)


def slope(
    x,
    y,
    family: Union[str, Family] = "gaussian",
    fit_intercept: bool = True,
    standardize: bool = True,
    sigma=None,
    lam: Union[str, np.ndarray] = "bh",
    q: Optional[float] = None,
    theta1: float = 1.0,
    theta2: float = 1.0,
    n_sigma: int = 100,
    sigma_min_ratio: Optional[float] = None,
    max_variables: Optional[int] = None,
    tol: float = 1e-6,
    max_iter: int = 10000,
    accelerate: bool = True,
    max_backtracks: int = DEFAULT_MAX_BACKTRACKS,
    warm_start: Optional[np.ndarray] = None,
    diagnostics: bool = False,
    trace_progress: bool = False,
) -> SlopeFit:
    r"""Fit a SLOPE regularization path.

    Solves, for each :math:`\sigma` on a decreasing path,

    .. math::
        \min_{\boldsymbol{\beta}, \mathbf{b}_0} f(\tilde{\mathbf{X}} \boldsymbol{\beta} + \mathbf{1}\mathbf{b}_0^T; \mathbf{y})
        + \sigma \sum_{j} \lambda_j |\beta|_{(j)}

    where :math:`f` is the negative log-likelihood of the family and
    :math:`\tilde{\mathbf{X}}` is the (optionally) standardized design.

    Parameters
    ----------
    x : array-like or scipy.sparse matrix of shape (n_samples, n_features)
        Design matrix, :math:`\mathbf{X}`.
    y : array-like of shape (n_samples,) or (n_samples, K)
        Response. Class labels for 'binomial' and 'multinomial' (or an
        indicator matrix for 'multinomial').
    family : str or Family, default='gaussian'
        One of 'gaussian', 'binomial', 'poisson', 'multinomial', or a
        :class:`~pyslope.families.Family` instance.
    fit_intercept : bool, default=True
        Whether to fit an unpenalized intercept.
    standardize : bool, default=True
        If True, features are centered (when an intercept is fitted) and
        scaled to unit Euclidean norm before fitting, so `sigma` is on the
        scale of the noise. Coefficients are always returned on the original
        scale.
    sigma : float or array-like, optional
        Strictly decreasing, non-negative scales. If None, a geometric path
        of `n_sigma` values is generated from :math:`\sigma_{\text{max}}`.
    lam : {'bh', 'gaussian', 'oscar'} or array-like, default='bh'
        Penalty sequence rule, or an explicit non-increasing sequence of
        length ``n_features * m``.
    q : float, optional
        False discovery rate for the 'bh' and 'gaussian' rules. Defaults to
        ``0.1 * min(1, n_samples / n_features)``.
    theta1, theta2 : float, default=1.0
        Parameters of the 'oscar' rule.
    n_sigma : int, default=100
        Length of the generated sigma path.
    sigma_min_ratio : float, optional
        Ratio of the smallest to the largest generated sigma.
    max_variables : int, optional
        Stop the path once the number of nonzero coefficients exceeds this
        bound. The remaining points are reported as not computed.
    tol : float, default=1e-6
        Relative accuracy of each inner solve.
    max_iter : int, default=10000
        Maximum number of inner iterations per path point.
    accelerate : bool, default=True
        Whether to use FISTA momentum.
    max_backtracks : int, default=10
        Maximum number of step halvings per inner iteration.
    warm_start : ndarray of shape (n_features,) or (n_features, m), optional
        Starting coefficients (original scale) for the first path point.
    diagnostics : bool, default=False
        If True, objective traces are recorded for each path point.
    trace_progress : bool, default=False
        If True, progress is logged at INFO level after each path point.

    Returns
    -------
    SlopeFit
        The fitted path.

    Raises
    ------
    DimensionMismatchError
        If x, y and `warm_start` have incompatible shapes, or an explicit
        penalty sequence has the wrong length.
    InvalidPenaltyError
        If the penalty sequence or `q` is malformed.
    ValueError
        If the data or the sigma path are invalid.

    Notes
    -----
    The path is computed sequentially; each point is warm-started from a
    copy of the previous solution. A point whose inner solve runs out of
    iterations is kept and flagged with a
    :class:`~pyslope.errors.NonConvergenceWarning`. A
    :class:`~pyslope.errors.NumericalInstabilityError` ends the path: earlier
    points are kept and the rest are reported as not computed.
    """
    family = get_family(family)

    design = Design(x, center=standardize and fit_intercept, scale=standardize)
    n, p = design.n, design.p

    y_arr = np.asarray(y)
    if y_arr.ndim == 0 or y_arr.shape[0] != n:
        raise DimensionMismatchError(
            f"x has {n} rows but y has {y_arr.shape[0] if y_arr.ndim else 0} observations."
        )
    Y, class_names = family.preprocess_response(y_arr)
    m = family.n_targets(Y)

    if q is None:
        q = 0.1 * min(1.0, n / p)

    if not isinstance(lam, str) and np.asarray(lam).size != p * m:
        raise DimensionMismatchError(
            f"lambda has length {np.asarray(lam).size}, expected {p * m}."
        )
    lam_seq = build_lambda(p * m, lam, q=q, n=n, theta1=theta1, theta2=theta2)

    if max_variables is not None and max_variables < 0:
        raise ValueError("max_variables must be non-negative.")

    if warm_start is not None:
        warm_start = np.asarray(warm_start, dtype=float)
        if warm_start.ndim == 1 and m == 1:
            warm_start = warm_start[:, np.newaxis]
        if warm_start.shape != (p, m):
            raise DimensionMismatchError(
                f"warm_start has shape {warm_start.shape}, expected {(p, m)}."
            )

    if sigma is None:
        s_max = sigma_max_slope(design, Y, family, lam_seq, fit_intercept)
        if not np.isfinite(s_max):
            raise InvalidPenaltyError(
                "lambda vanishes on the leading ranks; supply sigma explicitly."
            )
        if s_max <= 0:
            sigma = np.zeros(1)
        else:
            sigma = sigma_path(s_max, n_sigma, sigma_min_ratio, n=n, p=p)
    else:
        sigma = check_sigma(sigma)

    lipschitz = family.step_bound(Y) * design.spectral_norm_squared(fit_intercept)
    step0 = 1.0 / lipschitz if lipschitz > 0 else 1.0

    intercept = family.null_intercept(Y) if fit_intercept else np.zeros(m)
    if warm_start is not None:
        beta, _ = design.standardize(warm_start, intercept)
    else:
        beta = np.zeros((p, m))

    accumulator = PathAccumulator(design, sigma)
    n_sigma_total = len(sigma)

    for i, sigma_i in enumerate(sigma):
        try:
            result = fista(
                design,
                Y,
                family,
                sigma_i * lam_seq,
                beta.copy(),
                intercept.copy(),
                step0,
                fit_intercept=fit_intercept,
                tol=tol,
                max_iter=max_iter,
                accelerate=accelerate,
                max_backtracks=max_backtracks,
                diagnostics=diagnostics,
            )
        except NumericalInstabilityError as e:
            logger.warning(
                "Numerical instability at sigma = %.6g (point %d of %d); "
                "stopping the path: %s",
                sigma_i,
                i + 1,
                n_sigma_total,
                e,
            )
            accumulator.stop("numerical_instability", e)
            break

        if not result["converged"]:
            warnings.warn(
                f"Inner solver reached max_iter = {max_iter} at sigma = {sigma_i:.6g} "
                f"(point {i + 1} of {n_sigma_total}).",
                NonConvergenceWarning,
            )

        eta = design.matmul(result["beta"]) + result["intercept"]
        accumulator.append(result, family.deviance(eta, Y))

        beta = result["beta"]
        intercept = result["intercept"]
        n_nonzero = int(np.count_nonzero(beta))

        logger.log(
            logging.INFO if trace_progress else logging.DEBUG,
            "Loop: %d of %d finished (sigma = %.6g, nonzero = %d, iterations = %d).",
            i + 1,
            n_sigma_total,
            sigma_i,
            n_nonzero,
            result["iterations"],
        )

        if max_variables is not None and n_nonzero > max_variables:
            if i + 1 < n_sigma_total:
                logger.warning(
                    "Active set exceeded max_variables = %d at point %d of %d; "
                    "stopping the path.",
                    max_variables,
                    i + 1,
                    n_sigma_total,
                )
                accumulator.stop("max_variables")
            break

    refit_args = {
        "x": x,
        "y": y,
        "family": family,
        "fit_intercept": fit_intercept,
        "standardize": standardize,
        "lam": lam_seq,
        "max_variables": max_variables,
        "tol": tol,
        "max_iter": max_iter,
        "accelerate": accelerate,
        "max_backtracks": max_backtracks,
        "diagnostics": diagnostics,
        "trace_progress": trace_progress,
    }

    return accumulator.finalize(
        lam=lam_seq.copy(),
        family=family,
        class_names=class_names,
        fit_intercept=fit_intercept,
        n_targets=m,
        refit_args=refit_args,
    )
