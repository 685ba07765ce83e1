"""Generalized linear model families for SLOPE."""

from abc import ABC, abstractmethod
from typing import Union

import numpy as np
from scipy.special import expit, gammaln, logsumexp, xlogy


class Family(ABC):
    r"""Abstract base class for GLM families.

    A family supplies everything the solver needs to know about the loss:
    its value and gradient with respect to the linear predictor
    :math:`\boldsymbol{\eta} = \tilde{\mathbf{X}} \boldsymbol{\beta} + \mathbf{1} \mathbf{b}_0^T`,
    a curvature bound that sizes the proximal-gradient step, and the intercept
    of the null model. All methods are stateless; every array flows through
    the arguments so a single instance can be shared by concurrent fits.

    The loss is summed, not averaged, over observations.
    """

    name = None

    @abstractmethod
    def preprocess_response(self, y):
        """Validate and encode the response.

        Parameters
        ----------
        y : array-like of shape (n_samples,) or (n_samples, K)

        Returns
        -------
        Y : ndarray of shape (n_samples, m)
            Encoded response.
        class_names : ndarray or None
            Labels for classification families.
        """
        pass

    @abstractmethod
    def loss(self, eta: np.ndarray, Y: np.ndarray) -> float:
        """Negative log-likelihood for the linear predictor `eta`."""
        pass

    @abstractmethod
    def gradient(self, eta: np.ndarray, Y: np.ndarray) -> np.ndarray:
        """Derivative of :meth:`loss` with respect to `eta`, shape (n, m)."""
        pass

    @abstractmethod
    def step_bound(self, Y: np.ndarray) -> float:
        r"""Curvature factor :math:`c` of the loss.

        :math:`c \, \|[\mathbf{1}, \tilde{\mathbf{X}}]\|_2^2` bounds the
        Lipschitz constant of the gradient.
        """
        pass

    @abstractmethod
    def null_intercept(self, Y: np.ndarray) -> np.ndarray:
        """Intercept of the intercept-only model, shape (m,)."""
        pass

    @abstractmethod
    def link_inverse(self, eta: np.ndarray) -> np.ndarray:
        """Map linear predictors to the response scale."""
        pass

    def saturated_loss(self, Y: np.ndarray) -> float:
        """Loss of the saturated model."""
        return 0.0

    def deviance(self, eta: np.ndarray, Y: np.ndarray) -> float:
        """Deviance, twice the loss in excess of the saturated model."""
        return 2.0 * (self.loss(eta, Y) - self.saturated_loss(Y))

    def n_targets(self, Y: np.ndarray) -> int:
        """Number of linear predictors per observation."""
        return Y.shape[1]


def _as_column(y) -> np.ndarray:
    y = np.asarray(y)
    if y.ndim == 2 and y.shape[1] == 1:
        y = y[:, 0]
    if y.ndim != 1:
        raise ValueError("y must be a one-dimensional vector.")
    return y


class Gaussian(Family):
    r"""Gaussian family with identity link.

    .. math::
        f(\boldsymbol{\eta}) = \frac{1}{2} \| \mathbf{y} - \boldsymbol{\eta} \|_2^2
    """

    name = "gaussian"

    def preprocess_response(self, y):
        y = _as_column(y).astype(float)
        if not np.all(np.isfinite(y)):
            raise ValueError("y contains NaN or infinity values.")
        return y[:, np.newaxis], None

    def loss(self, eta, Y):
        return 0.5 * float(np.sum((Y - eta) ** 2))

    def gradient(self, eta, Y):
        return eta - Y

    def step_bound(self, Y):
        return 1.0

    def null_intercept(self, Y):
        return Y.mean(axis=0)

    def link_inverse(self, eta):
        return eta


class Binomial(Family):
    r"""Binomial family with logit link.

    The second of the two sorted class labels is coded as 1.

    .. math::
        f(\boldsymbol{\eta}) = \sum_i \log(1 + e^{\eta_i}) - y_i \eta_i
    """

    name = "binomial"

    def preprocess_response(self, y):
        y = _as_column(y)
        class_names = np.unique(y)
        if class_names.size != 2:
            raise ValueError(
                f"Binomial response must have exactly two classes, got {class_names.size}."
            )
        Y = (y == class_names[1]).astype(float)
        return Y[:, np.newaxis], class_names

    def loss(self, eta, Y):
        return float(np.sum(np.logaddexp(0.0, eta) - Y * eta))

    def gradient(self, eta, Y):
        return expit(eta) - Y

    def step_bound(self, Y):
        return 0.25

    def null_intercept(self, Y):
        p = np.clip(Y.mean(axis=0), 1e-10, 1 - 1e-10)
        return np.log(p / (1 - p))

    def link_inverse(self, eta):
        return expit(eta)


class Poisson(Family):
    r"""Poisson family with log link.

    .. math::
        f(\boldsymbol{\eta}) = \sum_i e^{\eta_i} - y_i \eta_i + \log(y_i!)

    The curvature :math:`e^{\eta}` is unbounded; the step bound uses the
    largest count as a proxy and the solver's line search takes care of the
    rest.
    """

    name = "poisson"

    def preprocess_response(self, y):
        y = _as_column(y).astype(float)
        if not np.all(np.isfinite(y)):
            raise ValueError("y contains NaN or infinity values.")
        if np.any(y < 0):
            raise ValueError("Poisson response must be non-negative.")
        return y[:, np.newaxis], None

    def loss(self, eta, Y):
        with np.errstate(over="ignore", invalid="ignore"):
            return float(np.sum(np.exp(eta) - Y * eta + gammaln(Y + 1)))

    def gradient(self, eta, Y):
        with np.errstate(over="ignore", invalid="ignore"):
            return np.exp(eta) - Y

    def step_bound(self, Y):
        return max(1.0, float(np.max(Y)))

    def null_intercept(self, Y):
        return np.log(np.maximum(Y.mean(axis=0), 1e-10))

    def link_inverse(self, eta):
        return np.exp(eta)

    def saturated_loss(self, Y):
        return float(np.sum(Y - xlogy(Y, Y) + gammaln(Y + 1)))


class Multinomial(Family):
    r"""Multinomial family with the last class as reference.

    With :math:`K` classes the linear predictor has :math:`K - 1` columns; the
    reference class has linear predictor zero.

    .. math::
        f(\boldsymbol{\eta}) = \sum_i \left[ \log\left(1 + \sum_{k<K} e^{\eta_{ik}}\right)
        - \sum_{k<K} y_{ik} \eta_{ik} \right]
    """

    name = "multinomial"

    def preprocess_response(self, y):
        y = np.asarray(y)
        if y.ndim == 2 and y.shape[1] > 1:
            if not np.all((y == 0) | (y == 1)) or not np.all(y.sum(axis=1) == 1):
                raise ValueError(
                    "A multinomial indicator matrix must have exactly one 1 per row."
                )
            class_names = np.arange(y.shape[1])
            Y = y.astype(float)
        else:
            y = _as_column(y)
            class_names = np.unique(y)
            Y = (y[:, np.newaxis] == class_names[np.newaxis, :]).astype(float)

        if class_names.size < 2:
            raise ValueError("Multinomial response must have at least two classes.")
        return Y[:, :-1], class_names

    @staticmethod
    def _with_reference(eta):
        return np.column_stack([eta, np.zeros(eta.shape[0])])

    def loss(self, eta, Y):
        lse = logsumexp(self._with_reference(eta), axis=1)
        return float(np.sum(lse) - np.sum(Y * eta))

    def gradient(self, eta, Y):
        return self.link_inverse(eta)[:, :-1] - Y

    def step_bound(self, Y):
        return 0.5

    def null_intercept(self, Y):
        probs = np.clip(Y.mean(axis=0), 1e-10, None)
        reference = max(1.0 - Y.sum(axis=1).mean(), 1e-10)
        return np.log(probs / reference)

    def link_inverse(self, eta):
        full = self._with_reference(eta)
        return np.exp(full - logsumexp(full, axis=1, keepdims=True))


FAMILIES = {
    "gaussian": Gaussian,
    "binomial": Binomial,
    "poisson": Poisson,
    "multinomial": Multinomial,
}


def get_family(family: Union[str, Family]) -> Family:
    """Resolve a family name or instance.

    Parameters
    ----------
    family : str or Family
        One of 'gaussian', 'binomial', 'poisson', 'multinomial', or a
        :class:`Family` instance.

    Returns
    -------
    Family
        The family instance.

    Raises
    ------
    ValueError
        If the name is not recognized.
    TypeError
        If `family` is neither a string nor a Family.
    """
    if isinstance(family, Family):
        return family
    if not isinstance(family, str):
        raise TypeError(
            f"family must be a string or a Family instance, got {type(family).__name__}"
        )
    try:
        return FAMILIES[family.lower()]()
    except KeyError:
        raise ValueError(
            f"Specified family '{family}' not recognized; expected one of "
            f"{sorted(FAMILIES)}."
        )
