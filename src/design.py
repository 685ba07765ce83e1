"""Design matrix wrapper with implicit standardization for dense and sparse inputs."""

import numpy as np
import scipy.sparse as sp
from scipy.sparse.linalg import LinearOperator, svds

from .errors import DimensionMismatchError


class Design:
    r"""Read-only view of a design matrix in standardized coordinates.

    The standardized matrix

    .. math::
        \tilde{\mathbf{X}} = (\mathbf{X} - \mathbf{1} \boldsymbol{\mu}^T) \, \mathrm{diag}(\mathbf{s})^{-1}

    is never formed. Products with it are computed from the original matrix,
    so a sparse :math:`\mathbf{X}` stays sparse even when it is centered.

    Parameters
    ----------
    X : ndarray or scipy.sparse matrix of shape (n_samples, n_features)
        The design matrix. Sparse matrices are converted to CSC format.
    center : bool, default=False
        If True, columns are centered at their means.
    scale : bool, default=False
        If True, columns (after centering, if any) are scaled to unit
        Euclidean norm. The loss is summed over observations, so unit-norm
        columns keep :math:`\tilde{\mathbf{X}}^T \boldsymbol{\varepsilon}` on
        the scale of the noise. Columns with zero norm are left unscaled.

    Attributes
    ----------
    X : ndarray or scipy.sparse.csc_matrix
        The original design matrix.
    n : int
        Number of samples.
    p : int
        Number of features.
    is_sparse : bool
        Whether the design is stored as a sparse matrix.
    x_center : ndarray of shape (p,)
        Column centers, :math:`\boldsymbol{\mu}` (zeros if not centered).
    x_scale : ndarray of shape (p,)
        Column scales, :math:`\mathbf{s}` (ones if not scaled).

    Raises
    ------
    DimensionMismatchError
        If X is not two-dimensional.
    ValueError
        If X contains NaN or infinity values, or has no rows or columns.
    """

    def __init__(self, X, center: bool = False, scale: bool = False):
        if sp.issparse(X):
            X = sp.csc_matrix(X, dtype=float)
            values = X.data
        else:
            X = np.asarray(X, dtype=float)
            values = X

        if X.ndim != 2:
            raise DimensionMismatchError("X must be a 2D array.")
        if X.shape[0] == 0 or X.shape[1] == 0:
            raise ValueError("X must have at least one row and one column.")
        if np.any(np.isnan(values)) or np.any(np.isinf(values)):
            raise ValueError("X contains NaN or infinity values.")

        self.X = X
        self.n, self.p = X.shape
        self.is_sparse = sp.issparse(X)

        if center:
            self.x_center = np.asarray(X.mean(axis=0)).ravel()
        else:
            self.x_center = np.zeros(self.p)

        if scale:
            if self.is_sparse:
                mean_sq = np.asarray(X.multiply(X).mean(axis=0)).ravel()
                mean = np.asarray(X.mean(axis=0)).ravel()
                c = self.x_center
                sum_sq = self.n * np.maximum(mean_sq - 2 * c * mean + c**2, 0.0)
                x_scale = np.sqrt(sum_sq)
                col_max = abs(X).max(axis=0).toarray().ravel()
            else:
                x_scale = np.linalg.norm(X - self.x_center, axis=0)
                col_max = np.max(np.abs(X), axis=0)
            # centering a constant column leaves rounding error, not spread
            x_scale[x_scale <= 1e-10 * np.sqrt(self.n) * np.maximum(col_max, 1.0)] = 1.0
            self.x_scale = x_scale
        else:
            self.x_scale = np.ones(self.p)

    def matmul(self, beta: np.ndarray) -> np.ndarray:
        r"""Compute :math:`\tilde{\mathbf{X}} \boldsymbol{\beta}`.

        Parameters
        ----------
        beta : ndarray of shape (p, m)
            Coefficients in standardized coordinates.

        Returns
        -------
        ndarray of shape (n, m)
            Linear predictor without intercept.
        """
        b = beta / self.x_scale[:, np.newaxis]
        out = np.asarray(self.X @ b)
        return out - self.x_center @ b

    def rmatmul(self, G: np.ndarray) -> np.ndarray:
        r"""Compute :math:`\tilde{\mathbf{X}}^T \mathbf{G}`.

        Parameters
        ----------
        G : ndarray of shape (n, m)

        Returns
        -------
        ndarray of shape (p, m)
        """
        out = np.asarray(self.X.T @ G)
        out = out - np.outer(self.x_center, G.sum(axis=0))
        return out / self.x_scale[:, np.newaxis]

    def spectral_norm_squared(self, fit_intercept: bool = False) -> float:
        r"""Compute the squared largest singular value of the (augmented) design.

        With ``fit_intercept=True`` the implicit intercept column is included,
        i.e. the norm of :math:`[\mathbf{1}, \tilde{\mathbf{X}}]` is returned. It
        bounds the curvature of every loss in this package up to a family
        specific factor.

        Parameters
        ----------
        fit_intercept : bool, default=False
            Whether to include a column of ones.

        Returns
        -------
        float
            :math:`\|[\mathbf{1}, \tilde{\mathbf{X}}]\|_2^2` or
            :math:`\|\tilde{\mathbf{X}}\|_2^2`.
        """
        k = self.p + int(fit_intercept)

        if not self.is_sparse or min(self.n, k) <= 2:
            dense = self.to_dense()
            if fit_intercept:
                dense = np.column_stack([np.ones(self.n), dense])
            return float(np.linalg.norm(dense, ord=2) ** 2)

        def matvec(v):
            v = np.asarray(v, dtype=float).ravel()
            out = self.matmul(v[int(fit_intercept) :, np.newaxis]).ravel()
            if fit_intercept:
                out = out + v[0]
            return out

        def rmatvec(u):
            u = np.asarray(u, dtype=float).ravel()
            out = self.rmatmul(u[:, np.newaxis]).ravel()
            if fit_intercept:
                out = np.concatenate([[u.sum()], out])
            return out

        op = LinearOperator(
            (self.n, k), matvec=matvec, rmatvec=rmatvec, dtype=float
        )
        sigma_max = svds(op, k=1, return_singular_vectors=False)
        return float(sigma_max[0] ** 2)

    def to_dense(self) -> np.ndarray:
        """Return the standardized design as a dense array."""
        X = self.X.toarray() if self.is_sparse else self.X
        return (X - self.x_center) / self.x_scale

    def unstandardize(self, beta: np.ndarray, intercept: np.ndarray):
        r"""Map standardized coefficients back to the original scale.

        Parameters
        ----------
        beta : ndarray of shape (p, m)
        intercept : ndarray of shape (m,)

        Returns
        -------
        tuple of ndarray
            Coefficients :math:`\beta_j / s_j` and the intercept adjusted for
            the column centers.
        """
        beta_orig = beta / self.x_scale[:, np.newaxis]
        intercept_orig = intercept - self.x_center @ beta_orig
        return beta_orig, intercept_orig

    def standardize(self, beta: np.ndarray, intercept: np.ndarray):
        """Map original-scale coefficients to standardized coordinates.

        Inverse of :meth:`unstandardize`.
        """
        beta_std = beta * self.x_scale[:, np.newaxis]
        intercept_std = intercept + self.x_center @ beta
        return beta_std, intercept_std
