import numpy as np
import pytest
import scipy.sparse as sp
from pyslope.design import Design
from pyslope.errors import DimensionMismatchError


@pytest.fixture
def dense_and_sparse():
    np.random.seed(42)
    n, p = 40, 8
    X = np.random.randn(n, p) * np.arange(1, p + 1)
    X[np.random.rand(n, p) < 0.6] = 0.0
    return X, sp.csr_matrix(X)


def test_standardized_columns(dense_and_sparse):
    X, _ = dense_and_sparse
    design = Design(X, center=True, scale=True)
    Xs = design.to_dense()
    np.testing.assert_allclose(Xs.mean(axis=0), 0.0, atol=1e-12)
    np.testing.assert_allclose(np.linalg.norm(Xs, axis=0), 1.0)


def test_scale_is_norm_of_centered_column(dense_and_sparse):
    """Test columns are scaled by sqrt(n) times their standard deviation."""
    X, X_sparse = dense_and_sparse
    n = X.shape[0]
    expected = np.sqrt(n) * X.std(axis=0)
    np.testing.assert_allclose(Design(X, center=True, scale=True).x_scale, expected)
    np.testing.assert_allclose(Design(X_sparse, center=True, scale=True).x_scale, expected)


def test_scale_without_centering_uses_raw_norm(dense_and_sparse):
    X, X_sparse = dense_and_sparse
    expected = np.linalg.norm(X, axis=0)
    np.testing.assert_allclose(Design(X, scale=True).x_scale, expected)
    np.testing.assert_allclose(Design(X_sparse, scale=True).x_scale, expected)


def test_no_standardization_is_identity(dense_and_sparse):
    X, _ = dense_and_sparse
    design = Design(X)
    np.testing.assert_array_equal(design.to_dense(), X)


def test_products_match_dense(dense_and_sparse):
    X, _ = dense_and_sparse
    design = Design(X, center=True, scale=True)
    Xs = design.to_dense()
    beta = np.random.randn(X.shape[1], 2)
    G = np.random.randn(X.shape[0], 2)
    np.testing.assert_allclose(design.matmul(beta), Xs @ beta)
    np.testing.assert_allclose(design.rmatmul(G), Xs.T @ G)


def test_sparse_matches_dense(dense_and_sparse):
    """Test implicit centering of a sparse design matches the dense computation."""
    X, X_sparse = dense_and_sparse
    dense = Design(X, center=True, scale=True)
    sparse = Design(X_sparse, center=True, scale=True)

    assert sparse.is_sparse
    assert sp.issparse(sparse.X)
    np.testing.assert_allclose(sparse.x_center, dense.x_center)
    np.testing.assert_allclose(sparse.x_scale, dense.x_scale)

    beta = np.random.randn(X.shape[1], 1)
    G = np.random.randn(X.shape[0], 1)
    np.testing.assert_allclose(sparse.matmul(beta), dense.matmul(beta))
    np.testing.assert_allclose(sparse.rmatmul(G), dense.rmatmul(G))


def test_constant_column_is_not_scaled():
    X = np.column_stack([np.full(5, 3.0), np.arange(5.0)])
    design = Design(X, center=True, scale=True)
    assert design.x_scale[0] == 1.0
    np.testing.assert_allclose(design.to_dense()[:, 0], 0.0)


@pytest.mark.parametrize("fit_intercept", [False, True])
def test_spectral_norm(dense_and_sparse, fit_intercept):
    X, X_sparse = dense_and_sparse
    dense = Design(X, center=True, scale=True)
    sparse = Design(X_sparse, center=True, scale=True)

    A = dense.to_dense()
    if fit_intercept:
        A = np.column_stack([np.ones(A.shape[0]), A])
    expected = np.linalg.norm(A, ord=2) ** 2

    assert dense.spectral_norm_squared(fit_intercept) == pytest.approx(expected)
    assert sparse.spectral_norm_squared(fit_intercept) == pytest.approx(expected, rel=1e-6)


def test_standardize_roundtrip_preserves_predictions(dense_and_sparse):
    X, _ = dense_and_sparse
    design = Design(X, center=True, scale=True)
    beta = np.random.randn(X.shape[1], 1)
    intercept = np.array([0.3])

    beta_orig, intercept_orig = design.unstandardize(beta, intercept)
    np.testing.assert_allclose(
        X @ beta_orig + intercept_orig, design.matmul(beta) + intercept
    )

    beta_back, intercept_back = design.standardize(beta_orig, intercept_orig)
    np.testing.assert_allclose(beta_back, beta)
    np.testing.assert_allclose(intercept_back, intercept)


def test_invalid_inputs():
    with pytest.raises(DimensionMismatchError):
        Design(np.ones(5))
    with pytest.raises(ValueError):
        Design(np.zeros((0, 3)))
    with pytest.raises(ValueError):
        Design(np.array([[1.0, np.nan], [0.0, 1.0]]))
    with pytest.raises(ValueError):
        Design(sp.csr_matrix(np.array([[1.0, np.inf], [0.0, 1.0]])))
