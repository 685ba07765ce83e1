"""Exceptions and warnings raised while fitting SLOPE models."""


class SlopeError(Exception):
    """Base exception class for SLOPE-related errors."""

    pass


class InvalidPenaltyError(SlopeError, ValueError):
    """Exception raised for a malformed penalty sequence or shape parameter."""

    pass


class DimensionMismatchError(SlopeError, ValueError):
    """Exception raised when design, response and coefficients do not conform."""

    pass


class NumericalInstabilityError(SlopeError, ArithmeticError):
    """Exception raised when the loss or gradient becomes non-finite."""

    pass


class NonConvergenceWarning(UserWarning):
    """Warning issued when an inner solve exhausts its iteration budget."""

    pass
