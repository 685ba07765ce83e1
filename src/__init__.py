"""Sorted L1 penalized (SLOPE) regularization paths for generalized linear models."""
from .errors import (
    SlopeError,
    InvalidPenaltyError,
    DimensionMismatchError,
    NumericalInstabilityError,
    NonConvergenceWarning,
)
from .sorted_l1 import sorted_l1_norm, dual_sorted_l1_norm, prox_sorted_l1
from .lambda_sequence import lambda_sequence, build_lambda, check_lambda
from .design import Design
from .families import Family, Gaussian, Binomial, Poisson, Multinomial, get_family
from .fista import fista
from .sigma_max_slope import sigma_max_slope, sigma_path
from .slope import slope, SlopeFit, PathAccumulator
from .interpolation import interpolate_penalty, interpolate_coefficients
from .simulation import random_problem, false_discovery_proportion, fdr_simulation
