"""Identifiability, label switching and uncertainty of the estimates."""

from .fisher import MAX_CONDITION, covariance_matrix, observed_information, standard_errors
from .identifiability import nonident_warning, nonidentifiable_nodes
from .permutation import MAX_PERMUTATION_STATES, PermutationResult, guess_permutation

__all__ = [
    "MAX_CONDITION",
    "MAX_PERMUTATION_STATES",
    "PermutationResult",
    "covariance_matrix",
    "guess_permutation",
    "nonident_warning",
    "nonidentifiable_nodes",
    "observed_information",
    "standard_errors",
]
