"""Core computations: matrices, parameters and likelihood."""

from .matrix import matrix_exponential, paralinear_length

__all__ = ["matrix_exponential", "paralinear_length"]
