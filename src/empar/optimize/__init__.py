"""Parameter optimization."""

from .em import DEFAULT_EPS, DEFAULT_MAXITER, EMOptimizer, EMResult

__all__ = ["DEFAULT_EPS", "DEFAULT_MAXITER", "EMOptimizer", "EMResult"]
