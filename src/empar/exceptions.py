"""
Exceptions and warnings raised by empar.

Errors subclass ``ValueError`` so callers that already catch invalid input
keep working. Degraded but non-fatal conditions are reported as warnings.
"""

from typing import Optional


class EmparError(ValueError):
    """Base exception for empar errors."""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.full_message)

    @property
    def full_message(self) -> str:
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class InputMismatchError(EmparError):
    """Raised when the tree and the site-pattern counts disagree."""

    def __init__(self, mismatch):
        self.mismatch = mismatch
        super().__init__(
            message=mismatch.message,
            suggestion=(
                "Check that the alignment has one sequence per leaf of the tree "
                "and that the model alphabet matches the data."
            ),
        )


class SingularInformationError(EmparError):
    """Raised when the observed Fisher information cannot be inverted reliably."""

    def __init__(self, condition: float, max_condition: float):
        self.condition = condition
        super().__init__(
            message=(
                f"Observed information matrix is singular or ill-conditioned "
                f"(condition number {condition:.3g} > {max_condition:.3g})"
            ),
            suggestion=(
                "Parameters may not be identifiable on this tree; check for nodes "
                "of valence 2 or a root of valence 1."
            ),
        )


class NonIdentifiabilityWarning(UserWarning):
    """The tree contains nodes that make some parameters unrecoverable."""


class ConvergenceWarning(UserWarning):
    """EM stopped at the iteration cap before reaching the threshold."""


class LikelihoodDecreaseWarning(RuntimeWarning):
    """An EM iteration decreased the log-likelihood."""


class OutputWarning(UserWarning):
    """A result file could not be written."""
