"""Input parsing (trees, alignments) and result files."""

from .output import read_parameters, write_covariance, write_parameters
from .sequences import PSEUDOCOUNT, Alignment, Counts, InputMismatch, check_inputs
from .trees import Tree, TreeNode

__all__ = [
    "PSEUDOCOUNT",
    "Alignment",
    "Counts",
    "InputMismatch",
    "Tree",
    "TreeNode",
    "check_inputs",
    "read_parameters",
    "write_covariance",
    "write_parameters",
]
