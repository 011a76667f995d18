"""
empar: maximum-likelihood estimation of Markov model parameters on a tree.

Fits the transition matrices of every edge and the root distribution of a
Markov substitution model on a fixed phylogenetic tree with EM, resolves
label switching at hidden nodes and estimates the covariance of the
parameters from the observed Fisher information.

Quick Start
-----------
Fit a model to an alignment:

>>> from empar import Tree, Alignment, Counts, fit_parameters
>>> tree = Tree.from_file("tree.nwk")
>>> counts = Counts.from_alignment(Alignment.from_file("data.fasta"), tree.leaf_names)
>>> result = fit_parameters(tree, counts.add_pseudocounts(), "K81")
>>> print(result.summary())

Check parameter recovery on simulated data:

>>> from empar import run
>>> result = run("tree.nwk", "GMM", simulate_sites=10000, seed=1)
>>> result.l2_distance
"""

__version__ = "0.1.0"

from .api import (
    DEFAULT_SIM_SITES,
    EstimationResult,
    fit_parameters,
    run,
)
from .analysis import (
    covariance_matrix,
    guess_permutation,
    nonident_warning,
    nonidentifiable_nodes,
    observed_information,
)
from .core.likelihood import LikelihoodCalculator, kl_divergence
from .core.parameters import Parameters, create_parameters, random_parameters
from .exceptions import (
    ConvergenceWarning,
    EmparError,
    InputMismatchError,
    LikelihoodDecreaseWarning,
    NonIdentifiabilityWarning,
    OutputWarning,
    SingularInformationError,
)
from .io import Alignment, Counts, InputMismatch, Tree, check_inputs
from .models import available_models, get_model
from .optimize import EMOptimizer, EMResult
from .simulate import MarkovSiteSimulator, random_fake_counts

__all__ = [
    "__version__",
    "DEFAULT_SIM_SITES",
    "Alignment",
    "ConvergenceWarning",
    "Counts",
    "EMOptimizer",
    "EMResult",
    "EmparError",
    "EstimationResult",
    "InputMismatch",
    "InputMismatchError",
    "LikelihoodCalculator",
    "LikelihoodDecreaseWarning",
    "MarkovSiteSimulator",
    "NonIdentifiabilityWarning",
    "OutputWarning",
    "Parameters",
    "SingularInformationError",
    "Tree",
    "available_models",
    "check_inputs",
    "covariance_matrix",
    "create_parameters",
    "fit_parameters",
    "get_model",
    "guess_permutation",
    "kl_divergence",
    "nonident_warning",
    "nonidentifiable_nodes",
    "observed_information",
    "random_fake_counts",
    "random_parameters",
    "run",
]
