"""
Expectation-maximization for Markov model parameters on a fixed tree.
"""

import warnings
from dataclasses import dataclass, field

import numpy as np

from ..core.likelihood import LikelihoodCalculator
from ..core.parameters import Parameters
from ..exceptions import ConvergenceWarning, LikelihoodDecreaseWarning
from ..io.sequences import Counts
from ..io.trees import Tree
from ..models.markov import MarkovModel

# Stop when one iteration improves the log-likelihood by less than this
DEFAULT_EPS = 1e-8

# Iteration cap
DEFAULT_MAXITER = 10000

# Relative slack before a decrease of the log-likelihood counts as one
DECREASE_TOLERANCE = 1e-10


@dataclass
class EMResult:
    """
    Outcome of an EM run.

    Attributes
    ----------
    params : Parameters
        Final parameters (the object passed to ``optimize``)
    log_likelihood : float
        Log-likelihood of ``params``
    iterations : int
        Number of EM iterations performed
    converged : bool
        False when the iteration cap was reached or the likelihood decreased
    history : list[dict]
        Per iteration: ``iteration``, ``log_likelihood`` and ``step`` (distance
        between consecutive free-parameter vectors)
    """

    params: Parameters
    log_likelihood: float
    iterations: int
    converged: bool
    history: list[dict] = field(default_factory=list)


class EMOptimizer:
    """
    Maximize the likelihood of site-pattern counts with EM.

    Every iteration computes the expected transition counts of every edge and
    the expected root-state counts (E-step), replaces each matrix and the root
    distribution by the model's closed-form maximizer (M-step) and
    recomputes the log-likelihood.

    Examples
    --------
    >>> optimizer = EMOptimizer(tree, get_model("JC69", 2), counts)
    >>> result = optimizer.optimize(create_parameters(tree, optimizer.model))
    >>> result.converged
    True
    """

    def __init__(
        self,
        tree: Tree,
        model: MarkovModel,
        counts: Counts,
        eps: float = DEFAULT_EPS,
        maxiter: int = DEFAULT_MAXITER,
        verbose: bool = False,
    ):
        """
        Initialize optimizer.

        Parameters
        ----------
        tree : Tree
            Fixed tree topology
        model : MarkovModel
            Model family the parameters are restricted to
        counts : Counts
            Observed site-pattern counts
        eps : float
            Convergence threshold on the log-likelihood improvement
        maxiter : int
            Maximum number of iterations
        verbose : bool
            Print progress
        """
        if eps <= 0:
            raise ValueError(f"eps must be positive, got {eps}")
        if maxiter < 1:
            raise ValueError(f"maxiter must be at least 1, got {maxiter}")
        if model.nalpha != tree.nalpha:
            raise ValueError(
                f"Model {model.name} has {model.nalpha} states but the tree expects {tree.nalpha}"
            )

        self.tree = tree
        self.model = model
        self.counts = counts
        self.eps = eps
        self.maxiter = maxiter
        self.verbose = verbose
        self.calc = LikelihoodCalculator(tree, counts)
        self.history = []

    def _maximize(self, edge_counts: np.ndarray, root_counts: np.ndarray) -> Parameters:
        """M-step: closed-form maximizer of the expected complete-data likelihood."""
        tm = np.array([self.model.mstep_edge(counts) for counts in edge_counts])
        return Parameters(r=self.model.mstep_root(root_counts), tm=tm)

    def optimize(self, params: Parameters) -> EMResult:
        """
        Run EM from ``params`` until convergence or the iteration cap.

        The E-step statistics of the next iteration are computed together
        with the log-likelihood of each update, so every iteration costs one
        inside and one outside pass.

        Parameters
        ----------
        params : Parameters
            Starting point; updated in place

        Returns
        -------
        EMResult

        Raises
        ------
        ValueError
            If the starting parameters give probability 0 to an observed
            pattern (EM cannot move away from such a point)
        """
        self.history = []
        edge_counts, root_counts, log_likelihood = self.calc.expected_counts(params)
        if not np.isfinite(log_likelihood):
            raise ValueError(
                "Starting parameters give probability 0 to an observed pattern"
            )
        theta = params.pack(self.model)

        if self.verbose:
            print(f"Starting EM with eps={self.eps:g}, maxiter={self.maxiter}")
            print(f"Initial log-likelihood: {log_likelihood:.6f}")

        converged = False
        iteration = 0
        while iteration < self.maxiter:
            iteration += 1
            previous = log_likelihood
            update = self._maximize(edge_counts, root_counts)
            edge_counts, root_counts, log_likelihood = self.calc.expected_counts(update)
            params.tm[...] = update.tm
            params.r = update.r

            new_theta = params.pack(self.model)
            self.history.append({
                'iteration': iteration,
                'log_likelihood': log_likelihood,
                'step': self.model.distance(theta, new_theta),
            })
            theta = new_theta

            if self.verbose:
                print(f"  iter {iteration:5d}  logL = {log_likelihood:.10f}")

            gain = log_likelihood - previous
            if not gain >= -DECREASE_TOLERANCE * max(1.0, abs(previous)):
                warnings.warn(
                    f"EM decreased the log-likelihood at iteration {iteration} "
                    f"({previous:.10f} -> {log_likelihood:.10f})",
                    LikelihoodDecreaseWarning,
                    stacklevel=2,
                )
                break
            if gain < self.eps:
                converged = True
                break
        else:
            warnings.warn(
                f"EM did not converge within {self.maxiter} iterations",
                ConvergenceWarning,
                stacklevel=2,
            )

        if self.verbose:
            status = "converged" if converged else "stopped"
            print(f"\nEM {status} after {iteration} iterations")
            print(f"Log-likelihood: {log_likelihood:.6f}")

        return EMResult(
            params=params,
            log_likelihood=float(log_likelihood),
            iterations=iteration,
            converged=converged,
            history=list(self.history),
        )
