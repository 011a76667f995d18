"""
High-level API for estimating Markov model parameters on a fixed tree.

The pipeline is: input check, identifiability check, EM from a
deterministic start, label-switching resolution and (for identifiable trees)
the covariance matrix from the observed Fisher information.
"""

import json
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np

from .analysis.fisher import MAX_CONDITION, covariance_matrix
from .analysis.identifiability import nonident_warning
from .analysis.permutation import guess_permutation
from .core.likelihood import kl_divergence
from .core.parameters import Parameters, create_parameters, random_parameters
from .exceptions import InputMismatchError, NonIdentifiabilityWarning, SingularInformationError
from .io.output import read_parameters, write_covariance, write_parameters
from .io.sequences import PSEUDOCOUNT, Alignment, Counts, InputMismatch, check_inputs
from .io.trees import Tree
from .models.markov import MarkovModel, get_model
from .optimize.em import DEFAULT_EPS, DEFAULT_MAXITER, EMOptimizer
from .simulate.markov import random_fake_counts

# Number of sites simulated when no alignment is given
DEFAULT_SIM_SITES = 1000

__all__ = [
    "DEFAULT_SIM_SITES",
    "EstimationResult",
    "InputMismatch",
    "check_inputs",
    "fit_parameters",
    "run",
]


def _finite_or_none(values) -> list:
    return [float(v) if np.isfinite(v) else None for v in values]


@dataclass
class EstimationResult:
    """
    Estimated parameters and their uncertainty.

    Attributes
    ----------
    model_name : str
        Name of the model family
    tree : Tree
        Tree the parameters live on
    params : Parameters
        Maximum-likelihood estimate after label-switching resolution
    log_likelihood : float
        Log-likelihood of ``params``
    iterations : int
        Number of EM iterations
    converged : bool
        Whether EM reached the convergence threshold
    identifiable : bool
        False when the tree has nodes of valence 2 or a root of valence 1
    branch_lengths : ndarray
        Paralinear length of every edge
    permutations : dict[int, tuple[int, ...]]
        Relabeling chosen for every hidden node
    covariance : ndarray, optional
        Covariance of the packed free parameters; None when not computed
    true_params : Parameters, optional
        Generating parameters when the data were simulated
    l2_distance : float, optional
        L2 distance between estimate and ``true_params``
    kl_divergence : float, optional
        KL divergence from the true to the estimated pattern distribution

    Examples
    --------
    >>> result = fit_parameters(tree, counts, "K81")
    >>> print(result.summary())
    >>> result.to_json("results.json")
    """

    model_name: str
    tree: Tree
    params: Parameters
    log_likelihood: float
    iterations: int
    converged: bool
    identifiable: bool
    branch_lengths: np.ndarray
    permutations: Dict[int, tuple]
    covariance: Optional[np.ndarray] = None
    true_params: Optional[Parameters] = None
    l2_distance: Optional[float] = None
    kl_divergence: Optional[float] = None

    @property
    def variances(self) -> Optional[np.ndarray]:
        """Diagonal of the covariance matrix, None when not computed."""
        if self.covariance is None:
            return None
        return np.diag(self.covariance).copy()

    @property
    def newick(self) -> str:
        """Tree with the estimated branch lengths."""
        return self.tree.to_newick(self.branch_lengths)

    def summary(self) -> str:
        """
        Generate human-readable summary of the estimation.

        Returns
        -------
        str
            Formatted multi-line summary
        """
        lines = []
        lines.append("=" * 70)
        lines.append(f"MODEL: {self.model_name}")
        lines.append("=" * 70)
        lines.append("")
        lines.append(f"Log-likelihood:  {self.log_likelihood:.6f}")
        lines.append(f"EM iterations:   {self.iterations}"
                     + ("" if self.converged else " (not converged)"))
        lines.append("")
        lines.append("BRANCH LENGTHS:")
        for e, (source, target) in enumerate(self.tree.edges):
            lines.append(f"  edge {e} ({source} -> {target}): {self.branch_lengths[e]:.6f}")

        variances = self.variances
        if variances is not None:
            lines.append("")
            lines.append("PARAMETER VARIANCES:")
            lines.append("  " + " ".join(f"{v:.6g}" for v in variances))
        elif not self.identifiable:
            lines.append("")
            lines.append("Covariance not computed: parameters are not identifiable on this tree.")

        lines.append("")
        lines.append("NEWICK TREE:")
        lines.append(f"  {self.newick}")

        if self.true_params is not None:
            lines.append("")
            lines.append("SIMULATION:")
            lines.append(f"  L2 distance:   {self.l2_distance:.6g}")
            if self.kl_divergence is not None:
                lines.append(f"  KL divergence: {self.kl_divergence:.6g}")

        lines.append("")
        lines.append("=" * 70)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """
        Export results as a JSON-serializable dictionary.

        Infinite branch lengths (saturated edges) are exported as None.
        """
        data = {
            'model_name': self.model_name,
            'log_likelihood': float(self.log_likelihood),
            'iterations': int(self.iterations),
            'converged': bool(self.converged),
            'identifiable': bool(self.identifiable),
            'root_distribution': self.params.r.tolist(),
            'transition_matrices': self.params.tm.tolist(),
            'branch_lengths': _finite_or_none(self.branch_lengths),
            'newick': self.newick,
            'permutations': {str(v): list(p) for v, p in self.permutations.items()},
            'covariance': None if self.covariance is None else self.covariance.tolist(),
        }
        if self.true_params is not None:
            data['l2_distance'] = float(self.l2_distance)
            data['kl_divergence'] = None if self.kl_divergence is None else float(self.kl_divergence)
        return data

    def to_json(self, filepath: Optional[str] = None, indent: int = 2) -> str:
        """
        Export results as JSON.

        Parameters
        ----------
        filepath : str, optional
            If provided, write JSON to this file
        indent : int, default=2
            Indentation level for pretty printing

        Returns
        -------
        str
            JSON string representation
        """
        json_str = json.dumps(self.to_dict(), indent=indent)
        if filepath:
            with open(filepath, 'w') as f:
                f.write(json_str)
        return json_str

    def __str__(self) -> str:
        return self.summary()

    def __repr__(self) -> str:
        return (
            f"EstimationResult(model='{self.model_name}', "
            f"logL={self.log_likelihood:.2f}, converged={self.converged})"
        )


def _resolve_model(model: Union[str, MarkovModel], nalpha: int) -> MarkovModel:
    if isinstance(model, MarkovModel):
        return model
    return get_model(model, nalpha)


def _load_tree(tree: Union[str, Path, Tree], nalpha: int) -> Tree:
    """Tree object, Newick file or Newick string."""
    if isinstance(tree, Tree):
        return tree
    path = Path(str(tree))
    if path.exists():
        return Tree.from_file(path, nalpha=nalpha)
    return Tree.from_newick(str(tree), nalpha=nalpha)


def fit_parameters(
    tree: Tree,
    counts: Counts,
    model: Union[str, MarkovModel],
    eps: float = DEFAULT_EPS,
    maxiter: int = DEFAULT_MAXITER,
    start: Optional[Parameters] = None,
    compute_covariance: bool = True,
    max_condition: float = MAX_CONDITION,
    verbose: bool = False,
) -> EstimationResult:
    """
    Estimate parameters from site-pattern counts.

    Parameters
    ----------
    tree : Tree
        Fixed tree topology
    counts : Counts
        Site-pattern counts over the tree's leaves
    model : str or MarkovModel
        Model family or its name
    eps : float
        EM convergence threshold
    maxiter : int
        EM iteration cap
    start : Parameters, optional
        Starting point (default: Jukes-Cantor matrices, uniform root)
    compute_covariance : bool
        Compute the covariance matrix for identifiable trees
    max_condition : float
        Largest acceptable condition number of the observed information
    verbose : bool
        Print EM progress

    Returns
    -------
    EstimationResult

    Raises
    ------
    InputMismatchError
        If the tree and the counts disagree on alphabet size or leaf count;
        raised before any optimisation
    """
    mismatch = check_inputs(tree, counts)
    if mismatch is not None:
        raise InputMismatchError(mismatch)
    model = _resolve_model(model, tree.nalpha)

    identifiable = not nonident_warning(tree, model)

    params = start.copy() if start is not None else create_parameters(tree, model)
    em = EMOptimizer(tree, model, counts, eps=eps, maxiter=maxiter, verbose=verbose)
    em_result = em.optimize(params)

    relabeled = guess_permutation(tree, model, em_result.params)
    estimate = relabeled.params

    covariance = None
    if identifiable and compute_covariance:
        try:
            covariance = covariance_matrix(tree, model, estimate, counts, max_condition=max_condition)
        except SingularInformationError as e:
            warnings.warn(e.full_message, NonIdentifiabilityWarning, stacklevel=2)

    return EstimationResult(
        model_name=model.name,
        tree=tree,
        params=estimate,
        log_likelihood=em.calc.log_likelihood(estimate),
        iterations=em_result.iterations,
        converged=em_result.converged,
        identifiable=identifiable,
        branch_lengths=estimate.branch_lengths(tree),
        permutations=relabeled.permutations,
        covariance=covariance,
    )


def run(
    tree_file: Union[str, Path, Tree],
    model_name: str,
    alignment_file: Optional[Union[str, Path]] = None,
    simulate_sites: Optional[int] = None,
    nalpha: int = 4,
    eps: float = DEFAULT_EPS,
    maxiter: int = DEFAULT_MAXITER,
    seed: Optional[int] = None,
    output_prefix: Optional[Union[str, Path]] = None,
    start_file: Optional[Union[str, Path]] = None,
    verbose: bool = False,
    quiet: bool = False,
) -> EstimationResult:
    """
    Full estimation run on real or simulated data.

    With an alignment, its site patterns (plus a pseudocount of 0.01 on every
    possible pattern) are fitted and the estimate is written to
    ``<prefix>.dat`` and the covariance to ``<prefix>.cov``, the prefix
    defaulting to the alignment path without extension.

    Without an alignment, parameters with random branch lengths are drawn,
    ``simulate_sites`` sites are simulated from them and the estimate is
    compared with the truth (L2 distance and KL divergence). No parameter
    file is written; the covariance is written only when ``output_prefix``
    is given.

    Parameters
    ----------
    tree_file : str, Path or Tree
        Newick file, Newick string or Tree
    model_name : str
        Model family name
    alignment_file : str or Path, optional
        FASTA or PHYLIP alignment whose names match the tree's leaves
    simulate_sites : int, optional
        Number of sites to simulate when no alignment is given
        (default ``DEFAULT_SIM_SITES``)
    nalpha : int
        Alphabet size (4 for DNA alignments)
    eps, maxiter : float, int
        EM convergence threshold and iteration cap
    seed : int, optional
        Seed of the random number generator used for simulation
    output_prefix : str or Path, optional
        Prefix of the result files
    start_file : str or Path, optional
        Parameters file (as written to ``.dat``) to start EM from instead of
        the default Jukes-Cantor start
    verbose : bool
        Print EM progress
    quiet : bool
        Print nothing

    Returns
    -------
    EstimationResult
    """
    def echo(message: str = ""):
        if not quiet:
            print(message)

    model = get_model(model_name, nalpha)
    tree = _load_tree(tree_file, nalpha)
    echo(f"Model: {model.name}")
    echo("Tree:")
    echo(tree.describe())
    echo()

    true_params = None
    if alignment_file is None:
        n_sites = DEFAULT_SIM_SITES if simulate_sites is None else simulate_sites
        rng = np.random.default_rng(seed)
        true_params = random_parameters(tree, model, rng)
        counts = random_fake_counts(tree, n_sites, true_params, rng)
        echo(f"WARNING: Using {n_sites} simulated sites")
        echo("Simulated branch lengths:")
        echo("  " + " ".join(f"{b:.6f}" for b in true_params.branch_lengths(tree)))
        echo()
    else:
        alignment = Alignment.from_file(alignment_file)
        echo(f"Read {alignment.n_species} sequences of {alignment.n_sites} sites from {alignment_file}")
        counts = Counts.from_alignment(alignment, tree.leaf_names)
        mismatch = check_inputs(tree, counts)
        if mismatch is not None:
            raise InputMismatchError(mismatch)
        counts = counts.add_pseudocounts(PSEUDOCOUNT)
        if output_prefix is None:
            output_prefix = Path(alignment_file).with_suffix("")

    start = None
    if start_file is not None:
        start = read_parameters(start_file, tree.nalpha)
        echo(f"Starting from the parameters in {start_file}")

    echo("Starting the EM algorithm")
    result = fit_parameters(
        tree, counts, model, eps=eps, maxiter=maxiter, start=start, verbose=verbose
    )

    if true_params is not None:
        result.true_params = true_params
        result.l2_distance = result.params.distance(true_params)
        try:
            result.kl_divergence = kl_divergence(tree, true_params, result.params)
        except ValueError as e:
            warnings.warn(f"KL divergence not computed: {e}", stacklevel=2)

    if output_prefix is not None:
        prefix = str(output_prefix)
        if result.covariance is not None:
            write_covariance(result.covariance, prefix + ".cov")
        if true_params is None:
            write_parameters(result.params, prefix + ".dat")

    echo()
    echo(result.summary())
    return result
