"""
Observed Fisher information and asymptotic covariance of the estimates.

Derivatives are taken with respect to the packed free parameters
(``Parameters.pack``): the free entries of every edge matrix in edge order,
then the free entries of the root distribution.
"""

import numpy as np

from ..core.likelihood import LikelihoodCalculator
from ..core.parameters import Parameters
from ..exceptions import SingularInformationError
from ..io.sequences import Counts
from ..io.trees import Tree
from ..models.markov import MarkovModel

# Largest condition number accepted for the observed information
MAX_CONDITION = 1e12

# Step of the central differences used by the finite-difference policy
FD_STEP = 1e-5


def _analytic_hessian(calc: LikelihoodCalculator, model: MarkovModel, params: Parameters) -> np.ndarray:
    """
    Exact Hessian of the log-likelihood.

    Pattern probabilities are affine in every single free parameter, so the
    derivative ``D[:, k]`` is affine in ``theta_j`` and a unit shift gives the
    exact mixed second derivative ``D(theta + e_j)[:, k] - D(theta)[:, k]``.
    """
    n_edges = calc.tree.n_edges
    theta = params.pack(model)
    p, D = calc.pattern_gradients(params, model)

    c = calc.counts.counts
    live = (c > 0) & (p > 0)
    w1 = np.zeros_like(p)
    w2 = np.zeros_like(p)
    w1[live] = c[live] / p[live]
    w2[live] = c[live] / p[live] ** 2

    hessian = -(D * w2[:, np.newaxis]).T @ D
    for j in range(theta.shape[0]):
        shifted = theta.copy()
        shifted[j] += 1.0
        _, D_shift = calc.pattern_gradients(Parameters.unpack(model, shifted, n_edges), model)
        hessian[j] += w1 @ (D_shift - D)
    return hessian


def _finite_difference_hessian(
    calc: LikelihoodCalculator,
    model: MarkovModel,
    params: Parameters,
    step: float = FD_STEP,
) -> np.ndarray:
    """Central differences of the log-likelihood gradient."""
    n_edges = calc.tree.n_edges
    theta = params.pack(model)
    hessian = np.empty((theta.shape[0], theta.shape[0]))
    for j in range(theta.shape[0]):
        delta = np.zeros_like(theta)
        delta[j] = step
        plus = calc.log_likelihood_gradient(Parameters.unpack(model, theta + delta, n_edges), model)
        minus = calc.log_likelihood_gradient(Parameters.unpack(model, theta - delta, n_edges), model)
        hessian[j] = (plus - minus) / (2 * step)
    return hessian


def observed_information(
    tree: Tree,
    model: MarkovModel,
    params: Parameters,
    counts: Counts,
) -> np.ndarray:
    """
    Negative Hessian of the log-likelihood at ``params``.

    Parameters
    ----------
    tree : Tree
        Tree topology
    model : MarkovModel
        Model family; its ``derivative_policy`` selects exact unit-shift
        second derivatives or central differences
    params : Parameters
        Parameters to evaluate at (usually the EM estimate)
    counts : Counts
        Site-pattern counts the estimate was fitted to

    Returns
    -------
    ndarray, shape (n_free, n_free)
        Symmetric observed information matrix
    """
    calc = LikelihoodCalculator(tree, counts)
    if model.derivative_policy == "analytic":
        hessian = _analytic_hessian(calc, model, params)
    elif model.derivative_policy == "finite-difference":
        hessian = _finite_difference_hessian(calc, model, params)
    else:
        raise ValueError(f"Unknown derivative policy '{model.derivative_policy}'")
    information = -hessian
    return (information + information.T) / 2


def covariance_matrix(
    tree: Tree,
    model: MarkovModel,
    params: Parameters,
    counts: Counts,
    max_condition: float = MAX_CONDITION,
) -> np.ndarray:
    """
    Asymptotic covariance of the free parameters.

    Parameters
    ----------
    tree, model, params, counts
        As for :func:`observed_information`
    max_condition : float
        Largest acceptable condition number of the information matrix

    Returns
    -------
    ndarray, shape (n_free, n_free)
        Inverse observed information; the diagonal holds the variances

    Raises
    ------
    SingularInformationError
        If the information matrix is singular or too ill-conditioned
    """
    information = observed_information(tree, model, params, counts)
    if information.size == 0:
        return information
    condition = float(np.linalg.cond(information))
    if not np.isfinite(condition) or condition > max_condition:
        raise SingularInformationError(condition, max_condition)
    covariance = np.linalg.inv(information)
    return (covariance + covariance.T) / 2


def standard_errors(covariance: np.ndarray) -> np.ndarray:
    """Square roots of the variances (negative round-off clipped to 0)."""
    return np.sqrt(np.clip(np.diag(covariance), 0.0, None))
