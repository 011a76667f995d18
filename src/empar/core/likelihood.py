"""
Likelihood calculation for Markov models on a fixed tree.

Pattern probabilities come from Felsenstein's pruning algorithm (the inside
pass, leaves to root). A second, outside pass from the root down gives for
every edge the joint probability of the source state and the leaves outside
the edge's subtree. Together they yield the posterior transition counts used
by EM and the derivatives used by the Fisher information, in
O(n_patterns * n_edges * nalpha^2) time.
"""

import itertools

import numpy as np

from ..exceptions import InputMismatchError
from ..io.sequences import MAX_PATTERN_TABLE, Counts, check_inputs
from ..io.trees import Tree
from ..models.markov import MarkovModel
from .parameters import Parameters


class LikelihoodCalculator:
    """
    Compute pattern probabilities and their derivatives on a tree.

    All site patterns are processed at once as rows of ``(n_patterns, nalpha)``
    arrays.

    Attributes
    ----------
    tree : Tree
        Phylogenetic tree
    counts : Counts
        Observed site-pattern counts
    n_patterns : int
        Number of distinct patterns
    """

    def __init__(self, tree: Tree, counts: Counts):
        """
        Initialize likelihood calculator.

        Parameters
        ----------
        tree : Tree
            Phylogenetic tree
        counts : Counts
            Site-pattern counts over the tree's leaves
        """
        mismatch = check_inputs(tree, counts)
        if mismatch is not None:
            raise InputMismatchError(mismatch)

        self.tree = tree
        self.counts = counts
        self.n_patterns = counts.n_patterns
        self.nalpha = tree.nalpha

        eye = np.eye(self.nalpha)
        # Conditional likelihood of each leaf: indicator of the observed state
        self._leaf_likelihoods = [eye[counts.patterns[:, leaf]] for leaf in range(tree.n_leaves)]

    def _check_parameters(self, params: Parameters):
        if params.nalpha != self.nalpha or params.n_edges != self.tree.n_edges:
            raise ValueError(
                f"Parameters for {params.n_edges} edges and {params.nalpha} states do not fit "
                f"a tree with {self.tree.n_edges} edges and {self.nalpha} states"
            )

    def _inside(self, params: Parameters) -> tuple[list, list]:
        """
        Postorder pass.

        Returns
        -------
        beta : list of ndarray
            ``beta[v][x, a]`` = P(leaves below v | state a at v) for pattern x
        messages : list of ndarray
            ``messages[e][x, a]`` = P(leaves below target of e | state a at source)
        """
        tree = self.tree
        beta = [None] * tree.n_nodes
        messages = [None] * tree.n_edges

        for node in tree.postorder():
            if node.is_leaf:
                beta[node.id] = self._leaf_likelihoods[node.id]
                continue
            likelihood = np.ones((self.n_patterns, self.nalpha))
            for e in tree.child_edges(node.id):
                target = tree.edges[e][1]
                messages[e] = beta[target] @ params.tm[e].T
                likelihood *= messages[e]
            beta[node.id] = likelihood

        return beta, messages

    def _outside(self, params: Parameters, messages: list) -> list:
        """
        Preorder pass.

        Returns
        -------
        gamma : list of ndarray
            ``gamma[e][x, a]`` = P(state a at source of e, leaves not below the
            target of e) for pattern x
        """
        tree = self.tree
        gamma = [None] * tree.n_edges
        alpha = {tree.root_id: np.broadcast_to(params.r, (self.n_patterns, self.nalpha))}

        for e in tree.edge_preorder():
            source, target = tree.edges[e]
            outside = np.array(alpha[source])
            for sibling in tree.child_edges(source):
                if sibling != e:
                    outside *= messages[sibling]
            gamma[e] = outside
            if not tree.nodes[target].is_leaf:
                alpha[target] = outside @ params.tm[e]

        return gamma

    def pattern_probabilities(self, params: Parameters) -> np.ndarray:
        """Probability of every observed pattern, shape (n_patterns,)."""
        self._check_parameters(params)
        beta, _ = self._inside(params)
        return beta[self.tree.root_id] @ params.r

    def log_likelihood(self, params: Parameters) -> float:
        """
        Total log-likelihood of the counts.

        Returns ``-inf`` when a pattern with a positive count has probability 0.
        """
        p = self.pattern_probabilities(params)
        observed = self.counts.counts > 0
        if np.any(p[observed] <= 0):
            return float(-np.inf)
        return float(np.sum(self.counts.counts[observed] * np.log(p[observed])))

    def _weights(self, p: np.ndarray) -> np.ndarray:
        c = self.counts.counts
        return np.divide(c, p, out=np.zeros_like(c), where=p > 0)

    def _statistics(self, params: Parameters) -> tuple[np.ndarray, np.ndarray, float]:
        """
        Gradient of the log-likelihood with respect to matrix entries and root.

        Returns
        -------
        edge_gradients : ndarray, shape (n_edges, nalpha, nalpha)
            d logL / d tm[e][a, b]
        root_gradient : ndarray, shape (nalpha,)
            d logL / d r[a]
        log_likelihood : float
        """
        self._check_parameters(params)
        tree = self.tree
        beta, messages = self._inside(params)
        gamma = self._outside(params, messages)

        beta_root = beta[tree.root_id]
        p = beta_root @ params.r
        w = self._weights(p)

        edge_gradients = np.empty_like(params.tm)
        for e, (_, target) in enumerate(tree.edges):
            edge_gradients[e] = (gamma[e] * w[:, np.newaxis]).T @ beta[target]
        root_gradient = w @ beta_root

        observed = self.counts.counts > 0
        if np.any(p[observed] <= 0):
            log_likelihood = float(-np.inf)
        else:
            log_likelihood = float(np.sum(self.counts.counts[observed] * np.log(p[observed])))

        return edge_gradients, root_gradient, log_likelihood

    def expected_counts(self, params: Parameters) -> tuple[np.ndarray, np.ndarray, float]:
        """
        E-step: expected sufficient statistics under the current parameters.

        Returns
        -------
        edge_counts : ndarray, shape (n_edges, nalpha, nalpha)
            Expected number of sites with state ``a`` at the source and ``b``
            at the target of every edge
        root_counts : ndarray, shape (nalpha,)
            Expected number of sites with each root state
        log_likelihood : float
            Log-likelihood of the parameters the expectation was taken under
        """
        edge_gradients, root_gradient, log_likelihood = self._statistics(params)
        return params.tm * edge_gradients, params.r * root_gradient, log_likelihood

    def log_likelihood_gradient(self, params: Parameters, model: MarkovModel) -> np.ndarray:
        """Gradient of the log-likelihood with respect to the packed free parameters."""
        edge_gradients, root_gradient, _ = self._statistics(params)
        theta = params.pack(model)
        k = model.n_edge_params
        pieces = []
        for e in range(self.tree.n_edges):
            jac = model.edge_jacobian(theta[e * k:(e + 1) * k])
            pieces.append(np.tensordot(jac, edge_gradients[e], axes=([1, 2], [0, 1])))
        rho = theta[self.tree.n_edges * k:]
        pieces.append(model.root_jacobian(rho) @ root_gradient)
        return np.concatenate(pieces)

    def pattern_gradients(self, params: Parameters, model: MarkovModel) -> tuple[np.ndarray, np.ndarray]:
        """
        Per-pattern derivatives of the pattern probabilities.

        Returns
        -------
        p : ndarray, shape (n_patterns,)
            Pattern probabilities
        D : ndarray, shape (n_patterns, n_free_params)
            ``D[x, j]`` = d p(x) / d theta_j for the packed parameters ``theta``
        """
        self._check_parameters(params)
        tree = self.tree
        beta, messages = self._inside(params)
        gamma = self._outside(params, messages)
        beta_root = beta[tree.root_id]

        theta = params.pack(model)
        k = model.n_edge_params
        D = np.empty((self.n_patterns, theta.shape[0]))
        for e, (_, target) in enumerate(tree.edges):
            jac = model.edge_jacobian(theta[e * k:(e + 1) * k])
            D[:, e * k:(e + 1) * k] = np.einsum('xa,kab,xb->xk', gamma[e], jac, beta[target])
        rho = theta[tree.n_edges * k:]
        D[:, tree.n_edges * k:] = beta_root @ model.root_jacobian(rho).T

        return beta_root @ params.r, D


def all_patterns(nalpha: int, nspecies: int) -> Counts:
    """Every possible pattern with count 1."""
    n_table = nalpha ** nspecies
    if n_table > MAX_PATTERN_TABLE:
        raise ValueError(f"Pattern table of {n_table} entries is too large to enumerate")
    patterns = np.array(list(itertools.product(range(nalpha), repeat=nspecies)), dtype=np.int64)
    return Counts(patterns=patterns, counts=np.ones(n_table), nalpha=nalpha, nspecies=nspecies)


def kl_divergence(tree: Tree, p_true: Parameters, p_est: Parameters) -> float:
    """
    Kullback-Leibler divergence between the pattern distributions.

    ``sum_x P_true(x) * log(P_true(x) / P_est(x))`` over all
    ``nalpha ** n_leaves`` leaf patterns.
    """
    calc = LikelihoodCalculator(tree, all_patterns(tree.nalpha, tree.n_leaves))
    q_true = calc.pattern_probabilities(p_true)
    q_est = calc.pattern_probabilities(p_est)
    support = q_true > 0
    if np.any(q_est[support] <= 0):
        return float(np.inf)
    return float(np.sum(q_true[support] * np.log(q_true[support] / q_est[support])))
