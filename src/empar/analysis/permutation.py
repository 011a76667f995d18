"""
Label switching at hidden nodes.

The likelihood does not change when the states of an unobserved node are
renamed consistently in every incident matrix, so EM may converge to any
relabeling of the parameters. The search below picks, for every internal node,
the admissible relabeling that maximizes the summed per-edge score of the
model. Scores decompose over edges, so the optimum is found exactly by
max-sum dynamic programming over the tree.

The root is relabeled only when the model fixes a uniform root distribution;
otherwise the root distribution pins its labels and the root keeps them.
"""

import warnings
from dataclasses import dataclass

import numpy as np

from ..core.parameters import Parameters
from ..io.trees import Tree
from ..models.markov import MarkovModel

# Largest alphabet for which the permutations are enumerated
MAX_PERMUTATION_STATES = 6


@dataclass
class PermutationResult:
    """
    Relabeled parameters.

    Attributes
    ----------
    params : Parameters
        Parameters after relabeling
    permutations : dict[int, tuple[int, ...]]
        Chosen permutation of every hidden node
    score : float
        Summed permutation score of the relabeled matrices
    """

    params: Parameters
    permutations: dict[int, tuple[int, ...]]
    score: float


def _edge_scores(model, matrix, rows, cols) -> np.ndarray:
    """Score table ``S[i, j]`` for source permutation ``rows[i]`` and target ``cols[j]``."""
    scores = np.empty((len(rows), len(cols)))
    for i, pu in enumerate(rows):
        for j, pv in enumerate(cols):
            scores[i, j] = model.permutation_score(matrix[np.ix_(pu, pv)])
    return scores


def guess_permutation(tree: Tree, model: MarkovModel, params: Parameters) -> PermutationResult:
    """
    Resolve label switching at the hidden nodes.

    Parameters
    ----------
    tree : Tree
        Tree topology
    model : MarkovModel
        Model family; supplies the admissible permutations and the score
    params : Parameters
        Parameters to relabel (left unchanged)

    Returns
    -------
    PermutationResult
        Leaves keep their labels, and so does the root unless the model has a
        uniform root distribution. Among equally scored choices the
        permutation listed first by ``model.admissible_permutations`` wins,
        so parameters that are already well labeled are kept as they are.
    """
    identity = tuple(range(model.nalpha))
    if model.nalpha > MAX_PERMUTATION_STATES:
        warnings.warn(
            f"Skipping the permutation search: {model.nalpha} states exceed "
            f"the limit of {MAX_PERMUTATION_STATES}",
            stacklevel=2,
        )
        perms = {v: identity for v in tree.hidden_nodes}
        score = sum(model.permutation_score(m) for m in params.tm)
        return PermutationResult(params=params.copy(), permutations=perms, score=float(score))

    def candidates(node: int) -> list[tuple[int, ...]]:
        if node < tree.n_leaves:
            return [identity]
        if node == tree.root_id:
            if not model.uniform_root:
                return [identity]
            return model.admissible_permutations(root=True)
        return model.admissible_permutations()

    # best[v][i]: best score of the subtree below v when v takes candidate i
    best = {}
    # choice[e][i]: best target candidate of edge e given source candidate i
    choice = {}

    for node in tree.postorder():
        own = candidates(node.id)
        total = np.zeros(len(own))
        for e in tree.child_edges(node.id):
            target = tree.edges[e][1]
            table = _edge_scores(model, params.tm[e], own, candidates(target)) + best[target]
            choice[e] = np.argmax(table, axis=1)
            total += table[np.arange(len(own)), choice[e]]
        best[node.id] = total

    selected = {tree.root_id: int(np.argmax(best[tree.root_id]))}
    for e in tree.edge_preorder():
        source, target = tree.edges[e]
        selected[target] = int(choice[e][selected[source]])

    perms = {v: candidates(v)[selected[v]] for v in tree.hidden_nodes}
    relabeled = params.permuted(tree, perms)
    return PermutationResult(
        params=relabeled,
        permutations=perms,
        score=float(best[tree.root_id][selected[tree.root_id]]),
    )
