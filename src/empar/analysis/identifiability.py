"""
Structural non-identifiability of tree parameters.

Two configurations make some parameters unrecoverable from leaf data:

- a node of valence 2, under any model: only the product of its two incident
  matrices is determined, so they can be traded against each other;
- a root of valence 1, under a model with a non-uniform root distribution:
  the root distribution and the matrix of its single edge can be traded
  against each other. A uniform root is fixed by the model, so nothing is
  confounded.
"""

import warnings

from ..exceptions import NonIdentifiabilityWarning
from ..io.trees import Tree
from ..models.markov import MarkovModel


def nonidentifiable_nodes(tree: Tree, model: MarkovModel) -> list[int]:
    """
    Nodes that make the parameters non-identifiable.

    Parameters
    ----------
    tree : Tree
        Tree topology
    model : MarkovModel
        Model family; decides whether a root of valence 1 is flagged

    Returns
    -------
    list[int]
        Node ids of valence 2, and the root if its valence is 1 and the model
        has a non-uniform root distribution, in increasing order
    """
    flagged = []
    for node in range(tree.n_nodes):
        valence = tree.valence(node)
        if valence == 2:
            flagged.append(node)
        elif node == tree.root_id and valence == 1 and not model.uniform_root:
            flagged.append(node)
    return flagged


def nonident_warning(tree: Tree, model: MarkovModel) -> bool:
    """
    Warn about nodes that make the parameters non-identifiable.

    Returns
    -------
    bool
        True when at least one node was flagged; the covariance matrix must
        not be computed in that case
    """
    nodes = nonidentifiable_nodes(tree, model)
    if not nodes:
        return False
    warnings.warn(
        f"Parameters are not identifiable: nodes {', '.join(map(str, nodes))} "
        f"have valence 2 or are a root of valence 1 under a model with a "
        f"non-uniform root distribution. "
        f"At a node of valence 2 only the product of the two incident transition "
        f"matrices is determined by the data. "
        f"At a root of valence 1 the root distribution and the matrix of its edge "
        f"are confounded. Covariance matrices are not computed for this tree.",
        NonIdentifiabilityWarning,
        stacklevel=2,
    )
    return True
