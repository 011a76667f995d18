"""
Per-edge transition matrices and root distribution of a Markov model on a tree.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from ..io.trees import Tree
from ..models.markov import MarkovModel
from .matrix import paralinear_length


@dataclass
class Parameters:
    """
    Model parameters on a fixed tree.

    Attributes
    ----------
    r : ndarray, shape (nalpha,)
        Distribution of the root state
    tm : ndarray, shape (n_edges, nalpha, nalpha)
        Transition matrix of every edge, indexed like ``Tree.edges``;
        ``tm[e][a, b]`` is the probability of state ``b`` at the target of
        edge ``e`` given state ``a`` at its source
    """

    r: np.ndarray
    tm: np.ndarray

    def __post_init__(self):
        self.r = np.asarray(self.r, dtype=float)
        self.tm = np.asarray(self.tm, dtype=float)
        if self.tm.ndim != 3 or self.tm.shape[1:] != (self.nalpha, self.nalpha):
            raise ValueError(
                f"Transition matrices must have shape (n_edges, {self.nalpha}, {self.nalpha}), "
                f"got {self.tm.shape}"
            )

    @property
    def nalpha(self) -> int:
        return self.r.shape[0]

    @property
    def n_edges(self) -> int:
        return self.tm.shape[0]

    def copy(self) -> "Parameters":
        return Parameters(r=self.r.copy(), tm=self.tm.copy())

    def is_valid(self, atol: float = 1e-8) -> bool:
        """Check that every matrix is row-stochastic and ``r`` is a distribution."""
        return bool(
            np.all(self.tm >= -atol)
            and np.allclose(self.tm.sum(axis=2), 1.0, atol=atol)
            and np.all(self.r >= -atol)
            and np.isclose(self.r.sum(), 1.0, atol=atol)
        )

    def distance(self, other: "Parameters") -> float:
        """L2 distance over all matrix entries and the root distribution."""
        if other.tm.shape != self.tm.shape:
            raise ValueError("Parameters belong to different trees or alphabets")
        return float(np.sqrt(np.sum((self.tm - other.tm) ** 2) + np.sum((self.r - other.r) ** 2)))

    def interpolate(self, other: "Parameters", t: float) -> "Parameters":
        """
        Convex combination ``(1 - t) * self + t * other``.

        Both endpoints lying in a model family keeps the result in it.
        """
        if not 0.0 <= t <= 1.0:
            raise ValueError(f"Interpolation weight must be in [0, 1], got {t}")
        return Parameters(
            r=(1 - t) * self.r + t * other.r,
            tm=(1 - t) * self.tm + t * other.tm,
        )

    def node_distributions(self, tree: Tree) -> np.ndarray:
        """Marginal state distribution of every node, shape (n_nodes, nalpha)."""
        dist = np.empty((tree.n_nodes, self.nalpha))
        dist[tree.root_id] = self.r
        for e in tree.edge_preorder():
            source, target = tree.edges[e]
            dist[target] = dist[source] @ self.tm[e]
        return dist

    def branch_lengths(self, tree: Tree) -> np.ndarray:
        """Paralinear length of every edge."""
        dist = self.node_distributions(tree)
        return np.array([
            paralinear_length(self.tm[e], dist[source], dist[target])
            for e, (source, target) in enumerate(tree.edges)
        ])

    def pack(self, model: MarkovModel) -> np.ndarray:
        """Flatten to the free parameters: edges in index order, then the root."""
        pieces = [model.edge_vector(m) for m in self.tm]
        pieces.append(model.root_vector(self.r))
        return np.concatenate(pieces)

    @classmethod
    def unpack(cls, model: MarkovModel, theta: np.ndarray, n_edges: int) -> "Parameters":
        """Inverse of :meth:`pack`."""
        theta = np.asarray(theta, dtype=float)
        k = model.n_edge_params
        expected = n_edges * k + model.n_root_params
        if theta.shape != (expected,):
            raise ValueError(f"Expected {expected} free parameters, got shape {theta.shape}")
        tm = np.array([model.matrix(theta[e * k:(e + 1) * k]) for e in range(n_edges)])
        r = model.root_distribution(theta[n_edges * k:])
        return cls(r=r, tm=tm)

    def permuted(self, tree: Tree, node_permutations: dict[int, Sequence[int]]) -> "Parameters":
        """
        Relabel hidden states.

        Parameters
        ----------
        tree : Tree
            Tree the parameters live on
        node_permutations : dict
            Permutation per node id; a node that is missing keeps its labels.
            New label ``a`` of node ``v`` is old label ``node_permutations[v][a]``.

        Returns
        -------
        Parameters
            ``M'[a, b] = M[pi_u(a), pi_v(b)]`` for every edge ``u -> v`` and
            ``r'[a] = r[pi_root(a)]``
        """
        identity = np.arange(self.nalpha)
        perms = {v: np.asarray(p) for v, p in node_permutations.items()}
        for v in perms:
            if v < tree.n_leaves:
                raise ValueError(f"Leaf {v} is observed and cannot be relabeled")

        tm = np.empty_like(self.tm)
        for e, (source, target) in enumerate(tree.edges):
            rows = perms.get(source, identity)
            cols = perms.get(target, identity)
            tm[e] = self.tm[e][np.ix_(rows, cols)]
        r = self.r[perms.get(tree.root_id, identity)]
        return Parameters(r=r, tm=tm)


def jc_matrix(nalpha: int, length: float) -> np.ndarray:
    """Jukes-Cantor transition matrix with ``length`` expected changes."""
    b = (1.0 - np.exp(-nalpha * length / (nalpha - 1))) / nalpha
    return (1.0 - nalpha * b) * np.eye(nalpha) + b * np.ones((nalpha, nalpha))


def create_parameters(tree: Tree, model: MarkovModel, length: float = 0.1) -> Parameters:
    """
    Deterministic starting point for EM.

    Every edge gets the Jukes-Cantor matrix of the given length, which
    belongs to every model family, and the root is uniform.
    """
    _check_alphabet(tree, model)
    tm = np.array([model.project(jc_matrix(model.nalpha, length)) for _ in tree.edges])
    return Parameters(r=np.full(model.nalpha, 1.0 / model.nalpha), tm=tm)


def random_parameters(
    tree: Tree,
    model: MarkovModel,
    rng: np.random.Generator,
    lengths: Optional[Sequence[float]] = None,
    length_range: tuple[float, float] = (0.05, 0.5),
) -> Parameters:
    """
    Random parameters with prescribed (or random) branch lengths.

    Parameters
    ----------
    tree : Tree
        Tree topology
    model : MarkovModel
        Model family
    rng : numpy.random.Generator
        Random number generator
    lengths : sequence of float, optional
        One length per edge; drawn uniformly from ``length_range`` otherwise

    Returns
    -------
    Parameters
    """
    _check_alphabet(tree, model)
    if lengths is None:
        lengths = rng.uniform(*length_range, size=tree.n_edges)
    if len(lengths) != tree.n_edges:
        raise ValueError(f"Expected {tree.n_edges} branch lengths, got {len(lengths)}")
    tm = np.array([model.random_matrix(rng, length) for length in lengths])
    return Parameters(r=model.random_root(rng), tm=tm)


def _check_alphabet(tree: Tree, model: MarkovModel):
    if tree.nalpha != model.nalpha:
        raise ValueError(
            f"Tree alphabet size {tree.nalpha} does not match model {model.name} ({model.nalpha})"
        )
