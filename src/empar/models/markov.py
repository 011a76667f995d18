"""
Markov substitution models on a fixed tree.

Every model is a family of row-stochastic transition matrices whose entries
are tied into classes. The free parameters of an edge are the values of the
off-diagonal classes; diagonal entries are fixed by the row sums. A matrix is
therefore an affine function of its free parameters,

    M(theta) = I + sum_k theta_k * B_k,

where ``B_k`` marks class ``k`` and subtracts its row multiplicity from the
diagonal. The root distribution is tied the same way (or fixed to uniform).

Models register themselves under their ``name`` when the class is defined;
:func:`get_model` resolves a name to a model instance.
"""

from abc import ABC, abstractmethod
from itertools import permutations
from typing import Optional

import numpy as np

from ..core.matrix import matrix_exponential

# Nucleotide order used by the 4-state models
NUCLEOTIDES = "ACGT"
# Watson-Crick complement of each nucleotide index (A<->T, C<->G)
COMPLEMENT = np.array([3, 2, 1, 0])


class MarkovModel(ABC):
    """
    Base class for tied-class Markov models.

    Parameters
    ----------
    nalpha : int
        Alphabet size

    Attributes
    ----------
    name : str
        Model name used on the command line
    derivative_policy : str
        ``"analytic"`` when ``edge_jacobian`` is exact, ``"finite-difference"``
        when the Fisher engine must differentiate numerically
    structure : ndarray, shape (nalpha, nalpha)
        Class id of every entry; 0 on the diagonal, 1..n_edge_params elsewhere
    root_classes : ndarray or None
        Class id of every root state, None for a uniform root
    """

    name: str = ""
    aliases: tuple[str, ...] = ()
    derivative_policy: str = "analytic"
    nucleotide_only: bool = False

    _registry: dict[str, type["MarkovModel"]] = {}

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        if "name" in cls.__dict__ and cls.name:
            for key in (cls.name,) + cls.aliases:
                MarkovModel._registry[key.upper()] = cls

    def __init__(self, nalpha: int = 4):
        if self.nucleotide_only and nalpha != 4:
            raise ValueError(f"{self.name} is a nucleotide model and needs 4 states, got {nalpha}")
        if nalpha < 2:
            raise ValueError(f"Alphabet size must be at least 2, got {nalpha}")
        self.nalpha = nalpha

        self.structure = np.asarray(self._edge_structure(), dtype=int)
        self.structure.setflags(write=False)
        n_classes = int(self.structure.max())

        # Class masks, multiplicity per row and the rows each class lives in
        self._class_mask = np.array(
            [self.structure == k for k in range(1, n_classes + 1)]
        )
        self._class_rows = self._class_mask.any(axis=2).astype(float)
        self._multiplicity = self._class_mask.sum(axis=2).max(axis=1)

        eye = np.eye(nalpha)
        self.edge_basis = np.array([
            mask - np.diag(mask.sum(axis=1)) for mask in self._class_mask
        ], dtype=float).reshape(n_classes, nalpha, nalpha)
        self.edge_basis.setflags(write=False)
        self._identity = eye

        root_classes = self._root_structure()
        if root_classes is None:
            self.root_classes = None
            self.root_basis = np.zeros((0, nalpha))
            self._root_offset = np.full(nalpha, 1.0 / nalpha)
        else:
            self.root_classes = np.asarray(root_classes, dtype=int)
            n_groups = int(self.root_classes.max()) + 1
            indicators = np.array([self.root_classes == g for g in range(n_groups)], dtype=float)
            sizes = indicators.sum(axis=1)
            last = indicators[-1] / sizes[-1]
            self._root_offset = last
            self.root_basis = np.array([
                indicators[g] - sizes[g] * last for g in range(n_groups - 1)
            ]).reshape(n_groups - 1, nalpha)
            self._root_indicators = indicators
            self._root_sizes = sizes
        self.root_basis.setflags(write=False)

        self._tie_pattern = self._diagonal_ties()
        self._permutations: Optional[list[tuple[int, ...]]] = None
        self._root_permutations: Optional[list[tuple[int, ...]]] = None

    # Family definition

    @abstractmethod
    def _edge_structure(self) -> np.ndarray:
        """Class id of every matrix entry (0 on the diagonal)."""

    def _root_structure(self) -> Optional[np.ndarray]:
        """Class id of every root state, or None for a uniform root."""
        return None

    @abstractmethod
    def permutation_score(self, matrix: np.ndarray) -> float:
        """Score of a relabeled matrix; larger is more plausible."""

    @property
    def uniform_root(self) -> bool:
        return self.root_classes is None

    @property
    def n_edge_params(self) -> int:
        return self.edge_basis.shape[0]

    @property
    def n_root_params(self) -> int:
        return self.root_basis.shape[0]

    # Parametrization

    def matrix(self, theta: np.ndarray) -> np.ndarray:
        """Transition matrix for an edge parameter vector."""
        theta = np.asarray(theta, dtype=float)
        if theta.shape != (self.n_edge_params,):
            raise ValueError(
                f"{self.name} expects {self.n_edge_params} edge parameters, got shape {theta.shape}"
            )
        return self._identity + np.tensordot(theta, self.edge_basis, axes=1)

    def edge_vector(self, matrix: np.ndarray) -> np.ndarray:
        """Free parameters of a matrix (class means of its off-diagonal entries)."""
        matrix = np.asarray(matrix, dtype=float)
        return (self._class_mask * matrix).sum(axis=(1, 2)) / self._class_mask.sum(axis=(1, 2))

    def root_distribution(self, rho: np.ndarray) -> np.ndarray:
        """Root distribution for a root parameter vector."""
        rho = np.asarray(rho, dtype=float)
        if rho.shape != (self.n_root_params,):
            raise ValueError(
                f"{self.name} expects {self.n_root_params} root parameters, got shape {rho.shape}"
            )
        return self._root_offset + rho @ self.root_basis

    def root_vector(self, r: np.ndarray) -> np.ndarray:
        """Free parameters of a root distribution."""
        if self.root_classes is None:
            return np.zeros(0)
        r = np.asarray(r, dtype=float)
        return (self._root_indicators[:-1] @ r) / self._root_sizes[:-1]

    def project(self, matrix: np.ndarray) -> np.ndarray:
        """Closest member of the family in the class-mean sense."""
        return self.matrix(self.edge_vector(matrix))

    def edge_jacobian(self, theta: np.ndarray, step: float = 1e-6) -> np.ndarray:
        """
        Derivative of ``matrix(theta)`` with respect to each parameter.

        Returns
        -------
        ndarray, shape (n_edge_params, nalpha, nalpha)
        """
        if self.derivative_policy == "analytic":
            return np.array(self.edge_basis)
        theta = np.asarray(theta, dtype=float)
        jac = np.empty((self.n_edge_params, self.nalpha, self.nalpha))
        for k in range(self.n_edge_params):
            delta = np.zeros_like(theta)
            delta[k] = step
            jac[k] = (self.matrix(theta + delta) - self.matrix(theta - delta)) / (2 * step)
        return jac

    def root_jacobian(self, rho: np.ndarray, step: float = 1e-6) -> np.ndarray:
        """Derivative of ``root_distribution(rho)``, shape (n_root_params, nalpha)."""
        if self.derivative_policy == "analytic":
            return np.array(self.root_basis)
        rho = np.asarray(rho, dtype=float)
        jac = np.empty((self.n_root_params, self.nalpha))
        for k in range(self.n_root_params):
            delta = np.zeros_like(rho)
            delta[k] = step
            jac[k] = (self.root_distribution(rho + delta) - self.root_distribution(rho - delta)) / (2 * step)
        return jac

    # M-step

    def mstep_edge(self, expected_counts: np.ndarray) -> np.ndarray:
        """
        Maximum-likelihood matrix given expected transition counts.

        Counts of tied entries are pooled: the class value is the pooled count
        divided by the class multiplicity times the total count of the rows
        the class appears in.
        """
        expected_counts = np.asarray(expected_counts, dtype=float)
        row_totals = expected_counts.sum(axis=1)
        pooled = (self._class_mask * expected_counts).sum(axis=(1, 2))
        denominator = self._multiplicity * (self._class_rows @ row_totals)
        theta = np.divide(pooled, denominator, out=np.zeros_like(pooled), where=denominator > 0)
        return self.matrix(theta)

    def mstep_root(self, root_counts: np.ndarray) -> np.ndarray:
        """Maximum-likelihood root distribution given expected root-state counts."""
        if self.root_classes is None:
            return np.full(self.nalpha, 1.0 / self.nalpha)
        root_counts = np.asarray(root_counts, dtype=float)
        total = root_counts.sum()
        if total <= 0:
            return np.full(self.nalpha, 1.0 / self.nalpha)
        pooled = self._root_indicators @ root_counts
        return (pooled / (self._root_sizes * total)) @ self._root_indicators

    # Simulation

    def random_matrix(self, rng: np.random.Generator, length: float) -> np.ndarray:
        """
        Random transition matrix of the family with a given length.

        A random rate matrix with tied rates is scaled to one expected change
        per unit time (``-trace(Q) / nalpha == 1``) and exponentiated, so that
        ``-log(det(M)) / nalpha == length``.
        """
        if length < 0:
            raise ValueError(f"Branch length must be non-negative, got {length}")
        rates = rng.uniform(0.5, 1.5, size=self.n_edge_params)
        Q = np.tensordot(rates, self.edge_basis, axes=1)
        Q /= -np.trace(Q) / self.nalpha
        return self.project(matrix_exponential(Q, length))

    def random_root(self, rng: np.random.Generator) -> np.ndarray:
        """Random root distribution of the family."""
        if self.root_classes is None:
            return np.full(self.nalpha, 1.0 / self.nalpha)
        weights = rng.dirichlet(np.full(len(self._root_sizes), 5.0))
        return (weights / self._root_sizes) @ self._root_indicators

    def distance(self, theta_a: np.ndarray, theta_b: np.ndarray) -> float:
        """Euclidean distance between two packed parameter vectors."""
        return float(np.linalg.norm(np.asarray(theta_a) - np.asarray(theta_b)))

    # Label switching

    def _diagonal_ties(self) -> np.ndarray:
        """
        Entry tie pattern including the diagonal.

        Diagonal entries are tied across rows that share an off-diagonal
        class (their row sums are then equal); they get negative ids.
        """
        n = self.nalpha
        group = list(range(n))

        def find(i):
            while group[i] != i:
                i = group[i]
            return i

        for rows in self._class_rows:
            members = np.flatnonzero(rows)
            for i in members[1:]:
                group[find(i)] = find(members[0])

        ties = self.structure.copy()
        for i in range(n):
            ties[i, i] = -1 - find(i)
        return ties

    @staticmethod
    def _is_relabeling(a: np.ndarray, b: np.ndarray) -> bool:
        """True when ``b`` equals ``a`` up to a bijective renaming of values."""
        forward = {}
        backward = {}
        for x, y in zip(a.ravel().tolist(), b.ravel().tolist()):
            if forward.setdefault(x, y) != y or backward.setdefault(y, x) != x:
                return False
        return True

    def admissible_permutations(self, root: bool = False) -> list[tuple[int, ...]]:
        """
        Relabelings of a hidden node's states that keep every matrix in the family.

        A permutation ``pi`` maps a new label ``a`` to the old label
        ``pi[a]``. It is admissible when permuting matrix columns (incoming
        edge) and rows (outgoing edges) by ``pi`` only renames tie classes.
        For the root, the root distribution ties must also be preserved.
        The identity is always first.
        """
        if self._permutations is None:
            ties = self._tie_pattern
            found = []
            for perm in permutations(range(self.nalpha)):
                index = list(perm)
                if self._is_relabeling(ties, ties[:, index]) and self._is_relabeling(ties, ties[index, :]):
                    found.append(perm)
            self._permutations = found
            if self.root_classes is None:
                self._root_permutations = found
            else:
                self._root_permutations = [
                    perm for perm in found
                    if self._is_relabeling(self.root_classes, self.root_classes[list(perm)])
                ]
        return self._root_permutations if root else self._permutations

    def __repr__(self) -> str:
        return f"{type(self).__name__}(nalpha={self.nalpha})"


class _GroupBasedModel(MarkovModel):
    """Models whose rows all share the same classes (one diagonal value)."""

    def permutation_score(self, matrix: np.ndarray) -> float:
        # Probability of no substitution along the edge
        return float(np.trace(matrix)) / self.nalpha


class _DiagonalLargestModel(MarkovModel):
    """Models scored by how far each diagonal entry dominates its column."""

    def permutation_score(self, matrix: np.ndarray) -> float:
        matrix = np.asarray(matrix)
        diagonal = np.diag(matrix)
        off = matrix + np.diag(np.full(self.nalpha, -np.inf))
        return float(np.sum(diagonal - off.max(axis=0)))


class JC69(_GroupBasedModel):
    """
    Jukes-Cantor model: one probability for every change, uniform root.

    With two states this is the symmetric Cavender-Farris-Neyman model.
    """

    name = "JC69"
    aliases = ("JC", "CFN")

    def _edge_structure(self) -> np.ndarray:
        return 1 - np.eye(self.nalpha, dtype=int)


class K80(_GroupBasedModel):
    """Kimura 2-parameter model: transitions and transversions, uniform root."""

    name = "K80"
    aliases = ("K2P",)
    nucleotide_only = True

    def _edge_structure(self) -> np.ndarray:
        i, j = np.indices((4, 4))
        # A<->G and C<->T differ in the high bit only
        structure = np.where((i ^ j) == 2, 1, 2)
        np.fill_diagonal(structure, 0)
        return structure


class K81(_GroupBasedModel):
    """Kimura 3-parameter model: the Klein-group model, uniform root."""

    name = "K81"
    aliases = ("K3ST",)
    nucleotide_only = True

    def _edge_structure(self) -> np.ndarray:
        i, j = np.indices((4, 4))
        return i ^ j


class SSM(_DiagonalLargestModel):
    """Strand-symmetric model: M[i, j] == M[c(i), c(j)] for the complement c."""

    name = "SSM"
    nucleotide_only = True

    def _edge_structure(self) -> np.ndarray:
        structure = np.zeros((4, 4), dtype=int)
        next_class = 1
        for i in range(4):
            for j in range(4):
                if i == j or structure[i, j]:
                    continue
                structure[i, j] = next_class
                structure[COMPLEMENT[i], COMPLEMENT[j]] = next_class
                next_class += 1
        return structure

    def _root_structure(self) -> np.ndarray:
        # A and T share a frequency, C and G share the other
        return np.minimum(np.arange(4), COMPLEMENT)


class GMM(_DiagonalLargestModel):
    """General Markov model: free matrices and a free root distribution."""

    name = "GMM"

    def _edge_structure(self) -> np.ndarray:
        n = self.nalpha
        structure = np.zeros((n, n), dtype=int)
        off = ~np.eye(n, dtype=bool)
        structure[off] = np.arange(1, n * (n - 1) + 1)
        return structure

    def _root_structure(self) -> np.ndarray:
        return np.arange(self.nalpha)


def available_models() -> list[str]:
    """Canonical names of the registered models."""
    return sorted({cls.name for cls in MarkovModel._registry.values()})


def get_model(name: str, nalpha: int = 4) -> MarkovModel:
    """
    Instantiate a model by name (case-insensitive).

    Parameters
    ----------
    name : str
        Model name or alias (e.g. ``"JC69"``, ``"K81"``, ``"GMM"``)
    nalpha : int
        Alphabet size

    Returns
    -------
    MarkovModel
    """
    cls = MarkovModel._registry.get(name.upper())
    if cls is None:
        raise ValueError(
            f"Unknown model '{name}'. Valid models: {', '.join(available_models())}"
        )
    return cls(nalpha)
