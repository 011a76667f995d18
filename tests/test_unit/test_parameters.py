"""
Unit tests for tree parameters and branch lengths.
"""

import numpy as np
import pytest

from empar.core.matrix import matrix_exponential, paralinear_length
from empar.core.parameters import (
    Parameters,
    create_parameters,
    jc_matrix,
    random_parameters,
)
from empar.models.markov import GMM, JC69, K81, SSM


class TestParameters:
    """Test the parameter container."""

    def test_shape_validation(self):
        with pytest.raises(ValueError, match="shape"):
            Parameters(r=np.full(2, 0.5), tm=np.eye(3)[np.newaxis])

    def test_create_parameters(self, quartet_tree):
        params = create_parameters(quartet_tree, K81())
        assert params.n_edges == 5
        assert params.is_valid()
        np.testing.assert_allclose(params.r, 0.25)
        np.testing.assert_allclose(params.tm[0], jc_matrix(4, 0.1))

    def test_create_parameters_alphabet_check(self, star_tree):
        with pytest.raises(ValueError, match="does not match"):
            create_parameters(star_tree, K81())

    def test_random_parameters_lengths(self, quartet_tree, rng):
        lengths = [0.1, 0.2, 0.05, 0.3, 0.4]
        params = random_parameters(quartet_tree, JC69(4), rng, lengths=lengths)
        assert params.is_valid()
        np.testing.assert_allclose(params.branch_lengths(quartet_tree), lengths)

    def test_random_parameters_wrong_count(self, quartet_tree, rng):
        with pytest.raises(ValueError, match="branch lengths"):
            random_parameters(quartet_tree, JC69(4), rng, lengths=[0.1])

    def test_copy_is_independent(self, star_params):
        other = star_params.copy()
        other.tm[0, 0, 0] = 0.0
        assert star_params.tm[0, 0, 0] != 0.0

    def test_distance(self, star_params):
        assert star_params.distance(star_params) == 0.0
        other = star_params.copy()
        other.r = np.array([0.8, 0.2])
        assert star_params.distance(other) == pytest.approx(np.sqrt(2 * 0.3 ** 2))

    def test_interpolate(self, quartet_tree, rng):
        a = random_parameters(quartet_tree, SSM(), rng)
        b = random_parameters(quartet_tree, SSM(), rng)
        mid = a.interpolate(b, 0.5)
        assert mid.is_valid()
        np.testing.assert_allclose(mid.tm, (a.tm + b.tm) / 2)
        with pytest.raises(ValueError, match="Interpolation"):
            a.interpolate(b, 1.5)

    def test_pack_unpack(self, quartet_tree, rng):
        model = GMM(4)
        params = random_parameters(quartet_tree, model, rng)
        theta = params.pack(model)
        assert theta.shape == (5 * 12 + 3,)
        restored = Parameters.unpack(model, theta, quartet_tree.n_edges)
        np.testing.assert_allclose(restored.tm, params.tm)
        np.testing.assert_allclose(restored.r, params.r)

    def test_unpack_wrong_size(self):
        with pytest.raises(ValueError, match="free parameters"):
            Parameters.unpack(JC69(2), np.zeros(4), n_edges=3)

    def test_node_distributions(self, quartet_tree, rng):
        params = random_parameters(quartet_tree, GMM(4), rng)
        dist = params.node_distributions(quartet_tree)
        np.testing.assert_allclose(dist.sum(axis=1), 1.0)
        np.testing.assert_allclose(dist[2], params.r @ params.tm[2] @ params.tm[3])


class TestPermuted:
    """Test relabeling of hidden states."""

    def test_swap_root(self, star_tree, star_params):
        swapped = star_params.permuted(star_tree, {3: [1, 0]})
        for e in range(3):
            np.testing.assert_allclose(swapped.tm[e], star_params.tm[e][[1, 0], :])

    def test_involution(self, quartet_tree, rng):
        params = random_parameters(quartet_tree, GMM(4), rng)
        perms = {4: [2, 0, 3, 1], 5: [1, 0, 3, 2]}
        inverse = {4: list(np.argsort(perms[4])), 5: list(np.argsort(perms[5]))}
        restored = params.permuted(quartet_tree, perms).permuted(quartet_tree, inverse)
        np.testing.assert_allclose(restored.tm, params.tm)
        np.testing.assert_allclose(restored.r, params.r)

    def test_root_distribution_relabeled(self, quartet_tree, rng):
        params = random_parameters(quartet_tree, GMM(4), rng)
        permuted = params.permuted(quartet_tree, {4: [3, 2, 1, 0]})
        np.testing.assert_allclose(permuted.r, params.r[::-1])

    def test_leaf_cannot_be_permuted(self, star_tree, star_params):
        with pytest.raises(ValueError, match="Leaf"):
            star_params.permuted(star_tree, {0: [1, 0]})


class TestBranchLengths:
    """Test paralinear branch lengths."""

    def test_jc_star(self, star_tree, star_params):
        np.testing.assert_allclose(star_params.branch_lengths(star_tree), [0.1, 0.2, 0.3])

    def test_saturated_edge(self):
        M = np.full((2, 2), 0.5)
        assert paralinear_length(M, np.full(2, 0.5), np.full(2, 0.5)) == np.inf

    def test_nonuniform_correction(self):
        M = np.array([[0.9, 0.1], [0.3, 0.7]])
        pi = np.array([0.6, 0.4])
        target = pi @ M
        expected = -(np.log(np.linalg.det(M)) + 0.5 * (np.log(pi).sum() - np.log(target).sum())) / 2
        assert paralinear_length(M, pi, target) == pytest.approx(expected)

    def test_matrix_exponential_rows(self):
        Q = np.array([[-1.0, 1.0], [2.0, -2.0]])
        P = matrix_exponential(Q, 0.3)
        np.testing.assert_allclose(P.sum(axis=1), 1.0)
        np.testing.assert_allclose(matrix_exponential(Q, 0.0), np.eye(2))
