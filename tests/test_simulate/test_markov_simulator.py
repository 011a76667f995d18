"""Tests for the Markov site simulator."""

import json

import numpy as np
import pytest

from empar.core.parameters import Parameters, random_parameters
from empar.io.sequences import Alignment, Counts
from empar.models.markov import GMM
from empar.simulate.markov import MarkovSiteSimulator, random_fake_counts
from empar.simulate.output import SimulationOutput


class TestMarkovSiteSimulator:
    """Test suite for MarkovSiteSimulator."""

    def test_initialization(self, star_tree, star_params):
        sim = MarkovSiteSimulator(star_tree, star_params, 100, seed=42)
        assert sim.sequence_length == 100
        assert sim.seed == 42

    def test_parameters_must_match_tree(self, quartet_tree, star_params):
        with pytest.raises(ValueError, match="do not match"):
            MarkovSiteSimulator(quartet_tree, star_params, 100)

    def test_invalid_parameters(self, star_tree, star_params):
        bad = star_params.copy()
        bad.tm[0] = np.array([[0.7, 0.7], [0.5, 0.5]])
        with pytest.raises(ValueError, match="probability"):
            MarkovSiteSimulator(star_tree, bad, 100)

    def test_negative_length(self, star_tree, star_params):
        with pytest.raises(ValueError, match="non-negative"):
            MarkovSiteSimulator(star_tree, star_params, -1)

    def test_simulate_output(self, quartet_tree, rng):
        params = random_parameters(quartet_tree, GMM(4), rng)
        sequences = MarkovSiteSimulator(quartet_tree, params, 250, seed=1).simulate()

        assert list(sequences) == ["A", "B", "C", "D"]
        for seq in sequences.values():
            assert seq.shape == (250,)
            assert seq.min() >= 0 and seq.max() < 4

    def test_reproducible(self, star_tree, star_params):
        a = MarkovSiteSimulator(star_tree, star_params, 200, seed=7).simulate_all()
        b = MarkovSiteSimulator(star_tree, star_params, 200, seed=7).simulate_all()
        c = MarkovSiteSimulator(star_tree, star_params, 200, seed=8).simulate_all()
        np.testing.assert_array_equal(a, b)
        assert not np.array_equal(a, c)

    def test_identity_matrices_copy_root(self, star_tree):
        params = Parameters(r=np.array([0.3, 0.7]), tm=np.array([np.eye(2)] * 3))
        states = MarkovSiteSimulator(star_tree, params, 500, seed=3).simulate_all()
        for leaf in range(3):
            np.testing.assert_array_equal(states[leaf], states[star_tree.root_id])

    def test_root_frequencies(self, star_tree):
        params = Parameters(r=np.array([0.2, 0.8]), tm=np.array([np.eye(2)] * 3))
        states = MarkovSiteSimulator(star_tree, params, 20000, seed=5).simulate_all()
        assert np.mean(states[star_tree.root_id] == 1) == pytest.approx(0.8, abs=0.02)

    def test_transition_frequencies(self, star_tree):
        tm = np.array([[[0.9, 0.1], [0.4, 0.6]]] * 3)
        params = Parameters(r=np.array([0.5, 0.5]), tm=tm)
        states = MarkovSiteSimulator(star_tree, params, 40000, seed=11).simulate_all()

        root = states[star_tree.root_id]
        leaf = states[0]
        assert np.mean(leaf[root == 0] == 1) == pytest.approx(0.1, abs=0.015)
        assert np.mean(leaf[root == 1] == 0) == pytest.approx(0.4, abs=0.015)

    def test_simulate_counts(self, star_tree, star_params):
        counts = MarkovSiteSimulator(star_tree, star_params, 300, seed=2).simulate_counts()
        assert isinstance(counts, Counts)
        assert counts.total == 300
        assert counts.nspecies == 3
        assert counts.nalpha == 2

    def test_random_fake_counts(self, quartet_tree, rng):
        params = random_parameters(quartet_tree, GMM(4), rng)
        counts = random_fake_counts(quartet_tree, 1000, params, rng)
        assert counts.total == 1000
        assert counts.patterns.shape[1] == 4

    def test_get_parameters(self, star_tree, star_params):
        meta = MarkovSiteSimulator(star_tree, star_params, 10, seed=4).get_parameters()
        assert meta['sequence_length'] == 10
        assert meta['seed'] == 4
        assert meta['root_distribution'] == [0.5, 0.5]
        assert len(meta['transition_matrices']) == 3
        assert meta['tree'].endswith(";")


class TestSimulationOutput:
    """Test writing simulated data."""

    def test_fasta_round_trip(self, tmp_path, quartet_tree, rng):
        params = random_parameters(quartet_tree, GMM(4), rng)
        sequences = MarkovSiteSimulator(quartet_tree, params, 130, seed=9).simulate()
        path = tmp_path / "sim.fasta"
        SimulationOutput.write_fasta(sequences, path)

        aln = Alignment.from_fasta(path)
        assert aln.names == ["A", "B", "C", "D"]
        for name, row in zip(aln.names, aln.sequences):
            np.testing.assert_array_equal(row, sequences[name])

    def test_binary_alphabet_text(self):
        assert SimulationOutput.indices_to_string(np.array([0, 1, 1]), nalpha=2) == "011"
        assert SimulationOutput.indices_to_string(np.array([3, 0]), nalpha=4) == "TA"

    def test_write_parameters(self, tmp_path, star_tree, star_params):
        meta = MarkovSiteSimulator(star_tree, star_params, 10, seed=4).get_parameters()
        path = tmp_path / "sim.params.json"
        SimulationOutput.write_parameters(meta, path)
        assert json.loads(path.read_text())['sequence_length'] == 10
