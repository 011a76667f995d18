"""
Pytest configuration and shared fixtures.
"""

import numpy as np
import pytest
from typer.testing import CliRunner

from empar.core.parameters import Parameters, jc_matrix
from empar.io.trees import Tree
from empar.simulate.markov import MarkovSiteSimulator
from empar.simulate.output import SimulationOutput


QUARTET_NEWICK = "(A:0.1,B:0.2,(C:0.15,D:0.25):0.1);"
ROOTED_NEWICK = "((A:0.1,B:0.2):0.1,(C:0.15,D:0.25):0.1);"


@pytest.fixture
def cli_runner():
    """CLI test runner for Typer apps."""
    return CliRunner()


@pytest.fixture
def rng():
    """Seeded random number generator."""
    return np.random.default_rng(20240601)


@pytest.fixture
def star_tree():
    """Three leaves joined at the root, two states."""
    return Tree.from_edges(3, [(3, 0), (3, 1), (3, 2)], nalpha=2)


@pytest.fixture
def star_params():
    """Symmetric two-state matrices with lengths 0.1, 0.2 and 0.3."""
    return Parameters(
        r=np.array([0.5, 0.5]),
        tm=np.array([jc_matrix(2, length) for length in (0.1, 0.2, 0.3)]),
    )


@pytest.fixture
def quartet_tree():
    """Unrooted quartet; root and internal node both of valence 3."""
    return Tree.from_newick(QUARTET_NEWICK)


@pytest.fixture
def rooted_tree():
    """Quartet rooted on its internal edge (root of valence 2)."""
    return Tree.from_newick(ROOTED_NEWICK)


@pytest.fixture
def quartet_tree_file(tmp_path):
    tree_file = tmp_path / "quartet.nwk"
    tree_file.write_text(QUARTET_NEWICK + "\n")
    return tree_file


@pytest.fixture
def rooted_tree_file(tmp_path):
    tree_file = tmp_path / "rooted.nwk"
    tree_file.write_text(ROOTED_NEWICK + "\n")
    return tree_file


@pytest.fixture
def quartet_alignment_file(tmp_path, quartet_tree):
    """FASTA alignment of 500 sites simulated on the quartet."""
    params = Parameters(
        r=np.full(4, 0.25),
        tm=np.array([jc_matrix(4, length) for length in (0.1, 0.2, 0.1, 0.15, 0.25)]),
    )
    sequences = MarkovSiteSimulator(quartet_tree, params, 500, seed=7).simulate()
    path = tmp_path / "quartet.fasta"
    SimulationOutput.write_fasta(sequences, path)
    return path
