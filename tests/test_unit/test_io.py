"""
Unit tests for I/O modules (tree parsing, sequences, site-pattern counts).
"""

import numpy as np
import pytest

from empar.io.sequences import (
    Alignment,
    Counts,
    InputMismatch,
    NUCLEOTIDE_TO_INDEX,
    PSEUDOCOUNT,
    check_inputs,
)
from empar.io.trees import Tree


class TestNewickParsing:
    """Test Newick parsing and node numbering."""

    def test_node_numbering(self, quartet_tree):
        """Leaves come first in Newick order, then the root, then internal nodes."""
        assert quartet_tree.n_leaves == 4
        assert quartet_tree.n_nodes == 6
        assert quartet_tree.leaf_names == ["A", "B", "C", "D"]
        assert quartet_tree.root_id == 4
        assert quartet_tree.hidden_nodes == [4, 5]

    def test_edges_in_preorder(self, quartet_tree):
        assert quartet_tree.edges == [(4, 0), (4, 1), (4, 5), (5, 2), (5, 3)]
        assert quartet_tree.n_edges == quartet_tree.n_nodes - 1

    def test_branch_lengths_read(self, quartet_tree):
        lengths = [quartet_tree.nodes[target].branch_length for _, target in quartet_tree.edges]
        np.testing.assert_allclose(lengths, [0.1, 0.2, 0.1, 0.15, 0.25])

    def test_valence(self, quartet_tree, rooted_tree):
        assert quartet_tree.valence(4) == 3
        assert quartet_tree.valence(5) == 3
        assert quartet_tree.valence(0) == 1
        assert rooted_tree.valence(rooted_tree.root_id) == 2

    def test_parent_and_child_edges(self, quartet_tree):
        assert quartet_tree.parent_edge(4) is None
        assert quartet_tree.parent_edge(5) == 2
        assert quartet_tree.child_edges(5) == [3, 4]
        assert quartet_tree.children(4) == [0, 1, 5]
        assert quartet_tree.children(0) == []

    def test_postorder_children_first(self, quartet_tree):
        """Every node appears after all of its children."""
        seen = set()
        for node in quartet_tree.postorder():
            assert all(child.id in seen for child in node.children)
            seen.add(node.id)
        assert quartet_tree.postorder()[-1].id == quartet_tree.root_id

    def test_edge_orders(self, quartet_tree):
        pre = quartet_tree.edge_preorder()
        assert sorted(pre) == list(range(5))
        # Edge into node 5 precedes the edges leaving it
        assert pre.index(2) < pre.index(3)

    def test_missing_semicolon(self):
        with pytest.raises(ValueError, match="semicolon"):
            Tree.from_newick("(A,B,C)")

    def test_duplicate_leaf_names(self):
        with pytest.raises(ValueError, match="unique"):
            Tree.from_newick("(A,A,B);")

    def test_root_must_be_internal(self):
        with pytest.raises(ValueError):
            Tree.from_newick("A;")

    def test_alphabet_size_checked(self):
        with pytest.raises(ValueError, match="Alphabet"):
            Tree.from_newick("(A,B,C);", nalpha=1)

    def test_to_newick_with_lengths(self, quartet_tree):
        text = quartet_tree.to_newick([0.5, 0.25, 0.125, 1.0, 2.0], precision=3)
        assert text == "(A:0.500,B:0.250,(C:1.000,D:2.000):0.125);"
        reparsed = Tree.from_newick(text)
        assert reparsed.edges == quartet_tree.edges

    def test_to_newick_length_count(self, quartet_tree):
        with pytest.raises(ValueError, match="branch lengths"):
            quartet_tree.to_newick([0.1, 0.2])

    def test_describe_lists_edges(self, quartet_tree):
        text = quartet_tree.describe()
        assert "edge 2: 4 -> 5" in text
        assert "leaf 0: A" in text


class TestTreeFromEdges:
    """Test construction from an explicit edge list."""

    def test_star(self, star_tree):
        assert star_tree.n_leaves == 3
        assert star_tree.root_id == 3
        assert star_tree.valence(3) == 3
        assert star_tree.nalpha == 2

    def test_edges_oriented_away_from_root(self):
        tree = Tree.from_edges(3, [(0, 3), (1, 3), (3, 2)])
        assert tree.edges == [(3, 0), (3, 1), (3, 2)]

    def test_custom_root(self):
        tree = Tree.from_edges(3, [(4, 3), (3, 0), (3, 1), (3, 2)], root=4)
        assert tree.root_id == 4
        assert tree.valence(4) == 1
        assert tree.edges[0] == (4, 3)

    def test_cycle_rejected(self):
        with pytest.raises(ValueError):
            Tree.from_edges(3, [(3, 0), (3, 1), (0, 1)])

    def test_node_out_of_range(self):
        with pytest.raises(ValueError):
            Tree.from_edges(2, [(2, 0), (1, 3)])

    def test_leaf_root_rejected(self):
        with pytest.raises(ValueError):
            Tree.from_edges(2, [(0, 1)], root=0)


class TestAlignment:
    """Test FASTA and PHYLIP parsing."""

    def test_fasta(self, tmp_path):
        path = tmp_path / "aln.fasta"
        path.write_text(">s1\nACGT\nAC\n>s2\nTTGG\nA-\n")
        aln = Alignment.from_fasta(path)

        assert aln.names == ["s1", "s2"]
        assert aln.n_sites == 6
        assert aln.sequences.dtype == np.int8
        assert aln.sequences[0].tolist() == [0, 1, 2, 3, 0, 1]
        assert aln.sequences[1, -1] == -1

    def test_fasta_unequal_lengths(self, tmp_path):
        path = tmp_path / "bad.fasta"
        path.write_text(">s1\nACGT\n>s2\nAC\n")
        with pytest.raises(ValueError, match="different lengths"):
            Alignment.from_fasta(path)

    def test_phylip(self, tmp_path):
        path = tmp_path / "aln.phy"
        path.write_text("2 5\nalpha\nACGTU\nbeta\nNNACG\n")
        aln = Alignment.from_phylip(path)

        assert aln.names == ["alpha", "beta"]
        assert aln.sequences[0].tolist() == [0, 1, 2, 3, NUCLEOTIDE_TO_INDEX["U"]]
        assert aln.sequences[1, :2].tolist() == [-1, -1]

    def test_phylip_bad_header(self, tmp_path):
        path = tmp_path / "bad.phy"
        path.write_text("two five\n")
        with pytest.raises(ValueError, match="header"):
            Alignment.from_phylip(path)

    def test_from_file_detects_format(self, tmp_path):
        fasta = tmp_path / "a.txt"
        fasta.write_text(">x\nAC\n>y\nGT\n")
        phylip = tmp_path / "b.txt"
        phylip.write_text("2 2\nx\nAC\ny\nGT\n")
        assert Alignment.from_file(fasta).names == ["x", "y"]
        assert Alignment.from_file(phylip).names == ["x", "y"]

    def test_to_fasta(self, tmp_path):
        path = tmp_path / "in.fasta"
        path.write_text(">s1\nACGT\n>s2\nTTGA\n")
        aln = Alignment.from_fasta(path)
        out = tmp_path / "out.fasta"
        aln.to_fasta(out, line_width=3)
        assert out.read_text() == ">s1\nACG\nT\n>s2\nTTG\nA\n"


class TestCounts:
    """Test site-pattern counting."""

    def test_from_states(self):
        states = np.array([[0, 0, 1, 1, 0], [1, 1, 0, -1, 1]])
        counts = Counts.from_states(states, nalpha=2)

        assert counts.as_dict() == {(0, 1): 3.0, (1, 0): 1.0}
        assert counts.total == 4.0

    def test_from_alignment_skips_gaps(self, tmp_path):
        path = tmp_path / "aln.fasta"
        path.write_text(">a\nAAC-\n>b\nAAGT\n")
        counts = Counts.from_alignment(Alignment.from_fasta(path))

        assert counts.nalpha == 4
        assert counts.nspecies == 2
        assert counts.as_dict() == {(0, 0): 2.0, (1, 2): 1.0}

    def test_from_alignment_reorders_rows(self, tmp_path):
        path = tmp_path / "aln.fasta"
        path.write_text(">b\nC\n>a\nA\n")
        counts = Counts.from_alignment(Alignment.from_fasta(path), leaf_names=["a", "b"])
        assert counts.as_dict() == {(0, 1): 1.0}

    def test_from_dict(self):
        counts = Counts.from_dict({(1, 0, 1): 2.5, (0, 0, 0): 1.0}, nalpha=2, nspecies=3)
        assert counts.patterns.tolist() == [[0, 0, 0], [1, 0, 1]]
        assert counts.counts.tolist() == [1.0, 2.5]

    def test_pattern_length_checked(self):
        with pytest.raises(ValueError):
            Counts.from_dict({(0, 1): 1.0}, nalpha=2, nspecies=3)

    def test_negative_counts_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            Counts(patterns=[[0, 1]], counts=[-1.0], nalpha=2, nspecies=2)

    def test_states_out_of_range(self):
        with pytest.raises(ValueError):
            Counts(patterns=[[0, 2]], counts=[1.0], nalpha=2, nspecies=2)

    def test_add_pseudocounts(self):
        counts = Counts.from_dict({(0, 1): 3.0}, nalpha=4, nspecies=2)
        padded = counts.add_pseudocounts()

        assert padded.n_patterns == 16
        assert padded.total == pytest.approx(3.0 + 16 * PSEUDOCOUNT)
        assert padded.as_dict()[(0, 1)] == pytest.approx(3.0 + PSEUDOCOUNT)
        assert padded.as_dict()[(3, 3)] == pytest.approx(PSEUDOCOUNT)


class TestCheckInputs:
    """Test tree/data agreement checks."""

    def test_match(self, star_tree):
        counts = Counts.from_dict({(0, 1, 1): 1.0}, nalpha=2, nspecies=3)
        assert check_inputs(star_tree, counts) is None

    def test_species_mismatch(self, quartet_tree):
        counts = Counts.from_dict({(0, 1, 1): 1.0}, nalpha=4, nspecies=3)
        mismatch = check_inputs(quartet_tree, counts)

        assert mismatch == InputMismatch("species", 4, 3)
        assert "do not match" in mismatch.message

    def test_alphabet_mismatch(self, star_tree):
        counts = Counts.from_dict({(0, 1, 3): 1.0}, nalpha=4, nspecies=3)
        mismatch = check_inputs(star_tree, counts)

        assert mismatch.kind == "alphabet"
        assert mismatch.expected == 2
        assert mismatch.observed == 4
