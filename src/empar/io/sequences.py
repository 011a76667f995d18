"""
Sequence file parsing and site-pattern counting.
"""

import itertools
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import numpy as np

# Nucleotide encoding (A=0, C=1, G=2, T=3)
NUCLEOTIDE_TO_INDEX = {'A': 0, 'C': 1, 'G': 2, 'T': 3, 'U': 3}
INDEX_TO_NUCLEOTIDE = {0: 'A', 1: 'C', 2: 'G', 3: 'T'}

# Code for gaps, ambiguity codes and anything else that is not A/C/G/T
UNKNOWN_CODE = -1

# Pseudocount added to every pattern of real data
PSEUDOCOUNT = 0.01

# Largest pattern table add_pseudocounts will build
MAX_PATTERN_TABLE = 1 << 22


@dataclass
class Alignment:
    """
    Multiple DNA sequence alignment.

    Attributes
    ----------
    names : list[str]
        Sequence names/labels
    sequences : ndarray, shape (n_species, n_sites)
        Encoded sequences (0-3, or -1 for gaps and ambiguous characters)
    n_species : int
        Number of sequences
    n_sites : int
        Number of sites (alignment length)
    """

    names: list[str]
    sequences: np.ndarray
    n_species: int
    n_sites: int

    @classmethod
    def from_phylip(cls, filepath: Path | str) -> "Alignment":
        """
        Parse sequential PHYLIP format alignment file.

        The first line contains n_sequences and sequence_length. Each sequence
        starts with a name line, followed by sequence data.

        Parameters
        ----------
        filepath : Path or str
            Path to PHYLIP format file

        Returns
        -------
        Alignment
            Parsed alignment
        """
        filepath = Path(filepath)

        with open(filepath, 'r') as f:
            lines = [line.rstrip() for line in f.readlines()]

        header = lines[0].strip().split() if lines else []
        if len(header) != 2 or not all(field.isdigit() for field in header):
            raise ValueError(f"{filepath}: PHYLIP header must be '<n_sequences> <length>'")
        n_species = int(header[0])
        n_sites = int(header[1])

        names = []
        sequences_raw = []

        i = 1
        while i < len(lines) and len(names) < n_species:
            line = lines[i].strip()
            i += 1
            if not line:
                continue

            names.append(line)

            seq_data = ""
            while i < len(lines) and len(seq_data) < n_sites:
                clean = re.sub(r'\s', '', lines[i]).upper()
                i += 1
                seq_data += clean

            sequences_raw.append(seq_data)

        if len(names) != n_species:
            raise ValueError(f"Expected {n_species} sequences, found {len(names)}")

        for name, seq in zip(names, sequences_raw):
            if len(seq) != n_sites:
                raise ValueError(
                    f"Sequence {name} has length {len(seq)}, expected {n_sites}"
                )

        return cls(
            names=names,
            sequences=cls._encode_nucleotides(sequences_raw),
            n_species=n_species,
            n_sites=n_sites,
        )

    @classmethod
    def from_fasta(cls, filepath: Path | str) -> "Alignment":
        """
        Parse FASTA format alignment file.

        Parameters
        ----------
        filepath : Path or str
            Path to FASTA format file

        Returns
        -------
        Alignment
            Parsed alignment

        Examples
        --------
        >>> aln = Alignment.from_fasta("alignment.fasta")
        """
        filepath = Path(filepath)

        names = []
        sequences_raw = []

        with open(filepath, 'r') as f:
            current_name = None
            current_seq = []

            for line in f:
                line = line.strip()
                if not line:
                    continue

                if line.startswith('>'):
                    if current_name is not None:
                        names.append(current_name)
                        sequences_raw.append(''.join(current_seq))
                    current_name = line[1:].strip()
                    current_seq = []
                elif current_name is None:
                    raise ValueError(f"{filepath}: sequence data before the first '>' header")
                else:
                    current_seq.append(line.upper())

            if current_name is not None:
                names.append(current_name)
                sequences_raw.append(''.join(current_seq))

        if not names:
            raise ValueError("No sequences found in FASTA file")

        sequences_clean = [re.sub(r'\s', '', seq) for seq in sequences_raw]

        seq_lengths = {len(seq) for seq in sequences_clean}
        if len(seq_lengths) > 1:
            raise ValueError(f"Sequences have different lengths: {seq_lengths}")

        return cls(
            names=names,
            sequences=cls._encode_nucleotides(sequences_clean),
            n_species=len(names),
            n_sites=len(sequences_clean[0]),
        )

    @classmethod
    def from_file(cls, filepath: Path | str) -> "Alignment":
        """Read FASTA or PHYLIP, chosen by the first non-blank character."""
        with open(filepath, 'r') as f:
            first = next((line.strip() for line in f if line.strip()), "")
        if first.startswith('>'):
            return cls.from_fasta(filepath)
        return cls.from_phylip(filepath)

    @staticmethod
    def _encode_nucleotides(sequences: list[str]) -> np.ndarray:
        """Encode DNA sequences as integer arrays (0=A, 1=C, 2=G, 3=T)."""
        n_sequences = len(sequences)
        n_sites = len(sequences[0]) if sequences else 0

        encoded = np.full((n_sequences, n_sites), UNKNOWN_CODE, dtype=np.int8)

        for i, seq in enumerate(sequences):
            for j, nucleotide in enumerate(seq):
                encoded[i, j] = NUCLEOTIDE_TO_INDEX.get(nucleotide, UNKNOWN_CODE)

        return encoded

    def to_fasta(self, filepath: Path | str, line_width: int = 60) -> None:
        """
        Write alignment to FASTA format file.

        Parameters
        ----------
        filepath : Path or str
            Output file path
        line_width : int
            Characters per sequence line
        """
        filepath = Path(filepath)

        with open(filepath, 'w') as f:
            for name, encoded_seq in zip(self.names, self.sequences):
                f.write(f">{name}\n")
                seq = ''.join(INDEX_TO_NUCLEOTIDE.get(int(idx), 'N') for idx in encoded_seq)
                for i in range(0, len(seq), line_width):
                    f.write(seq[i:i + line_width] + '\n')

    def __repr__(self) -> str:
        return f"Alignment(n_species={self.n_species}, n_sites={self.n_sites})"


@dataclass
class Counts:
    """
    Observed site-pattern frequencies.

    Attributes
    ----------
    patterns : ndarray, shape (n_patterns, nspecies)
        Distinct site patterns; column ``i`` is the state of leaf ``i``
    counts : ndarray, shape (n_patterns,)
        Non-negative, possibly fractional, count of every pattern
    nalpha : int
        Alphabet size
    nspecies : int
        Number of leaves
    """

    patterns: np.ndarray
    counts: np.ndarray
    nalpha: int
    nspecies: int

    def __post_init__(self):
        self.patterns = np.asarray(self.patterns, dtype=np.int64).reshape(-1, self.nspecies)
        self.counts = np.asarray(self.counts, dtype=float)
        if self.counts.shape != (self.patterns.shape[0],):
            raise ValueError(
                f"Got {self.patterns.shape[0]} patterns but {self.counts.shape[0]} counts"
            )
        if np.any(self.counts < 0):
            raise ValueError("Pattern counts must be non-negative")
        if self.patterns.size and (self.patterns.min() < 0 or self.patterns.max() >= self.nalpha):
            raise ValueError(f"Pattern states must lie in 0..{self.nalpha - 1}")

    @property
    def n_patterns(self) -> int:
        return self.patterns.shape[0]

    @property
    def total(self) -> float:
        """Total number of observations (sum of counts)."""
        return float(self.counts.sum())

    @classmethod
    def from_dict(cls, table: dict[tuple[int, ...], float], nalpha: int, nspecies: int) -> "Counts":
        """Build from a ``{pattern: count}`` mapping."""
        patterns = sorted(table)
        for pattern in patterns:
            if len(pattern) != nspecies:
                raise ValueError(f"Pattern {pattern} does not have {nspecies} states")
        return cls(
            patterns=np.array(patterns, dtype=np.int64).reshape(-1, nspecies),
            counts=np.array([table[p] for p in patterns], dtype=float),
            nalpha=nalpha,
            nspecies=nspecies,
        )

    @classmethod
    def from_states(cls, states: np.ndarray, nalpha: int) -> "Counts":
        """
        Count the columns of a ``(nspecies, n_sites)`` state array.

        Columns containing a negative (unknown) state are skipped.
        """
        states = np.asarray(states)
        nspecies = states.shape[0]
        columns = states.T
        columns = columns[np.all(columns >= 0, axis=1)]
        if columns.shape[0] == 0:
            return cls(np.zeros((0, nspecies)), np.zeros(0), nalpha, nspecies)
        patterns, counts = np.unique(columns, axis=0, return_counts=True)
        return cls(patterns=patterns, counts=counts.astype(float), nalpha=nalpha, nspecies=nspecies)

    @classmethod
    def from_alignment(
        cls,
        alignment: Alignment,
        leaf_names: Optional[Sequence[str]] = None,
    ) -> "Counts":
        """
        Site-pattern counts of a DNA alignment.

        Parameters
        ----------
        alignment : Alignment
            DNA alignment
        leaf_names : sequence of str, optional
            Leaf names in tree order. When every name is found in the
            alignment, rows are reordered to match; otherwise the alignment
            order is kept as is.

        Returns
        -------
        Counts
            4-state counts; columns with gaps or ambiguity codes are skipped
        """
        sequences = alignment.sequences
        if leaf_names is not None and set(leaf_names) <= set(alignment.names):
            index = {name: i for i, name in enumerate(alignment.names)}
            sequences = sequences[[index[name] for name in leaf_names]]
        return cls.from_states(sequences, nalpha=4)

    def add_pseudocounts(self, value: float = PSEUDOCOUNT) -> "Counts":
        """
        Add ``value`` to every possible pattern.

        The result lists all ``nalpha ** nspecies`` patterns.
        """
        n_table = self.nalpha ** self.nspecies
        if n_table > MAX_PATTERN_TABLE:
            raise ValueError(
                f"Pattern table of {n_table} entries is too large for pseudocounts"
            )
        table = {
            pattern: value
            for pattern in itertools.product(range(self.nalpha), repeat=self.nspecies)
        }
        for pattern, count in zip(map(tuple, self.patterns.tolist()), self.counts):
            table[pattern] += count
        return Counts.from_dict(table, self.nalpha, self.nspecies)

    def as_dict(self) -> dict[tuple[int, ...], float]:
        return {tuple(p): float(c) for p, c in zip(self.patterns.tolist(), self.counts)}

    def __repr__(self) -> str:
        return (
            f"Counts(nalpha={self.nalpha}, nspecies={self.nspecies}, "
            f"n_patterns={self.n_patterns}, total={self.total:g})"
        )


@dataclass(frozen=True)
class InputMismatch:
    """
    Disagreement between a tree and site-pattern counts.

    Attributes
    ----------
    kind : str
        ``"alphabet"`` or ``"species"``
    expected : int
        Value required by the tree
    observed : int
        Value found in the counts
    """

    kind: str
    expected: int
    observed: int

    @property
    def message(self) -> str:
        if self.kind == "alphabet":
            return (
                f"The tree expects an alphabet of {self.expected} states "
                f"but the data has {self.observed}."
            )
        return (
            f"The tree has {self.expected} leaves but the data has {self.observed} "
            f"sequences; the order of the sequences or their number and the "
            f"phylogenetic tree do not match."
        )


def check_inputs(tree, counts: Counts) -> Optional[InputMismatch]:
    """
    Compare the tree's alphabet size and leaf count with the counts.

    Returns
    -------
    InputMismatch or None
        The first disagreement found, None when the inputs match
    """
    if tree.nalpha != counts.nalpha:
        return InputMismatch("alphabet", tree.nalpha, counts.nalpha)
    if tree.n_leaves != counts.nspecies:
        return InputMismatch("species", tree.n_leaves, counts.nspecies)
    return None
