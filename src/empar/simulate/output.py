"""
Output formatting for simulated sequences.
"""

import json
from pathlib import Path
from typing import Dict

import numpy as np

from ..io.sequences import INDEX_TO_NUCLEOTIDE


class SimulationOutput:
    """Write simulated sequences (FASTA) and their parameters (JSON)."""

    @staticmethod
    def indices_to_string(seq_indices: np.ndarray, nalpha: int = 4) -> str:
        """
        Render a state array as text.

        Nucleotides for 4 states, otherwise one digit (or letter past 9)
        per state.
        """
        if nalpha == 4:
            return ''.join(INDEX_TO_NUCLEOTIDE[int(i)] for i in seq_indices)
        symbols = "0123456789abcdefghijklmnopqrstuvwxyz"
        if nalpha > len(symbols):
            raise ValueError(f"Cannot render an alphabet of {nalpha} states as text")
        return ''.join(symbols[int(i)] for i in seq_indices)

    @staticmethod
    def write_fasta(
        sequences: Dict[str, np.ndarray],
        output_path: Path,
        nalpha: int = 4,
        line_width: int = 60,
    ):
        """
        Write sequences to FASTA format.

        Parameters
        ----------
        sequences : dict
            Mapping from species name to state array
        output_path : Path
            Output file path
        nalpha : int
            Alphabet size of the states
        line_width : int
            Characters per sequence line
        """
        output_path = Path(output_path)

        with open(output_path, 'w') as f:
            for species, seq_indices in sequences.items():
                text = SimulationOutput.indices_to_string(seq_indices, nalpha)
                f.write(f">{species}\n")
                for i in range(0, len(text), line_width):
                    f.write(text[i:i + line_width] + '\n')

    @staticmethod
    def write_parameters(params: Dict, output_path: Path, indent: int = 2):
        """Write simulation parameters to a JSON file."""
        output_path = Path(output_path)

        with open(output_path, 'w') as f:
            json.dump(params, f, indent=indent)
