"""Simulate command for empar CLI."""

import typer
from pathlib import Path
from typing import Optional
import numpy as np

from ...core.parameters import random_parameters
from ...io.trees import Tree
from ...models.markov import get_model
from ...simulate.markov import MarkovSiteSimulator
from ...simulate.output import SimulationOutput

app = typer.Typer(help="Simulate sequences under Markov models")


@app.command(name="markov")
def simulate_markov(
    tree: Path = typer.Option(
        ...,
        "--tree", "-t",
        help="Tree file (Newick format with branch lengths)",
        exists=True,
    ),
    model: str = typer.Option(
        ...,
        "--model", "-m",
        help="Model family (JC69, K80, K81, SSM, GMM)",
    ),
    output: Path = typer.Option(
        ...,
        "--output", "-o",
        help="Output FASTA file",
    ),
    length: int = typer.Option(
        ...,
        "--length", "-l",
        help="Number of sites",
        min=1,
    ),
    states: int = typer.Option(
        4,
        "--states",
        help="Alphabet size",
        min=2,
    ),
    seed: Optional[int] = typer.Option(
        None,
        "--seed",
        help="Random seed for reproducibility",
    ),
    output_params: bool = typer.Option(
        True,
        "--output-params/--no-output-params",
        help="Write parameters to JSON file",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Suppress progress messages",
    ),
):
    """
    Simulate sites with random parameters of a model family.

    Every edge gets a random matrix of the family whose length is the
    branch length read from the tree.

    Examples:

        \b
        # Simulate 1000 sites under K81
        empar simulate markov -t tree.nwk -m K81 -o sim.fasta -l 1000 --seed 42
    """
    try:
        tree_obj = Tree.from_file(tree, nalpha=states)
        model_obj = get_model(model, states)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    rng = np.random.default_rng(seed)
    lengths = [tree_obj.nodes[target].branch_length for _, target in tree_obj.edges]
    try:
        params = random_parameters(tree_obj, model_obj, rng, lengths=lengths)
        simulator = MarkovSiteSimulator(tree_obj, params, length, seed=seed, rng=rng)
    except ValueError as e:
        typer.echo(f"Error creating simulator: {e}", err=True)
        raise typer.Exit(code=1)

    if not quiet:
        typer.echo(f"Simulating {length} sites under {model_obj.name}")

    sequences = simulator.simulate()
    try:
        SimulationOutput.write_fasta(sequences, output, nalpha=states)
    except (OSError, ValueError) as e:
        typer.echo(f"Error writing output: {e}", err=True)
        raise typer.Exit(code=1)

    if not quiet:
        typer.echo(f"  Sequences -> {output}")

    if output_params:
        params_path = output.parent / f"{output.stem}.params.json"
        try:
            metadata = simulator.get_parameters()
            metadata['model'] = model_obj.name
            SimulationOutput.write_parameters(metadata, params_path)
            if not quiet:
                typer.echo(f"  Parameters -> {params_path}")
        except OSError as e:
            typer.echo(f"Warning: Could not write parameters: {e}", err=True)


if __name__ == "__main__":
    app()
