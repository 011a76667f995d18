"""Main CLI application for empar."""

import typer
from pathlib import Path
from typing import Optional
from enum import Enum

from .commands import simulate as simulate_cmd
from ..optimize.em import DEFAULT_EPS, DEFAULT_MAXITER

app = typer.Typer(
    name="empar",
    help="Maximum-likelihood estimation of Markov model parameters on a fixed tree",
    no_args_is_help=True,
)

# Add simulate subcommand
app.add_typer(simulate_cmd.app, name="simulate")


class OutputFormat(str, Enum):
    """Output format."""
    TEXT = "text"
    JSON = "json"


@app.command()
def fit(
    tree: Path = typer.Option(
        ...,
        "--tree", "-t",
        help="Phylogenetic tree file (Newick format)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    model: str = typer.Option(
        ...,
        "--model", "-m",
        help="Model family (JC69, K80, K81, SSM, GMM)",
    ),
    alignment: Optional[Path] = typer.Option(
        None,
        "--alignment", "-s",
        help="DNA alignment file (FASTA or PHYLIP); omit to use simulated data",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    simulate: Optional[int] = typer.Option(
        None,
        "--simulate",
        help="Number of sites to simulate when no alignment is given (default: 1000)",
        min=1,
    ),
    states: int = typer.Option(
        4,
        "--states",
        help="Alphabet size (4 for DNA)",
        min=2,
    ),
    eps: float = typer.Option(
        DEFAULT_EPS,
        "--eps",
        help="EM convergence threshold on the log-likelihood",
    ),
    maxiter: int = typer.Option(
        DEFAULT_MAXITER,
        "--maxiter",
        help="Maximum EM iterations",
        min=1,
    ),
    seed: Optional[int] = typer.Option(
        None,
        "--seed",
        help="Random seed for simulated data",
    ),
    output_prefix: Optional[Path] = typer.Option(
        None,
        "--output-prefix", "-p",
        help="Prefix of the .dat and .cov files (default: alignment path without extension)",
    ),
    start: Optional[Path] = typer.Option(
        None,
        "--start",
        help="Parameters file (.dat) to start EM from",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Write the report to this file (default: stdout)",
    ),
    format: OutputFormat = typer.Option(
        OutputFormat.TEXT,
        "--format",
        help="Report format",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Show EM progress",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Minimal output",
    ),
):
    """
    Estimate model parameters on a fixed tree.

    Example:
        empar fit -t tree.nwk -m K81 -s alignment.fasta
        empar fit -t tree.nwk -m GMM --simulate 5000 --seed 1
    """
    from .commands.fit import run_fit

    run_fit(
        tree=tree,
        model=model,
        alignment=alignment,
        simulate=simulate,
        states=states,
        eps=eps,
        maxiter=maxiter,
        seed=seed,
        output_prefix=output_prefix,
        start=start,
        output=output,
        format=format.value,
        verbose=verbose,
        quiet=quiet,
    )


@app.command(name="check-tree")
def check_tree(
    tree: Path = typer.Option(
        ...,
        "--tree", "-t",
        help="Phylogenetic tree file (Newick format)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    model: str = typer.Option(
        "GMM",
        "--model", "-m",
        help="Model family; a root of valence 1 is only flagged for non-uniform roots",
    ),
    states: int = typer.Option(
        4,
        "--states",
        help="Alphabet size",
        min=2,
    ),
):
    """
    Show the node numbering of a tree and its non-identifiable nodes.

    Example:
        empar check-tree -t tree.nwk -m K81
    """
    from ..analysis.identifiability import nonidentifiable_nodes
    from ..io.trees import Tree
    from ..models.markov import get_model

    try:
        model_obj = get_model(model, states)
        tree_obj = Tree.from_file(tree, nalpha=states)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(tree_obj.describe())
    nodes = nonidentifiable_nodes(tree_obj, model_obj)
    if nodes:
        typer.echo(f"Non-identifiable nodes: {', '.join(map(str, nodes))}")
    else:
        typer.echo("All parameters are identifiable.")


@app.command()
def models():
    """List the available model families."""
    from ..models.markov import available_models

    for name in available_models():
        typer.echo(name)


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
