"""Fit command implementation."""

import sys
from pathlib import Path
from typing import Optional

from empar.api import run


def run_fit(
    tree: Path,
    model: str,
    alignment: Optional[Path],
    simulate: Optional[int],
    states: int,
    eps: float,
    maxiter: int,
    seed: Optional[int],
    output_prefix: Optional[Path],
    start: Optional[Path],
    output: Optional[Path],
    format: str,
    verbose: bool,
    quiet: bool,
):
    """Fit one model to an alignment or to simulated data."""
    if alignment is not None and simulate is not None:
        print("Error: --alignment and --simulate are mutually exclusive", file=sys.stderr)
        sys.exit(1)

    # Keep stdout clean when it carries the JSON report
    silent = quiet or (format == "json" and output is None)

    try:
        result = run(
            tree_file=tree,
            model_name=model,
            alignment_file=alignment,
            simulate_sites=simulate,
            nalpha=states,
            eps=eps,
            maxiter=maxiter,
            seed=seed,
            output_prefix=output_prefix,
            start_file=start,
            verbose=verbose and not silent,
            quiet=silent or output is not None,
        )
    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if format == "json":
        output_text = result.to_json()
    else:
        output_text = result.summary()

    if output:
        with open(output, 'w') as f:
            f.write(output_text + "\n")
        if not quiet:
            print(f"Results written to {output}", file=sys.stderr)
    elif format == "json" or quiet:
        print(output_text)
