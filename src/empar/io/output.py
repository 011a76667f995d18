"""
Plain-text result files: estimated parameters and covariance matrices.

Writing is best effort: when a file cannot be opened an ``OutputWarning`` is
emitted and the run carries on, since the results are also reported on
screen.
"""

import warnings
from pathlib import Path

import numpy as np

from ..core.parameters import Parameters
from ..exceptions import OutputWarning


def format_parameters(params: Parameters, decimals: int = 15) -> str:
    """
    Render parameters as text.

    The root distribution comes first on one line, then every edge matrix
    (one row per line) in edge order, matrices separated by a blank line.
    """
    def row(values) -> str:
        return " ".join(f"{v:.{decimals}f}" for v in values)

    blocks = [row(params.r)]
    for matrix in params.tm:
        blocks.append("\n".join(row(values) for values in matrix))
    return "\n\n".join(blocks) + "\n"


def format_covariance(cov: np.ndarray, precision: int = 15) -> str:
    """Space-separated rows with ``precision`` significant digits."""
    lines = [" ".join(f"{v:.{precision}g}" for v in values) for values in np.atleast_2d(cov)]
    return "\n".join(lines) + "\n"


def _write_text(text: str, path: Path | str) -> bool:
    try:
        with open(path, 'w') as f:
            f.write(text)
    except OSError as e:
        warnings.warn(f"Could not open file: {path} ({e.strerror})", OutputWarning, stacklevel=3)
        return False
    return True


def write_parameters(params: Parameters, path: Path | str) -> bool:
    """
    Write parameters in fixed notation with 15 decimals.

    Returns
    -------
    bool
        False when the file could not be written
    """
    return _write_text(format_parameters(params), path)


def write_covariance(cov: np.ndarray, path: Path | str) -> bool:
    """
    Write a covariance matrix.

    Returns
    -------
    bool
        False when the file could not be written
    """
    return _write_text(format_covariance(cov), path)


def read_parameters(path: Path | str, nalpha: int) -> Parameters:
    """Read a file produced by :func:`write_parameters`."""
    with open(path, 'r') as f:
        values = np.array(f.read().split(), dtype=float)
    if values.size < nalpha or (values.size - nalpha) % (nalpha * nalpha):
        raise ValueError(f"{path}: does not hold parameters for {nalpha} states")
    r = values[:nalpha]
    tm = values[nalpha:].reshape(-1, nalpha, nalpha)
    return Parameters(r=r, tm=tm)
