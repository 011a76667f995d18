"""
Matrix operations for transition matrices on tree edges.
"""

import numpy as np
from scipy.linalg import expm


def matrix_exponential(Q: np.ndarray, t: float) -> np.ndarray:
    """
    Compute transition probability matrix P(t) = exp(Q*t).

    Uses scipy's matrix exponential (Padé approximation with scaling and
    squaring).

    Parameters
    ----------
    Q : ndarray, shape (n, n)
        Rate matrix (rows sum to zero)
    t : float
        Branch length (time)

    Returns
    -------
    P : ndarray, shape (n, n)
        Transition probability matrix where P[i,j] is the probability
        of state i transitioning to state j over time t

    Examples
    --------
    >>> Q = np.array([[-1.0, 1.0], [1.0, -1.0]])
    >>> P = matrix_exponential(Q, 0.1)
    >>> np.allclose(P.sum(axis=1), 1.0)
    True
    """
    return expm(Q * t)


def paralinear_length(
    M: np.ndarray,
    pi_source: np.ndarray,
    pi_target: np.ndarray,
) -> float:
    """
    Paralinear (LogDet) length of an edge.

    Parameters
    ----------
    M : ndarray, shape (n, n)
        Transition matrix of the edge
    pi_source : ndarray, shape (n,)
        State distribution at the source node
    pi_target : ndarray, shape (n,)
        State distribution at the target node (``pi_source @ M``)

    Returns
    -------
    float
        ``-(log det M + (sum log pi_source - sum log pi_target) / 2) / n``.
        ``inf`` when the determinant is not positive (saturated edge).

    Notes
    -----
    For doubly stochastic matrices under a uniform root both distributions
    are uniform and the length reduces to ``-log(det M) / n``, which is the
    expected number of changes for the Jukes-Cantor family.
    """
    n = M.shape[0]
    sign, logdet = np.linalg.slogdet(M)
    if sign <= 0 or np.any(pi_source <= 0) or np.any(pi_target <= 0):
        return float(np.inf)
    correction = 0.5 * (np.sum(np.log(pi_source)) - np.sum(np.log(pi_target)))
    return float(-(logdet + correction) / n)
