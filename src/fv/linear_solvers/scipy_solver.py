"""Scipy-based bottom solver using BiCGSTAB."""

import logging

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.linalg import bicgstab

log = logging.getLogger(__name__)


def scipy_solver(
    A_csr: csr_matrix,
    b_np: np.ndarray,
    M=None,
    x0=None,
    tolerance=1e-4,
    max_iterations=100,
    b_floor=0.0,
):
    """Solve A x = b using scipy BiCGSTAB.

    Used as an inexact bottom solve: running out of iterations or a
    breakdown of the recurrence (``info < 0``, typically a right-hand side
    at roundoff level) returns the current iterate.

    Parameters
    ----------
    A_csr : csr_matrix
        Sparse matrix in CSR format.
    b_np : np.ndarray
        Right-hand side vector.
    M : LinearOperator, optional
        Preconditioner approximating the inverse of A.
    x0 : np.ndarray, optional
        Initial guess.
    tolerance : float, optional
        Relative convergence tolerance (default: 1e-4).
    max_iterations : int, optional
        Maximum iterations (default: 100).
    b_floor : float, optional
        If ``max|b| <= b_floor`` the solve is skipped and zero returned.

    Returns
    -------
    x_np : np.ndarray
        Solution vector (current iterate if the tolerance was not reached).
    n_iter : int
        Number of BiCGSTAB iterations performed.
    """
    if not np.any(b_np) or np.max(np.abs(b_np)) <= b_floor:
        return np.zeros_like(b_np), 0

    count = [0]

    def _count(xk):
        count[0] += 1

    x, info = bicgstab(
        A_csr, b_np, x0=x0, rtol=tolerance, atol=0, maxiter=max_iterations, M=M, callback=_count
    )

    if info < 0:
        log.debug(f"BiCGSTAB breakdown (info={info}) after {count[0]} iterations")
    elif info > 0:
        log.debug(f"BiCGSTAB stopped at the iteration cap ({info})")

    return x, count[0]
