"""PETSc-based bottom solver with HYPRE preconditioner and KSP reuse."""

import logging

import numpy as np
from scipy.sparse import csr_matrix
from petsc4py import PETSc

log = logging.getLogger(__name__)


def petsc_solver(
    A_csr: csr_matrix,
    b_np: np.ndarray,
    ksp=None,
    x0=None,
    tolerance=1e-4,
    max_iterations=100,
    solver_type="bcgs",
    preconditioner="hypre",
):
    """Solve A x = b using PETSc with optional KSP reuse.

    Parameters
    ----------
    A_csr : csr_matrix
        Sparse matrix in CSR format.
    b_np : np.ndarray
        Right-hand side vector.
    ksp : PETSc.KSP, optional
        Reusable KSP solver object. If None, a new KSP is created.
    x0 : np.ndarray, optional
        Initial guess; zero if omitted.
    tolerance : float, optional
        Relative convergence tolerance (default: 1e-4).
    max_iterations : int, optional
        Maximum number of iterations (default: 100).
    solver_type : str, optional
        PETSc Krylov method (default: "bcgs").
    preconditioner : str, optional
        PETSc preconditioner (default: "hypre").

    Returns
    -------
    x_np : np.ndarray
        Solution vector (current iterate if the iteration cap was reached).
    ksp : PETSc.KSP
        KSP solver (returned for reuse).

    Raises
    ------
    RuntimeError
        If PETSc reports a failure other than the iteration cap or a breakdown.
    """
    n = A_csr.shape[0]

    A_petsc = PETSc.Mat().createAIJ(
        size=A_csr.shape, csr=(A_csr.indptr, A_csr.indices, A_csr.data)
    )
    A_petsc.assemble()

    b_petsc = PETSc.Vec().createWithArray(np.ascontiguousarray(b_np, dtype=np.float64))
    x_petsc = PETSc.Vec().createSeq(n)
    if x0 is not None:
        x_petsc.setArray(np.ascontiguousarray(x0, dtype=np.float64))

    if ksp is None:
        ksp = PETSc.KSP().create()
        ksp.setOperators(A_petsc)
        ksp.setType(solver_type)
        ksp.setTolerances(rtol=float(tolerance), atol=0, max_it=max_iterations)
        pc = ksp.getPC()
        pc.setType(preconditioner)
        ksp.setFromOptions()
    else:
        ksp.setOperators(A_petsc)
    ksp.setInitialGuessNonzero(x0 is not None)

    ksp.solve(b_petsc, x_petsc)

    # The iteration cap or a breakdown ends an inexact bottom solve with its current iterate
    reason = ksp.getConvergedReason()
    if reason in (
        PETSc.KSP.ConvergedReason.DIVERGED_ITS,
        PETSc.KSP.ConvergedReason.DIVERGED_BREAKDOWN,
    ):
        log.debug(f"PETSc stopped (reason {reason}) after {ksp.getIterationNumber()} iterations")
    elif reason <= 0:
        raise RuntimeError(
            f"PETSc did not converge. Reason: {reason}, "
            f"Iterations: {ksp.getIterationNumber()}"
        )

    x_np = x_petsc.getArray().copy()

    A_petsc.destroy()
    b_petsc.destroy()
    x_petsc.destroy()

    return x_np, ksp
