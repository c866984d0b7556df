"""Bottom solvers for the multigrid driver.

The PETSc solver needs the optional ``petsc4py`` dependency and is imported
from ``fv.linear_solvers.petsc_solver`` where it is used.
"""

from .scipy_solver import scipy_solver

__all__ = ["scipy_solver"]
