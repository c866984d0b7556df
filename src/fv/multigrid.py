"""Geometric multigrid driver for DiffusionOperator.

Each hierarchy level is solved on its own coarsening chain:

- Smoother: red-black Gauss-Seidel
- Restriction: block average; prolongation: piecewise constant
- Cycles: optional F-cycles (``max_fmg_iter``) followed by V-cycles, all on
  the residual-correction equation
- Bottom: BiCGSTAB (default), smoother sweeps, or PETSc with HYPRE

Convergence is declared when the max-norm of the residual over uncovered
cells of all levels drops below ``max(atol, rtol * initial_residual)``.
Afterwards finer levels are averaged down onto coarser ones.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np
from scipy.sparse import csr_matrix
from scipy.sparse.linalg import LinearOperator

from .averaging import average_down
from .fields import MultiField
from .linear_solvers import scipy_solver
from .operator import DiffusionOperator, StencilLevel
from .transfer import Ratio, prolong, restrict

log = logging.getLogger(__name__)


class MultigridConvergenceError(RuntimeError):
    """Raised when the iteration cap is reached before the tolerance."""


class BottomSolver(Enum):
    """Bottom solver of the multigrid cycle."""

    DEFAULT = "bicgstab"
    SMOOTHER = "smoother"
    HYPRE = "hypre"

    @classmethod
    def from_string(cls, name: str) -> "BottomSolver":
        """Resolve a configuration string; unknown names fall back to DEFAULT."""
        key = str(name).strip().lower()
        if key in ("bicgstab", "default"):
            return cls.DEFAULT
        for member in cls:
            if member.value == key:
                return member
        log.warning(f"Unknown bottom solver '{name}', using {cls.DEFAULT.value}")
        return cls.DEFAULT


@dataclass
class _GridLevel:
    """One grid of a coarsening chain."""

    stencil: StencilLevel
    A: csr_matrix
    inv_diag: np.ndarray
    colors: List[np.ndarray]
    color_rows: List[csr_matrix]
    covered: np.ndarray
    ratio: Optional[Ratio]
    ksp: object = None

    @property
    def shape(self):
        return self.stencil.shape


@dataclass
class _LevelSystem:
    """Chain, right-hand side and iterate of one hierarchy level."""

    grids: List[_GridLevel]
    b: np.ndarray
    x: np.ndarray
    residual: float = field(default=np.inf)


class MultigridSolver:
    """Multigrid solver bound to a configured DiffusionOperator."""

    def __init__(self, operator: DiffusionOperator):
        self.operator = operator
        self.bottom_solver = BottomSolver.DEFAULT
        self.max_iter = 100
        self.max_fmg_iter = 0
        self.cg_max_iter = 100
        self.verbose = 0
        self.cg_verbose = 0
        self.final_fill_bc = False

        self.pre_smooth = 2
        self.post_smooth = 2
        self.bottom_smooth = 8
        self.bottom_rtol = 1e-4
        # Bottom right-hand sides below this fraction of the target are skipped
        self.bottom_floor_ratio = 1e-3
        self._bottom_floor = 0.0

        self.num_iters = 0
        self.initial_residual = 0.0
        self.final_residual = 0.0
        self.converged = False
        self.solve_time = 0.0

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def set_bottom_solver(self, bottom: BottomSolver) -> None:
        self.bottom_solver = BottomSolver(bottom)

    def set_max_iter(self, n: int) -> None:
        self.max_iter = int(n)

    def set_max_fmg_iter(self, n: int) -> None:
        self.max_fmg_iter = int(n)

    def set_cg_max_iter(self, n: int) -> None:
        self.cg_max_iter = int(n)

    def set_verbose(self, v: int) -> None:
        self.verbose = int(v)

    def set_cg_verbose(self, v: int) -> None:
        self.cg_verbose = int(v)

    def set_final_fill_bc(self, flag: bool) -> None:
        self.final_fill_bc = bool(flag)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _build_grid(self, stencil: StencilLevel, ratio: Optional[Ratio], A=None) -> _GridLevel:
        if A is None:
            A, _ = self.operator.assemble(stencil)
        diag = A.diagonal()
        inv_diag = np.where(diag != 0.0, 1.0 / np.where(diag != 0.0, diag, 1.0), 0.0)

        i, j, k = np.indices(stencil.shape)
        parity = ((i + j + k) % 2).ravel()
        colors = [np.flatnonzero(parity == 0), np.flatnonzero(parity == 1)]

        return _GridLevel(
            stencil=stencil,
            A=A,
            inv_diag=inv_diag,
            colors=colors,
            color_rows=[A[c] for c in colors],
            covered=stencil.covered.ravel(),
            ratio=ratio,
        )

    def _setup_level(self, lev: int, phi: MultiField, rhs: MultiField) -> _LevelSystem:
        op = self.operator
        ncomp = op.ncomp
        chain = op.coarsening_chain(lev)

        A, terms = op.assemble(chain[0][0])
        grids = [self._build_grid(chain[0][0], chain[0][1], A)]
        grids += [self._build_grid(stencil, ratio) for stencil, ratio in chain[1:]]

        b = rhs.valid(slice(0, ncomp)).reshape(ncomp, -1).T + op.boundary_rhs(lev, terms)
        x = phi.valid(slice(0, ncomp)).reshape(ncomp, -1).T.copy()
        covered = grids[0].covered
        b[covered] = 0.0
        x[covered] = 0.0

        log.debug(
            f"Level {lev}: {len(grids)} multigrid grids, "
            f"shapes {[g.shape for g in grids]}"
        )
        return _LevelSystem(grids=grids, b=b, x=x)

    # ------------------------------------------------------------------
    # Cycle components
    # ------------------------------------------------------------------

    @staticmethod
    def _residual(grid: _GridLevel, x: np.ndarray, b: np.ndarray) -> np.ndarray:
        return b - grid.A @ x

    def _smooth(self, grid: _GridLevel, x: np.ndarray, b: np.ndarray, nsweeps: int) -> None:
        for _ in range(nsweeps):
            for rows, A_rows in zip(grid.colors, grid.color_rows):
                r = b[rows] - A_rows @ x
                x[rows] += r * grid.inv_diag[rows, None]

    def _restrict(self, grid: _GridLevel, r: np.ndarray, coarse: _GridLevel) -> np.ndarray:
        ncomp = r.shape[1]
        rc = restrict(r.reshape(grid.shape + (ncomp,)), grid.ratio).reshape(-1, ncomp)
        rc[coarse.covered] = 0.0
        return rc

    def _prolong(self, grid: _GridLevel, ec: np.ndarray, coarse: _GridLevel) -> np.ndarray:
        ncomp = ec.shape[1]
        e = prolong(ec.reshape(coarse.shape + (ncomp,)), grid.ratio).reshape(-1, ncomp)
        e[grid.covered] = 0.0
        return e

    def _bottom_solve(self, grid: _GridLevel, x: np.ndarray, b: np.ndarray) -> None:
        if self.bottom_solver == BottomSolver.SMOOTHER:
            self._smooth(grid, x, b, self.bottom_smooth)
            return

        if self.bottom_solver == BottomSolver.HYPRE:
            from .linear_solvers.petsc_solver import petsc_solver

            for c in range(x.shape[1]):
                if np.max(np.abs(b[:, c]), initial=0.0) <= self._bottom_floor:
                    x[:, c] = 0.0
                    continue
                x[:, c], grid.ksp = petsc_solver(
                    grid.A,
                    b[:, c],
                    ksp=grid.ksp,
                    x0=x[:, c],
                    tolerance=self.bottom_rtol,
                    max_iterations=self.cg_max_iter,
                )
                if self.cg_verbose >= 1:
                    log.info(f"  hypre bottom comp {c}: {grid.ksp.getIterationNumber()} iterations")
            return

        M = LinearOperator(grid.A.shape, matvec=lambda v: grid.inv_diag * np.ravel(v))
        for c in range(x.shape[1]):
            x[:, c], n_iter = scipy_solver(
                grid.A,
                b[:, c],
                M=M,
                x0=x[:, c],
                tolerance=self.bottom_rtol,
                max_iterations=self.cg_max_iter,
                b_floor=self._bottom_floor,
            )
            if self.cg_verbose >= 1:
                log.info(f"  bicgstab bottom comp {c}: {n_iter} iterations")

    def _vcycle(self, grids: List[_GridLevel], k: int, x: np.ndarray, b: np.ndarray) -> None:
        grid = grids[k]
        if k == len(grids) - 1:
            self._bottom_solve(grid, x, b)
            return

        coarse = grids[k + 1]
        self._smooth(grid, x, b, self.pre_smooth)
        rc = self._restrict(grid, self._residual(grid, x, b), coarse)
        ec = np.zeros_like(rc)
        self._vcycle(grids, k + 1, ec, rc)
        x += self._prolong(grid, ec, coarse)
        self._smooth(grid, x, b, self.post_smooth)

    def _fcycle(self, grids: List[_GridLevel], k: int, b: np.ndarray) -> np.ndarray:
        grid = grids[k]
        if k == len(grids) - 1:
            x = np.zeros_like(b)
            self._bottom_solve(grid, x, b)
            return x

        coarse = grids[k + 1]
        xc = self._fcycle(grids, k + 1, self._restrict(grid, b, coarse))
        x = self._prolong(grid, xc, coarse)
        self._vcycle(grids, k, x, b)
        return x

    def _level_residual(self, system: _LevelSystem) -> float:
        grid = system.grids[0]
        r = self._residual(grid, system.x, system.b)
        r[grid.covered] = 0.0
        return float(np.max(np.abs(r))) if r.size else 0.0

    def _cycle(self, system: _LevelSystem, fmg: bool) -> None:
        grids = system.grids
        r = self._residual(grids[0], system.x, system.b)
        r[grids[0].covered] = 0.0
        if fmg:
            e = self._fcycle(grids, 0, r)
        else:
            e = np.zeros_like(r)
            self._vcycle(grids, 0, e, r)
        system.x += e

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------

    def solve(
        self,
        phi: Sequence[MultiField],
        rhs: Sequence[MultiField],
        rtol: float,
        atol: float,
    ) -> float:
        """Solve on every level, overwriting ``phi`` with the solution.

        ``phi`` holds the initial guess on entry. Returns the final residual
        max-norm.

        Raises
        ------
        MultigridConvergenceError
            If the tolerance is not met within the iteration caps.
        """
        if len(phi) != len(rhs):
            raise ValueError("phi and rhs must have one entry per level")

        t0 = time.perf_counter()
        op = self.operator
        systems = [self._setup_level(lev, phi[lev], rhs[lev]) for lev in range(len(phi))]

        for system in systems:
            system.residual = self._level_residual(system)
        self.initial_residual = max(s.residual for s in systems)
        target = max(atol, rtol * self.initial_residual)
        self._bottom_floor = self.bottom_floor_ratio * target

        if self.verbose >= 1:
            log.info(
                f"MLMG: initial residual = {self.initial_residual:.6e}, target = {target:.6e}"
            )

        self.num_iters = 0
        self.converged = self.initial_residual <= target
        schedule = [True] * self.max_fmg_iter + [False] * self.max_iter

        for fmg in schedule:
            if self.converged:
                break
            for system in systems:
                if system.residual > target:
                    self._cycle(system, fmg)
                    system.residual = self._level_residual(system)
            self.num_iters += 1
            res = max(s.residual for s in systems)
            self.converged = res <= target
            if self.verbose >= 2:
                kind = "F" if fmg else "V"
                log.info(f"MLMG: iteration {self.num_iters} ({kind}-cycle), residual = {res:.6e}")

        self.final_residual = max(s.residual for s in systems)
        self.solve_time = time.perf_counter() - t0

        if not self.converged:
            raise MultigridConvergenceError(
                f"MLMG failed to converge in {self.num_iters} iterations: "
                f"residual {self.final_residual:.3e} > target {target:.3e}"
            )

        ncomp = op.ncomp
        for lev, system in enumerate(systems):
            shape = system.grids[0].shape
            phi[lev].valid(slice(0, ncomp))[...] = system.x.T.reshape((ncomp,) + shape)

        for lev in range(len(phi) - 2, -1, -1):
            ratio = phi[lev + 1].box.length(0) // phi[lev].box.length(0)
            average_down(phi[lev + 1], phi[lev], ratio, op.factories[lev + 1])

        if self.final_fill_bc:
            for lev in range(len(phi)):
                op.fill_solution_bc(lev, phi[lev])

        if self.verbose >= 1:
            log.info(
                f"MLMG: converged in {self.num_iters} iterations, "
                f"final residual = {self.final_residual:.6e} ({self.solve_time:.3f} s)"
            )
        return self.final_residual
