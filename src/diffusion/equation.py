"""Implicit viscous diffusion of the velocity field.

Each call to ``DiffusionEquation.solve`` advances the velocity by one
backward-Euler diffusion step,

    rho * u_new - dt * div(eta grad u_new) = rho * u_old

on every level of the mesh hierarchy, using the multigrid solver on a
DiffusionOperator with ``alpha = 1``, ``beta = dt``, ``a = rho`` and
``b = eta`` averaged to faces.
"""

import dataclasses
import logging
from typing import List, Sequence

import mlflow

from fv.averaging import average_cellcenter_to_face
from fv.fields import MultiField, make_face_fields
from fv.multigrid import MultigridSolver
from fv.operator import DiffusionOperator
from meshing.hierarchy import MeshHierarchy
from .boundary import set_diff_bc
from .datastructures import DiffusionParameters, SolveHistory, SolveMetrics
from .eb_velocity import compute_eb_velocity
from .errors import UnsupportedOperationError

log = logging.getLogger(__name__)

NCOMP = 3


class DiffusionEquation:
    """Implicit diffusion solve for the three velocity components.

    Parameters
    ----------
    amrcore : MeshHierarchy
        Mesh hierarchy (geometry and sub-blocks per level).
    ebfactory : list of EBFactory
        Embedded-boundary data per level.
    bc_ilo, bc_ihi, bc_jlo, bc_jhi, bc_klo, bc_khi : list of np.ndarray
        Boundary tag arrays per level for the six domain faces; only level 0
        is read.
    nghost : int
        Ghost width of the velocity and face coefficient fields.
    cyl_speed : float
        Rotation speed of the embedded body.
    params : DiffusionParameters, optional
        Solver settings. If not provided, kwargs are used to create params.
    **kwargs
        Overrides of individual DiffusionParameters fields.
    """

    def __init__(
        self,
        amrcore: MeshHierarchy,
        ebfactory: Sequence,
        bc_ilo,
        bc_ihi,
        bc_jlo,
        bc_jhi,
        bc_klo,
        bc_khi,
        nghost: int,
        cyl_speed: float,
        params: DiffusionParameters = None,
        **kwargs,
    ):
        if params is None:
            params = DiffusionParameters(**kwargs)
        elif kwargs:
            params = dataclasses.replace(params, **kwargs)
        self.params = params

        if len(ebfactory) != amrcore.num_levels:
            raise ValueError(
                f"Expected {amrcore.num_levels} EB factories, got {len(ebfactory)}"
            )

        self.amrcore = amrcore
        self.ebfactory = list(ebfactory)
        self.nghost = int(nghost)
        self.cyl_speed = float(cyl_speed)

        self.bc_lo, self.bc_hi = set_diff_bc(
            amrcore.geom[0], self.nghost,
            bc_ilo[0], bc_ihi[0], bc_jlo[0], bc_jhi[0], bc_klo[0], bc_khi[0],
        )

        self.b: List[List[MultiField]] = []
        self.phi: List[MultiField] = []
        self.rhs: List[MultiField] = []
        self.vel_eb: List[MultiField] = []
        for lev in range(amrcore.max_level + 1):
            grids = amrcore.grids[lev]
            factory = self.ebfactory[lev]
            self.b.append(make_face_fields(grids, 1, self.nghost, factory))
            self.phi.append(MultiField(grids, NCOMP, 1, factory=factory))
            self.rhs.append(MultiField(grids, NCOMP, 0, factory=factory))
            self.vel_eb.append(MultiField(grids, NCOMP, self.nghost, factory=factory))

        for lev in range(amrcore.max_level + 1):
            compute_eb_velocity(self.vel_eb[lev], self.ebfactory[lev], amrcore.geom[lev], self.cyl_speed)

        self.matrix = DiffusionOperator(
            amrcore.geom,
            amrcore.grids,
            self.ebfactory,
            ncomp=NCOMP,
            max_coarsening_level=self.params.mg_max_coarsening_level,
        )
        self.matrix.set_max_order(3)
        self.matrix.set_domain_bc(self.bc_lo, self.bc_hi)

        self.metrics = SolveMetrics()
        self.history = SolveHistory()

        if self.params.verbose > 0:
            log.info(
                f"Diffusion equation on {amrcore.num_levels} level(s), "
                f"bottom solver = {self.params.bottom_solver.value}"
            )

    def update_internals(self, amrcore, ebfactory):
        """Rebuild after a regrid. Not supported."""
        log.error("DiffusionEquation.update_internals is not implemented")
        raise UnsupportedOperationError(
            "DiffusionEquation cannot be updated after a regrid; construct a new one"
        )

    # ------------------------------------------------------------------
    # Per-level assembly
    # ------------------------------------------------------------------

    def _update_coefficients(self, lev: int, ro: MultiField, eta: MultiField) -> None:
        geom = self.amrcore.geom[lev]
        average_cellcenter_to_face(self.b[lev], eta, geom)
        for face in self.b[lev]:
            face.fill_boundary(geom.periodicity())

        self.matrix.set_a_coeffs(lev, ro)
        self.matrix.set_shear_viscosity(lev, self.b[lev])
        self.matrix.set_eb_shear_viscosity(lev, eta)

    def _assemble_level_system(self, lev: int, vel: MultiField, ro: MultiField) -> None:
        geom = self.amrcore.geom[lev]
        rhs = self.rhs[lev]
        phi = self.phi[lev]

        # Momentum right-hand side
        MultiField.copy(rhs, vel, 0, 0, NCOMP, rhs.ngrow)
        for comp in range(NCOMP):
            MultiField.multiply(rhs, ro, 0, comp, 1, rhs.ngrow)

        # Initial guess; its ghost cells carry the Dirichlet values
        MultiField.copy(phi, vel, 0, 0, NCOMP, 1)
        phi.fill_boundary(geom.periodicity())
        self.matrix.set_level_bc(lev, phi)

        # vel_eb is not passed to the operator: embedded walls stay homogeneous

    def _set_solver_settings(self, solver: MultigridSolver) -> None:
        p = self.params
        solver.set_bottom_solver(p.bottom_solver)
        solver.set_max_iter(p.mg_max_iter)
        solver.set_max_fmg_iter(p.mg_max_fmg_iter)
        solver.set_cg_max_iter(p.mg_cg_maxiter)
        solver.set_verbose(p.mg_verbose)
        solver.set_cg_verbose(p.mg_cg_verbose)
        solver.set_final_fill_bc(True)

    # ------------------------------------------------------------------
    # Solve
    # ------------------------------------------------------------------

    def solve(
        self,
        vel_in: Sequence[MultiField],
        ro_in: Sequence[MultiField],
        eta_in: Sequence[MultiField],
        dt: float,
    ) -> None:
        """Diffuse ``vel_in`` in place over one step of size ``dt``.

        ``ro_in`` and ``eta_in`` are single-component cell fields; ``eta_in``
        needs at least one valid ghost layer for the face averaging.
        """
        p = self.params
        finest = self.amrcore.finest_level

        if p.verbose > 0:
            log.info(f"Diffusing velocity components all together (dt = {dt:.6e})")

        self.matrix.set_scalars(1.0, dt)

        for lev in range(finest + 1):
            self._update_coefficients(lev, ro_in[lev], eta_in[lev])

        for lev in range(finest + 1):
            self._assemble_level_system(lev, vel_in[lev], ro_in[lev])

        solver = MultigridSolver(self.matrix)
        self._set_solver_settings(solver)
        solver.solve(self.phi[: finest + 1], self.rhs[: finest + 1], p.mg_rtol, p.mg_atol)

        for lev in range(finest + 1):
            self.phi[lev].fill_boundary(self.amrcore.geom[lev].periodicity())
            MultiField.copy(vel_in[lev], self.phi[lev], 0, 0, NCOMP, 1)

        self.metrics = SolveMetrics(
            step=len(self.history),
            dt=float(dt),
            iterations=solver.num_iters,
            converged=solver.converged,
            initial_residual=solver.initial_residual,
            final_residual=solver.final_residual,
            wall_time_seconds=solver.solve_time,
        )
        self.history.append(self.metrics)

        if mlflow.active_run() is not None:
            mlflow.log_metrics(self.metrics.to_mlflow(), step=self.metrics.step)

        if p.verbose > 0:
            log.info(
                f"Diffusion solve: {solver.num_iters} iterations, "
                f"residual {solver.final_residual:.3e}"
            )
