"""Variable-coefficient diffusion operator on embedded-boundary levels.

Discretizes, per component,

    alpha * a * phi - beta * div(b grad phi)

with a cell-centered second-order finite-volume stencil:
- ``a`` is a cell coefficient, ``b`` a face coefficient per direction
- covered cells are removed from the system (identity rows, zero rhs)
- faces between a fluid and a covered cell are embedded walls treated as
  Dirichlet faces with diffusivity ``eb_b`` (staircase representation)
- domain faces use the level boundary types; Dirichlet data is read from the
  first ghost layer of the field given to ``set_level_bc``

The operator keeps one coefficient set per hierarchy level and builds the
coarsened coefficient chain used by the multigrid solver.
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional, Sequence, Tuple

import numpy as np
from scipy.sparse import coo_matrix, csr_matrix, diags

from meshing.box import SPACEDIM
from .fields import MultiField
from .transfer import Ratio, block_all, coarsen_ratio, restrict, restrict_faces

log = logging.getLogger(__name__)


class LinOpBCType(IntEnum):
    """Domain boundary types understood by the operator."""

    INTERIOR = 0
    DIRICHLET = 101
    NEUMANN = 102
    REFLECT_ODD = 103
    INFLOW = 106
    PERIODIC = 200


_DIRICHLET_TYPES = (LinOpBCType.DIRICHLET, LinOpBCType.INFLOW, LinOpBCType.REFLECT_ODD)


def _take(arr: np.ndarray, axis: int, start: int, stop: Optional[int]) -> np.ndarray:
    index = [slice(None)] * arr.ndim
    index[axis] = slice(start, stop)
    return arr[tuple(index)]


@dataclass
class StencilLevel:
    """Coefficients of one grid of the operator.

    Attributes
    ----------
    dx : tuple of float
        Cell size.
    a : np.ndarray
        Cell coefficient, shape ``(n0, n1, n2)``.
    b : list of np.ndarray
        Face coefficients; ``b[d]`` has one extra point along ``d``.
    eb_b : np.ndarray
        Diffusivity used on embedded walls, per cell.
    covered : np.ndarray
        True where the cell lies inside the obstacle.
    is_periodic : tuple of bool
    """

    dx: Tuple[float, float, float]
    a: np.ndarray
    b: List[np.ndarray]
    eb_b: np.ndarray
    covered: np.ndarray
    is_periodic: Tuple[bool, bool, bool]

    @property
    def shape(self) -> Tuple[int, int, int]:
        return self.a.shape

    @property
    def num_cells(self) -> int:
        return self.a.size

    def coarsen(self, ratio: Ratio) -> "StencilLevel":
        """Coefficients on the grid coarsened by ``ratio``.

        A coarse cell is covered only if all of its fine cells are.
        """
        return StencilLevel(
            dx=tuple(h * r for h, r in zip(self.dx, ratio)),
            a=restrict(self.a, ratio),
            b=[restrict_faces(self.b[d], d, ratio) for d in range(SPACEDIM)],
            eb_b=restrict(self.eb_b, ratio),
            covered=block_all(self.covered, ratio),
            is_periodic=self.is_periodic,
        )


@dataclass
class BoundaryTerm:
    """Right-hand-side contribution of boundary data.

    ``rhs[cells] += coefs * values[source]``, where ``values`` is the ghost
    slab of domain face ``(d, side)`` or the embedded-wall values.
    """

    kind: str
    cells: np.ndarray
    coefs: np.ndarray
    source: np.ndarray
    d: int = -1
    side: int = 0


def assemble_stencil(
    level: StencilLevel,
    bc_lo: Sequence[LinOpBCType],
    bc_hi: Sequence[LinOpBCType],
    alpha: float,
    beta: float,
    max_order: int = 2,
) -> Tuple[csr_matrix, List[BoundaryTerm]]:
    """Build the sparse matrix of one grid and its boundary data terms.

    Returns
    -------
    A : csr_matrix
        ``(N, N)`` matrix, cells in C order of ``level.shape``.
    terms : list of BoundaryTerm
        Coefficients mapping boundary values into the right-hand side.
    """
    shape = level.shape
    N = level.num_cells
    idx = np.arange(N).reshape(shape)
    fluid = ~level.covered.ravel()
    eb_b = level.eb_b.ravel()

    diag = np.where(fluid, alpha * level.a.ravel(), 0.0)
    rows, cols, vals = [], [], []
    terms: List[BoundaryTerm] = []

    def couple(left, right, bface, inv_dx2):
        l = left.ravel()
        r = right.ravel()
        c = beta * bface.ravel() * inv_dx2

        both = fluid[l] & fluid[r]
        np.add.at(diag, l[both], c[both])
        np.add.at(diag, r[both], c[both])
        rows.append(l[both])
        cols.append(r[both])
        vals.append(-c[both])
        rows.append(r[both])
        cols.append(l[both])
        vals.append(-c[both])

        # Embedded walls: Dirichlet at the face shared with a covered cell
        for cell, other in ((l, r), (r, l)):
            wall = fluid[cell] & ~fluid[other]
            if not np.any(wall):
                continue
            cw = 2.0 * beta * eb_b[cell[wall]] * inv_dx2
            np.add.at(diag, cell[wall], cw)
            terms.append(BoundaryTerm("eb", cell[wall], cw, cell[wall]))

    for d in range(SPACEDIM):
        n = shape[d]
        inv_dx2 = 1.0 / level.dx[d] ** 2
        b = level.b[d]

        if n > 1:
            couple(_take(idx, d, 0, n - 1), _take(idx, d, 1, n), _take(b, d, 1, n), inv_dx2)

        if level.is_periodic[d]:
            couple(_take(idx, d, n - 1, n), _take(idx, d, 0, 1), _take(b, d, 0, 1), inv_dx2)
            continue

        for side, bctype in ((0, bc_lo[d]), (1, bc_hi[d])):
            if side == 0:
                cells = _take(idx, d, 0, 1).ravel()
                nxt = _take(idx, d, 1, 2).ravel() if n > 1 else cells
                bface = _take(b, d, 0, 1).ravel()
            else:
                cells = _take(idx, d, n - 1, n).ravel()
                nxt = _take(idx, d, n - 2, n - 1).ravel() if n > 1 else cells
                bface = _take(b, d, n, n + 1).ravel()

            c = beta * bface * inv_dx2
            src = np.arange(cells.size)
            mask = fluid[cells]

            if bctype in _DIRICHLET_TYPES:
                third = mask & fluid[nxt] if (max_order >= 3 and n > 1) else np.zeros_like(mask)
                np.add.at(diag, cells[mask], np.where(third, 3.0 * c, 2.0 * c)[mask])
                rows.append(cells[third])
                cols.append(nxt[third])
                vals.append(-c[third] / 3.0)
                if bctype != LinOpBCType.REFLECT_ODD:
                    rc = np.where(third, 8.0 * c / 3.0, 2.0 * c)
                    terms.append(BoundaryTerm("domain", cells[mask], rc[mask], src[mask], d, side))
            elif bctype != LinOpBCType.NEUMANN:
                raise ValueError(f"Unsupported boundary type {bctype!r} on a non-periodic face")

    diag[~fluid] = 1.0

    if rows:
        off = coo_matrix(
            (np.concatenate(vals), (np.concatenate(rows), np.concatenate(cols))), shape=(N, N)
        )
        A = (off + diags(diag)).tocsr()
    else:
        A = diags(diag).tocsr()
    A.sum_duplicates()
    return A, terms


def boundary_rhs(
    shape: Tuple[int, int, int],
    terms: Sequence[BoundaryTerm],
    ncomp: int,
    bc_data: Optional[np.ndarray],
    eb_values: Optional[np.ndarray],
) -> np.ndarray:
    """Right-hand side ``(N, ncomp)`` contributed by boundary data.

    ``bc_data`` has shape ``(ncomp, n0 + 2, n1 + 2, n2 + 2)`` (one ghost layer);
    ``eb_values`` has shape ``(ncomp, n0, n1, n2)``. Either may be None
    (homogeneous data).
    """
    N = int(np.prod(shape))
    out = np.zeros((N, ncomp))
    for term in terms:
        if term.cells.size == 0:
            continue
        if term.kind == "eb":
            if eb_values is None:
                continue
            values = eb_values.reshape(ncomp, -1)[:, term.source]
        else:
            if bc_data is None:
                continue
            index = [slice(None)] + [slice(1, -1)] * SPACEDIM
            index[term.d + 1] = slice(0, 1) if term.side == 0 else slice(-1, None)
            values = bc_data[tuple(index)].reshape(ncomp, -1)[:, term.source]
        np.add.at(out, term.cells, (term.coefs * values).T)
    return out


class DiffusionOperator:
    """Level-wise tensor diffusion operator with embedded boundaries.

    Parameters
    ----------
    geom : list of Geometry
        Geometry per hierarchy level.
    grids : list of list of Box
        Sub-blocks per level.
    factories : list of EBFactory, optional
        Embedded-boundary data per level.
    ncomp : int
        Number of solution components.
    max_coarsening_level : int
        Maximum number of multigrid coarsenings below each level.
    """

    def __init__(
        self,
        geom: Sequence,
        grids: Sequence,
        factories: Optional[Sequence] = None,
        ncomp: int = 3,
        max_coarsening_level: int = 30,
    ):
        if len(geom) != len(grids):
            raise ValueError("geom and grids must have one entry per level")
        if factories is None:
            factories = [None] * len(geom)
        if len(factories) != len(geom):
            raise ValueError("factories must have one entry per level")
        if max_coarsening_level < 0:
            raise ValueError("max_coarsening_level must be >= 0")

        self.geom = list(geom)
        self.grids = [list(ba) for ba in grids]
        self.factories = list(factories)
        self.ncomp = int(ncomp)
        self.max_coarsening_level = int(max_coarsening_level)
        self.max_order = 2
        self.alpha = 1.0
        self.beta = 1.0
        self.bc_lo: Optional[Tuple[LinOpBCType, ...]] = None
        self.bc_hi: Optional[Tuple[LinOpBCType, ...]] = None

        self._levels = [self._default_level(lev) for lev in range(self.num_levels)]
        self._bc_data: List[Optional[np.ndarray]] = [None] * self.num_levels
        self._eb_values: List[Optional[np.ndarray]] = [None] * self.num_levels

    @property
    def num_levels(self) -> int:
        return len(self.geom)

    def _default_level(self, lev: int) -> StencilLevel:
        geom = self.geom[lev]
        domain = geom.domain
        factory = self.factories[lev]
        if factory is None:
            covered = np.zeros(domain.shape, dtype=bool)
        else:
            covered = factory.covered_mask(domain).copy()
        return StencilLevel(
            dx=geom.cell_size,
            a=np.zeros(domain.shape),
            b=[np.ones(domain.surrounding_nodes(d).shape) for d in range(SPACEDIM)],
            eb_b=np.zeros(domain.shape),
            covered=covered,
            is_periodic=geom.periodicity(),
        )

    def _check_field(self, lev: int, field: MultiField, ncomp: int = 1) -> None:
        if field.box.enclosed_cells() != self.geom[lev].domain:
            raise ValueError(f"Field on {field.box} does not cover level {lev}")
        if field.ncomp < ncomp:
            raise ValueError(f"Field has {field.ncomp} components, need {ncomp}")

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_max_order(self, order: int) -> None:
        if order not in (2, 3):
            raise ValueError(f"max_order must be 2 or 3, got {order}")
        self.max_order = int(order)

    def set_domain_bc(self, bc_lo: Sequence, bc_hi: Sequence) -> None:
        if len(bc_lo) != SPACEDIM or len(bc_hi) != SPACEDIM:
            raise ValueError(f"Domain BCs need {SPACEDIM} entries per side")
        lo = tuple(LinOpBCType(v) for v in bc_lo)
        hi = tuple(LinOpBCType(v) for v in bc_hi)
        periodic = self.geom[0].periodicity()
        for d in range(SPACEDIM):
            for bc in (lo[d], hi[d]):
                if periodic[d] != (bc == LinOpBCType.PERIODIC):
                    raise ValueError(
                        f"Direction {d}: boundary type {bc.name} inconsistent with "
                        f"periodicity {periodic[d]}"
                    )
                if bc == LinOpBCType.INTERIOR:
                    raise ValueError(f"Direction {d}: INTERIOR is not a domain boundary type")
        self.bc_lo, self.bc_hi = lo, hi

    def set_scalars(self, alpha: float, beta: float) -> None:
        self.alpha = float(alpha)
        self.beta = float(beta)

    def set_a_coeffs(self, lev: int, a: MultiField) -> None:
        self._check_field(lev, a)
        self._levels[lev].a = a.valid(0).copy()

    def set_shear_viscosity(self, lev: int, b: Sequence[MultiField]) -> None:
        if len(b) != SPACEDIM:
            raise ValueError(f"Expected {SPACEDIM} face fields")
        for d in range(SPACEDIM):
            if b[d].nodal_dir != d:
                raise ValueError(f"Face field {d} is not normal to direction {d}")
            self._check_field(lev, b[d])
            self._levels[lev].b[d] = b[d].valid(0).copy()

    def set_eb_shear_viscosity(self, lev: int, eta: MultiField) -> None:
        self._check_field(lev, eta)
        self._levels[lev].eb_b = eta.valid(0).copy()

    def set_level_bc(self, lev: int, phi: MultiField) -> None:
        """Register boundary values held in the first ghost layer of ``phi``."""
        self._check_field(lev, phi, self.ncomp)
        if phi.ngrow < 1:
            raise ValueError("Level BC field needs at least 1 ghost cell")
        self._bc_data[lev] = phi.grown(1, slice(0, self.ncomp)).copy()

    def set_eb_dirichlet(self, lev: int, values: MultiField) -> None:
        """Prescribe the solution on embedded walls of level ``lev``."""
        self._check_field(lev, values, self.ncomp)
        self._eb_values[lev] = values.valid(slice(0, self.ncomp)).copy()

    def set_eb_homog_dirichlet(self, lev: int) -> None:
        self._eb_values[lev] = None

    # ------------------------------------------------------------------
    # Discretization
    # ------------------------------------------------------------------

    def stencil(self, lev: int) -> StencilLevel:
        return self._levels[lev]

    def _require_bc(self) -> None:
        if self.bc_lo is None:
            raise ValueError("Domain boundary types not set; call set_domain_bc first")

    def assemble(self, stencil: StencilLevel) -> Tuple[csr_matrix, List[BoundaryTerm]]:
        self._require_bc()
        return assemble_stencil(
            stencil, self.bc_lo, self.bc_hi, self.alpha, self.beta, self.max_order
        )

    def coarsening_chain(self, lev: int) -> List[Tuple[StencilLevel, Optional[Ratio]]]:
        """Stencils from level ``lev`` down to the multigrid bottom.

        Each entry pairs a stencil with the ratio to the next coarser entry
        (None for the bottom).
        """
        chain = []
        stencil = self._levels[lev]
        for _ in range(self.max_coarsening_level):
            ratio = coarsen_ratio(stencil.shape)
            if ratio is None:
                break
            chain.append((stencil, ratio))
            stencil = stencil.coarsen(ratio)
        chain.append((stencil, None))
        return chain

    def boundary_rhs(self, lev: int, terms: Sequence[BoundaryTerm]) -> np.ndarray:
        return boundary_rhs(
            self._levels[lev].shape, terms, self.ncomp, self._bc_data[lev], self._eb_values[lev]
        )

    def apply(self, lev: int, phi: MultiField) -> np.ndarray:
        """Evaluate the operator with the registered boundary data on ``phi``.

        Returns an array ``(ncomp, n0, n1, n2)``; covered cells are zero.
        """
        stencil = self._levels[lev]
        A, terms = self.assemble(stencil)
        x = phi.valid(slice(0, self.ncomp)).reshape(self.ncomp, -1).T
        out = A @ x - self.boundary_rhs(lev, terms)
        out[stencil.covered.ravel()] = 0.0
        return out.T.reshape((self.ncomp,) + stencil.shape)

    def fill_solution_bc(self, lev: int, phi: MultiField) -> None:
        """Fill the first ghost layer of ``phi`` consistently with the boundary types.

        Periodic directions are exchanged; on other faces the ghost value
        extrapolates the boundary condition the way the stencil sees it.
        """
        self._require_bc()
        geom = self.geom[lev]
        phi.fill_boundary(geom.periodicity())
        if phi.ngrow < 1:
            return

        g1 = phi.grown(1, slice(0, self.ncomp))
        bc_data = self._bc_data[lev]
        shape = self._levels[lev].shape

        for d in range(SPACEDIM):
            if geom.is_periodic[d]:
                continue
            ax = d + 1
            n = shape[d]
            for side, bctype in ((0, self.bc_lo[d]), (1, self.bc_hi[d])):
                gi, v0, v1 = (0, 1, 2) if side == 0 else (n + 1, n, n - 1)
                p0 = _take(g1, ax, v0, v0 + 1)
                ghost = _take(g1, ax, gi, gi + 1)
                if bc_data is None:
                    g = np.zeros_like(p0)
                else:
                    g = _take(bc_data, ax, gi, gi + 1)

                if bctype in _DIRICHLET_TYPES:
                    if bctype == LinOpBCType.REFLECT_ODD:
                        g = np.zeros_like(p0)
                    if self.max_order >= 3 and n > 1:
                        p1 = _take(g1, ax, v1, v1 + 1)
                        ghost[...] = (8.0 / 3.0) * g - 2.0 * p0 + p1 / 3.0
                    else:
                        ghost[...] = 2.0 * g - p0
                else:
                    ghost[...] = p0
