"""Embedded-boundary geometry for cut-cell meshes.

An implicit function ``f(x, y, z)`` describes the geometry: the fluid is
where ``f > 0`` and the obstacle where ``f <= 0``. Each cell's volume fraction
is estimated by sampling ``f`` on an ``n_sub**3`` lattice inside the cell.

Cell classification:
- covered: volume fraction 0 (entirely inside the obstacle)
- regular: volume fraction 1 (no boundary)
- cut: 0 < volume fraction < 1

Cut cells carry the unit boundary normal pointing out of the fluid (into
the obstacle); every other cell has a zero normal.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Tuple

import numpy as np

from .box import Box, SPACEDIM
from .geometry import Geometry
from .hierarchy import MeshHierarchy

log = logging.getLogger(__name__)


class FabType(Enum):
    """Classification of a region of cells."""

    COVERED = "covered"
    REGULAR = "regular"
    SINGLEVALUED = "singlevalued"


# =============================================================================
# Implicit functions
# =============================================================================


class ImplicitFunction(ABC):
    """Abstract geometry description, positive in the fluid."""

    @abstractmethod
    def __call__(self, x: np.ndarray, y: np.ndarray, z: np.ndarray) -> np.ndarray:
        pass


class AllRegularIF(ImplicitFunction):
    """No obstacle: every cell is regular."""

    def __call__(self, x, y, z):
        return np.ones_like(x, dtype=float)


class CylinderIF(ImplicitFunction):
    """Infinite circular cylinder aligned with one coordinate axis.

    Parameters
    ----------
    radius : float
        Cylinder radius.
    center : sequence of float
        A point on the cylinder axis.
    direction : int
        Axis direction (2 = z).
    has_fluid_inside : bool
        If True the fluid is inside the cylinder (a pipe), otherwise outside
        (an obstacle).
    """

    def __init__(
        self,
        radius: float,
        center: Sequence[float] = (0.5, 0.5, 0.5),
        direction: int = 2,
        has_fluid_inside: bool = False,
    ):
        if radius <= 0.0:
            raise ValueError("Cylinder radius must be positive")
        self.radius = float(radius)
        self.center = tuple(float(c) for c in center)
        self.direction = int(direction)
        self.has_fluid_inside = bool(has_fluid_inside)

    def __call__(self, x, y, z):
        coords = (x, y, z)
        r2 = np.zeros_like(x, dtype=float)
        for d in range(SPACEDIM):
            if d != self.direction:
                r2 = r2 + (coords[d] - self.center[d]) ** 2
        dist = np.sqrt(r2) - self.radius
        return -dist if self.has_fluid_inside else dist


def create_implicit_function(kind: str = "none", **kwargs) -> ImplicitFunction:
    """Create an implicit function from configuration.

    Parameters
    ----------
    kind : str
        "none" (all regular) or "cylinder"
    **kwargs
        Forwarded to the geometry constructor.
    """
    kind_lower = kind.lower()

    if kind_lower in ("none", "all_regular"):
        return AllRegularIF()
    elif kind_lower == "cylinder":
        return CylinderIF(**kwargs)
    else:
        raise ValueError(f"Unknown EB geometry: {kind}. Use 'none' or 'cylinder'.")


# =============================================================================
# EBFactory: per-level cut-cell data
# =============================================================================


@dataclass
class EBFactory:
    """Cut-cell data for one level, stored over the domain grown by ``ngrow``.

    Attributes
    ----------
    geom : Geometry
        Level geometry.
    ngrow : int
        Number of ghost cells covered by the stored arrays.
    volfrac : np.ndarray
        Volume fraction per cell.
    normal : np.ndarray
        Boundary normal per cell, shape (3, nx, ny, nz); zero off cut cells.
    """

    geom: Geometry
    ngrow: int
    volfrac: np.ndarray
    normal: np.ndarray

    @property
    def box(self) -> Box:
        return self.geom.domain.grow(self.ngrow)

    def _slices(self, box: Box) -> Tuple[slice, slice, slice]:
        if not self.box.contains(box):
            raise ValueError(f"{box} lies outside the EB data region {self.box}")
        base = self.box.lo
        return tuple(
            slice(box.lo[d] - base[d], box.hi[d] - base[d] + 1) for d in range(SPACEDIM)
        )

    def volume_fraction(self, box: Box) -> np.ndarray:
        return self.volfrac[self._slices(box)]

    def bndry_normal(self, box: Box) -> np.ndarray:
        return self.normal[(slice(None),) + self._slices(box)]

    def covered_mask(self, box: Box) -> np.ndarray:
        return self.volume_fraction(box) <= 0.0

    def cut_mask(self, box: Box) -> np.ndarray:
        vf = self.volume_fraction(box)
        return (vf > 0.0) & (vf < 1.0)

    def get_type(self, box: Box) -> FabType:
        vf = self.volume_fraction(box)
        if np.all(vf <= 0.0):
            return FabType.COVERED
        if np.all(vf >= 1.0):
            return FabType.REGULAR
        return FabType.SINGLEVALUED

    def is_all_regular(self) -> bool:
        return bool(np.all(self.volfrac[self._slices(self.geom.domain)] >= 1.0))


def build_eb_factory(
    geom: Geometry,
    implicit_function: ImplicitFunction,
    ngrow: int = 1,
    n_sub: int = 4,
) -> EBFactory:
    """Sample an implicit function on one level.

    Parameters
    ----------
    geom : Geometry
        Level geometry.
    implicit_function : ImplicitFunction
        Geometry description (positive in fluid).
    ngrow : int
        Ghost cells to cover around the domain.
    n_sub : int
        Sub-samples per direction used for the volume fraction.

    Returns
    -------
    EBFactory
    """
    box = geom.domain.grow(ngrow)
    X, Y, Z = geom.cell_centers(box)
    dx = geom.cell_size

    offsets = (np.arange(n_sub) + 0.5) / n_sub - 0.5
    n_fluid = np.zeros(box.shape, dtype=float)
    for ox in offsets:
        for oy in offsets:
            for oz in offsets:
                f = implicit_function(X + ox * dx[0], Y + oy * dx[1], Z + oz * dx[2])
                n_fluid += f > 0.0
    volfrac = n_fluid / float(n_sub**3)

    # Normal = -grad(f)/|grad(f)| by central differences, kept on cut cells only
    coords = [X, Y, Z]
    grad = np.zeros((SPACEDIM,) + box.shape)
    for d in range(SPACEDIM):
        h = 1e-3 * dx[d]
        plus = list(coords)
        minus = list(coords)
        plus[d] = coords[d] + h
        minus[d] = coords[d] - h
        grad[d] = (implicit_function(*plus) - implicit_function(*minus)) / (2.0 * h)

    mag = np.sqrt(np.sum(grad**2, axis=0))
    cut = (volfrac > 0.0) & (volfrac < 1.0) & (mag > 0.0)
    normal = np.zeros_like(grad)
    for d in range(SPACEDIM):
        normal[d][cut] = -grad[d][cut] / mag[cut]

    log.debug(
        f"EB factory on {geom.domain.shape}: "
        f"{int(np.sum(volfrac <= 0.0))} covered, {int(np.sum(cut))} cut cells"
    )

    return EBFactory(geom=geom, ngrow=ngrow, volfrac=volfrac, normal=normal)


def build_eb_factories(
    hierarchy: MeshHierarchy,
    implicit_function: ImplicitFunction,
    ngrow: int = 1,
    n_sub: int = 4,
) -> List[EBFactory]:
    """One EBFactory per hierarchy level."""
    return [
        build_eb_factory(geom, implicit_function, ngrow=ngrow, n_sub=n_sub)
        for geom in hierarchy.geom
    ]
