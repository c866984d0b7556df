"""Level hierarchy of block-decomposed meshes.

Each level covers the whole problem domain; level ``lev`` has
``n_cell * ref_ratio**lev`` cells and is chopped into sub-blocks of at most
``max_grid_size`` cells per direction.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .box import Box
from .geometry import Geometry

log = logging.getLogger(__name__)


@dataclass
class MeshHierarchy:
    """Per-level geometry and box decomposition.

    Attributes
    ----------
    geom : List[Geometry]
        Geometry of each level (index 0 = coarsest).
    grids : List[List[Box]]
        Sub-blocks of each level.
    ref_ratio : int
        Refinement ratio between consecutive levels.
    finest_level : int
        Index of the finest level currently holding data.
    """

    geom: List[Geometry]
    grids: List[List[Box]]
    ref_ratio: int = 2
    finest_level: Optional[int] = None

    def __post_init__(self) -> None:
        if len(self.geom) != len(self.grids):
            raise ValueError("geom and grids must have one entry per level")
        if not self.geom:
            raise ValueError("MeshHierarchy needs at least one level")
        if self.finest_level is None:
            self.finest_level = self.max_level
        if not 0 <= self.finest_level <= self.max_level:
            raise ValueError(
                f"finest_level={self.finest_level} outside [0, {self.max_level}]"
            )

    @property
    def max_level(self) -> int:
        return len(self.geom) - 1

    @property
    def num_levels(self) -> int:
        return len(self.geom)


def build_hierarchy(
    n_cell: Sequence[int],
    prob_lo: Sequence[float] = (0.0, 0.0, 0.0),
    prob_hi: Sequence[float] = (1.0, 1.0, 1.0),
    is_periodic: Sequence[bool] = (False, False, False),
    max_level: int = 0,
    max_grid_size: int = 32,
    ref_ratio: int = 2,
) -> MeshHierarchy:
    """Build a hierarchy with ``max_level + 1`` full-domain levels.

    Parameters
    ----------
    n_cell : sequence of int
        Number of cells per direction on level 0.
    prob_lo, prob_hi : sequence of float
        Physical domain corners.
    is_periodic : sequence of bool
        Periodic flag per direction.
    max_level : int
        Finest level index.
    max_grid_size : int
        Maximum sub-block length per direction.
    ref_ratio : int
        Refinement ratio between levels.

    Returns
    -------
    MeshHierarchy
    """
    if max_level < 0:
        raise ValueError("max_level must be >= 0")
    if any(int(n) < 1 for n in n_cell):
        raise ValueError("n_cell entries must be positive")

    domain = Box((0, 0, 0), tuple(int(n) - 1 for n in n_cell))
    geom0 = Geometry(
        domain=domain,
        prob_lo=tuple(float(v) for v in prob_lo),
        prob_hi=tuple(float(v) for v in prob_hi),
        is_periodic=tuple(bool(p) for p in is_periodic),
    )

    geoms = [geom0]
    for _ in range(max_level):
        geoms.append(geoms[-1].refine(ref_ratio))

    grids = [g.domain.chop(max_grid_size) for g in geoms]

    log.info(
        f"Building {len(geoms)}-level hierarchy: "
        f"n_cell = {[g.domain.shape for g in geoms]}, "
        f"sub-blocks = {[len(ba) for ba in grids]}"
    )

    return MeshHierarchy(geom=geoms, grids=grids, ref_ratio=ref_ratio)
