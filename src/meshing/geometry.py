"""Physical geometry of one mesh level."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .box import Box, SPACEDIM


@dataclass(frozen=True)
class Geometry:
    """Domain box plus physical extents and periodicity.

    Attributes
    ----------
    domain : Box
        Cell-centered index box of the whole problem domain at this level.
    prob_lo, prob_hi : tuple of float
        Physical corners of the domain.
    is_periodic : tuple of bool
        Periodic flag per direction.
    """

    domain: Box
    prob_lo: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    prob_hi: Tuple[float, float, float] = (1.0, 1.0, 1.0)
    is_periodic: Tuple[bool, bool, bool] = (False, False, False)

    def __post_init__(self) -> None:
        if not self.domain.cell_centered:
            raise ValueError("Geometry domain must be cell-centered")
        if any(h <= l for l, h in zip(self.prob_lo, self.prob_hi)):
            raise ValueError("Geometry requires prob_hi > prob_lo in every direction")
        object.__setattr__(self, "is_periodic", tuple(bool(p) for p in self.is_periodic))

    @property
    def cell_size(self) -> Tuple[float, float, float]:
        return tuple(
            (self.prob_hi[d] - self.prob_lo[d]) / self.domain.length(d)
            for d in range(SPACEDIM)
        )

    def periodicity(self) -> Tuple[bool, bool, bool]:
        return self.is_periodic

    def refine(self, ratio: int) -> "Geometry":
        return Geometry(
            domain=self.domain.refine(ratio),
            prob_lo=self.prob_lo,
            prob_hi=self.prob_hi,
            is_periodic=self.is_periodic,
        )

    def cell_centers(self, box: Box) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Cell-centre coordinates of ``box`` as 3D arrays (indexing='ij')."""
        dx = self.cell_size
        axes = [
            self.prob_lo[d]
            + (np.arange(box.lo[d], box.hi[d] + 1) - self.domain.lo[d] + 0.5) * dx[d]
            for d in range(SPACEDIM)
        ]
        return tuple(np.meshgrid(*axes, indexing="ij"))
