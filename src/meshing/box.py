"""Integer index boxes for block-structured meshes.

A Box is an inclusive rectangular region of index space. Each direction is
either cell-centered (index type 0) or node-centered (index type 1); a
face-centered box in direction ``d`` is the cell box with ``surrounding_nodes(d)``
applied.

Conventions:
- ``lo`` and ``hi`` are inclusive (a box with ``lo == hi`` holds one point).
- All boxes are three-dimensional.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

SPACEDIM = 3

IntVect = Tuple[int, int, int]


@dataclass(frozen=True)
class Box:
    """Inclusive box ``[lo, hi]`` with per-direction index type."""

    lo: IntVect
    hi: IntVect
    ixtype: IntVect = (0, 0, 0)

    def __post_init__(self) -> None:
        if len(self.lo) != SPACEDIM or len(self.hi) != SPACEDIM:
            raise ValueError(f"Box corners must have {SPACEDIM} entries")
        object.__setattr__(self, "lo", tuple(int(v) for v in self.lo))
        object.__setattr__(self, "hi", tuple(int(v) for v in self.hi))
        object.__setattr__(self, "ixtype", tuple(int(v) for v in self.ixtype))

    @property
    def shape(self) -> IntVect:
        return tuple(h - l + 1 for l, h in zip(self.lo, self.hi))

    @property
    def num_pts(self) -> int:
        return int(np.prod(self.shape))

    @property
    def cell_centered(self) -> bool:
        return self.ixtype == (0, 0, 0)

    def length(self, d: int) -> int:
        return self.hi[d] - self.lo[d] + 1

    def grow(self, n: int) -> "Box":
        return Box(
            tuple(l - n for l in self.lo),
            tuple(h + n for h in self.hi),
            self.ixtype,
        )

    def grow_dir(self, d: int, n: int) -> "Box":
        lo = list(self.lo)
        hi = list(self.hi)
        lo[d] -= n
        hi[d] += n
        return Box(tuple(lo), tuple(hi), self.ixtype)

    def surrounding_nodes(self, d: int) -> "Box":
        """Convert direction ``d`` from cells to the nodes bounding them."""
        if self.ixtype[d] == 1:
            return self
        hi = list(self.hi)
        hi[d] += 1
        ixtype = list(self.ixtype)
        ixtype[d] = 1
        return Box(self.lo, tuple(hi), tuple(ixtype))

    def enclosed_cells(self) -> "Box":
        """Inverse of ``surrounding_nodes`` in every nodal direction."""
        hi = tuple(h - t for h, t in zip(self.hi, self.ixtype))
        return Box(self.lo, hi, (0, 0, 0))

    def refine(self, ratio: int) -> "Box":
        if not self.cell_centered:
            raise ValueError("refine is only defined for cell-centered boxes")
        lo = tuple(l * ratio for l in self.lo)
        hi = tuple((h + 1) * ratio - 1 for h in self.hi)
        return Box(lo, hi)

    def contains(self, other: "Box") -> bool:
        return all(a <= b for a, b in zip(self.lo, other.lo)) and all(
            a >= b for a, b in zip(self.hi, other.hi)
        )

    def chop(self, max_size: int) -> List["Box"]:
        """Split the box into sub-blocks no longer than ``max_size`` per direction."""
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        ranges = []
        for d in range(SPACEDIM):
            starts = range(self.lo[d], self.hi[d] + 1, max_size)
            ranges.append([(s, min(s + max_size - 1, self.hi[d])) for s in starts])

        boxes = []
        for ri in ranges[0]:
            for rj in ranges[1]:
                for rk in ranges[2]:
                    boxes.append(
                        Box((ri[0], rj[0], rk[0]), (ri[1], rj[1], rk[1]), self.ixtype)
                    )
        return boxes


def bounding_box(boxes: List[Box]) -> Box:
    """Smallest box containing every box of the list."""
    if not boxes:
        raise ValueError("Cannot bound an empty list of boxes")
    lo = tuple(min(b.lo[d] for b in boxes) for d in range(SPACEDIM))
    hi = tuple(max(b.hi[d] for b in boxes) for d in range(SPACEDIM))
    return Box(lo, hi, boxes[0].ixtype)
