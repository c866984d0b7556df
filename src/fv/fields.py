"""Multi-component level fields with ghost cells.

A MultiField stores one mesh level's data in a single array covering the
level's bounding box plus ``ngrow`` ghost layers. The level's sub-blocks
(grids) are exposed as tiles for per-block work; since all sub-blocks share
one array, ghost values between neighbouring sub-blocks are always current and
``fill_boundary`` only has to handle the periodic wrap.

Layout:
- ``data`` has shape ``(ncomp, n0 + 2g, n1 + 2g, n2 + 2g)`` for cell data
- face data in direction ``d`` has one extra point along ``d`` (nodes 0..n)
- index ``i`` of the box maps to array index ``i - box.lo + ngrow``
"""

from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np

from meshing.box import Box, SPACEDIM, bounding_box


class MultiField:
    """Cell- or face-centered field on one level.

    Parameters
    ----------
    grids : list of Box
        Cell-centered sub-blocks of the level.
    ncomp : int
        Number of components.
    ngrow : int
        Number of ghost layers.
    nodal_dir : int, optional
        If given, the field lives on faces normal to this direction.
    factory : EBFactory, optional
        Embedded-boundary data of the level.
    """

    def __init__(
        self,
        grids: Sequence[Box],
        ncomp: int,
        ngrow: int,
        nodal_dir: Optional[int] = None,
        factory=None,
    ):
        if ncomp < 1:
            raise ValueError("ncomp must be >= 1")
        if ngrow < 0:
            raise ValueError("ngrow must be >= 0")
        if nodal_dir is not None and nodal_dir not in range(SPACEDIM):
            raise ValueError(f"nodal_dir must be in [0, {SPACEDIM})")

        self.grids: List[Box] = list(grids)
        self.ncomp = int(ncomp)
        self.ngrow = int(ngrow)
        self.nodal_dir = nodal_dir
        self.factory = factory

        self.cell_box = bounding_box(self.grids)
        if nodal_dir is None:
            self.box = self.cell_box
        else:
            self.box = self.cell_box.surrounding_nodes(nodal_dir)

        shape = tuple(n + 2 * self.ngrow for n in self.box.shape)
        self.data = np.zeros((self.ncomp,) + shape, dtype=np.float64)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    def tiles(self) -> Iterator[Box]:
        """Valid region of each sub-block, in this field's index type."""
        for grid in self.grids:
            if self.nodal_dir is None:
                yield grid
            else:
                yield grid.surrounding_nodes(self.nodal_dir)

    def _slices(self, box: Box) -> Tuple[slice, slice, slice]:
        full = self.box.grow(self.ngrow)
        if box.ixtype != self.box.ixtype:
            raise ValueError(f"Index type mismatch: {box.ixtype} vs {self.box.ixtype}")
        if not full.contains(box):
            raise ValueError(f"{box} lies outside the field region {full}")
        return tuple(
            slice(box.lo[d] - full.lo[d], box.hi[d] - full.lo[d] + 1)
            for d in range(SPACEDIM)
        )

    def view(self, box: Optional[Box] = None, comp=slice(None)) -> np.ndarray:
        """Writable view of ``box`` (default: valid region) for ``comp``."""
        if box is None:
            box = self.box
        return self.data[(comp,) + self._slices(box)]

    def valid(self, comp=slice(None)) -> np.ndarray:
        return self.view(self.box, comp)

    def grown(self, ngrow: int, comp=slice(None)) -> np.ndarray:
        return self.view(self.box.grow(ngrow), comp)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def set_val(self, value: float, comp: int = 0, ncomp: Optional[int] = None,
                ngrow: int = 0, box: Optional[Box] = None) -> None:
        ncomp = self.ncomp - comp if ncomp is None else ncomp
        region = self.box.grow(ngrow) if box is None else box
        self.view(region, slice(comp, comp + ncomp))[...] = value

    @staticmethod
    def _check_compatible(dst: "MultiField", src: "MultiField", nghost: int) -> Box:
        if dst.box != src.box:
            raise ValueError(f"Incompatible fields: {dst.box} vs {src.box}")
        if nghost > min(dst.ngrow, src.ngrow):
            raise ValueError(
                f"nghost={nghost} exceeds ghost width (dst={dst.ngrow}, src={src.ngrow})"
            )
        return dst.box.grow(nghost)

    @staticmethod
    def copy(dst: "MultiField", src: "MultiField", srccomp: int, dstcomp: int,
             numcomp: int, nghost: int) -> None:
        """dst[dstcomp:dstcomp+numcomp] = src[srccomp:srccomp+numcomp] on valid + nghost."""
        region = MultiField._check_compatible(dst, src, nghost)
        dst.view(region, slice(dstcomp, dstcomp + numcomp))[...] = src.view(
            region, slice(srccomp, srccomp + numcomp)
        )

    @staticmethod
    def multiply(dst: "MultiField", src: "MultiField", srccomp: int, dstcomp: int,
                 numcomp: int, nghost: int) -> None:
        """dst[dstcomp:...] *= src[srccomp:...] on valid + nghost."""
        region = MultiField._check_compatible(dst, src, nghost)
        dst.view(region, slice(dstcomp, dstcomp + numcomp))[...] *= src.view(
            region, slice(srccomp, srccomp + numcomp)
        )

    # ------------------------------------------------------------------
    # Ghost cells
    # ------------------------------------------------------------------

    def fill_boundary(self, periodicity: Sequence[bool]) -> None:
        """Fill ghost cells across periodic domain faces.

        Every ghost layer takes its periodic image, so the ghost width may
        exceed the number of cells in a periodic direction. Ghost cells
        outside non-periodic faces are left untouched.
        """
        g = self.ngrow
        for d in range(SPACEDIM):
            if not periodicity[d]:
                continue
            # Period is n cells; node n of a face field is node 0
            n = self.cell_box.length(d)
            npts = self.box.length(d)
            src = g + np.mod(np.arange(-g, npts + g), n)
            self.data[...] = np.take(self.data, src, axis=d + 1)


def make_face_fields(grids: Sequence[Box], ncomp: int, ngrow: int, factory=None) -> List[MultiField]:
    """One face-centered MultiField per direction."""
    return [
        MultiField(grids, ncomp, ngrow, nodal_dir=d, factory=factory)
        for d in range(SPACEDIM)
    ]
