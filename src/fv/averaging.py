"""Averaging between cell centers, faces and levels."""

import logging
from typing import Sequence

import numpy as np

from meshing.box import SPACEDIM
from .fields import MultiField
from .transfer import block_sum, restrict

log = logging.getLogger(__name__)


def average_cellcenter_to_face(faces: Sequence[MultiField], cc: MultiField, geom) -> None:
    """Arithmetic mean of the two cells adjacent to every valid face.

    ``cc`` needs at least one ghost layer holding valid neighbour data
    (periodic images or boundary values) for the faces on the domain boundary.
    """
    if len(faces) != SPACEDIM:
        raise ValueError(f"Expected {SPACEDIM} face fields, got {len(faces)}")
    if cc.ngrow < 1:
        raise ValueError("Cell-centered field needs at least 1 ghost cell for face averaging")
    if cc.box != geom.domain:
        raise ValueError(f"Field box {cc.box} does not match level domain {geom.domain}")

    for d, face in enumerate(faces):
        if face.nodal_dir != d:
            raise ValueError(f"Face field {d} is not normal to direction {d}")
        ncomp = min(face.ncomp, cc.ncomp)
        cells = cc.view(cc.box.grow_dir(d, 1), slice(0, ncomp))
        axis = d + 1
        n = cells.shape[axis]
        left = np.take(cells, np.arange(0, n - 1), axis=axis)
        right = np.take(cells, np.arange(1, n), axis=axis)
        face.valid(slice(0, ncomp))[...] = 0.5 * (left + right)


def average_down(fine: MultiField, crse: MultiField, ratio: int = 2, fine_factory=None) -> None:
    """Replace coarse valid data by the average of the covering fine cells.

    With an EB factory the average is weighted by the fine volume fractions;
    coarse cells whose fine cells are all covered are set to zero.
    """
    if fine.ncomp != crse.ncomp:
        raise ValueError("average_down needs matching component counts")
    if fine.box.shape != tuple(n * ratio for n in crse.box.shape):
        raise ValueError(f"Fine box {fine.box} is not a {ratio}x refinement of {crse.box}")

    r = (ratio,) * SPACEDIM
    # Spatial axes leading so the transfer helpers apply
    fdata = np.moveaxis(fine.valid(), 0, -1)

    if fine_factory is None or fine_factory.is_all_regular():
        crse.valid()[...] = np.moveaxis(restrict(fdata, r), -1, 0)
        return

    vf = fine_factory.volume_fraction(fine.box)
    weight = block_sum(vf, r)
    weighted = block_sum(fdata * vf[..., None], r)
    with np.errstate(invalid="ignore", divide="ignore"):
        avg = np.where(weight[..., None] > 0.0, weighted / weight[..., None], 0.0)
    crse.valid()[...] = np.moveaxis(avg, -1, 0)
    log.debug(f"EB average_down onto {crse.box.shape}")
