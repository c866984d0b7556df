"""Velocity of a rotating embedded boundary."""

import numpy as np

from fv.fields import MultiField
from meshing.embedded import EBFactory, FabType


def compute_eb_velocity(vel_eb: MultiField, factory: EBFactory, geom, cyl_speed: float) -> None:
    """Tangential surface velocity of a body rotating with speed ``cyl_speed``.

    For a cut cell with boundary normal ``n``, ``theta = atan2(-n_y, -n_x)``
    and the velocity is ``(s sin(theta), -s cos(theta), 0)``. Sub-blocks with
    no cut cell, and non-cut cells of a cut sub-block, get the zero vector.
    """
    for bx in vel_eb.tiles():
        out = vel_eb.view(bx)
        fab_type = factory.get_type(bx)
        if fab_type in (FabType.COVERED, FabType.REGULAR):
            out[...] = 0.0
            continue

        normal = factory.bndry_normal(bx)
        cut = factory.cut_mask(bx)
        theta = np.arctan2(-normal[1], -normal[0])
        out[0] = np.where(cut, cyl_speed * np.sin(theta), 0.0)
        out[1] = np.where(cut, -cyl_speed * np.cos(theta), 0.0)
        out[2] = 0.0

    vel_eb.fill_boundary(geom.periodicity())
