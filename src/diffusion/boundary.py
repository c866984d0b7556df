"""Translation of physical boundary tags into operator boundary types."""

import logging
from enum import IntEnum
from typing import Sequence, Tuple

import numpy as np

from fv.operator import LinOpBCType
from meshing.box import SPACEDIM
from .errors import InvalidBoundaryError

log = logging.getLogger(__name__)


class BCTag(IntEnum):
    """Physical boundary codes stored in the per-face tag arrays."""

    UNDEFINED = 0
    PINF = 10  # pressure inflow
    POUT = 11  # pressure outflow
    MINF = 20  # mass inflow
    NSW = 100  # no-slip wall
    FSW = 101  # free-slip wall
    PSW = 102  # partial-slip wall


_TAG_TO_BC = {
    BCTag.PINF: LinOpBCType.NEUMANN,
    BCTag.POUT: LinOpBCType.NEUMANN,
    BCTag.FSW: LinOpBCType.NEUMANN,
    BCTag.MINF: LinOpBCType.DIRICHLET,
    BCTag.NSW: LinOpBCType.DIRICHLET,
}

_FACE_NAMES = (("ilo", "ihi"), ("jlo", "jhi"), ("klo", "khi"))


def representative_tag(bc_face: np.ndarray, nghost: int) -> int:
    """Tag of the first valid cell of a face array.

    Face arrays cover the two tangential directions of the domain grown by
    ``nghost``; a 3D array is ``(ncomp, m, n)`` with the type in component 0.
    """
    arr = np.asarray(bc_face)
    if arr.ndim == 3:
        arr = arr[0]
    if arr.ndim != 2:
        raise ValueError(f"Boundary tag array must be 2D or 3D, got shape {arr.shape}")
    return int(arr[nghost, nghost])


def translate_tag(tag: int, face: str) -> LinOpBCType:
    try:
        return _TAG_TO_BC[BCTag(tag)]
    except (KeyError, ValueError):
        log.error(f"Invalid boundary type {tag} on face {face}")
        raise InvalidBoundaryError(face, tag) from None


def set_diff_bc(
    geom,
    nghost: int,
    bc_ilo: np.ndarray,
    bc_ihi: np.ndarray,
    bc_jlo: np.ndarray,
    bc_jhi: np.ndarray,
    bc_klo: np.ndarray,
    bc_khi: np.ndarray,
) -> Tuple[Tuple[LinOpBCType, ...], Tuple[LinOpBCType, ...]]:
    """Operator boundary types of the six domain faces.

    Periodic directions map to PERIODIC on both sides. Otherwise inflow and
    outflow pressure faces and free-slip walls are NEUMANN, mass inflow and
    no-slip walls are DIRICHLET.

    Raises
    ------
    InvalidBoundaryError
        For any other tag on a non-periodic face.
    """
    faces: Sequence[Tuple[np.ndarray, np.ndarray]] = (
        (bc_ilo, bc_ihi),
        (bc_jlo, bc_jhi),
        (bc_klo, bc_khi),
    )
    periodic = geom.periodicity()

    bc_lo = []
    bc_hi = []
    for d in range(SPACEDIM):
        if periodic[d]:
            bc_lo.append(LinOpBCType.PERIODIC)
            bc_hi.append(LinOpBCType.PERIODIC)
            continue
        lo_name, hi_name = _FACE_NAMES[d]
        bc_lo.append(translate_tag(representative_tag(faces[d][0], nghost), lo_name))
        bc_hi.append(translate_tag(representative_tag(faces[d][1], nghost), hi_name))

    log.debug(
        f"Diffusion BCs: lo = {[bc.name for bc in bc_lo]}, hi = {[bc.name for bc in bc_hi]}"
    )
    return tuple(bc_lo), tuple(bc_hi)
