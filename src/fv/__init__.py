"""Finite-volume fields, operator and multigrid solver."""

from .fields import MultiField, make_face_fields
from .averaging import average_cellcenter_to_face, average_down
from .operator import DiffusionOperator, LinOpBCType, StencilLevel, assemble_stencil
from .multigrid import BottomSolver, MultigridConvergenceError, MultigridSolver

__all__ = [
    "MultiField",
    "make_face_fields",
    "average_cellcenter_to_face",
    "average_down",
    "DiffusionOperator",
    "LinOpBCType",
    "StencilLevel",
    "assemble_stencil",
    "BottomSolver",
    "MultigridConvergenceError",
    "MultigridSolver",
]
