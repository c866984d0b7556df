"""Implicit viscous diffusion of the velocity field on EB mesh hierarchies."""

from .boundary import BCTag, set_diff_bc
from .datastructures import DiffusionParameters, SolveHistory, SolveMetrics
from .eb_velocity import compute_eb_velocity
from .equation import DiffusionEquation
from .errors import DiffusionError, InvalidBoundaryError, UnsupportedOperationError

__all__ = [
    "BCTag",
    "set_diff_bc",
    "DiffusionParameters",
    "SolveHistory",
    "SolveMetrics",
    "compute_eb_velocity",
    "DiffusionEquation",
    "DiffusionError",
    "InvalidBoundaryError",
    "UnsupportedOperationError",
]
