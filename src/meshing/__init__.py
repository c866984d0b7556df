"""Block-structured mesh hierarchy and embedded-boundary geometry."""

from .box import Box, SPACEDIM, bounding_box
from .geometry import Geometry
from .hierarchy import MeshHierarchy, build_hierarchy
from .embedded import (
    AllRegularIF,
    CylinderIF,
    EBFactory,
    FabType,
    ImplicitFunction,
    build_eb_factories,
    build_eb_factory,
    create_implicit_function,
)

__all__ = [
    "Box",
    "SPACEDIM",
    "bounding_box",
    "Geometry",
    "MeshHierarchy",
    "build_hierarchy",
    "AllRegularIF",
    "CylinderIF",
    "EBFactory",
    "FabType",
    "ImplicitFunction",
    "build_eb_factories",
    "build_eb_factory",
    "create_implicit_function",
]
