"""Exceptions raised by the implicit diffusion solve."""


class DiffusionError(Exception):
    """Base class for diffusion solve errors."""


class InvalidBoundaryError(DiffusionError, ValueError):
    """A domain face carries a boundary tag with no diffusion equivalent."""

    def __init__(self, face: str, tag: int):
        self.face = face
        self.tag = tag
        super().__init__(f"Invalid boundary type {tag} on face {face} for the diffusion solve")


class UnsupportedOperationError(DiffusionError, NotImplementedError):
    """The requested operation is not available."""
