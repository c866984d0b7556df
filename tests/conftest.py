"""Pytest configuration and fixtures for the diffusion solver tests."""

import sys
from pathlib import Path

import numpy as np
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from fv.fields import MultiField  # noqa: E402
from meshing import AllRegularIF, build_eb_factories, build_hierarchy  # noqa: E402


@pytest.fixture
def periodic_hierarchy():
    """Single 8x8x8 level, periodic everywhere, chopped into 4^3 sub-blocks."""
    return build_hierarchy(
        n_cell=(8, 8, 8),
        is_periodic=(True, True, True),
        max_grid_size=4,
    )


@pytest.fixture
def walled_hierarchy():
    """Single 8x8x2 level with walls in x and y, periodic in z."""
    return build_hierarchy(
        n_cell=(8, 8, 2),
        prob_hi=(1.0, 1.0, 0.25),
        is_periodic=(False, False, True),
        max_grid_size=4,
    )


@pytest.fixture
def regular_factories():
    """EB factories for a hierarchy with no embedded boundary."""

    def _make(hierarchy, ngrow=2):
        return build_eb_factories(hierarchy, AllRegularIF(), ngrow=ngrow)

    return _make


@pytest.fixture
def make_fields():
    """Build one MultiField per level, filled with a constant (ghosts included)."""

    def _make(hierarchy, ncomp=1, ngrow=1, value=0.0, factories=None):
        fields = []
        for lev in range(hierarchy.num_levels):
            factory = None if factories is None else factories[lev]
            mf = MultiField(hierarchy.grids[lev], ncomp, ngrow, factory=factory)
            mf.set_val(value, ngrow=ngrow)
            fields.append(mf)
        return fields

    return _make


@pytest.fixture
def tag_arrays():
    """Per-level boundary tag arrays for the six domain faces.

    Returns a dict keyed by face name ("ilo", ..., "khi").
    """

    def _make(n_cell, nghost, ilo=0, ihi=0, jlo=0, jhi=0, klo=0, khi=0):
        tags = {"ilo": ilo, "ihi": ihi, "jlo": jlo, "jhi": jhi, "klo": klo, "khi": khi}
        arrays = {}
        for d, (lo, hi) in enumerate((("ilo", "ihi"), ("jlo", "jhi"), ("klo", "khi"))):
            t1, t2 = [e for e in range(3) if e != d]
            shape = (n_cell[t1] + 2 * nghost, n_cell[t2] + 2 * nghost)
            for face in (lo, hi):
                arrays[face] = [np.full(shape, int(tags[face]), dtype=np.int32)]
        return arrays

    return _make


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
