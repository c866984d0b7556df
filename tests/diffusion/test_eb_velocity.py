"""Tests for the rotating embedded-boundary velocity."""

import numpy as np
import pytest

from diffusion import compute_eb_velocity
from fv.fields import MultiField
from meshing import CylinderIF, EBFactory, build_eb_factory, build_hierarchy


@pytest.fixture
def small_level():
    h = build_hierarchy(n_cell=(4, 4, 4), is_periodic=(True, True, True), max_grid_size=2)
    return h.geom[0], h.grids[0]


def uniform_factory(geom, volfrac, normal):
    """Factory with the same volume fraction and normal in every cell."""
    shape = tuple(n + 2 for n in geom.domain.shape)
    vf = np.full(shape, volfrac)
    nrm = np.zeros((3,) + shape)
    for d in range(3):
        nrm[d] = normal[d]
    return EBFactory(geom=geom, ngrow=1, volfrac=vf, normal=nrm)


class TestEBVelocity:
    def test_regular_blocks_are_zero(self, small_level):
        geom, grids = small_level
        factory = uniform_factory(geom, 1.0, (0.0, 0.0, 0.0))
        vel = MultiField(grids, 3, 2)
        vel.set_val(9.0)

        compute_eb_velocity(vel, factory, geom, cyl_speed=5.0)

        assert np.all(vel.data == 0.0)

    def test_covered_blocks_are_zero(self, small_level):
        geom, grids = small_level
        factory = uniform_factory(geom, 0.0, (1.0, 0.0, 0.0))
        vel = MultiField(grids, 3, 1)
        vel.set_val(9.0)

        compute_eb_velocity(vel, factory, geom, cyl_speed=5.0)

        assert np.all(vel.valid() == 0.0)

    @pytest.mark.parametrize(
        "normal,expected",
        [
            ((1.0, 0.0, 0.0), (0.0, 2.0, 0.0)),
            ((-1.0, 0.0, 0.0), (0.0, -2.0, 0.0)),
            ((0.0, 1.0, 0.0), (-2.0, 0.0, 0.0)),
            ((0.0, -1.0, 0.0), (2.0, 0.0, 0.0)),
        ],
    )
    def test_cut_cell_formula(self, small_level, normal, expected):
        geom, grids = small_level
        factory = uniform_factory(geom, 0.5, normal)
        vel = MultiField(grids, 3, 1)

        compute_eb_velocity(vel, factory, geom, cyl_speed=2.0)

        for c in range(3):
            np.testing.assert_allclose(vel.valid(c), expected[c], atol=1e-12)

    def test_non_cut_cells_in_cut_block(self, small_level):
        geom, grids = small_level
        factory = uniform_factory(geom, 1.0, (0.0, 0.0, 0.0))
        # One cut cell at (0, 0, 0) in the first 2^3 sub-block
        factory.volfrac[1, 1, 1] = 0.5
        factory.normal[:, 1, 1, 1] = (1.0, 0.0, 0.0)
        vel = MultiField(grids, 3, 1)

        compute_eb_velocity(vel, factory, geom, cyl_speed=3.0)

        assert vel.valid(1)[0, 0, 0] == pytest.approx(3.0)
        assert np.count_nonzero(np.abs(vel.valid()) > 1e-12) == 1

    def test_ghosts_are_exchanged(self, small_level):
        geom, grids = small_level
        factory = uniform_factory(geom, 1.0, (0.0, 0.0, 0.0))
        factory.volfrac[4, 1:5, 1:5] = 0.5  # cut plane i = 3
        factory.normal[0, 4, 1:5, 1:5] = 1.0
        vel = MultiField(grids, 3, 1)

        compute_eb_velocity(vel, factory, geom, cyl_speed=1.0)

        # Ghost below i = 0 wraps to i = 3
        np.testing.assert_allclose(vel.data[1, 0, 1:-1, 1:-1], 1.0)

    def test_cylinder_velocity_is_tangential(self):
        h = build_hierarchy(n_cell=(32, 32, 1), prob_hi=(1.0, 1.0, 1.0 / 32), is_periodic=(False, False, True))
        geom = h.geom[0]
        factory = build_eb_factory(geom, CylinderIF(radius=0.2, center=(0.5, 0.5, 0.0)), ngrow=1)
        vel = MultiField(h.grids[0], 3, 1)

        compute_eb_velocity(vel, factory, geom, cyl_speed=1.5)

        cut = factory.cut_mask(geom.domain)
        normal = factory.bndry_normal(geom.domain)
        v = vel.valid()
        speed = np.sqrt(v[0] ** 2 + v[1] ** 2)
        dot = v[0] * normal[0] + v[1] * normal[1]

        np.testing.assert_allclose(speed[cut], 1.5, rtol=1e-6)
        np.testing.assert_allclose(dot[cut], 0.0, atol=1e-6)
        assert np.all(v[:, ~cut] == 0.0)
        assert np.all(v[2] == 0.0)
