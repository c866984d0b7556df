"""Tests for the finite-volume diffusion operator."""

import numpy as np
import pytest

from fv.fields import MultiField, make_face_fields
from fv.operator import DiffusionOperator, LinOpBCType, StencilLevel
from meshing import Box, EBFactory, build_hierarchy

P = LinOpBCType.PERIODIC
D = LinOpBCType.DIRICHLET
N = LinOpBCType.NEUMANN
R = LinOpBCType.REFLECT_ODD
I = LinOpBCType.INFLOW


def make_operator(hierarchy, bc_lo, bc_hi, factories=None, ncomp=1, max_order=2, **kwargs):
    op = DiffusionOperator(hierarchy.geom, hierarchy.grids, factories, ncomp=ncomp, **kwargs)
    op.set_max_order(max_order)
    op.set_domain_bc(bc_lo, bc_hi)
    return op


def constant_field(hierarchy, value, ncomp=1, ngrow=1):
    mf = MultiField(hierarchy.grids[0], ncomp, ngrow)
    mf.set_val(value, ngrow=ngrow)
    return mf


@pytest.fixture
def line_hierarchy():
    """Four cells along x with walls, periodic (single-cell) y and z."""
    return build_hierarchy(
        n_cell=(4, 1, 1), prob_hi=(1.0, 0.25, 0.25), is_periodic=(False, True, True)
    )


class TestConfiguration:
    def test_invalid_max_order(self, periodic_hierarchy):
        op = DiffusionOperator(periodic_hierarchy.geom, periodic_hierarchy.grids)
        with pytest.raises(ValueError):
            op.set_max_order(4)

    def test_periodicity_mismatch(self, periodic_hierarchy):
        op = DiffusionOperator(periodic_hierarchy.geom, periodic_hierarchy.grids)
        with pytest.raises(ValueError):
            op.set_domain_bc((D, P, P), (D, P, P))

    def test_interior_rejected(self, walled_hierarchy):
        op = DiffusionOperator(walled_hierarchy.geom, walled_hierarchy.grids)
        with pytest.raises(ValueError):
            op.set_domain_bc((LinOpBCType.INTERIOR, D, P), (D, D, P))

    def test_integer_bc_values_accepted(self, walled_hierarchy):
        op = DiffusionOperator(walled_hierarchy.geom, walled_hierarchy.grids)
        op.set_domain_bc((101, 102, 200), (101, 102, 200))
        assert op.bc_lo == (D, N, P)

    def test_assemble_requires_bc(self, periodic_hierarchy):
        op = DiffusionOperator(periodic_hierarchy.geom, periodic_hierarchy.grids)
        with pytest.raises(ValueError):
            op.assemble(op.stencil(0))

    def test_level_bc_needs_ghost(self, periodic_hierarchy):
        op = make_operator(periodic_hierarchy, (P, P, P), (P, P, P))
        with pytest.raises(ValueError):
            op.set_level_bc(0, constant_field(periodic_hierarchy, 1.0, ngrow=0))


class TestStencil:
    def test_constant_field_periodic(self, periodic_hierarchy):
        op = make_operator(periodic_hierarchy, (P, P, P), (P, P, P))
        op.set_scalars(1.0, 0.5)
        op.set_a_coeffs(0, constant_field(periodic_hierarchy, 2.0))

        out = op.apply(0, constant_field(periodic_hierarchy, 3.0))

        np.testing.assert_allclose(out, 6.0, atol=1e-12)

    def test_constant_field_neumann(self, walled_hierarchy):
        op = make_operator(walled_hierarchy, (N, N, P), (N, N, P))
        op.set_scalars(1.0, 2.0)
        op.set_a_coeffs(0, constant_field(walled_hierarchy, 0.5))

        out = op.apply(0, constant_field(walled_hierarchy, 4.0))

        np.testing.assert_allclose(out, 2.0, atol=1e-12)

    def test_second_order_matrix_is_symmetric(self, walled_hierarchy):
        op = make_operator(walled_hierarchy, (D, N, P), (D, N, P))
        A, _ = op.assemble(op.stencil(0))
        assert abs(A - A.T).max() < 1e-12

    @pytest.mark.parametrize("max_order,diag,off", [(2, 48.0, -16.0), (3, 64.0, -16.0 - 16.0 / 3.0)])
    def test_dirichlet_boundary_row(self, line_hierarchy, max_order, diag, off):
        op = make_operator(line_hierarchy, (D, P, P), (D, P, P), max_order=max_order)
        op.set_scalars(1.0, 1.0)
        A, _ = op.assemble(op.stencil(0))
        assert A[0, 0] == pytest.approx(diag)
        assert A[0, 1] == pytest.approx(off)
        assert A[1, 1] == pytest.approx(32.0)

    def test_reflect_odd_ignores_boundary_data(self, line_hierarchy):
        op = make_operator(line_hierarchy, (R, P, P), (D, P, P))
        op.set_scalars(1.0, 1.0)
        op.set_level_bc(0, constant_field(line_hierarchy, 5.0))
        A, terms = op.assemble(op.stencil(0))
        rhs = op.boundary_rhs(0, terms)

        assert A[0, 0] == pytest.approx(48.0)
        assert rhs[0, 0] == 0.0
        assert rhs[3, 0] == pytest.approx(2.0 * 16.0 * 5.0)

    @pytest.mark.parametrize("max_order", [2, 3])
    def test_inflow_matches_dirichlet(self, line_hierarchy, rng, max_order):
        bc = MultiField(line_hierarchy.grids[0], 1, 1)
        bc.data[...] = rng.standard_normal(bc.data.shape)

        results = []
        for bctype in (D, I):
            op = make_operator(line_hierarchy, (bctype, P, P), (bctype, P, P), max_order=max_order)
            op.set_scalars(1.0, 0.5)
            op.set_level_bc(0, bc)
            A, terms = op.assemble(op.stencil(0))
            results.append((A.toarray(), op.boundary_rhs(0, terms)))

        np.testing.assert_array_equal(results[0][0], results[1][0])
        np.testing.assert_array_equal(results[0][1], results[1][1])

    @pytest.mark.parametrize("max_order", [2, 3])
    def test_linear_profile_is_exact(self, line_hierarchy, max_order):
        op = make_operator(line_hierarchy, (D, P, P), (D, P, P), max_order=max_order)
        geom = line_hierarchy.geom[0]
        phi = MultiField(line_hierarchy.grids[0], 1, 1)
        X, _, _ = geom.cell_centers(phi.box.grow(1))
        phi.data[0] = X
        # Ghosts hold the wall values
        phi.data[0, 0] = 0.0
        phi.data[0, -1] = 1.0
        op.set_level_bc(0, phi)

        np.testing.assert_allclose(op.apply(0, phi), 0.0, atol=1e-10)

    def test_third_order_quadratic_is_exact(self, line_hierarchy):
        op = make_operator(line_hierarchy, (D, P, P), (D, P, P), max_order=3)
        geom = line_hierarchy.geom[0]
        phi = MultiField(line_hierarchy.grids[0], 1, 1)
        X, _, _ = geom.cell_centers(phi.box.grow(1))
        phi.data[0] = X**2
        phi.data[0, 0] = 0.0
        phi.data[0, -1] = 1.0
        op.set_level_bc(0, phi)

        np.testing.assert_allclose(op.apply(0, phi), -2.0, atol=1e-9)

    def test_face_coefficients_scale_flux(self, line_hierarchy):
        op = make_operator(line_hierarchy, (N, P, P), (N, P, P))
        faces = make_face_fields(line_hierarchy.grids[0], 1, 0)
        for face in faces:
            face.set_val(3.0)
        op.set_shear_viscosity(0, faces)
        A, _ = op.assemble(op.stencil(0))
        assert A[1, 2] == pytest.approx(-48.0)

    def test_multi_component_apply(self, periodic_hierarchy, rng):
        op = make_operator(periodic_hierarchy, (P, P, P), (P, P, P), ncomp=3)
        op.set_a_coeffs(0, constant_field(periodic_hierarchy, 1.0))
        phi = MultiField(periodic_hierarchy.grids[0], 3, 1)
        phi.valid()[...] = rng.standard_normal(phi.valid().shape)

        out = op.apply(0, phi)

        for c in range(3):
            single = make_operator(periodic_hierarchy, (P, P, P), (P, P, P))
            single.set_a_coeffs(0, constant_field(periodic_hierarchy, 1.0))
            ref = MultiField(periodic_hierarchy.grids[0], 1, 1)
            ref.valid(0)[...] = phi.valid(c)
            np.testing.assert_allclose(out[c], single.apply(0, ref)[0], atol=1e-10)


class TestEmbeddedWalls:
    @pytest.fixture
    def holed(self, periodic_hierarchy):
        geom = periodic_hierarchy.geom[0]
        volfrac = np.ones((10, 10, 10))
        volfrac[2, 2, 2] = 0.0  # cell (1, 1, 1) with one ghost layer
        factory = EBFactory(geom=geom, ngrow=1, volfrac=volfrac, normal=np.zeros((3, 10, 10, 10)))
        op = make_operator(periodic_hierarchy, (P, P, P), (P, P, P), factories=[factory])
        op.set_scalars(1.0, 1.0)
        op.set_eb_shear_viscosity(0, constant_field(periodic_hierarchy, 1.0))
        return op

    def test_covered_row_is_identity(self, holed):
        A, _ = holed.assemble(holed.stencil(0))
        idx = np.ravel_multi_index((1, 1, 1), (8, 8, 8))
        row = A.getrow(idx).toarray().ravel()
        assert row[idx] == 1.0
        assert np.count_nonzero(row) == 1

    def test_neighbour_sees_wall(self, holed):
        A, _ = holed.assemble(holed.stencil(0))
        shape = (8, 8, 8)
        covered = np.ravel_multi_index((1, 1, 1), shape)
        nbr = np.ravel_multi_index((0, 1, 1), shape)
        c = 1.0 / 0.125**2
        assert A[nbr, covered] == 0.0
        assert A[nbr, nbr] == pytest.approx(5.0 * c + 2.0 * c)

    def test_eb_dirichlet_values_enter_rhs(self, holed, periodic_hierarchy):
        values = constant_field(periodic_hierarchy, 2.0, ngrow=0)
        holed.set_eb_dirichlet(0, values)
        _, terms = holed.assemble(holed.stencil(0))
        rhs = holed.boundary_rhs(0, terms)

        c = 1.0 / 0.125**2
        nbr = np.ravel_multi_index((0, 1, 1), (8, 8, 8))
        assert rhs[nbr, 0] == pytest.approx(2.0 * c * 2.0)
        assert np.count_nonzero(rhs) == 6

        holed.set_eb_homog_dirichlet(0)
        assert not np.any(holed.boundary_rhs(0, terms))

    def test_covered_output_is_zero(self, holed, periodic_hierarchy):
        out = holed.apply(0, constant_field(periodic_hierarchy, 1.0))
        assert out[0, 1, 1, 1] == 0.0


class TestCoarsening:
    def test_chain_shapes(self, periodic_hierarchy):
        op = make_operator(periodic_hierarchy, (P, P, P), (P, P, P))
        shapes = [s.shape for s, _ in op.coarsening_chain(0)]
        assert shapes == [(8, 8, 8), (4, 4, 4), (2, 2, 2), (1, 1, 1)]

    def test_chain_respects_max_coarsening(self, periodic_hierarchy):
        op = make_operator(periodic_hierarchy, (P, P, P), (P, P, P), max_coarsening_level=1)
        chain = op.coarsening_chain(0)
        assert len(chain) == 2
        assert chain[-1][1] is None

    def test_odd_size_stops_coarsening(self):
        h = build_hierarchy(n_cell=(6, 4, 1), is_periodic=(True, True, True))
        op = make_operator(h, (P, P, P), (P, P, P))
        shapes = [s.shape for s, _ in op.coarsening_chain(0)]
        assert shapes == [(6, 4, 1), (3, 2, 1)]

    def test_covered_only_if_all_fine_covered(self):
        covered = np.zeros((4, 4, 4), dtype=bool)
        covered[:2, :2, :2] = True
        covered[2, 2, 2] = True
        level = StencilLevel(
            dx=(0.25, 0.25, 0.25),
            a=np.ones((4, 4, 4)),
            b=[np.ones((5, 4, 4)), np.ones((4, 5, 4)), np.ones((4, 4, 5))],
            eb_b=np.ones((4, 4, 4)),
            covered=covered,
            is_periodic=(True, True, True),
        )
        crse = level.coarsen((2, 2, 2))
        assert crse.covered[0, 0, 0]
        assert not crse.covered[1, 1, 1]
        assert crse.b[0].shape == (3, 2, 2)
        assert crse.dx == (0.5, 0.5, 0.5)


class TestFillSolutionBC:
    def test_dirichlet_extrapolation(self, line_hierarchy):
        op = make_operator(line_hierarchy, (D, P, P), (N, P, P), max_order=3)
        geom = line_hierarchy.geom[0]
        bc = MultiField(line_hierarchy.grids[0], 1, 1)
        op.set_level_bc(0, bc)

        phi = MultiField(line_hierarchy.grids[0], 1, 1)
        X, _, _ = geom.cell_centers(phi.box)
        phi.valid(0)[...] = X
        op.fill_solution_bc(0, phi)

        # Linear profile through zero at the wall, zero gradient at the outlet
        assert phi.data[0, 0, 1, 1] == pytest.approx(-0.125)
        assert phi.data[0, -1, 1, 1] == pytest.approx(phi.data[0, -2, 1, 1])

    def test_reflect_odd_mirrors_solution(self, line_hierarchy):
        op = make_operator(line_hierarchy, (R, P, P), (I, P, P))
        op.set_level_bc(0, constant_field(line_hierarchy, 2.0))

        phi = MultiField(line_hierarchy.grids[0], 1, 1)
        phi.valid(0)[...] = np.arange(1.0, 5.0)[:, None, None]
        op.fill_solution_bc(0, phi)

        # odd reflection through zero; the inflow ghost uses the prescribed value
        assert phi.data[0, 0, 1, 1] == pytest.approx(-1.0)
        assert phi.data[0, -1, 1, 1] == pytest.approx(2.0 * 2.0 - 4.0)
