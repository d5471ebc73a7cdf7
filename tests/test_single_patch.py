"""Tests for preconditioners/single_patch.py."""

import pytest
import torch

from torch_iga.core.boundary import BoundaryConditions
from torch_iga.core.errors import ConfigurationError
from torch_iga.core.options import AssemblerOptions, DirichletStrategy
from torch_iga.core.preconditioners import SinglePatchPreconditioners
from torch_iga.core.spline import (
    BSplineBasis,
    TensorBSplineBasis,
    assemble_mass_1d,
    assemble_stiffness_1d,
)


def dense(A):
    return A.to_dense()


@pytest.fixture
def line():
    """Degree 2, four uniform spans on [0, 1], Dirichlet at both ends."""
    basis = BSplineBasis.uniform(2, 4)
    bc = BoundaryConditions().add_dirichlet(0, "west").add_dirichlet(0, "east")
    return SinglePatchPreconditioners(basis, bc)


@pytest.fixture
def square():
    """Degree 2, one element per direction, Dirichlet on west and south."""
    basis = TensorBSplineBasis.uniform(2, 1, dim=2)
    bc = (
        BoundaryConditions()
        .add_dirichlet(0, "west")
        .add_dirichlet(0, "south")
        .add_neumann(0, "east")
        .add_neumann(0, "north")
    )
    return SinglePatchPreconditioners(basis, bc)


@pytest.fixture
def box():
    """Anisotropic 2D patch with Dirichlet on all sides of direction 0 and south."""
    basis = TensorBSplineBasis.uniform([2, 3], [3, 2])
    bc = BoundaryConditions().add_dirichlet(0, "west").add_dirichlet(0, "east").add_dirichlet(0, "south")
    return SinglePatchPreconditioners(basis, bc)


class TestOneDimensional:
    """Degree 2 on [0, 1] with homogeneous Dirichlet at both ends."""

    def test_reference_stiffness(self, line):
        expected = torch.tensor([
            [16 / 3, -2 / 3, -2 / 3, 0.0],
            [-2 / 3, 4.0, -4 / 3, -2 / 3],
            [-2 / 3, -4 / 3, 4.0, -2 / 3],
            [0.0, -2 / 3, -2 / 3, 16 / 3],
        ], dtype=torch.float64)
        assert line.free_sizes() == [4]
        assert torch.allclose(dense(line.stiffness_matrix()), expected)

    def test_fast_diagonalization_round_trip(self, line):
        A = dense(line.stiffness_matrix())
        x = torch.tensor([1.0, -2.0, 0.5, 3.0], dtype=torch.float64)
        fd = line.fast_diagonalization_op()
        assert (fd.rows(), fd.cols()) == (4, 4)
        assert float((fd.apply(A @ x) - x).abs().max()) <= 1e-10

    def test_free_dofs(self, line):
        assert line.free_dofs().tolist() == [1, 2, 3, 4]

    def test_mass_is_restricted_univariate_mass(self, line):
        M_full = dense(assemble_mass_1d(BSplineBasis.uniform(2, 4)))
        assert torch.allclose(dense(line.mass_matrix()), M_full[1:5, 1:5])

    def test_reaction_term(self, line):
        a = 3.0
        expected = dense(line.stiffness_matrix()) + a * dense(line.mass_matrix())
        assert torch.allclose(dense(line.stiffness_matrix(a)), expected)


class TestTwoDimensional:
    """Tensor-product operators in two directions."""

    def test_free_sizes_and_dofs(self, square):
        assert square.free_sizes() == [2, 2]
        # Full 3 x 3 grid, direction 0 fastest; row 0 and column 0 are eliminated
        assert square.free_dofs().tolist() == [4, 5, 7, 8]

    def test_mass_is_spd(self, square):
        M = dense(square.mass_matrix())
        assert M.shape == (4, 4)
        assert torch.allclose(M, M.T)
        assert bool((torch.linalg.eigvalsh(M) > 0).all())

    def test_stiffness_ordering(self, square):
        """stiffness_matrix(a) = M1 ⊗ S0 + S1 ⊗ M0 + a M1 ⊗ M0 on free DOFs."""
        basis = BSplineBasis.uniform(2, 1)
        free = [1, 2]
        M = dense(assemble_mass_1d(basis))[free][:, free]
        S = dense(assemble_stiffness_1d(basis))[free][:, free]
        a = 1.0
        expected = torch.kron(M, S) + torch.kron(S, M) + a * torch.kron(M, M)
        assert torch.allclose(dense(square.stiffness_matrix(a)), expected)

    def test_fast_diagonalization_matches_solve(self, square):
        A = dense(square.stiffness_matrix(1.0))
        b = torch.tensor([1.0, 2.0, -1.0, 0.5], dtype=torch.float64)
        fd = square.fast_diagonalization_op(1.0)
        assert torch.allclose(fd.apply(b), torch.linalg.solve(A, b), atol=1e-10)

    def test_stiffness_is_full_restriction(self, box):
        """Eliminating DOFs commutes with Kronecker assembly."""
        full = SinglePatchPreconditioners(
            TensorBSplineBasis.uniform([2, 3], [3, 2]), BoundaryConditions(),
        )
        free = box.free_dofs()
        A_full = dense(full.stiffness_matrix(0.5))
        assert torch.allclose(dense(box.stiffness_matrix(0.5)), A_full[free][:, free])


class TestMatrixFreeOperators:
    """Operators agree with assembled matrices."""

    def test_mass_op(self, box):
        M = dense(box.mass_matrix())
        op = box.mass_matrix_op()
        x = torch.linspace(-1.0, 1.0, M.shape[0], dtype=torch.float64)
        assert torch.allclose(op.apply(x), M @ x)

    @pytest.mark.parametrize("a", [0.0, 2.5])
    def test_stiffness_op(self, box, a):
        A = dense(box.stiffness_matrix(a))
        op = box.stiffness_matrix_op(a)
        X = torch.rand(A.shape[0], 3, generator=torch.Generator().manual_seed(0), dtype=torch.float64)
        assert (op.rows(), op.cols()) == A.shape
        assert torch.allclose(op.apply(X), A @ X)

    def test_mass_inverse_op(self, box):
        M = dense(box.mass_matrix())
        x = torch.linspace(0.0, 1.0, M.shape[0], dtype=torch.float64)
        assert torch.allclose(box.mass_matrix_inv_op().apply(M @ x), x, atol=1e-10)

    def test_fast_diagonalization_inverts_stiffness_op(self, box):
        op = box.stiffness_matrix_op(0.0)
        fd = box.fast_diagonalization_op(0.0)
        x = torch.linspace(0.0, 1.0, op.cols(), dtype=torch.float64)
        assert torch.allclose(fd.apply(op.apply(x)), x, atol=1e-10)

    def test_three_dimensional(self):
        basis = TensorBSplineBasis.uniform([1, 2, 2], [2, 2, 1])
        bc = BoundaryConditions().add_dirichlet(0, "west").add_dirichlet(0, "back")
        patch = SinglePatchPreconditioners(basis, bc)
        assert patch.free_sizes() == [2, 4, 2]
        A = dense(patch.stiffness_matrix(0.0))
        x = torch.linspace(-1.0, 1.0, A.shape[0], dtype=torch.float64)
        assert torch.allclose(patch.stiffness_matrix_op().apply(x), A @ x)
        assert torch.allclose(patch.fast_diagonalization_op().apply(A @ x), x, atol=1e-9)


class TestConfiguration:
    """Option handling and boundary condition validation."""

    def test_strategy_none_keeps_all_dofs(self):
        basis = TensorBSplineBasis.uniform(2, 2, dim=2)
        bc = BoundaryConditions().add_dirichlet(0, "west")
        patch = SinglePatchPreconditioners(basis, bc, DirichletStrategy.NONE)
        assert patch.free_sizes() == [4, 4]
        # Pure Neumann operator is singular without a reaction term
        with pytest.raises(ConfigurationError):
            patch.fast_diagonalization_op(0.0)
        patch.fast_diagonalization_op(1.0)

    def test_small_reaction_term_without_dirichlet(self):
        patch = SinglePatchPreconditioners(
            BSplineBasis.uniform(2, 64), BoundaryConditions(), DirichletStrategy.NONE,
        )
        fd = patch.fast_diagonalization_op(1e-6)
        assert (fd.rows(), fd.cols()) == (66, 66)
        assert float(fd.diagonal().min()) == pytest.approx(1e-6, rel=1e-3)

    def test_strategy_by_name_and_code(self):
        basis = BSplineBasis.uniform(2, 2)
        bc = BoundaryConditions()
        assert SinglePatchPreconditioners(basis, bc, "elimination").options.dirichlet_strategy \
            is DirichletStrategy.ELIMINATION
        assert SinglePatchPreconditioners(basis, bc, 0).options.dirichlet_strategy \
            is DirichletStrategy.NONE

    def test_options_are_copied(self):
        opts = AssemblerOptions(quB=2)
        patch = SinglePatchPreconditioners(BSplineBasis.uniform(2, 2), BoundaryConditions(), opts)
        opts.quB = 5
        assert patch.options.quB == 2

    def test_boundary_conditions_are_copied(self):
        bc = BoundaryConditions().add_dirichlet(0, "west")
        patch = SinglePatchPreconditioners(BSplineBasis.uniform(2, 2), bc)
        bc.add_dirichlet(0, "east")
        assert patch.free_sizes() == [3]

    @pytest.mark.parametrize("strategy", [
        DirichletStrategy.NITSCHE, DirichletStrategy.PENALIZE, DirichletStrategy.ELIMINATE_NORMAL,
    ])
    def test_unsupported_strategy_raises(self, strategy):
        with pytest.raises(ConfigurationError, match="not supported"):
            SinglePatchPreconditioners(BSplineBasis.uniform(2, 2), BoundaryConditions(), strategy)

    def test_invalid_strategy_raises(self):
        with pytest.raises(ConfigurationError, match="Invalid DirichletStrategy"):
            SinglePatchPreconditioners(BSplineBasis.uniform(2, 2), BoundaryConditions(), 42)

    def test_other_patch_raises(self):
        bc = BoundaryConditions().add_dirichlet(1, "west")
        with pytest.raises(ConfigurationError, match="refers to patch 1"):
            SinglePatchPreconditioners(BSplineBasis.uniform(2, 2), bc)

    def test_other_unknown_raises(self):
        bc = BoundaryConditions().add_dirichlet(0, "west", unknown=1)
        with pytest.raises(ConfigurationError, match="refers to unknown 1"):
            SinglePatchPreconditioners(BSplineBasis.uniform(2, 2), bc)

    def test_side_outside_dimension_raises(self):
        bc = BoundaryConditions().add_dirichlet(0, "north")
        with pytest.raises(ConfigurationError, match="does not exist for a 1-dimensional basis"):
            SinglePatchPreconditioners(BSplineBasis.uniform(2, 2), bc)

    def test_operators_outlive_factory(self):
        patch = SinglePatchPreconditioners(
            BSplineBasis.uniform(2, 4),
            BoundaryConditions().add_dirichlet(0, "west").add_dirichlet(0, "east"),
        )
        A = dense(patch.stiffness_matrix())
        fd = patch.fast_diagonalization_op()
        del patch
        x = torch.ones(4, dtype=torch.float64)
        assert torch.allclose(fd.apply(A @ x), x)

    def test_degenerate_knot_vector_raises(self):
        """An interior knot of multiplicity p+2 gives a zero basis function."""
        knots = torch.tensor([0, 0, 0, 0.5, 0.5, 0.5, 0.5, 1, 1, 1], dtype=torch.float64)
        patch = SinglePatchPreconditioners(BSplineBasis(knots, 2), BoundaryConditions())
        with pytest.raises(ConfigurationError, match="not positive definite"):
            patch.mass_matrix_inv_op()
        with pytest.raises(ConfigurationError, match="not positive definite"):
            patch.fast_diagonalization_op(1.0)
