"""Tests for preconditioners/fast_diagonalization.py."""

import math

import pytest
import torch

from torch_iga.core.errors import ConfigurationError, DimensionMismatchError, NumericalDegeneracyError
from torch_iga.core.preconditioners import FastDiagonalizationOperator
from torch_iga.core.preconditioners.fast_diagonalization import generalized_eigh
from torch_iga.core.spline import BSplineBasis, assemble_mass_1d, assemble_stiffness_1d, restrict


def dirichlet_pencil(degree=2, n_elements=5):
    """1D stiffness and mass with both end functions removed."""
    basis = BSplineBasis.uniform(degree, n_elements)
    free = torch.arange(1, basis.size() - 1)
    S = restrict(assemble_stiffness_1d(basis), free, free).to_dense()
    M = restrict(assemble_mass_1d(basis), free, free).to_dense()
    return S, M


class TestGeneralizedEigh:
    """Tests for the symmetric-definite generalized eigensolver."""

    def test_mass_orthonormal_and_diagonalizing(self):
        S, M = dirichlet_pencil()
        lam, Q = generalized_eigh(S, M)
        n = S.shape[0]
        assert torch.allclose(Q.T @ M @ Q, torch.eye(n, dtype=torch.float64), atol=1e-10)
        assert torch.allclose(Q.T @ S @ Q, torch.diag(lam), atol=1e-8)

    def test_ascending_positive(self):
        S, M = dirichlet_pencil(3, 6)
        lam, _ = generalized_eigh(S, M)
        assert bool((lam[1:] >= lam[:-1]).all())
        assert float(lam[0]) > 0

    def test_smallest_eigenvalue_approximates_laplacian(self):
        """-u'' = λ u on (0, 1) with u(0) = u(1) = 0 has λ_min = π²."""
        S, M = dirichlet_pencil(3, 16)
        lam, _ = generalized_eigh(S, M)
        assert float(lam[0]) == pytest.approx(math.pi ** 2, rel=1e-4)

    def test_sign_convention(self):
        """The largest-magnitude entry of every eigenvector is positive."""
        S, M = dirichlet_pencil()
        _, Q = generalized_eigh(S, M)
        pivot = Q.abs().argmax(dim=0)
        assert bool((Q.gather(0, pivot.unsqueeze(0)) > 0).all())

    def test_accepts_sparse(self):
        basis = BSplineBasis.uniform(2, 3)
        lam_sparse, _ = generalized_eigh(assemble_stiffness_1d(basis), assemble_mass_1d(basis))
        lam_dense, _ = generalized_eigh(
            assemble_stiffness_1d(basis).to_dense(), assemble_mass_1d(basis).to_dense(),
        )
        assert torch.allclose(lam_sparse, lam_dense)

    def test_empty(self):
        lam, Q = generalized_eigh(
            torch.zeros(0, 0, dtype=torch.float64), torch.zeros(0, 0, dtype=torch.float64),
        )
        assert lam.numel() == 0 and Q.shape == (0, 0)

    def test_singular_mass_raises(self):
        """A repeated interior knot of multiplicity p+2 gives a zero basis function."""
        knots = torch.tensor([0, 0, 0, 0.5, 0.5, 0.5, 0.5, 1, 1, 1], dtype=torch.float64)
        basis = BSplineBasis(knots, 2)
        with pytest.raises(ConfigurationError, match="not positive definite"):
            generalized_eigh(assemble_stiffness_1d(basis), assemble_mass_1d(basis))

    def test_shape_mismatch_raises(self):
        with pytest.raises(DimensionMismatchError, match="Pencil"):
            generalized_eigh(torch.eye(2, dtype=torch.float64), torch.eye(3, dtype=torch.float64))

    def test_eigensolver_failure_raises(self, monkeypatch):
        def failing_eigh(*args, **kwargs):
            raise torch.linalg.LinAlgError("eigh did not converge")

        S, M = dirichlet_pencil()
        monkeypatch.setattr(torch.linalg, "eigh", failing_eigh)
        with pytest.raises(NumericalDegeneracyError, match="Eigensolver failed") as excinfo:
            generalized_eigh(S, M)
        assert isinstance(excinfo.value.__cause__, torch.linalg.LinAlgError)


class TestFastDiagonalizationOperator:
    """Tests for the Kronecker-sum inverse."""

    def test_1d_inverse(self):
        S, M = dirichlet_pencil()
        fd = FastDiagonalizationOperator.from_pencils([S], [M], shift=0.5)
        A = S + 0.5 * M
        x = torch.linspace(0.0, 1.0, S.shape[0], dtype=torch.float64)
        assert torch.allclose(fd.apply(A @ x), x, atol=1e-10)

    def test_2d_inverse_matches_dense_solve(self):
        """Direction 0 runs fastest: S = M1 ⊗ S0 + S1 ⊗ M0 + a M1 ⊗ M0."""
        S0, M0 = dirichlet_pencil(2, 3)
        S1, M1 = dirichlet_pencil(3, 2)
        a = 2.0
        A = torch.kron(M1, S0) + torch.kron(S1, M0) + a * torch.kron(M1, M0)
        fd = FastDiagonalizationOperator.from_pencils([S0, S1], [M0, M1], shift=a)
        assert fd.rows() == fd.cols() == A.shape[0]

        gen = torch.Generator().manual_seed(3)
        b = torch.rand(A.shape[0], 2, generator=gen, dtype=torch.float64)
        assert torch.allclose(fd.apply(b), torch.linalg.solve(A, b), atol=1e-10)

    def test_diagonal_layout(self):
        """Λ[i0 + n0 * i1] = λ0[i0] + λ1[i1] + a."""
        S0, M0 = dirichlet_pencil(2, 3)
        S1, M1 = dirichlet_pencil(2, 4)
        fd = FastDiagonalizationOperator.from_pencils([S0, S1], [M0, M1], shift=1.0)
        lam0, lam1 = fd.eigenvalues(0), fd.eigenvalues(1)
        n0 = lam0.numel()
        diag = fd.diagonal()
        assert float(diag[1 + n0 * 2]) == pytest.approx(float(lam0[1] + lam1[2] + 1.0))

    def test_negative_shift_raises(self):
        S, M = dirichlet_pencil()
        lam, _ = generalized_eigh(S, M)
        with pytest.raises(ConfigurationError, match="not positive"):
            FastDiagonalizationOperator.from_pencils([S], [M], shift=-float(lam[0]) - 1.0)

    def test_pure_neumann_without_shift_raises(self):
        """Constants are in the kernel of the unrestricted stiffness matrix."""
        basis = BSplineBasis.uniform(2, 4)
        S = assemble_stiffness_1d(basis)
        M = assemble_mass_1d(basis)
        with pytest.raises(ConfigurationError, match="Shifted spectrum"):
            FastDiagonalizationOperator.from_pencils([S], [M], shift=0.0)
        # A positive shift makes it invertible
        FastDiagonalizationOperator.from_pencils([S], [M], shift=1.0)

    def test_small_shift_on_neumann_pencil(self):
        """min Λ = a is far below max Λ but still well above rounding noise."""
        basis = BSplineBasis.uniform(2, 64)
        S = assemble_stiffness_1d(basis).to_dense()
        M = assemble_mass_1d(basis).to_dense()
        a = 1e-6
        fd = FastDiagonalizationOperator.from_pencils([S], [M], shift=a)
        diag = fd.diagonal()
        assert float(diag.min()) == pytest.approx(a, rel=1e-3)
        assert float(diag.max()) / a > 1e10
        x = torch.linspace(-1.0, 1.0, S.shape[0], dtype=torch.float64)
        assert torch.allclose(fd.apply((S + a * M) @ x), x, atol=1e-3)

    def test_wrong_vector_length_raises(self):
        S, M = dirichlet_pencil()
        fd = FastDiagonalizationOperator.from_pencils([S], [M])
        with pytest.raises(DimensionMismatchError):
            fd.apply(torch.zeros(S.shape[0] + 1, dtype=torch.float64))

    def test_mismatched_factors_raise(self):
        with pytest.raises(DimensionMismatchError):
            FastDiagonalizationOperator(
                [torch.eye(2, dtype=torch.float64)], [torch.ones(3, dtype=torch.float64)],
            )
