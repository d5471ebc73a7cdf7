"""Robust preconditioners for single-patch tensor-product discretizations.

SinglePatchPreconditioners assembles the operators of -Δu + a u on a
tensor-product B-spline basis, approximating the geometry map by the
identity. All operators act on the free degrees of freedom: with the
ELIMINATION strategy, the basis functions touching a Dirichlet side (the
first or last function of the corresponding direction) are removed. Since
this removal happens per direction, the free space is again a tensor
product, and every operator is a Kronecker product or Kronecker sum of
univariate matrices.
"""
# pylint: disable=invalid-name

from __future__ import annotations

import logging
from typing import Union

import torch
from torch import Tensor
from torch_sparse import SparseTensor

from ..boundary import BoundaryConditions, BoundarySide
from ..errors import ConfigurationError
from ..options import AssemblerOptions, DirichletStrategy, parse_enum
from ..solvers.operators import (
    CholeskyInverseOperator,
    KroneckerOperator,
    LinearOperator,
    ScaledOperator,
    SumOperator,
)
from ..spline.assembly import (
    assemble_mass_1d,
    assemble_stiffness_1d,
    estimate_nonzeros_per_column,
    kronecker,
    restrict,
    sparse_sum,
)
from ..spline.basis import BSplineBasis, TensorBSplineBasis
from .fast_diagonalization import FastDiagonalizationOperator

logger = logging.getLogger(__name__)

_SUPPORTED_STRATEGIES = (DirichletStrategy.ELIMINATION, DirichletStrategy.NONE)


class SinglePatchPreconditioners:
    """Mass/stiffness operators and fast diagonalization on a single patch.

    Operators returned by the methods are independent objects; they keep no
    reference to this factory.

    Args:
        basis (TensorBSplineBasis | BSplineBasis): tensor-product basis;
            kept by reference.
        bc (BoundaryConditions): boundary conditions of patch 0; copied.
        options (AssemblerOptions | DirichletStrategy | int | str): full
            option set, or only the Dirichlet strategy (other options
            default). Copied.

    Raises:
        ConfigurationError: on an unsupported Dirichlet strategy, or
            boundary conditions that do not fit the basis.
    """

    def __init__(
        self,
        basis: Union[TensorBSplineBasis, BSplineBasis],
        bc: BoundaryConditions,
        options: Union[AssemblerOptions, DirichletStrategy, int, str] = DirichletStrategy.ELIMINATION,
    ):
        if isinstance(basis, BSplineBasis):
            basis = TensorBSplineBasis([basis])
        self._basis = basis
        self._bc = bc.copy()

        if isinstance(options, AssemblerOptions):
            self._options = options.copy()
        else:
            self._options = AssemblerOptions(
                dirichlet_strategy=parse_enum(DirichletStrategy, options)
            )

        if self._options.dirichlet_strategy not in _SUPPORTED_STRATEGIES:
            raise ConfigurationError(
                f"Dirichlet strategy {self._options.dirichlet_strategy.name} is not "
                f"supported; use ELIMINATION or NONE"
            )
        self._check_boundary_conditions()

        self._free = [self._free_indices(k) for k in range(basis.dimension())]
        self._mass_1d: list[SparseTensor] | None = None
        self._stiffness_1d: list[SparseTensor] | None = None

        logger.debug(
            "Single patch setup: d=%d, sizes=%s, free sizes=%s, strategy=%s",
            basis.dimension(), basis.sizes(), self.free_sizes(),
            self._options.dirichlet_strategy.name,
        )

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def _check_boundary_conditions(self) -> None:
        d = self._basis.dimension()
        for cond in self._bc:
            if cond.patch != 0:
                raise ConfigurationError(
                    f"Boundary condition refers to patch {cond.patch}, "
                    f"but a single patch (index 0) is given"
                )
            if cond.unknown != 0:
                raise ConfigurationError(
                    f"Boundary condition refers to unknown {cond.unknown}, "
                    f"but the problem has a single unknown (index 0)"
                )
            if cond.side.direction >= d:
                raise ConfigurationError(
                    f"Boundary side {cond.side.name.lower()} does not exist "
                    f"for a {d}-dimensional basis"
                )

    def _free_indices(self, k: int) -> Tensor:
        n = self._basis.component(k).size()
        keep = torch.ones(n, dtype=torch.bool)
        # Box sides are only named for the first three directions
        if self._options.dirichlet_strategy == DirichletStrategy.ELIMINATION and k < 3:
            if self._bc.is_dirichlet(0, BoundarySide.of(k, end=False)):
                keep[0] = False
            if self._bc.is_dirichlet(0, BoundarySide.of(k, end=True)):
                keep[n - 1] = False
        return torch.nonzero(keep).reshape(-1)

    def _local(self, assemble) -> list[SparseTensor]:
        matrices = []
        for k, free in enumerate(self._free):
            A = assemble(self._basis.component(k), self._options)
            free = free.to(A.device())
            matrices.append(restrict(A, free, free))
        return matrices

    def _local_mass(self) -> list[SparseTensor]:
        if self._mass_1d is None:
            self._mass_1d = self._local(assemble_mass_1d)
        return self._mass_1d

    def _local_stiffness(self) -> list[SparseTensor]:
        if self._stiffness_1d is None:
            self._stiffness_1d = self._local(assemble_stiffness_1d)
        return self._stiffness_1d

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def options(self) -> AssemblerOptions:
        return self._options.copy()

    def free_sizes(self) -> list[int]:
        """Number of free degrees of freedom per direction."""
        return [int(free.numel()) for free in self._free]

    def free_dofs(self) -> Tensor:
        """Indices of the free DOFs in the full basis numbering (direction 0 fastest)."""
        sizes = self._basis.sizes()
        index = torch.zeros((), dtype=torch.long)
        stride = 1
        d = len(sizes)
        for k, free in enumerate(self._free):
            shape = [1] * d
            shape[d - 1 - k] = free.numel()
            index = index + stride * free.reshape(shape)
            stride *= sizes[k]
        return index.reshape(-1)

    # ------------------------------------------------------------------
    # Mass
    # ------------------------------------------------------------------

    def mass_matrix(self) -> SparseTensor:
        """Assembled mass matrix on the free DOFs."""
        return kronecker(self._local_mass())

    def mass_matrix_op(self) -> LinearOperator:
        """Mass matrix as a matrix-free Kronecker operator."""
        return KroneckerOperator(self._local_mass())

    def mass_matrix_inv_op(self) -> LinearOperator:
        """Inverse mass matrix as a Kronecker product of univariate inverses.

        Raises:
            ConfigurationError: if a univariate mass matrix is singular.
        """
        return KroneckerOperator([
            CholeskyInverseOperator(M_k) for M_k in self._local_mass()
        ])

    # ------------------------------------------------------------------
    # Stiffness
    # ------------------------------------------------------------------

    def _stiffness_factors(self) -> list[list[SparseTensor]]:
        """Factor lists of the Kronecker terms M ⊗ ... ⊗ S_k ⊗ ... ⊗ M."""
        masses = self._local_mass()
        stiffs = self._local_stiffness()
        terms = []
        for k in range(len(masses)):
            factors = list(masses)
            factors[k] = stiffs[k]
            terms.append(factors)
        return terms

    def stiffness_matrix(self, a: float = 0.0) -> SparseTensor:
        """Assembled matrix of -Δu + a u on the free DOFs."""
        matrices = [kronecker(factors) for factors in self._stiffness_factors()]
        scales = [1.0] * len(matrices)
        if a != 0:
            matrices.append(self.mass_matrix())
            scales.append(a)
        result = sparse_sum(matrices, scales)

        if logger.isEnabledFor(logging.DEBUG):
            n = result.size(0)
            estimate = estimate_nonzeros_per_column(self._basis.degrees(), self._options)
            logger.debug(
                "Stiffness matrix: n=%d, nnz=%d, estimated nnz per column=%d",
                n, result.nnz(), estimate,
            )
        return result

    def stiffness_matrix_op(self, a: float = 0.0) -> LinearOperator:
        """Matrix-free operator of -Δu + a u on the free DOFs."""
        ops: list[LinearOperator] = [
            KroneckerOperator(factors) for factors in self._stiffness_factors()
        ]
        if a != 0:
            ops.append(ScaledOperator(KroneckerOperator(self._local_mass()), a))
        return SumOperator(ops)

    def fast_diagonalization_op(self, a: float = 0.0) -> FastDiagonalizationOperator:
        """Inverse of stiffness_matrix(a) by fast diagonalization.

        Raises:
            ConfigurationError: if a univariate mass matrix is singular or
                the shifted spectrum is not positive.
            NumericalDegeneracyError: if the eigensolver fails.
        """
        return FastDiagonalizationOperator.from_pencils(
            self._local_stiffness(), self._local_mass(), shift=a,
        )
