"""Linear operators, preconditioners and iterative solvers.

This module provides:
- LinearOperator: abstract linear map with rows()/cols()/apply().
- PreconditionerOperator: linear operator with step()/step_t() sweeps.
- Concrete operators: matrix, identity, scaled, sum, product, Kronecker,
  Cholesky inverse.
- Concrete preconditioners: from an operator, Richardson, Jacobi,
  Gauss-Seidel.
- CompositionOfPreconditioners: sequential composition of preconditioners.
- cg_solve: Preconditioned Conjugate Gradient solver.
- solve_iteratively: stationary iteration driven by step().
"""

from .cg import cg_solve, solve_iteratively
from .composition import CompositionOfPreconditioners
from .operators import (
    CholeskyInverseOperator,
    GaussSeidelOperator,
    IdentityOperator,
    JacobiOperator,
    KroneckerOperator,
    LinearOperator,
    MatrixOperator,
    PreconditionerFromOp,
    PreconditionerOperator,
    ProductOperator,
    RichardsonOperator,
    ScaledOperator,
    SumOperator,
)

__all__ = [
    "CholeskyInverseOperator",
    "CompositionOfPreconditioners",
    "GaussSeidelOperator",
    "IdentityOperator",
    "JacobiOperator",
    "KroneckerOperator",
    "LinearOperator",
    "MatrixOperator",
    "PreconditionerFromOp",
    "PreconditionerOperator",
    "ProductOperator",
    "RichardsonOperator",
    "ScaledOperator",
    "SumOperator",
    "cg_solve",
    "solve_iteratively",
]
