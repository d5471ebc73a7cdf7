"""Linear operator and preconditioner abstractions.

Two capabilities are distinguished:

- LinearOperator: y = apply(x) with fixed dimensions rows() x cols().
- PreconditionerOperator: a LinearOperator that additionally knows the
  system A it preconditions (underlying_op) and can perform one
  relaxation sweep on an iterate in place:

      step(f, x):    x <- x + P (f - A x)
      step_t(f, x):  x <- x + P^T (f - A x)

  Applying a preconditioner to f is num_sweeps steps from a zero iterate.

Vectors are Tensors of shape (n,) or (n, m); m right-hand sides are
processed simultaneously. Every entry point checks the leading dimension
and raises DimensionMismatchError on a mismatch.
"""
# pylint: disable=invalid-name

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Optional, Sequence, Union

import torch
from torch import Tensor
from torch_sparse import SparseTensor

from ..errors import ConfigurationError, DimensionMismatchError
from ..ops.tensor import MatrixLike, kron_apply, matvec, shape_of


def check_vector(x: Tensor, n: int, name: str = "x") -> None:
    """Raise DimensionMismatchError unless x has shape (n,) or (n, m)."""
    if not isinstance(x, Tensor):
        raise DimensionMismatchError(f"{name} must be a Tensor, got {type(x).__name__}")
    if x.ndim not in (1, 2) or x.shape[0] != n:
        raise DimensionMismatchError(
            f"{name} has shape {tuple(x.shape)}, expected ({n},) or ({n}, m)"
        )


# ------------------------------------------------------------------
# Linear operators
# ------------------------------------------------------------------


class LinearOperator(ABC):
    """Abstract linear map from vectors of length cols() to length rows().

    apply must not modify its input and must be deterministic.
    """

    @abstractmethod
    def apply(self, x: Tensor) -> Tensor:
        """Apply the operator.

        Args:
            x (Tensor): (cols,) or (cols, m) input.

        Returns:
            (rows,) or (rows, m) output.
        """

    @abstractmethod
    def rows(self) -> int:
        """Length of output vectors."""

    @abstractmethod
    def cols(self) -> int:
        """Length of input vectors."""

    def __call__(self, x: Tensor) -> Tensor:
        return self.apply(x)

    def to_dense(
        self,
        dtype: torch.dtype = torch.float64,
        device: Optional[torch.device] = None,
    ) -> Tensor:
        """Dense (rows, cols) matrix, obtained by applying to the identity."""
        return self.apply(torch.eye(self.cols(), dtype=dtype, device=device))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.rows()}x{self.cols()})"


class MatrixOperator(LinearOperator):
    """Operator given by an explicit dense or sparse matrix.

    Args:
        matrix (Tensor | SparseTensor): (rows, cols) matrix.
    """

    def __init__(self, matrix: Union[Tensor, SparseTensor]):
        self._shape = shape_of(matrix)
        self.matrix = matrix

    def apply(self, x: Tensor) -> Tensor:
        check_vector(x, self._shape[1])
        return matvec(self.matrix, x)

    def rows(self) -> int:
        return self._shape[0]

    def cols(self) -> int:
        return self._shape[1]

    def to_dense(self, dtype=None, device=None) -> Tensor:
        dense = self.matrix.to_dense() if isinstance(self.matrix, SparseTensor) else self.matrix
        return dense.to(dtype=dtype or dense.dtype, device=device or dense.device)


class IdentityOperator(LinearOperator):
    """Identity map on vectors of length n."""

    def __init__(self, n: int):
        if n < 0:
            raise ValueError(f"n must be >= 0, got {n}")
        self._n = n

    def apply(self, x: Tensor) -> Tensor:
        check_vector(x, self._n)
        return x.clone()

    def rows(self) -> int:
        return self._n

    def cols(self) -> int:
        return self._n


class ScaledOperator(LinearOperator):
    """Operator scaled by a scalar: x -> scalar * op(x)."""

    def __init__(self, op: LinearOperator, scalar: float):
        self.op = op
        self.scalar = scalar

    def apply(self, x: Tensor) -> Tensor:
        return self.scalar * self.op.apply(x)

    def rows(self) -> int:
        return self.op.rows()

    def cols(self) -> int:
        return self.op.cols()


class SumOperator(LinearOperator):
    """Sum of operators of equal dimensions."""

    def __init__(self, ops: Sequence[LinearOperator]):
        ops = list(ops)
        if not ops:
            raise ValueError("SumOperator needs at least one operator")
        for op in ops[1:]:
            if (op.rows(), op.cols()) != (ops[0].rows(), ops[0].cols()):
                raise DimensionMismatchError(
                    f"Cannot add {op.rows()}x{op.cols()} operator to "
                    f"{ops[0].rows()}x{ops[0].cols()} operator"
                )
        self.ops = ops

    def apply(self, x: Tensor) -> Tensor:
        y = self.ops[0].apply(x)
        for op in self.ops[1:]:
            y = y + op.apply(x)
        return y

    def rows(self) -> int:
        return self.ops[0].rows()

    def cols(self) -> int:
        return self.ops[0].cols()


class ProductOperator(LinearOperator):
    """Product of operators, ops[0] applied first: x -> ops[-1](...ops[0](x))."""

    def __init__(self, ops: Sequence[LinearOperator]):
        ops = list(ops)
        if not ops:
            raise ValueError("ProductOperator needs at least one operator")
        for prev, op in zip(ops, ops[1:]):
            if op.cols() != prev.rows():
                raise DimensionMismatchError(
                    f"Cannot chain {prev.rows()}x{prev.cols()} operator into "
                    f"{op.rows()}x{op.cols()} operator"
                )
        self.ops = ops

    def apply(self, x: Tensor) -> Tensor:
        for op in self.ops:
            x = op.apply(x)
        return x

    def rows(self) -> int:
        return self.ops[-1].rows()

    def cols(self) -> int:
        return self.ops[0].cols()


class KroneckerOperator(LinearOperator):
    """Kronecker product A_{d-1} ⊗ ... ⊗ A_0 of per-direction factors.

    Applied mode-wise on the tensor view of the input (direction 0 running
    fastest); the product matrix is never formed.

    Args:
        factors: [A_0, ..., A_{d-1}], dense/sparse matrices or operators.
    """

    def __init__(self, factors: Sequence[MatrixLike]):
        factors = list(factors)
        if not factors:
            raise ValueError("KroneckerOperator needs at least one factor")
        self.factors = factors
        shapes = [shape_of(A) for A in factors]
        self._out_sizes = [s[0] for s in shapes]
        self._in_sizes = [s[1] for s in shapes]
        self._rows = math.prod(self._out_sizes)
        self._cols = math.prod(self._in_sizes)

    def apply(self, x: Tensor) -> Tensor:
        check_vector(x, self._cols)
        if self._rows == 0 or self._cols == 0:
            return x.new_zeros((self._rows,) + tuple(x.shape[1:]))
        return kron_apply(self.factors, x, self._in_sizes)

    def rows(self) -> int:
        return self._rows

    def cols(self) -> int:
        return self._cols


class CholeskyInverseOperator(LinearOperator):
    """Inverse of a Hermitian positive definite matrix via its Cholesky factor.

    Args:
        matrix (Tensor | SparseTensor): (n, n) HPD matrix; densified.

    Raises:
        ConfigurationError: if the matrix is not positive definite.
    """

    def __init__(self, matrix: Union[Tensor, SparseTensor]):
        dense = matrix.to_dense() if isinstance(matrix, SparseTensor) else matrix
        n, m = shape_of(dense)
        if n != m:
            raise DimensionMismatchError(f"Expected a square matrix, got {n}x{m}")
        L, info = torch.linalg.cholesky_ex(dense)
        if int(info) != 0:
            raise ConfigurationError(
                f"Matrix is not positive definite (leading minor {int(info)} fails)"
            )
        self._factor = L
        self._n = n

    def apply(self, x: Tensor) -> Tensor:
        check_vector(x, self._n)
        if x.ndim == 1:
            return torch.cholesky_solve(x.unsqueeze(-1), self._factor).squeeze(-1)
        return torch.cholesky_solve(x, self._factor)

    def rows(self) -> int:
        return self._n

    def cols(self) -> int:
        return self._n


# ------------------------------------------------------------------
# Preconditioners
# ------------------------------------------------------------------


class PreconditionerOperator(LinearOperator):
    """Abstract preconditioner / smoother for a system A x = f.

    Subclasses implement underlying_op() and step(); step_t() defaults to
    step(), which is correct for symmetric preconditioners.

    Args:
        num_sweeps (int): steps performed by apply(), >= 1.
    """

    def __init__(self, num_sweeps: int = 1):
        self.set_num_sweeps(num_sweeps)

    @abstractmethod
    def underlying_op(self) -> LinearOperator:
        """The operator A of the preconditioned system."""

    @abstractmethod
    def step(self, f: Tensor, x: Tensor) -> None:
        """Perform one sweep for A x = f, updating x in place."""

    def step_t(self, f: Tensor, x: Tensor) -> None:
        """Perform one transposed sweep for A x = f, updating x in place."""
        self.step(f, x)

    def rows(self) -> int:
        return self.underlying_op().rows()

    def cols(self) -> int:
        return self.underlying_op().cols()

    @property
    def num_sweeps(self) -> int:
        return self._num_sweeps

    def set_num_sweeps(self, num_sweeps: int) -> None:
        if num_sweeps < 1:
            raise ConfigurationError(f"num_sweeps must be >= 1, got {num_sweeps}")
        self._num_sweeps = num_sweeps

    def apply(self, x: Tensor) -> Tensor:
        """Approximate A^{-1} x by num_sweeps steps from a zero iterate."""
        check_vector(x, self.rows())
        y = torch.zeros_like(x)
        for _ in range(self._num_sweeps):
            self.step(x, y)
        return y

    def _check_step(self, f: Tensor, x: Tensor) -> None:
        n = self.rows()
        check_vector(f, n, "f")
        check_vector(x, n, "x")
        if f.shape != x.shape:
            raise DimensionMismatchError(
                f"f has shape {tuple(f.shape)} but x has shape {tuple(x.shape)}"
            )

    def _residual(self, f: Tensor, x: Tensor) -> Tensor:
        return f - self.underlying_op().apply(x)

    def estimate_largest_eigenvalue(
        self,
        steps: int = 10,
        seed: int = 0,
        dtype: torch.dtype = torch.float64,
    ) -> float:
        """Power-iteration estimate of the largest eigenvalue of P A.

        Args:
            steps (int): power iterations.
            seed (int): seed of the random start vector.
            dtype (torch.dtype): dtype of the probe vectors.
        """
        A = self.underlying_op()
        gen = torch.Generator().manual_seed(seed)
        x = torch.rand(self.cols(), generator=gen, dtype=torch.float64).to(dtype)
        norm = 0.0
        for _ in range(steps):
            x = x / torch.linalg.vector_norm(x)
            x = self.apply(A.apply(x))
            norm = float(torch.linalg.vector_norm(x))
        return norm


class PreconditionerFromOp(PreconditionerOperator):
    """Preconditioner built from an operator P approximating A^{-1}.

        step(f, x):  x <- x + tau * P (f - A x)

    step_t uses P as well, so P is assumed symmetric.

    Args:
        underlying (LinearOperator): system operator A.
        preconditioner (LinearOperator): approximate inverse P.
        tau (float): damping parameter.
    """

    def __init__(
        self,
        underlying: LinearOperator,
        preconditioner: LinearOperator,
        tau: float = 1.0,
        num_sweeps: int = 1,
    ):
        super().__init__(num_sweeps)
        if (preconditioner.rows(), preconditioner.cols()) != (underlying.cols(), underlying.rows()):
            raise DimensionMismatchError(
                f"Preconditioner is {preconditioner.rows()}x{preconditioner.cols()}, "
                f"system is {underlying.rows()}x{underlying.cols()}"
            )
        self._underlying = underlying
        self.preconditioner = preconditioner
        self.tau = tau

    def underlying_op(self) -> LinearOperator:
        return self._underlying

    def step(self, f: Tensor, x: Tensor) -> None:
        self._check_step(f, x)
        x.add_(self.tau * self.preconditioner.apply(self._residual(f, x)))


class RichardsonOperator(PreconditionerOperator):
    """Damped Richardson iteration x <- x + tau (f - A x)."""

    def __init__(self, underlying: LinearOperator, tau: float = 1.0, num_sweeps: int = 1):
        super().__init__(num_sweeps)
        self._underlying = underlying
        self.tau = tau

    def underlying_op(self) -> LinearOperator:
        return self._underlying

    def step(self, f: Tensor, x: Tensor) -> None:
        self._check_step(f, x)
        x.add_(self.tau * self._residual(f, x))


def _as_operator(matrix: Union[Tensor, SparseTensor, LinearOperator]) -> LinearOperator:
    if isinstance(matrix, LinearOperator):
        return matrix
    return MatrixOperator(matrix)


def _matrix_of(matrix: Union[Tensor, SparseTensor, MatrixOperator]) -> Union[Tensor, SparseTensor]:
    return matrix.matrix if isinstance(matrix, MatrixOperator) else matrix


class JacobiOperator(PreconditionerOperator):
    """Damped Jacobi iteration x <- x + tau D^{-1} (f - A x).

    Args:
        matrix (Tensor | SparseTensor | MatrixOperator): system matrix A.
        tau (float): damping parameter.

    Raises:
        ConfigurationError: if A has a zero diagonal entry.
    """

    def __init__(
        self,
        matrix: Union[Tensor, SparseTensor, MatrixOperator],
        tau: float = 1.0,
        num_sweeps: int = 1,
    ):
        super().__init__(num_sweeps)
        mat = _matrix_of(matrix)
        self._underlying = _as_operator(mat)
        n, m = shape_of(mat)
        if n != m:
            raise DimensionMismatchError(f"Expected a square matrix, got {n}x{m}")
        diag = mat.get_diag() if isinstance(mat, SparseTensor) else torch.diagonal(mat)
        if bool((diag == 0).any()):
            raise ConfigurationError("Jacobi preconditioner needs a nonzero diagonal")
        self._diag = diag
        self.tau = tau

    def underlying_op(self) -> LinearOperator:
        return self._underlying

    def step(self, f: Tensor, x: Tensor) -> None:
        self._check_step(f, x)
        r = self._residual(f, x)
        if r.ndim == 1:
            x.add_(self.tau * r / self._diag)
        else:
            x.add_(self.tau * r / self._diag.unsqueeze(-1))


_GAUSS_SEIDEL_VARIANTS = ("forward", "backward", "symmetric")


class GaussSeidelOperator(PreconditionerOperator):
    """Gauss-Seidel sweeps on an explicit matrix.

    forward:   x <- x + (D + L)^{-1} (f - A x)
    backward:  x <- x + (D + U)^{-1} (f - A x)
    symmetric: forward sweep followed by a backward sweep

    For symmetric A, (D + L)^T = D + U, so the transposed forward sweep is
    the backward sweep and vice versa; the symmetric variant is its own
    transpose. The triangular parts are kept dense.

    Args:
        matrix (Tensor | SparseTensor | MatrixOperator): system matrix A.
        variant (str): "forward", "backward" or "symmetric".
    """

    def __init__(
        self,
        matrix: Union[Tensor, SparseTensor, MatrixOperator],
        variant: str = "forward",
        num_sweeps: int = 1,
    ):
        super().__init__(num_sweeps)
        if variant not in _GAUSS_SEIDEL_VARIANTS:
            raise ConfigurationError(
                f"Unknown Gauss-Seidel variant {variant!r}; "
                f"expected one of {_GAUSS_SEIDEL_VARIANTS}"
            )
        mat = _matrix_of(matrix)
        self._underlying = _as_operator(mat)
        dense = mat.to_dense() if isinstance(mat, SparseTensor) else mat
        if bool((torch.diagonal(dense) == 0).any()):
            raise ConfigurationError("Gauss-Seidel needs a nonzero diagonal")
        self._lower = torch.tril(dense)
        self._upper = torch.triu(dense)
        self.variant = variant

    def underlying_op(self) -> LinearOperator:
        return self._underlying

    def _sweep(self, f: Tensor, x: Tensor, upper: bool) -> None:
        r = self._residual(f, x)
        tri = self._upper if upper else self._lower
        rhs = r.unsqueeze(-1) if r.ndim == 1 else r
        e = torch.linalg.solve_triangular(tri, rhs, upper=upper)
        x.add_(e.squeeze(-1) if r.ndim == 1 else e)

    def step(self, f: Tensor, x: Tensor) -> None:
        self._check_step(f, x)
        if self.variant == "forward":
            self._sweep(f, x, upper=False)
        elif self.variant == "backward":
            self._sweep(f, x, upper=True)
        else:
            self._sweep(f, x, upper=False)
            self._sweep(f, x, upper=True)

    def step_t(self, f: Tensor, x: Tensor) -> None:
        self._check_step(f, x)
        if self.variant == "forward":
            self._sweep(f, x, upper=True)
        elif self.variant == "backward":
            self._sweep(f, x, upper=False)
        else:
            self._sweep(f, x, upper=False)
            self._sweep(f, x, upper=True)
