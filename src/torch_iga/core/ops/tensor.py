"""Matrix-vector and mode-wise (tensor contraction) products.

Flat vectors on a tensor-product index space (n_0, ..., n_{d-1}) with
direction 0 running fastest are viewed as tensors of shape

    (n_{d-1}, ..., n_1, n_0, *batch)

so direction k lives on axis d-1-k. A Kronecker product
A_{d-1} ⊗ ... ⊗ A_0 is applied by multiplying A_k along axis d-1-k for
k = 0..d-1, never forming the product matrix. Applying a factor of size
n_k touches every entry once per row of A_k, so dense factors cost
O(N * n_k) per direction instead of O(N^2).

Example
-------
    >>> import torch
    >>> A0 = torch.tensor([[2.0, 0.0], [0.0, 3.0]])
    >>> A1 = torch.tensor([[1.0, 1.0], [0.0, 1.0]])
    >>> x = torch.arange(4.0)
    >>> kron_apply([A0, A1], x, [2, 2])
    tensor([ 4., 12.,  4.,  9.])
    >>> torch.kron(A1, A0) @ x
    tensor([ 4., 12.,  4.,  9.])
"""
# pylint: disable=invalid-name

from __future__ import annotations

import math
from typing import Any, Callable, Sequence, Union

from torch import Tensor
from torch_sparse import SparseTensor

# Anything that maps a (n, m) tensor to a (k, m) tensor
MatrixLike = Union[Tensor, SparseTensor, Callable[[Tensor], Tensor]]


def matvec(A: MatrixLike, x: Tensor) -> Tensor:
    """Apply a dense/sparse matrix or callable operator to x.

    Args:
        A (MatrixLike): dense Tensor, SparseTensor or callable.
        x (Tensor): (n,) or (n, m) input.

    Returns:
        A(x), same number of dimensions as x.
    """
    if isinstance(A, SparseTensor):
        # SparseTensor @ Tensor expects a matrix operand
        if x.ndim == 1:
            return (A @ x.unsqueeze(-1)).squeeze(-1)
        return A @ x
    if callable(A) and not isinstance(A, Tensor):
        return A(x)
    return A @ x


def shape_of(A: Any) -> tuple[int, int]:
    """(rows, cols) of a dense/sparse matrix or a linear operator."""
    if isinstance(A, SparseTensor):
        m, n = A.sparse_sizes()
        return int(m), int(n)
    if isinstance(A, Tensor):
        if A.ndim != 2:
            raise ValueError(f"Expected a matrix, got shape {tuple(A.shape)}")
        return int(A.shape[0]), int(A.shape[1])
    return int(A.rows()), int(A.cols())


def mode_product(A: MatrixLike, x: Tensor, axis: int) -> Tensor:
    """Multiply A along one axis of a tensor.

    Args:
        A (MatrixLike): (k, n) matrix or operator.
        x (Tensor): tensor with x.shape[axis] == n.
        axis (int): axis to contract.

    Returns:
        Tensor with axis replaced by size k.
    """
    moved = x.movedim(axis, 0)
    rest = moved.shape[1:]
    flat = moved.reshape(moved.shape[0], math.prod(rest))
    out = matvec(A, flat)
    return out.reshape((out.shape[0],) + tuple(rest)).movedim(0, axis)


def kron_apply(
    factors: Sequence[MatrixLike],
    x: Tensor,
    in_sizes: Sequence[int],
) -> Tensor:
    """Apply A_{d-1} ⊗ ... ⊗ A_0 to a flat vector.

    Args:
        factors: [A_0, ..., A_{d-1}], A_k of shape (m_k, n_k).
        x (Tensor): (N,) or (N, m) with N = prod(n_k).
        in_sizes: [n_0, ..., n_{d-1}].

    Returns:
        (M,) or (M, m) with M = prod(m_k).
    """
    d = len(factors)
    batch = tuple(x.shape[1:])
    y = x.reshape(tuple(reversed(list(in_sizes))) + batch)
    for k, A in enumerate(factors):
        y = mode_product(A, y, d - 1 - k)
    out_size = math.prod(y.shape[:d])
    return y.reshape((out_size,) + batch)
