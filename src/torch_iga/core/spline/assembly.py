"""Sparse assembly of univariate B-spline matrices and their Kronecker products.

The univariate bilinear form for derivative orders (du, dv) is

    A[i, j] = ∫ N_i^(dv) N_j^(du) dx

so that (0, 0) gives the mass matrix and (1, 1) the stiffness matrix of
-u''. Integration is element by element with Gauss-Legendre rules; local
(p+1) x (p+1) matrices of all elements are computed in one batched einsum
and scattered into a COO SparseTensor.

Multivariate matrices on tensor-product bases are Kronecker products of the
univariate ones, with direction 0 running fastest:

    A = A_{d-1} ⊗ ... ⊗ A_1 ⊗ A_0
"""
# pylint: disable=invalid-name

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

import torch
from torch import Tensor
from torch_sparse import SparseTensor

from ..options import AssemblerOptions
from .basis import BSplineBasis
from .quadrature import gauss_legendre_interval, num_quadrature_points

logger = logging.getLogger(__name__)


def assemble_local_biform_1d(
    basis: BSplineBasis,
    du: int,
    dv: int,
    n_points: int,
) -> tuple[Tensor, Tensor]:
    """Local matrices of the bilinear form on every element.

    Args:
        basis (BSplineBasis): univariate basis.
        du (int): derivative order (0 or 1) on the trial function.
        dv (int): derivative order (0 or 1) on the test function.
        n_points (int): Gauss points per element.

    Returns:
        local (Tensor): (E, p+1, p+1) local matrices.
        dofs (Tensor): (E, p+1) global indices of the active functions.
    """
    if du not in (0, 1) or dv not in (0, 1):
        raise ValueError(f"Only derivative orders 0 and 1 are supported, got ({du}, {dv})")

    p = basis.degree
    breaks = basis.breaks()
    E = breaks.numel() - 1

    # Quadrature on all elements: (E, Q)
    points, weights = gauss_legendre_interval(n_points, breaks[:-1], breaks[1:])
    Q = points.shape[1]

    first, values, derivs = basis.active(points.reshape(-1))
    tables = (values.reshape(E, Q, p + 1), derivs.reshape(E, Q, p + 1))

    trial = tables[du]
    test = tables[dv]
    local = torch.einsum("eq,eqi,eqj->eij", weights, test, trial)

    # All points of one element share the span
    first = first.reshape(E, Q)[:, 0]
    dofs = first.unsqueeze(1) + torch.arange(p + 1, device=first.device)
    return local, dofs


def assemble_biform_1d(
    basis: BSplineBasis,
    du: int,
    dv: int,
    options: Optional[AssemblerOptions] = None,
) -> SparseTensor:
    """Assemble the global sparse matrix of a univariate bilinear form.

    Args:
        basis (BSplineBasis): univariate basis with n functions.
        du (int): derivative order on the trial function.
        dv (int): derivative order on the test function.
        options (AssemblerOptions | None): quadrature settings (quA, quB).

    Returns:
        SparseTensor (n, n).
    """
    options = options if options is not None else AssemblerOptions()
    n = basis.size()
    n_points = num_quadrature_points(basis.degree, options)

    local, dofs = assemble_local_biform_1d(basis, du, dv, n_points)
    E, n_loc, _ = local.shape

    # row: (E, n_loc, 1) → (E, n_loc, n_loc); col: (E, 1, n_loc) → (E, n_loc, n_loc)
    row_idx = dofs.unsqueeze(2).expand(E, n_loc, n_loc).reshape(-1)
    col_idx = dofs.unsqueeze(1).expand(E, n_loc, n_loc).reshape(-1)

    matrix = SparseTensor(
        row=row_idx,
        col=col_idx,
        value=local.reshape(-1),
        sparse_sizes=(n, n),
    ).coalesce()

    logger.debug(
        "Assembled 1D biform (du=%d, dv=%d): n=%d, elements=%d, quad points=%d",
        du, dv, n, E, n_points,
    )
    return matrix


def assemble_mass_1d(
    basis: BSplineBasis,
    options: Optional[AssemblerOptions] = None,
) -> SparseTensor:
    """Univariate mass matrix M[i, j] = ∫ N_i N_j."""
    return assemble_biform_1d(basis, 0, 0, options)


def assemble_stiffness_1d(
    basis: BSplineBasis,
    options: Optional[AssemblerOptions] = None,
) -> SparseTensor:
    """Univariate stiffness matrix S[i, j] = ∫ N_i' N_j'."""
    return assemble_biform_1d(basis, 1, 1, options)


def restrict(matrix: SparseTensor, rows: Tensor, cols: Tensor) -> SparseTensor:
    """Sub-matrix matrix[rows][:, cols] of a SparseTensor.

    Args:
        matrix (SparseTensor): (m, n) matrix.
        rows (Tensor): increasing row indices to keep.
        cols (Tensor): increasing column indices to keep.

    Returns:
        SparseTensor (len(rows), len(cols)).
    """
    m, n = matrix.sparse_sizes()
    row, col, value = matrix.coo()
    device = row.device

    row_map = torch.full((m,), -1, dtype=torch.long, device=device)
    row_map[rows] = torch.arange(rows.numel(), device=device)
    col_map = torch.full((n,), -1, dtype=torch.long, device=device)
    col_map[cols] = torch.arange(cols.numel(), device=device)

    new_row = row_map[row]
    new_col = col_map[col]
    keep = (new_row >= 0) & (new_col >= 0)

    return SparseTensor(
        row=new_row[keep],
        col=new_col[keep],
        value=value[keep],
        sparse_sizes=(rows.numel(), cols.numel()),
    ).coalesce()


def _kron2(A: SparseTensor, B: SparseTensor) -> SparseTensor:
    """Kronecker product A ⊗ B (B's index runs fastest)."""
    ra, ca, va = A.coo()
    rb, cb, vb = B.coo()
    ma, na = A.sparse_sizes()
    mb, nb = B.sparse_sizes()

    row = (ra.unsqueeze(1) * mb + rb.unsqueeze(0)).reshape(-1)
    col = (ca.unsqueeze(1) * nb + cb.unsqueeze(0)).reshape(-1)
    value = (va.unsqueeze(1) * vb.unsqueeze(0)).reshape(-1)

    return SparseTensor(
        row=row,
        col=col,
        value=value,
        sparse_sizes=(ma * mb, na * nb),
    ).coalesce()


def kronecker(matrices: Sequence[SparseTensor]) -> SparseTensor:
    """Kronecker product of per-direction matrices.

    Args:
        matrices: [A_0, ..., A_{d-1}], A_k acting on direction k.

    Returns:
        SparseTensor A_{d-1} ⊗ ... ⊗ A_0.
    """
    if not matrices:
        raise ValueError("kronecker needs at least one matrix")
    result = matrices[0]
    for A in matrices[1:]:
        result = _kron2(A, result)
    return result


def sparse_sum(
    matrices: Sequence[SparseTensor],
    scales: Optional[Sequence[float]] = None,
) -> SparseTensor:
    """Linear combination Σ_i scales[i] * matrices[i] of equally sized matrices."""
    if not matrices:
        raise ValueError("sparse_sum needs at least one matrix")
    sizes = matrices[0].sparse_sizes()
    scales = scales if scales is not None else [1.0] * len(matrices)

    rows, cols, vals = [], [], []
    for A, c in zip(matrices, scales):
        if A.sparse_sizes() != sizes:
            raise ValueError(f"Size mismatch: {A.sparse_sizes()} vs {sizes}")
        r, k, v = A.coo()
        rows.append(r)
        cols.append(k)
        vals.append(c * v)

    return SparseTensor(
        row=torch.cat(rows, dim=0),
        col=torch.cat(cols, dim=0),
        value=torch.cat(vals, dim=0),
        sparse_sizes=sizes,
    ).coalesce()


def estimate_nonzeros_per_column(
    degrees: Sequence[int],
    options: Optional[AssemblerOptions] = None,
) -> int:
    """Estimated nonzeros per column of a matrix on a tensor basis.

    Uses prod_k (bdA * p_k + bdB) * (1 + bdO).
    """
    options = options if options is not None else AssemblerOptions()
    nz = math.prod(options.bdA * p + options.bdB for p in degrees)
    return int(nz * (1.0 + options.bdO))
