"""Gauss-Legendre quadrature on intervals.

Rules are computed with the Golub-Welsch method: the nodes of the n-point
rule are the eigenvalues of the symmetric tridiagonal Jacobi matrix of the
Legendre recurrence, and the weights are twice the squared first components
of the normalized eigenvectors.

Design rationale:
    - Rules depend only on n and are cached as CPU float64 tensors on
      [-1, 1]. The assembly layer (assembly.py) maps them to elements and
      casts them to the target device/dtype.
    - An n-point rule integrates polynomials of degree <= 2n - 1 exactly.
"""
# pylint: disable=invalid-name

from __future__ import annotations

import math

import torch
from torch import Tensor

from ..options import AssemblerOptions

_RULE_CACHE: dict[int, tuple[Tensor, Tensor]] = {}


def gauss_legendre(n: int) -> tuple[Tensor, Tensor]:
    """n-point Gauss-Legendre rule on the reference interval [-1, 1].

    Args:
        n (int): number of points, n >= 1.

    Returns:
        points (n,): nodes in ascending order.
        weights (n,): weights (sum = 2).

    Raises:
        ValueError: if n < 1.
    """
    if n < 1:
        raise ValueError(f"Gauss-Legendre rule needs n >= 1, got n={n}")

    rule = _RULE_CACHE.get(n)
    if rule is None:
        k = torch.arange(1, n, dtype=torch.float64)
        beta = k / torch.sqrt(4.0 * k * k - 1.0)
        jacobi = torch.diag(beta, 1) + torch.diag(beta, -1)
        points, vectors = torch.linalg.eigh(jacobi)
        weights = 2.0 * vectors[0, :] ** 2
        # Exact symmetry of the rule
        points = 0.5 * (points - points.flip(0))
        weights = 0.5 * (weights + weights.flip(0))
        rule = (points, weights)
        _RULE_CACHE[n] = rule

    points, weights = rule
    return points.clone(), weights.clone()


def gauss_legendre_interval(
    n: int,
    lower: Tensor,
    upper: Tensor,
) -> tuple[Tensor, Tensor]:
    """Map the n-point rule to a batch of intervals.

    Args:
        n (int): number of points per interval.
        lower (Tensor): (E,) left interval ends.
        upper (Tensor): (E,) right interval ends.

    Returns:
        points (E, n): quadrature nodes per interval.
        weights (E, n): quadrature weights per interval.
    """
    ref_points, ref_weights = gauss_legendre(n)
    ref_points = ref_points.to(device=lower.device, dtype=lower.dtype)
    ref_weights = ref_weights.to(device=lower.device, dtype=lower.dtype)

    half = 0.5 * (upper - lower)                      # (E,)
    mid = 0.5 * (upper + lower)                       # (E,)
    points = mid.unsqueeze(1) + half.unsqueeze(1) * ref_points.unsqueeze(0)
    weights = half.unsqueeze(1) * ref_weights.unsqueeze(0)
    return points, weights


def num_quadrature_points(degree: int, options: AssemblerOptions) -> int:
    """Number of Gauss points per element for a basis of the given degree.

    Computed as round(quA * degree + quB), at least 1. With the defaults
    (quA=1, quB=1) this is degree + 1, enough to integrate mass matrices
    exactly.
    """
    return max(1, int(math.floor(options.quA * degree + options.quB + 0.5)))
