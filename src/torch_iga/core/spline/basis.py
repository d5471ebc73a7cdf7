"""B-spline bases on intervals and their tensor products.

A BSplineBasis of degree p over the knot vector t_0 <= ... <= t_{n+p} has n
basis functions N_0, ..., N_{n-1} and lives on the parameter interval
[t_p, t_n]. On every non-empty knot span [t_s, t_{s+1}) exactly the p+1
functions N_{s-p}, ..., N_s are active; the evaluation routines work on
these active functions only, vectorized over points.

A TensorBSplineBasis is the product of d such bases. Its functions are
numbered with direction 0 running fastest:

    index(i_0, ..., i_{d-1}) = i_0 + n_0 * (i_1 + n_1 * (i_2 + ...))
"""
# pylint: disable=invalid-name

from __future__ import annotations

import math
from typing import Sequence

import torch
from torch import Tensor


def _active_values(knots: Tensor, degree: int, span: Tensor, x: Tensor) -> Tensor:
    """Values of the degree+1 functions active on the given spans.

    Triangular Cox-de Boor scheme (Piegl & Tiller, algorithm A2.2), with
    every step vectorized over the points.

    Args:
        knots (Tensor): knot vector.
        degree (int): polynomial degree.
        span (Tensor): (Q,) span index s of each point, t_s < t_{s+1}.
        x (Tensor): (Q,) evaluation points.

    Returns:
        (Q, degree+1) values of N_{s-degree}, ..., N_s at x.
    """
    values = [torch.ones_like(x)]
    left = [None]
    right = [None]
    for j in range(1, degree + 1):
        left.append(x - knots[span + 1 - j])
        right.append(knots[span + j] - x)
        saved = torch.zeros_like(x)
        updated = []
        for r in range(j):
            temp = values[r] / (right[r + 1] + left[j - r])
            updated.append(saved + right[r + 1] * temp)
            saved = left[j - r] * temp
        updated.append(saved)
        values = updated
    return torch.stack(values, dim=-1)


class BSplineBasis:
    """Univariate B-spline basis.

    Args:
        knots (Tensor | sequence): non-decreasing knot vector with at least
            2 * (degree + 1) entries and t_p < t_n.
        degree (int): polynomial degree p >= 0.

    Raises:
        ValueError: on an invalid degree or knot vector.
    """

    def __init__(self, knots: Tensor | Sequence[float], degree: int):
        knots = torch.as_tensor(knots)
        if not knots.is_floating_point():
            knots = knots.to(torch.float64)
        if degree < 0:
            raise ValueError(f"degree must be >= 0, got {degree}")
        if knots.ndim != 1:
            raise ValueError(f"knots must be a 1D tensor, got shape {tuple(knots.shape)}")
        if knots.numel() < 2 * (degree + 1):
            raise ValueError(
                f"Need at least {2 * (degree + 1)} knots for degree {degree}, "
                f"got {knots.numel()}"
            )
        if bool((knots[1:] < knots[:-1]).any()):
            raise ValueError("knots must be non-decreasing")

        self.knots = knots
        self.degree = degree
        self._n = knots.numel() - degree - 1

        if not bool(knots[degree] < knots[self._n]):
            raise ValueError("Parameter interval [t_p, t_n] is empty")

    @classmethod
    def uniform(
        cls,
        degree: int,
        n_elements: int,
        lower: float = 0.0,
        upper: float = 1.0,
        dtype: torch.dtype = torch.float64,
    ) -> BSplineBasis:
        """Open (clamped) uniform basis with n_elements equal knot spans."""
        if n_elements < 1:
            raise ValueError(f"n_elements must be >= 1, got {n_elements}")
        if not upper > lower:
            raise ValueError(f"Need lower < upper, got [{lower}, {upper}]")
        breaks = torch.linspace(lower, upper, n_elements + 1, dtype=dtype)
        knots = torch.cat([
            breaks[:1].repeat(degree),
            breaks,
            breaks[-1:].repeat(degree),
        ])
        return cls(knots, degree)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    def size(self) -> int:
        """Number of basis functions."""
        return self._n

    @property
    def domain(self) -> tuple[float, float]:
        """Parameter interval [t_p, t_n]."""
        return float(self.knots[self.degree]), float(self.knots[self._n])

    def breaks(self) -> Tensor:
        """Distinct knot values inside the parameter interval."""
        inner = self.knots[self.degree:self._n + 1]
        return torch.unique_consecutive(inner)

    def num_elements(self) -> int:
        """Number of non-empty knot spans."""
        return self.breaks().numel() - 1

    def find_span(self, x: Tensor) -> Tensor:
        """Span index s with t_s <= x < t_{s+1} (x = t_n maps to the last span)."""
        span = torch.searchsorted(self.knots, x.contiguous(), right=True) - 1
        return span.clamp(self.degree, self._n - 1)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def active(self, x: Tensor) -> tuple[Tensor, Tensor, Tensor]:
        """Evaluate the active functions and their first derivatives.

        Args:
            x (Tensor): (Q,) points inside the parameter interval.

        Returns:
            first (Tensor): (Q,) index of the first active function.
            values (Tensor): (Q, p+1) values of the active functions.
            derivs (Tensor): (Q, p+1) first derivatives.
        """
        x = torch.as_tensor(x, dtype=self.knots.dtype, device=self.knots.device)
        p = self.degree
        t = self.knots
        span = self.find_span(x)
        values = _active_values(t, p, span, x)

        if p == 0:
            return span - p, values, torch.zeros_like(values)

        lower = _active_values(t, p - 1, span, x)     # N_{s-p+1..s, p-1}
        derivs = []
        for r in range(p + 1):
            i = span - p + r
            d = torch.zeros_like(x)
            if r >= 1:
                d = d + lower[:, r - 1] / (t[i + p] - t[i])
            if r <= p - 1:
                d = d - lower[:, r] / (t[i + p + 1] - t[i + 1])
            derivs.append(p * d)
        return span - p, values, torch.stack(derivs, dim=-1)

    def _scatter(self, first: Tensor, local: Tensor) -> Tensor:
        out = local.new_zeros(local.shape[0], self._n)
        cols = first.unsqueeze(1) + torch.arange(self.degree + 1, device=first.device)
        out.scatter_(1, cols, local)
        return out

    def evaluate(self, x: Tensor) -> Tensor:
        """Values of all basis functions at x as a dense (Q, n) matrix."""
        first, values, _ = self.active(x)
        return self._scatter(first, values)

    def derivative(self, x: Tensor) -> Tensor:
        """First derivatives of all basis functions at x as a dense (Q, n) matrix."""
        first, _, derivs = self.active(x)
        return self._scatter(first, derivs)

    def __repr__(self) -> str:
        return (
            f"BSplineBasis(degree={self.degree}, size={self._n}, "
            f"domain={self.domain})"
        )


class TensorBSplineBasis:
    """Tensor product of univariate B-spline bases.

    Args:
        components (sequence of BSplineBasis): one basis per direction.
    """

    def __init__(self, components: Sequence[BSplineBasis]):
        components = list(components)
        if not components:
            raise ValueError("A tensor basis needs at least one component")
        self._components = components

    @classmethod
    def uniform(
        cls,
        degree: int | Sequence[int],
        n_elements: int | Sequence[int],
        dim: int | None = None,
        dtype: torch.dtype = torch.float64,
    ) -> TensorBSplineBasis:
        """Uniform basis on the unit box.

        Scalar degree / n_elements are broadcast to dim directions.
        """
        if dim is None:
            dim = next(
                (len(v) for v in (degree, n_elements) if not isinstance(v, int)),
                1,
            )
        degrees = [degree] * dim if isinstance(degree, int) else list(degree)
        elements = [n_elements] * dim if isinstance(n_elements, int) else list(n_elements)
        if len(degrees) != dim or len(elements) != dim:
            raise ValueError("degree and n_elements must have one entry per direction")
        return cls([
            BSplineBasis.uniform(p, m, dtype=dtype) for p, m in zip(degrees, elements)
        ])

    def dimension(self) -> int:
        """Number of parametric directions d."""
        return len(self._components)

    def component(self, k: int) -> BSplineBasis:
        """Univariate basis of direction k."""
        if k < 0 or k >= len(self._components):
            raise ValueError(f"direction k out of range: {k}")
        return self._components[k]

    def degrees(self) -> list[int]:
        return [c.degree for c in self._components]

    def sizes(self) -> list[int]:
        """Number of functions per direction."""
        return [c.size() for c in self._components]

    def size(self) -> int:
        """Total number of basis functions."""
        return math.prod(self.sizes())

    def __repr__(self) -> str:
        return f"TensorBSplineBasis({self._components!r})"
