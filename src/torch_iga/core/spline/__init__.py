"""Tensor-product B-spline bases and univariate assembly.

Main components:
- BSplineBasis / TensorBSplineBasis: bases and their evaluation (basis.py).
- Gauss-Legendre quadrature on intervals (quadrature.py).
- Sparse assembly of univariate mass/stiffness matrices and Kronecker
  products (assembly.py).

Example usage:
    ```python
    from torch_iga.core.spline import BSplineBasis, assemble_mass_1d

    basis = BSplineBasis.uniform(degree=2, n_elements=4)
    M = assemble_mass_1d(basis)      # SparseTensor (6, 6)
    ```
"""

from .assembly import (
    assemble_biform_1d,
    assemble_mass_1d,
    assemble_stiffness_1d,
    estimate_nonzeros_per_column,
    kronecker,
    restrict,
    sparse_sum,
)
from .basis import BSplineBasis, TensorBSplineBasis
from .quadrature import gauss_legendre, num_quadrature_points

__all__ = [
    "BSplineBasis",
    "TensorBSplineBasis",
    "assemble_biform_1d",
    "assemble_mass_1d",
    "assemble_stiffness_1d",
    "estimate_nonzeros_per_column",
    "gauss_legendre",
    "kronecker",
    "num_quadrature_points",
    "restrict",
    "sparse_sum",
]
