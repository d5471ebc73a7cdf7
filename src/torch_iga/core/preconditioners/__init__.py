"""Preconditioners for single-patch tensor-product discretizations.

Provides:
- SinglePatchPreconditioners: mass/stiffness matrices and operators on the
  free degrees of freedom, and the fast diagonalization inverse.
- FastDiagonalizationOperator: exact inverse of Kronecker-sum operators.
- generalized_eigh: symmetric-definite generalized eigensolver.
"""

from .fast_diagonalization import FastDiagonalizationOperator, generalized_eigh
from .single_patch import SinglePatchPreconditioners

__all__ = [
    "FastDiagonalizationOperator",
    "SinglePatchPreconditioners",
    "generalized_eigh",
]
