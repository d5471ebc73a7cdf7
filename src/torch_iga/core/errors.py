"""Exception types raised by operators and preconditioner factories.

Three failure classes are distinguished:
- PreconditionViolation: the caller broke an operator contract (shape
  mismatch, querying an empty composition). Never recovered internally.
- ConfigurationError: an object cannot be built from the given input
  (invalid option, boundary conditions that do not fit the basis, singular
  1D mass matrix, shifted spectrum that is not positive).
- NumericalDegeneracyError: a numerical kernel (eigensolver) failed.
"""

from __future__ import annotations


class PreconditionViolation(ValueError):
    """Operator contract violated by the caller."""


class DimensionMismatchError(PreconditionViolation):
    """Vector or operator dimensions are incompatible."""


class ConfigurationError(ValueError):
    """Invalid configuration detected while constructing an object."""


class NumericalDegeneracyError(RuntimeError):
    """A numerical kernel failed to produce a usable result."""
