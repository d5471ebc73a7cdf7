""" Core modules """

from .boundary import BoundaryConditions, BoundarySide, ConditionType
from .errors import (
    ConfigurationError,
    DimensionMismatchError,
    NumericalDegeneracyError,
    PreconditionViolation,
)
from .options import (
    AssemblerOptions,
    DirichletStrategy,
    DirichletValues,
    InterfaceStrategy,
)
from .preconditioners import (
    FastDiagonalizationOperator,
    SinglePatchPreconditioners,
)
from .solvers import (
    CompositionOfPreconditioners,
    LinearOperator,
    PreconditionerOperator,
    cg_solve,
)
from .spline import BSplineBasis, TensorBSplineBasis

__all__ = [
    "AssemblerOptions",
    "BSplineBasis",
    "BoundaryConditions",
    "BoundarySide",
    "CompositionOfPreconditioners",
    "ConditionType",
    "ConfigurationError",
    "DimensionMismatchError",
    "DirichletStrategy",
    "DirichletValues",
    "FastDiagonalizationOperator",
    "InterfaceStrategy",
    "LinearOperator",
    "NumericalDegeneracyError",
    "PreconditionViolation",
    "PreconditionerOperator",
    "SinglePatchPreconditioners",
    "TensorBSplineBasis",
    "cg_solve",
]
