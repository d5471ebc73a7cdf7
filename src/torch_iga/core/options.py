"""Assembler option set.

AssemblerOptions collects the knobs that influence how single-patch matrices
are assembled: the Dirichlet strategy, how boundary values are computed,
the interface treatment, sparsity estimation (bdA, bdB, bdO) and quadrature
size (quA, quB).

Strategy fields accept enum members, their integer codes, or their names
(case-insensitive). Everything is validated eagerly; invalid values raise
ConfigurationError instead of being clamped.
"""

from __future__ import annotations

import dataclasses
import math
from dataclasses import dataclass
from enum import IntEnum
from numbers import Integral, Real
from typing import Any, Mapping, Type, TypeVar, Union

from .errors import ConfigurationError


class DirichletStrategy(IntEnum):
    """Method used to enforce Dirichlet conditions."""

    NONE = 0
    ELIMINATION = 11
    NITSCHE = 12
    PENALIZE = 13
    ELIMINATE_NORMAL = 14


class DirichletValues(IntEnum):
    """Method used to compute Dirichlet boundary values."""

    HOMOGENEOUS = 100
    INTERPOLATION = 101
    L2_PROJECTION = 102
    USER = 103


class InterfaceStrategy(IntEnum):
    """Treatment of patch interfaces."""

    NONE = 0
    CONFORMING = 1
    DG = 2
    SMOOTH = 3


E = TypeVar("E", bound=IntEnum)


def parse_enum(enum_cls: Type[E], value: Union[E, int, str]) -> E:
    """Convert an enum member, integer code or name to a member of enum_cls.

    Raises:
        ConfigurationError: if value does not name a member.
    """
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        key = value.strip().upper().replace("-", "_")
        try:
            return enum_cls[key]
        except KeyError:
            pass
    elif isinstance(value, Integral) and not isinstance(value, bool):
        try:
            return enum_cls(int(value))
        except ValueError:
            pass
    valid = ", ".join(f"{m.name}={m.value}" for m in enum_cls)
    raise ConfigurationError(
        f"Invalid {enum_cls.__name__} value {value!r}; expected one of: {valid}"
    )


# Mapping between external option names and dataclass fields
_OPTION_NAMES = {
    "DirichletStrategy": "dirichlet_strategy",
    "DirichletValues": "dirichlet_values",
    "InterfaceStrategy": "interface_strategy",
    "bdA": "bdA",
    "bdB": "bdB",
    "bdO": "bdO",
    "quA": "quA",
    "quB": "quB",
}


@dataclass
class AssemblerOptions:
    """Options for single-patch assembly.

    Args:
        dirichlet_strategy: enforcement of Dirichlet conditions.
        dirichlet_values: computation of Dirichlet values.
        interface_strategy: treatment of patch interfaces.
        bdA, bdB, bdO: nonzeros per column are estimated as
            prod_k (bdA * p_k + bdB) * (1 + bdO).
        quA, quB: number of Gauss points per direction is
            round(quA * p + quB).
    """

    dirichlet_strategy: DirichletStrategy = DirichletStrategy.ELIMINATION
    dirichlet_values: DirichletValues = DirichletValues.L2_PROJECTION
    interface_strategy: InterfaceStrategy = InterfaceStrategy.CONFORMING
    bdA: float = 2.0
    bdB: int = 1
    bdO: float = 0.333
    quA: float = 1.0
    quB: int = 1

    def __post_init__(self) -> None:
        self.dirichlet_strategy = parse_enum(DirichletStrategy, self.dirichlet_strategy)
        self.dirichlet_values = parse_enum(DirichletValues, self.dirichlet_values)
        self.interface_strategy = parse_enum(InterfaceStrategy, self.interface_strategy)

        self.bdA = _real("bdA", self.bdA, minimum=0.0)
        self.bdB = _integer("bdB", self.bdB, minimum=0)
        self.bdO = _real("bdO", self.bdO, minimum=0.0)
        self.quA = _real("quA", self.quA, minimum=0.0, strict=True)
        self.quB = _integer("quB", self.quB, minimum=0)

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> AssemblerOptions:
        """Build options from a mapping of option names to values.

        Keys are the option names (DirichletStrategy, DirichletValues,
        InterfaceStrategy, bdA, bdB, bdO, quA, quB); missing keys keep
        their defaults.

        Raises:
            ConfigurationError: on unknown keys or invalid values.
        """
        unknown = sorted(set(values) - set(_OPTION_NAMES))
        if unknown:
            raise ConfigurationError(
                f"Unknown assembler option(s): {', '.join(unknown)}"
            )
        kwargs = {_OPTION_NAMES[key]: value for key, value in values.items()}
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Return options keyed by option name, enums as integer codes."""
        out = {}
        for key, field in _OPTION_NAMES.items():
            value = getattr(self, field)
            out[key] = int(value) if isinstance(value, IntEnum) else value
        return out

    def copy(self, **changes: Any) -> AssemblerOptions:
        """Return a validated copy, optionally with some fields replaced."""
        return dataclasses.replace(self, **changes)


def _real(name: str, value: Any, minimum: float, strict: bool = False) -> float:
    if isinstance(value, bool) or not isinstance(value, Real):
        raise ConfigurationError(f"Option {name} must be a real number, got {value!r}")
    value = float(value)
    if not math.isfinite(value):
        raise ConfigurationError(f"Option {name} must be finite, got {value}")
    if value <= minimum if strict else value < minimum:
        bound = ">" if strict else ">="
        raise ConfigurationError(f"Option {name} must be {bound} {minimum}, got {value}")
    return value


def _integer(name: str, value: Any, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise ConfigurationError(f"Option {name} must be an integer, got {value!r}")
    value = int(value)
    if value < minimum:
        raise ConfigurationError(f"Option {name} must be >= {minimum}, got {value}")
    return value
