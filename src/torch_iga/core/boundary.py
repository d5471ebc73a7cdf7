"""Boundary condition bookkeeping for tensor-product patches.

Sides of a d-dimensional parameter box are numbered 1..2d:

    west=1, east=2      (direction 0, start / end)
    south=3, north=4    (direction 1, start / end)
    front=5, back=6     (direction 2, start / end)

A side without an entry is free (natural condition, nothing eliminated).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Iterator, Optional, Union

from .errors import ConfigurationError


class ConditionType(Enum):
    """Kind of boundary condition."""

    DIRICHLET = "dirichlet"
    NEUMANN = "neumann"


class BoundarySide(IntEnum):
    """Side of the parameter box."""

    WEST = 1
    EAST = 2
    SOUTH = 3
    NORTH = 4
    FRONT = 5
    BACK = 6

    @property
    def direction(self) -> int:
        """Parametric direction orthogonal to this side."""
        return (self.value - 1) // 2

    @property
    def is_end(self) -> bool:
        """True if the side lies at the end of its direction's interval."""
        return (self.value - 1) % 2 == 1

    @classmethod
    def of(cls, direction: int, end: bool) -> BoundarySide:
        """Side at the start (end=False) or end (end=True) of a direction."""
        if direction < 0 or direction > 2:
            raise ValueError(f"No box side for direction {direction}")
        return cls(2 * direction + 1 + int(end))


SideLike = Union[BoundarySide, int, str]
KindLike = Union[ConditionType, str]


def _as_side(side: SideLike) -> BoundarySide:
    try:
        if isinstance(side, str):
            return BoundarySide[side.strip().upper()]
        return BoundarySide(side)
    except (KeyError, ValueError) as err:
        raise ConfigurationError(f"Invalid boundary side {side!r}") from err


def _as_kind(kind: KindLike) -> ConditionType:
    try:
        if isinstance(kind, str):
            return ConditionType(kind.strip().lower())
        return ConditionType(kind)
    except ValueError as err:
        raise ConfigurationError(f"Invalid boundary condition type {kind!r}") from err


@dataclass(frozen=True)
class BoundaryCondition:
    """Condition imposed on one side of one patch for one unknown.

    Args:
        patch: patch index.
        side: box side.
        kind: Dirichlet or Neumann.
        function: index of the boundary data function.
        unknown: index of the unknown the condition applies to.
    """

    patch: int
    side: BoundarySide
    kind: ConditionType
    function: int = 0
    unknown: int = 0


class BoundaryConditions:
    """Collection of boundary conditions keyed by (patch, side, unknown).

    Adding a condition for a key that already has one replaces it.
    """

    def __init__(self):
        self._conditions: dict[tuple[int, BoundarySide, int], BoundaryCondition] = {}

    def add_condition(
        self,
        patch: int,
        side: SideLike,
        kind: KindLike,
        function: int = 0,
        unknown: int = 0,
    ) -> BoundaryConditions:
        """Register a condition. Returns self to allow chaining."""
        if patch < 0:
            raise ConfigurationError(f"Patch index must be >= 0, got {patch}")
        if function < 0:
            raise ConfigurationError(f"Function index must be >= 0, got {function}")
        if unknown < 0:
            raise ConfigurationError(f"Unknown index must be >= 0, got {unknown}")
        side = _as_side(side)
        condition = BoundaryCondition(patch, side, _as_kind(kind), function, unknown)
        self._conditions[(patch, side, unknown)] = condition
        return self

    def add_dirichlet(self, patch: int, side: SideLike, function: int = 0, unknown: int = 0) -> BoundaryConditions:
        return self.add_condition(patch, side, ConditionType.DIRICHLET, function, unknown)

    def add_neumann(self, patch: int, side: SideLike, function: int = 0, unknown: int = 0) -> BoundaryConditions:
        return self.add_condition(patch, side, ConditionType.NEUMANN, function, unknown)

    def condition(self, patch: int, side: SideLike, unknown: int = 0) -> Optional[BoundaryCondition]:
        """Return the condition on (patch, side, unknown), or None if free."""
        return self._conditions.get((patch, _as_side(side), unknown))

    def is_dirichlet(self, patch: int, side: SideLike, unknown: int = 0) -> bool:
        cond = self.condition(patch, side, unknown)
        return cond is not None and cond.kind is ConditionType.DIRICHLET

    def patches(self) -> set[int]:
        """Patch indices that carry at least one condition."""
        return {cond.patch for cond in self._conditions.values()}

    def copy(self) -> BoundaryConditions:
        other = BoundaryConditions()
        other._conditions = dict(self._conditions)
        return other

    def __iter__(self) -> Iterator[BoundaryCondition]:
        return iter(sorted(
            self._conditions.values(),
            key=lambda c: (c.patch, c.side, c.unknown),
        ))

    def __len__(self) -> int:
        return len(self._conditions)

    def __repr__(self) -> str:
        items = ", ".join(
            f"({c.patch}, {c.side.name.lower()}, {c.kind.value})" for c in self
        )
        return f"BoundaryConditions([{items}])"
