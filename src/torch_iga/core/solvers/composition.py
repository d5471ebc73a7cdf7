"""Composition of preconditioners.

If the preconditioners P_1, ..., P_n have the iteration matrices I - P_i A,
their composition has the iteration matrix

    (I - P_n A) ... (I - P_1 A)

i.e. step() runs the individual steps in insertion order, each one seeing
the iterate produced by the previous ones. The transposed iteration matrix
is (I - P_1^T A) ... (I - P_n^T A), so step_t() runs the individual
step_t() in reverse order.

This is not the same as the product of operators P_n ... P_1, whose
iteration matrix would be I - P_n ... P_1 A.
"""

from __future__ import annotations

from typing import Iterable, Iterator

from torch import Tensor

from ..errors import PreconditionViolation
from .operators import LinearOperator, PreconditionerOperator


class CompositionOfPreconditioners(PreconditionerOperator):
    """Preconditioner applying a sequence of preconditioners one after another.

    The composition holds plain references: the same preconditioner may be
    part of several compositions, or appear several times in one.

    No check is made that the composed preconditioners share one underlying
    operator; underlying_op(), rows() and cols() report those of the first
    element, and keeping the elements consistent is up to the caller.

    Args:
        ops (Iterable[PreconditionerOperator]): initial sequence, may be empty.
    """

    def __init__(self, ops: Iterable[PreconditionerOperator] = ()):
        super().__init__()
        self._ops: list[PreconditionerOperator] = list(ops)

    @classmethod
    def make(cls, *ops: PreconditionerOperator) -> CompositionOfPreconditioners:
        """Build a composition from preconditioners given as arguments."""
        return cls(ops)

    def add_operator(self, op: PreconditionerOperator) -> None:
        """Append a preconditioner; it is applied after the existing ones."""
        self._ops.append(op)

    @property
    def operators(self) -> tuple[PreconditionerOperator, ...]:
        return tuple(self._ops)

    def step(self, f: Tensor, x: Tensor) -> None:
        for op in self._ops:
            op.step(f, x)

    def step_t(self, f: Tensor, x: Tensor) -> None:
        for op in reversed(self._ops):
            op.step_t(f, x)

    def underlying_op(self) -> LinearOperator:
        return self._first("underlying_op").underlying_op()

    def rows(self) -> int:
        return self._first("rows").rows()

    def cols(self) -> int:
        return self._first("cols").cols()

    def _first(self, method: str) -> PreconditionerOperator:
        if not self._ops:
            raise PreconditionViolation(
                f"CompositionOfPreconditioners.{method} does not work for 0 operators"
            )
        return self._ops[0]

    def __len__(self) -> int:
        return len(self._ops)

    def __iter__(self) -> Iterator[PreconditionerOperator]:
        return iter(self._ops)

    def __repr__(self) -> str:
        inner = ", ".join(repr(op) for op in self._ops)
        return f"CompositionOfPreconditioners([{inner}])"
