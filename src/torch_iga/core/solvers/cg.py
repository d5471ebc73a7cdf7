"""Iterative solvers consuming linear operators and preconditioners.

This module provides:
- cg_solve: Preconditioned Conjugate Gradient for symmetric positive
  definite systems A x = b, with any LinearOperator (typically the
  fast diagonalization operator) as preconditioner.
- solve_iteratively: stationary iteration x <- step(f, x) driven by a
  PreconditionerOperator (smoothers and their compositions).
"""
# pylint: disable=invalid-name

from __future__ import annotations

import logging
from typing import Optional

import torch
from torch import Tensor

from ..ops.tensor import MatrixLike, matvec
from .operators import LinearOperator, PreconditionerOperator, check_vector

logger = logging.getLogger(__name__)


def cg_solve(
    A: MatrixLike,
    b: Tensor,
    x0: Optional[Tensor] = None,
    preconditioner: Optional[LinearOperator] = None,
    tol: float = 1e-8,
    maxiter: Optional[int] = None,
) -> tuple[Tensor, dict]:
    """Solve the SPD linear system A x = b via Preconditioned Conjugate Gradient.

    Supports both vector (n,) and batched (n, d) right-hand sides. When b has
    shape (n, d), all d systems are solved simultaneously.

    Args:
        A (MatrixLike): symmetric positive definite matrix or operator.
        b (Tensor): right-hand side, shape (n,) or (n, d).
        x0 (Tensor | None): initial guess, defaults to zero.
        preconditioner (LinearOperator | None): optional operator P
            approximating A^{-1}. When None, CG runs without preconditioning.
        tol (float): stopping tolerance on the residual norm.
        maxiter (int | None): maximum number of iterations. Defaults to n.

    Returns:
        x (Tensor): approximate solution, same shape as b.
        info (dict): convergence info with keys:
            - "converged" (bool)
            - "iterations" (int)
            - "residual_norm" (float): max residual norm across features.
    """
    n = b.shape[0]
    _maxiter = maxiter if maxiter is not None else max(n, 1)
    if preconditioner is not None:
        check_vector(b, preconditioner.cols(), "b")

    # Initial guess
    x = torch.zeros_like(b) if x0 is None else x0.clone()

    # Initial residual: r = b - A x
    r = b - matvec(A, x)

    converged = bool(r.norm(dim=0).max() < tol) if n > 0 else True
    it = -1

    if not converged:
        z = preconditioner.apply(r) if preconditioner is not None else r.clone()
        p = z.clone()

        # Inner products along the n dimension: scalar or (d,) if batched
        rz_old = (r.conj() * z).sum(dim=0)

        for it in range(_maxiter):
            Ap = matvec(A, p)

            # Step size alpha = (r^T z) / (p^T A p)
            pAp = (p.conj() * Ap).sum(dim=0)
            alpha = rz_old / pAp

            x = x + alpha * p
            r = r - alpha * Ap

            residual_norm = r.norm(dim=0)
            if residual_norm.max() < tol:
                converged = True
                break

            z = preconditioner.apply(r) if preconditioner is not None else r.clone()
            rz_new = (r.conj() * z).sum(dim=0)

            # Direction update: p = z + beta * p
            beta = rz_new / rz_old
            p = z + beta * p
            rz_old = rz_new

    info = {
        "converged": converged,
        "iterations": it + 1,
        "residual_norm": float(r.norm(dim=0).max()) if n > 0 else 0.0,
    }

    if converged:
        logger.info(
            "PCG converged in %d iterations (residual %.3e)",
            info["iterations"], info["residual_norm"],
        )
    else:
        logger.warning(
            "PCG did not converge in %d iterations (residual %.3e)",
            info["iterations"], info["residual_norm"],
        )
    return x, info


def solve_iteratively(
    preconditioner: PreconditionerOperator,
    f: Tensor,
    x0: Optional[Tensor] = None,
    tol: float = 1e-8,
    maxiter: int = 100,
    transposed: bool = False,
) -> tuple[Tensor, dict]:
    """Stationary iteration x <- x + P (f - A x) until the residual is small.

    A is preconditioner.underlying_op(); each iteration is one call to
    step() (or step_t() if transposed).

    Args:
        preconditioner (PreconditionerOperator): smoother / preconditioner.
        f (Tensor): right-hand side, shape (n,) or (n, d).
        x0 (Tensor | None): initial guess, defaults to zero.
        tol (float): stopping tolerance on the residual norm.
        maxiter (int): maximum number of steps.
        transposed (bool): use step_t instead of step.

    Returns:
        x (Tensor): final iterate.
        info (dict): "converged", "iterations", "residual_norm".
    """
    A = preconditioner.underlying_op()
    check_vector(f, A.rows(), "f")
    x = torch.zeros_like(f) if x0 is None else x0.clone()
    sweep = preconditioner.step_t if transposed else preconditioner.step

    residual_norm = float((f - A.apply(x)).norm(dim=0).max()) if f.numel() else 0.0
    converged = residual_norm < tol
    it = 0
    while not converged and it < maxiter:
        sweep(f, x)
        it += 1
        residual_norm = float((f - A.apply(x)).norm(dim=0).max())
        converged = residual_norm < tol

    if converged:
        logger.info("Stationary iteration converged in %d steps (residual %.3e)", it, residual_norm)
    else:
        logger.warning("Stationary iteration did not converge in %d steps (residual %.3e)", it, residual_norm)
    return x, {"converged": converged, "iterations": it, "residual_norm": residual_norm}
