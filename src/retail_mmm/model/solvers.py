from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np
from scipy.optimize import lsq_linear


@dataclass(frozen=True)
class SolverResult:
    coef: np.ndarray
    converged: bool
    status: int
    message: str


class ConstrainedSolver(ABC):
    """
    Least squares under per-column lower bounds.

    Implementations minimise ``||X b - y||^2`` subject to
    ``b[j] >= lower_bounds[j]``; an unconstrained column has bound ``-inf``.
    """

    @abstractmethod
    def solve(self, X: np.ndarray, y: np.ndarray, lower_bounds: np.ndarray) -> SolverResult:
        ...


class BoundedLeastSquaresSolver(ConstrainedSolver):
    """
    Active-set solver backed by `scipy.optimize.lsq_linear`.

    ``method="bvls"`` is exact for small dense problems: bounded columns
    whose unconstrained estimate violates the bound are held at the bound
    and the remaining columns re-solved.
    """

    def __init__(self, method: str = "bvls", tol: float = 1e-10, max_iter: Optional[int] = None):
        self.method = method
        self.tol = tol
        self.max_iter = max_iter

    def solve(self, X: np.ndarray, y: np.ndarray, lower_bounds: np.ndarray) -> SolverResult:
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float).ravel()
        lb = np.asarray(lower_bounds, dtype=float)
        if lb.shape != (X.shape[1],):
            raise ValueError(f"Expected {X.shape[1]} lower bounds, got shape {lb.shape}")

        res = lsq_linear(
            X,
            y,
            bounds=(lb, np.full_like(lb, np.inf)),
            method=self.method,
            tol=self.tol,
            max_iter=self.max_iter,
        )
        coef = np.where(res.active_mask < 0, lb, np.maximum(res.x, lb))
        return SolverResult(coef=coef, converged=bool(res.status > 0), status=int(res.status), message=str(res.message))
