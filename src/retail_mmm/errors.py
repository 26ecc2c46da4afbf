from __future__ import annotations

from typing import List, Optional, Sequence


class MMMError(Exception):
    """Base class for pipeline failures that abort a run."""


class SchemaError(MMMError, KeyError):
    """Input table is missing required columns."""

    def __init__(self, missing: Sequence[str], table: str = "input"):
        self.missing = list(missing)
        self.table = table
        super().__init__(f"{table} is missing required columns: {self.missing}")

    def __str__(self) -> str:
        return self.args[0]


class ParameterError(MMMError, ValueError):
    """Media transform parameter outside its valid range."""

    def __init__(self, message: str, channel: Optional[str] = None):
        self.channel = channel
        prefix = f"[{channel}] " if channel else ""
        super().__init__(prefix + message)


class AssemblyError(MMMError, ValueError):
    """Model-input table violates its one-row-per-week / no-null contract."""


class DegenerateDesignError(MMMError, ValueError):
    """
    Design matrix cannot support a unique least-squares solution.

    Attributes
    ----------
    regressors:
        Regressors involved in the linear dependency (or holding bad values).
    weeks:
        Week starts that triggered the failure, when the problem is row-level.
    """

    def __init__(
        self,
        message: str,
        regressors: Optional[Sequence[str]] = None,
        weeks: Optional[Sequence[object]] = None,
    ):
        self.regressors: List[str] = list(regressors or [])
        self.weeks: List[object] = list(weeks or [])
        details = []
        if self.regressors:
            details.append(f"regressors={self.regressors}")
        if self.weeks:
            details.append(f"weeks={[str(w) for w in self.weeks]}")
        super().__init__(message + (" (" + "; ".join(details) + ")" if details else ""))


class EstimationError(MMMError, RuntimeError):
    """Constrained solver did not converge."""


class BudgetMismatchError(MMMError, ValueError):
    """Reallocation scenario changes total spend."""

    def __init__(self, historical_total: float, scenario_total: float):
        self.historical_total = historical_total
        self.scenario_total = scenario_total
        super().__init__(
            f"Scenario total spend {scenario_total:.4f} differs from historical "
            f"total {historical_total:.4f}; reallocation must keep the budget fixed."
        )
