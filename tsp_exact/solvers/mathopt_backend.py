"""
OR-Tools MathOpt backend.

MathOpt is OR-Tools' solver-independent modelling layer. Through it the exact
solver can drive SCIP (the default, bundled with the `ortools` wheel), HiGHS,
Gurobi and others with a single model definition.

Capabilities:
-------------
- Solution hints: passed on every solve through ModelSolveParameters, so the
  heuristic tour warm starts each round of the loop
- Solution pool: every feasible solution the solver reports is returned
- Lazy constraints: MIP_SOLUTION callbacks with add_lazy_constraints=True
  (supported by GSCIP and GUROBI)

Example:
    >>> backend = MathOptBackend(solver_type='GSCIP')
    >>> model = backend.create_model(name='tsp')
    >>> model.add_binary_variable_matrix(4, symmetric=True)
"""

import datetime
import logging
from typing import Any, Dict, List, Optional

import numpy as np
from ortools.math_opt.python import mathopt

from tsp_exact.core.constraints import LinearConstraint
from tsp_exact.exceptions import SolverConfigurationError, SolverError
from tsp_exact.solvers.solver_base import LazyCallback, MILPBackend, MILPModel, TerminationStatus


# Configure module logger
logger = logging.getLogger(__name__)


_TERMINATION_MAP = {
    mathopt.TerminationReason.OPTIMAL: TerminationStatus.OPTIMAL,
    mathopt.TerminationReason.FEASIBLE: TerminationStatus.FEASIBLE,
    mathopt.TerminationReason.IMPRECISE: TerminationStatus.FEASIBLE,
    mathopt.TerminationReason.INFEASIBLE: TerminationStatus.INFEASIBLE,
    mathopt.TerminationReason.INFEASIBLE_OR_UNBOUNDED: TerminationStatus.INFEASIBLE,
}

# Solvers for which MathOpt implements lazy constraints in MIP_SOLUTION callbacks
_LAZY_SOLVERS = {"GSCIP", "GUROBI"}


class MathOptModel(MILPModel):
    """
    Assignment model held in a mathopt.Model.

    Attributes:
        solver_type (mathopt.SolverType): Solver used by optimize()
        silent (bool): Disable solver output
        time_limit (Optional[datetime.timedelta]): Limit per optimize()
    """

    def __init__(
        self,
        name: str,
        solver_type: mathopt.SolverType,
        silent: bool = True,
        time_limit_seconds: Optional[float] = None,
    ):
        super().__init__(name=name)
        self.solver_type = solver_type
        self.silent = silent
        self.time_limit = (
            datetime.timedelta(seconds=time_limit_seconds)
            if time_limit_seconds is not None else None
        )

        self._model = mathopt.Model(name=name)
        self._variables: List[List[Optional[mathopt.Variable]]] = []
        self._hint: Dict[mathopt.Variable, float] = {}
        self._lazy_callback: Optional[LazyCallback] = None
        self._result: Optional[mathopt.SolveResult] = None

    # ========================================================================
    # Model Construction
    # ========================================================================

    def add_binary_variable_matrix(self, n: int, symmetric: bool) -> None:
        self._claim_variable_matrix(n, symmetric)

        variables: List[List[Optional[mathopt.Variable]]] = [[None] * n for _ in range(n)]
        for i in range(n):
            for j in range(n):
                if i == j:
                    continue
                if symmetric and j < i:
                    variables[i][j] = variables[j][i]
                    continue
                variables[i][j] = self._model.add_binary_variable(name=f"x_{i}_{j}")
        self._variables = variables

        logger.debug(f"Model '{self.name}': created "
                     f"{self.constraint_summary()['binary_variables']} binary variables "
                     f"(n={n}, symmetric={symmetric})")

    def set_objective(self, cost: np.ndarray) -> None:
        self._require_variables()
        n = self.num_cities
        if self.symmetric:
            terms = (float(cost[i, j]) * self._variables[i][j]
                     for i in range(n) for j in range(i))
        else:
            terms = (float(cost[i, j]) * self._variables[i][j]
                     for i in range(n) for j in range(n) if i != j)
        self._model.minimize(mathopt.fast_sum(terms))

    def _expression(self, constraint: LinearConstraint):
        """Translate position terms into a bounded MathOpt expression."""
        expr = mathopt.fast_sum(
            coeff * self._variables[i][j] for (i, j), coeff in constraint.terms.items()
        )
        if constraint.sense == "<=":
            return expr <= constraint.rhs
        if constraint.sense == ">=":
            return expr >= constraint.rhs
        return expr == constraint.rhs

    def _check_positions(self, constraint: LinearConstraint) -> None:
        n = self.num_cities
        for i, j in constraint.terms:
            if not (0 <= i < n and 0 <= j < n) or i == j:
                raise SolverConfigurationError(
                    f"Constraint refers to position ({i}, {j}) outside the "
                    f"off-diagonal {n}x{n} variable matrix"
                )

    def add_constraint(self, constraint: LinearConstraint) -> None:
        self._require_variables()
        self._check_positions(constraint)
        self._model.add_linear_constraint(self._expression(constraint))
        self._count_constraint(constraint.sense)

    def set_start_values(self, assignment: np.ndarray) -> None:
        self._require_variables()
        n = self.num_cities
        hint = {}
        for i in range(n):
            for j in range(n):
                if i == j or (self.symmetric and j < i):
                    continue
                hint[self._variables[i][j]] = 1.0 if assignment[i, j] > 0.5 else 0.0
        self._hint = hint

    def register_lazy_callback(self, callback: LazyCallback) -> None:
        if self.solver_type.name not in _LAZY_SOLVERS:
            raise SolverConfigurationError(
                f"MathOpt solver {self.solver_type.name} does not support lazy constraints; "
                f"use one of {sorted(_LAZY_SOLVERS)}"
            )
        self._lazy_callback = callback

    # ========================================================================
    # Solving
    # ========================================================================

    def _assignment_from_values(self, values: Dict[mathopt.Variable, float]) -> np.ndarray:
        n = self.num_cities
        assignment = np.zeros((n, n))
        for i in range(n):
            for j in range(n):
                if i != j:
                    assignment[i, j] = values.get(self._variables[i][j], 0.0)
        return assignment

    def _on_mip_solution(self, data: mathopt.CallbackData) -> mathopt.CallbackResult:
        result = mathopt.CallbackResult()
        if data.solution is None:
            return result
        constraints = self._lazy_callback(self._assignment_from_values(data.solution))
        for constraint in constraints or ():
            result.add_lazy_constraint(self._expression(constraint))
        return result

    def optimize(self) -> TerminationStatus:
        self._require_variables()

        params = mathopt.SolveParameters(enable_output=not self.silent)
        if self.time_limit is not None:
            params.time_limit = self.time_limit

        model_params = mathopt.ModelSolveParameters()
        if self._hint:
            model_params.solution_hints = [mathopt.SolutionHint(variable_values=self._hint)]

        kwargs: Dict[str, Any] = {'params': params, 'model_params': model_params}
        if self._lazy_callback is not None:
            kwargs['callback_reg'] = mathopt.CallbackRegistration(
                events={mathopt.Event.MIP_SOLUTION},
                add_lazy_constraints=True,
            )
            kwargs['cb'] = self._on_mip_solution

        try:
            self._result = mathopt.solve(self._model, self.solver_type, **kwargs)
        except (RuntimeError, ValueError) as e:
            logger.error(f"MathOpt solve of '{self.name}' failed: {e}")
            raise SolverError(f"MathOpt solve failed: {e}") from e

        reason = self._result.termination.reason
        status = _TERMINATION_MAP.get(reason, TerminationStatus.ERROR)
        logger.debug(f"Model '{self.name}': termination {reason.name} -> {status.value}")
        return status

    def get_feasible_solutions(self) -> List[np.ndarray]:
        if self._result is None:
            return []
        solutions = []
        for solution in self._result.solutions:
            primal = solution.primal_solution
            if primal is None or primal.feasibility_status != mathopt.SolutionStatus.FEASIBLE:
                continue
            solutions.append(self._assignment_from_values(primal.variable_values))
        return solutions

    def objective_value(self) -> float:
        if self._result is None or not self._result.has_primal_feasible_solution():
            raise SolverError(f"Model '{self.name}' has no feasible solution")
        return float(self._result.objective_value())


class MathOptBackend(MILPBackend):
    """
    Backend creating MathOpt models for one MathOpt solver type.

    Args:
        solver_type: Name of a mathopt.SolverType member ('GSCIP', 'HIGHS',
                     'GUROBI', ...)
    """

    name = "mathopt"
    supports_warm_start = True

    def __init__(self, solver_type: str = "GSCIP"):
        try:
            self.solver_type = mathopt.SolverType[solver_type.upper()]
        except KeyError:
            valid = [s.name for s in mathopt.SolverType]
            raise SolverConfigurationError(
                f"Invalid MathOpt solver type '{solver_type}'. Must be one of: {valid}"
            ) from None
        self.supports_lazy_constraints = self.solver_type.name in _LAZY_SOLVERS
        logger.info(f"MathOptBackend initialized with solver_type='{self.solver_type.name}'")

    def create_model(
        self,
        name: str = "tsp",
        silent: bool = True,
        time_limit_seconds: Optional[float] = None,
    ) -> MathOptModel:
        return MathOptModel(
            name=name,
            solver_type=self.solver_type,
            silent=silent,
            time_limit_seconds=time_limit_seconds,
        )

    def get_backend_info(self) -> Dict[str, Any]:
        info = super().get_backend_info()
        info['solver_type'] = self.solver_type.name
        info['capabilities']['solution_pool'] = True
        return info

    def __repr__(self) -> str:
        return f"MathOptBackend(solver_type='{self.solver_type.name}')"
