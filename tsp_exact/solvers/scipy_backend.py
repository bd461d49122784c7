"""
scipy.optimize.milp backend (HiGHS).

A dependency-light backend that needs nothing beyond scipy. HiGHS, as
exposed by scipy, returns a single solution, takes no solution hints and has
no callbacks, so this backend only supports the iterative loop.

The model is kept as a list of sparse rows and assembled into a CSR matrix
on every optimize() call.
"""

import logging
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy import sparse
from scipy.optimize import Bounds, LinearConstraint as ScipyLinearConstraint, milp

from tsp_exact.core.constraints import LinearConstraint
from tsp_exact.exceptions import SolverConfigurationError, SolverError
from tsp_exact.solvers.solver_base import MILPBackend, MILPModel, TerminationStatus


logger = logging.getLogger(__name__)


# scipy.optimize.milp status codes
_STATUS_OPTIMAL = 0
_STATUS_LIMIT = 1
_STATUS_INFEASIBLE = 2


class ScipyMilpModel(MILPModel):
    """Assignment model solved with scipy.optimize.milp."""

    def __init__(self, name: str, silent: bool = True, time_limit_seconds: Optional[float] = None):
        super().__init__(name=name)
        self.silent = silent
        self.time_limit_seconds = time_limit_seconds

        self._index: Dict[Tuple[int, int], int] = {}
        self._num_vars = 0
        self._c: Optional[np.ndarray] = None
        self._rows: List[Dict[int, float]] = []
        self._lb: List[float] = []
        self._ub: List[float] = []
        self._x: Optional[np.ndarray] = None
        self._fun: Optional[float] = None

    def add_binary_variable_matrix(self, n: int, symmetric: bool) -> None:
        self._claim_variable_matrix(n, symmetric)
        index = {}
        k = 0
        for i in range(n):
            for j in range(i + 1 if symmetric else 0, n):
                if i == j:
                    continue
                index[(i, j)] = k
                if symmetric:
                    index[(j, i)] = k
                k += 1
        self._index = index
        self._num_vars = k
        self._c = np.zeros(k)

    def set_objective(self, cost: np.ndarray) -> None:
        self._require_variables()
        n = self.num_cities
        c = np.zeros(self._num_vars)
        for i in range(n):
            for j in range(n):
                if i == j:
                    continue
                if self.symmetric:
                    # lower triangle only, one charge per undirected edge
                    if i > j:
                        c[self._index[(i, j)]] = cost[i, j]
                else:
                    c[self._index[(i, j)]] = cost[i, j]
        self._c = c

    def add_constraint(self, constraint: LinearConstraint) -> None:
        self._require_variables()
        row: Dict[int, float] = {}
        for position, coeff in constraint.terms.items():
            if position not in self._index:
                raise SolverConfigurationError(
                    f"Constraint refers to position {position} outside the "
                    f"off-diagonal {self.num_cities}x{self.num_cities} variable matrix"
                )
            k = self._index[position]
            row[k] = row.get(k, 0.0) + coeff

        if constraint.sense == "<=":
            lb, ub = -np.inf, constraint.rhs
        elif constraint.sense == ">=":
            lb, ub = constraint.rhs, np.inf
        else:
            lb = ub = constraint.rhs

        self._rows.append(row)
        self._lb.append(lb)
        self._ub.append(ub)
        self._count_constraint(constraint.sense)

    def _constraint_matrix(self) -> sparse.csr_matrix:
        data, rows, cols = [], [], []
        for r, row in enumerate(self._rows):
            for k, coeff in row.items():
                rows.append(r)
                cols.append(k)
                data.append(coeff)
        return sparse.csr_matrix(
            (data, (rows, cols)), shape=(len(self._rows), self._num_vars)
        )

    def optimize(self) -> TerminationStatus:
        self._require_variables()

        constraints = []
        if self._rows:
            constraints.append(
                ScipyLinearConstraint(self._constraint_matrix(), self._lb, self._ub)
            )

        options = {'disp': not self.silent}
        if self.time_limit_seconds is not None:
            options['time_limit'] = self.time_limit_seconds

        try:
            res = milp(
                c=self._c,
                constraints=constraints,
                integrality=np.ones(self._num_vars),
                bounds=Bounds(0, 1),
                options=options,
            )
        except ValueError as e:
            logger.error(f"scipy milp on '{self.name}' rejected the model: {e}")
            raise SolverError(f"scipy milp failed: {e}") from e

        self._x = res.x
        self._fun = res.fun if res.x is not None else None

        if res.status == _STATUS_OPTIMAL:
            status = TerminationStatus.OPTIMAL
        elif res.status == _STATUS_LIMIT and res.x is not None:
            status = TerminationStatus.FEASIBLE
        elif res.status == _STATUS_INFEASIBLE:
            status = TerminationStatus.INFEASIBLE
        else:
            status = TerminationStatus.ERROR

        logger.debug(f"Model '{self.name}': milp status {res.status} ({res.message}) -> {status.value}")
        return status

    def get_feasible_solutions(self) -> List[np.ndarray]:
        if self._x is None:
            return []
        n = self.num_cities
        assignment = np.zeros((n, n))
        for (i, j), k in self._index.items():
            assignment[i, j] = self._x[k]
        return [assignment]

    def objective_value(self) -> float:
        if self._fun is None:
            raise SolverError(f"Model '{self.name}' has no feasible solution")
        return float(self._fun)


class ScipyMilpBackend(MILPBackend):
    """Backend creating scipy.optimize.milp models."""

    name = "scipy"
    supports_lazy_constraints = False
    supports_warm_start = False

    def create_model(
        self,
        name: str = "tsp",
        silent: bool = True,
        time_limit_seconds: Optional[float] = None,
    ) -> ScipyMilpModel:
        return ScipyMilpModel(name=name, silent=silent, time_limit_seconds=time_limit_seconds)
