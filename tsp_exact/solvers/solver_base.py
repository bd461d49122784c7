"""
MILP backend interface for the exact TSP solver.

The exact solver never talks to a concrete optimization library directly.
It builds its assignment model through the narrow interface defined here, so
any library able to (1) create binary variables, (2) take a linear objective
and linear constraints, (3) optimize and (4) hand back integer-feasible
solutions can drive the constraint-generation loop.

Two roles are separated:

- **MILPBackend**: a factory describing one solver configuration (e.g.
  OR-Tools MathOpt with SCIP, or scipy's HiGHS wrapper). It is cheap to
  create and can be shared between solves.
- **MILPModel**: a single model instance created by a backend. Every solve
  (including each recursive sub-cluster solve) owns its own model; models are
  never shared.

Constraints cross the interface as backend-neutral
:class:`tsp_exact.core.constraints.LinearConstraint` objects whose terms are
keyed by positions ``(i, j)`` of the assignment matrix. Each model maps the
positions onto its own variables, which is why a model holds at most one
variable matrix.

Example Usage
-------------
```python
from tsp_exact.solvers.mathopt_backend import MathOptBackend

backend = MathOptBackend(solver_type='GSCIP')
model = backend.create_model(name='tsp', silent=True)
model.add_binary_variable_matrix(n=5, symmetric=True)
model.set_objective(cost)
status = model.optimize()
solutions = model.get_feasible_solutions()
```
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING
import logging

import numpy as np

from tsp_exact.exceptions import SolverConfigurationError

if TYPE_CHECKING:
    from tsp_exact.core.constraints import LinearConstraint


# Configure module logger
logger = logging.getLogger(__name__)


# ============================================================================
# Termination Status
# ============================================================================

class TerminationStatus(Enum):
    """Outcome of one optimize() call, normalized across backends."""

    OPTIMAL = "optimal"
    FEASIBLE = "feasible_not_proven_optimal"
    INFEASIBLE = "infeasible"
    ERROR = "error"


LazyCallback = Callable[[np.ndarray], Optional[List["LinearConstraint"]]]


# ============================================================================
# Abstract Model
# ============================================================================

class MILPModel(ABC):
    """
    One binary assignment model owned by a single solve invocation.

    Subclasses must keep track of the variable matrix they create and
    translate matrix positions to variables in add_constraint().

    Attributes:
        name (str): Model name (used in logs)
        num_cities (int): Size of the variable matrix, 0 until created
        symmetric (bool): Whether (i, j) and (j, i) share one variable
    """

    def __init__(self, name: str = "tsp"):
        self.name = name
        self.num_cities = 0
        self.symmetric = False
        self._has_variables = False
        self._num_equalities = 0
        self._num_inequalities = 0

    def _claim_variable_matrix(self, n: int, symmetric: bool) -> None:
        """Record the variable matrix shape; a model holds only one."""
        if self._has_variables:
            raise SolverConfigurationError(
                f"Model '{self.name}' already has a variable matrix"
            )
        if n < 1:
            raise SolverConfigurationError(f"Variable matrix size must be positive, got {n}")
        self.num_cities = n
        self.symmetric = symmetric
        self._has_variables = True

    def _require_variables(self) -> None:
        if not self._has_variables:
            raise SolverConfigurationError(
                f"Model '{self.name}' has no variable matrix; call add_binary_variable_matrix() first"
            )

    def _count_constraint(self, sense: str) -> None:
        if sense == "==":
            self._num_equalities += 1
        else:
            self._num_inequalities += 1

    @abstractmethod
    def add_binary_variable_matrix(self, n: int, symmetric: bool) -> None:
        """
        Create the N x N binary decision variables.

        In symmetric mode a single variable represents the undirected edge
        {i, j} and is shared by positions (i, j) and (j, i). Diagonal
        positions never get a variable.

        Raises:
            SolverConfigurationError: If the model already has variables
        """
        pass

    @abstractmethod
    def set_objective(self, cost: np.ndarray) -> None:
        """
        Minimize the tour cost.

        Symmetric mode charges cost[i, j] for i > j once per undirected
        edge; asymmetric mode charges cost[i, j] for every directed arc.
        """
        pass

    @abstractmethod
    def add_constraint(self, constraint: "LinearConstraint") -> None:
        """Add a linear constraint over assignment-matrix positions."""
        pass

    def set_start_values(self, assignment: np.ndarray) -> None:
        """
        Provide a warm-start assignment used by every later optimize() call.

        Default implementation ignores the hint; backends whose solver
        accepts hints override this.
        """
        logger.debug(f"Model '{self.name}' ignores start values")

    @abstractmethod
    def optimize(self) -> TerminationStatus:
        """Run the solver on the current model and return its status."""
        pass

    @abstractmethod
    def get_feasible_solutions(self) -> List[np.ndarray]:
        """
        Return the feasible solutions of the last optimize() call.

        Each solution is an N x N float matrix; the best solution comes
        first. Solvers with a solution pool may return several.
        """
        pass

    @abstractmethod
    def objective_value(self) -> float:
        """Objective value of the best solution of the last optimize() call."""
        pass

    def register_lazy_callback(self, callback: LazyCallback) -> None:
        """
        Register a callback run on every integer-feasible candidate.

        The callback receives the candidate assignment matrix and returns the
        constraints to add to the live search (or None).

        Raises:
            SolverConfigurationError: If the backend has no callback support
        """
        raise SolverConfigurationError(
            f"{self.__class__.__name__} does not support lazy constraints"
        )

    def constraint_summary(self) -> Dict[str, int]:
        """Counts of the model's variables and constraints."""
        n = self.num_cities
        num_variables = n * (n - 1) // 2 if self.symmetric else n * (n - 1)
        return {
            'binary_variables': num_variables if self._has_variables else 0,
            'equality_constraints': self._num_equalities,
            'inequality_constraints': self._num_inequalities,
        }

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}("
                f"name='{self.name}', num_cities={self.num_cities}, "
                f"symmetric={self.symmetric})")


# ============================================================================
# Abstract Backend
# ============================================================================

class MILPBackend(ABC):
    """
    Abstract factory for MILP models.

    Attributes:
        name (str): Backend identifier ('mathopt', 'scipy')
        supports_lazy_constraints (bool): Whether models accept lazy callbacks
        supports_warm_start (bool): Whether models use start values
    """

    name: str = "abstract"
    supports_lazy_constraints: bool = False
    supports_warm_start: bool = False

    @abstractmethod
    def create_model(
        self,
        name: str = "tsp",
        silent: bool = True,
        time_limit_seconds: Optional[float] = None,
    ) -> MILPModel:
        """
        Create a fresh, empty model.

        Args:
            name: Model name for logging
            silent: Suppress the solver's own output
            time_limit_seconds: Limit for each optimize() call (None = no limit)
        """
        pass

    def get_backend_info(self) -> Dict[str, Any]:
        """Describe the backend's capabilities."""
        return {
            'backend': self.name,
            'capabilities': {
                'lazy_constraints': self.supports_lazy_constraints,
                'warm_start': self.supports_warm_start,
            },
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"
