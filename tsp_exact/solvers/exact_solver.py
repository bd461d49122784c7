"""
Exact TSP solver: assignment relaxation plus iterative subtour elimination.

Algorithm (Dantzig-Fulkerson-Johnson with constraint generation):
-----------------------------------------------------------------
1. Build the assignment model. Symmetric problems get one binary variable
   per undirected edge and degree 2 per city; asymmetric problems get one
   binary per arc, in/out degree 1 per city and no 2-cycles.
2. Optionally pre-seed subtour elimination constraints: sub-tours of
   clusters found by hierarchical clustering, plus any supplied by the
   caller.
3. Solve. Decompose every feasible solution the solver reports into cycles.
4. If the best solution is a single cycle through all cities it is an
   optimal tour. Otherwise add one subtour elimination constraint per
   distinct cycle found and solve again.

The set of added constraints only grows, and every constraint cuts off the
subtour that produced it, so the loop terminates. With lazy constraints
enabled the subtours are cut off inside the solver's search instead; the
loop then normally finishes after one solve, which it still verifies.

Example Usage:
    >>> from tsp_exact.solvers.exact_solver import get_optimal_tour
    >>> from tsp_exact.solvers.mathopt_backend import MathOptBackend
    >>>
    >>> cities = [(0, 0), (0, 1), (1, 1), (1, 0)]
    >>> tour, cost = get_optimal_tour(cities, MathOptBackend())
    >>> tour, cost
    ([0, 1, 2, 3], 4.0)
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from tsp_exact.config import Settings, settings as default_settings
from tsp_exact.core.constraints import (
    cycle_elimination_constraints,
    degree_constraints,
    subtour_elimination_constraint,
)
from tsp_exact.core.cycles import assignment_from_tour, rotate_to_start
from tsp_exact.exceptions import (
    AlgorithmInvariantError,
    InvalidProblemError,
    SolverConfigurationError,
    SolverConvergenceError,
    SolverError,
)
from tsp_exact.problems.distances import Distance, cost_matrix_from_cities, euclidean_distance
from tsp_exact.problems.tsp import TSPProblem
from tsp_exact.solvers.clustering import ClusterWarmStart
from tsp_exact.solvers.heuristic import heuristic_tour
from tsp_exact.solvers.lazy import LazyCycleCallback
from tsp_exact.solvers.mathopt_backend import MathOptBackend
from tsp_exact.solvers.scipy_backend import ScipyMilpBackend
from tsp_exact.solvers.solver_base import MILPBackend, MILPModel, TerminationStatus


logger = logging.getLogger(__name__)


BackendLike = Union[MILPBackend, str]


# ============================================================================
# Statistics
# ============================================================================

@dataclass
class SolveStats:
    """Counters of one top-level solve (sub-cluster solves keep their own)."""

    iterations: int = 0
    cycles_eliminated: int = 0
    lazy_triggers: int = 0
    solver_time_s: float = 0.0
    initial_subtours: int = 0
    termination_statuses: List[str] = field(default_factory=list)
    proven_optimal: bool = True
    heuristic_cost: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def format_time(seconds: float) -> str:
    """
    Format a duration with more decimals the shorter it is (at most 4).

    Example:
        >>> format_time(0.01234)
        '0.0123 seconds'
        >>> format_time(12.3456)
        '12.35 seconds'
    """
    if seconds > 100:
        text = f"{seconds:.0f}"
    elif seconds > 1:
        text = f"{seconds:.2f}"
    elif seconds > 0.1:
        text = f"{seconds:.3f}"
    else:
        text = f"{seconds:.4f}"
    return f"{text} seconds"


# ============================================================================
# Default Backend
# ============================================================================

_default_backend: Optional[MILPBackend] = None


def backend_from_name(name: str, **kwargs) -> MILPBackend:
    """
    Create a backend by name.

    Args:
        name: 'mathopt' or 'scipy'
        **kwargs: Passed to the backend (e.g. solver_type='HIGHS' for mathopt)

    Raises:
        SolverConfigurationError: If the name is unknown
    """
    key = name.strip().lower()
    if key == "mathopt":
        kwargs.setdefault("solver_type", default_settings.solver.mathopt_solver_type)
        return MathOptBackend(**kwargs)
    if key == "scipy":
        return ScipyMilpBackend(**kwargs)
    raise SolverConfigurationError(
        f"Unknown backend '{name}'. Must be one of: ['mathopt', 'scipy']"
    )


def set_default_backend(backend: BackendLike) -> None:
    """Set the backend used when a solve is given none."""
    global _default_backend
    _default_backend = backend_from_name(backend) if isinstance(backend, str) else backend
    logger.info(f"Default backend set to {_default_backend!r}")


def get_default_backend() -> Optional[MILPBackend]:
    return _default_backend


def reset_default_backend() -> None:
    global _default_backend
    _default_backend = None


def resolve_backend(backend: Optional[BackendLike], settings: Optional[Settings] = None) -> MILPBackend:
    """
    Pick the backend for a solve.

    Order: the explicit argument, the process-wide default, then
    settings.solver.default_backend.

    Raises:
        SolverConfigurationError: If none of them is set
    """
    if backend is not None:
        return backend_from_name(backend) if isinstance(backend, str) else backend
    if _default_backend is not None:
        return _default_backend

    configured = (settings or default_settings).solver.default_backend
    if configured is not None:
        return backend_from_name(configured)

    raise SolverConfigurationError(
        "No MILP backend given and no default set. Pass a backend, call "
        "set_default_backend(), or set TSP_SOLVER_DEFAULT_BACKEND."
    )


# ============================================================================
# Input Handling
# ============================================================================

def validate_cost_matrix(cost: Any) -> np.ndarray:
    """
    Check a cost matrix and return a read-only float copy.

    Raises:
        InvalidProblemError: If the matrix is not square, has fewer than 3
            rows, or contains negative or non-finite entries
    """
    try:
        matrix = np.array(cost, dtype=float)
    except (TypeError, ValueError) as e:
        raise InvalidProblemError(f"Cost matrix is not numeric: {e}") from e

    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise InvalidProblemError(f"Cost matrix must be square, got shape {matrix.shape}")
    if matrix.shape[0] < 3:
        raise InvalidProblemError(
            f"A tour needs at least 3 cities, got {matrix.shape[0]}"
        )
    if not np.all(np.isfinite(matrix)):
        raise InvalidProblemError("Cost matrix contains non-finite entries")
    if np.any(matrix < 0):
        raise InvalidProblemError("Cost matrix contains negative entries")

    matrix.setflags(write=False)
    return matrix


def _looks_like_cities(data: np.ndarray) -> bool:
    # An N x 2 array with N != 2 cannot be a cost matrix
    return data.ndim == 2 and data.shape[1] == 2 and data.shape[0] != 2


def _validate_subtours(subtours: Sequence[Sequence[int]], n: int) -> List[List[int]]:
    checked = []
    for subtour in subtours:
        members = [int(c) for c in subtour]
        if not members or len(set(members)) != len(members):
            raise InvalidProblemError(f"Initial subtour {members} is empty or repeats a city")
        if not all(0 <= c < n for c in members):
            raise InvalidProblemError(f"Initial subtour {members} refers to a city outside 0..{n - 1}")
        if len(members) >= n:
            raise InvalidProblemError("An initial subtour must leave out at least one city")
        checked.append(members)
    return checked


# ============================================================================
# Solver
# ============================================================================

class ExactTSPSolver:
    """
    Exact TSP solver driving a MILP backend.

    Args:
        backend: Backend instance or name; resolved per solve when None
        settings: Settings to use instead of the global ones

    Attributes:
        last_stats (Optional[SolveStats]): Counters of the latest solve

    Example:
        >>> solver = ExactTSPSolver(backend='scipy')
        >>> result = solver.solve(TSPProblem.random(8, seed=0), heuristic_warmstart=False)
        >>> result['solution'], result['cost']
    """

    def __init__(self, backend: Optional[BackendLike] = None, settings: Optional[Settings] = None):
        self.backend = backend
        self.settings = settings or default_settings
        self.last_stats: Optional[SolveStats] = None

    def solve(
        self,
        problem: Union[TSPProblem, np.ndarray],
        symmetric: Optional[bool] = None,
        lazy_constraints: bool = False,
        heuristic_warmstart: Optional[bool] = None,
        silent: Optional[bool] = None,
        initial_subtours: Sequence[Sequence[int]] = (),
        verbose: bool = False,
        clustering: Optional[bool] = None,
        time_limit_seconds: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Solve a TSP instance to optimality.

        Args:
            problem: TSPProblem or N x N cost matrix
            symmetric: Formulation to use; detected from the matrix when None.
                Forcing False on a symmetric matrix is allowed. Forcing True on
                an asymmetric matrix solves the undirected problem over the
                lower triangle of the matrix.
            lazy_constraints: Eliminate subtours inside the solver search
            heuristic_warmstart: Warm start every solve with a routing tour
                (default: settings.heuristic.enabled)
            silent: Suppress solver output (default: settings.solver.silent)
            initial_subtours: City sets to forbid as subtours from the start
            verbose: Log per-iteration progress at INFO
            clustering: Run the clustering warm start (default:
                settings.clustering.enabled)
            time_limit_seconds: Limit per solver call (default:
                settings.solver.time_limit_seconds)

        Returns:
            Dictionary with 'solution' (tour starting at city 0), 'cost'
            (objective value), 'time_ms', 'iterations' and 'metadata'

        Raises:
            InvalidProblemError: Malformed cost matrix or initial subtours
            SolverConfigurationError: No backend, or lazy mode unsupported
            SolverError: The solver found no feasible solution
            AlgorithmInvariantError: Internal consistency check failed
        """
        start_time = time.perf_counter()

        cost = validate_cost_matrix(
            problem.cost_matrix if isinstance(problem, TSPProblem) else problem
        )
        instance = problem if isinstance(problem, TSPProblem) else TSPProblem(cost)
        n = cost.shape[0]
        subtours = _validate_subtours(initial_subtours, n)
        backend = resolve_backend(self.backend, self.settings)

        if symmetric is None:
            symmetric = bool(np.array_equal(cost, cost.T))
        elif symmetric and not np.array_equal(cost, cost.T):
            logger.warning("Solving an asymmetric cost matrix with the symmetric formulation; "
                           "edge {i, j} is charged cost[max(i, j), min(i, j)]")

        if heuristic_warmstart is None:
            heuristic_warmstart = self.settings.heuristic.enabled
        if silent is None:
            silent = self.settings.solver.silent
        if clustering is None:
            clustering = self.settings.clustering.enabled
        if time_limit_seconds is None:
            time_limit_seconds = self.settings.solver.time_limit_seconds

        if lazy_constraints and not backend.supports_lazy_constraints:
            raise SolverConfigurationError(
                f"Backend {backend!r} does not support lazy constraints"
            )

        stats = SolveStats()
        self.last_stats = stats

        if clustering:
            cluster_warm_start = ClusterWarmStart(
                self._subproblem_solver(backend, heuristic_warmstart, time_limit_seconds),
                self.settings,
            )
            subtours = subtours + cluster_warm_start.initial_subtours(cost, symmetric, verbose)

        tour, value, model = self._optimal_tour(
            cost,
            backend,
            symmetric=symmetric,
            lazy_constraints=lazy_constraints,
            heuristic_warmstart=heuristic_warmstart,
            silent=silent,
            initial_subtours=subtours,
            verbose=verbose,
            time_limit_seconds=time_limit_seconds,
            stats=stats,
        )

        result = {
            'solution': tour,
            'cost': value,
            'time_ms': int((time.perf_counter() - start_time) * 1000),
            'iterations': stats.iterations,
            'metadata': {
                'solver_type': 'exact',
                'backend': backend.name,
                'problem_size': n,
                'symmetric': symmetric,
                'lazy_constraints': lazy_constraints,
                'heuristic_warmstart': heuristic_warmstart,
                'clustering': clustering,
                'proven_optimal': stats.proven_optimal,
                'stats': stats.to_dict(),
                'model': model.constraint_summary(),
                'instance': instance.get_metadata(),
            },
        }

        logger.info(f"Solve complete: cost={value:.4f}, time={result['time_ms']}ms, "
                    f"iterations={stats.iterations}")
        return result

    def _subproblem_solver(self, backend: MILPBackend, heuristic_warmstart: bool,
                           time_limit_seconds: Optional[float]):
        """Recursive solve used for clusters: fresh model, silent, no clustering."""

        def solve_cluster(sub_cost: np.ndarray) -> Tuple[List[int], float]:
            sub_cost = validate_cost_matrix(sub_cost)
            t0 = time.perf_counter()
            tour, value, _ = self._optimal_tour(
                sub_cost,
                backend,
                symmetric=True,
                lazy_constraints=False,
                heuristic_warmstart=heuristic_warmstart,
                silent=True,
                initial_subtours=[],
                verbose=False,
                time_limit_seconds=time_limit_seconds,
                stats=SolveStats(),
            )
            logger.debug(f"Solved sub-cluster with {sub_cost.shape[0]} cities in "
                         f"{format_time(time.perf_counter() - t0)}")
            return tour, value

        return solve_cluster

    def _build_model(
        self,
        cost: np.ndarray,
        backend: MILPBackend,
        symmetric: bool,
        silent: bool,
        time_limit_seconds: Optional[float],
    ) -> MILPModel:
        n = cost.shape[0]
        model = backend.create_model(
            name=f"tsp_{n}", silent=silent, time_limit_seconds=time_limit_seconds
        )
        model.add_binary_variable_matrix(n, symmetric)
        model.set_objective(cost)
        for constraint in degree_constraints(n, symmetric):
            model.add_constraint(constraint)
        return model

    def _optimal_tour(
        self,
        cost: np.ndarray,
        backend: MILPBackend,
        symmetric: bool,
        lazy_constraints: bool,
        heuristic_warmstart: bool,
        silent: bool,
        initial_subtours: Sequence[Sequence[int]],
        verbose: bool,
        time_limit_seconds: Optional[float],
        stats: SolveStats,
    ) -> Tuple[List[int], float, MILPModel]:
        n = cost.shape[0]
        log = logger.info if verbose else logger.debug
        max_iterations = self.settings.solver.max_iterations

        model = self._build_model(cost, backend, symmetric, silent, time_limit_seconds)

        added = set()
        for subtour in initial_subtours:
            constraint = subtour_elimination_constraint(subtour, n, symmetric)
            if constraint.key in added:
                continue
            added.add(constraint.key)
            model.add_constraint(constraint)
        stats.initial_subtours = len(added)

        if heuristic_warmstart:
            if backend.supports_warm_start:
                t0 = time.perf_counter()
                found = heuristic_tour(
                    cost,
                    time_limit_seconds=self.settings.heuristic.time_limit_seconds,
                    metaheuristic=self.settings.heuristic.local_search_metaheuristic,
                    cost_scale=self.settings.heuristic.cost_scale,
                )
                if found is not None:
                    heuristic_path, heuristic_cost = found
                    stats.heuristic_cost = heuristic_cost
                    model.set_start_values(assignment_from_tour(heuristic_path, n, symmetric))
                    log(f"Heuristic solve obtained cost {heuristic_cost:.4f} in "
                        f"{format_time(time.perf_counter() - t0)}")
            else:
                logger.debug(f"Backend {backend!r} takes no start values; skipping heuristic")

        if lazy_constraints:
            model.register_lazy_callback(LazyCycleCallback(symmetric, stats, verbose))

        log(f"Starting optimization of {n} cities with {len(added)} initial subtour "
            f"elimination constraints")

        while True:
            if stats.iterations >= max_iterations:
                raise SolverConvergenceError(
                    f"No single tour after {max_iterations} iterations"
                )

            t0 = time.perf_counter()
            status = model.optimize()
            elapsed = time.perf_counter() - t0
            stats.iterations += 1
            stats.solver_time_s += elapsed
            stats.termination_statuses.append(status.value)

            solutions = model.get_feasible_solutions()
            if not solutions:
                raise SolverError(
                    f"Solver returned status '{status.value}' without a feasible solution"
                )
            if status != TerminationStatus.OPTIMAL:
                logger.warning(f"Problem status not optimal; got status '{status.value}'")
                stats.proven_optimal = False

            best_cycles, best_constraints = cycle_elimination_constraints(solutions[0], symmetric)
            if len(best_cycles) == 1:
                log(f"Iteration {stats.iterations} took {format_time(elapsed)}, found a full cycle!")
                break

            if all(c.key in added for c in best_constraints):
                raise AlgorithmInvariantError(
                    "Best solution repeats subtours that are already forbidden"
                )

            new_constraints = []
            for constraint in best_constraints:
                if constraint.key not in added:
                    added.add(constraint.key)
                    new_constraints.append(constraint)
            for solution in solutions[1:]:
                _, constraints = cycle_elimination_constraints(solution, symmetric)
                for constraint in constraints:
                    if constraint.key not in added:
                        added.add(constraint.key)
                        new_constraints.append(constraint)

            for constraint in new_constraints:
                model.add_constraint(constraint)
            stats.cycles_eliminated += len(new_constraints)

            log(f"Iteration {stats.iterations} took {format_time(elapsed)}, disallowed "
                f"{len(new_constraints)} cycles over {len(solutions)} feasible solutions")

        tour = rotate_to_start(best_cycles[0], 0)
        if len(tour) != n or sorted(tour) != list(range(n)):
            raise AlgorithmInvariantError(
                f"Final tour does not visit all {n} cities exactly once"
            )
        value = model.objective_value()

        if verbose:
            summary = model.constraint_summary()
            logger.info(f"Optimization finished; adaptively disallowed "
                        f"{stats.cycles_eliminated} cycles")
            logger.info(f"The optimization runs took {format_time(stats.solver_time_s)} in total")
            logger.info(f"Final path has length {value:g}")
            logger.info(f"Final problem has {summary['binary_variables']} binary variables, "
                        f"{summary['inequality_constraints']} inequality constraints and "
                        f"{summary['equality_constraints']} equality constraints")

        return tour, value, model


# ============================================================================
# Functional Entry Point
# ============================================================================

def get_optimal_tour(
    cost_or_cities: Union[TSPProblem, np.ndarray, Sequence[Sequence[float]]],
    backend: Optional[BackendLike] = None,
    *,
    distance: Distance = euclidean_distance,
    symmetric: Optional[bool] = None,
    lazy_constraints: bool = False,
    heuristic_warmstart: Optional[bool] = None,
    silent: Optional[bool] = None,
    initial_subtours: Sequence[Sequence[int]] = (),
    verbose: bool = False,
    clustering: Optional[bool] = None,
    time_limit_seconds: Optional[float] = None,
) -> Tuple[List[int], float]:
    """
    Find an optimal tour.

    Args:
        cost_or_cities: N x N cost matrix, TSPProblem, or N city coordinates
            (an N x 2 array or a list of points, with N != 2)
        backend: MILPBackend instance or name; falls back to the default
        distance: Distance function applied to cities
        (remaining arguments as in ExactTSPSolver.solve)

    Returns:
        (tour, cost): tour starts at city 0 and lists every city once;
        cost is the solver's objective value

    Example:
        >>> set_default_backend('scipy')
        >>> get_optimal_tour([(0, 0), (0, 1), (1, 1), (1, 0)], heuristic_warmstart=False)
        ([0, 1, 2, 3], 4.0)
    """
    if isinstance(cost_or_cities, TSPProblem):
        cost = cost_or_cities.cost_matrix
    else:
        try:
            data = np.asarray(cost_or_cities, dtype=float)
        except (TypeError, ValueError) as e:
            raise InvalidProblemError(f"Cannot interpret input as cities or cost matrix: {e}") from e
        cost = cost_matrix_from_cities(data, distance) if _looks_like_cities(data) else data

    result = ExactTSPSolver(backend=backend).solve(
        cost,
        symmetric=symmetric,
        lazy_constraints=lazy_constraints,
        heuristic_warmstart=heuristic_warmstart,
        silent=silent,
        initial_subtours=initial_subtours,
        verbose=verbose,
        clustering=clustering,
        time_limit_seconds=time_limit_seconds,
    )
    return result['solution'], result['cost']
