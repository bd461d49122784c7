"""
Tests for the exact solver: optimality, formulations, lazy mode, default
backend handling and the error taxonomy.
"""

import logging
from typing import List

import pytest
import numpy as np

from tsp_exact.config import Settings, SolverConfig
from tsp_exact.core.cycles import assignment_from_cycles, assignment_from_tour
from tsp_exact.exceptions import (
    AlgorithmInvariantError,
    InvalidProblemError,
    SolverConfigurationError,
    SolverConvergenceError,
    SolverError,
)
from tsp_exact.problems.distances import att_distance
from tsp_exact.problems.tsp import TSPProblem
from tsp_exact.problems.tsplib import ATT48_OPTIMUM, get_att48_cities
from tsp_exact.solvers.exact_solver import (
    ExactTSPSolver,
    format_time,
    get_default_backend,
    get_optimal_tour,
    reset_default_backend,
    set_default_backend,
)
from tsp_exact.solvers.mathopt_backend import MathOptBackend
from tsp_exact.solvers.scipy_backend import ScipyMilpBackend
from tsp_exact.solvers.solver_base import MILPBackend, MILPModel, TerminationStatus


UNIT_SQUARE_CITIES = [(0.0, 0.0), (0.0, 1.0), (1.0, 1.0), (1.0, 0.0)]


@pytest.fixture(autouse=True)
def clean_default_backend():
    reset_default_backend()
    yield
    reset_default_backend()


@pytest.fixture(params=["scipy", "mathopt"])
def backend(request):
    if request.param == "scipy":
        return ScipyMilpBackend()
    return MathOptBackend(solver_type="GSCIP")


def is_permutation(tour, n):
    return sorted(tour) == list(range(n))


# ============================================================================
# Scripted backend for failure paths
# ============================================================================

class ScriptedModel(MILPModel):
    """Model that replays a fixed list of (status, solutions, objective)."""

    def __init__(self, script):
        super().__init__(name="scripted")
        self.script = list(script)
        self.added = []
        self._current = None

    def add_binary_variable_matrix(self, n, symmetric):
        self._claim_variable_matrix(n, symmetric)

    def set_objective(self, cost):
        pass

    def add_constraint(self, constraint):
        self.added.append(constraint)
        self._count_constraint(constraint.sense)

    def optimize(self):
        self._current = self.script[0] if len(self.script) == 1 else self.script.pop(0)
        return self._current[0]

    def get_feasible_solutions(self) -> List[np.ndarray]:
        return list(self._current[1])

    def objective_value(self):
        return self._current[2]


class ScriptedBackend(MILPBackend):
    name = "scripted"

    def __init__(self, script):
        self.script = script
        self.models = []

    def create_model(self, name="tsp", silent=True, time_limit_seconds=None):
        model = ScriptedModel(self.script)
        self.models.append(model)
        return model


# ============================================================================
# Optimality
# ============================================================================

class TestOptimality:
    """Test that returned tours are optimal and well formed."""

    def test_unit_square(self, backend):
        tour, cost = get_optimal_tour(UNIT_SQUARE_CITIES, backend, heuristic_warmstart=False)
        assert cost == pytest.approx(4.0)
        assert tour[0] == 0
        assert is_permutation(tour, 4)

    @pytest.mark.parametrize("n,seed", [(5, 0), (6, 1), (7, 2), (8, 3), (10, 4)])
    def test_matches_brute_force_symmetric(self, backend, n, seed):
        problem = TSPProblem.random(n, seed=seed)
        _, optimum = problem.get_optimal_solution_brute_force()

        tour, cost = get_optimal_tour(problem, backend, heuristic_warmstart=False)
        assert is_permutation(tour, n)
        assert tour[0] == 0
        assert cost == pytest.approx(optimum)
        assert problem.calculate_cost(tour) == pytest.approx(optimum)

    @pytest.mark.parametrize("n,seed", [(5, 10), (6, 11), (7, 12)])
    def test_matches_brute_force_asymmetric(self, backend, n, seed):
        problem = TSPProblem.random(n, seed=seed, asymmetric=True)
        assert not problem.is_symmetric()
        _, optimum = problem.get_optimal_solution_brute_force()

        tour, cost = get_optimal_tour(problem, backend, heuristic_warmstart=False)
        assert is_permutation(tour, n)
        assert cost == pytest.approx(optimum)
        assert problem.calculate_cost(tour) == pytest.approx(optimum)

    def test_seeded_asymmetric_5x5(self, backend):
        rng = np.random.default_rng(12345)
        cost = rng.random((5, 5))
        np.fill_diagonal(cost, 0.0)
        _, optimum = TSPProblem(cost).get_optimal_solution_brute_force()

        tour, value = get_optimal_tour(cost, backend, heuristic_warmstart=False)
        assert is_permutation(tour, 5)
        assert value == pytest.approx(optimum)

    def test_forced_asymmetric_agrees_with_symmetric(self, backend):
        problem = TSPProblem.random(8, seed=21)
        _, sym_cost = get_optimal_tour(problem, backend, heuristic_warmstart=False)
        tour, asym_cost = get_optimal_tour(
            problem, backend, symmetric=False, heuristic_warmstart=False
        )
        assert is_permutation(tour, 8)
        assert asym_cost == pytest.approx(sym_cost)

    def test_symmetrized_seeded_5x5_formulations_agree(self, backend):
        rng = np.random.default_rng(12345)
        cost = rng.random((5, 5))
        np.fill_diagonal(cost, 0.0)
        symmetrized = (cost + cost.T) / 2
        _, optimum = TSPProblem(symmetrized).get_optimal_solution_brute_force()

        sym_tour, sym_cost = get_optimal_tour(
            symmetrized, backend, symmetric=True, heuristic_warmstart=False
        )
        asym_tour, asym_cost = get_optimal_tour(
            symmetrized, backend, symmetric=False, heuristic_warmstart=False
        )
        assert is_permutation(sym_tour, 5) and is_permutation(asym_tour, 5)
        assert sym_cost == pytest.approx(asym_cost)
        assert sym_cost == pytest.approx(optimum)

    def test_forced_symmetric_differs_from_asymmetric_optimum(self, backend, caplog):
        # Going down costs 1 and going up costs 100; every directed tour goes
        # up at least once, so the asymmetric optimum is 4 + 100
        n = 5
        cost = np.where(np.tri(n, k=-1, dtype=bool), 1.0, 100.0)
        np.fill_diagonal(cost, 0.0)
        _, asym_optimum = TSPProblem(cost).get_optimal_solution_brute_force()
        assert asym_optimum == pytest.approx(104.0)

        with caplog.at_level(logging.WARNING, logger="tsp_exact.solvers.exact_solver"):
            tour, forced = get_optimal_tour(
                cost, backend, symmetric=True, heuristic_warmstart=False
            )
        assert "symmetric formulation" in caplog.text
        assert is_permutation(tour, n)
        assert forced == pytest.approx(5.0)
        assert forced != pytest.approx(asym_optimum)

    def test_forced_symmetric_uses_lower_triangle(self, backend):
        cost = TSPProblem.random(6, seed=1, asymmetric=True).cost_matrix
        lower = np.tril(cost)
        _, lower_optimum = TSPProblem(lower + lower.T).get_optimal_solution_brute_force()

        tour, forced = get_optimal_tour(cost, backend, symmetric=True, heuristic_warmstart=False)
        assert is_permutation(tour, 6)
        assert forced == pytest.approx(lower_optimum)

    @pytest.mark.parametrize("asymmetric", [False, True])
    def test_matches_held_karp_12_cities(self, backend, asymmetric):
        problem = TSPProblem.random(12, seed=30, asymmetric=asymmetric)
        _, optimum = problem.get_optimal_solution_held_karp()

        tour, cost = get_optimal_tour(problem, backend, heuristic_warmstart=False, clustering=False)
        assert is_permutation(tour, 12)
        assert cost == pytest.approx(optimum)
        assert problem.calculate_cost(tour) == pytest.approx(optimum)

    def test_heuristic_warm_start(self):
        problem = TSPProblem.random(8, seed=5)
        _, optimum = problem.get_optimal_solution_brute_force()
        solver = ExactTSPSolver(backend=MathOptBackend())
        result = solver.solve(problem, heuristic_warmstart=True)
        assert result['cost'] == pytest.approx(optimum)
        assert result['metadata']['stats']['heuristic_cost'] >= optimum - 1e-9

    def test_idempotent(self, backend):
        problem = TSPProblem.random(9, seed=8)
        first = get_optimal_tour(problem, backend, heuristic_warmstart=False)
        second = get_optimal_tour(problem, backend, heuristic_warmstart=False)
        assert first[1] == pytest.approx(second[1])
        assert problem.calculate_cost(second[0]) == pytest.approx(first[1])

    def test_input_not_mutated(self, backend):
        cost = TSPProblem.random(6, seed=4).cost_matrix
        original = cost.copy()
        get_optimal_tour(cost, backend, heuristic_warmstart=False)
        assert np.array_equal(cost, original)

    def test_initial_subtours_do_not_change_optimum(self, backend):
        problem = TSPProblem.random(8, seed=6)
        _, optimum = problem.get_optimal_solution_brute_force()
        _, cost = get_optimal_tour(
            problem, backend, heuristic_warmstart=False,
            initial_subtours=[[0, 1, 2], [3, 4, 5, 6]],
        )
        assert cost == pytest.approx(optimum)

    def test_result_format(self):
        solver = ExactTSPSolver(backend=ScipyMilpBackend())
        result = solver.solve(TSPProblem.random(7, seed=2), heuristic_warmstart=False)
        assert set(result) == {'solution', 'cost', 'time_ms', 'iterations', 'metadata'}
        assert result['iterations'] >= 1
        assert result['metadata']['backend'] == 'scipy'
        assert result['metadata']['proven_optimal'] is True
        assert result['metadata']['instance']['problem_size'] == 7
        assert result['metadata']['instance']['symmetric'] is True
        assert solver.last_stats.iterations == result['iterations']

    def test_verbose_logging(self, caplog):
        with caplog.at_level(logging.INFO, logger="tsp_exact.solvers.exact_solver"):
            get_optimal_tour(UNIT_SQUARE_CITIES, ScipyMilpBackend(),
                             heuristic_warmstart=False, verbose=True)
        assert "found a full cycle" in caplog.text
        assert "Final problem has 6 binary variables" in caplog.text


@pytest.mark.slow
class TestATT48:
    """The classic att48 benchmark, optimum 10628."""

    @pytest.mark.parametrize("symmetric", [True, False])
    def test_att48(self, symmetric):
        tour, cost = get_optimal_tour(
            get_att48_cities(), MathOptBackend(), distance=att_distance, symmetric=symmetric
        )
        assert is_permutation(tour, 48)
        assert cost == pytest.approx(ATT48_OPTIMUM)

    def test_att48_lazy(self):
        tour, cost = get_optimal_tour(
            get_att48_cities(), MathOptBackend(), distance=att_distance, lazy_constraints=True
        )
        assert is_permutation(tour, 48)
        assert cost == pytest.approx(ATT48_OPTIMUM)


# ============================================================================
# Lazy Mode
# ============================================================================

class TestLazyMode:
    """Test subtour elimination inside the solver search."""

    @pytest.mark.parametrize("symmetric", [True, False])
    def test_lazy_agrees_with_iterative(self, symmetric):
        problem = TSPProblem.random(9, seed=13)
        _, iterative = get_optimal_tour(problem, MathOptBackend(), symmetric=symmetric,
                                        heuristic_warmstart=False)
        tour, lazy = get_optimal_tour(problem, MathOptBackend(), symmetric=symmetric,
                                      heuristic_warmstart=False, lazy_constraints=True)
        assert is_permutation(tour, 9)
        assert lazy == pytest.approx(iterative)

    def test_lazy_stats(self):
        solver = ExactTSPSolver(backend=MathOptBackend())
        result = solver.solve(TSPProblem.random(10, seed=14), lazy_constraints=True,
                              heuristic_warmstart=False, clustering=False)
        stats = result['metadata']['stats']
        assert stats['lazy_triggers'] >= 1
        assert result['metadata']['lazy_constraints'] is True

    def test_lazy_rejected_by_scipy(self):
        with pytest.raises(SolverConfigurationError, match="does not support lazy constraints"):
            get_optimal_tour(UNIT_SQUARE_CITIES, ScipyMilpBackend(), lazy_constraints=True)

    def test_lazy_rejected_by_highs_through_mathopt(self):
        with pytest.raises(SolverConfigurationError, match="does not support lazy constraints"):
            get_optimal_tour(UNIT_SQUARE_CITIES, MathOptBackend(solver_type="HIGHS"),
                             lazy_constraints=True)


# ============================================================================
# Default Backend
# ============================================================================

class TestDefaultBackend:
    """Test process-wide default backend handling."""

    def test_set_and_reset(self):
        backend = ScipyMilpBackend()
        set_default_backend(backend)
        assert get_default_backend() is backend

        tour, cost = get_optimal_tour(UNIT_SQUARE_CITIES, heuristic_warmstart=False)
        assert cost == pytest.approx(4.0)

        reset_default_backend()
        assert get_default_backend() is None

    def test_set_by_name(self):
        set_default_backend("scipy")
        assert isinstance(get_default_backend(), ScipyMilpBackend)

    def test_explicit_backend_wins(self):
        set_default_backend(ScriptedBackend([]))
        _, cost = get_optimal_tour(UNIT_SQUARE_CITIES, ScipyMilpBackend(), heuristic_warmstart=False)
        assert cost == pytest.approx(4.0)

    def test_configured_default(self):
        settings = Settings(solver=SolverConfig(default_backend="scipy"))
        result = ExactTSPSolver(settings=settings).solve(
            TSPProblem.from_cities(UNIT_SQUARE_CITIES), heuristic_warmstart=False
        )
        assert result['metadata']['backend'] == 'scipy'

    def test_no_backend(self):
        settings = Settings(solver=SolverConfig(default_backend=None))
        with pytest.raises(SolverConfigurationError, match="No MILP backend"):
            ExactTSPSolver(settings=settings).solve(TSPProblem.from_cities(UNIT_SQUARE_CITIES))


# ============================================================================
# Errors
# ============================================================================

class TestErrors:
    """Test the error taxonomy."""

    @pytest.mark.parametrize("cost,match", [
        (np.zeros((3, 4)), "square"),
        (np.zeros((2, 2)), "at least 3"),
        (np.array([[0, 1, -1], [1, 0, 1], [1, 1, 0]]), "negative"),
        (np.array([[0, 1, np.nan], [1, 0, 1], [1, 1, 0]]), "non-finite"),
        (np.array([[0, 1, np.inf], [1, 0, 1], [1, 1, 0]]), "non-finite"),
    ])
    def test_invalid_cost_matrix(self, cost, match):
        with pytest.raises(InvalidProblemError, match=match):
            get_optimal_tour(cost, ScipyMilpBackend())

    def test_invalid_problem_is_value_error(self):
        with pytest.raises(ValueError):
            get_optimal_tour(np.zeros((2, 2)), ScipyMilpBackend())

    @pytest.mark.parametrize("subtours", [[[0, 0, 1]], [[0, 9]], [[0, 1, 2, 3]], [[]]])
    def test_invalid_initial_subtours(self, subtours):
        with pytest.raises(InvalidProblemError, match="Initial subtour|at least one city"):
            get_optimal_tour(UNIT_SQUARE_CITIES, ScipyMilpBackend(), initial_subtours=subtours)

    def test_solver_error_without_solution(self):
        backend = ScriptedBackend([(TerminationStatus.INFEASIBLE, [], 0.0)])
        with pytest.raises(SolverError, match="without a feasible solution"):
            get_optimal_tour(UNIT_SQUARE_CITIES, backend, heuristic_warmstart=False)

    def test_non_optimal_status_warns(self, caplog):
        tour = assignment_from_tour([0, 1, 2, 3], symmetric=True)
        backend = ScriptedBackend([(TerminationStatus.FEASIBLE, [tour], 4.0)])
        solver = ExactTSPSolver(backend=backend)
        with caplog.at_level(logging.WARNING):
            result = solver.solve(TSPProblem.from_cities(UNIT_SQUARE_CITIES),
                                  heuristic_warmstart=False)
        assert result['solution'] == [0, 1, 2, 3]
        assert result['metadata']['proven_optimal'] is False
        assert "not optimal" in caplog.text

    def test_repeated_subtour_is_invariant_error(self):
        subtours = assignment_from_cycles([[0, 1, 2], [3, 4, 5]], 6, symmetric=True)
        backend = ScriptedBackend([(TerminationStatus.OPTIMAL, [subtours], 6.0)])
        cost = TSPProblem.random(6, seed=0).cost_matrix
        with pytest.raises(AlgorithmInvariantError, match="already forbidden"):
            get_optimal_tour(cost, backend, heuristic_warmstart=False)
        # one constraint per subtour was added before the repeat was detected
        assert len(backend.models[0].added) == 6 + 2

    def test_iteration_cap(self):
        subtours = assignment_from_cycles([[0, 1, 2], [3, 4, 5]], 6, symmetric=True)
        backend = ScriptedBackend([(TerminationStatus.OPTIMAL, [subtours], 6.0)])
        settings = Settings(solver=SolverConfig(max_iterations=1))
        with pytest.raises(SolverConvergenceError, match="1 iterations"):
            ExactTSPSolver(backend=backend, settings=settings).solve(
                TSPProblem.random(6, seed=0), heuristic_warmstart=False
            )


class TestFormatTime:
    """Test duration formatting."""

    @pytest.mark.parametrize("seconds,expected", [
        (0.012345, "0.0123 seconds"),
        (0.5, "0.500 seconds"),
        (12.346, "12.35 seconds"),
        (250.4, "250 seconds"),
    ])
    def test_format_time(self, seconds, expected):
        assert format_time(seconds) == expected
