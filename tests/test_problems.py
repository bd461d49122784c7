"""
Unit tests for problem instances, distances and the heuristic tour.
"""

import pytest
import numpy as np
import matplotlib
matplotlib.use('Agg')

from tsp_exact.problems.distances import (
    att_distance,
    cost_matrix_from_cities,
    distance_for_edge_weight_type,
    euc_2d_distance,
    euclidean_distance,
)
from tsp_exact.problems.tsp import TSPProblem
from tsp_exact.solvers.heuristic import heuristic_tour


class TestDistances:
    """Test distance functions."""

    def test_euclidean(self):
        assert euclidean_distance((0, 0), (3, 4)) == pytest.approx(5.0)

    def test_euc_2d_rounds_to_nearest(self):
        assert euc_2d_distance((0, 0), (1, 1)) == 1.0
        assert euc_2d_distance((0, 0), (1.2, 1.2)) == 2.0

    def test_att(self):
        # r = sqrt(10) ~ 3.16 rounds down to 3, so the distance is 4
        assert att_distance((0, 0), (10, 0)) == 4.0
        # r = sqrt(1000 / 10) = 10 exactly
        assert att_distance((0, 0), (10, 30)) == 10.0

    def test_cost_matrix(self):
        cost = cost_matrix_from_cities([(0, 0), (3, 4), (6, 8)])
        assert cost.shape == (3, 3)
        assert np.all(np.diag(cost) == 0)
        assert cost[0, 2] == pytest.approx(10.0)
        assert np.array_equal(cost, cost.T)

    def test_edge_weight_types(self):
        assert distance_for_edge_weight_type("ATT") is att_distance
        assert distance_for_edge_weight_type(" euc_2d ") is euc_2d_distance
        with pytest.raises(ValueError, match="Unsupported EDGE_WEIGHT_TYPE"):
            distance_for_edge_weight_type("GEO")


class TestTSPProblem:
    """Test TSPProblem."""

    def test_from_cities(self):
        problem = TSPProblem.from_cities([(0, 0), (0, 1), (1, 1), (1, 0)], name="square")
        assert problem.num_cities == 4
        assert problem.is_symmetric()
        assert problem.calculate_cost([0, 1, 2, 3]) == pytest.approx(4.0)
        assert problem.calculate_cost([0, 2, 1, 3]) == pytest.approx(2 + 2 * 2 ** 0.5)

    def test_invalid_matrix(self):
        with pytest.raises(ValueError, match="square"):
            TSPProblem(np.zeros((3, 4)))
        with pytest.raises(ValueError, match="at least 3"):
            TSPProblem(np.zeros((2, 2)))

    def test_random_reproducible(self):
        a = TSPProblem.random(6, seed=42)
        b = TSPProblem.random(6, seed=42)
        assert np.array_equal(a.cost_matrix, b.cost_matrix)
        assert a.coordinates.shape == (6, 2)

    def test_random_asymmetric(self):
        problem = TSPProblem.random(5, seed=1, asymmetric=True)
        assert not problem.is_symmetric()
        assert problem.coordinates is None
        assert np.all(np.diag(problem.cost_matrix) == 0)

    def test_validate_solution(self):
        problem = TSPProblem.random(5, seed=0)
        assert problem.validate_solution([0, 1, 2, 3, 4])
        assert not problem.validate_solution([0, 1, 2, 3])
        assert not problem.validate_solution([0, 1, 2, 2, 3])
        assert not problem.validate_solution([0, 1, 2, 3, 5])
        with pytest.raises(ValueError, match="Invalid tour"):
            problem.calculate_cost([0, 1, 2, 3])

    def test_brute_force(self):
        problem = TSPProblem.from_cities([(0, 0), (2, 0), (1, 0.1), (0, 1), (2, 1)])
        tour, cost = problem.get_optimal_solution_brute_force()
        assert tour[0] == 0
        assert cost == pytest.approx(problem.calculate_cost(tour))

    def test_brute_force_size_limit(self):
        with pytest.raises(ValueError, match="limited to 10 cities"):
            TSPProblem.random(11, seed=0).get_optimal_solution_brute_force()

    @pytest.mark.parametrize("asymmetric", [False, True])
    def test_held_karp_matches_brute_force(self, asymmetric):
        problem = TSPProblem.random(8, seed=17, asymmetric=asymmetric)
        _, optimum = problem.get_optimal_solution_brute_force()
        tour, cost = problem.get_optimal_solution_held_karp()
        assert tour[0] == 0
        assert problem.validate_solution(tour)
        assert cost == pytest.approx(optimum)

    def test_held_karp_smallest_instance(self):
        problem = TSPProblem.from_cities([(0, 0), (3, 0), (0, 4)])
        tour, cost = problem.get_optimal_solution_held_karp()
        assert sorted(tour) == [0, 1, 2]
        assert cost == pytest.approx(12.0)

    def test_held_karp_size_limit(self):
        with pytest.raises(ValueError, match="limited to 13 cities"):
            TSPProblem.random(14, seed=0).get_optimal_solution_held_karp()

    def test_metadata(self):
        metadata = TSPProblem.random(6, seed=0).get_metadata()
        assert metadata['problem_type'] == 'tsp'
        assert metadata['problem_size'] == 6
        assert metadata['symmetric'] is True
        assert metadata['min_distance'] <= metadata['avg_distance'] <= metadata['max_distance']

    def test_visualize(self, tmp_path):
        problem = TSPProblem.random(6, seed=0)
        path = tmp_path / "tour.png"
        problem.visualize([0, 1, 2, 3, 4, 5], save_path=str(path), show=False)
        assert path.exists()

    def test_visualize_without_coordinates(self):
        problem = TSPProblem.random(5, seed=0, asymmetric=True)
        with pytest.raises(ValueError, match="no coordinates"):
            problem.visualize(show=False)


class TestHeuristicTour:
    """Test the routing heuristic used for warm starts."""

    @pytest.mark.parametrize("asymmetric", [False, True])
    def test_returns_valid_tour(self, asymmetric):
        problem = TSPProblem.random(8, seed=3, asymmetric=asymmetric)
        _, optimum = problem.get_optimal_solution_brute_force()

        found = heuristic_tour(problem.cost_matrix, time_limit_seconds=1)
        assert found is not None
        tour, cost = found
        assert tour[0] == 0
        assert problem.validate_solution(tour)
        assert cost == pytest.approx(problem.calculate_cost(tour))
        assert cost >= optimum - 1e-9
