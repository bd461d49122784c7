"""
Traveling Salesman Problem instances.

A TSPProblem wraps the cost matrix handed to the exact solver together with
the optional city coordinates it was built from. Besides the data it offers
everything needed to check a solver's answer independently: tour
validation and cost, exact optima of small instances by enumeration or by
dynamic programming, summary statistics and a matplotlib plot.

Problem Definition:
    Given N cities and a cost c[i, j] of travelling from city i to city j,
    find the cyclic order π minimizing

        cost(π) = Σ_{k=0}^{N-1} c[π[k], π[(k+1) mod N]]

    The problem is symmetric when c[i, j] == c[j, i] for all i, j.

Example Usage:
    >>> from tsp_exact.problems.tsp import TSPProblem
    >>>
    >>> problem = TSPProblem.random(num_cities=8, seed=42)
    >>> tour, length = problem.get_optimal_solution_brute_force()
    >>> assert problem.validate_solution(tour)
    >>> problem.visualize(tour, save_path="tour.png", show=False)
"""

from itertools import permutations
from typing import Any, Dict, List, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np

from tsp_exact.problems.distances import Distance, cost_matrix_from_cities, euclidean_distance


# Largest instance solved by enumeration: (N-1)! tours
BRUTE_FORCE_MAX_CITIES = 10

# Largest instance solved by Held-Karp: O(2^N N^2) steps
HELD_KARP_MAX_CITIES = 13


class TSPProblem:
    """
    A TSP instance defined by its cost matrix.

    Attributes:
        cost_matrix (np.ndarray): N x N travel costs
        coordinates (Optional[np.ndarray]): N x 2 city positions, when known
        name (str): Instance name
    """

    def __init__(
        self,
        cost_matrix: np.ndarray,
        coordinates: Optional[np.ndarray] = None,
        name: str = "tsp",
    ):
        """
        Args:
            cost_matrix: Square matrix with at least 3 rows
            coordinates: Optional city positions (one row per city)
            name: Instance name used in plots and metadata

        Raises:
            ValueError: If the matrix is not square or has fewer than 3 cities
        """
        cost_matrix = np.asarray(cost_matrix, dtype=float)
        if cost_matrix.ndim != 2 or cost_matrix.shape[0] != cost_matrix.shape[1]:
            raise ValueError(f"Cost matrix must be square, got shape {cost_matrix.shape}")
        if cost_matrix.shape[0] < 3:
            raise ValueError("num_cities must be at least 3 for TSP")
        if coordinates is not None:
            coordinates = np.asarray(coordinates, dtype=float)
            if coordinates.shape[0] != cost_matrix.shape[0]:
                raise ValueError("coordinates must have one row per city")

        self.cost_matrix = cost_matrix
        self.coordinates = coordinates
        self.name = name

    # ========================================================================
    # Construction
    # ========================================================================

    @classmethod
    def from_cities(
        cls,
        cities: Sequence[Sequence[float]],
        distance: Distance = euclidean_distance,
        name: str = "tsp",
    ) -> "TSPProblem":
        """Build an instance from city coordinates and a distance function."""
        return cls(cost_matrix_from_cities(cities, distance), coordinates=np.asarray(cities), name=name)

    @classmethod
    def random(
        cls,
        num_cities: int,
        seed: Optional[int] = None,
        asymmetric: bool = False,
        coordinate_range: Tuple[float, float] = (0.0, 100.0),
    ) -> "TSPProblem":
        """
        Generate a random instance.

        Symmetric instances place cities uniformly in a square and use
        Euclidean distances. Asymmetric instances draw every off-diagonal
        cost independently from U(0, 1) and have no coordinates.

        Args:
            num_cities: Number of cities (>= 3)
            seed: Seed for numpy's default_rng
            asymmetric: Draw an asymmetric cost matrix
            coordinate_range: (min, max) for x and y coordinates

        Example:
            >>> problem = TSPProblem.random(5, seed=1, asymmetric=True)
            >>> problem.is_symmetric()  # False
        """
        if coordinate_range[0] >= coordinate_range[1]:
            raise ValueError("coordinate_range must be (min, max) with min < max")

        rng = np.random.default_rng(seed)
        if asymmetric:
            cost = rng.random((num_cities, num_cities))
            np.fill_diagonal(cost, 0.0)
            return cls(cost, name=f"random_atsp_{num_cities}")

        min_coord, max_coord = coordinate_range
        coordinates = rng.uniform(min_coord, max_coord, size=(num_cities, 2))
        return cls.from_cities(coordinates, name=f"random_tsp_{num_cities}")

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def num_cities(self) -> int:
        return self.cost_matrix.shape[0]

    def is_symmetric(self) -> bool:
        """Exact symmetry test, as used by the solver's auto-detection."""
        return bool(np.array_equal(self.cost_matrix, self.cost_matrix.T))

    # ========================================================================
    # Solution Checking
    # ========================================================================

    def validate_solution(self, solution: Sequence[int]) -> bool:
        """
        Check that a tour visits every city exactly once.

        Args:
            solution: Tour as list of city indices (return to start implied)

        Returns:
            True if the tour is a permutation of 0..N-1

        Example:
            >>> problem.validate_solution([0, 1, 2, 3, 4])  # True for N=5
            >>> problem.validate_solution([0, 1, 2, 2, 3])  # False
        """
        if len(solution) != self.num_cities:
            return False
        if not all(0 <= city < self.num_cities for city in solution):
            return False
        return len(set(solution)) == self.num_cities

    def calculate_cost(self, solution: Sequence[int]) -> float:
        """
        Total cost of a closed tour, including the return to the start.

        Raises:
            ValueError: If the tour is invalid
        """
        if not self.validate_solution(solution):
            raise ValueError("Invalid tour solution")

        total = 0.0
        for k in range(self.num_cities):
            total += self.cost_matrix[solution[k], solution[(k + 1) % self.num_cities]]
        return float(total)

    def get_optimal_solution_brute_force(self) -> Tuple[List[int], float]:
        """
        Find the optimal tour by enumeration.

        City 0 is fixed as the start, so (N-1)! tours are evaluated.

        Returns:
            (optimal_tour, optimal_cost)

        Raises:
            ValueError: If the instance has more than 10 cities
        """
        n = self.num_cities
        if n > BRUTE_FORCE_MAX_CITIES:
            raise ValueError(
                f"Brute force is limited to {BRUTE_FORCE_MAX_CITIES} cities, got {n}"
            )

        cost = self.cost_matrix.tolist()
        best_tour: List[int] = []
        best_cost = float("inf")
        for rest in permutations(range(1, n)):
            tour = (0, *rest)
            total = cost[tour[-1]][0]
            for k in range(n - 1):
                total += cost[tour[k]][tour[k + 1]]
            if total < best_cost:
                best_tour, best_cost = list(tour), total
        return best_tour, self.calculate_cost(best_tour)

    def get_optimal_solution_held_karp(self) -> Tuple[List[int], float]:
        """
        Find the optimal tour with the Held-Karp dynamic program.

        best[S][j] is the cheapest path that starts at city 0, visits exactly
        the cities in S and ends at j in S. It takes O(2^N N^2) time, which
        reaches instances too large to enumerate.

        Returns:
            (optimal_tour, optimal_cost)

        Raises:
            ValueError: If the instance has more than 13 cities
        """
        n = self.num_cities
        if n > HELD_KARP_MAX_CITIES:
            raise ValueError(
                f"Held-Karp is limited to {HELD_KARP_MAX_CITIES} cities, got {n}"
            )

        cost = self.cost_matrix.tolist()
        # Bit k - 1 of a subset stands for city k; city 0 is the fixed start
        full = (1 << (n - 1)) - 1
        best = [[float("inf")] * n for _ in range(full + 1)]
        parent = [[-1] * n for _ in range(full + 1)]
        for j in range(1, n):
            best[1 << (j - 1)][j] = cost[0][j]

        for subset in range(1, full + 1):
            for j in range(1, n):
                path_cost = best[subset][j]
                if path_cost == float("inf"):
                    continue
                for k in range(1, n):
                    bit = 1 << (k - 1)
                    if subset & bit:
                        continue
                    extended = path_cost + cost[j][k]
                    if extended < best[subset | bit][k]:
                        best[subset | bit][k] = extended
                        parent[subset | bit][k] = j

        last = min(range(1, n), key=lambda j: best[full][j] + cost[j][0])
        reversed_path = []
        subset, city = full, last
        while city > 0:
            reversed_path.append(city)
            subset, city = subset & ~(1 << (city - 1)), parent[subset][city]

        tour = [0] + reversed_path[::-1]
        return tour, self.calculate_cost(tour)

    # ========================================================================
    # Representations
    # ========================================================================

    def get_metadata(self) -> Dict[str, Any]:
        """Summary statistics of the instance."""
        off_diagonal = self.cost_matrix[~np.eye(self.num_cities, dtype=bool)]
        return {
            'problem_type': 'tsp',
            'name': self.name,
            'problem_size': self.num_cities,
            'symmetric': self.is_symmetric(),
            'has_coordinates': self.coordinates is not None,
            'avg_distance': float(np.mean(off_diagonal)),
            'min_distance': float(np.min(off_diagonal)),
            'max_distance': float(np.max(off_diagonal)),
        }

    def visualize(
        self,
        solution: Optional[Sequence[int]] = None,
        figsize: Tuple[int, int] = (10, 10),
        save_path: Optional[str] = None,
        show: bool = True,
    ) -> None:
        """
        Plot the cities and, optionally, a tour.

        Args:
            solution: Tour to draw
            figsize: Figure size in inches
            save_path: Save the figure to this path
            show: Call plt.show(); otherwise the figure is closed

        Raises:
            ValueError: If the instance has no coordinates or the tour is invalid
        """
        if self.coordinates is None:
            raise ValueError("Instance has no coordinates to plot")
        if solution is not None and not self.validate_solution(solution):
            raise ValueError("Invalid tour solution")

        fig, ax = plt.subplots(figsize=figsize)
        x_coords = self.coordinates[:, 0]
        y_coords = self.coordinates[:, 1]
        ax.scatter(x_coords, y_coords, c='red', s=40, zorder=3, alpha=0.8)

        if solution is not None:
            closed = list(solution) + [solution[0]]
            ax.plot(x_coords[closed], y_coords[closed], 'b-', linewidth=1.5, alpha=0.7, zorder=1)
            title = f"{self.name}: tour of {self.num_cities} cities, cost {self.calculate_cost(solution):.2f}"
        else:
            title = f"{self.name}: {self.num_cities} cities"

        ax.set_title(title, fontsize=14, fontweight='bold')
        ax.set_xlabel('X Coordinate')
        ax.set_ylabel('Y Coordinate')
        ax.grid(True, alpha=0.3)
        ax.set_aspect('equal', adjustable='box')
        plt.tight_layout()

        if save_path:
            plt.savefig(save_path, dpi=150, bbox_inches='tight')

        if show:
            plt.show()
        else:
            plt.close(fig)

    def __repr__(self) -> str:
        kind = "symmetric" if self.is_symmetric() else "asymmetric"
        return f"TSPProblem(name='{self.name}', num_cities={self.num_cities}, {kind})"
