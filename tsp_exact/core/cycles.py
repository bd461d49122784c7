"""
Cycle decomposition of assignment matrices.

A solution of the assignment relaxation is a 0/1 matrix in which every city
has exactly one successor (asymmetric mode, a permutation matrix) or exactly
two neighbours (symmetric mode). Such a matrix always splits into disjoint
cycles; the relaxation is solved exactly when there is only one of them.

Solvers return floating point values, so an entry counts as an edge when it
exceeds EDGE_THRESHOLD rather than when it equals 1.

Example:
    >>> import numpy as np
    >>> from tsp_exact.core.cycles import assignment_from_tour, get_cycles
    >>> a = assignment_from_tour([0, 2, 1, 3], symmetric=True)
    >>> get_cycles(a)
    [[0, 2, 1, 3]]
"""

from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from tsp_exact.exceptions import AlgorithmInvariantError


# Any value above this is read as "edge present"
EDGE_THRESHOLD = 0.5


def find_cycle(assignment: np.ndarray, start: int = 0) -> List[int]:
    """
    Return the cycle of the assignment graph that contains `start`.

    The walk follows, from each city, the first city j with
    assignment[city, j] > EDGE_THRESHOLD other than the city it came from,
    so that a symmetric matrix is not walked straight back along the edge
    just used. When the predecessor is the only candidate (a 2-cycle or a
    self-loop of a permutation matrix) it is followed.

    Args:
        assignment: N x N assignment matrix
        start: City the walk starts from

    Returns:
        Cities of the cycle in visiting order, starting with `start`

    Raises:
        AlgorithmInvariantError: If the walk gets stuck or does not close
    """
    n = assignment.shape[0]
    cycle = [start]
    visited = {start}
    prev_ind = ind = start

    while True:
        neighbours = np.flatnonzero(assignment[ind] > EDGE_THRESHOLD)
        forward = neighbours[neighbours != prev_ind]
        if forward.size > 0:
            next_ind = int(forward[0])
        elif neighbours.size > 0:
            next_ind = int(neighbours[0])
        else:
            raise AlgorithmInvariantError(
                f"City {ind} has no outgoing edge in the assignment matrix"
            )

        if next_ind == start:
            break
        if next_ind in visited or len(cycle) >= n:
            raise AlgorithmInvariantError(
                f"Walk from city {start} does not close: city {next_ind} revisited "
                f"after {len(cycle)} steps"
            )

        cycle.append(next_ind)
        visited.add(next_ind)
        prev_ind, ind = ind, next_ind

    return cycle


def get_cycles(assignment: np.ndarray) -> List[List[int]]:
    """
    Partition all cities of an assignment matrix into cycles.

    Each new walk starts at the smallest city not yet covered, so the first
    cycle always starts at city 0.

    Args:
        assignment: N x N assignment matrix

    Returns:
        List of cycles; their union is {0, ..., N-1} and they are disjoint

    Raises:
        AlgorithmInvariantError: If the matrix cannot be partitioned
    """
    assignment = np.asarray(assignment, dtype=float)
    if assignment.ndim != 2 or assignment.shape[0] != assignment.shape[1]:
        raise AlgorithmInvariantError(
            f"Assignment matrix must be square, got shape {assignment.shape}"
        )

    n = assignment.shape[0]
    remaining = np.ones(n, dtype=bool)
    cycles: List[List[int]] = []

    while remaining.any():
        start = int(np.argmax(remaining))
        cycle = find_cycle(assignment, start)
        if not remaining[cycle].all():
            raise AlgorithmInvariantError(
                f"Cycle starting at city {start} overlaps an earlier cycle"
            )
        remaining[cycle] = False
        cycles.append(cycle)

    return cycles


def check_partition(cycles: Sequence[Sequence[int]], n: int) -> None:
    """
    Verify that `cycles` partition {0, ..., n-1}.

    Raises:
        AlgorithmInvariantError: On zero cycles, overlaps or omissions
    """
    if len(cycles) == 0:
        raise AlgorithmInvariantError("Decomposition returned no cycles")

    seen = set()
    for cycle in cycles:
        for city in cycle:
            if city in seen:
                raise AlgorithmInvariantError(f"City {city} appears in more than one cycle")
            seen.add(city)

    if seen != set(range(n)):
        missing = sorted(set(range(n)) - seen)
        raise AlgorithmInvariantError(
            f"Decomposition does not cover all {n} cities (missing {missing[:10]})"
        )


def tour_edges(tour: Sequence[int]) -> List[Tuple[int, int]]:
    """Consecutive (from, to) pairs of a tour, including the closing edge."""
    return [(tour[k], tour[(k + 1) % len(tour)]) for k in range(len(tour))]


def assignment_from_tour(
    tour: Sequence[int],
    n: Optional[int] = None,
    symmetric: bool = True,
) -> np.ndarray:
    """
    Build the assignment matrix of a closed tour.

    Args:
        tour: Visiting order (the return to the first city is implied)
        n: Matrix size (default: len(tour))
        symmetric: Mark both (i, j) and (j, i) for every edge

    Returns:
        N x N float matrix with ones on the tour's edges
    """
    n = len(tour) if n is None else n
    assignment = np.zeros((n, n))
    for i, j in tour_edges(tour):
        assignment[i, j] = 1.0
        if symmetric:
            assignment[j, i] = 1.0
    return assignment


def assignment_from_cycles(
    cycles: Iterable[Sequence[int]],
    n: int,
    symmetric: bool = True,
) -> np.ndarray:
    """Assignment matrix made of several disjoint cycles."""
    assignment = np.zeros((n, n))
    for cycle in cycles:
        assignment += assignment_from_tour(cycle, n, symmetric)
    return assignment


def rotate_to_start(tour: Sequence[int], start: int = 0) -> List[int]:
    """Rotate a cyclic tour so that it begins at `start`."""
    tour = list(tour)
    if start not in tour:
        return tour
    k = tour.index(start)
    return tour[k:] + tour[:k]
