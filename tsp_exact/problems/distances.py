"""
Distance functions and cost matrix construction.

Includes the TSPLIB distance conventions needed for the bundled and
benchmark instances:

- EUC_2D: Euclidean distance rounded to the nearest integer
- ATT: pseudo-Euclidean distance used by att48 / att532
"""

import math
from typing import Callable, Dict, Sequence

import numpy as np


Distance = Callable[[Sequence[float], Sequence[float]], float]


def euclidean_distance(city_a: Sequence[float], city_b: Sequence[float]) -> float:
    """Plain Euclidean distance between two points."""
    return float(np.linalg.norm(np.asarray(city_a, dtype=float) - np.asarray(city_b, dtype=float)))


def euc_2d_distance(city_a: Sequence[float], city_b: Sequence[float]) -> float:
    """TSPLIB EUC_2D: Euclidean distance rounded to the nearest integer."""
    xd = city_a[0] - city_b[0]
    yd = city_a[1] - city_b[1]
    return float(int(math.sqrt(xd * xd + yd * yd) + 0.5))


def att_distance(city_a: Sequence[float], city_b: Sequence[float]) -> float:
    """
    TSPLIB ATT pseudo-Euclidean distance.

    r = sqrt((xd^2 + yd^2) / 10) is rounded to t; the distance is t + 1
    when t < r and t otherwise.

    Example:
        >>> att_distance((0, 0), (10, 0))
        4.0
    """
    xd = city_a[0] - city_b[0]
    yd = city_a[1] - city_b[1]
    r = math.sqrt((xd * xd + yd * yd) / 10.0)
    t = int(r + 0.5)
    return float(t + 1 if t < r else t)


_EDGE_WEIGHT_TYPES: Dict[str, Distance] = {
    "EUC_2D": euc_2d_distance,
    "ATT": att_distance,
    "EUCLIDEAN": euclidean_distance,
}


def distance_for_edge_weight_type(edge_weight_type: str) -> Distance:
    """
    Look up the distance function for a TSPLIB EDGE_WEIGHT_TYPE.

    Raises:
        ValueError: If the edge weight type is not supported
    """
    key = edge_weight_type.strip().upper()
    if key not in _EDGE_WEIGHT_TYPES:
        raise ValueError(
            f"Unsupported EDGE_WEIGHT_TYPE '{edge_weight_type}'. "
            f"Supported: {sorted(_EDGE_WEIGHT_TYPES)}"
        )
    return _EDGE_WEIGHT_TYPES[key]


def cost_matrix_from_cities(
    cities: Sequence[Sequence[float]],
    distance: Distance = euclidean_distance,
) -> np.ndarray:
    """
    Build the N x N cost matrix cost[i, j] = distance(cities[i], cities[j]).

    The matrix is asymmetric when the distance function is.
    """
    n = len(cities)
    cost = np.zeros((n, n))
    for i in range(n):
        for j in range(n):
            if i != j:
                cost[i, j] = distance(cities[i], cities[j])
    return cost
