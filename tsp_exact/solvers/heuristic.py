"""
Heuristic tour construction with the OR-Tools routing library.

The tour is only used to warm start the MILP solver, so a short search is
enough: PATH_CHEAPEST_ARC builds a first tour and a local search improves it
until the time limit runs out.
"""

import logging
from typing import List, Optional, Tuple

import numpy as np
from ortools.constraint_solver import pywrapcp, routing_enums_pb2


logger = logging.getLogger(__name__)


def heuristic_tour(
    cost: np.ndarray,
    time_limit_seconds: int = 1,
    metaheuristic: str = "GREEDY_DESCENT",
    cost_scale: float = 1000.0,
) -> Optional[Tuple[List[int], float]]:
    """
    Find a good (not necessarily optimal) tour for a cost matrix.

    Routing works on integer arc costs, so costs are multiplied by
    `cost_scale` and rounded. The returned cost is recomputed on the
    original matrix.

    Args:
        cost: N x N cost matrix (may be asymmetric)
        time_limit_seconds: Routing search time limit
        metaheuristic: Name of a routing_enums_pb2.LocalSearchMetaheuristic
        cost_scale: Multiplier applied before rounding costs

    Returns:
        (tour, cost) with the tour starting at city 0, or None when the
        routing search finds no tour

    Example:
        >>> tour, length = heuristic_tour(cost, time_limit_seconds=1)
    """
    n = cost.shape[0]
    logger.debug(f"Routing heuristic: n={n}, metaheuristic={metaheuristic}, "
                 f"time_limit={time_limit_seconds}s")

    distance_matrix = np.rint(np.asarray(cost, dtype=float) * cost_scale).astype(np.int64)

    manager = pywrapcp.RoutingIndexManager(n, 1, 0)  # n nodes, 1 vehicle, depot=0
    routing = pywrapcp.RoutingModel(manager)

    def distance_callback(from_index, to_index):
        from_node = manager.IndexToNode(from_index)
        to_node = manager.IndexToNode(to_index)
        return int(distance_matrix[from_node, to_node])

    transit_callback_index = routing.RegisterTransitCallback(distance_callback)
    routing.SetArcCostEvaluatorOfAllVehicles(transit_callback_index)

    search_parameters = pywrapcp.DefaultRoutingSearchParameters()
    search_parameters.first_solution_strategy = (
        routing_enums_pb2.FirstSolutionStrategy.PATH_CHEAPEST_ARC
    )
    search_parameters.local_search_metaheuristic = getattr(
        routing_enums_pb2.LocalSearchMetaheuristic, metaheuristic
    )
    search_parameters.time_limit.seconds = int(time_limit_seconds)

    solution = routing.SolveWithParameters(search_parameters)
    if not solution:
        logger.warning("Routing heuristic found no tour; solving without warm start")
        return None

    tour = []
    index = routing.Start(0)
    while not routing.IsEnd(index):
        tour.append(manager.IndexToNode(index))
        index = solution.Value(routing.NextVar(index))

    length = float(sum(cost[tour[k], tour[(k + 1) % n]] for k in range(n)))
    logger.debug(f"Routing heuristic found tour of cost {length:.4f}")
    return tour, length
