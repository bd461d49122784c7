"""
Clustering warm start for large symmetric problems.

Cities that lie close together usually end up consecutive in the optimal
tour. The preprocessor groups cities with hierarchical clustering, solves
the TSP of every mid-sized cluster on its own and returns the resulting
sub-tours. The exact solver adds a subtour elimination constraint for each
of them before its first solve, which removes the most likely subtours from
the search up front.

The sub-tours never restrict the optimal tour: subtour elimination
constraints are satisfied by every Hamiltonian cycle.
"""

import logging
from typing import Callable, List, Optional, Tuple

import numpy as np
from scipy.cluster.hierarchy import fcluster, linkage
from scipy.spatial.distance import squareform

from tsp_exact.config import Settings, settings as default_settings


logger = logging.getLogger(__name__)


SubproblemSolver = Callable[[np.ndarray], Tuple[List[int], float]]


class ClusterWarmStart:
    """
    Hierarchical-clustering preprocessor.

    Args:
        solve_subproblem: Solves the TSP of a sub-cost-matrix and returns
            (tour, cost). The exact solver passes a recursive solve that uses
            a fresh model, runs silently and has clustering disabled.
        settings: Settings providing the clustering thresholds
    """

    def __init__(self, solve_subproblem: SubproblemSolver, settings: Optional[Settings] = None):
        self.solve_subproblem = solve_subproblem
        self.config = (settings or default_settings).clustering

    def is_applicable(self, num_cities: int, symmetric: bool) -> bool:
        """
        Clustering runs only for symmetric problems above the size threshold.

        Whether to cluster at all is the caller's decision; the exact solver
        resolves it from its `clustering` argument and the settings.
        """
        return symmetric and num_cities > self.config.min_cities

    def cluster_labels(self, cost: np.ndarray) -> np.ndarray:
        """
        Assign each city a cluster label (1-based, as returned by fcluster).

        The cost matrix is treated as a distance matrix; its condensed form
        feeds the linkage.
        """
        n = cost.shape[0]
        condensed = squareform(np.asarray(cost, dtype=float), checks=False)
        Z = linkage(condensed, method=self.config.linkage_method)
        return fcluster(Z, t=self.config.num_clusters(n), criterion="maxclust")

    def initial_subtours(
        self,
        cost: np.ndarray,
        symmetric: bool,
        verbose: bool = False,
    ) -> List[List[int]]:
        """
        Solve every acceptable cluster and return the sub-tours.

        Args:
            cost: N x N cost matrix
            symmetric: Whether the top-level problem is symmetric
            verbose: Log cluster sizes and sub-solve results at INFO

        Returns:
            Sub-tours expressed in the original city indices (may be empty)
        """
        n = cost.shape[0]
        if not self.is_applicable(n, symmetric):
            return []

        log = logger.info if verbose else logger.debug

        try:
            labels = self.cluster_labels(cost)
        except Exception as e:
            logger.warning(f"Clustering failed, continuing without warm start: {e}")
            return []

        subtours = []
        for label in np.unique(labels):
            members = np.flatnonzero(labels == label)
            if not self.config.accepts_cluster(len(members), n):
                log(f"Skipping cluster {label} with {len(members)} cities")
                continue

            sub_cost = cost[np.ix_(members, members)]
            try:
                sub_tour, sub_cost_value = self.solve_subproblem(sub_cost)
            except Exception as e:
                logger.warning(f"Sub-cluster solve of {len(members)} cities failed, skipping: {e}")
                continue

            subtour = [int(members[k]) for k in sub_tour]
            subtours.append(subtour)
            log(f"Cluster {label}: {len(members)} cities, sub-tour cost {sub_cost_value:.4f}")

        log(f"Clustering produced {len(subtours)} initial subtours")
        return subtours
