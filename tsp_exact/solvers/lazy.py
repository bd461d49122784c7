"""
Lazy subtour elimination inside the MILP search.

Instead of solving to optimality and then cutting off subtours, a backend
with callback support hands every integer-feasible candidate to
LazyCycleCallback while the branch-and-bound is still running. Candidates
that split into several cycles are rejected on the spot by the constraints
returned here.
"""

import logging
from typing import List, Optional

import numpy as np

from tsp_exact.core.constraints import LinearConstraint, cycle_elimination_constraints


logger = logging.getLogger(__name__)


# Candidates further than this from 0/1 are not decomposed
INTEGRALITY_TOLERANCE = 1e-6


class LazyCycleCallback:
    """
    Callable registered with MILPModel.register_lazy_callback().

    The callback is reactive only: it never starts a solve of its own.

    Args:
        symmetric: Whether the model uses the symmetric formulation
        stats: SolveStats of the running solve (lazy_triggers and
               cycles_eliminated are updated)
        verbose: Log every trigger at INFO instead of DEBUG
    """

    def __init__(self, symmetric: bool, stats, verbose: bool = False):
        self.symmetric = symmetric
        self.stats = stats
        self.verbose = verbose

    def __call__(self, candidate: np.ndarray) -> Optional[List[LinearConstraint]]:
        candidate = np.asarray(candidate, dtype=float)
        if np.any(np.abs(candidate - np.round(candidate)) > INTEGRALITY_TOLERANCE):
            return None

        self.stats.lazy_triggers += 1
        cycles, constraints = cycle_elimination_constraints(candidate, self.symmetric)
        if not constraints:
            return None

        self.stats.cycles_eliminated += len(constraints)
        log = logger.info if self.verbose else logger.debug
        log(f"Lazy callback #{self.stats.lazy_triggers}: rejected candidate with "
            f"{len(cycles)} cycles (sizes {[len(c) for c in cycles]})")
        return constraints
