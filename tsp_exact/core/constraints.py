"""
Subtour elimination constraints.

For a cycle S that is not a full tour, the builder produces one linear
inequality over the assignment variables that the offending assignment
violates while every Hamiltonian cycle satisfies it:

- symmetric, |S| <= (2N + 1) / 3:
      sum_{i, j in S, i != j} x[i, j] <= 2|S| - 2
  (every undirected edge appears twice in the matrix)
- symmetric, |S| > (2N + 1) / 3, cut form from Pferschy & Stanek, eq. (6):
      sum_{i in S, j not in S} x[i, j] >= 2
- asymmetric, any size:
      sum_{i, j in S, i != j} x[i, j] <= |S| - 1

Constraints are backend neutral: terms are keyed by matrix positions and each
MILP model translates them into its own variables.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

import numpy as np

from tsp_exact.core.cycles import check_partition, get_cycles


SENSES = ("<=", ">=", "==")


@dataclass(frozen=True)
class LinearConstraint:
    """
    Linear constraint over assignment-matrix positions.

    Attributes:
        terms: Mapping (i, j) -> coefficient
        sense: One of '<=', '>=', '=='
        rhs: Right-hand side
        cycle: Cities of the subtour this constraint eliminates (empty for
               structural constraints)
    """

    terms: Dict[Tuple[int, int], float]
    sense: str
    rhs: float
    cycle: Tuple[int, ...] = field(default=())

    def __post_init__(self):
        if self.sense not in SENSES:
            raise ValueError(f"Invalid sense '{self.sense}'. Must be one of {SENSES}")

    @property
    def key(self) -> frozenset:
        """Identity of a subtour constraint: the set of cities it covers."""
        return frozenset(self.cycle)

    def evaluate(self, assignment: np.ndarray) -> float:
        """Value of the left-hand side for an assignment matrix."""
        return float(sum(coeff * assignment[i, j] for (i, j), coeff in self.terms.items()))

    def is_satisfied(self, assignment: np.ndarray, tol: float = 1e-6) -> bool:
        lhs = self.evaluate(assignment)
        if self.sense == "<=":
            return lhs <= self.rhs + tol
        if self.sense == ">=":
            return lhs >= self.rhs - tol
        return abs(lhs - self.rhs) <= tol

    def is_violated(self, assignment: np.ndarray, tol: float = 1e-6) -> bool:
        return not self.is_satisfied(assignment, tol)

    def __str__(self) -> str:
        return f"<{len(self.terms)} terms> {self.sense} {self.rhs:g}"


def use_cut_form(cycle_length: int, n: int, symmetric: bool) -> bool:
    """Whether the cut form is the stronger choice for this cycle."""
    return symmetric and cycle_length > (2 * n + 1) / 3


def subtour_elimination_constraint(
    cycle: Sequence[int],
    n: int,
    symmetric: bool,
) -> LinearConstraint:
    """
    Build the inequality that forbids `cycle` as an isolated component.

    Only the member set of the cycle matters, not its visiting order.

    Args:
        cycle: Cities of the subtour
        n: Total number of cities
        symmetric: Whether the model uses the symmetric formulation

    Returns:
        LinearConstraint over assignment positions
    """
    members = sorted(set(int(c) for c in cycle))
    if len(members) == 0:
        raise ValueError("Cannot build a subtour constraint for an empty cycle")

    if use_cut_form(len(members), n, symmetric):
        member_set = set(members)
        outside = [j for j in range(n) if j not in member_set]
        terms = {(i, j): 1.0 for i in members for j in outside}
        return LinearConstraint(terms=terms, sense=">=", rhs=2.0, cycle=tuple(members))

    terms = {(i, j): 1.0 for i in members for j in members if i != j}
    rhs = 2 * len(members) - 2 if symmetric else len(members) - 1
    return LinearConstraint(terms=terms, sense="<=", rhs=float(rhs), cycle=tuple(members))


def cycle_elimination_constraints(
    assignment: np.ndarray,
    symmetric: bool,
) -> Tuple[List[List[int]], List[LinearConstraint]]:
    """
    Decompose an assignment and build one constraint per subtour.

    This is the single decompose-and-constrain step shared by the iterative
    loop and the lazy callback.

    Args:
        assignment: Integer-feasible N x N assignment matrix
        symmetric: Whether the model uses the symmetric formulation

    Returns:
        (cycles, constraints); constraints is empty when the assignment is a
        single Hamiltonian cycle
    """
    n = assignment.shape[0]
    cycles = get_cycles(assignment)
    check_partition(cycles, n)
    if len(cycles) == 1:
        return cycles, []
    return cycles, [subtour_elimination_constraint(c, n, symmetric) for c in cycles]


def degree_constraints(n: int, symmetric: bool) -> List[LinearConstraint]:
    """
    Structural constraints of the assignment formulation.

    Symmetric: every row sums to 2. Asymmetric: every row and column sums to
    1 and no pair of cities forms a 2-cycle. Self-loops are excluded by the
    models not creating diagonal variables.
    """
    constraints = []
    if symmetric:
        for i in range(n):
            terms = {(i, j): 1.0 for j in range(n) if j != i}
            constraints.append(LinearConstraint(terms=terms, sense="==", rhs=2.0))
        return constraints

    for i in range(n):
        row = {(i, j): 1.0 for j in range(n) if j != i}
        col = {(j, i): 1.0 for j in range(n) if j != i}
        constraints.append(LinearConstraint(terms=row, sense="==", rhs=1.0))
        constraints.append(LinearConstraint(terms=col, sense="==", rhs=1.0))
    for i in range(n):
        for j in range(i + 1, n):
            constraints.append(
                LinearConstraint(terms={(i, j): 1.0, (j, i): 1.0}, sense="<=", rhs=1.0)
            )
    return constraints
