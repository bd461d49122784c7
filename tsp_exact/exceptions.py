"""
Exception taxonomy shared by every layer of the exact TSP solver.

Data problems (InvalidProblemError) are also ValueErrors. Algorithm defects
(AlgorithmInvariantError) stay separate from solver failures (SolverError).
"""


# ============================================================================
# Custom Exceptions
# ============================================================================

class SolverException(Exception):
    """Base exception for all solver-related errors."""
    pass


class SolverConfigurationError(SolverException):
    """Raised when solver is misconfigured or missing required parameters."""
    pass


class InvalidProblemError(SolverException, ValueError):
    """Raised when the cost matrix or city list cannot describe a TSP instance."""
    pass


class SolverError(SolverException):
    """Raised when the MILP solver fails without returning any incumbent."""
    pass


class SolverConvergenceError(SolverException):
    """Raised when the constraint-generation loop exceeds its iteration cap."""
    pass


class AlgorithmInvariantError(SolverException):
    """
    Raised when an internal invariant of the algorithm is violated.

    This signals a defect (or a solver returning points outside its
    contract), never a data problem, and is therefore kept distinct from
    :class:`SolverError`.
    """
    pass
