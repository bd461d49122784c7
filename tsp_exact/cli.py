"""
Command line interface for the exact TSP solver.

Usage:
------
    # Solve the bundled att48 instance with SCIP through MathOpt
    tsp-exact --att48 --backend mathopt

    # Solve a TSPLIB file with scipy's HiGHS, lazy mode off, and plot the tour
    tsp-exact berlin52.tsp --backend scipy --plot berlin52.png

    # Per-iteration progress
    tsp-exact --att48 --backend mathopt --lazy --verbose
"""

import argparse
import logging
import sys
from typing import List, Optional

from tsp_exact.config import settings
from tsp_exact.exceptions import SolverException
from tsp_exact.problems.distances import distance_for_edge_weight_type
from tsp_exact.problems.tsp import TSPProblem
from tsp_exact.problems.tsplib import ATT48_PATH, TSPLIBParseError, parse_tsp_file
from tsp_exact.solvers.exact_solver import ExactTSPSolver, backend_from_name, format_time


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='tsp-exact',
        description='Solve a TSPLIB instance to proven optimality',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        'file',
        nargs='?',
        help='TSPLIB .tsp file with a NODE_COORD_SECTION'
    )
    source.add_argument(
        '--att48',
        action='store_true',
        help='Solve the bundled att48 instance'
    )

    parser.add_argument(
        '--distance',
        choices=['auto', 'euclidean', 'euc_2d', 'att'],
        default='auto',
        help="Distance function; 'auto' uses the file's EDGE_WEIGHT_TYPE"
    )
    parser.add_argument(
        '--backend',
        choices=['mathopt', 'scipy'],
        default=settings.solver.default_backend,
        help='MILP backend'
    )
    parser.add_argument(
        '--solver-type',
        default=settings.solver.mathopt_solver_type,
        help='Solver driven by the mathopt backend (GSCIP, HIGHS, GUROBI, ...)'
    )
    parser.add_argument(
        '--lazy',
        action='store_true',
        help='Eliminate subtours with lazy constraints inside the search'
    )
    parser.add_argument(
        '--no-heuristic',
        action='store_true',
        help='Do not warm start with a heuristic tour'
    )
    parser.add_argument(
        '--no-clustering',
        action='store_true',
        help='Do not pre-seed constraints from clustered sub-tours'
    )

    formulation = parser.add_mutually_exclusive_group()
    formulation.add_argument(
        '--symmetric',
        dest='symmetric',
        action='store_true',
        default=None,
        help='Force the symmetric formulation'
    )
    formulation.add_argument(
        '--asymmetric',
        dest='symmetric',
        action='store_false',
        help='Force the asymmetric formulation'
    )

    parser.add_argument(
        '--time-limit',
        type=float,
        default=settings.solver.time_limit_seconds,
        help='Time limit in seconds for each solver call'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Log progress of every iteration'
    )
    parser.add_argument(
        '--plot',
        metavar='PATH',
        help='Save a plot of the optimal tour'
    )
    return parser


def load_problem(path: str, distance_name: str) -> TSPProblem:
    """Read a TSPLIB file and build its cost matrix."""
    instance = parse_tsp_file(path)
    if distance_name == 'auto':
        return instance.to_problem()
    distance = distance_for_edge_weight_type(distance_name)
    return TSPProblem.from_cities(instance.cities, distance=distance, name=instance.name)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=settings.logging.level,
        format=settings.logging.format
    )

    if args.backend is None:
        parser.error('no backend configured; pass --backend or set TSP_SOLVER_DEFAULT_BACKEND')

    try:
        problem = load_problem(str(ATT48_PATH) if args.att48 else args.file, args.distance)
        kwargs = {'solver_type': args.solver_type} if args.backend == 'mathopt' else {}
        solver = ExactTSPSolver(backend=backend_from_name(args.backend, **kwargs))

        result = solver.solve(
            problem,
            symmetric=args.symmetric,
            lazy_constraints=args.lazy,
            heuristic_warmstart=not args.no_heuristic,
            clustering=not args.no_clustering,
            time_limit_seconds=args.time_limit,
            verbose=args.verbose,
        )
    except (OSError, TSPLIBParseError, SolverException) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1

    print(f"Instance: {problem.name} ({problem.num_cities} cities)")
    print(f"Tour: {result['solution']}")
    print(f"Cost: {result['cost']:g}")
    print(f"Iterations: {result['iterations']}, time: {format_time(result['time_ms'] / 1000)}")
    if not result['metadata']['proven_optimal']:
        print("Warning: the solver did not prove optimality")

    if args.plot:
        problem.visualize(result['solution'], save_path=args.plot, show=False)
        print(f"Figure saved to: {args.plot}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
