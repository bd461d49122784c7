"""
Benchmark the exact solver on a directory of TSPLIB instances.

Every NODE_COORD_SECTION .tsp file up to --max-cities cities is solved.
When a solutions file with 'name : optimum' lines is given, each result is
checked against the known optimum.

Usage:
------
    python scripts/benchmark_tsplib.py tsplib/ --backend mathopt
    python scripts/benchmark_tsplib.py tsplib/ --solutions tsplib/solutions \\
        --max-cities 100 --output results.csv --plot results.png
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import matplotlib
matplotlib.use('Agg')  # Non-interactive backend
import matplotlib.pyplot as plt
import pandas as pd
from tqdm import tqdm

from tsp_exact.config import settings
from tsp_exact.exceptions import SolverException
from tsp_exact.problems.tsplib import TSPLIBParseError, parse_tsp_file
from tsp_exact.solvers.exact_solver import ExactTSPSolver, backend_from_name


logging.basicConfig(
    level=settings.logging.level,
    format=settings.logging.format
)
logger = logging.getLogger(__name__)


DEFAULT_MAX_CITIES = 200
DEFAULT_OUTPUT = Path("tsplib_results.csv")


def read_solutions(path: Path) -> Dict[str, float]:
    """Parse 'name : optimum' lines (e.g. TSPLIB's solutions file)."""
    solutions = {}
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            if ":" not in line:
                continue
            name, value = line.split(":", 1)
            try:
                solutions[name.strip()] = float(value.split()[0])
            except (ValueError, IndexError):
                logger.debug(f"Skipping solutions line '{line.strip()}'")
    return solutions


def run_benchmark(
    directory: Path,
    backend_name: str,
    max_cities: int = DEFAULT_MAX_CITIES,
    solutions: Optional[Dict[str, float]] = None,
    lazy_constraints: bool = False,
) -> pd.DataFrame:
    """
    Solve every eligible instance in `directory`.

    Returns:
        DataFrame with one row per instance
    """
    solutions = solutions or {}
    instances = []
    for path in sorted(directory.glob("*.tsp")):
        try:
            instance = parse_tsp_file(path)
        except (TSPLIBParseError, ValueError) as e:
            logger.info(f"Skipping {path.name}: {e}")
            continue
        if instance.dimension > max_cities:
            continue
        instances.append(instance)

    logger.info(f"Benchmarking {len(instances)} instances with up to {max_cities} cities")

    solver = ExactTSPSolver(backend=backend_from_name(backend_name))
    rows: List[Dict] = []
    for instance in tqdm(instances, desc="Solving"):
        row = {
            'name': instance.name,
            'num_cities': instance.dimension,
            'edge_weight_type': instance.edge_weight_type,
            'known_optimum': solutions.get(instance.name),
        }
        try:
            problem = instance.to_problem()
            result = solver.solve(problem, lazy_constraints=lazy_constraints)
        except (ValueError, SolverException) as e:
            logger.error(f"{instance.name} failed: {e}")
            row.update({'cost': None, 'time_s': None, 'iterations': None, 'status': 'error'})
            rows.append(row)
            continue

        row.update({
            'cost': result['cost'],
            'time_s': result['time_ms'] / 1000,
            'iterations': result['iterations'],
            'cycles_eliminated': result['metadata']['stats']['cycles_eliminated'],
            'status': 'optimal' if result['metadata']['proven_optimal'] else 'not_proven',
        })
        if row['known_optimum'] is not None and abs(result['cost'] - row['known_optimum']) > 1e-6:
            logger.warning(f"{instance.name}: cost {result['cost']} differs from "
                           f"known optimum {row['known_optimum']}")
            row['status'] = 'mismatch'
        rows.append(row)

    return pd.DataFrame(rows)


def plot_results(df: pd.DataFrame, plot_path: Path) -> None:
    """Scatter of solve time against instance size."""
    solved = df.dropna(subset=['time_s'])
    fig, ax = plt.subplots(figsize=(10, 6))
    ax.scatter(solved['num_cities'], solved['time_s'], alpha=0.8)
    for _, row in solved.iterrows():
        ax.annotate(row['name'], (row['num_cities'], row['time_s']), fontsize=7)
    ax.set_yscale('log')
    ax.set_xlabel('Number of cities')
    ax.set_ylabel('Solve time (s)')
    ax.set_title('Exact TSP solve time on TSPLIB instances')
    ax.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(plot_path, dpi=150, bbox_inches='tight')
    plt.close(fig)
    logger.info(f"Plot saved to {plot_path}")


def main():
    parser = argparse.ArgumentParser(
        description='Benchmark the exact TSP solver on TSPLIB instances',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('directory', type=Path, help='Directory containing .tsp files')
    parser.add_argument(
        '--backend',
        choices=['mathopt', 'scipy'],
        default=settings.solver.default_backend or 'mathopt',
        help='MILP backend'
    )
    parser.add_argument(
        '--max-cities',
        type=int,
        default=DEFAULT_MAX_CITIES,
        help='Skip instances with more cities'
    )
    parser.add_argument('--solutions', type=Path, help="File of 'name : optimum' lines")
    parser.add_argument('--lazy', action='store_true', help='Use lazy constraints')
    parser.add_argument('--output', type=Path, default=DEFAULT_OUTPUT, help='CSV output path')
    parser.add_argument('--plot', type=Path, help='Save a time-vs-size plot')
    args = parser.parse_args()

    solutions = read_solutions(args.solutions) if args.solutions else {}
    df = run_benchmark(args.directory, args.backend, args.max_cities, solutions, args.lazy)

    df.to_csv(args.output, index=False)
    logger.info(f"Results written to {args.output}")

    if args.plot:
        plot_results(df, args.plot)

    mismatches = df[df['status'] == 'mismatch'] if 'status' in df else df.iloc[0:0]
    if len(mismatches) > 0:
        logger.error(f"{len(mismatches)} instances did not match their known optimum")
        sys.exit(1)


if __name__ == '__main__':
    main()
