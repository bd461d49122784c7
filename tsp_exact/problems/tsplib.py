"""
Minimal TSPLIB reader.

Only NODE_COORD_SECTION instances are supported, which covers the EUC_2D
and ATT benchmark files. Explicit EDGE_WEIGHT_SECTION matrices are not read.

Example:
    >>> from tsp_exact.problems.tsplib import parse_tsp_file
    >>> instance = parse_tsp_file("att48.tsp")
    >>> problem = instance.to_problem()
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Union

from tsp_exact.problems.distances import distance_for_edge_weight_type
from tsp_exact.problems.tsp import TSPProblem


logger = logging.getLogger(__name__)


ATT48_PATH = Path(__file__).resolve().parent.parent / "data" / "att48.tsp"

# Known optimal tour length of att48
ATT48_OPTIMUM = 10628.0


class TSPLIBParseError(ValueError):
    """Raised when a .tsp file cannot be read."""
    pass


@dataclass
class TSPLIBInstance:
    """Header fields and city coordinates of a TSPLIB file."""

    name: str
    comment: str = ""
    dimension: int = 0
    edge_weight_type: str = "EUC_2D"
    cities: List[List[float]] = field(default_factory=list)
    header: Dict[str, str] = field(default_factory=dict)

    def to_problem(self) -> TSPProblem:
        """Cost matrix built with the file's EDGE_WEIGHT_TYPE distance."""
        distance = distance_for_edge_weight_type(self.edge_weight_type)
        return TSPProblem.from_cities(self.cities, distance=distance, name=self.name)


def _coordinate_line(line: str, line_number: int) -> List[float]:
    parts = line.split()
    if len(parts) != 3:
        raise TSPLIBParseError(
            f"Line {line_number}: expected 'index x y', got '{line}'"
        )
    try:
        return [float(parts[1]), float(parts[2])]
    except ValueError as e:
        raise TSPLIBParseError(f"Line {line_number}: invalid coordinate in '{line}'") from e


def simple_parse_tsp(path: Union[str, Path], verbose: bool = True) -> List[List[float]]:
    """
    Read the city coordinates of a .tsp file.

    Lenient reader: everything up to NODE_COORD_SECTION is treated as
    header (and logged when verbose), every following line up to EOF must be
    'index x y'.

    Args:
        path: Path of the .tsp file
        verbose: Log the header lines at INFO

    Returns:
        List of [x, y] coordinates in file order
    """
    cities = []
    in_coords = False
    with open(path, "r", encoding="utf-8") as f:
        for line_number, raw in enumerate(f, start=1):
            line = raw.strip()
            if line == "EOF":
                break
            if not line:
                continue
            if in_coords:
                cities.append(_coordinate_line(line, line_number))
            elif line == "NODE_COORD_SECTION":
                in_coords = True
            elif verbose:
                logger.info(line)
    return cities


def parse_tsp_file(path: Union[str, Path]) -> TSPLIBInstance:
    """
    Read a .tsp file including its header.

    Raises:
        TSPLIBParseError: On malformed lines, a missing coordinate section or
            a DIMENSION that does not match the number of cities
    """
    path = Path(path)
    header: Dict[str, str] = {}
    cities: List[List[float]] = []
    in_coords = False

    with open(path, "r", encoding="utf-8") as f:
        for line_number, raw in enumerate(f, start=1):
            line = raw.strip()
            if line == "EOF":
                break
            if not line:
                continue
            if in_coords:
                cities.append(_coordinate_line(line, line_number))
                continue
            if line.rstrip(":").strip() == "NODE_COORD_SECTION":
                in_coords = True
                continue
            if ":" in line:
                key, value = line.split(":", 1)
                header[key.strip().upper()] = value.strip()
            else:
                logger.debug(f"{path.name}:{line_number}: ignoring header line '{line}'")

    if not in_coords:
        raise TSPLIBParseError(f"{path} has no NODE_COORD_SECTION")

    dimension = int(header.get("DIMENSION", len(cities)))
    if dimension != len(cities):
        raise TSPLIBParseError(
            f"{path}: DIMENSION is {dimension} but {len(cities)} cities were read"
        )

    return TSPLIBInstance(
        name=header.get("NAME", path.stem),
        comment=header.get("COMMENT", ""),
        dimension=dimension,
        edge_weight_type=header.get("EDGE_WEIGHT_TYPE", "EUC_2D"),
        cities=cities,
        header=header,
    )


def get_att48_cities() -> List[List[float]]:
    """Coordinates of the 48 cities of TSPLIB's att48 (use att_distance)."""
    return simple_parse_tsp(ATT48_PATH, verbose=False)
