"""Curated training-point sets loaded from YAML."""

from pathlib import Path
from typing import Any

import structlog
import yaml
from pyproj import CRS, Transformer

from glacierisk.vector import WGS84
from glacierisk.hazard.classifier import TrainingPoint

logger = structlog.get_logger()


def _parse_point(entry: Any, default_label: int | None, problem: str) -> TrainingPoint:
    """Parse one point entry: ``[lon, lat]`` or ``{x, y, label}``."""
    if isinstance(entry, dict):
        x = entry.get("x", entry.get("lon"))
        y = entry.get("y", entry.get("lat"))
        label = entry.get("label", entry.get("class", default_label))
    elif isinstance(entry, (list, tuple)) and len(entry) == 2:
        x, y = entry
        label = default_label
    else:
        raise ValueError(f"Invalid training point in '{problem}': {entry!r}")

    if x is None or y is None:
        raise ValueError(f"Training point in '{problem}' is missing coordinates: {entry!r}")
    if label is None:
        raise ValueError(f"Training point in '{problem}' has no label: {entry!r}")
    return TrainingPoint(x=float(x), y=float(y), label=int(label))


def load_training_sets(path: Path) -> dict[str, list[TrainingPoint]]:
    """Load labelled training points for each hazard problem.

    The file maps problem names to classes, each class holding a list of
    points::

        crs: EPSG:4326
        problems:
          rockfall:
            1: [[86.92, 27.89], ...]
            0: [[86.85, 27.85], ...]

    Points may also be given as mappings with ``x``, ``y`` and ``label``
    under a ``points`` key. Coordinates in any other CRS are reprojected
    to WGS84 lon/lat on load.

    Args:
        path: Path to the YAML file.

    Returns:
        Problem name -> points in WGS84.

    Raises:
        ValueError: If the file is malformed or a point has no label.
    """
    path = Path(path)
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    crs = CRS.from_user_input(data.get("crs", WGS84))
    problems = data.get("problems")
    if not isinstance(problems, dict) or not problems:
        raise ValueError(f"No training problems defined in {path}")

    transformer = None
    if crs != CRS.from_user_input(WGS84):
        transformer = Transformer.from_crs(crs, WGS84, always_xy=True)

    training_sets = {}
    for problem, classes in problems.items():
        points = []
        if not isinstance(classes, dict):
            raise ValueError(f"Training problem '{problem}' must map classes to points")
        for key, entries in classes.items():
            default_label = None if key == "points" else int(key)
            for entry in entries or []:
                point = _parse_point(entry, default_label, problem)
                if transformer is not None:
                    lon, lat = transformer.transform(point.x, point.y)
                    point = TrainingPoint(x=lon, y=lat, label=point.label)
                points.append(point)
        training_sets[str(problem)] = points
        logger.debug("Loaded training points", problem=problem, points=len(points))

    logger.info("Loaded training sets", path=str(path), problems=list(training_sets), crs=crs.to_string())
    return training_sets
