"""Shared geospatial utility functions."""

import math
from typing import Any

from pyproj import CRS, Transformer
from shapely.geometry.base import BaseGeometry
from shapely.ops import transform as shapely_transform

# Length of one degree of latitude, close enough for cell sizing.
METERS_PER_DEGREE = 111_320.0


def reproject_geometry(geometry: BaseGeometry, src_crs: Any, dst_crs: Any) -> BaseGeometry:
    """Reproject a shapely geometry between two CRSs.

    Returns the geometry unchanged when either CRS is missing or both are equal.
    """
    if src_crs is None or dst_crs is None:
        return geometry
    src = CRS.from_user_input(src_crs)
    dst = CRS.from_user_input(dst_crs)
    if src == dst:
        return geometry
    transformer = Transformer.from_crs(src, dst, always_xy=True)
    return shapely_transform(transformer.transform, geometry)


def geographic_cell_size_m(res_x_deg: float, res_y_deg: float, lat: float) -> tuple[float, float]:
    """Convert a geographic pixel size in degrees to metres at a latitude."""
    cell_x = abs(res_x_deg) * METERS_PER_DEGREE * math.cos(math.radians(lat))
    cell_y = abs(res_y_deg) * METERS_PER_DEGREE
    return cell_x, cell_y
