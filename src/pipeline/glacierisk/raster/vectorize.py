"""Binary mask vectorization by connected-component labelling."""

from collections import defaultdict
from dataclasses import dataclass
from typing import Any

import geopandas as gpd
import numpy as np
import structlog
import xarray as xr
from rasterio import features
from scipy import ndimage
from shapely.geometry import MultiPolygon, Polygon, shape
from shapely.ops import unary_union

logger = structlog.get_logger()

POLYGON_COLUMNS = ["geometry", "component_id", "pixel_count", "area"]


@dataclass
class MaskPolygon:
    """One connected component of a mask, as a georeferenced geometry."""

    geometry: Polygon | MultiPolygon
    component_id: int
    pixel_count: int
    area: float  # in squared CRS units

    def to_dict(self) -> dict[str, Any]:
        """Convert to a GeoJSON-like feature dictionary."""
        return {
            "type": "Feature",
            "geometry": self.geometry.__geo_interface__,
            "properties": {
                "component_id": self.component_id,
                "pixel_count": self.pixel_count,
                "area": self.area,
            },
        }


def label_components(mask: np.ndarray, connectivity: int = 8) -> tuple[np.ndarray, int]:
    """Label connected set-pixels of a binary array.

    Labels are assigned in raster-scan order of each component's first pixel.

    Args:
        mask: 2D array; non-zero, non-NaN pixels are set.
        connectivity: 4 (edge neighbours) or 8 (edge and corner neighbours).

    Returns:
        Tuple of (label array, number of components).
    """
    if connectivity not in (4, 8):
        raise ValueError(f"connectivity must be 4 or 8, got {connectivity}")

    binary = np.nan_to_num(mask, nan=0) != 0
    structure = ndimage.generate_binary_structure(2, 2 if connectivity == 8 else 1)
    labels, count = ndimage.label(binary, structure=structure)
    return labels.astype(np.int32), int(count)


def vectorize(
    mask: xr.DataArray,
    connectivity: int = 8,
    min_pixels: int = 1,
) -> list[MaskPolygon]:
    """Convert a binary mask raster into one geometry per connected component.

    Components are found with 8-connectivity by default. Each component's
    outline is traced at the mask resolution and georeferenced with the mask
    transform. A component whose pixels only meet at corners becomes a single
    MultiPolygon; every other component is a Polygon (holes kept).

    Args:
        mask: Binary mask raster (1 = set).
        connectivity: 4 or 8.
        min_pixels: Components smaller than this are dropped.

    Returns:
        MaskPolygon list ordered by component id. Empty for an empty mask.
    """
    values = mask.values
    if values.ndim == 3:
        values = values[0]

    labels, count = label_components(values, connectivity)
    if count == 0:
        logger.debug("Mask has no set pixels")
        return []

    transform = mask.rio.transform()
    pixel_counts = np.bincount(labels.ravel(), minlength=count + 1)

    # Trace with 4-connectivity so every piece is a valid simple polygon,
    # then merge pieces that share a component label.
    pieces: dict[int, list[Polygon]] = defaultdict(list)
    for geom, value in features.shapes(
        labels,
        mask=labels > 0,
        connectivity=4,
        transform=transform,
    ):
        pieces[int(value)].append(shape(geom))

    polygons = []
    for component_id in range(1, count + 1):
        if pixel_counts[component_id] < min_pixels:
            continue
        parts = pieces[component_id]
        geometry = parts[0] if len(parts) == 1 else unary_union(parts)
        polygons.append(
            MaskPolygon(
                geometry=geometry,
                component_id=component_id,
                pixel_count=int(pixel_counts[component_id]),
                area=float(geometry.area),
            )
        )

    logger.debug(
        "Vectorized mask",
        components=count,
        polygons=len(polygons),
        connectivity=connectivity,
    )
    return polygons


def polygons_to_geodataframe(polygons: list[MaskPolygon], crs: Any) -> gpd.GeoDataFrame:
    """Convert mask polygons to a GeoDataFrame."""
    if not polygons:
        return gpd.GeoDataFrame(columns=POLYGON_COLUMNS, geometry="geometry", crs=crs)

    records = [
        {
            "geometry": p.geometry,
            "component_id": p.component_id,
            "pixel_count": p.pixel_count,
            "area": p.area,
        }
        for p in polygons
    ]
    return gpd.GeoDataFrame(records, geometry="geometry", crs=crs)
