"""Study-area boundary and glacier-outline vector inputs."""

from dataclasses import dataclass
from pathlib import Path

import geopandas as gpd
import structlog
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

logger = structlog.get_logger()

WGS84 = "EPSG:4326"


@dataclass
class StudyArea:
    """A watershed boundary in WGS84."""

    name: str
    boundary: BaseGeometry
    crs: str = WGS84

    @property
    def bbox(self) -> tuple[float, float, float, float]:
        """Bounds as (min_lon, min_lat, max_lon, max_lat)."""
        return tuple(self.boundary.bounds)

    @classmethod
    def from_bbox(cls, name: str, bbox: tuple[float, float, float, float]) -> "StudyArea":
        return cls(name=name, boundary=box(*bbox))


def load_boundary(path: Path, name: str | None = None) -> StudyArea:
    """Load a boundary file and dissolve its features into one geometry.

    Args:
        path: Any vector format GeoPandas reads (GeoJSON, Shapefile, ...).
        name: Study-area name; defaults to the file stem.

    Returns:
        StudyArea with the union of all features, reprojected to WGS84.
    """
    path = Path(path)
    gdf = gpd.read_file(path)
    if gdf.empty:
        raise ValueError(f"Boundary file has no features: {path}")
    if gdf.crs is None:
        gdf = gdf.set_crs(WGS84)
    gdf = gdf.to_crs(WGS84)

    boundary = gdf.geometry.union_all()
    logger.info("Loaded study area", path=str(path), features=len(gdf), bounds=boundary.bounds)
    return StudyArea(name=name or path.stem, boundary=boundary)


def load_glaciers(path: Path, boundary: BaseGeometry | None = None) -> gpd.GeoDataFrame:
    """Load glacier outlines (e.g. a GLIMS export) intersecting the boundary.

    Args:
        path: Vector file of glacier polygons.
        boundary: Optional WGS84 geometry to filter by.

    Returns:
        GeoDataFrame in WGS84.
    """
    gdf = gpd.read_file(path)
    if gdf.crs is None:
        gdf = gdf.set_crs(WGS84)
    gdf = gdf.to_crs(WGS84)

    if boundary is not None:
        gdf = gdf[gdf.intersects(boundary)].reset_index(drop=True)

    logger.info("Loaded glacier outlines", path=str(path), glaciers=len(gdf))
    return gdf


def glacier_summary(glaciers: gpd.GeoDataFrame) -> dict[str, float]:
    """Count and total area (km2) of glacier outlines.

    Areas are measured in the UTM zone estimated from the outlines.
    """
    if glaciers.empty:
        return {"count": 0, "total_area_km2": 0.0}

    projected = glaciers.to_crs(glaciers.estimate_utm_crs())
    return {
        "count": int(len(glaciers)),
        "total_area_km2": float(projected.geometry.area.sum() / 1e6),
    }
