"""Terrain analysis and glacier proxies from DEM data."""

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np
import rioxarray as rxr
import structlog
import xarray as xr
from pyproj import CRS, Transformer
from scipy import ndimage

from glacierisk.config import get_config
from glacierisk.geo_utils import geographic_cell_size_m
from glacierisk.raster.grid import assert_aligned, like, single_band

logger = structlog.get_logger()

# Aspect assigned to flat pixels, outside the valid [0, 360) range.
FLAT_ASPECT = -1.0

# Horn (1981) kernels, applied by correlation (no kernel flip).
# Rows run north to south, columns west to east.
_HORN_X = np.array([[-1, 0, 1], [-2, 0, 2], [-1, 0, 1]], dtype=np.float64)
_HORN_Y = np.array([[1, 2, 1], [0, 0, 0], [-1, -2, -1]], dtype=np.float64)


@dataclass
class DEMData:
    """Container for DEM data with derived products."""

    elevation: xr.DataArray
    slope: xr.DataArray | None = None
    aspect: xr.DataArray | None = None
    crs: Any = None
    transform: Any = None
    resolution_m: float = 30.0

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """Get bounds in native CRS."""
        return self.elevation.rio.bounds()

    @classmethod
    def from_raster(cls, elevation: xr.DataArray) -> "DEMData":
        """Wrap an elevation raster, deriving resolution from its grid."""
        elevation = single_band(elevation)
        cell_x, cell_y = _cell_size_m(elevation)
        return cls(
            elevation=elevation,
            crs=elevation.rio.crs,
            transform=elevation.rio.transform(),
            resolution_m=(cell_x + cell_y) / 2,
        )


@dataclass
class GlacierProxies:
    """Approximate glacier thickness and velocity above the snowline.

    Fixed-formula proxies, not a physical ice model:
    thickness = slope * snowline / 100, velocity = thickness * factor.
    """

    thickness: xr.DataArray
    velocity: xr.DataArray
    snowline_mask: xr.DataArray
    snowline_elevation_m: float
    velocity_factor: float


def _cell_size_m(elevation: xr.DataArray) -> tuple[float, float]:
    """Pixel size in metres, converting degrees for geographic rasters."""
    res_x, res_y = elevation.rio.resolution()
    crs = elevation.rio.crs
    if crs is not None and CRS.from_user_input(crs).is_geographic:
        _, min_y, _, max_y = elevation.rio.bounds()
        return geographic_cell_size_m(res_x, res_y, (min_y + max_y) / 2)
    return abs(float(res_x)), abs(float(res_y))


def load_dem(dem_path: Path, bbox: tuple[float, float, float, float] | None = None) -> DEMData | None:
    """Load a DEM from a local file, optionally clipped to a WGS84 bbox.

    Args:
        dem_path: Path to local DEM GeoTIFF.
        bbox: Optional (min_lon, min_lat, max_lon, max_lat).

    Returns:
        DEMData or None if the file is missing or unreadable.
    """
    if not dem_path.exists():
        logger.warning("Local DEM file not found", path=str(dem_path))
        return None

    try:
        da = rxr.open_rasterio(dem_path, masked=True)
        if bbox is not None:
            da = _clip_to_bbox(da, bbox)

        if da.ndim == 3 and da.shape[0] == 1:
            da = da.squeeze("band", drop=True)

        return DEMData.from_raster(da.astype(np.float32))

    except Exception as e:
        logger.error("Failed to load local DEM", path=str(dem_path), error=str(e))
        return None


def load_dem_for_bbox(
    bbox: tuple[float, float, float, float],
    dem_source: str | None = None,
) -> DEMData | None:
    """Load DEM data for the given bounding box.

    Args:
        bbox: Bounding box as (min_lon, min_lat, max_lon, max_lat) in WGS84.
        dem_source: "nasadem" (reprocessed SRTM via Planetary Computer) or
            "local" (configured file). Defaults to the configured source.

    Returns:
        DEMData with elevation, or None if unavailable.
    """
    config = get_config()
    dem_source = dem_source or config.terrain.dem_source
    logger.info("Loading DEM", bbox=bbox, source=dem_source)

    if dem_source == "nasadem":
        return _load_stac_dem(bbox)
    elif dem_source == "local":
        if config.terrain.local_dem_path:
            return load_dem(Path(config.terrain.local_dem_path), bbox)
        logger.warning("Local DEM source specified but no path configured")
        return None
    else:
        logger.warning("Unknown DEM source", source=dem_source)
        return None


def _load_stac_dem(bbox: tuple[float, float, float, float]) -> DEMData | None:
    """Load and mosaic DEM tiles from the configured STAC collection."""
    try:
        from rioxarray.merge import merge_arrays

        from glacierisk.stac.client import StacClient

        client = StacClient()
        items = client.search_items(
            collection=client.dem_collection,
            bbox=bbox,
            max_items=20,
        )
        if not items:
            logger.warning("No DEM tiles found for bbox", bbox=bbox)
            return None

        logger.info("Found DEM tiles", count=len(items))

        tiles = []
        for item in items:
            asset = item.assets.get("elevation") or item.assets.get("data")
            if asset is None:
                logger.warning("No elevation asset in DEM item", item_id=item.id)
                continue
            tile = rxr.open_rasterio(asset.href, masked=True)
            tiles.append(_clip_to_bbox(tile, bbox))

        if not tiles:
            return None

        da = tiles[0] if len(tiles) == 1 else merge_arrays(tiles)
        if da.ndim == 3 and da.shape[0] == 1:
            da = da.squeeze("band", drop=True)

        dem = DEMData.from_raster(da.astype(np.float32))
        logger.info(
            "DEM loaded",
            shape=da.shape,
            crs=str(dem.crs),
            resolution_m=dem.resolution_m,
        )
        return dem

    except Exception as e:
        logger.error("Failed to load STAC DEM", error=str(e))
        return None


def _clip_to_bbox(da: xr.DataArray, bbox: tuple[float, float, float, float]) -> xr.DataArray:
    """Clip a raster to a WGS84 bbox expressed in its own CRS."""
    dem_crs = da.rio.crs
    if dem_crs and dem_crs.to_epsg() != 4326:
        transformer = Transformer.from_crs(4326, dem_crs, always_xy=True)
        min_x, min_y = transformer.transform(bbox[0], bbox[1])
        max_x, max_y = transformer.transform(bbox[2], bbox[3])
    else:
        min_x, min_y, max_x, max_y = bbox
    return da.rio.clip_box(minx=min_x, miny=min_y, maxx=max_x, maxy=max_y)


def derive_slope_aspect(
    dem: DEMData | xr.DataArray,
    cell_size: float | tuple[float, float] | None = None,
) -> DEMData:
    """Calculate slope and aspect rasters from DEM elevation.

    Uses the Horn (1981) 3x3 finite-difference gradient with edge pixels
    replicated. Slope is in degrees, clamped to [0, 90]. Aspect is the compass
    bearing of the downslope direction (0=N, 90=E, 180=S, 270=W) in [0, 360);
    pixels with zero gradient get FLAT_ASPECT. Pixels that are no-data, or
    whose 3x3 window touches no-data, are NaN in both outputs.

    Args:
        dem: DEMData or elevation raster.
        cell_size: Pixel size in metres, either one value or (x, y).
            Defaults to the raster resolution.

    Returns:
        DEMData with slope and aspect rasters added.
    """
    if isinstance(dem, xr.DataArray):
        dem = DEMData.from_raster(dem)

    logger.info("Calculating slope and aspect")

    elev = dem.elevation.values.astype(np.float64)

    if cell_size is None:
        cell_x, cell_y = _cell_size_m(dem.elevation)
    elif isinstance(cell_size, tuple):
        cell_x, cell_y = cell_size
    else:
        cell_x = cell_y = float(cell_size)

    nodata_mask = np.isnan(elev)
    if nodata_mask.any():
        elev = np.where(nodata_mask, 0, elev)
        nodata_mask = ndimage.binary_dilation(nodata_mask, structure=np.ones((3, 3), dtype=bool))

    dz_dx = ndimage.correlate(elev, _HORN_X, mode="nearest") / (8 * cell_x)
    dz_dy = ndimage.correlate(elev, _HORN_Y, mode="nearest") / (8 * cell_y)

    gradient = np.hypot(dz_dx, dz_dy)
    slope_deg = np.clip(np.degrees(np.arctan(gradient)), 0.0, 90.0)

    # Downslope is the negative gradient; bearing = atan2(east, north).
    aspect_deg = np.mod(np.degrees(np.arctan2(-dz_dx, -dz_dy)), 360.0)
    aspect_deg = np.where(aspect_deg >= 360.0, 0.0, aspect_deg)
    aspect_deg = np.where(gradient == 0, FLAT_ASPECT, aspect_deg)

    if nodata_mask.any():
        slope_deg = np.where(nodata_mask, np.nan, slope_deg)
        aspect_deg = np.where(nodata_mask, np.nan, aspect_deg)

    slope_da = like(dem.elevation, slope_deg.astype(np.float32), name="slope")
    aspect_da = like(dem.elevation, aspect_deg.astype(np.float32), name="aspect")

    if np.isfinite(slope_deg).any():
        logger.info(
            "Slope/aspect calculated",
            slope_min=float(np.nanmin(slope_deg)),
            slope_max=float(np.nanmax(slope_deg)),
            slope_mean=float(np.nanmean(slope_deg)),
        )

    return DEMData(
        elevation=dem.elevation,
        slope=slope_da,
        aspect=aspect_da,
        crs=dem.crs,
        transform=dem.transform,
        resolution_m=dem.resolution_m,
    )


def estimate_thickness(
    dem: DEMData | xr.DataArray,
    slope: xr.DataArray | None = None,
    snowline_elevation: float | None = None,
    velocity_factor: float | None = None,
) -> GlacierProxies:
    """Estimate glacier thickness and velocity proxies above the snowline.

    thickness = slope * snowline_elevation / 100 where elevation >= snowline,
    NaN (no-data) below it; velocity = thickness * velocity_factor.

    Args:
        dem: DEMData or elevation raster.
        slope: Slope raster in degrees. Defaults to ``dem.slope``, computing
            it when absent.
        snowline_elevation: Snowline elevation in metres (default 3000).
        velocity_factor: Velocity multiplier (default 0.02).

    Returns:
        GlacierProxies with thickness, velocity and the snowline mask.
    """
    config = get_config()
    snowline = snowline_elevation if snowline_elevation is not None else config.terrain.snowline_elevation_m
    factor = velocity_factor if velocity_factor is not None else config.terrain.velocity_factor

    if isinstance(dem, xr.DataArray):
        dem = DEMData.from_raster(dem)
    if slope is None:
        if dem.slope is None:
            dem = derive_slope_aspect(dem)
        slope = dem.slope

    assert_aligned(dem.elevation, slope)

    elev = dem.elevation.values.astype(np.float64)
    above = np.nan_to_num(elev, nan=-np.inf) >= snowline

    thickness = np.where(above, slope.values.astype(np.float64) * snowline / 100.0, np.nan)
    velocity = thickness * factor

    logger.info(
        "Glacier proxies estimated",
        snowline_m=snowline,
        velocity_factor=factor,
        pixels_above_snowline=int(above.sum()),
    )

    return GlacierProxies(
        thickness=like(dem.elevation, thickness.astype(np.float32), name="thickness"),
        velocity=like(dem.elevation, velocity.astype(np.float32), name="velocity"),
        snowline_mask=like(dem.elevation, above.astype(np.uint8), name="snowline"),
        snowline_elevation_m=snowline,
        velocity_factor=factor,
    )
