"""Raster loading and clipping utilities."""

from pathlib import Path
from typing import Any, Sequence

import numpy as np
import rioxarray as rxr
import structlog
import xarray as xr
from shapely.geometry import mapping
from shapely.geometry.base import BaseGeometry

from glacierisk.geo_utils import reproject_geometry

logger = structlog.get_logger()


def load_raster(path: Path | str, bands: Sequence[str] | None = None) -> xr.DataArray:
    """Load a (multi-band) GeoTIFF as a float raster with named bands.

    Nodata pixels are masked to NaN. Band names come from ``bands`` when
    given, else from the file's band descriptions, else ``b1``, ``b2``, ...

    Args:
        path: Path or URL (e.g. a signed COG href) of the raster.
        bands: Optional band names, in file order.

    Returns:
        DataArray with dims ("band", "y", "x").
    """
    da = rxr.open_rasterio(path, masked=True)
    if da.ndim == 2:
        da = da.expand_dims("band")

    count = da.sizes["band"]
    if bands is None:
        descriptions = da.attrs.get("long_name")
        if isinstance(descriptions, (list, tuple)) and len(descriptions) == count:
            bands = [str(d) for d in descriptions]
        elif isinstance(descriptions, str) and count == 1:
            bands = [descriptions]
        else:
            bands = [f"b{i + 1}" for i in range(count)]
    elif len(bands) != count:
        raise ValueError(f"{path} has {count} bands but {len(bands)} names were given")

    da = da.assign_coords(band=list(bands)).astype(np.float32)
    logger.debug("Loaded raster", path=str(path), bands=list(bands), shape=da.shape)
    return da


def clip_to_geometry(
    raster: xr.DataArray,
    geometry: BaseGeometry,
    geometry_crs: Any = None,
) -> xr.DataArray:
    """Clip a raster to a geometry, setting pixels outside it to NaN.

    Pixels are kept when their centre falls inside the geometry.

    Args:
        raster: Float raster to clip.
        geometry: Clip geometry.
        geometry_crs: CRS of the geometry (default: the raster CRS).

    Returns:
        Clipped raster cropped to the geometry bounds.
    """
    geometry = reproject_geometry(geometry, geometry_crs, raster.rio.crs)
    clipped = raster.astype(np.float32).rio.write_nodata(np.nan).rio.clip(
        [mapping(geometry)],
        crs=raster.rio.crs,
        drop=True,
        all_touched=False,
    )
    logger.debug("Clipped raster to geometry", shape=clipped.shape)
    return clipped
